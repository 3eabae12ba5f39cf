"""Process-wide session context.

The credential is established at login and torn down at logout or on the
first 401 from any request. Components read it through ``credential`` and
learn about expiry through ``on_expired`` callbacks; nothing else touches the
token store directly.
"""

from __future__ import annotations

import logging
from typing import Callable

from clinicdesk.logging_utils import set_user_context
from clinicdesk.services.token_store import TokenStore

logger = logging.getLogger(__name__)

ExpiredCallback = Callable[[], None]


class SessionContext:
    def __init__(self, store: TokenStore) -> None:
        self._store = store
        self._callbacks: list[ExpiredCallback] = []
        self._token: str | None = None
        self._username: str | None = None

    async def restore(self) -> None:
        """Pick up a credential persisted by an earlier process."""

        self._token, self._username = await self._store.load()
        if self._token:
            logger.info("restored session", extra={"session_user": self._username})

    @property
    def credential(self) -> str | None:
        return self._token

    @property
    def username(self) -> str | None:
        return self._username

    @property
    def active(self) -> bool:
        return self._token is not None

    async def start(self, token: str, username: str | None = None) -> None:
        if not token:
            raise ValueError("A session requires a non-empty token")
        self._token = token
        self._username = username
        set_user_context(username)
        logger.info("session started", extra={"session_user": username})
        await self._store.save(token, username)

    async def end(self) -> None:
        """Clear the credential on an explicit logout."""

        if self._token is None:
            return
        logger.info("session ended", extra={"session_user": self._username})
        await self._clear()

    async def expire(self) -> None:
        """Tear the session down after the API rejected the credential.

        Only the first rejection of a live session notifies listeners; later
        401s from requests that were already in flight are ignored.
        """

        if self._token is None:
            return
        logger.warning("session expired", extra={"session_user": self._username})
        await self._clear()
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception:
                logger.exception("session expiry callback failed")

    def on_expired(self, callback: ExpiredCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def aclose(self) -> None:
        await self._store.aclose()

    async def _clear(self) -> None:
        # drop the credential before awaiting so concurrent 401s see it gone
        self._token = None
        self._username = None
        set_user_context(None)
        await self._store.clear()
