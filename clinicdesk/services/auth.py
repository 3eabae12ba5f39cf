"""Login and logout against the auth service."""

from __future__ import annotations

import logging

from clinicdesk.errors import ApiError
from clinicdesk.services.http import ApiClient, unwrap
from clinicdesk.services.session import SessionContext

logger = logging.getLogger(__name__)


def _extract_token(payload: object) -> str | None:
    data = unwrap(payload)
    if isinstance(data, str):
        return data or None
    if isinstance(data, dict):
        token = data.get("token")
        if isinstance(token, str) and token:
            return token
    return None


async def login(api: ApiClient, session: SessionContext, username: str, password: str) -> str:
    """Exchange credentials for a token and start the session."""

    payload = await api.post("/login", json={"username": username, "password": password})
    token = _extract_token(payload)
    if not token:
        raise ApiError("Login response did not include a token")
    await session.start(token, username)
    return token


async def logout(session: SessionContext) -> None:
    await session.end()
