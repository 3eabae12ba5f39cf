"""Cancellable debounced task."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Run the most recently scheduled action once a quiet period elapses.

    Scheduling again, or calling ``cancel``, invalidates the pending action.
    """

    def __init__(self, delay_seconds: float) -> None:
        self.delay_seconds = delay_seconds
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(
        self, action: Callable[[], Awaitable[object]], *, delay: float | None = None
    ) -> asyncio.Task:
        self.cancel()
        wait = self.delay_seconds if delay is None else delay
        self._task = asyncio.get_running_loop().create_task(self._run(action, wait))
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait for the pending action, if any, to finish or be cancelled."""

        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _run(self, action: Callable[[], Awaitable[object]], wait: float) -> None:
        if wait > 0:
            await asyncio.sleep(wait)
        try:
            await action()
        except Exception:
            logger.exception("debounced action failed")
