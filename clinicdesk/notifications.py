"""Transient notifications shown to the user after actions and failures."""

from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

MAX_PENDING = 20


class NotificationLevel(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Notification:
    level: NotificationLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, str]:
        return {
            "level": self.level.value,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class Notifier:
    """Bounded queue of pending notifications, drained by the view layer."""

    def __init__(self, maxlen: int = MAX_PENDING) -> None:
        self._pending: deque[Notification] = deque(maxlen=maxlen)

    def _push(self, level: NotificationLevel, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        self._pending.append(notification)
        log_level = logging.WARNING if level is NotificationLevel.ERROR else logging.INFO
        logger.log(log_level, "notification", extra={"level_name": level.value, "text": message})
        return notification

    def success(self, message: str) -> Notification:
        return self._push(NotificationLevel.SUCCESS, message)

    def error(self, message: str) -> Notification:
        return self._push(NotificationLevel.ERROR, message)

    def drain(self) -> list[Notification]:
        """Return and clear every pending notification."""

        drained = list(self._pending)
        self._pending.clear()
        return drained
