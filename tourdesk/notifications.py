"""User-visible notifications (the toasts of the dashboard), mirrored to the log."""
from __future__ import annotations

import collections
import dataclasses
import logging
import time
from typing import Callable

_LOGGER = logging.getLogger(__name__)

SUCCESS = "success"
INFO = "info"
WARNING = "warning"
ERROR = "error"

_LOG_LEVELS = {
    SUCCESS: logging.INFO,
    INFO: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
}


@dataclasses.dataclass(frozen=True)
class Notification:
    kind: str
    message: str
    created_at: float = dataclasses.field(default_factory=time.time)


class Notifier:
    """Keeps the most recent notifications and fans them out to callbacks."""

    def __init__(self, history: int = 50) -> None:
        self.history: collections.deque[Notification] = collections.deque(maxlen=history)
        self._callbacks: list[Callable[[Notification], None]] = []

    def add_callback(self, callback: Callable[[Notification], None]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def notify(self, kind: str, message: str) -> Notification:
        notification = Notification(kind, message)
        self.history.append(notification)
        _LOGGER.log(_LOG_LEVELS.get(kind, logging.INFO), message)
        for callback in list(self._callbacks):
            try:
                callback(notification)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Notification callback raised: %s", exc)
        return notification

    def success(self, message: str) -> Notification:
        return self.notify(SUCCESS, message)

    def info(self, message: str) -> Notification:
        return self.notify(INFO, message)

    def warning(self, message: str) -> Notification:
        return self.notify(WARNING, message)

    def error(self, message: str) -> Notification:
        return self.notify(ERROR, message)

    def of_kind(self, kind: str) -> list[Notification]:
        return [n for n in self.history if n.kind == kind]

    def clear(self) -> None:
        self.history.clear()
