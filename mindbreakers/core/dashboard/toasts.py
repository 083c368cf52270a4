# mindbreakers/core/dashboard/toasts.py
"""Auto-expiring toast notifications for dashboard actions."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
HISTORY_SIZE = 50


@dataclass(frozen=True)
class Toast:
    kind: str
    message: str


class ToastBoard:
    """Holds the current toast and dismisses it after a fixed timeout.

    Showing a new toast replaces the current one and restarts the timer.
    close() cancels any pending dismissal.
    """

    def __init__(self, timeout: float = 5.0, history_size: int = HISTORY_SIZE) -> None:
        self.timeout = timeout
        self.current: Toast | None = None
        self.history: deque[Toast] = deque(maxlen=history_size)
        self._timer: asyncio.TimerHandle | None = None

    def show(self, kind: str, message: str) -> Toast:
        toast = Toast(kind, message)
        self.current = toast
        self.history.append(toast)
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timer = loop.call_later(self.timeout, self._expire, toast)
        log = logger.info if kind == SUCCESS else logger.warning
        log("Toast (%s): %s", kind, message)
        return toast

    def success(self, message: str) -> Toast:
        return self.show(SUCCESS, message)

    def error(self, message: str) -> Toast:
        return self.show(ERROR, message)

    def _expire(self, toast: Toast) -> None:
        if self.current is toast:
            self.current = None
        self._timer = None

    def dismiss(self) -> None:
        self._cancel_timer()
        self.current = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        self._cancel_timer()
