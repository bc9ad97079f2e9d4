"""Deadline and cancellation signal shared by the tasks of one scrape."""
import threading
import time
from typing import Optional

from .errors import ScrapeCancelledError


class ScrapeContext:
    def __init__(self, timeout: Optional[float] = None, parent: Optional["ScrapeContext"] = None):
        self._parent = parent
        self._event = threading.Event()
        self._reason = ""

        deadline = time.monotonic() + timeout if timeout else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

    def child(self, timeout: Optional[float] = None) -> "ScrapeContext":
        return ScrapeContext(timeout=timeout, parent=self)

    def cancel(self, reason: str = "scrape cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def error(self) -> Optional[str]:
        """Reason the context is done, or None while it is still live."""
        if self._event.is_set():
            return self._reason
        if self._parent is not None:
            reason = self._parent.error()
            if reason is not None:
                return reason
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return "deadline exceeded"
        return None

    @property
    def done(self) -> bool:
        return self.error() is not None

    def check(self) -> None:
        reason = self.error()
        if reason is not None:
            raise ScrapeCancelledError(reason)

    def clamp(self, timeout: float) -> float:
        # urllib3 rejects timeouts <= 0
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return max(min(timeout, remaining), 0.001)
