"""Cooperative cancellation tokens with optional deadlines."""

from __future__ import annotations

import threading
import time
from typing import Optional

from upkg.exceptions import OperationCancelledError


class CancelToken:
    """Cancellation signal shared between a caller and a running operation.

    Operations call ``raise_if_cancelled()`` between I/O steps and use
    ``remaining()`` to cap network timeouts.
    """

    def __init__(self, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = deadline
        self._reason = "operation cancelled"

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        """Create a token that expires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Signal cancellation to every holder of this token."""
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = "deadline exceeded"
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout(self, default: float) -> float:
        """Return ``default`` capped by the remaining deadline."""
        left = self.remaining()
        if left is None:
            return default
        return max(0.001, min(default, left))

    def raise_if_cancelled(self, op: Optional[str] = None) -> None:
        """Raise OperationCancelledError when cancelled or past the deadline."""
        if self.cancelled:
            raise OperationCancelledError(self._reason, op=op)


def check(cancel: Optional[CancelToken], op: Optional[str] = None) -> None:
    """Convenience wrapper accepting a missing token."""
    if cancel is not None:
        cancel.raise_if_cancelled(op)
