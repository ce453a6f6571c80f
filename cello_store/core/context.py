"""
Per-call execution context: cancellation flag and optional deadline.
Backends call ctx.check(op) before every round trip to the physical store.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from .errors import CallCancelledError


@dataclass
class CallContext:
    """
    Cancellable context passed as the first argument of every store operation.
    A context may be shared by several threads; cancel() is safe from any of them.
    """

    deadline: Optional[float] = None
    _cancelled: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    @classmethod
    def background(cls) -> "CallContext":
        """Context that never expires and is only cancelled explicitly."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CallContext":
        return cls(deadline=time.monotonic() + float(seconds))

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def done(self) -> bool:
        if self.cancelled:
            return True
        left = self.remaining()
        return left is not None and left <= 0.0

    def check(self, op: str, identity: Optional[str] = None) -> None:
        """Raise CallCancelledError if the call must not start another round trip."""
        if self.cancelled:
            raise CallCancelledError("call context cancelled", op=op, identity=identity)
        left = self.remaining()
        if left is not None and left <= 0.0:
            raise CallCancelledError("call context deadline exceeded", op=op, identity=identity)
