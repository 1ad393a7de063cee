"""Cancellation and deadline propagation for agent runs and tool calls."""

from __future__ import annotations

import threading
import time

from opsy.errors import RunCancelledError

CANCELLED_REASON = "context canceled"
DEADLINE_REASON = "context deadline exceeded"


class RunContext:
    """Carries a cancellation signal and an optional deadline down a call tree.

    Children created with :meth:`with_timeout` observe their parent's
    cancellation and never outlive its deadline; cancelling a child leaves
    the parent untouched.
    """

    def __init__(
        self,
        *,
        deadline: float | None = None,
        parent: RunContext | None = None,
    ) -> None:
        self._event = threading.Event()
        self._parent = parent
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

    @classmethod
    def background(cls) -> RunContext:
        return cls()

    def with_timeout(self, seconds: float | None) -> RunContext:
        """Derive a child context; ``None`` or non-positive means no extra limit."""
        if seconds is None or seconds <= 0:
            return RunContext(parent=self)
        return RunContext(deadline=time.monotonic() + seconds, parent=self)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        return self.cancelled or self.expired

    def reason(self) -> str | None:
        if self.cancelled:
            return CANCELLED_REASON
        if self.expired:
            return DEADLINE_REASON
        return None

    def remaining(self) -> float | None:
        """Seconds until the deadline, or ``None`` when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_done(self) -> None:
        reason = self.reason()
        if reason is not None:
            raise RunCancelledError(reason)
