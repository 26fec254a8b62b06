from __future__ import annotations

import threading
import time
from typing import Optional, Set

from .errors import ProbeCancelled


class CancelToken:
    """
    Cooperative cancellation signal shared between the executor and probe code.

    The executor hands every probe invocation a child of the run token. Cancelling
    a parent cancels all of its children; cancelling a child leaves the parent alone.
    An optional deadline (monotonic seconds) lets collaborators size their own
    timeouts with remaining().
    """

    def __init__(self, deadline: Optional[float] = None, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: Set["CancelToken"] = set()
        self._parent: Optional["CancelToken"] = None
        self.deadline = deadline
        self.reason: Optional[str] = None
        if parent is not None:
            if parent.deadline is not None:
                self.deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
            self._parent = parent
            parent._adopt(self)

    def _adopt(self, child: "CancelToken") -> None:
        with self._lock:
            if self._event.is_set():
                child.cancel(self.reason)
                return
            self._children.add(child)

    def child(self, deadline: Optional[float] = None) -> "CancelToken":
        return CancelToken(deadline=deadline, parent=self)

    def detach(self) -> None:
        """Drop this token from its parent once its work is finished; a parent cancel no longer reaches it."""
        parent, self._parent = self._parent, None
        if parent is not None:
            with parent._lock:
                parent._children.discard(self)

    def cancel(self, reason: Optional[str] = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for c in children:
            c.cancel(reason)

    @property
    def cancelled(self) -> bool:
        if not self._event.is_set() and self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel("deadline")
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ProbeCancelled(self.reason or "cancelled")

    def remaining(self, default: float) -> float:
        """Seconds left before the deadline, capped at default. Zero once cancelled."""
        if self.cancelled:
            return 0.0
        if self.deadline is None:
            return default
        return max(0.0, min(default, self.deadline - time.monotonic()))

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds (never past the deadline); returns True if cancelled."""
        if self.deadline is not None:
            seconds = min(seconds, self.deadline - time.monotonic())
        if self._event.wait(timeout=max(0.0, seconds)):
            return True
        return self.cancelled
