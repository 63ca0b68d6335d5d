from __future__ import annotations

import threading

from ami_orch.errors import BuildCancelledError


class CancellationToken:
    """
    Thread-safe cancellation flag with child tokens.

    Cancelling a token cancels every child created from it (including
    children created afterwards); cancelling a child leaves the parent alone.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[CancellationToken] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    def child(self) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            self._children.append(token)
            cancelled = self._event.is_set()
        if cancelled:
            token.cancel(self.reason or "cancelled")
        return token

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise BuildCancelledError(f"Build {self.reason or 'cancelled'}")
