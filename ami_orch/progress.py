"""
Operator-facing progress output.

Progress is not logging: it reproduces the terse stderr trail an operator
watches during a build ("Uploading ... in 3 part(s)... done.", one dot per
poll while a status is unchanged, a fresh line when it changes).
"""

from __future__ import annotations

import threading

from rich.console import Console


class ProgressReporter:
    """Serialized writes to a stderr console; safe to share between fan-out workers."""

    def __init__(self, console: Console | None = None, enabled: bool = True):
        self.console = console or Console(stderr=True, highlight=False)
        self.enabled = enabled
        self._lock = threading.Lock()

    def write(self, text: str) -> None:
        """Write without a trailing newline."""
        if not self.enabled:
            return
        with self._lock:
            self.console.print(text, end="", markup=False, soft_wrap=True)

    def line(self, text: str = "") -> None:
        if not self.enabled:
            return
        with self._lock:
            self.console.print(text, markup=False, soft_wrap=True)

    def dot(self) -> None:
        self.write(".")

    def done(self) -> None:
        self.line(" done.")


class NullProgress(ProgressReporter):
    def __init__(self) -> None:
        super().__init__(console=Console(stderr=True, quiet=True), enabled=False)
