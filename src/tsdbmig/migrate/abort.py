"""One-shot cooperative abort signal shared by the merge engine, the writer and the CLI."""

from __future__ import annotations

import threading


class AbortSignal:
    """
    Thread-safe abort flag that can be fired once and never reset.

    Examples:
        >>> abort = AbortSignal()
        >>> abort.is_set()
        False
        >>> abort.fire("SIGINT")
        >>> abort.is_set(), abort.reason
        (True, 'SIGINT')
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self.reason: str | None = None

    def fire(self, reason: str = "") -> None:
        """Request abort. Later calls keep the first reason."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason or "aborted"
            self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until fired or timeout elapses; returns whether the signal fired."""
        return self._event.wait(timeout)
