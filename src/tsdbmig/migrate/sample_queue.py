"""
Bounded FIFO hand-off between the merge engine and the output writer.

The producer blocks while the queue is full and gives up when the abort signal fires or the
consumer has stopped. close() enqueues an end marker; iterating yields items until it.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from typing import Final

from tsdbmig.core.model import MetricSample

from .abort import AbortSignal

_POLL_SECONDS: Final[float] = 0.1
_CLOSED: Final[object] = object()


class SampleQueue:
    """
    Bounded FIFO of MetricSample.

    Args:
        maxsize (int): Capacity (>= 1); put() blocks while this many items are queued.
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._q: queue.Queue[object] = queue.Queue(maxsize)
        self._consumer_gone = threading.Event()
        self.closed = False

    def put(self, sample: MetricSample, abort: AbortSignal | None = None) -> bool:
        """
        Enqueue a sample, blocking while full.

        Returns:
            bool: False if the sample was not enqueued because abort fired or the consumer
            stopped; True otherwise.

        Raises:
            ValueError: If the queue was closed.
        """
        if self.closed:
            raise ValueError("put on closed sample queue")
        while True:
            if self._consumer_gone.is_set() or (abort is not None and abort.is_set()):
                return False
            try:
                self._q.put(sample, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue

    def close(self) -> None:
        """Mark end of stream. Idempotent; returns early if the consumer has stopped."""
        if self.closed:
            return
        self.closed = True
        while not self._consumer_gone.is_set():
            try:
                self._q.put(_CLOSED, timeout=_POLL_SECONDS)
                return
            except queue.Full:
                continue

    def consumer_done(self) -> None:
        """Called by the consumer when it stops reading, normally or not."""
        self._consumer_gone.set()

    def __iter__(self) -> Iterator[MetricSample]:
        while True:
            item = self._q.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]
