"""
Output writer: drains the merged stream into destination transactions.

Per sample
- timestamp < now - retention: dropped (the cutoff itself is kept).
- A transaction is opened on demand; appends go through the fast path when the series
  already has a reference in this run's SeriesRefCache, otherwise through add().
- OutOfOrderSample / DuplicateSample / OutOfBounds: logged and dropped.
- UnknownReference on the fast path: the cached reference is dropped and the sample is
  re-added by labels.
- Any other store error is fatal and propagates.

Batches
- The open transaction is committed once it holds flush_interval appends, and at end of
  stream. Commit failures are fatal. The destination is closed when the stream ends, and
  best-effort when a fatal error is propagating.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass

from tsdbmig.core.labels import format_fingerprint
from tsdbmig.core.model import MetricSample
from tsdbmig.store import (
    DuplicateSample,
    OutOfBounds,
    OutOfOrderSample,
    StoreError,
    Transaction,
    TsdbStore,
    UnknownReference,
)

logger = logging.getLogger(__name__)


class SeriesRefCache:
    """
    Fingerprint -> destination series reference, scoped to one migration run.

    Owned by the OutputWriter that created it; references become stale when the destination
    truncates its head, which surfaces as UnknownReference on the next fast-path append.
    """

    def __init__(self) -> None:
        self._refs: dict[int, int] = {}

    def get(self, fp: int) -> int | None:
        return self._refs.get(fp)

    def set(self, fp: int, ref: int) -> None:
        self._refs[fp] = ref

    def invalidate(self, fp: int) -> None:
        self._refs.pop(fp, None)

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, fp: object) -> bool:
        return fp in self._refs


@dataclass(slots=True)
class WriterStats:
    """
    Counters for one writer run.

    Attributes:
        received (int): Samples taken from the stream.
        appended (int): Samples accepted by the destination.
        dropped_retention (int): Samples older than the retention cutoff.
        dropped_out_of_order (int): Out-of-order or conflicting duplicate samples.
        dropped_out_of_bounds (int): Samples outside the destination's appendable window.
        fast_path_misses (int): Fast-path appends that fell back to add().
        commits (int): Transactions committed.
    """

    received: int = 0
    appended: int = 0
    dropped_retention: int = 0
    dropped_out_of_order: int = 0
    dropped_out_of_bounds: int = 0
    fast_path_misses: int = 0
    commits: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


class OutputWriter:
    """
    Appends MetricSamples to a TsdbStore in bounded transactions.

    Args:
        store (TsdbStore): Open destination; closed by finish() or on a fatal error.
        retention_ms (int): Samples with timestamp < now_ms - retention_ms are dropped.
        flush_interval (int): Appends per transaction before it is committed.
        now_ms (int | None): Reference time for the retention cutoff; wall clock if None.
        refs (SeriesRefCache | None): Reference cache for this run; a new one if None.
    """

    def __init__(
        self,
        store: TsdbStore,
        *,
        retention_ms: int,
        flush_interval: int,
        now_ms: int | None = None,
        refs: SeriesRefCache | None = None,
    ) -> None:
        if flush_interval < 1:
            raise ValueError("flush_interval must be >= 1")
        self.store = store
        self.flush_interval = flush_interval
        self.cutoff = (now_ms if now_ms is not None else _now_ms()) - retention_ms
        self.refs = refs if refs is not None else SeriesRefCache()
        self.stats = WriterStats()
        self._txn: Transaction | None = None
        self._batch = 0

    def _append(self, txn: Transaction, sample: MetricSample) -> None:
        ref = self.refs.get(sample.fingerprint)
        if ref is not None:
            try:
                txn.add_fast(ref, sample.timestamp, sample.value)
                return
            except UnknownReference:
                self.stats.fast_path_misses += 1
                self.refs.invalidate(sample.fingerprint)
        ref = txn.add(sample.labels, sample.timestamp, sample.value)
        self.refs.set(sample.fingerprint, ref)

    def _drop(self, kind: str, count: int, sample: MetricSample, exc: Exception) -> None:
        log = logger.warning if count == 1 else logger.debug
        log(
            "Dropping %s sample of series %s at %d: %s",
            kind,
            format_fingerprint(sample.fingerprint),
            sample.timestamp,
            exc,
        )

    def write(self, sample: MetricSample) -> None:
        """
        Process one sample.

        Raises:
            StoreError: Fatal append or commit failure.
        """
        self.stats.received += 1
        if sample.timestamp < self.cutoff:
            self.stats.dropped_retention += 1
            return
        if self._txn is None:
            self._txn = self.store.new_transaction()
            self._batch = 0
        try:
            self._append(self._txn, sample)
        except OutOfOrderSample as exc:
            self.stats.dropped_out_of_order += 1
            kind = "duplicate" if isinstance(exc, DuplicateSample) else "out-of-order"
            self._drop(kind, self.stats.dropped_out_of_order, sample, exc)
            return
        except OutOfBounds as exc:
            self.stats.dropped_out_of_bounds += 1
            self._drop("out-of-bounds", self.stats.dropped_out_of_bounds, sample, exc)
            return
        self.stats.appended += 1
        self._batch += 1
        if self._batch >= self.flush_interval:
            self.flush()

    def flush(self) -> None:
        """Commit the open transaction, if any. Raises StoreError on failure."""
        txn, self._txn = self._txn, None
        if txn is None:
            return
        batch, self._batch = self._batch, 0
        txn.commit()
        self.stats.commits += 1
        logger.info("Committed %d samples (%d total)", batch, self.stats.appended)

    def finish(self) -> WriterStats:
        """Commit pending appends and close the destination."""
        self.flush()
        self.store.close()
        logger.info(
            "Writer finished: %d appended, %d below retention, %d out-of-order, "
            "%d out-of-bounds, %d fast-path misses, %d commits",
            self.stats.appended,
            self.stats.dropped_retention,
            self.stats.dropped_out_of_order,
            self.stats.dropped_out_of_bounds,
            self.stats.fast_path_misses,
            self.stats.commits,
        )
        return self.stats

    def abandon(self) -> None:
        """Discard the open transaction and close the destination, logging failures."""
        txn, self._txn = self._txn, None
        if txn is not None and not txn.done:
            txn.rollback()
        try:
            self.store.close()
        except StoreError as exc:
            logger.error("Failed to close destination after error: %s", exc)

    def consume(self, samples: Iterable[MetricSample]) -> WriterStats:
        """
        Write every sample of `samples`, then finish().

        Raises:
            StoreError: Fatal append, commit or close failure; the destination has been
                abandoned.
        """
        try:
            for sample in samples:
                self.write(sample)
            return self.finish()
        except BaseException:
            self.abandon()
            raise
