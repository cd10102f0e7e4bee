"""
K-way merge of per-series sample readers into one time-ordered stream.

Readers are opened lazily: the time groups computed from the index decide when a series
becomes live. A series is opened once the merge frontier reaches the start of the first group
that lists it, so the number of simultaneously open files follows the working set at the
current position on the timeline rather than the total series count.

Ordering
- The frontier is a heap of (timestamp, fingerprint, value); ties go to the lower fingerprint.
- Index bounds may be stale. A series whose real first sample predates its indexed start can
  surface behind samples already emitted; such samples are still emitted and counted as late.

Failure handling
- CorruptChunk or OSError while reading a series: warn, close that reader, skip the rest of
  the series.
- Reader close failures: warn and count, never raised.
- Abort: checked before every emitted sample; all open readers are closed on exit.
"""

from __future__ import annotations

import heapq
import logging
import math
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass

from tsdbmig.core.errors import CorruptChunk
from tsdbmig.core.labels import Labels, format_fingerprint
from tsdbmig.core.model import MetricSample, SeriesRecord, TimeGroup
from tsdbmig.legacy.reader import SampleReader, open_sample_reader

from .abort import AbortSignal
from .grouping import compute_groups, sorted_series_ranges
from .sample_queue import SampleQueue

logger = logging.getLogger(__name__)

ReaderFactory = Callable[[str, SeriesRecord], SampleReader]


@dataclass(slots=True)
class MergeStats:
    """
    Counters for one merge run.

    Attributes:
        series_total (int): Series in the index.
        series_opened (int): Readers opened.
        series_closed (int): Readers closed (exhausted, corrupt or at shutdown).
        series_corrupt (int): Series cut short by a decode or read error.
        close_failures (int): Reader close() calls that raised.
        emitted (int): Samples handed downstream.
        late (int): Emitted samples older than a previously emitted one.
        dropped_backwards (int): Samples the readers dropped for going back in time.
        max_live (int): Peak number of simultaneously open readers.
        cancelled (bool): Run stopped by the abort signal.
    """

    series_total: int = 0
    series_opened: int = 0
    series_closed: int = 0
    series_corrupt: int = 0
    close_failures: int = 0
    emitted: int = 0
    late: int = 0
    dropped_backwards: int = 0
    max_live: int = 0
    cancelled: bool = False


class MergeEngine:
    """
    Merges every series of a legacy store into one ascending sample stream.

    Args:
        input_dir (str): Legacy storage directory.
        series (Mapping[int, SeriesRecord]): Index, fingerprint -> record.
        groups (Sequence[TimeGroup] | None): Precomputed time groups; computed from `series`
            when omitted.
        reader_factory (ReaderFactory): Builds a reader for one record; defaults to
            open_sample_reader.
    """

    def __init__(
        self,
        input_dir: str,
        series: Mapping[int, SeriesRecord],
        groups: Sequence[TimeGroup] | None = None,
        reader_factory: ReaderFactory = open_sample_reader,
    ) -> None:
        self.input_dir = input_dir
        self.series = series
        if groups is None:
            groups = compute_groups(sorted_series_ranges(series))
        self.groups = list(groups)
        self._reader_factory = reader_factory
        self._live: dict[int, SampleReader] = {}
        self._labels: dict[int, Labels] = {}
        self._frontier: list[tuple[int, int, float]] = []
        self.stats = MergeStats(series_total=len(series))

    def _open_schedule(self) -> list[tuple[int, int]]:
        """(open_time, fingerprint) for every indexed series, in open order."""
        seen: set[int] = set()
        schedule: list[tuple[int, int]] = []
        for g in self.groups:
            for fp in g.fingerprints:
                if fp in seen or fp not in self.series:
                    continue
                seen.add(fp)
                schedule.append((g.start, fp))
        for fp in sorted(self.series):
            if fp not in seen:
                schedule.append((self.series[fp].first_time, fp))
        schedule.sort()
        return schedule

    def _open(self, fp: int) -> None:
        record = self.series[fp]
        reader = self._reader_factory(self.input_dir, record)
        self._live[fp] = reader
        self._labels[fp] = record.labels
        self.stats.series_opened += 1
        self.stats.max_live = max(self.stats.max_live, len(self._live))
        logger.debug("Opened series %s", format_fingerprint(fp))
        self._advance(fp)

    def _advance(self, fp: int) -> None:
        reader = self._live[fp]
        try:
            sample = next(reader)
        except StopIteration:
            self._close(fp)
            return
        except (CorruptChunk, OSError) as exc:
            logger.warning("Skipping rest of series %s: %s", format_fingerprint(fp), exc)
            self.stats.series_corrupt += 1
            self._close(fp)
            return
        heapq.heappush(self._frontier, (sample.timestamp, fp, sample.value))

    def _close(self, fp: int) -> None:
        reader = self._live.pop(fp)
        self._labels.pop(fp, None)
        self.stats.series_closed += 1
        self.stats.dropped_backwards += getattr(reader, "dropped", 0)
        try:
            reader.close()
        except Exception as exc:
            self.stats.close_failures += 1
            logger.warning("Failed to close series %s: %s", format_fingerprint(fp), exc)
            return
        logger.debug("Closed series %s", format_fingerprint(fp))

    def _close_all(self) -> None:
        for fp in list(self._live):
            self._close(fp)
        self._frontier.clear()

    def samples(self, abort: AbortSignal | None = None) -> Iterator[MetricSample]:
        """
        Yield every sample of every series, ascending by (timestamp, fingerprint).

        The generator stops early once `abort` fires (stats.cancelled is set). Closing the
        generator, or exhausting it, closes all open readers.
        """
        schedule = self._open_schedule()
        next_open = 0
        last_ts = -math.inf
        try:
            while True:
                head_ts = self._frontier[0][0] if self._frontier else None
                while next_open < len(schedule) and (
                    head_ts is None or schedule[next_open][0] <= head_ts
                ):
                    self._open(schedule[next_open][1])
                    next_open += 1
                    head_ts = self._frontier[0][0] if self._frontier else None
                if not self._frontier:
                    return
                if abort is not None and abort.is_set():
                    self.stats.cancelled = True
                    logger.info("Merge aborted after %d samples", self.stats.emitted)
                    return
                ts, fp, value = heapq.heappop(self._frontier)
                if ts < last_ts:
                    self.stats.late += 1
                    if self.stats.late == 1:
                        logger.warning(
                            "Series %s yields samples before its indexed start (%d < %d)",
                            format_fingerprint(fp),
                            ts,
                            last_ts,
                        )
                else:
                    last_ts = ts
                labels = self._labels[fp]
                self._advance(fp)
                self.stats.emitted += 1
                yield MetricSample(fp, labels, ts, value)
        finally:
            self._close_all()

    def run(self, out: SampleQueue, abort: AbortSignal | None = None) -> MergeStats:
        """
        Pump samples() into `out`, then close the queue.

        Returns:
            MergeStats: Final counters. cancelled is True when abort fired or the consumer
            stopped before the stream ended.
        """
        stream = self.samples(abort)
        try:
            for sample in stream:
                if not out.put(sample, abort):
                    self.stats.cancelled = True
                    self.stats.emitted -= 1
                    break
        finally:
            stream.close()
            out.close()
        logger.info(
            "Merge finished: %d samples from %d/%d series (%d corrupt, %d late, %d close failures)%s",
            self.stats.emitted,
            self.stats.series_opened,
            self.stats.series_total,
            self.stats.series_corrupt,
            self.stats.late,
            self.stats.close_failures,
            " [cancelled]" if self.stats.cancelled else "",
        )
        return self.stats
