"""
End-to-end migration driver.

migrate() loads the legacy index, computes time groups, opens the destination and runs the
two pipeline stages: the output writer on a worker thread and the merge engine on the
calling thread, joined by a bounded SampleQueue. The first fatal error from either stage is
re-raised after both have stopped; firing the abort signal ends the run as a cancelled but
otherwise normal completion.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from tsdbmig.config import MigrateSettings
from tsdbmig.legacy.heads import load_series_map
from tsdbmig.store import TsdbStore

from .abort import AbortSignal
from .grouping import compute_groups, sorted_series_ranges
from .merge import MergeEngine, MergeStats
from .sample_queue import SampleQueue
from .writer import OutputWriter, WriterStats

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MigrationReport:
    """Outcome of one migrate() run."""

    series: int
    groups: int
    merge: MergeStats
    writer: WriterStats
    elapsed_s: float

    @property
    def cancelled(self) -> bool:
        return self.merge.cancelled


def migrate(
    settings: MigrateSettings,
    abort: AbortSignal | None = None,
    now_ms: int | None = None,
) -> MigrationReport:
    """
    Migrate settings.input_dir into the block store at settings.output_dir.

    Args:
        settings (MigrateSettings): Directories, retention, flush interval and queue size.
        abort (AbortSignal | None): Fired externally to stop the run early.
        now_ms (int | None): Reference time for the retention cutoff; wall clock if None.

    Returns:
        MigrationReport: Counters from both stages.

    Raises:
        IndexUnreadable: The heads file is missing or unreadable.
        UnhandledOverlap: Grouping hit an inconsistent split.
        StoreError: The destination could not be opened, appended to or committed.
    """
    abort = abort or AbortSignal()
    started = time.monotonic()

    series = load_series_map(settings.input_dir)
    groups = compute_groups(sorted_series_ranges(series))

    store = TsdbStore.open(settings.store_settings())
    writer = OutputWriter(
        store,
        retention_ms=settings.retention_ms,
        flush_interval=settings.flush_interval,
        now_ms=now_ms,
    )
    samples = SampleQueue(settings.buffer_size)
    engine = MergeEngine(settings.input_dir, series, groups=groups)

    errors: list[BaseException] = []
    writer_stats: list[WriterStats] = []

    def _write() -> None:
        try:
            writer_stats.append(writer.consume(samples))
        except BaseException as exc:
            errors.append(exc)
            abort.fire(f"writer failed: {exc}")
        finally:
            samples.consumer_done()

    worker = threading.Thread(target=_write, name="tsdbmig-writer", daemon=True)
    worker.start()
    logger.info(
        "Migrating %d series in %d groups from %s to %s",
        len(series),
        len(groups),
        settings.input_dir,
        settings.output_dir,
    )

    try:
        engine.run(samples, abort)
    except BaseException as exc:
        errors.insert(0, exc)
        abort.fire(f"merge failed: {exc}")
        samples.close()
    finally:
        worker.join()

    if errors:
        raise errors[0]

    report = MigrationReport(
        series=len(series),
        groups=len(groups),
        merge=engine.stats,
        writer=writer_stats[0],
        elapsed_s=time.monotonic() - started,
    )
    logger.info(
        "Migration %s in %.1fs: %d samples emitted, %d written",
        "cancelled" if report.cancelled else "complete",
        report.elapsed_s,
        report.merge.emitted,
        report.writer.appended,
    )
    return report
