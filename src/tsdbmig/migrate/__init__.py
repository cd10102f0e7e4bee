"""
tsdbmig.migrate: grouping, k-way merge, output writer and the pipeline driver.

## Public API
- compute_groups / sorted_series_ranges: timeline partition by active series.
- MergeEngine: lazily opened per-series readers merged by (timestamp, fingerprint).
- OutputWriter: retention filter and batched transactions against a TsdbStore.
- SampleQueue, AbortSignal: the bounded hand-off and the one-shot cancel flag.
- migrate: runs the whole pipeline and returns a MigrationReport.
"""

from __future__ import annotations

from .abort import AbortSignal
from .grouping import SeriesRange, compute_groups, sorted_series_ranges
from .merge import MergeEngine, MergeStats
from .pipeline import MigrationReport, migrate
from .sample_queue import SampleQueue
from .writer import OutputWriter, SeriesRefCache, WriterStats

__all__ = [
    "AbortSignal",
    "SeriesRange",
    "compute_groups",
    "sorted_series_ranges",
    "MergeEngine",
    "MergeStats",
    "OutputWriter",
    "SeriesRefCache",
    "WriterStats",
    "SampleQueue",
    "MigrationReport",
    "migrate",
]
