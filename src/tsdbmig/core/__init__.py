"""
Core contracts for tsdbmig (constants, errors, labels, models).

## Contracts
- Constants: legacy chunk/heads geometry and migration defaults.
- Errors: CorruptChunk, IndexUnreadable, UnhandledOverlap, ConfigError.
- Labels: metric -> sorted label pairs, fingerprint string form, destination series ids.
- Models: SeriesRecord (pydantic), Sample, MetricSample, TimeGroup.

## Notes
- Zero-IO policy: stdlib + pydantic only; no file IO.
- Downstream: tsdbmig.legacy decodes into these models, tsdbmig.migrate groups/merges them,
  tsdbmig.store persists MetricSample streams.
"""

from __future__ import annotations

from .errors import ConfigError, CorruptChunk, IndexUnreadable, MigrateError, UnhandledOverlap
from .model import MetricSample, Sample, SeriesRecord, TimeGroup

__all__ = [
    "MigrateError",
    "CorruptChunk",
    "IndexUnreadable",
    "UnhandledOverlap",
    "ConfigError",
    "SeriesRecord",
    "Sample",
    "MetricSample",
    "TimeGroup",
]
