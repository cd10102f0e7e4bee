"""
Core exception types raised by the legacy decoders, the interval grouper and configuration.

Provides typed exceptions for migration-domain failures:
- CorruptChunk for chunk records that cannot be decoded.
- IndexUnreadable for a heads file that is missing, truncated or of the wrong format.
- UnhandledOverlap for interval classifications that violate the grouping invariants.
- ConfigError for invalid settings.

Notes:
    - This module uses only the Python standard library and has no side effects.
    - CorruptChunk is recoverable: the offending series is skipped. IndexUnreadable and
      UnhandledOverlap are fatal and abort the run.
    - Destination-side failures live in tsdbmig.store.errors.
"""

from __future__ import annotations

__all__ = [
    "MigrateError",
    "CorruptChunk",
    "IndexUnreadable",
    "UnhandledOverlap",
    "ConfigError",
]


class MigrateError(Exception):
    """Base class for migration-domain failures."""


class CorruptChunk(MigrateError, ValueError):
    """Chunk record is short, carries an unknown encoding or fails payload unmarshalling."""


class IndexUnreadable(MigrateError, OSError):
    """Heads file is missing, truncated or not a supported heads format."""


class UnhandledOverlap(MigrateError, RuntimeError):
    """
    Interval classification fell outside the documented cases.

    Notes:
        Indicates a broken invariant in the grouping pass (unsorted or overlapping groups),
        never a data problem.
    """


class ConfigError(MigrateError, ValueError):
    """Invalid or unsupported configuration value."""
