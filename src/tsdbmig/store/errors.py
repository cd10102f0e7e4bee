"""
Custom exceptions for the tsdbmig.store destination.

Purpose
- Provide store-specific error types that map cleanly to responsibilities in tsdbmig.store.
- Distinguish per-sample append rejections (AppendError family) from structural failures.

Taxonomy
- StoreOpenError: the store directory or its lock cannot be acquired.
- StoreWriteError: atomic part write path failed (tmp write/fsync/rename).
- StoreManifestError: manifest load/write/rebuild errors.
- AppendError: a single sample was rejected by a transaction:
  - OutOfOrderSample: timestamp behind the series' newest sample.
  - DuplicateSample: same timestamp as the newest sample, different value.
  - OutOfBounds: timestamp older than the head's appendable window.
  - UnknownReference: fast-path reference not (or no longer) known to the head.

Notes
- These exceptions do not perform any IO and are stdlib-only.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for destination store failures."""


class StoreOpenError(StoreError):
    """Raised when the store cannot be opened (directory, lock, manifest recovery)."""


class StoreWriteError(StoreError):
    """
    Raised when a commit fails to persist its parts atomically.

    Notes:
        The write path is tmp parquet → fsync → os.replace(tmp, final). Failures at any step
        surface as StoreWriteError (with best-effort cleanup of tmp files).
    """


class StoreManifestError(StoreError):
    """Raised when the store manifest is missing, corrupt, or cannot be written."""


class AppendError(StoreError):
    """Base class for per-sample rejections raised by Transaction.add/add_fast."""


class OutOfOrderSample(AppendError):
    """Sample timestamp is older than the newest sample of its series."""


class DuplicateSample(OutOfOrderSample):
    """Sample repeats the newest timestamp of its series with a different value."""


class OutOfBounds(AppendError):
    """Sample timestamp falls before the head's appendable window."""


class UnknownReference(AppendError):
    """Fast-path series reference is not known to the head."""
