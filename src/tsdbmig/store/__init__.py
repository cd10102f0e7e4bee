"""
tsdbmig.store: destination block store (Parquet parts + JSON manifest).

## Public API
- TsdbStore.open(settings) -> TsdbStore; store.new_transaction(); store.close()
- Transaction.add / add_fast / commit / rollback
- store.scan(where) / store.read(where, limit) -> polars frames

## Layout
- <root>/blocks/block=000123/part-<uuid>.parquet, block = timestamp // block_range_ms
- <root>/manifest.json, <root>/lock

## Notes
- Single writer per directory, enforced by the lock file.
- Per-sample rejections raise AppendError subclasses; everything else is a StoreError.
"""

from __future__ import annotations

from .errors import (
    AppendError,
    DuplicateSample,
    OutOfBounds,
    OutOfOrderSample,
    StoreError,
    StoreManifestError,
    StoreOpenError,
    StoreWriteError,
    UnknownReference,
)
from .store import Transaction, TsdbStore

__all__ = [
    "TsdbStore",
    "Transaction",
    "StoreError",
    "StoreOpenError",
    "StoreWriteError",
    "StoreManifestError",
    "AppendError",
    "OutOfOrderSample",
    "DuplicateSample",
    "OutOfBounds",
    "UnknownReference",
]
