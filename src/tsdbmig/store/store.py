"""
Block store handle and append transactions.

TsdbStore owns the destination directory: an exclusive lock file, the manifest, and an
in-memory head holding the newest committed sample of every series plus the numeric series
references handed out by Transaction.add. Transactions buffer appends in memory and persist
them as Parquet parts on commit.

Append rules (checked per sample, in this order)
- t < 0 or t < max_time - block_range_ms -> OutOfBounds
- t < newest sample of the series -> OutOfOrderSample
- t == newest sample, different value -> DuplicateSample; same value -> accepted, not stored

Head truncation
- When a commit moves max_time into a later block, the reference table is cleared. Callers
  holding old references get UnknownReference from add_fast and re-add by labels.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Iterator
from typing import Any

import polars as pl

from tsdbmig.config import StoreSettings
from tsdbmig.core.labels import Labels, labels_to_json, series_id

from .errors import (
    DuplicateSample,
    OutOfBounds,
    OutOfOrderSample,
    StoreError,
    StoreManifestError,
    StoreOpenError,
    UnknownReference,
)
from .fs import create_lock, makedirs, remove_quietly, walk_parquet_files
from .manifest import (
    StoreManifest,
    load_manifest,
    new_manifest,
    rebuild_manifest_from_fs,
    write_manifest,
)
from .paths import block_id_for_time, blocks_root, lock_path
from .read import read as read_frame
from .read import scan as scan_frame
from .read import series_last_samples
from .write import write_samples

logger = logging.getLogger(__name__)


def _same_value(a: float, b: float) -> bool:
    return a == b or (math.isnan(a) and math.isnan(b))


class TsdbStore:
    """
    Open handle on a destination block store. Use TsdbStore.open() to construct.

    Attributes:
        settings (StoreSettings): Store configuration; root_dir is the store directory.
        manifest (StoreManifest): Current manifest, updated by every commit.
        closed (bool): True once close() has run.
    """

    def __init__(
        self,
        settings: StoreSettings,
        manifest: StoreManifest,
        last_samples: dict[str, tuple[int, float]],
    ) -> None:
        self.settings = settings
        self.manifest = manifest
        self.closed = False
        self._last: dict[str, tuple[int, float]] = dict(last_samples)
        self._labels: dict[str, str] = {}
        self._refs: dict[int, str] = {}
        self._ref_by_sid: dict[str, int] = {}
        self._next_ref = 1
        self._max_time: int | None = manifest.time_max

    @classmethod
    def open(cls, settings: StoreSettings) -> TsdbStore:
        """
        Open (creating if needed) the store at settings.root_dir.

        Raises:
            StoreOpenError: If root_dir is unset, cannot be created, is locked by another
                writer, or uses a different block range than configured.
            StoreManifestError: If the manifest exists but cannot be parsed or rebuilt.
        """
        root = settings.root_dir
        if not root:
            raise StoreOpenError("store root_dir is not set")
        try:
            makedirs(root, exist_ok=True)
            create_lock(lock_path(settings))
        except FileExistsError as exc:
            raise StoreOpenError(f"store {root} is locked by another writer ({exc.filename})") from exc
        except OSError as exc:
            raise StoreOpenError(f"cannot open store {root}: {exc}") from exc

        try:
            manifest = cls._load_or_rebuild(settings)
            if manifest.block_range_ms != settings.block_range_ms:
                raise StoreOpenError(
                    f"store {root} uses block range {manifest.block_range_ms}ms, "
                    f"configured {settings.block_range_ms}ms"
                )
            last = series_last_samples(settings, manifest)
        except Exception:
            remove_quietly(lock_path(settings))
            raise

        logger.info(
            "Opened store %s: %d blocks, %d samples, %d series",
            root,
            len(manifest.blocks),
            manifest.row_count,
            len(last),
        )
        return cls(settings, manifest, last)

    @staticmethod
    def _load_or_rebuild(settings: StoreSettings) -> StoreManifest:
        try:
            manifest = load_manifest(settings)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise StoreManifestError(f"cannot read manifest: {exc}") from exc
        if manifest is not None:
            return manifest
        if not walk_parquet_files(blocks_root(settings)):
            return new_manifest(settings.block_range_ms)
        logger.warning("Manifest missing in %s, rebuilding from parts", settings.root_dir)
        try:
            manifest = rebuild_manifest_from_fs(settings)
            write_manifest(settings, manifest)
        except (OSError, pl.exceptions.PolarsError) as exc:
            raise StoreManifestError(f"cannot rebuild manifest: {exc}") from exc
        return manifest

    # -------------------------------------------------------------------------
    # Head state
    # -------------------------------------------------------------------------

    @property
    def max_time(self) -> int | None:
        """Newest committed timestamp, or None for an empty store."""
        return self._max_time

    @property
    def min_valid_time(self) -> int:
        """Oldest timestamp a transaction still accepts."""
        if self._max_time is None:
            return 0
        return max(0, self._max_time - self.settings.block_range_ms)

    def last_sample(self, sid: str) -> tuple[int, float] | None:
        return self._last.get(sid)

    def _ref_for(self, sid: str, labels_json: str) -> int:
        ref = self._ref_by_sid.get(sid)
        if ref is None:
            ref = self._next_ref
            self._next_ref += 1
            self._refs[ref] = sid
            self._ref_by_sid[sid] = ref
        self._labels[sid] = labels_json
        return ref

    def _resolve(self, ref: int) -> tuple[str, str]:
        sid = self._refs.get(ref)
        if sid is None:
            raise UnknownReference(f"unknown series reference {ref}")
        return sid, self._labels[sid]

    def _truncate_head(self) -> None:
        logger.debug("Head truncated at %s, dropping %d series references", self._max_time, len(self._refs))
        self._refs.clear()
        self._ref_by_sid.clear()

    def _apply_commit(self, last: dict[str, tuple[int, float]], max_time: int) -> None:
        prev = self._max_time
        self._last.update(last)
        if prev is None or max_time > prev:
            self._max_time = max_time
        block_range = self.settings.block_range_ms
        if prev is not None and block_id_for_time(self._max_time, block_range) > block_id_for_time(
            prev, block_range
        ):
            self._truncate_head()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def new_transaction(self) -> Transaction:
        """
        Start a transaction.

        Raises:
            StoreError: If the store is closed.
        """
        if self.closed:
            raise StoreError("store is closed")
        return Transaction(self)

    def scan(self, where: dict[str, Any] | None = None) -> pl.LazyFrame:
        return scan_frame(self.settings, self.manifest, where=where)

    def read(self, where: dict[str, Any] | None = None, limit: int | None = None) -> pl.DataFrame:
        return read_frame(self.settings, self.manifest, where=where, limit=limit)

    def close(self) -> None:
        """
        Release the store lock. Idempotent.

        Raises:
            StoreError: If the lock file cannot be removed.
        """
        if self.closed:
            return
        self.closed = True
        try:
            os.remove(lock_path(self.settings))
        except FileNotFoundError:
            logger.warning("Store lock %s vanished before close", lock_path(self.settings))
        except OSError as exc:
            raise StoreError(f"cannot release store lock: {exc}") from exc
        logger.info("Closed store %s", self.settings.root_dir)

    def __enter__(self) -> TsdbStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class Transaction:
    """
    Buffered batch of appends against one TsdbStore.

    Appends are validated immediately against the committed head and against earlier appends
    of the same transaction, so a rejected sample never reaches the pending buffer.
    """

    def __init__(self, store: TsdbStore) -> None:
        self._store = store
        self._rows: list[tuple[str, str, int, float]] = []
        self._last: dict[str, tuple[int, float]] = {}
        self.done = False

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[tuple[str, str, int, float]]:
        return iter(self._rows)

    def _check_open(self) -> None:
        if self.done:
            raise StoreError("transaction already committed or rolled back")
        if self._store.closed:
            raise StoreError("store is closed")

    def _append(self, sid: str, labels_json: str, t: int, v: float) -> None:
        if t < 0 or t < self._store.min_valid_time:
            raise OutOfBounds(f"timestamp {t} is older than {self._store.min_valid_time}")
        last = self._last.get(sid) or self._store.last_sample(sid)
        if last is not None:
            last_t, last_v = last
            if t < last_t:
                raise OutOfOrderSample(f"timestamp {t} is behind {last_t} for series {sid[:12]}")
            if t == last_t:
                if _same_value(v, last_v):
                    return
                raise DuplicateSample(
                    f"timestamp {t} already holds {last_v!r} for series {sid[:12]}, got {v!r}"
                )
        self._rows.append((sid, labels_json, t, v))
        self._last[sid] = (t, v)

    def add(self, labels: Labels, t: int, v: float) -> int:
        """
        Append a sample by label set.

        Returns:
            int: Series reference usable with add_fast() until the head is truncated.

        Raises:
            OutOfOrderSample, DuplicateSample, OutOfBounds: The sample is rejected.
            StoreError: The transaction or store is no longer usable.
        """
        self._check_open()
        sid = series_id(labels)
        labels_json = labels_to_json(labels)
        self._append(sid, labels_json, int(t), float(v))
        return self._store._ref_for(sid, labels_json)

    def add_fast(self, ref: int, t: int, v: float) -> None:
        """
        Append a sample by series reference.

        Raises:
            UnknownReference: ref was never issued or the head has been truncated since.
            OutOfOrderSample, DuplicateSample, OutOfBounds: The sample is rejected.
        """
        self._check_open()
        sid, labels_json = self._store._resolve(ref)
        self._append(sid, labels_json, int(t), float(v))

    def commit(self) -> dict[str, Any]:
        """
        Persist pending appends as parts and advance the head.

        Returns:
            dict[str, Any]: write_samples() summary (parts, rows, blocks).

        Raises:
            StoreWriteError, StoreManifestError: Persisting failed; the transaction is spent.
        """
        self._check_open()
        self.done = True
        if not self._rows:
            return {"parts": [], "rows": 0, "blocks": []}
        df = pl.DataFrame(
            self._rows,
            schema={"series_id": pl.Utf8, "labels": pl.Utf8, "timestamp": pl.Int64, "value": pl.Float64},
            orient="row",
        )
        summary = write_samples(self._store.settings, self._store.manifest, df)
        self._store._apply_commit(self._last, max(t for t, _ in self._last.values()))
        logger.debug("Committed %d samples into blocks %s", summary["rows"], summary["blocks"])
        self._rows = []
        self._last = {}
        return summary

    def rollback(self) -> None:
        """Discard pending appends. Series references handed out stay valid."""
        self._check_open()
        self.done = True
        self._rows = []
        self._last = {}
