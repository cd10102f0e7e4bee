"""
JSON manifest for the destination store.

The manifest lists every committed Parquet part, grouped by block, so reads can prune blocks
by time and a reopened store knows its head without scanning parts:

    {"version": 1, "block_range_ms": 7200000, "created_at": ..., "updated_at": ...,
     "blocks": {"000123": {"block_id": 123, "parts": [{"path": "part-<hex>.parquet",
                "rows": 12, "bytes": 4096, "time_min": ..., "time_max": ..., "created_at": ...}]}}}

Block totals (time range, rows, bytes) are derived from the parts. Part paths are relative to
the block directory. A missing manifest is rebuilt from the parts on disk.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import polars as pl

from tsdbmig.config import StoreSettings

from .fs import makedirs, open_write, rename_atomic, walk_parquet_files
from .paths import blocks_root, manifest_path, parse_block_dir

MANIFEST_VERSION = 1


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class PartMeta:
    """One committed Parquet part."""

    path: str
    rows: int
    bytes: int
    time_min: int
    time_max: int
    created_at: str


@dataclass(slots=True)
class BlockMeta:
    block_id: int
    parts: list[PartMeta] = field(default_factory=list)

    @property
    def time_min(self) -> int:
        return min(p.time_min for p in self.parts)

    @property
    def time_max(self) -> int:
        return max(p.time_max for p in self.parts)

    @property
    def row_count(self) -> int:
        return sum(p.rows for p in self.parts)

    @property
    def byte_size(self) -> int:
        return sum(p.bytes for p in self.parts)


@dataclass(slots=True)
class StoreManifest:
    """
    Parts of a store, keyed by zero-padded block id.

    Attributes:
        block_range_ms (int): Block width the store was created with.
        blocks (dict[str, BlockMeta]): "000123" -> block; only blocks with parts appear.
    """

    block_range_ms: int
    blocks: dict[str, BlockMeta] = field(default_factory=dict)
    version: int = MANIFEST_VERSION
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def time_max(self) -> int | None:
        """Newest committed timestamp, or None for an empty store."""
        if not self.blocks:
            return None
        return max(b.time_max for b in self.blocks.values())

    @property
    def row_count(self) -> int:
        return sum(b.row_count for b in self.blocks.values())

    def add_part(self, block_id: int, part: PartMeta) -> None:
        """Record a part that has already been renamed into its block directory."""
        key = f"{block_id:06d}"
        self.blocks.setdefault(key, BlockMeta(block_id)).parts.append(part)
        self.updated_at = _now()

    def to_json_obj(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "block_range_ms": self.block_range_ms,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "blocks": {
                key: {"block_id": b.block_id, "parts": [asdict(p) for p in b.parts]}
                for key, b in self.blocks.items()
            },
        }

    @classmethod
    def from_json_obj(cls, obj: dict[str, Any]) -> StoreManifest:
        blocks = {
            key: BlockMeta(int(b["block_id"]), [PartMeta(**p) for p in b.get("parts") or []])
            for key, b in (obj.get("blocks") or {}).items()
        }
        return cls(
            block_range_ms=int(obj["block_range_ms"]),
            blocks={k: b for k, b in blocks.items() if b.parts},
            version=int(obj.get("version", MANIFEST_VERSION)),
            created_at=obj.get("created_at") or _now(),
            updated_at=obj.get("updated_at") or _now(),
        )


def new_manifest(block_range_ms: int) -> StoreManifest:
    return StoreManifest(block_range_ms=block_range_ms)


def load_manifest(settings: StoreSettings) -> StoreManifest | None:
    """
    Read manifest.json, or return None when the store has none yet.

    Raises:
        OSError, ValueError, KeyError: Unreadable or malformed file; the store wraps these in
            StoreManifestError.
    """
    path = manifest_path(settings)
    if not os.path.exists(path):
        return None
    with open(path, encoding="utf-8") as fh:
        return StoreManifest.from_json_obj(json.load(fh))


def write_manifest(settings: StoreSettings, manifest: StoreManifest) -> None:
    """Replace manifest.json through a fsynced "<path>.tmp"."""
    makedirs(settings.root_dir, exist_ok=True)
    final_path = manifest_path(settings)
    tmp_path = final_path + ".tmp"
    with open_write(tmp_path) as fh:
        fh.write(json.dumps(manifest.to_json_obj(), indent=2).encode("utf-8"))
    rename_atomic(tmp_path, final_path)


def rebuild_manifest_from_fs(settings: StoreSettings) -> StoreManifest:
    """
    Recover a manifest from the parts under <root>/blocks.

    Each part is scanned for its row count and time range. Files outside a block=NNNNNN
    directory and empty parts are ignored.
    """
    manifest = new_manifest(settings.block_range_ms)
    for fpath in walk_parquet_files(blocks_root(settings)):
        block_id = parse_block_dir(os.path.basename(os.path.dirname(fpath)))
        if block_id is None:
            continue
        stats = (
            pl.scan_parquet(fpath)
            .select(
                pl.min("timestamp").alias("time_min"),
                pl.max("timestamp").alias("time_max"),
                pl.len().alias("n"),
            )
            .collect()
        )
        rows = int(stats["n"][0])
        if rows == 0:
            continue
        manifest.add_part(
            block_id,
            PartMeta(
                path=os.path.basename(fpath),
                rows=rows,
                bytes=os.path.getsize(fpath),
                time_min=int(stats["time_min"][0]),
                time_max=int(stats["time_max"][0]),
                created_at=_now(),
            ),
        )
    return manifest
