"""
Append-only part writer for the destination block store.

Overview
- Computes block partitioning (block = timestamp // StoreSettings.block_range_ms).
- Validates frames against the samples descriptor.
- Writes Parquet parts with atomic tmp → ready rename and embeds format metadata.
- Updates the in-memory manifest with per-part and per-block aggregates and persists it.

Notes
- Single-writer semantics (the store lock guarantees one process per directory).
- Called by Transaction.commit(); nothing here checks ordering, that is the head's job.
"""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime
from typing import Any

import polars as pl
import pyarrow.parquet as pq

from tsdbmig.config import StoreSettings

from .errors import StoreManifestError, StoreWriteError
from .fs import fsync_path, makedirs, remove_quietly, rename_atomic
from .manifest import PartMeta, StoreManifest, write_manifest
from .paths import block_dir, part_paths
from .schema import SAMPLES_DESC, validate_frame

FORMAT_VERSION = "1"


def _now_iso() -> str:
    """Return the current UTC time in ISO-8601 format."""
    return datetime.now(UTC).isoformat()


def _split_by_block(df: pl.DataFrame) -> dict[int, pl.DataFrame]:
    """Split a DataFrame into block_id -> subframe, ascending by block."""
    blocks = df.get_column("block").unique().sort().to_list()
    return {int(b): df.filter(pl.col("block") == b) for b in blocks}


def _time_stats(df: pl.DataFrame) -> tuple[int, int, int]:
    """
    Compute (time_min, time_max, row_count) for a subframe.
    """
    stats = df.select(
        [
            pl.min("timestamp").alias("time_min"),
            pl.max("timestamp").alias("time_max"),
            pl.len().alias("n"),
        ]
    )
    return int(stats["time_min"][0]), int(stats["time_max"][0]), int(stats["n"][0])


def write_samples(
    settings: StoreSettings,
    manifest: StoreManifest,
    df: pl.DataFrame,
) -> dict[str, Any]:
    """
    Persist a frame of samples as one part per touched block.

    Args:
        settings (StoreSettings): Store configuration (root_dir, block range, compression).
        manifest (StoreManifest): Manifest to update in place and persist.
        df (pl.DataFrame): Columns series_id, labels, timestamp, value. The block column is
            computed here.

    Returns:
        dict[str, Any]: Summary with keys:
            - parts (list[dict]): {"block_id","path","rows","bytes","time_min","time_max"}
            - rows (int): Total rows written
            - blocks (list[int]): Blocks touched

    Raises:
        StoreWriteError: Validation or Parquet write/fsync/atomic-rename failed.
        StoreManifestError: Manifest write failed.
    """
    if df.is_empty():
        return {"parts": [], "rows": 0, "blocks": []}

    df = df.with_columns(
        (pl.col("timestamp").cast(pl.Int64) // settings.block_range_ms).alias("block")
    )
    df = validate_frame(df, SAMPLES_DESC)

    parts_summary: list[dict[str, Any]] = []
    total_rows = 0
    by_block = _split_by_block(df)

    for block_id, df_b in by_block.items():
        makedirs(block_dir(settings, block_id), exist_ok=True)
        ppaths = part_paths(settings, block_id, uuid.uuid4().hex)

        try:
            arrow_table = df_b.to_arrow()
            meta = dict(arrow_table.schema.metadata or {})
            meta.update(
                {
                    b"tsdbmig_format_version": FORMAT_VERSION.encode(),
                    b"tsdbmig_block_id": str(block_id).encode(),
                    b"tsdbmig_block_range_ms": str(settings.block_range_ms).encode(),
                }
            )
            arrow_table = arrow_table.replace_schema_metadata(meta)
            pq.write_table(
                arrow_table,
                ppaths.tmp_path,
                compression=settings.compression,
                row_group_size=settings.row_group_size,
            )
            fsync_path(ppaths.tmp_path)
            rename_atomic(ppaths.tmp_path, ppaths.final_path)
        except Exception as exc:
            if os.path.exists(ppaths.tmp_path):
                remove_quietly(ppaths.tmp_path)
            raise StoreWriteError(f"failed to write parquet part for block {block_id}: {exc}") from exc

        tmin, tmax, nrows = _time_stats(df_b)
        total_rows += nrows
        nbytes = int(os.path.getsize(ppaths.final_path))
        manifest.add_part(
            block_id,
            PartMeta(
                path=os.path.basename(ppaths.final_path),
                rows=nrows,
                bytes=nbytes,
                time_min=tmin,
                time_max=tmax,
                created_at=_now_iso(),
            ),
        )
        parts_summary.append(
            {
                "block_id": block_id,
                "path": ppaths.final_path,
                "rows": nrows,
                "bytes": nbytes,
                "time_min": tmin,
                "time_max": tmax,
            }
        )

    try:
        write_manifest(settings, manifest)
    except OSError as exc:
        raise StoreManifestError(f"failed to write manifest: {exc}") from exc

    return {"parts": parts_summary, "rows": total_rows, "blocks": sorted(by_block)}
