"""
Read utilities for the destination block store.

Overview
- scan(): Polars LazyFrame over the parts selected by manifest pruning.
- read(): Collects a DataFrame from scan(), with an optional pre-collect row cap.
- series_last_samples(): newest (timestamp, value) per series, used to restore the head's
  ordering state when an existing store is reopened.

Pruning semantics
- Block pruning uses time_min/time_max overlap checks from the manifest.
- Row-level timestamp filters are applied explicitly after pruning.
"""

from __future__ import annotations

import os
from typing import Any

import polars as pl

from tsdbmig.config import StoreSettings

from .manifest import StoreManifest
from .paths import block_dir

_COLUMNS = ["series_id", "labels", "timestamp", "value"]


def _paths_from_manifest(
    settings: StoreSettings,
    manifest: StoreManifest,
    where: dict[str, Any] | None,
) -> list[str]:
    time_min = where.get("time_min") if where else None
    time_max = where.get("time_max") if where else None
    selected: list[str] = []
    for key in sorted(manifest.blocks):
        bm = manifest.blocks[key]
        if time_min is not None and bm.time_max < int(time_min):
            continue
        if time_max is not None and bm.time_min > int(time_max):
            continue
        bdir = block_dir(settings, bm.block_id)
        for part in bm.parts:
            selected.append(os.path.join(bdir, part.path))
    return selected


def scan(
    settings: StoreSettings,
    manifest: StoreManifest,
    where: dict[str, Any] | None = None,
) -> pl.LazyFrame:
    """
    Create a LazyFrame scanning the selected parts.

    Args:
        settings (StoreSettings): Store configuration used to resolve paths.
        manifest (StoreManifest): Current manifest.
        where (dict[str, Any] | None): Optional {"time_min": int | None, "time_max": int | None}
            filter, both bounds inclusive.

    Returns:
        pl.LazyFrame: Columns series_id, labels, timestamp, value. Empty when nothing matches.
    """
    paths = _paths_from_manifest(settings, manifest, where)
    if not paths:
        return pl.LazyFrame(
            schema={"series_id": pl.Utf8, "labels": pl.Utf8, "timestamp": pl.Int64, "value": pl.Float64}
        )

    lf = pl.scan_parquet(paths).select(_COLUMNS)
    if where:
        if where.get("time_min") is not None:
            lf = lf.filter(pl.col("timestamp") >= int(where["time_min"]))
        if where.get("time_max") is not None:
            lf = lf.filter(pl.col("timestamp") <= int(where["time_max"]))
    return lf


def read(
    settings: StoreSettings,
    manifest: StoreManifest,
    where: dict[str, Any] | None = None,
    limit: int | None = None,
) -> pl.DataFrame:
    """
    Collect a DataFrame from scan(), sorted by (timestamp, series_id).

    Args:
        limit (int | None): Optional row cap applied before collect().
    """
    lf = scan(settings, manifest, where=where).sort(["timestamp", "series_id"])
    if limit is not None:
        lf = lf.limit(int(limit))
    return lf.collect()


def series_last_samples(
    settings: StoreSettings, manifest: StoreManifest
) -> dict[str, tuple[int, float]]:
    """
    Newest sample per series across all parts.

    Returns:
        dict[str, tuple[int, float]]: series_id -> (timestamp, value).
    """
    if not manifest.blocks:
        return {}
    df = (
        scan(settings, manifest)
        .group_by("series_id")
        .agg(
            [
                pl.col("timestamp").max().alias("timestamp"),
                pl.col("value").sort_by("timestamp").last().alias("value"),
            ]
        )
        .collect()
    )
    return {
        sid: (int(ts), float(v))
        for sid, ts, v in zip(df["series_id"], df["timestamp"], df["value"], strict=True)
    }
