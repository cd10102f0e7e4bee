"""
Sample table descriptor and frame validation for tsdbmig.store.

Checks performed
- Required columns present.
- No columns outside the descriptor.
- Scalar dtypes ("i64","f64","str") are safely cast when they differ.
"""

from __future__ import annotations

from dataclasses import dataclass

import polars as pl

from .errors import StoreWriteError

_DTYPE_MAP: dict[str, object] = {
    "i64": pl.Int64,
    "f64": pl.Float64,
    "str": pl.Utf8,
}


@dataclass(frozen=True)
class TableDescriptor:
    """
    Frozen descriptor for a persisted table.

    Attributes:
        name (str): Table name.
        columns (dict[str, str]): column -> dtype where dtype ∈ {"i64","f64","str"}.
        partitioning (list[str]): Partition columns.
    """

    name: str
    columns: dict[str, str]
    partitioning: list[str]


SAMPLES_DESC = TableDescriptor(
    name="samples",
    columns={
        "block": "i64",
        "series_id": "str",
        "labels": "str",
        "timestamp": "i64",
        "value": "f64",
    },
    partitioning=["block"],
)


def validate_frame(df: pl.DataFrame, desc: TableDescriptor = SAMPLES_DESC) -> pl.DataFrame:
    """
    Validate a frame against a descriptor, casting scalar columns where needed.

    Returns:
        pl.DataFrame: Frame with columns in descriptor order and canonical dtypes.

    Raises:
        StoreWriteError: Missing or unexpected columns, or a failed cast.
    """
    missing = [c for c in desc.columns if c not in df.columns]
    if missing:
        raise StoreWriteError(f"missing required columns: {missing!r}")
    extras = [c for c in df.columns if c not in desc.columns]
    if extras:
        raise StoreWriteError(f"unexpected columns present: {extras!r}")
    casts = []
    for col, dtype in desc.columns.items():
        target = _DTYPE_MAP[dtype]
        if df.schema[col] != target:
            casts.append(pl.col(col).cast(target, strict=True))  # type: ignore[arg-type]
    if casts:
        try:
            df = df.with_columns(casts)
        except pl.exceptions.PolarsError as exc:
            raise StoreWriteError(f"failed to cast sample frame: {exc}") from exc
    return df.select(list(desc.columns))
