"""
Path and layout helpers for tsdbmig.store.

Overview (file protocol baseline)
- <root>/blocks/block=000123/part-<UUID>.parquet
- <root>/manifest.json
- <root>/lock

Notes
- Block ids are computed as timestamp // StoreSettings.block_range_ms.
- This module focuses solely on path construction and directory layout.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

from tsdbmig.config import StoreSettings

_BLOCK_PREFIX: Final[str] = "block="
_MANIFEST_NAME: Final[str] = "manifest.json"
_LOCK_NAME: Final[str] = "lock"


def block_id_for_time(timestamp: int, block_range_ms: int) -> int:
    """
    Compute the block id from a timestamp using floor division.

    Args:
        timestamp (int): Sample time in ms (>= 0).
        block_range_ms (int): Block width in ms (>= 1).

    Returns:
        int: Non-negative block id.

    Raises:
        ValueError: If block_range_ms < 1 or timestamp < 0.
    """
    if block_range_ms <= 0:
        raise ValueError("block_range_ms must be >= 1")
    if timestamp < 0:
        raise ValueError("timestamp must be >= 0")
    return timestamp // block_range_ms


def format_block_dir(block_id: int) -> str:
    """
    Format a block directory name as 'block=000123'.

    Raises:
        ValueError: If block_id < 0.
    """
    if block_id < 0:
        raise ValueError("block_id must be >= 0")
    return f"{_BLOCK_PREFIX}{block_id:06d}"


def parse_block_dir(name: str) -> int | None:
    """Inverse of format_block_dir; None if name is not a block directory."""
    if not name.startswith(_BLOCK_PREFIX):
        return None
    try:
        return int(name[len(_BLOCK_PREFIX) :])
    except ValueError:
        return None


def blocks_root(settings: StoreSettings) -> str:
    """Path "<root>/blocks"."""
    return os.path.join(settings.root_dir, "blocks")


def block_dir(settings: StoreSettings, block_id: int) -> str:
    """Path "<root>/blocks/block=000123"."""
    return os.path.join(blocks_root(settings), format_block_dir(block_id))


def manifest_path(settings: StoreSettings) -> str:
    """Path "<root>/manifest.json"."""
    return os.path.join(settings.root_dir, _MANIFEST_NAME)


def lock_path(settings: StoreSettings) -> str:
    """Path "<root>/lock"."""
    return os.path.join(settings.root_dir, _LOCK_NAME)


@dataclass(slots=True, frozen=True)
class PartPaths:
    """
    Container for a part's temporary and final file paths.

    Attributes:
        tmp_path (str): Temporary file path used for initial write ("*.parquet.tmp").
        final_path (str): Final file path after atomic rename ("*.parquet").
    """

    tmp_path: str
    final_path: str


def part_paths(settings: StoreSettings, block_id: int, uuid_str: str) -> PartPaths:
    """
    Compute temporary and final part file paths for a given block and UUID.

    Returns:
        PartPaths: Paths for .parquet.tmp and final .parquet files.
    """
    base_dir = block_dir(settings, block_id)
    base_name = f"part-{uuid_str}.parquet"
    return PartPaths(
        tmp_path=os.path.join(base_dir, base_name + ".tmp"),
        final_path=os.path.join(base_dir, base_name),
    )
