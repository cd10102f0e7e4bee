"""
Path helpers for the legacy storage layout.

Layout (read-only input)
- <input_dir>/heads.db
- <input_dir>/<first 2 hex chars of fingerprint>/<remaining 14 hex chars>.db

Notes
- Fingerprints are rendered as 16 zero-padded lower-case hex characters.
- This module focuses solely on path construction; it never touches the filesystem.
"""

from __future__ import annotations

import os

from tsdbmig.core.constants import HEADS_FILE_NAME, SERIES_DIR_NAME_LEN, SERIES_FILE_SUFFIX
from tsdbmig.core.labels import format_fingerprint


def heads_path(input_dir: str) -> str:
    """
    Path to the heads (index) file.

    Returns:
        str: Path "<input_dir>/heads.db".
    """
    return os.path.join(input_dir, HEADS_FILE_NAME)


def series_dir(input_dir: str, fingerprint: int) -> str:
    """Directory holding the chunk file of a fingerprint ("<input_dir>/<fp[:2]>")."""
    return os.path.join(input_dir, format_fingerprint(fingerprint)[:SERIES_DIR_NAME_LEN])


def chunk_file_path(input_dir: str, fingerprint: int) -> str:
    """
    Path to the chunk file of a series.

    Args:
        input_dir (str): Legacy storage directory.
        fingerprint (int): Series fingerprint.

    Returns:
        str: Path "<input_dir>/<fp[:2]>/<fp[2:]>.db".

    Examples:
        >>> chunk_file_path("data", 0x1A2B3C4D5E6F7081)
        'data/1a/2b3c4d5e6f7081.db'
    """
    fp = format_fingerprint(fingerprint)
    return os.path.join(series_dir(input_dir, fingerprint), fp[SERIES_DIR_NAME_LEN:] + SERIES_FILE_SUFFIX)
