"""
Legacy format constants and migration defaults.

Defines the fixed on-disk geometry of the legacy chunk and heads files together with the
defaults consumed by tsdbmig.config. This module is zero-IO and uses only the Python
standard library.

Notes:
    - CHUNK_LEN_WITH_HEADER is the record size of every chunk file; readers must treat it
      as a constant and never infer it per record.
    - Changing defaults should be done here; MigrateSettings simply consumes them.
"""

from __future__ import annotations

__all__ = [
    "CHUNK_LEN",
    "CHUNK_HEADER_LEN",
    "CHUNK_HEADER_TYPE_OFFSET",
    "CHUNK_HEADER_FIRST_TIME_OFFSET",
    "CHUNK_HEADER_LAST_TIME_OFFSET",
    "CHUNK_LEN_WITH_HEADER",
    "HEADS_FILE_NAME",
    "HEADS_MAGIC",
    "HEADS_FORMAT_VERSION",
    "SERIES_DIR_NAME_LEN",
    "SERIES_FILE_SUFFIX",
    "FINGERPRINT_HEX_LEN",
    "DEFAULT_RETENTION_MS",
    "DEFAULT_FLUSH_INTERVAL",
    "DEFAULT_BUFFER_SIZE",
    "DEFAULT_BLOCK_RANGE_MS",
    "ROW_GROUP_SIZE",
    "COMPRESSION",
]

# Payload bytes of one chunk.
CHUNK_LEN: int = 1024

# 1 byte encoding tag + 8 byte first time + 8 byte last time.
CHUNK_HEADER_LEN: int = 17
CHUNK_HEADER_TYPE_OFFSET: int = 0
CHUNK_HEADER_FIRST_TIME_OFFSET: int = 1
CHUNK_HEADER_LAST_TIME_OFFSET: int = 9
CHUNK_LEN_WITH_HEADER: int = CHUNK_LEN + CHUNK_HEADER_LEN

HEADS_FILE_NAME: str = "heads.db"
HEADS_MAGIC: bytes = b"PrometheusHeads"
HEADS_FORMAT_VERSION: int = 2

SERIES_DIR_NAME_LEN: int = 2  # How many hex chars of the fingerprint go in the dir name.
SERIES_FILE_SUFFIX: str = ".db"
FINGERPRINT_HEX_LEN: int = 16

DEFAULT_RETENTION_MS: int = 15 * 24 * 60 * 60 * 1000
DEFAULT_FLUSH_INTERVAL: int = 10_000_000
DEFAULT_BUFFER_SIZE: int = 10_000

# Destination block width (2h), also the out-of-bounds window of the head.
DEFAULT_BLOCK_RANGE_MS: int = 2 * 60 * 60 * 1000

# Target row group size for destination Parquet parts.
ROW_GROUP_SIZE: int = 128 * 1024

# Default compression codec for destination Parquet parts.
COMPRESSION: str = "zstd"
