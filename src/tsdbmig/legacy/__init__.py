"""
tsdbmig.legacy: read-only access to the legacy per-series chunked storage.

## Public API
- decode_chunk: one fixed-size record -> typed, iterable Chunk (raises CorruptChunk).
- load_series_map: heads.db -> {fingerprint: SeriesRecord} (raises IndexUnreadable).
- open_sample_reader: lazy ascending-time SampleReader over one series.

## Notes
- Never writes to the input directory.
- Record size is the CHUNK_LEN_WITH_HEADER constant, never inferred per record.
"""

from __future__ import annotations

from .chunk import Chunk, Encoding, decode_chunk
from .heads import load_series_map
from .reader import ChunkReader, SampleReader, open_sample_reader

__all__ = [
    "Chunk",
    "Encoding",
    "decode_chunk",
    "load_series_map",
    "ChunkReader",
    "SampleReader",
    "open_sample_reader",
]
