"""
Series index loader for the legacy heads file.

load_series_map() scans <input_dir>/heads.db and returns a mapping of fingerprint to
SeriesRecord. The loader never opens chunk files: series time bounds come from the index
entries themselves (persisted chunk descs carry their time range; head chunks that only live
in the heads file are decoded in place).

File layout (varints are zig-zag signed LEB128, u64 is big-endian)
- magic "PrometheusHeads" | varint version (2) | u64 series count
- per series: u8 flags | u64 fingerprint | varint label count, each label as two
  length-prefixed utf-8 strings | varint persist_watermark | varint mod_time |
  varint chunk_descs_offset | varint saved_first_time | varint chunk desc count |
  per desc: (varint first_time, varint last_time) below the persist watermark,
  otherwise u8 encoding + CHUNK_LEN payload bytes.

Failure policy
- Missing file, bad magic/version or truncation: IndexUnreadable (fatal).
- A structurally complete entry that fails validation is skipped with a warning.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from typing import BinaryIO

from pydantic import ValidationError

from tsdbmig.core.constants import CHUNK_LEN, HEADS_FORMAT_VERSION, HEADS_MAGIC
from tsdbmig.core.errors import CorruptChunk, IndexUnreadable
from tsdbmig.core.labels import format_fingerprint
from tsdbmig.core.model import SeriesRecord

from .chunk import decode_payload
from .paths import heads_path

logger = logging.getLogger(__name__)

_U64_BE = struct.Struct(">Q")
_RECORD_HEADER = struct.Struct("<Bqq")

# Upper bound for a single length prefix; anything larger means the framing is lost.
_MAX_FIELD_LEN = 1 << 24


class _Truncated(Exception):
    pass


class _HeadsReader:
    """Sequential primitive reader over an open heads file."""

    def __init__(self, fh: BinaryIO) -> None:
        self._fh = fh
        self.offset = 0

    def read_exact(self, n: int) -> bytes:
        data = self._fh.read(n)
        if len(data) != n:
            raise _Truncated(f"wanted {n} bytes at offset {self.offset}, got {len(data)}")
        self.offset += n
        return data

    def read_byte(self) -> int:
        return self.read_exact(1)[0]

    def read_u64(self) -> int:
        return _U64_BE.unpack(self.read_exact(8))[0]

    def read_varint(self) -> int:
        shift = 0
        ux = 0
        while True:
            b = self.read_byte()
            ux |= (b & 0x7F) << shift
            if b < 0x80:
                break
            shift += 7
            if shift > 63:
                raise _Truncated(f"varint overflow at offset {self.offset}")
        return (ux >> 1) ^ -(ux & 1)

    def read_length(self) -> int:
        n = self.read_varint()
        if n < 0 or n > _MAX_FIELD_LEN:
            raise _Truncated(f"implausible length {n} at offset {self.offset}")
        return n

    def read_bytes(self) -> bytes:
        return self.read_exact(self.read_length())


@dataclass
class _RawEntry:
    flags: int
    fingerprint: int
    labels: list[tuple[bytes, bytes]] = field(default_factory=list)
    persist_watermark: int = 0
    mod_time: int = 0
    chunk_descs_offset: int = 0
    saved_first_time: int = 0
    persisted: list[tuple[int, int]] = field(default_factory=list)
    head: list[tuple[int, bytes]] = field(default_factory=list)


def _read_entry(r: _HeadsReader) -> _RawEntry:
    entry = _RawEntry(flags=r.read_byte(), fingerprint=r.read_u64())
    for _ in range(r.read_length()):
        entry.labels.append((r.read_bytes(), r.read_bytes()))
    entry.persist_watermark = r.read_varint()
    entry.mod_time = r.read_varint()
    entry.chunk_descs_offset = r.read_varint()
    entry.saved_first_time = r.read_varint()
    for i in range(r.read_length()):
        if i < entry.persist_watermark:
            entry.persisted.append((r.read_varint(), r.read_varint()))
        else:
            encoding = r.read_byte()
            entry.head.append((encoding, r.read_exact(CHUNK_LEN)))
    return entry


def _build_record(entry: _RawEntry) -> SeriesRecord:
    """
    Validate a raw entry and turn it into a SeriesRecord.

    Raises:
        ValueError | ValidationError | CorruptChunk: The entry is malformed.
    """
    if entry.persist_watermark < 0 or entry.persist_watermark > len(entry.persisted) + len(
        entry.head
    ):
        raise ValueError(f"persist watermark {entry.persist_watermark} out of range")
    # -1: chunks exist on disk but their offset is unknown.
    if entry.chunk_descs_offset < -1:
        raise ValueError(f"negative chunk desc offset {entry.chunk_descs_offset}")

    bounds: list[tuple[int, int]] = list(entry.persisted)
    head_records: list[bytes] = []
    for encoding, payload in entry.head:
        samples = list(decode_payload(encoding, payload))
        if not samples:
            continue
        first, last = samples[0].timestamp, samples[-1].timestamp
        bounds.append((first, last))
        head_records.append(_RECORD_HEADER.pack(encoding, first, last) + payload)
    if not bounds:
        raise ValueError("series has no chunk descs")

    first_time = entry.saved_first_time if entry.chunk_descs_offset != 0 else bounds[0][0]
    return SeriesRecord(
        fingerprint=entry.fingerprint,
        metric=[(k.decode("utf-8"), v.decode("utf-8")) for k, v in entry.labels],
        first_time=first_time,
        last_time=bounds[-1][1],
        persisted_chunks=max(entry.chunk_descs_offset, 0) + len(entry.persisted),
        head_chunks=tuple(head_records),
    )


def load_series_map(input_dir: str) -> dict[int, SeriesRecord]:
    """
    Load every series listed in the heads file.

    Args:
        input_dir (str): Legacy storage directory.

    Returns:
        dict[int, SeriesRecord]: Fingerprint -> series record. Malformed entries are omitted.

    Raises:
        IndexUnreadable: If the heads file is missing, has the wrong magic/version, or is
            truncated.

    Notes:
        - Duplicate fingerprints keep the first entry and log a warning.
        - Bounds may be stale relative to the chunk files; downstream stages tolerate that.
    """
    path = heads_path(input_dir)
    logger.info("Loading series from %s", path)
    try:
        fh = open(path, "rb")
    except OSError as exc:
        raise IndexUnreadable(f"cannot open heads file {path}: {exc}") from exc

    series: dict[int, SeriesRecord] = {}
    skipped = 0
    with fh:
        r = _HeadsReader(fh)
        try:
            magic = r.read_exact(len(HEADS_MAGIC))
            if magic != HEADS_MAGIC:
                raise IndexUnreadable(f"{path}: bad magic {magic!r}")
            version = r.read_varint()
            if version != HEADS_FORMAT_VERSION:
                raise IndexUnreadable(f"{path}: unsupported heads format version {version}")
            count = r.read_u64()
            for i in range(count):
                entry = _read_entry(r)
                fp = format_fingerprint(entry.fingerprint)
                try:
                    record = _build_record(entry)
                except (ValidationError, CorruptChunk, UnicodeDecodeError, ValueError) as exc:
                    skipped += 1
                    logger.warning("Skipping malformed series %s (entry %d): %s", fp, i, exc)
                    continue
                if record.fingerprint in series:
                    skipped += 1
                    logger.warning("Skipping duplicate series %s (entry %d)", fp, i)
                    continue
                series[record.fingerprint] = record
        except _Truncated as exc:
            raise IndexUnreadable(f"{path}: truncated heads file: {exc}") from exc

    logger.info("%d series loaded, %d skipped.", len(series), skipped)
    return series
