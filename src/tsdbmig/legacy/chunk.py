"""
Decoder for legacy chunk records.

A chunk record is CHUNK_LEN_WITH_HEADER bytes: a 1 byte encoding tag, the informational
first/last timestamps (int64 little-endian, not re-validated against the payload) and a
fixed CHUNK_LEN payload. decode_chunk() turns one record into a typed Chunk whose samples
can be iterated forward-only; iterating again starts a fresh pass over the decoded buffer.

Encodings
- 0 delta: per-sample unsigned time delta + value delta against a base sample.
- 1 double-delta: per-sample signed deviation from base + i * base_delta.
- 2 varbit: recognised, not decodable here (raises CorruptChunk).

Widths of 8 bytes store absolute times and float values instead of deltas. Float values use
4 or 8 bytes; integer values use 0, 1, 2 or 4 bytes. Everything is little-endian.
"""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

from tsdbmig.core.constants import (
    CHUNK_HEADER_FIRST_TIME_OFFSET,
    CHUNK_HEADER_LAST_TIME_OFFSET,
    CHUNK_HEADER_LEN,
    CHUNK_HEADER_TYPE_OFFSET,
    CHUNK_LEN,
    CHUNK_LEN_WITH_HEADER,
)
from tsdbmig.core.errors import CorruptChunk
from tsdbmig.core.model import Sample

__all__ = [
    "Encoding",
    "Chunk",
    "DeltaChunk",
    "DoubleDeltaChunk",
    "decode_chunk",
    "decode_payload",
]


class Encoding(IntEnum):
    DELTA = 0
    DOUBLE_DELTA = 1
    VARBIT = 2


_TIME_WIDTHS = (1, 2, 4, 8)
_VALUE_WIDTHS = (0, 1, 2, 4, 8)

_UNSIGNED = {1: "<B", 2: "<H", 4: "<I"}
_SIGNED = {1: "<b", 2: "<h", 4: "<i"}

_I64 = struct.Struct("<q")
_F64 = struct.Struct("<d")
_F32 = struct.Struct("<f")
_U16 = struct.Struct("<H")

DELTA_HEADER_LEN = 21
DOUBLE_DELTA_HEADER_LEN = 37
DOUBLE_DELTA_HEADER_MIN_LEN = 21


@dataclass(frozen=True)
class _Layout:
    buf_len: int
    time_bytes: int
    value_bytes: int
    is_int: bool


def _read_layout(payload: bytes, header_len: int, min_len: int) -> _Layout:
    buf_len = _U16.unpack_from(payload, 0)[0]
    time_bytes = payload[2]
    value_bytes = payload[3]
    is_int = payload[4] != 0
    if buf_len < min_len or buf_len > CHUNK_LEN:
        raise CorruptChunk(f"buffer length {buf_len} outside [{min_len}, {CHUNK_LEN}]")
    if time_bytes not in _TIME_WIDTHS:
        raise CorruptChunk(f"invalid time width {time_bytes}")
    if value_bytes not in _VALUE_WIDTHS:
        raise CorruptChunk(f"invalid value width {value_bytes}")
    if not is_int and value_bytes not in (4, 8):
        raise CorruptChunk(f"invalid float value width {value_bytes}")
    if is_int and value_bytes == 8:
        raise CorruptChunk("invalid integer value width 8")
    if buf_len > header_len and (buf_len - header_len) % (time_bytes + value_bytes):
        raise CorruptChunk(
            f"sample area of {buf_len - header_len} bytes is not a multiple of "
            f"{time_bytes + value_bytes}"
        )
    return _Layout(buf_len, time_bytes, value_bytes, is_int)


class Chunk(ABC):
    """
    A decoded chunk. Iterating yields Sample objects in stored order.

    Attributes:
        encoding (Encoding): Payload encoding.
        first_time (int): Header first time (informational).
        last_time (int): Header last time (informational).
    """

    encoding: Encoding

    def __init__(self, payload: bytes, first_time: int = 0, last_time: int = 0) -> None:
        self._payload = payload
        self.first_time = first_time
        self.last_time = last_time

    @abstractmethod
    def __len__(self) -> int: ...

    @abstractmethod
    def __iter__(self) -> Iterator[Sample]: ...


class DeltaChunk(Chunk):
    encoding = Encoding.DELTA

    def __init__(self, payload: bytes, first_time: int = 0, last_time: int = 0) -> None:
        super().__init__(payload, first_time, last_time)
        self._layout = _read_layout(payload, DELTA_HEADER_LEN, DELTA_HEADER_LEN)
        self._base_time = _I64.unpack_from(payload, 5)[0]
        self._base_value = _F64.unpack_from(payload, 13)[0]

    def __len__(self) -> int:
        lay = self._layout
        return (lay.buf_len - DELTA_HEADER_LEN) // (lay.time_bytes + lay.value_bytes)

    def __iter__(self) -> Iterator[Sample]:
        lay = self._layout
        buf = self._payload
        tb, vb = lay.time_bytes, lay.value_bytes
        t_fmt = _UNSIGNED[tb]
        stride = tb + vb
        offset = DELTA_HEADER_LEN
        for _ in range(len(self)):
            if tb == 8:
                t = _I64.unpack_from(buf, offset)[0]
            else:
                t = self._base_time + struct.unpack_from(t_fmt, buf, offset)[0]
            voff = offset + tb
            if lay.is_int:
                if vb == 0:
                    v = self._base_value
                else:
                    v = self._base_value + struct.unpack_from(_SIGNED[vb], buf, voff)[0]
            elif vb == 4:
                v = self._base_value + _F32.unpack_from(buf, voff)[0]
            else:
                v = _F64.unpack_from(buf, voff)[0]
            yield Sample(t, float(v))
            offset += stride


class DoubleDeltaChunk(Chunk):
    encoding = Encoding.DOUBLE_DELTA

    def __init__(self, payload: bytes, first_time: int = 0, last_time: int = 0) -> None:
        super().__init__(payload, first_time, last_time)
        self._layout = _read_layout(payload, DOUBLE_DELTA_HEADER_LEN, 0)
        self._base_time = _I64.unpack_from(payload, 5)[0]
        self._base_value = _F64.unpack_from(payload, 13)[0]
        self._base_time_delta = _I64.unpack_from(payload, 21)[0]
        self._base_value_delta = _F64.unpack_from(payload, 29)[0]

    def __len__(self) -> int:
        lay = self._layout
        if lay.buf_len < DOUBLE_DELTA_HEADER_MIN_LEN:
            return 0
        if lay.buf_len < DOUBLE_DELTA_HEADER_LEN:
            return 1
        return 2 + (lay.buf_len - DOUBLE_DELTA_HEADER_LEN) // (lay.time_bytes + lay.value_bytes)

    def __iter__(self) -> Iterator[Sample]:
        n = len(self)
        if n == 0:
            return
        yield Sample(self._base_time, float(self._base_value))
        if n == 1:
            return
        yield Sample(
            self._base_time + self._base_time_delta,
            float(self._base_value + self._base_value_delta),
        )
        lay = self._layout
        buf = self._payload
        tb, vb = lay.time_bytes, lay.value_bytes
        stride = tb + vb
        offset = DOUBLE_DELTA_HEADER_LEN
        for i in range(2, n):
            if tb == 8:
                t = _I64.unpack_from(buf, offset)[0]
            else:
                dd = struct.unpack_from(_SIGNED[tb], buf, offset)[0]
                t = self._base_time + i * self._base_time_delta + dd
            voff = offset + tb
            if lay.is_int:
                v = self._base_value + i * self._base_value_delta
                if vb:
                    v += struct.unpack_from(_SIGNED[vb], buf, voff)[0]
            elif vb == 4:
                v = (
                    self._base_value
                    + i * self._base_value_delta
                    + _F32.unpack_from(buf, voff)[0]
                )
            else:
                v = _F64.unpack_from(buf, voff)[0]
            yield Sample(t, float(v))
            offset += stride


_CHUNK_TYPES: dict[int, type[Chunk]] = {
    Encoding.DELTA: DeltaChunk,
    Encoding.DOUBLE_DELTA: DoubleDeltaChunk,
}


def decode_payload(encoding: int, payload: bytes, first_time: int = 0, last_time: int = 0) -> Chunk:
    """
    Decode a bare CHUNK_LEN payload for a known encoding tag.

    Raises:
        CorruptChunk: Short payload, unknown/unsupported encoding or malformed header.
    """
    if len(payload) < CHUNK_LEN:
        raise CorruptChunk(f"short chunk payload: {len(payload)} < {CHUNK_LEN} bytes")
    if encoding == Encoding.VARBIT:
        raise CorruptChunk("unsupported encoding: varbit")
    chunk_type = _CHUNK_TYPES.get(encoding)
    if chunk_type is None:
        raise CorruptChunk(f"unknown chunk encoding {encoding}")
    try:
        return chunk_type(bytes(payload[:CHUNK_LEN]), first_time, last_time)
    except struct.error as exc:  # pragma: no cover - guarded by the length check
        raise CorruptChunk(f"failed to unmarshal chunk: {exc}") from exc


def decode_chunk(record: bytes) -> Chunk:
    """
    Decode one fixed-size chunk record (header + payload).

    Args:
        record (bytes): Exactly CHUNK_LEN_WITH_HEADER bytes; extra bytes are ignored.

    Returns:
        Chunk: Typed chunk; iterate it for samples.

    Raises:
        CorruptChunk: If the buffer is short, the tag is unrecognized or the payload
            fails to unmarshal.
    """
    if len(record) < CHUNK_LEN_WITH_HEADER:
        raise CorruptChunk(f"short chunk record: {len(record)} < {CHUNK_LEN_WITH_HEADER} bytes")
    first_time = _I64.unpack_from(record, CHUNK_HEADER_FIRST_TIME_OFFSET)[0]
    last_time = _I64.unpack_from(record, CHUNK_HEADER_LAST_TIME_OFFSET)[0]
    return decode_payload(
        record[CHUNK_HEADER_TYPE_OFFSET],
        record[CHUNK_HEADER_LEN:CHUNK_LEN_WITH_HEADER],
        first_time,
        last_time,
    )
