from __future__ import annotations

import struct
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from tsdbmig.core.constants import CHUNK_LEN, HEADS_FORMAT_VERSION, HEADS_MAGIC
from tsdbmig.core.labels import format_fingerprint

SampleTuple = tuple[int, float]

_UNSIGNED = {1: "<B", 2: "<H", 4: "<I"}
_SIGNED = {1: "<b", 2: "<h", 4: "<i"}


def encode_varint(x: int) -> bytes:
    ux = x * 2 if x >= 0 else -x * 2 - 1
    out = bytearray()
    while ux >= 0x80:
        out.append((ux & 0x7F) | 0x80)
        ux >>= 7
    out.append(ux)
    return bytes(out)


def _encode_string(s: str) -> bytes:
    raw = s.encode("utf-8")
    return encode_varint(len(raw)) + raw


def delta_payload(
    samples: Sequence[SampleTuple],
    *,
    time_bytes: int = 4,
    value_bytes: int = 8,
    is_int: bool = False,
) -> bytes:
    buf = bytearray(CHUNK_LEN)
    base_t, base_v = samples[0]
    stride = time_bytes + value_bytes
    struct.pack_into("<HBBB", buf, 0, 21 + len(samples) * stride, time_bytes, value_bytes, int(is_int))
    struct.pack_into("<q", buf, 5, base_t)
    struct.pack_into("<d", buf, 13, base_v)
    off = 21
    for t, v in samples:
        if time_bytes == 8:
            struct.pack_into("<q", buf, off, t)
        else:
            struct.pack_into(_UNSIGNED[time_bytes], buf, off, t - base_t)
        voff = off + time_bytes
        if is_int:
            if value_bytes:
                struct.pack_into(_SIGNED[value_bytes] if value_bytes < 8 else "<q", buf, voff, int(v - base_v))
        elif value_bytes == 4:
            struct.pack_into("<f", buf, voff, v - base_v)
        else:
            struct.pack_into("<d", buf, voff, v)
        off += stride
    return bytes(buf)


def double_delta_payload(samples: Sequence[SampleTuple], *, time_bytes: int = 8) -> bytes:
    """Float double-delta payload; values are stored as absolute float64 from sample 2 on."""
    buf = bytearray(CHUNK_LEN)
    n = len(samples)
    base_t, base_v = samples[0]
    dt, dv = (samples[1][0] - base_t, samples[1][1] - base_v) if n > 1 else (0, 0.0)
    stride = time_bytes + 8
    buf_len = 21 if n == 1 else 37 + (n - 2) * stride
    struct.pack_into("<HBBB", buf, 0, buf_len, time_bytes, 8, 0)
    struct.pack_into("<qdqd", buf, 5, base_t, base_v, dt, dv)
    off = 37
    for i in range(2, n):
        t, v = samples[i]
        if time_bytes == 8:
            struct.pack_into("<q", buf, off, t)
        else:
            struct.pack_into(_SIGNED[time_bytes], buf, off, t - (base_t + i * dt))
        struct.pack_into("<d", buf, off + time_bytes, v)
        off += stride
    return bytes(buf)


def chunk_record(encoding: int, payload: bytes, first: int = 0, last: int = 0) -> bytes:
    return struct.pack("<Bqq", encoding, first, last) + payload


def _payload(encoding: str, samples: Sequence[SampleTuple]) -> tuple[int, bytes]:
    if encoding == "delta":
        return 0, delta_payload(samples)
    if encoding == "double_delta":
        return 1, double_delta_payload(samples)
    raise ValueError(encoding)


class LegacyStoreBuilder:
    """Writes a legacy storage directory: heads.db plus per-series chunk files."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.entries: list[bytes] = []

    def chunk_path(self, fp: int) -> Path:
        s = format_fingerprint(fp)
        return self.root / s[:2] / f"{s[2:]}.db"

    def add_series(
        self,
        fp: int,
        metric: dict[str, str] | Sequence[tuple[str, str]],
        samples: Sequence[SampleTuple],
        *,
        chunk_size: int = 50,
        head_chunks: int = 0,
        encoding: str = "delta",
        index_first: int | None = None,
        index_last: int | None = None,
        write_file: bool = True,
        chunk_descs_offset: int = 0,
        saved_first_time: int = 0,
    ) -> None:
        """
        Add one series. The last `head_chunks` chunks live only in heads.db, the rest are
        written to the series' chunk file. index_first/index_last override the bounds the
        index reports. chunk_descs_offset and saved_first_time are written as given.
        """
        chunks = [list(samples[i : i + chunk_size]) for i in range(0, len(samples), chunk_size)]
        persisted = chunks[: len(chunks) - head_chunks]
        head = chunks[len(chunks) - head_chunks :] if head_chunks else []

        if persisted and write_file:
            path = self.chunk_path(fp)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "ab") as fh:
                for c in persisted:
                    tag, payload = _payload(encoding, c)
                    fh.write(chunk_record(tag, payload, c[0][0], c[-1][0]))

        descs = [(c[0][0], c[-1][0]) for c in persisted]
        if descs and index_first is not None:
            descs[0] = (index_first, descs[0][1])
        if descs and index_last is not None and not head:
            descs[-1] = (descs[-1][0], index_last)

        pairs = list(metric.items()) if isinstance(metric, dict) else list(metric)
        entry = bytearray()
        entry += bytes([0]) + struct.pack(">Q", fp)
        entry += encode_varint(len(pairs))
        for k, v in pairs:
            entry += _encode_string(k) + _encode_string(v)
        entry += encode_varint(len(persisted))  # persist watermark
        entry += encode_varint(0)  # mod time
        entry += encode_varint(chunk_descs_offset)
        entry += encode_varint(saved_first_time)
        entry += encode_varint(len(persisted) + len(head))
        for first, last in descs:
            entry += encode_varint(first) + encode_varint(last)
        for c in head:
            tag, payload = _payload(encoding, c)
            entry += bytes([tag]) + payload
        self.entries.append(bytes(entry))

    def add_raw_entry(self, entry: bytes) -> None:
        self.entries.append(entry)

    def write_heads(self, *, count: int | None = None, truncate_by: int = 0) -> Path:
        data = bytearray(HEADS_MAGIC)
        data += encode_varint(HEADS_FORMAT_VERSION)
        data += struct.pack(">Q", len(self.entries) if count is None else count)
        for e in self.entries:
            data += e
        if truncate_by:
            data = data[:-truncate_by]
        path = self.root / "heads.db"
        path.write_bytes(bytes(data))
        return path


@pytest.fixture
def legacy_store(tmp_path: Path) -> LegacyStoreBuilder:
    return LegacyStoreBuilder(tmp_path / "legacy")


@pytest.fixture
def make_record() -> Callable[..., bytes]:
    """Build a full chunk record: make_record(samples, encoding="delta", **payload_opts)."""

    def _make(samples: Sequence[SampleTuple], encoding: str = "delta", **opts) -> bytes:
        if encoding == "delta":
            payload = delta_payload(samples, **opts)
            tag = 0
        else:
            payload = double_delta_payload(samples, **opts)
            tag = 1
        return chunk_record(tag, payload, samples[0][0], samples[-1][0])

    return _make


@pytest.fixture
def varint() -> Callable[[int], bytes]:
    return encode_varint
