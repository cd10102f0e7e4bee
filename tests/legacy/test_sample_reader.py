from __future__ import annotations

import logging

import pytest

from tsdbmig.core.errors import CorruptChunk
from tsdbmig.legacy.heads import load_series_map
from tsdbmig.legacy.reader import ChunkReader, SampleReader, open_sample_reader


def _read_all(reader: SampleReader) -> list[tuple[int, float]]:
    return [(s.timestamp, s.value) for s in reader]


def test_reads_file_chunks_then_head_chunks(legacy_store) -> None:
    samples = [(i, float(i)) for i in range(130)]
    legacy_store.add_series(0xAB, {"a": "b"}, samples, chunk_size=50, head_chunks=1)
    legacy_store.write_heads()
    record = load_series_map(str(legacy_store.root))[0xAB]

    with open_sample_reader(str(legacy_store.root), record) as reader:
        assert _read_all(reader) == samples
    assert reader.closed


def test_reader_is_lazy(tmp_path) -> None:
    reader = ChunkReader(str(tmp_path / "nope.db"))
    assert reader.closed is False
    reader.close()
    reader.close()
    assert reader.closed


def test_missing_file_with_expected_chunks_warns(tmp_path, make_record, caplog) -> None:
    head = make_record([(5, 1.0)])
    with caplog.at_level(logging.WARNING, logger="tsdbmig.legacy.reader"):
        reader = SampleReader(ChunkReader(str(tmp_path / "x.db"), [head], expected_file_chunks=2))
        assert _read_all(reader) == [(5, 1.0)]
    assert any("missing" in r.getMessage() for r in caplog.records)


def test_trailing_partial_record_is_ignored(tmp_path, make_record, caplog) -> None:
    path = tmp_path / "series.db"
    path.write_bytes(make_record([(0, 1.0), (1, 2.0)]) + b"\x00" * 100)
    with caplog.at_level(logging.WARNING, logger="tsdbmig.legacy.reader"):
        assert _read_all(SampleReader(ChunkReader(str(path)))) == [(0, 1.0), (1, 2.0)]
    assert any("partial record" in r.getMessage() for r in caplog.records)


def test_backwards_samples_are_dropped(tmp_path, make_record) -> None:
    path = tmp_path / "series.db"
    path.write_bytes(make_record([(0, 1.0), (10, 2.0)]) + make_record([(5, 9.0), (10, 3.0), (11, 4.0)]))
    reader = SampleReader(ChunkReader(str(path)))
    assert _read_all(reader) == [(0, 1.0), (10, 2.0), (10, 3.0), (11, 4.0)]
    assert reader.dropped == 1


def test_corrupt_chunk_surfaces_mid_series(tmp_path, make_record) -> None:
    path = tmp_path / "series.db"
    bad = bytes([9]) + make_record([(20, 1.0)])[1:]
    path.write_bytes(make_record([(0, 1.0)]) + bad)
    reader = SampleReader(ChunkReader(str(path)))
    assert next(reader).timestamp == 0
    with pytest.raises(CorruptChunk):
        next(reader)
    reader.close()


def test_read_after_close_raises(tmp_path, make_record) -> None:
    path = tmp_path / "series.db"
    path.write_bytes(make_record([(0, 1.0)]))
    reader = ChunkReader(str(path))
    assert reader.read() is not None
    reader.close()
    with pytest.raises(ValueError):
        reader.read()
