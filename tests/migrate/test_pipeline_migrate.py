from __future__ import annotations

import threading
from pathlib import Path

import pytest

from tsdbmig.config import MigrateSettings, StoreSettings
from tsdbmig.core.errors import IndexUnreadable
from tsdbmig.migrate import AbortSignal, migrate
from tsdbmig.migrate import pipeline as pipeline_mod
from tsdbmig.store import StoreOpenError, StoreWriteError, TsdbStore

HOUR = 3_600_000


def _settings(legacy_root: Path, out: Path, **kw) -> MigrateSettings:
    out.mkdir(parents=True, exist_ok=True)
    return MigrateSettings(
        input_dir=str(legacy_root),
        output_dir=str(out),
        store=StoreSettings(block_range_ms=2 * HOUR),
        **kw,
    )


def test_migrates_all_series_in_time_order(legacy_store, tmp_path: Path) -> None:
    legacy_store.add_series(0xA, {"__name__": "up", "job": "a"}, [(t * 1000, float(t)) for t in range(0, 200, 2)])
    legacy_store.add_series(0xB, {"__name__": "up", "job": "b"}, [(t * 1000, float(-t)) for t in range(1, 200, 2)], head_chunks=1)
    legacy_store.add_series(0xC, {"__name__": "other"}, [(500_000, 1.0)], encoding="double_delta")
    legacy_store.write_heads()

    settings = _settings(legacy_store.root, tmp_path / "out", flush_interval=37, buffer_size=4)
    report = migrate(settings, now_ms=200_000)

    assert report.series == 3
    assert not report.cancelled
    assert report.merge.emitted == 201
    assert report.writer.appended == 201
    assert report.writer.commits == 6
    assert report.merge.series_closed == 3

    with TsdbStore.open(settings.store_settings()) as store:
        df = store.read()
    assert df.height == 201
    assert df["timestamp"].is_sorted()
    assert df["labels"].n_unique() == 3


def test_retention_applies_to_migration(legacy_store, tmp_path: Path) -> None:
    legacy_store.add_series(0xA, {"__name__": "x"}, [(t, 1.0) for t in range(0, 100, 10)])
    legacy_store.write_heads()
    settings = _settings(legacy_store.root, tmp_path / "out", retention_ms=50)
    report = migrate(settings, now_ms=100)
    assert report.writer.dropped_retention == 5
    assert report.writer.appended == 5


def test_corrupt_chunk_file_skips_series(legacy_store, tmp_path: Path) -> None:
    legacy_store.add_series(0xA, {"__name__": "good"}, [(1, 1.0), (2, 2.0)])
    legacy_store.add_series(0xB, {"__name__": "bad"}, [(1, 1.0), (2, 2.0)])
    legacy_store.write_heads()
    path = legacy_store.chunk_path(0xB)
    data = bytearray(path.read_bytes())
    data[0] = 9
    path.write_bytes(bytes(data))

    report = migrate(_settings(legacy_store.root, tmp_path / "out"), now_ms=10)
    assert report.merge.series_corrupt == 1
    assert report.writer.appended == 2


def test_missing_index_is_fatal(tmp_path: Path) -> None:
    (tmp_path / "in").mkdir()
    with pytest.raises(IndexUnreadable):
        migrate(_settings(tmp_path / "in", tmp_path / "out"))


def test_locked_destination_is_fatal(legacy_store, tmp_path: Path) -> None:
    legacy_store.add_series(0xA, {"__name__": "x"}, [(1, 1.0)])
    legacy_store.write_heads()
    settings = _settings(legacy_store.root, tmp_path / "out")
    with TsdbStore.open(settings.store_settings()):
        with pytest.raises(StoreOpenError):
            migrate(settings, now_ms=10)


def test_abort_before_start_is_cancelled(legacy_store, tmp_path: Path) -> None:
    legacy_store.add_series(0xA, {"__name__": "x"}, [(t, 1.0) for t in range(100)])
    legacy_store.write_heads()
    abort = AbortSignal()
    abort.fire("test")
    report = migrate(_settings(legacy_store.root, tmp_path / "out"), abort=abort, now_ms=100)
    assert report.cancelled
    assert report.writer.appended == 0
    assert report.merge.series_opened == report.merge.series_closed


def test_abort_mid_run_does_not_hang(legacy_store, tmp_path: Path, monkeypatch) -> None:
    for fp in range(1, 4):
        legacy_store.add_series(fp, {"__name__": f"s{fp}"}, [(t, 1.0) for t in range(3000)])
    legacy_store.write_heads()
    abort = AbortSignal()

    class SlowWriter(pipeline_mod.OutputWriter):
        def write(self, sample):
            if self.stats.received == 100:
                abort.fire("test")
            super().write(sample)

    monkeypatch.setattr(pipeline_mod, "OutputWriter", SlowWriter)
    result: dict = {}
    t = threading.Thread(
        target=lambda: result.setdefault(
            "report", migrate(_settings(legacy_store.root, tmp_path / "out", buffer_size=8), abort=abort, now_ms=10_000)
        )
    )
    t.start()
    t.join(timeout=30)
    assert not t.is_alive()
    report = result["report"]
    assert report.cancelled
    assert report.merge.emitted < 9000
    assert report.merge.series_opened == report.merge.series_closed


def test_writer_failure_surfaces(legacy_store, tmp_path: Path, monkeypatch) -> None:
    legacy_store.add_series(0xA, {"__name__": "x"}, [(t, 1.0) for t in range(500)])
    legacy_store.write_heads()

    def broken_commit(self):
        raise StoreWriteError("disk full")

    monkeypatch.setattr(pipeline_mod.OutputWriter, "flush", broken_commit)
    with pytest.raises(StoreWriteError):
        migrate(_settings(legacy_store.root, tmp_path / "out", buffer_size=2), now_ms=1000)
