from __future__ import annotations

from pathlib import Path

import pytest

from tsdbmig.config import MigrateSettings, parse_duration_ms
from tsdbmig.core.constants import DEFAULT_BUFFER_SIZE, DEFAULT_FLUSH_INTERVAL, DEFAULT_RETENTION_MS
from tsdbmig.core.errors import ConfigError

HOUR = 3_600_000


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0, 0),
        (1500, 1500),
        ("1500", 1500),
        ("500ms", 500),
        ("30s", 30_000),
        ("90m", 90 * 60_000),
        ("360h", 360 * HOUR),
        ("15d", 15 * 24 * HOUR),
        ("1h30m", 90 * 60_000),
        ("2w", 14 * 24 * HOUR),
    ],
)
def test_parse_duration(raw, expected: int) -> None:
    assert parse_duration_ms(raw) == expected


@pytest.mark.parametrize("raw", ["", "h", "10x", "5 h", "-3s", -1, True, 1.5, "1h banana"])
def test_parse_duration_rejects(raw) -> None:
    with pytest.raises(ConfigError):
        parse_duration_ms(raw)


def test_defaults() -> None:
    s = MigrateSettings()
    assert s.retention_ms == DEFAULT_RETENTION_MS == 15 * 24 * HOUR
    assert s.flush_interval == DEFAULT_FLUSH_INTERVAL
    assert s.buffer_size == DEFAULT_BUFFER_SIZE
    assert s.store.block_range_ms == 2 * HOUR
    assert s.store.compression == "zstd"


def test_store_settings_root_follows_output_dir() -> None:
    s = MigrateSettings(output_dir="/data/out")
    assert s.store_settings().root_dir == "/data/out"
    assert s.store.root_dir == ""


def test_env_over_toml(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "tsdbmig.toml").write_text(
        """
        [migrate]
        input_dir = "legacy_toml"
        output_dir = "out_toml"
        retention = "7d"
        flush_interval = 1000

        [migrate.store]
        block_range = "4h"
        compression = "lz4"
        """.strip()
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TSDBMIG_OUTPUT_DIR", "out_env")
    monkeypatch.setenv("TSDBMIG_FLUSH_INTERVAL", "50")
    monkeypatch.setenv("TSDBMIG_STORE_COMPRESSION", "snappy")

    s = MigrateSettings.load()

    assert s.input_dir == "legacy_toml"
    assert s.output_dir == "out_env"
    assert s.retention_ms == 7 * 24 * HOUR
    assert s.flush_interval == 50
    assert s.store.block_range_ms == 4 * HOUR
    assert s.store.compression == "snappy"


def test_pyproject_tool_table(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "pyproject.toml").write_text(
        """
        [tool.tsdbmig]
        buffer_size = 64
        retention = "360h"
        """.strip()
    )
    monkeypatch.chdir(tmp_path)
    for var in ("TSDBMIG_BUFFER_SIZE", "TSDBMIG_RETENTION"):
        monkeypatch.delenv(var, raising=False)
    s = MigrateSettings.load()
    assert s.buffer_size == 64
    assert s.retention_ms == 360 * HOUR


def test_explicit_toml_path(tmp_path: Path) -> None:
    path = tmp_path / "custom.toml"
    path.write_text('retention = 3600000\n[store]\nrow_group_size = 1024\n')
    s = MigrateSettings.from_toml(path)
    assert s.retention_ms == HOUR
    assert s.store.row_group_size == 1024


@pytest.mark.parametrize(
    ("var", "value"),
    [
        ("TSDBMIG_FLUSH_INTERVAL", "0"),
        ("TSDBMIG_BUFFER_SIZE", "lots"),
        ("TSDBMIG_RETENTION", "forever"),
        ("TSDBMIG_STORE_COMPRESSION", "gzip"),
        ("TSDBMIG_STORE_BLOCK_RANGE", "0s"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, monkeypatch, var: str, value: str) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(var, value)
    with pytest.raises(ConfigError):
        MigrateSettings.load()


def test_unparseable_toml(tmp_path: Path) -> None:
    path = tmp_path / "broken.toml"
    path.write_text("retention = [")
    with pytest.raises(ConfigError):
        MigrateSettings.from_toml(path)
