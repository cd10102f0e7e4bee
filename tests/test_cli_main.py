from __future__ import annotations

from pathlib import Path

import pytest

from tsdbmig import cli
from tsdbmig.config import StoreSettings
from tsdbmig.store import TsdbStore


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    return int(exc.value.code)


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    for var in ("INPUT_DIR", "OUTPUT_DIR", "RETENTION", "FLUSH_INTERVAL", "BUFFER_SIZE"):
        monkeypatch.delenv("TSDBMIG_" + var, raising=False)


def _legacy(legacy_store) -> Path:
    legacy_store.add_series(0xA, {"__name__": "a"}, [(0, 10.0), (2, 30.0)])
    legacy_store.add_series(0xB, {"__name__": "b"}, [(1, 20.0)])
    legacy_store.write_heads()
    return legacy_store.root


def test_no_args_prints_help(capsys) -> None:
    cli.main([])
    assert "migrate" in capsys.readouterr().out


def test_unknown_command(capsys) -> None:
    assert _run(["frobnicate"]) == 2
    assert "Unknown command" in capsys.readouterr().err


def test_migrate_then_show(legacy_store, tmp_path: Path, capsys) -> None:
    src = _legacy(legacy_store)
    out = tmp_path / "out"
    out.mkdir()

    code = _run(["migrate", "-i", str(src), "-o", str(out), "-r", "100000d", "-f", "2", "--buffer-size", "1"])
    assert code == 0
    assert "3 written" in capsys.readouterr().out

    with TsdbStore.open(StoreSettings(root_dir=str(out))) as store:
        assert store.read()["value"].to_list() == [10.0, 20.0, 30.0]

    assert _run(["show", "-o", str(out), "--n", "2"]) == 0
    assert "3 samples" in capsys.readouterr().out


def test_migrate_requires_existing_directories(tmp_path: Path, capsys) -> None:
    assert _run(["migrate", "-i", str(tmp_path / "nope"), "-o", str(tmp_path)]) == 2
    assert "does not exist" in capsys.readouterr().err
    (tmp_path / "file").write_text("x")
    assert _run(["migrate", "-i", str(tmp_path), "-o", str(tmp_path / "file")]) == 2
    assert "not a directory" in capsys.readouterr().err
    assert _run(["migrate", "-o", str(tmp_path)]) == 2
    assert "not specified" in capsys.readouterr().err


def test_migrate_bad_retention(tmp_path: Path, capsys) -> None:
    assert _run(["migrate", "-i", str(tmp_path), "-o", str(tmp_path), "-r", "soon"]) == 2
    assert "invalid duration" in capsys.readouterr().err


def test_migrate_fatal_error_exits_one(tmp_path: Path) -> None:
    src = tmp_path / "empty"
    src.mkdir()
    assert _run(["migrate", "-i", str(src), "-o", str(tmp_path)]) == 1


def test_groups_lists_time_groups(legacy_store, capsys) -> None:
    src = _legacy(legacy_store)
    assert _run(["groups", "-i", str(src)]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines == [
        "0\t1\t1\t000000000000000a",
        "1\t2\t2\t000000000000000a,000000000000000b",
        "2\t3\t1\t000000000000000a",
    ]


def test_groups_filtered_by_series(legacy_store, capsys) -> None:
    src = _legacy(legacy_store)
    assert _run(["groups", "-i", str(src), "--series", "b"]) == 0
    assert capsys.readouterr().out.strip() == "1\t2\t2\t000000000000000a,000000000000000b"
    assert _run(["groups", "-i", str(src), "--series", "zz"]) == 2
