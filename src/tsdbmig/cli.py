from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

import polars as pl

from .config import MigrateSettings, parse_duration_ms
from .core.errors import ConfigError, MigrateError
from .core.labels import format_fingerprint, parse_fingerprint
from .legacy.heads import load_series_map
from .migrate import AbortSignal, compute_groups, migrate, sorted_series_ranges
from .store import StoreError, TsdbStore

logger = logging.getLogger("tsdbmig.cli")

_SIGNALS = ("SIGTERM", "SIGINT", "SIGHUP")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _check_directory(path: str, what: str) -> str | None:
    """Return an error message if `path` is not an existing directory."""
    if not path:
        return f"{what} directory not specified"
    if not os.path.exists(path):
        return f"{what} directory does not exist: {path}"
    if not os.path.isdir(path):
        return f"{what} path is not a directory: {path}"
    return None


@contextmanager
def _abort_on_signals(abort: AbortSignal) -> Iterator[None]:
    """Route termination signals to `abort` for the duration of the block."""

    def _handler(signum: int, _frame: object) -> None:
        name = signal.Signals(signum).name
        logger.warning("Received %s, stopping after the current sample", name)
        abort.fire(name)

    previous: dict[int, object] = {}
    for name in _SIGNALS:
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:  # not on the main thread
            continue
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]


def _load_settings(config_path: str) -> MigrateSettings:
    return MigrateSettings.load(config_path or None)


def _cmd_migrate(argv: list[str]) -> int:
    p = argparse.ArgumentParser(
        prog="tsdbmig migrate",
        description="Convert a legacy chunk store into a block store.",
    )
    p.add_argument("-i", "--input", dest="input_dir", default=None, help="Legacy storage directory.")
    p.add_argument("-o", "--output", dest="output_dir", default=None, help="Destination directory.")
    p.add_argument("-r", "--retention", default=None, help="Retention, e.g. 15d or 360h.")
    p.add_argument("-f", "--flush-interval", type=int, default=None, help="Appends per commit.")
    p.add_argument("--buffer-size", type=int, default=None, help="Sample queue capacity.")
    p.add_argument("--config", default="", help="TOML config file (default: ./tsdbmig.toml).")
    p.add_argument("--log-level", default="INFO", help="Logging level.")
    args = p.parse_args(argv)
    _setup_logging(args.log_level)

    try:
        settings = _load_settings(args.config)
        if args.input_dir is not None:
            settings = replace(settings, input_dir=args.input_dir)
        if args.output_dir is not None:
            settings = replace(settings, output_dir=args.output_dir)
        if args.retention is not None:
            settings = replace(settings, retention_ms=parse_duration_ms(args.retention))
        if args.flush_interval is not None:
            if args.flush_interval < 1:
                raise ConfigError("--flush-interval must be >= 1")
            settings = replace(settings, flush_interval=args.flush_interval)
        if args.buffer_size is not None:
            if args.buffer_size < 1:
                raise ConfigError("--buffer-size must be >= 1")
            settings = replace(settings, buffer_size=args.buffer_size)
    except ConfigError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    for path, what in ((settings.input_dir, "input"), (settings.output_dir, "output")):
        problem = _check_directory(path, what)
        if problem:
            print(f"[ERROR] {problem}", file=sys.stderr)
            return 2

    abort = AbortSignal()
    try:
        with _abort_on_signals(abort):
            report = migrate(settings, abort=abort)
    except (MigrateError, StoreError) as exc:
        logger.error("Migration failed: %s", exc)
        return 1

    print(
        f"[INFO] {'Cancelled' if report.cancelled else 'Done'}: "
        f"{report.series} series, {report.merge.emitted} samples read, "
        f"{report.writer.appended} written, {report.writer.commits} commits "
        f"in {report.elapsed_s:.1f}s"
    )
    return 1 if report.cancelled else 0


def _cmd_groups(argv: list[str]) -> int:
    p = argparse.ArgumentParser(prog="tsdbmig groups", description="Print the time groups of a legacy store.")
    p.add_argument("-i", "--input", dest="input_dir", required=True, help="Legacy storage directory.")
    p.add_argument("--series", default="", help="Only groups containing this fingerprint (hex).")
    p.add_argument("--log-level", default="WARNING", help="Logging level.")
    args = p.parse_args(argv)
    _setup_logging(args.log_level)

    problem = _check_directory(args.input_dir, "input")
    if problem:
        print(f"[ERROR] {problem}", file=sys.stderr)
        return 2
    try:
        only = parse_fingerprint(args.series) if args.series else None
    except ValueError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2
    try:
        series = load_series_map(args.input_dir)
        groups = compute_groups(sorted_series_ranges(series))
    except MigrateError as exc:
        logger.error("%s", exc)
        return 1
    for g in groups:
        if only is not None and only not in g.fingerprints:
            continue
        fps = ",".join(format_fingerprint(fp) for fp in g.fingerprints)
        print(f"{g.start}\t{g.end}\t{len(g.fingerprints)}\t{fps}")
    return 0


def _cmd_show(argv: list[str]) -> int:
    p = argparse.ArgumentParser(prog="tsdbmig show", description="Show the head of a block store.")
    p.add_argument("-o", "--output", dest="output_dir", required=True, help="Block store directory.")
    p.add_argument("--n", type=int, default=10, help="Rows to display.")
    args = p.parse_args(argv)

    problem = _check_directory(args.output_dir, "output")
    if problem:
        print(f"[ERROR] {problem}", file=sys.stderr)
        return 2
    settings = MigrateSettings.load().store_settings()
    settings = replace(settings, root_dir=args.output_dir)
    try:
        with TsdbStore.open(settings) as store:
            df = store.read(limit=args.n)
            total = store.manifest.row_count
    except StoreError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    with pl.Config(tbl_rows=args.n):
        print(df)
    print(f"[INFO] {total} samples in {args.output_dir}")
    return 0


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tsdbmig", description="Legacy chunk store to block store migration.")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("migrate")
    sub.add_parser("groups")
    sub.add_parser("show")
    return p


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        build_argparser().print_help()
        return
    cmd, rest = argv[0], argv[1:]
    if cmd == "migrate":
        code = _cmd_migrate(rest)
    elif cmd == "groups":
        code = _cmd_groups(rest)
    elif cmd == "show":
        code = _cmd_show(rest)
    else:
        print(f"Unknown command: {cmd}", file=sys.stderr)
        code = 2
    raise SystemExit(code)


if __name__ == "__main__":
    main()
