"""
Configuration for tsdbmig.

Defines MigrateSettings (the configuration surface consumed by the migration core) and the
nested StoreSettings used by the destination block store. Defaults are sourced from
tsdbmig.core.constants (the single source of truth).

Precedence
- environment (TSDBMIG_*) > TOML (./tsdbmig.toml or [tool.tsdbmig] in ./pyproject.toml) > defaults
- The CLI overlays explicit flags on top of MigrateSettings.load().

Notes
- Durations accept integer milliseconds or strings such as "360h", "15d", "1h30m", "500ms".
- Invalid values raise tsdbmig.core.errors.ConfigError instead of being ignored.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Final, Literal

try:  # Python 3.11+ stdlib TOML parser
    import tomllib  # type: ignore
except Exception:  # pragma: no cover - environments without tomllib
    tomllib = None  # type: ignore[assignment]

from .core.constants import (
    COMPRESSION,
    DEFAULT_BLOCK_RANGE_MS,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_FLUSH_INTERVAL,
    DEFAULT_RETENTION_MS,
    ROW_GROUP_SIZE,
)
from .core.errors import ConfigError

Compression = Literal["zstd", "lz4", "snappy"]

_DURATION_PART_RE: Final[re.Pattern[str]] = re.compile(r"(\d+)(ms|y|w|d|h|m|s)")
_DURATION_UNITS_MS: Final[dict[str, int]] = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
    "y": 365 * 24 * 60 * 60 * 1000,
}


def parse_duration_ms(value: Any) -> int:
    """
    Parse a duration into milliseconds.

    Args:
        value: int milliseconds, a digit string (milliseconds) or a unit string made of
            <number><unit> parts with unit in {ms, s, m, h, d, w, y}, e.g. "1h30m".

    Returns:
        int: Non-negative duration in ms.

    Raises:
        ConfigError: If the value cannot be parsed or is negative.

    Examples:
        >>> parse_duration_ms("15d")
        1296000000
        >>> parse_duration_ms("1h30m")
        5400000
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ConfigError(f"duration must be >= 0, got {value}")
        return value
    if not isinstance(value, str):
        raise ConfigError(f"invalid duration: {value!r}")
    s = value.strip().lower()
    if s.isdigit():
        return int(s)
    pos = 0
    total = 0
    for m in _DURATION_PART_RE.finditer(s):
        if m.start() != pos:
            break
        total += int(m.group(1)) * _DURATION_UNITS_MS[m.group(2)]
        pos = m.end()
    if pos == 0 or pos != len(s):
        raise ConfigError(f"invalid duration: {value!r}")
    return total


def _positive_int(name: str, value: Any) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if n < 1:
        raise ConfigError(f"{name} must be >= 1, got {n}")
    return n


@dataclass(frozen=True)
class StoreSettings:
    """
    Runtime settings for the destination block store.

    Attributes:
        root_dir (str): Destination directory (filled from MigrateSettings.output_dir).
        block_range_ms (int): Width of one block; also the out-of-bounds window behind the
            newest committed sample.
        compression (Literal["zstd","lz4","snappy"]): Parquet codec for block parts.
        row_group_size (int): Parquet row group size for block parts.
    """

    root_dir: str = ""
    block_range_ms: int = DEFAULT_BLOCK_RANGE_MS
    compression: Compression = COMPRESSION  # type: ignore[assignment]
    row_group_size: int = ROW_GROUP_SIZE


@dataclass(frozen=True)
class MigrateSettings:
    """
    Configuration surface of the migration core.

    Attributes:
        input_dir (str): Legacy storage directory (heads.db + per-series chunk files).
        output_dir (str): Destination block store directory.
        retention_ms (int): Samples older than now - retention_ms are dropped.
        flush_interval (int): Max appends per destination transaction.
        buffer_size (int): Capacity of the bounded sample queue.
        store (StoreSettings): Destination store tuning.

    Examples:
        >>> MigrateSettings(input_dir="data", output_dir="out", flush_interval=1000)  # doctest: +ELLIPSIS
        MigrateSettings(...)
    """

    input_dir: str = ""
    output_dir: str = ""
    retention_ms: int = DEFAULT_RETENTION_MS
    flush_interval: int = DEFAULT_FLUSH_INTERVAL
    buffer_size: int = DEFAULT_BUFFER_SIZE
    store: StoreSettings = field(default_factory=StoreSettings)

    def store_settings(self) -> StoreSettings:
        """StoreSettings rooted at output_dir."""
        return replace(self.store, root_dir=self.output_dir)

    # Configuration loaders (env/TOML) with precedence: env > TOML > defaults.

    @classmethod
    def _apply_mapping(cls, base: MigrateSettings, cfg: dict[str, Any] | None) -> MigrateSettings:
        """Apply a loose config mapping onto MigrateSettings, returning a new instance."""
        if not isinstance(cfg, dict):
            return base

        s = base

        if "input_dir" in cfg:
            s = replace(s, input_dir=str(cfg["input_dir"]))
        if "output_dir" in cfg:
            s = replace(s, output_dir=str(cfg["output_dir"]))
        if "retention" in cfg:
            s = replace(s, retention_ms=parse_duration_ms(cfg["retention"]))
        if "flush_interval" in cfg:
            s = replace(s, flush_interval=_positive_int("flush_interval", cfg["flush_interval"]))
        if "buffer_size" in cfg:
            s = replace(s, buffer_size=_positive_int("buffer_size", cfg["buffer_size"]))

        # store (nested mapping)
        if "store" in cfg and isinstance(cfg["store"], dict):
            st = cfg["store"]
            curr = s.store
            if "block_range" in st:
                block_range = parse_duration_ms(st["block_range"])
                if block_range < 1:
                    raise ConfigError("store.block_range must be >= 1ms")
                curr = replace(curr, block_range_ms=block_range)
            if "compression" in st:
                comp = str(st["compression"]).strip().lower()
                if comp not in ("zstd", "lz4", "snappy"):
                    raise ConfigError(f"unsupported compression: {comp!r}")
                curr = replace(curr, compression=comp)  # type: ignore[arg-type]
            if "row_group_size" in st:
                curr = replace(
                    curr, row_group_size=_positive_int("store.row_group_size", st["row_group_size"])
                )
            s = replace(s, store=curr)

        return s

    @classmethod
    def from_env(
        cls, base: MigrateSettings | None = None, prefix: str = "TSDBMIG_"
    ) -> MigrateSettings:
        """
        Build MigrateSettings from environment variables. Precedence is env > base > defaults.

        Recognized variables:
            - TSDBMIG_INPUT_DIR
            - TSDBMIG_OUTPUT_DIR
            - TSDBMIG_RETENTION (duration)
            - TSDBMIG_FLUSH_INTERVAL
            - TSDBMIG_BUFFER_SIZE
            - TSDBMIG_STORE_BLOCK_RANGE (duration)
            - TSDBMIG_STORE_COMPRESSION ("zstd" | "lz4" | "snappy")
            - TSDBMIG_STORE_ROW_GROUP_SIZE
        """
        s = base or cls()

        def get(name: str) -> str | None:
            return os.getenv(prefix + name)

        mapping: dict[str, Any] = {}
        for key in ("INPUT_DIR", "OUTPUT_DIR", "RETENTION", "FLUSH_INTERVAL", "BUFFER_SIZE"):
            v = get(key)
            if v:
                mapping[key.lower()] = v
        for key in ("BLOCK_RANGE", "COMPRESSION", "ROW_GROUP_SIZE"):
            v = get("STORE_" + key)
            if v:
                mapping.setdefault("store", {})[key.lower()] = v

        return cls._apply_mapping(s, mapping)

    @classmethod
    def from_toml(cls, path: str | os.PathLike[str] | None = None) -> MigrateSettings:
        """
        Build MigrateSettings from a TOML file.

        Search order when `path` is None:
            1) ./tsdbmig.toml (with either a top-level [migrate] table or direct keys)
            2) ./pyproject.toml under [tool.tsdbmig]

        Returns defaults if no file is present or tomllib is unavailable.

        Raises:
            ConfigError: If an explicit path cannot be parsed.
        """
        s = cls()
        if tomllib is None:
            return s

        cand: list[Path] = []
        if path is not None:
            cand.append(Path(path))
        else:
            cand.append(Path.cwd() / "tsdbmig.toml")
            cand.append(Path.cwd() / "pyproject.toml")

        cfg: dict[str, Any] | None = None
        for p in cand:
            if not p.exists():
                continue
            try:
                with p.open("rb") as fh:
                    data = tomllib.load(fh)
            except (OSError, tomllib.TOMLDecodeError) as exc:
                raise ConfigError(f"failed to read {p}: {exc}") from exc
            if p.name == "pyproject.toml":
                tool = data.get("tool", {})
                cfg = tool.get("tsdbmig") if isinstance(tool, dict) else None
            elif isinstance(data.get("migrate"), dict):
                cfg = data["migrate"]
            else:
                cfg = data
            if cfg:
                break

        return cls._apply_mapping(s, cfg)

    @classmethod
    def load(cls, path: str | os.PathLike[str] | None = None) -> MigrateSettings:
        """
        Load MigrateSettings applying precedence: environment > TOML > defaults.

        Args:
            path: Optional explicit TOML path. If None, search defaults.
        """
        s = cls.from_toml(path)
        s = cls.from_env(base=s)
        return s
