"""
Typed models shared by the legacy readers, the grouper, the merge engine and the writer.

Responsibilities
- SeriesRecord: one validated heads-file entry (pydantic v2, frozen). Validation failures
  are how the index loader recognises a malformed entry and skips it.
- Sample / MetricSample: one observation, bare or tagged with its series.
- TimeGroup: a half-open timeline slice [start, end) with the sorted fingerprints active in it.

Style
- Zero-IO (stdlib + pydantic only).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .labels import Labels, format_fingerprint, is_valid_label_name, labels_from_metric

__all__ = [
    "SeriesRecord",
    "Sample",
    "MetricSample",
    "TimeGroup",
]


class SeriesRecord(BaseModel):
    """
    Index entry for one legacy series.

    Attributes:
        fingerprint (int): Unsigned 64-bit series identifier.
        metric (dict[str, str]): Label set. Accepts a mapping or a sequence of (name, value)
            pairs; duplicate names in the pair form are rejected.
        first_time (int): First sample timestamp (ms) according to the index.
        last_time (int): Last sample timestamp (ms) according to the index.
        persisted_chunks (int): Chunk descs the index reports as persisted to the series file.
        head_chunks (tuple[bytes, ...]): Chunk records (header + payload) that only exist in
            the heads file.

    Raises:
        pydantic.ValidationError: On an empty label set, invalid or duplicate label names,
            first_time > last_time, or a fingerprint outside the unsigned 64-bit range.

    Notes:
        Time bounds come from the index and may be stale relative to the chunk files.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    fingerprint: int = Field(..., ge=0, le=(1 << 64) - 1)
    metric: dict[str, str]
    first_time: int
    last_time: int
    persisted_chunks: int = Field(default=0, ge=0)
    head_chunks: tuple[bytes, ...] = ()

    @field_validator("metric", mode="before")
    @classmethod
    def _metric_pairs(cls, v: Any) -> Any:
        if isinstance(v, dict):
            pairs: Iterable[Any] = v.items()
        else:
            pairs = v
        out: dict[str, str] = {}
        for name, value in pairs:
            if name in out:
                raise ValueError(f"duplicate label name {name!r}")
            out[name] = value
        if not out:
            raise ValueError("metric has no labels")
        for name in out:
            if not is_valid_label_name(name):
                raise ValueError(f"invalid label name {name!r}")
        return out

    @model_validator(mode="after")
    def _time_bounds(self) -> SeriesRecord:
        if self.first_time > self.last_time:
            raise ValueError(
                f"first_time {self.first_time} is after last_time {self.last_time}"
            )
        return self

    @property
    def labels(self) -> Labels:
        """Label pairs sorted by name."""
        return labels_from_metric(self.metric)

    @property
    def fingerprint_str(self) -> str:
        return format_fingerprint(self.fingerprint)


@dataclass(slots=True, frozen=True)
class Sample:
    """One (timestamp, value) observation; timestamp in ms."""

    timestamp: int
    value: float


@dataclass(slots=True, frozen=True)
class MetricSample:
    """
    A sample tagged with the series it belongs to, as emitted by the merge engine.

    Attributes:
        fingerprint (int): Legacy series fingerprint.
        labels (Labels): Destination label set for the series.
        timestamp (int): Sample time in ms.
        value (float): Sample value.
    """

    fingerprint: int
    labels: Labels
    timestamp: int
    value: float


@dataclass(slots=True, frozen=True)
class TimeGroup:
    """
    Half-open timeline slice [start, end) with the fingerprints active inside it.

    Attributes:
        start (int): Inclusive lower bound (ms).
        end (int): Exclusive upper bound (ms).
        fingerprints (tuple[int, ...]): Active fingerprints in ascending order. Equality is
            by content because the tuple is always sorted and duplicate-free.
    """

    start: int
    end: int
    fingerprints: tuple[int, ...]

    @classmethod
    def of(cls, start: int, end: int, fingerprints: Iterable[int]) -> TimeGroup:
        return cls(start, end, tuple(sorted(set(fingerprints))))

    def with_fingerprint(self, fp: int) -> TimeGroup:
        if fp in self.fingerprints:
            return self
        return TimeGroup.of(self.start, self.end, (*self.fingerprints, fp))

    def contains(self, t: int) -> bool:
        return self.start <= t < self.end

    def __str__(self) -> str:
        fps = ", ".join(format_fingerprint(f) for f in self.fingerprints)
        return f"({self.start}, {self.end}, [{fps}])"
