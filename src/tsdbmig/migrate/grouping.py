"""
Interval grouper: partitions the timeline into half-open slices with fixed active series.

Overview
- sorted_series_ranges() turns index entries (inclusive [first_time, last_time]) into
  half-open SeriesRange values [first_time, last_time + 1) ordered by (start, end, fingerprint).
- compute_groups() sweeps those ranges, maintaining an ordered list of disjoint TimeGroups.

Sweep step for a range [start, end) with fingerprint fp
- If start is strictly after the last group's end, append a singleton group.
- Otherwise clip every existing group with three primitives:
    _portion_before(g, start)     keeps g's set           -> "before"
    _portion_within(g, start, end) gains fp               -> "including"
    _portion_after(g, end)        keeps g's set           -> "after"
  Gaps of [start, end) that no group covers become {fp} groups. The first group starting at
  or after end ends the scan; it and everything following are "after".
- before + including + after is coalesced: adjacent groups with the same set are joined,
  groups with the same bounds have their sets unioned.

Fingerprint sets are sorted tuples, so equality and iteration order depend only on contents.
A single-point range (start == end) is widened to [start, start + 1).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from tsdbmig.core.errors import UnhandledOverlap
from tsdbmig.core.model import SeriesRecord, TimeGroup

logger = logging.getLogger(__name__)

__all__ = ["SeriesRange", "sorted_series_ranges", "compute_groups"]


@dataclass(slots=True, frozen=True, order=True)
class SeriesRange:
    """Half-open active range [start, end) of one series."""

    start: int
    end: int
    fingerprint: int


def sorted_series_ranges(series: Mapping[int, SeriesRecord]) -> list[SeriesRange]:
    """Half-open ranges for every indexed series, ascending by (start, end, fingerprint)."""
    return sorted(
        SeriesRange(rec.first_time, rec.last_time + 1, fp) for fp, rec in series.items()
    )


def _portion_before(g: TimeGroup, boundary: int) -> TimeGroup | None:
    if g.start >= boundary:
        return None
    return TimeGroup(g.start, min(g.end, boundary), g.fingerprints)


def _portion_within(g: TimeGroup, start: int, end: int) -> TimeGroup | None:
    lo, hi = max(g.start, start), min(g.end, end)
    if lo >= hi:
        return None
    return TimeGroup(lo, hi, g.fingerprints)


def _portion_after(g: TimeGroup, boundary: int) -> TimeGroup | None:
    if g.end <= boundary:
        return None
    return TimeGroup(max(g.start, boundary), g.end, g.fingerprints)


def _coalesce(groups: list[TimeGroup]) -> list[TimeGroup]:
    out: list[TimeGroup] = []
    for g in groups:
        if out:
            last = out[-1]
            if last.end == g.start and last.fingerprints == g.fingerprints:
                out[-1] = TimeGroup(last.start, g.end, last.fingerprints)
                continue
            if last.start == g.start and last.end == g.end:
                out[-1] = TimeGroup.of(last.start, last.end, (*last.fingerprints, *g.fingerprints))
                continue
        out.append(g)
    return out


def _check_disjoint(groups: list[TimeGroup], fp: int) -> None:
    prev_end: int | None = None
    for g in groups:
        if g.start >= g.end:
            raise UnhandledOverlap(f"empty group {g} after adding {fp:016x}")
        if prev_end is not None and g.start < prev_end:
            raise UnhandledOverlap(f"group {g} overlaps its predecessor after adding {fp:016x}")
        prev_end = g.end


def _add_range(groups: list[TimeGroup], start: int, end: int, fp: int) -> list[TimeGroup]:
    before: list[TimeGroup] = []
    including: list[TimeGroup] = []
    after: list[TimeGroup] = []
    cursor = start

    for i, g in enumerate(groups):
        if g.end <= start:
            before.append(g)
            continue
        if g.start >= end:
            after.extend(groups[i:])
            break
        head = _portion_before(g, start)
        mid = _portion_within(g, start, end)
        tail = _portion_after(g, end)
        if mid is None or mid.start < cursor:
            raise UnhandledOverlap(f"group {g} cannot be split against [{start}, {end})")
        if head is not None:
            before.append(head)
        if mid.start > cursor:
            including.append(TimeGroup(cursor, mid.start, (fp,)))
        including.append(mid.with_fingerprint(fp))
        cursor = mid.end
        if tail is not None:
            after.append(tail)

    if cursor < end:
        including.append(TimeGroup(cursor, end, (fp,)))

    merged = before + including + after
    _check_disjoint(merged, fp)
    return _coalesce(merged)


def compute_groups(ranges: Iterable[SeriesRange]) -> list[TimeGroup]:
    """
    Partition the union of the given ranges into ordered, disjoint TimeGroups.

    Args:
        ranges (Iterable[SeriesRange]): Ranges ascending by (start, end), as returned by
            sorted_series_ranges().

    Returns:
        list[TimeGroup]: Groups sorted by start; every timestamp covered by some range lies in
        exactly one group, whose fingerprints are exactly the ranges containing it.

    Raises:
        ValueError: If a range ends before it starts.
        UnhandledOverlap: If a split produced overlapping or empty groups.

    Examples:
        >>> [str(g) for g in compute_groups([SeriesRange(0, 3, 0xA), SeriesRange(1, 2, 0xB)])]
        ['(0, 1, [000000000000000a])', '(1, 2, [000000000000000a, 000000000000000b])', '(2, 3, [000000000000000a])']
    """
    groups: list[TimeGroup] = []
    n = 0
    for r in ranges:
        n += 1
        start, end = r.start, r.end
        if end < start:
            raise ValueError(f"range [{start}, {end}) of {r.fingerprint:016x} ends before it starts")
        if end == start:
            end = start + 1
        if not groups or start > groups[-1].end:
            groups.append(TimeGroup(start, end, (r.fingerprint,)))
            continue
        groups = _add_range(groups, start, end, r.fingerprint)
    logger.info("Grouped %d series into %d time groups", n, len(groups))
    return groups
