from __future__ import annotations

import itertools
import random

import pytest

from tsdbmig.core.errors import UnhandledOverlap
from tsdbmig.core.model import SeriesRecord, TimeGroup
from tsdbmig.migrate import grouping
from tsdbmig.migrate.grouping import SeriesRange, compute_groups, sorted_series_ranges


def _tuples(groups: list[TimeGroup]) -> list[tuple[int, int, tuple[int, ...]]]:
    return [(g.start, g.end, g.fingerprints) for g in groups]


def _check_partition(ranges: list[SeriesRange], groups: list[TimeGroup]) -> None:
    # sorted, non-overlapping, non-empty
    for a, b in zip(groups, groups[1:], strict=False):
        assert a.end <= b.start
    for g in groups:
        assert g.start < g.end
    covered = {t for r in ranges for t in range(r.start, max(r.end, r.start + 1))}
    lo = min(r.start for r in ranges)
    hi = max(max(r.end, r.start + 1) for r in ranges)
    for t in range(lo - 1, hi + 1):
        containing = [g for g in groups if g.contains(t)]
        expected = tuple(sorted(r.fingerprint for r in ranges if r.start <= t < max(r.end, r.start + 1)))
        if t in covered:
            assert len(containing) == 1, t
            assert containing[0].fingerprints == expected, t
        else:
            assert containing == [], t


def test_nested_range_splits_into_three() -> None:
    groups = compute_groups([SeriesRange(0, 3, 0xA), SeriesRange(1, 2, 0xB)])
    assert _tuples(groups) == [(0, 1, (0xA,)), (1, 2, (0xA, 0xB)), (2, 3, (0xA,))]


def test_disjoint_ranges_stay_separate() -> None:
    groups = compute_groups([SeriesRange(0, 2, 1), SeriesRange(5, 7, 2)])
    assert _tuples(groups) == [(0, 2, (1,)), (5, 7, (2,))]


def test_touching_ranges_do_not_overlap() -> None:
    groups = compute_groups([SeriesRange(0, 2, 1), SeriesRange(2, 4, 2)])
    assert _tuples(groups) == [(0, 2, (1,)), (2, 4, (2,))]


def test_identical_ranges_union_their_sets() -> None:
    groups = compute_groups([SeriesRange(0, 5, 2), SeriesRange(0, 5, 1)])
    assert _tuples(groups) == [(0, 5, (1, 2))]


def test_partial_overlap_and_extension() -> None:
    groups = compute_groups([SeriesRange(0, 4, 1), SeriesRange(2, 6, 2), SeriesRange(5, 9, 3)])
    assert _tuples(groups) == [
        (0, 2, (1,)),
        (2, 4, (1, 2)),
        (4, 5, (2,)),
        (5, 6, (2, 3)),
        (6, 9, (3,)),
    ]


def test_range_spanning_a_gap_fills_it() -> None:
    groups = compute_groups([SeriesRange(0, 2, 1), SeriesRange(1, 8, 3), SeriesRange(4, 6, 2)])
    assert _tuples(groups) == [
        (0, 1, (1,)),
        (1, 2, (1, 3)),
        (2, 4, (3,)),
        (4, 6, (2, 3)),
        (6, 8, (3,)),
    ]


def test_repeated_split_unions_sets() -> None:
    groups = compute_groups(
        [SeriesRange(0, 10, 1), SeriesRange(2, 4, 2), SeriesRange(2, 4, 3)]
    )
    assert _tuples(groups) == [(0, 2, (1,)), (2, 4, (1, 2, 3)), (4, 10, (1,))]


def test_single_point_range_is_kept() -> None:
    groups = compute_groups([SeriesRange(5, 5, 1)])
    assert _tuples(groups) == [(5, 6, (1,))]
    groups = compute_groups([SeriesRange(0, 10, 1), SeriesRange(3, 3, 2)])
    assert _tuples(groups) == [(0, 3, (1,)), (3, 4, (1, 2)), (4, 10, (1,))]


def test_inverted_range_is_rejected() -> None:
    with pytest.raises(ValueError):
        compute_groups([SeriesRange(5, 4, 1)])


def test_empty_input() -> None:
    assert compute_groups([]) == []


def test_sorted_series_ranges_are_half_open() -> None:
    series = {
        2: SeriesRecord(fingerprint=2, metric={"a": "2"}, first_time=1, last_time=1),
        1: SeriesRecord(fingerprint=1, metric={"a": "1"}, first_time=0, last_time=2),
    }
    assert sorted_series_ranges(series) == [SeriesRange(0, 3, 1), SeriesRange(1, 2, 2)]
    assert _tuples(compute_groups(sorted_series_ranges(series))) == [
        (0, 1, (1,)),
        (1, 2, (1, 2)),
        (2, 3, (1,)),
    ]


def test_random_ranges_partition_the_union() -> None:
    rng = random.Random(7)
    for _ in range(200):
        ranges = []
        for fp in range(rng.randint(1, 8)):
            start = rng.randint(0, 30)
            ranges.append(SeriesRange(start, start + rng.randint(0, 12), fp))
        ranges.sort()
        _check_partition(ranges, compute_groups(ranges))


def test_result_independent_of_tie_order() -> None:
    ranges = [SeriesRange(0, 5, 1), SeriesRange(0, 5, 2), SeriesRange(2, 7, 3), SeriesRange(2, 7, 4)]
    expected = _tuples(compute_groups(ranges))
    for perm in itertools.permutations(ranges):
        ordered = sorted(perm, key=lambda r: (r.start, r.end))
        assert _tuples(compute_groups(ordered)) == expected


def test_inconsistent_split_raises_unhandled_overlap(monkeypatch) -> None:
    # A broken clipping primitive leaves the split groups overlapping.
    monkeypatch.setattr(
        grouping, "_portion_before", lambda g, boundary: TimeGroup(g.start, g.end, g.fingerprints)
    )
    with pytest.raises(UnhandledOverlap):
        compute_groups([SeriesRange(0, 3, 1), SeriesRange(1, 2, 2)])


def test_adjacent_groups_with_equal_sets_are_joined() -> None:
    groups = compute_groups([SeriesRange(0, 2, 1), SeriesRange(2, 4, 1)])
    assert _tuples(groups) == [(0, 4, (1,))]
