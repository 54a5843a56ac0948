"""Tests for time-series alignment and summation."""
from datetime import datetime

import pytest

from tsgraph.align import aggregate_sum, align
from tsgraph.errors import (
    IncompatibleSeries, InvalidValueCount, MisalignedSeries,
    MismatchedSources, MismatchedStep, NonOverlappingRange
)
from tsgraph.series import DataPoint, Series, to_ns

MINUTE = 60 * 10**9


def ts(hour, minute, sec=0):
    return to_ns(datetime(2016, 1, 1, hour, minute, sec))


def series(start, values, step=MINUTE, name="value"):
    """Build a series on a constant grid starting at start."""
    points = [DataPoint(start + i * step, float(v)) for i, v in enumerate(values)]
    end = start + max(len(values) - 1, 0) * step
    return Series(start, end, {name: points})


def stamps(s, name="value"):
    return [p.timestamp for p in s.data[name]]


def test_align_contained_window():
    a = series(ts(4, 5), [0, 0, 1, 1, 0, 0])
    b = series(ts(4, 7), [1, 1])

    a2, b2 = align(a, b)

    for s in (a2, b2):
        assert s.start == ts(4, 7)
        assert s.end == ts(4, 8)
        assert stamps(s) == [ts(4, 7), ts(4, 8)]
    assert [p.value for p in a2.data["value"]] == [1.0, 1.0]


def test_align_partial_overlap():
    a = series(ts(4, 5), [0, 0, 0, 1, 1, 1])
    b = series(ts(4, 8), [1, 1, 1, 0, 0])

    a2, b2 = align(a, b)

    for s in (a2, b2):
        assert (s.start, s.end) == (ts(4, 8), ts(4, 10))
        assert stamps(s) == [ts(4, 8), ts(4, 9), ts(4, 10)]
        assert [p.value for p in s.data["value"]] == [1.0, 1.0, 1.0]


def test_align_single_point_series():
    a = series(ts(4, 7), [1])
    b = series(ts(4, 7), [1])

    a2, b2 = align(a, b)

    assert a2 == a
    assert b2 == b


def test_align_disjoint_windows():
    a = series(ts(4, 0), [0] * 6)
    b = series(ts(5, 0), [0] * 6)

    with pytest.raises(NonOverlappingRange) as exc:
        align(a, b)
    assert "04:00:00" in str(exc.value)
    assert "05:05:00" in str(exc.value)


def test_align_single_instant_window():
    a = series(ts(4, 5), [0, 1, 2])
    b = series(ts(4, 7), [5, 6, 7])

    a2, b2 = align(a, b)

    assert a2.start == a2.end == ts(4, 7)
    assert [p.value for p in a2.data["value"]] == [2.0]
    assert [p.value for p in b2.data["value"]] == [5.0]


def test_align_is_symmetric():
    a = series(ts(4, 5), [0, 1, 2, 3, 4, 5])
    b = series(ts(4, 8), [6, 7, 8, 9, 10])

    a1, b1 = align(a, b)
    b2, a2 = align(b, a)

    assert a1 == a2
    assert b1 == b2


def test_align_grid_point_count():
    step = 30 * 10**9
    a = series(ts(4, 0), range(41), step=step)
    b = series(ts(4, 7, 30), range(100), step=step)

    a2, b2 = align(a, b)

    expected = (a2.end - a2.start) // step + 1
    assert len(a2.data["value"]) == expected
    assert len(b2.data["value"]) == expected


def test_align_already_aligned_is_noop():
    a = series(ts(4, 5), [1, 2, 3])
    b = series(ts(4, 5), [4, 5, 6])

    a2, b2 = align(a, b)

    assert a2 == a
    assert b2 == b


def test_align_leaves_inputs_untouched():
    a = series(ts(4, 5), [0, 0, 1, 1, 0, 0])
    b = series(ts(4, 7), [1, 1])
    before = a.copy()

    align(a, b)

    assert a == before
    assert len(a.data["value"]) == 6


def test_align_mismatched_sources():
    a = series(ts(4, 5), [1, 2], name="rx")
    b = series(ts(4, 5), [1, 2], name="tx")

    with pytest.raises(MismatchedSources):
        align(a, b)


def test_align_mismatched_step():
    a = series(ts(4, 5), [1, 2, 3])
    b = series(ts(4, 5), [1, 2, 3], step=2 * MINUTE)

    with pytest.raises(MismatchedStep) as exc:
        align(a, b)
    assert exc.value.name == "value"
    assert exc.value.step1 == MINUTE
    assert exc.value.step2 == 2 * MINUTE


def test_align_degenerate_count_mismatch():
    a = series(ts(4, 5), [1])
    b = series(ts(4, 5), [1, 2])

    with pytest.raises(InvalidValueCount) as exc:
        align(a, b)
    assert (exc.value.count1, exc.value.count2) == (1, 2)


def test_align_empty_series():
    a = Series(ts(4, 5), ts(4, 5), {"value": []})
    b = Series(ts(4, 5), ts(4, 5), {"value": []})

    a2, b2 = align(a, b)

    assert a2.data["value"] == []
    assert b2.data["value"] == []


def test_sum_elementwise():
    a = series(ts(4, 5), [0, 0, 0, 1, 1, 1])
    b = series(ts(4, 8), [1, 2, 3, 0, 0])

    total = aggregate_sum(a, b)

    assert (total.start, total.end) == (ts(4, 8), ts(4, 10))
    assert [p.value for p in total.data["value"]] == [2.0, 3.0, 4.0]
    assert stamps(total) == [ts(4, 8), ts(4, 9), ts(4, 10)]


def test_sum_multiple_subseries():
    a = Series(ts(4, 5), ts(4, 6), {
        "rx": [DataPoint(ts(4, 5), 1.0), DataPoint(ts(4, 6), 2.0)],
        "tx": [DataPoint(ts(4, 5), 0.5), DataPoint(ts(4, 6), 0.5)],
    })
    b = a.copy()

    total = aggregate_sum(a, b)

    assert [p.value for p in total.data["rx"]] == [2.0, 4.0]
    assert [p.value for p in total.data["tx"]] == [1.0, 1.0]
    assert [p.value for p in a.data["rx"]] == [1.0, 2.0]


def test_sum_wraps_alignment_errors():
    a = series(ts(4, 0), [1, 2])
    b = series(ts(6, 0), [1, 2])

    with pytest.raises(IncompatibleSeries) as exc:
        aggregate_sum(a, b)
    assert isinstance(exc.value.__cause__, NonOverlappingRange)
    assert "Incompatible time-series" in str(exc.value)


def test_sum_detects_misaligned_points():
    # Equal windows and steps, but b's points are shifted off the grid.
    a = series(ts(4, 5), [1, 2, 3])
    b = series(ts(4, 5), [1, 2, 3])
    b.data["value"][1].timestamp += 10**9

    with pytest.raises(IncompatibleSeries) as exc:
        aggregate_sum(a, b)
    assert isinstance(exc.value.__cause__, MisalignedSeries)

    total = aggregate_sum(a, b, verify_timestamps=False)
    assert [p.value for p in total.data["value"]] == [2.0, 4.0, 6.0]


def test_sum_rejects_unequal_trims_without_timestamp_check():
    # start=5s lands on x's 1s grid but not on y's 2s grid.
    second = 10**9

    def mixed(start):
        return Series(start, start + 10 * second, {
            "x": [DataPoint(start + i * second, 1.0) for i in range(11)],
            "y": [DataPoint(start + i * 2 * second, 1.0) for i in range(6)],
        })

    for verify in (False, True):
        with pytest.raises(IncompatibleSeries) as exc:
            aggregate_sum(mixed(0), mixed(5 * second), verify_timestamps=verify)
        cause = exc.value.__cause__
        assert isinstance(cause, InvalidValueCount)
        assert (cause.name, cause.count1, cause.count2) == ("y", 4, 3)


def test_series_step():
    assert series(ts(4, 5), [1, 2, 3]).step("value") == MINUTE
    assert series(ts(4, 5), [1, 2, 3], step=2 * MINUTE).step("value") == 2 * MINUTE
    assert series(ts(4, 5), [1]).step("value") == 0
