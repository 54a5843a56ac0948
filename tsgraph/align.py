"""Alignment and aggregation of time-series."""
import logging
from typing import Tuple

from tsgraph.errors import (
    AlignmentError,
    IncompatibleSeries,
    InvalidValueCount,
    MisalignedSeries,
    MismatchedSources,
    MismatchedStep,
    NonOverlappingRange,
)
from tsgraph.series import Series

logger = logging.getLogger(__name__)


def align(ts1: Series, ts2: Series) -> Tuple[Series, Series]:
    """
    Align two time-series such that start and end times and step sizes match.

    Both series are trimmed to the intersection of their windows. No values
    are interpolated: the intersection has to fall onto the grid of both
    inputs. The inputs are left untouched; aligned copies are returned.

    Args:
        ts1: First series
        ts2: Second series

    Returns:
        Tuple of the two aligned series

    Raises:
        MismatchedSources: The series do not carry the same sub-series
        NonOverlappingRange: The windows do not intersect
        InvalidValueCount: Degenerate (0 or 1 point) series of different shape
        MismatchedStep: The sampling steps differ
    """
    if set(ts1.data) != set(ts2.data):
        raise MismatchedSources(ts1.data, ts2.data)

    start = max(ts1.start, ts2.start)
    end = min(ts1.end, ts2.end)
    if end < start:
        raise NonOverlappingRange(ts1.describe(), ts2.describe())

    a, b = ts1.copy(), ts2.copy()
    for name in ts1.names():
        l1, l2 = len(ts1.data[name]), len(ts2.data[name])
        if l1 <= 1 or l2 <= 1:
            if l1 == l2 and ts1.end - ts1.start == ts2.end - ts2.start:
                continue
            raise InvalidValueCount(name, l1, l2)

        step1, step2 = ts1.step(name), ts2.step(name)
        if step1 != step2 or step1 <= 0:
            raise MismatchedStep(name, step1, step2)

        for ts in (a, b):
            lo = (start - ts.start) // step1
            hi = (end - ts.start) // step1
            ts.data[name] = ts.data[name][lo:hi + 1]

    a.start = b.start = start
    a.end = b.end = end
    return a, b


def aggregate_sum(ts1: Series, ts2: Series, verify_timestamps: bool = True) -> Series:
    """Add ts2 to ts1 after aligning both; returns the sum as a new series."""
    try:
        a, b = align(ts1, ts2)
        _check_counts(a, b)
        if verify_timestamps:
            _check_timestamps(a, b)
    except AlignmentError as e:
        raise IncompatibleSeries(f"Incompatible time-series: {e}") from e

    for name, points in a.items():
        other = b.data[name]
        for i, point in enumerate(points):
            point.value += other[i].value

    logger.debug(f"Summed series over {a.describe()} ({len(a.data)} sub-series)")
    return a


def _check_counts(a: Series, b: Series):
    # The window may miss the grid of one side, leaving unequal trims.
    for name, points in a.items():
        if len(points) != len(b.data[name]):
            raise InvalidValueCount(name, len(points), len(b.data[name]))


def _check_timestamps(a: Series, b: Series):
    for name, points in a.items():
        for i, (p1, p2) in enumerate(zip(points, b.data[name])):
            if p1.timestamp != p2.timestamp:
                raise MisalignedSeries(name, i, p1.timestamp, p2.timestamp)
