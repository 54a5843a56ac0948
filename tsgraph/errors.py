"""Exceptions raised while assembling a graph."""
from typing import Optional


class GraphError(Exception):
    """Base class for all render failures."""


class InvalidRequest(GraphError):
    """Missing or malformed request arguments; raised before any fetch."""


class AlignmentError(GraphError):
    """Two series cannot be placed on a common window and grid."""


class MismatchedSources(AlignmentError):
    def __init__(self, names1, names2):
        self.names1 = sorted(names1)
        self.names2 = sorted(names2)
        super().__init__(f"mismatching data sources: {self.names1} != {self.names2}")


class NonOverlappingRange(AlignmentError):
    def __init__(self, range1: str, range2: str):
        self.range1 = range1
        self.range2 = range2
        super().__init__(f"non-overlapping ranges: {range1} <-> {range2}")


class InvalidValueCount(AlignmentError):
    def __init__(self, name: str, count1: int, count2: int):
        self.name = name
        self.count1 = count1
        self.count2 = count2
        super().__init__(f"invalid value count for {name!r}: {count1} != {count2}")


class MismatchedStep(AlignmentError):
    def __init__(self, name: str, step1: int, step2: int):
        self.name = name
        self.step1 = step1
        self.step2 = step2
        super().__init__(
            f"mismatching step sizes for {name!r}: {step1 / 1e9:g}s != {step2 / 1e9:g}s"
        )


class MisalignedSeries(AlignmentError):
    def __init__(self, name: str, index: int, ts1: int, ts2: int):
        self.name = name
        self.index = index
        super().__init__(
            f"misaligned points for {name!r} at index {index}: {ts1} != {ts2}"
        )


class IncompatibleSeries(GraphError):
    """Aggregation failed because the inputs could not be aligned."""


class FetchError(GraphError):
    """Retrieving a time-series from the telemetry backend failed."""

    def __init__(self, message: str, metric: Optional[str] = None):
        self.metric = metric
        if metric:
            message = f"{metric}: {message}"
        super().__init__(message)


class NotATimeSeries(FetchError):
    """The backend answered, but not with a time-series."""


class BackendError(FetchError):
    """Connection, protocol or server failure talking to the backend."""
