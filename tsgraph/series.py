"""Data structures for time-series windows and their points."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Tuple


@dataclass
class DataPoint:
    """A single measurement: nanosecond epoch timestamp and value."""
    timestamp: int
    value: float


@dataclass
class Series:
    """A time window plus one or more named point sequences.

    ``start`` and ``end`` are authoritative for the window of every
    sub-series. Sub-series are always iterated in sorted name order.
    """
    start: int
    end: int
    data: Dict[str, List[DataPoint]] = field(default_factory=dict)

    def names(self) -> List[str]:
        """Sub-series names in deterministic (sorted) order."""
        return sorted(self.data)

    def items(self) -> Iterator[Tuple[str, List[DataPoint]]]:
        for name in self.names():
            yield name, self.data[name]

    def step(self, name: str) -> int:
        """Sampling step of a sub-series; 0 for degenerate series."""
        count = len(self.data[name])
        if count <= 1:
            return 0
        return (self.end - self.start) // (count - 1)

    def copy(self) -> "Series":
        return Series(
            start=self.start,
            end=self.end,
            data={
                name: [DataPoint(p.timestamp, p.value) for p in points]
                for name, points in self.data.items()
            },
        )

    def describe(self) -> str:
        return f"[{format_ns(self.start)}, {format_ns(self.end)}]"


def label_key(labels: Dict[str, str]) -> str:
    """Generate a stable key from sorted labels."""
    items = sorted(labels.items())
    return ",".join(f"{k}={v}" for k, v in items)


def to_ns(when: datetime) -> int:
    """Convert a datetime to nanoseconds since the epoch (naive means UTC)."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = when - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000


def from_ns(ns: int) -> datetime:
    seconds, rest = divmod(ns, 10**9)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=rest // 1000)


def format_ns(ns: int) -> str:
    return from_ns(ns).strftime("%Y-%m-%d %H:%M:%S")
