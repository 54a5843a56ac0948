"""Graph assembly: turns a graph request into ordered, labeled plot lines."""
import logging
from dataclasses import dataclass
from typing import List, Tuple

from tsgraph.errors import InvalidRequest
from tsgraph.grouping import LabeledSeries, MetricDescriptor, group
from tsgraph.series import Series, format_ns

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Graph:
    """A single graph. It may reference multiple data-sources."""
    start: int
    end: int
    metrics: Tuple[MetricDescriptor, ...]
    group_by: Tuple[str, ...] = ()

    def __post_init__(self):
        # Accept lists from callers but keep the graph immutable.
        object.__setattr__(self, "metrics", tuple(self.metrics))
        object.__setattr__(self, "group_by", tuple(self.group_by))

        if not self.metrics:
            raise InvalidRequest("Graph without metrics")
        if self.end < self.start:
            raise InvalidRequest(
                f"End time {format_ns(self.end)} before start time {format_ns(self.start)}"
            )
        for m in self.metrics:
            if not m.hostname or not m.identifier:
                raise InvalidRequest(f"Missing host/metric information in {m}")

    def fetch(self, source, metric: MetricDescriptor) -> Series:
        return source.fetch(metric.hostname, metric.identifier, self.start, self.end)

    def plot(self, source, verify_timestamps: bool = True) -> List["RenderLine"]:
        """Fetch the graph's time-series from source and build its plot lines."""
        groups = group(
            self.metrics,
            self.group_by,
            lambda m: self.fetch(source, m),
            verify_timestamps=verify_timestamps,
        )

        lines: List[RenderLine] = []
        verbose = len(self.metrics) > 1
        for labeled in groups:
            lines.extend(_lines(labeled, verbose, color_index=len(lines)))

        logger.info(
            f"Assembled {len(lines)} line(s) from {len(self.metrics)} metric(s) "
            f"in {len(groups)} group(s)"
        )
        return lines


@dataclass
class RenderLine:
    """One drawable line: legend label, (x=ns, y=value) points, palette index."""
    label: str
    points: List[Tuple[int, float]]
    color_index: int


def _lines(labeled: LabeledSeries, verbose: bool, color_index: int) -> List[RenderLine]:
    lines = []
    for name, data in labeled.series.items():
        if verbose:
            label = f"{labeled.hostname} {labeled.identifier} {name}"
        else:
            label = name
        points = [(p.timestamp, p.value) for p in data]
        lines.append(RenderLine(label, points, color_index))
        color_index += 1
    return lines
