"""Grouping of metrics by attribute values and per-group aggregation."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence, Tuple

from tsgraph.align import aggregate_sum
from tsgraph.errors import IncompatibleSeries
from tsgraph.series import Series

logger = logging.getLogger(__name__)

# Separates group-by values in a group key. Cannot appear inside an
# attribute value, and sorts before every printable character.
KEY_SEPARATOR = "\x00"


@dataclass(frozen=True)
class MetricDescriptor:
    """A single data-source of a graph; identifies one backend time-series."""
    hostname: str
    identifier: str
    attributes: Dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.hostname}.{self.identifier}"


@dataclass
class LabeledSeries:
    """A fetched (and possibly aggregated) series with its display label."""
    hostname: str
    identifier: str
    series: Series


Fetch = Callable[[MetricDescriptor], Series]


def group_key(metric: MetricDescriptor, group_by: Sequence[str]) -> Tuple[str, ...]:
    """Attribute values of a metric, one per group-by name; unset is ''."""
    return tuple(metric.attributes.get(name, "") for name in group_by)


def encode_key(key: Tuple[str, ...]) -> str:
    return "".join(KEY_SEPARATOR + value for value in key)


def group(
    metrics: Sequence[MetricDescriptor],
    group_by: Sequence[str],
    fetch: Fetch,
    verify_timestamps: bool = True,
) -> List[LabeledSeries]:
    """
    Fetch the series of all metrics and collapse them into groups.

    Without group-by attributes every metric is returned on its own, in input
    order. Otherwise metrics sharing the same attribute values are summed up
    and groups are returned ordered by their key.

    Args:
        metrics: Metrics to fetch
        group_by: Attribute names to group by
        fetch: Callable retrieving the series of a single metric
        verify_timestamps: Check point timestamps before summing

    Returns:
        List of labeled series, one per metric or per group
    """
    if not group_by:
        return [LabeledSeries(m.hostname, m.identifier, fetch(m)) for m in metrics]

    names: List[str] = []
    groups: Dict[str, List[MetricDescriptor]] = {}
    for m in metrics:
        key = encode_key(group_key(m, group_by))
        if key not in groups:
            names.append(key)
            groups[key] = []
        groups[key].append(m)
    names.sort()

    result = []
    for name in names:
        members = groups[name]
        identifier = name[1:].replace(KEY_SEPARATOR, "-")
        ts = fetch(members[0])
        host = members[0].hostname
        for m in members[1:]:
            try:
                ts = aggregate_sum(ts, fetch(m), verify_timestamps=verify_timestamps)
            except IncompatibleSeries as e:
                raise IncompatibleSeries(
                    f"Cannot add {m} to group {identifier!r} "
                    f"(starting with {members[0]}): {e}"
                ) from e
            if host and host != m.hostname:
                host = ""

        logger.debug(f"Group {identifier!r}: {len(members)} metric(s), host={host!r}")
        result.append(LabeledSeries(host, identifier, ts))
    return result
