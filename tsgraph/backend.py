"""Telemetry backends: tagged query results, connection pool and metric sources."""
import logging
import queue
import re
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import requests

from tsgraph.errors import BackendError, NotATimeSeries
from tsgraph.grouping import MetricDescriptor
from tsgraph.query import Matcher
from tsgraph.series import DataPoint, Series, label_key, to_ns

logger = logging.getLogger(__name__)

DEFAULT_SUBSERIES = "value"


# Query results. Every backend call answers with exactly one of these.

@dataclass
class Host:
    name: str
    metrics: List[MetricDescriptor] = field(default_factory=list)


@dataclass
class HostList:
    hosts: List[Host] = field(default_factory=list)


@dataclass
class Timeseries:
    series: Series


@dataclass
class QueryError:
    message: str


QueryResult = Union[HostList, Host, Timeseries, QueryError]


def expect_timeseries(result: QueryResult, metric: str) -> Series:
    """Unwrap a time-series result, raising for every other variant."""
    if isinstance(result, Timeseries):
        if not result.series.data:
            raise NotATimeSeries("no data in the requested time range", metric)
        return result.series
    if isinstance(result, (Host, HostList)):
        raise NotATimeSeries(
            f"query did not return a time-series but {type(result).__name__}", metric
        )
    if isinstance(result, QueryError):
        raise BackendError(f"Failed to retrieve graph data: {result.message}", metric)
    raise BackendError(f"unsupported query result {type(result).__name__}", metric)


def expect_hosts(result: QueryResult) -> List[Host]:
    if isinstance(result, HostList):
        return result.hosts
    if isinstance(result, Host):
        return [result]
    if isinstance(result, QueryError):
        raise BackendError(f"Failed to query hosts: {result.message}")
    raise BackendError(f"query did not return hosts but {type(result).__name__}")


class ConnectionPool:
    """
    Bounded pool of backend connections, created once at startup.

    Acquiring blocks until a connection is free (or until the optional
    acquire timeout expires). Connections are returned on every exit path.
    """

    def __init__(self, factory: Callable[[], Any], size: int,
                 acquire_timeout: Optional[float] = None):
        if size < 1:
            raise ValueError("Connection pool size must be at least 1")
        self.size = size
        self.acquire_timeout = acquire_timeout
        self._idle: "queue.Queue[Any]" = queue.Queue(maxsize=size)
        self._all = [factory() for _ in range(size)]
        for conn in self._all:
            self._idle.put(conn)
        self._lock = threading.Lock()
        self._in_use = 0

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @contextmanager
    def connection(self):
        try:
            conn = self._idle.get(timeout=self.acquire_timeout)
        except queue.Empty:
            raise BackendError(
                f"timed out after {self.acquire_timeout}s waiting for a backend connection"
            )
        with self._lock:
            self._in_use += 1
        try:
            yield conn
        finally:
            with self._lock:
                self._in_use -= 1
            self._idle.put(conn)

    def close(self):
        for conn in self._all:
            close = getattr(conn, "close", None)
            if close is not None:
                close()


class MetricSource(ABC):
    """Base class for telemetry backends."""

    def __init__(self, self_metrics=None):
        self.self_metrics = self_metrics

    @abstractmethod
    def query_timeseries(self, hostname: str, identifier: str,
                         start: int, end: int) -> QueryResult:
        """Query the raw series of one metric in [start, end] (nanoseconds)."""

    @abstractmethod
    def query_hosts(self) -> QueryResult:
        """Query all known hosts."""

    @abstractmethod
    def query_lookup(self, matchers: Sequence[Matcher]) -> QueryResult:
        """Query the metrics matching all matchers, grouped by host."""

    def fetch(self, hostname: str, identifier: str, start: int, end: int) -> Series:
        """Fetch the series of a single metric."""
        metric = f"{hostname}.{identifier}"
        logger.debug(f"Fetching {metric}")
        try:
            series = expect_timeseries(
                self.query_timeseries(hostname, identifier, start, end), metric
            )
        except NotATimeSeries:
            self._record_error("not_a_timeseries")
            raise
        except BackendError as e:
            self._record_error("backend")
            if e.metric is None:
                raise BackendError(str(e), metric) from e
            raise
        if self.self_metrics:
            self.self_metrics.record_fetch()
        return series

    def hosts(self) -> List[str]:
        return [h.name for h in expect_hosts(self.query_hosts())]

    def lookup(self, matchers: Sequence[Matcher]) -> List[MetricDescriptor]:
        metrics = []
        for host in expect_hosts(self.query_lookup(matchers)):
            metrics.extend(host.metrics)
        return sorted(metrics, key=lambda m: (m.hostname, m.identifier))

    def close(self):
        pass

    def _record_error(self, kind: str):
        if self.self_metrics:
            self.self_metrics.record_fetch_error(kind)


def escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class PrometheusClient:
    """A single connection to a Prometheus-compatible HTTP API."""

    def __init__(self, base_url: str, timeout: float, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def get(self, path: str, params) -> Dict[str, Any]:
        """Issue a GET request; returns the decoded JSON envelope."""
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise BackendError(f"Query {path} failed: {e}")
        try:
            payload = resp.json()
        except ValueError:
            raise BackendError(
                f"Failed to decode response of {path} (HTTP {resp.status_code})"
            )
        if not isinstance(payload, dict):
            raise BackendError(f"Unexpected response of {path}: {payload!r}")
        return payload

    def close(self):
        self.session.close()


class PrometheusSource(MetricSource):
    """Metric source backed by the Prometheus HTTP API."""

    def __init__(self, pool: ConnectionPool, host_label: str = "instance",
                 step_s: int = 60, self_metrics=None):
        super().__init__(self_metrics)
        self.pool = pool
        self.host_label = host_label
        self.step_s = step_s

    def query_timeseries(self, hostname, identifier, start, end) -> QueryResult:
        step_ns = self.step_s * 10**9
        # Round up to the grid so that all metrics of a graph share it.
        grid_start = -(-start // step_ns) * step_ns
        if grid_start > end:
            return Timeseries(Series(start, end))

        selector = self.selector([
            Matcher("__name__", identifier),
            Matcher(self.host_label, hostname),
        ])
        params = {
            "query": selector,
            "start": f"{grid_start / 1e9:.3f}",
            "end": f"{end / 1e9:.3f}",
            "step": f"{self.step_s}s",
        }
        with self.pool.connection() as client:
            payload = client.get("/api/v1/query_range", params)

        if payload.get("status") != "success":
            return QueryError(self._error_message(payload))
        data = payload.get("data") or {}
        if data.get("resultType") != "matrix":
            return QueryError(f"unexpected result type {data.get('resultType')!r}")
        return Timeseries(self.parse_matrix(data.get("result") or [], start, end))

    def query_hosts(self) -> QueryResult:
        with self.pool.connection() as client:
            payload = client.get(f"/api/v1/label/{self.host_label}/values", {})
        if payload.get("status") != "success":
            return QueryError(self._error_message(payload))
        return HostList([Host(name) for name in sorted(payload.get("data") or [])])

    def query_lookup(self, matchers) -> QueryResult:
        params = {"match[]": self.selector(matchers)}
        with self.pool.connection() as client:
            payload = client.get("/api/v1/series", params)
        if payload.get("status") != "success":
            return QueryError(self._error_message(payload))
        return self.parse_series(payload.get("data") or [])

    def selector(self, matchers: Sequence[Matcher]) -> str:
        parts = []
        for m in matchers:
            if m.regex:
                parts.append(f'{m.label}=~".*{escape(m.value)}.*"')
            else:
                parts.append(f'{m.label}="{escape(m.value)}"')
        return "{" + ",".join(parts) + "}"

    def subseries_name(self, labels: Dict[str, str]) -> str:
        rest = {k: v for k, v in labels.items() if k not in ("__name__", self.host_label)}
        return label_key(rest) or DEFAULT_SUBSERIES

    def parse_matrix(self, result: List[Dict[str, Any]], start: int, end: int) -> Series:
        data: Dict[str, List[DataPoint]] = {}
        for entry in result:
            name = self.subseries_name(entry.get("metric") or {})
            points = [
                DataPoint(int(round(float(ts) * 1000)) * 10**6, float(value))
                for ts, value in entry.get("values") or []
            ]
            data[name] = sorted(points, key=lambda p: p.timestamp)

        stamps = [p.timestamp for points in data.values() for p in points]
        if not stamps:
            return Series(start, end)
        return Series(min(stamps), max(stamps), data)

    def parse_series(self, result: List[Dict[str, str]]) -> HostList:
        """Turn label sets into one metric per (host, name) and group by host."""
        by_metric: Dict[tuple, List[Dict[str, str]]] = {}
        for labels in result:
            host = labels.get(self.host_label)
            name = labels.get("__name__")
            if not host or not name:
                continue
            by_metric.setdefault((host, name), []).append(labels)

        hosts: Dict[str, Host] = {}
        for (hostname, identifier), label_sets in sorted(by_metric.items()):
            # Only labels shared by all series of a metric describe the metric.
            common = dict(label_sets[0])
            for labels in label_sets[1:]:
                common = {k: v for k, v in common.items() if labels.get(k) == v}
            attributes = {k: v for k, v in common.items()
                          if k not in ("__name__", self.host_label)}
            host = hosts.setdefault(hostname, Host(hostname))
            host.metrics.append(MetricDescriptor(hostname, identifier, attributes))
        return HostList(list(hosts.values()))

    def close(self):
        self.pool.close()

    @staticmethod
    def _error_message(payload: Dict[str, Any]) -> str:
        return f"{payload.get('errorType', 'error')}: {payload.get('error', 'unknown error')}"


@dataclass
class StaticMetric:
    descriptor: MetricDescriptor
    series: Series


class StaticSource(MetricSource):
    """Metric source serving fixed series, e.g. loaded from a YAML file."""

    def __init__(self, metrics: Sequence[StaticMetric] = (), self_metrics=None):
        super().__init__(self_metrics)
        self.metrics = list(metrics)

    def add(self, descriptor: MetricDescriptor, series: Series):
        self.metrics.append(StaticMetric(descriptor, series))

    def query_timeseries(self, hostname, identifier, start, end) -> QueryResult:
        for m in self.metrics:
            if m.descriptor.hostname == hostname and m.descriptor.identifier == identifier:
                return Timeseries(self._window(m.series, start, end))
        return QueryError(f"metric {hostname}.{identifier} not found")

    def query_hosts(self) -> QueryResult:
        names = sorted({m.descriptor.hostname for m in self.metrics})
        return HostList([Host(name) for name in names])

    def query_lookup(self, matchers) -> QueryResult:
        hosts: Dict[str, Host] = {}
        for m in self.metrics:
            if all(self._matches(m.descriptor, matcher) for matcher in matchers):
                host = hosts.setdefault(m.descriptor.hostname, Host(m.descriptor.hostname))
                host.metrics.append(m.descriptor)
        return HostList([hosts[name] for name in sorted(hosts)])

    @staticmethod
    def _matches(descriptor: MetricDescriptor, matcher: Matcher) -> bool:
        if matcher.label == "__name__":
            value = descriptor.identifier
        else:
            value = descriptor.attributes.get(matcher.label)
        if value is None:
            return False
        if matcher.regex:
            return re.search(matcher.value, value) is not None
        return value == matcher.value

    @staticmethod
    def _window(series: Series, start: int, end: int) -> Series:
        data = {
            name: [DataPoint(p.timestamp, p.value) for p in points
                   if start <= p.timestamp <= end]
            for name, points in series.data.items()
        }
        stamps = [p.timestamp for points in data.values() for p in points]
        if not stamps:
            return Series(start, end)
        return Series(min(stamps), max(stamps), data)


def load_static(path: str) -> List[StaticMetric]:
    """
    Load series from a YAML file.

    Format::

        series:
          - host: web1
            metric: cpu
            attributes: {role: web}
            start: "2016-01-01 04:05:00"
            step_s: 60
            data:
              value: [0.0, 1.0, 1.0]
    """
    import yaml

    with open(path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    metrics = []
    for entry in raw.get("series", []):
        start = entry["start"]
        if not isinstance(start, datetime):
            start = datetime.strptime(str(start), "%Y-%m-%d %H:%M:%S")
        start_ns = to_ns(start)
        step_ns = int(entry.get("step_s", 60)) * 10**9

        data = {
            name: [DataPoint(start_ns + i * step_ns, float(v)) for i, v in enumerate(values)]
            for name, values in (entry.get("data") or {}).items()
        }
        count = max((len(points) for points in data.values()), default=1)
        series = Series(start_ns, start_ns + max(count - 1, 0) * step_ns, data)

        descriptor = MetricDescriptor(
            str(entry["host"]),
            str(entry["metric"]),
            {str(k): str(v) for k, v in (entry.get("attributes") or {}).items()},
        )
        metrics.append(StaticMetric(descriptor, series))

    logger.info(f"Loaded {len(metrics)} static series from {path}")
    return metrics


def create_source(config, self_metrics=None) -> MetricSource:
    """Create the metric source described by the backend configuration."""
    if config.kind == "static":
        return StaticSource(load_static(config.static_path), self_metrics=self_metrics)

    pool = ConnectionPool(
        lambda: PrometheusClient(config.url, config.timeout_s),
        config.pool_size,
        acquire_timeout=config.acquire_timeout_s,
    )
    logger.info(f"Connecting to {config.url} with {config.pool_size} connection(s)")
    return PrometheusSource(
        pool, host_label=config.host_label, step_s=config.step_s, self_metrics=self_metrics
    )
