"""HTTP front-end serving graph images using FastAPI."""
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple
from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST
import logging
import time

from tsgraph.config import Config
from tsgraph.errors import (
    AlignmentError, BackendError, GraphError, IncompatibleSeries,
    InvalidRequest, NotATimeSeries
)
from tsgraph.graph import Graph
from tsgraph.grouping import MetricDescriptor
from tsgraph.query import parse_group_by, parse_query
from tsgraph.render import CONTENT_TYPES, render
from tsgraph.series import to_ns

logger = logging.getLogger(__name__)

DATETIME = "%Y-%m-%d %H:%M:%S"
DEFAULT_RANGE = timedelta(hours=24)


def _status(err: GraphError) -> int:
    if isinstance(err, InvalidRequest):
        return 400
    if isinstance(err, NotATimeSeries):
        return 404
    if isinstance(err, (IncompatibleSeries, AlignmentError)):
        return 422
    if isinstance(err, BackendError):
        return 502
    return 500


class GraphServer:
    """FastAPI-based web front-end rendering graphs of backend metrics."""

    def __init__(self, config: Config, source, self_metrics=None,
                 clock: Callable[[], datetime] = None):
        """
        Initialize the graph server.

        Args:
            config: Service configuration
            source: Metric source used to fetch time-series
            self_metrics: Optional self-monitoring metrics
            clock: Returns the current time; defaults to UTC now
        """
        self.config = config
        self.source = source
        self.self_metrics = self_metrics
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.app = FastAPI(title="tsgraph")

        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/metrics")
        async def metrics():
            """Self-monitoring metrics in Prometheus exposition format."""
            if not self.self_metrics:
                raise HTTPException(status_code=404, detail="Self metrics disabled")
            return Response(self.self_metrics.exposition(), media_type=CONTENT_TYPE_LATEST)

        @self.app.get("/hosts")
        def hosts():
            """List all hosts known to the backend."""
            try:
                return {"hosts": self.source.hosts()}
            except GraphError as e:
                raise self._http_error(e)

        @self.app.get("/lookup")
        def lookup(query: str = ""):
            """List metrics matching a free-text query."""
            try:
                metrics = self.source.lookup(parse_query(query))
            except GraphError as e:
                raise self._http_error(e)
            return {
                "metrics": [
                    {"host": m.hostname, "metric": m.identifier, "attributes": m.attributes}
                    for m in metrics
                ]
            }

        @self.app.get("/graph")
        def query_graph(
            query: str = "",
            group_by: str = "",
            start: Optional[str] = None,
            end: Optional[str] = None,
        ):
            """Render a graph of all metrics matching a query."""
            try:
                window = self.parse_window(start, end)
                matchers = parse_query(query)
                metrics = self.source.lookup(matchers)
                if not metrics:
                    raise InvalidRequest(f"No metrics matching {query!r}")
            except GraphError as e:
                raise self._http_error(e)
            return self.render_graph(metrics, window, parse_group_by(group_by))

        @self.app.get("/graph/{host}/{identifier:path}")
        def metric_graph(
            host: str,
            identifier: str,
            start: Optional[str] = None,
            end: Optional[str] = None,
        ):
            """Render a graph of a single metric."""
            try:
                window = self.parse_window(start, end)
            except GraphError as e:
                raise self._http_error(e)
            metric = MetricDescriptor(host, identifier.strip("/"))
            return self.render_graph([metric], window, [])

    def parse_window(self, start: Optional[str], end: Optional[str]) -> Tuple[int, int]:
        """Parse the requested time range; defaults to the last 24 hours."""
        now = self.clock()
        start_time = now - DEFAULT_RANGE
        end_time = now
        if start:
            try:
                start_time = datetime.strptime(start, DATETIME)
            except ValueError:
                raise InvalidRequest(f"Invalid start time {start!r}")
        if end:
            try:
                end_time = datetime.strptime(end, DATETIME)
            except ValueError:
                raise InvalidRequest(f"Invalid end time {end!r}")
        return to_ns(start_time), to_ns(end_time)

    def render_graph(self, metrics: List[MetricDescriptor], window: Tuple[int, int],
                     group_by: List[str]) -> Response:
        """Assemble, plot and render a graph; maps failures onto HTTP errors."""
        started = time.time()
        status = "error"
        try:
            graph = Graph(window[0], window[1], metrics, group_by)
            lines = graph.plot(self.source, verify_timestamps=self.config.engine.verify_timestamps)
            image = render(lines, self.config.render)
            status = "ok"
        except GraphError as e:
            raise self._http_error(e)
        finally:
            if self.self_metrics:
                self.self_metrics.record_render(status, time.time() - started)

        return Response(image, media_type=CONTENT_TYPES[self.config.render.format])

    @staticmethod
    def _http_error(err: GraphError) -> HTTPException:
        status = _status(err)
        if status >= 500:
            logger.error(f"Render failed: {err}")
        else:
            logger.warning(f"Render rejected ({status}): {err}")
        return HTTPException(status_code=status, detail=str(err))

    def run(self, host: str = "0.0.0.0", port: int = 8080):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
