"""Tests for server wiring."""
from pathlib import Path

from tsgraph.backend import PrometheusSource, StaticSource
from tsgraph.config import Config, load_config
from tsgraph.main import build_server

CONFIGS = Path(__file__).parent.parent / "configs"


def test_build_static_server():
    server = build_server(load_config(str(CONFIGS / "demo.yaml")))

    assert isinstance(server.source, StaticSource)
    assert server.source.hosts() == ["db1", "db2", "web1"]
    assert server.self_metrics is not None


def test_build_prometheus_server():
    config = Config()
    config.backend.pool_size = 2
    server = build_server(config)

    try:
        assert isinstance(server.source, PrometheusSource)
        assert server.source.pool.size == 2
        exposition = server.self_metrics.exposition().decode()
        assert "tsgraph_pool_connections_in_use 0.0" in exposition
    finally:
        server.source.close()


def test_self_metrics_disabled():
    config = Config()
    config.self_metrics.enabled = False

    server = build_server(config)

    assert server.self_metrics is None
    server.source.close()
