"""Main entry point for the graph server."""
import argparse
import logging
import sys

from tsgraph.backend import create_source
from tsgraph.config import Config, load_config
from tsgraph.self_metrics import SelfMetrics
from tsgraph.server import GraphServer


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        fmt = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("matplotlib").setLevel(logging.WARNING)


def build_server(config: Config) -> GraphServer:
    """Wire up self metrics, metric source and HTTP front-end."""
    self_metrics = None
    if config.self_metrics.enabled:
        self_metrics = SelfMetrics(prefix=config.self_metrics.prefix)

    source = create_source(config.backend, self_metrics=self_metrics)
    if self_metrics and hasattr(source, "pool"):
        self_metrics.track_pool(source.pool)

    return GraphServer(config, source, self_metrics=self_metrics)


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Time-series graph server - Render graphs of telemetry data"
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--listen",
        help="Address to listen on, overrides the configuration (host:port)"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config) if args.config else Config()
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.listen:
        host, _, port = args.listen.rpartition(":")
        if host:
            config.server.bind_address = host
        try:
            config.server.port = int(port)
        except ValueError:
            print(f"Invalid listen address: {args.listen}", file=sys.stderr)
            sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info(f"Configuration loaded from: {args.config or '<defaults>'}")
    logger.info(f"Backend: {config.backend.kind} ({config.backend.url})")

    try:
        server = build_server(config)
    except Exception as e:
        logger.error(f"Failed to initialize server: {e}", exc_info=True)
        sys.exit(1)

    logger.info(f"Listening on {config.server.bind_address}:{config.server.port}")
    try:
        server.run(host=config.server.bind_address, port=config.server.port)
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        server.source.close()


if __name__ == "__main__":
    main()
