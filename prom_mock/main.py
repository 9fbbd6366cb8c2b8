"""Main entry point for the Prometheus mock server."""
import argparse
import logging
import sys

from prom_mock.api import MockAPI
from prom_mock.config import Config, load_config
from prom_mock.fixtures import FixtureBook, FixtureError, load_fixtures
from prom_mock.self_metrics import SelfMetrics
from prom_mock.storage import MemoryStorage


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
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="prom-mock",
        description="Prometheus API mock: fixtures, remote write sink and simple queries"
    )
    parser.add_argument("--config", "-c", help="Path to configuration YAML file")
    parser.add_argument("--listen", help="Address to listen on, HOST:PORT")
    parser.add_argument("--fixtures", help="Path to YAML fixtures file")
    parser.add_argument("--fixed-now", help="Fixed \"now\" (RFC3339, e.g. 2025-08-03T00:00:00Z)")
    parser.add_argument("--latency-ms", type=int, help="Artificial latency per request")
    parser.add_argument("--error-rate", type=float, help="Probability (0.0-1.0) of returning 503")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line flags on top of the loaded configuration."""
    raw = config.model_dump(by_alias=True)

    if args.listen:
        host, _, port = args.listen.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"--listen must be HOST:PORT, got '{args.listen}'")
        raw["server"]["listen_host"] = host
        raw["server"]["listen_port"] = int(port)

    if args.fixtures:
        raw["mock"]["fixtures"] = args.fixtures
    if args.fixed_now:
        raw["mock"]["fixed_now"] = args.fixed_now
    if args.latency_ms is not None:
        raw["mock"]["latency_ms"] = args.latency_ms
    if args.error_rate is not None:
        raw["mock"]["error_rate"] = args.error_rate
    if args.log_level:
        raw["global"]["log_level"] = args.log_level

    return Config.model_validate(raw)


def main(argv=None):
    """Main function."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = apply_overrides(load_config(args.config), args)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    # Load fixtures (an empty book is fine)
    if config.mock.fixtures:
        try:
            book = load_fixtures(config.mock.fixtures)
        except FixtureError as e:
            logger.error(f"Failed to load fixtures: {e}")
            sys.exit(1)
    else:
        book = FixtureBook()
        logger.info("No fixtures configured, fixture endpoints will return 404")

    storage = MemoryStorage()
    api = MockAPI(storage, fixtures=book, config=config.mock, self_metrics=SelfMetrics())

    logger.info(f"Latency: {config.mock.latency_ms}ms, error rate: {config.mock.error_rate}")
    if api.fixed_now:
        logger.info(f"Fixed now: {api.fixed_now.isoformat()}")

    host, port = config.server.listen_host, config.server.listen_port
    logger.info(f"Starting prom-mock on http://{host}:{port}")
    try:
        api.run(host=host, port=port)
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
