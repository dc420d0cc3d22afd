import argparse
import logging
import sys
from typing import List, Optional

from .config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    HOST_ENV,
    PORT_ENV,
    RPC_ENV,
    TIMEOUT_ENV,
    ExporterConfig,
    env_default,
)
from .daemon import ExporterDaemon
from .rpc import DEFAULT_RPC, DEFAULT_TIMEOUT
from .slots import DEFAULT_SLOT_PACE
from .types import ConfigurationError, ExporterError, FatalError


def setup_logging(debug=False, level="INFO"):
    """Configure logging with the specified level; ``debug`` forces DEBUG."""
    log_level = logging.DEBUG if debug else getattr(logging, level)

    # Configure the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console = logging.StreamHandler()
    console.setLevel(log_level)
    console.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S%z'
    ))
    root_logger.addHandler(console)

    log = logging.getLogger("solana-exporter")
    log.setLevel(log_level)
    return log


def build_parser() -> argparse.ArgumentParser:
    """Build the command line argument parser.

    Defaults for the connection settings are read from the environment.
    """
    parser = argparse.ArgumentParser(
        prog="solana-exporter",
        description="Export Solana validator and node metrics for Prometheus."
    )
    parser.add_argument(
        "--rpc-url",
        default=env_default(RPC_ENV, DEFAULT_RPC),
        help=f"Solana RPC URL (including protocol and path), env {RPC_ENV} (default: {DEFAULT_RPC})"
    )
    parser.add_argument(
        "--host",
        default=env_default(HOST_ENV, DEFAULT_HOST),
        help=f"Host to bind the HTTP server to, env {HOST_ENV} (default: {DEFAULT_HOST})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=env_default(PORT_ENV, DEFAULT_PORT),
        help=f"Port to serve /metrics on, env {PORT_ENV} (default: {DEFAULT_PORT})"
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=env_default(TIMEOUT_ENV, DEFAULT_TIMEOUT),
        help=f"HTTP timeout for each RPC call in seconds, env {TIMEOUT_ENV} (default: {DEFAULT_TIMEOUT:g})"
    )
    parser.add_argument(
        "--nodekey",
        action="append",
        dest="nodekeys",
        default=[],
        help="Validator node key to track; repeat for several validators."
    )
    parser.add_argument(
        "--balance-address",
        action="append",
        dest="balance_addresses",
        default=[],
        help="Address to monitor the SOL balance of; repeat for several addresses."
    )
    parser.add_argument(
        "--slot-pace",
        type=float,
        default=DEFAULT_SLOT_PACE,
        help=f"Seconds between slot watcher polls (default: {DEFAULT_SLOT_PACE:g})"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output (overrides --log-level)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, ignored if --debug is used)"
    )
    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    try:
        parsed_args = build_parser().parse_args(args)
        config = ExporterConfig.from_args(parsed_args)
    except ConfigurationError as e:
        print(f"solana-exporter: {e}", file=sys.stderr)
        return 1

    log = setup_logging(debug=config.debug, level=config.log_level)
    log.debug(f"Configuration: {config}")
    if not config.nodekeys:
        log.warning("No --nodekey given, only cluster-wide and node metrics will be exported")

    daemon = ExporterDaemon(config)
    try:
        daemon.setup()
    except ExporterError as e:
        log.critical(f"Failed to start: {e}")
        return 1

    try:
        daemon.start()
    except KeyboardInterrupt:
        log.info("Shutting down...")
    except FatalError as e:
        log.critical(f"Fatal error: {e}")
        return 1
    except OSError as e:
        log.critical(f"Failed to serve on {config.host}:{config.port}: {e}")
        return 1
    finally:
        daemon.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
