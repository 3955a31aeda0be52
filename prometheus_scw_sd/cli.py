"""Argument parsing, configuration loading, and daemon bootstrap."""

from __future__ import annotations

import argparse
import logging
import queue
import signal
import sys
import threading
from types import FrameType

from .adapter.file_sd import FileSDAdapter
from .config import AppConfig, build_config
from .daemon import Discovery
from .discovery.scaleway_client import ScalewayClient
from .exceptions import ConfigError, ScalewayDiscoveryError
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prometheus-scw-sd",
        description="Generate Prometheus file_sd target files from Scaleway servers",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to an optional YAML configuration file",
    )
    parser.add_argument("--token", help="The token for the Scaleway API")
    parser.add_argument(
        "--private",
        action="store_true",
        default=None,
        help="Use the servers' private IP",
    )
    parser.add_argument(
        "--output.file",
        dest="output_file",
        help="Output file for file_sd compatible file (default: scw_sd.json)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port on which to scrape metrics (default: 9100)",
    )
    parser.add_argument(
        "--time.interval",
        dest="interval",
        type=int,
        help="Time in seconds to wait between each refresh (default: 90)",
    )
    parser.add_argument("--log.level", dest="log_level", help="Log level (default: INFO)")
    parser.add_argument(
        "--log.format",
        dest="log_format",
        choices=("logfmt", "json"),
        help="Log format (default: logfmt)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single discovery cycle, write the file and exit",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration and exit",
    )
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, dict]:
    return {
        "scaleway": {"token": args.token},
        "discovery": {
            "private": args.private,
            "port": args.port,
            "interval_seconds": args.interval,
        },
        "output": {"file": args.output_file},
        "logging": {"level": args.log_level, "format": args.log_format},
    }


def _build_discovery(config: AppConfig) -> Discovery:
    return Discovery(
        ScalewayClient(config.scaleway),
        refresh_interval=config.discovery.interval_seconds,
        scrape_port=config.discovery.port,
        tag_separator=config.discovery.tag_separator,
        use_private_ip=config.discovery.private,
    )


def run_forever(discovery: Discovery, adapter: FileSDAdapter, stop: threading.Event) -> None:
    """Run the discovery loop on this thread and the file writer on a worker thread."""
    updates: queue.Queue = queue.Queue(maxsize=1)
    writer = threading.Thread(target=adapter.run, args=(updates, stop), name="file-sd-writer", daemon=True)
    writer.start()
    try:
        discovery.run(stop, updates)
    finally:
        stop.set()
        writer.join()


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle_shutdown(signum: int, frame: FrameType | None) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = build_config(args.config, _overrides(args))
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    configure_logging(config.logging)

    if args.validate:
        logger.info("Configuration is valid")
        return 0

    try:
        discovery = _build_discovery(config)
    except ScalewayDiscoveryError as exc:
        logger.error("Error creating Scaleway API client: %s", exc)
        return 1

    adapter = FileSDAdapter(config.output.file)

    try:
        if args.once:
            logger.info("Running single discovery cycle (--once)")
            adapter.update(discovery.run_once())
        else:
            stop = threading.Event()
            _install_signal_handlers(stop)
            run_forever(discovery, adapter, stop)
    except ScalewayDiscoveryError as exc:
        logger.error("Fatal error: %s", exc)
        return 1

    return 0
