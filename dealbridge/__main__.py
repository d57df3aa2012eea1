"""Main entry point for the deal bridge service."""

import argparse
import sys
from typing import Any

import uvicorn

from dealbridge import __version__
from dealbridge.core.config import Settings
from dealbridge.core.logging import configure_logging, get_logger


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments for testing

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="dealbridge",
        description="Turn IPFS CIDs into Filecoin storage deals over HTTP",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-l",
        "--listen-addr",
        default=None,
        help="Server listen address (default: LISTEN_ADDR or 0.0.0.0:8888)",
    )
    parser.add_argument(
        "-i",
        "--ipfs-gateway",
        default=None,
        help="IPFS gateway base URL (default: IPFS_GATEWAY or https://ipfs.io)",
    )
    parser.add_argument(
        "-m",
        "--miner-id",
        default=None,
        help="Storage provider to make deals with (default: MINER_ID)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: LOG_LEVEL or info)",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser.parse_args(args)


def load_settings(args: argparse.Namespace) -> Settings:
    """Build settings from the environment with command line overrides."""
    overrides: dict[str, Any] = {}
    if args.miner_id is not None:
        overrides["MINER_ID"] = args.miner_id
    if args.listen_addr:
        overrides["LISTEN_ADDR"] = args.listen_addr
    if args.ipfs_gateway:
        overrides["IPFS_GATEWAY"] = args.ipfs_gateway
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    return Settings(**overrides)


def main(argv: list[str] | None = None) -> int:
    """Run the HTTP server until interrupted."""
    args = parse_args(argv)
    try:
        settings = load_settings(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if not settings.MINER_ID:
        print("A storage provider is required (--miner-id)", file=sys.stderr)
        return 2

    configure_logging(level=settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)
    logger = get_logger(__name__)

    from dealbridge.main import create_app

    host, port = settings.listen_host_port()
    logger.info(
        "service_starting",
        listen_addr=settings.LISTEN_ADDR,
        gateway=settings.IPFS_GATEWAY,
        miner_id=settings.MINER_ID,
    )
    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_config=None,
        access_log=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
