#!/usr/bin/env python3
"""notesync application entry point.

Usage:
    notesync cli list-notes                  # Use the CLI
    notesync cli --offline new-note "Title"  # Work without contacting the server
    notesync server [--port 8787]            # Run the reference notes server
    notesync watch                           # Refresh in the background until Ctrl+C
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    from .cli import add_cli_subparser

    parser = argparse.ArgumentParser(
        prog="notesync",
        description="Offline-first tagged notes with server sync",
    )
    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/notesync)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="interface", help="Interface to run")
    add_cli_subparser(subparsers)

    server_parser = subparsers.add_parser("server", help="Run the reference notes server")
    server_parser.add_argument("--host", default=None, help="Bind address")
    server_parser.add_argument("--port", type=int, default=None, help="Port")

    subparsers.add_parser("watch", help="Refresh periodically and on reconnect")
    return parser


def run_watch(config_dir: Optional[Path]) -> int:
    """Run the auto refresher in the foreground until interrupted."""
    from .cli import build_services
    from .core.config import Config
    from .core.scheduler import AutoRefresher

    config = Config(config_dir=config_dir)
    services = build_services(config)
    refresher = AutoRefresher(
        services.engine,
        refresh_interval=config.get_refresh_interval(),
        probe_interval=config.get_probe_interval(),
    )
    refresher.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        refresher.stop()
        services.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    # The CLI keeps stdout clean; only warnings go to the log
    configure_logging(args.verbose)
    if args.interface == "cli" and not args.verbose:
        logging.getLogger().setLevel(logging.WARNING)

    if args.config_dir:
        logger.info(f"Using custom config directory: {args.config_dir}")

    if args.interface == "cli":
        from .cli import run_cli
        return run_cli(args.config_dir, args)
    if args.interface == "server":
        from .web import run_server
        run_server(args.config_dir, host=args.host, port=args.port)
        return 0
    if args.interface == "watch":
        return run_watch(args.config_dir)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
