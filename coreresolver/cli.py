"""Command line entry point: loads the Corefile and serves it, reloading on change."""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional, Sequence

from coreresolver.config import load_config
from coreresolver.plugins.base import SharedState
from coreresolver.plugins.cache import CacheStore
from coreresolver.server import DnsServer

logger = logging.getLogger(__name__)

_VERSION = "0.1.2"
_LOG_DIR = "logs"
_LOG_FILE = "coredns.log"
_LOG_BACKUPS = 30
_LEVEL_ENV = "CORERESOLVER_LOG"


class _LocalTimeFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.fromtimestamp(record.created).astimezone()
        return stamp.isoformat(timespec="milliseconds")


def _configure_logging() -> list[logging.Handler]:
    os.makedirs(_LOG_DIR, exist_ok=True)
    formatter = _LocalTimeFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    file_handler = logging.handlers.TimedRotatingFileHandler(
        os.path.join(_LOG_DIR, _LOG_FILE),
        when="midnight",
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    console = logging.StreamHandler(sys.stdout)
    handlers: list[logging.Handler] = [file_handler, console]
    root = logging.getLogger()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    level = logging.getLevelName(os.environ.get(_LEVEL_ENV, "info").upper())
    root.setLevel(level if isinstance(level, int) else logging.INFO)
    return handlers


def build_parser() -> argparse.ArgumentParser:
    """The command line options."""
    parser = argparse.ArgumentParser(prog="coreresolver", description="A DNS server")
    parser.add_argument("-c", "--config", default="Corefile", help="path of the Corefile")
    parser.add_argument("--address", default="0.0.0.0:53", help="default listen address")
    return parser


async def serve(config_path: str, address: str) -> None:
    """Load and serve the configuration, rebuilding everything on each reload.

    The response cache is kept across reloads.
    """
    cache = CacheStore()
    while True:
        logger.info("--- Starting/Reloading configuration ---")
        shared = SharedState(cache, config_path)
        config = load_config(config_path, shared)
        for zone in config.zones:
            logger.info("Zone: %s loaded with %d root plugins", zone.name, len(zone.plugins))
        if not await DnsServer(config, shared).run(address):
            break
        logger.info("Hot reload triggered, rebuilding server instances...")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server; returns the process exit status."""
    args = build_parser().parse_args(argv)
    handlers = _configure_logging()
    try:
        logger.info("Starting coreresolver version %s", _VERSION)
        logger.info(">>> Worker capacity: %d CPU cores available", os.cpu_count() or 4)
        config_path = (
            os.path.realpath(args.config) if os.path.exists(args.config) else args.config
        )
        logger.info(">>> Locked configuration absolute path: %s", config_path)
        try:
            asyncio.run(serve(config_path, args.address))
        except OSError as exc:
            logger.error("%s", exc)
            return 1
        except KeyboardInterrupt:
            return 0
        return 0
    finally:
        root = logging.getLogger()
        for handler in handlers:
            root.removeHandler(handler)
            handler.close()