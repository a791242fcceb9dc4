"""Command-line interface for the feed_rewriter application."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import pprint
from pathlib import Path
from typing import List, Optional
from xml.etree.ElementTree import ParseError

from .config import AppConfig, parse_app_config
from .errors import FeedBuildError
from .runner import execute, write_error_output

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
QUIET_LOGGERS = ("urllib3", "charset_normalizer")


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Rebuild a third-party RSS feed as a validator-compliant static file."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to an XML configuration file. Built-in settings apply when omitted.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )
    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Route build logs to stderr and, when configured, a UTF-8 log file.

    HTTP client chatter stays at WARNING unless the build runs at DEBUG.
    """
    log_level = logging.getLevelName(level_name.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.NOTSET if log_level <= logging.DEBUG else logging.WARNING
        )
    logger.debug(
        "Build logging at %s%s",
        logging.getLevelName(log_level),
        f", copied to {log_file}" if log_file else "",
    )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = parse_app_config(args.config) if args.config else AppConfig()
        configure_logging(
            args.log_level or app_config.logging.level,
            args.log_file or app_config.logging.file,
        )
    except (ValueError, ParseError) as exc:
        parser.error(str(exc))
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 1

    config = app_config.feed
    logger.info("Active Configuration:\n%s", pprint.pformat(dataclasses.asdict(config)))

    try:
        result = execute(config)
    except FeedBuildError as exc:
        logger.error("BUILD FAILED: %s", exc)
        write_error_output(config.output_path, str(exc))
        return 1
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error during build.")
        write_error_output(config.output_path, f"{type(exc).__name__}: {exc}")
        return 1

    print(f"Wrote {result.output_path} ({result.item_count} items, {result.size} bytes)")
    return 0
