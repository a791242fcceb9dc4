"""High-level orchestration for the feed build."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .articles import fetch_article_page
from .config import FeedConfig
from .document import normalize_document
from .fetcher import fetch_feed
from .guards import verify_document
from .items import ItemRewriter, PageFetcher
from .renderers import render_error_document, render_feed

logger = logging.getLogger(__name__)

FeedFetcher = Callable[[str, str, float], bytes]


@dataclass
class RunResult:
    """Returned data after a successful build."""

    output_path: str
    item_count: int
    size: int


def write_output(path: str, payload: bytes) -> None:
    location = Path(path)
    if location.parent and not location.parent.exists():
        location.parent.mkdir(parents=True, exist_ok=True)
    location.write_bytes(payload)
    logger.info("Wrote %d bytes to %s", len(payload), location)


def write_error_output(path: str, message: str) -> bool:
    """Write the diagnostic document; returns False if even that fails."""
    try:
        write_output(path, render_error_document(message))
    except OSError as exc:
        logger.error("Could not write diagnostic document to %s: %s", path, exc)
        return False
    logger.info("Wrote diagnostic XML to %s", path)
    return True


def execute(
    config: FeedConfig,
    fetch: Optional[FeedFetcher] = None,
    fetch_page: Optional[PageFetcher] = None,
) -> RunResult:
    """Fetch, rewrite, check and write the feed."""
    fetch = fetch or fetch_feed
    if fetch_page is None:
        fetch_page = functools.partial(
            fetch_article_page,
            user_agent=config.user_agent,
            timeout=config.request_timeout,
        )

    raw = fetch(config.source_url, config.user_agent, config.request_timeout)
    document = normalize_document(raw, config)

    rewriter = ItemRewriter(config, fetch_page=fetch_page)
    logger.info("Processing %d <item> elements", len(document.items))
    for item in document.items:
        rewriter.rewrite(item)

    payload = render_feed(document)
    verify_document(payload, config)
    write_output(config.output_path, payload)

    return RunResult(
        output_path=config.output_path,
        item_count=len(document.items),
        size=len(payload),
    )
