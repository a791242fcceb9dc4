"""Source feed retrieval."""

from __future__ import annotations

import logging

import requests

from .errors import FeedFetchError

logger = logging.getLogger(__name__)


def fetch_feed(url: str, user_agent: str, timeout: float = 20.0) -> bytes:
    """Download the source feed and return its raw bytes."""
    logger.info("Fetching source feed %s", url)
    try:
        response = requests.get(
            url,
            headers={"Accept": "application/rss+xml", "User-Agent": user_agent},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise FeedFetchError(f"Fetch {url} failed: {exc}") from exc

    if not response.ok:
        raise FeedFetchError(
            f"Fetch {url} failed: {response.status_code} {response.reason}"
        )

    content = response.content
    logger.info("Fetched %d bytes from %s", len(content), url)
    return content
