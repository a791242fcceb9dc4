"""Article page retrieval and metadata extraction."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

ARTICLE_TYPE_RE = re.compile(r"Article", re.I)


@dataclass
class ArticleContent:
    """Metadata recovered from an article page."""

    author: Optional[str]
    image: Optional[str]


def fetch_article_page(url: str, user_agent: str, timeout: float = 20.0) -> Optional[str]:
    """Download an article page; any failure yields None."""
    logger.debug("Downloading article page %s", url)
    try:
        response = requests.get(
            url,
            headers={"Accept": "text/html", "User-Agent": user_agent},
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Failed to fetch article page %s: %s", url, exc)
        return None
    return response.text


def parse_article_page(html: str) -> ArticleContent:
    """Read the Open Graph image and the author name from page HTML."""
    soup = BeautifulSoup(html, "html.parser")
    return ArticleContent(author=_find_author(soup), image=_find_og_image(soup))


def _find_og_image(soup: BeautifulSoup) -> Optional[str]:
    tag = soup.find("meta", attrs={"property": re.compile(r"^og:image$", re.I)})
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def _find_author(soup: BeautifulSoup) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": re.compile(r"^author$", re.I)})
    if tag is not None:
        name = (tag.get("content") or "").strip()
        if name:
            return name

    scripts = soup.find_all(
        "script", attrs={"type": re.compile(r"application/ld\+json", re.I)}
    )
    for script in scripts:
        raw = (script.string or script.get_text() or "").strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.debug("Skipping malformed JSON-LD block: %s", exc)
            continue
        name = find_author_name(payload)
        if name:
            return name
    return None


def _author_value(value: Any) -> Optional[str]:
    """Resolve an ``author`` property: a string, a named object, or a list of those."""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        name = value.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
        return None
    if isinstance(value, list):
        for entry in value:
            name = _author_value(entry)
            if name:
                return name
    return None


def _is_article(node: dict) -> bool:
    kind = node.get("@type")
    kinds = kind if isinstance(kind, list) else [kind]
    return any(isinstance(k, str) and ARTICLE_TYPE_RE.search(k) for k in kinds)


def _search(node: Any, articles_only: bool) -> Optional[str]:
    if isinstance(node, list):
        for entry in node:
            found = _search(entry, articles_only)
            if found:
                return found
        return None
    if not isinstance(node, dict):
        return None

    if "author" in node and (not articles_only or _is_article(node)):
        found = _author_value(node["author"])
        if found:
            return found

    for value in node.values():
        if isinstance(value, (dict, list)):
            found = _search(value, articles_only)
            if found:
                return found
    return None


def find_author_name(payload: Any) -> Optional[str]:
    """Locate an author name in a JSON-LD payload.

    Lookup order: an ``author`` on the top-level object, then Article-typed
    nodes anywhere in the tree, then any node carrying ``author``. Within each
    pass the first match in document order wins.
    """
    if isinstance(payload, dict) and "author" in payload:
        found = _author_value(payload["author"])
        if found:
            return found
    return _search(payload, articles_only=True) or _search(payload, articles_only=False)
