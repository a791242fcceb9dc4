"""Post-build checks run on the rendered feed before it is written."""

from __future__ import annotations

import html
import logging
import re
import xml.sax
from typing import List

import feedparser

from .config import FeedConfig
from .document import (
    HREF_RE,
    PREFIXED_ATTR_RE,
    PREFIXED_TAG_RE,
    REL_SELF_RE,
    SELF_LINK_RE,
    START_TAG_RE,
)
from .errors import InvariantError
from .sanitizer import mask_cdata

logger = logging.getLogger(__name__)

XML_DECL_RE = re.compile(r"<\?xml\s")


def _namespace_problems(masked: str, allowed: frozenset) -> List[str]:
    problems = []
    for prefix in sorted({m.group(1) for m in PREFIXED_TAG_RE.finditer(masked)}):
        if prefix.lower() not in allowed:
            problems.append(f"element prefix '{prefix}' is not allowed")

    seen = set()
    for tag in START_TAG_RE.finditer(masked):
        for attr in PREFIXED_ATTR_RE.finditer(tag.group(0)):
            prefix, local = attr.group(1), attr.group(2)
            offender = local if prefix.lower() == "xmlns" else prefix
            if offender.lower() in allowed or offender in seen:
                continue
            seen.add(offender)
            problems.append(f"namespace prefix '{offender}' is not allowed")
    return problems


def _self_link_problems(masked: str, self_url: str) -> List[str]:
    links = [m.group(0) for m in SELF_LINK_RE.finditer(masked) if REL_SELF_RE.search(m.group(0))]
    if len(links) != 1:
        return [f"expected exactly one self link, found {len(links)}"]
    href = HREF_RE.search(links[0])
    value = html.unescape((href.group(1) or href.group(2) or "")) if href else None
    if value != self_url:
        return [f"self link {value!r} does not match {self_url!r}"]
    return []


def verify_document(payload: bytes, config: FeedConfig) -> None:
    """Raise ``InvariantError`` if the rendered feed breaks an output rule."""
    text = payload.decode("utf-8")
    problems: List[str] = []

    masked, _ = mask_cdata(text)
    if not text.startswith("<?xml") or len(XML_DECL_RE.findall(masked)) != 1:
        problems.append("document must start with exactly one XML declaration")
    problems.extend(_namespace_problems(masked, config.allowed_prefixes))
    problems.extend(_self_link_problems(masked, config.self_url))

    parsed = feedparser.parse(payload)
    if parsed.get("bozo"):
        exc = parsed.get("bozo_exception")
        if isinstance(exc, xml.sax.SAXException):
            problems.append(f"output is not well-formed XML: {exc}")
        else:
            logger.warning("Feed parser flagged the output: %s", exc)
    if len(parsed.entries) > config.item_limit:
        problems.append(
            f"{len(parsed.entries)} items exceed the limit of {config.item_limit}"
        )

    if problems:
        raise InvariantError("Output check failed: " + "; ".join(problems))
    logger.info("Output checks passed (%d items)", len(parsed.entries))
