"""Rendering helpers for the feed output and the diagnostic document."""

from __future__ import annotations

import re

from .models import FeedDocument
from .templating import get_environment

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'
TRAILING_WHITESPACE_RE = re.compile(r"\s*$")


def render_feed(document: FeedDocument) -> bytes:
    """Reassemble the document behind a single XML declaration."""
    separator = TRAILING_WHITESPACE_RE.search(document.header).group(0) or "\n"
    items = separator.join(item.markup for item in document.items)
    text = f"{XML_DECLARATION}\n{document.header}{items}{document.footer}"
    return text.encode("utf-8")


def render_error_document(message: str) -> bytes:
    """Render the escaped diagnostic payload written when a build fails."""
    env = get_environment()
    template = env.get_template("error.xml.j2")
    return template.render(message=message).encode("utf-8")
