"""Shared data models for feed_rewriter."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

UNSAFE_HREF_RE = re.compile(r"^(mailto:|tel:|javascript:|#)", re.I)
BOILERPLATE_TEXT_RE = re.compile(
    r"(read\s*more|continue|view\s*sources?|sources?|references?|back\s*to\s*top)",
    re.I,
)


@dataclass
class ChannelMetadata:
    """Channel-level fields read from the document header."""

    title: Optional[str] = None
    link: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    last_build_date: Optional[str] = None
    self_url: Optional[str] = None


@dataclass
class FeedItem:
    """A single ``<item>`` and the fields read from its markup."""

    markup: str
    title: str = ""
    link: Optional[str] = None
    guid: Optional[str] = None
    pub_date: Optional[str] = None
    author: Optional[str] = None
    body: Optional[str] = None
    thumbnail: Optional[str] = None


@dataclass
class FeedDocument:
    """A feed split into channel header, items and footer."""

    header: str
    items: List[FeedItem] = field(default_factory=list)
    footer: str = ""
    channel: ChannelMetadata = field(default_factory=ChannelMetadata)


@dataclass
class AnchorElement:
    """Hyperlink seen while sanitizing an item body."""

    href: Optional[str]
    text: str

    @property
    def is_unsafe(self) -> bool:
        """Non-navigable schemes and bare fragment references."""
        if self.href is None:
            return False
        return bool(UNSAFE_HREF_RE.match(self.href.strip()))

    @property
    def is_boilerplate(self) -> bool:
        """Inner text is one of the stock "read more" style phrases."""
        return bool(BOILERPLATE_TEXT_RE.fullmatch(self.text.strip()))

    @property
    def classification(self) -> str:
        if self.is_unsafe:
            return "unsafe"
        if self.is_boilerplate:
            return "low-value"
        return "safe"
