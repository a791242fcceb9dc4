"""Per-item rewriting: title, body, thumbnail, author, link and date."""

from __future__ import annotations

import dataclasses
import html
import logging
import re
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Callable, Iterable, List, Optional

from dateutil import parser as date_parser
from markupsafe import escape

from .articles import ArticleContent, parse_article_page
from .config import FeedConfig
from .models import FeedItem
from .sanitizer import (
    cap_links,
    cdata,
    encode_entities,
    html_to_text,
    is_allowed_image,
    mask_cdata,
    parse_fragment,
    remove_unsafe_anchors,
    render_fragment,
    sanitize_url,
    strip_junk,
    strip_tracking_params,
    truncate_html,
    truncate_text,
    unmask_cdata,
    unwrap_cdata,
    unwrap_heading_anchors,
    unwrap_low_value_anchors,
)

logger = logging.getLogger(__name__)

PageFetcher = Callable[[str], Optional[str]]

BODY_TAGS = ("content:encoded", "description")
TITLE_RE = re.compile(
    r"<title>\s*(?:<!\[CDATA\[(.*?)\]\]>|([^<]*))\s*</title>", re.S | re.I
)
SHORTCODE_RE = re.compile(r"\[[^\]]+\]")
DANGLING_IN_RE = re.compile(r"\bin\s*$", re.I)
LINK_RE = re.compile(r"<link>([^<]+)</link>")
PUB_DATE_RE = re.compile(r"(<pubDate>)([^<]*)(</pubDate>)")
THUMBNAIL_RE = re.compile(
    r"(\s*)<media:thumbnail\b[^>]*?/?>(?:\s*</media:thumbnail\s*>)?", re.I
)
MEDIA_CONTENT_RE = re.compile(r"<media:content\b[^>]*>", re.I)
ENCLOSURE_RE = re.compile(r"<enclosure\b[^>]*>", re.I)
URL_ATTR_RE = re.compile(r"(?:^|\s)url\s*=\s*(?:\"([^\"]*)\"|'([^']*)')", re.I)
AUTHOR_PRESENT_RE = re.compile(r"<(dc:creator|author)\b[^>]*>", re.I)
ITEM_CLOSE_RE = re.compile(r"</item\s*>", re.I)


def _body_re(tag: str) -> re.Pattern:
    return re.compile(
        rf"(<{tag}>)\s*(?:<!\[CDATA\[(.*?)\]\]>|([^<]*))\s*(</{tag}>)", re.S
    )


BODY_PATTERNS = {tag: _body_re(tag) for tag in BODY_TAGS}


def element_text(markup: str, tag: str) -> Optional[str]:
    """Text of the first ``<tag>`` element outside CDATA sections."""
    masked, blocks = mask_cdata(markup)
    match = re.search(rf"<{tag}\b[^>]*>(.*?)</{tag}\s*>", masked, re.S)
    if match is None:
        return None
    value = unwrap_cdata(unmask_cdata(match.group(1), blocks)).strip()
    return value or None


def _url_attribute(tag: str) -> Optional[str]:
    match = URL_ATTR_RE.search(tag)
    if match is None:
        return None
    return html.unescape(match.group(1) or match.group(2) or "").strip() or None


def read_item(markup: str) -> FeedItem:
    """Build a ``FeedItem`` from item markup."""
    masked, _ = mask_cdata(markup)
    thumbnail = None
    thumb_match = THUMBNAIL_RE.search(masked)
    if thumb_match:
        thumbnail = _url_attribute(thumb_match.group(0))

    return FeedItem(
        markup=markup,
        title=element_text(markup, "title") or "",
        link=element_text(markup, "link"),
        guid=element_text(markup, "guid"),
        pub_date=element_text(markup, "pubDate"),
        author=element_text(markup, "dc:creator") or element_text(markup, "author"),
        body=element_text(markup, "content:encoded") or element_text(markup, "description"),
        thumbnail=thumbnail,
    )


def clean_title(raw: str, year: int) -> str:
    """Strip shortcodes and tidy whitespace.

    A title left ending in a bare "in" once a date shortcode is gone gets the
    year appended directly, without a space.
    """
    title = SHORTCODE_RE.sub("", raw)
    title = title.replace("&#124;", "|")
    title = re.sub(r"\s+", " ", title).strip()
    if DANGLING_IN_RE.search(title):
        title += str(year)
    return title


def rewrite_title(markup: str, year: int) -> str:
    def replace(match: re.Match) -> str:
        if match.group(1) is not None:
            raw = unwrap_cdata(f"<![CDATA[{match.group(1)}]]>")
        else:
            raw = html.unescape(match.group(2) or "")
        return f"<title>{cdata(clean_title(raw, year))}</title>"

    return TITLE_RE.sub(replace, markup, count=1)


def clean_body(body: str, config: FeedConfig) -> str:
    """Sanitize an item body and cap its length.

    Plain-text bodies are entity-escaped, so a later pass that parses them as
    HTML sees the same text rather than literal markup.
    """
    soup = parse_fragment(body)
    strip_junk(soup)
    remove_unsafe_anchors(soup)
    unwrap_low_value_anchors(soup)
    unwrap_heading_anchors(soup)
    cap_links(soup, config.max_links)

    if config.body_format == "text":
        text = truncate_text(html_to_text(render_fragment(soup)), config.content_max_chars)
        return encode_entities(text)

    truncate_html(soup, config.content_max_chars)
    return render_fragment(soup).strip()


def rewrite_body(markup: str, tag: str, config: FeedConfig) -> str:
    pattern = BODY_PATTERNS.get(tag) or _body_re(tag)

    def replace(match: re.Match) -> str:
        if match.group(2) is not None:
            body = unwrap_cdata(f"<![CDATA[{match.group(2)}]]>")
        else:
            body = html.unescape(match.group(3) or "")
        return f"{match.group(1)}{cdata(clean_body(body, config))}{match.group(4)}"

    return pattern.sub(replace, markup, count=1)


def rewrite_link(markup: str, tracking_params: Iterable[str]) -> str:
    masked, blocks = mask_cdata(markup)

    def replace(match: re.Match) -> str:
        url = strip_tracking_params(html.unescape(match.group(1).strip()), tracking_params)
        return f"<link>{escape(url)}</link>"

    return unmask_cdata(LINK_RE.sub(replace, masked, count=1), blocks)


def format_rfc822(value: str) -> Optional[str]:
    """Re-format a date string as RFC-822, or None if it cannot be parsed."""
    value = value.strip()
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None:
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError) as exc:
            logger.debug("Leaving unparseable date %r as is: %s", value, exc)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return format_datetime(parsed)


def normalize_pub_date(markup: str) -> str:
    masked, blocks = mask_cdata(markup)

    def replace(match: re.Match) -> str:
        formatted = format_rfc822(html.unescape(match.group(2)))
        if formatted is None:
            return match.group(0)
        return f"{match.group(1)}{formatted}{match.group(3)}"

    return unmask_cdata(PUB_DATE_RE.sub(replace, masked, count=1), blocks)


def _insert_before_close(markup: str, fragment: str) -> str:
    closes = list(ITEM_CLOSE_RE.finditer(markup))
    if not closes:
        return markup + fragment
    index = closes[-1].start()
    return markup[:index] + fragment + markup[index:]


def has_author(markup: str) -> bool:
    masked, _ = mask_cdata(markup)
    return AUTHOR_PRESENT_RE.search(masked) is not None


def ensure_author(markup: str, name: Optional[str]) -> str:
    """Inject ``dc:creator`` and ``author`` when the item has neither."""
    if not name or has_author(markup):
        return markup
    inject = (
        f"\n      <dc:creator>{cdata(name)}</dc:creator>\n"
        f"      <author>{cdata(name)}</author>\n"
    )
    logger.debug("Backfilled author '%s'", name)
    return _insert_before_close(markup, inject)


class ArticleLookup:
    """Fetches and parses an item's article page at most once, on demand."""

    def __init__(self, url: Optional[str], fetch_page: Optional[PageFetcher]):
        self.url = url
        self.fetch_page = fetch_page
        self._loaded = False
        self._content: Optional[ArticleContent] = None

    @property
    def content(self) -> Optional[ArticleContent]:
        if self._loaded:
            return self._content
        self._loaded = True
        if not self.url or self.fetch_page is None:
            return None
        try:
            page = self.fetch_page(self.url)
            if page:
                self._content = parse_article_page(page)
        except Exception as exc:  # noqa: BLE001 - enrichment is best effort
            logger.warning("Article enrichment unavailable for %s: %s", self.url, exc)
            self._content = None
        return self._content


class ItemRewriter:
    """Applies the per-item rewrite pipeline to ``FeedItem`` records."""

    def __init__(
        self,
        config: FeedConfig,
        fetch_page: Optional[PageFetcher] = None,
        year: Optional[int] = None,
    ):
        self.config = config
        self.fetch_page = fetch_page
        self.year = year or datetime.now().year

    def accept_thumbnail(self, candidate: Optional[str], source: str) -> Optional[str]:
        url = sanitize_url(candidate)
        if url and is_allowed_image(url, self.config.image_extensions):
            return url
        if candidate:
            logger.debug("Rejected %s thumbnail candidate %s", source, candidate)
        return None

    def resolve_thumbnail(self, markup: str, lookup: ArticleLookup) -> str:
        """Keep one valid ``media:thumbnail``, deriving one if needed."""
        masked, blocks = mask_cdata(markup)
        kept: List[str] = []

        def revalidate(match: re.Match) -> str:
            if kept:
                return ""
            url = self.accept_thumbnail(_url_attribute(match.group(0)), "existing")
            if url is None:
                return ""
            kept.append(url)
            return f'{match.group(1)}<media:thumbnail url="{escape(url)}" />'

        masked = THUMBNAIL_RE.sub(revalidate, masked)
        if kept:
            return unmask_cdata(masked, blocks)

        thumb = None
        for pattern, source in ((MEDIA_CONTENT_RE, "media:content"), (ENCLOSURE_RE, "enclosure")):
            for tag in pattern.finditer(masked):
                thumb = self.accept_thumbnail(_url_attribute(tag.group(0)), source)
                if thumb:
                    break
            if thumb:
                break

        if thumb is None and lookup.content is not None:
            thumb = self.accept_thumbnail(lookup.content.image, "og:image")
        if thumb is None:
            thumb = self.accept_thumbnail(self.config.default_thumbnail_url, "default")

        markup = unmask_cdata(masked, blocks)
        if thumb is None:
            logger.debug("No acceptable thumbnail; item ships without one")
            return markup
        return _insert_before_close(markup, f'<media:thumbnail url="{escape(thumb)}" />')

    def rewrite(self, item: FeedItem) -> FeedItem:
        """Rewrite ``item`` in place and return it."""
        markup = rewrite_title(item.markup, self.year)
        for tag in BODY_TAGS:
            markup = rewrite_body(markup, tag, self.config)

        link = element_text(markup, "link")
        lookup = ArticleLookup(link.split("?")[0] if link else None, self.fetch_page)

        markup = self.resolve_thumbnail(markup, lookup)
        if not has_author(markup) and lookup.content is not None:
            markup = ensure_author(markup, lookup.content.author)
        markup = rewrite_link(markup, self.config.tracking_params)
        markup = normalize_pub_date(markup)

        refreshed = read_item(markup)
        for field in dataclasses.fields(refreshed):
            setattr(item, field.name, getattr(refreshed, field.name))
        logger.debug("Rewrote item '%s'", item.title)
        return item
