"""Document-level normalization of the fetched feed.

Feeds are handled as text rather than parsed XML: vendor feeds routinely use
namespace prefixes they never declare, which a strict XML parser refuses.
CDATA sections are masked out while the document-level patterns run so that
markup inside item bodies is never mistaken for feed elements.
"""

from __future__ import annotations

import codecs
import html
import logging
import re

from markupsafe import escape

from .config import NAMESPACE_URIS, FeedConfig
from .errors import FeedFormatError
from .items import element_text, read_item
from .models import ChannelMetadata, FeedDocument
from .sanitizer import mask_cdata, unmask_cdata

logger = logging.getLogger(__name__)

ENCODING_RE = re.compile(rb"""<\?xml[^>]*encoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")
XML_DECL_RE = re.compile(r"<\?xml\s[^>]*\?>")
ROOT_OPEN_RE = re.compile(r"<rss(?=[\s>])([^>]*)>")
ROOT_CLOSE = "</rss>"
CHANNEL_OPEN_RE = re.compile(r"<channel\b[^>]*>")
CHANNEL_CLOSE = "</channel>"
ITEM_RE = re.compile(r"<item\b[^>]*>.*?</item>", re.S)
ATTR_RE = re.compile(r"([A-Za-z_][\w.:-]*)\s*=\s*(\"[^\"]*\"|'[^']*')")
PREFIXED_TAG_RE = re.compile(r"</?([A-Za-z_][\w.-]*):[\w.-]+")
START_TAG_RE = re.compile(r"<[A-Za-z_][^<>]*>")
PREFIXED_ATTR_RE = re.compile(
    r"\s+([A-Za-z_][\w.-]*):([\w.-]+)\s*=\s*(?:\"[^\"]*\"|'[^']*')"
)
SELF_LINK_RE = re.compile(
    r"\s*<atom:link\b[^>]*>(?:\s*</atom:link\s*>)?", re.I
)
REL_SELF_RE = re.compile(r"\brel\s*=\s*[\"']self[\"']", re.I)
HREF_RE = re.compile(r"(?:^|\s)href\s*=\s*(?:\"([^\"]*)\"|'([^']*)')", re.I)
ANY_TAG_RE = re.compile(r"</?[A-Za-z_][^<>]*>")
TAG_PREFIX_RE = re.compile(r"^(</?)([A-Za-z_][\w.-]*):")
ATTR_PREFIX_RE = re.compile(r"(\s)([A-Za-z_][\w.-]*):([\w.-]+)(?=\s*=)")


def decode_payload(raw) -> str:
    """Decode fetched bytes using the declared encoding, else UTF-8."""
    if isinstance(raw, str):
        return raw
    if raw.startswith(codecs.BOM_UTF8):
        return raw[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")

    encoding = "utf-8"
    match = ENCODING_RE.search(raw[:512])
    if match:
        declared = match.group(1).decode("ascii")
        try:
            codecs.lookup(declared)
            encoding = declared
        except LookupError:
            logger.warning("Unknown declared encoding %s; decoding as UTF-8", declared)
    return raw.decode(encoding, errors="replace")


def _rebuild_root(attributes: str, namespaces) -> str:
    kept = [
        (name, value)
        for name, value in ATTR_RE.findall(attributes)
        if ":" not in name and name != "xmlns"
    ]
    if not any(name == "version" for name, _ in kept):
        kept.insert(0, ("version", '"2.0"'))
    parts = ["<rss"]
    parts.extend(f"{name}={value}" for name, value in kept)
    parts.extend(f'xmlns:{prefix}="{NAMESPACE_URIS[prefix]}"' for prefix in namespaces)
    return " ".join(parts) + ">"


def strip_foreign_elements(text: str, allowed: frozenset) -> str:
    """Remove elements whose namespace prefix is not allowed."""
    prefixes = {match.group(1) for match in PREFIXED_TAG_RE.finditer(text)}
    foreign = sorted(p for p in prefixes if p.lower() not in allowed)
    for prefix in foreign:
        name = rf"{re.escape(prefix)}:[\w.-]+"
        container = re.compile(rf"\s*<({name})\b[^>]*(?<!/)>.*?</\1\s*>", re.S)
        self_closing = re.compile(rf"\s*<{name}\b[^>]*/>")
        stray = re.compile(rf"\s*</?{name}\b[^>]*>")

        previous = None
        while previous != text:
            previous = text
            text = container.sub("", text)
        text = self_closing.sub("", text)
        text = stray.sub("", text)
        logger.info("Stripped elements with disallowed prefix '%s'", prefix)
    return text


def strip_foreign_attributes(text: str, allowed: frozenset) -> str:
    """Drop namespace declarations and prefixed attributes outside ``allowed``."""

    def clean_attribute(match: re.Match) -> str:
        prefix, local = match.group(1).lower(), match.group(2).lower()
        if prefix == "xmlns":
            return match.group(0) if local in allowed else ""
        return match.group(0) if prefix in allowed else ""

    def clean_tag(match: re.Match) -> str:
        return PREFIXED_ATTR_RE.sub(clean_attribute, match.group(0))

    return START_TAG_RE.sub(clean_tag, text)


def canonicalize_prefixes(text: str, allowed: frozenset) -> str:
    """Lower-case allowed prefixes so they bind to the declarations on the root."""

    def canonical(prefix: str) -> str:
        return prefix.lower() if prefix.lower() in allowed else prefix

    def fix_attribute(match: re.Match) -> str:
        prefix, local = match.group(2), match.group(3)
        if prefix.lower() == "xmlns":
            return f"{match.group(1)}xmlns:{canonical(local)}"
        return f"{match.group(1)}{canonical(prefix)}:{local}"

    def fix_tag(match: re.Match) -> str:
        tag = TAG_PREFIX_RE.sub(
            lambda m: f"{m.group(1)}{canonical(m.group(2))}:", match.group(0), count=1
        )
        return ATTR_PREFIX_RE.sub(fix_attribute, tag)

    return ANY_TAG_RE.sub(fix_tag, text)


def replace_self_link(text: str, self_url: str) -> str:
    """Remove every self-referencing atom:link and insert exactly one."""
    removed = 0

    def drop_self(match: re.Match) -> str:
        nonlocal removed
        if REL_SELF_RE.search(match.group(0)):
            removed += 1
            return ""
        return match.group(0)

    text = SELF_LINK_RE.sub(drop_self, text)
    channel = CHANNEL_OPEN_RE.search(text)
    if channel is None:
        raise FeedFormatError("Feed has no <channel> element")

    link = (
        f'<atom:link href="{escape(self_url)}" rel="self" '
        'type="application/rss+xml" />'
    )
    logger.debug("Replaced %d self link(s) with %s", removed, self_url)
    return f"{text[:channel.end()]}\n    {link}{text[channel.end():]}"


def read_channel(header: str) -> ChannelMetadata:
    """Read channel metadata from the document header."""
    masked, _ = mask_cdata(header)
    self_url = None
    for match in SELF_LINK_RE.finditer(masked):
        if REL_SELF_RE.search(match.group(0)):
            href = HREF_RE.search(match.group(0))
            if href:
                self_url = html.unescape(href.group(1) or href.group(2) or "")
            break
    return ChannelMetadata(
        title=element_text(header, "title"),
        link=element_text(header, "link"),
        description=element_text(header, "description"),
        language=element_text(header, "language"),
        last_build_date=element_text(header, "lastBuildDate"),
        self_url=self_url,
    )


def limit_items(document: FeedDocument, limit: int) -> FeedDocument:
    """Keep only the first ``limit`` items in document order."""
    if len(document.items) > limit:
        logger.info("Limiting feed from %d to %d items", len(document.items), limit)
        document.items = document.items[:limit]
    return document


def normalize_document(raw, config: FeedConfig) -> FeedDocument:
    """Turn fetched feed bytes into a normalized ``FeedDocument``."""
    masked, blocks = mask_cdata(decode_payload(raw))

    root = ROOT_OPEN_RE.search(masked)
    if root is None:
        raise FeedFormatError("Origin did not return RSS/XML (no <rss> tag)")

    masked = masked[root.start():]
    end = masked.rfind(ROOT_CLOSE)
    if end != -1:
        masked = masked[: end + len(ROOT_CLOSE)]
    masked = XML_DECL_RE.sub("", masked)

    namespaces = [prefix.lower() for prefix in config.namespaces]
    masked = ROOT_OPEN_RE.sub(
        lambda match: _rebuild_root(match.group(1), namespaces), masked, count=1
    )
    masked = strip_foreign_elements(masked, config.allowed_prefixes)
    masked = strip_foreign_attributes(masked, config.allowed_prefixes)
    masked = canonicalize_prefixes(masked, config.allowed_prefixes)
    masked = replace_self_link(masked, config.self_url)

    matches = list(ITEM_RE.finditer(masked))
    if matches:
        header_end, footer_start = matches[0].start(), matches[-1].end()
    else:
        close = masked.rfind(CHANNEL_CLOSE)
        header_end = footer_start = close if close != -1 else len(masked)

    header = unmask_cdata(masked[:header_end], blocks)
    document = FeedDocument(
        header=header,
        items=[read_item(unmask_cdata(match.group(0), blocks)) for match in matches],
        footer=unmask_cdata(masked[footer_start:], blocks),
        channel=read_channel(header),
    )
    logger.info(
        "Normalized feed '%s' with %d items", document.channel.title, len(document.items)
    )
    return limit_items(document, config.item_limit)
