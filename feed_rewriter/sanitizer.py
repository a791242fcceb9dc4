"""Markup sanitizing primitives for item bodies and URLs.

Every transform here is idempotent: feeding its own output back in leaves the
markup unchanged. Tree transforms work on a BeautifulSoup fragment parsed with
the stdlib ``html.parser`` backend, so broken markup is tolerated rather than
rejected.
"""

from __future__ import annotations

import functools
import html
import logging
import re
from typing import Iterable, List, Optional, Tuple
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .models import AnchorElement

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
CDATA_END = "]]>"
CDATA_END_ESCAPED = "]]]]><![CDATA[>"
CDATA_RE = re.compile(r"<!\[CDATA\[.*?\]\]>", re.S)
PLACEHOLDER_RE = re.compile(r"\x00(\d+)\x00")

STRUCTURAL_JUNK_TAGS = ["nav", "footer", "aside", "header", "script", "style"]
JUNK_CONTAINER_TAGS = ["div", "section", "ul", "ol", "aside"]
JUNK_CLASS_RE = re.compile(
    r"\b(related|share|social|subscribe|breadcrumbs|tags|tag-?cloud|promo|"
    r"newsletter|author|bio|widget|sidebar|footer|cta|read-?more|sources|"
    r"references)\b",
    re.I,
)
LOW_VALUE_CONTAINERS = ["figcaption", "caption", "small", "ul", "ol", "table"]
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
FOOTNOTE_RE = re.compile(r"\[?\d+\]?")

BREAK_RE = re.compile(r"<br\s*/?>", re.I)
BLOCK_CLOSE_RE = re.compile(r"</(?:p|h[1-6]|div|blockquote)\s*>", re.I)
ROW_CLOSE_RE = re.compile(r"</(?:li|tr)\s*>", re.I)
TAG_RE = re.compile(r"<[^>]+>")
ENTITY_RE = re.compile(r"&(#[xX][0-9a-fA-F]+|#\d+|[a-zA-Z]+);")
NAMED_ENTITIES = {
    "nbsp": " ",
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "hellip": "…",
    "mdash": "—",
    "ndash": "–",
    "lsquo": "‘",
    "rsquo": "’",
    "ldquo": "“",
    "rdquo": "”",
}

BLOCKED_SCHEME_RE = re.compile(r"^(data:|mailto:|tel:|javascript:)", re.I)
HTTP_SCHEME_RE = re.compile(r"^https?://", re.I)


def parse_fragment(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup, "html.parser")


def render_fragment(soup: BeautifulSoup) -> str:
    return soup.decode(formatter="minimal")


def _anchor(tag: Tag) -> AnchorElement:
    return AnchorElement(href=tag.get("href"), text=" ".join(tag.get_text().split()))


def _class_value(tag: Tag) -> str:
    classes = tag.get("class")
    if isinstance(classes, (list, tuple)):
        return " ".join(classes)
    return classes or ""


def strip_junk(soup: BeautifulSoup) -> int:
    """Remove navigation, widget and related-content blocks in place."""
    removed = 0
    for comment in soup.find_all(string=lambda value: isinstance(value, Comment)):
        comment.extract()

    for tag in soup.find_all(STRUCTURAL_JUNK_TAGS):
        if tag.decomposed:
            continue
        tag.decompose()
        removed += 1

    for tag in soup.find_all(JUNK_CONTAINER_TAGS, class_=True):
        if tag.decomposed:
            continue
        if JUNK_CLASS_RE.search(_class_value(tag)):
            tag.decompose()
            removed += 1

    # linked images keep the image, lose the link
    for anchor in soup.find_all("a"):
        children = [
            child
            for child in anchor.contents
            if not (isinstance(child, NavigableString) and not child.strip())
        ]
        if len(children) == 1 and isinstance(children[0], Tag) and children[0].name == "img":
            anchor.unwrap()

    for sup in soup.find_all("sup"):
        if sup.decomposed:
            continue
        if FOOTNOTE_RE.fullmatch(sup.get_text().strip()):
            sup.decompose()
            removed += 1

    if removed:
        logger.debug("Removed %d junk blocks", removed)
    return removed


def remove_unsafe_anchors(soup: BeautifulSoup) -> int:
    """Unwrap mailto:, tel:, javascript: and bare fragment links."""
    count = 0
    for anchor in soup.find_all("a"):
        if _anchor(anchor).is_unsafe:
            anchor.unwrap()
            count += 1
    return count


def unwrap_low_value_anchors(soup: BeautifulSoup) -> int:
    """Unwrap links in captions, lists and tables, and stock "read more" links."""
    count = 0
    for anchor in soup.find_all("a"):
        if anchor.find_parent(LOW_VALUE_CONTAINERS) is not None or _anchor(anchor).is_boilerplate:
            anchor.unwrap()
            count += 1
    return count


def unwrap_heading_anchors(soup: BeautifulSoup) -> int:
    count = 0
    for anchor in soup.find_all("a"):
        if anchor.find_parent(HEADING_TAGS) is not None:
            anchor.unwrap()
            count += 1
    return count


def count_anchors(soup: BeautifulSoup) -> int:
    return len(soup.find_all("a"))


def cap_links(soup: BeautifulSoup, max_links: int) -> int:
    """Unwrap links until at most ``max_links`` remain.

    Links starting in the final quarter of the body text (sources, footers)
    go first. If that is not enough, every remaining link is unwrapped.
    """
    anchors = soup.find_all("a")
    if len(anchors) <= max_links:
        return 0

    offsets = {}
    position = 0
    for node in soup.descendants:
        if isinstance(node, Tag):
            if node.name == "a":
                offsets[id(node)] = position
        elif not isinstance(node, Comment):
            position += len(node)

    threshold = position * 0.75
    unwrapped = 0
    for anchor in anchors:
        if offsets.get(id(anchor), 0) >= threshold:
            anchor.unwrap()
            unwrapped += 1

    remaining = soup.find_all("a")
    if len(remaining) > max_links:
        for anchor in remaining:
            anchor.unwrap()
            unwrapped += 1

    logger.debug(
        "Link cap %d: unwrapped %d of %d links", max_links, unwrapped, len(anchors)
    )
    return unwrapped


def decode_entities(text: str) -> str:
    """Decode a fixed set of named entities plus numeric references, once."""

    def replace(match: re.Match) -> str:
        token = match.group(1)
        if token.startswith("#"):
            try:
                if token[1:2] in ("x", "X"):
                    return chr(int(token[2:], 16))
                return chr(int(token[1:]))
            except (ValueError, OverflowError):
                return match.group(0)
        return NAMED_ENTITIES.get(token, match.group(0))

    return ENTITY_RE.sub(replace, text).replace("\xa0", " ")


def html_to_text(markup: str) -> str:
    """Flatten an HTML fragment to plain text, keeping paragraph breaks."""
    text = BREAK_RE.sub("\n", markup)
    text = BLOCK_CLOSE_RE.sub("\n\n", text)
    text = ROW_CLOSE_RE.sub("\n", text)
    text = TAG_RE.sub("", text)
    text = decode_entities(text)
    lines = (line.rstrip() for line in text.split("\n"))
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def encode_entities(text: str) -> str:
    """Escape text so an HTML parser reads it back as the same characters."""
    return html.escape(text, quote=False)


def _last_whitespace(value: str) -> int:
    return max(value.rfind(" "), value.rfind("\n"), value.rfind("\t"))


def truncate_text(value: str, limit: int) -> str:
    """Limit text to ``limit`` characters, ellipsis included."""
    if len(value) <= limit:
        return value
    head = value[: limit - len(ELLIPSIS)]
    boundary = _last_whitespace(head)
    if boundary > 0:
        head = head[:boundary]
    logger.debug("Truncating body text from %d to %d characters", len(value), limit)
    return head.rstrip() + ELLIPSIS


def truncate_html(soup: BeautifulSoup, limit: int) -> bool:
    """Cut the fragment so its text is at most ``limit`` characters.

    Everything after the cut point is dropped, so no markup is left half
    open. Returns True when the fragment was shortened.
    """
    text_length = len(soup.get_text())
    if text_length <= limit:
        return False

    budget = limit - len(ELLIPSIS)
    used = 0
    for string in list(soup.strings):
        if used + len(string) <= budget:
            used += len(string)
            continue
        head = string[: budget - used]
        boundary = _last_whitespace(head)
        if boundary > 0:
            head = head[:boundary]
        tail = NavigableString(head.rstrip() + ELLIPSIS)
        string.replace_with(tail)
        for node in list(tail.next_elements):
            node.extract()
        break

    logger.debug("Truncated HTML body from %d to %d text characters", text_length, limit)
    return True


def escape_cdata_terminator(value: str) -> str:
    return value.replace(CDATA_END, CDATA_END_ESCAPED)


def unescape_cdata_terminator(value: str) -> str:
    return value.replace(CDATA_END_ESCAPED, CDATA_END)


def cdata(value: str) -> str:
    return f"<![CDATA[{escape_cdata_terminator(value)}]]>"


def sanitize_url(url: Optional[str]) -> Optional[str]:
    """Return an https URL suitable for a feed attribute, or None."""
    if not url:
        return None
    candidate = re.sub(r"\s", "%20", url.strip())
    if BLOCKED_SCHEME_RE.match(candidate):
        return None
    if not HTTP_SCHEME_RE.match(candidate):
        return None
    candidate = "https://" + candidate.split("://", 1)[1]
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if not parts.netloc:
        return None
    return candidate


@functools.lru_cache(maxsize=None)
def _image_pattern(extensions: tuple) -> re.Pattern:
    alternatives = "|".join(re.escape(ext.lstrip(".")) for ext in extensions)
    return re.compile(rf"\.({alternatives})(\?|#|$)", re.I)


def is_allowed_image(url: Optional[str], extensions: Iterable[str]) -> bool:
    if not url:
        return False
    return bool(_image_pattern(tuple(extensions)).search(url))


def strip_tracking_params(url: str, tracking_params: Iterable[str]) -> str:
    """Drop tracking query parameters; other parameters keep their encoding."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc or not parts.query:
        return url

    blocked = set(tracking_params)
    pairs = parts.query.split("&")
    kept = [pair for pair in pairs if unquote_plus(pair.split("=", 1)[0]) not in blocked]
    if len(kept) == len(pairs):
        return url
    return urlunsplit(parts._replace(query="&".join(kept)))


def mask_cdata(text: str) -> Tuple[str, List[str]]:
    """Replace CDATA sections with numbered placeholders."""
    blocks: List[str] = []

    def stash(match: re.Match) -> str:
        blocks.append(match.group(0))
        return f"\x00{len(blocks) - 1}\x00"

    return CDATA_RE.sub(stash, text), blocks


def unmask_cdata(text: str, blocks: List[str]) -> str:
    return PLACEHOLDER_RE.sub(lambda match: blocks[int(match.group(1))], text)


def unwrap_cdata(value: str) -> str:
    """Return the text of a CDATA-wrapped or XML-escaped element value."""
    value = value.strip()
    if value.startswith("<![CDATA[") and value.endswith("]]>"):
        inner = value[len("<![CDATA["):-len("]]>")]
        return unescape_cdata_terminator(inner)
    return html.unescape(value)
