"""Configuration loading for the feed build."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple
from xml.etree import ElementTree as ET

logger = logging.getLogger(__name__)

NAMESPACE_URIS = {
    "media": "http://search.yahoo.com/mrss/",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "dc": "http://purl.org/dc/elements/1.1/",
    "atom": "http://www.w3.org/2005/Atom",
}

BODY_FORMATS = ("html", "text")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; Feed-Builder/3.0; +https://CTV-Clearlink.github.io)"
)


@dataclass(frozen=True)
class FeedConfig:
    """Immutable settings passed into the rewrite pipeline."""

    source_url: str = "https://www.cabletv.com/feed"
    output_path: str = "dist/feed.xml"
    self_url: str = "https://ctv-clearlink.github.io/feed.xml"
    user_agent: str = DEFAULT_USER_AGENT
    item_limit: int = 30
    content_max_chars: int = 8000
    max_links: int = 2
    body_format: str = "html"
    image_extensions: Tuple[str, ...] = ("png", "jpg", "jpeg", "webp", "gif")
    default_thumbnail_url: Optional[str] = (
        "https://i.ibb.co/sptKgp34/CTV-Feed-Logo.png"
    )
    tracking_params: Tuple[str, ...] = (
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
    )
    namespaces: Tuple[str, ...] = ("media", "content", "dc", "atom")
    request_timeout: float = 20.0

    def __post_init__(self) -> None:
        if self.item_limit < 1:
            raise ValueError("item_limit must be at least 1.")
        if self.content_max_chars < 2:
            raise ValueError("content_max_chars must be at least 2.")
        if self.max_links < 0:
            raise ValueError("max_links cannot be negative.")
        if self.body_format not in BODY_FORMATS:
            raise ValueError(
                f"Unsupported body format: {self.body_format} "
                f"(expected one of {', '.join(BODY_FORMATS)})"
            )
        if not self.image_extensions:
            raise ValueError("At least one image extension is required.")
        unknown = [p for p in self.namespaces if p.lower() not in NAMESPACE_URIS]
        if unknown:
            raise ValueError(f"Unknown namespace prefixes: {', '.join(unknown)}")
        if not self.self_url.startswith("https://"):
            raise ValueError("self_url must be an https:// address.")

    @property
    def allowed_prefixes(self) -> frozenset:
        return frozenset(prefix.lower() for prefix in self.namespaces)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    feed: FeedConfig = field(default_factory=FeedConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def _read_list(root: ET.Element, container: str, child: str) -> Optional[Tuple[str, ...]]:
    node = root.find(container)
    if node is None:
        return None
    values = tuple(
        (entry.text or "").strip()
        for entry in node.findall(child)
        if entry.text and entry.text.strip()
    )
    return values


def parse_app_config(path: str) -> AppConfig:
    """Parse the XML configuration file into an ``AppConfig``."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    tree = ET.parse(config_path)
    root = tree.getroot()

    overrides = {}

    simple_values = {
        "source-url": "source_url",
        "self-url": "self_url",
        "user-agent": "user_agent",
        "body-format": "body_format",
    }
    for tag, attr in simple_values.items():
        value = root.findtext(tag)
        if value and value.strip():
            overrides[attr] = value.strip()

    output = root.findtext("output")
    if output and output.strip():
        overrides["output_path"] = _resolve_path(config_path, output.strip())

    int_values = {
        "item-limit": "item_limit",
        "content-max-chars": "content_max_chars",
        "max-links": "max_links",
    }
    for tag, attr in int_values.items():
        value = root.findtext(tag)
        if value and value.strip():
            overrides[attr] = int(value)

    timeout = root.findtext("request-timeout")
    if timeout and timeout.strip():
        overrides["request_timeout"] = float(timeout)

    default_thumb = root.find("default-thumbnail")
    if default_thumb is not None:
        overrides["default_thumbnail_url"] = (default_thumb.text or "").strip() or None

    lists = {
        ("image-extensions", "extension"): "image_extensions",
        ("tracking-params", "param"): "tracking_params",
        ("namespaces", "prefix"): "namespaces",
    }
    for (container, child), attr in lists.items():
        values = _read_list(root, container, child)
        if values is not None:
            overrides[attr] = values

    feed_config = replace(FeedConfig(), **overrides)

    log_node = root.find("logging")
    logging_config = LoggingConfig()
    if log_node is not None:
        logging_config.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            logging_config.file = _resolve_path(config_path, log_file)

    return AppConfig(feed=feed_config, logging=logging_config)
