from types import SimpleNamespace

import pytest
import requests

from feed_rewriter import fetcher
from feed_rewriter.errors import FeedFetchError


def test_fetch_feed_returns_bytes_and_sends_headers(monkeypatch):
    captured = {}

    def fake_get(url, headers, timeout):
        captured.update(url=url, headers=headers, timeout=timeout)
        return SimpleNamespace(ok=True, content=b"<rss></rss>", status_code=200, reason="OK")

    monkeypatch.setattr(fetcher.requests, "get", fake_get)

    payload = fetcher.fetch_feed("https://www.cabletv.com/feed", "agent/1.0", timeout=7)

    assert payload == b"<rss></rss>"
    assert captured["url"] == "https://www.cabletv.com/feed"
    assert captured["headers"] == {"Accept": "application/rss+xml", "User-Agent": "agent/1.0"}
    assert captured["timeout"] == 7


def test_fetch_feed_non_success_status_raises(monkeypatch):
    monkeypatch.setattr(
        fetcher.requests,
        "get",
        lambda url, headers, timeout: SimpleNamespace(
            ok=False, content=b"", status_code=503, reason="Service Unavailable"
        ),
    )

    with pytest.raises(FeedFetchError, match="503 Service Unavailable"):
        fetcher.fetch_feed("https://www.cabletv.com/feed", "agent/1.0")


def test_fetch_feed_network_error_raises(monkeypatch):
    def fake_get(url, headers, timeout):
        raise requests.Timeout("timed out")

    monkeypatch.setattr(fetcher.requests, "get", fake_get)

    with pytest.raises(FeedFetchError, match="Fetch https://www.cabletv.com/feed failed"):
        fetcher.fetch_feed("https://www.cabletv.com/feed", "agent/1.0")
