import dataclasses
import textwrap

import pytest

from feed_rewriter.document import (
    canonicalize_prefixes,
    decode_payload,
    normalize_document,
    replace_self_link,
    strip_foreign_attributes,
    strip_foreign_elements,
)
from feed_rewriter.errors import FeedFormatError
from feed_rewriter.renderers import render_feed

ALLOWED = frozenset({"media", "content", "dc", "atom"})


def test_normalize_document_rebuilds_root_and_strips_foreign_namespaces(feed_config, sample_feed):
    document = normalize_document(sample_feed.encode("utf-8"), feed_config)

    assert document.header.startswith(
        '<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/" '
        'xmlns:content="http://purl.org/rss/1.0/modules/content/" '
        'xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:atom="http://www.w3.org/2005/Atom">'
    )
    rendered = render_feed(document).decode("utf-8")
    assert "snf" not in rendered
    assert "wfw" not in rendered
    assert "xml-stylesheet" not in rendered
    assert rendered.count("<?xml") == 1


def test_normalize_document_replaces_self_link(feed_config, sample_feed):
    document = normalize_document(sample_feed, feed_config)

    assert document.header.count('rel="self"') == 1
    assert (
        '<channel>\n    <atom:link href="https://ctv-clearlink.github.io/feed.xml" '
        'rel="self" type="application/rss+xml" />'
    ) in document.header
    assert document.channel.self_url == feed_config.self_url
    assert document.channel.title == "CableTV.com"
    assert document.channel.language == "en-US"


def test_normalize_document_limits_items_in_order(feed_config, sample_feed):
    config = dataclasses.replace(feed_config, item_limit=2)

    document = normalize_document(sample_feed, config)

    assert [item.guid for item in document.items] == [
        "https://www.cabletv.com/?p=1",
        "https://www.cabletv.com/?p=2",
    ]
    assert document.footer.strip() == "</channel>\n</rss>"


def test_normalize_document_reads_item_fields(feed_config, sample_feed):
    first, second, third = normalize_document(sample_feed, feed_config).items

    assert first.author == "Staff Writer"
    assert first.thumbnail == "http://cdn.cabletv.com/shows.PNG?w=640"
    assert "wfw:commentRss" not in first.markup
    assert "snf:analytics" not in first.markup
    assert second.title == "Streaming Deals | Weekly"
    assert third.body == "Plain <b>escaped</b> summary."


def test_normalize_document_is_idempotent(feed_config, sample_feed):
    once = render_feed(normalize_document(sample_feed, feed_config))

    twice = render_feed(normalize_document(once, feed_config))

    assert twice == once


def test_normalize_document_without_rss_root_raises(feed_config):
    with pytest.raises(FeedFormatError, match="no <rss> tag"):
        normalize_document(b"<html><body>Maintenance</body></html>", feed_config)


def test_normalize_document_without_channel_raises(feed_config):
    with pytest.raises(FeedFormatError):
        normalize_document(b'<?xml version="1.0"?><rss version="2.0"></rss>', feed_config)


def test_cdata_content_is_not_treated_as_feed_markup(feed_config):
    feed = textwrap.dedent(
        """\
        <rss version="2.0">
        <channel>
          <title>Feed</title>
          <item>
            <title>One</title>
            <description><![CDATA[<p><snf:tag>inside</snf:tag> <item>not an item</item></p>]]></description>
          </item>
        </channel>
        </rss>
        """
    )

    document = normalize_document(feed, feed_config)

    assert len(document.items) == 1
    assert "<snf:tag>inside</snf:tag>" in document.items[0].markup


def test_strip_foreign_elements_handles_nesting_and_self_closing():
    text = (
        "<channel>\n  <snf:logo>\n    <snf:url>x</snf:url>\n  </snf:logo>"
        "\n  <snf:flag/>\n  <Media:content url=\"a.jpg\"/>\n</channel>"
    )

    result = strip_foreign_elements(text, ALLOWED)

    assert result == '<channel>\n  <Media:content url="a.jpg"/>\n</channel>'


def test_strip_foreign_attributes_keeps_allowed_declarations():
    text = '<rss xmlns:wfw="http://wellformedweb.org/CommentAPI/" xmlns:dc="x"><guid wfw:id="1">g</guid></rss>'

    result = strip_foreign_attributes(text, ALLOWED)

    assert result == '<rss xmlns:dc="x"><guid>g</guid></rss>'


def test_normalize_document_lowercases_mixed_case_prefixes(feed_config):
    feed = textwrap.dedent(
        """\
        <rss version="2.0" xmlns:Media="http://search.yahoo.com/mrss/">
        <channel>
          <title>Feed</title>
          <item>
            <title>One</title>
            <Media:content url="https://cdn.example.com/a.jpg"/>
          </item>
        </channel>
        </rss>
        """
    )

    document = normalize_document(feed, feed_config)

    assert '<media:content url="https://cdn.example.com/a.jpg"/>' in document.items[0].markup
    assert "Media:" not in render_feed(document).decode("utf-8")


def test_canonicalize_prefixes_leaves_unknown_prefixes_alone():
    text = '<channel xmlns:DC="x"><Media:content Media:url="a"/><Snf:tag>y</Snf:tag></channel>'

    result = canonicalize_prefixes(text, ALLOWED)

    assert result == '<channel xmlns:dc="x"><media:content media:url="a"/><Snf:tag>y</Snf:tag></channel>'


def test_replace_self_link_removes_every_self_link():
    text = (
        "<channel>\n  <atom:link href=\"https://a\" rel=\"self\"/>"
        "\n  <atom:link href=\"https://hub\" rel=\"hub\"/>"
        "\n  <atom:link rel='self' href='https://b'></atom:link>\n</channel>"
    )

    result = replace_self_link(text, "https://ctv-clearlink.github.io/feed.xml")

    assert result.count("rel=\"self\"") == 1
    assert "https://a" not in result and "https://b" not in result
    assert "https://hub" in result


def test_decode_payload_honours_declared_encoding():
    raw = '<?xml version="1.0" encoding="ISO-8859-1"?><rss>café</rss>'.encode("latin-1")

    assert "café" in decode_payload(raw)
