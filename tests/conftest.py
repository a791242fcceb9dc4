import logging
import textwrap

import pytest

from feed_rewriter.config import FeedConfig

SAMPLE_FEED = textwrap.dedent(
    """\
    <?xml version="1.0" encoding="UTF-8"?>
    <?xml-stylesheet type="text/xsl" href="https://www.cabletv.com/feed.xsl"?>
    <rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/" xmlns:wfw="http://wellformedweb.org/CommentAPI/" xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:atom="http://www.w3.org/2005/Atom" xmlns:snf="http://www.smartnews.be/snf">
    <channel>
    \t<title>CableTV.com</title>
    \t<atom:link href="https://www.cabletv.com/feed" rel="self" type="application/rss+xml" />
    \t<link>https://www.cabletv.com</link>
    \t<description>TV, streaming and internet news</description>
    \t<language>en-US</language>
    \t<snf:logo><url>https://www.cabletv.com/logo.png</url></snf:logo>
    \t<item>
    \t\t<title>Best Shows Coming in [current_date format="F Y"]</title>
    \t\t<link>https://www.cabletv.com/blog/best-shows?utm_source=rss&amp;utm_medium=rss&amp;id=5</link>
    \t\t<dc:creator><![CDATA[Staff Writer]]></dc:creator>
    \t\t<pubDate>Mon, 06 Jan 2025 15:00:00 +0000</pubDate>
    \t\t<guid isPermaLink="false">https://www.cabletv.com/?p=1</guid>
    \t\t<description><![CDATA[<p>The season's best shows.</p>]]></description>
    \t\t<content:encoded><![CDATA[<p>Start with <a href="https://www.cabletv.com/netflix">Netflix</a> this month.</p><div class="share-buttons"><a href="https://facebook.com/share">Share</a></div><p><a href="mailto:tips@cabletv.com">Send tips</a> anytime.</p>]]></content:encoded>
    \t\t<wfw:commentRss>https://www.cabletv.com/blog/best-shows/feed/</wfw:commentRss>
    \t\t<snf:analytics><![CDATA[<script>track()</script>]]></snf:analytics>
    \t\t<media:thumbnail url="http://cdn.cabletv.com/shows.PNG?w=640" />
    \t</item>
    \t<item>
    \t\t<title>Streaming Deals &#124; Weekly</title>
    \t\t<link>https://www.cabletv.com/blog/deals?utm_campaign=feed</link>
    \t\t<pubDate>2025-01-07T09:30:00Z</pubDate>
    \t\t<guid isPermaLink="false">https://www.cabletv.com/?p=2</guid>
    \t\t<description><![CDATA[<p>Deals worth a look.</p>]]></description>
    \t</item>
    \t<item>
    \t\t<title>Internet Speeds Explained</title>
    \t\t<link>https://www.cabletv.com/blog/speeds</link>
    \t\t<guid isPermaLink="false">https://www.cabletv.com/?p=3</guid>
    \t\t<description>Plain &lt;b&gt;escaped&lt;/b&gt; summary.</description>
    \t</item>
    </channel>
    </rss>
    """
)

ARTICLE_PAGE = textwrap.dedent(
    """\
    <html>
      <head>
        <meta property="og:image" content="https://cdn.cabletv.com/deals.jpg" />
        <script type="application/ld+json">
          {"@context": "https://schema.org", "@type": "NewsArticle",
           "author": {"@type": "Person", "name": "Jane Doe"}}
        </script>
      </head>
      <body><p>Article</p></body>
    </html>
    """
)


@pytest.fixture
def feed_config(tmp_path):
    return FeedConfig(
        output_path=str(tmp_path / "dist" / "feed.xml"),
        default_thumbnail_url="https://cdn.cabletv.com/default.png",
    )


@pytest.fixture
def sample_feed():
    return SAMPLE_FEED


@pytest.fixture
def article_page():
    return ARTICLE_PAGE


@pytest.fixture
def restore_root_logger():
    root_logger = logging.getLogger()
    quiet = {name: logging.getLogger(name).level for name in ("urllib3", "charset_normalizer")}
    original_handlers = list(root_logger.handlers)
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield root_logger

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)
    for name, level in quiet.items():
        logging.getLogger(name).setLevel(level)
