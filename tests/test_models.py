import pytest

from feed_rewriter.models import AnchorElement


@pytest.mark.parametrize(
    "href, text, expected",
    [
        ("mailto:a@b.example", "Mail", "unsafe"),
        (" TEL:123", "Call", "unsafe"),
        ("#section", "Jump", "unsafe"),
        ("https://example.com", "Read more", "low-value"),
        ("https://example.com", "Back to top", "low-value"),
        ("https://example.com", "Sources", "low-value"),
        ("https://example.com", "More sources for cord cutters", "safe"),
        (None, "Anchor", "safe"),
    ],
)
def test_anchor_classification(href, text, expected):
    assert AnchorElement(href=href, text=text).classification == expected
