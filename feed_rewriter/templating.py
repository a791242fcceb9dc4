"""Jinja2 environment for the XML templates shipped with feed_rewriter."""

from __future__ import annotations

import functools

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape


@functools.lru_cache(maxsize=None)
def get_environment() -> Environment:
    """Return the shared environment; ``.xml.j2`` templates are autoescaped."""
    return Environment(
        loader=PackageLoader(__package__, "templates"),
        autoescape=select_autoescape(["xml", "xml.j2"]),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
