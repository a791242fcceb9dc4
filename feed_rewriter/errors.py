"""Error types raised by the feed build pipeline."""

from __future__ import annotations


class FeedBuildError(RuntimeError):
    """Base class for failures that abort the whole run."""


class FeedFetchError(FeedBuildError):
    """The source feed could not be retrieved."""


class FeedFormatError(FeedBuildError):
    """The fetched payload is not a usable RSS document."""


class InvariantError(FeedBuildError):
    """The rendered feed violates a post-build check."""
