"""Discover AWS Organization and AWS Config state into a search index."""

__version__ = "0.1.0"
