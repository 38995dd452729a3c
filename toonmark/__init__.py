"""Toonmark — reading-position tracker for externally hosted webtoons."""

__version__ = "0.1.0"
