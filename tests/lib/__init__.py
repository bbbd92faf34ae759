"""Shared helpers for the test suites."""

from .http import MockRoutes, url_key

__all__ = [
    "MockRoutes",
    "url_key",
]
