"""Upstream Knack API client."""

from .client import KnackClient, build_query

__all__ = ["KnackClient", "build_query"]
