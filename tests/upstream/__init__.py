"""Tests for upstream client."""

import pytest


def test_upstream_imports():
    """Test that upstream module can be imported."""
    from knackshield.upstream import KnackClient, build_query

    assert KnackClient is not None
    assert build_query is not None
