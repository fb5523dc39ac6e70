"""Tests for request gate."""

import pytest


def test_gate_imports():
    """Test that gate module can be imported."""
    from knackshield.gate import RequestGate, RequestGateMiddleware, apply_security_headers

    assert RequestGate is not None
    assert RequestGateMiddleware is not None
    assert apply_security_headers is not None
