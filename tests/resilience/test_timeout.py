"""Tests for timeout wrappers."""

import asyncio
import pytest
import time
from unittest.mock import Mock

from knackshield.errors import UpstreamTimeoutError
from knackshield.resilience.timeout import with_async_timeout, with_timeout


class TestWithTimeout:
    """Test the timeout decorator."""

    @pytest.mark.asyncio
    async def test_async_within_timeout(self):
        @with_timeout(1.0)
        async def fast():
            return "done"

        assert await fast() == "done"

    @pytest.mark.asyncio
    async def test_async_timeout_raises(self):
        callback = Mock()

        @with_timeout(0.05, on_timeout=callback)
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await slow()

        assert exc_info.value.timeout == 0.05
        callback.assert_called_once_with("slow")

    def test_sync_within_timeout(self):
        @with_timeout(1.0)
        def fast():
            return 7

        assert fast() == 7

    def test_sync_timeout_raises(self):
        @with_timeout(0.05)
        def slow():
            time.sleep(0.2)

        with pytest.raises(UpstreamTimeoutError):
            slow()


class TestWithAsyncTimeout:
    """Test the awaitable wrapper."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        assert await with_async_timeout(asyncio.sleep(0, result="ok"), 1.0) == "ok"

    @pytest.mark.asyncio
    async def test_raises_upstream_timeout(self):
        with pytest.raises(UpstreamTimeoutError, match="fetch devices"):
            await with_async_timeout(asyncio.sleep(1), 0.05, error_message="fetch devices")
