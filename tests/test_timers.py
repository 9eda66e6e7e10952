"""
Unit tests for Timer and PendingRequests.
"""

import asyncio

import pytest

from xair_bridge.timers import PendingRequests, Timer


class TestTimer:
    """Tests for the cancellable one-shot timer."""

    @pytest.mark.asyncio
    async def test_fires_once(self):
        """Test the callback runs after the delay."""
        calls = []
        t = Timer(0.01, lambda: calls.append(1))
        t.start()
        assert t.active
        await asyncio.sleep(0.05)
        assert calls == [1]
        assert not t.active

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test a cancelled timer never fires."""
        calls = []
        t = Timer(0.01, lambda: calls.append(1))
        t.start()
        t.cancel()
        await asyncio.sleep(0.05)
        assert calls == []

    @pytest.mark.asyncio
    async def test_restart_rearms(self):
        """Test start() on an armed timer pushes the deadline out."""
        calls = []
        t = Timer(0.05, lambda: calls.append(1))
        t.start()
        await asyncio.sleep(0.03)
        t.start()
        await asyncio.sleep(0.03)
        assert calls == []
        await asyncio.sleep(0.05)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_async_callback(self):
        """Test coroutine callbacks are awaited."""
        done = asyncio.Event()

        async def cb():
            done.set()

        Timer(0.01, cb).start()
        await asyncio.wait_for(done.wait(), 1.0)

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self):
        """Test a failing callback does not leave the timer armed."""
        def boom():
            raise RuntimeError("boom")

        t = Timer(0.01, boom)
        t.start()
        await asyncio.sleep(0.05)
        assert not t.active


class TestPendingRequests:
    """Tests for the resolve-or-timeout registry."""

    @pytest.mark.asyncio
    async def test_resolves_when_all_answered(self):
        """Test wait() returns as soon as every key arrives."""
        pending = PendingRequests(["a", "b"])
        assert pending.resolve("a", 1)
        assert pending.resolve("b", 2)
        result = await pending.wait(5.0)
        assert result == {"a": 1, "b": 2}
        assert pending.complete

    @pytest.mark.asyncio
    async def test_timeout_returns_partial(self):
        """Test a timeout is not an error and keeps collected values."""
        pending = PendingRequests(["a", "b"])
        pending.resolve("a", 1)
        result = await pending.wait(0.02)
        assert result == {"a": 1}
        assert pending.missing == {"b"}

    @pytest.mark.asyncio
    async def test_release_stops_waiting(self):
        """Test release() resolves with partial data."""
        pending = PendingRequests([1, 2, 3])
        pending.resolve(2, "x")

        async def later():
            await asyncio.sleep(0.01)
            pending.release()

        asyncio.ensure_future(later())
        result = await pending.wait(5.0)
        assert result == {2: "x"}

    def test_unexpected_and_duplicate_keys(self):
        """Test only the first reply for an expected key counts."""
        pending = PendingRequests(["a"])
        assert not pending.resolve("zzz", 1)
        assert pending.resolve("a", 1)
        assert not pending.resolve("a", 2)
        assert pending.results == {"a": 1}

    @pytest.mark.asyncio
    async def test_empty_is_complete(self):
        """Test an empty registry resolves immediately."""
        assert await PendingRequests([]).wait(5.0) == {}
