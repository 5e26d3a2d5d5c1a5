"""Tests for terminal-status polling."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from deep_validation.core.exceptions import VendorTransportError
from deep_validation.validation.poller import (
    CALL_TERMINAL_STATUSES,
    MESSAGE_TERMINAL_STATUSES,
    status_in,
    wait_for_terminal,
)


def _sequence(*statuses: str):
    """Fetch function returning the given statuses, repeating the last one."""
    remaining = list(statuses)
    calls = {"count": 0}

    async def fetch():
        calls["count"] += 1
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return SimpleNamespace(status=status)

    return fetch, calls


class TestWaitForTerminal:
    """Tests for wait_for_terminal."""

    @pytest.mark.asyncio
    async def test_returns_immediately_when_already_terminal(self):
        """A terminal first fetch ends the wait after one attempt."""
        fetch, calls = _sequence("delivered")
        result = await wait_for_terminal(
            fetch, status_in(MESSAGE_TERMINAL_STATUSES), timeout=1.0, poll_interval=0.01
        )
        assert result.reached_terminal is True
        assert result.value.status == "delivered"
        assert result.attempts == 1
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_polls_until_terminal(self):
        """Polling stops at the first terminal status."""
        fetch, calls = _sequence("queued", "sending", "sent", "delivered", "read")
        result = await wait_for_terminal(
            fetch, status_in(MESSAGE_TERMINAL_STATUSES), timeout=1.0, poll_interval=0.01
        )
        assert result.reached_terminal is True
        assert result.value.status == "delivered"
        assert calls["count"] == 4

    @pytest.mark.asyncio
    async def test_returns_last_value_on_timeout(self):
        """An exhausted budget returns the last fetched value instead of raising."""
        fetch, _ = _sequence("in-progress")
        result = await wait_for_terminal(
            fetch, status_in(CALL_TERMINAL_STATUSES), timeout=0.05, poll_interval=0.01
        )
        assert result.reached_terminal is False
        assert result.value.status == "in-progress"
        assert result.attempts >= 1

    @pytest.mark.asyncio
    async def test_respects_wall_clock_budget(self):
        """A slow fetch cannot stretch the wait far past the timeout."""
        first = {"done": False}

        async def slow_fetch():
            if first["done"]:
                await asyncio.sleep(5)
            first["done"] = True
            return SimpleNamespace(status="ringing")

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await wait_for_terminal(
            slow_fetch, status_in(CALL_TERMINAL_STATUSES), timeout=0.1, poll_interval=0.01
        )
        assert loop.time() - started < 1.0
        assert result.value.status == "ringing"
        assert result.reached_terminal is False

    @pytest.mark.asyncio
    async def test_hanging_first_fetch_is_bounded(self):
        """A first fetch that outlives the budget raises a transport error."""

        async def hanging():
            await asyncio.sleep(5)
            return SimpleNamespace(status="ringing")

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(VendorTransportError, match="did not respond"):
            await wait_for_terminal(
                hanging, status_in(CALL_TERMINAL_STATUSES), timeout=0.05, poll_interval=0.01
            )
        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_fetch_errors_propagate(self):
        """Exceptions raised by fetch are not swallowed."""

        async def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await wait_for_terminal(
                broken, status_in(CALL_TERMINAL_STATUSES), timeout=0.1, poll_interval=0.01
            )


class TestStatusIn:
    """Tests for the status_in predicate."""

    def test_matches_status_attribute(self):
        """Records are terminal when their status is in the set."""
        predicate = status_in(CALL_TERMINAL_STATUSES)
        assert predicate(SimpleNamespace(status="busy")) is True
        assert predicate(SimpleNamespace(status="ringing")) is False

    def test_records_without_status_are_not_terminal(self):
        """Objects lacking a status attribute never count as terminal."""
        assert status_in(CALL_TERMINAL_STATUSES)(object()) is False
