"""
Unit tests for the circuit breaker.
"""

import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, CircuitBreakerState


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        failure_threshold=2,
        recovery_timeout=30.0,
        expected_exception=ConnectionError,
        name="test",
        clock=clock,
    )


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.mark.asyncio
    async def test_passes_results_through(self, breaker):
        """Test successful calls return their result."""
        func = AsyncMock(return_value="ok")

        assert await breaker.call(func, 1, key="v") == "ok"

        func.assert_awaited_once_with(1, key="v")
        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        """Test repeated expected failures open the breaker."""
        func = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(func)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(func)
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_errors_do_not_count(self, breaker):
        """Test only expected exceptions trip the breaker."""
        func = AsyncMock(side_effect=ValueError("bug"))

        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.call(func)

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.get_state()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_half_open_recovery(self, breaker, clock):
        """Test a successful trial call closes the breaker again."""
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        clock.now += 30.0
        assert await breaker.call(AsyncMock(return_value="back")) == "back"

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.get_state()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        """Test a failed trial call opens the breaker immediately."""
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        clock.now += 30.0
        with pytest.raises(ConnectionError):
            await breaker.call(failing)

        assert breaker.is_open()
