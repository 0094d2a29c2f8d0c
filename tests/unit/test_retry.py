"""
Unit tests for execution/retry.py.

Tests verify attempt counting, exponential backoff delays between (never
after) attempts, last-error reporting on exhaustion, and that
cancellation is not swallowed.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from execution.errors import SimulatedNetworkError
from execution.retry import backoff_delay, execute_with_retry


class _Flaky:
    """Fails the first ``failures`` calls, then returns ``value``."""

    def __init__(self, failures: int, value: str = "ok") -> None:
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise SimulatedNetworkError(f"failure {self.calls}")
        return self.value


class TestBackoff:
    @pytest.mark.parametrize("attempt, expected", [(1, 2.0), (2, 3.0), (3, 4.5)])
    def test_delay_grows_by_one_and_a_half(self, attempt, expected):
        assert backoff_delay(2.0, attempt) == pytest.approx(expected)


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_first_attempt_success_never_sleeps(self):
        sleep = AsyncMock()
        outcome = await execute_with_retry(_Flaky(0), 3, 2.0, sleep=sleep)

        assert outcome.success is True
        assert outcome.value == "ok"
        assert outcome.attempts_used == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_on_third_attempt(self):
        sleep = AsyncMock()
        operation = _Flaky(2)
        outcome = await execute_with_retry(operation, 3, 2.0, sleep=sleep)

        assert outcome.success is True
        assert outcome.attempts_used == 3
        assert operation.calls == 3
        assert [c.args[0] for c in sleep.await_args_list] == pytest.approx([2.0, 3.0])

    @pytest.mark.asyncio
    async def test_exhaustion_returns_last_error(self):
        sleep = AsyncMock()
        outcome = await execute_with_retry(_Flaky(5), 3, 2.0, sleep=sleep)

        assert outcome.success is False
        assert outcome.value is None
        assert outcome.attempts_used == 3
        assert str(outcome.error) == "failure 3"
        # No sleep after the final attempt
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_single_attempt_only(self):
        sleep = AsyncMock()
        outcome = await execute_with_retry(_Flaky(1), 1, 2.0, sleep=sleep)
        assert outcome.success is False
        assert outcome.attempts_used == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        operation = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await execute_with_retry(operation, 3, 0.0, sleep=AsyncMock())
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_failures_are_logged(self):
        logger = MagicMock()
        outcome = await execute_with_retry(_Flaky(1), 2, 0.0, sleep=AsyncMock(), logger=logger)
        assert outcome.success is True
        logger.warning.assert_called_once()
