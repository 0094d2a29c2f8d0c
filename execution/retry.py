"""
Retry driver shared by both executors.

Runs an async operation up to ``max_attempts`` times with exponential
backoff (``base_delay * 1.5 ** (attempt - 1)``) between attempts. The
final failure is returned in the RetryOutcome, never raised; only
cancellation propagates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from shared.constants import RETRY_BACKOFF_FACTOR
from shared.types import RetryOutcome

T = TypeVar("T")


def backoff_delay(base_delay_seconds: float, attempt: int) -> float:
    """Delay to wait after failed ``attempt`` (1-based)."""
    return base_delay_seconds * float(RETRY_BACKOFF_FACTOR) ** (attempt - 1)


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    base_delay_seconds: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: logging.Logger | None = None,
) -> RetryOutcome[T]:
    max_attempts = max(max_attempts, 1)
    last_error: BaseException | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            value = await operation()
            return RetryOutcome(success=True, value=value, error=None, attempts_used=attempt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_error = exc
            if logger is not None:
                logger.warning("Attempt %d/%d failed: %s", attempt, max_attempts, exc)

            if attempt < max_attempts:
                delay = backoff_delay(base_delay_seconds, attempt)
                if logger is not None:
                    logger.info("Retrying in %.0fms", delay * 1000)
                await sleep(delay)

    return RetryOutcome(success=False, value=None, error=last_error, attempts_used=max_attempts)
