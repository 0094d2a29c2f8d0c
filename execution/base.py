"""Executor contract shared by the simulated and live paths."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from core.state_store import InsufficientBalanceError
from execution.errors import ExecutionError
from shared.types import (
    ExecutionErrorCode,
    ExecutionResult,
    ExitReason,
    Position,
    PositionSizing,
    Signal,
    SwapResult,
)


class BaseExecutor(Protocol):
    async def buy(self, signal: Signal, sizing: PositionSizing) -> ExecutionResult: ...

    async def sell(
        self,
        position: Position,
        exit_price: Decimal,
        reason: ExitReason,
        exit_price_native: Decimal | None = None,
    ) -> ExecutionResult:
        """``exit_price_native`` is the exit snapshot's native-coin price of the token."""
        ...

    def available_balance(self, chain: str) -> Decimal: ...


def error_code_for(exc: BaseException | None) -> ExecutionErrorCode:
    """Map the last retry error onto the ExecutionResult error code."""
    if isinstance(exc, ExecutionError):
        return exc.code
    if isinstance(exc, InsufficientBalanceError):
        return ExecutionErrorCode.INSUFFICIENT_BALANCE
    return ExecutionErrorCode.UNKNOWN


class SwapBackend(Protocol):
    """
    One chain's swap capability. Amounts are human units: native coin
    (BNB/ETH/SOL) on the input side of a buy, token units on a sell.
    """

    async def native_balance(self) -> Decimal: ...

    async def quote_buy(self, token_address: str, native_amount: Decimal) -> Decimal: ...

    async def execute_buy(self, token_address: str, native_amount: Decimal) -> SwapResult: ...

    async def execute_sell(self, token_address: str, token_amount: Decimal) -> SwapResult: ...

    async def close(self) -> None: ...
