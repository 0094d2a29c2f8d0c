"""
Paper-trading executor.

Fills against the StateStore's per-chain USD balances. Each attempt goes
through a FaultInjector policy that decides latency, whether the attempt
fails, and the slippage fraction. Slippage is always adverse: buys fill
above the signal price, sells below the exit price. A failed attempt
leaves balances and positions untouched; the retry driver decides
whether to go again.

Usage:
    executor = SimulatedExecutor(store, risk_gate)
    result = await executor.buy(signal, sizing)
    if result.success:
        print(result.position_id, result.execution_price)
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Iterable
from decimal import Decimal
from typing import Protocol

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.risk_gate import RiskGate
from core.state_store import StateStore
from execution.base import error_code_for
from execution.errors import PositionNotFoundError, SimulatedNetworkError
from execution.retry import execute_with_retry
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAPER_FAILURE_RATE,
    DEFAULT_PAPER_MAX_LATENCY_MS,
    DEFAULT_PAPER_MAX_SLIPPAGE_PERCENT,
    DEFAULT_PAPER_MIN_LATENCY_MS,
    DEFAULT_PAPER_MIN_SLIPPAGE_PERCENT,
    DEFAULT_RETRY_DELAY_MS,
)
from shared.types import (
    ExecutionErrorCode,
    ExecutionResult,
    ExitReason,
    Position,
    PositionSizing,
    Signal,
    Trade,
    TradeAction,
)

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")


# ---------------------------------------------------------------------------
# Fault injection policies
# ---------------------------------------------------------------------------


class FaultInjector(Protocol):
    def latency_seconds(self) -> float: ...

    def should_fail(self) -> bool: ...

    def slippage_fraction(self) -> Decimal: ...


class RandomFaultInjector:
    """Independent draws per attempt: uniform latency, Bernoulli failure, uniform slippage."""

    def __init__(
        self,
        failure_rate: Decimal = DEFAULT_PAPER_FAILURE_RATE,
        min_slippage_percent: Decimal = DEFAULT_PAPER_MIN_SLIPPAGE_PERCENT,
        max_slippage_percent: Decimal = DEFAULT_PAPER_MAX_SLIPPAGE_PERCENT,
        min_latency_ms: int = DEFAULT_PAPER_MIN_LATENCY_MS,
        max_latency_ms: int = DEFAULT_PAPER_MAX_LATENCY_MS,
        seed: int | None = None,
    ) -> None:
        if min_slippage_percent > max_slippage_percent:
            raise ValueError("min_slippage_percent must not exceed max_slippage_percent")
        self._failure_rate = float(failure_rate)
        self._min_slippage = float(min_slippage_percent) / 100
        self._max_slippage = float(max_slippage_percent) / 100
        self._min_latency = min_latency_ms / 1000
        self._max_latency = max_latency_ms / 1000
        self._rng = random.Random(seed)

    def latency_seconds(self) -> float:
        return self._rng.uniform(self._min_latency, self._max_latency)

    def should_fail(self) -> bool:
        return self._rng.random() < self._failure_rate

    def slippage_fraction(self) -> Decimal:
        # Quantize so the float draw never lands outside the band after conversion
        drawn = Decimal(str(self._rng.uniform(self._min_slippage, self._max_slippage)))
        low = Decimal(str(self._min_slippage))
        high = Decimal(str(self._max_slippage))
        return min(max(drawn, low), high)


class ScriptedFaultInjector:
    """Deterministic policy: ``failures`` is consumed one entry per attempt, then never fails."""

    def __init__(
        self,
        failures: Iterable[bool] = (),
        slippage: Decimal = _ZERO,
        latency: float = 0.0,
    ) -> None:
        self._failures = list(failures)
        self._slippage = slippage
        self._latency = latency
        self.attempts = 0

    def latency_seconds(self) -> float:
        return self._latency

    def should_fail(self) -> bool:
        self.attempts += 1
        if self._failures:
            return self._failures.pop(0)
        return False

    def slippage_fraction(self) -> Decimal:
        return self._slippage


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class SimulatedExecutor:
    """Paper buy/sell with injected faults and adverse slippage."""

    def __init__(
        self,
        store: StateStore,
        risk_gate: RiskGate,
        fault_injector: FaultInjector | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._risk_gate = risk_gate
        self._clock = clock or SystemClock()
        self._sleep = sleep

        cfg = get_config().get_execution_config()
        self._max_retries: int = int(cfg.get("max_retries", DEFAULT_MAX_RETRIES))
        self._retry_delay_seconds: float = (
            int(cfg.get("retry_delay_ms", DEFAULT_RETRY_DELAY_MS)) / 1000
        )

        if fault_injector is None:
            paper = cfg.get("paper", {})
            fault_injector = RandomFaultInjector(
                failure_rate=Decimal(str(paper.get("failure_rate", DEFAULT_PAPER_FAILURE_RATE))),
                min_slippage_percent=Decimal(
                    str(paper.get("min_slippage_percent", DEFAULT_PAPER_MIN_SLIPPAGE_PERCENT))
                ),
                max_slippage_percent=Decimal(
                    str(paper.get("max_slippage_percent", DEFAULT_PAPER_MAX_SLIPPAGE_PERCENT))
                ),
                min_latency_ms=int(paper.get("min_latency_ms", DEFAULT_PAPER_MIN_LATENCY_MS)),
                max_latency_ms=int(paper.get("max_latency_ms", DEFAULT_PAPER_MAX_LATENCY_MS)),
            )
        self._faults = fault_injector

        self._logger = setup_module_logger(
            "executor", "executor.log", module_folder="Execution_Logs"
        )

    def available_balance(self, chain: str) -> Decimal:
        return self._store.get_balance(chain)

    # ------------------------------------------------------------------
    # Buy
    # ------------------------------------------------------------------

    async def buy(self, signal: Signal, sizing: PositionSizing) -> ExecutionResult:
        size = sizing.position_size_usd
        self._logger.info(
            "[PAPER] BUY %s on %s: $%s @ ~$%s",
            signal.token_symbol,
            signal.chain.upper(),
            size,
            signal.entry_price,
        )

        async def _attempt() -> tuple[str, Decimal, Decimal]:
            await self._simulate_network()
            execution_price = signal.entry_price * (_ONE + self._faults.slippage_fraction())
            token_amount = size / execution_price
            position = Position(
                id="",
                chain=signal.chain,
                pair_address=signal.pair_address,
                token_symbol=signal.token_symbol,
                token_address=signal.token_address,
                entry_price=execution_price,
                token_amount=token_amount,
                position_size_usd=size,
                take_profit=signal.take_profit,
                stop_loss=signal.stop_loss,
                max_hold_until=signal.max_hold_until,
                opened_at=self._clock.now(),
                signal=signal,
            )
            position_id = await self._store.open_position(position)
            return position_id, execution_price, token_amount

        outcome = await execute_with_retry(
            _attempt,
            self._max_retries,
            self._retry_delay_seconds,
            sleep=self._sleep,
            logger=self._logger,
        )

        if not outcome.success or outcome.value is None:
            self._logger.error(
                "BUY %s failed after %d attempt(s): %s",
                signal.token_symbol,
                outcome.attempts_used,
                outcome.error,
            )
            return ExecutionResult(
                success=False,
                action=TradeAction.BUY,
                attempts_used=outcome.attempts_used,
                error=str(outcome.error) if outcome.error else "Max retries exceeded",
                error_code=error_code_for(outcome.error),
            )

        position_id, execution_price, token_amount = outcome.value
        slippage_percent = (execution_price - signal.entry_price) / signal.entry_price * _HUNDRED
        self._logger.info(
            "BUY executed after %d attempt(s): %s tokens @ $%s (%.3f%% slippage)",
            outcome.attempts_used,
            token_amount,
            execution_price,
            slippage_percent,
        )
        return ExecutionResult(
            success=True,
            action=TradeAction.BUY,
            attempts_used=outcome.attempts_used,
            position_id=position_id,
            execution_price=execution_price,
            token_amount=token_amount,
            usd_amount=size,
            slippage_percent=slippage_percent,
        )

    # ------------------------------------------------------------------
    # Sell
    # ------------------------------------------------------------------

    async def sell(
        self,
        position: Position,
        exit_price: Decimal,
        reason: ExitReason,
        exit_price_native: Decimal | None = None,
    ) -> ExecutionResult:
        self._logger.info(
            "[PAPER] SELL %s on %s (%s) @ ~$%s",
            position.token_symbol,
            position.chain.upper(),
            reason.value,
            exit_price,
        )
        if self._store.get_position(position.id) is None:
            return ExecutionResult(
                success=False,
                action=TradeAction.SELL,
                attempts_used=0,
                error=f"Position not open: {position.id}",
                error_code=ExecutionErrorCode.POSITION_NOT_FOUND,
                position_id=position.id,
            )

        async def _attempt() -> Trade:
            await self._simulate_network()
            execution_price = exit_price * (_ONE - self._faults.slippage_fraction())
            trade = await self._store.close_position(position.id, execution_price, reason)
            if trade is None:
                raise PositionNotFoundError(f"Position not open: {position.id}")
            return trade

        outcome = await execute_with_retry(
            _attempt,
            self._max_retries,
            self._retry_delay_seconds,
            sleep=self._sleep,
            logger=self._logger,
        )

        if not outcome.success or outcome.value is None:
            self._logger.error(
                "SELL %s failed after %d attempt(s): %s",
                position.token_symbol,
                outcome.attempts_used,
                outcome.error,
            )
            return ExecutionResult(
                success=False,
                action=TradeAction.SELL,
                attempts_used=outcome.attempts_used,
                error=str(outcome.error) if outcome.error else "Max retries exceeded",
                error_code=error_code_for(outcome.error),
                position_id=position.id,
            )

        trade = outcome.value
        self._risk_gate.record_closed_trade(trade.pnl)
        await self._store.save_risk_state(self._risk_gate.snapshot())

        slippage_percent = (
            (exit_price - trade.exit_price) / exit_price * _HUNDRED if exit_price > 0 else _ZERO
        )
        self._logger.info(
            "SELL executed after %d attempt(s): PnL %s$%s (%.2f%%)",
            outcome.attempts_used,
            "+" if trade.pnl >= 0 else "",
            trade.pnl,
            trade.pnl_percent,
        )
        return ExecutionResult(
            success=True,
            action=TradeAction.SELL,
            attempts_used=outcome.attempts_used,
            position_id=trade.id,
            execution_price=trade.exit_price,
            token_amount=trade.token_amount,
            usd_amount=trade.proceeds_usd,
            slippage_percent=slippage_percent,
            pnl=trade.pnl,
            pnl_percent=trade.pnl_percent,
            trade=trade,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _simulate_network(self) -> None:
        latency = self._faults.latency_seconds()
        if latency > 0:
            await self._sleep(latency)
        if self._faults.should_fail():
            raise SimulatedNetworkError("Simulated RPC failure")
