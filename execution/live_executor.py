"""
Live executor: real swaps through a per-chain SwapBackend.

The StateStore balance for a chain is the USD allocation budget for
live trading; the wallet's native balance is checked before each buy,
and the backend's quote must land within the slippage tolerance of the
signal price. Only the quote and swap are retried. Once a swap confirms,
the position or trade is recorded exactly once, so a bookkeeping error
never triggers a second on-chain swap.

Buy sizing converts USD to native coin with the pair's own price ratio:
    native_usd    = price_usd / price_native
    native_amount = usd_size / native_usd

Sells value the native proceeds with the same ratio taken from the exit
snapshot, so the realized USD price reflects the native coin at exit.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.risk_gate import RiskGate
from core.state_store import InsufficientBalanceError, StateStore
from execution.base import SwapBackend, error_code_for
from execution.errors import SwapBackendError
from execution.retry import execute_with_retry
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_SLIPPAGE_TOLERANCE_PERCENT,
)
from shared.types import (
    ExecutionErrorCode,
    ExecutionResult,
    ExitReason,
    Position,
    PositionSizing,
    Signal,
    SwapResult,
    TradeAction,
)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class LiveExecutor:
    """Fills signals with on-chain swaps through one SwapBackend per chain."""

    def __init__(
        self,
        store: StateStore,
        risk_gate: RiskGate,
        backends: dict[str, SwapBackend],
        enabled: bool,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._risk_gate = risk_gate
        self._backends = backends
        self._enabled = enabled
        self._clock = clock or SystemClock()
        self._sleep = sleep

        cfg = get_config().get_execution_config()
        self._max_retries: int = int(cfg.get("max_retries", DEFAULT_MAX_RETRIES))
        self._retry_delay_seconds: float = (
            int(cfg.get("retry_delay_ms", DEFAULT_RETRY_DELAY_MS)) / 1000
        )
        self._slippage_percent = Decimal(
            str(cfg.get("slippage_tolerance_percent", DEFAULT_SLIPPAGE_TOLERANCE_PERCENT))
        )

        self._logger = setup_module_logger(
            "executor", "executor.log", module_folder="Execution_Logs"
        )
        if not enabled:
            self._logger.warning("Live executor constructed with live trading disabled")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def available_balance(self, chain: str) -> Decimal:
        return self._store.get_balance(chain)

    # ------------------------------------------------------------------
    # Buy
    # ------------------------------------------------------------------

    async def buy(self, signal: Signal, sizing: PositionSizing) -> ExecutionResult:
        rejected = self._precheck(signal.chain, TradeAction.BUY)
        if rejected is not None:
            return rejected
        backend = self._backends[signal.chain]

        size = sizing.position_size_usd
        if self._store.get_balance(signal.chain) < size:
            return self._failure(
                TradeAction.BUY,
                f"Allocation on {signal.chain} below ${size}",
                ExecutionErrorCode.INSUFFICIENT_BALANCE,
                attempts=0,
            )
        if signal.entry_price_native <= 0:
            return self._failure(
                TradeAction.BUY,
                "Signal carries no native price; cannot size the swap",
                ExecutionErrorCode.SWAP_FAILED,
                attempts=0,
            )

        native_usd = signal.entry_price / signal.entry_price_native
        native_amount = size / native_usd
        self._logger.warning(
            "[LIVE] BUY %s on %s: $%s = %s native",
            signal.token_symbol,
            signal.chain.upper(),
            size,
            native_amount,
        )

        async def _attempt() -> SwapResult:
            wallet = await backend.native_balance()
            if wallet < native_amount:
                raise SwapBackendError(
                    f"Wallet holds {wallet} native, need {native_amount}",
                    ExecutionErrorCode.INSUFFICIENT_BALANCE,
                )
            quoted = await backend.quote_buy(signal.token_address, native_amount)
            self._check_quote(signal, size, quoted)
            return await backend.execute_buy(signal.token_address, native_amount)

        outcome = await execute_with_retry(
            _attempt,
            self._max_retries,
            self._retry_delay_seconds,
            sleep=self._sleep,
            logger=self._logger,
        )
        if not outcome.success or outcome.value is None:
            self._logger.error("[LIVE] BUY %s failed: %s", signal.token_symbol, outcome.error)
            return self._failure(
                TradeAction.BUY,
                str(outcome.error) if outcome.error else "Max retries exceeded",
                error_code_for(outcome.error),
                attempts=outcome.attempts_used,
            )

        swap = outcome.value
        if swap.amount_out <= 0:
            return self._failure(
                TradeAction.BUY,
                f"Swap {swap.tx_hash} delivered no tokens",
                ExecutionErrorCode.SWAP_FAILED,
                attempts=outcome.attempts_used,
            )

        execution_price = size / swap.amount_out
        position = Position(
            id="",
            chain=signal.chain,
            pair_address=signal.pair_address,
            token_symbol=signal.token_symbol,
            token_address=signal.token_address,
            entry_price=execution_price,
            token_amount=swap.amount_out,
            position_size_usd=size,
            take_profit=signal.take_profit,
            stop_loss=signal.stop_loss,
            max_hold_until=signal.max_hold_until,
            opened_at=self._clock.now(),
            signal=signal,
            tx_hash=swap.tx_hash,
        )
        try:
            position_id = await self._store.open_position(position)
        except InsufficientBalanceError as exc:
            # Tokens are already held; record the position and let the budget go negative
            self._logger.error("Allocation changed during swap (%s); recording anyway", exc)
            position_id = await self._store.add_position(position)
            await self._store.update_balance(signal.chain, -size)

        slippage_percent = (execution_price - signal.entry_price) / signal.entry_price * _HUNDRED
        self._logger.info(
            "[LIVE] BUY confirmed tx=%s: %s tokens @ $%s (%.3f%% vs signal)",
            swap.tx_hash,
            swap.amount_out,
            execution_price,
            slippage_percent,
        )
        return ExecutionResult(
            success=True,
            action=TradeAction.BUY,
            attempts_used=outcome.attempts_used,
            position_id=position_id,
            execution_price=execution_price,
            token_amount=swap.amount_out,
            usd_amount=size,
            slippage_percent=slippage_percent,
            tx_hash=swap.tx_hash,
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
        rejected = self._precheck(position.chain, TradeAction.SELL)
        if rejected is not None:
            return rejected
        if self._store.get_position(position.id) is None:
            return self._failure(
                TradeAction.SELL,
                f"Position not open: {position.id}",
                ExecutionErrorCode.POSITION_NOT_FOUND,
                attempts=0,
            )
        backend = self._backends[position.chain]
        self._logger.warning(
            "[LIVE] SELL %s on %s (%s)",
            position.token_symbol,
            position.chain.upper(),
            reason.value,
        )

        outcome = await execute_with_retry(
            lambda: backend.execute_sell(position.token_address, position.token_amount),
            self._max_retries,
            self._retry_delay_seconds,
            sleep=self._sleep,
            logger=self._logger,
        )
        if not outcome.success or outcome.value is None:
            self._logger.error("[LIVE] SELL %s failed: %s", position.token_symbol, outcome.error)
            return self._failure(
                TradeAction.SELL,
                str(outcome.error) if outcome.error else "Max retries exceeded",
                error_code_for(outcome.error),
                attempts=outcome.attempts_used,
                position_id=position.id,
            )

        swap = outcome.value
        execution_price = self._realized_sell_price(swap, exit_price, exit_price_native)
        trade = await self._store.close_position(
            position.id, execution_price, reason, exit_tx_hash=swap.tx_hash
        )
        if trade is None:
            return self._failure(
                TradeAction.SELL,
                f"Position {position.id} vanished after swap {swap.tx_hash}",
                ExecutionErrorCode.POSITION_NOT_FOUND,
                attempts=outcome.attempts_used,
                position_id=position.id,
            )

        self._risk_gate.record_closed_trade(trade.pnl)
        await self._store.save_risk_state(self._risk_gate.snapshot())

        self._logger.info(
            "[LIVE] SELL confirmed tx=%s: PnL %s$%s (%.2f%%)",
            swap.tx_hash,
            "+" if trade.pnl >= 0 else "",
            trade.pnl,
            trade.pnl_percent,
        )
        return ExecutionResult(
            success=True,
            action=TradeAction.SELL,
            attempts_used=outcome.attempts_used,
            position_id=trade.id,
            execution_price=execution_price,
            token_amount=trade.token_amount,
            usd_amount=trade.proceeds_usd,
            slippage_percent=(
                (exit_price - execution_price) / exit_price * _HUNDRED if exit_price > 0 else _ZERO
            ),
            pnl=trade.pnl,
            pnl_percent=trade.pnl_percent,
            tx_hash=swap.tx_hash,
            trade=trade,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _precheck(self, chain: str, action: TradeAction) -> ExecutionResult | None:
        if not self._enabled:
            return self._failure(
                action, "Live trading is disabled", ExecutionErrorCode.LIVE_DISABLED, attempts=0
            )
        if chain not in self._backends:
            return self._failure(
                action,
                f"No swap backend for chain {chain}",
                ExecutionErrorCode.UNSUPPORTED_CHAIN,
                attempts=0,
            )
        return None

    def _check_quote(self, signal: Signal, size: Decimal, quoted_tokens: Decimal) -> None:
        """Reject a buy whose quoted fill price strays past the slippage tolerance."""
        if quoted_tokens <= 0:
            raise SwapBackendError(f"No quote for {signal.token_symbol} on {signal.chain}")
        quoted_price = size / quoted_tokens
        deviation = abs(quoted_price - signal.entry_price) / signal.entry_price * _HUNDRED
        self._logger.info(
            "[LIVE] Quote %s: %s tokens (~$%s, %.2f%% from signal)",
            signal.token_symbol,
            quoted_tokens,
            quoted_price,
            deviation,
        )
        if deviation > self._slippage_percent:
            raise SwapBackendError(
                f"Quoted price ${quoted_price} is {deviation:.2f}% from signal price "
                f"${signal.entry_price} (tolerance {self._slippage_percent}%)"
            )

    @staticmethod
    def _realized_sell_price(
        swap: SwapResult, exit_price: Decimal, exit_price_native: Decimal | None
    ) -> Decimal:
        """
        USD per token realized by the swap, valuing native proceeds at the
        exit snapshot's ratio. Falls back to the quoted exit price.
        """
        if (
            exit_price_native is None
            or exit_price_native <= 0
            or exit_price <= 0
            or swap.amount_in <= 0
            or swap.amount_out <= 0
        ):
            return exit_price
        native_usd = exit_price / exit_price_native
        return swap.amount_out * native_usd / swap.amount_in

    @staticmethod
    def _failure(
        action: TradeAction,
        error: str,
        code: ExecutionErrorCode,
        attempts: int,
        position_id: str | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            action=action,
            attempts_used=attempts,
            error=error,
            error_code=code,
            position_id=position_id,
        )
