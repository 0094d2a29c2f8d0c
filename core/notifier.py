"""
Trade lifecycle event sinks.

The engine reports signal-detected, trade-opened and trade-closed events
to an EventSink. ``NullEventSink`` is the default; ``LoggingEventSink``
writes a human summary plus a JSON record to the trade-trace log. A sink
that raises is logged by the caller and otherwise ignored.
"""

from __future__ import annotations

from typing import Protocol

from bot_logging.logger_manager import log_trade_event, setup_module_logger
from shared.types import ExecutionResult, Position, Signal, Trade, TradingMode, to_plain_dict


class EventSink(Protocol):
    async def signal_detected(self, signal: Signal, mode: TradingMode) -> None: ...

    async def trade_opened(self, position: Position, result: ExecutionResult) -> None: ...

    async def trade_closed(self, trade: Trade, result: ExecutionResult) -> None: ...


class NullEventSink:
    async def signal_detected(self, signal: Signal, mode: TradingMode) -> None:
        return None

    async def trade_opened(self, position: Position, result: ExecutionResult) -> None:
        return None

    async def trade_closed(self, trade: Trade, result: ExecutionResult) -> None:
        return None


class LoggingEventSink:
    """Writes every event to Notifier_Logs and the JSON trade trace."""

    def __init__(self) -> None:
        self._logger = setup_module_logger(
            "notifier", "notifier.log", module_folder="Notifier_Logs"
        )

    async def signal_detected(self, signal: Signal, mode: TradingMode) -> None:
        self._logger.info(
            "[%s] Volume spike: %s on %s @ $%s | vol %.2fx | +%.2f%% 5m | strength %d/100",
            mode.value,
            signal.token_symbol,
            signal.chain.upper(),
            signal.entry_price,
            signal.volume_ratio,
            signal.price_change_5m,
            signal.strength,
        )
        log_trade_event("SIGNAL", {"mode": mode.value, **to_plain_dict(signal)})

    async def trade_opened(self, position: Position, result: ExecutionResult) -> None:
        self._logger.info(
            "BUY %s on %s: %s tokens @ $%s ($%s) TP $%s SL $%s%s",
            position.token_symbol,
            position.chain.upper(),
            position.token_amount,
            position.entry_price,
            position.position_size_usd,
            position.take_profit,
            position.stop_loss,
            f" tx={result.tx_hash}" if result.tx_hash else "",
        )
        log_trade_event(
            "BUY",
            {
                "position_id": position.id,
                "chain": position.chain,
                "pair_address": position.pair_address,
                "token": position.token_symbol,
                "entry_price": position.entry_price,
                "token_amount": position.token_amount,
                "size_usd": position.position_size_usd,
                "slippage_percent": result.slippage_percent,
                "attempts": result.attempts_used,
                "tx_hash": result.tx_hash,
            },
        )

    async def trade_closed(self, trade: Trade, result: ExecutionResult) -> None:
        self._logger.info(
            "SELL %s on %s (%s): exit $%s PnL %s$%s (%.2f%%) held %.0fm",
            trade.token_symbol,
            trade.chain.upper(),
            trade.exit_reason.value,
            trade.exit_price,
            "+" if trade.pnl >= 0 else "",
            trade.pnl,
            trade.pnl_percent,
            trade.hold_seconds / 60,
        )
        log_trade_event(
            "SELL",
            {
                "position_id": trade.id,
                "chain": trade.chain,
                "pair_address": trade.pair_address,
                "token": trade.token_symbol,
                "reason": trade.exit_reason.value,
                "entry_price": trade.entry_price,
                "exit_price": trade.exit_price,
                "pnl": trade.pnl,
                "pnl_percent": trade.pnl_percent,
                "hold_seconds": trade.hold_seconds,
                "attempts": result.attempts_used,
                "tx_hash": result.tx_hash,
            },
        )
