"""
Exit decisions for open positions.

Checked in priority order, first match wins:
    1. price >= take_profit      -> TAKE_PROFIT
    2. price <= stop_loss        -> STOP_LOSS
    3. now >= max_hold_until     -> TIME_LIMIT
"""

from __future__ import annotations

from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from shared.clock import Clock, SystemClock
from shared.types import ExitDecision, ExitReason, MarketSnapshot, Position


class ExitEvaluator:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._logger = setup_module_logger(
            "exit_evaluator", "exit_evaluator.log", module_folder="Exit_Logs"
        )

    def evaluate(self, position: Position, snapshot: MarketSnapshot) -> ExitDecision | None:
        price = snapshot.price_usd
        now = self._clock.now()

        if price >= position.take_profit:
            reason = ExitReason.TAKE_PROFIT
            message = f"Price ${price} reached take-profit ${position.take_profit}"
        elif price <= position.stop_loss:
            reason = ExitReason.STOP_LOSS
            message = f"Price ${price} breached stop-loss ${position.stop_loss}"
        elif now >= position.max_hold_until:
            reason = ExitReason.TIME_LIMIT
            held_minutes = (now - position.opened_at) / 60
            message = f"Max hold time exceeded after {held_minutes:.0f}m"
        else:
            return None

        decision = ExitDecision(
            reason=reason,
            exit_price=price,
            profit_percent=self.profit_percent(position.entry_price, price),
            message=message,
            timestamp=now,
        )
        self._logger.info(
            "EXIT %s %s: %s (%.2f%%)",
            position.id,
            reason.value,
            message,
            decision.profit_percent,
        )
        return decision

    @staticmethod
    def profit_percent(entry_price: Decimal, exit_price: Decimal) -> Decimal:
        if entry_price == 0:
            return Decimal("0")
        return (exit_price - entry_price) / entry_price * Decimal("100")
