"""
Risk gate-keeper for the DEX volume-spike scalper.

Owns the account's DailyRiskState (trade count, realized PnL, day start
balance) and approves or rejects every entry. The day boundary is the
UTC calendar day read from the injected clock; on rollover the previous
day's PnL is folded into the new start balance and counters reset.

Position sizing:
    risk_amount  = balance * risk_per_trade% / 100
    stop_percent = |entry - stop| / entry * 100
    usd_size     = risk_amount / (stop_percent / 100), capped at 25% of balance
    token_amount = usd_size / entry

Usage:
    from core.risk_gate import RiskGate

    gate = RiskGate(starting_balance=Decimal("3000"), clock=clock)
    validation = gate.validate(signal, balance)
    if not validation.valid:
        print(f"Rejected: {validation.reason}")
"""

from __future__ import annotations

from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_MAX_DAILY_DRAWDOWN_PERCENT,
    DEFAULT_MAX_LIQUIDITY_FRACTION,
    DEFAULT_MAX_POSITION_BALANCE_FRACTION,
    DEFAULT_MAX_TRADES_PER_DAY,
    DEFAULT_MIN_POSITION_USD,
    DEFAULT_MIN_SIGNAL_STRENGTH,
    DEFAULT_RISK_PER_TRADE_PERCENT,
)
from shared.types import (
    DailyRiskState,
    DailyRiskStats,
    PositionSizing,
    RiskCheck,
    Signal,
    SignalValidation,
)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class RiskGate:
    """
    Daily trade-count / drawdown limits and position sizing.

    Two tiers of defaults, as with the rest of the bot:
    - Config present but key missing: use DEFAULT_* constants
    - Config file missing/empty: lockdown (max_trades_per_day=0, nothing approved)
    """

    def __init__(
        self,
        starting_balance: Decimal = _ZERO,
        clock: Clock | None = None,
    ) -> None:
        cfg = get_config().get_risk_config()
        self._clock = clock or SystemClock()

        if cfg:
            self._max_trades_per_day: int = int(
                cfg.get("max_trades_per_day", DEFAULT_MAX_TRADES_PER_DAY)
            )
            self._risk_per_trade_percent = Decimal(
                str(cfg.get("risk_per_trade_percent", DEFAULT_RISK_PER_TRADE_PERCENT))
            )
            self._max_daily_drawdown_percent = Decimal(
                str(cfg.get("max_daily_drawdown_percent", DEFAULT_MAX_DAILY_DRAWDOWN_PERCENT))
            )
        else:
            # Config missing or corrupt: lockdown mode
            self._max_trades_per_day = 0
            self._risk_per_trade_percent = _ZERO
            self._max_daily_drawdown_percent = _ZERO

        self._max_balance_fraction = Decimal(
            str(cfg.get("max_position_balance_fraction", DEFAULT_MAX_POSITION_BALANCE_FRACTION))
        )
        self._min_signal_strength: int = int(
            cfg.get("min_signal_strength", DEFAULT_MIN_SIGNAL_STRENGTH)
        )
        self._min_position_usd = Decimal(
            str(cfg.get("min_position_usd", DEFAULT_MIN_POSITION_USD))
        )
        self._max_liquidity_fraction = Decimal(
            str(cfg.get("max_liquidity_fraction", DEFAULT_MAX_LIQUIDITY_FRACTION))
        )

        self._state = DailyRiskState(day=self._clock.today(), start_balance=starting_balance)

        self._logger = setup_module_logger(
            "risk_gate", "risk_gate.log", module_folder="Risk_Logs"
        )
        self._logger.info(
            "RiskGate initialized: start_balance=$%s max_trades/day=%d risk/trade=%s%% "
            "max_drawdown=%s%%",
            starting_balance,
            self._max_trades_per_day,
            self._risk_per_trade_percent,
            self._max_daily_drawdown_percent,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> DailyRiskState:
        """Current daily state (rolled over to today first)."""
        self._check_daily_reset()
        return self._state

    @property
    def max_trades_per_day(self) -> int:
        return self._max_trades_per_day

    # ------------------------------------------------------------------
    # Gate checks
    # ------------------------------------------------------------------

    def can_trade(self) -> RiskCheck:
        """Reject once the daily trade cap or the daily drawdown limit is hit."""
        self._check_daily_reset()

        if self._state.trade_count >= self._max_trades_per_day:
            return RiskCheck(
                allowed=False,
                reason=f"Max daily trades reached ({self._max_trades_per_day})",
            )

        if self._state.start_balance > 0:
            drawdown_fraction = self._state.total_pnl / self._state.start_balance
            if drawdown_fraction <= -(self._max_daily_drawdown_percent / _HUNDRED):
                return RiskCheck(
                    allowed=False,
                    reason=f"Max daily drawdown reached ({self._max_daily_drawdown_percent}%)",
                )

        return RiskCheck(allowed=True, reason="All checks passed")

    def size_position(
        self, balance: Decimal, entry_price: Decimal, stop_loss: Decimal
    ) -> PositionSizing:
        """Risk-based size; never more than the balance cap fraction (25%)."""
        risk_amount = balance * self._risk_per_trade_percent / _HUNDRED
        if entry_price <= 0:
            return PositionSizing(_ZERO, _ZERO, risk_amount, _ZERO)

        stop_percent = abs(entry_price - stop_loss) / entry_price * _HUNDRED
        if stop_percent == 0:
            return PositionSizing(_ZERO, _ZERO, risk_amount, _ZERO)

        raw_size = risk_amount / (stop_percent / _HUNDRED)
        cap = balance * self._max_balance_fraction
        usd_size = max(min(raw_size, cap), _ZERO)

        return PositionSizing(
            position_size_usd=usd_size,
            token_amount=usd_size / entry_price,
            risk_amount=risk_amount,
            stop_percent=stop_percent,
        )

    def validate(self, signal: Signal, balance: Decimal) -> SignalValidation:
        """Full pre-trade gate: daily limits, strength floor, size floor, liquidity cap."""
        check = self.can_trade()
        if not check.allowed:
            return SignalValidation(valid=False, reason=check.reason)

        if signal.strength < self._min_signal_strength:
            return SignalValidation(
                valid=False, reason=f"Signal too weak ({signal.strength}/100)"
            )

        sizing = self.size_position(balance, signal.entry_price, signal.stop_loss)

        if sizing.position_size_usd < self._min_position_usd:
            return SignalValidation(
                valid=False,
                reason=f"Position size too small (${self._min_position_usd} minimum)",
                sizing=sizing,
            )

        if sizing.position_size_usd > signal.liquidity_usd * self._max_liquidity_fraction:
            return SignalValidation(
                valid=False,
                reason="Position too large for liquidity",
                sizing=sizing,
            )

        return SignalValidation(valid=True, reason="Approved", sizing=sizing)

    # ------------------------------------------------------------------
    # State mutations
    # ------------------------------------------------------------------

    def record_closed_trade(self, pnl: Decimal) -> None:
        """Sole mutator of the daily counters."""
        self._check_daily_reset()
        self._state.trade_count += 1
        self._state.total_pnl += pnl

        pnl_percent = (
            pnl / self._state.start_balance * _HUNDRED if self._state.start_balance > 0 else _ZERO
        )
        self._logger.info(
            "Trade recorded: %s$%s (%.2f%%); day %s: %d trades, total PnL $%s",
            "+" if pnl >= 0 else "",
            pnl,
            pnl_percent,
            self._state.day,
            self._state.trade_count,
            self._state.total_pnl,
        )

    def daily_stats(self) -> DailyRiskStats:
        self._check_daily_reset()
        state = self._state
        pnl_percent = (
            state.total_pnl / state.start_balance * _HUNDRED if state.start_balance > 0 else _ZERO
        )
        return DailyRiskStats(
            day=state.day,
            trade_count=state.trade_count,
            max_trades=self._max_trades_per_day,
            trades_remaining=max(self._max_trades_per_day - state.trade_count, 0),
            total_pnl=state.total_pnl,
            start_balance=state.start_balance,
            pnl_percent=pnl_percent,
            can_trade=self.can_trade().allowed,
        )

    def force_daily_reset(self) -> None:
        """Zero today's counters without rolling PnL into the start balance."""
        self._state = DailyRiskState(
            day=self._clock.today(), start_balance=self._state.start_balance
        )
        self._logger.warning("Daily risk counters force-reset")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> DailyRiskState:
        return DailyRiskState(
            day=self._state.day,
            trade_count=self._state.trade_count,
            total_pnl=self._state.total_pnl,
            start_balance=self._state.start_balance,
        )

    def restore(self, state: DailyRiskState) -> None:
        """Adopt a persisted state; rollover applies on the next check if the day changed."""
        self._state = DailyRiskState(
            day=state.day,
            trade_count=state.trade_count,
            total_pnl=state.total_pnl,
            start_balance=state.start_balance,
        )
        self._logger.info(
            "Risk state restored: day=%s trades=%d pnl=$%s start=$%s",
            state.day,
            state.trade_count,
            state.total_pnl,
            state.start_balance,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_daily_reset(self) -> None:
        today = self._clock.today()
        if self._state.day == today:
            return
        previous = self._state
        self._state = DailyRiskState(
            day=today,
            trade_count=0,
            total_pnl=_ZERO,
            start_balance=previous.start_balance + previous.total_pnl,
        )
        self._logger.info(
            "Daily reset %s -> %s: start balance $%s (prev PnL $%s)",
            previous.day,
            today,
            self._state.start_balance,
            previous.total_pnl,
        )
