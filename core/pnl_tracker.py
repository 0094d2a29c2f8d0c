"""
Closed-trade journal and P&L statistics for the DEX volume-spike scalper.

Every closed Trade is appended to SQLite so statistics survive restarts
and are not bounded by the in-memory trade history. Provides win rate,
profit factor, biggest/average win and loss, Sharpe, drawdowns and a
per-day P&L series.

Usage:
    from core.pnl_tracker import PnLTracker

    tracker = PnLTracker()
    await tracker.record_trade(trade, TradingMode.PAPER)
    stats = await tracker.get_summary_stats()
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from shared.clock import Clock, SystemClock
from shared.types import DailyPnL, Trade, TradingMode, TradingStats

_PROJECT_ROOT = Path(__file__).parent.parent
_DEFAULT_DB_PATH = _PROJECT_ROOT / "data" / "trades.db"

_ZERO = Decimal("0")
_SECONDS_PER_DAY = 86400


def _utc_day(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


class PnLTracker:
    """SQLite-backed journal of closed trades."""

    def __init__(self, db_path: str | None = None, clock: Clock | None = None) -> None:
        if db_path is None:
            db_path = str(_DEFAULT_DB_PATH)

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = db_path
        self._clock = clock or SystemClock()
        self._db = sqlite3.connect(db_path)
        self._db.row_factory = sqlite3.Row
        self._create_tables()

        self._logger = setup_module_logger(
            "pnl_tracker", "pnl_tracker.log", module_folder="PnL_Tracker_Logs"
        )

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_tables(self) -> None:
        """Create SQLite tables if they don't exist."""
        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS trades (
                id TEXT PRIMARY KEY,
                mode TEXT NOT NULL,
                chain TEXT NOT NULL,
                pair_address TEXT NOT NULL,
                token_symbol TEXT,
                entry_price TEXT NOT NULL,
                exit_price TEXT NOT NULL,
                token_amount TEXT NOT NULL,
                position_size_usd TEXT NOT NULL,
                pnl_usd TEXT NOT NULL,
                pnl_percent TEXT NOT NULL,
                exit_reason TEXT NOT NULL,
                opened_at REAL NOT NULL,
                closed_at REAL NOT NULL,
                close_day TEXT NOT NULL,
                hold_seconds REAL NOT NULL,
                entry_tx_hash TEXT,
                exit_tx_hash TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_trades_closed_at ON trades(closed_at);
        """)
        self._db.commit()

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    async def record_trade(self, trade: Trade, mode: TradingMode) -> None:
        """Journal a closed trade (idempotent on the position id)."""
        self._db.execute(
            """INSERT OR REPLACE INTO trades
               (id, mode, chain, pair_address, token_symbol, entry_price, exit_price,
                token_amount, position_size_usd, pnl_usd, pnl_percent, exit_reason,
                opened_at, closed_at, close_day, hold_seconds, entry_tx_hash, exit_tx_hash)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                trade.id,
                mode.value,
                trade.chain,
                trade.pair_address,
                trade.token_symbol,
                str(trade.entry_price),
                str(trade.exit_price),
                str(trade.token_amount),
                str(trade.position_size_usd),
                str(trade.pnl),
                str(trade.pnl_percent),
                trade.exit_reason.value,
                trade.opened_at,
                trade.closed_at,
                _utc_day(trade.closed_at),
                trade.hold_seconds,
                trade.entry_tx_hash,
                trade.exit_tx_hash,
            ),
        )
        self._db.commit()

        self._logger.info(
            "Trade journaled: id=%s mode=%s pnl=$%s reason=%s",
            trade.id,
            mode.value,
            trade.pnl,
            trade.exit_reason.value,
        )

    # ------------------------------------------------------------------
    # Query operations
    # ------------------------------------------------------------------

    async def get_recent_trades(self, limit: int = 10) -> list[dict[str, Any]]:
        """Closed trades, most recent first."""
        rows = self._db.execute(
            "SELECT * FROM trades ORDER BY closed_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(r) for r in rows]

    async def get_daily_pnl(self, days: int = 7) -> list[DailyPnL]:
        """Per-UTC-day realized P&L for the last ``days`` days that had trades, oldest first."""
        cutoff = self._clock.now() - days * _SECONDS_PER_DAY
        rows = self._db.execute(
            """SELECT close_day, pnl_usd FROM trades
               WHERE closed_at >= ? ORDER BY closed_at ASC""",
            (cutoff,),
        ).fetchall()
        totals: dict[str, tuple[int, Decimal]] = {}
        for row in rows:
            count, pnl = totals.get(row["close_day"], (0, _ZERO))
            totals[row["close_day"]] = (count + 1, pnl + Decimal(row["pnl_usd"]))
        return [DailyPnL(day=day, trades=c, pnl_usd=p) for day, (c, p) in totals.items()]

    async def get_summary_stats(self) -> TradingStats:
        """Aggregate statistics over every journaled trade."""
        return await self.get_rolling_stats(window_days=None)

    async def get_rolling_stats(self, window_days: int | None = 30) -> TradingStats:
        """
        Compute trading statistics for a rolling window.

        Args:
            window_days: Number of days to look back. None = all time.
        """
        if window_days is not None:
            cutoff = self._clock.now() - window_days * _SECONDS_PER_DAY
            rows = self._db.execute(
                "SELECT * FROM trades WHERE closed_at >= ? ORDER BY closed_at ASC",
                (cutoff,),
            ).fetchall()
        else:
            rows = self._db.execute("SELECT * FROM trades ORDER BY closed_at ASC").fetchall()

        total_trades = len(rows)
        if total_trades == 0:
            return TradingStats(
                total_trades=0,
                winning_trades=0,
                losing_trades=0,
                total_pnl_usd=_ZERO,
                avg_pnl_per_trade_usd=_ZERO,
                win_rate=_ZERO,
                profit_factor=_ZERO,
                biggest_win_usd=_ZERO,
                biggest_loss_usd=_ZERO,
                avg_win_usd=_ZERO,
                avg_loss_usd=_ZERO,
                avg_hold_minutes=_ZERO,
                sharpe_ratio=_ZERO,
                current_drawdown_pct=_ZERO,
                max_drawdown_pct=_ZERO,
            )

        pnls = [Decimal(row["pnl_usd"]) for row in rows]
        # Break-even counts as a win
        wins = [p for p in pnls if p >= 0]
        losses = [p for p in pnls if p < 0]

        total_pnl = sum(pnls, _ZERO)
        gross_profit = sum(wins, _ZERO)
        gross_loss = abs(sum(losses, _ZERO))

        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = Decimal("Infinity") if gross_profit > 0 else _ZERO

        hold_total = sum((Decimal(str(row["hold_seconds"])) for row in rows), _ZERO)
        current_dd, max_dd = self._compute_drawdowns(pnls)

        return TradingStats(
            total_trades=total_trades,
            winning_trades=len(wins),
            losing_trades=len(losses),
            total_pnl_usd=total_pnl,
            avg_pnl_per_trade_usd=total_pnl / Decimal(total_trades),
            win_rate=Decimal(len(wins)) / Decimal(total_trades) * Decimal("100"),
            profit_factor=profit_factor,
            biggest_win_usd=max(wins) if wins else _ZERO,
            biggest_loss_usd=abs(min(losses)) if losses else _ZERO,
            avg_win_usd=gross_profit / Decimal(len(wins)) if wins else _ZERO,
            avg_loss_usd=sum(losses, _ZERO) / Decimal(len(losses)) if losses else _ZERO,
            avg_hold_minutes=hold_total / Decimal(total_trades) / Decimal("60"),
            sharpe_ratio=self._compute_sharpe(pnls),
            current_drawdown_pct=current_dd,
            max_drawdown_pct=max_dd,
        )

    async def format_report(self) -> str:
        """Multi-line end-of-run summary."""
        stats = await self.get_summary_stats()
        today = _utc_day(self._clock.now())
        daily = {d.day: d for d in await self.get_daily_pnl(days=1)}
        today_pnl = daily[today].pnl_usd if today in daily else _ZERO
        profit_factor = (
            "inf" if stats.profit_factor.is_infinite() else f"{stats.profit_factor:.2f}"
        )
        return "\n".join(
            [
                "PnL REPORT",
                f"  Total trades : {stats.total_trades} "
                f"({stats.winning_trades} W / {stats.losing_trades} L)",
                f"  Win rate     : {stats.win_rate:.1f}%",
                f"  Total PnL    : ${stats.total_pnl_usd:.2f}",
                f"  Today PnL    : ${today_pnl:.2f}",
                f"  Profit factor: {profit_factor}",
                f"  Biggest win  : ${stats.biggest_win_usd:.2f}",
                f"  Biggest loss : ${stats.biggest_loss_usd:.2f}",
                f"  Avg win/loss : ${stats.avg_win_usd:.2f} / ${stats.avg_loss_usd:.2f}",
                f"  Max drawdown : {stats.max_drawdown_pct * 100:.1f}%",
            ]
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _compute_sharpe(pnls: list[Decimal]) -> Decimal:
        """Per-trade Sharpe ratio (mean / sample std dev, no risk-free rate)."""
        if len(pnls) < 2:
            return _ZERO

        mean_pnl: Decimal = sum(pnls, _ZERO) / Decimal(len(pnls))
        variance: Decimal = sum(((p - mean_pnl) ** 2 for p in pnls), _ZERO) / Decimal(
            len(pnls) - 1
        )
        if variance <= 0:
            return _ZERO
        return mean_pnl / variance.sqrt()

    @staticmethod
    def _compute_drawdowns(pnls: list[Decimal]) -> tuple[Decimal, Decimal]:
        """
        Compute current and max drawdown from cumulative P&L series.

        Returns (current_drawdown_pct, max_drawdown_pct) as positive decimals
        (e.g. 0.15 = 15% drawdown from the running equity peak).
        """
        if not pnls:
            return _ZERO, _ZERO

        cumulative = _ZERO
        peak = _ZERO
        max_drawdown = _ZERO

        for pnl in pnls:
            cumulative += pnl
            if cumulative > peak:
                peak = cumulative
            if peak > 0:
                dd = (peak - cumulative) / peak
                if dd > max_drawdown:
                    max_drawdown = dd

        current_dd = _ZERO
        if peak > 0:
            current_dd = max((peak - cumulative) / peak, _ZERO)

        return current_dd, max_drawdown

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the SQLite database connection."""
        if self._db:
            self._db.close()
            self._logger.debug("PnLTracker database closed")
