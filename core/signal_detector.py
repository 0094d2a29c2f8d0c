"""
Volume-spike entry detection for the DEX volume-spike scalper.

Entry rule (both must hold):
    5m volume / trailing 1h average volume >= volume_multiplier
    AND 5m price change >= min_price_change_percent

Cheap floors run first (liquidity, 24h volume), then the contract-safety
verdict. On a pass the Signal carries its exit targets:
    take_profit = price * take_profit_multiplier
    stop_loss   = price * (1 - stop_loss_percent / 100)
    deadline    = now + max_hold_minutes

Usage:
    from core.signal_detector import SignalDetector

    detector = SignalDetector(contract_analyzer, clock)
    signal = detector.evaluate(snapshot, candle_stats)
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_MAX_HOLD_MINUTES,
    DEFAULT_MIN_LIQUIDITY_USD,
    DEFAULT_MIN_PRICE_CHANGE_PERCENT,
    DEFAULT_MIN_VOLUME_24H_USD,
    DEFAULT_STOP_LOSS_PERCENT,
    DEFAULT_TAKE_PROFIT_MULTIPLIER,
    DEFAULT_VOLUME_MULTIPLIER,
)
from shared.types import CandleStats, MarketSnapshot, Signal

if TYPE_CHECKING:
    from core.contract_analyzer import ContractAnalyzer

# (threshold, points), highest bucket first
_VOLUME_BUCKETS = ((Decimal("10"), 40), (Decimal("5"), 30), (Decimal("3"), 20))
_PRICE_BUCKETS = ((Decimal("10"), 30), (Decimal("5"), 20), (Decimal("2"), 10))
_LIQUIDITY_BUCKETS = ((Decimal("100000"), 30), (Decimal("50000"), 20), (Decimal("10000"), 10))


def _bucket_points(value: Decimal, buckets: tuple[tuple[Decimal, int], ...]) -> int:
    for threshold, points in buckets:
        if value >= threshold:
            return points
    return 0


def signal_strength(volume_ratio: Decimal, price_change: Decimal, liquidity_usd: Decimal) -> int:
    """Bucketed 0-100 score: volume (max 40) + price change (max 30) + liquidity (max 30)."""
    score = (
        _bucket_points(volume_ratio, _VOLUME_BUCKETS)
        + _bucket_points(price_change, _PRICE_BUCKETS)
        + _bucket_points(liquidity_usd, _LIQUIDITY_BUCKETS)
    )
    return max(0, min(score, 100))


class SignalDetector:
    """Evaluates snapshots against the volume-spike entry rule."""

    def __init__(
        self,
        contract_analyzer: ContractAnalyzer,
        clock: Clock | None = None,
    ) -> None:
        cfg = get_config()
        strategy_cfg = cfg.get_strategy_config()
        risk_cfg = cfg.get_risk_config()

        self._contract_analyzer = contract_analyzer
        self._clock = clock or SystemClock()

        self._volume_multiplier = Decimal(
            str(strategy_cfg.get("volume_multiplier", DEFAULT_VOLUME_MULTIPLIER))
        )
        self._min_price_change = Decimal(
            str(strategy_cfg.get("min_price_change_percent", DEFAULT_MIN_PRICE_CHANGE_PERCENT))
        )
        self._min_liquidity_usd = Decimal(
            str(strategy_cfg.get("min_liquidity_usd", DEFAULT_MIN_LIQUIDITY_USD))
        )
        self._min_volume_24h = Decimal(
            str(strategy_cfg.get("min_volume_24h_usd", DEFAULT_MIN_VOLUME_24H_USD))
        )
        self._take_profit_multiplier = Decimal(
            str(strategy_cfg.get("take_profit_multiplier", DEFAULT_TAKE_PROFIT_MULTIPLIER))
        )
        self._stop_loss_percent = Decimal(
            str(risk_cfg.get("stop_loss_percent", DEFAULT_STOP_LOSS_PERCENT))
        )
        self._max_hold_minutes: int = int(
            risk_cfg.get("max_hold_minutes", DEFAULT_MAX_HOLD_MINUTES)
        )

        self._logger = setup_module_logger(
            "signal_detector", "signal_detector.log", module_folder="Signal_Logs"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, snapshot: MarketSnapshot, stats: CandleStats) -> Signal | None:
        """Return an entry Signal when the snapshot passes every filter, else None."""
        symbol = snapshot.base_token.symbol or snapshot.pair_address
        price = snapshot.price_usd
        if price <= 0:
            return None

        if snapshot.liquidity_usd < self._min_liquidity_usd:
            self._logger.debug("Skip %s: low liquidity ($%s)", symbol, snapshot.liquidity_usd)
            return None

        if snapshot.volume_24h < self._min_volume_24h:
            self._logger.debug("Skip %s: low 24h volume ($%s)", symbol, snapshot.volume_24h)
            return None

        if not self._contract_analyzer.is_token_safe(snapshot):
            self._logger.warning("Skip %s: failed contract safety check", symbol)
            return None

        has_volume_spike = stats.volume_ratio >= self._volume_multiplier
        has_price_increase = snapshot.price_change_5m >= self._min_price_change
        if not (has_volume_spike and has_price_increase):
            return None

        now = self._clock.now()
        signal = Signal(
            chain=snapshot.chain,
            pair_address=snapshot.pair_address,
            token_symbol=snapshot.base_token.symbol,
            token_address=snapshot.base_token.address,
            entry_price=price,
            entry_price_native=snapshot.price_native,
            take_profit=price * self._take_profit_multiplier,
            stop_loss=price * (Decimal("1") - self._stop_loss_percent / Decimal("100")),
            max_hold_until=now + self._max_hold_minutes * 60,
            volume_ratio=stats.volume_ratio,
            price_change_5m=snapshot.price_change_5m,
            liquidity_usd=snapshot.liquidity_usd,
            volume_24h=snapshot.volume_24h,
            strength=signal_strength(
                stats.volume_ratio, snapshot.price_change_5m, snapshot.liquidity_usd
            ),
            timestamp=now,
            dex=snapshot.dex,
        )
        self._logger.info(
            "SIGNAL %s on %s: price=$%s vol_ratio=%.2fx change_5m=%.2f%% strength=%d "
            "tp=$%s sl=$%s",
            symbol,
            snapshot.chain,
            price,
            stats.volume_ratio,
            snapshot.price_change_5m,
            signal.strength,
            signal.take_profit,
            signal.stop_loss,
        )
        return signal

    def describe(self) -> dict[str, str]:
        """Human-readable strategy summary for startup logs."""
        return {
            "name": "Volume Spike Scalping",
            "entry": (
                f"Volume > {self._volume_multiplier}x avg AND Price +{self._min_price_change}%"
            ),
            "take_profit": f"{self._take_profit_multiplier}x entry price",
            "stop_loss": f"{self._stop_loss_percent}% below entry",
            "max_hold": f"{self._max_hold_minutes} minutes",
        }
