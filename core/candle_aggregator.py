"""
Candle aggregation for the DEX volume-spike scalper.

Turns the stream of point-in-time pair snapshots into fixed-width OHLCV
candles per (chain, pair), keeping a bounded rolling window. The newest
candle is updated in place while its period is current; a new one is
appended on rollover and the oldest evicted past the bound.

Usage:
    from core.candle_aggregator import CandleAggregator

    candles = CandleAggregator(clock)
    candles.update("bsc", pair, snapshot)
    stats = candles.stats("bsc", pair, snapshot)
"""

from __future__ import annotations

from collections import deque
from dataclasses import replace
from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_CANDLE_INTERVAL_SECONDS,
    DEFAULT_LOOKBACK_PERIODS,
    DEFAULT_MAX_CANDLES,
)
from shared.types import Candle, CandleStats, MarketSnapshot

_ZERO = Decimal("0")


class CandleAggregator:
    """Rolling OHLCV windows keyed by (chain, pair_address)."""

    def __init__(self, clock: Clock | None = None) -> None:
        cfg = get_config().get_strategy_config()

        self._clock = clock or SystemClock()
        self._interval: int = int(
            cfg.get("candle_interval_seconds", DEFAULT_CANDLE_INTERVAL_SECONDS)
        )
        self._max_candles: int = int(cfg.get("max_candles", DEFAULT_MAX_CANDLES))
        self._lookback: int = int(cfg.get("lookback_periods", DEFAULT_LOOKBACK_PERIODS))

        self._series: dict[tuple[str, str], deque[Candle]] = {}

        self._logger = setup_module_logger(
            "candles", "candles.log", module_folder="Candle_Logs"
        )

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def max_candles(self) -> int:
        return self._max_candles

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def period_start(self, timestamp: float) -> int:
        """Align a timestamp to the start of its candle period."""
        return int(timestamp // self._interval) * self._interval

    def update(self, chain: str, pair_address: str, snapshot: MarketSnapshot) -> None:
        """Fold one snapshot into the (chain, pair) window."""
        price = snapshot.price_usd
        if price <= 0:
            self._logger.debug("Ignoring non-positive price for %s:%s", chain, pair_address)
            return

        now = self._clock.now()
        period = self.period_start(now)
        series = self._series.setdefault(
            (chain, pair_address.lower()), deque(maxlen=self._max_candles)
        )

        current = series[-1] if series else None
        if current is not None and current.period_start == period:
            current.high = max(current.high, price)
            current.low = min(current.low, price)
            current.close = price
            # DexScreener reports rolling 5m volume; the latest reading is the period's
            current.volume = snapshot.volume_5m
            current.timestamp = now
            return

        series.append(
            Candle(
                period_start=period,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=snapshot.volume_5m,
                timestamp=now,
            )
        )
        self._logger.debug(
            "New candle %s:%s period=%d price=%s (window=%d)",
            chain,
            pair_address,
            period,
            price,
            len(series),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_candles(self, chain: str, pair_address: str, count: int = 12) -> list[Candle]:
        """Last ``count`` candles, oldest first. Copies; callers cannot mutate the window."""
        series = self._series.get((chain, pair_address.lower()))
        if not series or count <= 0:
            return []
        return [replace(c) for c in list(series)[-count:]]

    def average_volume(self, chain: str, pair_address: str, periods: int = 12) -> Decimal:
        """Arithmetic mean volume of the last ``periods`` candles (0 if none)."""
        candles = self.get_candles(chain, pair_address, periods)
        if not candles:
            return _ZERO
        return sum((c.volume for c in candles), _ZERO) / Decimal(len(candles))

    def price_change(self, chain: str, pair_address: str, periods: int = 1) -> Decimal:
        """
        Percent change from the oldest close in the window to the newest.

        The window holds ``periods + 1`` candles; fewer than two candles or a
        zero base price yields 0.
        """
        candles = self.get_candles(chain, pair_address, periods + 1)
        if len(candles) < 2:
            return _ZERO
        oldest = candles[0].close
        newest = candles[-1].close
        if oldest == 0:
            return _ZERO
        return (newest - oldest) / oldest * Decimal("100")

    def stats(
        self,
        chain: str,
        pair_address: str,
        snapshot: MarketSnapshot,
        lookback: int | None = None,
    ) -> CandleStats:
        """Trailing-average volume, 5m volume ratio and 1h price change for a pair."""
        periods = lookback or self._lookback
        avg_volume = self.average_volume(chain, pair_address, periods)
        ratio = snapshot.volume_5m / avg_volume if avg_volume > 0 else _ZERO
        return CandleStats(
            avg_volume_1h=avg_volume,
            volume_ratio=ratio,
            price_change_1h=self.price_change(chain, pair_address, periods),
            candle_count=len(self._series.get((chain, pair_address.lower()), ())),
        )

    def clear(self, chain: str, pair_address: str) -> None:
        self._series.pop((chain, pair_address.lower()), None)

    def tracked_pairs(self) -> list[tuple[str, str]]:
        return list(self._series.keys())
