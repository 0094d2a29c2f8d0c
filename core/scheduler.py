"""
Trading engine: the scan and monitor control loops.

Scan loop (default every 30s), per watch-list item in order:
    snapshot -> candle update -> signal detector -> safety report
    -> notify signal -> skip if the pair already has an open position
    -> risk gate validate -> pool-size warning
    -> READ_ONLY logs / PAPER+LIVE executor.buy

Monitor loop (default every 10s), per open position in order:
    snapshot -> candle update -> exit evaluator -> executor.sell
    -> notify close and journal the trade

A failure on one item is logged and the loop moves to the next. Both
loops sleep on a shared asyncio.Event so ``stop()`` wakes them at once;
an iteration already in flight is allowed to finish.

Usage:
    engine = TradingEngine(mode, store, client, aggregator, detector,
                           exit_evaluator, risk_gate, executor)
    await engine.initialize()
    await asyncio.gather(engine.run_scan_loop(), engine.run_monitor_loop())
"""

from __future__ import annotations

import asyncio
import sqlite3
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.notifier import EventSink, NullEventSink
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_MONITOR_INTERVAL_SECONDS,
    DEFAULT_PAIRS_PER_CHAIN,
    DEFAULT_SCAN_INTERVAL_SECONDS,
)
from shared.types import (
    DailyRiskState,
    ExecutionErrorCode,
    ExecutionResult,
    ExitReason,
    Position,
    Signal,
    Trade,
    TradeAction,
    TradingMode,
    WatchlistItem,
    to_plain_dict,
)

if TYPE_CHECKING:
    from core.candle_aggregator import CandleAggregator
    from core.contract_analyzer import ContractAnalyzer
    from core.exit_evaluator import ExitEvaluator
    from core.pnl_tracker import PnLTracker
    from core.risk_gate import RiskGate
    from core.signal_detector import SignalDetector
    from core.state_store import StateStore
    from data.dexscreener_client import MarketDataProvider
    from execution.base import BaseExecutor


class TradingEngine:
    """Owns the two periodic loops and wires every component together."""

    def __init__(
        self,
        mode: TradingMode,
        store: StateStore,
        market_data: MarketDataProvider,
        aggregator: CandleAggregator,
        detector: SignalDetector,
        exit_evaluator: ExitEvaluator,
        risk_gate: RiskGate,
        executor: BaseExecutor | None,
        event_sink: EventSink | None = None,
        pnl_tracker: PnLTracker | None = None,
        contract_analyzer: ContractAnalyzer | None = None,
        enabled_chains: list[str] | None = None,
        clock: Clock | None = None,
    ) -> None:
        if mode is not TradingMode.READ_ONLY and executor is None:
            raise ValueError(f"{mode.value} mode requires an executor")

        self._mode = mode
        self._store = store
        self._market_data = market_data
        self._aggregator = aggregator
        self._detector = detector
        self._exit_evaluator = exit_evaluator
        self._risk_gate = risk_gate
        self._executor = executor
        self._events: EventSink = event_sink or NullEventSink()
        self._pnl_tracker = pnl_tracker
        self._contract_analyzer = contract_analyzer
        self._clock = clock or SystemClock()

        cfg = get_config()
        loops_cfg = cfg.get_timing_config().get("loops", {})
        market_cfg = cfg.get_app_config().get("market_data", {})

        self._enabled_chains = (
            enabled_chains if enabled_chains is not None else cfg.get_enabled_chains()
        )
        self._scan_interval: float = float(
            loops_cfg.get("scan_interval_seconds", DEFAULT_SCAN_INTERVAL_SECONDS)
        )
        self._monitor_interval: float = float(
            loops_cfg.get("monitor_interval_seconds", DEFAULT_MONITOR_INTERVAL_SECONDS)
        )
        self._pairs_per_chain: int = int(
            market_cfg.get("pairs_per_chain", DEFAULT_PAIRS_PER_CHAIN)
        )

        self._stop_event = asyncio.Event()
        self._active_loops: set[str] = set()

        self._logger = setup_module_logger(
            "scheduler", "scheduler.log", module_folder="Scheduler_Logs"
        )

    @property
    def mode(self) -> TradingMode:
        return self._mode

    @property
    def is_running(self) -> bool:
        return bool(self._active_loops) and not self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load state, seed the risk gate, log the strategy, discover pairs if needed."""
        self._logger.info("Initializing engine (mode=%s)", self._mode.value)
        await self._store.load()

        persisted = self._store.get_risk_state()
        if persisted is not None:
            self._risk_gate.restore(persisted)
        else:
            total_balance = sum(
                (self._store.get_balance(chain) for chain in self._enabled_chains),
                Decimal("0"),
            )
            self._risk_gate.restore(
                DailyRiskState(day=self._clock.today(), start_balance=total_balance)
            )
            await self._store.save_risk_state(self._risk_gate.snapshot())

        strategy = self._detector.describe()
        self._logger.info("Strategy: %s", strategy["name"])
        self._logger.info("  Entry      : %s", strategy["entry"])
        self._logger.info("  Take profit: %s", strategy["take_profit"])
        self._logger.info("  Stop loss  : %s", strategy["stop_loss"])
        self._logger.info("  Max hold   : %s", strategy["max_hold"])

        if not self._store.get_watchlist():
            self._logger.info("Watch list empty, discovering pairs")
            await self.discover_pairs()

        self._logger.info("Initialization complete")

    async def discover_pairs(self) -> int:
        """Seed the watch list with the top pairs of every enabled chain. Returns pairs added."""
        added = 0
        for chain in self._enabled_chains:
            try:
                candidates = await self._market_data.discover_pairs(chain)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error("Pair discovery failed on %s: %s", chain, exc, exc_info=True)
                continue

            for snapshot in candidates[: self._pairs_per_chain]:
                item = WatchlistItem(
                    chain=chain,
                    pair_address=snapshot.pair_address,
                    symbol=snapshot.base_token.symbol,
                    added_at=self._clock.now(),
                    token_address=snapshot.base_token.address,
                )
                if await self._store.add_to_watchlist(item):
                    added += 1
        self._logger.info("Discovery added %d pairs", added)
        return added

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    async def scan_once(self) -> list[Signal]:
        """One pass over the watch list. Returns the signals detected."""
        watchlist = self._store.get_watchlist()
        if not watchlist:
            self._logger.warning("Watch list is empty, discovering pairs")
            await self.discover_pairs()
            return []

        check = self._risk_gate.can_trade()
        if not check.allowed:
            self._logger.warning("Trading paused: %s", check.reason)
            return []

        signals: list[Signal] = []
        for item in watchlist:
            try:
                signal = await self._scan_item(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error(
                    "Error processing %s on %s: %s", item.symbol, item.chain, exc, exc_info=True
                )
                continue
            if signal is not None:
                signals.append(signal)
        return signals

    async def _scan_item(self, item: WatchlistItem) -> Signal | None:
        snapshot = await self._market_data.get_snapshot(item.chain, item.pair_address)
        if snapshot is None:
            return None

        self._aggregator.update(item.chain, item.pair_address, snapshot)
        stats = self._aggregator.stats(item.chain, item.pair_address, snapshot)
        signal = self._detector.evaluate(snapshot, stats)
        if signal is None:
            return None

        if self._contract_analyzer is not None:
            safety = self._contract_analyzer.analyze_token_safety(snapshot)
            self._logger.info(
                "Safety report %s: score=%d safe=%s warnings=%s risks=%s",
                signal.token_symbol,
                safety.score,
                safety.is_safe,
                safety.warnings,
                safety.risks,
            )

        await self._notify("signal_detected", signal, self._mode)

        if self._store.has_open_position(signal.chain, signal.pair_address):
            self._logger.info("Skip %s: position already open on this pair", signal.token_symbol)
            return signal

        balance = (
            self._executor.available_balance(signal.chain)
            if self._executor is not None
            else self._store.get_balance(signal.chain)
        )
        validation = self._risk_gate.validate(signal, balance)
        if not validation.valid or validation.sizing is None:
            self._logger.warning("Signal rejected (%s): %s", signal.token_symbol, validation.reason)
            return signal

        sizing = validation.sizing
        if self._contract_analyzer is not None:
            liquidity = self._contract_analyzer.analyze_liquidity_for_trade(
                snapshot, sizing.position_size_usd
            )
            if not liquidity.is_safe:
                # Warning only; rejection belongs to the risk gate liquidity cap
                self._logger.warning(
                    "%s: $%s exceeds safe size $%s for the pool (est. impact %.2f%%)",
                    signal.token_symbol,
                    sizing.position_size_usd,
                    liquidity.max_safe_size_usd,
                    liquidity.estimated_impact_percent,
                )

        if self._mode is TradingMode.READ_ONLY or self._executor is None:
            self._logger.info(
                "[READ_ONLY] Would buy %s @ $%s: size $%s TP $%s SL $%s",
                signal.token_symbol,
                signal.entry_price,
                sizing.position_size_usd,
                signal.take_profit,
                signal.stop_loss,
            )
            return signal

        result = await self._executor.buy(signal, sizing)
        if not result.success:
            self._logger.error(
                "BUY %s failed (%s): %s",
                signal.token_symbol,
                result.error_code.value if result.error_code else "unknown",
                result.error,
            )
            return signal

        position = self._store.get_position(result.position_id or "")
        if position is not None:
            await self._notify("trade_opened", position, result)
        return signal

    # ------------------------------------------------------------------
    # Monitor
    # ------------------------------------------------------------------

    async def monitor_once(self) -> list[Trade]:
        """One pass over open positions. Returns the trades closed."""
        positions = self._store.get_open_positions()
        if not positions:
            return []

        self._logger.debug("Monitoring %d open position(s)", len(positions))
        closed: list[Trade] = []
        for position in positions:
            try:
                trade = await self._monitor_position(position)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error(
                    "Error monitoring position %s: %s", position.id, exc, exc_info=True
                )
                continue
            if trade is not None:
                closed.append(trade)
        return closed

    async def _monitor_position(self, position: Position) -> Trade | None:
        snapshot = await self._market_data.get_snapshot(position.chain, position.pair_address)
        if snapshot is None:
            return None

        self._aggregator.update(position.chain, position.pair_address, snapshot)
        decision = self._exit_evaluator.evaluate(position, snapshot)
        if decision is None:
            return None

        self._logger.info("Exit signal for %s: %s", position.token_symbol, decision.message)
        if self._executor is None:
            self._logger.info("[READ_ONLY] Would sell %s (%s)", position.id, decision.reason.value)
            return None

        result = await self._executor.sell(
            position, decision.exit_price, decision.reason, exit_price_native=snapshot.price_native
        )
        return await self._after_sell(position, result)

    async def close_position_manually(self, position_id: str) -> ExecutionResult:
        """Sell an open position now at the current market price."""
        position = self._store.get_position(position_id)
        if position is None:
            return ExecutionResult(
                success=False,
                action=TradeAction.SELL,
                attempts_used=0,
                error=f"Position not open: {position_id}",
                error_code=ExecutionErrorCode.POSITION_NOT_FOUND,
                position_id=position_id,
            )
        if self._executor is None:
            return ExecutionResult(
                success=False,
                action=TradeAction.SELL,
                attempts_used=0,
                error="No executor in READ_ONLY mode",
                error_code=ExecutionErrorCode.UNKNOWN,
                position_id=position_id,
            )

        snapshot = await self._market_data.get_snapshot(position.chain, position.pair_address)
        if snapshot is None or snapshot.price_usd <= 0:
            return ExecutionResult(
                success=False,
                action=TradeAction.SELL,
                attempts_used=0,
                error="No market price available",
                error_code=ExecutionErrorCode.NETWORK_FAILURE,
                position_id=position_id,
            )

        result = await self._executor.sell(
            position, snapshot.price_usd, ExitReason.MANUAL, exit_price_native=snapshot.price_native
        )
        await self._after_sell(position, result)
        return result

    async def _after_sell(self, position: Position, result: ExecutionResult) -> Trade | None:
        if not result.success or result.trade is None:
            self._logger.error(
                "SELL %s failed (%s): %s",
                position.token_symbol,
                result.error_code.value if result.error_code else "unknown",
                result.error,
            )
            return None

        trade = result.trade
        await self._notify("trade_closed", trade, result)
        if self._pnl_tracker is not None:
            try:
                await self._pnl_tracker.record_trade(trade, self._mode)
            except sqlite3.Error as exc:
                self._logger.error("Failed to journal trade %s: %s", trade.id, exc)
        return trade

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def run_scan_loop(self) -> None:
        await self._run_loop("scan", self.scan_once, self._scan_interval)

    async def run_monitor_loop(self) -> None:
        await self._run_loop("monitor", self.monitor_once, self._monitor_interval)

    async def _run_loop(self, name: str, iteration: Any, interval: float) -> None:
        self._active_loops.add(name)
        self._logger.info("%s loop started (every %ss)", name.capitalize(), interval)
        try:
            while not self._stop_event.is_set():
                try:
                    await iteration()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error("%s loop error: %s", name.capitalize(), exc, exc_info=True)

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            self._logger.info("%s loop cancelled", name.capitalize())
            raise
        finally:
            self._active_loops.discard(name)
            self._logger.info("%s loop stopped", name.capitalize())

    def stop(self) -> None:
        """Stop both loops after their current iteration."""
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "mode": self._mode.value,
            "enabled_chains": list(self._enabled_chains),
            "daily_stats": to_plain_dict(self._risk_gate.daily_stats()),
            "open_positions": len(self._store.get_open_positions()),
            "watchlist_size": len(self._store.get_watchlist()),
            "balances": self._store.get_balances(),
            "total_pnl": self._store.get_total_pnl(),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _notify(self, event: str, *args: Any) -> None:
        """Deliver an event; sink failures are logged and dropped."""
        try:
            await getattr(self._events, event)(*args)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.warning("Event sink %s failed: %s", event, exc)
