"""
DEX Volume Scalper: main entrypoint.

Single-process asyncio runner that orchestrates two concurrent tasks:
    1. Scan loop    : watch list -> candles -> volume-spike signal -> risk gate -> buy
    2. Monitor loop : open positions -> exit evaluator -> sell -> trade journal

Both loops share one StateStore (positions, balances, watch list) and one
RiskGate. Everything is I/O bound against the DexScreener API and the
chain RPCs, so a single event loop handles it all.

Modes (app.json ``mode`` / MODE env var):
    READ_ONLY  detect and log signals only
    PAPER      simulated fills against per-chain USD balances (default)
    LIVE       real swaps; also requires ENABLE_LIVE_TRADING=true and keys

Usage:
    python main.py
    MODE=READ_ONLY python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from bot_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs
from shared.types import TradingMode

if TYPE_CHECKING:
    from execution.base import SwapBackend

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(
    mode: TradingMode,
    enabled_chains: list[str],
    balances: dict[str, str],
    scan_interval: str,
    monitor_interval: str,
) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("DEX Volume Scalper starting")
    _logger.info("=" * 60)
    _logger.info("  mode            : %s", mode.value)
    _logger.info("  chains          : %s", ", ".join(enabled_chains) or "(none)")
    for chain in enabled_chains:
        _logger.info("  balance %-8s: $%s", chain, balances.get(chain, "0"))
    _logger.info("  scan interval   : %ss", scan_interval)
    _logger.info("  monitor interval: %ss", monitor_interval)
    if mode is TradingMode.LIVE:
        _logger.warning("  LIVE TRADING ENABLED: real funds at risk")
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Task done callback: detect unhandled exceptions
# ---------------------------------------------------------------------------


def _task_done_callback(
    task: asyncio.Task[None],
    shutdown_event: asyncio.Event,
) -> None:
    """Called when either loop task finishes (normally or with error)."""
    try:
        exc = task.exception()
    except asyncio.CancelledError:
        _logger.info("Task %s cancelled", task.get_name())
        return

    if exc is not None:
        _logger.critical(
            "Task %s failed with unhandled exception: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )
        shutdown_event.set()


# ---------------------------------------------------------------------------
# Live swap backends
# ---------------------------------------------------------------------------


def _build_swap_backends(enabled_chains: list[str]) -> dict[str, SwapBackend]:
    """One backend per enabled chain; imported lazily so PAPER runs need no keys."""
    cfg = get_config()
    backends: dict[str, SwapBackend] = {}
    for chain in enabled_chains:
        chain_type = cfg.get_chain_config(chain).get("type", "evm")
        if chain_type == "solana":
            from execution.solana_swap import JupiterSwapBackend

            backends[chain] = JupiterSwapBackend()
        else:
            from execution.evm_swap import EvmRouterSwapBackend

            backends[chain] = EvmRouterSwapBackend(chain)
    return backends


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> None:
    """Wire all components and launch the scan and monitor loops."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()
    create_module_log_directories()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    cfg = get_config()
    app_cfg = cfg.get_app_config()
    loops_cfg = cfg.get_timing_config().get("loops", {})

    mode = TradingMode(str(app_cfg.get("mode", "PAPER")).upper())
    live_enabled = bool(app_cfg.get("enable_live_trading", False))
    enabled_chains = cfg.get_enabled_chains()
    state_cfg = app_cfg.get("state", {})

    _log_banner(
        mode,
        enabled_chains,
        {k: str(v) for k, v in app_cfg.get("starting_balances_usd", {}).items()},
        str(loops_cfg.get("scan_interval_seconds", 30)),
        str(loops_cfg.get("monitor_interval_seconds", 10)),
    )

    # ------------------------------------------------------------------
    # 2. Initialize shared instances (dependency order)
    # ------------------------------------------------------------------
    from core.candle_aggregator import CandleAggregator
    from core.contract_analyzer import ContractAnalyzer
    from core.exit_evaluator import ExitEvaluator
    from core.notifier import LoggingEventSink
    from core.persistence import JsonFileStateRepository
    from core.pnl_tracker import PnLTracker
    from core.risk_gate import RiskGate
    from core.scheduler import TradingEngine
    from core.signal_detector import SignalDetector
    from core.state_store import StateStore
    from data.dexscreener_client import DexScreenerClient
    from execution import LiveExecutor, SimulatedExecutor
    from execution.base import BaseExecutor
    from shared.clock import SystemClock

    clock = SystemClock()
    repository = JsonFileStateRepository(
        cfg.project_root / state_cfg.get("snapshot_path", "data/state.json")
    )
    store = StateStore(repository, clock)
    risk_gate = RiskGate(clock=clock)
    market_data = DexScreenerClient(clock=clock)
    aggregator = CandleAggregator(clock)
    contract_analyzer = ContractAnalyzer(clock)
    detector = SignalDetector(contract_analyzer, clock)
    exit_evaluator = ExitEvaluator(clock)
    pnl_tracker = PnLTracker(
        str(cfg.project_root / state_cfg.get("journal_db_path", "data/trades.db")), clock
    )

    backends: dict[str, SwapBackend] = {}
    executor: BaseExecutor | None = None
    if mode is TradingMode.PAPER:
        executor = SimulatedExecutor(store, risk_gate, clock=clock)
    elif mode is TradingMode.LIVE:
        backends = _build_swap_backends(enabled_chains)
        executor = LiveExecutor(store, risk_gate, backends, enabled=live_enabled, clock=clock)

    engine = TradingEngine(
        mode,
        store,
        market_data,
        aggregator,
        detector,
        exit_evaluator,
        risk_gate,
        executor,
        event_sink=LoggingEventSink(),
        pnl_tracker=pnl_tracker,
        contract_analyzer=contract_analyzer,
        enabled_chains=enabled_chains,
        clock=clock,
    )
    await engine.initialize()

    # ------------------------------------------------------------------
    # 3. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 4. Launch both loops
    # ------------------------------------------------------------------
    task_scan = asyncio.create_task(engine.run_scan_loop(), name="scan_loop")
    task_monitor = asyncio.create_task(engine.run_monitor_loop(), name="monitor_loop")

    tasks = [task_scan, task_monitor]

    for t in tasks:
        t.add_done_callback(lambda done_task: _task_done_callback(done_task, shutdown_event))

    _logger.info("All tasks launched: scan_loop, monitor_loop")

    # ------------------------------------------------------------------
    # 5. Wait for shutdown signal, then stop loops
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down, stopping loops")

        # Cooperative stop lets an in-flight iteration finish
        engine.stop()
        _, pending = await asyncio.wait(tasks, timeout=30)
        for t in pending:
            t.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for t, result in zip(tasks, results, strict=False):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _logger.error("Task %s exited with error: %s", t.get_name(), result)

        summary = store.get_summary()
        _logger.info(
            "Final state: %d open position(s), %d trade(s), total PnL $%s",
            summary["open_positions"],
            summary["total_trades"],
            summary["total_pnl"],
        )
        _logger.info("\n%s", await pnl_tracker.format_report())

        # Cleanup resources
        await market_data.close()
        for backend in backends.values():
            await backend.close()
        pnl_tracker.close()
        _logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
