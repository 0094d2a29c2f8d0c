"""
Shared pytest configuration and fixtures for DEX Volume Scalper tests.

Provides common helpers used across the unit test suite: standard config
dicts, a patched ConfigLoader, a fixed clock and factories for snapshots,
signals and positions.
"""

from __future__ import annotations

import contextlib
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from shared.clock import FixedClock
from shared.types import MarketSnapshot, Position, Signal, TokenInfo

# ---------------------------------------------------------------------------
# Decimal helper
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    """Shorthand Decimal factory."""
    return Decimal(str(v))


# 2023-11-14 22:13:20 UTC
START_TS = 1_700_000_000.0

SAMPLE_PAIR = "0xabc0000000000000000000000000000000000001"
SAMPLE_TOKEN = "0xdef0000000000000000000000000000000000002"


# ---------------------------------------------------------------------------
# Standard mock configs (can be overridden per test)
# ---------------------------------------------------------------------------

STANDARD_APP_CONFIG = {
    "mode": "PAPER",
    "enable_live_trading": False,
    "chains": {"bsc": True, "base": True, "solana": True},
    "starting_balances_usd": {"bsc": "1000", "base": "1000", "solana": "1000"},
    "state": {
        "snapshot_path": "data/state.json",
        "journal_db_path": "data/trades.db",
        "max_watchlist_size": 50,
        "max_trade_history": 1000,
    },
    "market_data": {
        "base_url": "https://api.dexscreener.com/latest/dex",
        "min_discovery_liquidity_usd": "500",
        "max_discovered_pairs": 50,
        "pairs_per_chain": 5,
    },
    "logging": {"log_dir": "logs", "console": False},
}

STANDARD_STRATEGY_CONFIG = {
    "type": "VOLUME_SPIKE",
    "volume_multiplier": "3",
    "min_price_change_percent": "2",
    "candle_interval_seconds": 300,
    "lookback_periods": 12,
    "max_candles": 100,
    "min_liquidity_usd": "5000",
    "min_volume_24h_usd": "10000",
    "take_profit_multiplier": "5",
}

STANDARD_RISK_CONFIG = {
    "max_trades_per_day": 15,
    "risk_per_trade_percent": "5",
    "max_daily_drawdown_percent": "15",
    "stop_loss_percent": "5",
    "max_hold_minutes": 30,
    "max_position_balance_fraction": "0.25",
    "min_signal_strength": 20,
    "min_position_usd": "10",
    "max_liquidity_fraction": "0.05",
}

STANDARD_EXECUTION_CONFIG = {
    "max_retries": 3,
    "retry_delay_ms": 2000,
    "slippage_tolerance_percent": "5",
    "swap_deadline_seconds": 300,
    "paper": {
        "failure_rate": "0",
        "min_slippage_percent": "0.1",
        "max_slippage_percent": "0.5",
        "min_latency_ms": 0,
        "max_latency_ms": 0,
    },
}

STANDARD_TIMING_CONFIG = {
    "loops": {"scan_interval_seconds": 30, "monitor_interval_seconds": 10},
    "market_data": {
        "min_request_interval_ms": 0,
        "snapshot_cache_ttl_seconds": 10,
        "request_timeout_seconds": 10,
    },
    "transaction": {"confirmation_timeout_seconds": 60, "receipt_poll_interval_seconds": 1},
}

STANDARD_CHAINS_CONFIG = {
    "bsc": {
        "type": "evm",
        "chain_id": 56,
        "rpc_url": "https://bsc-dataseed.binance.org",
        "native_token": {"symbol": "BNB", "decimals": 18},
        "dex": {"name": "PancakeSwap V2", "router": "0x10ED43C718714eb63d5aA57B78B54704E256024E"},
        "discovery_tokens": ["WBNB"],
    },
    "solana": {
        "type": "solana",
        "rpc_url": "https://api.mainnet-beta.solana.com",
        "native_token": {"symbol": "SOL", "decimals": 9},
        "dex": {
            "name": "Jupiter",
            "quote_url": "https://lite-api.jup.ag/swap/v1/quote",
            "swap_url": "https://lite-api.jup.ag/swap/v1/swap",
        },
        "discovery_tokens": ["SOL"],
    },
}


def make_config_loader(
    app=None, strategy=None, risk=None, execution=None, timing=None, chains=None
) -> MagicMock:
    """MagicMock ConfigLoader returning the standard configs unless overridden."""
    loader = MagicMock()
    app_cfg = app if app is not None else STANDARD_APP_CONFIG
    chains_cfg = chains if chains is not None else STANDARD_CHAINS_CONFIG
    loader.get_app_config.return_value = app_cfg
    loader.get_strategy_config.return_value = (
        strategy if strategy is not None else STANDARD_STRATEGY_CONFIG
    )
    loader.get_risk_config.return_value = risk if risk is not None else STANDARD_RISK_CONFIG
    loader.get_execution_config.return_value = (
        execution if execution is not None else STANDARD_EXECUTION_CONFIG
    )
    loader.get_timing_config.return_value = timing if timing is not None else STANDARD_TIMING_CONFIG
    loader.get_chains_config.return_value = chains_cfg
    loader.get_chain_config.side_effect = lambda chain: chains_cfg.get(chain, {})
    loader.get_enabled_chains.return_value = [
        chain for chain, enabled in app_cfg.get("chains", {}).items() if enabled
    ]
    return loader


@contextlib.contextmanager
def patched_module(module: str, loader: MagicMock | None = None):
    """Patch ``module.get_config`` (if it has one) and ``module.setup_module_logger``."""
    loader = loader or make_config_loader()
    with contextlib.ExitStack() as stack:
        with contextlib.suppress(AttributeError):
            stack.enter_context(patch(f"{module}.get_config", return_value=loader))
        mock_logger = stack.enter_context(patch(f"{module}.setup_module_logger"))
        mock_logger.return_value = MagicMock()
        yield loader


# ---------------------------------------------------------------------------
# Clock fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START_TS)


# ---------------------------------------------------------------------------
# Domain object factories
# ---------------------------------------------------------------------------


def make_snapshot(**overrides) -> MarketSnapshot:
    defaults = dict(
        chain="bsc",
        pair_address=SAMPLE_PAIR,
        price_usd=_d("1"),
        price_native=_d("0.002"),
        dex="pancakeswap",
        base_token=TokenInfo(SAMPLE_TOKEN, "PEPE", "Pepe"),
        quote_token=TokenInfo("0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c", "WBNB"),
        price_change_5m=_d("5"),
        volume_5m=_d("3000"),
        volume_1h=_d("12000"),
        volume_24h=_d("50000"),
        liquidity_usd=_d("60000"),
        buys_24h=120,
        sells_24h=80,
        created_at=START_TS - 86400,
        url="https://dexscreener.com/bsc/" + SAMPLE_PAIR,
        has_info=True,
        fetched_at=START_TS,
    )
    defaults.update(overrides)
    return MarketSnapshot(**defaults)


def make_signal(**overrides) -> Signal:
    defaults = dict(
        chain="bsc",
        pair_address=SAMPLE_PAIR,
        token_symbol="PEPE",
        token_address=SAMPLE_TOKEN,
        entry_price=_d("1"),
        take_profit=_d("5"),
        stop_loss=_d("0.95"),
        max_hold_until=START_TS + 1800,
        volume_ratio=_d("4"),
        price_change_5m=_d("5"),
        liquidity_usd=_d("60000"),
        volume_24h=_d("50000"),
        strength=60,
        timestamp=START_TS,
        entry_price_native=_d("0.002"),
        dex="pancakeswap",
    )
    defaults.update(overrides)
    return Signal(**defaults)


def make_position(**overrides) -> Position:
    defaults = dict(
        id="",
        chain="bsc",
        pair_address=SAMPLE_PAIR,
        token_symbol="PEPE",
        token_address=SAMPLE_TOKEN,
        entry_price=_d("1"),
        token_amount=_d("100"),
        position_size_usd=_d("100"),
        take_profit=_d("5"),
        stop_loss=_d("0.95"),
        max_hold_until=START_TS + 1800,
        opened_at=START_TS,
    )
    defaults.update(overrides)
    return Position(**defaults)
