"""
Configuration loader for the DEX volume-spike scalper.

Provides centralized configuration management: JSON files in config/
supply the defaults, environment variables (optionally from .env)
override the recognised keys.

Usage:
    from config.loader import get_config

    config = get_config()
    risk_cfg = config.get_risk_config()
    bsc = config.get_chain_config("bsc")
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent

# (dotted key inside the config file, env var, type)
_APP_ENV_OVERRIDES = [
    ("mode", "MODE", str),
    ("enable_live_trading", "ENABLE_LIVE_TRADING", bool),
    ("chains.bsc", "ENABLE_BSC", bool),
    ("chains.base", "ENABLE_BASE", bool),
    ("chains.solana", "ENABLE_SOLANA", bool),
]

_STRATEGY_ENV_OVERRIDES = [
    ("take_profit_multiplier", "PROFIT_MULTIPLIER", str),
]

_RISK_ENV_OVERRIDES = [
    ("max_trades_per_day", "MAX_TRADES_PER_DAY", int),
    ("risk_per_trade_percent", "RISK_PER_TRADE", str),
    ("max_daily_drawdown_percent", "MAX_DAILY_DRAWDOWN", str),
    ("stop_loss_percent", "STOP_LOSS_PERCENT", str),
    ("max_hold_minutes", "MAX_HOLD_MINUTES", int),
]

_EXECUTION_ENV_OVERRIDES = [
    ("max_retries", "MAX_RETRIES", int),
    ("retry_delay_ms", "RETRY_DELAY_MS", int),
    ("slippage_tolerance_percent", "SLIPPAGE_TOLERANCE", str),
]

_RPC_ENV_VARS = {
    "bsc": "BSC_RPC",
    "base": "BASE_RPC",
    "solana": "SOLANA_RPC",
}


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


def _apply_env_overrides(
    config: Dict[str, Any], overrides: list[tuple[str, str, type]]
) -> Dict[str, Any]:
    """Overlay environment variables onto (a copy of) a config dict."""
    merged = json.loads(json.dumps(config))
    for dotted_key, env_name, var_type in overrides:
        parts = dotted_key.split(".")
        target = merged
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        current = target.get(parts[-1])
        target[parts[-1]] = get_env_var(env_name, current, var_type)
    return merged


class ConfigLoader:
    """
    Central configuration manager for the scalper.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All accessor methods are cached via @lru_cache for performance.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def project_root(self) -> Path:
        return self._project_root

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings (mode, enabled chains, logging, state)."""
        return _apply_env_overrides(
            _load_json(self._config_dir / "app.json"), _APP_ENV_OVERRIDES
        )

    @lru_cache(maxsize=1)
    def get_strategy_config(self) -> Dict[str, Any]:
        """Load volume-spike entry thresholds and exit targets."""
        return _apply_env_overrides(
            _load_json(self._config_dir / "strategy.json"), _STRATEGY_ENV_OVERRIDES
        )

    @lru_cache(maxsize=1)
    def get_risk_config(self) -> Dict[str, Any]:
        """Load daily risk limits and position sizing parameters."""
        return _apply_env_overrides(
            _load_json(self._config_dir / "risk.json"), _RISK_ENV_OVERRIDES
        )

    @lru_cache(maxsize=1)
    def get_execution_config(self) -> Dict[str, Any]:
        """Load retry, slippage and paper-trading fault model settings."""
        return _apply_env_overrides(
            _load_json(self._config_dir / "execution.json"), _EXECUTION_ENV_OVERRIDES
        )

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load loop intervals, cache TTLs and HTTP timeouts."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_chains_config(self) -> Dict[str, Any]:
        """Load per-chain definitions (RPC defaults, routers, native tokens)."""
        chains = _load_json(self._config_dir / "chains.json")
        for chain, env_name in _RPC_ENV_VARS.items():
            if chain in chains:
                rpc_override = os.getenv(env_name)
                if rpc_override:
                    chains[chain] = {**chains[chain], "rpc_url": rpc_override}
        return chains

    def get_chain_config(self, chain: str) -> Dict[str, Any]:
        """Config for a single chain ('bsc', 'base', 'solana'); empty if unknown."""
        return self.get_chains_config().get(chain, {})

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    def get_enabled_chains(self) -> list[str]:
        """Chains whose enable flag is set in app.json / ENABLE_<CHAIN>."""
        flags = self.get_app_config().get("chains", {})
        return [chain for chain, enabled in flags.items() if enabled]

    @lru_cache(maxsize=16)
    def get_config_file(self, config_name: str) -> Dict[str, Any]:
        """Load an arbitrary JSON config file from config/ directory."""
        return _load_json(self._config_dir / f"{config_name}.json")

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
