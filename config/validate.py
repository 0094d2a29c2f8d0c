"""
Configuration schema validation for the DEX volume-spike scalper.

Validates that all required config files exist, contain required keys,
and that the operating mode is consistent with the credentials present.
Run at startup to fail fast on misconfiguration.
"""

import os
from decimal import Decimal, InvalidOperation
from typing import Any

from config.loader import get_config

VALID_MODES = ("READ_ONLY", "PAPER", "LIVE")

_CHAIN_KEY_ENV = {
    "evm": "EVM_PRIVATE_KEY",
    "solana": "SOLANA_PRIVATE_KEY",
}


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(f"missing: {key}")
                break
            current = current[part]
    return missing


def _as_decimal(value: Any) -> Decimal | None:
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return parsed if parsed.is_finite() else None


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def validate_app_config(config: dict[str, Any]) -> list[str]:
    """Validate app.json: mode, live-trading guard, chain flags."""
    errors = _check_keys(config, ["mode", "chains", "state.snapshot_path"], "app.json")
    if errors:
        return errors

    mode = str(config.get("mode", "")).upper()
    if mode not in VALID_MODES:
        errors.append(f"mode: invalid value {config.get('mode')!r} (expected one of {VALID_MODES})")
    elif mode == "LIVE" and not config.get("enable_live_trading", False):
        errors.append("mode: LIVE requires ENABLE_LIVE_TRADING=true")

    if not any(config.get("chains", {}).values()):
        errors.append("chains: at least one chain must be enabled")
    return errors


def validate_strategy_config(config: dict[str, Any]) -> list[str]:
    """Validate strategy.json has required fields and sane thresholds."""
    errors = _check_keys(
        config,
        [
            "volume_multiplier",
            "min_price_change_percent",
            "candle_interval_seconds",
            "lookback_periods",
            "take_profit_multiplier",
        ],
        "strategy.json",
    )
    if errors:
        return errors

    multiplier = _as_decimal(config["take_profit_multiplier"])
    if multiplier is None or multiplier <= 1:
        errors.append("take_profit_multiplier: must be greater than 1")
    interval = _as_int(config["candle_interval_seconds"])
    if interval is None or interval <= 0:
        errors.append("candle_interval_seconds: must be positive")
    lookback = _as_int(config["lookback_periods"])
    if lookback is None or lookback <= 0:
        errors.append("lookback_periods: must be positive")
    return errors


def validate_risk_config(config: dict[str, Any]) -> list[str]:
    """Validate risk.json has required fields and sane limits."""
    errors = _check_keys(
        config,
        [
            "max_trades_per_day",
            "risk_per_trade_percent",
            "max_daily_drawdown_percent",
            "stop_loss_percent",
            "max_hold_minutes",
        ],
        "risk.json",
    )
    if errors:
        return errors

    stop_loss = _as_decimal(config["stop_loss_percent"])
    if stop_loss is None or not (Decimal("0") < stop_loss < Decimal("100")):
        errors.append("stop_loss_percent: must be between 0 and 100 (exclusive)")
    risk = _as_decimal(config["risk_per_trade_percent"])
    if risk is None or risk <= 0:
        errors.append("risk_per_trade_percent: must be positive")
    drawdown = _as_decimal(config["max_daily_drawdown_percent"])
    if drawdown is None or drawdown <= 0:
        errors.append("max_daily_drawdown_percent: must be positive")
    max_trades = _as_int(config["max_trades_per_day"])
    if max_trades is None or max_trades <= 0:
        errors.append("max_trades_per_day: must be positive")
    max_hold = _as_int(config["max_hold_minutes"])
    if max_hold is None or max_hold <= 0:
        errors.append("max_hold_minutes: must be positive")
    return errors


def validate_execution_config(config: dict[str, Any]) -> list[str]:
    """Validate execution.json has required fields."""
    errors = _check_keys(
        config,
        ["max_retries", "retry_delay_ms", "slippage_tolerance_percent"],
        "execution.json",
    )
    if errors:
        return errors
    retries = _as_int(config["max_retries"])
    if retries is None or retries < 1:
        errors.append("max_retries: must be at least 1")
    delay = _as_int(config["retry_delay_ms"])
    if delay is None or delay < 0:
        errors.append("retry_delay_ms: must not be negative")
    slippage = _as_decimal(config["slippage_tolerance_percent"])
    if slippage is None or slippage < 0:
        errors.append("slippage_tolerance_percent: must be a non-negative number")
    return errors


def validate_chains_config(config: dict[str, Any], enabled_chains: list[str]) -> list[str]:
    """Every enabled chain needs a definition with an RPC URL."""
    errors = []
    for chain in enabled_chains:
        chain_cfg = config.get(chain)
        if not chain_cfg:
            errors.append(f"missing: {chain}")
            continue
        errors.extend(_check_keys(chain_cfg, ["type", "rpc_url", "dex"], "chains.json"))
    return errors


def validate_live_credentials(
    chains_config: dict[str, Any], enabled_chains: list[str]
) -> list[str]:
    """LIVE mode needs a signing key for every enabled chain family."""
    errors = []
    for chain in enabled_chains:
        chain_type = chains_config.get(chain, {}).get("type", "evm")
        env_name = _CHAIN_KEY_ENV.get(chain_type)
        if env_name and not os.getenv(env_name):
            errors.append(f"{chain}: LIVE mode requires {env_name}")
    return errors


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing or values are inconsistent.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "app.json": (loader.get_app_config, validate_app_config),
        "strategy.json": (loader.get_strategy_config, validate_strategy_config),
        "risk.json": (loader.get_risk_config, validate_risk_config),
        "execution.json": (loader.get_execution_config, validate_execution_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    enabled = loader.get_enabled_chains()
    chains_config = loader.get_chains_config()
    chain_errors = validate_chains_config(chains_config, enabled)
    if chain_errors:
        all_errors["chains.json"] = chain_errors

    app_config = loader.get_app_config()
    if str(app_config.get("mode", "")).upper() == "LIVE":
        credential_errors = validate_live_credentials(chains_config, enabled)
        if credential_errors:
            all_errors["environment"] = credential_errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - {error}")
        raise ConfigValidationError("\n".join(lines))
