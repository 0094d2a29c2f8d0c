"""
Centralized logging for the DEX volume-spike scalper.

Provides standardized logging with JSON and human-readable formatters,
per-module log files, and a structured trade-trace log that records every
signal, fill and close as one JSON line.

Usage:
    from bot_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('my_logger', 'my_module.log', module_folder='Scheduler_Logs')
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from config.loader import get_config

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

_logging_config = get_config().get_app_config().get("logging", {})

_LOG_DIR = str(_PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
_CONSOLE_ENABLED: bool = bool(_logging_config.get("console", False))
_MAX_BYTES: int = int(_logging_config.get("max_bytes", 10 * 1024 * 1024))
_BACKUP_COUNT: int = int(_logging_config.get("backup_count", 5))
_MODULE_FOLDERS = _logging_config.get(
    "module_folders",
    {
        "main": "Main_Logs",
        "scheduler": "Scheduler_Logs",
        "candles": "Candle_Logs",
        "signal_detector": "Signal_Logs",
        "contract_analyzer": "Signal_Logs",
        "exit_evaluator": "Exit_Logs",
        "risk_gate": "Risk_Logs",
        "state_store": "State_Logs",
        "pnl_tracker": "PnL_Tracker_Logs",
        "market_data": "Market_Data_Logs",
        "executor": "Execution_Logs",
        "swap": "Swap_Logs",
        "notifier": "Notifier_Logs",
        "trade_trace": "Trade_Trace_Logs",
    },
)


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter with trade-context support."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        # Include extra fields if present
        for key in (
            "chain",
            "pair_address",
            "position_id",
            "event_type",
            "tx_hash",
            "error",
        ):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """
    Create organized log directory structure.

    Returns dict mapping folder key to absolute path.
    """
    created = {}
    os.makedirs(_LOG_DIR, exist_ok=True)
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    return created


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
    console: bool | None = None,
) -> logging.Logger:
    """
    Create a module-specific logger with file and optional console handlers.

    Args:
        name: Logger name (should be unique per module/component).
        log_file: Log filename (placed inside module_folder if specified).
        level: Logging level (default INFO).
        module_folder: Subfolder within logs/ directory (e.g., 'Scheduler_Logs').
        use_json_formatter: Use structured JSON format (default False = human-readable).
        console: Mirror to stderr; None follows app.json ``logging.console``.

    Returns:
        Configured logging.Logger instance.
    """
    # Return cached logger if already created
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    log_dir = os.path.join(_LOG_DIR, module_folder) if module_folder else _LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, log_file)

    formatter: logging.Formatter
    if use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    # Rotates at logging.max_bytes, keeping logging.backup_count old files
    file_handler = RotatingFileHandler(
        log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console if console is not None else _CONSOLE_ENABLED:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(stream_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


# ============================================================================
# STRUCTURED TRADE TRACE
# ============================================================================

_trade_trace_logger: logging.Logger | None = None


def get_trade_trace_logger() -> logging.Logger:
    """Get or create the JSON trade-trace logger (lazy singleton)."""
    global _trade_trace_logger
    if _trade_trace_logger is None:
        _trade_trace_logger = setup_module_logger(
            "trade_trace",
            "trade_trace.log",
            module_folder=_MODULE_FOLDERS.get("trade_trace", "Trade_Trace_Logs"),
            use_json_formatter=True,
            console=False,
        )
    return _trade_trace_logger


def log_trade_event(event_type: str, data: dict[str, Any]) -> None:
    """Append one trade lifecycle event (SIGNAL, BUY, SELL, ...) to the trace log."""
    logger = get_trade_trace_logger()
    logger.info(
        json.dumps(
            {
                "event": event_type,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        ),
        extra={"event_type": event_type},
    )
