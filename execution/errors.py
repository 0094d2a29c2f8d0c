"""Execution-layer exception hierarchy. Executors convert these into failed ExecutionResults."""

from __future__ import annotations

from shared.types import ExecutionErrorCode


class ExecutionError(Exception):
    """Base error for buy/sell execution failures."""

    code = ExecutionErrorCode.UNKNOWN

    def __init__(self, message: str, code: ExecutionErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class SimulatedNetworkError(ExecutionError):
    """Injected RPC failure in paper mode."""

    code = ExecutionErrorCode.NETWORK_FAILURE


class SwapBackendError(ExecutionError):
    """Raised by a live swap backend (quote, broadcast, revert or timeout)."""

    code = ExecutionErrorCode.SWAP_FAILED


class PositionNotFoundError(ExecutionError):
    """Raised when a sell targets a position that is no longer open."""

    code = ExecutionErrorCode.POSITION_NOT_FOUND
