from execution.base import BaseExecutor, SwapBackend
from execution.errors import (
    ExecutionError,
    PositionNotFoundError,
    SimulatedNetworkError,
    SwapBackendError,
)
from execution.live_executor import LiveExecutor
from execution.retry import execute_with_retry
from execution.simulated_executor import (
    FaultInjector,
    RandomFaultInjector,
    ScriptedFaultInjector,
    SimulatedExecutor,
)

__all__ = [
    "BaseExecutor",
    "ExecutionError",
    "FaultInjector",
    "LiveExecutor",
    "PositionNotFoundError",
    "RandomFaultInjector",
    "ScriptedFaultInjector",
    "SimulatedExecutor",
    "SimulatedNetworkError",
    "SwapBackend",
    "SwapBackendError",
    "execute_with_retry",
]
