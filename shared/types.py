"""
Shared data types for the DEX volume-spike scalper.

Centralized dataclasses and enums used across all modules. Prices and
amounts are Decimal throughout; timestamps are epoch seconds taken from
the injected clock.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_ZERO = Decimal("0")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TradingMode(Enum):
    READ_ONLY = "READ_ONLY"  # detect and log only
    PAPER = "PAPER"  # simulated fills against the paper ledger
    LIVE = "LIVE"  # real swaps through the per-chain backends


class ExitReason(Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TIME_LIMIT = "time_limit"
    MANUAL = "manual"


class TradeAction(Enum):
    BUY = "buy"
    SELL = "sell"


class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExecutionErrorCode(Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NETWORK_FAILURE = "network_failure"
    TX_REVERTED = "tx_reverted"
    TX_TIMEOUT = "tx_timeout"
    SWAP_FAILED = "swap_failed"
    POSITION_NOT_FOUND = "position_not_found"
    LIVE_DISABLED = "live_disabled"
    UNSUPPORTED_CHAIN = "unsupported_chain"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# (De)serialization helpers
# ---------------------------------------------------------------------------


def _dec(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else _ZERO


def _opt_dec(value: Any) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


def to_plain_dict(obj: Any) -> dict[str, Any]:
    """dataclasses.asdict with enums flattened to their values."""

    def _convert(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, dict):
            return {k: _convert(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_convert(v) for v in value]
        return value

    return _convert(asdict(obj))


# ---------------------------------------------------------------------------
# Market Data Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    name: str = ""


@dataclass(frozen=True)
class MarketSnapshot:
    """Point-in-time view of one DEX pair, as reported by the market-data provider."""

    chain: str
    pair_address: str
    price_usd: Decimal
    price_native: Decimal = _ZERO
    dex: str = ""
    base_token: TokenInfo = field(default_factory=lambda: TokenInfo("", ""))
    quote_token: TokenInfo = field(default_factory=lambda: TokenInfo("", ""))
    price_change_5m: Decimal = _ZERO  # percent
    price_change_1h: Decimal = _ZERO
    price_change_6h: Decimal = _ZERO
    price_change_24h: Decimal = _ZERO
    volume_5m: Decimal = _ZERO  # USD
    volume_1h: Decimal = _ZERO
    volume_6h: Decimal = _ZERO
    volume_24h: Decimal = _ZERO
    liquidity_usd: Decimal = _ZERO
    liquidity_base: Decimal = _ZERO
    liquidity_quote: Decimal = _ZERO
    buys_24h: int = 0
    sells_24h: int = 0
    created_at: float | None = None  # pair creation, epoch seconds
    url: str = ""
    has_info: bool = False  # listed with token profile/socials
    fetched_at: float = 0.0


@dataclass
class Candle:
    """OHLCV bucket. Mutated in place by the aggregator while its period is current."""

    period_start: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    timestamp: float


@dataclass(frozen=True)
class CandleStats:
    avg_volume_1h: Decimal
    volume_ratio: Decimal  # 5m volume / trailing average
    price_change_1h: Decimal
    candle_count: int


# ---------------------------------------------------------------------------
# Signal Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Signal:
    """Volume-spike entry opportunity with precomputed exit targets."""

    chain: str
    pair_address: str
    token_symbol: str
    token_address: str
    entry_price: Decimal
    take_profit: Decimal
    stop_loss: Decimal
    max_hold_until: float
    volume_ratio: Decimal
    price_change_5m: Decimal
    liquidity_usd: Decimal
    volume_24h: Decimal
    strength: int  # 0-100, display/ranking only
    timestamp: float
    entry_price_native: Decimal = _ZERO
    dex: str = ""

    def __post_init__(self) -> None:
        if not (self.stop_loss < self.entry_price < self.take_profit):
            raise ValueError(
                f"Signal targets out of order: stop_loss={self.stop_loss} "
                f"entry={self.entry_price} take_profit={self.take_profit}"
            )
        if self.max_hold_until <= self.timestamp:
            raise ValueError(
                f"max_hold_until {self.max_hold_until} must be after creation {self.timestamp}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Signal:
        return cls(
            chain=data["chain"],
            pair_address=data["pair_address"],
            token_symbol=data.get("token_symbol", ""),
            token_address=data.get("token_address", ""),
            entry_price=_dec(data["entry_price"]),
            take_profit=_dec(data["take_profit"]),
            stop_loss=_dec(data["stop_loss"]),
            max_hold_until=float(data["max_hold_until"]),
            volume_ratio=_dec(data.get("volume_ratio")),
            price_change_5m=_dec(data.get("price_change_5m")),
            liquidity_usd=_dec(data.get("liquidity_usd")),
            volume_24h=_dec(data.get("volume_24h")),
            strength=int(data.get("strength", 0)),
            timestamp=float(data["timestamp"]),
            entry_price_native=_dec(data.get("entry_price_native")),
            dex=data.get("dex", ""),
        )


@dataclass(frozen=True)
class ExitDecision:
    reason: ExitReason
    exit_price: Decimal
    profit_percent: Decimal
    message: str
    timestamp: float


@dataclass(frozen=True)
class TokenSafetyCheck:
    name: str  # e.g. "liquidity", "age", "price_impact", "buy_sell_ratio"
    passed: bool
    severity: str  # "fail" blocks, "warning" only lowers the score
    detail: str


@dataclass(frozen=True)
class SafetyAnalysis:
    is_safe: bool
    score: int  # 0-100
    checks: list[TokenSafetyCheck]
    warnings: list[str]
    risks: list[str]


@dataclass(frozen=True)
class LiquidityAssessment:
    liquidity_usd: Decimal
    trade_size_usd: Decimal
    max_safe_size_usd: Decimal
    recommended_size_usd: Decimal
    estimated_impact_percent: Decimal
    is_safe: bool


# ---------------------------------------------------------------------------
# Risk Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionSizing:
    position_size_usd: Decimal
    token_amount: Decimal
    risk_amount: Decimal
    stop_percent: Decimal


@dataclass(frozen=True)
class RiskCheck:
    allowed: bool
    reason: str


@dataclass(frozen=True)
class SignalValidation:
    valid: bool
    reason: str
    sizing: PositionSizing | None = None


@dataclass
class DailyRiskState:
    day: str  # ISO date of the reset boundary (UTC)
    trade_count: int = 0
    total_pnl: Decimal = _ZERO
    start_balance: Decimal = _ZERO

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DailyRiskState:
        return cls(
            day=data["day"],
            trade_count=int(data.get("trade_count", 0)),
            total_pnl=_dec(data.get("total_pnl")),
            start_balance=_dec(data.get("start_balance")),
        )


@dataclass(frozen=True)
class DailyRiskStats:
    day: str
    trade_count: int
    max_trades: int
    trades_remaining: int
    total_pnl: Decimal
    start_balance: Decimal
    pnl_percent: Decimal
    can_trade: bool


# ---------------------------------------------------------------------------
# Position / Trade Types
# ---------------------------------------------------------------------------


@dataclass
class Position:
    """Open holding. Owned by the StateStore; only the exit path mutates it."""

    id: str
    chain: str
    pair_address: str
    token_symbol: str
    token_address: str
    entry_price: Decimal
    token_amount: Decimal
    position_size_usd: Decimal
    take_profit: Decimal
    stop_loss: Decimal
    max_hold_until: float
    opened_at: float
    signal: Signal | None = None
    status: PositionStatus = PositionStatus.OPEN
    tx_hash: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        signal_data = data.get("signal")
        return cls(
            id=data["id"],
            chain=data["chain"],
            pair_address=data["pair_address"],
            token_symbol=data.get("token_symbol", ""),
            token_address=data.get("token_address", ""),
            entry_price=_dec(data["entry_price"]),
            token_amount=_dec(data["token_amount"]),
            position_size_usd=_dec(data["position_size_usd"]),
            take_profit=_dec(data["take_profit"]),
            stop_loss=_dec(data["stop_loss"]),
            max_hold_until=float(data["max_hold_until"]),
            opened_at=float(data["opened_at"]),
            signal=Signal.from_dict(signal_data) if signal_data else None,
            status=PositionStatus(data.get("status", PositionStatus.OPEN.value)),
            tx_hash=data.get("tx_hash"),
        )


@dataclass(frozen=True)
class Trade:
    """Closed-position record. Append-only."""

    id: str
    chain: str
    pair_address: str
    token_symbol: str
    token_address: str
    entry_price: Decimal
    exit_price: Decimal
    token_amount: Decimal
    position_size_usd: Decimal
    proceeds_usd: Decimal
    pnl: Decimal
    pnl_percent: Decimal
    exit_reason: ExitReason
    take_profit: Decimal
    stop_loss: Decimal
    max_hold_until: float
    opened_at: float
    closed_at: float
    hold_seconds: float
    signal: Signal | None = None
    entry_tx_hash: str | None = None
    exit_tx_hash: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Trade:
        signal_data = data.get("signal")
        return cls(
            id=data["id"],
            chain=data["chain"],
            pair_address=data["pair_address"],
            token_symbol=data.get("token_symbol", ""),
            token_address=data.get("token_address", ""),
            entry_price=_dec(data["entry_price"]),
            exit_price=_dec(data["exit_price"]),
            token_amount=_dec(data["token_amount"]),
            position_size_usd=_dec(data["position_size_usd"]),
            proceeds_usd=_dec(data.get("proceeds_usd")),
            pnl=_dec(data["pnl"]),
            pnl_percent=_dec(data.get("pnl_percent")),
            exit_reason=ExitReason(data["exit_reason"]),
            take_profit=_dec(data.get("take_profit")),
            stop_loss=_dec(data.get("stop_loss")),
            max_hold_until=float(data.get("max_hold_until", 0)),
            opened_at=float(data["opened_at"]),
            closed_at=float(data["closed_at"]),
            hold_seconds=float(data.get("hold_seconds", 0)),
            signal=Signal.from_dict(signal_data) if signal_data else None,
            entry_tx_hash=data.get("entry_tx_hash"),
            exit_tx_hash=data.get("exit_tx_hash"),
        )


@dataclass(frozen=True)
class WatchlistItem:
    chain: str
    pair_address: str
    symbol: str
    added_at: float
    token_address: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WatchlistItem:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# ---------------------------------------------------------------------------
# Execution Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    success: bool
    value: T | None
    error: BaseException | None
    attempts_used: int


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    action: TradeAction
    attempts_used: int = 1
    error: str | None = None
    error_code: ExecutionErrorCode | None = None
    position_id: str | None = None
    execution_price: Decimal | None = None
    token_amount: Decimal | None = None
    usd_amount: Decimal | None = None
    slippage_percent: Decimal | None = None
    pnl: Decimal | None = None
    pnl_percent: Decimal | None = None
    tx_hash: str | None = None
    trade: Trade | None = None


@dataclass(frozen=True)
class SwapResult:
    """Confirmed on-chain swap, amounts in human units (not wei/lamports)."""

    tx_hash: str
    confirmed: bool
    amount_in: Decimal
    amount_out: Decimal
    block_number: int | None = None


# ---------------------------------------------------------------------------
# P&L Types
# ---------------------------------------------------------------------------


@dataclass
class TradingStats:
    total_trades: int
    winning_trades: int
    losing_trades: int
    total_pnl_usd: Decimal
    avg_pnl_per_trade_usd: Decimal
    win_rate: Decimal
    profit_factor: Decimal
    biggest_win_usd: Decimal
    biggest_loss_usd: Decimal
    avg_win_usd: Decimal
    avg_loss_usd: Decimal
    avg_hold_minutes: Decimal
    sharpe_ratio: Decimal
    current_drawdown_pct: Decimal
    max_drawdown_pct: Decimal


@dataclass(frozen=True)
class DailyPnL:
    day: str
    trades: int
    pnl_usd: Decimal
