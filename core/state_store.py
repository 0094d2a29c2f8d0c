"""
Authoritative position / balance / watch-list store.

Both control loops read and write through this object. Every mutation
runs under one asyncio.Lock and is followed by a snapshot flush to the
StateRepository; a flush failure is logged and does not undo the
mutation. ``close_position`` applies its four effects (PnL, trade
append, balance credit, open-set removal) together under the lock.

Usage:
    from core.state_store import StateStore

    store = StateStore(JsonFileStateRepository("data/state.json"), clock)
    await store.load()
    position_id = await store.open_position(position)
    trade = await store.close_position(position_id, exit_price, ExitReason.TAKE_PROFIT)
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.persistence import StateRepository
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_MAX_TRADE_HISTORY,
    DEFAULT_MAX_WATCHLIST_SIZE,
    DEFAULT_STARTING_BALANCE_USD,
    SUPPORTED_CHAINS,
)
from shared.types import (
    DailyRiskState,
    ExitReason,
    Position,
    PositionStatus,
    Trade,
    WatchlistItem,
    to_plain_dict,
)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class StateStoreError(Exception):
    """Base error for state store mutations."""


class InsufficientBalanceError(StateStoreError):
    """Raised when a debit would take a chain balance below zero."""


class StateStore:
    """In-memory state with snapshot persistence."""

    def __init__(
        self,
        repository: StateRepository,
        clock: Clock | None = None,
        starting_balances: dict[str, Decimal] | None = None,
    ) -> None:
        app_cfg = get_config().get_app_config()
        state_cfg = app_cfg.get("state", {})

        self._repository = repository
        self._clock = clock or SystemClock()

        if starting_balances is None:
            configured = app_cfg.get("starting_balances_usd", {})
            starting_balances = {
                chain: Decimal(str(configured.get(chain, DEFAULT_STARTING_BALANCE_USD)))
                for chain in SUPPORTED_CHAINS
            }
        self._starting_balances = dict(starting_balances)

        self._max_watchlist_size: int = int(
            state_cfg.get("max_watchlist_size", DEFAULT_MAX_WATCHLIST_SIZE)
        )
        self._max_trade_history: int = int(
            state_cfg.get("max_trade_history", DEFAULT_MAX_TRADE_HISTORY)
        )

        self._balances: dict[str, Decimal] = dict(self._starting_balances)
        self._positions: dict[str, Position] = {}
        self._trades: deque[Trade] = deque(maxlen=self._max_trade_history)
        self._watchlist: list[WatchlistItem] = []
        self._total_pnl = _ZERO
        self._risk_state: DailyRiskState | None = None
        self._last_updated: str | None = None

        self._lock = asyncio.Lock()

        self._logger = setup_module_logger(
            "state_store", "state_store.log", module_folder="State_Logs"
        )

    # ------------------------------------------------------------------
    # Load / flush
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """Restore from the repository. Returns False when no snapshot exists."""
        async with self._lock:
            try:
                data = await asyncio.to_thread(self._repository.load)
            except (OSError, ValueError) as exc:
                self._logger.error("Failed to load state snapshot: %s", exc)
                return False
            if not data:
                self._logger.info("No existing state, using defaults")
                return False

            self._balances = {
                **self._starting_balances,
                **{chain: Decimal(str(v)) for chain, v in data.get("balances", {}).items()},
            }
            self._positions = {
                pid: Position.from_dict(p) for pid, p in data.get("positions", {}).items()
            }
            self._trades = deque(
                (Trade.from_dict(t) for t in data.get("trades", [])),
                maxlen=self._max_trade_history,
            )
            self._watchlist = [
                WatchlistItem.from_dict(w) for w in data.get("watchlist", [])
            ][-self._max_watchlist_size :]
            self._total_pnl = Decimal(str(data.get("total_pnl", "0")))
            risk = data.get("risk_state")
            self._risk_state = DailyRiskState.from_dict(risk) if risk else None
            self._last_updated = data.get("last_updated")

        self._logger.info(
            "State loaded: %d open positions, %d trades, %d watch-list pairs",
            len(self._positions),
            len(self._trades),
            len(self._watchlist),
        )
        return True

    def _serialize(self) -> dict[str, Any]:
        return {
            "balances": dict(self._balances),
            "positions": {pid: to_plain_dict(p) for pid, p in self._positions.items()},
            "trades": [to_plain_dict(t) for t in self._trades],
            "watchlist": [to_plain_dict(w) for w in self._watchlist],
            "total_pnl": self._total_pnl,
            "risk_state": to_plain_dict(self._risk_state) if self._risk_state else None,
            "last_updated": self._last_updated,
        }

    async def _flush(self) -> None:
        """Persist the snapshot off the event loop; caller holds the lock. Failures are logged only."""
        self._last_updated = datetime.fromtimestamp(self._clock.now(), timezone.utc).isoformat()
        snapshot = self._serialize()
        try:
            await asyncio.to_thread(self._repository.save, snapshot)
        except Exception as exc:
            self._logger.error("State flush failed (continuing in memory): %s", exc)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balance(self, chain: str) -> Decimal:
        return self._balances.get(chain, _ZERO)

    def get_balances(self) -> dict[str, Decimal]:
        return dict(self._balances)

    async def update_balance(self, chain: str, delta: Decimal) -> Decimal:
        async with self._lock:
            self._balances[chain] = self._balances.get(chain, _ZERO) + delta
            await self._flush()
            return self._balances[chain]

    async def set_balance(self, chain: str, amount: Decimal) -> None:
        async with self._lock:
            self._balances[chain] = amount
            await self._flush()

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def get_open_positions(self) -> list[Position]:
        return [replace(p) for p in self._positions.values()]

    def get_positions_by_chain(self, chain: str) -> list[Position]:
        return [replace(p) for p in self._positions.values() if p.chain == chain]

    def get_position(self, position_id: str) -> Position | None:
        position = self._positions.get(position_id)
        return replace(position) if position else None

    def has_open_position(self, chain: str, pair_address: str) -> bool:
        pair = pair_address.lower()
        return any(
            p.chain == chain and p.pair_address.lower() == pair for p in self._positions.values()
        )

    async def add_position(self, position: Position) -> str:
        """Register an already-funded position (no balance change)."""
        async with self._lock:
            position_id = self._insert_position(position)
            await self._flush()
        self._logger.info("Position opened: %s", position_id)
        return position_id

    async def open_position(self, position: Position) -> str:
        """Debit the chain balance by the position size and register it, together."""
        async with self._lock:
            balance = self._balances.get(position.chain, _ZERO)
            if balance < position.position_size_usd:
                raise InsufficientBalanceError(
                    f"Insufficient balance on {position.chain}: "
                    f"${balance} < ${position.position_size_usd}"
                )
            self._balances[position.chain] = balance - position.position_size_usd
            position_id = self._insert_position(position)
            await self._flush()

        self._logger.info(
            "Position opened: %s size=$%s tokens=%s entry=$%s",
            position_id,
            position.position_size_usd,
            position.token_amount,
            position.entry_price,
        )
        return position_id

    async def close_position(
        self,
        position_id: str,
        exit_price: Decimal,
        reason: ExitReason,
        exit_tx_hash: str | None = None,
    ) -> Trade | None:
        """
        Close an open position at ``exit_price``.

        Credits proceeds (token_amount * exit_price) to the chain balance,
        appends the Trade and removes the position; returns None when the id
        is not open.
        """
        async with self._lock:
            position = self._positions.get(position_id)
            if position is None:
                self._logger.error("Position not found: %s", position_id)
                return None

            now = self._clock.now()
            proceeds = position.token_amount * exit_price
            pnl = proceeds - position.position_size_usd
            pnl_percent = (
                pnl / position.position_size_usd * _HUNDRED
                if position.position_size_usd > 0
                else _ZERO
            )
            trade = Trade(
                id=position.id,
                chain=position.chain,
                pair_address=position.pair_address,
                token_symbol=position.token_symbol,
                token_address=position.token_address,
                entry_price=position.entry_price,
                exit_price=exit_price,
                token_amount=position.token_amount,
                position_size_usd=position.position_size_usd,
                proceeds_usd=proceeds,
                pnl=pnl,
                pnl_percent=pnl_percent,
                exit_reason=reason,
                take_profit=position.take_profit,
                stop_loss=position.stop_loss,
                max_hold_until=position.max_hold_until,
                opened_at=position.opened_at,
                closed_at=now,
                hold_seconds=now - position.opened_at,
                signal=position.signal,
                entry_tx_hash=position.tx_hash,
                exit_tx_hash=exit_tx_hash,
            )

            self._trades.append(trade)
            self._total_pnl += pnl
            self._balances[position.chain] = self._balances.get(position.chain, _ZERO) + proceeds
            del self._positions[position_id]
            await self._flush()

        self._logger.info(
            "Position closed: %s reason=%s exit=$%s PnL=%s$%s (%.2f%%)",
            position_id,
            reason.value,
            exit_price,
            "+" if pnl >= 0 else "",
            pnl,
            pnl_percent,
        )
        return trade

    def _insert_position(self, position: Position) -> str:
        if not position.id:
            position.id = self._new_position_id(position.chain, position.pair_address)
        elif position.id in self._positions:
            raise StateStoreError(f"Position id already open: {position.id}")
        position.status = PositionStatus.OPEN
        if not position.opened_at:
            position.opened_at = self._clock.now()
        self._positions[position.id] = replace(position)
        return position.id

    def _new_position_id(self, chain: str, pair_address: str) -> str:
        base = f"{chain}:{pair_address}:{int(self._clock.now() * 1000)}"
        position_id = base
        suffix = 1
        while position_id in self._positions:
            position_id = f"{base}-{suffix}"
            suffix += 1
        return position_id

    # ------------------------------------------------------------------
    # Watch list
    # ------------------------------------------------------------------

    def get_watchlist(self) -> list[WatchlistItem]:
        return list(self._watchlist)

    async def add_to_watchlist(self, item: WatchlistItem) -> bool:
        """Add unless (chain, pair) is already present. Evicts the oldest entry when full."""
        async with self._lock:
            pair = item.pair_address.lower()
            if any(
                w.chain == item.chain and w.pair_address.lower() == pair for w in self._watchlist
            ):
                return False
            self._watchlist.append(item)
            while len(self._watchlist) > self._max_watchlist_size:
                evicted = self._watchlist.pop(0)
                self._logger.info(
                    "Watch list full, evicted %s:%s", evicted.chain, evicted.pair_address
                )
            await self._flush()
        self._logger.info("Watching %s on %s (%s)", item.symbol, item.chain, item.pair_address)
        return True

    async def remove_from_watchlist(self, chain: str, pair_address: str) -> bool:
        async with self._lock:
            pair = pair_address.lower()
            before = len(self._watchlist)
            self._watchlist = [
                w
                for w in self._watchlist
                if not (w.chain == chain and w.pair_address.lower() == pair)
            ]
            removed = len(self._watchlist) != before
            if removed:
                await self._flush()
        return removed

    # ------------------------------------------------------------------
    # History / summary
    # ------------------------------------------------------------------

    def get_trade_history(self, limit: int = 50) -> list[Trade]:
        """Most recent ``limit`` trades, oldest first."""
        if limit <= 0:
            return []
        return list(self._trades)[-limit:]

    def get_trades_by_chain(self, chain: str) -> list[Trade]:
        return [t for t in self._trades if t.chain == chain]

    def get_total_pnl(self) -> Decimal:
        return self._total_pnl

    def get_summary(self) -> dict[str, Any]:
        return {
            "balances": dict(self._balances),
            "open_positions": len(self._positions),
            "total_trades": len(self._trades),
            "total_pnl": self._total_pnl,
            "watchlist_size": len(self._watchlist),
            "last_updated": self._last_updated,
        }

    # ------------------------------------------------------------------
    # Risk state
    # ------------------------------------------------------------------

    def get_risk_state(self) -> DailyRiskState | None:
        return self._risk_state

    async def save_risk_state(self, state: DailyRiskState) -> None:
        async with self._lock:
            self._risk_state = state
            await self._flush()

    async def reset(self) -> None:
        """Back to starting balances with no positions, trades or watch list."""
        async with self._lock:
            self._balances = dict(self._starting_balances)
            self._positions = {}
            self._trades = deque(maxlen=self._max_trade_history)
            self._watchlist = []
            self._total_pnl = _ZERO
            self._risk_state = None
            await self._flush()
        self._logger.warning("State reset to starting balances")
