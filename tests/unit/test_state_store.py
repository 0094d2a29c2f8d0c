"""
Unit tests for core/state_store.py and core/persistence.py.

Tests verify open/close bookkeeping (debit, proceeds credit, PnL, trade
append), balance guard, watch-list dedup and FIFO eviction, bounded trade
history, snapshot persistence across a reload stamped from the injected
clock, and that a failing
repository never undoes an in-memory mutation.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from conftest import (
    SAMPLE_PAIR,
    STANDARD_APP_CONFIG,
    START_TS,
    make_config_loader,
    make_position,
    make_signal,
    patched_module,
)
from core.persistence import InMemoryStateRepository, JsonFileStateRepository
from shared.types import DailyRiskState, ExitReason, WatchlistItem

BALANCES = {"bsc": Decimal("1000"), "base": Decimal("1000"), "solana": Decimal("1000")}


def _make_store(clock, repository=None, max_watchlist_size=50, max_trade_history=1000):
    app = {
        **STANDARD_APP_CONFIG,
        "state": {
            "snapshot_path": "data/state.json",
            "max_watchlist_size": max_watchlist_size,
            "max_trade_history": max_trade_history,
        },
    }
    with patched_module("core.state_store", make_config_loader(app=app)):
        from core.state_store import StateStore

        return StateStore(
            repository if repository is not None else InMemoryStateRepository(),
            clock,
            starting_balances=dict(BALANCES),
        )


def _item(n: int, chain: str = "bsc") -> WatchlistItem:
    return WatchlistItem(chain=chain, pair_address=f"0xpair{n}", symbol=f"T{n}", added_at=START_TS)


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


class TestOpenPosition:
    @pytest.mark.asyncio
    async def test_open_debits_balance(self, clock):
        store = _make_store(clock)
        position_id = await store.open_position(make_position())

        assert store.get_balance("bsc") == Decimal("900")
        assert store.has_open_position("bsc", SAMPLE_PAIR.upper())
        assert position_id.startswith(f"bsc:{SAMPLE_PAIR}:")

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, clock):
        from core.state_store import InsufficientBalanceError

        store = _make_store(clock)
        with pytest.raises(InsufficientBalanceError):
            await store.open_position(make_position(position_size_usd=Decimal("1000.01")))
        assert store.get_balance("bsc") == Decimal("1000")
        assert store.get_open_positions() == []

    @pytest.mark.asyncio
    async def test_ids_unique_within_same_millisecond(self, clock):
        store = _make_store(clock)
        first = await store.open_position(make_position())
        second = await store.add_position(make_position())
        assert first != second
        assert len(store.get_open_positions()) == 2

    @pytest.mark.asyncio
    async def test_returned_positions_are_copies(self, clock):
        store = _make_store(clock)
        position_id = await store.open_position(make_position())
        store.get_position(position_id).token_amount = Decimal("0")
        assert store.get_position(position_id).token_amount == Decimal("100")


class TestClosePosition:
    @pytest.mark.asyncio
    async def test_take_profit_close(self, clock):
        store = _make_store(clock)
        position_id = await store.open_position(make_position(tx_hash="0xentry"))
        clock.advance(600)

        trade = await store.close_position(
            position_id, Decimal("5"), ExitReason.TAKE_PROFIT, exit_tx_hash="0xexit"
        )

        assert trade is not None
        assert trade.proceeds_usd == Decimal("500")
        assert trade.pnl == Decimal("400")
        assert trade.pnl_percent == Decimal("400")
        assert trade.hold_seconds == 600
        assert trade.entry_tx_hash == "0xentry"
        assert trade.exit_tx_hash == "0xexit"
        assert store.get_balance("bsc") == Decimal("1400")
        assert store.get_total_pnl() == Decimal("400")
        assert store.get_open_positions() == []
        assert store.get_trade_history() == [trade]

    @pytest.mark.asyncio
    async def test_close_unknown_returns_none(self, clock):
        store = _make_store(clock)
        assert await store.close_position("missing", Decimal("1"), ExitReason.MANUAL) is None

    @pytest.mark.asyncio
    async def test_trade_history_is_bounded(self, clock):
        store = _make_store(clock, max_trade_history=2)
        for _ in range(3):
            position_id = await store.open_position(make_position())
            await store.close_position(position_id, Decimal("1"), ExitReason.TIME_LIMIT)
            clock.advance(1)
        assert len(store.get_trade_history()) == 2

    @pytest.mark.asyncio
    async def test_trades_by_chain(self, clock):
        store = _make_store(clock)
        for chain in ("bsc", "base", "bsc"):
            position_id = await store.open_position(make_position(chain=chain))
            await store.close_position(position_id, Decimal("1"), ExitReason.MANUAL)
        assert len(store.get_trades_by_chain("bsc")) == 2
        assert store.get_trades_by_chain("solana") == []

    @pytest.mark.asyncio
    async def test_break_even_restores_balance(self, clock):
        store = _make_store(clock)
        position_id = await store.open_position(make_position())
        await store.close_position(position_id, Decimal("1"), ExitReason.MANUAL)
        assert store.get_balance("bsc") == Decimal("1000")


# ---------------------------------------------------------------------------
# Watch list
# ---------------------------------------------------------------------------


class TestWatchlist:
    @pytest.mark.asyncio
    async def test_dedup_is_case_insensitive(self, clock):
        store = _make_store(clock)
        assert await store.add_to_watchlist(_item(1)) is True
        duplicate = WatchlistItem("bsc", "0xPAIR1", "T1", START_TS)
        assert await store.add_to_watchlist(duplicate) is False
        assert len(store.get_watchlist()) == 1

    @pytest.mark.asyncio
    async def test_same_pair_on_other_chain_allowed(self, clock):
        store = _make_store(clock)
        await store.add_to_watchlist(_item(1, "bsc"))
        assert await store.add_to_watchlist(_item(1, "base")) is True

    @pytest.mark.asyncio
    async def test_fifo_eviction(self, clock):
        store = _make_store(clock, max_watchlist_size=3)
        for n in range(5):
            await store.add_to_watchlist(_item(n))
        assert [w.pair_address for w in store.get_watchlist()] == ["0xpair2", "0xpair3", "0xpair4"]

    @pytest.mark.asyncio
    async def test_remove(self, clock):
        store = _make_store(clock)
        await store.add_to_watchlist(_item(1))
        assert await store.remove_from_watchlist("bsc", "0xPair1") is True
        assert await store.remove_from_watchlist("bsc", "0xpair1") is False


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    @pytest.mark.asyncio
    async def test_reload_restores_everything(self, clock, tmp_path):
        repository = JsonFileStateRepository(tmp_path / "state.json")
        store = _make_store(clock, repository)
        open_id = await store.open_position(make_position(signal=make_signal()))
        closed_id = await store.add_position(make_position(pair_address="0xother"))
        await store.close_position(closed_id, Decimal("0.9"), ExitReason.STOP_LOSS)
        await store.add_to_watchlist(_item(7))
        await store.save_risk_state(
            DailyRiskState(day="2023-11-14", trade_count=1, total_pnl=Decimal("-10"))
        )

        reloaded = _make_store(clock, repository)
        assert await reloaded.load() is True

        position = reloaded.get_position(open_id)
        assert position is not None
        assert position.signal == make_signal()
        assert reloaded.get_balance("bsc") == store.get_balance("bsc")
        assert reloaded.get_trade_history()[0].pnl == Decimal("-10.0")
        assert reloaded.get_trade_history()[0].exit_reason == ExitReason.STOP_LOSS
        assert reloaded.get_watchlist() == [_item(7)]
        assert reloaded.get_risk_state().total_pnl == Decimal("-10")

    @pytest.mark.asyncio
    async def test_decimals_stored_as_strings(self, clock, tmp_path):
        path = tmp_path / "state.json"
        store = _make_store(clock, JsonFileStateRepository(path))
        await store.open_position(make_position(entry_price=Decimal("0.000000012345")))

        raw = json.loads(path.read_text())
        (position,) = raw["positions"].values()
        assert position["entry_price"] == "0.000000012345"

    @pytest.mark.asyncio
    async def test_load_without_snapshot(self, clock, tmp_path):
        store = _make_store(clock, JsonFileStateRepository(tmp_path / "missing.json"))
        assert await store.load() is False
        assert store.get_balances() == BALANCES

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_keeps_defaults(self, clock, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        store = _make_store(clock, JsonFileStateRepository(path))
        assert await store.load() is False
        assert store.get_balance("solana") == Decimal("1000")

    @pytest.mark.asyncio
    async def test_flush_failure_keeps_mutation(self, clock):
        repository = MagicMock()
        repository.save.side_effect = OSError("disk full")
        store = _make_store(clock, repository)

        await store.open_position(make_position())
        assert store.get_balance("bsc") == Decimal("900")

    @pytest.mark.asyncio
    async def test_every_mutation_flushes(self, clock):
        repository = InMemoryStateRepository()
        store = _make_store(clock, repository)
        await store.update_balance("bsc", Decimal("5"))
        await store.add_to_watchlist(_item(1))
        assert repository.save_count == 2

    @pytest.mark.asyncio
    async def test_snapshot_stamped_from_clock(self, clock):
        repository = InMemoryStateRepository()
        store = _make_store(clock, repository)
        clock.advance(3600)
        await store.update_balance("bsc", Decimal("5"))

        expected = datetime.fromtimestamp(START_TS + 3600, timezone.utc).isoformat()
        assert repository.load()["last_updated"] == expected
        assert store.get_summary()["last_updated"] == expected

    @pytest.mark.asyncio
    async def test_reset(self, clock):
        store = _make_store(clock)
        await store.open_position(make_position())
        await store.reset()
        assert store.get_summary()["open_positions"] == 0
        assert store.get_balance("bsc") == Decimal("1000")
