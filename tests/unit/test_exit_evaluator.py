"""
Unit tests for core/exit_evaluator.py.

Position: entry $1, take-profit $5, stop-loss $0.95, 30 minute hold.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_position, make_snapshot, patched_module
from shared.types import ExitReason


def _make_evaluator(clock):
    with patched_module("core.exit_evaluator"):
        from core.exit_evaluator import ExitEvaluator

        return ExitEvaluator(clock)


class TestExitPriority:
    def test_take_profit_at_target(self, clock):
        decision = _make_evaluator(clock).evaluate(
            make_position(), make_snapshot(price_usd=Decimal("5"))
        )
        assert decision is not None
        assert decision.reason == ExitReason.TAKE_PROFIT
        assert decision.exit_price == Decimal("5")
        assert decision.profit_percent == Decimal("400")

    def test_stop_loss_at_threshold(self, clock):
        decision = _make_evaluator(clock).evaluate(
            make_position(), make_snapshot(price_usd=Decimal("0.95"))
        )
        assert decision is not None
        assert decision.reason == ExitReason.STOP_LOSS
        assert decision.profit_percent == Decimal("-5")

    def test_hold_in_range(self, clock):
        decision = _make_evaluator(clock).evaluate(
            make_position(), make_snapshot(price_usd=Decimal("1.2"))
        )
        assert decision is None

    def test_time_limit_after_deadline(self, clock):
        evaluator = _make_evaluator(clock)
        clock.advance(1800)
        decision = evaluator.evaluate(make_position(), make_snapshot(price_usd=Decimal("1.2")))
        assert decision is not None
        assert decision.reason == ExitReason.TIME_LIMIT
        assert "30m" in decision.message

    def test_take_profit_beats_time_limit(self, clock):
        evaluator = _make_evaluator(clock)
        clock.advance(3600)
        decision = evaluator.evaluate(make_position(), make_snapshot(price_usd=Decimal("6")))
        assert decision.reason == ExitReason.TAKE_PROFIT

    def test_stop_loss_beats_time_limit(self, clock):
        evaluator = _make_evaluator(clock)
        clock.advance(3600)
        decision = evaluator.evaluate(make_position(), make_snapshot(price_usd=Decimal("0.5")))
        assert decision.reason == ExitReason.STOP_LOSS

    def test_decision_timestamp_from_clock(self, clock):
        evaluator = _make_evaluator(clock)
        clock.advance(42)
        decision = evaluator.evaluate(make_position(), make_snapshot(price_usd=Decimal("5")))
        assert decision.timestamp == clock.now()


@pytest.mark.parametrize(
    "entry, exit_price, expected",
    [("1", "1.1", "10"), ("2", "1", "-50"), ("0", "1", "0")],
)
def test_profit_percent(entry, exit_price, expected):
    from core.exit_evaluator import ExitEvaluator

    assert ExitEvaluator.profit_percent(Decimal(entry), Decimal(exit_price)) == Decimal(expected)
