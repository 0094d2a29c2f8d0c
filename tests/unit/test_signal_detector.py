"""
Unit tests for core/signal_detector.py and core/contract_analyzer.py.

Tests verify the AND entry rule (volume spike plus price move), the
liquidity / 24h volume floors, the honeypot screen, exit target math on
the emitted Signal, bucketed strength scoring, and the scored safety
report.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import START_TS, make_config_loader, make_snapshot, patched_module
from shared.types import CandleStats


def _make_analyzer(clock):
    with patched_module("core.contract_analyzer"):
        from core.contract_analyzer import ContractAnalyzer

        return ContractAnalyzer(clock)


def _make_detector(clock, analyzer=None, **strategy_overrides):
    loader = make_config_loader(
        strategy={
            "volume_multiplier": "3",
            "min_price_change_percent": "2",
            "min_liquidity_usd": "5000",
            "min_volume_24h_usd": "10000",
            "take_profit_multiplier": "5",
            **strategy_overrides,
        }
    )
    with patched_module("core.signal_detector", loader):
        from core.signal_detector import SignalDetector

        return SignalDetector(analyzer or _make_analyzer(clock), clock)


def _stats(ratio="4"):
    return CandleStats(
        avg_volume_1h=Decimal("1000"),
        volume_ratio=Decimal(ratio),
        price_change_1h=Decimal("0"),
        candle_count=12,
    )


# ---------------------------------------------------------------------------
# Entry rule
# ---------------------------------------------------------------------------


class TestEntryRule:
    def test_spike_and_price_move_emit_signal(self, clock):
        detector = _make_detector(clock)
        signal = detector.evaluate(make_snapshot(price_change_5m=Decimal("5")), _stats("4"))

        assert signal is not None
        assert signal.entry_price == Decimal("1")
        assert signal.take_profit == Decimal("5")
        assert signal.stop_loss == Decimal("0.95")
        assert signal.max_hold_until == START_TS + 30 * 60
        assert signal.timestamp == START_TS
        assert signal.entry_price_native == Decimal("0.002")

    def test_volume_spike_alone_is_not_enough(self, clock):
        detector = _make_detector(clock)
        assert detector.evaluate(make_snapshot(price_change_5m=Decimal("1")), _stats("10")) is None

    def test_price_move_alone_is_not_enough(self, clock):
        detector = _make_detector(clock)
        assert detector.evaluate(make_snapshot(price_change_5m=Decimal("20")), _stats("2.9")) is None

    def test_thresholds_are_inclusive(self, clock):
        detector = _make_detector(clock)
        signal = detector.evaluate(make_snapshot(price_change_5m=Decimal("2")), _stats("3"))
        assert signal is not None

    def test_low_liquidity_rejected(self, clock):
        detector = _make_detector(clock)
        snapshot = make_snapshot(liquidity_usd=Decimal("4999"))
        assert detector.evaluate(snapshot, _stats()) is None

    def test_low_24h_volume_rejected(self, clock):
        detector = _make_detector(clock)
        snapshot = make_snapshot(volume_24h=Decimal("9999"))
        assert detector.evaluate(snapshot, _stats()) is None

    def test_honeypot_rejected(self, clock):
        detector = _make_detector(clock)
        snapshot = make_snapshot(buys_24h=50, sells_24h=0)
        assert detector.evaluate(snapshot, _stats()) is None

    def test_zero_price_rejected(self, clock):
        detector = _make_detector(clock)
        assert detector.evaluate(make_snapshot(price_usd=Decimal("0")), _stats()) is None

    def test_describe_mentions_thresholds(self, clock):
        summary = _make_detector(clock).describe()
        assert summary["name"] == "Volume Spike Scalping"
        assert "3x" in summary["entry"]
        assert summary["max_hold"] == "30 minutes"


class TestSignalStrength:
    @pytest.mark.parametrize(
        "ratio, change, liquidity, expected",
        [
            ("10", "10", "100000", 100),
            ("5", "5", "50000", 70),
            ("3", "2", "10000", 40),
            ("2.9", "1.9", "9999", 0),
            ("4", "5", "60000", 60),
        ],
    )
    def test_bucketed_score(self, ratio, change, liquidity, expected):
        from core.signal_detector import signal_strength

        assert signal_strength(Decimal(ratio), Decimal(change), Decimal(liquidity)) == expected


# ---------------------------------------------------------------------------
# Contract analyzer
# ---------------------------------------------------------------------------


class TestContractAnalyzer:
    def test_healthy_token_is_safe(self, clock):
        analyzer = _make_analyzer(clock)
        assert analyzer.is_token_safe(make_snapshot()) is True

        report = analyzer.analyze_token_safety(make_snapshot())
        assert report.is_safe is True
        assert report.score == 100
        assert report.risks == []

    def test_buys_without_sells_is_honeypot(self, clock):
        analyzer = _make_analyzer(clock)
        snapshot = make_snapshot(buys_24h=11, sells_24h=0)
        assert analyzer.is_token_safe(snapshot) is False

        report = analyzer.analyze_token_safety(snapshot)
        assert report.is_safe is False
        assert any("HONEYPOT" in r for r in report.risks)

    def test_few_buys_without_sells_passes_fast_screen(self, clock):
        analyzer = _make_analyzer(clock)
        assert analyzer.is_token_safe(make_snapshot(buys_24h=10, sells_24h=0)) is True

    def test_young_token_only_warns(self, clock):
        analyzer = _make_analyzer(clock)
        report = analyzer.analyze_token_safety(make_snapshot(created_at=START_TS - 600))
        assert report.is_safe is True
        assert report.score == 85
        assert any("too new" in w for w in report.warnings)

    def test_low_sell_ratio_fails(self, clock):
        analyzer = _make_analyzer(clock)
        report = analyzer.analyze_token_safety(make_snapshot(buys_24h=95, sells_24h=5))
        assert report.is_safe is False

    def test_liquidity_assessment_caps_at_two_percent(self, clock):
        analyzer = _make_analyzer(clock)
        assessment = analyzer.analyze_liquidity_for_trade(
            make_snapshot(liquidity_usd=Decimal("10000")), Decimal("500")
        )
        assert assessment.max_safe_size_usd == Decimal("200")
        assert assessment.recommended_size_usd == Decimal("200")
        assert assessment.estimated_impact_percent == Decimal("5")
        assert assessment.is_safe is False
