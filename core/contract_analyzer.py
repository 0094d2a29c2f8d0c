"""
Token safety heuristics for the DEX volume-spike scalper.

Works purely from market-data fields (liquidity, pair age, 24h buy/sell
counts, listing info); no on-chain contract reads. The signal detector
uses the fast ``is_token_safe`` verdict. The trading engine logs the scored
``analyze_token_safety`` report for every signal and warns through
``analyze_liquidity_for_trade`` when a sized position is large for the pool.
"""

from __future__ import annotations

from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.clock import Clock, SystemClock
from shared.constants import DEFAULT_MIN_LIQUIDITY_USD
from shared.types import LiquidityAssessment, MarketSnapshot, SafetyAnalysis, TokenSafetyCheck

_HUNDRED = Decimal("100")

_MIN_AGE_MINUTES = 30
_IMPACT_TEST_TRADE_USD = Decimal("100")
_MAX_TEST_IMPACT_PERCENT = Decimal("2")
_HONEYPOT_MIN_BUYS = 10
_MIN_SELL_RATIO_PERCENT = Decimal("10")
_MIN_TXNS_FOR_RATIO = 10
_MAX_SAFE_LIQUIDITY_FRACTION = Decimal("0.02")

# Score penalties
_PENALTY_LIQUIDITY = 30
_PENALTY_AGE = 15
_PENALTY_IMPACT = 20
_PENALTY_HONEYPOT = 40
_PENALTY_UNVERIFIED = 10


class ContractAnalyzer:
    """Market-data based honeypot and liquidity screening."""

    def __init__(self, clock: Clock | None = None) -> None:
        cfg = get_config().get_strategy_config()
        self._clock = clock or SystemClock()
        self._min_liquidity_usd = Decimal(
            str(cfg.get("min_liquidity_usd", DEFAULT_MIN_LIQUIDITY_USD))
        )
        self._logger = setup_module_logger(
            "contract_analyzer", "contract_analyzer.log", module_folder="Signal_Logs"
        )

    # ------------------------------------------------------------------
    # Fast verdict
    # ------------------------------------------------------------------

    def is_token_safe(self, snapshot: MarketSnapshot) -> bool:
        """Fail-fast screen: thin liquidity or buys with zero sells (honeypot)."""
        if snapshot.liquidity_usd < self._min_liquidity_usd:
            return False
        if snapshot.buys_24h > _HONEYPOT_MIN_BUYS and snapshot.sells_24h == 0:
            return False
        return True

    # ------------------------------------------------------------------
    # Full report
    # ------------------------------------------------------------------

    def analyze_token_safety(self, snapshot: MarketSnapshot) -> SafetyAnalysis:
        """Scored report (0-100). Failing checks mark the token unsafe; warnings only cost points."""
        checks = [
            self._check_liquidity(snapshot),
            self._check_age(snapshot),
            self._check_price_impact(snapshot),
            self._check_buy_sell_ratio(snapshot),
            self._check_verified(snapshot),
        ]
        penalties = {
            "liquidity": _PENALTY_LIQUIDITY,
            "age": _PENALTY_AGE,
            "price_impact": _PENALTY_IMPACT,
            "honeypot": _PENALTY_HONEYPOT,
            "verified": _PENALTY_UNVERIFIED,
        }

        score = 100
        is_safe = True
        warnings: list[str] = []
        risks: list[str] = []
        for check in checks:
            if check.passed:
                continue
            score -= penalties[check.name]
            if check.severity == "fail":
                is_safe = False
                risks.append(check.detail)
            else:
                warnings.append(check.detail)

        analysis = SafetyAnalysis(
            is_safe=is_safe,
            score=max(0, min(100, score)),
            checks=checks,
            warnings=warnings,
            risks=risks,
        )
        symbol = snapshot.base_token.symbol or snapshot.pair_address
        if is_safe:
            self._logger.info("Token %s passed safety check (score=%d)", symbol, analysis.score)
        else:
            self._logger.warning(
                "Token %s FAILED safety check (score=%d): %s",
                symbol,
                analysis.score,
                "; ".join(risks),
            )
        return analysis

    def analyze_liquidity_for_trade(
        self, snapshot: MarketSnapshot, trade_size_usd: Decimal
    ) -> LiquidityAssessment:
        """Max safe size is 2% of pool liquidity; impact estimated as size/liquidity."""
        liquidity = snapshot.liquidity_usd
        max_safe = liquidity * _MAX_SAFE_LIQUIDITY_FRACTION
        impact = trade_size_usd / liquidity * _HUNDRED if liquidity > 0 else _HUNDRED
        return LiquidityAssessment(
            liquidity_usd=liquidity,
            trade_size_usd=trade_size_usd,
            max_safe_size_usd=max_safe,
            recommended_size_usd=min(trade_size_usd, max_safe),
            estimated_impact_percent=impact,
            is_safe=trade_size_usd <= max_safe,
        )

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _check_liquidity(self, snapshot: MarketSnapshot) -> TokenSafetyCheck:
        passed = snapshot.liquidity_usd >= self._min_liquidity_usd
        detail = (
            "Sufficient liquidity"
            if passed
            else f"Low liquidity: ${snapshot.liquidity_usd} < ${self._min_liquidity_usd}"
        )
        return TokenSafetyCheck("liquidity", passed, "fail", detail)

    def _check_age(self, snapshot: MarketSnapshot) -> TokenSafetyCheck:
        if snapshot.created_at is None:
            return TokenSafetyCheck("age", False, "warning", "Token creation time unknown")
        age_minutes = (self._clock.now() - snapshot.created_at) / 60
        passed = age_minutes >= _MIN_AGE_MINUTES
        detail = (
            "Token is mature enough"
            if passed
            else f"Token too new: {age_minutes:.0f} min < {_MIN_AGE_MINUTES} min"
        )
        return TokenSafetyCheck("age", passed, "warning", detail)

    def _check_price_impact(self, snapshot: MarketSnapshot) -> TokenSafetyCheck:
        liquidity = snapshot.liquidity_usd
        impact = _IMPACT_TEST_TRADE_USD / liquidity * _HUNDRED if liquidity > 0 else _HUNDRED
        passed = impact <= _MAX_TEST_IMPACT_PERCENT
        detail = "Low price impact" if passed else f"High price impact: {impact:.2f}%"
        return TokenSafetyCheck("price_impact", passed, "warning", detail)

    def _check_buy_sell_ratio(self, snapshot: MarketSnapshot) -> TokenSafetyCheck:
        buys = snapshot.buys_24h
        sells = snapshot.sells_24h
        if buys > _HONEYPOT_MIN_BUYS and sells == 0:
            return TokenSafetyCheck(
                "honeypot", False, "fail", "POTENTIAL HONEYPOT: no sells in 24h"
            )
        total = buys + sells
        sell_ratio = Decimal(sells) / Decimal(total) * _HUNDRED if total > 0 else Decimal("50")
        passed = sell_ratio >= _MIN_SELL_RATIO_PERCENT or total < _MIN_TXNS_FOR_RATIO
        detail = (
            "Normal buy/sell ratio"
            if passed
            else f"Low sell ratio: {sell_ratio:.1f}% (potential honeypot)"
        )
        return TokenSafetyCheck("honeypot", passed, "fail", detail)

    @staticmethod
    def _check_verified(snapshot: MarketSnapshot) -> TokenSafetyCheck:
        passed = snapshot.has_info or bool(snapshot.url)
        detail = "Pair is listed on DexScreener" if passed else "Unverified pair"
        return TokenSafetyCheck("verified", passed, "warning", detail)
