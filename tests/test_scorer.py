"""
Tests for ConfluenceScorer and VolatilityFilter.
"""

import random

import pytest
from datetime import datetime, timedelta, timezone

from killzone.config.strategy import load_strategy_config
from killzone.core.candles import Candle, CandleSeries, EvaluationCursor
from killzone.core.enums import FACTOR_ORDER, ConfluenceFactor as F
from killzone.intelligence.scorer import ConfluenceScorer
from killzone.intelligence.volatility import VolatilityFilter

T0 = datetime(2025, 3, 3, 13, 0, tzinfo=timezone.utc)


@pytest.fixture
def scorer():
    return ConfluenceScorer()


class TestConfluenceScorer:

    def test_empty(self, scorer):
        result = scorer.score([])
        assert result.score == 0.0
        assert result.present_factors == ()
        assert len(result.missing_factors) == len(FACTOR_ORDER)

    def test_default_weights(self, scorer):
        result = scorer.score([F.HTF_BIAS, F.LIQUIDITY_SWEPT, F.FVG, F.SILVER_BULLET])
        assert result.score == pytest.approx(6.0)
        assert not result.is_high_conviction
        assert result.max_score == pytest.approx(15.0)

    def test_high_conviction(self, scorer):
        result = scorer.score([F.HTF_BIAS, F.LIQUIDITY_SWEPT, F.FVG, F.SMT_DIVERGENCE])
        assert result.score == pytest.approx(7.0)
        assert result.is_high_conviction

    def test_additive(self, scorer):
        a = [F.HTF_BIAS, F.KILLZONE]
        b = [F.FVG, F.ETF_FLOWS]
        assert scorer.score(a + b).score == pytest.approx(scorer.score(a).score + scorer.score(b).score)

    def test_order_independent(self, scorer):
        factors = list(FACTOR_ORDER)
        expected = scorer.score(factors)
        rng = random.Random(7)
        for _ in range(20):
            rng.shuffle(factors)
            result = scorer.score(factors)
            assert result.score == expected.score
            assert result.present_factors == expected.present_factors

    def test_duplicates_count_once(self, scorer):
        assert scorer.score([F.FVG, F.FVG]).score == pytest.approx(1.5)

    def test_custom_weights(self):
        config = load_strategy_config({"confluence": {"weights": {"FVG": 3.0}}})
        result = ConfluenceScorer(config).score([F.FVG, F.HTF_BIAS])
        # weights table replaced: unlisted factors weigh nothing
        assert result.score == pytest.approx(3.0)


def _make_view(ranges, close: float = 100.0):
    candles = [
        Candle(T0 + timedelta(minutes=5 * i), close, close + r / 2, close - r / 2, close)
        for i, r in enumerate(ranges)
    ]
    candles.append(Candle(T0 + timedelta(minutes=5 * len(ranges)), close, close, close, close))
    series = CandleSeries(candles, "ETH/USD", "5m")
    return series.at(EvaluationCursor(series[-1].timestamp))


class TestVolatilityFilter:

    @pytest.fixture
    def vol(self):
        return VolatilityFilter()

    def test_in_range(self, vol):
        reading = vol.check(_make_view([0.5] * 20))
        assert reading.in_range
        assert reading.atr_percent == pytest.approx(0.5)

    def test_too_quiet(self, vol):
        reading = vol.check(_make_view([0.01] * 20))
        assert not reading.in_range
        assert reading.reason.startswith("Volatility too low")

    def test_too_wild(self, vol):
        reading = vol.check(_make_view([5.0] * 20))
        assert not reading.in_range
        assert reading.reason.startswith("Volatility too high")

    def test_insufficient(self, vol):
        reading = vol.check(_make_view([0.5]))
        assert not reading.in_range
        assert reading.reason == "Insufficient candles for ATR"
