"""
Tests for StructureAnalyzer.

Swing-driven reads: bias, break of structure, change of character,
multi-timeframe alignment and premium/discount zones.
"""

import pytest
from datetime import datetime, timedelta, timezone

from killzone.config.strategy import load_strategy_config
from killzone.core.candles import Candle, CandleSeries, EvaluationCursor
from killzone.core.enums import Bias, PremiumDiscountZone
from killzone.scanners.structure import StructureAnalyzer

T0 = datetime(2025, 3, 3, 0, 0, tzinfo=timezone.utc)

# Triangle wave, period 6: peaks at i % 6 == 3, troughs at i % 6 == 0
TRI = (0, 1, 2, 3, 2, 1)


def _zigzag_mids(n: int, drift: float, base: float = 100.0, amp: float = 2.0):
    return [base + drift * i + amp * TRI[i % 6] for i in range(n)]


def _make_series(mids) -> CandleSeries:
    """Candles centred on each mid, so swing prices are mid +/- 0.3."""
    candles = [
        Candle(T0 + timedelta(minutes=5 * i), m - 0.1, m + 0.3, m - 0.3, m + 0.1)
        for i, m in enumerate(mids)
    ]
    return CandleSeries(candles, "ETH/USD", "5m")


def _view(series: CandleSeries):
    """Online view at the last candle (all others completed)."""
    return series.at(EvaluationCursor(series[-1].timestamp))


@pytest.fixture
def analyzer():
    config = load_strategy_config({"structure": {"swing_lookback": 2, "htf_swing_lookback": 2}})
    return StructureAnalyzer(config)


class TestDetermineBias:

    def test_uptrend_is_bullish(self, analyzer):
        reading = analyzer.determine_bias(_view(_make_series(_zigzag_mids(31, 0.5))))
        assert reading.bias == Bias.BULLISH
        assert reading.confidence == pytest.approx(1.0)
        assert reading.reason == "HH:3 HL:3"

    def test_downtrend_is_bearish(self, analyzer):
        reading = analyzer.determine_bias(_view(_make_series(_zigzag_mids(31, -0.5, base=200))))
        assert reading.bias == Bias.BEARISH

    def test_insufficient_swings_is_neutral(self, analyzer):
        reading = analyzer.determine_bias(_view(_make_series(_zigzag_mids(8, 0.5))))
        assert reading.bias == Bias.NEUTRAL
        assert reading.confidence == 0.0
        assert reading.reason.startswith("Insufficient swings")

    def test_flat_range_is_not_bullish(self, analyzer):
        # Equal swing prices count as bearish transitions, never bullish
        reading = analyzer.determine_bias(_view(_make_series(_zigzag_mids(31, 0.0))))
        assert reading.bias != Bias.BULLISH


class TestBreakOfStructure:

    def test_close_above_last_swing_high(self, analyzer):
        mids = _zigzag_mids(30, 0.5) + [121.0, 121.5]
        view = _view(_make_series(mids))
        breaks = analyzer.find_breaks(view)
        bullish = [b for b in breaks if b.direction == Bias.BULLISH]
        assert len(bullish) == 1
        # latest swing high is candle 27: mid 119.5 + 0.3
        assert bullish[0].level == pytest.approx(119.8)
        assert analyzer.has_break(view, Bias.BULLISH)

    def test_break_candle_in_progress_is_not_a_break(self, analyzer):
        mids = _zigzag_mids(30, 0.5) + [121.0]
        view = _view(_make_series(mids))
        assert not analyzer.has_break(view, Bias.BULLISH)


class TestChangeOfCharacter:

    def test_lower_low_after_uptrend(self, analyzer):
        mids = _zigzag_mids(48, 0.5) + [118.0, 121.0, 123.0, 125.0, 126.0]
        choch = analyzer.detect_change_of_character(_view(_make_series(mids)))
        assert choch is not None
        assert choch.direction == Bias.BEARISH
        assert choch.is_change_of_character
        assert choch.level == pytest.approx(120.7)
        assert choch.break_level == pytest.approx(117.7)

    def test_no_choch_in_clean_trend(self, analyzer):
        assert analyzer.detect_change_of_character(_view(_make_series(_zigzag_mids(53, 0.5)))) is None


class TestAlignBias:

    def test_all_bullish(self, analyzer):
        up = _view(_make_series(_zigzag_mids(31, 0.5)))
        alignment = analyzer.align_bias({"4h": up, "1d": up})
        assert alignment.overall_bias == Bias.BULLISH
        assert alignment.aligned
        assert alignment.alignment == pytest.approx(1.0)
        assert alignment.bullish_count == 2

    def test_split_vote_is_neutral(self, analyzer):
        up = _view(_make_series(_zigzag_mids(31, 0.5)))
        down = _view(_make_series(_zigzag_mids(31, -0.5, base=200)))
        alignment = analyzer.align_bias({"4h": up, "1d": down})
        assert alignment.overall_bias == Bias.NEUTRAL

    def test_require_all_aligned(self):
        config = load_strategy_config({
            "structure": {"swing_lookback": 2, "htf_swing_lookback": 2},
            "bias": {"require_all_aligned": True},
        })
        analyzer = StructureAnalyzer(config)
        up = _view(_make_series(_zigzag_mids(31, 0.5)))
        short = _view(_make_series(_zigzag_mids(8, 0.5)))
        alignment = analyzer.align_bias({"4h": up, "1d": short})
        assert alignment.overall_bias == Bias.BULLISH
        assert not alignment.aligned

    # Highs 106 -> 107 (HH), lows 100 -> 101 -> 99 (HL, LL): 2 bullish vs 1 bearish
    ODD_MIDS = [105, 104, 100, 104, 106, 104, 102, 101, 103, 107, 103, 102, 99, 102, 103, 103.5]

    def test_alignment_votes_on_plain_majority(self, analyzer):
        view = _view(_make_series(self.ODD_MIDS))
        assert analyzer.determine_bias(view).bias == Bias.NEUTRAL

        alignment = analyzer.align_bias({"4h": view})
        reading = alignment.biases["4h"]
        assert reading.bias == Bias.BULLISH
        assert reading.confidence == pytest.approx(2 / 3)
        assert alignment.overall_bias == Bias.BULLISH

    def test_alignment_margin_configurable(self):
        config = load_strategy_config({
            "structure": {"swing_lookback": 2, "htf_swing_lookback": 2, "htf_bias_margin": 1},
        })
        alignment = StructureAnalyzer(config).align_bias({"4h": _view(_make_series(self.ODD_MIDS))})
        assert alignment.overall_bias == Bias.NEUTRAL


class TestPremiumDiscount:

    def _make_range_view(self, price: float, n: int = 12):
        candles = [
            Candle(T0 + timedelta(minutes=5 * i), 105, 110, 100, 105) for i in range(n)
        ]
        candles.append(Candle(T0 + timedelta(minutes=5 * n), price, price, price, price))
        return _view(CandleSeries(candles))

    @pytest.mark.parametrize("price,zone", [
        (101.0, PremiumDiscountZone.DISCOUNT),
        (109.0, PremiumDiscountZone.PREMIUM),
        (105.0, PremiumDiscountZone.EQUILIBRIUM),
        (106.0, PremiumDiscountZone.PREMIUM_EDGE),
        (104.0, PremiumDiscountZone.DISCOUNT_EDGE),
    ])
    def test_zones(self, analyzer, price, zone):
        reading = analyzer.premium_discount(self._make_range_view(price))
        assert reading.zone == zone
        assert reading.equilibrium == pytest.approx(105.0)

    def test_discount_favours_longs(self, analyzer):
        reading = analyzer.premium_discount(self._make_range_view(101.0))
        assert reading.zone.favours(Bias.BULLISH)
        assert not reading.zone.favours(Bias.BEARISH)

    def test_short_window_is_neutral(self, analyzer):
        reading = analyzer.premium_discount(self._make_range_view(101.0, n=5))
        assert reading.zone == PremiumDiscountZone.NEUTRAL
