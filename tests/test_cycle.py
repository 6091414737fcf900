"""
Tests for CycleClassifier.

Liquidity, gap and structure detectors are replaced by MagicMocks so each
phase can be driven directly.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from killzone.core.candles import Candle, CandleSeries, EvaluationCursor
from killzone.core.enums import Bias, CyclePhase, LiquiditySide
from killzone.core.models import LiquidityPool, SweepEvent
from killzone.scanners.cycle import PHASE_CONFIDENCE, CycleClassifier

T0 = datetime(2025, 3, 3, 13, 0, tzinfo=timezone.utc)


def _make_view(rows, price: float):
    candles = [Candle(T0 + timedelta(minutes=5 * i), *row) for i, row in enumerate(rows)]
    candles.append(Candle(T0 + timedelta(minutes=5 * len(rows)), price, price, price, price))
    series = CandleSeries(candles, "ETH/USD", "5m")
    return series.at(EvaluationCursor(series[-1].timestamp))


def _make_sweep(candle_row=(100.0, 101.0, 99.9, 99.95), index: int = 15) -> SweepEvent:
    pool = LiquidityPool(LiquiditySide.BUY_SIDE, 100.5, 2, T0, T0)
    candle = Candle(T0 + timedelta(minutes=5 * index), *candle_row)
    return SweepEvent(
        pool=pool,
        sweep_candle=candle,
        sweep_index=index,
        direction=Bias.BEARISH,
        confirming_candles=(),
        confirmed_at=candle.timestamp,
        strength=20.0,
    )


@pytest.fixture
def liquidity():
    fake = MagicMock()
    fake.sweeps.return_value = [_make_sweep()]
    fake.equal_highs.return_value = []
    fake.equal_lows.return_value = []
    return fake


@pytest.fixture
def gaps():
    fake = MagicMock()
    fake.recent_unfilled.return_value = [MagicMock()]
    return fake


@pytest.fixture
def structure():
    fake = MagicMock()
    fake.has_break.return_value = True
    return fake


@pytest.fixture
def classifier(liquidity, gaps, structure):
    return CycleClassifier(liquidity=liquidity, gaps=gaps, structure=structure)


BEARISH_ROWS = [(100.0, 100.1, 99.4, 99.5)] * 20


class TestAnalyze:

    def test_distribution(self, classifier, structure):
        analysis = classifier.analyze(_make_view(BEARISH_ROWS, 99.5), Bias.BULLISH)
        assert analysis.phase == CyclePhase.DISTRIBUTION
        assert analysis.tradeable
        assert analysis.confidence == pytest.approx(0.72)
        # sweep direction overrides the HTF bias
        assert analysis.direction == Bias.BEARISH
        assert not analysis.reversion_reached
        structure.has_break.assert_called_once()
        assert structure.has_break.call_args[0][1] == Bias.BEARISH

    def test_reversion_reached(self, classifier):
        # halfway back from the 99.4 low toward the 101 sweep high
        analysis = classifier.analyze(_make_view(BEARISH_ROWS, 100.5), Bias.BEARISH)
        assert analysis.reversion_reached
        assert analysis.phase == CyclePhase.DISTRIBUTION
        assert analysis.tradeable

    def test_every_phase_has_a_confidence(self):
        assert set(PHASE_CONFIDENCE) == set(CyclePhase)

    def test_manipulation_complete_without_break(self, classifier, structure):
        structure.has_break.return_value = False
        analysis = classifier.analyze(_make_view(BEARISH_ROWS, 99.5), Bias.BEARISH)
        assert analysis.phase == CyclePhase.MANIPULATION_COMPLETE
        assert analysis.tradeable
        assert analysis.confidence == pytest.approx(0.68)

    def test_unknown_without_sweep(self, classifier, liquidity):
        liquidity.sweeps.return_value = []
        analysis = classifier.analyze(_make_view(BEARISH_ROWS, 99.5), Bias.BULLISH)
        assert analysis.phase == CyclePhase.UNKNOWN
        assert not analysis.tradeable
        assert analysis.direction == Bias.BULLISH
        assert analysis.sweep is None

    def test_weak_manipulation(self, classifier, liquidity):
        liquidity.sweeps.return_value = [_make_sweep((100.0, 100.1, 99.9, 100.05))]
        manipulation = classifier.detect_manipulation(_make_view(BEARISH_ROWS, 99.5))
        assert not manipulation["detected"]
        assert manipulation["reason"].startswith("Weak manipulation (move: 0.10%")

    def test_to_dict_drops_sweep_object(self, classifier):
        d = classifier.analyze(_make_view(BEARISH_ROWS, 99.5), Bias.BULLISH).to_dict()
        assert d["phase"] == "DISTRIBUTION"
        assert "sweep" not in d["details"]["manipulation"]


class TestAccumulation:

    def test_insufficient_candles(self, classifier):
        result = classifier.detect_accumulation(_make_view(BEARISH_ROWS, 99.5))
        assert not result["detected"]
        assert result["reason"] == "Insufficient candles"

    def test_compression_with_equal_highs(self, classifier, liquidity):
        wide = [(100.0, 102.0, 98.0, 100.5)] * 20
        tight = [(100.0, 100.2, 99.8, 100.1)] * 10
        liquidity.equal_highs.return_value = [LiquidityPool(LiquiditySide.BUY_SIDE, 100.2, 3, T0, T0)]
        result = classifier.detect_accumulation(_make_view(wide + tight + BEARISH_ROWS, 99.5))
        assert result["range_compression"]
        assert result["liquidity_buildup"]
        assert result["detected"]
        assert result["liquidity_above"] == 100.2


JUDAS_ROWS = [
    (100.0, 100.1, 99.7, 99.8),
    (99.8, 99.85, 99.5, 99.6),
    (99.6, 99.65, 99.4, 99.5),
] + [(99.5, 99.9, 99.45, 99.8)] * 9


class TestJudasSwing:

    @pytest.fixture
    def view(self):
        return _make_view(JUDAS_ROWS, 99.8)

    def test_tradeable(self, classifier, liquidity, view):
        liquidity.sweeps.return_value = [_make_sweep(JUDAS_ROWS[2], index=2)]
        judas = classifier.detect_judas_swing(view, 0, Bias.BULLISH)
        assert judas.tradeable
        assert judas.judas_direction == Bias.BEARISH
        assert judas.expected_reversal == Bias.BULLISH
        assert judas.judas_extreme == pytest.approx(99.4)
        assert judas.move_percent == pytest.approx(0.6)
        assert judas.reason == "Judas swing swept liquidity and reversed"

    def test_sweep_before_open_does_not_count(self, classifier, liquidity, view):
        early = _make_sweep(JUDAS_ROWS[2], index=-1)
        liquidity.sweeps.return_value = [early]
        judas = classifier.detect_judas_swing(view, 0, Bias.BULLISH)
        assert not judas.tradeable
        assert judas.reason == "Judas move did not sweep liquidity"

    def test_aligned_move_is_not_judas(self, classifier, view):
        judas = classifier.detect_judas_swing(view, 0, Bias.BEARISH)
        assert not judas.detected
        assert judas.reason == "Initial move aligned with HTF bias"

    def test_neutral_bias(self, classifier, view):
        assert classifier.detect_judas_swing(view, 0, Bias.NEUTRAL).reason == "No HTF bias"

    def test_open_too_late(self, classifier, view):
        judas = classifier.detect_judas_swing(view, 11, Bias.BULLISH)
        assert judas.reason == "Invalid session open index"
