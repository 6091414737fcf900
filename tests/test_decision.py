"""
Tests for DecisionEngine.

Detectors are MagicMocks returning real result objects so each gate can be
opened or closed independently; sessions and scoring are real.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from killzone.config.strategy import load_strategy_config
from killzone.core.candles import Candle, CandleSeries, EvaluationCursor
from killzone.core.enums import Action, Bias, ConfluenceFactor, CyclePhase, EntryModel, PremiumDiscountZone
from killzone.core.exceptions import TemporalViolation
from killzone.core.models import (
    BiasAlignment,
    BiasReading,
    CycleAnalysis,
    GapEntry,
    PremiumDiscountReading,
    SweepCheck,
)
from killzone.data.base import NewsCheck
from killzone.intelligence.decision import DecisionEngine
from killzone.intelligence.volatility import VolatilityReading

MONDAY = datetime(2025, 3, 3, 13, 0, tzinfo=timezone.utc)
SATURDAY = datetime(2025, 3, 8, 13, 0, tzinfo=timezone.utc)

# HTF_BIAS 2 + KILLZONE 1 + SILVER_BULLET 0.5 + LIQUIDITY_SWEPT 2 + FVG 1.5 + PD_ZONE 1
FULL_SCORE = 8.0


def _make_series(start: datetime, n: int = 20, minutes: int = 5) -> CandleSeries:
    candles = [
        Candle(start + timedelta(minutes=minutes * i), 100, 100.3, 99.7, 100.1)
        for i in range(n)
    ]
    return CandleSeries(candles, "ETH/USD", f"{minutes}m")


def _entry_view(start: datetime = MONDAY, k: int = 18):
    """Cursor at start + 5k minutes; k=18 is 14:30 (NY AM silver bullet)."""
    series = _make_series(start)
    return series.at(EvaluationCursor(series[k].timestamp))


def _htf_views(cursor_ts: datetime):
    series = _make_series(cursor_ts - timedelta(days=10), n=40, minutes=240)
    return {"4h": series.closed_before(EvaluationCursor(cursor_ts), timedelta(hours=4))}


def _alignment(bias: Bias = Bias.BULLISH, aligned: bool = True) -> BiasAlignment:
    if aligned:
        return BiasAlignment({}, bias, True, 1.0, 1, 0)
    return BiasAlignment({}, bias, False, 0.5, 1, 1)


@pytest.fixture
def detectors():
    structure = MagicMock()
    structure.align_bias.return_value = _alignment()
    structure.premium_discount.return_value = PremiumDiscountReading(
        PremiumDiscountZone.DISCOUNT, 0.2, 110.0, 100.0, 105.0, 102.0
    )
    gaps = MagicMock()
    gaps.entry.return_value = GapEntry(valid=True, reason="Price inside bullish FVG", is_inside=True)
    liquidity = MagicMock()
    liquidity.has_recent_sweep.return_value = SweepCheck(
        swept=True, reason="sell-side liquidity swept 3 candles ago", candles_since_sweep=3
    )
    cycle = MagicMock()
    cycle.analyze.return_value = CycleAnalysis(
        CyclePhase.UNKNOWN, False, 0.0, Bias.BULLISH, "Waiting for manipulation/distribution"
    )
    volatility = MagicMock()
    volatility.check.return_value = VolatilityReading(True, 0.5, 0.5, "ATR 0.500% in range")
    divergence = MagicMock()
    return {
        "structure": structure,
        "gaps": gaps,
        "liquidity": liquidity,
        "cycle": cycle,
        "volatility": volatility,
        "divergence": divergence,
    }


def _make_engine(detectors, overrides=None) -> DecisionEngine:
    return DecisionEngine(load_strategy_config(overrides), **detectors)


@pytest.fixture
def engine(detectors):
    return _make_engine(detectors)


def _evaluate(engine, view=None, **kwargs):
    view = view if view is not None else _entry_view()
    return engine.evaluate(view, _htf_views(view.cursor.timestamp), **kwargs)


class TestTrade:

    def test_long_at_exact_threshold(self, detectors):
        engine = _make_engine(
            detectors, {"confluence": {"min_score": FULL_SCORE, "high_conviction_score": FULL_SCORE}}
        )
        decision = _evaluate(engine)
        assert decision.action == Action.LONG
        assert decision.direction == Bias.BULLISH
        assert decision.entry_model == EntryModel.FVG
        assert decision.confluence_score == pytest.approx(FULL_SCORE)
        assert decision.reasons[-1] == "TRADE SIGNAL: LONG"
        assert decision.timestamp == _entry_view().cursor.timestamp

    def test_just_below_threshold(self, detectors):
        engine = _make_engine(
            detectors, {"confluence": {"min_score": FULL_SCORE + 0.5, "high_conviction_score": 9.0}}
        )
        decision = _evaluate(engine)
        assert decision.action == Action.NO_TRADE
        assert decision.reasons[-1].startswith("LOW CONFLUENCE: 8/8.5 required")
        assert decision.direction == Bias.BULLISH

    def test_short(self, engine, detectors):
        detectors["structure"].align_bias.return_value = _alignment(Bias.BEARISH)
        decision = _evaluate(engine)
        assert decision.action == Action.SHORT
        # discount zone does not favour shorts
        assert decision.confluence_score == pytest.approx(FULL_SCORE - 1.0)

    def test_external_factors_add_weight(self, engine):
        decision = _evaluate(engine, external_factors=[ConfluenceFactor.ETF_FLOWS, ConfluenceFactor.SMT_DIVERGENCE])
        # only external factors are accepted from outside the pipeline
        assert decision.confluence_score == pytest.approx(FULL_SCORE + 2.0)

    def test_mmxm_model(self, engine, detectors):
        detectors["gaps"].entry.return_value = GapEntry(valid=False, reason="No unfilled FVG found")
        detectors["cycle"].analyze.return_value = CycleAnalysis(
            CyclePhase.DISTRIBUTION, True, 0.72, Bias.BULLISH, "MMXM DISTRIBUTION"
        )
        decision = _evaluate(engine)
        assert decision.action == Action.LONG
        assert decision.entry_model == EntryModel.MMXM

    def test_idempotent(self, engine):
        view = _entry_view()
        first = _evaluate(engine, view).to_dict()
        second = _evaluate(engine, view).to_dict()
        assert first == second
        assert first["action"] == "LONG"


class TestGates:

    def test_weekend_skips_before_detectors(self, engine, detectors):
        decision = _evaluate(engine, _entry_view(SATURDAY))
        assert decision.action == Action.NO_TRADE
        assert decision.reasons == ("SKIP: Weekend - no institutional activity",)
        detectors["structure"].align_bias.assert_not_called()
        detectors["volatility"].check.assert_not_called()

    def test_news_blackout(self, engine):
        decision = _evaluate(engine, news=NewsCheck(blackout=True, event="CPI", minutes_until=15))
        assert decision.action == Action.NO_TRADE
        assert decision.reasons[-1] == "NEWS BLACKOUT: CPI in 15min"

    def test_outside_killzone(self, engine):
        # 11:00 UTC
        decision = _evaluate(engine, _entry_view(MONDAY - timedelta(hours=2), k=0))
        assert decision.reasons[-1] == "OUTSIDE KILLZONE: Outside killzone (next: NEW_YORK_AM in 120min)"

    def test_volatility(self, engine, detectors):
        detectors["volatility"].check.return_value = VolatilityReading(
            False, 0.0, 0.01, "Volatility too low: ATR 0.010% < 0.02%"
        )
        decision = _evaluate(engine)
        assert decision.reasons[-1].startswith("VOLATILITY: Volatility too low")

    def test_no_alignment(self, engine, detectors):
        detectors["structure"].align_bias.return_value = _alignment(Bias.NEUTRAL, aligned=False)
        decision = _evaluate(engine)
        assert decision.reasons[-1] == "NO HTF ALIGNMENT: 1 bullish / 1 bearish"
        assert decision.direction is None

    def test_ltf_fallback(self, detectors):
        detectors["structure"].align_bias.return_value = _alignment(Bias.NEUTRAL, aligned=False)
        detectors["structure"].determine_bias.return_value = BiasReading(Bias.BULLISH, 1.0, "HH:3 HL:3")
        engine = _make_engine(detectors, {"bias": {"allow_ltf_fallback": True}})
        decision = _evaluate(engine)
        assert decision.action == Action.LONG
        # no HTF_BIAS weight when falling back
        assert decision.confluence_score == pytest.approx(FULL_SCORE - 2.0)
        assert any(r.startswith("LTF BIAS FALLBACK") for r in decision.reasons)

    def test_sweep_required(self, engine, detectors):
        detectors["liquidity"].has_recent_sweep.return_value = SweepCheck(
            swept=False, reason="No liquidity sweep detected"
        )
        decision = _evaluate(engine)
        assert decision.reasons[-1] == "NO LIQUIDITY SWEEP: No liquidity sweep detected"

    def test_sweep_optional(self, detectors):
        detectors["liquidity"].has_recent_sweep.return_value = SweepCheck(
            swept=False, reason="No liquidity sweep detected"
        )
        engine = _make_engine(detectors, {"liquidity": {"sweep_required": False}})
        decision = _evaluate(engine)
        assert decision.action == Action.LONG
        assert decision.confluence_score == pytest.approx(FULL_SCORE - 2.0)

    def test_no_entry_model(self, engine, detectors):
        detectors["gaps"].entry.return_value = GapEntry(valid=False, reason="No unfilled FVG found")
        decision = _evaluate(engine)
        assert decision.reasons[-1] == "NO VALID ENTRY MODEL: No model conditions met"

    def test_gap_entry_required(self, detectors):
        detectors["gaps"].entry.return_value = GapEntry(valid=False, reason="No unfilled FVG found")
        detectors["cycle"].analyze.return_value = CycleAnalysis(
            CyclePhase.DISTRIBUTION, True, 0.72, Bias.BULLISH, "MMXM DISTRIBUTION"
        )
        engine = _make_engine(detectors, {"entry_models": {"require_gap_entry": True}})
        decision = _evaluate(engine)
        assert decision.reasons[-1] == "NO VALID ENTRY MODEL: gap entry required (No unfilled FVG found)"

    def test_smt_required_without_reference(self, detectors):
        engine = _make_engine(detectors, {"smt": {"required": True}})
        decision = _evaluate(engine)
        assert decision.reasons[-1] == "SMT REQUIRED: No reference asset"

    def test_daily_limit(self, engine):
        decision = _evaluate(engine, trades_today=1)
        assert decision.action == Action.NO_TRADE
        assert decision.reasons[-1] == "DAILY LIMIT: Already traded today (1)"

    def test_high_conviction_second_trade(self, detectors):
        engine = _make_engine(detectors, {"limits": {"allow_second_trade_if_high_conviction": True}})
        decision = _evaluate(engine, trades_today=1)
        assert decision.action == Action.LONG
        assert "HIGH CONVICTION (8): allowing additional trade" in decision.reasons


class TestTemporalGuards:

    def test_retrospective_entry_view(self, engine):
        view = _make_series(MONDAY).retrospective()
        with pytest.raises(TemporalViolation):
            engine.evaluate(view, {})

    def test_htf_view_from_future(self, engine):
        view = _entry_view()
        future = _htf_views(view.cursor.timestamp + timedelta(hours=8))
        with pytest.raises(TemporalViolation):
            engine.evaluate(view, future)

    def test_retrospective_reference(self, engine):
        view = _entry_view()
        with pytest.raises(TemporalViolation):
            engine.evaluate(view, {}, reference_view=_make_series(MONDAY).retrospective())


class TestRealDetectors:

    def test_flat_market_has_no_bias(self):
        engine = DecisionEngine()
        decision = _evaluate(engine)
        assert decision.action == Action.NO_TRADE
        assert decision.reasons[-1].startswith("NO HTF ALIGNMENT")
        assert decision.to_dict() == _evaluate(engine).to_dict()

    def test_candles_after_cursor_are_ignored(self):
        engine = DecisionEngine()
        base = _make_series(MONDAY, n=30)
        cursor = EvaluationCursor(base[18].timestamp)
        wild = [Candle(c.timestamp, 50, 500, 1, 400) for c in base.candles[19:]]
        mutated = CandleSeries(list(base.candles[:19]) + wild, "ETH/USD", "5m")
        htf = _htf_views(cursor.timestamp)
        assert (
            engine.evaluate(base.at(cursor), htf).to_dict()
            == engine.evaluate(mutated.at(cursor), htf).to_dict()
        )


# Monday 12:00-14:30 on 5m: equal lows at 99.00 (candles 8, 14), sell-side
# sweeps at candles 22-23, displacement gap 99.60-99.90 from candles 24-26,
# price back inside the gap at the 14:30 cursor (candle 30).
RANGE_EVEN = (99.50, 99.80, 99.30, 99.70)
RANGE_ODD = (99.70, 99.90, 99.40, 99.50)
POOL_LOW = (99.50, 99.80, 99.00, 99.70)
SETUP = [
    (99.20, 99.35, 98.80, 99.30),
    (99.30, 99.45, 99.20, 99.40),
    (99.40, 99.60, 99.35, 99.55),
    (99.55, 100.10, 99.50, 100.05),
    (100.05, 100.30, 99.90, 100.20),
    (100.20, 100.25, 99.95, 100.00),
    (100.00, 100.05, 99.85, 99.90),
    (99.90, 99.95, 99.78, 99.82),
]
CURSOR_CANDLE = (99.80, 99.90, 99.70, 99.85)
SETUP_START = MONDAY - timedelta(hours=1)

# Triangle wave, period 6: peaks at i % 6 == 3
TRI = (0, 1, 2, 3, 2, 1)


def _setup_rows():
    rows = []
    for i in range(22):
        if i in (8, 14):
            rows.append(POOL_LOW)
        else:
            rows.append(RANGE_EVEN if i % 2 == 0 else RANGE_ODD)
    return rows + SETUP + [CURSOR_CANDLE]


def _setup_series(rows, symbol="ETH/USD", scale=1.0) -> CandleSeries:
    candles = [
        Candle(SETUP_START + timedelta(minutes=5 * i), *(p * scale for p in row))
        for i, row in enumerate(rows)
    ]
    return CandleSeries(candles, symbol, "5m")


def _uptrend_htf(cursor_ts: datetime):
    """Closed 4h zigzag with rising swing highs and lows."""
    start = cursor_ts - timedelta(days=10)
    candles = []
    for i in range(40):
        mid = 100.0 + 0.5 * i + 2.0 * TRI[i % 6]
        candles.append(Candle(start + timedelta(hours=4 * i), mid - 0.1, mid + 0.3, mid - 0.3, mid + 0.1))
    series = CandleSeries(candles, "ETH/USD", "4h")
    return {"4h": series.closed_before(EvaluationCursor(cursor_ts), timedelta(hours=4))}


def _perturbed_rows():
    """Same history; the cursor candle keeps its open, everything after it is noise."""
    rows = _setup_rows()
    o = rows[-1][0]
    rows[-1] = (o, o + 4.0, o - 4.0, o - 3.5)
    noise = [(90.0, 130.0, 60.0, 70.0), (70.0, 140.0, 50.0, 135.0)] * 5
    return rows + noise


class TestRealDetectorSetup:

    @pytest.fixture
    def cursor(self):
        return EvaluationCursor(SETUP_START + timedelta(minutes=5 * 30))

    def _decide(self, rows, cursor):
        engine = DecisionEngine()
        entry = _setup_series(rows).at(cursor)
        reference = _setup_series(rows, "BTC/USD", 600.0).at(cursor)
        return engine.evaluate(entry, _uptrend_htf(cursor.timestamp), reference_view=reference)

    def test_sweep_and_gap_give_long(self, cursor):
        decision = self._decide(_setup_rows(), cursor)
        assert decision.action == Action.LONG
        assert decision.entry_model == EntryModel.FVG
        assert decision.confluence_score >= 7.0
        assert any(r.startswith("LIQUIDITY: sell-side liquidity swept") for r in decision.reasons)
        assert any(r.startswith("ENTRY MODEL: FVG") for r in decision.reasons)
        assert any(r.startswith("CONFLUENCE:") for r in decision.reasons)
        assert decision.analysis_detail["entry_models"]["fvg"].is_inside

    def test_future_candles_do_not_change_decision(self, cursor):
        truncated = self._decide(_setup_rows(), cursor)
        perturbed = self._decide(_perturbed_rows(), cursor)
        assert truncated.action == Action.LONG
        assert perturbed.to_dict() == truncated.to_dict()
