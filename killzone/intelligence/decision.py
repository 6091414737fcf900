"""
Killzone Decision Engine

Ordered gates, each short-circuiting to NO_TRADE with a reason:

  1. Calendar        weekend, holiday, day filter
  2. News blackout   result supplied by the news collaborator
  3. Session window  must be inside an enabled killzone
  4. Volatility      ATR % of the entry candles in range
  5. HTF bias        aligned and non-neutral (optional LTF fallback)
  6. Liquidity sweep mandatory when liquidity.sweep_required
  7. Entry model     gap entry, tradeable cycle or Judas swing
  8. Confluence      weighted score >= confluence.min_score
  9. Daily limit     bypassed only by a high-conviction score

The engine is a pure function of its inputs: it reads the clock from the
entry view's cursor, never from the system, and refuses retrospective views.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from killzone.config.strategy import StrategyConfig, load_strategy_config
from killzone.core.candles import CausalView
from killzone.core.enums import EXTERNAL_FACTORS, Action, Bias, ConfluenceFactor, EntryModel
from killzone.core.exceptions import TemporalViolation
from killzone.core.models import Decision, DivergenceCheck, GapEntry, JudasSwing
from killzone.data.base import NO_NEWS, NewsCheck
from killzone.scanners.cycle import CycleClassifier
from killzone.scanners.divergence import DivergenceAnalyzer
from killzone.scanners.fair_value_gap import GapDetector
from killzone.scanners.liquidity import LiquidityTracker
from killzone.scanners.structure import StructureAnalyzer
from killzone.scheduler.sessions import SessionStatus, SessionWindowEvaluator

from .scorer import ConfluenceScorer
from .volatility import VolatilityFilter

logger = logging.getLogger(__name__)


class _Trace:
    """Accumulates reasons and analysis detail for one evaluation."""

    def __init__(self) -> None:
        self.reasons: List[str] = []
        self.detail: Dict[str, Any] = {}
        self.direction: Optional[Bias] = None
        self.score: float = 0.0

    def no_trade(self, reason: str, timestamp) -> Decision:
        self.reasons.append(reason)
        return Decision(
            action=Action.NO_TRADE,
            direction=self.direction,
            confluence_score=self.score,
            reasons=tuple(self.reasons),
            timestamp=timestamp,
            analysis_detail=self.detail,
        )


class DecisionEngine:
    """
    Runs the gate sequence over causal views of one evaluation.

    All detectors are injectable; defaults are built from the config.
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        structure: Optional[StructureAnalyzer] = None,
        gaps: Optional[GapDetector] = None,
        liquidity: Optional[LiquidityTracker] = None,
        divergence: Optional[DivergenceAnalyzer] = None,
        cycle: Optional[CycleClassifier] = None,
        sessions: Optional[SessionWindowEvaluator] = None,
        volatility: Optional[VolatilityFilter] = None,
        scorer: Optional[ConfluenceScorer] = None,
    ) -> None:
        self.config = load_strategy_config(config)
        self.structure = structure or StructureAnalyzer(self.config)
        self.gaps = gaps or GapDetector(self.config)
        self.liquidity = liquidity or LiquidityTracker(self.config)
        self.divergence = divergence or DivergenceAnalyzer(self.config)
        self.cycle = cycle or CycleClassifier(
            self.config, liquidity=self.liquidity, gaps=self.gaps, structure=self.structure
        )
        self.sessions = sessions or SessionWindowEvaluator(self.config)
        self.volatility = volatility or VolatilityFilter(self.config)
        self.scorer = scorer or ConfluenceScorer(self.config)

    @staticmethod
    def _check_views(
        entry_view: CausalView,
        htf_views: Mapping[str, CausalView],
        reference_view: Optional[CausalView],
    ) -> None:
        if entry_view.is_retrospective:
            raise TemporalViolation("Decision requires an online entry view, got a retrospective one")
        now = entry_view.cursor.timestamp
        others = dict(htf_views)
        if reference_view is not None:
            others["reference"] = reference_view
        for name, view in others.items():
            if view.is_retrospective:
                raise TemporalViolation(f"{name} view is retrospective")
            if view.cursor.timestamp > now:
                raise TemporalViolation(
                    f"{name} view cursor {view.cursor.timestamp.isoformat()} is after "
                    f"entry cursor {now.isoformat()}"
                )

    def evaluate(
        self,
        entry_view: CausalView,
        htf_views: Mapping[str, CausalView],
        reference_view: Optional[CausalView] = None,
        news: NewsCheck = NO_NEWS,
        external_factors: Iterable[ConfluenceFactor] = (),
        trades_today: int = 0,
    ) -> Decision:
        """
        Evaluate the gates at the entry view's cursor.

        Args:
            entry_view: Online view of the entry timeframe (cursor candle in progress).
            htf_views: Closed higher-timeframe views keyed by timeframe label.
            reference_view: Online view of the correlated asset for SMT divergence.
            news: Blackout status from the news collaborator.
            external_factors: External factors that support the trade direction.
            trades_today: Trades already taken on the cursor's day.

        Raises:
            TemporalViolation: a retrospective view or a view from the future.
        """
        self._check_views(entry_view, htf_views, reference_view)
        now = entry_view.cursor.timestamp
        trace = _Trace()

        # 1. Calendar
        trading_day, day_reason = self.sessions.is_trading_day(now)
        if not trading_day:
            return trace.no_trade(f"SKIP: {day_reason}", now)
        trace.reasons.append(f"CALENDAR: {day_reason}")

        # 2. News
        trace.detail["news"] = news
        if news.blackout:
            when = f" in {news.minutes_until:.0f}min" if news.minutes_until is not None else ""
            return trace.no_trade(f"NEWS BLACKOUT: {news.event or 'high-impact event'}{when}", now)
        trace.reasons.append("NEWS: clear")

        # 3. Session window
        status = self.sessions.status(now)
        trace.detail["session"] = status
        if not status.can_trade:
            reason = f"OUTSIDE KILLZONE: {status.reason}"
            if status.next_window:
                reason += f" (next: {status.next_window} in {status.minutes_until_next}min)"
            return trace.no_trade(reason, now)
        trace.reasons.append(f"SESSION: {status.reason} (quality {status.quality})")

        # 4. Volatility
        volatility = self.volatility.check(entry_view)
        trace.detail["volatility"] = volatility
        if not volatility.in_range:
            return trace.no_trade(f"VOLATILITY: {volatility.reason}", now)
        trace.reasons.append(f"VOLATILITY: {volatility.reason}")

        # 5. Higher-timeframe bias
        direction, bias_reason, htf_aligned = self._resolve_bias(entry_view, htf_views, trace)
        if direction is None:
            return trace.no_trade(bias_reason, now)
        trace.direction = direction
        trace.reasons.append(bias_reason)

        # 6. Liquidity sweep
        sweep = self.liquidity.has_recent_sweep(entry_view, direction)
        trace.detail["liquidity_sweep"] = sweep
        if not sweep.swept and self.config.liquidity.sweep_required:
            return trace.no_trade(f"NO LIQUIDITY SWEEP: {sweep.reason}", now)
        trace.reasons.append(f"LIQUIDITY: {sweep.reason}")

        # 7. Entry models
        model, gap_entry, cycle_ok, models_reason = self._entry_models(entry_view, direction, status, trace)
        if model is None:
            return trace.no_trade(f"NO VALID ENTRY MODEL: {models_reason}", now)
        trace.reasons.append(f"ENTRY MODEL: {model.value} ({models_reason})")

        # 8. Confluence
        smt = self._divergence(entry_view, reference_view, direction)
        trace.detail["smt"] = smt
        if self.config.smt.required and not smt.confirmed:
            return trace.no_trade(f"SMT REQUIRED: {smt.reason}", now)

        pd_zone = self.structure.premium_discount(entry_view)
        trace.detail["pd_zone"] = pd_zone

        present = []
        if htf_aligned:
            present.append(ConfluenceFactor.HTF_BIAS)
        present.append(ConfluenceFactor.KILLZONE)
        if status.silver_bullet:
            present.append(ConfluenceFactor.SILVER_BULLET)
        if sweep.swept:
            present.append(ConfluenceFactor.LIQUIDITY_SWEPT)
        if gap_entry is not None and gap_entry.valid:
            present.append(ConfluenceFactor.FVG)
        if cycle_ok:
            present.append(ConfluenceFactor.CYCLE_TRADEABLE)
        if smt.confirmed:
            present.append(ConfluenceFactor.SMT_DIVERGENCE)
        if pd_zone.zone.favours(direction):
            present.append(ConfluenceFactor.PD_ZONE)
        present.extend(f for f in external_factors if f in EXTERNAL_FACTORS)

        confluence = self.scorer.score(present)
        trace.detail["confluence"] = confluence
        trace.score = confluence.score
        min_score = self.config.confluence.min_score
        if confluence.score < min_score:
            return trace.no_trade(
                f"LOW CONFLUENCE: {confluence.score:g}/{min_score:g} required "
                f"(present: {', '.join(f.value for f in confluence.present_factors)})",
                now,
            )
        trace.reasons.append(f"CONFLUENCE: {confluence.score:g}/{confluence.max_score:g}")

        # 9. Daily trade limit
        limits = self.config.limits
        if trades_today >= limits.max_trades_per_day:
            if not (confluence.is_high_conviction and limits.allow_second_trade_if_high_conviction):
                return trace.no_trade(f"DAILY LIMIT: Already traded today ({trades_today})", now)
            trace.reasons.append(f"HIGH CONVICTION ({confluence.score:g}): allowing additional trade")

        action = Action.LONG if direction == Bias.BULLISH else Action.SHORT
        trace.reasons.append(f"TRADE SIGNAL: {action.value}")
        logger.info(
            "Decision %s at %s (model %s, confluence %.2f)",
            action.value, now.isoformat(), model.value, confluence.score,
        )
        return Decision(
            action=action,
            direction=direction,
            confluence_score=confluence.score,
            reasons=tuple(trace.reasons),
            timestamp=now,
            entry_model=model,
            analysis_detail=trace.detail,
        )

    def _resolve_bias(
        self,
        entry_view: CausalView,
        htf_views: Mapping[str, CausalView],
        trace: _Trace,
    ) -> Tuple[Optional[Bias], str, bool]:
        """(direction, reason, htf_aligned); direction None fails the gate."""
        alignment = self.structure.align_bias(htf_views)
        trace.detail["htf_bias"] = alignment
        if alignment.aligned and alignment.overall_bias != Bias.NEUTRAL:
            return (
                alignment.overall_bias,
                f"HTF BIAS: {alignment.overall_bias.value} ({alignment.alignment * 100:.0f}% aligned)",
                True,
            )

        if self.config.bias.allow_ltf_fallback:
            ltf = self.structure.determine_bias(entry_view)
            trace.detail["ltf_bias"] = ltf
            if ltf.bias != Bias.NEUTRAL:
                return ltf.bias, f"LTF BIAS FALLBACK: {ltf.bias.value} ({ltf.reason})", False

        return (
            None,
            f"NO HTF ALIGNMENT: {alignment.bullish_count} bullish / "
            f"{alignment.bearish_count} bearish",
            False,
        )

    def _entry_models(
        self,
        view: CausalView,
        direction: Bias,
        status: SessionStatus,
        trace: _Trace,
    ) -> Tuple[Optional[EntryModel], Optional[GapEntry], bool, str]:
        """(model, gap entry, cycle tradeable, reason); model None fails the gate."""
        models = self.config.entry_models
        found: List[EntryModel] = []
        details: Dict[str, Any] = {}

        gap_entry = None
        if models.fvg_enabled:
            gap_entry = self.gaps.entry(view, direction)
            details["fvg"] = gap_entry
            if gap_entry.valid:
                found.append(EntryModel.FVG)

        cycle_ok = False
        if models.mmxm_enabled:
            analysis = self.cycle.analyze(view, direction)
            details["mmxm"] = analysis
            cycle_ok = analysis.tradeable and analysis.direction == direction
            if cycle_ok:
                found.append(EntryModel.MMXM)

        if models.judas_enabled and status.session_open:
            judas = self._judas(view, direction, status.session_open)
            details["judas_swing"] = judas
            if judas.tradeable and judas.expected_reversal == direction:
                found.append(EntryModel.JUDAS_SWING)

        trace.detail["entry_models"] = details

        if models.require_gap_entry and EntryModel.FVG not in found:
            reason = gap_entry.reason if gap_entry is not None else "FVG entries disabled"
            return None, gap_entry, cycle_ok, f"gap entry required ({reason})"
        if not found:
            return None, gap_entry, cycle_ok, "No model conditions met"
        return found[0], gap_entry, cycle_ok, ", ".join(m.value for m in found)

    def _judas(self, view: CausalView, direction: Bias, session: str) -> JudasSwing:
        opened = self.sessions.session_open_at(view.cursor.timestamp.date(), session)
        index = next(
            (i for i, c in enumerate(view.completed) if c.timestamp >= opened),
            None,
        )
        if index is None:
            return JudasSwing(detected=False, tradeable=False, reason="No completed candle since session open")
        return self.cycle.detect_judas_swing(view, index, direction)

    def _divergence(
        self,
        view: CausalView,
        reference_view: Optional[CausalView],
        direction: Bias,
    ) -> DivergenceCheck:
        if not self.config.smt.enabled:
            return DivergenceCheck(confirmed=False, reason="SMT disabled")
        if reference_view is None:
            return DivergenceCheck(confirmed=False, reason="No reference asset")
        return self.divergence.confirm(view, reference_view, direction)
