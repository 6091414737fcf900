"""
Cycle Classifier - market maker cycle (accumulation, manipulation,
distribution, reversion) and the Judas swing at session opens.

The classifier owns no detection logic of its own for liquidity, gaps or
structure: those detectors are injected so tests can swap in fakes.
"""

import logging
from typing import Any, Dict, Optional

from killzone.config.strategy import StrategyConfig
from killzone.core.candles import CausalView
from killzone.core.enums import Bias, CyclePhase, LiquiditySide
from killzone.core.models import CycleAnalysis, JudasSwing, SweepEvent

from .base import BaseDetector
from .fair_value_gap import GapDetector
from .liquidity import LiquidityTracker
from .structure import StructureAnalyzer

logger = logging.getLogger(__name__)

PHASE_CONFIDENCE = {
    CyclePhase.DISTRIBUTION: 0.72,
    CyclePhase.MANIPULATION_COMPLETE: 0.68,
    CyclePhase.ACCUMULATION: 0.3,
    CyclePhase.UNKNOWN: 0.0,
}


class CycleClassifier(BaseDetector):
    """
    Classifies the current market maker cycle phase.

    Tradeable phases are DISTRIBUTION and MANIPULATION_COMPLETE. The expected
    direction is that of the manipulation sweep, else the higher-timeframe bias.
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        liquidity: Optional[LiquidityTracker] = None,
        gaps: Optional[GapDetector] = None,
        structure: Optional[StructureAnalyzer] = None,
    ) -> None:
        super().__init__(config)
        self.liquidity = liquidity or LiquidityTracker(self.config)
        self.gaps = gaps or GapDetector(self.config)
        self.structure = structure or StructureAnalyzer(self.config)

    def detect_accumulation(self, view: CausalView) -> Dict[str, Any]:
        """Range compression plus liquidity building up, read before the recent move."""
        cfg = self.config.cycle
        window = view.drop_recent(cfg.accumulation_offset).tail(cfg.accumulation_window)
        candles = window.completed
        if len(candles) < 10:
            return {"detected": False, "reason": "Insufficient candles"}

        avg_range = self.average_range(candles)
        recent_avg = self.average_range(candles[-10:])
        compression = recent_avg < avg_range * cfg.compression_ratio

        highs = self.liquidity.equal_highs(window)
        lows = self.liquidity.equal_lows(window)
        buildup = bool(highs or lows)

        high = max(c.high for c in candles)
        low = min(c.low for c in candles)
        return {
            "detected": compression and buildup,
            "range_compression": compression,
            "liquidity_buildup": buildup,
            "range_percent": (high - low) / low * 100 if low else 0.0,
            "equal_highs": len(highs),
            "equal_lows": len(lows),
            "liquidity_above": highs[0].price if highs else None,
            "liquidity_below": lows[0].price if lows else None,
        }

    def detect_manipulation(self, view: CausalView) -> Dict[str, Any]:
        """Strongest confirmed sweep with a real move into the pool and a long wick."""
        cfg = self.config.cycle
        sweeps = self.liquidity.sweeps(view)
        if not sweeps:
            return {"detected": False, "reason": "No liquidity sweep detected"}

        sweep = sweeps[0]
        candle = sweep.sweep_candle
        if sweep.pool.side == LiquiditySide.BUY_SIDE:
            move = self.percent_move(candle.open, candle.high)
        else:
            move = -self.percent_move(candle.open, candle.low)
        wick_ratio = (candle.range - candle.body) / candle.range if candle.range > 0 else 0.0

        significant = move >= cfg.min_manipulation_percent
        rejected = wick_ratio > cfg.min_wick_ratio
        detected = significant and rejected
        return {
            "detected": detected,
            "sweep": sweep,
            "manipulation_percent": move,
            "wick_ratio": wick_ratio,
            "direction": sweep.direction,
            "reason": (
                "Manipulation phase confirmed"
                if detected
                else f"Weak manipulation (move: {move:.2f}%, wick: {wick_ratio * 100:.0f}%)"
            ),
        }

    def detect_distribution(self, view: CausalView, direction: Bias) -> Dict[str, Any]:
        """Gap, displacement and a break of structure in the expected direction."""
        window = self.config.cycle.distribution_window
        recent = view.completed[-window:]

        gaps = self.gaps.recent_unfilled(view, direction, window)
        threshold = self.config.fvg.displacement_min_percent
        bullish = direction == Bias.BULLISH
        displacement = [
            c for c in recent
            if c.body_percent >= threshold and (c.is_bullish if bullish else c.is_bearish)
        ]
        has_break = self.structure.has_break(view, direction)

        return {
            "detected": bool(gaps) and bool(displacement) and has_break,
            "gaps": len(gaps),
            "displacement_candles": len(displacement),
            "break_of_structure": has_break,
            "direction": direction,
        }

    def _reversion_reached(self, view: CausalView, sweep: SweepEvent, direction: Bias) -> bool:
        after = view.completed[sweep.sweep_index:]
        price = view.current_price
        if not after or price is None:
            return False
        fib = self.config.cycle.reversion_target_fib
        if direction == Bias.BULLISH:
            start = sweep.sweep_candle.low
            extreme = max(c.high for c in after)
            return extreme > start and price <= extreme - (extreme - start) * fib
        start = sweep.sweep_candle.high
        extreme = min(c.low for c in after)
        return extreme < start and price >= extreme + (start - extreme) * fib

    def analyze(self, view: CausalView, htf_bias: Bias) -> CycleAnalysis:
        """Highest phase reached at the cursor."""
        accumulation = self.detect_accumulation(view)
        manipulation = self.detect_manipulation(view)

        direction = manipulation["direction"] if manipulation["detected"] else htf_bias
        distribution = (
            self.detect_distribution(view, direction)
            if manipulation["detected"]
            else {"detected": False}
        )

        sweep = manipulation.get("sweep") if manipulation["detected"] else None
        reversion = False
        if distribution["detected"]:
            phase = CyclePhase.DISTRIBUTION
            reversion = self._reversion_reached(view, sweep, direction)
            reason = "MMXM DISTRIBUTION: liquidity swept, distribution started"
        elif manipulation["detected"]:
            phase = CyclePhase.MANIPULATION_COMPLETE
            reason = "MMXM MANIPULATION_COMPLETE: liquidity swept"
        elif accumulation["detected"]:
            phase = CyclePhase.ACCUMULATION
            reason = "Accumulation, waiting for manipulation"
        else:
            phase = CyclePhase.UNKNOWN
            reason = "Waiting for manipulation/distribution"

        tradeable = phase in (CyclePhase.DISTRIBUTION, CyclePhase.MANIPULATION_COMPLETE)
        logger.debug("Cycle phase %s direction %s", phase.value, direction.value)

        details = {
            "accumulation": accumulation,
            "manipulation": {k: v for k, v in manipulation.items() if k != "sweep"},
            "distribution": distribution,
        }
        return CycleAnalysis(
            phase=phase,
            tradeable=tradeable,
            confidence=PHASE_CONFIDENCE[phase],
            direction=direction,
            reason=reason,
            accumulation=accumulation["detected"],
            manipulation=manipulation["detected"],
            distribution=distribution["detected"],
            reversion_reached=reversion,
            sweep=sweep,
            details=details,
        )

    def detect_judas_swing(
        self,
        view: CausalView,
        session_open_index: int,
        htf_bias: Bias,
    ) -> JudasSwing:
        """
        Fake move against the HTF bias right after a session open.

        ``session_open_index`` indexes ``view.completed``. The first
        ``judas_initial_candles`` completed candles form the Judas leg; later
        candles up to ``judas_window_candles`` after the open may close back
        beyond its extreme.
        """
        cfg = self.config.cycle
        candles = view.completed
        n_initial = cfg.judas_initial_candles

        if session_open_index < 0 or session_open_index + n_initial > len(candles):
            return JudasSwing(detected=False, tradeable=False, reason="Invalid session open index")
        if htf_bias == Bias.NEUTRAL:
            return JudasSwing(detected=False, tradeable=False, reason="No HTF bias")

        open_candle = candles[session_open_index]
        open_price = open_candle.open
        post_open = candles[session_open_index:session_open_index + cfg.judas_window_candles]
        initial = post_open[:n_initial]

        initial_direction = Bias.BULLISH if initial[-1].close > open_price else Bias.BEARISH
        if initial_direction == htf_bias:
            return JudasSwing(
                detected=False,
                tradeable=False,
                reason="Initial move aligned with HTF bias",
                judas_direction=initial_direction,
                session_open_price=open_price,
            )

        if initial_direction == Bias.BULLISH:
            extreme = max(c.high for c in initial)
        else:
            extreme = min(c.low for c in initial)
        move = abs(self.percent_move(open_price, extreme))

        if htf_bias == Bias.BULLISH:
            reversal = any(c.close > extreme for c in post_open[n_initial:])
        else:
            reversal = any(c.close < extreme for c in post_open[n_initial:])

        scope = view.head(session_open_index + cfg.judas_window_candles + 1)
        hit_liquidity = any(
            s.timestamp >= open_candle.timestamp for s in self.liquidity.sweeps(scope)
        )

        detected = move >= cfg.judas_min_move_percent
        tradeable = detected and hit_liquidity and reversal
        if tradeable:
            reason = "Judas swing swept liquidity and reversed"
        elif not detected:
            reason = f"Judas move too small ({move:.2f}%)"
        elif not hit_liquidity:
            reason = "Judas move did not sweep liquidity"
        else:
            reason = "No reversal after Judas move"

        return JudasSwing(
            detected=detected,
            tradeable=tradeable,
            reason=reason,
            judas_direction=initial_direction,
            expected_reversal=htf_bias,
            move_percent=move,
            hit_liquidity=hit_liquidity,
            reversal_started=reversal,
            session_open_price=open_price,
            judas_extreme=extreme,
        )
