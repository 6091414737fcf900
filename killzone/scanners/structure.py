"""
Structure Analyzer - bias, break of structure, change of character,
multi-timeframe alignment and premium/discount zone.

All reads go through confirmed swings of the view's completed candles, so a
break or bias is only reported once it was knowable at the cursor.
"""

import logging
from typing import Dict, List, Mapping, Optional

from killzone.config.strategy import StrategyConfig
from killzone.core.candles import CausalView
from killzone.core.enums import Bias, PremiumDiscountZone
from killzone.core.models import (
    BiasAlignment,
    BiasReading,
    PremiumDiscountReading,
    StructureBreak,
    SwingPoint,
)

from .base import BaseDetector
from .swings import SwingLocator

logger = logging.getLogger(__name__)

FIB_RATIOS = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)


def _transitions(points) -> tuple:
    """(rising, falling) counts between consecutive swing prices; ties fall."""
    up = down = 0
    for prev, curr in zip(points, points[1:]):
        if curr.price > prev.price:
            up += 1
        else:
            down += 1
    return up, down


class StructureAnalyzer(BaseDetector):
    """Reads market structure from confirmed swings."""

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        swing_locator: Optional[SwingLocator] = None,
    ) -> None:
        super().__init__(config)
        self.swings = swing_locator or SwingLocator(self.config)

    def determine_bias(
        self,
        view: CausalView,
        lookback: Optional[int] = None,
        margin: Optional[int] = None,
    ) -> BiasReading:
        """
        Bias from the last few confirmed swing highs and lows.

        Higher highs and higher lows vote bullish, lower (or equal) ones vote
        bearish. The winning side must lead by more than ``margin``
        (``bias_margin`` unless given).
        """
        cfg = self.config.structure
        if margin is None:
            margin = cfg.bias_margin
        swings = self.swings.locate(view, lookback)
        if len(swings.highs) < 2 or len(swings.lows) < 2:
            return BiasReading(
                bias=Bias.NEUTRAL,
                confidence=0.0,
                reason=f"Insufficient swings (H:{len(swings.highs)}, L:{len(swings.lows)})",
            )

        recent_highs = swings.highs[-cfg.bias_swing_count:]
        recent_lows = swings.lows[-cfg.bias_swing_count:]
        hh, lh = _transitions(recent_highs)
        hl, ll = _transitions(recent_lows)
        bullish = hh + hl
        bearish = lh + ll
        total = bullish + bearish
        last_high = recent_highs[-1]
        last_low = recent_lows[-1]

        if bullish > bearish + margin:
            return BiasReading(Bias.BULLISH, bullish / total, f"HH:{hh} HL:{hl}", last_high, last_low)
        if bearish > bullish + margin:
            return BiasReading(Bias.BEARISH, bearish / total, f"LH:{lh} LL:{ll}", last_high, last_low)
        return BiasReading(Bias.NEUTRAL, 0.5, "No clear structure", last_high, last_low)

    def find_breaks(self, view: CausalView) -> List[StructureBreak]:
        """
        Breaks of structure in the last ``bos_window`` completed candles.

        At most one per direction: the newest close beyond the latest
        confirmed swing that printed after that swing.
        """
        swings = self.swings.locate(view)
        recent = view.completed[-self.config.structure.bos_window:]
        breaks: List[StructureBreak] = []

        if swings.highs:
            level = swings.highs[-1]
            for candle in reversed(recent):
                if candle.close > level.price and candle.timestamp > level.timestamp:
                    breaks.append(StructureBreak(
                        direction=Bias.BULLISH,
                        level=level.price,
                        timestamp=candle.timestamp,
                        strength=(candle.close - level.price) / level.price,
                    ))
                    break

        if swings.lows:
            level = swings.lows[-1]
            for candle in reversed(recent):
                if candle.close < level.price and candle.timestamp > level.timestamp:
                    breaks.append(StructureBreak(
                        direction=Bias.BEARISH,
                        level=level.price,
                        timestamp=candle.timestamp,
                        strength=(level.price - candle.close) / level.price,
                    ))
                    break

        return breaks

    def has_break(self, view: CausalView, direction: Bias) -> bool:
        return any(b.direction == direction for b in self.find_breaks(view))

    def detect_change_of_character(self, view: CausalView) -> Optional[StructureBreak]:
        """
        First break against the established trend.

        The trend is read with the newest ``choch_trend_offset`` candles
        dropped; the latest two swings of the full view then decide.
        """
        trend = self.determine_bias(view.drop_recent(self.config.structure.choch_trend_offset))
        if trend.bias == Bias.NEUTRAL:
            return None

        swings = self.swings.locate(view)
        if trend.bias == Bias.BULLISH and len(swings.lows) >= 2:
            prev, last = swings.lows[-2], swings.lows[-1]
            if last.price < prev.price:
                return self._choch(Bias.BEARISH, prev, last)

        if trend.bias == Bias.BEARISH and len(swings.highs) >= 2:
            prev, last = swings.highs[-2], swings.highs[-1]
            if last.price > prev.price:
                return self._choch(Bias.BULLISH, prev, last)

        return None

    @staticmethod
    def _choch(direction: Bias, prev: SwingPoint, last: SwingPoint) -> StructureBreak:
        return StructureBreak(
            direction=direction,
            level=prev.price,
            timestamp=last.timestamp,
            strength=abs(last.price - prev.price) / prev.price,
            is_change_of_character=True,
            break_level=last.price,
        )

    def align_bias(self, views: Mapping[str, CausalView]) -> BiasAlignment:
        """
        Vote the bias of several timeframes.

        Timeframes in ``bias.higher_timeframes`` use the shorter HTF swing
        lookback since fewer of their candles exist. Every timeframe votes with
        ``htf_bias_margin``.
        """
        structure = self.config.structure
        bias_cfg = self.config.bias
        biases: Dict[str, BiasReading] = {}
        bullish = bearish = 0

        for tf, view in views.items():
            lookback = (
                structure.htf_swing_lookback
                if tf in bias_cfg.higher_timeframes
                else structure.swing_lookback
            )
            reading = self.determine_bias(view, lookback, structure.htf_bias_margin)
            biases[tf] = reading
            if reading.bias == Bias.BULLISH:
                bullish += 1
            elif reading.bias == Bias.BEARISH:
                bearish += 1

        total = len(views)
        top = max(bullish, bearish)
        aligned = top >= bias_cfg.min_aligned_count
        if bias_cfg.require_all_aligned:
            aligned = aligned and top == total

        if bullish > bearish:
            overall = Bias.BULLISH
        elif bearish > bullish:
            overall = Bias.BEARISH
        else:
            overall = Bias.NEUTRAL

        logger.debug("HTF votes bull=%d bear=%d of %d -> %s", bullish, bearish, total, overall.value)
        return BiasAlignment(
            biases=biases,
            overall_bias=overall,
            aligned=aligned,
            alignment=top / total if total else 0.0,
            bullish_count=bullish,
            bearish_count=bearish,
        )

    def premium_discount(self, view: CausalView) -> PremiumDiscountReading:
        """Position of the tradable price within the recent completed range."""
        cfg = self.config.premium_discount
        window = view.completed[-cfg.lookback_candles:]
        price = view.current_price or 0.0

        if len(window) < 10:
            return PremiumDiscountReading(
                zone=PremiumDiscountZone.NEUTRAL,
                position=0.5,
                high=0.0,
                low=0.0,
                equilibrium=0.0,
                current_price=price,
            )

        high = max(c.high for c in window)
        low = min(c.low for c in window)
        span = high - low
        position = (price - low) / span if span > 0 else 0.5

        if position >= cfg.premium_threshold:
            zone = PremiumDiscountZone.PREMIUM
        elif position <= cfg.discount_threshold:
            zone = PremiumDiscountZone.DISCOUNT
        elif abs(position - 0.5) <= cfg.equilibrium_buffer:
            zone = PremiumDiscountZone.EQUILIBRIUM
        elif position > 0.5:
            zone = PremiumDiscountZone.PREMIUM_EDGE
        else:
            zone = PremiumDiscountZone.DISCOUNT_EDGE

        return PremiumDiscountReading(
            zone=zone,
            position=position,
            high=high,
            low=low,
            equilibrium=(high + low) / 2,
            current_price=price,
            fib_levels={str(r): low + span * r for r in FIB_RATIOS},
        )
