"""
Fair Value Gap Detector - three-candle imbalances and entries into them.

Bullish gap: candle 3's low sits above candle 1's high (price moved up too
fast to trade the range in between). Bearish gap mirrors it. Price tends to
return into the gap, which makes the unfilled ones entry zones.

Fill state is derived from completed candles only. Once a gap is filled it
stays filled for every later cursor.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from killzone.core.candles import Candle, CausalView
from killzone.core.enums import Bias
from killzone.core.models import FairValueGap, GapEntry

from .base import BaseDetector

logger = logging.getLogger(__name__)


class GapDetector(BaseDetector):
    """
    Detects fair value gaps and scores them as entry zones.

    Scoring of candidates (higher is better):
      recency * 30, +40 when within the entry distance, +50 when price is
      inside, +20 displacement, -10 partially filled.
    """

    def detect(self, view: CausalView) -> List[FairValueGap]:
        """All gaps in the completed candles, oldest first, with fill state."""
        candles = view.completed
        gaps: List[FairValueGap] = []
        for i in range(2, len(candles)):
            gap = self._gap_at(candles, i)
            if gap is not None:
                gaps.append(self._track_fill(gap, candles))
        logger.debug("%d gaps in %d completed candles", len(gaps), len(candles))
        return gaps

    def _gap_at(self, candles: Sequence[Candle], i: int) -> Optional[FairValueGap]:
        cfg = self.config.fvg
        c1, c2, c3 = candles[i - 2], candles[i - 1], candles[i]

        if c3.low > c1.high:
            direction, top, bottom = Bias.BULLISH, c3.low, c1.high
        elif c1.low > c3.high:
            direction, top, bottom = Bias.BEARISH, c1.low, c3.high
        else:
            return None

        if c2.close == 0:
            return None
        size_percent = (top - bottom) / c2.close * 100
        if not cfg.min_size_percent <= size_percent <= cfg.max_size_percent:
            return None

        has_displacement = c2.body_percent >= cfg.displacement_min_percent
        if cfg.require_displacement and not has_displacement:
            return None

        return FairValueGap(
            direction=direction,
            top=top,
            bottom=bottom,
            midpoint=(top + bottom) / 2,
            size_percent=size_percent,
            origin_timestamp=c2.timestamp,
            origin_index=i - 1,
            has_displacement=has_displacement,
        )

    @staticmethod
    def _track_fill(gap: FairValueGap, candles: Sequence[Candle]) -> FairValueGap:
        partially = False
        # scan starts after candle 3
        for candle in candles[gap.origin_index + 2:]:
            if gap.direction == Bias.BULLISH:
                if candle.low <= gap.bottom:
                    return replace(gap, filled=True, partially_filled=partially, filled_at=candle.timestamp)
                if candle.low <= gap.midpoint:
                    partially = True
            else:
                if candle.high >= gap.top:
                    return replace(gap, filled=True, partially_filled=partially, filled_at=candle.timestamp)
                if candle.high >= gap.midpoint:
                    partially = True
        return replace(gap, partially_filled=partially)

    def unfilled(self, view: CausalView, direction: Bias) -> List[FairValueGap]:
        return [g for g in self.detect(view) if g.direction == direction and not g.filled]

    def recent_unfilled(self, view: CausalView, direction: Bias, window: int) -> List[FairValueGap]:
        """Unfilled gaps whose origin lies within the last ``window`` completed candles."""
        start = len(view.completed) - window
        return [g for g in self.unfilled(view, direction) if g.origin_index >= start]

    @staticmethod
    def distance_percent(gap: FairValueGap, price: float) -> float:
        """Distance from price to the nearest gap edge, 0 when inside."""
        if price <= 0 or gap.bottom <= price <= gap.top:
            return 0.0
        edge = gap.top if price > gap.top else gap.bottom
        return abs(price - edge) / price * 100

    def best_gap(self, view: CausalView, bias: Bias) -> Optional[GapEntry]:
        """
        Highest-scoring unfilled gap for bias within ``lookback_candles``.

        Ties go to the most recent gap.
        """
        cfg = self.config.fvg
        price = view.current_price
        n = len(view.completed)
        if price is None or n == 0 or bias == Bias.NEUTRAL:
            return None

        candidates = [
            g for g in self.unfilled(view, bias)
            if g.origin_index >= n - cfg.lookback_candles
        ]
        if not candidates:
            return None

        best: Optional[GapEntry] = None
        best_key = None
        for gap in candidates:
            distance = self.distance_percent(gap, price)
            inside = gap.bottom <= price <= gap.top
            near = distance <= cfg.max_entry_distance_percent

            score = (gap.origin_index + 1) / n * 30
            if near:
                score += 40
            if inside:
                score += 50
            if gap.has_displacement:
                score += 20
            if gap.partially_filled:
                score -= 10

            key = (score, gap.origin_index)
            if best_key is None or key > best_key:
                best_key = key
                best = GapEntry(
                    valid=near,
                    reason="",
                    gap=gap,
                    distance_percent=distance,
                    is_inside=inside,
                    score=score,
                    entry_zone=(
                        (gap.midpoint, gap.top)
                        if bias == Bias.BULLISH
                        else (gap.bottom, gap.midpoint)
                    ),
                )
        return best

    def entry(self, view: CausalView, bias: Bias) -> GapEntry:
        """Whether the tradable price is at a usable gap for bias."""
        best = self.best_gap(view, bias)
        if best is None:
            return GapEntry(valid=False, reason="No unfilled FVG found")
        if not best.valid:
            return replace(best, reason=f"FVG too far: {best.distance_percent:.2f}% away")
        where = "inside" if best.is_inside else f"{best.distance_percent:.2f}% from"
        return replace(best, reason=f"Price {where} {bias.value.lower()} FVG")
