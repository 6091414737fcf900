"""
Divergence Analyzer - SMT divergence between correlated assets.

When two normally correlated assets disagree at a swing (one prints a higher
high, the other a lower high) the stronger one is usually being run for
liquidity. Bearish SMT: primary higher high, reference lower high. Bullish
SMT: primary lower low, reference higher low.

Both views must cover the same completed timestamps.
"""

import logging
from typing import List, Optional

import numpy as np

from killzone.config.strategy import StrategyConfig
from killzone.core.candles import CausalView
from killzone.core.enums import Bias
from killzone.core.models import DivergenceCheck, DivergenceEvent, DivergenceScan, SwingPoint

from .base import BaseDetector
from .swings import SwingLocator

logger = logging.getLogger(__name__)


def pearson(a, b) -> float:
    """Pearson correlation; 0 for short or constant series."""
    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    dx = x - x.mean()
    dy = y - y.mean()
    denom = np.sqrt((dx * dx).sum() * (dy * dy).sum())
    if denom == 0:
        return 0.0
    return float((dx * dy).sum() / denom)


def _move(prev: SwingPoint, last: SwingPoint) -> float:
    return (last.price - prev.price) / prev.price * 100


class DivergenceAnalyzer(BaseDetector):
    """Finds SMT divergence between a primary and a reference view."""

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        swing_locator: Optional[SwingLocator] = None,
    ) -> None:
        super().__init__(config)
        self.swings = swing_locator or SwingLocator(self.config)

    def correlation(self, primary: CausalView, reference: CausalView) -> float:
        window = self.config.smt.correlation_window
        return pearson(
            [c.close for c in primary.completed[-window:]],
            [c.close for c in reference.completed[-window:]],
        )

    def detect(self, primary: CausalView, reference: CausalView) -> DivergenceScan:
        cfg = self.config.smt
        if primary.timestamps != reference.timestamps:
            return DivergenceScan(valid=False, reason="Primary and reference candles are not aligned")

        corr = self.correlation(primary, reference)
        if corr < cfg.correlation_threshold:
            return DivergenceScan(
                valid=False,
                reason=f"Correlation too low: {corr:.3f} < {cfg.correlation_threshold}",
                correlation=corr,
            )

        span = cfg.divergence_lookback * 2
        offset = max(0, len(primary.completed) - span)
        p_swings = self.swings.locate(primary.tail(span), cfg.swing_lookback)
        r_swings = self.swings.locate(reference.tail(span), cfg.swing_lookback)
        events: List[DivergenceEvent] = []

        if len(p_swings.highs) >= 2 and len(r_swings.highs) >= 2:
            p_prev, p_last = p_swings.highs[-2], p_swings.highs[-1]
            r_prev, r_last = r_swings.highs[-2], r_swings.highs[-1]
            if p_last.price > p_prev.price and r_last.price < r_prev.price:
                event = self._event(Bias.BEARISH, p_prev, p_last, r_prev, r_last, corr, offset)
                if event is not None:
                    events.append(event)

        if len(p_swings.lows) >= 2 and len(r_swings.lows) >= 2:
            p_prev, p_last = p_swings.lows[-2], p_swings.lows[-1]
            r_prev, r_last = r_swings.lows[-2], r_swings.lows[-1]
            if p_last.price < p_prev.price and r_last.price > r_prev.price:
                event = self._event(Bias.BULLISH, p_prev, p_last, r_prev, r_last, corr, offset)
                if event is not None:
                    events.append(event)

        logger.debug("Correlation %.3f, %d divergences", corr, len(events))
        return DivergenceScan(
            valid=bool(events),
            reason="SMT divergence detected" if events else "No SMT divergence detected",
            correlation=corr,
            events=tuple(events),
        )

    def _event(self, direction, p_prev, p_last, r_prev, r_last, corr, offset) -> Optional[DivergenceEvent]:
        divergence = abs(_move(p_prev, p_last) - _move(r_prev, r_last))
        if divergence < self.config.smt.min_divergence_percent:
            return None
        return DivergenceEvent(
            direction=direction,
            primary_swings=(p_prev, p_last),
            reference_swings=(r_prev, r_last),
            divergence_percent=divergence,
            correlation_at_detection=corr,
            timestamp=p_last.timestamp,
            index=offset + p_last.index,
        )

    def confirm(self, primary: CausalView, reference: CausalView, direction: Bias) -> DivergenceCheck:
        """Matching divergence no older than ``divergence_lookback`` candles."""
        scan = self.detect(primary, reference)
        if not scan.valid:
            return DivergenceCheck(confirmed=False, reason=scan.reason, correlation=scan.correlation)

        match = next((e for e in scan.events if e.direction == direction), None)
        if match is None:
            return DivergenceCheck(
                confirmed=False,
                reason=f"SMT divergence found but wrong direction ({scan.events[-1].direction.value})",
                correlation=scan.correlation,
            )

        since = primary.cursor_index - match.index
        if since > self.config.smt.divergence_lookback:
            return DivergenceCheck(
                confirmed=False,
                reason=f"SMT divergence too old ({since} candles ago)",
                correlation=scan.correlation,
                divergence=match,
                candles_since=since,
            )

        return DivergenceCheck(
            confirmed=True,
            reason=f"{direction.value.lower()} SMT divergence {match.divergence_percent:.2f}%",
            correlation=scan.correlation,
            divergence=match,
            candles_since=since,
        )
