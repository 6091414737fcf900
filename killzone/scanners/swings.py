"""
Swing Locator - confirmed local highs and lows.

A swing at index i needs L completed candles on each side, so it is only
known L candles after it printed: ``confirmed_at`` is the timestamp of
candle i + L. The in-progress candle never confirms anything.
"""

import logging
from typing import List, Optional, Sequence

from killzone.core.candles import Candle, CausalView
from killzone.core.models import SwingPoint, SwingSet

from .base import BaseDetector

logger = logging.getLogger(__name__)


def _locate(candles: Sequence[Candle], lookback: int) -> SwingSet:
    n = len(candles)
    if lookback < 1 or n < 2 * lookback + 1:
        return SwingSet()

    highs: List[SwingPoint] = []
    lows: List[SwingPoint] = []
    for i in range(lookback, n - lookback):
        c = candles[i]
        neighbours = candles[i - lookback:i] + candles[i + 1:i + lookback + 1]
        confirmed_at = candles[i + lookback].timestamp

        if all(c.high > o.high for o in neighbours):
            highs.append(SwingPoint(i, c.high, c.timestamp, confirmed_at))
        if all(c.low < o.low for o in neighbours):
            lows.append(SwingPoint(i, c.low, c.timestamp, confirmed_at))

    return SwingSet(tuple(highs), tuple(lows))


class SwingLocator(BaseDetector):
    """Finds swing highs/lows in the completed part of a view."""

    def locate(self, view: CausalView, lookback: Optional[int] = None) -> SwingSet:
        """
        Swing highs and lows over ``view.completed``.

        Args:
            view: Causal view; only completed candles are scanned.
            lookback: Candles required on each side (default
                ``structure.swing_lookback``).

        Returns:
            SwingSet with indices relative to ``view.completed``. Empty when
            there are fewer than 2 * lookback + 1 completed candles.
        """
        if lookback is None:
            lookback = self.config.structure.swing_lookback
        swings = _locate(tuple(view.completed), lookback)
        logger.debug(
            "%d swing highs, %d swing lows (L=%d, n=%d)",
            len(swings.highs), len(swings.lows), lookback, len(view.completed),
        )
        return swings
