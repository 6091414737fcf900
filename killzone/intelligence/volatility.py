"""
Volatility filter - ATR as a percentage of price must sit inside a band.

Dead markets never sweep anything; runaway ones blow through every level.
"""

import logging
from dataclasses import dataclass

from killzone.core.candles import CausalView
from killzone.scanners.base import BaseDetector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VolatilityReading:
    in_range: bool
    atr: float
    atr_percent: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "in_range": self.in_range,
            "atr": self.atr,
            "atr_percent": self.atr_percent,
            "reason": self.reason,
        }


class VolatilityFilter(BaseDetector):
    """ATR % of the completed candles within [min_atr_percent, max_atr_percent]."""

    def check(self, view: CausalView) -> VolatilityReading:
        cfg = self.config.volatility
        candles = view.completed
        if len(candles) < 2:
            return VolatilityReading(False, 0.0, 0.0, "Insufficient candles for ATR")

        atr = self.calculate_atr(self.to_frame(candles), cfg.atr_period)
        last_close = candles[-1].close
        atr_percent = atr / last_close * 100 if last_close else 0.0

        if atr_percent < cfg.min_atr_percent:
            reason = f"Volatility too low: ATR {atr_percent:.3f}% < {cfg.min_atr_percent}%"
            ok = False
        elif atr_percent > cfg.max_atr_percent:
            reason = f"Volatility too high: ATR {atr_percent:.3f}% > {cfg.max_atr_percent}%"
            ok = False
        else:
            reason = f"ATR {atr_percent:.3f}% in range"
            ok = True

        logger.debug(reason)
        return VolatilityReading(ok, atr, atr_percent, reason)
