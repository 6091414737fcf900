"""
Killzone Base Detector

Shared plumbing for pattern detectors. Every detector is a pure function of
(CausalView, StrategyConfig): it holds no state between calls, and only reads
the candles the view exposes.
"""

from abc import ABC
from typing import Optional, Sequence

import pandas as pd

from killzone.config.strategy import StrategyConfig, load_strategy_config
from killzone.core.candles import Candle

# Divisor used when a candle has no body (open == close)
MIN_BODY = 0.01


class BaseDetector(ABC):
    """
    Base class for detectors.

    Holds the immutable strategy config and provides candle helpers (frames,
    ATR, average range) used by several detectors.
    """

    def __init__(self, config: Optional[StrategyConfig] = None) -> None:
        self.config = load_strategy_config(config)
        self.name: str = self.__class__.__name__

    @staticmethod
    def to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
        """OHLCV DataFrame indexed by timestamp."""
        if not candles:
            return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])
        return pd.DataFrame(
            {
                "open": [c.open for c in candles],
                "high": [c.high for c in candles],
                "low": [c.low for c in candles],
                "close": [c.close for c in candles],
                "volume": [c.volume for c in candles],
            },
            index=pd.DatetimeIndex([c.timestamp for c in candles], name="timestamp"),
        )

    @staticmethod
    def calculate_atr(bars: pd.DataFrame, period: int = 14) -> float:
        """
        Average True Range of the most recent bar.

        True Range = max(high - low, |high - prev_close|, |low - prev_close|),
        averaged over ``period`` bars.
        """
        if bars.empty or len(bars) < 2:
            return 0.0
        high = bars["high"]
        low = bars["low"]
        close = bars["close"]
        prev_close = close.shift(1)
        tr1 = high - low
        tr2 = (high - prev_close).abs()
        tr3 = (low - prev_close).abs()
        tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
        atr_series = tr.rolling(window=period, min_periods=1).mean()
        last = atr_series.iloc[-1]
        return float(last) if pd.notna(last) else 0.0

    @staticmethod
    def average_range(candles: Sequence[Candle]) -> float:
        if not candles:
            return 0.0
        return sum(c.range for c in candles) / len(candles)

    @staticmethod
    def percent_move(start: float, end: float) -> float:
        """Signed move from start to end as a percentage of start."""
        if start == 0:
            return 0.0
        return (end - start) / start * 100

    def __repr__(self) -> str:
        return f"{self.name}({self.config.name})"
