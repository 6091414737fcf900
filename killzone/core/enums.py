"""
Killzone enumerations.
"""

from enum import Enum


class Bias(str, Enum):
    """Directional read of market structure."""

    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"

    @property
    def opposite(self) -> "Bias":
        if self == Bias.BULLISH:
            return Bias.BEARISH
        if self == Bias.BEARISH:
            return Bias.BULLISH
        return Bias.NEUTRAL


class Action(str, Enum):
    """Terminal action of one evaluation."""

    LONG = "LONG"
    SHORT = "SHORT"
    NO_TRADE = "NO_TRADE"


class LiquiditySide(str, Enum):
    """Which resting orders a pool holds."""

    BUY_SIDE = "BUY_SIDE"  # equal highs, stops of shorts above
    SELL_SIDE = "SELL_SIDE"  # equal lows, stops of longs below


class CyclePhase(str, Enum):
    """
    Market maker cycle (AMD) phase.

    Reversion is reported by ``CycleAnalysis.reversion_reached``.
    """

    ACCUMULATION = "ACCUMULATION"
    MANIPULATION_COMPLETE = "MANIPULATION_COMPLETE"
    DISTRIBUTION = "DISTRIBUTION"
    UNKNOWN = "UNKNOWN"


class EntryModel(str, Enum):
    """Entry model that validated a trade."""

    FVG = "FVG"
    MMXM = "MMXM"
    JUDAS_SWING = "JUDAS_SWING"


class PremiumDiscountZone(str, Enum):
    """Position of price inside the recent dealing range."""

    PREMIUM = "PREMIUM"
    PREMIUM_EDGE = "PREMIUM_EDGE"
    EQUILIBRIUM = "EQUILIBRIUM"
    DISCOUNT_EDGE = "DISCOUNT_EDGE"
    DISCOUNT = "DISCOUNT"
    NEUTRAL = "NEUTRAL"

    def favours(self, bias: Bias) -> bool:
        """Bullish trades want discount, bearish trades want premium."""
        if bias == Bias.BULLISH:
            return self in (PremiumDiscountZone.DISCOUNT, PremiumDiscountZone.DISCOUNT_EDGE)
        if bias == Bias.BEARISH:
            return self in (PremiumDiscountZone.PREMIUM, PremiumDiscountZone.PREMIUM_EDGE)
        return False


class ConfluenceFactor(str, Enum):
    """Factors that contribute weight to the confluence score."""

    HTF_BIAS = "HTF_BIAS"
    KILLZONE = "KILLZONE"
    SILVER_BULLET = "SILVER_BULLET"
    LIQUIDITY_SWEPT = "LIQUIDITY_SWEPT"
    FVG = "FVG"
    CYCLE_TRADEABLE = "CYCLE_TRADEABLE"
    SMT_DIVERGENCE = "SMT_DIVERGENCE"
    PD_ZONE = "PD_ZONE"
    NEWS_SENTIMENT = "NEWS_SENTIMENT"
    ETF_FLOWS = "ETF_FLOWS"
    ECONOMIC_BIAS = "ECONOMIC_BIAS"


# Order in which factors are summed; keeps scores reproducible to the last bit.
FACTOR_ORDER = tuple(ConfluenceFactor)

EXTERNAL_FACTORS = (
    ConfluenceFactor.NEWS_SENTIMENT,
    ConfluenceFactor.ETF_FLOWS,
    ConfluenceFactor.ECONOMIC_BIAS,
)


class TradeOutcome(str, Enum):
    """Replay outcome of a traded day."""

    WIN = "win"
    LOSS = "loss"
