"""
Killzone Core Data Models

Frozen dataclasses for detector outputs, confluence results and decisions.
Every value is owned by the evaluation that produced it.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .candles import Candle
from .enums import (
    Action,
    Bias,
    ConfluenceFactor,
    CyclePhase,
    EntryModel,
    LiquiditySide,
    PremiumDiscountZone,
)


def _jsonable(value: Any) -> Any:
    """Recursively convert to JSON-safe primitives (enums, datetimes, tuples)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(_jsonable(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "__dataclass_fields__"):
        return _jsonable(asdict(value))
    return value


@dataclass(frozen=True)
class SwingPoint:
    """A confirmed local extremum."""

    index: int
    price: float
    timestamp: datetime
    confirmed_at: datetime

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class SwingSet:
    """Confirmed swing highs and lows, oldest first."""

    highs: Tuple[SwingPoint, ...] = ()
    lows: Tuple[SwingPoint, ...] = ()


@dataclass(frozen=True)
class BiasReading:
    """Structure bias for one series."""

    bias: Bias
    confidence: float
    reason: str
    last_swing_high: Optional[SwingPoint] = None
    last_swing_low: Optional[SwingPoint] = None


@dataclass(frozen=True)
class BiasAlignment:
    """Multi-timeframe bias vote."""

    biases: Dict[str, BiasReading]
    overall_bias: Bias
    aligned: bool
    alignment: float
    bullish_count: int
    bearish_count: int

    def to_dict(self) -> dict:
        return {
            "biases": {tf: r.bias.value for tf, r in self.biases.items()},
            "overall_bias": self.overall_bias.value,
            "aligned": self.aligned,
            "alignment": self.alignment,
            "bullish_count": self.bullish_count,
            "bearish_count": self.bearish_count,
        }


@dataclass(frozen=True)
class StructureBreak:
    """Break of structure or change of character."""

    direction: Bias
    level: float
    timestamp: datetime
    strength: float
    is_change_of_character: bool = False
    break_level: Optional[float] = None


@dataclass(frozen=True)
class PremiumDiscountReading:
    """Where the tradable price sits inside the recent range."""

    zone: PremiumDiscountZone
    position: float
    high: float
    low: float
    equilibrium: float
    current_price: float
    fib_levels: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class FairValueGap:
    """Three-candle imbalance."""

    direction: Bias
    top: float
    bottom: float
    midpoint: float
    size_percent: float
    origin_timestamp: datetime
    origin_index: int
    has_displacement: bool
    filled: bool = False
    partially_filled: bool = False
    filled_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class GapEntry:
    """Best gap for a bias and whether price is close enough to use it."""

    valid: bool
    reason: str
    gap: Optional[FairValueGap] = None
    distance_percent: Optional[float] = None
    is_inside: bool = False
    score: float = 0.0
    entry_zone: Optional[Tuple[float, float]] = None

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class LiquidityPool:
    """Cluster of near-equal extrema."""

    side: LiquiditySide
    price: float
    touch_count: int
    first_touch: datetime
    last_touch: datetime
    touch_indices: Tuple[int, ...] = ()

    @property
    def strength(self) -> float:
        return self.touch_count * 10.0

    def to_dict(self) -> dict:
        d = _jsonable(asdict(self))
        d["strength"] = self.strength
        return d


@dataclass(frozen=True)
class SweepEvent:
    """Stop hunt through a pool, confirmed by closes back on the rejecting side."""

    pool: LiquidityPool
    sweep_candle: Candle
    sweep_index: int
    direction: Bias
    confirming_candles: Tuple[Candle, ...]
    confirmed_at: datetime
    strength: float

    @property
    def timestamp(self) -> datetime:
        return self.sweep_candle.timestamp

    def to_dict(self) -> dict:
        return {
            "pool": self.pool.to_dict(),
            "sweep_timestamp": self.timestamp.isoformat(),
            "sweep_index": self.sweep_index,
            "direction": self.direction.value,
            "confirmed_at": self.confirmed_at.isoformat(),
            "strength": self.strength,
        }


@dataclass(frozen=True)
class SweepCheck:
    """Answer to "has liquidity been swept recently for direction D"."""

    swept: bool
    reason: str
    sweep: Optional[SweepEvent] = None
    candles_since_sweep: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "swept": self.swept,
            "reason": self.reason,
            "sweep": self.sweep.to_dict() if self.sweep else None,
            "candles_since_sweep": self.candles_since_sweep,
        }


@dataclass(frozen=True)
class DivergenceEvent:
    """SMT divergence between a primary and a reference asset."""

    direction: Bias
    primary_swings: Tuple[SwingPoint, SwingPoint]
    reference_swings: Tuple[SwingPoint, SwingPoint]
    divergence_percent: float
    correlation_at_detection: float
    timestamp: datetime
    index: int

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class DivergenceScan:
    """All divergences found between two aligned views."""

    valid: bool
    reason: str
    correlation: float = 0.0
    events: Tuple[DivergenceEvent, ...] = ()


@dataclass(frozen=True)
class DivergenceCheck:
    """Divergence confirmation for an expected direction."""

    confirmed: bool
    reason: str
    correlation: float = 0.0
    divergence: Optional[DivergenceEvent] = None
    candles_since: Optional[int] = None

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class CycleAnalysis:
    """Market maker cycle read at the cursor."""

    phase: CyclePhase
    tradeable: bool
    confidence: float
    direction: Bias
    reason: str
    accumulation: bool = False
    manipulation: bool = False
    distribution: bool = False
    reversion_reached: bool = False
    sweep: Optional[SweepEvent] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "tradeable": self.tradeable,
            "confidence": self.confidence,
            "direction": self.direction.value,
            "reason": self.reason,
            "accumulation": self.accumulation,
            "manipulation": self.manipulation,
            "distribution": self.distribution,
            "reversion_reached": self.reversion_reached,
            "details": _jsonable(self.details),
        }


@dataclass(frozen=True)
class JudasSwing:
    """Fake move against higher-timeframe bias right after a session open."""

    detected: bool
    tradeable: bool
    reason: str
    judas_direction: Optional[Bias] = None
    expected_reversal: Optional[Bias] = None
    move_percent: float = 0.0
    hit_liquidity: bool = False
    reversal_started: bool = False
    session_open_price: Optional[float] = None
    judas_extreme: Optional[float] = None

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class ConfluenceResult:
    """Weighted confluence of present factors."""

    score: float
    present_factors: Tuple[ConfluenceFactor, ...]
    missing_factors: Tuple[ConfluenceFactor, ...]
    is_high_conviction: bool
    max_score: float = 0.0

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class Decision:
    """
    Terminal value of one evaluation. Never mutated after creation.

    ``to_dict`` is deterministic: evaluating the same inputs twice yields the
    same serialized output.
    """

    action: Action
    direction: Optional[Bias]
    confluence_score: float
    reasons: Tuple[str, ...]
    timestamp: Optional[datetime] = None
    entry_model: Optional[EntryModel] = None
    analysis_detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_trade(self) -> bool:
        return self.action != Action.NO_TRADE

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "direction": self.direction.value if self.direction else None,
            "confluence_score": self.confluence_score,
            "reasons": list(self.reasons),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "entry_model": self.entry_model.value if self.entry_model else None,
            "analysis_detail": _jsonable(self.analysis_detail),
        }


@dataclass(frozen=True)
class OrderDescription:
    """What the execution collaborator receives for a LONG/SHORT decision."""

    symbol: str
    action: Action
    amount: float
    reference_price: Optional[float]
    confluence_score: float
    entry_model: Optional[EntryModel] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))
