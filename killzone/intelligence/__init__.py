from .scorer import ConfluenceScorer
from .volatility import VolatilityFilter, VolatilityReading
from .decision import DecisionEngine

__all__ = ["ConfluenceScorer", "VolatilityFilter", "VolatilityReading", "DecisionEngine"]
