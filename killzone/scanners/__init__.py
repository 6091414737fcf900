from .swings import SwingLocator
from .structure import StructureAnalyzer
from .fair_value_gap import GapDetector
from .liquidity import LiquidityTracker
from .divergence import DivergenceAnalyzer
from .cycle import CycleClassifier

__all__ = [
    "SwingLocator",
    "StructureAnalyzer",
    "GapDetector",
    "LiquidityTracker",
    "DivergenceAnalyzer",
    "CycleClassifier",
]
