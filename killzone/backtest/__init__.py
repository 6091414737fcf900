"""Killzone causal replay."""

from .costs import CostModel, ExecutionCost
from .replay import CausalReplaySimulator, DayResult, ReplayJob, replay_assets
from .statistics import (
    MonteCarloResult,
    ReplayStatistics,
    TradeRecord,
    challenge_outlook,
    monte_carlo_streak,
)

__all__ = [
    "CostModel",
    "ExecutionCost",
    "CausalReplaySimulator",
    "DayResult",
    "ReplayJob",
    "replay_assets",
    "MonteCarloResult",
    "ReplayStatistics",
    "TradeRecord",
    "challenge_outlook",
    "monte_carlo_streak",
]
