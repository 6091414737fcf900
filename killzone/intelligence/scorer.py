"""
Killzone Confluence Scorer

Score = sum of configured weights of the factors present, summed in
FACTOR_ORDER so the same set of factors always yields the same float.

Default weights:
  HTF_BIAS 2.0, LIQUIDITY_SWEPT 2.0, ETF_FLOWS 2.0
  FVG 1.5, SMT_DIVERGENCE 1.5, NEWS_SENTIMENT 1.5
  KILLZONE 1.0, CYCLE_TRADEABLE 1.0, PD_ZONE 1.0, ECONOMIC_BIAS 1.0
  SILVER_BULLET 0.5

Thresholds: trade at >= 4, high conviction at >= 7.
"""

import logging
from typing import Iterable, Optional

from killzone.config.strategy import StrategyConfig, load_strategy_config
from killzone.core.enums import FACTOR_ORDER, ConfluenceFactor
from killzone.core.models import ConfluenceResult

logger = logging.getLogger(__name__)


class ConfluenceScorer:
    """Weighted, order-stable confluence of present factors."""

    def __init__(self, config: Optional[StrategyConfig] = None) -> None:
        self.config = load_strategy_config(config)

    @property
    def min_score(self) -> float:
        return self.config.confluence.min_score

    def score(self, present: Iterable[ConfluenceFactor]) -> ConfluenceResult:
        cfg = self.config.confluence
        present_set = set(present)

        score = 0.0
        max_score = 0.0
        present_ordered = []
        missing = []
        for factor in FACTOR_ORDER:
            weight = cfg.weight(factor)
            max_score += weight
            if factor in present_set:
                score += weight
                present_ordered.append(factor)
            else:
                missing.append(factor)

        result = ConfluenceResult(
            score=score,
            present_factors=tuple(present_ordered),
            missing_factors=tuple(missing),
            is_high_conviction=score >= cfg.high_conviction_score,
            max_score=max_score,
        )
        logger.debug("Confluence %.2f/%.2f from %s", score, max_score,
                     [f.value for f in present_ordered])
        return result
