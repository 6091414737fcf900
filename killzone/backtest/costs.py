"""
Execution cost simulation for binary-payout replays.

Slippage always works against the trader and is capped at
``max_slippage_percent``. Fees are applied after slippage: a percentage
fee first, then a fixed fee per trade.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from killzone.config.strategy import ReplayConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionCost:
    """Costs of one simulated trade."""

    stake: float
    effective_stake: float
    payout: float
    slippage_percent: float

    @property
    def profit(self) -> float:
        return self.payout - self.stake

    @property
    def cost(self) -> float:
        return self.stake - self.effective_stake

    def to_dict(self) -> dict:
        return {
            "stake": round(self.stake, 4),
            "effective_stake": round(self.effective_stake, 4),
            "payout": round(self.payout, 4),
            "slippage_percent": round(self.slippage_percent, 4),
            "profit": round(self.profit, 4),
        }


class CostModel:
    """
    Applies slippage and fees to a stake.

    Variable slippage draws from a numpy Generator seeded from the replay
    config, so repeated replays produce identical capital curves.
    """

    def __init__(self, config: ReplayConfig, rng: Optional[np.random.Generator] = None):
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)

    def slippage_percent(self) -> float:
        cfg = self.config
        if not cfg.slippage_enabled:
            return 0.0
        slippage = cfg.base_slippage_percent
        if cfg.variable_slippage:
            slippage += float(self.rng.uniform(0.0, cfg.base_slippage_percent))
        return min(slippage, cfg.max_slippage_percent)

    def apply(self, stake: float, is_win: bool) -> ExecutionCost:
        cfg = self.config
        slippage = self.slippage_percent()
        effective = stake * (1 - slippage / 100)

        if cfg.fees_enabled:
            if cfg.fee_percent > 0:
                effective *= 1 - cfg.fee_percent / 100
            if cfg.fixed_fee > 0:
                effective -= cfg.fixed_fee
        effective = max(effective, 0.0)

        payout = effective * cfg.payout_multiple if is_win else 0.0
        return ExecutionCost(
            stake=stake,
            effective_stake=effective,
            payout=payout,
            slippage_percent=slippage,
        )
