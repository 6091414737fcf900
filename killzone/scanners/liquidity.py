"""
Liquidity Tracker - resting stop clusters and the sweeps that raid them.

Equal highs hold buy-side liquidity (short stops above), equal lows hold
sell-side liquidity (long stops below). A sweep wicks through a pool, closes
back on the other side and is confirmed by the following completed closes.

Sweeps are only reported once all their confirmation candles are completed,
so a sweep is never visible before it could have been known.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from killzone.core.candles import Candle, CausalView
from killzone.core.enums import Bias, LiquiditySide
from killzone.core.models import LiquidityPool, SweepCheck, SweepEvent

from .base import MIN_BODY, BaseDetector

logger = logging.getLogger(__name__)

SESSION_LEVEL_STRENGTH = 30.0


class LiquidityTracker(BaseDetector):
    """Finds liquidity pools and confirmed sweeps."""

    def _group(self, candles: Sequence[Candle], side: LiquiditySide) -> List[LiquidityPool]:
        tolerance = self.config.liquidity.equal_tolerance_percent / 100
        groups: List[List[int]] = []
        prices: List[List[float]] = []

        for i, candle in enumerate(candles):
            price = candle.high if side == LiquiditySide.BUY_SIDE else candle.low
            for members, values in zip(groups, prices):
                avg = sum(values) / len(values)
                if avg > 0 and abs(price - avg) / avg <= tolerance:
                    members.append(i)
                    values.append(price)
                    break
            else:
                groups.append([i])
                prices.append([price])

        pools = [
            LiquidityPool(
                side=side,
                price=sum(values) / len(values),
                touch_count=len(members),
                first_touch=candles[members[0]].timestamp,
                last_touch=candles[members[-1]].timestamp,
                touch_indices=tuple(members),
            )
            for members, values in zip(groups, prices)
            if len(members) >= self.config.liquidity.min_pool_touches
        ]
        return sorted(pools, key=lambda p: p.strength, reverse=True)

    def equal_highs(self, view: CausalView) -> List[LiquidityPool]:
        return self._group(view.completed, LiquiditySide.BUY_SIDE)

    def equal_lows(self, view: CausalView) -> List[LiquidityPool]:
        return self._group(view.completed, LiquiditySide.SELL_SIDE)

    def pools(self, view: CausalView) -> List[LiquidityPool]:
        """Buy-side and sell-side pools, strongest first."""
        return sorted(
            self.equal_highs(view) + self.equal_lows(view),
            key=lambda p: p.strength,
            reverse=True,
        )

    def sweeps(self, view: CausalView) -> List[SweepEvent]:
        """
        Confirmed sweeps among the most recent completed candles, strongest first.

        Pools come from older candles (the newest ``pool_exclusion_candles``
        are left out) so a pool is never formed by the sweep itself.
        """
        cfg = self.config.liquidity
        candles = view.completed
        n = len(candles)
        confirm = cfg.confirmation_candles

        pool_view = view.drop_recent(cfg.pool_exclusion_candles)
        pools = self.pools(pool_view)

        start = max(0, n - cfg.sweep_scan_candles)
        last = n - 1 - confirm
        events: List[SweepEvent] = []

        for pool in pools:
            for i in range(start, last + 1):
                event = self._check_sweep(pool, candles, i, confirm)
                if event is not None:
                    events.append(event)

        events.sort(key=lambda e: e.strength, reverse=True)
        logger.debug("%d pools, %d confirmed sweeps", len(pools), len(events))
        return events

    @staticmethod
    def _check_sweep(
        pool: LiquidityPool,
        candles: Sequence[Candle],
        i: int,
        confirm: int,
    ) -> Optional[SweepEvent]:
        candle = candles[i]
        body = candle.body or MIN_BODY

        if pool.side == LiquiditySide.BUY_SIDE:
            if not (candle.high > pool.price and candle.close < pool.price):
                return None
            wick = candle.upper_wick
            direction = Bias.BEARISH
        else:
            if not (candle.low < pool.price and candle.close > pool.price):
                return None
            wick = candle.lower_wick
            direction = Bias.BULLISH

        if wick <= body * 0.5:
            return None

        following = tuple(candles[i + 1:i + 1 + confirm])
        if len(following) < confirm:
            return None
        if pool.side == LiquiditySide.BUY_SIDE:
            held = all(c.close < pool.price for c in following)
        else:
            held = all(c.close > pool.price for c in following)
        if not held:
            return None

        return SweepEvent(
            pool=pool,
            sweep_candle=candle,
            sweep_index=i,
            direction=direction,
            confirming_candles=following,
            confirmed_at=following[-1].timestamp,
            strength=pool.strength + wick / body * 10,
        )

    def has_recent_sweep(self, view: CausalView, direction: Bias) -> SweepCheck:
        """
        Newest confirmed sweep pointing toward ``direction``, if recent enough.

        Age is counted from the cursor candle to the sweep candle.
        """
        events = self.sweeps(view)
        if not events:
            return SweepCheck(swept=False, reason="No liquidity sweep detected")

        matching = [e for e in events if e.direction == direction]
        if not matching:
            return SweepCheck(
                swept=False,
                reason=f"Sweep detected but wrong direction ({events[0].direction.value})",
            )

        newest = max(matching, key=lambda e: (e.sweep_index, e.strength))
        since = view.cursor_index - newest.sweep_index
        if since > self.config.liquidity.recent_sweep_candles:
            return SweepCheck(
                swept=False,
                reason=f"Sweep too old ({since} candles ago)",
                sweep=newest,
                candles_since_sweep=since,
            )

        side = "buy-side" if newest.pool.side == LiquiditySide.BUY_SIDE else "sell-side"
        return SweepCheck(
            swept=True,
            reason=f"{side} liquidity swept {since} candles ago",
            sweep=newest,
            candles_since_sweep=since,
        )

    def session_levels(self, view: CausalView) -> List[Dict[str, Any]]:
        """Highs and lows of the last 5 full-ish sessions of completed candles."""
        size = self.config.liquidity.session_candles
        candles = view.completed
        levels: List[Dict[str, Any]] = []

        for start in range(0, len(candles), size):
            block = candles[start:start + size]
            if len(block) < size / 2:
                continue
            levels.append({
                "type": "SESSION_HIGH",
                "side": LiquiditySide.BUY_SIDE,
                "price": max(c.high for c in block),
                "timestamp": block[0].timestamp,
                "strength": SESSION_LEVEL_STRENGTH,
            })
            levels.append({
                "type": "SESSION_LOW",
                "side": LiquiditySide.SELL_SIDE,
                "price": min(c.low for c in block),
                "timestamp": block[0].timestamp,
                "strength": SESSION_LEVEL_STRENGTH,
            })
        return levels[-10:]

    def liquidity_targets(self, view: CausalView) -> Dict[str, Any]:
        """Nearest pools and session extremes above and below the tradable price."""
        price = view.current_price
        if price is None:
            return {"current_price": None, "nearest_above": None, "nearest_below": None,
                    "above": [], "below": []}

        levels: List[Dict[str, Any]] = [
            {
                "type": "EQUAL_HIGHS" if p.side == LiquiditySide.BUY_SIDE else "EQUAL_LOWS",
                "side": p.side,
                "price": p.price,
                "timestamp": p.last_touch,
                "strength": p.strength,
            }
            for p in self.pools(view)
        ]
        levels.extend(self.session_levels(view))

        above = sorted((lv for lv in levels if lv["price"] > price), key=lambda lv: lv["price"])
        below = sorted(
            (lv for lv in levels if lv["price"] < price),
            key=lambda lv: lv["price"],
            reverse=True,
        )
        return {
            "current_price": price,
            "nearest_above": above[0] if above else None,
            "nearest_below": below[0] if below else None,
            "above": above[:3],
            "below": below[:3],
        }
