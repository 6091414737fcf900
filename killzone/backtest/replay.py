"""
Causal Replay Simulator

Replays the decision engine over historical days exactly as the live path
would have seen them:

1. The cursor is the first candle at or after ``decision_hour_utc``.
2. The entry view holds the day's candles inside ``killzone_hours``
   (London and the New York morning by default) before the cursor, plus
   the cursor candle itself, in progress.
3. Higher-timeframe views only hold candles closed by the cursor.
4. The reference asset gets the same killzone subset.
5. Entry is the next candle's open; the day wins when its close moved in
   the predicted direction from its open.

The day close is the only post-cursor value read, and only after the
decision has been made.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from functools import reduce
from typing import Dict, List, Mapping, Optional, Sequence, Union

from killzone.config.strategy import StrategyConfig, load_strategy_config
from killzone.core.candles import UTC, CandleSeries, CausalView, EvaluationCursor
from killzone.core.enums import Bias, TradeOutcome
from killzone.core.models import Decision
from killzone.data.base import timeframe_duration
from killzone.intelligence.decision import DecisionEngine

from .costs import CostModel
from .statistics import ReplayStatistics, TradeRecord

logger = logging.getLogger(__name__)

SKIP_NO_DECISION_CANDLE = "NO DATA: no candle at decision hour"
SKIP_NO_ENTRY_CANDLE = "NO DATA: no candle after decision"
SKIP_INSUFFICIENT = "INSUFFICIENT DATA: {n} killzone candles before decision"


@dataclass
class DayResult:
    """Outcome of one replayed day: a trade or a skip reason."""

    day: date
    decision: Optional[Decision] = None
    skip_reason: Optional[str] = None
    trade: Optional[TradeRecord] = None

    @property
    def traded(self) -> bool:
        return self.trade is not None


class CausalReplaySimulator:
    """
    Day-by-day replay of one asset.

    The engine is injectable so tests can drive the fold with a fake. The
    optional ``cancel_event`` is checked between days; a cancelled replay
    returns the totals folded so far with ``cancelled`` set.
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        engine: Optional[DecisionEngine] = None,
        cost_model: Optional[CostModel] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.config = load_strategy_config(config)
        self.engine = engine or DecisionEngine(self.config)
        self.costs = cost_model or CostModel(self.config.replay)
        self.cancel_event = cancel_event or threading.Event()

    def _htf_duration(self, timeframe: str) -> timedelta:
        minutes = self.config.replay.htf_durations_minutes.get(timeframe)
        if minutes is not None:
            return timedelta(minutes=minutes)
        return timeframe_duration(timeframe)

    def _in_killzone(self, ts: datetime) -> bool:
        return any(first <= ts.hour <= last for first, last in self.config.replay.killzone_hours)

    @staticmethod
    def trading_days(series: CandleSeries, start: Optional[date] = None, end: Optional[date] = None) -> List[date]:
        """Weekdays with at least one candle, within [start, end]."""
        days = sorted({c.timestamp.date() for c in series})
        return [
            d for d in days
            if d.weekday() < 5
            and (start is None or d >= start)
            and (end is None or d <= end)
        ]

    def simulate_day(
        self,
        day: date,
        entry: CandleSeries,
        htf: Mapping[str, CandleSeries],
        reference: Optional[CandleSeries] = None,
    ) -> DayResult:
        """Run one day's decision. Does not touch capital."""
        cfg = self.config.replay
        day_start = datetime(day.year, day.month, day.day, tzinfo=UTC)
        day_candles = entry.between(day_start, day_start + timedelta(days=1))
        if not len(day_candles):
            return DayResult(day, skip_reason=SKIP_NO_DECISION_CANDLE)

        cursor_idx = next(
            (i for i, c in enumerate(day_candles) if c.timestamp.hour >= cfg.decision_hour_utc),
            None,
        )
        if cursor_idx is None:
            return DayResult(day, skip_reason=SKIP_NO_DECISION_CANDLE)

        cursor_candle = day_candles[cursor_idx]
        cursor = EvaluationCursor(cursor_candle.timestamp)
        before = [c for c in day_candles[:cursor_idx] if self._in_killzone(c.timestamp)]
        if len(before) < cfg.min_killzone_candles:
            return DayResult(day, skip_reason=SKIP_INSUFFICIENT.format(n=len(before)))

        entry_view = CausalView.online(before + [cursor_candle], cursor)
        htf_views: Dict[str, CausalView] = {
            tf: series.closed_before(cursor, self._htf_duration(tf), cfg.htf_limits.get(tf))
            for tf, series in htf.items()
        }

        reference_view = None
        if reference is not None:
            wanted = {c.timestamp for c in entry_view.candles}
            ref_candles = [c for c in reference.between(day_start, cursor.timestamp + timedelta(seconds=1))
                           if c.timestamp in wanted]
            if ref_candles:
                reference_view = CausalView.online(ref_candles, cursor)

        decision = self.engine.evaluate(entry_view, htf_views, reference_view=reference_view)
        if not decision.is_trade:
            return DayResult(day, decision=decision, skip_reason=decision.reasons[-1])

        if cursor_idx + 1 >= len(day_candles):
            return DayResult(day, decision=decision, skip_reason=SKIP_NO_ENTRY_CANDLE)

        # Post-decision reads start here
        entry_price = day_candles[cursor_idx + 1].open
        day_open = day_candles[0].open
        day_close = day_candles[-1].close
        actual = Bias.BULLISH if day_close > day_open else Bias.BEARISH
        outcome = TradeOutcome.WIN if actual == decision.direction else TradeOutcome.LOSS

        smt = decision.analysis_detail.get("smt")
        trade = TradeRecord(
            day=day,
            symbol=entry.symbol,
            direction=decision.direction,
            entry_model=decision.entry_model,
            outcome=outcome,
            entry_price=entry_price,
            day_open=day_open,
            day_close=day_close,
            confluence_score=decision.confluence_score,
            has_divergence=bool(smt is not None and smt.confirmed),
        )
        return DayResult(day, decision=decision, trade=trade)

    def _settle(self, stats: ReplayStatistics, trade: TradeRecord) -> TradeRecord:
        """Apply costs and the binary payout to the running capital."""
        cfg = self.config.replay
        cost = self.costs.apply(stats.capital, trade.is_win)
        if trade.is_win:
            capital = cost.payout
        elif cfg.reset_on_loss:
            capital = cfg.starting_capital
        else:
            capital = 0.0
        return replace(trade, cost=cost, capital_after=capital)

    def replay(
        self,
        entry: CandleSeries,
        htf: Mapping[str, CandleSeries],
        reference: Optional[CandleSeries] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ReplayStatistics:
        """Fold every weekday in [start, end] into ReplayStatistics."""
        cfg = self.config.replay
        stats = ReplayStatistics.begin(entry.symbol, cfg.starting_capital)
        days = self.trading_days(entry, start, end)
        logger.info(
            "Replaying %s over %d days (decision hour %02d:00 UTC)",
            entry.symbol or "series", len(days), cfg.decision_hour_utc,
        )

        for day in days:
            if self.cancel_event.is_set():
                stats.cancelled = True
                logger.warning("Replay of %s cancelled before %s", entry.symbol, day.isoformat())
                break
            result = self.simulate_day(day, entry, htf, reference)
            if result.traded:
                stats.record_trade(self._settle(stats, result.trade))
            else:
                stats.record_skip(result.skip_reason)
            logger.debug("%s %s: %s", entry.symbol, day.isoformat(),
                         result.trade.outcome.value if result.traded else result.skip_reason)

        logger.info(
            "Replay %s done: %d/%d days traded, win rate %.1f%%, max streak %d",
            entry.symbol, stats.traded_days, stats.total_days,
            stats.win_rate * 100, stats.max_consecutive_wins,
        )
        return stats


@dataclass
class ReplayJob:
    """One asset to replay."""

    entry: CandleSeries
    htf: Dict[str, CandleSeries] = field(default_factory=dict)
    reference: Optional[CandleSeries] = None
    start: Optional[date] = None
    end: Optional[date] = None


async def replay_assets(
    jobs: Sequence[ReplayJob],
    config: Union[StrategyConfig, None] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ReplayStatistics:
    """
    Replay independent assets in parallel worker threads and merge the totals.

    Each job gets its own simulator and cost model; the cancel event is shared.
    """
    config = load_strategy_config(config)
    cancel_event = cancel_event or threading.Event()

    def _run(job: ReplayJob) -> ReplayStatistics:
        simulator = CausalReplaySimulator(config, cancel_event=cancel_event)
        return simulator.replay(job.entry, job.htf, job.reference, job.start, job.end)

    results = await asyncio.gather(*(asyncio.to_thread(_run, job) for job in jobs))
    if not results:
        return ReplayStatistics.begin()
    return reduce(lambda a, b: a.merge(b), results)
