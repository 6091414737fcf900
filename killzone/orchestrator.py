"""
Killzone Orchestrator

The live evaluation path. Fetches candles and collaborator inputs, builds
causal views at "now", runs the DecisionEngine and hands LONG/SHORT
decisions to execution and notification.

All I/O lives here; the engine itself never awaits anything. Collaborator
failures are retried (settings.retry_attempts) and otherwise degrade to a
skipped evaluation for that symbol.

Usage:
    orchestrator = SignalOrchestrator(market_data=provider, news=calendar)
    await orchestrator.run()  # Runs until stop()
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from killzone.config.settings import Settings, get_settings
from killzone.config.strategy import StrategyConfig, load_strategy_config
from killzone.core.candles import CandleSeries, CausalView, EvaluationCursor
from killzone.core.enums import Bias, ConfluenceFactor
from killzone.core.exceptions import CollaboratorError, TemporalViolation
from killzone.core.models import Decision, OrderDescription
from killzone.data.base import (
    NO_NEWS,
    ExecutionProvider,
    ExternalSignalProvider,
    MarketDataProvider,
    NewsCheck,
    NewsProvider,
    Notifier,
    timeframe_duration,
    with_retry,
)
from killzone.data.loader import align_series
from killzone.delivery.formatter import DecisionFormatter, formatter as default_formatter
from killzone.intelligence.decision import DecisionEngine

logger = logging.getLogger(__name__)


class SignalOrchestrator:
    """Coordinates collaborators around the decision engine."""

    def __init__(
        self,
        market_data: MarketDataProvider,
        news: Optional[NewsProvider] = None,
        signals: Sequence[ExternalSignalProvider] = (),
        execution: Optional[ExecutionProvider] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        config: Optional[StrategyConfig] = None,
        engine: Optional[DecisionEngine] = None,
        formatter: Optional[DecisionFormatter] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.config = load_strategy_config(config or self.settings.strategy_config_path)
        self.market_data = market_data
        self.news = news
        self.signals = list(signals)
        self.execution = execution
        self.notifier = notifier
        self.engine = engine or DecisionEngine(self.config)
        self.formatter = formatter or default_formatter

        self._trades: Dict[date, int] = {}
        self._running = False
        self._cycle_count = 0

    def trades_on(self, day: date) -> int:
        return self._trades.get(day, 0)

    async def _retry(self, call, what: str):
        return await with_retry(
            call,
            attempts=self.settings.retry_attempts,
            delay_seconds=self.settings.retry_delay_seconds,
            what=what,
        )

    async def _fetch(self, symbol: str, timeframe: str) -> CandleSeries:
        return await self._retry(
            lambda: self.market_data.get_candles(
                symbol, timeframe, None, self.settings.candle_limit
            ),
            f"get_candles {symbol} {timeframe}",
        )

    async def _news(self, now: datetime) -> NewsCheck:
        if self.news is None:
            return NO_NEWS
        lookahead = timedelta(minutes=self.settings.news_lookahead_minutes)
        return await self._retry(lambda: self.news.check_blackout(now, lookahead), "news blackout check")

    async def _external_factors(self, direction: Bias) -> List[ConfluenceFactor]:
        """Factors whose providers support direction; failed providers count as absent."""
        if direction == Bias.NEUTRAL or not self.signals:
            return []
        results = await asyncio.gather(
            *(p.get_signal(direction) for p in self.signals),
            return_exceptions=True,
        )
        factors: List[ConfluenceFactor] = []
        for provider, result in zip(self.signals, results):
            if isinstance(result, Exception):
                logger.warning("External signal %s failed: %s", provider.factor.value, result)
                continue
            if result.supports:
                factors.append(result.factor)
        return factors

    async def evaluate_symbol(self, symbol: str, now: Optional[datetime] = None) -> Optional[Decision]:
        """
        Evaluate one symbol at ``now`` (default: current UTC time).

        Returns None when collaborators failed and the evaluation was skipped.
        """
        now = now or datetime.now(timezone.utc)
        cursor = EvaluationCursor(now)
        entry_tf = self.settings.entry_timeframe
        htf_list = self.settings.higher_timeframes

        try:
            fetched = await asyncio.gather(
                self._fetch(symbol, entry_tf),
                self._fetch(self.settings.reference_symbol, entry_tf),
                *(self._fetch(symbol, tf) for tf in htf_list),
            )
            news = await self._news(now)
        except CollaboratorError as e:
            logger.error("Skipping %s: %s", symbol, e)
            return None

        entry_series, reference_series = align_series(fetched[0], fetched[1])
        try:
            entry_view = entry_series.at(cursor)
            reference_view = reference_series.at(cursor)
        except TemporalViolation as e:
            logger.error("Skipping %s: %s", symbol, e)
            return None

        limits = self.config.replay.htf_limits
        htf_views: Dict[str, CausalView] = {
            tf: series.closed_before(cursor, timeframe_duration(tf), limits.get(tf))
            for tf, series in zip(htf_list, fetched[2:])
        }

        prospective = self.engine.structure.align_bias(htf_views).overall_bias
        external = await self._external_factors(prospective)

        decision = self.engine.evaluate(
            entry_view,
            htf_views,
            reference_view=reference_view,
            news=news,
            external_factors=external,
            trades_today=self.trades_on(now.date()),
        )
        logger.info(self.formatter.format_summary(decision, symbol))

        if decision.is_trade:
            await self._act(symbol, decision, entry_view.current_price, now)
        return decision

    async def _act(self, symbol: str, decision: Decision, price: Optional[float], now: datetime) -> None:
        self._trades[now.date()] = self.trades_on(now.date()) + 1

        if self.execution is not None:
            order = OrderDescription(
                symbol=symbol,
                action=decision.action,
                amount=self.settings.order_amount,
                reference_price=price,
                confluence_score=decision.confluence_score,
                entry_model=decision.entry_model,
                created_at=now,
            )
            try:
                result = await self._retry(lambda: self.execution.submit(order), f"submit {symbol}")
                logger.info("Order for %s accepted=%s %s", symbol, result.accepted, result.message)
            except CollaboratorError as e:
                logger.error("Execution failed for %s: %s", symbol, e)

        if self.notifier is not None:
            text = self.formatter.format_report(decision, symbol)
            try:
                await self._retry(lambda: self.notifier.send(text), "notification")
            except CollaboratorError as e:
                logger.error("Notification failed for %s: %s", symbol, e)

    async def run_once(self, now: Optional[datetime] = None) -> Dict[str, Optional[Decision]]:
        """One cycle over every configured symbol."""
        self._cycle_count += 1
        results: Dict[str, Optional[Decision]] = {}
        for symbol in self.settings.symbols:
            results[symbol] = await self.evaluate_symbol(symbol, now)
        return results

    async def run(self, interval_seconds: float = 300.0) -> None:
        """Main run loop. Runs until stop() is called."""
        self._running = True
        logger.info("Killzone orchestrator starting main loop...")
        while self._running:
            await self.run_once()
            await asyncio.sleep(interval_seconds)
        logger.info("Killzone orchestrator stopped after %d cycles", self._cycle_count)

    async def stop(self) -> None:
        """Stop the orchestrator gracefully."""
        logger.info("Stopping Killzone orchestrator...")
        self._running = False
