"""
Killzone collaborator interfaces.

Everything outside the pure pipeline (market data, news calendar, external
signals, execution, notifications) is reached through these abstract
classes. Implementations live outside this package; tests use mocks.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from killzone.core.candles import CandleSeries
from killzone.core.enums import Bias, ConfluenceFactor
from killzone.core.exceptions import CollaboratorError
from killzone.core.models import OrderDescription

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class NewsCheck:
    """High-impact news blackout status."""
    blackout: bool
    event: Optional[str] = None
    minutes_until: Optional[float] = None
    bias: Optional[Bias] = None

    def to_dict(self) -> dict:
        return {
            "blackout": self.blackout,
            "event": self.event,
            "minutes_until": self.minutes_until,
            "bias": self.bias.value if self.bias else None,
        }


NO_NEWS = NewsCheck(blackout=False)


@dataclass(frozen=True)
class ExternalSignal:
    """Whether an external source supports a direction."""
    factor: ConfluenceFactor
    supports: bool
    detail: str = ""


@dataclass
class ExecutionResult:
    """Execution collaborator response."""
    accepted: bool
    order_id: Optional[str] = None
    fill_price: Optional[float] = None
    message: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


class MarketDataProvider(ABC):
    """Source of historical and recent candles."""

    @abstractmethod
    async def get_candles(
        self,
        symbol: str,
        timeframe: str,
        since: Optional[datetime] = None,
        limit: int = 500,
    ) -> CandleSeries:
        """Candles for symbol/timeframe, oldest first."""
        pass


class NewsProvider(ABC):
    """Economic calendar / news blackout source."""

    @abstractmethod
    async def check_blackout(self, at: datetime, lookahead: timedelta) -> NewsCheck:
        """Whether a high-impact event falls within lookahead of ``at``."""
        pass


class ExternalSignalProvider(ABC):
    """Sentiment, fund flows or economic bias."""

    factor: ConfluenceFactor

    @abstractmethod
    async def get_signal(self, direction: Bias) -> ExternalSignal:
        pass


class ExecutionProvider(ABC):
    """Receives orders for LONG/SHORT decisions."""

    @abstractmethod
    async def submit(self, order: OrderDescription) -> ExecutionResult:
        pass


class Notifier(ABC):
    """Delivers human-readable messages."""

    @abstractmethod
    async def send(self, text: str) -> bool:
        pass


async def with_retry(
    call: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay_seconds: float = 2.0,
    what: str = "collaborator call",
) -> T:
    """
    Await ``call()`` up to ``attempts`` times, sleeping between failures.

    Raises:
        CollaboratorError: every attempt failed.
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except Exception as e:
            last_error = e
            logger.warning("%s failed (attempt %d/%d): %s", what, attempt, attempts, e)
            if attempt < attempts:
                await asyncio.sleep(delay_seconds)
    raise CollaboratorError(f"{what} failed after {attempts} attempts: {last_error}") from last_error


# Timeframe durations, used for closed higher-timeframe views
TIMEFRAME_MINUTES = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "30m": 30,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
    "1w": 10080,
}


def timeframe_duration(timeframe: str) -> timedelta:
    """Candle duration for a timeframe label such as '5m' or '4h'."""
    key = timeframe.lower()
    if key not in TIMEFRAME_MINUTES:
        raise ValueError(f"Unknown timeframe {timeframe!r}")
    return timedelta(minutes=TIMEFRAME_MINUTES[key])
