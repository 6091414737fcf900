"""
Candle series and causal views.

A CandleSeries is the read-only input data model. Detectors never see a
series directly: they receive a CausalView, pre-truncated at an
EvaluationCursor, so that post-cursor data is structurally unreachable.

View kinds:
- online (``series.at(cursor)``): candles up to the cursor; the newest one is
  in progress and only its open may be used.
- closed (``series.closed_before(cursor, duration)``): higher-timeframe candles
  whose period ended at or before the cursor; nothing is in progress.
- retrospective (``series.retrospective()``): every candle counts as
  completed. Reporting only; the decision engine refuses these.
"""

import bisect
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from .exceptions import DataError, TemporalViolation

UTC = timezone.utc


def ensure_utc(ts: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


@dataclass(frozen=True)
class Candle:
    """One OHLCV candle. Immutable once created."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body_percent(self) -> float:
        """Body size as a percentage of the open."""
        if self.open == 0:
            return 0.0
        return self.body / self.open * 100

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


@dataclass(frozen=True)
class EvaluationCursor:
    """The "now" of a single decision."""

    timestamp: datetime

    def __post_init__(self):
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))


class CandleSeries(Sequence):
    """
    Ordered, immutable candles for one symbol and timeframe.

    Timestamps must be strictly increasing; anything else raises DataError.
    """

    def __init__(
        self,
        candles: Iterable[Candle],
        symbol: str = "",
        timeframe: str = "",
    ) -> None:
        self._candles: Tuple[Candle, ...] = tuple(candles)
        self.symbol = symbol
        self.timeframe = timeframe
        self._timestamps: List[datetime] = [c.timestamp for c in self._candles]

        for prev, curr in zip(self._timestamps, self._timestamps[1:]):
            if curr <= prev:
                raise DataError(
                    f"{symbol or 'series'} {timeframe}: timestamps not strictly "
                    f"increasing at {curr.isoformat()}"
                )

    def __len__(self) -> int:
        return len(self._candles)

    def __getitem__(self, item):
        return self._candles[item]

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def __repr__(self) -> str:
        return f"CandleSeries({self.symbol!r}, {self.timeframe!r}, n={len(self)})"

    @property
    def candles(self) -> Tuple[Candle, ...]:
        return self._candles

    def between(self, start: datetime, end: datetime) -> "CandleSeries":
        """Candles with start <= timestamp < end."""
        lo = bisect.bisect_left(self._timestamps, ensure_utc(start))
        hi = bisect.bisect_left(self._timestamps, ensure_utc(end))
        return CandleSeries(self._candles[lo:hi], self.symbol, self.timeframe)

    def index_at_or_before(self, ts: datetime) -> int:
        """Index of the latest candle opened at or before ts, -1 if none."""
        return bisect.bisect_right(self._timestamps, ensure_utc(ts)) - 1

    def at(self, cursor: EvaluationCursor) -> "CausalView":
        """Online view: everything up to the cursor, newest candle in progress."""
        idx = self.index_at_or_before(cursor.timestamp)
        if idx < 0:
            raise TemporalViolation(
                f"Cursor {cursor.timestamp.isoformat()} precedes first candle of {self!r}"
            )
        return CausalView(
            completed=self._candles[:idx],
            in_progress=self._candles[idx],
            cursor=cursor,
        )

    def closed_before(
        self,
        cursor: EvaluationCursor,
        duration: timedelta,
        limit: Optional[int] = None,
    ) -> "CausalView":
        """Closed view: only candles whose full period ended by the cursor."""
        closed = tuple(c for c in self._candles if c.timestamp + duration <= cursor.timestamp)
        if limit is not None:
            closed = closed[-limit:] if limit > 0 else ()
        return CausalView(completed=closed, in_progress=None, cursor=cursor)

    def retrospective(self) -> "CausalView":
        """Full-series view for reporting. Never valid for a decision."""
        return CausalView(completed=self._candles, in_progress=None, cursor=None)


class CausalView:
    """
    The slice of candles a detector may read.

    ``completed`` holds finalized candles; ``in_progress`` is the candle at the
    cursor (open known, high/low/close not yet final). Construction enforces
    that nothing lies after the cursor.
    """

    __slots__ = ("completed", "in_progress", "cursor")

    def __init__(
        self,
        completed: Sequence[Candle],
        in_progress: Optional[Candle] = None,
        cursor: Optional[EvaluationCursor] = None,
    ) -> None:
        self.completed: Tuple[Candle, ...] = tuple(completed)
        self.in_progress = in_progress
        self.cursor = cursor
        self._validate()

    def _validate(self) -> None:
        if self.cursor is None:
            if self.in_progress is not None:
                raise TemporalViolation("Retrospective view cannot hold an in-progress candle")
            return

        now = self.cursor.timestamp
        if self.completed and self.completed[-1].timestamp > now:
            raise TemporalViolation(
                f"Completed candle {self.completed[-1].timestamp.isoformat()} "
                f"is after cursor {now.isoformat()}"
            )
        if self.in_progress is not None:
            if self.in_progress.timestamp > now:
                raise TemporalViolation(
                    f"In-progress candle {self.in_progress.timestamp.isoformat()} "
                    f"is after cursor {now.isoformat()}"
                )
            if self.completed and self.completed[-1].timestamp >= self.in_progress.timestamp:
                raise TemporalViolation("In-progress candle must be newer than every completed candle")

    @classmethod
    def online(cls, candles: Sequence[Candle], cursor: EvaluationCursor) -> "CausalView":
        """
        Wrap candles a caller claims are online-safe.

        The newest candle becomes the in-progress one. Raises TemporalViolation
        when any candle lies after the cursor.
        """
        candles = tuple(candles)
        if not candles:
            return cls((), None, cursor)
        for c in candles:
            if c.timestamp > cursor.timestamp:
                raise TemporalViolation(
                    f"Candle {c.timestamp.isoformat()} lies after cursor "
                    f"{cursor.timestamp.isoformat()}"
                )
        return cls(candles[:-1], candles[-1], cursor)

    @property
    def is_retrospective(self) -> bool:
        return self.cursor is None

    @property
    def candles(self) -> Tuple[Candle, ...]:
        """Completed candles followed by the in-progress candle, if any."""
        if self.in_progress is None:
            return self.completed
        return self.completed + (self.in_progress,)

    @property
    def cursor_index(self) -> int:
        """Index in ``candles`` of the cursor position (last element)."""
        return len(self.candles) - 1

    @property
    def current_price(self) -> Optional[float]:
        """Tradable price at the cursor: in-progress open, else last close."""
        if self.in_progress is not None:
            return self.in_progress.open
        if self.completed:
            return self.completed[-1].close
        return None

    @property
    def timestamps(self) -> Tuple[datetime, ...]:
        return tuple(c.timestamp for c in self.completed)

    def __len__(self) -> int:
        return len(self.completed)

    def __repr__(self) -> str:
        kind = "retrospective" if self.is_retrospective else "online"
        return (
            f"CausalView({kind}, completed={len(self.completed)}, "
            f"in_progress={self.in_progress is not None})"
        )

    def tail(self, n: int) -> "CausalView":
        """Keep the last n completed candles (and the in-progress one)."""
        kept = self.completed[-n:] if n > 0 else ()
        return CausalView(kept, self.in_progress, self.cursor)

    def drop_recent(self, n: int) -> "CausalView":
        """Forget the newest n completed candles; nothing stays in progress."""
        if n <= 0:
            return CausalView(self.completed, None, self.cursor)
        return CausalView(self.completed[:-n], None, self.cursor)

    def select(self, predicate: Callable[[Candle], bool]) -> "CausalView":
        """Filter completed candles; the in-progress candle is always kept."""
        kept = tuple(c for c in self.completed if predicate(c))
        return CausalView(kept, self.in_progress, self.cursor)

    def head(self, n: int) -> "CausalView":
        """
        The first n candles as seen at that point in time: the n-th candle is
        treated as in progress, as it would have been back then.
        """
        candles = self.candles[:n]
        if not candles:
            return CausalView((), None, self.cursor)
        if self.is_retrospective:
            return CausalView(candles, None, None)
        return CausalView(candles[:-1], candles[-1], self.cursor)
