"""
Session Window Evaluator - killzones, silver bullets and session opens.

All times in UTC. Windows are inclusive at both ends, at minute resolution:
a 13:00-16:00 window contains 16:00 but not 16:01.

Quality score (max 11):
  5 base for being inside a killzone
  +3 silver bullet sub-window
  +2 within the session-open window (Judas swing opportunity)
  +1 prime window (NEW_YORK_AM by default)
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from killzone.config.strategy import SessionWindow, StrategyConfig, load_strategy_config, parse_clock
from killzone.core.candles import UTC, ensure_utc

logger = logging.getLogger(__name__)

MAX_QUALITY = 11
MINUTES_PER_DAY = 24 * 60


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _contains(window: SessionWindow, minute: int) -> bool:
    return _minutes(window.start_time) <= minute <= _minutes(window.end_time)


@dataclass(frozen=True)
class SessionStatus:
    """Trading window status at one instant."""

    can_trade: bool
    reason: str
    window: Optional[str] = None
    silver_bullet: Optional[str] = None
    silver_bullet_minutes_remaining: Optional[int] = None
    session_open: Optional[str] = None
    minutes_since_open: Optional[int] = None
    quality: int = 0
    factors: Tuple[str, ...] = ()
    next_window: Optional[str] = None
    minutes_until_next: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "can_trade": self.can_trade,
            "reason": self.reason,
            "window": self.window,
            "silver_bullet": self.silver_bullet,
            "silver_bullet_minutes_remaining": self.silver_bullet_minutes_remaining,
            "session_open": self.session_open,
            "minutes_since_open": self.minutes_since_open,
            "quality": self.quality,
            "max_quality": MAX_QUALITY,
            "factors": list(self.factors),
            "next_window": self.next_window,
            "minutes_until_next": self.minutes_until_next,
        }


class SessionWindowEvaluator:
    """
    Maps UTC timestamps to configured trading windows.

    Weekends, configured holidays and weekdays outside ``trading_weekdays``
    resolve to "no trading".
    """

    def __init__(self, config: Optional[StrategyConfig] = None) -> None:
        self.config = load_strategy_config(config)
        sessions = self.config.sessions
        self._windows: Dict[str, SessionWindow] = {
            name: w for name, w in sessions.windows.items() if w.enabled
        }
        self._silver: Dict[str, SessionWindow] = {
            name: w for name, w in sessions.silver_bullets.items() if w.enabled
        }
        self._opens: Dict[str, time] = {
            name: parse_clock(clock) for name, clock in sessions.session_opens.items()
        }

    def is_trading_day(self, ts: datetime) -> Tuple[bool, str]:
        """(tradeable, reason) for the calendar day of ts."""
        ts = ensure_utc(ts)
        weekday = ts.weekday()
        if weekday >= 5:
            return False, "Weekend - no institutional activity"
        if ts.date() in self.config.sessions.holidays:
            return False, "Major holiday - reduced liquidity"
        if weekday not in self.config.sessions.trading_weekdays:
            return False, f"{ts.strftime('%A')} excluded by day filter"
        return True, "Trading day"

    def window_for(self, ts: datetime) -> Optional[str]:
        """Name of the enabled killzone containing ts (time of day only)."""
        minute = _minutes(ensure_utc(ts).time())
        for name, window in self._windows.items():
            if _contains(window, minute):
                return name
        return None

    def silver_bullet(self, ts: datetime) -> Tuple[Optional[str], Optional[int]]:
        """(sub-window name, minutes remaining) or (None, None)."""
        minute = _minutes(ensure_utc(ts).time())
        for name, window in self._silver.items():
            if _contains(window, minute):
                return name, _minutes(window.end_time) - minute
        return None, None

    def session_open(self, ts: datetime) -> Tuple[Optional[str], Optional[int]]:
        """(session name, minutes since open) when within the open window."""
        minute = _minutes(ensure_utc(ts).time())
        limit = self.config.sessions.session_open_minutes
        for name, opened in self._opens.items():
            since = minute - _minutes(opened)
            if 0 <= since <= limit:
                return name, since
        return None, None

    def session_open_at(self, day: date, name: str) -> datetime:
        """UTC datetime of a configured session open on a given day."""
        if name not in self._opens:
            raise KeyError(f"Unknown session open {name!r}")
        return datetime.combine(day, self._opens[name], tzinfo=UTC)

    def next_window(self, ts: datetime) -> Tuple[Optional[str], Optional[int]]:
        """Nearest upcoming killzone start, wrapping to tomorrow."""
        minute = _minutes(ensure_utc(ts).time())
        best: Tuple[Optional[str], Optional[int]] = (None, None)
        for name, window in self._windows.items():
            until = _minutes(window.start_time) - minute
            if until < 0:
                until += MINUTES_PER_DAY
            if best[1] is None or until < best[1]:
                best = (name, until)
        return best

    def window_bounds(self, day: date, name: str) -> Tuple[datetime, datetime]:
        """Inclusive start and end datetimes of a window on a given day."""
        window = self._windows[name]
        return (
            datetime.combine(day, window.start_time, tzinfo=UTC),
            datetime.combine(day, window.end_time, tzinfo=UTC),
        )

    def status(self, ts: datetime) -> SessionStatus:
        """Full trading-window status at ts."""
        ts = ensure_utc(ts)
        trading_day, reason = self.is_trading_day(ts)
        if not trading_day:
            return SessionStatus(can_trade=False, reason=reason)

        window = self.window_for(ts)
        if window is None:
            next_name, until = self.next_window(ts)
            return SessionStatus(
                can_trade=False,
                reason="Outside killzone",
                next_window=next_name,
                minutes_until_next=until,
            )

        factors: List[str] = [f"In {window} killzone"]
        quality = 5

        sb_name, sb_remaining = self.silver_bullet(ts)
        if sb_name:
            quality += 3
            factors.append(f"Silver Bullet window ({sb_name})")

        open_name, since_open = self.session_open(ts)
        if open_name:
            quality += 2
            factors.append(f"Near {open_name} session open")

        if window == self.config.sessions.prime_window:
            quality += 1
            factors.append(f"{window} = prime window")

        logger.debug("Session %s quality %d at %s", window, quality, ts.isoformat())
        return SessionStatus(
            can_trade=True,
            reason=", ".join(factors),
            window=window,
            silver_bullet=sb_name,
            silver_bullet_minutes_remaining=sb_remaining,
            session_open=open_name,
            minutes_since_open=since_open,
            quality=quality,
            factors=tuple(factors),
        )
