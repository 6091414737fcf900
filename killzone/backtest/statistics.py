"""
Replay statistics and challenge outlook.

Key metrics:
- Win rate, consecutive win/loss streaks
- Skip reasons (which gate stopped each untraded day)
- Win rate per entry model and with SMT divergence
- Win rate per weekday and per month
- Capital curve under the binary payout
- Statistical significance of the win rate (binomial test)
- Monte Carlo estimate of reaching the target win streak
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
from scipy import stats as sp_stats

from killzone.core.enums import Bias, EntryModel, TradeOutcome

from .costs import ExecutionCost

logger = logging.getLogger(__name__)

SIGNIFICANCE_LEVEL = 0.05


@dataclass(frozen=True)
class TradeRecord:
    """One traded day of a replay."""

    day: date
    symbol: str
    direction: Bias
    entry_model: Optional[EntryModel]
    outcome: TradeOutcome
    entry_price: float
    day_open: float
    day_close: float
    confluence_score: float
    has_divergence: bool = False
    cost: Optional[ExecutionCost] = None
    capital_after: float = 0.0

    @property
    def is_win(self) -> bool:
        return self.outcome == TradeOutcome.WIN

    def to_dict(self) -> dict:
        return {
            "day": self.day.isoformat(),
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entry_model": self.entry_model.value if self.entry_model else None,
            "outcome": self.outcome.value,
            "entry_price": self.entry_price,
            "day_open": self.day_open,
            "day_close": self.day_close,
            "confluence_score": self.confluence_score,
            "has_divergence": self.has_divergence,
            "cost": self.cost.to_dict() if self.cost else None,
            "capital_after": round(self.capital_after, 4),
        }


def skip_key(reason: str) -> str:
    """Histogram key for a skip reason: the gate label before the first colon."""
    return reason.split(":", 1)[0].strip() or reason


def _bump(table: Dict[str, List[int]], key: str, win: bool) -> None:
    counts = table.setdefault(key, [0, 0])
    counts[0] += 1
    counts[1] += int(win)


def _combine(a: Dict[str, List[int]], b: Dict[str, List[int]]) -> Dict[str, List[int]]:
    out = {k: list(v) for k, v in a.items()}
    for key, (n, w) in b.items():
        counts = out.setdefault(key, [0, 0])
        counts[0] += n
        counts[1] += w
    return out


def _win_rates(table: Dict[str, List[int]], keys: Iterable[str]) -> Dict[str, Dict[str, float]]:
    rates = {}
    for key in keys:
        n, w = table[key]
        rates[key] = {"trades": n, "wins": w, "win_rate": w / n if n else 0.0}
    return rates


@dataclass
class ReplayStatistics:
    """
    Running totals of a replay, folded one day at a time.

    Streak fields follow the order trades are recorded in, so a single
    replay must record days chronologically.
    """

    symbol: str = ""
    starting_capital: float = 0.0
    total_days: int = 0
    traded_days: int = 0
    wins: int = 0
    losses: int = 0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    skip_reason_counts: Dict[str, int] = field(default_factory=dict)
    pattern_counts: Dict[str, List[int]] = field(default_factory=dict)
    weekday_counts: Dict[str, List[int]] = field(default_factory=dict)
    month_counts: Dict[str, List[int]] = field(default_factory=dict)
    divergence_trades: int = 0
    divergence_wins: int = 0
    capital: float = 0.0
    peak_capital: float = 0.0
    cancelled: bool = False
    trades: List[TradeRecord] = field(default_factory=list)

    @classmethod
    def begin(cls, symbol: str = "", starting_capital: float = 0.0) -> "ReplayStatistics":
        return cls(
            symbol=symbol,
            starting_capital=starting_capital,
            capital=starting_capital,
            peak_capital=starting_capital,
        )

    # ── Folding ──────────────────────────────────────────────

    def record_skip(self, reason: str) -> None:
        self.total_days += 1
        key = skip_key(reason)
        self.skip_reason_counts[key] = self.skip_reason_counts.get(key, 0) + 1

    def record_trade(self, trade: TradeRecord) -> None:
        self.total_days += 1
        self.traded_days += 1

        if trade.is_win:
            self.wins += 1
            self.consecutive_wins += 1
            self.consecutive_losses = 0
            self.max_consecutive_wins = max(self.max_consecutive_wins, self.consecutive_wins)
        else:
            self.losses += 1
            self.consecutive_losses += 1
            self.consecutive_wins = 0
            self.max_consecutive_losses = max(self.max_consecutive_losses, self.consecutive_losses)

        model = trade.entry_model.value if trade.entry_model else "UNKNOWN"
        _bump(self.pattern_counts, model, trade.is_win)
        _bump(self.weekday_counts, calendar.day_name[trade.day.weekday()], trade.is_win)
        _bump(self.month_counts, trade.day.strftime("%Y-%m"), trade.is_win)

        if trade.has_divergence:
            self.divergence_trades += 1
            self.divergence_wins += int(trade.is_win)

        self.capital = trade.capital_after
        self.peak_capital = max(self.peak_capital, self.capital)
        self.trades.append(trade)

    # ── Derived figures ──────────────────────────────────────

    @property
    def win_rate(self) -> float:
        return self.wins / self.traded_days if self.traded_days else 0.0

    @property
    def trade_frequency(self) -> float:
        return self.traded_days / self.total_days if self.total_days else 0.0

    @property
    def current_streak(self) -> int:
        """Positive for a running win streak, negative for a losing one."""
        return self.consecutive_wins if self.consecutive_wins else -self.consecutive_losses

    @property
    def per_pattern_win_rates(self) -> Dict[str, Dict[str, float]]:
        return _win_rates(self.pattern_counts, sorted(self.pattern_counts))

    @property
    def per_weekday_win_rates(self) -> Dict[str, Dict[str, float]]:
        """Monday first, only weekdays that traded."""
        days = [d for d in calendar.day_name if d in self.weekday_counts]
        return _win_rates(self.weekday_counts, days)

    @property
    def per_month_win_rates(self) -> Dict[str, Dict[str, float]]:
        return _win_rates(self.month_counts, sorted(self.month_counts))

    @property
    def divergence_win_rate(self) -> Optional[float]:
        if not self.divergence_trades:
            return None
        return self.divergence_wins / self.divergence_trades

    def significance(self, baseline: float = 0.5) -> Dict[str, Any]:
        """One-sided binomial test: is the win rate above ``baseline``?"""
        if not self.traded_days:
            return {"p_value": 1.0, "is_significant": False, "baseline": baseline}
        result = sp_stats.binomtest(self.wins, self.traded_days, p=baseline, alternative="greater")
        p_value = float(result.pvalue)
        return {
            "p_value": p_value,
            "is_significant": p_value < SIGNIFICANCE_LEVEL,
            "baseline": baseline,
        }

    def streak_probability(self, target: int) -> float:
        """Probability of ``target`` wins in a row at the observed win rate."""
        return float(self.win_rate ** target)

    # ── Combining ────────────────────────────────────────────

    def merge(self, other: "ReplayStatistics") -> "ReplayStatistics":
        """
        Combine independent replays (different assets or ranges).

        Counts and capital add up; streak maxima are the larger of the two,
        since streaks of independent replays do not chain.
        """
        skips = dict(self.skip_reason_counts)
        for key, count in other.skip_reason_counts.items():
            skips[key] = skips.get(key, 0) + count

        symbols = [s for s in (self.symbol, other.symbol) if s]
        return ReplayStatistics(
            symbol="+".join(symbols),
            starting_capital=self.starting_capital + other.starting_capital,
            total_days=self.total_days + other.total_days,
            traded_days=self.traded_days + other.traded_days,
            wins=self.wins + other.wins,
            losses=self.losses + other.losses,
            max_consecutive_wins=max(self.max_consecutive_wins, other.max_consecutive_wins),
            max_consecutive_losses=max(self.max_consecutive_losses, other.max_consecutive_losses),
            skip_reason_counts=skips,
            pattern_counts=_combine(self.pattern_counts, other.pattern_counts),
            weekday_counts=_combine(self.weekday_counts, other.weekday_counts),
            month_counts=_combine(self.month_counts, other.month_counts),
            divergence_trades=self.divergence_trades + other.divergence_trades,
            divergence_wins=self.divergence_wins + other.divergence_wins,
            capital=self.capital + other.capital,
            peak_capital=max(self.peak_capital, other.peak_capital),
            cancelled=self.cancelled or other.cancelled,
            trades=sorted(self.trades + other.trades, key=lambda t: (t.day, t.symbol)),
        )

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "total_days": self.total_days,
            "traded_days": self.traded_days,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": self.win_rate,
            "trade_frequency": self.trade_frequency,
            "max_consecutive_wins": self.max_consecutive_wins,
            "max_consecutive_losses": self.max_consecutive_losses,
            "current_streak": self.current_streak,
            "skip_reason_counts": dict(sorted(self.skip_reason_counts.items())),
            "per_pattern_win_rates": self.per_pattern_win_rates,
            "per_weekday_win_rates": self.per_weekday_win_rates,
            "per_month_win_rates": self.per_month_win_rates,
            "divergence_win_rate": self.divergence_win_rate,
            "starting_capital": self.starting_capital,
            "final_capital": round(self.capital, 4),
            "peak_capital": round(self.peak_capital, 4),
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True)
class MonteCarloResult:
    """Simulated attempts at reaching a win streak."""

    success_rate: float
    mean_attempts: Optional[float]
    median_attempts: Optional[float]
    simulations: int
    target_streak: int

    def to_dict(self) -> dict:
        return {
            "success_rate": self.success_rate,
            "mean_attempts": self.mean_attempts,
            "median_attempts": self.median_attempts,
            "simulations": self.simulations,
            "target_streak": self.target_streak,
        }


def monte_carlo_streak(
    win_rate: float,
    target_streak: int,
    simulations: int = 10_000,
    max_attempts: int = 1000,
    seed: Optional[int] = None,
    batch_size: int = 2_000,
) -> MonteCarloResult:
    """
    Estimate the chance of ``target_streak`` consecutive wins within
    ``max_attempts`` independent trades at ``win_rate``.

    Each simulation is a row of Bernoulli draws; a streak completes at the
    first window of ``target_streak`` wins in a row.
    """
    if not 0.0 <= win_rate <= 1.0:
        raise ValueError(f"win_rate must be in [0, 1], got {win_rate}")
    if target_streak > max_attempts:
        return MonteCarloResult(0.0, None, None, simulations, target_streak)

    rng = np.random.default_rng(seed)
    attempts: List[np.ndarray] = []
    remaining = simulations
    while remaining > 0:
        n = min(batch_size, remaining)
        remaining -= n
        wins = rng.random((n, max_attempts)) < win_rate
        windows = np.lib.stride_tricks.sliding_window_view(wins, target_streak, axis=1)
        complete = windows.all(axis=-1)
        hit = complete.any(axis=1)
        first = complete.argmax(axis=1)
        attempts.append(first[hit] + target_streak)

    done = np.concatenate(attempts) if attempts else np.array([], dtype=int)
    success_rate = len(done) / simulations if simulations else 0.0
    if len(done):
        mean_attempts = float(np.mean(done))
        median_attempts = float(np.median(done))
    else:
        mean_attempts = median_attempts = None

    logger.debug(
        "Monte Carlo: win_rate=%.3f target=%d success=%.4f",
        win_rate, target_streak, success_rate,
    )
    return MonteCarloResult(success_rate, mean_attempts, median_attempts, simulations, target_streak)


def challenge_outlook(
    stats: ReplayStatistics,
    target_streak: int,
    simulations: int = 10_000,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """Streak probability, Monte Carlo estimate and significance in one dict."""
    probability = stats.streak_probability(target_streak)
    expected_attempts = int(np.ceil(1 / probability)) if probability > 0 else None
    outlook: Dict[str, Any] = {
        "target_streak": target_streak,
        "streak_probability": probability,
        "expected_attempts": expected_attempts,
        "expected_cost": (
            expected_attempts * (stats.starting_capital or 0.0) if expected_attempts else None
        ),
        "significance": stats.significance(),
    }
    if stats.traded_days:
        outlook["monte_carlo"] = monte_carlo_streak(
            stats.win_rate, target_streak, simulations=simulations, seed=seed
        ).to_dict()
    return outlook
