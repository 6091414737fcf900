"""
Causal replay from CSV candles.

Usage::

    python -m killzone.scripts.run_replay data/BTCUSDT_5m.csv
    python -m killzone.scripts.run_replay data/BTCUSDT_5m.csv data/SOLUSDT_5m.csv \\
        --reference data/ETHUSDT_5m.csv --start 2024-01-01 --end 2024-12-31
    python -m killzone.scripts.run_replay data/BTCUSDT_5m.csv --config eth13.json --json

Higher-timeframe candles are resampled from each entry file unless
``--htf TF=path`` files are given.
"""

import argparse
import asyncio
import json
import logging
import sys
import threading
from datetime import date
from typing import Dict, List

from killzone.backtest import ReplayJob, ReplayStatistics, challenge_outlook, replay_assets
from killzone.config.strategy import StrategyConfig, load_strategy_config
from killzone.core.exceptions import KillzoneError
from killzone.data.loader import load_csv, resample_series

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-30s  %(levelname)-7s  %(message)s",
)
logger = logging.getLogger(__name__)


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replay the killzone decision engine over historical candles",
    )
    parser.add_argument("entry", nargs="+", help="Entry-timeframe candle CSV per asset")
    parser.add_argument("--reference", type=str, default=None, help="Reference asset CSV for SMT divergence")
    parser.add_argument("--htf", action="append", default=[], metavar="TF=PATH",
                        help="Higher-timeframe CSV (repeatable); resampled from entry when omitted")
    parser.add_argument("--config", type=str, default=None, help="Strategy config JSON")
    parser.add_argument("--start", type=_iso_date, default=None, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", type=_iso_date, default=None, help="End date (YYYY-MM-DD)")
    parser.add_argument("--decision-hour", type=int, default=None, help="Decision hour UTC (default: config)")
    parser.add_argument("--simulations", type=int, default=10_000, help="Monte Carlo simulations")
    parser.add_argument("--json", action="store_true", default=False, help="Print results as JSON")
    parser.add_argument("--verbose", action="store_true", default=False, help="Debug logging")
    return parser.parse_args(argv)


def _with_decision_hour(config: StrategyConfig, hour: int) -> StrategyConfig:
    """Re-validate the config with a new decision hour."""
    data = config.model_dump()
    data["replay"]["decision_hour_utc"] = hour
    return load_strategy_config(data)


def _build_jobs(args: argparse.Namespace, config: StrategyConfig) -> List[ReplayJob]:
    reference = load_csv(args.reference) if args.reference else None

    htf_files: Dict[str, str] = {}
    for item in args.htf:
        tf, _, path = item.partition("=")
        if not path:
            raise SystemExit(f"--htf expects TF=PATH, got {item!r}")
        htf_files[tf] = path

    jobs = []
    for path in args.entry:
        entry = load_csv(path, timeframe="5m")
        htf = {
            tf: load_csv(htf_files[tf], entry.symbol, tf) if tf in htf_files else resample_series(entry, tf)
            for tf in config.replay.htf_durations_minutes
        }
        jobs.append(ReplayJob(entry=entry, htf=htf, reference=reference, start=args.start, end=args.end))
    return jobs


def _print_report(stats: ReplayStatistics, outlook: dict) -> None:
    print("\n" + "=" * 70)
    print("  KILLZONE CAUSAL REPLAY")
    print("=" * 70)
    print(f"  Assets:                  {stats.symbol or '-'}")
    print(f"  Total trading days:      {stats.total_days}")
    print(f"  Days traded:             {stats.traded_days} ({stats.trade_frequency * 100:.1f}%)")
    print(f"  Wins / Losses:           {stats.wins} / {stats.losses}")
    print(f"  Win rate:                {stats.win_rate * 100:.1f}%")
    print(f"  Max consecutive wins:    {stats.max_consecutive_wins}")
    print(f"  Max consecutive losses:  {stats.max_consecutive_losses}")
    print(f"  Final / peak capital:    ${stats.capital:,.2f} / ${stats.peak_capital:,.2f}")
    print("-" * 70)
    for model, row in stats.per_pattern_win_rates.items():
        print(f"  {model:<12} {row['win_rate'] * 100:5.1f}%  (n={row['trades']})")
    if stats.divergence_win_rate is not None:
        print(f"  With SMT     {stats.divergence_win_rate * 100:5.1f}%  (n={stats.divergence_trades})")
    print("-" * 70)
    print("  By weekday:")
    for day, row in stats.per_weekday_win_rates.items():
        print(f"    {day:<10} {row['win_rate'] * 100:5.1f}%  ({row['wins']}W/{row['trades'] - row['wins']}L)")
    print("  By month:")
    for month, row in stats.per_month_win_rates.items():
        print(f"    {month:<10} {row['win_rate'] * 100:5.1f}%  ({row['wins']}W/{row['trades'] - row['wins']}L)")
    print("-" * 70)
    print(f"  P({outlook['target_streak']} wins in a row):  {outlook['streak_probability'] * 100:.4f}%")
    mc = outlook.get("monte_carlo")
    if mc:
        print(f"  Monte Carlo success:     {mc['success_rate'] * 100:.2f}%")
    sig = outlook["significance"]
    print(f"  Win rate p-value:        {sig['p_value']:.4f}{'  (significant)' if sig['is_significant'] else ''}")
    print("-" * 70)
    print("  Skip reasons:")
    for reason, count in sorted(stats.skip_reason_counts.items(), key=lambda kv: -kv[1]):
        print(f"    {reason:<40} {count}")
    print("=" * 70)


def main(argv=None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_strategy_config(args.config)
        if args.decision_hour is not None:
            config = _with_decision_hour(config, args.decision_hour)
        jobs = _build_jobs(args, config)
    except KillzoneError as e:
        logger.error("%s", e)
        return 1

    cancel = threading.Event()
    try:
        stats = asyncio.run(replay_assets(jobs, config, cancel_event=cancel))
    except KeyboardInterrupt:
        cancel.set()
        logger.warning("Replay interrupted")
        return 130

    outlook = challenge_outlook(
        stats, config.replay.target_streak, simulations=args.simulations, seed=config.replay.seed
    )
    if args.json:
        print(json.dumps({"results": stats.to_dict(), "outlook": outlook}, indent=2))
    else:
        _print_report(stats, outlook)
    return 0


if __name__ == "__main__":
    sys.exit(main())
