"""
Candle loading - CSV files and DataFrames into CandleSeries.

Expected columns: timestamp, open, high, low, close[, volume]. Timestamps
may be ISO strings, datetimes or epoch milliseconds; all become UTC.
"""

import logging
from pathlib import Path
from typing import List, Tuple, Union

import pandas as pd

from killzone.core.candles import Candle, CandleSeries
from killzone.core.exceptions import DataError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("open", "high", "low", "close")

# pandas offset aliases per timeframe label
_RESAMPLE_RULES = {
    "5m": "5min",
    "15m": "15min",
    "30m": "30min",
    "1h": "1h",
    "4h": "4h",
    "1d": "1D",
}


def _utc_index(df: pd.DataFrame) -> pd.DatetimeIndex:
    if "timestamp" in df.columns:
        raw = df["timestamp"]
        if pd.api.types.is_numeric_dtype(raw):
            index = pd.to_datetime(raw, unit="ms", utc=True)
        else:
            index = pd.to_datetime(raw, utc=True)
        return pd.DatetimeIndex(index)
    if isinstance(df.index, pd.DatetimeIndex):
        index = df.index
        return index.tz_localize("UTC") if index.tz is None else index.tz_convert("UTC")
    raise DataError("DataFrame needs a 'timestamp' column or a DatetimeIndex")


def frame_to_series(df: pd.DataFrame, symbol: str = "", timeframe: str = "") -> CandleSeries:
    """
    Convert an OHLCV DataFrame into a CandleSeries.

    Rows are sorted by timestamp; duplicate timestamps raise DataError.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise DataError(f"Missing columns for {symbol or 'series'}: {missing}")
    if df.empty:
        return CandleSeries((), symbol, timeframe)

    frame = df.copy()
    frame.index = _utc_index(frame)
    frame = frame.sort_index()
    if frame.index.has_duplicates:
        dup = frame.index[frame.index.duplicated()][0]
        raise DataError(f"Duplicate timestamp {dup.isoformat()} in {symbol or 'series'} {timeframe}")

    volume = frame["volume"] if "volume" in frame.columns else pd.Series(0.0, index=frame.index)
    candles = [
        Candle(ts.to_pydatetime(), float(o), float(h), float(lo), float(c), float(v))
        for ts, o, h, lo, c, v in zip(
            frame.index, frame["open"], frame["high"], frame["low"], frame["close"], volume
        )
    ]
    return CandleSeries(candles, symbol, timeframe)


def series_to_frame(series: CandleSeries) -> pd.DataFrame:
    """Inverse of frame_to_series, indexed by timestamp."""
    return pd.DataFrame(
        {
            "open": [c.open for c in series],
            "high": [c.high for c in series],
            "low": [c.low for c in series],
            "close": [c.close for c in series],
            "volume": [c.volume for c in series],
        },
        index=pd.DatetimeIndex([c.timestamp for c in series], name="timestamp"),
    )


def load_csv(path: Union[str, Path], symbol: str = "", timeframe: str = "") -> CandleSeries:
    """Read a CSV of candles."""
    path = Path(path)
    try:
        df = pd.read_csv(path)
    except (OSError, pd.errors.ParserError) as e:
        raise DataError(f"Cannot read candles from {path}: {e}") from e
    series = frame_to_series(df, symbol or path.stem, timeframe)
    logger.info("Loaded %d candles from %s", len(series), path.name)
    return series


def resample_series(series: CandleSeries, timeframe: str) -> CandleSeries:
    """
    Aggregate a lower-timeframe series into ``timeframe`` candles.

    Each output candle is stamped with its period start. The last period may
    be partial; closed views drop it until its full duration has passed.
    """
    if timeframe not in _RESAMPLE_RULES:
        raise DataError(f"Cannot resample to {timeframe!r}")
    if not len(series):
        return CandleSeries((), series.symbol, timeframe)

    frame = series_to_frame(series)
    rule = _RESAMPLE_RULES[timeframe]
    agg = frame.resample(rule, label="left", closed="left").agg(
        {"open": "first", "high": "max", "low": "min", "close": "last", "volume": "sum"}
    ).dropna(subset=["open"])
    return frame_to_series(agg, series.symbol, timeframe)


def align_series(primary: CandleSeries, reference: CandleSeries) -> Tuple[CandleSeries, CandleSeries]:
    """Keep only candles whose timestamps exist in both series."""
    common = set(c.timestamp for c in primary) & set(c.timestamp for c in reference)
    dropped = len(primary) + len(reference) - 2 * len(common)
    if dropped:
        logger.debug("Alignment dropped %d unmatched candles", dropped)
    keep_p: List[Candle] = [c for c in primary if c.timestamp in common]
    keep_r: List[Candle] = [c for c in reference if c.timestamp in common]
    return (
        CandleSeries(keep_p, primary.symbol, primary.timeframe),
        CandleSeries(keep_r, reference.symbol, reference.timeframe),
    )
