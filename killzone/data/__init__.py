"""Collaborator interfaces and candle loading."""

from .base import (
    ExecutionProvider,
    ExecutionResult,
    ExternalSignal,
    ExternalSignalProvider,
    MarketDataProvider,
    NewsCheck,
    NewsProvider,
    Notifier,
    with_retry,
)
from .loader import align_series, frame_to_series, load_csv, resample_series

__all__ = [
    "ExecutionProvider",
    "ExecutionResult",
    "ExternalSignal",
    "ExternalSignalProvider",
    "MarketDataProvider",
    "NewsCheck",
    "NewsProvider",
    "Notifier",
    "with_retry",
    "align_series",
    "frame_to_series",
    "load_csv",
    "resample_series",
]
