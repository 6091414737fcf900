"""
Tests for CandleSeries and CausalView.

Validates the temporal guarantees everything else relies on:
- online views never expose a candle after the cursor
- the cursor candle is in progress (only its open is tradable)
- closed views only hold candles whose full period has ended
"""

import pytest
from datetime import datetime, timedelta, timezone

from killzone.core.candles import Candle, CandleSeries, CausalView, EvaluationCursor
from killzone.core.exceptions import DataError, TemporalViolation

T0 = datetime(2025, 3, 3, 13, 0, tzinfo=timezone.utc)


def _make_series(n: int = 10, minutes: int = 5, start: datetime = T0) -> CandleSeries:
    candles = [
        Candle(start + timedelta(minutes=minutes * i), 100 + i, 101 + i, 99 + i, 100.5 + i)
        for i in range(n)
    ]
    return CandleSeries(candles, "ETH/USD", f"{minutes}m")


class TestCandle:

    def test_naive_timestamp_becomes_utc(self):
        c = Candle(datetime(2025, 3, 3, 13, 0), 1, 2, 0.5, 1.5)
        assert c.timestamp.tzinfo == timezone.utc

    def test_wicks_and_body(self):
        c = Candle(T0, open=100, high=105, low=98, close=102)
        assert c.body == 2
        assert c.range == 7
        assert c.upper_wick == 3
        assert c.lower_wick == 2
        assert c.is_bullish and not c.is_bearish
        assert c.body_percent == pytest.approx(2.0)


class TestCandleSeries:

    def test_rejects_unordered_timestamps(self):
        a = Candle(T0, 1, 2, 0.5, 1.5)
        b = Candle(T0 - timedelta(minutes=5), 1, 2, 0.5, 1.5)
        with pytest.raises(DataError):
            CandleSeries([a, b])

    def test_rejects_duplicate_timestamps(self):
        a = Candle(T0, 1, 2, 0.5, 1.5)
        with pytest.raises(DataError):
            CandleSeries([a, a])

    def test_between_is_half_open(self):
        series = _make_series(10)
        part = series.between(T0 + timedelta(minutes=10), T0 + timedelta(minutes=25))
        assert [c.timestamp for c in part] == [
            T0 + timedelta(minutes=10),
            T0 + timedelta(minutes=15),
            T0 + timedelta(minutes=20),
        ]


class TestOnlineView:

    def test_cursor_candle_is_in_progress(self):
        series = _make_series(10)
        view = series.at(EvaluationCursor(series[6].timestamp))
        assert len(view.completed) == 6
        assert view.in_progress == series[6]
        assert view.cursor_index == 6

    def test_cursor_between_candles_uses_last_opened(self):
        series = _make_series(10)
        view = series.at(EvaluationCursor(series[6].timestamp + timedelta(minutes=2)))
        assert view.in_progress == series[6]
        assert all(c.timestamp < series[6].timestamp for c in view.completed)

    def test_nothing_after_cursor(self):
        series = _make_series(20)
        for k in range(20):
            cursor = EvaluationCursor(series[k].timestamp)
            view = series.at(cursor)
            assert all(c.timestamp <= cursor.timestamp for c in view.candles)

    def test_cursor_before_first_candle_raises(self):
        series = _make_series(5)
        with pytest.raises(TemporalViolation):
            series.at(EvaluationCursor(T0 - timedelta(minutes=1)))

    def test_current_price_is_in_progress_open(self):
        series = _make_series(10)
        view = series.at(EvaluationCursor(series[4].timestamp))
        assert view.current_price == series[4].open

    def test_online_rejects_future_candle(self):
        series = _make_series(5)
        with pytest.raises(TemporalViolation):
            CausalView.online(series.candles, EvaluationCursor(series[3].timestamp))

    def test_completed_after_cursor_rejected(self):
        series = _make_series(5)
        with pytest.raises(TemporalViolation):
            CausalView(series.candles, None, EvaluationCursor(series[2].timestamp))

    def test_head_treats_last_as_in_progress(self):
        series = _make_series(10)
        view = series.at(EvaluationCursor(series[9].timestamp))
        head = view.head(4)
        assert len(head.completed) == 3
        assert head.in_progress == series[3]

    def test_drop_recent_has_no_in_progress(self):
        series = _make_series(10)
        view = series.at(EvaluationCursor(series[9].timestamp))
        dropped = view.drop_recent(3)
        assert dropped.in_progress is None
        assert dropped.completed == series.candles[:6]


class TestClosedView:

    def test_only_finished_periods(self):
        series = _make_series(3, minutes=240, start=datetime(2025, 3, 3, 0, 0, tzinfo=timezone.utc))
        cursor = EvaluationCursor(datetime(2025, 3, 3, 8, 30, tzinfo=timezone.utc))
        view = series.closed_before(cursor, timedelta(hours=4))
        # 00:00 and 04:00 closed; 08:00 is still running
        assert [c.timestamp.hour for c in view.completed] == [0, 4]
        assert view.in_progress is None

    def test_limit_keeps_newest(self):
        series = _make_series(10, minutes=60)
        cursor = EvaluationCursor(series[-1].timestamp + timedelta(hours=1))
        view = series.closed_before(cursor, timedelta(hours=1), limit=3)
        assert view.completed == series.candles[-3:]


class TestRetrospectiveView:

    def test_is_flagged(self):
        view = _make_series(5).retrospective()
        assert view.is_retrospective
        assert len(view.completed) == 5
        assert view.current_price == view.completed[-1].close
