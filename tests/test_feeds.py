"""Unit tests for finsim.data.feeds module."""

from datetime import date

import pandas as pd
import pytest

from conftest import make_price_feed
from finsim.data.feeds import (
    FrameBenchmarkFeed,
    FrameDividendFeed,
    FramePriceFeed,
    YieldDividendFeed,
    load_price_csv,
    month_dates,
    month_end,
)


class TestCalendar:
    """Test month_dates and month_end."""

    def test_month_dates_first_of_month(self):
        dates = month_dates(date(2020, 1, 15), date(2020, 4, 10))
        assert dates == [date(2020, 1, 1), date(2020, 2, 1), date(2020, 3, 1), date(2020, 4, 1)]

    def test_month_end(self):
        assert month_end(date(2020, 2, 1)) == date(2020, 2, 29)
        assert month_end(date(2021, 12, 1)) == date(2021, 12, 31)


class TestFramePriceFeed:
    """Test FramePriceFeed lookups."""

    def test_month_matching(self):
        frame = pd.DataFrame(
            {"AAA": [10.0, 10.5, 11.0]},
            index=pd.to_datetime(["2020-01-31", "2020-02-14", "2020-02-28"]),
        )
        feed = FramePriceFeed(frame)
        assert feed.get_close("AAA", date(2020, 1, 1)) == 10.0
        assert feed.get_close("AAA", date(2020, 2, 1)) == 11.0

    def test_missing(self):
        feed = make_price_feed({"AAA": [10.0, None]})
        assert feed.get_close("AAA", date(2020, 2, 1)) is None
        assert feed.get_close("AAA", date(2021, 1, 1)) is None
        assert feed.get_close("ZZZ", date(2020, 1, 1)) is None

    def test_from_dict(self):
        feed = FramePriceFeed.from_dict({
            "AAA": {date(2020, 1, 31): 10.0, date(2020, 2, 28): 12.0},
            "BBB": {date(2020, 1, 31): 5.0},
        })
        assert sorted(feed.tickers) == ["AAA", "BBB"]
        assert feed.get_close("AAA", date(2020, 2, 1)) == 12.0
        assert feed.get_close("BBB", date(2020, 2, 1)) is None

    def test_load_csv(self, tmp_path):
        path = tmp_path / "prices.csv"
        path.write_text("date,AAA,BBB\n2020-01-31,10,20\n2020-02-28,11,\n")
        feed = load_price_csv(str(path))
        assert feed.tickers == ["AAA", "BBB"]
        assert feed.get_close("AAA", date(2020, 2, 1)) == 11.0
        assert feed.get_close("BBB", date(2020, 2, 1)) is None


class TestDividendFeeds:
    """Test event and yield based dividend feeds."""

    def test_events_in_range(self, dividend_feed):
        events = dividend_feed.get_dividends("AAA", date(2020, 2, 1), date(2020, 2, 29))
        assert len(events) == 1
        assert events[0].amount_per_share == 2.0
        assert dividend_feed.get_dividends("AAA", date(2020, 3, 1), date(2020, 3, 31)) == []

    def test_unknown_ticker(self, dividend_feed):
        assert dividend_feed.get_dividends("BBB", date(2020, 2, 1), date(2020, 2, 29)) is None

    def test_yield_seasonality(self):
        prices = make_price_feed({"AAA": [10.0] * 12})
        feed = YieldDividendFeed(prices, {"AAA": 0.06})
        events = feed.get_dividends("AAA", date(2020, 1, 1), date(2020, 12, 31))
        assert [e.ex_date.month for e in events] == [3, 8, 10]
        assert sum(e.amount_per_share for e in events) == pytest.approx(0.6)

    def test_yield_fallback(self, dividend_feed):
        prices = make_price_feed({"AAA": [10.0] * 12})
        feed = YieldDividendFeed(prices, {"BBB": 0.05}, fallback=dividend_feed)
        events = feed.get_dividends("AAA", date(2020, 2, 1), date(2020, 2, 29))
        assert events[0].amount_per_share == 2.0
        assert YieldDividendFeed(prices, {}).get_dividends("AAA", date(2020, 2, 1), date(2020, 2, 29)) is None

    def test_from_empty_records(self):
        feed = FrameDividendFeed.from_records([])
        assert feed.get_dividends("AAA", date(2020, 1, 1), date(2020, 12, 31)) is None


class TestBenchmarkFeed:
    """Test FrameBenchmarkFeed returns."""

    def test_monthly_returns(self):
        dates = month_dates(date(2020, 1, 1), date(2020, 4, 1))
        levels = pd.DataFrame({"CDI": [100.0, 101.0, None, 103.0]}, index=pd.to_datetime(dates))
        feed = FrameBenchmarkFeed(levels)
        returns = feed.get_monthly_returns("CDI", dates)
        assert returns[0] is None
        assert returns[1] == pytest.approx(0.01)
        assert returns[2] is None
        assert returns[3] is None

    def test_unknown_benchmark(self):
        dates = month_dates(date(2020, 1, 1), date(2020, 3, 1))
        feed = FrameBenchmarkFeed(pd.DataFrame({"CDI": [1.0, 1.0, 1.0]}, index=pd.to_datetime(dates)))
        assert feed.get_monthly_returns("IBOV", dates) == [None, None, None]
