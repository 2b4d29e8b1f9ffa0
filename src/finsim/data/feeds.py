"""Price, dividend and benchmark feeds consumed by the engine.

The engine only depends on the three protocols below. The pandas-backed
implementations cover in-memory series and CSV files; any other source
(database, remote API) can be plugged in by satisfying the same protocol.
"""

import logging
from datetime import date
from typing import Protocol

import pandas as pd

from finsim.models import DividendEvent

logger = logging.getLogger(__name__)

# Share of the annual dividend yield paid per month, used when only an
# average yield is known for an asset.
DIVIDEND_SEASONALITY: dict[int, float] = {
    3: 0.333,
    8: 0.333,
    10: 0.334,
}


def month_dates(start: date, end: date) -> list[date]:
    """First-of-month dates from start's month to end, inclusive."""
    first = start.replace(day=1)
    return [ts.date() for ts in pd.date_range(start=first, end=end, freq="MS")]


def month_end(d: date) -> date:
    return (pd.Timestamp(d) + pd.offsets.MonthEnd(0)).date()


class PriceFeed(Protocol):
    def get_close(self, ticker: str, on: date) -> float | None:
        ...


class DividendFeed(Protocol):
    def get_dividends(self, ticker: str, start: date, end: date) -> list[DividendEvent] | None:
        """Dividend events with ex_date in [start, end].

        An empty list means no dividend was paid; None means the feed has
        no dividend information for the ticker.
        """
        ...


class BenchmarkFeed(Protocol):
    def get_monthly_returns(self, name: str, dates: list[date]) -> list[float | None]:
        ...


# ---------------------------------------------------------------------------
# pandas implementations
# ---------------------------------------------------------------------------

class FramePriceFeed:
    """Monthly closes held in a DataFrame (date index, one column per ticker).

    Each close is keyed by its calendar month so daily or month-end indexed
    data resolves against the engine's first-of-month dates.
    """

    def __init__(self, prices: pd.DataFrame):
        frame = prices.copy()
        frame.index = pd.to_datetime(frame.index).to_period("M")
        # Last observation of each month is that month's close
        self._prices = frame[~frame.index.duplicated(keep="last")].sort_index()

    @classmethod
    def from_dict(cls, series: dict[str, dict[date, float]]) -> "FramePriceFeed":
        return cls(pd.DataFrame(series))

    @property
    def tickers(self) -> list[str]:
        return list(self._prices.columns)

    def get_close(self, ticker: str, on: date) -> float | None:
        if ticker not in self._prices.columns:
            return None
        period = pd.Period(on, freq="M")
        if period not in self._prices.index:
            return None
        value = self._prices.at[period, ticker]
        if pd.isna(value) or value <= 0:
            return None
        return float(value)


class FrameDividendFeed:
    """Dividend events from a long-format DataFrame.

    Expected columns: ticker, ex_date, amount_per_share.
    """

    def __init__(self, events: pd.DataFrame):
        frame = events.copy()
        frame["ex_date"] = pd.to_datetime(frame["ex_date"]).dt.date
        self._events = frame
        self._tickers = set(frame["ticker"])

    @classmethod
    def from_records(cls, records: list[dict]) -> "FrameDividendFeed":
        return cls(pd.DataFrame(records, columns=["ticker", "ex_date", "amount_per_share"]))

    def get_dividends(self, ticker: str, start: date, end: date) -> list[DividendEvent] | None:
        if ticker not in self._tickers:
            return None
        rows = self._events[
            (self._events["ticker"] == ticker)
            & (self._events["ex_date"] >= start)
            & (self._events["ex_date"] <= end)
        ]
        return [
            DividendEvent(ex_date=row.ex_date, amount_per_share=float(row.amount_per_share))
            for row in rows.itertuples(index=False)
        ]


class YieldDividendFeed:
    """Estimates dividends from an average annual yield.

    The yearly payout (yield x close price) is spread over March, August and
    October. Tickers without a yield fall through to the wrapped feed.
    """

    def __init__(
        self,
        price_feed: PriceFeed,
        yields: dict[str, float],
        fallback: DividendFeed | None = None,
    ):
        self._prices = price_feed
        self._yields = yields
        self._fallback = fallback

    def get_dividends(self, ticker: str, start: date, end: date) -> list[DividendEvent] | None:
        dividend_yield = self._yields.get(ticker)
        if dividend_yield is None:
            if self._fallback is None:
                return None
            return self._fallback.get_dividends(ticker, start, end)

        events = []
        for month in month_dates(start, end):
            share = DIVIDEND_SEASONALITY.get(month.month)
            if share is None or dividend_yield <= 0:
                continue
            price = self._prices.get_close(ticker, month)
            if price is None:
                continue
            events.append(DividendEvent(
                ex_date=month,
                amount_per_share=price * dividend_yield * share,
            ))
        return events


class FrameBenchmarkFeed:
    """Benchmark levels (date index, one column per benchmark).

    Monthly returns are derived from consecutive month levels; the first
    month and any month whose level or previous level is missing is None.
    """

    def __init__(self, levels: pd.DataFrame):
        frame = levels.copy()
        frame.index = pd.to_datetime(frame.index).to_period("M")
        self._levels = frame[~frame.index.duplicated(keep="last")].sort_index()

    @property
    def names(self) -> list[str]:
        return list(self._levels.columns)

    def _level(self, name: str, on: date) -> float | None:
        period = pd.Period(on, freq="M")
        if period not in self._levels.index:
            return None
        value = self._levels.at[period, name]
        return None if pd.isna(value) else float(value)

    def get_monthly_returns(self, name: str, dates: list[date]) -> list[float | None]:
        if name not in self._levels.columns:
            logger.warning(f"Benchmark {name} not available")
            return [None] * len(dates)

        returns: list[float | None] = [None]
        for prev, cur in zip(dates, dates[1:]):
            prev_level = self._level(name, prev)
            cur_level = self._level(name, cur)
            if prev_level is None or cur_level is None or prev_level <= 0:
                returns.append(None)
            else:
                returns.append(cur_level / prev_level - 1)
        return returns[: len(dates)]


# ---------------------------------------------------------------------------
# CSV loaders
# ---------------------------------------------------------------------------

def load_price_csv(path: str) -> FramePriceFeed:
    """Wide CSV: a 'date' column followed by one close column per ticker."""
    frame = pd.read_csv(path, parse_dates=["date"], index_col="date")
    logger.info(f"Loaded prices for {len(frame.columns)} tickers from {path}")
    return FramePriceFeed(frame)


def load_dividend_csv(path: str) -> FrameDividendFeed:
    """Long CSV with columns ticker, ex_date, amount_per_share."""
    frame = pd.read_csv(path)
    logger.info(f"Loaded {len(frame)} dividend events from {path}")
    return FrameDividendFeed(frame)


def load_benchmark_csv(path: str) -> FrameBenchmarkFeed:
    """Wide CSV: a 'date' column followed by one level column per benchmark."""
    frame = pd.read_csv(path, parse_dates=["date"], index_col="date")
    logger.info(f"Loaded benchmarks {list(frame.columns)} from {path}")
    return FrameBenchmarkFeed(frame)
