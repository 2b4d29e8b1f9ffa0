"""Pytest configuration and shared fixtures."""

from datetime import date

import pandas as pd
import pytest

from finsim.data.feeds import FrameDividendFeed, FramePriceFeed, month_dates
from finsim.models import AmortizationSystem, Debt, DebtSimulationConfig, PortfolioAsset, SimulationConfig

START = date(2020, 1, 1)


def make_price_feed(series: dict[str, list[float | None]], start: date = START) -> FramePriceFeed:
    """Monthly closes starting at `start`, None for a missing month."""
    length = max(len(values) for values in series.values())
    dates = month_dates(start, (pd.Timestamp(start) + pd.DateOffset(months=length - 1)).date())
    frame = pd.DataFrame(
        {ticker: values + [None] * (length - len(values)) for ticker, values in series.items()},
        index=pd.to_datetime(dates),
        dtype="float64",
    )
    return FramePriceFeed(frame)


def make_config(
    weights: dict[str, float],
    months: int = 12,
    initial_capital: float = 10000.0,
    monthly_contribution: float = 0.0,
    rebalance_frequency: str = "yearly",
    **kwargs,
) -> SimulationConfig:
    end = (pd.Timestamp(START) + pd.DateOffset(months=months - 1)).date()
    return SimulationConfig(
        assets=[PortfolioAsset(ticker=t, target_allocation=w) for t, w in weights.items()],
        start_date=START,
        end_date=end,
        initial_capital=initial_capital,
        monthly_contribution=monthly_contribution,
        rebalance_frequency=rebalance_frequency,
        **kwargs,
    )


@pytest.fixture
def flat_feed():
    """Two assets with constant prices over 12 months."""
    return make_price_feed({"AAA": [50.0] * 12, "BBB": [25.0] * 12})


@pytest.fixture
def volatile_feed():
    """Two assets with uneven moves over 24 months."""
    aaa = [10.0, 10.5, 9.8, 11.2, 12.0, 11.1, 10.4, 12.6, 13.1, 12.2, 14.0, 13.5,
           12.9, 13.8, 15.2, 14.1, 13.0, 14.6, 15.9, 16.3, 15.0, 16.8, 17.5, 18.1]
    bbb = [20.0, 19.5, 21.0, 20.2, 19.1, 18.4, 19.9, 21.3, 22.0, 21.1, 20.5, 22.8,
           23.4, 22.1, 21.7, 23.9, 24.5, 23.2, 22.8, 24.1, 25.3, 24.0, 25.9, 26.4]
    return make_price_feed({"AAA": aaa, "BBB": bbb})


@pytest.fixture
def dividend_feed():
    """R$2.00 per share for AAA in February 2020."""
    return FrameDividendFeed.from_records([
        {"ticker": "AAA", "ex_date": date(2020, 2, 14), "amount_per_share": 2.0},
    ])


@pytest.fixture
def sac_debt():
    return Debt(
        balance=10000.0,
        interest_rate_annual=0.12,
        term_months=12,
        amortization_system=AmortizationSystem.SAC,
    )


@pytest.fixture
def price_debt():
    return Debt(
        balance=50000.0,
        interest_rate_annual=0.15,
        term_months=60,
        amortization_system=AmortizationSystem.PRICE,
    )


@pytest.fixture
def debt_config():
    return DebtSimulationConfig(monthly_budget=2500.0, investment_split=500.0)
