"""Pluggable rules the engine consults every simulated month.

RebalancingPolicy decides which months restore target weights.
DividendPolicy decides what happens to a dividend once it is credited.
"""

import logging
from abc import ABC, abstractmethod

from finsim.analysis.portfolio import PortfolioState
from finsim.models import RebalanceFrequency, TransactionType

logger = logging.getLogger(__name__)


class RebalancingPolicy(ABC):
    @abstractmethod
    def is_rebalance_month(self, month_index: int) -> bool:
        """True when month_index (0 = first simulated month) is a rebalance month."""


class CalendarRebalancingPolicy(RebalancingPolicy):
    """Rebalance on a fixed calendar counted from the first simulated month.

    monthly: every month; quarterly: every 3rd month; yearly: every 12th month.
    """

    INTERVALS = {
        RebalanceFrequency.MONTHLY: 1,
        RebalanceFrequency.QUARTERLY: 3,
        RebalanceFrequency.YEARLY: 12,
    }

    def __init__(self, frequency: RebalanceFrequency):
        self.frequency = RebalanceFrequency(frequency)
        self.interval = self.INTERVALS[self.frequency]

    def is_rebalance_month(self, month_index: int) -> bool:
        return month_index % self.interval == 0

    def __repr__(self):
        return f"CalendarRebalancingPolicy({self.frequency.value})"


class DividendPolicy(ABC):
    @abstractmethod
    def apply(self, state: PortfolioState, ticker: str, amount: float, price: float) -> float:
        """Handle a dividend already credited to cash.

        Args:
            state: Portfolio being simulated
            ticker: Paying asset
            amount: Dividend credited this month
            price: Asset price for this month

        Returns:
            Amount spent out of the dividend.
        """


class ReinvestDividendPolicy(DividendPolicy):
    """Buy the paying asset back with the dividend, in whole lots.

    The fraction of a lot the dividend cannot buy stays in cash.
    """

    def apply(self, state: PortfolioState, ticker: str, amount: float, price: float) -> float:
        shares = state.affordable_shares(min(amount, state.cash), price)
        if shares <= 0:
            logger.debug(f"{ticker}: dividend {amount:.2f} below one lot at {price:.2f}, kept in cash")
            return 0.0
        return state.buy(ticker, shares, price, TransactionType.DIVIDEND_REINVESTMENT)


class CashDividendPolicy(DividendPolicy):
    """Keep dividends in cash until the next rebalance deploys them."""

    def apply(self, state: PortfolioState, ticker: str, amount: float, price: float) -> float:
        return 0.0
