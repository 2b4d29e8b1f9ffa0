"""Mutable holdings and cash of a portfolio during one backtest run.

Every change of holdings or cash goes through this class and is appended
to the transaction log, so the log alone is enough to rebuild the state.
"""

import logging
import math
from datetime import date

from finsim.models import CASH_TICKER, Transaction, TransactionType

logger = logging.getLogger(__name__)

# Float dust tolerated on the cash balance
CASH_EPSILON = 1e-9


class PortfolioState:
    def __init__(self, lot_size: float | None = 1.0):
        self.lot_size = lot_size
        self.holdings: dict[str, float] = {}
        self.cash = 0.0
        self.transactions: list[Transaction] = []
        self.alerts: list[str] = []
        self.month = 0
        self.date: date | None = None

    def begin_month(self, month: int, on: date):
        self.month = month
        self.date = on

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def shares(self, ticker: str) -> float:
        return self.holdings.get(ticker, 0.0)

    def market_value(self, prices: dict[str, float]) -> float:
        return sum(shares * prices[ticker] for ticker, shares in self.holdings.items() if shares)

    def total_value(self, prices: dict[str, float]) -> float:
        return self.cash + self.market_value(prices)

    def floor_shares(self, shares: float) -> float:
        """Round a share count down to a whole number of lots."""
        if shares <= 0:
            return 0.0
        if self.lot_size is None:
            return shares
        lots = math.floor(shares / self.lot_size + CASH_EPSILON)
        return lots * self.lot_size

    def affordable_shares(self, amount: float, price: float) -> float:
        """Largest lot-rounded quantity costing no more than amount."""
        if amount <= 0 or price <= 0:
            return 0.0
        shares = self.floor_shares(amount / price)
        while self.lot_size and shares > 0 and shares * price > amount + CASH_EPSILON:
            shares -= self.lot_size
        return shares

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _record(
        self,
        ticker: str,
        tx_type: TransactionType,
        price: float,
        shares_added: float,
        amount: float,
    ) -> Transaction:
        tx = Transaction(
            month=self.month,
            date=self.date,
            ticker=ticker,
            type=tx_type,
            price=price,
            shares_added=shares_added,
            total_shares=self.shares(ticker) if ticker != CASH_TICKER else 0.0,
            amount=amount,
            cash_balance=self.cash,
        )
        self.transactions.append(tx)
        return tx

    def _settle_cash(self):
        if -CASH_EPSILON < self.cash < 0:
            self.cash = 0.0
        elif self.cash < 0:
            message = f"Negative cash balance {self.cash:.2f} in month {self.month} ({self.date})"
            logger.error(message)
            self.alerts.append(message)

    def credit(
        self,
        amount: float,
        tx_type: TransactionType = TransactionType.CASH_CREDIT,
        ticker: str = CASH_TICKER,
        price: float = 1.0,
    ) -> Transaction | None:
        if amount <= 0:
            return None
        self.cash += amount
        return self._record(ticker, tx_type, price, 0.0, amount)

    def buy(self, ticker: str, shares: float, price: float, tx_type: TransactionType) -> float:
        """Buy shares, returning the cost. Never spends more than the cash held."""
        if shares <= 0:
            return 0.0
        cost = shares * price
        if cost > self.cash + CASH_EPSILON:
            shares = self.affordable_shares(self.cash, price)
            if shares <= 0:
                return 0.0
            cost = shares * price
        self.cash -= cost
        self._settle_cash()
        self.holdings[ticker] = self.shares(ticker) + shares
        self._record(ticker, tx_type, price, shares, cost)
        return cost

    def sell(self, ticker: str, shares: float, price: float) -> float:
        shares = min(shares, self.shares(ticker))
        if shares <= 0:
            return 0.0
        proceeds = shares * price
        self.cash += proceeds
        self.holdings[ticker] = self.shares(ticker) - shares
        self._record(ticker, TransactionType.REBALANCE_SELL, price, -shares, proceeds)
        return proceeds

    def record_reserve(self) -> Transaction | None:
        """Log the residual cash left after this month's trades."""
        if self.cash <= CASH_EPSILON:
            return None
        return self._record(CASH_TICKER, TransactionType.CASH_RESERVE, 1.0, 0.0, self.cash)
