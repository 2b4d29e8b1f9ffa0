"""Unit tests for finsim.analysis.policies and portfolio state."""

from datetime import date

import pytest

from finsim.analysis.policies import CalendarRebalancingPolicy, CashDividendPolicy, ReinvestDividendPolicy
from finsim.analysis.portfolio import PortfolioState
from finsim.models import RebalanceFrequency, TransactionType


class TestCalendarRebalancing:
    """Test CalendarRebalancingPolicy."""

    def test_monthly(self):
        policy = CalendarRebalancingPolicy(RebalanceFrequency.MONTHLY)
        assert all(policy.is_rebalance_month(i) for i in range(24))

    def test_quarterly(self):
        policy = CalendarRebalancingPolicy(RebalanceFrequency.QUARTERLY)
        assert [i for i in range(12) if policy.is_rebalance_month(i)] == [0, 3, 6, 9]

    def test_yearly(self):
        policy = CalendarRebalancingPolicy("yearly")
        assert [i for i in range(36) if policy.is_rebalance_month(i)] == [0, 12, 24]


@pytest.fixture
def state():
    state = PortfolioState(lot_size=1.0)
    state.begin_month(1, date(2020, 2, 1))
    state.credit(5000.0)
    state.buy("AAA", 100, 50.0, TransactionType.CONTRIBUTION)
    return state


class TestPortfolioState:
    """Test lot rounding and cash handling."""

    def test_affordable_whole_lots(self, state):
        assert state.affordable_shares(199.0, 50.0) == 3.0
        assert state.affordable_shares(200.0, 50.0) == 4.0
        assert state.affordable_shares(0.0, 50.0) == 0.0

    def test_round_lots(self):
        state = PortfolioState(lot_size=100.0)
        assert state.affordable_shares(1990.0, 10.0) == 100.0

    def test_fractional(self):
        state = PortfolioState(lot_size=None)
        assert state.affordable_shares(125.0, 50.0) == pytest.approx(2.5)

    def test_buy_never_overspends(self, state):
        state.credit(120.0)
        cost = state.buy("AAA", 10, 50.0, TransactionType.REBALANCE_BUY)
        assert cost == 100.0
        assert state.cash == pytest.approx(20.0)
        assert state.shares("AAA") == 102.0

    def test_sell(self, state):
        proceeds = state.sell("AAA", 10, 60.0)
        assert proceeds == 600.0
        assert state.transactions[-1].shares_added == -10
        assert state.transactions[-1].total_shares == 90

    def test_transaction_carries_running_cash(self, state):
        assert [tx.cash_balance for tx in state.transactions] == [5000.0, 0.0]


class TestDividendPolicies:
    """Test dividend handling."""

    def test_reinvest(self, state):
        state.credit(200.0, TransactionType.DIVIDEND_PAYMENT, ticker="AAA", price=50.0)
        spent = ReinvestDividendPolicy().apply(state, "AAA", 200.0, 50.0)
        assert spent == 200.0
        assert state.shares("AAA") == 104
        assert state.transactions[-1].type == TransactionType.DIVIDEND_REINVESTMENT

    def test_reinvest_below_one_lot(self, state):
        state.credit(30.0, TransactionType.DIVIDEND_PAYMENT, ticker="AAA", price=50.0)
        assert ReinvestDividendPolicy().apply(state, "AAA", 30.0, 50.0) == 0.0
        assert state.cash == pytest.approx(30.0)

    def test_cash(self, state):
        state.credit(200.0, TransactionType.DIVIDEND_PAYMENT, ticker="AAA", price=50.0)
        assert CashDividendPolicy().apply(state, "AAA", 200.0, 50.0) == 0.0
        assert state.cash == pytest.approx(200.0)
