"""Domain types for the backtest engine and the debt simulator.

Inputs are frozen pydantic models so a config cannot change once a run
starts. Results are frozen as well: a re-run produces a new result and
never touches an old one.
"""

import hashlib
from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

CASH_TICKER = "CASH"


class RebalanceFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TransactionType(str, Enum):
    CONTRIBUTION = "CONTRIBUTION"
    REBALANCE_BUY = "REBALANCE_BUY"
    REBALANCE_SELL = "REBALANCE_SELL"
    CASH_RESERVE = "CASH_RESERVE"
    CASH_CREDIT = "CASH_CREDIT"
    CASH_DEBIT = "CASH_DEBIT"
    DIVIDEND_PAYMENT = "DIVIDEND_PAYMENT"
    DIVIDEND_REINVESTMENT = "DIVIDEND_REINVESTMENT"


# Sign applied to Transaction.amount when replaying the cash balance.
# CASH_RESERVE only reports the residual and moves no money.
CASH_SIGN: dict[TransactionType, int] = {
    TransactionType.CASH_CREDIT: 1,
    TransactionType.DIVIDEND_PAYMENT: 1,
    TransactionType.REBALANCE_SELL: 1,
    TransactionType.CASH_DEBIT: -1,
    TransactionType.CONTRIBUTION: -1,
    TransactionType.REBALANCE_BUY: -1,
    TransactionType.DIVIDEND_REINVESTMENT: -1,
    TransactionType.CASH_RESERVE: 0,
}

BUY_TYPES = frozenset({
    TransactionType.CONTRIBUTION,
    TransactionType.REBALANCE_BUY,
    TransactionType.DIVIDEND_REINVESTMENT,
})


class AmortizationSystem(str, Enum):
    SAC = "SAC"
    PRICE = "PRICE"


class DebtStrategy(str, Enum):
    SNIPER = "sniper"
    HYBRID = "hybrid"


class RentabilitySource(str, Enum):
    FIXED_RATE = "FIXED_RATE"
    BACKTEST = "BACKTEST"


class DataIssueKind(str, Enum):
    MISSING_PRICE = "missing_price"
    MISSING_DIVIDENDS = "missing_dividends"
    UNPRICED_ASSET = "unpriced_asset"


# ---------------------------------------------------------------------------
# Backtest inputs
# ---------------------------------------------------------------------------

class PortfolioAsset(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str = Field(min_length=1)
    target_allocation: float = Field(description="Fraction of the portfolio in (0, 1]")
    average_dividend_yield: float | None = Field(
        None, description="Annual dividend yield used when no dividend events are known"
    )


class SimulationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    assets: tuple[PortfolioAsset, ...]
    start_date: date
    end_date: date
    initial_capital: float = 0.0
    monthly_contribution: float = 0.0
    rebalance_frequency: RebalanceFrequency = RebalanceFrequency.MONTHLY
    benchmarks: tuple[str, ...] = ()

    @property
    def tickers(self) -> list[str]:
        return [asset.ticker for asset in self.assets]

    def fingerprint(self) -> str:
        """SHA-256 of the normalized config, stable across processes."""
        payload = self.model_dump_json()
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DividendEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    ex_date: date
    amount_per_share: float


# ---------------------------------------------------------------------------
# Backtest outputs
# ---------------------------------------------------------------------------

class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: int
    date: date
    ticker: str
    type: TransactionType
    price: float
    shares_added: float = 0.0
    total_shares: float = 0.0
    amount: float = 0.0
    cash_balance: float

    @property
    def cash_delta(self) -> float:
        return CASH_SIGN[self.type] * self.amount


class MonthlySnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: int
    date: date
    portfolio_value: float
    contribution: float
    monthly_return: float
    holdings: dict[str, float]
    prices: dict[str, float]
    cash_balance: float
    dividends: float = 0.0


class DataQualityIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: int
    date: date
    ticker: str
    kind: DataIssueKind
    message: str


class DrawdownPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: date
    trough_date: date
    end_date: date
    duration_months: int
    depth: float
    recovered: bool


class RiskSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    volatility: float
    sharpe_ratio: float | None
    max_drawdown: float
    drawdown_periods: list[DrawdownPeriod]
    cagr: float
    cumulative_return: float
    positive_months: int
    negative_months: int
    benchmark_outperformance: dict[str, float] = Field(default_factory=dict)


class AssetPerformance(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    allocation: float
    final_shares: float
    final_value: float
    total_return: float
    contribution: float
    reinvestment: float
    average_price: float
    total_dividends: float


class TickerAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    first_available: date | None
    last_available: date | None
    months_with_data: int
    total_months: int
    missing_months: list[date]
    coverage: float


class DataAvailabilityReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    quality: str
    tickers: list[TickerAvailability]
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class BacktestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    config_fingerprint: str
    total_invested: float
    final_value: float
    final_cash_reserve: float
    total_dividends_received: float
    total_return: float
    annualized_return: float
    volatility: float
    sharpe_ratio: float | None
    max_drawdown: float
    drawdown_periods: list[DrawdownPeriod]
    positive_months: int
    negative_months: int
    monthly_returns: list[float]
    portfolio_evolution: list[MonthlySnapshot]
    asset_performance: list[AssetPerformance]
    transactions: list[Transaction]
    data_quality_issues: list[DataQualityIssue] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)
    benchmark_outperformance: dict[str, float] = Field(default_factory=dict)
    data_availability: DataAvailabilityReport | None = None


# ---------------------------------------------------------------------------
# Debt simulation
# ---------------------------------------------------------------------------

class Debt(BaseModel):
    model_config = ConfigDict(frozen=True)

    balance: float
    interest_rate_annual: float
    term_months: int
    monthly_payment: float | None = None
    amortization_system: AmortizationSystem = AmortizationSystem.PRICE
    name: str | None = None


class ScheduleEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: int
    opening_balance: float
    correction: float
    interest_paid: float
    amortization: float
    payment: float
    balance: float


class DebtSimulationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    monthly_budget: float
    investment_split: float = 0.0
    monthly_tr: float = 0.0
    max_months: int = 360


class DebtMonth(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: int
    debt_balance: float
    invested_balance: float
    net_worth: float
    payment: float
    interest_paid: float
    correction: float
    scheduled_amortization: float
    extra_amortization: float
    investment_contribution: float
    investment_return: float


class DebtSimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: DebtStrategy
    break_even_month: int | None
    payoff_month: int | None
    total_months: int
    final_debt_balance: float
    final_invested_balance: float
    final_net_worth: float
    total_interest_paid: float
    total_investment_contribution: float
    total_investment_return: float
    monthly_data: list[DebtMonth]


class Rentability(BaseModel):
    model_config = ConfigDict(frozen=True)

    annual_rate: float
    source: RentabilitySource
    details: dict[str, Any] = Field(default_factory=dict)


class StrategyComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    sniper: DebtSimulationResult
    hybrid: DebtSimulationResult
    rentability: Rentability
    break_even_month: int | None
