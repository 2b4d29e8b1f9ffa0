"""Portfolio backtesting engine.

Steps a portfolio through history one calendar month at a time: new money,
dividends and rebalancing are applied in that order, every trade is written
to the transaction log, and a snapshot closes each month. Risk metrics are
computed once over the full evolution.

Pure computation over the feeds passed in: no persistence, no network.
"""

import logging
from collections import defaultdict
from datetime import date

from finsim.analysis.ledger import verify_ledger
from finsim.analysis.policies import (
    CalendarRebalancingPolicy,
    DividendPolicy,
    RebalancingPolicy,
    ReinvestDividendPolicy,
)
from finsim.analysis.portfolio import CASH_EPSILON, PortfolioState
from finsim.analysis.risk import RiskMetricsCalculator
from finsim.analysis.validation import (
    DEFAULT_ALLOCATION_TOLERANCE,
    assess_data_availability,
    normalize_allocations,
    validate_simulation_config,
)
from finsim.config import Settings
from finsim.data.feeds import (
    BenchmarkFeed,
    DividendFeed,
    PriceFeed,
    YieldDividendFeed,
    month_dates,
    month_end,
)
from finsim.models import (
    BUY_TYPES,
    AssetPerformance,
    BacktestResult,
    DataIssueKind,
    DataQualityIssue,
    MonthlySnapshot,
    SimulationConfig,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

SHARE_EPSILON = 1e-12


class PortfolioSimulationEngine:
    """Month-stepping backtest over a price feed and an optional dividend feed."""

    def __init__(
        self,
        price_feed: PriceFeed,
        dividend_feed: DividendFeed | None = None,
        benchmark_feed: BenchmarkFeed | None = None,
        rebalancing_policy: RebalancingPolicy | None = None,
        dividend_policy: DividendPolicy | None = None,
        lot_size: float | None = 1.0,
        min_sell_value: float = 100.0,
        risk_free_rate: float = 0.10,
        allocation_tolerance: float = DEFAULT_ALLOCATION_TOLERANCE,
        min_history_months: int = 12,
    ):
        self.price_feed = price_feed
        self.dividend_feed = dividend_feed
        self.benchmark_feed = benchmark_feed
        self.rebalancing_policy = rebalancing_policy
        self.dividend_policy = dividend_policy or ReinvestDividendPolicy()
        self.lot_size = lot_size
        self.min_sell_value = min_sell_value
        self.allocation_tolerance = allocation_tolerance
        self.min_history_months = min_history_months
        self.risk_calculator = RiskMetricsCalculator(risk_free_rate)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        price_feed: PriceFeed,
        dividend_feed: DividendFeed | None = None,
        benchmark_feed: BenchmarkFeed | None = None,
        **kwargs,
    ) -> "PortfolioSimulationEngine":
        return cls(
            price_feed,
            dividend_feed=dividend_feed,
            benchmark_feed=benchmark_feed,
            lot_size=settings.lot_size,
            min_sell_value=settings.min_rebalance_sell_value,
            risk_free_rate=settings.risk_free_rate,
            allocation_tolerance=settings.allocation_tolerance,
            min_history_months=settings.min_history_months,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, config: SimulationConfig) -> BacktestResult:
        """Run a full backtest.

        Args:
            config: Assets, dates and contribution schedule

        Returns:
            BacktestResult with the month-by-month evolution, the transaction
            log, per-asset performance and risk metrics.

        Raises:
            ValidationError: malformed config, raised before any simulation work
        """
        validate_simulation_config(config, self.allocation_tolerance)
        assets = normalize_allocations(config.assets)
        weights = {asset.ticker: asset.target_allocation for asset in assets}
        dates = month_dates(config.start_date, config.end_date)
        rebalancing = self.rebalancing_policy or CalendarRebalancingPolicy(config.rebalance_frequency)
        dividend_feed = self._dividend_feed_for(assets)

        logger.info(
            f"Backtest {config.fingerprint()[:12]}: {len(assets)} assets, {len(dates)} months "
            f"({dates[0]} to {dates[-1]}), {rebalancing!r}"
        )

        run = _BacktestRun(
            engine=self,
            config=config,
            weights=weights,
            rebalancing=rebalancing,
            dividend_feed=dividend_feed,
        )
        for month, on in enumerate(dates):
            run.step(month, on)

        return self._build_result(config, assets, dates, run)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dividend_feed_for(self, assets) -> DividendFeed | None:
        yields = {
            asset.ticker: asset.average_dividend_yield
            for asset in assets
            if asset.average_dividend_yield is not None
        }
        if not yields:
            return self.dividend_feed
        return YieldDividendFeed(self.price_feed, yields, fallback=self.dividend_feed)

    def _build_result(self, config, assets, dates, run: "_BacktestRun") -> BacktestResult:
        snapshots = run.snapshots
        transactions = run.state.transactions
        alerts = list(run.state.alerts)

        mismatches = verify_ledger(transactions, snapshots)
        if mismatches:
            alerts.append(f"Ledger replay mismatch: {mismatches[0]}")

        total_invested = sum(s.contribution for s in snapshots)
        final = snapshots[-1]
        monthly_returns = [s.monthly_return for s in snapshots]
        values = [s.portfolio_value for s in snapshots]

        benchmark_returns = {}
        if config.benchmarks:
            if self.benchmark_feed is None:
                logger.warning(f"Benchmarks {list(config.benchmarks)} requested without a benchmark feed")
            else:
                for name in config.benchmarks:
                    benchmark_returns[name] = self.benchmark_feed.get_monthly_returns(name, dates)

        # Month 0 has no prior value, so its 0.0 return is left out of the metrics
        risk = self.risk_calculator.compute(
            monthly_returns[1:],
            values,
            total_invested,
            dates=dates,
            benchmark_returns={name: series[1:] for name, series in benchmark_returns.items()},
        )
        availability = assess_data_availability(
            self.price_feed, config.tickers, dates, self.min_history_months
        )

        total_return = (final.portfolio_value - total_invested) / total_invested if total_invested > 0 else 0.0

        result = BacktestResult(
            config_fingerprint=config.fingerprint(),
            total_invested=total_invested,
            final_value=final.portfolio_value,
            final_cash_reserve=final.cash_balance,
            total_dividends_received=sum(s.dividends for s in snapshots),
            total_return=total_return,
            annualized_return=risk.cagr,
            volatility=risk.volatility,
            sharpe_ratio=risk.sharpe_ratio,
            max_drawdown=risk.max_drawdown,
            drawdown_periods=risk.drawdown_periods,
            positive_months=risk.positive_months,
            negative_months=risk.negative_months,
            monthly_returns=monthly_returns,
            portfolio_evolution=snapshots,
            asset_performance=compute_asset_performance(assets, transactions, final),
            transactions=transactions,
            data_quality_issues=run.issues,
            alerts=alerts,
            benchmark_outperformance=risk.benchmark_outperformance,
            data_availability=availability,
        )
        logger.info(
            f"Backtest done: invested {total_invested:.2f}, final {final.portfolio_value:.2f}, "
            f"CAGR {risk.cagr:.2%}, max drawdown {risk.max_drawdown:.2%}, "
            f"{len(transactions)} transactions, {len(run.issues)} data issues"
        )
        return result


class _BacktestRun:
    """Mutable state of one engine.run() call."""

    def __init__(
        self,
        engine: PortfolioSimulationEngine,
        config: SimulationConfig,
        weights: dict[str, float],
        rebalancing: RebalancingPolicy,
        dividend_feed: DividendFeed | None,
    ):
        self.engine = engine
        self.config = config
        self.weights = weights
        self.rebalancing = rebalancing
        self.dividend_feed = dividend_feed
        self.state = PortfolioState(engine.lot_size)
        self.last_prices: dict[str, float] = {}
        self.snapshots: list[MonthlySnapshot] = []
        self.issues: list[DataQualityIssue] = []
        self._reported_no_dividends: set[str] = set()

    def _issue(self, month: int, on: date, ticker: str, kind: DataIssueKind, message: str):
        logger.warning(f"{on} {ticker}: {message}")
        self.issues.append(DataQualityIssue(month=month, date=on, ticker=ticker, kind=kind, message=message))

    # ------------------------------------------------------------------
    # Month step
    # ------------------------------------------------------------------

    def step(self, month: int, on: date):
        state = self.state
        state.begin_month(month, on)
        start_holdings = {t: s for t, s in state.holdings.items() if s > SHARE_EPSILON}
        logged = len(state.transactions)

        prices = self._resolve_prices(month, on)
        weights = self._active_weights(prices)

        # 1-2. New money: the initial capital in month 0, the contribution afterwards
        new_money = self.config.initial_capital if month == 0 else self.config.monthly_contribution
        state.credit(new_money)
        rebalance = month == 0 or self.rebalancing.is_rebalance_month(month)
        if not rebalance:
            self._buy_proportionally(new_money, weights, prices)

        # 3. Dividends on shares held when the month opened
        dividends = self._pay_dividends(month, on, start_holdings, prices)

        # 4. Rebalance, folding in the new money
        if rebalance:
            self._rebalance(new_money, weights, prices)

        if len(state.transactions) > logged:
            state.record_reserve()
        self._close_month(month, on, new_money, dividends, prices)

    def _resolve_prices(self, month: int, on: date) -> dict[str, float]:
        prices = {}
        for ticker in self.weights:
            price = self.engine.price_feed.get_close(ticker, on)
            if price is not None:
                self.last_prices[ticker] = price
                prices[ticker] = price
            elif ticker in self.last_prices:
                prices[ticker] = self.last_prices[ticker]
                self._issue(
                    month, on, ticker, DataIssueKind.MISSING_PRICE,
                    f"no close price, carried forward {prices[ticker]:.2f}",
                )
            else:
                self._issue(
                    month, on, ticker, DataIssueKind.UNPRICED_ASSET,
                    "no price available yet, excluded from allocation this month",
                )
        return prices

    def _active_weights(self, prices: dict[str, float]) -> dict[str, float]:
        """Target weights renormalized over the assets priced this month."""
        total = sum(w for t, w in self.weights.items() if t in prices)
        if total <= 0:
            return {}
        return {t: w / total for t, w in self.weights.items() if t in prices}

    def _buy_proportionally(self, amount: float, weights: dict[str, float], prices: dict[str, float]):
        if amount <= 0:
            return
        for ticker, weight in weights.items():
            price = prices[ticker]
            shares = self.state.affordable_shares(amount * weight, price)
            self.state.buy(ticker, shares, price, TransactionType.CONTRIBUTION)

    def _pay_dividends(
        self,
        month: int,
        on: date,
        start_holdings: dict[str, float],
        prices: dict[str, float],
    ) -> float:
        if self.dividend_feed is None:
            return 0.0

        total = 0.0
        for ticker, shares in start_holdings.items():
            events = self.dividend_feed.get_dividends(ticker, on, month_end(on))
            if events is None:
                if ticker not in self._reported_no_dividends:
                    self._reported_no_dividends.add(ticker)
                    self._issue(
                        month, on, ticker, DataIssueKind.MISSING_DIVIDENDS,
                        "no dividend data, dividends assumed to be zero",
                    )
                continue

            amount = sum(shares * event.amount_per_share for event in events)
            if amount <= 0:
                continue
            price = prices[ticker]
            self.state.credit(amount, TransactionType.DIVIDEND_PAYMENT, ticker=ticker, price=price)
            self.engine.dividend_policy.apply(self.state, ticker, amount, price)
            total += amount
            logger.debug(f"{on} {ticker}: dividend {amount:.2f} on {shares:g} shares")
        return total

    def _rebalance(self, new_money: float, weights: dict[str, float], prices: dict[str, float]):
        """Trade toward target weights.

        Overweight positions are sold down to target when the sale is worth at
        least min_sell_value. Underweight positions are then bought, largest
        deficit first. Purchases funded by this month's new money are logged
        as CONTRIBUTION and the rest as REBALANCE_BUY.
        """
        state = self.state
        if not weights:
            return

        total = state.total_value(prices)
        targets = {
            ticker: state.floor_shares(total * weight / prices[ticker])
            for ticker, weight in weights.items()
        }

        for ticker, target in targets.items():
            excess = state.shares(ticker) - target
            if excess <= SHARE_EPSILON:
                continue
            if excess * prices[ticker] < self.engine.min_sell_value:
                logger.debug(f"{ticker}: excess {excess:g} shares below minimum sell value, kept")
                continue
            state.sell(ticker, excess, prices[ticker])

        deficits = sorted(
            (
                (target - state.shares(ticker), ticker)
                for ticker, target in targets.items()
                if target - state.shares(ticker) > SHARE_EPSILON
            ),
            key=lambda item: item[0] * prices[item[1]],
            reverse=True,
        )
        remaining_new = new_money
        for deficit, ticker in deficits:
            price = prices[ticker]
            shares = min(deficit, state.affordable_shares(state.cash, price))
            if shares <= 0:
                continue
            from_new = min(shares, state.affordable_shares(remaining_new, price))
            if from_new > 0:
                remaining_new -= state.buy(ticker, from_new, price, TransactionType.CONTRIBUTION)
            if shares - from_new > SHARE_EPSILON:
                state.buy(ticker, shares - from_new, price, TransactionType.REBALANCE_BUY)

    def _close_month(
        self,
        month: int,
        on: date,
        contribution: float,
        dividends: float,
        prices: dict[str, float],
    ):
        state = self.state
        holdings = {t: s for t, s in state.holdings.items() if s > SHARE_EPSILON}
        value = state.total_value(prices)

        previous = self.snapshots[-1].portfolio_value if self.snapshots else None
        if previous:
            monthly_return = (value - previous - contribution) / previous
        else:
            monthly_return = 0.0

        if state.cash < -CASH_EPSILON:
            logger.error(f"{on}: month closed with negative cash {state.cash:.2f}")

        self.snapshots.append(MonthlySnapshot(
            month=month,
            date=on,
            portfolio_value=value,
            contribution=contribution,
            monthly_return=monthly_return,
            holdings=holdings,
            prices=dict(prices),
            cash_balance=state.cash,
            dividends=dividends,
        ))


def compute_asset_performance(
    assets,
    transactions: list[Transaction],
    final: MonthlySnapshot,
) -> list[AssetPerformance]:
    """Per-asset totals on the average-cost method.

    average_price covers every purchase (contributions, rebalance buys and
    dividend reinvestments); sales do not move it.
    """
    cost = defaultdict(float)
    bought = defaultdict(float)
    amounts = defaultdict(lambda: defaultdict(float))

    for tx in transactions:
        amounts[tx.ticker][tx.type] += tx.amount
        if tx.type in BUY_TYPES:
            cost[tx.ticker] += tx.amount
            bought[tx.ticker] += tx.shares_added

    performance = []
    for asset in assets:
        ticker = asset.ticker
        shares = final.holdings.get(ticker, 0.0)
        price = final.prices.get(ticker, 0.0)
        final_value = shares * price
        average_price = cost[ticker] / bought[ticker] if bought[ticker] > 0 else 0.0
        basis = average_price * shares
        by_type = amounts[ticker]
        performance.append(AssetPerformance(
            ticker=ticker,
            allocation=asset.target_allocation,
            final_shares=shares,
            final_value=final_value,
            total_return=(final_value - basis) / basis if basis > 0 else 0.0,
            contribution=by_type[TransactionType.CONTRIBUTION],
            reinvestment=(
                by_type[TransactionType.REBALANCE_BUY]
                + by_type[TransactionType.DIVIDEND_REINVESTMENT]
            ),
            average_price=average_price,
            total_dividends=by_type[TransactionType.DIVIDEND_PAYMENT],
        ))
    return performance
