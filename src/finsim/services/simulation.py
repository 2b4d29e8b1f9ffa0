"""Entry points for callers: single backtests, debt comparisons and batches.

SimulationService wires the settings, the feeds and the result cache around
the pure engines. Independent backtests in a batch fan out over a process
pool; each worker rebuilds its engine from plain parameters.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Any

from finsim.analysis.amortization import build_schedule
from finsim.analysis.debt import StrategyComparator, aggregate_debts, resolve_rentability
from finsim.analysis.engine import PortfolioSimulationEngine
from finsim.analysis.validation import parse_debt
from finsim.config import Settings
from finsim.data.feeds import BenchmarkFeed, DividendFeed, PriceFeed
from finsim.errors import FinsimError
from finsim.models import (
    BacktestResult,
    Debt,
    DebtSimulationConfig,
    Rentability,
    ScheduleEntry,
    SimulationConfig,
    StrategyComparison,
)
from finsim.services.cache import ResultCache, fingerprint

logger = logging.getLogger(__name__)


def _engine_params(settings: Settings) -> dict[str, Any]:
    return {
        "lot_size": settings.lot_size,
        "min_sell_value": settings.min_rebalance_sell_value,
        "risk_free_rate": settings.risk_free_rate,
        "allocation_tolerance": settings.allocation_tolerance,
        "min_history_months": settings.min_history_months,
    }


def _run_backtest_worker(
    key: str,
    config_data: dict,
    price_feed: PriceFeed,
    dividend_feed: DividendFeed | None,
    benchmark_feed: BenchmarkFeed | None,
    engine_params: dict,
) -> tuple[str, BacktestResult]:
    """Picklable worker for ProcessPoolExecutor.

    Args:
        key: Caller's label for the config.
        config_data: SimulationConfig dumped to a dict.
        price_feed: Feed shared read-only by every worker.
        dividend_feed: Optional dividend feed.
        benchmark_feed: Optional benchmark feed.
        engine_params: Engine keyword arguments derived from Settings.

    Returns:
        (key, backtest result)
    """
    config = SimulationConfig.model_validate(config_data)
    engine = PortfolioSimulationEngine(
        price_feed,
        dividend_feed=dividend_feed,
        benchmark_feed=benchmark_feed,
        **engine_params,
    )
    return key, engine.run(config)


class SimulationService:
    def __init__(
        self,
        price_feed: PriceFeed | None = None,
        dividend_feed: DividendFeed | None = None,
        benchmark_feed: BenchmarkFeed | None = None,
        settings: Settings | None = None,
        cache: ResultCache | None = None,
    ):
        self.settings = settings or Settings()
        self.price_feed = price_feed
        self.dividend_feed = dividend_feed
        self.benchmark_feed = benchmark_feed
        self.cache = cache or ResultCache(ttl=self.settings.cache_ttl, maxsize=self.settings.cache_maxsize)

    def engine(self, **kwargs) -> PortfolioSimulationEngine:
        if self.price_feed is None:
            raise FinsimError("A price feed is required to run backtests")
        return PortfolioSimulationEngine.from_settings(
            self.settings,
            self.price_feed,
            dividend_feed=self.dividend_feed,
            benchmark_feed=self.benchmark_feed,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Backtests
    # ------------------------------------------------------------------

    def run_backtest(self, config: SimulationConfig) -> BacktestResult:
        """Run (or fetch from cache) the backtest of one config."""
        key = ResultCache.key("backtest", config.fingerprint())
        return self.cache.get_or_compute(key, lambda: self.engine().run(config))

    def run_batch(
        self,
        configs: dict[str, SimulationConfig],
    ) -> tuple[dict[str, BacktestResult], dict[str, str]]:
        """Run independent backtests, in parallel when max_workers > 1.

        A failing config does not stop the batch: its error message is
        returned in the second mapping.

        Returns:
            (results by key, error messages by key)
        """
        results: dict[str, BacktestResult] = {}
        failures: dict[str, str] = {}
        pending: dict[str, SimulationConfig] = {}

        for key, config in configs.items():
            cached = self.cache.get(ResultCache.key("backtest", config.fingerprint()))
            if cached is not None:
                results[key] = cached
            else:
                pending[key] = config

        max_workers = min(self.settings.max_workers, len(pending))
        logger.info(
            f"Running {len(pending)} backtests ({len(results)} cached) with {max(max_workers, 1)} workers"
        )

        if max_workers <= 1:
            for key, config in pending.items():
                try:
                    results[key] = self.run_backtest(config)
                except Exception as e:
                    failures[key] = str(e)
                    logger.warning(f"Backtest {key} failed: {e}")
            return results, failures

        params = _engine_params(self.settings)
        with ProcessPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(
                    _run_backtest_worker,
                    key,
                    config.model_dump(),
                    self.price_feed,
                    self.dividend_feed,
                    self.benchmark_feed,
                    params,
                ): key
                for key, config in pending.items()
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    _, result = future.result()
                except Exception as e:
                    failures[key] = str(e)
                    logger.warning(f"Backtest {key} failed: {e}")
                    continue
                results[key] = result
                self.cache.set(ResultCache.key("backtest", pending[key].fingerprint()), result)

        if failures:
            logger.warning(f"Batch stats: {len(results)} succeeded, {len(failures)} failed")
        return results, failures

    # ------------------------------------------------------------------
    # Debt
    # ------------------------------------------------------------------

    def _debt_config(self, sim_config: DebtSimulationConfig | dict) -> DebtSimulationConfig:
        if isinstance(sim_config, DebtSimulationConfig):
            return sim_config
        data = {
            "monthly_tr": self.settings.default_monthly_tr,
            "max_months": self.settings.debt_max_months,
            **sim_config,
        }
        return DebtSimulationConfig.model_validate(data)

    @staticmethod
    def _debt(debt: Debt | dict | list) -> Debt:
        if isinstance(debt, list):
            return aggregate_debts([SimulationService._debt(d) for d in debt])
        if isinstance(debt, dict):
            return parse_debt(debt)
        return debt

    def compare_debt_strategies(
        self,
        debt: Debt | dict | list,
        sim_config: DebtSimulationConfig | dict,
        rentability: Rentability | float | None = None,
        backtest: BacktestResult | None = None,
    ) -> StrategyComparison:
        """Compare Sniper and Hybrid for a debt (or list of debts).

        Raw dicts are validated field by field; a list of debts is aggregated
        first. The investment return is the given rentability, or the
        annualized return of the given backtest.
        """
        debt = self._debt(debt)
        sim_config = self._debt_config(sim_config)
        if not isinstance(rentability, Rentability):
            rentability = resolve_rentability(rentability, backtest)

        key = ResultCache.key(
            "debt",
            fingerprint(
                debt.model_dump(mode="json"),
                sim_config.model_dump(mode="json"),
                rentability.model_dump(mode="json"),
            ),
        )
        return self.cache.get_or_compute(
            key, lambda: StrategyComparator().compare(debt, sim_config, rentability)
        )

    def schedule(self, debt: Debt | dict | list, monthly_tr: float | None = None) -> list[ScheduleEntry]:
        tr = self.settings.default_monthly_tr if monthly_tr is None else monthly_tr
        return build_schedule(self._debt(debt), tr)


# ---------------------------------------------------------------------------
# Module-level entry points
# ---------------------------------------------------------------------------

def run_backtest(
    config: SimulationConfig,
    price_feed: PriceFeed,
    dividend_feed: DividendFeed | None = None,
    benchmark_feed: BenchmarkFeed | None = None,
    settings: Settings | None = None,
) -> BacktestResult:
    """Synchronous, side-effect free backtest of one config."""
    settings = settings or Settings()
    engine = PortfolioSimulationEngine.from_settings(
        settings, price_feed, dividend_feed=dividend_feed, benchmark_feed=benchmark_feed
    )
    return engine.run(config)


def compare_debt_strategies(
    debt: Debt,
    sim_config: DebtSimulationConfig,
    rentability: Rentability | float | None = None,
    backtest: BacktestResult | None = None,
) -> StrategyComparison:
    """Synchronous Sniper vs Hybrid comparison, returning sniper, hybrid and rentability."""
    if not isinstance(rentability, Rentability):
        rentability = resolve_rentability(rentability, backtest)
    return StrategyComparator().compare(debt, sim_config, rentability)
