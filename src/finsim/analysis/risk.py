"""Risk and return metrics for a simulated portfolio.

Pure computation functions over the monthly evolution of a backtest:
volatility, Sharpe ratio, drawdown, CAGR and benchmark outperformance.
No engine dependency - operates on plain lists passed as arguments.
"""

import logging
import math
from datetime import date

import numpy as np

from finsim.models import DrawdownPeriod, RiskSummary

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12
# Below this, volatility is float noise from a constant return series
VOLATILITY_EPSILON = 1e-12


def compute_volatility(monthly_returns: list[float]) -> float:
    """Annualized volatility of monthly returns.

    Sample standard deviation (ddof=1) scaled by sqrt(12).
    Returns 0.0 when fewer than two returns are available.
    """
    if len(monthly_returns) < 2:
        return 0.0
    return float(np.std(monthly_returns, ddof=1) * math.sqrt(MONTHS_PER_YEAR))


def compute_cagr(final_value: float, total_invested: float, month_count: int) -> float:
    """Compound annual growth of final value over invested money.

    CAGR = (final / invested) ^ (12 / months) - 1, and 0 when nothing was
    invested or no month was simulated.
    """
    if total_invested <= 0 or month_count <= 0 or final_value <= 0:
        return 0.0
    return float((final_value / total_invested) ** (MONTHS_PER_YEAR / month_count) - 1)


def compute_sharpe_ratio(
    annualized_return: float,
    volatility: float,
    risk_free_rate: float,
    month_count: int,
) -> float | None:
    """Sharpe ratio, or None when volatility is zero or data is too short."""
    if month_count < 2 or volatility <= VOLATILITY_EPSILON:
        return None
    return float((annualized_return - risk_free_rate) / volatility)


def compute_drawdowns(values: list[float]) -> list[float]:
    """Drawdown per month from the running peak, as a non-negative fraction."""
    drawdowns = []
    peak = 0.0
    for value in values:
        peak = max(peak, value)
        drawdowns.append((peak - value) / peak if peak > 0 else 0.0)
    return drawdowns


def compute_max_drawdown(values: list[float]) -> float:
    """Largest peak-to-trough decline. Always >= 0."""
    drawdowns = compute_drawdowns(values)
    return max(drawdowns) if drawdowns else 0.0


def extract_drawdown_periods(values: list[float], dates: list[date]) -> list[DrawdownPeriod]:
    """Split the evolution into contiguous runs where drawdown > 0.

    A run starts on the first month below the running peak and ends on the
    month the value reaches a new peak (recovered) or on the last month
    simulated (not recovered).
    """
    periods: list[DrawdownPeriod] = []
    drawdowns = compute_drawdowns(values)

    start = None
    trough = None
    for i, dd in enumerate(drawdowns):
        if dd > 0:
            if start is None:
                start = i
                trough = i
            elif dd > drawdowns[trough]:
                trough = i
        elif start is not None:
            periods.append(DrawdownPeriod(
                start_date=dates[start],
                trough_date=dates[trough],
                end_date=dates[i],
                duration_months=i - start,
                depth=drawdowns[trough],
                recovered=True,
            ))
            start = None
            trough = None

    if start is not None:
        periods.append(DrawdownPeriod(
            start_date=dates[start],
            trough_date=dates[trough],
            end_date=dates[-1],
            duration_months=len(values) - start,
            depth=drawdowns[trough],
            recovered=False,
        ))

    return periods


def compute_benchmark_outperformance(
    monthly_returns: list[float],
    benchmark_returns: dict[str, list[float | None]],
) -> dict[str, float]:
    """Portfolio cumulative return minus each benchmark's cumulative return.

    Both series are chained over the same window: months where the benchmark
    has no value are dropped from both sides.
    """
    result = {}
    for name, series in benchmark_returns.items():
        pairs = [
            (port, bench)
            for port, bench in zip(monthly_returns, series)
            if bench is not None
        ]
        if not pairs:
            logger.warning(f"Benchmark {name}: no overlapping months, skipped")
            continue
        port_cum = float(np.prod([1 + p for p, _ in pairs]) - 1)
        bench_cum = float(np.prod([1 + b for _, b in pairs]) - 1)
        result[name] = port_cum - bench_cum
    return result


class RiskMetricsCalculator:
    """Computes the RiskSummary of a finished backtest."""

    def __init__(self, risk_free_rate: float = 0.10):
        self.risk_free_rate = risk_free_rate

    def compute(
        self,
        monthly_returns: list[float],
        portfolio_values: list[float],
        total_invested: float,
        dates: list[date] | None = None,
        benchmark_returns: dict[str, list[float | None]] | None = None,
    ) -> RiskSummary:
        """Compute the full risk summary.

        Args:
            monthly_returns: Contribution-neutral monthly returns of months 1..n
                (month 0 has no return)
            portfolio_values: Portfolio value at each month end
            total_invested: Sum of all money put in (initial + contributions)
            dates: Month dates, needed for drawdown periods
            benchmark_returns: Benchmark name -> monthly returns aligned with
                monthly_returns (None where unknown)

        Returns:
            RiskSummary
        """
        month_count = len(portfolio_values)
        final_value = portfolio_values[-1] if portfolio_values else 0.0

        volatility = compute_volatility(monthly_returns)
        cagr = compute_cagr(final_value, total_invested, month_count)
        sharpe = compute_sharpe_ratio(cagr, volatility, self.risk_free_rate, len(monthly_returns))
        max_dd = compute_max_drawdown(portfolio_values)
        periods = extract_drawdown_periods(portfolio_values, dates) if dates else []

        cumulative = float(np.prod([1 + r for r in monthly_returns]) - 1) if monthly_returns else 0.0
        outperformance = compute_benchmark_outperformance(monthly_returns, benchmark_returns or {})

        return RiskSummary(
            volatility=volatility,
            sharpe_ratio=sharpe,
            max_drawdown=max_dd,
            drawdown_periods=periods,
            cagr=cagr,
            cumulative_return=cumulative,
            positive_months=sum(1 for r in monthly_returns if r > 0),
            negative_months=sum(1 for r in monthly_returns if r < 0),
            benchmark_outperformance=outperformance,
        )
