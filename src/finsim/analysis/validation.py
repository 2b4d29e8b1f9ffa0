"""Input validation for backtests and debt simulations.

Every check here runs before any simulation work. A failing check raises
ValidationError naming the offending field, so a run is either fully
executed or not started at all.
"""

import logging
from datetime import date
from typing import Any

import pydantic

from finsim.data.feeds import PriceFeed
from finsim.errors import ValidationError
from finsim.models import (
    DataAvailabilityReport,
    Debt,
    DebtSimulationConfig,
    PortfolioAsset,
    SimulationConfig,
    TickerAvailability,
)

logger = logging.getLogger(__name__)

DEFAULT_ALLOCATION_TOLERANCE = 0.005

# Coverage thresholds for the data quality grade
QUALITY_THRESHOLDS = (
    (0.95, "excellent"),
    (0.85, "good"),
    (0.70, "fair"),
)


# ---------------------------------------------------------------------------
# Portfolio inputs
# ---------------------------------------------------------------------------

def validate_allocations(
    assets: tuple[PortfolioAsset, ...] | list[PortfolioAsset],
    tolerance: float = DEFAULT_ALLOCATION_TOLERANCE,
) -> None:
    if not assets:
        raise ValidationError("assets", "at least one asset is required")

    seen = set()
    for i, asset in enumerate(assets):
        if asset.ticker in seen:
            raise ValidationError(f"assets[{i}].ticker", f"duplicate ticker {asset.ticker}")
        seen.add(asset.ticker)
        if not 0 < asset.target_allocation <= 1:
            raise ValidationError(
                f"assets[{i}].target_allocation",
                f"{asset.target_allocation} is outside (0, 1]",
            )

    total = sum(asset.target_allocation for asset in assets)
    if abs(total - 1.0) > tolerance + 1e-12:
        raise ValidationError(
            "assets",
            f"allocations sum to {total:.2%}, expected between "
            f"{1 - tolerance:.1%} and {1 + tolerance:.1%}",
        )


def normalize_allocations(
    assets: tuple[PortfolioAsset, ...] | list[PortfolioAsset],
) -> tuple[PortfolioAsset, ...]:
    """Rescale target allocations so they sum to exactly 1.0."""
    total = sum(asset.target_allocation for asset in assets)
    return tuple(
        asset.model_copy(update={"target_allocation": asset.target_allocation / total})
        for asset in assets
    )


def validate_simulation_config(
    config: SimulationConfig,
    tolerance: float = DEFAULT_ALLOCATION_TOLERANCE,
) -> None:
    if config.end_date < config.start_date:
        raise ValidationError("end_date", "must not be before start_date")
    if config.initial_capital < 0:
        raise ValidationError("initial_capital", "must be >= 0")
    if config.monthly_contribution < 0:
        raise ValidationError("monthly_contribution", "must be >= 0")
    if config.initial_capital == 0 and config.monthly_contribution == 0:
        raise ValidationError(
            "initial_capital", "initial capital or monthly contribution must be positive"
        )
    validate_allocations(config.assets, tolerance)


# ---------------------------------------------------------------------------
# Debt inputs
# ---------------------------------------------------------------------------

def _field_error(e: pydantic.ValidationError, default: str) -> ValidationError:
    error = e.errors()[0]
    field = ".".join(str(part) for part in error["loc"]) or default
    return ValidationError(field, error["msg"])


def parse_debt(data: dict[str, Any]) -> Debt:
    """Build a Debt from raw input, naming the first bad field on failure."""
    try:
        debt = Debt.model_validate(data)
    except pydantic.ValidationError as e:
        raise _field_error(e, "debt") from e
    validate_debt(debt)
    return debt


def parse_simulation_config(data: dict[str, Any]) -> SimulationConfig:
    """Build a SimulationConfig from raw input, naming the first bad field on failure."""
    try:
        return SimulationConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise _field_error(e, "config") from e



def validate_debt(debt: Debt) -> None:
    if debt.balance <= 0:
        raise ValidationError("balance", "must be > 0")
    if debt.interest_rate_annual < 0:
        raise ValidationError("interest_rate_annual", "must be >= 0")
    if debt.term_months <= 0:
        raise ValidationError("term_months", "must be > 0")
    if debt.monthly_payment is not None and debt.monthly_payment <= 0:
        raise ValidationError("monthly_payment", "must be > 0")


def validate_debt_budget(
    sim_config: DebtSimulationConfig,
    required_payment: float,
) -> None:
    """Check budget, split and TR against the debt's required payment."""
    if sim_config.monthly_budget < required_payment:
        raise ValidationError(
            "monthly_budget",
            f"budget {sim_config.monthly_budget:.2f} is below the required "
            f"payment {required_payment:.2f}",
        )
    surplus = sim_config.monthly_budget - required_payment
    if sim_config.investment_split < 0:
        raise ValidationError("investment_split", "must be >= 0")
    if sim_config.investment_split > surplus + 1e-9:
        raise ValidationError(
            "investment_split",
            f"split {sim_config.investment_split:.2f} exceeds the available "
            f"surplus {surplus:.2f}",
        )
    if sim_config.monthly_tr < 0:
        raise ValidationError("monthly_tr", "must be >= 0")
    if sim_config.max_months <= 0:
        raise ValidationError("max_months", "must be > 0")


# ---------------------------------------------------------------------------
# Data availability
# ---------------------------------------------------------------------------

def find_missing_prices(
    price_feed: PriceFeed,
    tickers: list[str],
    dates: list[date],
) -> dict[str, list[date]]:
    """Months with no close price, per ticker. Tickers with no gaps are omitted."""
    missing = {}
    for ticker in tickers:
        gaps = [d for d in dates if price_feed.get_close(ticker, d) is None]
        if gaps:
            missing[ticker] = gaps
    return missing


def _quality_grade(coverage: float) -> str:
    for threshold, grade in QUALITY_THRESHOLDS:
        if coverage >= threshold:
            return grade
    return "poor"


def assess_data_availability(
    price_feed: PriceFeed,
    tickers: list[str],
    dates: list[date],
    min_months: int = 12,
) -> DataAvailabilityReport:
    """Grade price coverage of the requested window.

    The report is advisory: the engine runs regardless and records each
    gap as a data quality issue.
    """
    availability = []
    warnings = []
    recommendations = []

    for ticker in tickers:
        present = [d for d in dates if price_feed.get_close(ticker, d) is not None]
        present_set = set(present)
        coverage = len(present) / len(dates) if dates else 0.0
        availability.append(TickerAvailability(
            ticker=ticker,
            first_available=present[0] if present else None,
            last_available=present[-1] if present else None,
            months_with_data=len(present),
            total_months=len(dates),
            missing_months=[d for d in dates if d not in present_set],
            coverage=coverage,
        ))

        if not present:
            warnings.append(f"{ticker}: no price data in the requested window")
        elif present[0] > dates[0]:
            warnings.append(
                f"{ticker}: data starts at {present[0].isoformat()}, "
                f"after the requested start {dates[0].isoformat()}"
            )
        if present and len(present) < min_months:
            warnings.append(f"{ticker}: only {len(present)} months of data (minimum {min_months})")

    overall = min((t.coverage for t in availability), default=0.0)
    quality = _quality_grade(overall)
    is_valid = all(t.months_with_data >= min_months for t in availability)

    if quality in ("fair", "poor"):
        recommendations.append("Shorten the window to the period where every asset has prices")
    if not is_valid:
        recommendations.append(f"Use at least {min_months} months of history for meaningful metrics")

    for warning in warnings:
        logger.warning(warning)

    return DataAvailabilityReport(
        is_valid=is_valid,
        quality=quality,
        tickers=availability,
        warnings=warnings,
        recommendations=recommendations,
    )
