"""Debt-vs-invest strategy comparison (Sniper vs Hybrid).

Both strategies share the same monthly budget. After the contractual debt
payment, the surplus ("sobra") is either thrown entirely at the principal
(Sniper) or split between a fixed monthly investment and extra principal
(Hybrid). Once the debt is gone the whole budget is invested.

Pure computation: no I/O, identical inputs give identical ledgers.
"""

import logging

from finsim.analysis.amortization import (
    BALANCE_EPSILON,
    first_payment,
    installment_base,
    monthly_rate_from_annual,
    split_payment,
)
from finsim.analysis.validation import validate_debt, validate_debt_budget
from finsim.errors import ValidationError
from finsim.models import (
    BacktestResult,
    Debt,
    DebtMonth,
    DebtSimulationConfig,
    DebtSimulationResult,
    DebtStrategy,
    Rentability,
    RentabilitySource,
    StrategyComparison,
)

logger = logging.getLogger(__name__)

# Net worth differences below this are treated as a tie
NET_WORTH_TOLERANCE = 0.01

# Return assumed when a backtest produced no positive annualized return
BACKTEST_RENTABILITY_FLOOR = 0.05


def aggregate_debts(debts: list[Debt]) -> Debt:
    """Combine several debts into one equivalent debt.

    Balances and payments sum, the rate is the balance-weighted average, the
    term is the longest one and the amortization system is the one of the
    largest debt.
    """
    if not debts:
        raise ValidationError("debts", "at least one debt is required")
    for debt in debts:
        validate_debt(debt)
    if len(debts) == 1:
        return debts[0]

    total_balance = sum(d.balance for d in debts)
    weighted_rate = sum(d.balance * d.interest_rate_annual for d in debts) / total_balance
    largest = max(debts, key=lambda d: d.balance)

    return Debt(
        name="combined",
        balance=total_balance,
        interest_rate_annual=weighted_rate,
        term_months=max(d.term_months for d in debts),
        monthly_payment=sum(first_payment(d) for d in debts),
        amortization_system=largest.amortization_system,
    )


def simulate_strategy(
    debt: Debt,
    sim_config: DebtSimulationConfig,
    rentability_rate: float,
    investment_split: float,
    months: int,
) -> tuple[list[DebtMonth], int | None]:
    """Step one strategy month by month.

    Each month the invested balance first earns its monthly return. While
    debt remains, the balance is corrected by TR, the contractual payment is
    split into interest and amortization, min(split, sobra) is invested and
    the rest of the sobra is extra amortization. Payments never exceed the
    budget and there is no forced payoff at term_months: a residual left by
    TR keeps being amortized in the following months. Any sobra the debt cannot
    absorb, and the whole budget after payoff, is invested.

    Args:
        debt: Debt being paid
        sim_config: Budget, TR and horizon settings
        rentability_rate: Annual return of invested money
        investment_split: Fixed monthly amount invested out of the sobra
            (0 for Sniper)
        months: Number of months to simulate

    Returns:
        (monthly ledger, payoff month or None)
    """
    debt_rate = monthly_rate_from_annual(debt.interest_rate_annual)
    invest_rate = monthly_rate_from_annual(rentability_rate)
    base = installment_base(debt)
    budget = sim_config.monthly_budget

    balance = debt.balance
    invested = 0.0
    payoff_month = None
    ledger = []

    for month in range(1, months + 1):
        investment_return = invested * invest_rate
        invested += investment_return

        correction = interest = scheduled = extra = payment = 0.0
        if balance > 0:
            correction = balance * sim_config.monthly_tr
            balance += correction
            interest, scheduled, payment = split_payment(
                debt.amortization_system, balance, debt_rate, base
            )
            if payment > budget:
                # Unpaid interest is capitalized into the balance
                interest_due = interest
                interest = min(interest_due, budget)
                scheduled = budget - interest
                payment = budget
                balance += interest_due - interest
            balance -= scheduled

            sobra = max(budget - payment, 0.0)
            to_invest = min(investment_split, sobra)
            extra = min(sobra - to_invest, balance)
            balance -= extra
            contribution = sobra - extra

            if balance < BALANCE_EPSILON:
                balance = 0.0
                payoff_month = month
        else:
            contribution = budget

        invested += contribution
        ledger.append(DebtMonth(
            month=month,
            debt_balance=balance,
            invested_balance=invested,
            net_worth=invested - balance,
            payment=payment,
            interest_paid=interest,
            correction=correction,
            scheduled_amortization=scheduled,
            extra_amortization=extra,
            investment_contribution=contribution,
            investment_return=investment_return,
        ))

    return ledger, payoff_month


def find_break_even(sniper: list[DebtMonth], hybrid: list[DebtMonth]) -> int | None:
    """First month the Hybrid net worth reaches the Sniper one.

    A plain `hybrid >= sniper` test would fire in month 1, where both
    strategies are always tied. So a tie within NET_WORTH_TOLERANCE only
    counts once the Hybrid has trailed. Otherwise the Hybrid must lead by
    more than the tolerance.
    """
    trailed = False
    for s, h in zip(sniper, hybrid):
        diff = h.net_worth - s.net_worth
        if diff < -NET_WORTH_TOLERANCE:
            trailed = True
        elif trailed or diff > NET_WORTH_TOLERANCE:
            return h.month
    return None


def _build_result(
    strategy: DebtStrategy,
    ledger: list[DebtMonth],
    payoff_month: int | None,
    break_even_month: int | None,
) -> DebtSimulationResult:
    final = ledger[-1]
    return DebtSimulationResult(
        strategy=strategy,
        break_even_month=break_even_month,
        payoff_month=payoff_month,
        total_months=len(ledger),
        final_debt_balance=final.debt_balance,
        final_invested_balance=final.invested_balance,
        final_net_worth=final.net_worth,
        total_interest_paid=sum(m.interest_paid for m in ledger),
        total_investment_contribution=sum(m.investment_contribution for m in ledger),
        total_investment_return=sum(m.investment_return for m in ledger),
        monthly_data=ledger,
    )


class StrategyComparator:
    """Runs Sniper and Hybrid over the same horizon and compares them."""

    def compare(
        self,
        debt: Debt,
        sim_config: DebtSimulationConfig,
        rentability: Rentability | float,
    ) -> StrategyComparison:
        """Compare paying debt first against splitting the surplus.

        Both ledgers cover the months until the Hybrid strategy pays the debt
        off (never earlier than Sniper), capped at sim_config.max_months.

        Raises:
            ValidationError: budget below the required payment, split above
                the surplus or an invalid debt field.
        """
        if not isinstance(rentability, Rentability):
            rentability = Rentability(annual_rate=rentability, source=RentabilitySource.FIXED_RATE)

        validate_debt(debt)
        required = first_payment(debt, sim_config.monthly_tr)
        validate_debt_budget(sim_config, required)

        rate = rentability.annual_rate
        hybrid_ledger, hybrid_payoff = simulate_strategy(
            debt, sim_config, rate, sim_config.investment_split, sim_config.max_months
        )
        horizon = hybrid_payoff or sim_config.max_months
        hybrid_ledger = hybrid_ledger[:horizon]

        sniper_ledger, sniper_payoff = simulate_strategy(debt, sim_config, rate, 0.0, horizon)

        break_even = find_break_even(sniper_ledger, hybrid_ledger)
        if hybrid_payoff is None:
            logger.warning(
                f"Hybrid strategy does not pay off the debt within {sim_config.max_months} months"
            )
        logger.info(
            f"Debt comparison: horizon {horizon} months, sniper payoff {sniper_payoff}, "
            f"hybrid payoff {hybrid_payoff}, break-even {break_even}"
        )

        return StrategyComparison(
            sniper=_build_result(DebtStrategy.SNIPER, sniper_ledger, sniper_payoff, break_even),
            hybrid=_build_result(DebtStrategy.HYBRID, hybrid_ledger, hybrid_payoff, break_even),
            rentability=rentability,
            break_even_month=break_even,
        )


def resolve_rentability(
    manual_rate: float | None = None,
    backtest: BacktestResult | None = None,
) -> Rentability:
    """Pick the annual return assumed for invested money.

    A manual rate wins. Otherwise the annualized return of a backtest is
    used, floored at 5% when the backtest did not earn a positive return.
    """
    if manual_rate is not None:
        return Rentability(annual_rate=manual_rate, source=RentabilitySource.FIXED_RATE)

    if backtest is None:
        raise ValidationError("rentability", "a manual rate or a backtest result is required")

    rate = backtest.annualized_return
    details = {
        "config_fingerprint": backtest.config_fingerprint,
        "backtest_annualized_return": rate,
        "months": len(backtest.portfolio_evolution),
    }
    if rate <= 0:
        logger.warning(
            f"Backtest annualized return {rate:.2%} is not positive, "
            f"using {BACKTEST_RENTABILITY_FLOOR:.0%}"
        )
        details["floored"] = True
        rate = BACKTEST_RENTABILITY_FLOOR
    return Rentability(annual_rate=rate, source=RentabilitySource.BACKTEST, details=details)
