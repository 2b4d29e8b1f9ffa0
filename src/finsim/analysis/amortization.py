"""Amortization schedules for SAC and PRICE debts.

SAC amortizes a constant share of the original principal every month, so
payments decrease. PRICE (French system) keeps the payment constant and
the amortization share grows as interest falls.

The monthly referential rate (TR) corrects the outstanding balance before
each month's interest/amortization split.
"""

import logging

from finsim.models import AmortizationSystem, Debt, ScheduleEntry

logger = logging.getLogger(__name__)

# Balances below this are treated as paid off
BALANCE_EPSILON = 1e-6


def monthly_rate_from_annual(annual_rate: float) -> float:
    """Compound conversion: (1 + annual) ^ (1/12) - 1."""
    return (1 + annual_rate) ** (1 / 12) - 1


def annuity_payment(principal: float, monthly_rate: float, term_months: int) -> float:
    """Fixed PRICE payment: P * r / (1 - (1 + r) ^ -n), or P / n when r is 0."""
    if term_months <= 0:
        return principal
    if monthly_rate == 0:
        return principal / term_months
    return principal * monthly_rate / (1 - (1 + monthly_rate) ** -term_months)


def installment_base(debt: Debt) -> float:
    """Per-month constant of the system.

    SAC: the constant amortization (balance / term).
    PRICE: the fixed payment, taken from the debt when it states one.
    """
    if debt.amortization_system == AmortizationSystem.SAC:
        return debt.balance / debt.term_months
    if debt.monthly_payment is not None:
        return debt.monthly_payment
    return annuity_payment(debt.balance, monthly_rate_from_annual(debt.interest_rate_annual), debt.term_months)


def split_payment(
    system: AmortizationSystem,
    balance: float,
    monthly_rate: float,
    base: float,
    final_month: bool = False,
) -> tuple[float, float, float]:
    """Split one month's contractual payment into interest and amortization.

    Args:
        system: Amortization system of the debt
        balance: Outstanding balance after TR correction
        monthly_rate: Monthly interest rate
        base: Result of installment_base() for the debt
        final_month: Pay off the whole remaining balance this month

    Returns:
        (interest, amortization, payment). The amortization never exceeds
        the balance, so the payment is capped at balance + interest.
    """
    interest = balance * monthly_rate
    if system == AmortizationSystem.SAC:
        amortization = base
    else:
        amortization = max(base - interest, 0.0)

    if final_month or amortization >= balance:
        amortization = balance

    return interest, amortization, interest + amortization


def build_schedule(debt: Debt, monthly_tr: float = 0.0) -> list[ScheduleEntry]:
    """Generate the contractual month-by-month schedule of a debt.

    Ends when the balance reaches zero or at term_months, whichever comes
    first. The last entry pays the exact remaining balance.

    Args:
        debt: Debt to amortize
        monthly_tr: Monthly referential rate applied to the balance before
            the interest/amortization split

    Returns:
        List of ScheduleEntry, month numbers starting at 1
    """
    rate = monthly_rate_from_annual(debt.interest_rate_annual)
    base = installment_base(debt)
    balance = debt.balance
    schedule = []

    for month in range(1, debt.term_months + 1):
        opening = balance
        correction = balance * monthly_tr
        balance += correction

        interest, amortization, payment = split_payment(
            debt.amortization_system,
            balance,
            rate,
            base,
            final_month=(month == debt.term_months),
        )
        balance -= amortization
        if balance < BALANCE_EPSILON:
            balance = 0.0

        schedule.append(ScheduleEntry(
            month=month,
            opening_balance=opening,
            correction=correction,
            interest_paid=interest,
            amortization=amortization,
            payment=payment,
            balance=balance,
        ))
        if balance == 0.0:
            break

    logger.debug(
        f"{debt.amortization_system.value} schedule: {len(schedule)} months, "
        f"rate {rate:.6f}/month, TR {monthly_tr:.4%}"
    )
    return schedule


def first_payment(debt: Debt, monthly_tr: float = 0.0) -> float:
    """Contractual payment of month 1, the debt's required monthly payment."""
    if debt.monthly_payment is not None:
        return debt.monthly_payment
    schedule = build_schedule(debt, monthly_tr)
    return schedule[0].payment if schedule else 0.0


def schedule_totals(schedule: list[ScheduleEntry]) -> dict[str, float]:
    return {
        "months": len(schedule),
        "total_interest": sum(e.interest_paid for e in schedule),
        "total_amortization": sum(e.amortization for e in schedule),
        "total_correction": sum(e.correction for e in schedule),
        "total_paid": sum(e.payment for e in schedule),
    }
