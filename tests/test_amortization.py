"""Unit tests for finsim.analysis.amortization module."""

import pytest

from finsim.analysis.amortization import (
    annuity_payment,
    build_schedule,
    first_payment,
    monthly_rate_from_annual,
    schedule_totals,
)
from finsim.models import AmortizationSystem, Debt


class TestRateConversion:
    """Test monthly_rate_from_annual function."""

    def test_compound_conversion(self):
        rate = monthly_rate_from_annual(0.12)
        assert (1 + rate) ** 12 == pytest.approx(1.12)
        assert rate == pytest.approx(0.0094888, abs=1e-7)

    def test_zero(self):
        assert monthly_rate_from_annual(0.0) == 0.0


class TestSAC:
    """Constant amortization schedule."""

    def test_scenario(self, sac_debt):
        schedule = build_schedule(sac_debt)
        assert len(schedule) == 12
        for entry in schedule:
            assert entry.amortization == pytest.approx(833.33, abs=0.01)
        assert schedule[0].interest_paid == pytest.approx(94.89, abs=0.01)

    def test_total_amortization_equals_principal(self, sac_debt):
        schedule = build_schedule(sac_debt)
        assert sum(e.amortization for e in schedule) == pytest.approx(10000.0)
        assert schedule[-1].balance == 0.0

    def test_payments_decrease(self, sac_debt):
        payments = [e.payment for e in build_schedule(sac_debt)]
        assert all(a > b for a, b in zip(payments, payments[1:]))

    def test_tr_increases_interest_base(self, sac_debt):
        plain = build_schedule(sac_debt)
        corrected = build_schedule(sac_debt, monthly_tr=0.001)
        assert corrected[0].correction == pytest.approx(10.0)
        assert corrected[0].interest_paid > plain[0].interest_paid
        assert corrected[-1].balance == 0.0
        # Final month absorbs the correction left over by the constant amortization
        assert corrected[-1].amortization > corrected[0].amortization


class TestPRICE:
    """Constant payment (French) schedule."""

    def test_constant_payment(self, price_debt):
        schedule = build_schedule(price_debt)
        assert len(schedule) == 60
        payment = schedule[0].payment
        for entry in schedule:
            assert entry.payment == pytest.approx(payment, abs=0.01)
            assert entry.interest_paid + entry.amortization == pytest.approx(entry.payment)
        assert schedule[-1].balance == 0.0

    def test_amortization_grows(self, price_debt):
        amortizations = [e.amortization for e in build_schedule(price_debt)]
        assert all(a < b for a, b in zip(amortizations[:-1], amortizations[1:-1]))

    def test_annuity_formula(self):
        rate = monthly_rate_from_annual(0.15)
        payment = annuity_payment(50000.0, rate, 60)
        assert payment == pytest.approx(50000.0 * rate / (1 - (1 + rate) ** -60))

    def test_zero_rate(self):
        debt = Debt(balance=1200.0, interest_rate_annual=0.0, term_months=12,
                    amortization_system=AmortizationSystem.PRICE)
        schedule = build_schedule(debt)
        assert all(e.payment == pytest.approx(100.0) for e in schedule)
        assert all(e.interest_paid == 0.0 for e in schedule)

    def test_stated_payment_pays_off_early(self):
        debt = Debt(balance=1000.0, interest_rate_annual=0.0, term_months=12, monthly_payment=250.0,
                    amortization_system=AmortizationSystem.PRICE)
        schedule = build_schedule(debt)
        assert len(schedule) == 4
        assert schedule[-1].balance == 0.0


class TestHelpers:
    """Test first_payment and schedule_totals."""

    def test_first_payment_from_schedule(self, sac_debt):
        assert first_payment(sac_debt) == pytest.approx(833.33 + 94.89, abs=0.02)

    def test_first_payment_stated(self):
        debt = Debt(balance=1000.0, interest_rate_annual=0.1, term_months=10, monthly_payment=150.0)
        assert first_payment(debt) == 150.0

    def test_totals(self, sac_debt):
        schedule = build_schedule(sac_debt)
        totals = schedule_totals(schedule)
        assert totals["months"] == 12
        assert totals["total_amortization"] == pytest.approx(10000.0)
        assert totals["total_paid"] == pytest.approx(10000.0 + totals["total_interest"])
