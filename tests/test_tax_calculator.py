"""Unit tests for TaxCalculator.

Tests the progressive bracket walk and bracket table validation.
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from hrms_payroll.calculators.tax_calculator import (
    InvalidBracketTableError,
    NoBracketsConfiguredError,
    TaxCalculator,
    annualization_months,
)
from hrms_payroll.calculators.types import TaxBracketRule, TaxConvention


def bracket(order, low, high, rate):
    return TaxBracketRule(
        bracket_order=order,
        min_income=Decimal(low),
        max_income=Decimal(high) if high is not None else None,
        rate=Decimal(rate),
    )


THREE_BANDS = [
    bracket(1, "0", "150000", "0"),
    bracket(2, "150000", "300000", "5"),
    bracket(3, "300000", None, "10"),
]


@pytest.fixture
def calc() -> TaxCalculator:
    return TaxCalculator({2024: THREE_BANDS})


class TestProgressiveTaxCalculation:
    """Test progressive tax bracket calculations."""

    def test_income_across_three_bands(self, calc):
        """500,000 is taxed 0 + 7,500 + 20,000."""
        assert calc.compute_tax(Decimal("500000"), 2024) == Decimal("27500.00")

    def test_income_within_zero_band(self, calc):
        """Income in the 0% band pays nothing."""
        assert calc.compute_tax(Decimal("120000"), 2024) == Decimal("0.00")

    def test_income_at_band_boundary(self, calc):
        """Income exactly at a band's upper bound is fully taxed in that band."""
        assert calc.compute_tax(Decimal("300000"), 2024) == Decimal("7500.00")

    def test_top_band_is_open_ended(self, calc):
        """Income above the top band's min is taxed at its rate."""
        assert calc.compute_tax(Decimal("10300000"), 2024) == Decimal("1007500.00")

    def test_zero_and_negative_income(self, calc):
        """Non-positive income pays no tax."""
        assert calc.compute_tax(Decimal("0"), 2024) == Decimal("0.00")
        assert calc.compute_tax(Decimal("-5000"), 2024) == Decimal("0.00")

    def test_rounds_once_at_the_end(self):
        """Fractional cents accumulate across bands before rounding."""
        calc = TaxCalculator(
            {
                2024: [
                    bracket(1, "0", "100.10", "3.333"),
                    bracket(2, "100.10", None, "3.333"),
                ]
            }
        )
        # 200.20 * 3.333% = 6.672666 -> 6.67
        assert calc.compute_tax(Decimal("200.20"), 2024) == Decimal("6.67")

    def test_brackets_sorted_by_order(self):
        """Table order in storage does not matter."""
        calc = TaxCalculator({2024: list(reversed(THREE_BANDS))})
        assert calc.compute_tax(Decimal("500000"), 2024) == Decimal("27500.00")

    def test_missing_year_raises(self, calc):
        """A year with no brackets is a configuration error."""
        with pytest.raises(NoBracketsConfiguredError) as exc_info:
            calc.compute_tax(Decimal("500000"), 2025)
        assert exc_info.value.effective_year == 2025

    def test_missing_year_raises_even_for_zero_income(self, calc):
        """Zero income still requires a configured table."""
        with pytest.raises(NoBracketsConfiguredError):
            calc.compute_tax(Decimal("0"), 2030)

    @given(
        a=st.decimals(min_value=0, max_value=10_000_000, places=2),
        b=st.decimals(min_value=0, max_value=10_000_000, places=2),
    )
    def test_tax_is_non_negative_and_monotonic(self, a, b):
        """Higher income never pays less tax."""
        calc = TaxCalculator({2024: THREE_BANDS})
        low, high = sorted([a, b])
        low_tax = calc.compute_tax(low, 2024)
        high_tax = calc.compute_tax(high, 2024)
        assert low_tax >= 0
        assert low_tax <= high_tax


class TestBracketValidation:
    """Test bracket table structure checks."""

    def test_valid_table(self):
        ordered = TaxCalculator.validate_brackets(THREE_BANDS, 2024)
        assert [b.bracket_order for b in ordered] == [1, 2, 3]

    def test_gap_between_bands(self):
        """Bands must be contiguous."""
        table = [
            bracket(1, "0", "150000", "0"),
            bracket(2, "150001", None, "5"),
        ]
        with pytest.raises(InvalidBracketTableError) as exc_info:
            TaxCalculator.validate_brackets(table, 2024)
        assert any("expected 150000" in p for p in exc_info.value.problems)

    def test_two_open_bands(self):
        """Only one band may lack a maximum."""
        table = [
            bracket(1, "0", None, "0"),
            bracket(2, "150000", None, "5"),
        ]
        with pytest.raises(InvalidBracketTableError):
            TaxCalculator.validate_brackets(table)

    def test_open_band_not_last(self):
        """The open band has to be the top one."""
        table = [
            bracket(1, "0", None, "0"),
            bracket(2, "150000", "300000", "5"),
        ]
        with pytest.raises(InvalidBracketTableError):
            TaxCalculator.validate_brackets(table)

    def test_first_band_must_start_at_zero(self):
        table = [bracket(1, "100", None, "5")]
        with pytest.raises(InvalidBracketTableError):
            TaxCalculator.validate_brackets(table)

    def test_invalid_table_raises_on_compute(self):
        """Validation runs before the first computation for a year."""
        calc = TaxCalculator({2024: [bracket(1, "0", "1000", "5")]})
        with pytest.raises(InvalidBracketTableError):
            calc.compute_tax(Decimal("500"), 2024)


class TestBreakdown:
    """Test per-bracket explanation."""

    def test_breakdown_slices(self, calc):
        slices = calc.breakdown(Decimal("500000"), 2024)
        assert [s.taxable_amount for s in slices] == [
            Decimal("150000"),
            Decimal("150000"),
            Decimal("200000"),
        ]
        assert sum(s.tax for s in slices) == Decimal("27500")

    def test_breakdown_stops_at_income(self, calc):
        slices = calc.breakdown(Decimal("200000"), 2024)
        assert len(slices) == 2
        assert slices[-1].taxable_amount == Decimal("50000")

    def test_breakdown_of_zero_income(self, calc):
        assert calc.breakdown(Decimal("0"), 2024) == []


class TestMonthlyIncomeTax:
    """Test annualised monthly withholding."""

    def test_monthly_withholding_twelve_months(self, calc):
        """
        annual 360,000 - expense 100,000 (capped) - allowance 60,000
        - social security 9,000 = 191,000 -> 2,050 / 12 = 170.83
        """
        tax = calc.compute_monthly_income_tax(
            Decimal("30000"),
            2024,
            TaxConvention(annualization="twelve_months"),
            months=12,
            monthly_social_security=Decimal("750"),
        )
        assert tax == Decimal("170.83")

    def test_low_income_pays_nothing(self, calc):
        tax = calc.compute_monthly_income_tax(Decimal("10000"), 2024, TaxConvention())
        assert tax == Decimal("0.00")

    def test_fewer_months_lowers_annual_estimate(self, calc):
        convention = TaxConvention()
        full = calc.compute_monthly_income_tax(Decimal("50000"), 2024, convention, months=12)
        partial = calc.compute_monthly_income_tax(Decimal("50000"), 2024, convention, months=6)
        assert partial < full

    def test_provident_fund_reduces_tax(self, calc):
        convention = TaxConvention()
        without = calc.compute_monthly_income_tax(Decimal("50000"), 2024, convention)
        with_pvd = calc.compute_monthly_income_tax(
            Decimal("50000"), 2024, convention, monthly_provident_fund=Decimal("3750")
        )
        assert with_pvd < without

    def test_dependant_allowances_reduce_withholding(self, calc):
        """The first child's 30,000 brings 191,000 down to 161,000 -> 550 / 12 = 45.83."""
        convention = TaxConvention(annualization="twelve_months")
        tax = calc.compute_monthly_income_tax(
            Decimal("30000"),
            2024,
            convention,
            months=12,
            monthly_social_security=Decimal("750"),
            dependant_allowances=TaxCalculator.dependant_allowances(convention, child_count=1),
        )
        assert tax == Decimal("45.83")


class TestDependantAllowances:
    """Test spouse, child and parent allowances."""

    def test_no_dependants(self):
        assert TaxCalculator.dependant_allowances(TaxConvention()) == Decimal("0")

    def test_spouse(self):
        assert TaxCalculator.dependant_allowances(TaxConvention(), has_spouse=True) == Decimal(
            "60000"
        )

    def test_first_child_then_subsequent_rate(self):
        convention = TaxConvention()
        assert TaxCalculator.dependant_allowances(convention, child_count=1) == Decimal("30000")
        assert TaxCalculator.dependant_allowances(convention, child_count=2) == Decimal("90000")

    def test_children_capped(self):
        convention = TaxConvention()
        three = TaxCalculator.dependant_allowances(convention, child_count=3)
        five = TaxCalculator.dependant_allowances(convention, child_count=5)
        assert three == five == Decimal("150000")

    def test_parents_and_configured_amounts(self):
        convention = TaxConvention(
            spouse_allowance=Decimal("50000"), parent_allowance=Decimal("25000")
        )
        total = TaxCalculator.dependant_allowances(
            convention, has_spouse=True, child_count=1, eligible_parent_count=2
        )
        assert total == Decimal("50000") + Decimal("30000") + Decimal("50000")


class TestAnnualizationMonths:
    """Test the annualisation conventions."""

    def test_twelve_months(self):
        assert annualization_months("twelve_months", date(2024, 4, 1), date(2024, 6, 30)) == 12

    def test_months_worked_in_start_year(self):
        assert annualization_months("months_worked", date(2024, 4, 1), date(2024, 6, 30)) == 9

    def test_months_worked_after_start_year(self):
        assert annualization_months("months_worked", date(2022, 4, 1), date(2024, 6, 30)) == 12
