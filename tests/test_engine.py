"""Unit tests for PayrollCalculator.

Tests the per-employment pipeline: gross by FTE, statutory deductions,
income tax, 13th month and inter-organisation advances.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings as hypothesis_settings, strategies as st

from hrms_payroll.calculators.deductions import (
    HEALTH_WELFARE_EMPLOYEE_PERCENTAGE,
    HEALTH_WELFARE_EMPLOYER_PERCENTAGE,
    PVD_PERCENTAGE,
    SAVING_FUND_PERCENTAGE,
    SOCIAL_SECURITY_EMPLOYEE_RATE,
    SOCIAL_SECURITY_EMPLOYER_RATE,
    SOCIAL_SECURITY_MAX_MONTHLY,
)
from hrms_payroll.calculators.engine import PayrollCalculator
from hrms_payroll.calculators.line_builder import PayrollLineBuilder
from hrms_payroll.calculators.tax_calculator import NoBracketsConfiguredError
from hrms_payroll.calculators.types import (
    AllocationShare,
    BenefitSnapshot,
    EmploymentTerms,
    ReferenceSnapshot,
    SalaryType,
    TaxBracketRule,
    TaxConvention,
)
from hrms_payroll.config import Settings

BRACKETS = (
    TaxBracketRule(1, Decimal("0"), Decimal("150000"), Decimal("0")),
    TaxBracketRule(2, Decimal("150000"), Decimal("300000"), Decimal("5")),
    TaxBracketRule(3, Decimal("300000"), None, Decimal("10")),
)

BENEFIT_VALUES = {
    SOCIAL_SECURITY_EMPLOYEE_RATE: Decimal("5"),
    SOCIAL_SECURITY_EMPLOYER_RATE: Decimal("5"),
    SOCIAL_SECURITY_MAX_MONTHLY: Decimal("750"),
    PVD_PERCENTAGE: Decimal("7.5"),
    SAVING_FUND_PERCENTAGE: Decimal("7.5"),
    HEALTH_WELFARE_EMPLOYEE_PERCENTAGE: Decimal("1"),
    HEALTH_WELFARE_EMPLOYER_PERCENTAGE: Decimal("2"),
}

TEST_SETTINGS = Settings(
    database_url="sqlite+aiosqlite://",
    fte_tolerance=Decimal("0.01"),
    allocation_rounding="ROUND_HALF_UP",
    tax_annualization="twelve_months",
    prorate_partial_months=True,
    default_probation_months=3,
    thirteenth_month_min_service_months=6,
    annual_increase_rate=Decimal("1"),
    annual_increase_min_working_days=365,
    log_level="DEBUG",
)


def make_reference(as_of: date, brackets=BRACKETS) -> ReferenceSnapshot:
    return ReferenceSnapshot(
        as_of=as_of,
        brackets=brackets,
        benefits=BenefitSnapshot(as_of=as_of, values=BENEFIT_VALUES),
        tax_convention=TaxConvention(annualization="twelve_months"),
    )


def make_terms(**overrides) -> EmploymentTerms:
    values = dict(
        employment_id=uuid4(),
        start_date=date(2024, 1, 1),
        pass_probation_salary=Decimal("30000"),
        home_organization="SMRU",
        probation_salary=Decimal("24000"),
        probation_end_date=date(2024, 3, 31),
    )
    values.update(overrides)
    return EmploymentTerms(**values)


def split(*parts: tuple[str, str]) -> list[AllocationShare]:
    return [
        AllocationShare(funding_allocation_id=uuid4(), fte=Decimal(fte), funding_organization=org)
        for fte, org in parts
    ]


class TestPayrollCalculator:
    """Test one employment's payroll for one period."""

    def test_pass_probation_split(self):
        """60/40 split after probation: 18,000 and 12,000 gross."""
        period = date(2024, 5, 31)
        calc = PayrollCalculator(make_reference(period), TEST_SETTINGS)
        result = calc.calculate(make_terms(), split(("60", "SMRU"), ("40", "SMRU")), period)

        first, second = result.lines
        assert result.salary_type == SalaryType.PASS_PROBATION_SALARY
        assert first.gross_salary == Decimal("30000")
        assert first.gross_salary_by_fte == Decimal("18000.00")
        assert second.gross_salary_by_fte == Decimal("12000.00")
        assert result.aggregate_gross == Decimal("30000.00")

        assert first.employee_social_security == Decimal("450.00")
        assert second.employee_social_security == Decimal("300.00")
        assert first.employer_health_welfare == Decimal("360.00")

        # annual 360,000 -> taxable 191,000 -> 2,050 / 12
        assert first.income_tax + second.income_tax == Decimal("170.83")
        assert first.net_salary == Decimal("17267.50")
        assert second.net_salary == Decimal("11511.67")
        assert result.total_net == Decimal("28779.17")
        assert result.advances == []

    def test_probation_split(self):
        """Before the probation end date the probation salary applies."""
        period = date(2024, 2, 29)
        calc = PayrollCalculator(make_reference(period), TEST_SETTINGS)
        result = calc.calculate(make_terms(), split(("60", "SMRU"), ("40", "SMRU")), period)

        assert result.salary_type == SalaryType.PROBATION_SALARY
        assert [line.gross_salary_by_fte for line in result.lines] == [
            Decimal("14400.00"),
            Decimal("9600.00"),
        ]
        assert all(line.income_tax == Decimal("0") for line in result.lines)

    def test_provident_fund_only_after_probation(self):
        terms = make_terms(pvd=True)
        during = PayrollCalculator(make_reference(date(2024, 2, 29)), TEST_SETTINGS).calculate(
            terms, split(("100", "SMRU")), date(2024, 2, 29)
        )
        after = PayrollCalculator(make_reference(date(2024, 5, 31)), TEST_SETTINGS).calculate(
            terms, split(("100", "SMRU")), date(2024, 5, 31)
        )
        assert during.lines[0].pvd == Decimal("0")
        assert after.lines[0].pvd == Decimal("2250.00")
        assert after.lines[0].total_pvd_saving_fund == Decimal("4500.00")
        assert after.total_pvd_saving_fund == Decimal("4500.00")

    def test_thirteenth_month_after_minimum_service(self):
        period = date(2024, 5, 31)
        terms = make_terms(start_date=date(2023, 9, 1), probation_end_date=date(2023, 11, 30))
        result = PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
            terms, split(("60", "SMRU"), ("40", "SMRU")), period
        )
        assert [line.thirteenth_month_salary for line in result.lines] == [
            Decimal("1500.00"),
            Decimal("1000.00"),
        ]

    def test_no_thirteenth_month_before_minimum_service(self):
        period = date(2024, 5, 31)
        result = PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
            make_terms(), split(("100", "SMRU")), period
        )
        assert result.lines[0].thirteenth_month_salary == Decimal("0")

    def test_annual_increase_after_a_year_of_working_days(self):
        """370 working days since 2023-01-02 earn 1% of the 30,000 pass salary."""
        period = date(2024, 5, 31)
        terms = make_terms(start_date=date(2023, 1, 2), probation_end_date=date(2023, 3, 31))
        result = PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
            terms, split(("60", "SMRU"), ("40", "SMRU")), period
        )

        assert result.annual_increase == Decimal("300.00")
        assert result.lines[0].gross_salary == Decimal("30000")
        assert [line.gross_salary_by_fte for line in result.lines] == [
            Decimal("18180.00"),
            Decimal("12120.00"),
        ]

    def test_no_annual_increase_in_first_year(self):
        period = date(2024, 5, 31)
        result = PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
            make_terms(), split(("100", "SMRU")), period
        )
        assert result.annual_increase == Decimal("0")
        assert result.lines[0].gross_salary_by_fte == Decimal("30000.00")

    def test_dependant_allowances_lower_income_tax(self):
        """One child takes taxable income from 191,000 to 161,000: 550 / 12."""
        period = date(2024, 5, 31)
        calc = PayrollCalculator(make_reference(period), TEST_SETTINGS)
        shares = split(("60", "SMRU"), ("40", "SMRU"))

        with_child = calc.calculate(make_terms(child_count=1), shares, period)
        with_spouse = calc.calculate(make_terms(has_spouse=True), shares, period)

        assert sum(line.income_tax for line in with_child.lines) == Decimal("45.83")
        assert all(line.income_tax == Decimal("0") for line in with_spouse.lines)

    def test_bonus_apportioned_by_gross(self):
        period = date(2024, 5, 31)
        result = PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
            make_terms(), split(("60", "SMRU"), ("40", "SMRU")), period, bonus=Decimal("1000")
        )
        assert [line.salary_bonus for line in result.lines] == [
            Decimal("600.00"),
            Decimal("400.00"),
        ]

    def test_inter_organization_advance(self):
        """A line funded outside the home organisation needs an advance."""
        period = date(2024, 5, 31)
        result = PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
            make_terms(), split(("60", "SMRU"), ("40", "BHF")), period
        )
        home, partner = result.lines
        assert not home.needs_inter_organization_advance
        assert partner.needs_inter_organization_advance

        (advance,) = result.advances
        assert advance.funding_allocation_id == partner.funding_allocation_id
        assert advance.from_organization == "BHF"
        assert advance.to_organization == "SMRU"
        assert advance.amount == partner.net_salary

    def test_no_allocations(self):
        period = date(2024, 5, 31)
        with pytest.raises(ValueError):
            PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
                make_terms(), [], period
            )

    def test_no_brackets_for_year(self):
        period = date(2024, 5, 31)
        calc = PayrollCalculator(make_reference(period, brackets=()), TEST_SETTINGS)
        with pytest.raises(NoBracketsConfiguredError):
            calc.calculate(make_terms(), split(("100", "SMRU")), period)

    @hypothesis_settings(max_examples=50)
    @given(
        fte=st.integers(min_value=1, max_value=99),
        salary=st.decimals(min_value=1000, max_value=500_000, places=2),
    )
    def test_lines_balance(self, fte, salary):
        """Every line satisfies the net identity and gross sums to the month."""
        period = date(2024, 5, 31)
        terms = make_terms(pass_probation_salary=salary)
        result = PayrollCalculator(make_reference(period), TEST_SETTINGS).calculate(
            terms, split((str(fte), "SMRU"), (str(100 - fte), "BHF")), period
        )
        for line in result.lines:
            assert PayrollLineBuilder.verify_net_identity(line)
        gross = PayrollLineBuilder.sum_lines(result.lines, "gross_salary_by_fte")
        assert abs(gross - salary) <= Decimal("0.01")
