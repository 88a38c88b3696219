"""Progressive income tax calculation over effective-year bracket tables."""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Sequence

from hrms_payroll.calculators.types import TaxBracketRule, TaxBracketSlice, TaxConvention

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONTHS_PER_YEAR = 12


class NoBracketsConfiguredError(Exception):
    """Raised when no active tax brackets exist for a year."""

    def __init__(self, effective_year: int):
        self.effective_year = effective_year
        super().__init__(f"No tax brackets configured for {effective_year}")


class InvalidBracketTableError(Exception):
    """Raised when a year's bracket table is not a valid progressive table."""

    def __init__(self, effective_year: int | None, problems: list[str]):
        self.effective_year = effective_year
        self.problems = problems
        super().__init__(
            f"Invalid tax bracket table for {effective_year}: " + "; ".join(problems)
        )


def annualization_months(convention: str, start_date: date, pay_period_date: date) -> int:
    """Number of months a monthly gross is multiplied by to annualise it."""
    if convention == "twelve_months":
        return MONTHS_PER_YEAR
    if start_date.year == pay_period_date.year:
        return MONTHS_PER_YEAR - start_date.month + 1
    return MONTHS_PER_YEAR


class TaxCalculator:
    """Calculates income tax from an injected table of brackets per year.

    Bracket tables must be contiguous: the first band starts at 0, each
    band starts where the previous one ends, and only the last band has
    an open (None) upper bound. Rates are percentages.
    """

    def __init__(self, bracket_table: Mapping[int, Sequence[TaxBracketRule]]):
        self.bracket_table = bracket_table
        self._validated: dict[int, list[TaxBracketRule]] = {}

    @staticmethod
    def validate_brackets(
        brackets: Sequence[TaxBracketRule], effective_year: int | None = None
    ) -> list[TaxBracketRule]:
        """Return brackets sorted by order, raising on any structural problem."""
        ordered = sorted(brackets, key=lambda b: b.bracket_order)
        problems: list[str] = []

        orders = [b.bracket_order for b in ordered]
        if len(set(orders)) != len(orders):
            problems.append("bracket_order values must be unique")

        if ordered and ordered[0].min_income != 0:
            problems.append(f"first bracket must start at 0, starts at {ordered[0].min_income}")

        open_bands = [b for b in ordered if b.max_income is None]
        if len(open_bands) != 1:
            problems.append(f"exactly one bracket must have no maximum, found {len(open_bands)}")
        elif ordered and ordered[-1].max_income is not None:
            problems.append("the bracket without a maximum must be the last one")

        for previous, current in zip(ordered, ordered[1:]):
            if previous.max_income is not None and current.min_income != previous.max_income:
                problems.append(
                    f"bracket {current.bracket_order} starts at {current.min_income}, "
                    f"expected {previous.max_income}"
                )

        for bracket in ordered:
            if bracket.rate < 0:
                problems.append(f"bracket {bracket.bracket_order} has a negative rate")
            if bracket.max_income is not None and bracket.max_income <= bracket.min_income:
                problems.append(f"bracket {bracket.bracket_order} has max <= min")

        if problems:
            raise InvalidBracketTableError(effective_year, problems)
        return ordered

    def brackets_for_year(self, effective_year: int) -> list[TaxBracketRule]:
        """Validated, ordered brackets for a year."""
        if effective_year in self._validated:
            return self._validated[effective_year]

        brackets = self.bracket_table.get(effective_year)
        if not brackets:
            raise NoBracketsConfiguredError(effective_year)

        ordered = self.validate_brackets(brackets, effective_year)
        self._validated[effective_year] = ordered
        return ordered

    def _walk_brackets(
        self, income: Decimal, effective_year: int
    ) -> list[TaxBracketSlice]:
        slices: list[TaxBracketSlice] = []
        for bracket in self.brackets_for_year(effective_year):
            if income <= bracket.min_income:
                break
            upper = income if bracket.max_income is None else min(income, bracket.max_income)
            taxable = upper - bracket.min_income
            slices.append(
                TaxBracketSlice(
                    bracket_order=bracket.bracket_order,
                    min_income=bracket.min_income,
                    max_income=bracket.max_income,
                    rate=bracket.rate,
                    taxable_amount=taxable,
                    tax=taxable * bracket.rate / HUNDRED,
                )
            )
        return slices

    def _progressive_tax(self, income: Decimal, effective_year: int) -> Decimal:
        """Unrounded tax; raises if the year has no brackets."""
        slices = self._walk_brackets(Decimal(income), effective_year)
        return max(sum((s.tax for s in slices), ZERO), ZERO)

    def compute_tax(self, annualized_income: Decimal, effective_year: int) -> Decimal:
        """Annual tax on an annualised income, rounded once to cents."""
        if annualized_income <= 0:
            # Still require a configured table for the year.
            self.brackets_for_year(effective_year)
            return Decimal("0.00")
        tax = self._progressive_tax(annualized_income, effective_year)
        return tax.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def breakdown(self, income: Decimal, effective_year: int) -> list[TaxBracketSlice]:
        """Per-bracket slices of an income, for explanation."""
        if income <= 0:
            return []
        return self._walk_brackets(Decimal(income), effective_year)

    @staticmethod
    def dependant_allowances(
        convention: TaxConvention,
        has_spouse: bool = False,
        child_count: int = 0,
        eligible_parent_count: int = 0,
    ) -> Decimal:
        """Spouse, child and parent allowances claimed on top of the personal one.

        The first child earns child_allowance, later children the subsequent
        rate, and no more than max_allowed_children are counted.
        """
        total = convention.spouse_allowance if has_spouse else ZERO
        children = min(max(child_count, 0), convention.max_allowed_children)
        if children:
            total += convention.child_allowance
            total += convention.subsequent_child_allowance * (children - 1)
        total += convention.parent_allowance * max(eligible_parent_count, 0)
        return total

    def compute_monthly_income_tax(
        self,
        monthly_income: Decimal,
        effective_year: int,
        convention: TaxConvention,
        months: int = MONTHS_PER_YEAR,
        monthly_social_security: Decimal = ZERO,
        monthly_provident_fund: Decimal = ZERO,
        additional_annual_income: Decimal = ZERO,
        dependant_allowances: Decimal = ZERO,
    ) -> Decimal:
        """Monthly withholding from an annualised estimate.

        annual = monthly * months + one-off income, less the employment
        expense deduction (rate, capped), the personal and dependant
        allowances and the year's social security and provident fund
        contributions.
        """
        annual_income = monthly_income * months + additional_annual_income

        expense = min(
            annual_income * convention.employment_deduction_rate / HUNDRED,
            convention.employment_deduction_max,
        )
        taxable = annual_income - expense - convention.personal_allowance - dependant_allowances
        if convention.deduct_social_security:
            taxable -= monthly_social_security * months
        if convention.deduct_provident_fund:
            taxable -= monthly_provident_fund * months

        if taxable <= 0:
            self.brackets_for_year(effective_year)
            return Decimal("0.00")

        annual_tax = self._progressive_tax(taxable, effective_year)
        return (annual_tax / MONTHS_PER_YEAR).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
