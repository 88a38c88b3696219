"""Pure funding allocation rules: FTE validation and salary resolution."""

from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Sequence

from hrms_payroll.calculators.line_builder import PayrollLineBuilder
from hrms_payroll.calculators.types import (
    AllocationRequest,
    EmploymentTerms,
    SalaryResolution,
    SalaryType,
)

FULL_FTE = Decimal("100")
DAYS_PER_MONTH = 30


class AllocationError(Exception):
    """Base class for allocation validation errors."""

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": str(self)}


class InvalidAllocationError(AllocationError):
    """Raised when an allocation request is malformed."""

    def __init__(self, reason: str, request: AllocationRequest | None = None):
        self.reason = reason
        self.request = request
        super().__init__(reason)


class AllocationImbalanceError(AllocationError):
    """Raised when active allocations do not sum to full FTE."""

    def __init__(
        self,
        total: Decimal,
        required: Decimal,
        tolerance: Decimal,
        allocations: Sequence[AllocationRequest] = (),
    ):
        self.total = total
        self.required = required
        self.tolerance = tolerance
        self.allocations = list(allocations)
        super().__init__(
            f"Allocation FTE total {total}% must equal {required}% (tolerance {tolerance})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "total": str(self.total),
            "required": str(self.required),
            "tolerance": str(self.tolerance),
            "allocations": [a.to_dict() for a in self.allocations],
        }


class MissingSalaryError(AllocationError):
    """Raised when an employment has no salary figure for a date."""

    def __init__(self, employment_id: Any, on: date):
        self.employment_id = employment_id
        self.on = on
        super().__init__(f"Employment {employment_id} has no salary effective {on}")


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_between(start: date, on: date) -> int:
    """Whole calendar months elapsed from start to on (never negative)."""
    months = (on.year - start.year) * 12 + (on.month - start.month)
    if on.day < start.day:
        months -= 1
    return max(months, 0)


def working_days_between(start: date, end: date) -> int:
    """Weekdays (Monday to Friday) from start to end, both inclusive."""
    if end < start:
        return 0
    full_weeks, extra = divmod((end - start).days + 1, 7)
    first = start.weekday()
    return full_weeks * 5 + sum(1 for offset in range(extra) if (first + offset) % 7 < 5)


def _same_month(a: date | None, b: date) -> bool:
    return a is not None and a.year == b.year and a.month == b.month


class AllocationEngine:
    """Allocation arithmetic with no I/O.

    One salary rule is shared by allocation creation and payroll:
    the probation salary applies strictly before the probation end date,
    the pass-probation salary on and after it.
    """

    def __init__(
        self,
        fte_tolerance: Decimal = Decimal("0.01"),
        rounding: str = ROUND_HALF_UP,
    ):
        self.fte_tolerance = fte_tolerance
        self.rounding = rounding

    def validate_fte_values(self, requests: Sequence[AllocationRequest]) -> None:
        """Reject empty sets and fte values outside (0, 100]."""
        if not requests:
            raise InvalidAllocationError("At least one funding allocation is required")
        for request in requests:
            if request.fte <= 0 or request.fte > FULL_FTE:
                raise InvalidAllocationError(
                    f"FTE must be greater than 0 and at most 100, got {request.fte}",
                    request,
                )

    def validate_fte_total(
        self,
        requests: Sequence[AllocationRequest],
        existing_total: Decimal = Decimal("0"),
    ) -> Decimal:
        """Validate the combined FTE of a request set; returns the total."""
        self.validate_fte_values(requests)
        total = existing_total + sum((r.fte for r in requests), Decimal("0"))
        if abs(total - FULL_FTE) > self.fte_tolerance:
            raise AllocationImbalanceError(total, FULL_FTE, self.fte_tolerance, requests)
        return total

    def resolve_salary_for_date(
        self, employment: EmploymentTerms, on: date
    ) -> SalaryResolution:
        """Pick the salary figure in force on a date."""
        in_probation = (
            employment.probation_end_date is not None
            and on < employment.probation_end_date
        )
        if in_probation:
            amount = employment.probation_salary
            if amount is None:
                amount = employment.pass_probation_salary
            if amount is None:
                raise MissingSalaryError(employment.employment_id, on)
            return SalaryResolution(Decimal(amount), SalaryType.PROBATION_SALARY)

        if employment.pass_probation_salary is None:
            raise MissingSalaryError(employment.employment_id, on)
        return SalaryResolution(
            Decimal(employment.pass_probation_salary), SalaryType.PASS_PROBATION_SALARY
        )

    def compute_allocated_amount(self, base_salary: Decimal, fte: Decimal) -> Decimal:
        """base * fte / 100, rounded once to cents."""
        return PayrollLineBuilder.round_to_cents(
            Decimal(base_salary) * Decimal(fte) / FULL_FTE, self.rounding
        )

    def monthly_salary_for_period(
        self,
        employment: EmploymentTerms,
        pay_period_date: date,
        prorate: bool = True,
    ) -> SalaryResolution:
        """Base salary for the month containing pay_period_date.

        Partial months use a 30-day month: a start on day d pays
        31 - d days, and a probation end on day d > 1 pays d - 1 days at
        the probation rate and the rest at the pass-probation rate.
        """
        resolved = self.resolve_salary_for_date(employment, pay_period_date)
        if not prorate:
            return resolved

        started_this_month = _same_month(employment.start_date, pay_period_date)
        probation_ends_this_month = (
            _same_month(employment.probation_end_date, pay_period_date)
            and employment.probation_end_date.day > 1
        )
        if not started_this_month and not probation_ends_this_month:
            return resolved

        first_day = min(employment.start_date.day, DAYS_PER_MONTH) if started_this_month else 1
        if first_day == 1 and not probation_ends_this_month:
            return resolved

        if probation_ends_this_month:
            boundary = min(employment.probation_end_date.day, DAYS_PER_MONTH + 1)
            probation_days = max(0, boundary - first_day)
            regular_days = max(0, DAYS_PER_MONTH - max(first_day, boundary) + 1)
            probation_rate = self.resolve_salary_for_date(
                employment, employment.probation_end_date.replace(day=1)
            ).amount
            regular_rate = self.resolve_salary_for_date(
                employment, employment.probation_end_date
            ).amount
            amount = (
                probation_rate * probation_days + regular_rate * regular_days
            ) / DAYS_PER_MONTH
        else:
            days = DAYS_PER_MONTH - first_day + 1
            amount = resolved.amount * days / DAYS_PER_MONTH

        return SalaryResolution(
            PayrollLineBuilder.round_to_cents(amount, self.rounding), resolved.salary_type
        )

    @staticmethod
    def default_probation_end_date(start_date: date, months: int = 3) -> date:
        """Probation end date when none is given explicitly."""
        return add_months(start_date, months)
