"""Payroll calculation engine - per-employment orchestrator."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Sequence

from hrms_payroll.calculators.allocation import (
    AllocationEngine,
    months_between,
    working_days_between,
)
from hrms_payroll.calculators.deductions import StatutoryDeductionCalculator
from hrms_payroll.calculators.line_builder import PayrollLineBuilder
from hrms_payroll.calculators.tax_calculator import TaxCalculator, annualization_months
from hrms_payroll.calculators.types import (
    AdvanceSignal,
    AllocationShare,
    EmploymentPayrollCalculation,
    EmploymentTerms,
    PayrollLine,
    ReferenceSnapshot,
)
from hrms_payroll.config import Settings, get_settings

ZERO = Decimal("0")


class PayrollCalculator:
    """Computes one employment's payroll lines for one pay period.

    Calculation pipeline (stable order per employment):
    1) Resolve the month's base salary (pro-rated for partial months)
    2) Gross by FTE per allocation, including any annual increase
    3) 13th-month accrual per allocation once service is long enough
    4) Statutory deductions on the aggregate gross
    5) Income tax on the annualised aggregate gross, after allowances
    6) Apportion employment-level amounts to allocations by gross share
    7) Flag inter-organisation advances
    """

    def __init__(
        self,
        reference: ReferenceSnapshot,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.reference = reference
        self.allocation_engine = AllocationEngine(
            fte_tolerance=self.settings.fte_tolerance,
            rounding=self.settings.rounding_mode,
        )
        self.tax_calculator = TaxCalculator({reference.as_of.year: reference.brackets})
        self.deduction_calculator = StatutoryDeductionCalculator(reference.benefits)

    def qualifies_for_thirteenth_month(
        self, employment: EmploymentTerms, pay_period_date: date
    ) -> bool:
        service = months_between(employment.start_date, pay_period_date)
        return service >= self.settings.thirteenth_month_min_service_months

    def annual_salary_increase(
        self, employment: EmploymentTerms, pay_period_date: date
    ) -> Decimal:
        """Percentage of the pass-probation salary once a year of working days is served."""
        if employment.pass_probation_salary is None:
            return ZERO
        worked = working_days_between(employment.start_date, pay_period_date)
        if worked < self.settings.annual_increase_min_working_days:
            return ZERO
        return PayrollLineBuilder.round_to_cents(
            employment.pass_probation_salary * self.settings.annual_increase_rate / 100
        )

    def calculate(
        self,
        employment: EmploymentTerms,
        allocations: Sequence[AllocationShare],
        pay_period_date: date,
        bonus: Decimal = ZERO,
    ) -> EmploymentPayrollCalculation:
        """Compute lines for every allocation of one employment."""
        if not allocations:
            raise ValueError(f"Employment {employment.employment_id} has no allocations to pay")

        engine = self.allocation_engine
        base = engine.resolve_salary_for_date(employment, pay_period_date)
        monthly = engine.monthly_salary_for_period(
            employment, pay_period_date, prorate=self.settings.prorate_partial_months
        )
        increase = self.annual_salary_increase(employment, pay_period_date)

        lines = [
            PayrollLine(
                funding_allocation_id=share.funding_allocation_id,
                salary_type=monthly.salary_type,
                fte=share.fte,
                funding_organization=share.funding_organization,
                gross_salary=base.amount,
                gross_salary_by_fte=engine.compute_allocated_amount(
                    monthly.amount + increase, share.fte
                ),
            )
            for share in allocations
        ]
        weights = [line.gross_salary_by_fte for line in lines]
        aggregate_gross = sum(weights, ZERO)

        if self.qualifies_for_thirteenth_month(employment, pay_period_date):
            for line in lines:
                line.thirteenth_month_salary = PayrollLineBuilder.round_to_cents(
                    line.gross_salary_by_fte / 12
                )

        bonus = PayrollLineBuilder.round_to_cents(bonus)
        for line, part in zip(lines, PayrollLineBuilder.apportion(bonus, weights)):
            line.salary_bonus = part

        deductions = self.deduction_calculator.compute_all(
            aggregate_gross, employment, monthly.salary_type
        )
        for line, share in zip(lines, PayrollLineBuilder.apportion_deductions(deductions, weights)):
            PayrollLineBuilder.apply_deductions(line, share)

        thirteenth_total = PayrollLineBuilder.sum_lines(lines, "thirteenth_month_salary")
        months = annualization_months(
            self.reference.tax_convention.annualization, employment.start_date, pay_period_date
        )
        income_tax = self.tax_calculator.compute_monthly_income_tax(
            aggregate_gross,
            pay_period_date.year,
            self.reference.tax_convention,
            months=months,
            monthly_social_security=deductions.employee_social_security,
            monthly_provident_fund=deductions.pvd + deductions.saving_fund,
            additional_annual_income=bonus + thirteenth_total * months,
            dependant_allowances=self.tax_calculator.dependant_allowances(
                self.reference.tax_convention,
                has_spouse=employment.has_spouse,
                child_count=employment.child_count,
                eligible_parent_count=employment.eligible_parent_count,
            ),
        )
        for line, part in zip(lines, PayrollLineBuilder.apportion(income_tax, weights)):
            line.income_tax = part

        advances: list[AdvanceSignal] = []
        for line in lines:
            if line.funding_organization != employment.home_organization:
                line.needs_inter_organization_advance = True
                advances.append(
                    AdvanceSignal(
                        funding_allocation_id=line.funding_allocation_id,
                        from_organization=line.funding_organization,
                        to_organization=employment.home_organization,
                        amount=line.net_salary,
                    )
                )

        return EmploymentPayrollCalculation(
            employment_id=employment.employment_id,
            pay_period_date=pay_period_date,
            salary_type=monthly.salary_type,
            monthly_salary=monthly.amount,
            aggregate_gross=aggregate_gross,
            lines=lines,
            advances=advances,
            annual_increase=increase,
        )
