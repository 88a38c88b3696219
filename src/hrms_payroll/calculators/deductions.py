"""Statutory deductions: social security, provident fund, saving fund, health welfare."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from hrms_payroll.calculators.line_builder import PayrollLineBuilder
from hrms_payroll.calculators.types import (
    BenefitSnapshot,
    ContributionSplit,
    EmploymentTerms,
    SalaryType,
    StatutoryDeductions,
)

HUNDRED = Decimal("100")
ZERO = Decimal("0")

SOCIAL_SECURITY_EMPLOYEE_RATE = "social_security_employee_rate"
SOCIAL_SECURITY_EMPLOYER_RATE = "social_security_employer_rate"
SOCIAL_SECURITY_MAX_MONTHLY = "social_security_max_monthly"
PVD_PERCENTAGE = "pvd_percentage"
SAVING_FUND_PERCENTAGE = "saving_fund_percentage"
HEALTH_WELFARE_EMPLOYEE_PERCENTAGE = "health_welfare_employee_percentage"
HEALTH_WELFARE_EMPLOYER_PERCENTAGE = "health_welfare_employer_percentage"


class NoActiveSettingError(Exception):
    """Raised when a benefit setting needed for a deduction is not in force."""

    def __init__(self, setting_key: str, as_of: date):
        self.setting_key = setting_key
        self.as_of = as_of
        super().__init__(f"No active benefit setting '{setting_key}' effective {as_of}")


class StatutoryDeductionCalculator:
    """Computes statutory amounts from benefit settings effective on a date.

    Percentages are stored as percent values (5 means 5%). Each component
    is rounded to cents on its own.
    """

    def __init__(self, benefits: BenefitSnapshot):
        self.benefits = benefits

    def _require(self, key: str) -> Decimal:
        value = self.benefits.get(key)
        if value is None:
            raise NoActiveSettingError(key, self.benefits.as_of)
        return Decimal(value)

    def _percent_of(self, gross: Decimal, key: str) -> Decimal:
        if gross <= 0:
            return Decimal("0.00")
        return PayrollLineBuilder.round_to_cents(gross * self._require(key) / HUNDRED)

    def compute_social_security(self, gross: Decimal) -> ContributionSplit:
        """min(gross * rate, cap) for each side."""
        cap = self._require(SOCIAL_SECURITY_MAX_MONTHLY)
        employee = min(self._percent_of(gross, SOCIAL_SECURITY_EMPLOYEE_RATE), cap)
        employer = min(self._percent_of(gross, SOCIAL_SECURITY_EMPLOYER_RATE), cap)
        return ContributionSplit(
            employee=PayrollLineBuilder.round_to_cents(employee),
            employer=PayrollLineBuilder.round_to_cents(employer),
        )

    def compute_provident_fund(self, gross: Decimal) -> Decimal:
        return self._percent_of(gross, PVD_PERCENTAGE)

    def compute_saving_fund(self, gross: Decimal) -> Decimal:
        return self._percent_of(gross, SAVING_FUND_PERCENTAGE)

    def compute_health_welfare(self, gross: Decimal) -> ContributionSplit:
        return ContributionSplit(
            employee=self._percent_of(gross, HEALTH_WELFARE_EMPLOYEE_PERCENTAGE),
            employer=self._percent_of(gross, HEALTH_WELFARE_EMPLOYER_PERCENTAGE),
        )

    def compute_all(
        self,
        gross: Decimal,
        employment: EmploymentTerms,
        salary_type: SalaryType,
    ) -> StatutoryDeductions:
        """All statutory amounts for an employment's aggregate gross.

        Disabled benefits contribute zero and need no setting. Provident
        and saving funds only start once the pass-probation salary applies.
        """
        social_security = ContributionSplit(ZERO, ZERO)
        if employment.social_security:
            social_security = self.compute_social_security(gross)

        health_welfare = ContributionSplit(ZERO, ZERO)
        if employment.health_welfare:
            health_welfare = self.compute_health_welfare(gross)

        passed = salary_type == SalaryType.PASS_PROBATION_SALARY
        pvd = self.compute_provident_fund(gross) if employment.pvd and passed else ZERO
        saving = (
            self.compute_saving_fund(gross) if employment.saving_fund and passed else ZERO
        )

        return StatutoryDeductions(
            employee_social_security=social_security.employee,
            employer_social_security=social_security.employer,
            employee_health_welfare=health_welfare.employee,
            employer_health_welfare=health_welfare.employer,
            pvd=pvd,
            saving_fund=saving,
        )
