"""Payroll line construction, rounding and exact apportionment."""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Sequence

from hrms_payroll.calculators.types import PayrollLine, StatutoryDeductions

CENTS = Decimal("0.01")
ZERO = Decimal("0")


class PayrollLineBuilder:
    """Builds per-allocation payroll lines from employment-level amounts.

    Rounding:
    - Money is rounded to 2 decimals, half-up, per component
    - Employment-level components are split across allocations by
      largest remainder so the parts always sum to the whole
    - Net is derived from the rounded components, never rounded again
    """

    @staticmethod
    def round_to_cents(amount: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
        """Round amount to 2 decimal places."""
        return Decimal(amount).quantize(CENTS, rounding=rounding)

    @staticmethod
    def apportion(total: Decimal, weights: Sequence[Decimal]) -> list[Decimal]:
        """Split a cent amount across weights; the parts sum exactly to total.

        Zero total weight splits evenly. Leftover cents go to the largest
        fractional remainders, earliest position first on ties.
        """
        if not weights:
            return []

        total = PayrollLineBuilder.round_to_cents(total)
        sign = -1 if total < 0 else 1
        cents = int(abs(total) / CENTS)

        weight_total = sum(weights, ZERO)
        if weight_total <= 0:
            weights = [Decimal("1")] * len(weights)
            weight_total = Decimal(len(weights))

        raw = [Decimal(cents) * w / weight_total for w in weights]
        floors = [int(r.to_integral_value(rounding=ROUND_DOWN)) for r in raw]
        leftover = cents - sum(floors)

        order = sorted(range(len(raw)), key=lambda i: (-(raw[i] - floors[i]), i))
        for i in order[:leftover]:
            floors[i] += 1

        return [sign * Decimal(c) * CENTS for c in floors]

    @staticmethod
    def apportion_deductions(
        deductions: StatutoryDeductions, weights: Sequence[Decimal]
    ) -> list[StatutoryDeductions]:
        """Apportion every statutory component across the same weights."""
        apportion = PayrollLineBuilder.apportion
        ss_ee = apportion(deductions.employee_social_security, weights)
        ss_er = apportion(deductions.employer_social_security, weights)
        hw_ee = apportion(deductions.employee_health_welfare, weights)
        hw_er = apportion(deductions.employer_health_welfare, weights)
        pvd = apportion(deductions.pvd, weights)
        saving = apportion(deductions.saving_fund, weights)
        return [
            StatutoryDeductions(
                employee_social_security=ss_ee[i],
                employer_social_security=ss_er[i],
                employee_health_welfare=hw_ee[i],
                employer_health_welfare=hw_er[i],
                pvd=pvd[i],
                saving_fund=saving[i],
            )
            for i in range(len(weights))
        ]

    @staticmethod
    def apply_deductions(line: PayrollLine, share: StatutoryDeductions) -> PayrollLine:
        """Copy an apportioned statutory share onto a line."""
        line.employee_social_security = share.employee_social_security
        line.employer_social_security = share.employer_social_security
        line.employee_health_welfare = share.employee_health_welfare
        line.employer_health_welfare = share.employer_health_welfare
        line.pvd = share.pvd
        line.saving_fund = share.saving_fund
        return line

    @staticmethod
    def sum_lines(lines: Sequence[PayrollLine], attribute: str) -> Decimal:
        """Sum one money attribute (or property) over lines."""
        return sum((getattr(line, attribute) for line in lines), ZERO)

    @staticmethod
    def verify_net_identity(line: PayrollLine) -> bool:
        """Check net = income - employee deductions for one line."""
        expected = (
            line.gross_salary_by_fte
            + line.thirteenth_month_salary
            + line.salary_bonus
            - (
                line.income_tax
                + line.employee_social_security
                + line.employee_health_welfare
                + line.pvd
                + line.saving_fund
            )
        )
        return expected == line.net_salary
