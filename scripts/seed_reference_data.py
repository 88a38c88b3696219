"""Seed script for tax brackets, tax settings and benefit settings.

Run with:
    python scripts/seed_reference_data.py [--year 2025]

Existing rows for the same key and year are left alone, so the script can
be re-run safely.
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms_payroll.calculators.deductions import (
    HEALTH_WELFARE_EMPLOYEE_PERCENTAGE,
    HEALTH_WELFARE_EMPLOYER_PERCENTAGE,
    PVD_PERCENTAGE,
    SAVING_FUND_PERCENTAGE,
    SOCIAL_SECURITY_EMPLOYEE_RATE,
    SOCIAL_SECURITY_EMPLOYER_RATE,
    SOCIAL_SECURITY_MAX_MONTHLY,
)
from hrms_payroll.calculators.tax_calculator import TaxCalculator
from hrms_payroll.calculators.types import TaxBracketRule
from hrms_payroll.database import get_session
from hrms_payroll.models import BenefitSetting, TaxBracket, TaxSetting
from hrms_payroll.services.reference_data import (
    CHILD_ALLOWANCE,
    EMPLOYMENT_DEDUCTION_MAX,
    EMPLOYMENT_DEDUCTION_RATE,
    PARENT_ALLOWANCE,
    PERSONAL_ALLOWANCE,
    SPOUSE_ALLOWANCE,
    SUBSEQUENT_CHILD_ALLOWANCE,
)

# (min, max, rate %) - progressive personal income tax bands
BRACKETS = [
    ("0", "150000", "0"),
    ("150000", "300000", "5"),
    ("300000", "500000", "10"),
    ("500000", "750000", "15"),
    ("750000", "1000000", "20"),
    ("1000000", "2000000", "25"),
    ("2000000", "5000000", "30"),
    ("5000000", None, "35"),
]

TAX_SETTINGS = {
    EMPLOYMENT_DEDUCTION_RATE: ("50", "Employment expense deduction (% of income)"),
    EMPLOYMENT_DEDUCTION_MAX: ("100000", "Employment expense deduction cap"),
    PERSONAL_ALLOWANCE: ("60000", "Personal allowance"),
    SPOUSE_ALLOWANCE: ("60000", "Spouse allowance"),
    CHILD_ALLOWANCE: ("30000", "Allowance for the first child"),
    SUBSEQUENT_CHILD_ALLOWANCE: ("60000", "Allowance for each later child"),
    PARENT_ALLOWANCE: ("30000", "Allowance per eligible parent"),
}

BENEFIT_SETTINGS = {
    SOCIAL_SECURITY_EMPLOYEE_RATE: ("5", "percentage", "Social security, employee share"),
    SOCIAL_SECURITY_EMPLOYER_RATE: ("5", "percentage", "Social security, employer share"),
    SOCIAL_SECURITY_MAX_MONTHLY: ("750", "amount", "Social security monthly cap per side"),
    PVD_PERCENTAGE: ("7.5", "percentage", "Provident fund, employee contribution"),
    SAVING_FUND_PERCENTAGE: ("7.5", "percentage", "Saving fund, employee contribution"),
    HEALTH_WELFARE_EMPLOYEE_PERCENTAGE: ("1.5", "percentage", "Health welfare, employee share"),
    HEALTH_WELFARE_EMPLOYER_PERCENTAGE: ("1.5", "percentage", "Health welfare, employer share"),
}


async def seed_tax_brackets(session: AsyncSession, year: int) -> int:
    """Create the bracket table for a year if none exists."""
    result = await session.execute(
        select(TaxBracket).where(TaxBracket.effective_year == year)
    )
    if result.scalars().first() is not None:
        print(f"Tax brackets for {year} already exist")
        return 0

    rules = [
        TaxBracketRule(
            bracket_order=order,
            min_income=Decimal(low),
            max_income=Decimal(high) if high is not None else None,
            rate=Decimal(rate),
        )
        for order, (low, high, rate) in enumerate(BRACKETS, start=1)
    ]
    TaxCalculator.validate_brackets(rules, year)

    for rule in rules:
        session.add(
            TaxBracket(
                effective_year=year,
                bracket_order=rule.bracket_order,
                min_income=rule.min_income,
                max_income=rule.max_income,
                tax_rate=rule.rate,
                is_active=True,
                created_by="seed",
            )
        )
    print(f"Created {len(rules)} tax brackets for {year}")
    return len(rules)


async def seed_tax_settings(session: AsyncSession, year: int) -> int:
    created = 0
    for key, (value, description) in TAX_SETTINGS.items():
        result = await session.execute(
            select(TaxSetting).where(
                TaxSetting.setting_key == key,
                TaxSetting.effective_year == year,
            )
        )
        if result.scalar_one_or_none() is not None:
            continue
        session.add(
            TaxSetting(
                setting_key=key,
                setting_value=Decimal(value),
                effective_year=year,
                description=description,
                created_by="seed",
            )
        )
        created += 1
    print(f"Created {created} tax setting(s) for {year}")
    return created


async def seed_benefit_settings(session: AsyncSession, effective_date: date) -> int:
    created = 0
    for key, (value, setting_type, description) in BENEFIT_SETTINGS.items():
        result = await session.execute(
            select(BenefitSetting).where(
                BenefitSetting.setting_key == key,
                BenefitSetting.effective_date == effective_date,
            )
        )
        if result.scalar_one_or_none() is not None:
            continue
        session.add(
            BenefitSetting(
                setting_key=key,
                setting_value=Decimal(value),
                setting_type=setting_type,
                effective_date=effective_date,
                description=description,
                created_by="seed",
            )
        )
        created += 1
    print(f"Created {created} benefit setting(s) effective {effective_date}")
    return created


async def main(year: int) -> None:
    async with get_session() as session:
        await seed_tax_brackets(session, year)
        await seed_tax_settings(session, year)
        await seed_benefit_settings(session, date(year, 1, 1))
    print("Seed complete")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed payroll reference data")
    parser.add_argument("--year", type=int, default=date.today().year)
    asyncio.run(main(parser.parse_args().year))
