"""Loads the effective-dated reference snapshot a payroll run reads."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms_payroll.calculators.types import (
    BenefitSnapshot,
    ReferenceSnapshot,
    TaxBracketRule,
    TaxConvention,
)
from hrms_payroll.models import BenefitSetting, TaxBracket, TaxSetting

logger = logging.getLogger(__name__)

EMPLOYMENT_DEDUCTION_RATE = "employment_deduction_rate"
EMPLOYMENT_DEDUCTION_MAX = "employment_deduction_max"
PERSONAL_ALLOWANCE = "personal_allowance"
SPOUSE_ALLOWANCE = "spouse_allowance"
CHILD_ALLOWANCE = "child_allowance"
SUBSEQUENT_CHILD_ALLOWANCE = "child_allowance_subsequent"
PARENT_ALLOWANCE = "parent_allowance"


class ReferenceDataLoader:
    """Reads tax brackets, tax settings and benefit settings for a date.

    Nothing here raises on missing data: an empty bracket table or an
    absent benefit key surfaces later, when an employment actually needs it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_tax_brackets(self, effective_year: int) -> tuple[TaxBracketRule, ...]:
        result = await self.session.execute(
            select(TaxBracket)
            .where(
                TaxBracket.effective_year == effective_year,
                TaxBracket.is_active.is_(True),
            )
            .order_by(TaxBracket.bracket_order)
        )
        return tuple(
            TaxBracketRule(
                bracket_order=row.bracket_order,
                min_income=Decimal(row.min_income),
                max_income=Decimal(row.max_income) if row.max_income is not None else None,
                rate=Decimal(row.tax_rate),
            )
            for row in result.scalars().all()
        )

    async def load_benefit_snapshot(self, as_of: date) -> BenefitSnapshot:
        """Latest active setting per key with effective_date on or before as_of."""
        result = await self.session.execute(
            select(BenefitSetting)
            .where(
                BenefitSetting.is_active.is_(True),
                BenefitSetting.effective_date <= as_of,
            )
            .order_by(BenefitSetting.setting_key, BenefitSetting.effective_date.desc())
        )
        values: dict[str, Decimal] = {}
        for setting in result.scalars().all():
            values.setdefault(setting.setting_key, Decimal(setting.setting_value))
        return BenefitSnapshot(as_of=as_of, values=values)

    async def load_tax_convention(
        self, effective_year: int, annualization: str
    ) -> TaxConvention:
        """Tax settings for a year; keys that are not configured keep their defaults."""
        result = await self.session.execute(
            select(TaxSetting).where(
                TaxSetting.effective_year == effective_year,
                TaxSetting.is_active.is_(True),
            )
        )
        settings = {row.setting_key: Decimal(row.setting_value) for row in result.scalars().all()}
        defaults = TaxConvention()
        return TaxConvention(
            annualization=annualization,
            employment_deduction_rate=settings.get(
                EMPLOYMENT_DEDUCTION_RATE, defaults.employment_deduction_rate
            ),
            employment_deduction_max=settings.get(
                EMPLOYMENT_DEDUCTION_MAX, defaults.employment_deduction_max
            ),
            personal_allowance=settings.get(PERSONAL_ALLOWANCE, defaults.personal_allowance),
            spouse_allowance=settings.get(SPOUSE_ALLOWANCE, defaults.spouse_allowance),
            child_allowance=settings.get(CHILD_ALLOWANCE, defaults.child_allowance),
            subsequent_child_allowance=settings.get(
                SUBSEQUENT_CHILD_ALLOWANCE, defaults.subsequent_child_allowance
            ),
            parent_allowance=settings.get(PARENT_ALLOWANCE, defaults.parent_allowance),
        )

    async def load(self, as_of: date, annualization: str = "months_worked") -> ReferenceSnapshot:
        brackets = await self.load_tax_brackets(as_of.year)
        if not brackets:
            logger.warning("No active tax brackets for %s", as_of.year)
        return ReferenceSnapshot(
            as_of=as_of,
            brackets=brackets,
            benefits=await self.load_benefit_snapshot(as_of),
            tax_convention=await self.load_tax_convention(as_of.year, annualization),
        )
