"""Effective-dated reference data: tax brackets, tax settings, benefit settings."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hrms_payroll.models.base import AuditMixin, Base


class TaxBracket(Base, AuditMixin):
    """One band of the progressive income tax table for a year."""

    __tablename__ = "tax_bracket"

    tax_bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    bracket_order: Mapped[int] = mapped_column(Integer, nullable=False)
    min_income: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    max_income: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("tax_rate >= 0 AND tax_rate <= 100", name="tax_bracket_rate_check"),
        CheckConstraint(
            "max_income IS NULL OR max_income > min_income",
            name="tax_bracket_range_check",
        ),
    )


class TaxSetting(Base, AuditMixin):
    """Annual income tax parameter (allowances, deduction rates and caps)."""

    __tablename__ = "tax_setting"

    tax_setting_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    setting_key: Mapped[str] = mapped_column(String, nullable=False)
    setting_value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("setting_key", "effective_year", name="tax_setting_key_year_unique"),
    )


class BenefitSetting(Base, AuditMixin):
    """Effective-dated benefit parameter (rates, caps)."""

    __tablename__ = "benefit_setting"

    benefit_setting_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    setting_key: Mapped[str] = mapped_column(String, nullable=False, index=True)
    setting_value: Mapped[Decimal] = mapped_column(Numeric(15, 4), nullable=False)
    setting_type: Mapped[str] = mapped_column(String, nullable=False, default="percentage")
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "setting_type IN ('percentage', 'amount')",
            name="benefit_setting_type_check",
        ),
    )
