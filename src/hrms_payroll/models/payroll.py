"""Payroll line-item and bulk batch models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms_payroll.models.base import Base, JSONType, TimestampMixin
from hrms_payroll.models.employment import Employment
from hrms_payroll.models.funding import FundingAllocation

MONEY = Numeric(14, 2)


class Payroll(Base, TimestampMixin):
    """One allocation's payroll for one pay period.

    Rows are immutable. A correction is a reversal row with negated
    amounts, followed by a new original row with the next revision.
    """

    __tablename__ = "payroll"

    payroll_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employment_id: Mapped[UUID] = mapped_column(
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    funding_allocation_id: Mapped[UUID] = mapped_column(
        ForeignKey("funding_allocation.funding_allocation_id", ondelete="RESTRICT"),
        nullable=False,
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("bulk_payroll_batch.batch_id", ondelete="SET NULL"),
    )
    pay_period_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    entry_type: Mapped[str] = mapped_column(String, nullable=False, default="original")
    reversal_of_id: Mapped[UUID | None] = mapped_column(ForeignKey("payroll.payroll_id"))
    salary_type: Mapped[str] = mapped_column(String, nullable=False)
    fte: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    gross_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    gross_salary_by_fte: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    thirteenth_month_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    salary_bonus: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    income_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    employee_social_security: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    employer_social_security: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    employee_health_welfare: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    employer_health_welfare: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    pvd: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    saving_fund: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_deduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    employer_contribution: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_pvd_saving_fund: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    needs_inter_organization_advance: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    funding_organization: Mapped[str | None] = mapped_column(String)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String)

    __table_args__ = (
        UniqueConstraint(
            "funding_allocation_id",
            "pay_period_date",
            "revision",
            "entry_type",
            name="payroll_allocation_period_revision_unique",
        ),
        CheckConstraint(
            "entry_type IN ('original', 'reversal')",
            name="payroll_entry_type_check",
        ),
        CheckConstraint(
            "(entry_type = 'reversal') = (reversal_of_id IS NOT NULL)",
            name="payroll_reversal_link_check",
        ),
    )

    employment: Mapped[Employment] = relationship()
    funding_allocation: Mapped[FundingAllocation] = relationship()


class BulkPayrollBatch(Base, TimestampMixin):
    """Progress record for one bulk payroll generation run."""

    __tablename__ = "bulk_payroll_batch"

    batch_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    pay_period_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    total_employments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_employments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    advances_flagged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    current_employment_id: Mapped[UUID | None] = mapped_column()
    created_by: Mapped[str | None] = mapped_column(String)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'cancelled', 'failed')",
            name="bulk_payroll_batch_status_check",
        ),
    )

    @property
    def progress_percentage(self) -> int:
        if self.total_employments == 0:
            return 0
        return round(self.processed_employments / self.total_employments * 100)
