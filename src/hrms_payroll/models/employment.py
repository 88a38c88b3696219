"""Employment and probation event models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms_payroll.models.base import AuditMixin, Base, TimestampMixin

if TYPE_CHECKING:
    from hrms_payroll.models.funding import FundingAllocation


class Employment(Base, AuditMixin):
    """An employee's employment terms.

    `version` is bumped by every UPDATE; concurrent writers holding a stale
    copy fail with StaleDataError instead of overwriting each other.
    """

    __tablename__ = "employment"

    employment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    home_organization: Mapped[str] = mapped_column(String, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    probation_end_date: Mapped[date | None] = mapped_column(Date, index=True)
    probation_salary: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    pass_probation_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    social_security: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    health_welfare: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pvd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    saving_fund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Income tax allowance inputs
    has_spouse: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    child_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    eligible_parent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="employment_dates_check",
        ),
        CheckConstraint("pass_probation_salary >= 0", name="employment_salary_check"),
        CheckConstraint(
            "child_count >= 0 AND eligible_parent_count >= 0",
            name="employment_dependants_check",
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    allocations: Mapped[list[FundingAllocation]] = relationship(
        back_populates="employment", order_by="FundingAllocation.start_date"
    )
    probation_events: Mapped[list[ProbationEvent]] = relationship(
        back_populates="employment", order_by="ProbationEvent.sequence"
    )


class ProbationEvent(Base, TimestampMixin):
    """Append-only probation history. The latest event is the current state."""

    __tablename__ = "probation_event"

    probation_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employment_id: Mapped[UUID] = mapped_column(
        ForeignKey("employment.employment_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    probation_end_date: Mapped[date | None] = mapped_column(Date)
    previous_end_date: Mapped[date | None] = mapped_column(Date)
    extension_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String)

    __table_args__ = (
        UniqueConstraint("employment_id", "sequence", name="probation_event_seq_unique"),
        CheckConstraint(
            "event_type IN ('initial', 'extension', 'passed', 'failed')",
            name="probation_event_type_check",
        ),
    )

    employment: Mapped[Employment] = relationship(back_populates="probation_events")
