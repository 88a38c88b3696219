"""Funding source and funding allocation models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms_payroll.calculators.types import (
    AllocationStatus,
    FundingSource,
    FundingSourceKind,
    GrantItemSource,
    OrgFundedSource,
)
from hrms_payroll.models.base import AuditMixin, Base, TimestampMixin
from hrms_payroll.models.employment import Employment


# ===== Funding sources (reference data) =====


class Grant(Base, TimestampMixin):
    """An external grant owned by an organisation."""

    __tablename__ = "funding_grant"

    grant_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    organization: Mapped[str] = mapped_column(String, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)

    items: Mapped[list[GrantItem]] = relationship(back_populates="grant")


class GrantItem(Base, TimestampMixin):
    """A budget line within a grant, funding a number of position slots.

    position_slots = 0 means the budget line has no head-count limit.
    """

    __tablename__ = "grant_item"

    grant_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    grant_id: Mapped[UUID] = mapped_column(
        ForeignKey("funding_grant.grant_id", ondelete="CASCADE"),
        nullable=False,
    )
    budget_line_code: Mapped[str | None] = mapped_column(String)
    position: Mapped[str | None] = mapped_column(String)
    position_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("position_slots >= 0", name="grant_item_slots_check"),
    )

    grant: Mapped[Grant] = relationship(back_populates="items")


class OrgFundedSlot(Base, TimestampMixin):
    """A position slot funded directly by an organisation."""

    __tablename__ = "org_funded_slot"

    org_funded_slot_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(String)
    end_date: Mapped[date | None] = mapped_column(Date)


# ===== Allocations =====


class FundingAllocation(Base, AuditMixin):
    """A share (fte percent) of an employment charged to one funding source.

    Rows are never deleted: reassignment marks them historical and
    termination marks them terminated.
    """

    __tablename__ = "funding_allocation"

    funding_allocation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employment_id: Mapped[UUID] = mapped_column(
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    source_kind: Mapped[str] = mapped_column(String, nullable=False)
    grant_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("grant_item.grant_item_id"),
        index=True,
    )
    org_funded_slot_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("org_funded_slot.org_funded_slot_id"),
    )
    fte: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    salary_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=AllocationStatus.ACTIVE.value, index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint("fte > 0 AND fte <= 100", name="funding_allocation_fte_check"),
        CheckConstraint(
            "status IN ('active', 'historical', 'terminated')",
            name="funding_allocation_status_check",
        ),
        CheckConstraint(
            "salary_type IN ('probation_salary', 'pass_probation_salary')",
            name="funding_allocation_salary_type_check",
        ),
        CheckConstraint(
            "(source_kind = 'grant_item' AND grant_item_id IS NOT NULL "
            "AND org_funded_slot_id IS NULL) OR "
            "(source_kind = 'org_funded' AND org_funded_slot_id IS NOT NULL "
            "AND grant_item_id IS NULL)",
            name="funding_allocation_single_source_check",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="funding_allocation_dates_check",
        ),
    )

    employment: Mapped[Employment] = relationship(back_populates="allocations")
    grant_item: Mapped[GrantItem | None] = relationship()
    org_funded_slot: Mapped[OrgFundedSlot | None] = relationship()

    @property
    def funding_source(self) -> FundingSource:
        """The funding source as a typed variant."""
        if self.source_kind == FundingSourceKind.GRANT_ITEM.value:
            return GrantItemSource(self.grant_item_id)
        return OrgFundedSource(self.org_funded_slot_id)

    @funding_source.setter
    def funding_source(self, source: FundingSource) -> None:
        self.source_kind = source.kind.value
        if isinstance(source, GrantItemSource):
            self.grant_item_id = source.grant_item_id
            self.org_funded_slot_id = None
        else:
            self.org_funded_slot_id = source.org_funded_slot_id
            self.grant_item_id = None
