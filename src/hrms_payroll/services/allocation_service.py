"""Funding allocation persistence, FTE balance and grant capacity checks."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms_payroll.calculators.allocation import (
    AllocationEngine,
    AllocationError,
    InvalidAllocationError,
)
from hrms_payroll.calculators.types import (
    AllocationRequest,
    AllocationStatus,
    EmploymentTerms,
    GrantItemSource,
)
from hrms_payroll.config import Settings, get_settings
from hrms_payroll.models import Employment, FundingAllocation
from hrms_payroll.services.funding_sources import (
    FundingSourceNotFoundError,
    FundingSourceResolver,
)

logger = logging.getLogger(__name__)


class CapacityExceededError(AllocationError):
    """Raised when a grant item would fund more positions than it has slots."""

    def __init__(self, grant_item_id: UUID, position_slots: int, in_use: int):
        self.grant_item_id = grant_item_id
        self.position_slots = position_slots
        self.in_use = in_use
        super().__init__(
            f"Grant item {grant_item_id} has {position_slots} slot(s); "
            f"{in_use} would be in use"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "grant_item_id": str(self.grant_item_id),
            "position_slots": self.position_slots,
            "in_use": self.in_use,
        }


@dataclass(frozen=True)
class CapacitySummary:
    """Slot usage for one grant item. available is None when unlimited."""

    grant_item_id: UUID
    position_slots: int
    in_use: int
    available: int | None
    utilization_percentage: Decimal | None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AllocationService:
    """Creates, replaces and validates funding allocations.

    Every write runs inside a savepoint, so a failed validation or insert
    leaves no partial allocation set behind. The caller owns the outer
    transaction.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.engine = AllocationEngine(
            fte_tolerance=self.settings.fte_tolerance,
            rounding=self.settings.rounding_mode,
        )
        self.resolver = FundingSourceResolver(session)

    async def get_active_allocations(
        self, employment_id: UUID, on: date | None = None
    ) -> list[FundingAllocation]:
        """Active allocations, optionally restricted to those covering a date."""
        query = select(FundingAllocation).where(
            FundingAllocation.employment_id == employment_id,
            FundingAllocation.status == AllocationStatus.ACTIVE.value,
        )
        if on is not None:
            query = query.where(
                FundingAllocation.start_date <= on,
                FundingAllocation.end_date.is_(None) | (FundingAllocation.end_date >= on),
            )
        result = await self.session.execute(query.order_by(FundingAllocation.start_date))
        return list(result.scalars().all())

    async def count_grant_item_usage(
        self, grant_item_id: UUID, exclude_employment_id: UUID | None = None
    ) -> int:
        """Active allocations on a grant item, optionally ignoring one employment."""
        query = select(func.count(FundingAllocation.funding_allocation_id)).where(
            FundingAllocation.grant_item_id == grant_item_id,
            FundingAllocation.status == AllocationStatus.ACTIVE.value,
        )
        if exclude_employment_id is not None:
            query = query.where(FundingAllocation.employment_id != exclude_employment_id)
        result = await self.session.execute(query)
        return int(result.scalar() or 0)

    async def validate_allocation_set(
        self,
        employment: Employment,
        requests: Sequence[AllocationRequest],
        include_existing: bool = True,
    ) -> Decimal:
        """Validate a proposed allocation set without writing anything.

        Returns the FTE total. Raises InvalidAllocationError,
        AllocationImbalanceError or CapacityExceededError.
        """
        existing: list[FundingAllocation] = []
        if include_existing:
            existing = await self.get_active_allocations(employment.employment_id)
        existing_total = sum((Decimal(a.fte) for a in existing), Decimal("0"))

        total = self.engine.validate_fte_total(requests, existing_total)

        requested_items = Counter(
            r.source.grant_item_id for r in requests if isinstance(r.source, GrantItemSource)
        )
        own_items = Counter(a.grant_item_id for a in existing if a.grant_item_id is not None)

        for request in requests:
            try:
                resolved = await self.resolver.resolve(request.source)
            except FundingSourceNotFoundError as exc:
                raise InvalidAllocationError(str(exc), request) from exc

            if not isinstance(request.source, GrantItemSource) or not resolved.position_slots:
                continue

            item_id = request.source.grant_item_id
            others = await self.count_grant_item_usage(item_id, employment.employment_id)
            in_use = others + own_items[item_id] + requested_items[item_id]
            if in_use > resolved.position_slots:
                raise CapacityExceededError(item_id, resolved.position_slots, in_use)

        return total

    async def create_allocations(
        self,
        employment: Employment,
        requests: Sequence[AllocationRequest],
        effective_date: date,
        created_by: str | None = None,
        include_existing: bool = True,
    ) -> list[FundingAllocation]:
        """Validate and persist one active allocation per request, all or nothing."""
        await self.validate_allocation_set(employment, requests, include_existing)

        terms = EmploymentTerms.from_record(employment)
        salary = self.engine.resolve_salary_for_date(terms, effective_date)

        allocations: list[FundingAllocation] = []
        async with self.session.begin_nested():
            for request in requests:
                allocation = FundingAllocation(
                    employment_id=employment.employment_id,
                    fte=request.fte,
                    allocated_amount=self.engine.compute_allocated_amount(
                        salary.amount, request.fte
                    ),
                    salary_type=salary.salary_type.value,
                    status=AllocationStatus.ACTIVE.value,
                    start_date=effective_date,
                    created_by=created_by,
                    updated_by=created_by,
                )
                allocation.funding_source = request.source
                self.session.add(allocation)
                allocations.append(allocation)

            employment.updated_at = _now()
            employment.updated_by = created_by
            await self.session.flush()

        logger.info(
            "Created %d allocation(s) for employment %s effective %s (%s)",
            len(allocations),
            employment.employment_id,
            effective_date,
            salary.salary_type.value,
        )
        return allocations

    async def end_active_allocations(
        self,
        employment: Employment,
        status: AllocationStatus,
        end_date: date,
        updated_by: str | None = None,
    ) -> list[FundingAllocation]:
        """Close every active allocation with the given status and end date."""
        active = await self.get_active_allocations(employment.employment_id)
        for allocation in active:
            allocation.status = status.value
            allocation.end_date = max(end_date, allocation.start_date)
            allocation.updated_at = _now()
            allocation.updated_by = updated_by
        employment.updated_at = _now()
        employment.updated_by = updated_by
        await self.session.flush()
        return active

    async def replace_allocations(
        self,
        employment: Employment,
        requests: Sequence[AllocationRequest],
        effective_date: date,
        created_by: str | None = None,
    ) -> list[FundingAllocation]:
        """Reassign funding: current allocations become historical the day before."""
        await self.validate_allocation_set(employment, requests, include_existing=False)

        async with self.session.begin_nested():
            ended = await self.end_active_allocations(
                employment,
                AllocationStatus.HISTORICAL,
                effective_date - timedelta(days=1),
                created_by,
            )
            created = await self.create_allocations(
                employment, requests, effective_date, created_by, include_existing=False
            )

        logger.info(
            "Replaced %d allocation(s) with %d for employment %s effective %s",
            len(ended),
            len(created),
            employment.employment_id,
            effective_date,
        )
        return created

    async def capacity_summary(self, grant_item_id: UUID) -> CapacitySummary:
        resolved = await self.resolver.resolve(GrantItemSource(grant_item_id))
        slots = resolved.position_slots or 0
        in_use = await self.count_grant_item_usage(grant_item_id)
        if slots <= 0:
            return CapacitySummary(grant_item_id, slots, in_use, None, None)
        utilization = (Decimal(in_use) * 100 / Decimal(slots)).quantize(Decimal("0.01"))
        return CapacitySummary(
            grant_item_id=grant_item_id,
            position_slots=slots,
            in_use=in_use,
            available=max(slots - in_use, 0),
            utilization_percentage=utilization,
        )
