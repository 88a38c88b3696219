"""Tests for AllocationService against the test database."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from hrms_payroll.calculators.allocation import (
    AllocationImbalanceError,
    InvalidAllocationError,
)
from hrms_payroll.calculators.types import (
    AllocationRequest,
    AllocationStatus,
    GrantItemSource,
    OrgFundedSource,
    SalaryType,
)
from hrms_payroll.models import FundingAllocation
from hrms_payroll.services.allocation_service import AllocationService, CapacityExceededError


async def count_allocations(session, employment_id) -> int:
    result = await session.execute(
        select(func.count(FundingAllocation.funding_allocation_id)).where(
            FundingAllocation.employment_id == employment_id
        )
    )
    return result.scalar()


@pytest.fixture
def service(session, settings) -> AllocationService:
    return AllocationService(session, settings)


class TestCreateAllocations:
    """Test creating an employment's allocation set."""

    async def test_after_probation_uses_pass_salary(
        self, service, make_employment, grant_and_org_split
    ):
        """60/40 of 30,000 effective after probation."""
        employment = await make_employment()
        created = await service.create_allocations(
            employment, grant_and_org_split, date(2024, 4, 1)
        )

        assert [a.allocated_amount for a in created] == [Decimal("18000.00"), Decimal("12000.00")]
        assert all(a.salary_type == SalaryType.PASS_PROBATION_SALARY.value for a in created)
        assert all(a.status == AllocationStatus.ACTIVE.value for a in created)
        assert all(a.start_date == date(2024, 4, 1) for a in created)

    async def test_during_probation_uses_probation_salary(
        self, service, make_employment, grant_and_org_split
    ):
        """60/40 of 24,000 effective during probation."""
        employment = await make_employment()
        created = await service.create_allocations(
            employment, grant_and_org_split, date(2024, 1, 1)
        )

        assert [a.allocated_amount for a in created] == [Decimal("14400.00"), Decimal("9600.00")]
        assert all(a.salary_type == SalaryType.PROBATION_SALARY.value for a in created)

    async def test_funding_source_round_trips(self, service, make_employment, funding):
        employment = await make_employment()
        source = GrantItemSource(funding["item_unlimited"].grant_item_id)
        (allocation,) = await service.create_allocations(
            employment, [AllocationRequest(source, Decimal("100"))], date(2024, 1, 1)
        )
        assert allocation.source_kind == "grant_item"
        assert allocation.org_funded_slot_id is None
        assert allocation.funding_source == source

    async def test_short_total_writes_nothing(self, session, service, make_employment, funding):
        """A 99.5% set is rejected and no row is written."""
        employment = await make_employment()
        requests = [
            AllocationRequest(GrantItemSource(funding["item_a"].grant_item_id), Decimal("60")),
            AllocationRequest(
                OrgFundedSource(funding["org_slot"].org_funded_slot_id), Decimal("39.5")
            ),
        ]
        with pytest.raises(AllocationImbalanceError) as exc_info:
            await service.create_allocations(employment, requests, date(2024, 1, 1))

        assert exc_info.value.total == Decimal("99.5")
        assert await count_allocations(session, employment.employment_id) == 0

    async def test_existing_allocations_count_toward_total(
        self, service, make_employment, grant_and_org_split, funding
    ):
        employment = await make_employment()
        await service.create_allocations(employment, grant_and_org_split, date(2024, 1, 1))

        extra = [
            AllocationRequest(
                GrantItemSource(funding["item_unlimited"].grant_item_id), Decimal("10")
            )
        ]
        with pytest.raises(AllocationImbalanceError) as exc_info:
            await service.create_allocations(employment, extra, date(2024, 2, 1))
        assert exc_info.value.total == Decimal("110")

    async def test_unknown_source_rejected(self, session, service, make_employment, funding):
        employment = await make_employment()
        requests = [AllocationRequest(GrantItemSource(uuid4()), Decimal("100"))]
        with pytest.raises(InvalidAllocationError):
            await service.create_allocations(employment, requests, date(2024, 1, 1))
        assert await count_allocations(session, employment.employment_id) == 0


class TestCapacity:
    """Test grant item position slots."""

    async def test_slots_exhausted(self, service, make_employment, grant_and_org_split, funding):
        """A 2-slot budget line cannot fund a third employment."""
        for _ in range(2):
            employment = await make_employment()
            await service.create_allocations(employment, grant_and_org_split, date(2024, 1, 1))

        third = await make_employment()
        with pytest.raises(CapacityExceededError) as exc_info:
            await service.create_allocations(third, grant_and_org_split, date(2024, 1, 1))

        error = exc_info.value
        assert error.grant_item_id == funding["item_a"].grant_item_id
        assert error.position_slots == 2
        assert error.in_use == 3
        assert error.to_dict()["in_use"] == 3

    async def test_unlimited_item(self, service, make_employment, funding):
        """position_slots = 0 never runs out."""
        source = GrantItemSource(funding["item_unlimited"].grant_item_id)
        for _ in range(4):
            employment = await make_employment()
            await service.create_allocations(
                employment, [AllocationRequest(source, Decimal("100"))], date(2024, 1, 1)
            )

        summary = await service.capacity_summary(funding["item_unlimited"].grant_item_id)
        assert summary.in_use == 4
        assert summary.available is None

    async def test_capacity_summary(self, service, make_employment, grant_and_org_split, funding):
        employment = await make_employment()
        await service.create_allocations(employment, grant_and_org_split, date(2024, 1, 1))

        summary = await service.capacity_summary(funding["item_a"].grant_item_id)
        assert summary.position_slots == 2
        assert summary.in_use == 1
        assert summary.available == 1
        assert summary.utilization_percentage == Decimal("50.00")

    async def test_historical_allocations_free_their_slot(
        self, service, make_employment, grant_and_org_split, funding
    ):
        first = await make_employment()
        await service.create_allocations(first, grant_and_org_split, date(2024, 1, 1))
        await service.end_active_allocations(
            first, AllocationStatus.TERMINATED, date(2024, 2, 1)
        )

        for _ in range(2):
            employment = await make_employment()
            await service.create_allocations(employment, grant_and_org_split, date(2024, 2, 2))

        assert await service.count_grant_item_usage(funding["item_a"].grant_item_id) == 2


class TestReplaceAllocations:
    """Test funding reassignment."""

    async def test_replace_keeps_history(
        self, service, make_employment, grant_and_org_split, funding
    ):
        employment = await make_employment()
        old = await service.create_allocations(employment, grant_and_org_split, date(2024, 1, 1))

        new_requests = [
            AllocationRequest(GrantItemSource(funding["item_b"].grant_item_id), Decimal("100"))
        ]
        created = await service.replace_allocations(employment, new_requests, date(2024, 5, 1))

        for allocation in old:
            assert allocation.status == AllocationStatus.HISTORICAL.value
            assert allocation.end_date == date(2024, 4, 30)

        (allocation,) = created
        assert allocation.start_date == date(2024, 5, 1)
        assert allocation.allocated_amount == Decimal("30000.00")

        active = await service.get_active_allocations(employment.employment_id)
        assert [a.funding_allocation_id for a in active] == [allocation.funding_allocation_id]

    async def test_invalid_replacement_keeps_current_set(
        self, service, make_employment, grant_and_org_split, funding
    ):
        employment = await make_employment()
        await service.create_allocations(employment, grant_and_org_split, date(2024, 1, 1))

        bad = [AllocationRequest(GrantItemSource(funding["item_b"].grant_item_id), Decimal("50"))]
        with pytest.raises(AllocationImbalanceError):
            await service.replace_allocations(employment, bad, date(2024, 5, 1))

        active = await service.get_active_allocations(employment.employment_id)
        assert len(active) == 2

    async def test_active_on_date(self, service, make_employment, grant_and_org_split, funding):
        employment = await make_employment()
        await service.create_allocations(employment, grant_and_org_split, date(2024, 1, 1))
        await service.replace_allocations(
            employment,
            [AllocationRequest(GrantItemSource(funding["item_b"].grant_item_id), Decimal("100"))],
            date(2024, 5, 1),
        )

        assert await service.get_active_allocations(employment.employment_id, on=date(2024, 4, 30)) == []
        assert len(await service.get_active_allocations(employment.employment_id, on=date(2024, 5, 31))) == 1
