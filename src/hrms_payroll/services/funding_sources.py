"""Resolves a funding allocation's source to its owning organisation and expiry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hrms_payroll.calculators.types import (
    FundingSource,
    FundingSourceKind,
    GrantItemSource,
    OrgFundedSource,
)
from hrms_payroll.models import GrantItem, OrgFundedSlot


class FundingSourceNotFoundError(Exception):
    """Raised when an allocation references a source that does not exist."""

    def __init__(self, source: FundingSource):
        self.source = source
        super().__init__(f"Funding source not found: {source}")


@dataclass(frozen=True)
class ResolvedFundingSource:
    """Who pays for a funding source and until when."""

    kind: FundingSourceKind
    source_id: UUID
    organization: str
    expires_on: date | None
    label: str
    position_slots: int | None = None

    def is_expired(self, on: date) -> bool:
        return self.expires_on is not None and self.expires_on < on


class FundingSourceResolver:
    """Looks up funding sources, caching them for the life of the resolver."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._cache: dict[FundingSource, ResolvedFundingSource] = {}

    async def resolve(self, source: FundingSource) -> ResolvedFundingSource:
        if source in self._cache:
            return self._cache[source]

        if isinstance(source, GrantItemSource):
            resolved = await self._resolve_grant_item(source)
        elif isinstance(source, OrgFundedSource):
            resolved = await self._resolve_org_funded(source)
        else:
            raise TypeError(f"Unsupported funding source: {source!r}")

        self._cache[source] = resolved
        return resolved

    async def _resolve_grant_item(self, source: GrantItemSource) -> ResolvedFundingSource:
        result = await self.session.execute(
            select(GrantItem)
            .where(GrantItem.grant_item_id == source.grant_item_id)
            .options(selectinload(GrantItem.grant))
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise FundingSourceNotFoundError(source)

        grant = item.grant
        label = f"{grant.code} / {item.budget_line_code or item.position or item.grant_item_id}"
        return ResolvedFundingSource(
            kind=FundingSourceKind.GRANT_ITEM,
            source_id=item.grant_item_id,
            organization=grant.organization,
            expires_on=grant.end_date,
            label=label,
            position_slots=item.position_slots,
        )

    async def _resolve_org_funded(self, source: OrgFundedSource) -> ResolvedFundingSource:
        slot = await self.session.get(OrgFundedSlot, source.org_funded_slot_id)
        if slot is None:
            raise FundingSourceNotFoundError(source)

        return ResolvedFundingSource(
            kind=FundingSourceKind.ORG_FUNDED,
            source_id=slot.org_funded_slot_id,
            organization=slot.organization,
            expires_on=slot.end_date,
            label=slot.description or f"{slot.organization} funded",
        )
