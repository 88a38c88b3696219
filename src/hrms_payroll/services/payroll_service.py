"""Payroll generation: one immutable Payroll row per allocation per period."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from hrms_payroll.calculators.engine import PayrollCalculator
from hrms_payroll.calculators.types import (
    AdvanceSignal,
    AllocationShare,
    BatchStatus,
    EmploymentTerms,
    PayrollEntryType,
    PayrollLine,
    ReferenceSnapshot,
)
from hrms_payroll.config import Settings, get_settings
from hrms_payroll.models import BulkPayrollBatch, Employment, FundingAllocation, Payroll
from hrms_payroll.services.allocation_service import AllocationService
from hrms_payroll.services.funding_sources import FundingSourceResolver
from hrms_payroll.services.locking_service import LockingService
from hrms_payroll.services.reference_data import ReferenceDataLoader

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PayrollReversalError(Exception):
    """Raised when a payroll row cannot be reversed."""

    def __init__(self, payroll_id: UUID, reason: str):
        self.payroll_id = payroll_id
        self.reason = reason
        super().__init__(f"Cannot reverse payroll {payroll_id}: {reason}")


@dataclass
class PayrollFailure:
    """An employment (or one of its allocations) that could not be paid."""

    employment_id: UUID
    error_type: str
    reason: str
    funding_allocation_ids: list[UUID] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "employment_id": str(self.employment_id),
            "funding_allocation_ids": [str(i) for i in self.funding_allocation_ids],
            "error_type": self.error_type,
            "reason": self.reason,
        }


@dataclass
class PayrollSkip:
    """Something deliberately not paid, with the reason."""

    employment_id: UUID
    reason: str
    funding_allocation_id: UUID | None = None


@dataclass
class PayrollBatchResult:
    """Structured outcome of one generation run."""

    pay_period_date: date
    succeeded: list[Payroll | PayrollLine] = field(default_factory=list)
    failures: list[PayrollFailure] = field(default_factory=list)
    skipped: list[PayrollSkip] = field(default_factory=list)
    advances: list[AdvanceSignal] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False
    batch_id: UUID | None = None

    @property
    def total_net(self) -> Decimal:
        return sum((Decimal(p.net_salary) for p in self.succeeded), ZERO)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PayrollGenerator:
    """Generates payroll rows for a pay period.

    Generation pipeline (per employment, under its lock and savepoint):
    1) Active allocations valid on the pay date
    2) Skip allocations whose funding source expired before the date
    3) Compute all lines (deductions and tax on the aggregate gross)
    4) Persist lines for allocations not already paid this period
    5) Flag inter-organisation advances

    Allocations and employments are read, never changed.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.allocations = AllocationService(session, self.settings)
        self.resolver = FundingSourceResolver(session)
        self.locking = LockingService(session)
        self.reference_loader = ReferenceDataLoader(session)

    # ----- batches -----

    async def create_batch(
        self, pay_period_date: date, total_employments: int, created_by: str | None = None
    ) -> BulkPayrollBatch:
        batch = BulkPayrollBatch(
            pay_period_date=pay_period_date,
            status=BatchStatus.PENDING.value,
            total_employments=total_employments,
            errors=[],
            created_by=created_by,
        )
        self.session.add(batch)
        await self.session.flush()
        return batch

    async def get_batch(self, batch_id: UUID) -> BulkPayrollBatch | None:
        return await self.session.get(BulkPayrollBatch, batch_id)

    async def cancel_batch(self, batch_id: UUID) -> BulkPayrollBatch:
        """Request cancellation; a running generation stops before its next employment."""
        batch = await self.get_batch(batch_id)
        if batch is None:
            raise ValueError(f"Payroll batch {batch_id} not found")
        if batch.status not in (BatchStatus.PENDING.value, BatchStatus.PROCESSING.value):
            raise ValueError(f"Cannot cancel payroll batch in status '{batch.status}'")
        batch.status = BatchStatus.CANCELLED.value
        await self.session.flush()
        logger.info("Payroll batch %s cancelled", batch_id)
        return batch

    async def _is_cancelled(self, batch: BulkPayrollBatch | None) -> bool:
        if batch is None:
            return False
        await self.session.refresh(batch, ["status"])
        return batch.status == BatchStatus.CANCELLED.value

    # ----- queries -----

    async def load_employments(
        self, employment_ids: Sequence[UUID] | None = None
    ) -> list[Employment]:
        query = select(Employment)
        if employment_ids:
            query = query.where(Employment.employment_id.in_(list(employment_ids)))
        else:
            query = query.where(Employment.is_active.is_(True))
        result = await self.session.execute(query.order_by(Employment.start_date))
        return list(result.scalars().all())

    async def paid_allocation_ids(
        self, allocation_ids: Sequence[UUID], pay_period_date: date
    ) -> set[UUID]:
        """Allocations with an original row for the period that has not been reversed."""
        if not allocation_ids:
            return set()
        reversal = aliased(Payroll)
        result = await self.session.execute(
            select(Payroll.funding_allocation_id)
            .outerjoin(reversal, reversal.reversal_of_id == Payroll.payroll_id)
            .where(
                Payroll.funding_allocation_id.in_(list(allocation_ids)),
                Payroll.pay_period_date == pay_period_date,
                Payroll.entry_type == PayrollEntryType.ORIGINAL.value,
                reversal.payroll_id.is_(None),
            )
        )
        return set(result.scalars().all())

    async def _next_revision(self, allocation_id: UUID, pay_period_date: date) -> int:
        result = await self.session.execute(
            select(Payroll.revision).where(
                Payroll.funding_allocation_id == allocation_id,
                Payroll.pay_period_date == pay_period_date,
                Payroll.entry_type == PayrollEntryType.ORIGINAL.value,
            )
        )
        revisions = list(result.scalars().all())
        return max(revisions, default=0) + 1

    async def needs_inter_organization_advance(
        self, allocation: FundingAllocation, employment: Employment
    ) -> bool:
        """The funding source belongs to a different organisation than the employee."""
        resolved = await self.resolver.resolve(allocation.funding_source)
        return resolved.organization != employment.home_organization

    # ----- generation -----

    async def generate_for_period(
        self,
        pay_period_date: date,
        employments: Sequence[Employment] | None = None,
        batch: BulkPayrollBatch | None = None,
        bonuses: Mapping[UUID, Decimal] | None = None,
        created_by: str | None = None,
        dry_run: bool = False,
    ) -> PayrollBatchResult:
        """Generate payroll for every employment; failures never stop the batch."""
        if employments is None:
            employments = await self.load_employments()
        bonuses = bonuses or {}

        reference = await self.reference_loader.load(
            pay_period_date, self.settings.tax_annualization
        )
        calculator = PayrollCalculator(reference, self.settings)

        result = PayrollBatchResult(
            pay_period_date=pay_period_date,
            dry_run=dry_run,
            batch_id=batch.batch_id if batch else None,
        )

        if batch is not None and not dry_run:
            if await self._is_cancelled(batch):
                result.cancelled = True
            else:
                batch.status = BatchStatus.PROCESSING.value
                batch.total_employments = len(employments)
                await self.session.flush()

        for index, employment in enumerate(employments):
            employment_id = employment.employment_id
            if result.cancelled or (not dry_run and await self._is_cancelled(batch)):
                result.cancelled = True
                for remaining in employments[index:]:
                    result.skipped.append(
                        PayrollSkip(remaining.employment_id, "batch cancelled")
                    )
                break

            before = (len(result.succeeded), len(result.failures), len(result.skipped))
            await self._generate_employment(
                employment,
                pay_period_date,
                calculator,
                reference,
                result,
                bonus=Decimal(bonuses.get(employment_id, ZERO)),
                batch=batch,
                created_by=created_by,
                dry_run=dry_run,
            )

            if batch is not None and not dry_run:
                await self._record_progress(batch, employment_id, result, before)

        if batch is not None and not dry_run:
            batch.status = (
                BatchStatus.CANCELLED.value if result.cancelled else BatchStatus.COMPLETED.value
            )
            batch.current_employment_id = None
            batch.completed_at = _now()
            await self.session.flush()

        logger.info(
            "Payroll %s%s: %d line(s) generated, %d failure(s), %d skipped, %d advance(s)%s",
            pay_period_date,
            " (dry run)" if dry_run else "",
            len(result.succeeded),
            len(result.failures),
            len(result.skipped),
            len(result.advances),
            ", cancelled" if result.cancelled else "",
        )
        return result

    async def preview_for_period(
        self,
        pay_period_date: date,
        employments: Sequence[Employment] | None = None,
        bonuses: Mapping[UUID, Decimal] | None = None,
    ) -> PayrollBatchResult:
        """Same computation as generate_for_period, nothing written."""
        return await self.generate_for_period(
            pay_period_date, employments, bonuses=bonuses, dry_run=True
        )

    async def _record_progress(
        self,
        batch: BulkPayrollBatch,
        employment_id: UUID,
        result: PayrollBatchResult,
        before: tuple[int, int, int],
    ) -> None:
        succeeded, failed, skipped = before
        new_failures = result.failures[failed:]
        batch.processed_employments += 1
        batch.successful_payrolls += len(result.succeeded) - succeeded
        batch.failed_payrolls += len(new_failures)
        batch.skipped_payrolls += len(result.skipped) - skipped
        batch.advances_flagged = len(result.advances)
        batch.current_employment_id = employment_id
        if new_failures:
            batch.errors = [*batch.errors, *(f.to_dict() for f in new_failures)]
        await self.session.flush()

    async def _generate_employment(
        self,
        employment: Employment,
        pay_period_date: date,
        calculator: PayrollCalculator,
        reference: ReferenceSnapshot,
        result: PayrollBatchResult,
        bonus: Decimal,
        batch: BulkPayrollBatch | None,
        created_by: str | None,
        dry_run: bool,
    ) -> None:
        employment_id = employment.employment_id
        terms = EmploymentTerms.from_record(employment)
        allocation_ids: list[UUID] = []

        async with self.locking.employment_lock(employment_id) as acquired:
            if not acquired:
                result.skipped.append(PayrollSkip(employment_id, "locked by another transaction"))
                return
            try:
                allocations = await self.allocations.get_active_allocations(
                    employment_id, on=pay_period_date
                )
                allocation_ids = [a.funding_allocation_id for a in allocations]
                if not allocations:
                    result.skipped.append(PayrollSkip(employment_id, "no active allocations"))
                    return

                payable: list[tuple[FundingAllocation, AllocationShare]] = []
                for allocation in allocations:
                    resolved = await self.resolver.resolve(allocation.funding_source)
                    if resolved.is_expired(pay_period_date):
                        logger.warning(
                            "Skipping allocation %s for employment %s: funding source %s expired %s",
                            allocation.funding_allocation_id,
                            employment_id,
                            resolved.label,
                            resolved.expires_on,
                        )
                        result.skipped.append(
                            PayrollSkip(
                                employment_id,
                                f"funding source expired {resolved.expires_on}",
                                allocation.funding_allocation_id,
                            )
                        )
                        continue
                    payable.append(
                        (
                            allocation,
                            AllocationShare(
                                funding_allocation_id=allocation.funding_allocation_id,
                                fte=Decimal(allocation.fte),
                                funding_organization=resolved.organization,
                                label=resolved.label,
                            ),
                        )
                    )

                if not payable:
                    return

                calculation = calculator.calculate(
                    terms, [share for _, share in payable], pay_period_date, bonus
                )

                already_paid = await self.paid_allocation_ids(
                    [a.funding_allocation_id for a, _ in payable], pay_period_date
                )
                new_lines = []
                for line in calculation.lines:
                    if line.funding_allocation_id in already_paid:
                        result.skipped.append(
                            PayrollSkip(
                                employment_id,
                                "already generated for this period",
                                line.funding_allocation_id,
                            )
                        )
                    else:
                        new_lines.append(line)

                if dry_run:
                    result.succeeded.extend(new_lines)
                else:
                    rows = []
                    async with self.session.begin_nested():
                        for line in new_lines:
                            rows.append(
                                await self._persist_line(
                                    employment_id, pay_period_date, line, batch, created_by
                                )
                            )
                    result.succeeded.extend(rows)

                new_ids = {line.funding_allocation_id for line in new_lines}
                result.advances.extend(
                    a for a in calculation.advances if a.funding_allocation_id in new_ids
                )
            except Exception as exc:
                logger.exception(
                    "Payroll generation failed for employment %s (%s)", employment_id, pay_period_date
                )
                result.failures.append(
                    PayrollFailure(
                        employment_id=employment_id,
                        error_type=type(exc).__name__,
                        reason=str(exc),
                        funding_allocation_ids=allocation_ids,
                    )
                )

    async def _persist_line(
        self,
        employment_id: UUID,
        pay_period_date: date,
        line: PayrollLine,
        batch: BulkPayrollBatch | None,
        created_by: str | None,
    ) -> Payroll:
        row = Payroll(
            employment_id=employment_id,
            funding_allocation_id=line.funding_allocation_id,
            batch_id=batch.batch_id if batch else None,
            pay_period_date=pay_period_date,
            revision=await self._next_revision(line.funding_allocation_id, pay_period_date),
            entry_type=PayrollEntryType.ORIGINAL.value,
            salary_type=line.salary_type.value,
            fte=line.fte,
            gross_salary=line.gross_salary,
            gross_salary_by_fte=line.gross_salary_by_fte,
            thirteenth_month_salary=line.thirteenth_month_salary,
            salary_bonus=line.salary_bonus,
            income_tax=line.income_tax,
            employee_social_security=line.employee_social_security,
            employer_social_security=line.employer_social_security,
            employee_health_welfare=line.employee_health_welfare,
            employer_health_welfare=line.employer_health_welfare,
            pvd=line.pvd,
            saving_fund=line.saving_fund,
            total_income=line.total_income,
            total_deduction=line.total_deduction,
            employer_contribution=line.employer_contribution,
            net_salary=line.net_salary,
            total_salary=line.total_salary,
            total_pvd_saving_fund=line.total_pvd_saving_fund,
            needs_inter_organization_advance=line.needs_inter_organization_advance,
            funding_organization=line.funding_organization,
            created_by=created_by,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    # ----- corrections -----

    MONEY_FIELDS = (
        "gross_salary",
        "gross_salary_by_fte",
        "thirteenth_month_salary",
        "salary_bonus",
        "income_tax",
        "employee_social_security",
        "employer_social_security",
        "employee_health_welfare",
        "employer_health_welfare",
        "pvd",
        "saving_fund",
        "total_income",
        "total_deduction",
        "employer_contribution",
        "net_salary",
        "total_salary",
        "total_pvd_saving_fund",
    )

    async def reverse_payroll(
        self, payroll_id: UUID, reason: str, created_by: str | None = None
    ) -> Payroll:
        """Write a reversal row negating an original; the original is untouched."""
        original = await self.session.get(Payroll, payroll_id)
        if original is None:
            raise PayrollReversalError(payroll_id, "not found")
        if original.entry_type != PayrollEntryType.ORIGINAL.value:
            raise PayrollReversalError(payroll_id, "only original rows can be reversed")

        existing = await self.session.execute(
            select(Payroll.payroll_id).where(Payroll.reversal_of_id == payroll_id)
        )
        if existing.first() is not None:
            raise PayrollReversalError(payroll_id, "already reversed")

        reversal = Payroll(
            employment_id=original.employment_id,
            funding_allocation_id=original.funding_allocation_id,
            batch_id=original.batch_id,
            pay_period_date=original.pay_period_date,
            revision=original.revision,
            entry_type=PayrollEntryType.REVERSAL.value,
            reversal_of_id=original.payroll_id,
            salary_type=original.salary_type,
            fte=original.fte,
            needs_inter_organization_advance=original.needs_inter_organization_advance,
            funding_organization=original.funding_organization,
            notes=reason,
            created_by=created_by,
            **{name: -Decimal(getattr(original, name)) for name in self.MONEY_FIELDS},
        )
        self.session.add(reversal)
        await self.session.flush()
        logger.info("Payroll %s reversed: %s", payroll_id, reason)
        return reversal
