"""Probation transitions: pass, fail, extend, and the daily transition run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms_payroll.calculators.allocation import add_months
from hrms_payroll.calculators.types import (
    AllocationRequest,
    AllocationStatus,
    ProbationEventType,
    ProbationState,
)
from hrms_payroll.config import Settings, get_settings
from hrms_payroll.models import Employment, ProbationEvent
from hrms_payroll.services.allocation_service import AllocationService
from hrms_payroll.services.locking_service import LockingService
from hrms_payroll.services.state_machine import ProbationStateMachine, TransitionConflictError

logger = logging.getLogger(__name__)


class NoActiveAllocationsError(Exception):
    """Raised when a transition needs allocations but the employment has none."""

    def __init__(self, employment_id: UUID):
        self.employment_id = employment_id
        super().__init__(f"Employment {employment_id} has no active funding allocations")


class InvalidExtensionError(Exception):
    """Raised when a probation extension is not allowed."""

    def __init__(
        self,
        current_end_date: date | None,
        requested_end_date: date,
        message: str | None = None,
    ):
        self.current_end_date = current_end_date
        self.requested_end_date = requested_end_date
        super().__init__(
            message
            or f"New probation end date {requested_end_date} must be later than "
            f"current end date {current_end_date}"
        )


@dataclass
class TransitionOutcome:
    """What happened (or would happen) to one employment."""

    employment_id: UUID
    action: str
    transition_date: date
    state: ProbationState | None = None
    ended_allocation_ids: list[UUID] = field(default_factory=list)
    created_allocation_ids: list[UUID] = field(default_factory=list)
    reason: str | None = None
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "employment_id": str(self.employment_id),
            "action": self.action,
            "transition_date": self.transition_date.isoformat(),
            "state": self.state.value if self.state else None,
            "ended_allocation_ids": [str(i) for i in self.ended_allocation_ids],
            "created_allocation_ids": [str(i) for i in self.created_allocation_ids],
            "reason": self.reason,
            "dry_run": self.dry_run,
        }


@dataclass
class DailyTransitionReport:
    """Result of one daily transition run."""

    as_of_date: date
    dry_run: bool = False
    outcomes: list[TransitionOutcome] = field(default_factory=list)

    def _with_action(self, *actions: str) -> list[TransitionOutcome]:
        return [o for o in self.outcomes if o.action in actions]

    @property
    def processed(self) -> list[TransitionOutcome]:
        return self._with_action("passed", "failed")

    @property
    def failed(self) -> list[TransitionOutcome]:
        return self._with_action("error")

    @property
    def skipped(self) -> list[TransitionOutcome]:
        return self._with_action("skipped")


@dataclass
class ProbationHistory:
    """Probation summary for one employment."""

    employment_id: UUID
    state: ProbationState
    initial_end_date: date | None
    current_end_date: date | None
    extension_count: int
    events: list[ProbationEvent]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProbationTransitionService:
    """Moves employments through probation and keeps allocations in step.

    - passed: allocations become historical the day before the transition
      and are re-created from the transition date on the pass-probation salary
    - failed: allocations are terminated, nothing replaces them
    - extended: only the probation end date moves

    An employment whose end date is on or before its probation end date
    always fails probation, it never passes.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.allocations = AllocationService(session, self.settings)
        self.locking = LockingService(session)

    # ----- state -----

    async def get_events(self, employment_id: UUID) -> list[ProbationEvent]:
        result = await self.session.execute(
            select(ProbationEvent)
            .where(ProbationEvent.employment_id == employment_id)
            .order_by(ProbationEvent.sequence)
        )
        return list(result.scalars().all())

    async def current_state(self, employment: Employment) -> ProbationState:
        events = await self.get_events(employment.employment_id)
        return ProbationStateMachine.derive_state(
            events, has_probation=employment.probation_end_date is not None
        )

    async def _append_event(
        self,
        employment: Employment,
        event_type: ProbationEventType,
        event_date: date,
        created_by: str | None = None,
        **fields: Any,
    ) -> ProbationEvent:
        result = await self.session.execute(
            select(func.max(ProbationEvent.sequence)).where(
                ProbationEvent.employment_id == employment.employment_id
            )
        )
        sequence = (result.scalar() or 0) + 1
        event = ProbationEvent(
            employment_id=employment.employment_id,
            sequence=sequence,
            event_type=event_type.value,
            event_date=event_date,
            created_by=created_by,
            **fields,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    @staticmethod
    def ends_within_probation(employment: Employment) -> bool:
        """End date on or before the probation end date."""
        return (
            employment.end_date is not None
            and employment.probation_end_date is not None
            and employment.end_date <= employment.probation_end_date
        )

    # ----- transitions -----

    async def open_probation(
        self, employment: Employment, created_by: str | None = None
    ) -> ProbationEvent:
        """Record the initial probation event at hire."""
        events = await self.get_events(employment.employment_id)
        if events:
            state = ProbationStateMachine.derive_state(events, True)
            raise TransitionConflictError(
                state.value, ProbationState.ONGOING.value, "probation already opened"
            )

        if employment.probation_end_date is None:
            employment.probation_end_date = add_months(
                employment.start_date, self.settings.default_probation_months
            )
            employment.updated_at = _now()
            employment.updated_by = created_by

        return await self._append_event(
            employment,
            ProbationEventType.INITIAL,
            employment.start_date,
            created_by,
            probation_end_date=employment.probation_end_date,
        )

    async def transition_to_passed(
        self,
        employment: Employment,
        as_of_date: date,
        created_by: str | None = None,
    ) -> TransitionOutcome:
        """Pass probation and re-create allocations on the post-probation salary."""
        if self.ends_within_probation(employment):
            return await self.handle_early_termination(employment, created_by)

        state = await self.current_state(employment)
        ProbationStateMachine.validate_transition(state, ProbationState.PASSED)

        active = await self.allocations.get_active_allocations(employment.employment_id)
        if not active:
            raise NoActiveAllocationsError(employment.employment_id)
        requests = [AllocationRequest(a.funding_source, Decimal(a.fte)) for a in active]

        async with self.session.begin_nested():
            ended = await self.allocations.end_active_allocations(
                employment,
                AllocationStatus.HISTORICAL,
                as_of_date - timedelta(days=1),
                created_by,
            )
            created = await self.allocations.create_allocations(
                employment, requests, as_of_date, created_by, include_existing=False
            )
            await self._append_event(
                employment,
                ProbationEventType.PASSED,
                as_of_date,
                created_by,
                probation_end_date=employment.probation_end_date,
                reason="Probation completed",
            )

        logger.info(
            "Employment %s passed probation on %s: %d allocation(s) re-created",
            employment.employment_id,
            as_of_date,
            len(created),
        )
        return TransitionOutcome(
            employment_id=employment.employment_id,
            action="passed",
            transition_date=as_of_date,
            state=ProbationState.PASSED,
            ended_allocation_ids=[a.funding_allocation_id for a in ended],
            created_allocation_ids=[a.funding_allocation_id for a in created],
        )

    async def handle_early_termination(
        self, employment: Employment, created_by: str | None = None
    ) -> TransitionOutcome:
        """Fail probation for an employment that ends before probation does."""
        if not self.ends_within_probation(employment):
            raise ValueError(
                f"Employment {employment.employment_id} does not end on or before "
                "its probation end date"
            )

        state = await self.current_state(employment)
        ProbationStateMachine.validate_transition(state, ProbationState.FAILED)

        async with self.session.begin_nested():
            ended = await self.allocations.end_active_allocations(
                employment, AllocationStatus.TERMINATED, employment.end_date, created_by
            )
            await self._append_event(
                employment,
                ProbationEventType.FAILED,
                employment.end_date,
                created_by,
                probation_end_date=employment.probation_end_date,
                reason="Employment ended before probation completed",
            )

        logger.info(
            "Employment %s failed probation by early termination on %s: %d allocation(s) terminated",
            employment.employment_id,
            employment.end_date,
            len(ended),
        )
        return TransitionOutcome(
            employment_id=employment.employment_id,
            action="failed",
            transition_date=employment.end_date,
            state=ProbationState.FAILED,
            ended_allocation_ids=[a.funding_allocation_id for a in ended],
            reason="early termination",
        )

    async def handle_manual_failure(
        self,
        employment: Employment,
        decision_date: date,
        reason: str,
        created_by: str | None = None,
    ) -> TransitionOutcome:
        """Fail probation by HR decision; allocations end on the decision date."""
        state = await self.current_state(employment)
        ProbationStateMachine.validate_transition(state, ProbationState.FAILED)

        async with self.session.begin_nested():
            ended = await self.allocations.end_active_allocations(
                employment, AllocationStatus.TERMINATED, decision_date, created_by
            )
            await self._append_event(
                employment,
                ProbationEventType.FAILED,
                decision_date,
                created_by,
                probation_end_date=employment.probation_end_date,
                reason=reason,
            )

        logger.info(
            "Employment %s failed probation by decision on %s", employment.employment_id, decision_date
        )
        return TransitionOutcome(
            employment_id=employment.employment_id,
            action="failed",
            transition_date=decision_date,
            state=ProbationState.FAILED,
            ended_allocation_ids=[a.funding_allocation_id for a in ended],
            reason=reason,
        )

    async def handle_probation_extension(
        self,
        employment: Employment,
        new_probation_end_date: date,
        reason: str | None = None,
        decision_date: date | None = None,
        created_by: str | None = None,
    ) -> ProbationEvent:
        """Move the probation end date later. Allocations are not touched.

        The decision has to be taken before the current end date arrives.
        """
        current_end = employment.probation_end_date
        if current_end is None or new_probation_end_date <= current_end:
            raise InvalidExtensionError(current_end, new_probation_end_date)

        events = await self.get_events(employment.employment_id)
        state = ProbationStateMachine.derive_state(events, has_probation=True)
        ProbationStateMachine.validate_transition(state, ProbationState.EXTENDED)

        decision_date = decision_date or date.today()
        if decision_date >= current_end:
            raise InvalidExtensionError(
                current_end,
                new_probation_end_date,
                f"Probation ending {current_end} cannot be extended on {decision_date}",
            )
        extension_number = 1 + sum(
            1 for e in events if e.event_type == ProbationEventType.EXTENSION.value
        )

        async with self.session.begin_nested():
            employment.probation_end_date = new_probation_end_date
            employment.updated_at = _now()
            employment.updated_by = created_by
            event = await self._append_event(
                employment,
                ProbationEventType.EXTENSION,
                decision_date,
                created_by,
                probation_end_date=new_probation_end_date,
                previous_end_date=current_end,
                extension_number=extension_number,
                reason=reason,
            )

        logger.info(
            "Employment %s probation extended from %s to %s (extension #%d)",
            employment.employment_id,
            current_end,
            new_probation_end_date,
            extension_number,
        )
        return event

    async def probation_history(self, employment: Employment) -> ProbationHistory:
        events = await self.get_events(employment.employment_id)
        extensions = [e for e in events if e.event_type == ProbationEventType.EXTENSION.value]
        initial_end = extensions[0].previous_end_date if extensions else employment.probation_end_date
        return ProbationHistory(
            employment_id=employment.employment_id,
            state=ProbationStateMachine.derive_state(
                events, has_probation=employment.probation_end_date is not None
            ),
            initial_end_date=initial_end,
            current_end_date=employment.probation_end_date,
            extension_count=len(extensions),
            events=events,
        )

    # ----- daily run -----

    async def process_daily_transitions(
        self,
        as_of_date: date,
        employment_id: UUID | None = None,
        dry_run: bool = False,
    ) -> DailyTransitionReport:
        """Pass every open-ended employment whose probation ends on as_of_date.

        Employments that already have an end date are left alone; ending
        within probation goes through handle_early_termination instead.
        Each employment is handled under its own lock and savepoint, so one
        failure never affects the others. Re-running for the same date is a
        no-op: employments already passed or failed are reported as skipped.
        """
        query = select(Employment).where(
            Employment.probation_end_date == as_of_date,
            Employment.end_date.is_(None),
        )
        if employment_id is not None:
            query = query.where(Employment.employment_id == employment_id)
        result = await self.session.execute(query.order_by(Employment.start_date))
        employments = list(result.scalars().all())

        report = DailyTransitionReport(as_of_date=as_of_date, dry_run=dry_run)
        for employment in employments:
            report.outcomes.append(await self._process_employment(employment, as_of_date, dry_run))

        logger.info(
            "Probation transitions for %s%s: %d processed, %d failed, %d skipped",
            as_of_date,
            " (dry run)" if dry_run else "",
            len(report.processed),
            len(report.failed),
            len(report.skipped),
        )
        return report

    async def _process_employment(
        self, employment: Employment, as_of_date: date, dry_run: bool
    ) -> TransitionOutcome:
        employment_id = employment.employment_id

        async with self.locking.employment_lock(employment_id) as acquired:
            if not acquired:
                return TransitionOutcome(
                    employment_id, "skipped", as_of_date, reason="locked by another transaction"
                )
            try:
                if dry_run:
                    return await self._plan(employment, as_of_date)
                return await self.transition_to_passed(employment, as_of_date)
            except TransitionConflictError as exc:
                logger.warning("Skipping probation transition for %s: %s", employment_id, exc)
                return TransitionOutcome(
                    employment_id, "skipped", as_of_date, reason=exc.reason or str(exc)
                )
            except Exception as exc:
                logger.exception("Probation transition failed for employment %s", employment_id)
                return TransitionOutcome(employment_id, "error", as_of_date, reason=str(exc))

    async def _plan(self, employment: Employment, as_of_date: date) -> TransitionOutcome:
        """Describe the transition without writing anything."""
        state = await self.current_state(employment)
        ProbationStateMachine.validate_transition(state, ProbationState.PASSED)

        active = await self.allocations.get_active_allocations(employment.employment_id)
        if not active:
            raise NoActiveAllocationsError(employment.employment_id)

        return TransitionOutcome(
            employment_id=employment.employment_id,
            action=ProbationState.PASSED.value,
            transition_date=as_of_date,
            state=ProbationState.PASSED,
            ended_allocation_ids=[a.funding_allocation_id for a in active],
            dry_run=True,
        )
