"""HRMS payroll services."""

from hrms_payroll.services.allocation_service import (
    AllocationService,
    CapacityExceededError,
    CapacitySummary,
)
from hrms_payroll.services.funding_sources import (
    FundingSourceNotFoundError,
    FundingSourceResolver,
    ResolvedFundingSource,
)
from hrms_payroll.services.locking_service import LockingService
from hrms_payroll.services.payroll_service import (
    PayrollBatchResult,
    PayrollGenerator,
    PayrollReversalError,
)
from hrms_payroll.services.probation_service import (
    DailyTransitionReport,
    InvalidExtensionError,
    NoActiveAllocationsError,
    ProbationTransitionService,
    TransitionOutcome,
)
from hrms_payroll.services.reference_data import ReferenceDataLoader
from hrms_payroll.services.state_machine import ProbationStateMachine, TransitionConflictError

__all__ = [
    "AllocationService",
    "CapacityExceededError",
    "CapacitySummary",
    "FundingSourceNotFoundError",
    "FundingSourceResolver",
    "ResolvedFundingSource",
    "LockingService",
    "PayrollBatchResult",
    "PayrollGenerator",
    "PayrollReversalError",
    "DailyTransitionReport",
    "InvalidExtensionError",
    "NoActiveAllocationsError",
    "ProbationTransitionService",
    "TransitionOutcome",
    "ReferenceDataLoader",
    "ProbationStateMachine",
    "TransitionConflictError",
]
