"""ORM models for the HRMS payroll core."""

from hrms_payroll.models.base import AuditMixin, Base, TimestampMixin
from hrms_payroll.models.employment import Employment, ProbationEvent
from hrms_payroll.models.funding import FundingAllocation, Grant, GrantItem, OrgFundedSlot
from hrms_payroll.models.payroll import BulkPayrollBatch, Payroll
from hrms_payroll.models.reference import BenefitSetting, TaxBracket, TaxSetting

__all__ = [
    "AuditMixin",
    "Base",
    "TimestampMixin",
    "Employment",
    "ProbationEvent",
    "FundingAllocation",
    "Grant",
    "GrantItem",
    "OrgFundedSlot",
    "BulkPayrollBatch",
    "Payroll",
    "BenefitSetting",
    "TaxBracket",
    "TaxSetting",
]
