"""Type definitions for the allocation and payroll calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Union
from uuid import UUID


class SalaryType(str, Enum):
    """Which salary figure an amount was computed from."""

    PROBATION_SALARY = "probation_salary"
    PASS_PROBATION_SALARY = "pass_probation_salary"


class AllocationStatus(str, Enum):
    """Funding allocation lifecycle status."""

    ACTIVE = "active"
    HISTORICAL = "historical"
    TERMINATED = "terminated"


class FundingSourceKind(str, Enum):
    """Discriminator for the funding source variant."""

    GRANT_ITEM = "grant_item"
    ORG_FUNDED = "org_funded"


class ProbationState(str, Enum):
    """Probation state derived from the probation event log."""

    ONGOING = "ongoing"
    EXTENDED = "extended"
    PASSED = "passed"
    FAILED = "failed"


class ProbationEventType(str, Enum):
    """Append-only probation event types."""

    INITIAL = "initial"
    EXTENSION = "extension"
    PASSED = "passed"
    FAILED = "failed"


class PayrollEntryType(str, Enum):
    """Payroll row kinds. Corrections are reversal rows, never updates."""

    ORIGINAL = "original"
    REVERSAL = "reversal"


class BatchStatus(str, Enum):
    """Bulk payroll batch status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# ===== Funding sources =====


@dataclass(frozen=True)
class GrantItemSource:
    """Funding from a budget line (grant item) within a grant."""

    grant_item_id: UUID

    @property
    def kind(self) -> FundingSourceKind:
        return FundingSourceKind.GRANT_ITEM


@dataclass(frozen=True)
class OrgFundedSource:
    """Funding from an organisation-funded slot."""

    org_funded_slot_id: UUID

    @property
    def kind(self) -> FundingSourceKind:
        return FundingSourceKind.ORG_FUNDED


FundingSource = Union[GrantItemSource, OrgFundedSource]


@dataclass(frozen=True)
class AllocationRequest:
    """A requested (funding source, fte) pair."""

    source: FundingSource
    fte: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_kind": self.source.kind.value,
            "source_id": str(
                self.source.grant_item_id
                if isinstance(self.source, GrantItemSource)
                else self.source.org_funded_slot_id
            ),
            "fte": str(self.fte),
        }


@dataclass(frozen=True)
class SalaryResolution:
    """A salary figure together with the salary type it was taken from."""

    amount: Decimal
    salary_type: SalaryType


# ===== Employment view used by pure calculators =====


@dataclass(frozen=True)
class EmploymentTerms:
    """Snapshot of the employment fields the calculators depend on."""

    employment_id: UUID
    start_date: date
    pass_probation_salary: Decimal | None
    home_organization: str
    probation_salary: Decimal | None = None
    probation_end_date: date | None = None
    end_date: date | None = None
    social_security: bool = True
    health_welfare: bool = True
    pvd: bool = False
    saving_fund: bool = False
    has_spouse: bool = False
    child_count: int = 0
    eligible_parent_count: int = 0

    @classmethod
    def from_record(cls, employment: Any) -> EmploymentTerms:
        """Build terms from an Employment row (or anything shaped like one)."""
        return cls(
            employment_id=employment.employment_id,
            start_date=employment.start_date,
            pass_probation_salary=employment.pass_probation_salary,
            home_organization=employment.home_organization,
            probation_salary=employment.probation_salary,
            probation_end_date=employment.probation_end_date,
            end_date=employment.end_date,
            social_security=bool(employment.social_security),
            health_welfare=bool(employment.health_welfare),
            pvd=bool(employment.pvd),
            saving_fund=bool(employment.saving_fund),
            has_spouse=bool(employment.has_spouse),
            child_count=employment.child_count or 0,
            eligible_parent_count=employment.eligible_parent_count or 0,
        )


# ===== Reference data snapshots =====


@dataclass(frozen=True)
class TaxBracketRule:
    """One band of a progressive income tax table. Rate is a percentage."""

    bracket_order: int
    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal


@dataclass(frozen=True)
class TaxBracketSlice:
    """Portion of an income taxed within a single bracket."""

    bracket_order: int
    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal
    taxable_amount: Decimal
    tax: Decimal


@dataclass(frozen=True)
class TaxConvention:
    """Annual income tax parameters applied before the bracket walk."""

    annualization: str = "months_worked"
    employment_deduction_rate: Decimal = Decimal("50")
    employment_deduction_max: Decimal = Decimal("100000")
    personal_allowance: Decimal = Decimal("60000")
    spouse_allowance: Decimal = Decimal("60000")
    child_allowance: Decimal = Decimal("30000")
    subsequent_child_allowance: Decimal = Decimal("60000")
    max_allowed_children: int = 3
    parent_allowance: Decimal = Decimal("30000")
    deduct_social_security: bool = True
    deduct_provident_fund: bool = True


@dataclass(frozen=True)
class BenefitSnapshot:
    """Benefit settings effective on a given date, keyed by setting key."""

    as_of: date
    values: Mapping[str, Decimal] = field(default_factory=dict)

    def get(self, key: str) -> Decimal | None:
        return self.values.get(key)


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Everything effective-dated that a payroll calculation reads."""

    as_of: date
    brackets: tuple[TaxBracketRule, ...]
    benefits: BenefitSnapshot
    tax_convention: TaxConvention


# ===== Payroll computation inputs and outputs =====


@dataclass(frozen=True)
class AllocationShare:
    """An allocation prepared for payroll: fte plus resolved funding owner."""

    funding_allocation_id: UUID
    fte: Decimal
    funding_organization: str
    label: str | None = None


@dataclass(frozen=True)
class ContributionSplit:
    """Employee and employer shares of one contribution."""

    employee: Decimal
    employer: Decimal


@dataclass(frozen=True)
class StatutoryDeductions:
    """Statutory amounts computed on an aggregate gross."""

    employee_social_security: Decimal = Decimal("0")
    employer_social_security: Decimal = Decimal("0")
    employee_health_welfare: Decimal = Decimal("0")
    employer_health_welfare: Decimal = Decimal("0")
    pvd: Decimal = Decimal("0")
    saving_fund: Decimal = Decimal("0")


@dataclass
class PayrollLine:
    """Computed amounts for one allocation in one pay period."""

    funding_allocation_id: UUID
    salary_type: SalaryType
    fte: Decimal
    funding_organization: str
    gross_salary: Decimal
    gross_salary_by_fte: Decimal
    thirteenth_month_salary: Decimal = Decimal("0")
    salary_bonus: Decimal = Decimal("0")
    income_tax: Decimal = Decimal("0")
    employee_social_security: Decimal = Decimal("0")
    employer_social_security: Decimal = Decimal("0")
    employee_health_welfare: Decimal = Decimal("0")
    employer_health_welfare: Decimal = Decimal("0")
    pvd: Decimal = Decimal("0")
    saving_fund: Decimal = Decimal("0")
    needs_inter_organization_advance: bool = False

    @property
    def total_income(self) -> Decimal:
        return self.gross_salary_by_fte + self.thirteenth_month_salary + self.salary_bonus

    @property
    def total_deduction(self) -> Decimal:
        return (
            self.income_tax
            + self.employee_social_security
            + self.employee_health_welfare
            + self.pvd
            + self.saving_fund
        )

    @property
    def employer_contribution(self) -> Decimal:
        return self.employer_social_security + self.employer_health_welfare

    @property
    def net_salary(self) -> Decimal:
        return self.total_income - self.total_deduction

    @property
    def total_salary(self) -> Decimal:
        """Cost to the organisation."""
        return self.total_income + self.employer_contribution

    @property
    def total_pvd_saving_fund(self) -> Decimal:
        """Employee fund contribution plus the matching employer contribution."""
        return (self.pvd + self.saving_fund) * 2


@dataclass(frozen=True)
class AdvanceSignal:
    """Inter-organisation advance owed for one payroll line."""

    funding_allocation_id: UUID
    from_organization: str
    to_organization: str
    amount: Decimal


@dataclass
class EmploymentPayrollCalculation:
    """Result of computing one employment for one pay period."""

    employment_id: UUID
    pay_period_date: date
    salary_type: SalaryType
    monthly_salary: Decimal
    aggregate_gross: Decimal
    lines: list[PayrollLine]
    advances: list[AdvanceSignal] = field(default_factory=list)
    annual_increase: Decimal = Decimal("0")

    @property
    def total_net(self) -> Decimal:
        return sum((line.net_salary for line in self.lines), Decimal("0"))

    @property
    def total_pvd_saving_fund(self) -> Decimal:
        return sum((line.total_pvd_saving_fund for line in self.lines), Decimal("0"))
