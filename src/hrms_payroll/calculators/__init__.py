"""Pure allocation, tax, deduction and payroll calculators."""

from hrms_payroll.calculators.allocation import (
    AllocationEngine,
    AllocationError,
    AllocationImbalanceError,
    InvalidAllocationError,
    MissingSalaryError,
)
from hrms_payroll.calculators.deductions import NoActiveSettingError, StatutoryDeductionCalculator
from hrms_payroll.calculators.engine import PayrollCalculator
from hrms_payroll.calculators.line_builder import PayrollLineBuilder
from hrms_payroll.calculators.tax_calculator import (
    InvalidBracketTableError,
    NoBracketsConfiguredError,
    TaxCalculator,
)

__all__ = [
    "AllocationEngine",
    "AllocationError",
    "AllocationImbalanceError",
    "InvalidAllocationError",
    "MissingSalaryError",
    "NoActiveSettingError",
    "StatutoryDeductionCalculator",
    "PayrollCalculator",
    "PayrollLineBuilder",
    "InvalidBracketTableError",
    "NoBracketsConfiguredError",
    "TaxCalculator",
]
