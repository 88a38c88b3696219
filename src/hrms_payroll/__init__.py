"""Funding allocation, probation transition and payroll calculation core."""

__version__ = "1.0.0"
