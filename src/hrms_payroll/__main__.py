"""Entry point for running the operator CLI."""

import sys

from hrms_payroll.cli import main

if __name__ == "__main__":
    sys.exit(main())
