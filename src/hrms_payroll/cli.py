"""HRMS payroll command line interface.

Provides operational tools for:
- Daily probation transitions
- Payroll generation for a pay period
- Cancelling a running payroll batch
- Tax bracket breakdowns

Usage:
    python -m hrms_payroll process-probation-transitions --date 2024-03-31 --dry-run
    python -m hrms_payroll generate-payroll --period 2024-03-31 --employment X
    python -m hrms_payroll cancel-batch --batch-id X
    python -m hrms_payroll tax-breakdown --income 500000 --year 2024
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Coroutine
from uuid import UUID

from hrms_payroll.calculators.tax_calculator import TaxCalculator
from hrms_payroll.config import get_settings
from hrms_payroll.database import dispose_db, get_session
from hrms_payroll.services.payroll_service import PayrollGenerator
from hrms_payroll.services.probation_service import ProbationTransitionService
from hrms_payroll.services.reference_data import ReferenceDataLoader

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_decimal(s: str) -> Decimal:
    """Parse a decimal amount."""
    try:
        return Decimal(s)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {s!r}") from exc


class HRMSPayrollCli:
    """HRMS payroll command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m hrms_payroll",
            description="Funding allocation, probation and payroll operations",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # process-probation-transitions command
        transitions = subparsers.add_parser(
            "process-probation-transitions",
            help="Pass or fail employments whose probation ends on a date",
        )
        transitions.add_argument(
            "--date",
            type=parse_date,
            default=None,
            help="Transition date (ISO format, default: today)",
        )
        transitions.add_argument(
            "--employment",
            type=parse_uuid,
            help="Process only this employment ID",
        )
        transitions.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be transitioned without writing",
        )

        # generate-payroll command
        payroll = subparsers.add_parser(
            "generate-payroll",
            help="Generate payroll rows for a pay period",
        )
        payroll.add_argument(
            "--period",
            type=parse_date,
            required=True,
            help="Pay period date (ISO format)",
        )
        payroll.add_argument(
            "--employment",
            type=parse_uuid,
            action="append",
            dest="employments",
            help="Employment ID to include (repeatable, default: all active)",
        )
        payroll.add_argument(
            "--batch",
            action="store_true",
            help="Track progress in a bulk payroll batch record",
        )
        payroll.add_argument(
            "--dry-run",
            action="store_true",
            help="Compute payroll without writing rows",
        )

        # cancel-batch command
        cancel = subparsers.add_parser(
            "cancel-batch",
            help="Cancel a pending or running payroll batch",
        )
        cancel.add_argument(
            "--batch-id",
            type=parse_uuid,
            required=True,
            help="Bulk payroll batch ID",
        )

        # tax-breakdown command
        breakdown = subparsers.add_parser(
            "tax-breakdown",
            help="Show how an annual income is taxed bracket by bracket",
        )
        breakdown.add_argument(
            "--income",
            type=parse_decimal,
            required=True,
            help="Annual taxable income",
        )
        breakdown.add_argument(
            "--year",
            type=int,
            default=None,
            help="Tax year (default: current year)",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run CLI with arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Coroutine[Any, Any, int]]] = {
            "process-probation-transitions": self._cmd_process_probation_transitions,
            "generate-payroll": self._cmd_generate_payroll,
            "cancel-batch": self._cmd_cancel_batch,
            "tax-breakdown": self._cmd_tax_breakdown,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        return asyncio.run(self._run_async(handler, parsed))

    async def _run_async(
        self,
        handler: Callable[[argparse.Namespace], Coroutine[Any, Any, int]],
        args: argparse.Namespace,
    ) -> int:
        try:
            return await handler(args)
        except Exception as e:
            logger.exception("Command %s failed", args.command)
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        finally:
            await dispose_db()

    async def _cmd_process_probation_transitions(self, args: argparse.Namespace) -> int:
        """Run the daily probation transitions."""
        as_of = args.date or date.today()
        print(f"Processing probation transitions for {as_of.isoformat()}")
        if args.employment:
            print(f"  Employment: {args.employment}")
        if args.dry_run:
            print("  [DRY RUN] No changes will be written")

        async with get_session() as session:
            service = ProbationTransitionService(session)
            report = await service.process_daily_transitions(
                as_of, employment_id=args.employment, dry_run=args.dry_run
            )
            if args.dry_run:
                await session.rollback()

        for outcome in report.outcomes:
            line = f"  {outcome.employment_id}  {outcome.action:<8}"
            if outcome.reason:
                line += f"  ({outcome.reason})"
            print(line)

        print(
            f"\nProcessed: {len(report.processed)}  "
            f"Failed: {len(report.failed)}  "
            f"Skipped: {len(report.skipped)}"
        )
        return 1 if report.failed else 0

    async def _cmd_generate_payroll(self, args: argparse.Namespace) -> int:
        """Generate payroll for a pay period."""
        print(f"Generating payroll for {args.period.isoformat()}")

        async with get_session() as session:
            generator = PayrollGenerator(session)
            employments = await generator.load_employments(args.employments)

            if args.dry_run:
                result = await generator.preview_for_period(args.period, employments)
                await session.rollback()
            else:
                batch = None
                if args.batch:
                    batch = await generator.create_batch(args.period, len(employments))
                    print(f"  Batch: {batch.batch_id}")
                result = await generator.generate_for_period(args.period, employments, batch=batch)

        print(f"\n  Lines:     {len(result.succeeded):>6}")
        print(f"  Failures:  {len(result.failures):>6}")
        print(f"  Skipped:   {len(result.skipped):>6}")
        print(f"  Advances:  {len(result.advances):>6}")
        print(f"  Total net: {result.total_net:>15,.2f}")

        for failure in result.failures:
            print(f"  ✗ {failure.employment_id}: {failure.error_type}: {failure.reason}")
        if result.cancelled:
            print("\nBatch was cancelled before completion.")
        return 1 if result.failures else 0

    async def _cmd_cancel_batch(self, args: argparse.Namespace) -> int:
        """Cancel a payroll batch."""
        async with get_session() as session:
            batch = await PayrollGenerator(session).cancel_batch(args.batch_id)
            print(
                f"Batch {batch.batch_id} cancelled after "
                f"{batch.processed_employments}/{batch.total_employments} employment(s)"
            )
        return 0

    async def _cmd_tax_breakdown(self, args: argparse.Namespace) -> int:
        """Print a bracket-by-bracket tax breakdown."""
        year = args.year or date.today().year
        async with get_session() as session:
            brackets = await ReferenceDataLoader(session).load_tax_brackets(year)

        calculator = TaxCalculator({year: brackets})
        total = calculator.compute_tax(args.income, year)
        print(f"Income tax on {args.income:,.2f} ({year})")
        print("=" * 60)
        for part in calculator.breakdown(args.income, year):
            upper = f"{part.max_income:,.2f}" if part.max_income is not None else "and above"
            print(
                f"  {part.min_income:>14,.2f} - {upper:<14} @ {part.rate:>5}%  "
                f"on {part.taxable_amount:>14,.2f} = {part.tax:>12,.2f}"
            )
        print(f"\n  Total: {total:,.2f}")
        return 0


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = HRMSPayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
