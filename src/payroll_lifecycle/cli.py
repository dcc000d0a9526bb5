"""Payroll lifecycle command line interface.

Usage:
    payroll-lifecycle period create --type semi_monthly --start 2025-11-01 --end 2025-11-15 --pay-date 2025-11-17
    payroll-lifecycle period calculate PERIOD_ID --attendance-file att.json --identity-file people.json
    payroll-lifecycle adjustment submit PERIOD_ID --employee-id E --field BASIC --new-value 31000 --reason "..."
    payroll-lifecycle report generate PERIOD_ID SSS
    payroll-lifecycle rate-table publish SSS_2025 --agency SSS --kind contribution --effective-from 2025-01-01 --payload-file sss.json

Every command prints its result as JSON and exits non-zero on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID

from payroll_lifecycle.collaborators import StaticAttendanceProvider, StaticIdentityProvider
from payroll_lifecycle.config import get_settings
from payroll_lifecycle.database import create_schema, dispose_db, init_db
from payroll_lifecycle.services.payroll_service import CommandResult, PayrollCommands

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_decimal(s: str) -> Decimal:
    try:
        return Decimal(s)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a decimal amount: {s!r}") from None


class PayrollCli:
    """Payroll lifecycle command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payroll-lifecycle",
            description="Payroll period lifecycle and statutory calculation",
        )
        parser.add_argument("--database-url", help="Database URL (default: $DATABASE_URL)")
        parser.add_argument("--actor-id", type=parse_uuid, help="Acting user ID")
        parser.add_argument(
            "--create-schema", action="store_true", help="Create missing tables first"
        )
        parser.add_argument(
            "--attendance-file", type=Path, help="JSON attendance totals by employee ID"
        )
        parser.add_argument(
            "--identity-file", type=Path, help="JSON employee profiles by employee ID"
        )
        groups = parser.add_subparsers(dest="group", help="Command groups")

        # period
        period = groups.add_parser("period", help="Payroll period lifecycle")
        period_cmds = period.add_subparsers(dest="command")
        create = period_cmds.add_parser("create", help="Create a draft period")
        create.add_argument(
            "--type",
            dest="period_type",
            required=True,
            choices=["weekly", "bi_weekly", "semi_monthly", "monthly"],
        )
        create.add_argument("--start", type=parse_date, required=True)
        create.add_argument("--end", type=parse_date, required=True)
        create.add_argument("--pay-date", type=parse_date, required=True)
        create.add_argument("--name")
        for name, help_text in (
            ("calculate", "Run the calculation engine"),
            ("submit", "Submit for review"),
            ("approve", "Approve (maker-checker)"),
            ("finalize", "Finalize and lock"),
        ):
            cmd = period_cmds.add_parser(name, help=help_text)
            cmd.add_argument("period_id", type=parse_uuid)
        for name, help_text in (("reject", "Send back for recalculation"), ("cancel", "Cancel")):
            cmd = period_cmds.add_parser(name, help=help_text)
            cmd.add_argument("period_id", type=parse_uuid)
            cmd.add_argument("--reason", required=True)

        # adjustment
        adjustment = groups.add_parser("adjustment", help="Manual corrections")
        adjustment_cmds = adjustment.add_subparsers(dest="command")
        submit = adjustment_cmds.add_parser("submit", help="Submit an adjustment")
        submit.add_argument("period_id", type=parse_uuid)
        submit.add_argument("--employee-id", type=parse_uuid, required=True)
        submit.add_argument("--field", required=True, help="Component code to override")
        submit.add_argument("--new-value", type=parse_decimal, required=True)
        submit.add_argument("--old-value", type=parse_decimal)
        submit.add_argument("--reason", required=True)
        submit.add_argument(
            "--type",
            dest="adjustment_type",
            default="correction",
            choices=["earning", "deduction", "correction", "backpay", "refund"],
        )
        approve = adjustment_cmds.add_parser("approve", help="Approve an adjustment")
        approve.add_argument("adjustment_id", type=parse_uuid)
        reject = adjustment_cmds.add_parser("reject", help="Reject an adjustment")
        reject.add_argument("adjustment_id", type=parse_uuid)
        reject.add_argument("--reason", required=True)

        # report
        report = groups.add_parser("report", help="Compliance reports")
        report_cmds = report.add_subparsers(dest="command")
        generate = report_cmds.add_parser("generate", help="Build an agency report")
        generate.add_argument("period_id", type=parse_uuid)
        generate.add_argument("agency", choices=["SSS", "PHILHEALTH", "PAGIBIG", "BIR"])
        ready = report_cmds.add_parser("ready", help="Mark a draft report ready")
        ready.add_argument("report_id", type=parse_uuid)
        report_submit = report_cmds.add_parser("submit", help="Record submission")
        report_submit.add_argument("report_id", type=parse_uuid)
        report_submit.add_argument("--submission-date", type=parse_date)
        accept = report_cmds.add_parser("accept", help="Record agency acceptance")
        accept.add_argument("report_id", type=parse_uuid)
        accept.add_argument("--reference-number", required=True)

        # component
        component = groups.add_parser("component", help="Salary components")
        component_cmds = component.add_subparsers(dest="command")
        define = component_cmds.add_parser("define", help="Define a component")
        define.add_argument("code")
        define.add_argument("--name", required=True)
        define.add_argument(
            "--type",
            dest="component_type",
            required=True,
            choices=["earning", "allowance", "benefit", "deduction", "tax", "contribution"],
        )
        define.add_argument("--non-taxable", action="store_true")
        define.add_argument("--deminimis-limit", type=parse_decimal)
        define.add_argument("--default-amount", type=parse_decimal)
        define.add_argument("--agency")
        define.add_argument("--rate-table")
        define.add_argument("--unit-basis", choices=["days", "hours", "overtime_hours"])
        assign = component_cmds.add_parser("assign", help="Assign a component to an employee")
        assign.add_argument("code")
        assign.add_argument("--employee-id", type=parse_uuid, required=True)
        assign.add_argument("--effective-date", type=parse_date, required=True)
        assign.add_argument("--end-date", type=parse_date)
        value = assign.add_mutually_exclusive_group(required=True)
        value.add_argument("--amount", type=parse_decimal)
        value.add_argument("--percentage", type=parse_decimal)
        value.add_argument("--units", type=parse_decimal)
        assign.add_argument("--basis", dest="basis_code")
        assign.add_argument(
            "--frequency",
            default="per_period",
            choices=["per_period", "monthly", "annual", "one_time"],
        )
        assign.add_argument("--prorated", action="store_true")
        assign.add_argument("--requires-attendance", action="store_true")

        # rate-table
        rate_table = groups.add_parser("rate-table", help="Versioned statutory rate tables")
        rate_cmds = rate_table.add_subparsers(dest="command")
        publish = rate_cmds.add_parser("publish", help="Publish a new version")
        publish.add_argument("table_key")
        publish.add_argument("--agency", required=True)
        publish.add_argument("--kind", required=True, choices=["contribution", "tax"])
        publish.add_argument("--effective-from", type=parse_date, required=True)
        publish.add_argument("--effective-to", type=parse_date)
        publish.add_argument("--payload-file", type=Path, required=True)

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.group or not getattr(parsed, "command", None):
            self.parser.print_help()
            return 1

        handlers: dict[tuple[str, str], Callable[[PayrollCommands, argparse.Namespace], Awaitable[CommandResult]]] = {
            ("period", "create"): self._period_create,
            ("period", "calculate"): lambda c, a: c.calculate(a.period_id, a.actor_id),
            ("period", "submit"): lambda c, a: c.submit_for_review(a.period_id, self._actor(a)),
            ("period", "approve"): lambda c, a: c.approve_period(a.period_id, self._actor(a)),
            ("period", "reject"): lambda c, a: c.reject_period(a.period_id, self._actor(a), a.reason),
            ("period", "finalize"): lambda c, a: c.finalize_period(a.period_id, self._actor(a)),
            ("period", "cancel"): lambda c, a: c.cancel_period(a.period_id, self._actor(a), a.reason),
            ("adjustment", "submit"): self._adjustment_submit,
            ("adjustment", "approve"): lambda c, a: c.approve_adjustment(a.adjustment_id, self._actor(a)),
            ("adjustment", "reject"): lambda c, a: c.reject_adjustment(
                a.adjustment_id, self._actor(a), a.reason
            ),
            ("report", "generate"): lambda c, a: c.generate_report(a.period_id, a.agency, a.actor_id),
            ("report", "ready"): lambda c, a: c.mark_report_ready(a.report_id, a.actor_id),
            ("report", "submit"): lambda c, a: c.submit_report(
                a.report_id, a.actor_id, a.submission_date
            ),
            ("report", "accept"): lambda c, a: c.accept_report(
                a.report_id, a.reference_number, a.actor_id
            ),
            ("component", "define"): self._component_define,
            ("component", "assign"): self._component_assign,
            ("rate-table", "publish"): self._rate_table_publish,
        }
        handler = handlers.get((parsed.group, parsed.command))
        if handler is None:
            print(f"Unknown command: {parsed.group} {parsed.command}", file=sys.stderr)
            return 1

        try:
            result = asyncio.run(self._dispatch(handler, parsed))
        except UsageError as e:
            print(str(e), file=sys.stderr)
            return 2

        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.success else 1

    async def _dispatch(
        self,
        handler: Callable[[PayrollCommands, argparse.Namespace], Awaitable[CommandResult]],
        args: argparse.Namespace,
    ) -> CommandResult:
        engine, factory = init_db(args.database_url)
        try:
            if args.create_schema:
                await create_schema(engine)
            commands = PayrollCommands(
                factory,
                attendance=(
                    StaticAttendanceProvider.from_json(args.attendance_file)
                    if args.attendance_file
                    else None
                ),
                identity=(
                    StaticIdentityProvider.from_json(args.identity_file)
                    if args.identity_file
                    else None
                ),
                settings=get_settings(),
            )
            return await handler(commands, args)
        finally:
            await dispose_db()

    @staticmethod
    def _actor(args: argparse.Namespace) -> UUID:
        if args.actor_id is None:
            raise UsageError(f"{args.group} {args.command} requires --actor-id")
        return args.actor_id

    async def _period_create(self, c: PayrollCommands, a: argparse.Namespace) -> CommandResult:
        return await c.create_period(
            a.period_type, a.start, a.end, a.pay_date, name=a.name, actor_id=a.actor_id
        )

    async def _adjustment_submit(self, c: PayrollCommands, a: argparse.Namespace) -> CommandResult:
        return await c.submit_adjustment(
            a.period_id,
            a.employee_id,
            a.field,
            a.new_value,
            a.reason,
            self._actor(a),
            adjustment_type=a.adjustment_type,
            old_value=a.old_value,
        )

    async def _component_define(self, c: PayrollCommands, a: argparse.Namespace) -> CommandResult:
        return await c.define_component(
            a.code,
            a.name,
            a.component_type,
            actor_id=a.actor_id,
            is_taxable=not a.non_taxable,
            is_deminimis=a.deminimis_limit is not None,
            deminimis_limit=a.deminimis_limit,
            default_amount=a.default_amount,
            agency=a.agency,
            rate_table_key=a.rate_table,
            unit_basis=a.unit_basis,
        )

    async def _component_assign(self, c: PayrollCommands, a: argparse.Namespace) -> CommandResult:
        return await c.assign_component(
            a.employee_id,
            a.code,
            a.effective_date,
            actor_id=a.actor_id,
            amount=a.amount,
            percentage=a.percentage,
            units=a.units,
            basis_code=a.basis_code,
            frequency=a.frequency,
            end_date=a.end_date,
            is_prorated=a.prorated,
            requires_attendance=a.requires_attendance,
        )

    async def _rate_table_publish(self, c: PayrollCommands, a: argparse.Namespace) -> CommandResult:
        payload = json.loads(a.payload_file.read_text())
        return await c.publish_rate_table(
            a.table_key,
            a.effective_from,
            payload,
            agency=a.agency,
            kind=a.kind,
            effective_to=a.effective_to,
            actor_id=a.actor_id,
        )


class UsageError(Exception):
    """Command line arguments are incomplete."""


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    sys.exit(PayrollCli().run())


if __name__ == "__main__":
    main()
