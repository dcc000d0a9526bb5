"""Command layer tests: one transaction per command, rejections survive rollback."""

import json
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from conftest import APPROVER_ID, PREPARER_ID
from payroll_lifecycle.cli import PayrollCli
from payroll_lifecycle.events import CalculationRunCompleted, PeriodTransitioned
from payroll_lifecycle.services import AuditTrail, PeriodLifecycleController


async def _staff(commands, employee_id=None) -> UUID:
    employee_id = employee_id or uuid4()
    effective = date(2025, 1, 1)
    for code, amount in (("BASIC", "30000"), ("RICE", "2000"), ("SSS", "0"), ("WTAX", "0")):
        result = await commands.assign_component(
            employee_id, code, effective, actor_id=PREPARER_ID, amount=Decimal(amount)
        )
        assert result.success, result.message
    return employee_id


async def _create(commands) -> UUID:
    result = await commands.create_period(
        "semi_monthly",
        date(2025, 11, 1),
        date(2025, 11, 15),
        date(2025, 11, 17),
        name="Nov 1-15",
        actor_id=PREPARER_ID,
    )
    assert result.success, result.message
    return UUID(result.data["period_id"])


class TestCommandFlow:
    async def test_period_through_remittance(self, commands, seeded):
        await _staff(commands)
        period_id = await _create(commands)

        calculated = await commands.calculate(period_id, PREPARER_ID)
        assert calculated.success
        assert calculated.data["run_number"] == 1
        assert Decimal(calculated.data["total_net"]) == Decimal("26955.90")

        assert (await commands.submit_for_review(period_id, PREPARER_ID)).success
        assert (await commands.approve_period(period_id, APPROVER_ID)).success
        finalized = await commands.finalize_period(period_id, APPROVER_ID)
        assert finalized.data["status"] == "finalized"

        report = await commands.generate_report(period_id, "SSS", APPROVER_ID)
        assert report.success
        assert Decimal(report.data["total_contribution"]) == Decimal("4650")
        assert report.data["due_date"] == "2025-12-10"

        report_id = UUID(report.data["report_id"])
        assert (await commands.mark_report_ready(report_id, APPROVER_ID)).success
        assert (await commands.submit_report(report_id, APPROVER_ID, date(2025, 12, 9))).success
        accepted = await commands.accept_report(report_id, "R3-0001", APPROVER_ID)
        assert accepted.data["status"] == "accepted"
        assert accepted.data["reference_number"] == "R3-0001"

    async def test_adjustment_recalculates_through_commands(self, commands, seeded):
        employee_id = await _staff(commands)
        period_id = await _create(commands)
        await commands.calculate(period_id, PREPARER_ID)

        submitted = await commands.submit_adjustment(
            period_id, employee_id, "BASIC", Decimal("28000"), "Unpaid leave", PREPARER_ID
        )
        approved = await commands.approve_adjustment(
            UUID(submitted.data["adjustment_id"]), APPROVER_ID
        )

        assert approved.data["approval_status"] == "approved"
        assert approved.data["recalculation"]["run_number"] == 2


class TestFailures:
    async def test_refusal_rolls_back_but_keeps_audit(self, commands, seeded, session_factory):
        await _staff(commands)
        period_id = await _create(commands)
        await commands.calculate(period_id, PREPARER_ID)
        await commands.submit_for_review(period_id, PREPARER_ID)

        result = await commands.approve_period(period_id, PREPARER_ID)

        assert not result.success
        assert result.error_code == "SELF_APPROVAL_NOT_ALLOWED"
        assert result.error_category == "state"
        assert result.to_dict()["error_code"] == "SELF_APPROVAL_NOT_ALLOWED"

        async with session_factory() as session:
            period = await PeriodLifecycleController(session).get_period(period_id)
            assert period.status == "reviewing"
            history = await AuditTrail(session).history("payroll_period", period_id)
            assert history[-1].action == "approved_rejected"
            assert history[-1].actor_id == PREPARER_ID

    async def test_validation_failure(self, commands, seeded):
        result = await commands.create_period(
            "semi_monthly", date(2025, 11, 15), date(2025, 11, 1), date(2025, 11, 17)
        )

        assert not result.success
        assert result.error_category == "validation"
        assert result.data["field"] == "start_date"

    async def test_unknown_period(self, commands):
        result = await commands.calculate(uuid4(), PREPARER_ID)

        assert result.error_code == "PERIOD_NOT_FOUND"
        assert result.error_category == "not_found"

    async def test_unexpected_errors_propagate(self, commands):
        async def broken(services):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await commands.execute("broken", broken)


class TestEvents:
    async def test_events_forwarded_after_commit(self, commands, seeded):
        seen = []
        commands.emitter.on([PeriodTransitioned, CalculationRunCompleted], seen.append)
        await _staff(commands)
        period_id = await _create(commands)

        await commands.calculate(period_id, PREPARER_ID)

        assert [type(e) for e in seen].count(CalculationRunCompleted) == 1
        count = len(seen)

        refused = await commands.calculate(period_id, PREPARER_ID)
        assert not refused.success
        assert len(seen) == count


class TestRateTables:
    async def test_publish_versions(self, commands, seeded, session_factory):
        payload = {"employee_rate": "0.025", "employer_rate": "0.025"}

        first = await commands.publish_rate_table(
            "PHIC_2025", date(2025, 1, 1), payload, agency="PHILHEALTH", kind="contribution",
            actor_id=APPROVER_ID,
        )
        assert first.data["version"] == 1

        backdated = await commands.publish_rate_table(
            "PHIC_2025", date(2024, 6, 1), payload, agency="PHILHEALTH", kind="contribution",
            actor_id=APPROVER_ID,
        )
        assert not backdated.success
        assert backdated.error_category == "validation"

        async with session_factory() as session:
            history = await AuditTrail(session).history("rate_table", "PHIC_2025")
            assert [e.action for e in history] == ["published"]


class TestCli:
    def test_create_then_refuse_without_actor(self, tmp_path, capsys):
        url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
        cli = PayrollCli()

        code = cli.run(
            [
                "--database-url", url,
                "--create-schema",
                "--actor-id", str(PREPARER_ID),
                "period", "create",
                "--type", "semi_monthly",
                "--start", "2025-11-01",
                "--end", "2025-11-15",
                "--pay-date", "2025-11-17",
            ]
        )
        assert code == 0
        created = json.loads(capsys.readouterr().out)
        assert created["success"] is True
        assert created["data"]["status"] == "draft"

        code = cli.run(["--database-url", url, "period", "approve", created["data"]["period_id"]])
        assert code == 2
        assert "requires --actor-id" in capsys.readouterr().err

    def test_refused_command_exits_non_zero(self, tmp_path, capsys):
        url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"

        code = PayrollCli().run(
            ["--database-url", url, "--create-schema", "period", "calculate", str(uuid4())]
        )

        assert code == 1
        assert json.loads(capsys.readouterr().out)["error_code"] == "PERIOD_NOT_FOUND"

    def test_no_command_prints_help(self, capsys):
        assert PayrollCli().run([]) == 1
