"""HTTP API tests over the command layer and an in-memory database."""

from decimal import Decimal
from uuid import uuid4

from conftest import APPROVER_ID, PREPARER_ID

PREPARER = {"X-Actor-ID": str(PREPARER_ID)}
APPROVER = {"X-Actor-ID": str(APPROVER_ID)}

PERIOD = {
    "period_type": "semi_monthly",
    "start_date": "2025-11-01",
    "end_date": "2025-11-15",
    "pay_date": "2025-11-17",
    "name": "Nov 1-15",
}


async def _assign_staff(client) -> str:
    employee_id = str(uuid4())
    for code, amount in (("BASIC", "30000"), ("RICE", "2000"), ("SSS", "0"), ("WTAX", "0")):
        response = await client.post(
            "/api/v1/components/assignments",
            headers=PREPARER,
            json={
                "employee_id": employee_id,
                "component_code": code,
                "effective_date": "2025-01-01",
                "amount": amount,
            },
        )
        assert response.status_code == 201, response.text
    return employee_id


async def _create_period(client) -> str:
    response = await client.post("/api/v1/periods", headers=PREPARER, json=PERIOD)
    assert response.status_code == 201, response.text
    return response.json()["data"]["period_id"]


async def _approved_period(client) -> str:
    await _assign_staff(client)
    period_id = await _create_period(client)
    for path, headers in (("calculate", PREPARER), ("submit", PREPARER), ("approve", APPROVER)):
        response = await client.post(f"/api/v1/periods/{period_id}/{path}", headers=headers)
        assert response.status_code == 200, response.text
    return period_id


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "healthy"

    async def test_ready_and_live(self, client):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestPeriods:
    async def test_create_and_get(self, client):
        period_id = await _create_period(client)

        response = await client.get(f"/api/v1/periods/{period_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "draft"
        assert body["presentation"] == {"status": "draft", "label": "Draft", "color": "gray"}
        assert body["next_statuses"] == ["calculating", "cancelled"]

    async def test_actor_header_required(self, client):
        response = await client.post("/api/v1/periods", json=PERIOD)
        assert response.status_code == 400

        response = await client.post(
            "/api/v1/periods", headers={"X-Actor-ID": "nobody"}, json=PERIOD
        )
        assert response.status_code == 400

    async def test_invalid_dates_are_422(self, client):
        response = await client.post(
            "/api/v1/periods", headers=PREPARER, json={**PERIOD, "pay_date": "2025-11-10"}
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert response.json()["data"]["field"] == "pay_date"

    async def test_unknown_period_is_404(self, client):
        assert (await client.get(f"/api/v1/periods/{uuid4()}")).status_code == 404

        response = await client.post(f"/api/v1/periods/{uuid4()}/calculate", headers=PREPARER)
        assert response.status_code == 404
        assert response.json()["error_code"] == "PERIOD_NOT_FOUND"

    async def test_calculate_and_results(self, client):
        employee_id = await _assign_staff(client)
        period_id = await _create_period(client)

        response = await client.post(f"/api/v1/periods/{period_id}/calculate", headers=PREPARER)
        assert response.status_code == 200
        assert response.json()["data"]["succeeded"] == 1

        (result,) = (await client.get(f"/api/v1/periods/{period_id}/results")).json()
        assert result["employee_id"] == employee_id
        assert Decimal(result["gross_pay"]) == Decimal("32000")
        assert Decimal(result["net_pay"]) == Decimal("26955.90")
        assert {line["component_code"] for line in result["line_items"]} == {
            "BASIC",
            "RICE",
            "SSS",
            "WTAX",
        }

    async def test_self_approval_is_409_and_audited(self, client):
        await _assign_staff(client)
        period_id = await _create_period(client)
        await client.post(f"/api/v1/periods/{period_id}/calculate", headers=PREPARER)
        await client.post(f"/api/v1/periods/{period_id}/submit", headers=PREPARER)

        response = await client.post(f"/api/v1/periods/{period_id}/approve", headers=PREPARER)

        assert response.status_code == 409
        assert response.json()["error_code"] == "SELF_APPROVAL_NOT_ALLOWED"
        actions = [e["action"] for e in (await client.get(f"/api/v1/periods/{period_id}/audit")).json()]
        assert actions[-1] == "approved_rejected"

    async def test_reject_needs_reason(self, client):
        period_id = await _create_period(client)

        response = await client.post(
            f"/api/v1/periods/{period_id}/reject", headers=APPROVER, json={"reason": ""}
        )
        assert response.status_code == 422

    async def test_cancel_and_list(self, client):
        period_id = await _create_period(client)

        response = await client.post(
            f"/api/v1/periods/{period_id}/cancel", headers=PREPARER, json={"reason": "duplicate"}
        )
        assert response.status_code == 200

        listing = (await client.get("/api/v1/periods", params={"status": "cancelled"})).json()
        assert listing["total"] == 1
        assert listing["items"][0]["period_id"] == period_id

        response = await client.post(f"/api/v1/periods/{period_id}/calculate", headers=PREPARER)
        assert response.status_code == 409


class TestAdjustments:
    async def test_submit_and_approve(self, client):
        employee_id = await _assign_staff(client)
        period_id = await _create_period(client)
        await client.post(f"/api/v1/periods/{period_id}/calculate", headers=PREPARER)

        response = await client.post(
            f"/api/v1/periods/{period_id}/adjustments",
            headers=PREPARER,
            json={
                "employee_id": employee_id,
                "field": "BASIC",
                "new_value": "28000",
                "reason": "Unpaid leave",
            },
        )
        assert response.status_code == 201
        adjustment_id = response.json()["data"]["adjustment_id"]

        response = await client.post(f"/api/v1/adjustments/{adjustment_id}/approve", headers=PREPARER)
        assert response.status_code == 409

        response = await client.post(f"/api/v1/adjustments/{adjustment_id}/approve", headers=APPROVER)
        assert response.status_code == 200
        assert response.json()["data"]["recalculation"]["run_number"] == 2

        (adjustment,) = (await client.get(f"/api/v1/periods/{period_id}/adjustments")).json()
        assert adjustment["approval_status"] == "approved"
        assert Decimal(adjustment["old_value"]) == Decimal("30000")

    async def test_unknown_adjustment(self, client):
        response = await client.post(f"/api/v1/adjustments/{uuid4()}/approve", headers=APPROVER)
        assert response.status_code == 404


class TestReports:
    async def test_generate_submit_accept(self, client):
        period_id = await _approved_period(client)

        response = await client.post(f"/api/v1/periods/{period_id}/reports/SSS", headers=APPROVER)
        assert response.status_code == 201
        report_id = response.json()["data"]["report_id"]

        assert (await client.post(f"/api/v1/reports/{report_id}/ready", headers=APPROVER)).status_code == 200
        response = await client.post(
            f"/api/v1/reports/{report_id}/submit",
            headers=APPROVER,
            json={"submission_date": "2025-12-12"},
        )
        assert response.status_code == 200
        response = await client.post(
            f"/api/v1/reports/{report_id}/accept",
            headers=APPROVER,
            json={"reference_number": "R3-77"},
        )
        assert response.json()["data"]["status"] == "accepted"

        (report,) = (await client.get(f"/api/v1/periods/{period_id}/reports")).json()
        assert Decimal(report["total_contribution"]) == Decimal("4650")

        penalty = (
            await client.get(f"/api/v1/reports/{report_id}/penalty", params={"as_of": "2026-01-01"})
        ).json()
        assert penalty["months_late"] == 1
        assert Decimal(penalty["penalty"]) == Decimal("232.50")

    async def test_report_on_unapproved_period_is_409(self, client):
        period_id = await _create_period(client)

        response = await client.post(f"/api/v1/periods/{period_id}/reports/SSS", headers=APPROVER)
        assert response.status_code == 409
        assert response.json()["error_code"] == "PERIOD_NOT_READY"

    async def test_penalty_for_unknown_report(self, client):
        assert (await client.get(f"/api/v1/reports/{uuid4()}/penalty")).status_code == 404


class TestComponents:
    async def test_define_and_list(self, client):
        response = await client.post(
            "/api/v1/components",
            headers=APPROVER,
            json={"code": "ot", "name": "Overtime", "component_type": "earning"},
        )
        assert response.status_code == 201
        assert response.json()["data"]["code"] == "OT"

        codes = [c["code"] for c in (await client.get("/api/v1/components")).json()]
        assert codes == ["BASIC", "OT", "RICE", "SSS", "WTAX"]

    async def test_duplicate_code_is_422(self, client):
        response = await client.post(
            "/api/v1/components",
            headers=APPROVER,
            json={"code": "BASIC", "name": "Basic again", "component_type": "earning"},
        )
        assert response.status_code == 422

    async def test_overlapping_assignment_is_422(self, client):
        employee_id = await _assign_staff(client)

        response = await client.post(
            "/api/v1/components/assignments",
            headers=PREPARER,
            json={
                "employee_id": employee_id,
                "component_code": "BASIC",
                "effective_date": "2025-06-01",
                "amount": "35000",
            },
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "OVERLAPPING_ASSIGNMENT"
