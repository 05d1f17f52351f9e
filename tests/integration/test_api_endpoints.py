"""API endpoint integration tests.

Tests the FastAPI endpoints for clock events, policies, compliance and
surcharges against an in-memory database.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio

SATURDAY = "2024-03-09"


async def _clock(client: AsyncClient, seeded, kind: str, timestamp: str, employee_id=None):
    return await client.post(
        "/api/v1/clock-events",
        headers=seeded.headers,
        json={
            "employee_id": str(employee_id or seeded.alice_id),
            "kind": kind,
            "timestamp": timestamp,
        },
    )


async def _assign(client: AsyncClient, seeded, family: str, policy_id: str):
    response = await client.post(
        "/api/v1/policy-assignments",
        headers=seeded.headers,
        json={
            "policy_family": family,
            "policy_id": policy_id,
            "scope": "organization",
            "effective_from": "2024-01-01",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _night_weekend_model(client: AsyncClient, seeded) -> str:
    response = await client.post(
        "/api/v1/surcharge-models",
        headers=seeded.headers,
        json={"name": "Night and weekend"},
    )
    assert response.status_code == 201, response.text
    model_id = response.json()["surcharge_model_id"]

    for rule in (
        {
            "name": "Night",
            "percentage": "0.30",
            "matcher": {"kind": "time_window", "start": "22:00", "end": "06:00"},
        },
        {
            "name": "Saturday",
            "percentage": "0.25",
            "matcher": {"kind": "day_of_week", "day_of_week": "saturday"},
        },
    ):
        response = await client.post(
            f"/api/v1/surcharge-models/{model_id}/rules", headers=seeded.headers, json=rule
        )
        assert response.status_code == 201, response.text

    await _assign(client, seeded, "surcharge_model", model_id)
    return model_id


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Health endpoint should report a reachable database."""
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["timezone"] == "UTC"
        assert "engine_version" in data
        assert "timestamp" in data

    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"


class TestClockEvents:
    """Recording, listing and correcting clock events."""

    async def test_requires_organization_header(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/clock-events",
            json={"employee_id": str(seeded.alice_id), "kind": "start", "timestamp": f"{SATURDAY}T09:00:00Z"},
        )

        assert response.status_code == 400
        assert "X-Organization-ID" in response.json()["detail"]

    async def test_naive_timestamp_rejected(self, client: AsyncClient, seeded):
        response = await _clock(client, seeded, "start", f"{SATURDAY}T09:00:00")
        assert response.status_code == 422

    async def test_start_and_stop(self, client: AsyncClient, seeded):
        started = await _clock(client, seeded, "start", f"{SATURDAY}T09:00:00Z")
        assert started.status_code == 201, started.text
        start_data = started.json()
        assert start_data["event"]["sequence"] == 1
        assert start_data["event"]["prior_digest"] is None
        assert start_data["work_period"]["status"] == "open"

        stopped = await _clock(client, seeded, "stop", f"{SATURDAY}T13:00:00Z")
        assert stopped.status_code == 201, stopped.text
        stop_data = stopped.json()
        assert stop_data["event"]["prior_event_id"] == start_data["event"]["clock_event_id"]
        assert stop_data["event"]["prior_digest"] == start_data["event"]["digest"]
        assert stop_data["work_period"]["status"] == "final"
        assert stop_data["work_period"]["credited_duration_minutes"] == 240
        assert stop_data["surcharge"]["surcharge_minutes"] == 0

        events = await client.get(
            f"/api/v1/employees/{seeded.alice_id}/clock-events", headers=seeded.headers
        )
        assert [e["kind"] for e in events.json()] == ["start", "stop"]

        verification = await client.get(
            f"/api/v1/employees/{seeded.alice_id}/chain/verify", headers=seeded.headers
        )
        assert verification.json()["is_valid"] is True
        assert verification.json()["total_events"] == 2

    async def test_stop_without_start_has_error_code(self, client: AsyncClient, seeded):
        response = await _clock(client, seeded, "stop", f"{SATURDAY}T09:00:00Z")

        assert response.status_code == 409
        assert response.json()["code"] == "NO_OPEN_PERIOD"

    async def test_out_of_order_rejected(self, client: AsyncClient, seeded):
        await _clock(client, seeded, "start", f"{SATURDAY}T09:00:00Z")

        response = await _clock(client, seeded, "stop", f"{SATURDAY}T08:00:00Z")

        assert response.status_code == 409
        assert response.json()["code"] == "OUT_OF_ORDER_EVENT"

    async def test_stale_expected_tail_conflicts(self, client: AsyncClient, seeded):
        await _clock(client, seeded, "start", f"{SATURDAY}T09:00:00Z")

        response = await client.post(
            "/api/v1/clock-events",
            headers=seeded.headers,
            json={
                "employee_id": str(seeded.alice_id),
                "kind": "stop",
                "timestamp": f"{SATURDAY}T10:00:00Z",
                "expected_tail_id": str(uuid4()),
            },
        )

        assert response.status_code == 409
        assert response.json()["code"] == "CHAIN_CONFLICT"

    async def test_correction(self, client: AsyncClient, seeded):
        await _clock(client, seeded, "start", f"{SATURDAY}T09:00:00Z")
        stopped = (await _clock(client, seeded, "stop", f"{SATURDAY}T17:00:00Z")).json()

        response = await client.post(
            f"/api/v1/clock-events/{stopped['event']['clock_event_id']}/correct",
            headers=seeded.headers,
            json={"new_timestamp": f"{SATURDAY}T16:00:00Z", "metadata": {"reason": "left early"}},
        )

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["event"]["kind"] == "correction"
        assert data["event"]["supersedes_event_id"] == stopped["event"]["clock_event_id"]
        assert data["work_period"]["credited_duration_minutes"] == 420

        again = await client.post(
            f"/api/v1/clock-events/{stopped['event']['clock_event_id']}/correct",
            headers=seeded.headers,
            json={"new_timestamp": f"{SATURDAY}T15:00:00Z"},
        )
        assert again.status_code == 409
        assert again.json()["code"] == "EVENT_ALREADY_SUPERSEDED"

    async def test_overlapping_correction_rejected(self, client: AsyncClient, seeded):
        await _clock(client, seeded, "start", f"{SATURDAY}T08:00:00Z")
        await _clock(client, seeded, "stop", f"{SATURDAY}T12:00:00Z")
        started = (await _clock(client, seeded, "start", f"{SATURDAY}T13:00:00Z")).json()

        response = await client.post(
            f"/api/v1/clock-events/{started['event']['clock_event_id']}/correct",
            headers=seeded.headers,
            json={"new_timestamp": f"{SATURDAY}T11:00:00Z"},
        )

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_CORRECTION"

    async def test_work_periods_and_summary(self, client: AsyncClient, seeded):
        await _clock(client, seeded, "start", f"{SATURDAY}T08:00:00Z")
        await _clock(client, seeded, "stop", f"{SATURDAY}T12:00:00Z")
        await _clock(client, seeded, "start", f"{SATURDAY}T13:00:00Z")

        params = {"start": f"{SATURDAY}T00:00:00Z", "end": "2024-03-10T00:00:00Z"}
        periods = await client.get(
            f"/api/v1/employees/{seeded.alice_id}/work-periods", headers=seeded.headers, params=params
        )
        summary = await client.get(
            f"/api/v1/employees/{seeded.alice_id}/time-summary", headers=seeded.headers, params=params
        )

        assert periods.json()["total"] == 2
        assert summary.json()["total_minutes"] == 240
        assert summary.json()["period_count"] == 1

    async def test_other_organization_is_not_found(self, client: AsyncClient, seeded):
        response = await client.get(
            f"/api/v1/employees/{seeded.alice_id}/clock-events",
            headers={"X-Organization-ID": str(uuid4())},
        )
        assert response.status_code == 404


class TestPolicies:
    """Regulations, presets, assignments and surcharge rules."""

    async def test_presets(self, client: AsyncClient, seeded):
        presets = await client.get("/api/v1/regulations/presets")
        assert {p["key"] for p in presets.json()} >= {"de_arbzg", "eu_wtd"}

        response = await client.post(
            "/api/v1/regulations/presets/import",
            headers=seeded.headers,
            json={"preset_key": "de_arbzg"},
        )

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["max_daily_minutes"] == 600
        assert [r["required_break_minutes"] for r in data["break_rules"]] == [30, 45]

    async def test_unknown_preset(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/regulations/presets/import",
            headers=seeded.headers,
            json={"preset_key": "xx_none"},
        )
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_create_regulation_and_assign(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/regulations",
            headers=seeded.headers,
            json={
                "name": "Break after six hours",
                "max_daily_minutes": 600,
                "break_rules": [
                    {
                        "threshold_minutes": 360,
                        "required_break_minutes": 30,
                        "options": [{"type": "any", "minimum_longest_split_minutes": 15}],
                    }
                ],
            },
        )
        assert response.status_code == 201, response.text
        regulation = response.json()
        assert regulation["break_rules"][0]["options"][0]["minimum_longest_split_minutes"] == 15

        assignment = await _assign(
            client, seeded, "working_time_regulation", regulation["regulation_id"]
        )
        listed = await client.get("/api/v1/policy-assignments", headers=seeded.headers)
        assert [a["policy_assignment_id"] for a in listed.json()] == [
            assignment["policy_assignment_id"]
        ]

        deactivated = await client.post(
            f"/api/v1/policy-assignments/{assignment['policy_assignment_id']}/deactivate",
            headers=seeded.headers,
        )
        assert deactivated.json()["is_active"] is False

    async def test_team_assignment_requires_team(self, client: AsyncClient, seeded):
        model = await client.post(
            "/api/v1/surcharge-models", headers=seeded.headers, json={"name": "Team model"}
        )
        response = await client.post(
            "/api/v1/policy-assignments",
            headers=seeded.headers,
            json={
                "policy_family": "surcharge_model",
                "policy_id": model.json()["surcharge_model_id"],
                "scope": "team",
                "effective_from": "2024-01-01",
            },
        )

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_POLICY_DEFINITION"

    async def test_surcharge_rules(self, client: AsyncClient, seeded):
        model_id = await _night_weekend_model(client, seeded)

        rules = await client.get(f"/api/v1/surcharge-models/{model_id}/rules", headers=seeded.headers)

        assert [r["name"] for r in rules.json()] == ["Night", "Saturday"]
        night = rules.json()[0]
        assert night["rule_kind"] == "time_window"
        assert night["window_start_time"] == "22:00"

    async def test_invalid_matcher_payload(self, client: AsyncClient, seeded):
        model = await client.post(
            "/api/v1/surcharge-models", headers=seeded.headers, json={"name": "Broken"}
        )
        response = await client.post(
            f"/api/v1/surcharge-models/{model.json()['surcharge_model_id']}/rules",
            headers=seeded.headers,
            json={
                "name": "Late",
                "percentage": "0.2",
                "matcher": {"kind": "time_window", "start": "25:00", "end": "06:00"},
            },
        )
        assert response.status_code == 422

    async def test_model_of_other_organization(self, client: AsyncClient, seeded):
        model_id = await _night_weekend_model(client, seeded)

        response = await client.get(
            f"/api/v1/surcharge-models/{model_id}/rules",
            headers={"X-Organization-ID": str(uuid4())},
        )
        assert response.status_code == 404


class TestCompliance:
    """Day evaluation, live checks and violations."""

    async def _german(self, client: AsyncClient, seeded) -> None:
        response = await client.post(
            "/api/v1/regulations/presets/import",
            headers=seeded.headers,
            json={"preset_key": "de_arbzg"},
        )
        await _assign(client, seeded, "working_time_regulation", response.json()["regulation_id"])

    async def test_stop_records_violations(self, client: AsyncClient, seeded):
        await self._german(client, seeded)
        await _clock(client, seeded, "start", "2024-03-04T07:00:00Z")
        stopped = await _clock(client, seeded, "stop", "2024-03-04T18:00:00Z")

        data = stopped.json()
        assert sorted(v["kind"] for v in data["violations"]) == [
            "break_required",
            "max_daily",
            "max_uninterrupted",
        ]
        assert data["work_period"]["credited_duration_minutes"] == 615
        assert data["work_period"]["was_adjusted"] is True

        listed = await client.get(
            "/api/v1/compliance/violations",
            headers=seeded.headers,
            params={"employee_id": str(seeded.alice_id), "kind": "max_daily"},
        )
        assert listed.json()["total"] == 1

    async def test_evaluate_is_idempotent(self, client: AsyncClient, seeded):
        await self._german(client, seeded)
        await _clock(client, seeded, "start", "2024-03-04T07:00:00Z")
        await _clock(client, seeded, "stop", "2024-03-04T18:00:00Z")

        response = await client.post(
            "/api/v1/compliance/evaluate",
            headers=seeded.headers,
            json={"employee_id": str(seeded.alice_id), "on_date": "2024-03-04"},
        )

        assert response.status_code == 200, response.text
        assert response.json()["adjusted_periods"] == []
        listed = await client.get("/api/v1/compliance/violations", headers=seeded.headers)
        assert listed.json()["total"] == 3

    async def test_live_check(self, client: AsyncClient, seeded):
        await self._german(client, seeded)
        await _clock(client, seeded, "start", "2024-03-04T08:00:00Z")

        response = await client.get(
            f"/api/v1/compliance/check/{seeded.alice_id}",
            headers=seeded.headers,
            params={"at": "2024-03-04T15:00:00Z"},
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["regulation_name"] == "German Working Hours Act"
        assert data["is_compliant"] is True
        assert {w["kind"] for w in data["warnings"]} >= {"max_uninterrupted", "break_required"}
        assert data["break_requirement"]["remaining"] == 30

    async def test_acknowledge(self, client: AsyncClient, seeded):
        await self._german(client, seeded)
        await _clock(client, seeded, "start", "2024-03-04T07:00:00Z")
        stopped = (await _clock(client, seeded, "stop", "2024-03-04T18:00:00Z")).json()
        violation_id = stopped["violations"][0]["violation_id"]
        manager = str(uuid4())

        first = await client.post(
            f"/api/v1/compliance/violations/{violation_id}/acknowledge",
            headers=seeded.headers,
            json={"acknowledged_by": manager, "note": "Overtime approved"},
        )
        second = await client.post(
            f"/api/v1/compliance/violations/{violation_id}/acknowledge",
            headers=seeded.headers,
            json={"acknowledged_by": str(uuid4())},
        )

        assert first.status_code == 200, first.text
        assert first.json()["acknowledged_by"] == manager
        assert second.status_code == 409
        assert second.json()["code"] == "VIOLATION_ALREADY_ACKNOWLEDGED"


class TestSurcharges:
    """Surcharge calculations through the API."""

    async def test_saturday_night(self, client: AsyncClient, seeded):
        await _night_weekend_model(client, seeded)
        await _clock(client, seeded, "start", f"{SATURDAY}T23:00:00Z")
        stopped = (await _clock(client, seeded, "stop", "2024-03-10T01:00:00Z")).json()

        surcharge = stopped["surcharge"]
        assert surcharge["qualifying_minutes"] == 120
        assert surcharge["surcharge_minutes"] == 36
        assert surcharge["total_credited_minutes"] == 156
        assert Decimal(surcharge["applied_percentage"]) == Decimal("0.30")

        period_id = stopped["work_period"]["work_period_id"]
        stored = await client.get(f"/api/v1/work-periods/{period_id}/surcharges", headers=seeded.headers)
        repeated = await client.post(f"/api/v1/work-periods/{period_id}/surcharges", headers=seeded.headers)
        assert stored.json()["surcharge_calculation_id"] == surcharge["surcharge_calculation_id"]
        assert repeated.json()["surcharge_calculation_id"] == surcharge["surcharge_calculation_id"]

        summary = await client.get(
            f"/api/v1/employees/{seeded.alice_id}/surcharge-summary",
            headers=seeded.headers,
            params={"start": "2024-03-04", "end": "2024-03-10"},
        )
        assert summary.json()["surcharge_minutes"] == 36
        assert summary.json()["by_rule_kind"]["time_window"]["qualifying_minutes"] == 120

    async def test_stale_calculation_delete_and_recalculate(
        self, client: AsyncClient, seeded
    ):
        await _night_weekend_model(client, seeded)
        await _clock(client, seeded, "start", f"{SATURDAY}T23:00:00Z")
        stopped = (await _clock(client, seeded, "stop", "2024-03-10T01:00:00Z")).json()
        period_id = stopped["work_period"]["work_period_id"]

        corrected = await client.post(
            f"/api/v1/clock-events/{stopped['event']['clock_event_id']}/correct",
            headers=seeded.headers,
            json={"new_timestamp": "2024-03-10T00:00:00Z"},
        )
        assert corrected.json()["stale_surcharge"] is True
        assert [c["work_period_id"] for c in corrected.json()["stale_calculations"]] == [period_id]

        conflict = await client.post(f"/api/v1/work-periods/{period_id}/surcharges", headers=seeded.headers)
        assert conflict.status_code == 409
        assert conflict.json()["code"] == "DUPLICATE_CALCULATION"

        deleted = await client.delete(f"/api/v1/work-periods/{period_id}/surcharges", headers=seeded.headers)
        assert deleted.status_code == 204

        recalculated = await client.post(
            f"/api/v1/work-periods/{period_id}/surcharges", headers=seeded.headers
        )
        assert recalculated.status_code == 200, recalculated.text
        assert recalculated.json()["surcharge_minutes"] == 18

    async def test_open_period_not_final(self, client: AsyncClient, seeded):
        started = (await _clock(client, seeded, "start", f"{SATURDAY}T23:00:00Z")).json()

        response = await client.post(
            f"/api/v1/work-periods/{started['work_period']['work_period_id']}/surcharges",
            headers=seeded.headers,
        )

        assert response.status_code == 409
        assert response.json()["code"] == "PERIOD_NOT_FINAL"

    async def test_missing_calculation(self, client: AsyncClient, seeded):
        started = (await _clock(client, seeded, "start", f"{SATURDAY}T23:00:00Z")).json()

        response = await client.get(
            f"/api/v1/work-periods/{started['work_period']['work_period_id']}/surcharges",
            headers=seeded.headers,
        )
        assert response.status_code == 404

    async def test_finalize_rejects_final_period(self, client: AsyncClient, seeded):
        await _clock(client, seeded, "start", f"{SATURDAY}T09:00:00Z")
        stopped = (await _clock(client, seeded, "stop", f"{SATURDAY}T10:00:00Z")).json()

        response = await client.post(
            f"/api/v1/work-periods/{stopped['work_period']['work_period_id']}/finalize",
            headers=seeded.headers,
        )
        assert response.status_code == 409
