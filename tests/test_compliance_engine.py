"""Tests for working-time compliance evaluation."""

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from worktime_engine.calculators.types import Severity
from worktime_engine.exceptions import ViolationAlreadyAcknowledged
from worktime_engine.services.compliance_engine import ComplianceEngine
from worktime_engine.services.event_ledger import EventLedger
from worktime_engine.services.work_period_deriver import WorkPeriodDeriver

MONDAY = date(2024, 3, 4)


def _t(hour: int, minute: int = 0, day: int = 4) -> datetime:
    return datetime(2024, 3, day, hour, minute, tzinfo=timezone.utc)


async def _work(session, employee_id, start: datetime, end: datetime | None):
    ledger = EventLedger(session)
    deriver = WorkPeriodDeriver(session)
    period = await deriver.apply(await ledger.append(employee_id, "start", start))
    if end is not None:
        period = await deriver.apply(await ledger.append(employee_id, "stop", end))
    return period


class TestBreakDeduction:
    """Unmet break requirements shrink the day's last period."""

    @pytest.mark.asyncio
    async def test_ten_hours_without_break(self, session, employee, break_regulation, zone):
        """09:00-19:00 without a break: 30 minutes are deducted and recorded."""
        period = await _work(session, employee.employee_id, _t(9), _t(19))
        engine = ComplianceEngine(session, zone=zone)

        result = await engine.evaluate(employee.employee_id, MONDAY)

        assert result.regulation_id == break_regulation.regulation_id
        assert period.original_duration_minutes == 600
        assert period.credited_duration_minutes == 570
        assert period.end_time == _t(18, 30)
        assert period.original_end_time == _t(19)
        assert period.was_adjusted is True
        assert period.adjustment_reason["kind"] == "break_required"
        assert period.adjustment_reason["deducted_minutes"] == 30

        assert len(result.violations) == 1
        violation = result.violations[0]
        assert violation.kind == "break_required"
        assert violation.details["deficit_minutes"] == 30
        assert violation.work_period_id == period.work_period_id
        assert not result.is_compliant

    @pytest.mark.asyncio
    async def test_evaluation_is_idempotent(self, session, employee, break_regulation, zone):
        period = await _work(session, employee.employee_id, _t(9), _t(19))
        engine = ComplianceEngine(session, zone=zone)

        await engine.evaluate(employee.employee_id, MONDAY)
        again = await engine.evaluate(employee.employee_id, MONDAY)

        assert period.credited_duration_minutes == 570
        assert again.adjusted_periods == []
        violations = await engine.get_violations(employee_id=employee.employee_id)
        assert len(violations) == 1

    @pytest.mark.asyncio
    async def test_sufficient_break_is_compliant(self, session, employee, break_regulation, zone):
        await _work(session, employee.employee_id, _t(9), _t(13))
        afternoon = await _work(session, employee.employee_id, _t(13, 30), _t(17, 30))
        engine = ComplianceEngine(session, zone=zone)

        result = await engine.evaluate(employee.employee_id, MONDAY)

        assert result.is_compliant
        assert result.break_requirement.satisfied
        assert afternoon.was_adjusted is False

    @pytest.mark.asyncio
    async def test_short_break_deducts_remainder_from_last_period(
        self, session, employee, break_regulation, zone
    ):
        morning = await _work(session, employee.employee_id, _t(8), _t(12))
        afternoon = await _work(session, employee.employee_id, _t(12, 20), _t(16, 20))
        engine = ComplianceEngine(session, zone=zone)

        result = await engine.evaluate(employee.employee_id, MONDAY)

        assert morning.was_adjusted is False
        assert afternoon.credited_duration_minutes == 230
        assert result.violations[0].details["deficit_minutes"] == 10

    @pytest.mark.asyncio
    async def test_no_regulation_means_no_checks(self, session, employee, zone):
        period = await _work(session, employee.employee_id, _t(6), _t(20))
        engine = ComplianceEngine(session, zone=zone)

        result = await engine.evaluate(employee.employee_id, MONDAY)

        assert result.regulation_id is None
        assert result.violations == []
        assert period.credited_duration_minutes == 840

    @pytest.mark.asyncio
    async def test_open_period_is_ignored(self, session, employee, break_regulation, zone):
        period = await _work(session, employee.employee_id, _t(9), None)
        engine = ComplianceEngine(session, zone=zone)

        result = await engine.evaluate(employee.employee_id, MONDAY)

        assert result.violations == []
        assert period.status == "open"


class TestLimits:
    """Daily, weekly and uninterrupted limits record violations only."""

    @pytest.mark.asyncio
    async def test_german_limits(self, session, employee, german_regulation, zone):
        """11 hours straight breaks the daily and uninterrupted limits."""
        period = await _work(session, employee.employee_id, _t(7), _t(18))
        engine = ComplianceEngine(session, zone=zone)

        result = await engine.evaluate(employee.employee_id, MONDAY)

        kinds = sorted(v.kind for v in result.violations)
        assert kinds == ["break_required", "max_daily", "max_uninterrupted"]
        daily = next(v for v in result.violations if v.kind == "max_daily")
        assert daily.details == {"actual_minutes": 660, "limit_minutes": 600}
        uninterrupted = next(v for v in result.violations if v.kind == "max_uninterrupted")
        assert uninterrupted.work_period_id == period.work_period_id
        # 45 minute rule applies above 9 hours
        assert period.credited_duration_minutes == 615

    @pytest.mark.asyncio
    async def test_weekly_limit(self, session, employee, german_regulation, zone):
        """Six 8.5 hour days with breaks exceed the 48 hour week on Saturday."""
        engine = ComplianceEngine(session, zone=zone)
        for day in range(4, 9):
            await _work(session, employee.employee_id, _t(8, day=day), _t(12, day=day))
            await _work(session, employee.employee_id, _t(12, 30, day=day), _t(17, day=day))
        friday = await engine.evaluate(employee.employee_id, date(2024, 3, 8))

        await _work(session, employee.employee_id, _t(8, day=9), _t(12, day=9))
        await _work(session, employee.employee_id, _t(12, 30, day=9), _t(17, day=9))
        saturday = await engine.evaluate(employee.employee_id, date(2024, 3, 9))

        assert friday.violations == []
        weekly = [v for v in saturday.violations if v.kind == "max_weekly"]
        assert len(weekly) == 1
        assert weekly[0].details["actual_minutes"] == 3060
        assert weekly[0].details["limit_minutes"] == 2880


class TestCheckSession:
    """Live, non-persisted checks."""

    @pytest.mark.asyncio
    async def test_running_session_warnings(self, session, employee, german_regulation, zone):
        await _work(session, employee.employee_id, _t(8), None)
        engine = ComplianceEngine(session, zone=zone)

        check = await engine.check_session(employee.employee_id, _t(15))

        assert check.regulation.name == "German Working Hours Act"
        kinds = {w.kind: w for w in check.warnings}
        assert kinds["max_uninterrupted"].severity == Severity.WARNING
        assert kinds["max_uninterrupted"].actual_minutes == 420
        assert kinds["break_required"].limit_minutes == 30
        assert check.is_compliant
        assert check.break_requirement.remaining == 30
        assert await engine.get_violations(employee_id=employee.employee_id) == []

    @pytest.mark.asyncio
    async def test_daily_limit_is_violation_severity(self, session, employee, german_regulation, zone):
        await _work(session, employee.employee_id, _t(6), None)
        engine = ComplianceEngine(session, zone=zone)

        check = await engine.check_session(employee.employee_id, _t(17))

        assert not check.is_compliant
        assert any(w.kind == "max_daily" and w.severity == Severity.VIOLATION for w in check.warnings)

    @pytest.mark.asyncio
    async def test_without_regulation(self, session, employee, zone):
        engine = ComplianceEngine(session, zone=zone)

        check = await engine.check_session(employee.employee_id, _t(12))

        assert check.regulation is None
        assert check.is_compliant


class TestViolationReporting:
    @pytest.mark.asyncio
    async def test_filters(self, session, employee, other_employee, german_regulation, zone):
        await _work(session, employee.employee_id, _t(7), _t(18))
        await _work(session, other_employee.employee_id, _t(9), _t(16))
        engine = ComplianceEngine(session, zone=zone)
        await engine.evaluate(employee.employee_id, MONDAY)
        await engine.evaluate(other_employee.employee_id, MONDAY)

        org_wide = await engine.get_violations(organization_id=employee.organization_id)
        daily_only = await engine.get_violations(
            organization_id=employee.organization_id, kind="max_daily"
        )
        other = await engine.get_violations(employee_id=other_employee.employee_id)
        next_week = await engine.get_violations(
            employee_id=employee.employee_id, start=date(2024, 3, 11)
        )

        assert len(org_wide) == 5
        assert [v.employee_id for v in daily_only] == [employee.employee_id]
        assert sorted(v.kind for v in other) == ["break_required", "max_uninterrupted"]
        assert next_week == []

    @pytest.mark.asyncio
    async def test_subject_required(self, session):
        engine = ComplianceEngine(session)
        with pytest.raises(ValueError):
            await engine.get_violations()

    @pytest.mark.asyncio
    async def test_acknowledge_once(self, session, employee, break_regulation, zone):
        await _work(session, employee.employee_id, _t(9), _t(19))
        engine = ComplianceEngine(session, zone=zone)
        result = await engine.evaluate(employee.employee_id, MONDAY)
        violation = result.violations[0]
        manager = uuid4()

        acknowledged = await engine.acknowledge_violation(
            violation.violation_id, manager, note="Discussed with employee"
        )

        assert acknowledged.acknowledged_by == manager
        assert acknowledged.acknowledged_at is not None
        assert acknowledged.acknowledged_note == "Discussed with employee"
        assert await engine.get_violations(employee_id=employee.employee_id, acknowledged=False) == []

        with pytest.raises(ViolationAlreadyAcknowledged):
            await engine.acknowledge_violation(violation.violation_id, uuid4())
        assert violation.acknowledged_by == manager

