"""Tests for persisted surcharge calculations."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from worktime_engine.exceptions import (
    DuplicateCalculation,
    InvalidPolicyDefinition,
    NotFoundError,
    PeriodNotFinal,
)
from worktime_engine.models import SurchargeCalculation, SurchargeRule
from worktime_engine.services.event_ledger import EventLedger
from worktime_engine.services.policy_admin import PolicyAdminService
from worktime_engine.services.surcharge_calculator import SurchargeCalculator
from worktime_engine.services.work_period_deriver import WorkPeriodDeriver

SATURDAY_23 = datetime(2024, 3, 9, 23, 0, tzinfo=timezone.utc)


async def _final_period(session, employee_id, start: datetime, end: datetime):
    ledger = EventLedger(session)
    deriver = WorkPeriodDeriver(session)
    await deriver.apply(await ledger.append(employee_id, "start", start))
    period = await deriver.apply(await ledger.append(employee_id, "stop", end))
    return await deriver.mark_final(period)


class TestCalculate:
    """One immutable calculation per final period."""

    @pytest.mark.asyncio
    async def test_saturday_night(self, session, employee, night_weekend_model, zone):
        period = await _final_period(
            session, employee.employee_id, SATURDAY_23, SATURDAY_23 + timedelta(hours=2)
        )
        calculator = SurchargeCalculator(session, zone=zone, engine_version="test")

        calculation = await calculator.calculate(period.work_period_id)

        assert calculation.base_minutes == 120
        assert calculation.qualifying_minutes == 120
        assert calculation.surcharge_minutes == 36
        assert calculation.total_credited_minutes == 156
        assert calculation.applied_percentage == Decimal("0.3000")
        assert calculation.surcharge_model_id == night_weekend_model.surcharge_model_id
        assert calculation.calculation_date == date(2024, 3, 9)
        assert calculation.overlap_policy == "max_wins"
        assert calculation.engine_version == "test"

        details = calculation.calculation_details
        assert details["model_name"] == "Night and weekend"
        assert details["timezone"] == "UTC"
        assert [r["rule_name"] for r in details["rules_applied"]] == ["Night"]
        assert calculation.surcharge_rule_id is not None

    @pytest.mark.asyncio
    async def test_repeat_returns_stored_record(self, session, employee, night_weekend_model, zone):
        period = await _final_period(
            session, employee.employee_id, SATURDAY_23, SATURDAY_23 + timedelta(hours=2)
        )
        calculator = SurchargeCalculator(session, zone=zone)

        first = await calculator.calculate(period.work_period_id)
        second = await calculator.calculate(period.work_period_id)

        assert second.surcharge_calculation_id == first.surcharge_calculation_id

    @pytest.mark.asyncio
    async def test_concurrent_calculation_returns_winner(
        self, session, employee, night_weekend_model, zone, monkeypatch
    ):
        """A calculation stored between the existence check and the insert wins."""
        period = await _final_period(
            session, employee.employee_id, SATURDAY_23, SATURDAY_23 + timedelta(hours=2)
        )
        calculator = SurchargeCalculator(session, zone=zone)
        winner = await calculator.calculate(period.work_period_id)

        lookup = calculator.get_calculation
        lookups = []

        async def missed_concurrent_insert(work_period_id):
            lookups.append(work_period_id)
            if len(lookups) == 1:
                return None
            return await lookup(work_period_id)

        monkeypatch.setattr(calculator, "get_calculation", missed_concurrent_insert)

        result = await calculator.calculate(period.work_period_id)

        assert len(lookups) == 2
        assert result.surcharge_calculation_id == winner.surcharge_calculation_id
        stored = await session.scalars(
            select(SurchargeCalculation).where(
                SurchargeCalculation.work_period_id == period.work_period_id
            )
        )
        assert len(stored.all()) == 1

    @pytest.mark.asyncio
    async def test_no_model_records_zero(self, session, employee, zone):
        period = await _final_period(
            session, employee.employee_id, SATURDAY_23, SATURDAY_23 + timedelta(hours=2)
        )
        calculator = SurchargeCalculator(session, zone=zone)

        calculation = await calculator.calculate(period.work_period_id)

        assert calculation.surcharge_model_id is None
        assert calculation.surcharge_rule_id is None
        assert calculation.base_minutes == 120
        assert calculation.surcharge_minutes == 0
        assert calculation.calculation_details["rules_applied"] == []

    @pytest.mark.asyncio
    async def test_requires_final_period(self, session, employee, zone):
        ledger = EventLedger(session)
        deriver = WorkPeriodDeriver(session)
        await deriver.apply(await ledger.append(employee.employee_id, "start", SATURDAY_23))
        period = await deriver.apply(
            await ledger.append(employee.employee_id, "stop", SATURDAY_23 + timedelta(hours=1))
        )
        calculator = SurchargeCalculator(session, zone=zone)

        with pytest.raises(PeriodNotFinal) as exc_info:
            await calculator.calculate(period.work_period_id)
        assert exc_info.value.status == "closed"

    @pytest.mark.asyncio
    async def test_unknown_period(self, session, zone):
        calculator = SurchargeCalculator(session, zone=zone)
        with pytest.raises(NotFoundError):
            await calculator.calculate(uuid4())

    @pytest.mark.asyncio
    async def test_changed_span_needs_explicit_delete(
        self, session, employee, night_weekend_model, zone
    ):
        period = await _final_period(
            session, employee.employee_id, SATURDAY_23, SATURDAY_23 + timedelta(hours=2)
        )
        calculator = SurchargeCalculator(session, zone=zone)
        original = await calculator.calculate(period.work_period_id)

        period.end_time = SATURDAY_23 + timedelta(hours=1)
        period.credited_duration_minutes = 60
        await session.flush()

        assert calculator.is_stale(original, period)
        with pytest.raises(DuplicateCalculation) as exc_info:
            await calculator.calculate(period.work_period_id)
        assert exc_info.value.calculation_id == original.surcharge_calculation_id

        deleted_id = await calculator.delete_calculation(period.work_period_id)
        recalculated = await calculator.calculate(period.work_period_id)

        assert deleted_id == original.surcharge_calculation_id
        assert recalculated.surcharge_calculation_id != original.surcharge_calculation_id
        assert recalculated.base_minutes == 60
        assert recalculated.surcharge_minutes == 18

    @pytest.mark.asyncio
    async def test_delete_missing_calculation(self, session, zone):
        calculator = SurchargeCalculator(session, zone=zone)
        with pytest.raises(NotFoundError):
            await calculator.delete_calculation(uuid4())

    @pytest.mark.asyncio
    async def test_inactive_rule_ignored(self, session, employee, night_weekend_model, zone):
        night = await session.scalar(
            select(SurchargeRule).where(
                SurchargeRule.surcharge_model_id == night_weekend_model.surcharge_model_id,
                SurchargeRule.name == "Night",
            )
        )
        await PolicyAdminService(session).deactivate_surcharge_rule(night.surcharge_rule_id)
        period = await _final_period(
            session, employee.employee_id, SATURDAY_23, SATURDAY_23 + timedelta(hours=2)
        )
        calculator = SurchargeCalculator(session, zone=zone)

        calculation = await calculator.calculate(period.work_period_id)

        assert calculation.qualifying_minutes == 60
        assert calculation.surcharge_minutes == 15


class TestSummary:
    @pytest.mark.asyncio
    async def test_summary_by_rule_kind(self, session, employee, night_weekend_model, zone):
        calculator = SurchargeCalculator(session, zone=zone)
        saturday_day = await _final_period(
            session,
            employee.employee_id,
            SATURDAY_23 - timedelta(hours=14),
            SATURDAY_23 - timedelta(hours=10),
        )
        night = await _final_period(
            session, employee.employee_id, SATURDAY_23, SATURDAY_23 + timedelta(hours=2)
        )
        await calculator.calculate(night.work_period_id)
        await calculator.calculate(saturday_day.work_period_id)

        summary = await calculator.surcharge_summary(
            employee.employee_id, date(2024, 3, 4), date(2024, 3, 10)
        )

        assert summary.calculation_count == 2
        assert summary.base_minutes == 360
        assert summary.surcharge_minutes == 36 + 60
        assert summary.total_credited_minutes == 456
        assert summary.by_rule_kind["time_window"]["qualifying_minutes"] == 120
        assert summary.by_rule_kind["day_of_week"]["surcharge_minutes"] == 60


class TestRuleDefinition:
    @pytest.mark.asyncio
    async def test_invalid_matchers_rejected(self, session, organization_id):
        admin = PolicyAdminService(session)
        model = await admin.define_surcharge_model(organization_id, "Broken")

        with pytest.raises(InvalidPolicyDefinition):
            await admin.define_surcharge_rule(
                model.surcharge_model_id, "No day", "day_of_week", Decimal("0.1"), day_of_week="funday"
            )
        with pytest.raises(InvalidPolicyDefinition):
            await admin.define_surcharge_rule(
                model.surcharge_model_id, "No window", "time_window", Decimal("0.1"),
                window_start_time="22:00",
            )
        with pytest.raises(InvalidPolicyDefinition):
            await admin.define_surcharge_rule(
                model.surcharge_model_id, "Backwards", "date_based", Decimal("0.1"),
                date_range_start=date(2024, 12, 31), date_range_end=date(2024, 12, 24),
            )
        with pytest.raises(InvalidPolicyDefinition):
            await admin.define_surcharge_rule(
                model.surcharge_model_id, "Negative", "time_window", Decimal("-0.1"),
                window_start_time="22:00", window_end_time="06:00",
            )
