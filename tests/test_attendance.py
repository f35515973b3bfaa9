"""Tests for the attendance-day state machine."""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from geoattend.core.exceptions import InvalidTimestamp
from geoattend.models.activity import AuditLog
from geoattend.models.employee import AttendanceDay, AttendanceStatus
from geoattend.services.attendance import (REASON_MAX_LENGTH, AlreadyCheckedIn,
                                           AlreadyComplete, CheckedIn,
                                           CheckedOut, NotCheckedIn,
                                           OutOfRange, ReasonAttached,
                                           ReasonNotApplicable)
from tests.conftest import OFFICE, local, north_of_office


# ── Check-in ────────────────────────────────────────────────────────
async def test_on_time_check_in(services, make_employee):
    emp = await make_employee("Alice")
    result = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), north_of_office(20))

    assert isinstance(result, CheckedIn)
    assert result.is_late is False
    assert result.minutes_late == 0
    assert result.reason_needed is False
    assert result.record.status == AttendanceStatus.CHECKED_IN.value
    assert result.record.date == "2025-03-03"
    assert result.distance_meters == pytest.approx(20, abs=0.01)


async def test_check_in_exactly_at_start_is_on_time(services, make_employee):
    emp = await make_employee()
    result = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 0), OFFICE)
    assert isinstance(result, CheckedIn)
    assert result.is_late is False


async def test_late_check_in_alerts_admins(services, make_employee, admin_chat, transport):
    emp = await make_employee("Bob", last_name="Hany")
    result = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 17), OFFICE)

    assert isinstance(result, CheckedIn)
    assert result.is_late is True
    assert result.minutes_late == 17
    assert result.reason_needed is True
    alerts = transport.texts_to(admin_chat.telegram_id)
    assert len(alerts) == 1
    assert "17 minutes late" in alerts[0]


async def test_lateness_uses_configured_timezone(services, make_employee):
    """08:30 UTC is 10:30 in Cairo: late even though the UTC clock reads before 09:00."""
    emp = await make_employee()
    result = await services.attendance.request_check_in(
        emp.id, datetime(2025, 3, 3, 8, 30, tzinfo=timezone.utc), OFFICE
    )
    assert isinstance(result, CheckedIn)
    assert result.is_late is True
    assert result.minutes_late == 90


async def test_out_of_range_check_in_creates_nothing(services, make_employee, db_session):
    emp = await make_employee()
    result = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), north_of_office(101))

    assert isinstance(result, OutOfRange)
    assert result.distance_meters == pytest.approx(101, abs=0.01)
    count = await db_session.execute(select(func.count(AttendanceDay.id)))
    assert count.scalar() == 0


async def test_duplicate_check_in_rejected(services, make_employee):
    emp = await make_employee()
    first = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), OFFICE)
    second = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 30), OFFICE)

    assert isinstance(first, CheckedIn)
    assert isinstance(second, AlreadyCheckedIn)
    # The original check-in is untouched
    assert second.record.is_late is False


async def test_concurrent_check_ins_produce_one_record(services, make_employee, db_session):
    emp = await make_employee()
    results = await asyncio.gather(
        *(
            services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 50 + i), OFFICE)
            for i in range(5)
        )
    )

    assert sum(isinstance(r, CheckedIn) for r in results) == 1
    assert sum(isinstance(r, AlreadyCheckedIn) for r in results) == 4
    count = await db_session.execute(select(func.count(AttendanceDay.id)))
    assert count.scalar() == 1


async def test_check_in_on_not_started_row(services, make_employee, store):
    emp = await make_employee()
    placeholder = await store.create_attendance_day(emp.id, "2025-03-03")
    assert placeholder.status == AttendanceStatus.NOT_STARTED.value

    result = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), OFFICE)
    assert isinstance(result, CheckedIn)
    assert result.record.id == placeholder.id


# ── Check-out ───────────────────────────────────────────────────────
async def test_early_check_out(services, make_employee, admin_chat, transport):
    emp = await make_employee("Carol")
    await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), OFFICE)
    result = await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 16, 0), north_of_office(30))

    assert isinstance(result, CheckedOut)
    assert result.is_early is True
    assert result.minutes_early == 60
    assert result.working_hours == pytest.approx(7.08, abs=0.01)
    assert result.record.status == AttendanceStatus.COMPLETE.value
    assert any("minutes early" in t for t in transport.texts_to(admin_chat.telegram_id))


async def test_full_day_check_out(services, make_employee):
    emp = await make_employee()
    await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), OFFICE)
    result = await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 17, 0), OFFICE)

    assert isinstance(result, CheckedOut)
    assert result.is_early is False
    assert result.reason_needed is False
    assert result.working_hours == pytest.approx(8.08, abs=0.01)


async def test_check_out_without_check_in(services, make_employee):
    emp = await make_employee()
    result = await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 17, 0), OFFICE)
    assert isinstance(result, NotCheckedIn)


async def test_check_out_out_of_range(services, make_employee, store):
    emp = await make_employee()
    await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), OFFICE)
    result = await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 17, 0), north_of_office(500))

    assert isinstance(result, OutOfRange)
    record = await store.find_attendance_day(emp.id, "2025-03-03")
    assert record.status == AttendanceStatus.CHECKED_IN.value


async def test_second_check_out_and_check_in_after_complete(services, make_employee):
    emp = await make_employee()
    await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), OFFICE)
    await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 17, 5), OFFICE)

    again_out = await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 18, 0), OFFICE)
    again_in = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 18, 5), OFFICE)
    assert isinstance(again_out, AlreadyComplete)
    assert isinstance(again_in, AlreadyComplete)


async def test_check_out_before_check_in_time_rejected(services, make_employee):
    emp = await make_employee()
    await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 30), OFFICE)
    with pytest.raises(InvalidTimestamp):
        await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 9, 30), OFFICE)


async def test_check_in_fields_are_immutable(services, make_employee, store):
    emp = await make_employee()
    result = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 20), OFFICE)

    with pytest.raises(ValueError):
        await store.update_attendance_day(
            result.record.id, {"is_late": False}, expected_status=AttendanceStatus.CHECKED_IN
        )
    await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 17, 0), OFFICE)
    with pytest.raises(ValueError):
        await store.update_attendance_day(
            result.record.id, {"is_early_departure": True}, expected_status=AttendanceStatus.COMPLETE
        )
    record = await store.get_attendance_day(result.record.id)
    assert record.is_late is True
    assert record.is_early_departure is False


async def test_transitions_are_audited(services, make_employee, db_session):
    emp = await make_employee()
    await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 55), OFFICE)
    await services.attendance.request_check_out(emp.id, local(2025, 3, 3, 17, 0), OFFICE)

    rows = await db_session.execute(select(AuditLog.type).order_by(AuditLog.id))
    assert rows.scalars().all() == ["check_in", "check_out"]


async def test_alert_failure_does_not_abort_check_in(services, make_employee, admin_chat, transport):
    transport.failing.add(admin_chat.telegram_id)
    emp = await make_employee()
    result = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 45), OFFICE)
    assert isinstance(result, CheckedIn)
    assert result.is_late is True


# ── Reasons ─────────────────────────────────────────────────────────
async def test_attach_late_reason(services, make_employee, store):
    emp = await make_employee()
    checked_in = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 10), OFFICE)

    result = await services.attendance.attach_reason(checked_in.record.id, "late", "  Traffic jam ")
    assert isinstance(result, ReasonAttached)
    record = await store.get_attendance_day(checked_in.record.id)
    assert record.late_reason == "Traffic jam"


async def test_reason_refused_when_flag_not_set(services, make_employee, store):
    emp = await make_employee()
    checked_in = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 50), OFFICE)

    late = await services.attendance.attach_reason(checked_in.record.id, "late", "Traffic")
    early = await services.attendance.attach_reason(checked_in.record.id, "early", "Doctor")
    assert isinstance(late, ReasonNotApplicable)
    assert isinstance(early, ReasonNotApplicable)
    record = await store.get_attendance_day(checked_in.record.id)
    assert record.late_reason is None
    assert record.early_reason is None


async def test_empty_reason_rejected(services, make_employee):
    emp = await make_employee()
    checked_in = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 10), OFFICE)
    with pytest.raises(ValueError):
        await services.attendance.attach_reason(checked_in.record.id, "late", "   ")


async def test_long_reason_truncated(services, make_employee, store):
    emp = await make_employee()
    checked_in = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 9, 10), OFFICE)
    await services.attendance.attach_reason(checked_in.record.id, "late", "x" * 900)
    record = await store.get_attendance_day(checked_in.record.id)
    assert len(record.late_reason) == REASON_MAX_LENGTH
