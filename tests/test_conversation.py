"""Tests for per-user conversation state: TTL, overwrite, and each dialogue kind."""

from datetime import timedelta

from sqlalchemy import select

from geoattend.models.activity import AuditLog
from geoattend.services.conversation import (ChangeInfo, Completed,
                                             EarlyReason, LateReason,
                                             LeaveRequest, NeedsInput,
                                             NoActiveConversation,
                                             OvertimeRequest)
from tests.conftest import OFFICE, local


async def _late_record(services, employee):
    result = await services.attendance.request_check_in(employee.id, local(2025, 3, 3, 9, 25), OFFICE)
    return result.record


# ── Lifecycle ───────────────────────────────────────────────────────
async def test_begin_and_active(services, clock):
    expires_at = await services.conversations.begin("42", LateReason(attendance_id=7))

    assert expires_at == clock.now() + timedelta(minutes=60)
    active = await services.conversations.active("42")
    assert isinstance(active.payload, LateReason)
    assert active.payload.attendance_id == 7
    assert active.step == 1


async def test_non_reason_dialogues_use_default_ttl(services, clock):
    expires_at = await services.conversations.begin("42", OvertimeRequest())
    assert expires_at == clock.now() + timedelta(minutes=30)


async def test_expired_conversation_is_gone(services, clock, store):
    await services.conversations.begin("42", LateReason(attendance_id=7))
    clock.advance(timedelta(minutes=60))

    assert await services.conversations.active("42") is None
    assert await store.get_conversation("42") is None
    outcome = await services.conversations.consume("42", "Traffic")
    assert isinstance(outcome, NoActiveConversation)


async def test_begin_overwrites_previous_dialogue(services):
    await services.conversations.begin("42", LateReason(attendance_id=7))
    await services.conversations.begin("42", ChangeInfo(field="department"))

    active = await services.conversations.active("42")
    assert isinstance(active.payload, ChangeInfo)


async def test_cancel(services):
    await services.conversations.begin("42", OvertimeRequest())
    assert await services.conversations.cancel("42") is True
    assert await services.conversations.cancel("42") is False
    assert await services.conversations.active("42") is None


async def test_expire_sweep(services, clock):
    await services.conversations.begin("1", LateReason(attendance_id=1))
    await services.conversations.begin("2", OvertimeRequest())
    clock.advance(timedelta(minutes=45))

    removed = await services.conversations.expire_sweep()
    assert removed == 1
    assert await services.conversations.active("1") is not None
    assert await services.conversations.active("2") is None


async def test_unreadable_payload_discarded(services, store, clock):
    await store.put_conversation("42", "late_reason", {"attendance_id": "not-a-number"}, clock.now() + timedelta(hours=1))
    assert await services.conversations.active("42") is None
    assert await store.get_conversation("42") is None


# ── Reasons ─────────────────────────────────────────────────────────
async def test_late_reason_recorded(services, make_employee, store):
    emp = await make_employee(telegram_id="42")
    record = await _late_record(services, emp)
    await services.conversations.begin("42", LateReason(attendance_id=record.id))

    outcome = await services.conversations.consume("42", "Car broke down", emp)
    assert isinstance(outcome, Completed)
    assert "recorded" in outcome.reply
    assert (await store.get_attendance_day(record.id)).late_reason == "Car broke down"
    assert await services.conversations.active("42") is None


async def test_reason_for_on_time_record_not_applicable(services, make_employee, store):
    emp = await make_employee(telegram_id="42")
    on_time = await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 45), OFFICE)
    await services.conversations.begin("42", EarlyReason(attendance_id=on_time.record.id))

    outcome = await services.conversations.consume("42", "Doctor", emp)
    assert isinstance(outcome, Completed)
    assert "No reason is needed" in outcome.reply
    assert (await store.get_attendance_day(on_time.record.id)).early_reason is None


async def test_empty_reason_keeps_dialogue_open(services, make_employee, store):
    emp = await make_employee(telegram_id="42")
    record = await _late_record(services, emp)
    await services.conversations.begin("42", LateReason(attendance_id=record.id))

    outcome = await services.conversations.consume("42", "   ", emp)
    assert isinstance(outcome, NeedsInput)
    active = await services.conversations.active("42")
    assert active.step == 2


# ── Requests ────────────────────────────────────────────────────────
async def test_leave_request_notifies_admins(services, make_employee, admin_chat, transport, db_session):
    emp = await make_employee("Dina", telegram_id="42")
    await services.conversations.begin("42", LeaveRequest(leave_type="sick"))

    outcome = await services.conversations.consume("42", "10/03/2025 12/03/2025 Flu", emp)
    assert isinstance(outcome, Completed)
    alerts = transport.texts_to(admin_chat.telegram_id)
    assert len(alerts) == 1
    assert "Leave Request" in alerts[0]
    assert "3 day(s)" in alerts[0]

    audit = (await db_session.execute(select(AuditLog).where(AuditLog.type == "leave_request"))).scalar_one()
    assert audit.details["start"] == "2025-03-10"
    assert audit.details["leave_type"] == "sick"


async def test_leave_request_with_bad_dates_asks_again(services, make_employee, transport):
    emp = await make_employee(telegram_id="42")
    await services.conversations.begin("42", LeaveRequest())

    backwards = await services.conversations.consume("42", "12/03/2025 10/03/2025 Trip", emp)
    garbage = await services.conversations.consume("42", "next week please", emp)
    assert isinstance(backwards, NeedsInput)
    assert isinstance(garbage, NeedsInput)
    assert transport.sent == []


async def test_overtime_request(services, make_employee, admin_chat, transport):
    emp = await make_employee(telegram_id="42")
    await services.conversations.begin("42", OvertimeRequest())

    bad = await services.conversations.consume("42", "05/03/2025 20:00-17:00 Deadline", emp)
    good = await services.conversations.consume("42", "05/03/2025 17:00-20:00 Deadline", emp)
    assert isinstance(bad, NeedsInput)
    assert isinstance(good, Completed)
    assert "Overtime Request" in transport.texts_to(admin_chat.telegram_id)[0]


async def test_request_requires_registration(services):
    await services.conversations.begin("42", OvertimeRequest())
    outcome = await services.conversations.consume("42", "05/03/2025 17:00-20:00 Deadline", None)
    assert isinstance(outcome, Completed)
    assert "register" in outcome.reply


# ── Profile edits ───────────────────────────────────────────────────
async def test_change_name(services, make_employee, store):
    emp = await make_employee("Old", telegram_id="42")
    await services.conversations.begin("42", ChangeInfo(field="name"))

    outcome = await services.conversations.consume("42", "Mona Adel Hassan", emp)
    assert isinstance(outcome, Completed)
    updated = await store.get_employee(emp.id)
    assert updated.first_name == "Mona"
    assert updated.last_name == "Adel Hassan"


async def test_change_phone_validated(services, make_employee, store):
    emp = await make_employee(telegram_id="42")
    await services.conversations.begin("42", ChangeInfo(field="phone"))

    rejected = await services.conversations.consume("42", "call me maybe", emp)
    accepted = await services.conversations.consume("42", "+20 100 123 4567", emp)
    assert isinstance(rejected, NeedsInput)
    assert isinstance(accepted, Completed)
    assert (await store.get_employee(emp.id)).phone == "+20 100 123 4567"
