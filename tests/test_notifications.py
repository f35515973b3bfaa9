"""Tests for the notification dispatcher: failure isolation and delivery logging."""

import pytest
from sqlalchemy import select, update

from geoattend.models.activity import NOTIFICATION_MESSAGE_LIMIT, NotificationLog
from geoattend.models.admin import Admin


async def _logs(db_session):
    result = await db_session.execute(select(NotificationLog).order_by(NotificationLog.id))
    return result.scalars().all()


async def test_send_success_is_logged(services, transport, db_session):
    result = await services.dispatcher.send("55", "Hello", kind="custom")

    assert result.success is True
    assert transport.texts_to("55") == ["Hello"]
    logs = await _logs(db_session)
    assert len(logs) == 1
    assert logs[0].success is True
    assert logs[0].recipient == "55"
    assert logs[0].type == "custom"


async def test_send_failure_never_raises(services, transport, db_session):
    transport.failing.add("55")
    result = await services.dispatcher.send("55", "Hello")

    assert result.success is False
    assert "not found" in result.error
    logs = await _logs(db_session)
    assert len(logs) == 1
    assert logs[0].success is False
    assert "not found" in logs[0].error


async def test_long_message_truncated_in_log(services, db_session):
    await services.dispatcher.send("55", "x" * 2000)
    logs = await _logs(db_session)
    assert len(logs[0].message) == NOTIFICATION_MESSAGE_LIMIT


async def test_broadcast_counts_and_isolates_failures(services, transport, db_session):
    transport.failing.add("2")
    result = await services.dispatcher.broadcast(["1", "2", "3", "1"], "News")

    assert result.total == 3
    assert result.successful == 2
    assert result.failed == 1
    assert [f.recipient for f in result.failures] == ["2"]
    assert len(await _logs(db_session)) == 3


async def test_notify_admins_only_active(services, store, transport, db_session):
    await store.add_admin("10", "A")
    await store.add_admin("11", "B")
    inactive = await store.add_admin("12", "C")
    await db_session.execute(update(Admin).where(Admin.id == inactive.id).values(is_active=False))
    await db_session.commit()

    result = await services.dispatcher.notify_admins("Alert!")
    assert result.total == 2
    assert {m["recipient"] for m in transport.sent} == {"10", "11"}


async def test_notify_admins_without_admins(services):
    result = await services.dispatcher.notify_admins("Alert!")
    assert result.total == 0
    assert result.successful == 0


async def test_health_alert_levels(services, admin_chat, transport):
    await services.dispatcher.health_alert("critical", "Disk", "Disk is full", {"free_mb": 3})
    text = transport.texts_to(admin_chat.telegram_id)[0]
    assert "System Health CRITICAL" in text
    assert "free" in text

    with pytest.raises(ValueError):
        await services.dispatcher.health_alert("meh", "Disk", "Disk is full")


async def test_employee_reminder(services, make_employee, transport):
    emp = await make_employee("Sara", telegram_id="77")
    result = await services.dispatcher.employee_reminder(
        emp, "checkout_reminder", work_start="09:00", work_end="17:00"
    )
    assert result.success is True
    assert "Sara" in transport.texts_to("77")[0]
