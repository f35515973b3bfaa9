"""
Repository-style access to the relational store.

Every method opens its own short-lived ``AsyncSession`` and commits before
returning, so callers never hold a transaction across an ``await`` on the
network.  Any SQLAlchemy / driver failure is re-raised as
:class:`StorageUnavailable`; callers never see ORM exceptions.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Literal

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from geoattend.core.clock import ensure_utc
from geoattend.core.exceptions import StorageUnavailable
from geoattend.models.activity import (NOTIFICATION_MESSAGE_LIMIT, AuditLog,
                                       NotificationLog)
from geoattend.models.admin import Admin
from geoattend.models.conversation import ConversationState
from geoattend.models.employee import (AttendanceDay, AttendanceStatus,
                                       Employee)

logger = logging.getLogger(__name__)

ExpiringKind = Literal["conversation", "notification_log", "audit_log"]

_CHECK_IN_FIELDS = frozenset(
    {"check_in_time", "check_in_latitude", "check_in_longitude", "check_in_distance", "is_late"}
)
_CHECK_OUT_FIELDS = frozenset(
    {
        "check_out_time",
        "check_out_latitude",
        "check_out_longitude",
        "check_out_distance",
        "is_early_departure",
        "working_hours",
    }
)
_EMPLOYEE_FIELDS = frozenset(
    {"first_name", "last_name", "username", "phone", "department", "position", "is_active"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Store:
    """Async repository over the attendance schema."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Store operation failed: %s", exc)
            raise StorageUnavailable(str(exc)) from exc

    async def ping(self) -> None:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))

    # ── Employees ───────────────────────────────────────────────────
    async def get_employee(self, employee_id: int) -> Employee | None:
        async with self._session() as session:
            return await session.get(Employee, employee_id)

    async def get_employee_by_telegram(self, telegram_id: str) -> Employee | None:
        async with self._session() as session:
            result = await session.execute(
                select(Employee).where(Employee.telegram_id == str(telegram_id))
            )
            return result.scalar_one_or_none()

    async def create_employee(self, telegram_id: str, first_name: str, **fields: Any) -> Employee | None:
        """Insert a new employee; ``None`` if the telegram id is already registered."""
        employee = Employee(telegram_id=str(telegram_id), first_name=first_name, **fields)
        async with self._session() as session:
            session.add(employee)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
            return employee

    async def update_employee(self, employee_id: int, patch: dict[str, Any]) -> Employee | None:
        unknown = set(patch) - _EMPLOYEE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update employee fields: {sorted(unknown)}")
        async with self._session() as session:
            employee = await session.get(Employee, employee_id)
            if employee is None:
                return None
            for key, value in patch.items():
                setattr(employee, key, value)
            await session.commit()
            return employee

    def _employee_query(self, active: bool | None, department: str | None):
        stmt = select(Employee)
        if active is not None:
            stmt = stmt.where(Employee.is_active == active)
        if department:
            stmt = stmt.where(Employee.department == department)
        return stmt

    async def list_employees(
        self,
        *,
        active: bool | None = True,
        department: str | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Employee]:
        stmt = self._employee_query(active, department).order_by(Employee.id).offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_employees(self, *, active: bool | None = True, department: str | None = None) -> int:
        sub = self._employee_query(active, department).subquery()
        async with self._session() as session:
            result = await session.execute(select(func.count()).select_from(sub))
            return int(result.scalar_one())

    # ── Admins ──────────────────────────────────────────────────────
    async def list_admins(self, *, active: bool = True) -> list[Admin]:
        async with self._session() as session:
            result = await session.execute(
                select(Admin).where(Admin.is_active == active).order_by(Admin.id)
            )
            return list(result.scalars().all())

    async def is_admin(self, telegram_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(Admin.id).where(
                    Admin.telegram_id == str(telegram_id), Admin.is_active.is_(True)
                )
            )
            return result.scalar_one_or_none() is not None

    async def add_admin(self, telegram_id: str, name: str | None = None) -> Admin:
        """Create or re-activate a chat admin."""
        async with self._session() as session:
            result = await session.execute(select(Admin).where(Admin.telegram_id == str(telegram_id)))
            admin = result.scalar_one_or_none()
            if admin is None:
                admin = Admin(telegram_id=str(telegram_id), name=name)
                session.add(admin)
            else:
                admin.is_active = True
                if name:
                    admin.name = name
            await session.commit()
            return admin

    # ── Attendance days ─────────────────────────────────────────────
    async def find_attendance_day(self, employee_id: int, day: str) -> AttendanceDay | None:
        async with self._session() as session:
            result = await session.execute(
                select(AttendanceDay).where(
                    AttendanceDay.employee_id == employee_id, AttendanceDay.date == day
                )
            )
            return result.scalar_one_or_none()

    async def get_attendance_day(self, attendance_id: int) -> AttendanceDay | None:
        async with self._session() as session:
            return await session.get(AttendanceDay, attendance_id)

    async def create_attendance_day(self, employee_id: int, day: str, **fields: Any) -> AttendanceDay | None:
        """Atomic create-if-absent keyed on (employee, date).

        Returns ``None`` when a row for that key already exists; the caller
        re-reads and branches on the existing row's state.
        """
        record = AttendanceDay(employee_id=employee_id, date=day, **fields)
        async with self._session() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("Attendance day already exists for employee %s on %s", employee_id, day)
                return None
            return record

    async def update_attendance_day(
        self,
        attendance_id: int,
        patch: dict[str, Any],
        *,
        expected_status: AttendanceStatus | None = None,
    ) -> AttendanceDay | None:
        """Conditional update; ``None`` if the row is gone or not in *expected_status*.

        Check-in fields are writable only while the row is NOT_STARTED and
        check-out fields only while it is CHECKED_IN, so the late/early
        flags cannot be rewritten after the transition that computed them.
        """
        touched = set(patch)
        if touched & _CHECK_IN_FIELDS and expected_status is not AttendanceStatus.NOT_STARTED:
            raise ValueError("Check-in fields are immutable once the day has started")
        if touched & _CHECK_OUT_FIELDS and expected_status is not AttendanceStatus.CHECKED_IN:
            raise ValueError("Check-out fields may only be written on a CHECKED_IN day")

        values = dict(patch)
        if isinstance(values.get("status"), AttendanceStatus):
            values["status"] = values["status"].value
        values["updated_at"] = _utcnow()

        stmt = update(AttendanceDay).where(AttendanceDay.id == attendance_id)
        if expected_status is not None:
            stmt = stmt.where(AttendanceDay.status == expected_status.value)
        async with self._session() as session:
            result = await session.execute(stmt.values(**values))
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()
            return await session.get(AttendanceDay, attendance_id, populate_existing=True)

    async def set_reason(self, attendance_id: int, kind: Literal["late", "early"], reason: str) -> bool:
        """Attach a reason only when the matching flag was set."""
        if kind == "late":
            stmt = (
                update(AttendanceDay)
                .where(AttendanceDay.id == attendance_id, AttendanceDay.is_late.is_(True))
                .values(late_reason=reason, updated_at=_utcnow())
            )
        else:
            stmt = (
                update(AttendanceDay)
                .where(AttendanceDay.id == attendance_id, AttendanceDay.is_early_departure.is_(True))
                .values(early_reason=reason, updated_at=_utcnow())
            )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def list_attendance_days(
        self,
        start_day: str,
        end_day: str | None = None,
        *,
        employee_id: int | None = None,
    ) -> list[AttendanceDay]:
        """Records with ``start_day <= date <= end_day`` (ISO strings sort correctly)."""
        stmt = select(AttendanceDay).where(AttendanceDay.date >= start_day)
        stmt = stmt.where(AttendanceDay.date <= (end_day or start_day))
        if employee_id is not None:
            stmt = stmt.where(AttendanceDay.employee_id == employee_id)
        async with self._session() as session:
            result = await session.execute(stmt.order_by(AttendanceDay.date.desc(), AttendanceDay.id))
            return list(result.scalars().all())

    async def count_stuck_check_ins(self, checked_in_before: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count(AttendanceDay.id)).where(
                    AttendanceDay.status == AttendanceStatus.CHECKED_IN.value,
                    AttendanceDay.check_in_time < ensure_utc(checked_in_before),
                )
            )
            return int(result.scalar_one())

    # ── Conversation states ─────────────────────────────────────────
    async def get_conversation(self, user_id: str) -> ConversationState | None:
        async with self._session() as session:
            result = await session.execute(
                select(ConversationState).where(ConversationState.user_id == str(user_id))
            )
            return result.scalar_one_or_none()

    async def put_conversation(
        self,
        user_id: str,
        type_: str,
        payload: dict[str, Any],
        expires_at: datetime,
        step: int = 1,
    ) -> ConversationState:
        """Replace whatever state the user had with a fresh one."""
        state = ConversationState(
            user_id=str(user_id),
            type=type_,
            payload=payload,
            step=step,
            expires_at=ensure_utc(expires_at),
        )
        async with self._session() as session:
            await session.execute(
                delete(ConversationState).where(ConversationState.user_id == str(user_id))
            )
            session.add(state)
            await session.commit()
            return state

    async def advance_conversation(self, user_id: str, step: int) -> None:
        async with self._session() as session:
            await session.execute(
                update(ConversationState)
                .where(ConversationState.user_id == str(user_id))
                .values(step=step)
            )
            await session.commit()

    async def delete_conversation(self, user_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(ConversationState).where(ConversationState.user_id == str(user_id))
            )
            await session.commit()
            return result.rowcount > 0

    # ── Append-only logs ────────────────────────────────────────────
    async def append_notification_log(
        self,
        recipient: str,
        type_: str,
        message: str,
        success: bool,
        error: str | None = None,
    ) -> None:
        async with self._session() as session:
            session.add(
                NotificationLog(
                    recipient=str(recipient),
                    type=type_,
                    message=message[:NOTIFICATION_MESSAGE_LIMIT],
                    success=success,
                    error=error[:500] if error else None,
                )
            )
            await session.commit()

    async def append_audit_log(self, type_: str, message: str, details: dict[str, Any] | None = None) -> None:
        async with self._session() as session:
            session.add(AuditLog(type=type_, message=message[:500], details=details))
            await session.commit()

    # ── Retention ───────────────────────────────────────────────────
    async def delete_expired(self, kind: ExpiringKind, before: datetime, batch_size: int = 1000) -> int:
        """Delete rows of *kind* older than *before*, ``batch_size`` rows per transaction."""
        before = ensure_utc(before)
        if kind == "conversation":
            model, condition = ConversationState, ConversationState.expires_at <= before
        elif kind == "notification_log":
            model, condition = NotificationLog, NotificationLog.sent_at < before
        elif kind == "audit_log":
            model, condition = AuditLog, AuditLog.created_at < before
        else:
            raise ValueError(f"Unknown expiring kind: {kind!r}")

        total = 0
        async with self._session() as session:
            while True:
                ids = (
                    await session.execute(
                        select(model.id).where(condition).order_by(model.id).limit(batch_size)
                    )
                ).scalars().all()
                if not ids:
                    break
                await session.execute(delete(model).where(model.id.in_(ids)))
                await session.commit()
                total += len(ids)
                if len(ids) < batch_size:
                    break
        return total
