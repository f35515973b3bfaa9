"""
Attendance-day state machine: NOT_STARTED → CHECKED_IN → COMPLETE.

Policy outcomes (out of range, duplicate check-in, ...) come back as typed
result objects; only validation errors (:class:`InvalidCoordinates`,
:class:`InvalidTimestamp`) and :class:`StorageUnavailable` are raised.

Lateness is decided ONCE at check-in and early departure ONCE at check-out,
both in the configured timezone:

    is_late            = at > work_start   (on at's local date)
    is_early_departure = at < work_end
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Literal

from geoattend.core.clock import Clock, day_key, ensure_utc
from geoattend.core.exceptions import InvalidTimestamp
from geoattend.db.store import Store
from geoattend.models.employee import AttendanceDay, AttendanceStatus
from geoattend.services.geo import GeoValidator, Location
from geoattend.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

REASON_MAX_LENGTH = 500


# ── Results ─────────────────────────────────────────────────────────
@dataclass(frozen=True)
class CheckedIn:
    record: AttendanceDay
    is_late: bool
    minutes_late: int
    distance_meters: float

    @property
    def reason_needed(self) -> bool:
        return self.is_late


@dataclass(frozen=True)
class CheckedOut:
    record: AttendanceDay
    is_early: bool
    minutes_early: int
    working_hours: float

    @property
    def reason_needed(self) -> bool:
        return self.is_early


@dataclass(frozen=True)
class OutOfRange:
    distance_meters: float


@dataclass(frozen=True)
class AlreadyCheckedIn:
    record: AttendanceDay


@dataclass(frozen=True)
class AlreadyComplete:
    record: AttendanceDay


@dataclass(frozen=True)
class NotCheckedIn:
    pass


@dataclass(frozen=True)
class ReasonAttached:
    attendance_id: int
    kind: str


@dataclass(frozen=True)
class ReasonNotApplicable:
    attendance_id: int
    kind: str


CheckInResult = CheckedIn | OutOfRange | AlreadyCheckedIn | AlreadyComplete
CheckOutResult = CheckedOut | OutOfRange | NotCheckedIn | AlreadyComplete
ReasonResult = ReasonAttached | ReasonNotApplicable


def _minutes_between(earlier: datetime, later: datetime) -> int:
    return int((later - earlier).total_seconds() // 60)


class AttendanceStateMachine:
    def __init__(
        self,
        store: Store,
        geo: GeoValidator,
        dispatcher: NotificationDispatcher,
        clock: Clock,
        *,
        work_start: time,
        work_end: time,
    ) -> None:
        self._store = store
        self._geo = geo
        self._dispatcher = dispatcher
        self._clock = clock
        self.work_start = work_start
        self.work_end = work_end
        # Serialises transitions for one (employee, day) inside this process;
        # the unique constraint covers other processes.
        self._locks: weakref.WeakValueDictionary[tuple[int, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, employee_id: int, day: str) -> asyncio.Lock:
        key = (employee_id, day)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def status_for(self, employee_id: int, day: date | None = None) -> AttendanceDay | None:
        return await self._store.find_attendance_day(employee_id, day_key(day or self._clock.today()))

    # ── Check-in ────────────────────────────────────────────────────
    async def request_check_in(self, employee_id: int, at: datetime, location: Location) -> CheckInResult:
        verdict = self._geo.check(location)
        if not verdict.within_radius:
            logger.info(
                "Check-in rejected for employee %s: %.0f m from office", employee_id, verdict.distance_meters
            )
            return OutOfRange(distance_meters=verdict.distance_meters)

        local = self._clock.to_local(at)
        day = day_key(local.date())
        start = self._clock.at(local.date(), self.work_start)
        is_late = local > start
        minutes_late = _minutes_between(start, local) if is_late else 0
        fields = {
            "check_in_time": ensure_utc(at),
            "check_in_latitude": location.latitude,
            "check_in_longitude": location.longitude,
            "check_in_distance": verdict.distance_meters,
            "is_late": is_late,
        }

        lock = self._lock_for(employee_id, day)
        async with lock:
            existing = await self._store.find_attendance_day(employee_id, day)
            if existing is None:
                record = await self._store.create_attendance_day(
                    employee_id, day, status=AttendanceStatus.CHECKED_IN.value, **fields
                )
                if record is None:
                    # Lost the create race to another writer
                    existing = await self._store.find_attendance_day(employee_id, day)
            if existing is not None:
                rejection = self._reject_check_in(existing)
                if rejection is not None:
                    return rejection
                record = await self._store.update_attendance_day(
                    existing.id,
                    {"status": AttendanceStatus.CHECKED_IN, **fields},
                    expected_status=AttendanceStatus.NOT_STARTED,
                )
                if record is None:
                    current = await self._store.get_attendance_day(existing.id)
                    return self._reject_check_in(current) or AlreadyCheckedIn(current)

        logger.info("Employee %s checked in on %s (late=%s)", employee_id, day, is_late)
        await self._audit(
            "check_in",
            f"Employee {employee_id} checked in",
            {"date": day, "distance": round(verdict.distance_meters, 1), "is_late": is_late},
        )
        if is_late:
            await self._alert_late(employee_id, local, minutes_late)
        return CheckedIn(
            record=record,
            is_late=is_late,
            minutes_late=minutes_late,
            distance_meters=verdict.distance_meters,
        )

    @staticmethod
    def _reject_check_in(record: AttendanceDay | None) -> AlreadyCheckedIn | AlreadyComplete | None:
        if record is None:
            return None
        if record.status == AttendanceStatus.CHECKED_IN.value:
            return AlreadyCheckedIn(record)
        if record.status == AttendanceStatus.COMPLETE.value:
            return AlreadyComplete(record)
        return None

    # ── Check-out ───────────────────────────────────────────────────
    async def request_check_out(self, employee_id: int, at: datetime, location: Location) -> CheckOutResult:
        verdict = self._geo.check(location)
        if not verdict.within_radius:
            logger.info(
                "Check-out rejected for employee %s: %.0f m from office", employee_id, verdict.distance_meters
            )
            return OutOfRange(distance_meters=verdict.distance_meters)

        local = self._clock.to_local(at)
        day = day_key(local.date())
        end = self._clock.at(local.date(), self.work_end)
        is_early = local < end
        minutes_early = _minutes_between(local, end) if is_early else 0

        lock = self._lock_for(employee_id, day)
        async with lock:
            existing = await self._store.find_attendance_day(employee_id, day)
            if existing is None or existing.status == AttendanceStatus.NOT_STARTED.value:
                return NotCheckedIn()
            if existing.status == AttendanceStatus.COMPLETE.value:
                return AlreadyComplete(existing)

            checked_in_at = ensure_utc(existing.check_in_time)
            if ensure_utc(at) <= checked_in_at:
                raise InvalidTimestamp("Check-out time must be after the check-in time")
            working_hours = round((ensure_utc(at) - checked_in_at).total_seconds() / 3600, 2)

            record = await self._store.update_attendance_day(
                existing.id,
                {
                    "status": AttendanceStatus.COMPLETE,
                    "check_out_time": ensure_utc(at),
                    "check_out_latitude": location.latitude,
                    "check_out_longitude": location.longitude,
                    "check_out_distance": verdict.distance_meters,
                    "is_early_departure": is_early,
                    "working_hours": working_hours,
                },
                expected_status=AttendanceStatus.CHECKED_IN,
            )
            if record is None:
                current = await self._store.get_attendance_day(existing.id)
                if current is not None and current.status == AttendanceStatus.COMPLETE.value:
                    return AlreadyComplete(current)
                return NotCheckedIn()

        logger.info("Employee %s checked out on %s (early=%s)", employee_id, day, is_early)
        await self._audit(
            "check_out",
            f"Employee {employee_id} checked out",
            {"date": day, "working_hours": working_hours, "is_early": is_early},
        )
        if is_early:
            await self._alert_early(employee_id, local, minutes_early)
        return CheckedOut(
            record=record,
            is_early=is_early,
            minutes_early=minutes_early,
            working_hours=working_hours,
        )

    # ── Reasons ─────────────────────────────────────────────────────
    async def attach_reason(self, attendance_id: int, kind: Literal["late", "early"], text: str) -> ReasonResult:
        reason = text.strip()
        if not reason:
            raise ValueError("Reason must not be empty")
        attached = await self._store.set_reason(attendance_id, kind, reason[:REASON_MAX_LENGTH])
        if not attached:
            logger.warning("Refused %s reason for attendance %s: flag not set", kind, attendance_id)
            return ReasonNotApplicable(attendance_id=attendance_id, kind=kind)
        await self._audit(f"{kind}_reason", f"Reason recorded for attendance {attendance_id}")
        return ReasonAttached(attendance_id=attendance_id, kind=kind)

    # ── Side effects (never fail the transition) ───────────────────
    async def _audit(self, type_: str, message: str, details: dict | None = None) -> None:
        try:
            await self._store.append_audit_log(type_, message, details)
        except Exception as exc:  # noqa: BLE001
            logger.error("Audit log write failed (%s): %s", type_, exc)

    async def _alert_late(self, employee_id: int, local: datetime, minutes_late: int) -> None:
        try:
            employee = await self._store.get_employee(employee_id)
            if employee is not None:
                await self._dispatcher.late_alert(employee, local, minutes_late)
        except Exception as exc:  # noqa: BLE001
            logger.error("Late alert for employee %s failed: %s", employee_id, exc)

    async def _alert_early(self, employee_id: int, local: datetime, minutes_early: int) -> None:
        try:
            employee = await self._store.get_employee(employee_id)
            if employee is not None:
                await self._dispatcher.early_departure_alert(employee, local, minutes_early)
        except Exception as exc:  # noqa: BLE001
            logger.error("Early-departure alert for employee %s failed: %s", employee_id, exc)
