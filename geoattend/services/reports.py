"""
Attendance statistics — daily / weekly / monthly summaries and absentees.

Only records belonging to currently-active employees are counted, so the
attendance rate never exceeds 100 % after a deactivation.  Everything is
aggregated in Python from one query per report.
"""

from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time, timedelta

from geoattend.core.clock import Clock, day_key
from geoattend.db.store import Store
from geoattend.models.employee import AttendanceDay, Employee

logger = logging.getLogger(__name__)


def _rate(part: int, whole: int) -> float:
    """Percentage, 0 when *whole* is 0."""
    if whole <= 0:
        return 0.0
    return round(part * 100 / whole, 1)


@dataclass(frozen=True)
class DailySummary:
    date: date
    total_employees: int
    checked_in: int
    checked_out: int
    late_count: int
    early_count: int
    attendance_rate: float
    average_working_hours: float

    @property
    def still_working(self) -> int:
        return self.checked_in - self.checked_out


@dataclass(frozen=True)
class PeriodSummary:
    start: date
    end: date
    total_employees: int
    working_days: int
    total_records: int
    attended: int
    completed: int
    late_count: int
    early_count: int
    expected_attendances: int
    attendance_rate: float
    average_working_hours: float
    days: list[DailySummary] = field(default_factory=list)


@dataclass(frozen=True)
class DailyReport:
    summary: DailySummary
    late: list[tuple[Employee, AttendanceDay]]
    early: list[tuple[Employee, AttendanceDay]]
    absentees: list[Employee]


def summarize_day(day: date, employees: list[Employee], records: list[AttendanceDay]) -> DailySummary:
    """Pure aggregation over one day's records."""
    active_ids = {e.id for e in employees}
    todays = [r for r in records if r.employee_id in active_ids]
    checked_in = sum(1 for r in todays if r.check_in_time is not None)
    hours = [r.working_hours for r in todays if r.working_hours is not None]
    return DailySummary(
        date=day,
        total_employees=len(employees),
        checked_in=checked_in,
        checked_out=sum(1 for r in todays if r.check_out_time is not None),
        late_count=sum(1 for r in todays if r.is_late),
        early_count=sum(1 for r in todays if r.is_early_departure),
        attendance_rate=_rate(checked_in, len(employees)),
        average_working_hours=round(sum(hours) / len(hours), 2) if hours else 0.0,
    )


class ReportAggregator:
    def __init__(self, store: Store, clock: Clock, *, absence_cutoff: time) -> None:
        self._store = store
        self._clock = clock
        self.absence_cutoff = absence_cutoff

    async def daily_summary(self, day: date) -> DailySummary:
        employees = await self._store.list_employees(active=True)
        records = await self._store.list_attendance_days(day_key(day))
        return summarize_day(day, employees, records)

    async def absentees(self, day: date, cutoff: time | None = None) -> list[Employee]:
        """Active employees without a check-in on *day*, once the cutoff has passed.

        Before the cutoff nobody is "absent" yet, so the result is empty.
        """
        cutoff = cutoff or self.absence_cutoff
        if self._clock.now() < self._clock.at(day, cutoff):
            return []
        employees = await self._store.list_employees(active=True)
        records = await self._store.list_attendance_days(day_key(day))
        present = {r.employee_id for r in records if r.check_in_time is not None}
        return [e for e in employees if e.id not in present]

    async def weekly_summary(self, any_day: date) -> PeriodSummary:
        start = any_day - timedelta(days=any_day.weekday())
        return await self._period(start, start + timedelta(days=6))

    async def monthly_summary(self, year: int, month: int) -> PeriodSummary:
        last = calendar.monthrange(year, month)[1]
        return await self._period(date(year, month, 1), date(year, month, last))

    async def _period(self, start: date, end: date) -> PeriodSummary:
        employees = await self._store.list_employees(active=True)
        active_ids = {e.id for e in employees}
        records = [
            r
            for r in await self._store.list_attendance_days(day_key(start), day_key(end))
            if r.employee_id in active_ids
        ]
        by_day: dict[str, list[AttendanceDay]] = defaultdict(list)
        for record in records:
            by_day[record.date].append(record)

        # Future days are not "expected" yet
        last_counted = min(end, self._clock.today())
        days: list[DailySummary] = []
        current = start
        while current <= last_counted:
            if current.weekday() < 5:
                days.append(summarize_day(current, employees, by_day.get(day_key(current), [])))
            current += timedelta(days=1)

        # Weekend and future records fall outside the expected denominator
        counted = {day_key(d.date) for d in days}
        records = [r for r in records if r.date in counted]

        attended = sum(1 for r in records if r.check_in_time is not None)
        hours = [r.working_hours for r in records if r.working_hours is not None]
        expected = len(employees) * len(days)
        return PeriodSummary(
            start=start,
            end=end,
            total_employees=len(employees),
            working_days=len(days),
            total_records=len(records),
            attended=attended,
            completed=sum(1 for r in records if r.check_out_time is not None),
            late_count=sum(1 for r in records if r.is_late),
            early_count=sum(1 for r in records if r.is_early_departure),
            expected_attendances=expected,
            attendance_rate=_rate(attended, expected),
            average_working_hours=round(sum(hours) / len(hours), 2) if hours else 0.0,
            days=days,
        )

    async def daily_report(self, day: date) -> DailyReport:
        employees = await self._store.list_employees(active=True)
        by_id = {e.id: e for e in employees}
        records = await self._store.list_attendance_days(day_key(day))
        summary = summarize_day(day, employees, records)
        late = [(by_id[r.employee_id], r) for r in records if r.is_late and r.employee_id in by_id]
        early = [
            (by_id[r.employee_id], r)
            for r in records
            if r.is_early_departure and r.employee_id in by_id
        ]
        return DailyReport(
            summary=summary,
            late=late,
            early=early,
            absentees=await self.absentees(day),
        )

    async def employee_history(self, employee_id: int, days: int = 30) -> list[AttendanceDay]:
        today = self._clock.today()
        return await self._store.list_attendance_days(
            day_key(today - timedelta(days=days)), day_key(today), employee_id=employee_id
        )
