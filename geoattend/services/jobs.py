"""
Bodies of the background jobs and their default cron schedules.

Schedules use day NAMES (``mon-fri``) rather than numbers so that the
expression reads the same in every cron dialect.
"""

from __future__ import annotations

import logging
import os
import resource
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from geoattend.core.clock import Clock, day_key, parse_hhmm
from geoattend.core.exceptions import StorageUnavailable
from geoattend.db.store import Store
from geoattend.models.employee import AttendanceStatus
from geoattend.services import formatters
from geoattend.services.conversation import ConversationManager
from geoattend.services.notifications import NotificationDispatcher
from geoattend.services.reports import ReportAggregator
from geoattend.services.scheduler import ScheduleOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULES: dict[str, str] = {
    "daily_summary": "0 8 * * mon-fri",
    "absence_check": "0 10 * * mon-fri",
    "late_reminders": "30 9 * * mon-fri",
    "checkout_reminders": "30 17 * * mon-fri",
    "weekly_summary": "0 18 * * fri",
    "monthly_summary": "0 18 28-31 * *",
    "end_of_day_report": "0 18 * * mon-fri",
    "cleanup_old_records": "0 2 * * sun",
    "health_check": "0 * * * *",
}


def current_rss_mb(statm_path: str = "/proc/self/statm") -> float:
    """Current resident set size of this process in MB.

    Reads the live page count from procfs.  Where procfs is absent (macOS),
    the peak RSS from ``getrusage`` is the best figure the kernel offers.
    """
    try:
        with open(statm_path) as fh:
            resident_pages = int(fh.read().split()[1])
    except FileNotFoundError:
        usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss is bytes on macOS, kilobytes elsewhere
        divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
        return round(usage / divisor, 1)
    return round(resident_pages * os.sysconf("SC_PAGE_SIZE") / (1024 * 1024), 1)


def is_last_day_of_month(day: date) -> bool:
    return (day + timedelta(days=1)).month != day.month


def previous_working_day(day: date) -> date:
    prev = day - timedelta(days=1)
    while prev.weekday() >= 5:
        prev -= timedelta(days=1)
    return prev


@dataclass(frozen=True)
class HealthIssue:
    level: str
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobSettings:
    work_start: str
    work_end: str
    notification_retention: timedelta
    audit_retention: timedelta
    cleanup_batch_size: int
    memory_limit_mb: float
    stuck_check_in_age: timedelta
    stuck_check_in_count: int


class AttendanceJobs:
    def __init__(
        self,
        *,
        store: Store,
        clock: Clock,
        reports: ReportAggregator,
        dispatcher: NotificationDispatcher,
        conversations: ConversationManager,
        settings: JobSettings,
        memory_probe: Callable[[], float] = current_rss_mb,
    ) -> None:
        self._store = store
        self._clock = clock
        self._reports = reports
        self._dispatcher = dispatcher
        self._conversations = conversations
        self._settings = settings
        self._memory_probe = memory_probe

    def register_all(self, orchestrator: ScheduleOrchestrator, schedules: dict[str, str] | None = None) -> None:
        crons = {**DEFAULT_SCHEDULES, **(schedules or {})}
        for name, cron in crons.items():
            orchestrator.register(name, cron, getattr(self, name))

    # ── Summaries ───────────────────────────────────────────────────
    async def daily_summary(self) -> None:
        day = previous_working_day(self._clock.today())
        summary = await self._reports.daily_summary(day)
        await self._dispatcher.notify_admins(
            formatters.daily_summary(summary, generated_at=self._clock.now()), kind="daily_summary"
        )

    async def weekly_summary(self) -> None:
        summary = await self._reports.weekly_summary(self._clock.today())
        await self._dispatcher.notify_admins(
            formatters.period_summary("Weekly Summary", summary), kind="weekly_summary"
        )

    async def monthly_summary(self) -> None:
        today = self._clock.today()
        # The cron fires on days 28-31; only the real last day counts
        if not is_last_day_of_month(today):
            logger.info("Monthly summary skipped: %s is not the last day of the month", today)
            return
        summary = await self._reports.monthly_summary(today.year, today.month)
        await self._dispatcher.notify_admins(
            formatters.period_summary(f"Monthly Summary {today.strftime('%B %Y')}", summary),
            kind="monthly_summary",
        )

    async def end_of_day_report(self) -> None:
        report = await self._reports.daily_report(self._clock.today())
        await self._dispatcher.notify_admins(
            formatters.daily_report(report, self._clock.to_local), kind="end_of_day_report"
        )

    # ── Absence & reminders ─────────────────────────────────────────
    async def absence_check(self) -> None:
        today = self._clock.today()
        absentees = await self._reports.absentees(today)
        if not absentees:
            logger.info("Absence check: everyone has checked in")
            return
        await self._dispatcher.notify_admins(
            formatters.absence_alert(today, absentees), kind="absence_alert"
        )

    async def late_reminders(self) -> None:
        today = self._clock.today()
        pending = await self._reports.absentees(today, cutoff=parse_hhmm(self._settings.work_start))
        for employee in pending:
            await self._dispatcher.employee_reminder(
                employee,
                "late_warning",
                work_start=self._settings.work_start,
                work_end=self._settings.work_end,
            )
        logger.info("Late reminders sent to %d employee(s)", len(pending))

    async def checkout_reminders(self) -> None:
        today = self._clock.today()
        records = await self._store.list_attendance_days(day_key(today))
        still_in = {r.employee_id for r in records if r.status == AttendanceStatus.CHECKED_IN.value}
        employees = [e for e in await self._store.list_employees(active=True) if e.id in still_in]
        for employee in employees:
            await self._dispatcher.employee_reminder(
                employee,
                "checkout_reminder",
                work_start=self._settings.work_start,
                work_end=self._settings.work_end,
            )
        logger.info("Checkout reminders sent to %d employee(s)", len(employees))

    # ── Maintenance ─────────────────────────────────────────────────
    async def cleanup_old_records(self) -> None:
        now = self._clock.now()
        batch = self._settings.cleanup_batch_size
        conversations = await self._conversations.expire_sweep(now)
        notifications = await self._store.delete_expired(
            "notification_log", now - self._settings.notification_retention, batch
        )
        audits = await self._store.delete_expired(
            "audit_log", now - self._settings.audit_retention, batch
        )
        logger.info(
            "Cleanup removed %d conversation state(s), %d notification log(s), %d audit log(s)",
            conversations,
            notifications,
            audits,
        )
        await self._store.append_audit_log(
            "cron_cleanup",
            "Old records cleaned up",
            {"conversations": conversations, "notification_logs": notifications, "audit_logs": audits},
        )

    async def collect_health(self) -> list[HealthIssue]:
        issues: list[HealthIssue] = []

        memory_mb = self._memory_probe()
        if memory_mb > self._settings.memory_limit_mb:
            issues.append(
                HealthIssue(
                    "warning",
                    "High memory usage",
                    f"Process memory is {memory_mb:.0f} MB",
                    {"memory_mb": memory_mb, "limit_mb": self._settings.memory_limit_mb},
                )
            )

        try:
            await self._store.ping()
        except StorageUnavailable as exc:
            issues.append(HealthIssue("error", "Database unreachable", str(exc)[:200]))
            return issues

        cutoff = self._clock.now() - self._settings.stuck_check_in_age
        stuck = await self._store.count_stuck_check_ins(cutoff)
        if stuck > self._settings.stuck_check_in_count:
            hours = self._settings.stuck_check_in_age.total_seconds() / 3600
            issues.append(
                HealthIssue(
                    "warning",
                    "Stale check-ins",
                    f"{stuck} employee(s) checked in for over {hours:.0f} hours without checking out",
                    {"count": stuck},
                )
            )
        return issues

    async def health_check(self) -> None:
        issues = await self.collect_health()
        for issue in issues:
            await self._dispatcher.health_alert(issue.level, issue.title, issue.message, issue.details)
        if not issues:
            logger.debug("Health check passed")
