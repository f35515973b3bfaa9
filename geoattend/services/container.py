"""
Explicit dependency wiring.

The store, transport, clock and dispatcher are built once at process start
and handed to every component through its constructor; nothing below this
module reaches for a global.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from geoattend.core.clock import Clock, parse_hhmm
from geoattend.core.config import Settings
from geoattend.db.store import Store
from geoattend.services.attendance import AttendanceStateMachine
from geoattend.services.bot import AttendanceBot
from geoattend.services.conversation import ConversationManager
from geoattend.services.geo import GeoValidator, Location
from geoattend.services.jobs import AttendanceJobs, JobSettings
from geoattend.services.notifications import NotificationDispatcher
from geoattend.services.reports import ReportAggregator
from geoattend.services.scheduler import ScheduleOrchestrator
from geoattend.services.transport import Transport


@dataclass(frozen=True)
class Services:
    settings: Settings
    clock: Clock
    store: Store
    transport: Transport
    geo: GeoValidator
    dispatcher: NotificationDispatcher
    attendance: AttendanceStateMachine
    conversations: ConversationManager
    reports: ReportAggregator
    orchestrator: ScheduleOrchestrator
    jobs: AttendanceJobs
    bot: AttendanceBot


def build_services(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    transport: Transport,
    clock: Clock | None = None,
) -> Services:
    clock = clock or Clock(settings.TIMEZONE)
    store = Store(session_factory)
    geo = GeoValidator(
        Location(settings.OFFICE_LATITUDE, settings.OFFICE_LONGITUDE),
        settings.OFFICE_RADIUS_METERS,
    )
    dispatcher = NotificationDispatcher(transport, store)
    attendance = AttendanceStateMachine(
        store,
        geo,
        dispatcher,
        clock,
        work_start=parse_hhmm(settings.WORK_START),
        work_end=parse_hhmm(settings.WORK_END),
    )
    conversations = ConversationManager(
        store,
        clock,
        attendance,
        dispatcher,
        reason_ttl=timedelta(minutes=settings.REASON_TTL_MINUTES),
        default_ttl=timedelta(minutes=settings.CONVERSATION_TTL_MINUTES),
    )
    reports = ReportAggregator(store, clock, absence_cutoff=parse_hhmm(settings.ABSENCE_CUTOFF))
    orchestrator = ScheduleOrchestrator(store, clock)
    jobs = AttendanceJobs(
        store=store,
        clock=clock,
        reports=reports,
        dispatcher=dispatcher,
        conversations=conversations,
        settings=JobSettings(
            work_start=settings.WORK_START,
            work_end=settings.WORK_END,
            notification_retention=timedelta(days=settings.NOTIFICATION_LOG_RETENTION_DAYS),
            audit_retention=timedelta(days=settings.AUDIT_LOG_RETENTION_DAYS),
            cleanup_batch_size=settings.CLEANUP_BATCH_SIZE,
            memory_limit_mb=settings.HEALTH_MEMORY_LIMIT_MB,
            stuck_check_in_age=timedelta(hours=settings.HEALTH_STUCK_CHECKIN_HOURS),
            stuck_check_in_count=settings.HEALTH_STUCK_CHECKIN_COUNT,
        ),
    )
    jobs.register_all(orchestrator)
    bot = AttendanceBot(
        settings=settings,
        store=store,
        clock=clock,
        attendance=attendance,
        conversations=conversations,
        dispatcher=dispatcher,
        reports=reports,
        orchestrator=orchestrator,
        transport=transport,
    )
    return Services(
        settings=settings,
        clock=clock,
        store=store,
        transport=transport,
        geo=geo,
        dispatcher=dispatcher,
        attendance=attendance,
        conversations=conversations,
        reports=reports,
        orchestrator=orchestrator,
        jobs=jobs,
        bot=bot,
    )
