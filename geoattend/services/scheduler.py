"""
Named cron jobs on top of APScheduler's ``AsyncIOScheduler``.

Every execution, scheduled or manual, goes through :meth:`ScheduleOrchestrator._run`:
skip if the same job is already in flight, time the task, catch and log
any exception, record bookkeeping, write an audit row.  A job's failure is
therefore invisible to other jobs and to the scheduler itself.

Job lifecycle::

    registered → scheduled → running → (completed | failed) → scheduled
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from geoattend.core.clock import Clock
from geoattend.db.store import Store

logger = logging.getLogger(__name__)

JobTask = Callable[[], Awaitable[None]]


class JobState(str, enum.Enum):
    REGISTERED = "registered"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class JobOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ScheduledJob:
    name: str
    cron: str
    timezone: str
    task: JobTask
    enabled: bool = True
    state: JobState = JobState.REGISTERED
    last_run_at: datetime | None = None
    last_outcome: JobOutcome | None = None
    last_duration_ms: float | None = None
    last_error: str | None = None
    run_count: int = 0
    failure_count: int = 0

    def trigger(self) -> CronTrigger:
        return CronTrigger.from_crontab(self.cron, timezone=ZoneInfo(self.timezone))


@dataclass(frozen=True)
class JobSnapshot:
    name: str
    cron: str
    timezone: str
    enabled: bool
    state: str
    running: bool
    last_run_at: datetime | None
    last_outcome: str | None
    last_duration_ms: float | None
    last_error: str | None
    run_count: int
    failure_count: int
    next_run_at: datetime | None


class ScheduleOrchestrator:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        *,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._scheduler = scheduler or AsyncIOScheduler(
            timezone=clock.tz,
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 3600},
        )
        self._jobs: dict[str, ScheduledJob] = {}
        self._in_flight: set[str] = set()
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def register(
        self,
        name: str,
        cron: str,
        task: JobTask,
        *,
        timezone: str | None = None,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Add or replace the job called *name*.  Invalid cron raises ``ValueError``."""
        job = ScheduledJob(
            name=name,
            cron=cron,
            timezone=timezone or self._clock.tz.key,
            task=task,
            enabled=enabled,
        )
        trigger = job.trigger()  # validates the expression

        previous = self._jobs.get(name)
        if previous is not None:
            job.run_count = previous.run_count
            job.failure_count = previous.failure_count
            job.last_run_at = previous.last_run_at
            job.last_outcome = previous.last_outcome
            logger.info("Re-registering job %s (%s)", name, cron)
        self._jobs[name] = job

        if self._started:
            if self._scheduler.get_job(name) is not None:
                self._scheduler.remove_job(name)
            if enabled:
                self._schedule(job, trigger)
        return job

    def _schedule(self, job: ScheduledJob, trigger: CronTrigger) -> None:
        self._scheduler.add_job(
            self._run,
            trigger,
            args=[job.name],
            id=job.name,
            name=job.name,
            replace_existing=True,
        )
        job.state = JobState.SCHEDULED

    def start(self) -> None:
        if self._started:
            return
        for job in self._jobs.values():
            if job.enabled:
                self._schedule(job, job.trigger())
        self._scheduler.start()
        self._started = True
        logger.info(
            "Scheduler started with %d job(s): %s",
            sum(1 for j in self._jobs.values() if j.enabled),
            ", ".join(sorted(n for n, j in self._jobs.items() if j.enabled)),
        )

    def stop(self) -> None:
        if not self._started:
            return
        self._scheduler.shutdown(wait=False)
        self._started = False
        for job in self._jobs.values():
            job.state = JobState.REGISTERED
        logger.info("Scheduler stopped")

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    def get(self, name: str) -> JobSnapshot | None:
        job = self._jobs.get(name)
        return self._snapshot(job) if job is not None else None

    def jobs(self) -> list[JobSnapshot]:
        return [self._snapshot(job) for job in sorted(self._jobs.values(), key=lambda j: j.name)]

    def _snapshot(self, job: ScheduledJob) -> JobSnapshot:
        next_run_at = None
        if self._started:
            aps_job = self._scheduler.get_job(job.name)
            next_run_at = getattr(aps_job, "next_run_time", None)
        return JobSnapshot(
            name=job.name,
            cron=job.cron,
            timezone=job.timezone,
            enabled=job.enabled,
            state=job.state.value,
            running=job.name in self._in_flight,
            last_run_at=job.last_run_at,
            last_outcome=job.last_outcome.value if job.last_outcome else None,
            last_duration_ms=job.last_duration_ms,
            last_error=job.last_error,
            run_count=job.run_count,
            failure_count=job.failure_count,
            next_run_at=next_run_at,
        )

    async def trigger_manually(self, name: str) -> bool:
        """Run *name* now through the normal wrapper; ``False`` if unknown, skipped or failed."""
        if name not in self._jobs:
            logger.warning("Manual trigger for unknown job %s", name)
            return False
        logger.info("Manually triggering job %s", name)
        return await self._run(name, trigger="manual")

    async def _run(self, name: str, trigger: str = "schedule") -> bool:
        job = self._jobs.get(name)
        if job is None:
            return False

        if name in self._in_flight:
            logger.warning("Job %s is still running; skipping this %s trigger", name, trigger)
            job.last_outcome = JobOutcome.SKIPPED
            await self._record(job, "cron_job_skipped", f"Job {name} skipped (already running)", trigger)
            return False

        self._in_flight.add(name)
        job.state = JobState.RUNNING
        job.last_run_at = self._clock.now()
        started = time.perf_counter()
        success = False
        try:
            await job.task()
            success = True
        except Exception as exc:  # noqa: BLE001
            job.last_error = str(exc) or type(exc).__name__
            logger.exception("Job %s failed: %s", name, exc)
        finally:
            self._in_flight.discard(name)
            job.last_duration_ms = round((time.perf_counter() - started) * 1000, 1)
            job.run_count += 1
            job.state = JobState.SCHEDULED if self._started and job.enabled else JobState.REGISTERED

        if success:
            job.last_outcome = JobOutcome.COMPLETED
            job.last_error = None
            logger.info("Job %s completed in %.1f ms", name, job.last_duration_ms)
            await self._record(job, "cron_job_completed", f"Job {name} completed", trigger)
        else:
            job.last_outcome = JobOutcome.FAILED
            job.failure_count += 1
            await self._record(job, "cron_job_failed", f"Job {name} failed: {job.last_error}", trigger)
        return success

    async def _record(self, job: ScheduledJob, type_: str, message: str, trigger: str) -> None:
        try:
            await self._store.append_audit_log(
                type_,
                message,
                {
                    "job": job.name,
                    "trigger": trigger,
                    "duration_ms": job.last_duration_ms,
                    "run_count": job.run_count,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not record %s for job %s: %s", type_, job.name, exc)
