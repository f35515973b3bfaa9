"""
Notification dispatcher — the single seam for outbound chat messages.

``send`` never raises: transport failures are converted into a
:class:`SendResult`, and every attempt (success or failure) is written to
the notification log.  A failed admin alert therefore can never abort the
attendance transaction that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from geoattend.db.store import Store
from geoattend.models.employee import Employee
from geoattend.services import formatters
from geoattend.services.transport import Transport

logger = logging.getLogger(__name__)

HEALTH_LEVELS = ("warning", "error", "critical")


@dataclass(frozen=True)
class SendResult:
    recipient: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class BroadcastResult:
    successful: int
    total: int
    failures: list[SendResult] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.total - self.successful


class NotificationDispatcher:
    def __init__(self, transport: Transport, store: Store) -> None:
        self._transport = transport
        self._store = store

    async def send(
        self,
        recipient: str,
        message: str,
        *,
        kind: str = "custom",
        parse_mode: str | None = "Markdown",
        silent: bool = False,
        reply_markup: dict[str, Any] | None = None,
    ) -> SendResult:
        try:
            await self._transport.send_message(
                str(recipient),
                message,
                parse_mode=parse_mode,
                silent=silent,
                reply_markup=reply_markup,
            )
            result = SendResult(recipient=str(recipient), success=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to send %s notification to %s: %s", kind, recipient, exc)
            result = SendResult(recipient=str(recipient), success=False, error=str(exc) or type(exc).__name__)

        try:
            await self._store.append_notification_log(
                str(recipient), kind, message, result.success, result.error
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to write notification log for %s: %s", recipient, exc)
        return result

    async def broadcast(
        self,
        recipients: Iterable[str],
        message: str,
        *,
        kind: str = "broadcast",
        parse_mode: str | None = "Markdown",
        silent: bool = False,
    ) -> BroadcastResult:
        targets = list(dict.fromkeys(str(r) for r in recipients))
        results = await asyncio.gather(
            *(self.send(r, message, kind=kind, parse_mode=parse_mode, silent=silent) for r in targets)
        )
        successful = sum(1 for r in results if r.success)
        if targets:
            logger.info("Broadcast %s: %d/%d delivered", kind, successful, len(targets))
        return BroadcastResult(
            successful=successful,
            total=len(targets),
            failures=[r for r in results if not r.success],
        )

    async def notify_admins(
        self,
        message: str,
        *,
        kind: str = "admin_alert",
        parse_mode: str | None = "Markdown",
        silent: bool = False,
    ) -> BroadcastResult:
        try:
            admins = await self._store.list_admins(active=True)
        except Exception as exc:  # noqa: BLE001
            logger.error("Cannot load admin recipients for %s: %s", kind, exc)
            return BroadcastResult(successful=0, total=0)
        if not admins:
            logger.warning("No active admins to receive %s", kind)
        return await self.broadcast(
            [a.telegram_id for a in admins], message, kind=kind, parse_mode=parse_mode, silent=silent
        )

    async def notify_employees(
        self,
        message: str,
        *,
        kind: str = "broadcast_employees",
        parse_mode: str | None = "Markdown",
        silent: bool = False,
    ) -> BroadcastResult:
        """Send *message* to every active employee."""
        employees = await self._store.list_employees(active=True)
        return await self.broadcast(
            [e.telegram_id for e in employees], message, kind=kind, parse_mode=parse_mode, silent=silent
        )

    # ── Domain helpers ──────────────────────────────────────────────
    async def late_alert(self, employee: Employee, at: datetime, minutes_late: int) -> BroadcastResult:
        return await self.notify_admins(
            formatters.late_alert(employee, at, minutes_late), kind="late_alert"
        )

    async def early_departure_alert(self, employee: Employee, at: datetime, minutes_early: int) -> BroadcastResult:
        return await self.notify_admins(
            formatters.early_alert(employee, at, minutes_early), kind="early_alert"
        )

    async def health_alert(
        self,
        level: str,
        title: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> BroadcastResult:
        if level not in HEALTH_LEVELS:
            raise ValueError(f"Health level must be one of {HEALTH_LEVELS}")
        return await self.notify_admins(
            formatters.health_alert(level, title, message, details), kind=f"health_{level}"
        )

    async def employee_reminder(self, employee: Employee, kind: str, *, work_start: str, work_end: str) -> SendResult:
        return await self.send(
            employee.telegram_id,
            formatters.reminder(kind, employee.first_name, work_start, work_end),
            kind=kind,
        )
