"""
Short-lived, per-user multi-step dialogues (reason collection, leave and
overtime requests, profile edits).

Each dialogue kind is its own payload model; the persisted JSON is validated
back into that model on every lookup and dispatched with ``match``.  A user
has at most one active dialogue: ``begin`` overwrites, expiry cancels.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated, Literal, Union, assert_never

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from geoattend.core.clock import Clock, ensure_utc
from geoattend.db.store import Store
from geoattend.models.employee import Employee
from geoattend.services import formatters
from geoattend.services.attendance import AttendanceStateMachine, ReasonAttached
from geoattend.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

LEAVE_RE = re.compile(r"^(\d{2}/\d{2}/\d{4})\s+(\d{2}/\d{2}/\d{4})\s+(.+)$", re.DOTALL)
OVERTIME_RE = re.compile(r"^(\d{2}/\d{2}/\d{4})\s+(\d{2}:\d{2})\s*-\s*(\d{2}:\d{2})\s+(.+)$", re.DOTALL)
PHONE_RE = re.compile(r"^\+?[0-9 ()-]{6,20}$")
PROFILE_VALUE_MAX = 100


# ── Payloads ────────────────────────────────────────────────────────
class LateReason(BaseModel):
    type: Literal["late_reason"] = "late_reason"
    attendance_id: int


class EarlyReason(BaseModel):
    type: Literal["early_reason"] = "early_reason"
    attendance_id: int


class LeaveRequest(BaseModel):
    type: Literal["leave_request"] = "leave_request"
    leave_type: str = "annual"


class OvertimeRequest(BaseModel):
    type: Literal["overtime_request"] = "overtime_request"


class ChangeInfo(BaseModel):
    type: Literal["change_info"] = "change_info"
    field: Literal["name", "department", "position", "phone"]


Payload = Annotated[
    Union[LateReason, EarlyReason, LeaveRequest, OvertimeRequest, ChangeInfo],
    Field(discriminator="type"),
]
_payload_adapter: TypeAdapter[Payload] = TypeAdapter(Payload)

REASON_TYPES = frozenset({"late_reason", "early_reason"})


# ── Outcomes ────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ActiveConversation:
    user_id: str
    payload: Payload
    step: int
    expires_at: datetime


@dataclass(frozen=True)
class NoActiveConversation:
    pass


@dataclass(frozen=True)
class Completed:
    reply: str


@dataclass(frozen=True)
class NeedsInput:
    reply: str


ConsumeOutcome = NoActiveConversation | Completed | NeedsInput


def _parse_day(value: str) -> datetime | None:
    try:
        return datetime.strptime(value, "%d/%m/%Y")
    except ValueError:
        return None


class ConversationManager:
    def __init__(
        self,
        store: Store,
        clock: Clock,
        attendance: AttendanceStateMachine,
        dispatcher: NotificationDispatcher,
        *,
        reason_ttl: timedelta,
        default_ttl: timedelta,
    ) -> None:
        self._store = store
        self._clock = clock
        self._attendance = attendance
        self._dispatcher = dispatcher
        self.reason_ttl = reason_ttl
        self.default_ttl = default_ttl

    async def begin(self, user_id: str, payload: Payload, ttl: timedelta | None = None) -> datetime:
        if ttl is None:
            ttl = self.reason_ttl if payload.type in REASON_TYPES else self.default_ttl
        expires_at = self._clock.now() + ttl
        await self._store.put_conversation(
            str(user_id), payload.type, payload.model_dump(), expires_at
        )
        logger.debug("Conversation %s started for %s", payload.type, user_id)
        return expires_at

    async def active(self, user_id: str) -> ActiveConversation | None:
        """The user's live dialogue; expired or unreadable rows are deleted here."""
        row = await self._store.get_conversation(str(user_id))
        if row is None:
            return None
        if ensure_utc(row.expires_at) <= ensure_utc(self._clock.now()):
            await self._store.delete_conversation(str(user_id))
            logger.info("Conversation %s for %s expired", row.type, user_id)
            return None
        try:
            payload = _payload_adapter.validate_python({**(row.payload or {}), "type": row.type})
        except ValidationError as exc:
            logger.warning("Discarding unreadable %s conversation for %s: %s", row.type, user_id, exc)
            await self._store.delete_conversation(str(user_id))
            return None
        return ActiveConversation(
            user_id=str(user_id), payload=payload, step=row.step, expires_at=row.expires_at
        )

    async def cancel(self, user_id: str) -> bool:
        return await self._store.delete_conversation(str(user_id))

    async def expire_sweep(self, now: datetime | None = None) -> int:
        removed = await self._store.delete_expired("conversation", now or self._clock.now())
        if removed:
            logger.info("Expired %d conversation state(s)", removed)
        return removed

    async def consume(self, user_id: str, text: str, employee: Employee | None = None) -> ConsumeOutcome:
        conversation = await self.active(user_id)
        if conversation is None:
            return NoActiveConversation()

        text = text.strip()
        match conversation.payload:
            case LateReason(attendance_id=attendance_id):
                outcome = await self._reason(attendance_id, "late", text)
            case EarlyReason(attendance_id=attendance_id):
                outcome = await self._reason(attendance_id, "early", text)
            case LeaveRequest(leave_type=leave_type):
                outcome = await self._leave(employee, leave_type, text)
            case OvertimeRequest():
                outcome = await self._overtime(employee, text)
            case ChangeInfo(field=field):
                outcome = await self._change_info(employee, field, text)
            case _:
                assert_never(conversation.payload)

        if isinstance(outcome, Completed):
            await self._store.delete_conversation(str(user_id))
        else:
            await self._store.advance_conversation(str(user_id), conversation.step + 1)
        return outcome

    # ── Handlers ────────────────────────────────────────────────────
    async def _reason(self, attendance_id: int, kind: Literal["late", "early"], text: str) -> Completed | NeedsInput:
        if not text:
            return NeedsInput(formatters.reason_prompt(kind))
        result = await self._attendance.attach_reason(attendance_id, kind, text)
        if isinstance(result, ReasonAttached):
            return Completed("✅ Thank you, your reason has been recorded.")
        return Completed("ℹ️ No reason is needed for this attendance record.")

    async def _leave(self, employee: Employee | None, leave_type: str, text: str) -> Completed | NeedsInput:
        usage = (
            "Please send: `DD/MM/YYYY DD/MM/YYYY reason`\n"
            "Example: `01/02/2025 03/02/2025 Family event`"
        )
        if employee is None:
            return Completed("❌ You need to register first.")
        match_ = LEAVE_RE.match(text)
        if not match_:
            return NeedsInput(usage)
        start, end = _parse_day(match_.group(1)), _parse_day(match_.group(2))
        if start is None or end is None or end < start:
            return NeedsInput("❌ Invalid dates. " + usage)
        reason = match_.group(3).strip()
        body = (
            f"Type: {leave_type}\n"
            f"From {start.strftime('%d/%m/%Y')} to {end.strftime('%d/%m/%Y')} "
            f"({(end - start).days + 1} day(s))\n"
            f"Reason: {reason}"
        )
        await self._submit_request("leave", employee, body, {
            "leave_type": leave_type,
            "start": start.date().isoformat(),
            "end": end.date().isoformat(),
            "reason": reason,
        })
        return Completed("✅ Leave request submitted. An admin will review it.")

    async def _overtime(self, employee: Employee | None, text: str) -> Completed | NeedsInput:
        usage = (
            "Please send: `DD/MM/YYYY HH:MM-HH:MM reason`\n"
            "Example: `05/02/2025 17:00-20:00 Release deadline`"
        )
        if employee is None:
            return Completed("❌ You need to register first.")
        match_ = OVERTIME_RE.match(text)
        if not match_:
            return NeedsInput(usage)
        day = _parse_day(match_.group(1))
        try:
            start = datetime.strptime(match_.group(2), "%H:%M").time()
            end = datetime.strptime(match_.group(3), "%H:%M").time()
        except ValueError:
            return NeedsInput("❌ Invalid time. " + usage)
        if day is None or end <= start:
            return NeedsInput("❌ Invalid date or time range. " + usage)
        reason = match_.group(4).strip()
        body = f"Date: {day.strftime('%d/%m/%Y')}\nHours: {start:%H:%M}-{end:%H:%M}\nReason: {reason}"
        await self._submit_request("overtime", employee, body, {
            "date": day.date().isoformat(),
            "start": start.strftime("%H:%M"),
            "end": end.strftime("%H:%M"),
            "reason": reason,
        })
        return Completed("✅ Overtime request submitted. An admin will review it.")

    async def _change_info(self, employee: Employee | None, field: str, text: str) -> Completed | NeedsInput:
        if employee is None:
            return Completed("❌ You need to register first.")
        if not text or len(text) > PROFILE_VALUE_MAX:
            return NeedsInput(f"Please send the new {field} (1-{PROFILE_VALUE_MAX} characters).")
        if field == "name":
            first, _, last = text.partition(" ")
            patch = {"first_name": first, "last_name": last.strip() or None}
        elif field == "phone":
            if not PHONE_RE.match(text):
                return NeedsInput("❌ That does not look like a phone number. Please try again.")
            patch = {"phone": text}
        else:
            patch = {field: text}
        await self._store.update_employee(employee.id, patch)
        await self._store.append_audit_log(
            "profile_updated", f"Employee {employee.id} updated {field}", {"field": field}
        )
        return Completed(f"✅ Your {field} has been updated.")

    async def _submit_request(self, kind: str, employee: Employee, body: str, details: dict) -> None:
        await self._store.append_audit_log(
            f"{kind}_request", f"Employee {employee.id} submitted a {kind} request", details
        )
        await self._dispatcher.notify_admins(
            formatters.request_to_admins(kind, employee, body), kind=f"{kind}_request"
        )
