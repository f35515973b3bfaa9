"""
Inbound chat update router.

Turns Telegram updates (location, contact, text, command, button callback)
into calls on the attendance core and replies through the notification
dispatcher.  Policy results become specific messages; storage failures
become a generic "try again later".
"""

from __future__ import annotations

import logging
from typing import Any

from geoattend.core.clock import Clock
from geoattend.core.config import Settings
from geoattend.core.exceptions import (InvalidCoordinates, InvalidTimestamp,
                                       StorageUnavailable)
from geoattend.db.store import Store
from geoattend.models.employee import AttendanceStatus, Employee
from geoattend.schemas.telegram import (TelegramCallbackQuery,
                                        TelegramContact, TelegramLocation,
                                        TelegramUpdate, TelegramUser)
from geoattend.services import formatters
from geoattend.services.attendance import (AlreadyCheckedIn, AlreadyComplete,
                                           AttendanceStateMachine, CheckedIn,
                                           CheckedOut, NotCheckedIn,
                                           OutOfRange)
from geoattend.services.conversation import (ChangeInfo, Completed,
                                             ConversationManager, EarlyReason,
                                             LateReason, LeaveRequest,
                                             NeedsInput, NoActiveConversation,
                                             OvertimeRequest)
from geoattend.services.geo import Location
from geoattend.services.notifications import NotificationDispatcher
from geoattend.services.reports import ReportAggregator
from geoattend.services.scheduler import ScheduleOrchestrator
from geoattend.services.transport import Transport

logger = logging.getLogger(__name__)

RETRY_LATER = "⚠️ Something went wrong on our side. Please try again in a few minutes."
NOT_REGISTERED = "❌ You are not registered yet. Use /register to get started."
PERMISSION_DENIED = "⛔ This command is for admins only."

BTN_STATUS = "📊 My Status"
BTN_REPORT = "📈 My Report"
BTN_HELP = "❓ Help"
BTN_CANCEL = "❌ Cancel"

PROFILE_FIELDS = ("name", "department", "position", "phone")
REPORT_DAYS = 30


# ── Keyboards ───────────────────────────────────────────────────────
def location_keyboard(checked_in: bool) -> dict[str, Any]:
    label = "📍 Check Out" if checked_in else "📍 Check In"
    return {
        "keyboard": [
            [{"text": label, "request_location": True}],
            [{"text": BTN_STATUS}, {"text": BTN_REPORT}],
        ],
        "resize_keyboard": True,
    }


def contact_keyboard() -> dict[str, Any]:
    return {
        "keyboard": [[{"text": "📱 Share Contact", "request_contact": True}]],
        "resize_keyboard": True,
        "one_time_keyboard": True,
    }


def reason_keyboard(kind: str) -> dict[str, Any]:
    if kind == "late":
        options = [("🚗 Traffic", "traffic"), ("🏥 Medical", "medical"), ("👪 Family", "family"),
                   ("🚌 Transport", "transport"), ("☔ Weather", "weather"), ("✍️ Other", "other")]
    else:
        options = [("🏥 Medical", "medical"), ("👪 Family", "family"), ("📋 Meeting", "meeting"),
                   ("🚨 Emergency", "emergency"), ("✅ Finished work", "finished_work"), ("✍️ Other", "other")]
    buttons = [{"text": text, "callback_data": f"reason_{value}"} for text, value in options]
    return {"inline_keyboard": [buttons[i:i + 2] for i in range(0, len(buttons), 2)]}


class AttendanceBot:
    def __init__(
        self,
        *,
        settings: Settings,
        store: Store,
        clock: Clock,
        attendance: AttendanceStateMachine,
        conversations: ConversationManager,
        dispatcher: NotificationDispatcher,
        reports: ReportAggregator,
        orchestrator: ScheduleOrchestrator,
        transport: Transport,
    ) -> None:
        self._settings = settings
        self._store = store
        self._clock = clock
        self._attendance = attendance
        self._conversations = conversations
        self._dispatcher = dispatcher
        self._reports = reports
        self._orchestrator = orchestrator
        self._transport = transport

    async def _reply(self, user_id: str, text: str, reply_markup: dict[str, Any] | None = None) -> None:
        await self._dispatcher.send(user_id, text, kind="reply", reply_markup=reply_markup)

    async def handle_update(self, update: TelegramUpdate) -> None:
        if update.callback_query is not None:
            user_id = str(update.callback_query.from_.id)
            try:
                await self.on_callback(update.callback_query)
            except StorageUnavailable:
                await self._reply(user_id, RETRY_LATER)
            return

        message = update.message
        if message is None or message.from_ is None:
            return
        user = message.from_
        user_id = str(user.id)
        try:
            if message.location is not None:
                await self.on_location(user_id, message.location)
            elif message.contact is not None:
                await self.on_contact(user, message.contact)
            elif message.text:
                text = message.text.strip()
                if text.startswith("/"):
                    await self.on_command(user, text)
                else:
                    await self.on_text(user, text)
        except StorageUnavailable:
            await self._reply(user_id, RETRY_LATER)

    async def _employee(self, user_id: str) -> Employee | None:
        employee = await self._store.get_employee_by_telegram(user_id)
        if employee is None or not employee.is_active:
            return None
        return employee

    # ── Location: check in / check out ──────────────────────────────
    async def on_location(self, user_id: str, shared: TelegramLocation) -> None:
        employee = await self._employee(user_id)
        if employee is None:
            await self._reply(user_id, NOT_REGISTERED, contact_keyboard())
            return

        location = Location(shared.latitude, shared.longitude)
        now = self._clock.now()
        try:
            today = await self._attendance.status_for(employee.id)
            if today is not None and today.status == AttendanceStatus.CHECKED_IN.value:
                result = await self._attendance.request_check_out(employee.id, now, location)
            else:
                result = await self._attendance.request_check_in(employee.id, now, location)
        except InvalidCoordinates:
            await self._reply(user_id, formatters.invalid_location())
            return
        except InvalidTimestamp:
            await self._reply(user_id, RETRY_LATER)
            return

        radius = self._settings.OFFICE_RADIUS_METERS
        match result:
            case CheckedIn(record=record, is_late=is_late, minutes_late=minutes, distance_meters=distance):
                await self._reply(
                    user_id,
                    formatters.check_in_success(now, is_late, minutes, distance),
                    location_keyboard(checked_in=True),
                )
                if result.reason_needed:
                    await self._conversations.begin(user_id, LateReason(attendance_id=record.id))
                    await self._reply(user_id, formatters.reason_prompt("late"), reason_keyboard("late"))
            case CheckedOut(record=record, is_early=is_early, minutes_early=minutes, working_hours=hours):
                await self._reply(
                    user_id,
                    formatters.check_out_success(now, is_early, minutes, hours),
                    location_keyboard(checked_in=False),
                )
                if result.reason_needed:
                    await self._conversations.begin(user_id, EarlyReason(attendance_id=record.id))
                    await self._reply(user_id, formatters.reason_prompt("early"), reason_keyboard("early"))
            case OutOfRange(distance_meters=distance):
                await self._reply(user_id, formatters.location_denied(distance, radius))
            case AlreadyCheckedIn():
                await self._reply(user_id, "✅ You are already checked in today.")
            case AlreadyComplete():
                await self._reply(user_id, "✅ You have already completed your attendance for today.")
            case NotCheckedIn():
                await self._reply(user_id, "❌ You have not checked in today.")

    # ── Registration ────────────────────────────────────────────────
    async def on_contact(self, user: TelegramUser, contact: TelegramContact) -> None:
        user_id = str(user.id)
        if contact.user_id != user.id:
            await self._reply(user_id, "❌ Please share your own contact information.")
            return
        employee = await self._store.create_employee(
            user_id,
            contact.first_name,
            last_name=contact.last_name,
            username=user.username,
            phone=contact.phone_number,
        )
        if employee is None:
            await self._reply(user_id, "✅ You are already registered!", location_keyboard(checked_in=False))
            return
        await self._store.append_audit_log(
            "employee_registered", f"User {user_id} registered", {"employee_id": employee.id}
        )
        logger.info("Registered employee %s for telegram user %s", employee.id, user_id)
        await self._reply(
            user_id,
            "✅ *Registration successful!*\nShare your location with the buttons below to check in and out.",
            location_keyboard(checked_in=False),
        )

    # ── Free text ───────────────────────────────────────────────────
    async def on_text(self, user: TelegramUser, text: str) -> None:
        user_id = str(user.id)
        if text == BTN_CANCEL:
            await self._cancel(user_id)
        elif text == BTN_STATUS:
            await self._status(user_id)
        elif text == BTN_REPORT:
            await self._report(user_id)
        elif text == BTN_HELP:
            await self._help(user_id)
        else:
            await self._continue_conversation(user_id, text)

    async def _continue_conversation(self, user_id: str, text: str) -> None:
        employee = await self._employee(user_id)
        outcome = await self._conversations.consume(user_id, text, employee)
        match outcome:
            case NoActiveConversation():
                await self._reply(user_id, "❓ I did not understand that. Send /help for the list of commands.")
            case Completed(reply=reply) | NeedsInput(reply=reply):
                await self._reply(user_id, reply)

    async def on_callback(self, query: TelegramCallbackQuery) -> None:
        user_id = str(query.from_.id)
        try:
            await self._transport.answer_callback_query(query.id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("answerCallbackQuery failed for %s: %s", user_id, exc)

        data = query.data or ""
        if not data.startswith("reason_"):
            logger.info("Ignoring unknown callback %r from %s", data, user_id)
            return
        reason = data.removeprefix("reason_").replace("_", " ")
        if reason == "other":
            await self._reply(user_id, "✍️ Please type your reason:")
            return
        await self._continue_conversation(user_id, reason)

    # ── Commands ────────────────────────────────────────────────────
    async def on_command(self, user: TelegramUser, text: str) -> None:
        user_id = str(user.id)
        head, _, rest = text.partition(" ")
        command = head.split("@", 1)[0].lower()
        arg = rest.strip()

        match command:
            case "/start":
                await self._start(user)
            case "/register":
                if await self._employee(user_id) is not None:
                    await self._reply(user_id, "✅ You are already registered!")
                else:
                    await self._reply(
                        user_id,
                        "📝 Please share your contact with the *Share Contact* button below.",
                        contact_keyboard(),
                    )
            case "/help":
                await self._help(user_id)
            case "/status":
                await self._status(user_id)
            case "/report":
                await self._report(user_id)
            case "/cancel":
                await self._cancel(user_id)
            case "/leave":
                await self._begin_for_employee(
                    user_id,
                    LeaveRequest(leave_type=arg or "annual"),
                    "🌴 Send your leave dates and reason as:\n`DD/MM/YYYY DD/MM/YYYY reason`",
                )
            case "/overtime":
                await self._begin_for_employee(
                    user_id,
                    OvertimeRequest(),
                    "🕐 Send the overtime details as:\n`DD/MM/YYYY HH:MM-HH:MM reason`",
                )
            case "/change_info":
                if arg not in PROFILE_FIELDS:
                    await self._reply(user_id, f"Usage: /change\\_info <{'|'.join(PROFILE_FIELDS)}>")
                else:
                    await self._begin_for_employee(
                        user_id, ChangeInfo(field=arg), f"✏️ Send your new {arg}:"
                    )
            case "/admin_report" | "/list_employees" | "/add_admin" | "/run_job":
                await self._admin_command(user_id, command, arg)
            case _:
                await self._reply(user_id, "❓ Unknown command. Use /help for available commands.")

    async def _start(self, user: TelegramUser) -> None:
        user_id = str(user.id)
        employee = await self._employee(user_id)
        settings = self._settings
        if employee is None:
            text = formatters.welcome(
                user.first_name, False,
                office_name=settings.OFFICE_NAME, radius=settings.OFFICE_RADIUS_METERS,
                work_start=settings.WORK_START, work_end=settings.WORK_END,
            )
            await self._reply(user_id, text, contact_keyboard())
            return
        today = await self._attendance.status_for(employee.id)
        checked_in = today is not None and today.status == AttendanceStatus.CHECKED_IN.value
        text = formatters.welcome(
            employee.first_name, True,
            office_name=settings.OFFICE_NAME, radius=settings.OFFICE_RADIUS_METERS,
            work_start=settings.WORK_START, work_end=settings.WORK_END,
        )
        await self._reply(user_id, text, location_keyboard(checked_in))

    async def _help(self, user_id: str) -> None:
        await self._reply(user_id, formatters.help_text(await self._store.is_admin(user_id)))

    async def _status(self, user_id: str) -> None:
        employee = await self._employee(user_id)
        if employee is None:
            await self._reply(user_id, NOT_REGISTERED)
            return
        record = await self._attendance.status_for(employee.id)
        check_in = self._clock.to_local(record.check_in_time) if record and record.check_in_time else None
        check_out = self._clock.to_local(record.check_out_time) if record and record.check_out_time else None
        await self._reply(
            user_id, formatters.attendance_status(self._clock.now(), record, check_in, check_out)
        )

    async def _report(self, user_id: str) -> None:
        employee = await self._employee(user_id)
        if employee is None:
            await self._reply(user_id, NOT_REGISTERED)
            return
        records = await self._reports.employee_history(employee.id, REPORT_DAYS)
        await self._reply(user_id, formatters.employee_history(employee, records, REPORT_DAYS))

    async def _cancel(self, user_id: str) -> None:
        cancelled = await self._conversations.cancel(user_id)
        await self._reply(user_id, "❌ Cancelled." if cancelled else "Nothing to cancel.")

    async def _begin_for_employee(self, user_id: str, payload, prompt: str) -> None:
        if await self._employee(user_id) is None:
            await self._reply(user_id, NOT_REGISTERED)
            return
        await self._conversations.begin(user_id, payload)
        await self._reply(user_id, prompt + "\n\nSend ❌ Cancel to stop.")

    async def _admin_command(self, user_id: str, command: str, arg: str) -> None:
        if not await self._store.is_admin(user_id):
            await self._reply(user_id, PERMISSION_DENIED)
            return
        match command:
            case "/admin_report":
                summary = await self._reports.daily_summary(self._clock.today())
                await self._reply(user_id, formatters.daily_summary(summary, generated_at=self._clock.now()))
            case "/list_employees":
                employees = await self._store.list_employees(active=True)
                await self._reply(user_id, formatters.employee_list(employees))
            case "/add_admin":
                if not arg.isdigit():
                    await self._reply(user_id, "Usage: /add\\_admin <telegram id>")
                    return
                await self._store.add_admin(arg)
                await self._store.append_audit_log(
                    "admin_added", f"Admin {arg} added by {user_id}", {"telegram_id": arg}
                )
                await self._reply(user_id, f"👑 `{arg}` is now an admin.")
            case "/run_job":
                if not self._orchestrator.has_job(arg):
                    names = ", ".join(j.name for j in self._orchestrator.jobs())
                    await self._reply(user_id, formatters.escape(f"Unknown job. Available: {names}"))
                    return
                ok = await self._orchestrator.trigger_manually(arg)
                status = "completed" if ok else "failed or was skipped"
                await self._reply(user_id, formatters.escape(f"⚙️ Job {arg} {status}."))
