"""
Chat message texts (Telegram legacy Markdown).

Pure functions only. No I/O and no clock reads.  Times passed in are already
converted to the configured local zone.
"""

from __future__ import annotations

from datetime import date, datetime

from geoattend.models.employee import AttendanceDay, Employee
from geoattend.services.reports import DailyReport, DailySummary, PeriodSummary

_MD_SPECIAL = ("_", "*", "`", "[")

HEALTH_ICONS = {"warning": "⚠️", "error": "❌", "critical": "🚨"}


def escape(value: object) -> str:
    text = str(value)
    for ch in _MD_SPECIAL:
        text = text.replace(ch, f"\\{ch}")
    return text


def _hhmm(dt: datetime | None) -> str:
    return dt.strftime("%H:%M") if dt else "—"


def _long_date(day: date) -> str:
    return day.strftime("%A, %d %B %Y")


# ── Employee-facing ─────────────────────────────────────────────────
def welcome(name: str, registered: bool, *, office_name: str, radius: float, work_start: str, work_end: str) -> str:
    if not registered:
        return (
            f"👋 *Welcome, {escape(name)}!*\n\n"
            "This bot records your attendance using your location.\n\n"
            "📱 Please register first with the *Share Contact* button below.\n\n"
            f"🏢 *Office:* {escape(office_name)}\n"
            f"📍 *Radius:* {radius:.0f} meters\n"
            f"⏰ *Work hours:* {work_start} - {work_end}"
        )
    return (
        f"👋 *Welcome back, {escape(name)}!*\n\n"
        "Share your location to check in or out."
    )


def location_denied(distance: float, radius: float) -> str:
    return (
        "❌ *Location Not Allowed*\n\n"
        f"You are *{distance:.0f} meters* away from the office.\n"
        f"📍 Required: within {radius:.0f} meters\n\n"
        "Please move closer to the office and try again."
    )


def invalid_location() -> str:
    return "❌ The shared location could not be read. Please share your live location again."


def check_in_success(at: datetime, is_late: bool, minutes_late: int, distance: float) -> str:
    text = f"✅ *Checked in* at {_hhmm(at)}\n📍 Distance from office: {distance:.0f} m"
    if is_late:
        text += f"\n⏰ You are *{minutes_late} minutes late*."
    return text


def check_out_success(at: datetime, is_early: bool, minutes_early: int, working_hours: float) -> str:
    text = f"👋 *Checked out* at {_hhmm(at)}\n⏱️ Worked: {working_hours:.2f} hours"
    if is_early:
        text += f"\n⚠️ You left *{minutes_early} minutes early*."
    return text


def reason_prompt(kind: str) -> str:
    if kind == "late":
        return "⏰ You are checking in late. Please reply with the reason:"
    return "⏰ You are checking out early. Please reply with the reason:"


def attendance_status(now: datetime, record: AttendanceDay | None, check_in: datetime | None, check_out: datetime | None) -> str:
    lines = [f"📊 *Today's Status* ({now.strftime('%d/%m/%Y %H:%M')})", ""]
    if record is None or check_in is None:
        lines.append("❌ Not checked in yet.")
        return "\n".join(lines)
    lines.append(f"✅ Check-in: {_hhmm(check_in)}{' (late)' if record.is_late else ''}")
    if check_out is None:
        lines.append("🟢 Currently at work.")
    else:
        lines.append(f"👋 Check-out: {_hhmm(check_out)}{' (early)' if record.is_early_departure else ''}")
        lines.append(f"⏱️ Worked: {(record.working_hours or 0):.2f} hours")
    return "\n".join(lines)


def employee_history(employee: Employee, records: list[AttendanceDay], days: int) -> str:
    present = sum(1 for r in records if r.check_in_time is not None)
    late = sum(1 for r in records if r.is_late)
    early = sum(1 for r in records if r.is_early_departure)
    hours = sum(r.working_hours or 0 for r in records)
    return (
        f"📈 *Attendance Report — {escape(employee.full_name)}*\n"
        f"Last {days} days\n\n"
        f"• Days present: {present}\n"
        f"• Late arrivals: {late}\n"
        f"• Early departures: {early}\n"
        f"• Total hours: {hours:.1f}"
    )


def reminder(kind: str, name: str, work_start: str, work_end: str) -> str:
    if kind == "checkout_reminder":
        return (
            f"🔔 Hi {escape(name)}, the work day ended at {work_end}.\n"
            "Don't forget to share your location to check out."
        )
    return (
        f"⏰ Hi {escape(name)}, work started at {work_start} and you have not checked in yet.\n"
        "Please share your location when you arrive."
    )


def help_text(is_admin: bool) -> str:
    text = (
        "❓ *Help*\n\n"
        "📍 Share your location to check in / check out\n"
        "/status — today's attendance\n"
        "/report — your last 30 days\n"
        "/leave — request leave\n"
        "/overtime — request overtime\n"
        "/change\\_info — update your profile\n"
        "/cancel — cancel the current dialogue"
    )
    if is_admin:
        text += (
            "\n\n👑 *Admin*\n"
            "/admin\\_report — today's summary\n"
            "/list\\_employees — active employees\n"
            "/add\\_admin <telegram id> — grant admin\n"
            "/run\\_job <name> — run a scheduled job now"
        )
    return text


# ── Admin-facing ────────────────────────────────────────────────────
def late_alert(employee: Employee, at: datetime, minutes_late: int) -> str:
    return (
        "⏰ *Late Arrival*\n\n"
        f"👤 {escape(employee.full_name)}\n"
        f"🕐 Checked in at {_hhmm(at)}\n"
        f"⚠️ {minutes_late} minutes late"
    )


def early_alert(employee: Employee, at: datetime, minutes_early: int) -> str:
    return (
        "🏃 *Early Departure*\n\n"
        f"👤 {escape(employee.full_name)}\n"
        f"🕐 Checked out at {_hhmm(at)}\n"
        f"⚠️ {minutes_early} minutes early"
    )


def daily_summary(summary: DailySummary, generated_at: datetime | None = None) -> str:
    text = (
        "📊 *Daily Attendance Summary*\n"
        f"📅 {_long_date(summary.date)}\n\n"
        "👥 *Employees*\n"
        f"• Total: {summary.total_employees}\n"
        f"• Checked in: {summary.checked_in}\n"
        f"• Completed day: {summary.checked_out}\n"
        f"• Still working: {summary.still_working}\n\n"
        "⚠️ *Attention*\n"
        f"• Late arrivals: {summary.late_count}\n"
        f"• Early departures: {summary.early_count}\n\n"
        f"📈 Attendance rate: {summary.attendance_rate:.1f}%\n"
        f"⏱️ Average hours: {summary.average_working_hours:.2f}"
    )
    if generated_at is not None:
        text += f"\n\nGenerated at {_hhmm(generated_at)}"
    return text


def period_summary(title: str, summary: PeriodSummary) -> str:
    return (
        f"📅 *{escape(title)}*\n"
        f"{summary.start.strftime('%d/%m/%Y')} - {summary.end.strftime('%d/%m/%Y')}\n\n"
        f"• Working days: {summary.working_days}\n"
        f"• Records: {summary.total_records}\n"
        f"• Completed days: {summary.completed}\n"
        f"• Late arrivals: {summary.late_count}\n"
        f"• Early departures: {summary.early_count}\n"
        f"• Attendance rate: {summary.attendance_rate:.1f}%\n"
        f"• Average hours: {summary.average_working_hours:.2f}"
    )


def absence_alert(day: date, absentees: list[Employee]) -> str:
    names = "\n".join(f"• {escape(e.full_name)}" for e in absentees)
    return f"🚫 *Absence Alert* — {day.strftime('%d/%m/%Y')}\n\n{len(absentees)} employee(s) not checked in:\n{names}"


def daily_report(report: DailyReport, tz_convert) -> str:
    """Detailed end-of-day report; *tz_convert* maps stored UTC times to local."""
    parts = [daily_summary(report.summary)]
    if report.late:
        parts.append(
            "⏰ *Late arrivals*\n"
            + "\n".join(
                f"• {escape(e.full_name)} — {_hhmm(tz_convert(r.check_in_time))}"
                + (f" ({escape(r.late_reason)})" if r.late_reason else "")
                for e, r in report.late
            )
        )
    if report.early:
        parts.append(
            "🏃 *Early departures*\n"
            + "\n".join(
                f"• {escape(e.full_name)} — {_hhmm(tz_convert(r.check_out_time))}"
                + (f" ({escape(r.early_reason)})" if r.early_reason else "")
                for e, r in report.early
            )
        )
    if report.absentees:
        parts.append("🚫 *Absent*\n" + "\n".join(f"• {escape(e.full_name)}" for e in report.absentees))
    return "\n\n".join(parts)


def health_alert(level: str, title: str, message: str, details: dict | None = None) -> str:
    icon = HEALTH_ICONS.get(level, "ℹ️")
    text = f"{icon} *System Health {level.upper()}*\n\n*{escape(title)}*\n{escape(message)}"
    if details:
        text += "\n\n" + "\n".join(f"• {escape(k)}: {escape(v)}" for k, v in details.items())
    return text


def employee_list(employees: list[Employee]) -> str:
    if not employees:
        return "👥 No active employees."
    lines = [f"👥 *Active employees* ({len(employees)})", ""]
    for e in employees:
        extra = f" — {escape(e.department)}" if e.department else ""
        lines.append(f"• {escape(e.full_name)}{extra} (`{e.telegram_id}`)")
    return "\n".join(lines)


def request_to_admins(kind: str, employee: Employee, body: str) -> str:
    title = "🌴 *Leave Request*" if kind == "leave" else "🕐 *Overtime Request*"
    return f"{title}\n\n👤 {escape(employee.full_name)}\n{escape(body)}"
