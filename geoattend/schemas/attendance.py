"""Pydantic schemas for Employees / Attendance days / Reports / Jobs."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

_PHONE_RE = re.compile(r"^\+?[0-9 ()-]{6,20}$")
_NOT_NULL_FIELDS = ("first_name", "is_active")


# ── Employee ────────────────────────────────────────────────────────
class EmployeeUpdate(BaseModel):
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    department: str | None = Field(None, max_length=100)
    position: str | None = Field(None, max_length=100)
    phone: str | None = None
    is_active: bool | None = None

    @field_validator("first_name", "last_name", "department", "position")
    @classmethod
    def _strip(cls, v: str | None) -> str | None:
        return v.strip() if v is not None else v

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str | None) -> str | None:
        if v is not None and not _PHONE_RE.match(v.strip()):
            raise ValueError("Phone must be 6-20 digits (spaces, dashes, parentheses allowed)")
        return v.strip() if v is not None else v

    @model_validator(mode="after")
    def _no_null_required(self) -> EmployeeUpdate:
        # Omitting a field leaves it unchanged; null would clear a NOT NULL column
        for name in _NOT_NULL_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        if self.first_name is not None and not self.first_name:
            raise ValueError("first_name cannot be blank")
        return self


class EmployeeRead(BaseModel):
    id: int
    telegram_id: str
    first_name: str
    last_name: str | None
    username: str | None
    phone: str | None
    department: str | None
    position: str | None
    is_active: bool
    created_at: datetime | None

    model_config = {"from_attributes": True}


# ── Attendance day ──────────────────────────────────────────────────
class AttendanceDayRead(BaseModel):
    id: int
    employee_id: int
    date: str
    status: str
    check_in_time: datetime | None
    check_in_distance: float | None
    check_out_time: datetime | None
    check_out_distance: float | None
    is_late: bool
    is_early_departure: bool
    late_reason: str | None
    early_reason: str | None
    working_hours: float | None

    model_config = {"from_attributes": True}


# ── Reports ─────────────────────────────────────────────────────────
class DailySummaryRead(BaseModel):
    date: date
    total_employees: int
    checked_in: int
    checked_out: int
    still_working: int
    late_count: int
    early_count: int
    attendance_rate: float
    average_working_hours: float

    model_config = {"from_attributes": True}


class PeriodSummaryRead(BaseModel):
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
    days: list[DailySummaryRead] = []

    model_config = {"from_attributes": True}


class AbsenteesResponse(BaseModel):
    date: date
    cutoff_passed: bool
    absentees: list[EmployeeRead]


# ── Jobs ────────────────────────────────────────────────────────────
class JobRead(BaseModel):
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

    model_config = {"from_attributes": True}


class JobTriggerResponse(BaseModel):
    success: bool
    job: JobRead


# ── Misc ────────────────────────────────────────────────────────────
class HealthResponse(BaseModel):
    db: bool
    scheduler: bool
    jobs: int


class DeleteResponse(BaseModel):
    success: bool
    message: str


class WebhookAck(BaseModel):
    ok: bool = True


# ── Notifications ───────────────────────────────────────────────────
class BroadcastRequest(BaseModel):
    target: Literal["employees", "admins"]
    message: str = Field(..., min_length=1, max_length=4096)
    parse_mode: Literal["Markdown", "HTML"] | None = "Markdown"
    silent: bool = False


class NotificationRequest(BaseModel):
    recipient_id: str = Field(..., pattern=r"^-?\d{1,20}$")
    message: str = Field(..., min_length=1, max_length=4096)
    parse_mode: Literal["Markdown", "HTML"] | None = "Markdown"
    silent: bool = False


class BroadcastResponse(BaseModel):
    success: bool
    target: str
    total: int
    successful: int
    failed: int


class NotificationResponse(BaseModel):
    success: bool
    recipient_id: str
    error: str | None = None
