"""
Employee & AttendanceDay models — core business domain.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone

from sqlalchemy import (Boolean, Column, DateTime, Float, ForeignKey, Index,
                        Integer, String, UniqueConstraint)
from sqlalchemy.orm import relationship

from geoattend.core.clock import ensure_utc
from geoattend.db.base import Base


class AttendanceStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETE = "COMPLETE"


class Employee(Base):
    __tablename__ = "employees"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    telegram_id: str = Column(String(32), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    first_name: str = Column(String(100), nullable=False)  # type: ignore[assignment]
    last_name: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    username: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    phone: str | None = Column(String(30), nullable=True)  # type: ignore[assignment]
    department: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    position: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    attendance_days = relationship("AttendanceDay", back_populates="employee")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class AttendanceDay(Base):
    """One employee's single-day check-in/out record."""

    __tablename__ = "attendance_days"
    __table_args__ = (
        UniqueConstraint("employee_id", "date", name="uq_attendance_employee_date"),
        Index("ix_attendance_days_date_status", "date", "status"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False)  # type: ignore[assignment]
    date: str = Column(String(10), nullable=False, index=True)  # type: ignore[assignment]  # YYYY-MM-DD (local)
    status: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default=AttendanceStatus.NOT_STARTED.value,
    )

    check_in_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    check_in_latitude: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    check_in_longitude: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    check_in_distance: float | None = Column(Float, nullable=True)  # type: ignore[assignment]

    check_out_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    check_out_latitude: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    check_out_longitude: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    check_out_distance: float | None = Column(Float, nullable=True)  # type: ignore[assignment]

    is_late: bool = Column(Boolean, default=False, nullable=False)  # type: ignore[assignment]
    is_early_departure: bool = Column(Boolean, default=False, nullable=False)  # type: ignore[assignment]
    late_reason: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    early_reason: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    working_hours: float | None = Column(Float, nullable=True)  # type: ignore[assignment]

    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee = relationship("Employee", back_populates="attendance_days")

    @property
    def working_duration(self) -> timedelta | None:
        if self.check_in_time is None or self.check_out_time is None:
            return None
        return ensure_utc(self.check_out_time) - ensure_utc(self.check_in_time)
