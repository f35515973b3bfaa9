"""
Append-only audit trails: outbound notification attempts and server activity.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from geoattend.db.base import Base

NOTIFICATION_MESSAGE_LIMIT = 500


class NotificationLog(Base):
    __tablename__ = "notification_logs"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    recipient: str = Column(String(32), nullable=False, index=True)  # type: ignore[assignment]
    type: str = Column(String(40), nullable=False)  # type: ignore[assignment]
    message: str = Column(String(NOTIFICATION_MESSAGE_LIMIT), nullable=False)  # type: ignore[assignment]
    success: bool = Column(Boolean, nullable=False)  # type: ignore[assignment]
    error: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    sent_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    type: str = Column(String(60), nullable=False, index=True)  # type: ignore[assignment]
    # check_in | check_out | employee_registered | cron_job_completed | ...
    message: str = Column(String(500), nullable=False)  # type: ignore[assignment]
    details: dict | None = Column(JSON, nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
