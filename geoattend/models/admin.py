"""
Chat admin model — recipients of alerts / summaries and holders of the
admin bot commands.  Distinct from :class:`User`, which guards the HTTP API.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from geoattend.db.base import Base


class Admin(Base):
    __tablename__ = "admins"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    telegram_id: str = Column(String(32), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    name: str | None = Column(String(200), nullable=True)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
