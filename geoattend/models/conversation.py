"""
Persisted per-user dialogue state (one row per user, overwritten on begin).
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String

from geoattend.db.base import Base


class ConversationState(Base):
    __tablename__ = "conversation_states"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: str = Column(String(32), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    type: str = Column(String(40), nullable=False)  # type: ignore[assignment]
    payload: dict = Column(JSON, nullable=False, default=dict)  # type: ignore[assignment]
    step: int = Column(Integer, nullable=False, default=1)  # type: ignore[assignment]
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
