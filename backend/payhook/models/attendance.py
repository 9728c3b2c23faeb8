"""Attendance model"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from datetime import datetime, timezone
from payhook.models.base import Base


class Attendance(Base):
    """Entitlement: a user may join a session.

    Also written by the join/attendance flow, so writes here are upserts.
    """
    __tablename__ = "attendance"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), nullable=True)  # Null until consumed
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint('session_id', 'user_id', name='uq_attendance_session_user'),
    )
