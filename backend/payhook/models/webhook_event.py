"""WebhookEvent model"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, UniqueConstraint
from datetime import datetime, timezone
from payhook.models.base import Base


class WebhookEvent(Base):
    """Append-only ledger of admitted provider events.

    The (provider, event_id) uniqueness constraint is the admission gate: a
    conflicting insert means the event was already handled. Rows are never
    updated or deleted.
    """
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(32), nullable=False)  # 'stripe'
    event_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=False)  # Verified event body, kept for replay
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event_id'),
    )
