"""Transaction model"""
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint, UniqueConstraint, Index
from datetime import datetime, timezone
from payhook.models.base import Base


class Transaction(Base):
    """Economic outcome of one purchase, keyed by (provider, provider_payment_id).

    All amounts are integer minor currency units.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(String(64), nullable=False, index=True)
    creator_id = Column(String(64), nullable=True, index=True)
    session_id = Column(String(64), nullable=True)  # Set for single-item purchases
    challenge_id = Column(String(64), nullable=True)  # Set for bundle purchases
    provider = Column(String(32), nullable=False)
    provider_payment_id = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)  # 'ticket', 'bundle'
    status = Column(String(20), nullable=False)  # see TransactionStatus
    currency = Column(String(3), nullable=False)
    amount_gross_cents = Column(Integer, nullable=False)
    processing_fee_fixed_cents = Column(Integer, nullable=False)
    processing_fee_percent_cents = Column(Integer, nullable=False)
    platform_cut_cents = Column(Integer, nullable=False)
    creator_cut_cents = Column(Integer, nullable=False)
    amount_after_fees_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint('provider', 'provider_payment_id', name='uq_transactions_provider_payment'),
        CheckConstraint(
            "(session_id IS NULL) <> (challenge_id IS NULL)",
            name='ck_transactions_single_target'
        ),
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed', 'canceled', 'refunded')",
            name='ck_transactions_status'
        ),
        CheckConstraint(
            "platform_cut_cents + creator_cut_cents = amount_gross_cents",
            name='ck_transactions_cuts_sum'
        ),
        CheckConstraint(
            "amount_after_fees_cents = amount_gross_cents - processing_fee_fixed_cents - processing_fee_percent_cents",
            name='ck_transactions_net'
        ),
        Index('ix_transactions_buyer_created', 'buyer_id', 'created_at'),
    )

    @property
    def target_id(self):
        return self.session_id or self.challenge_id

    @property
    def kind(self):
        return "session" if self.session_id else "challenge"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "creator_id": self.creator_id,
            "session_id": self.session_id,
            "challenge_id": self.challenge_id,
            "provider": self.provider,
            "provider_payment_id": self.provider_payment_id,
            "type": self.type,
            "status": self.status,
            "currency": self.currency,
            "amount_gross_cents": self.amount_gross_cents,
            "processing_fee_fixed_cents": self.processing_fee_fixed_cents,
            "processing_fee_percent_cents": self.processing_fee_percent_cents,
            "platform_cut_cents": self.platform_cut_cents,
            "creator_cut_cents": self.creator_cut_cents,
            "amount_after_fees_cents": self.amount_after_fees_cents,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
