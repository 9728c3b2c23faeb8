"""Transaction persistence guarded by the status state machine

There is no in-process locking. Coordination happens in the database:
the (provider, provider_payment_id) unique constraint decides which insert
wins, and every update is conditional on the status read just before it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payhook.core.errors import StorageUnavailable
from payhook.models.transaction import Transaction
from payhook.schemas.checkout import CheckoutMetadata, PurchaseKind
from payhook.services.economics import Split
from payhook.services.transaction_state import TransactionStatus, allowed_transition

logger = logging.getLogger(__name__)

# Re-read/re-guard rounds before giving up on a contended row
MAX_APPLY_ATTEMPTS = 3


class OutcomeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"


class InsertResult(str, Enum):
    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class TransactionOutcome:
    kind: OutcomeKind
    transaction_id: Optional[int]
    status: Optional[str]
    previous_status: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ignored(self) -> bool:
        return self.kind == OutcomeKind.IGNORED


def build_transaction_values(
    provider: str,
    payment_reference: str,
    metadata: CheckoutMetadata,
    split: Split
) -> Dict[str, Any]:
    """Column values for a purchase, without status"""
    values = {
        "buyer_id": metadata.buyer_id,
        "creator_id": metadata.creator_id,
        "session_id": metadata.target_id if metadata.kind == PurchaseKind.SESSION else None,
        "challenge_id": metadata.target_id if metadata.kind == PurchaseKind.CHALLENGE else None,
        "provider": provider,
        "provider_payment_id": payment_reference,
        "type": metadata.transaction_type.value,
    }
    values.update(split.as_transaction_values())
    return values


def _read_status(provider: str, payment_reference: str, db: Session) -> Optional[Tuple[int, str]]:
    # Column query: always hits the database, never the identity map
    row = db.query(Transaction.id, Transaction.status).filter(
        Transaction.provider == provider,
        Transaction.provider_payment_id == payment_reference
    ).first()
    return (row.id, row.status) if row else None


def _insert(values: Dict[str, Any], db: Session) -> Tuple[InsertResult, Optional[int]]:
    """Insert a fresh row; a business-key collision is a typed result, not an error"""
    tx = Transaction(**values)
    try:
        db.add(tx)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        existing = _read_status(values["provider"], values["provider_payment_id"], db)
        if existing is not None:
            return InsertResult.ALREADY_EXISTS, existing[0]
        # Some other constraint (check constraint, not-null) rejected the row
        logger.error(f"Transaction insert rejected for {values['provider_payment_id']}: {e}")
        raise StorageUnavailable("Transaction insert rejected") from e
    return InsertResult.INSERTED, tx.id


def apply_transaction(
    values: Dict[str, Any],
    next_status: TransactionStatus,
    db: Session
) -> TransactionOutcome:
    """Create or transition the Transaction identified by the values' business key

    Args:
        values: Column values; must include provider and provider_payment_id
        next_status: Status the incoming event asserts
        db: Database session

    Returns:
        TransactionOutcome. IGNORED leaves the stored row untouched.

    Raises:
        StorageUnavailable: the database failed for a reason other than a duplicate key
    """
    next_status = TransactionStatus(next_status)
    provider = values["provider"]
    reference = values["provider_payment_id"]
    changes = {k: v for k, v in values.items() if k not in ("provider", "provider_payment_id")}

    try:
        for _ in range(MAX_APPLY_ATTEMPTS):
            current = _read_status(provider, reference, db)

            if current is None:
                result, tx_id = _insert({**values, "status": next_status.value}, db)
                if result == InsertResult.INSERTED:
                    logger.info(f"Created transaction {tx_id} for {provider}:{reference} as {next_status.value}")
                    return TransactionOutcome(OutcomeKind.CREATED, tx_id, next_status.value)
                logger.warning(f"Lost insert race for {provider}:{reference}; re-checking transition")
                continue

            tx_id, previous = current
            if previous == next_status.value:
                return TransactionOutcome(OutcomeKind.UNCHANGED, tx_id, previous, previous)

            if not allowed_transition(previous, next_status):
                reason = f"transition {previous} -> {next_status.value} not allowed"
                logger.info(f"Ignoring update for transaction {tx_id}: {reason}")
                return TransactionOutcome(OutcomeKind.IGNORED, tx_id, previous, previous, reason)

            updated = db.query(Transaction).filter(
                Transaction.id == tx_id,
                Transaction.status == previous
            ).update(
                {**changes, "status": next_status.value, "updated_at": datetime.now(timezone.utc)},
                synchronize_session=False
            )
            db.commit()
            if updated == 1:
                logger.info(f"Transaction {tx_id}: {previous} -> {next_status.value}")
                return TransactionOutcome(OutcomeKind.UPDATED, tx_id, next_status.value, previous)

            logger.warning(f"Transaction {tx_id} changed status concurrently; re-checking transition")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Transaction write failed for {provider}:{reference}: {e}", exc_info=True)
        raise StorageUnavailable("Transaction store unavailable") from e

    current = _read_status(provider, reference, db)
    return TransactionOutcome(
        OutcomeKind.IGNORED,
        current[0] if current else None,
        current[1] if current else None,
        reason="concurrent updates, gave up"
    )
