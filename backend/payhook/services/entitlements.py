"""Entitlement fan-out - attendance grants for completed purchases"""
import logging
from typing import Dict, List

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payhook.core.metrics import entitlements_granted_counter
from payhook.models.attendance import Attendance
from payhook.models.challenge_session import ChallengeSession
from payhook.models.transaction import Transaction
from payhook.schemas.checkout import CheckoutMetadata, PurchaseKind
from payhook.services.transaction_state import TransactionStatus

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def list_bundle_members(challenge_id: str, db: Session) -> List[str]:
    """Session ids linked to a challenge, in a stable order"""
    rows = db.query(ChallengeSession.session_id).filter(
        ChallengeSession.challenge_id == challenge_id
    ).order_by(ChallengeSession.session_id).all()
    return [row.session_id for row in rows]


def _upsert_attendance(rows: List[Dict], db: Session) -> None:
    """Insert attendance rows, leaving existing (session, user) rows untouched

    An existing row may already carry joined_at from the join flow, so a
    conflict is skipped rather than overwritten.
    """
    if not rows:
        return

    dialect = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is not None:
        stmt = insert(Attendance).values(rows).on_conflict_do_nothing(
            index_elements=["session_id", "user_id"]
        )
        db.execute(stmt)
        db.commit()
        return

    # Generic dialects: one row at a time, duplicate key means already granted
    for row in rows:
        try:
            db.add(Attendance(**row))
            db.commit()
        except IntegrityError:
            db.rollback()


def grant(metadata: CheckoutMetadata, db: Session) -> int:
    """Grant the buyer access to everything the purchase covers

    Returns:
        Number of sessions covered (existing grants included)
    """
    if metadata.kind == PurchaseKind.SESSION:
        session_ids = [metadata.target_id]
    else:
        session_ids = list_bundle_members(metadata.target_id, db)
        if not session_ids:
            logger.warning(f"Challenge {metadata.target_id} has no linked sessions; nothing to grant")
            return 0

    rows = [
        {"session_id": session_id, "user_id": metadata.buyer_id, "joined_at": None}
        for session_id in session_ids
    ]
    try:
        _upsert_attendance(rows, db)
    except Exception:
        db.rollback()
        raise

    entitlements_granted_counter.labels(kind=metadata.kind.value).inc(len(rows))
    logger.info(
        f"Granted {len(rows)} session(s) to user {metadata.buyer_id} "
        f"for {metadata.kind.value} {metadata.target_id}"
    )
    return len(rows)


def metadata_for_transaction(tx: Transaction) -> CheckoutMetadata:
    """Rebuild the grant inputs from a stored transaction"""
    return CheckoutMetadata(
        kind=tx.kind,
        target_id=tx.target_id,
        buyer_id=tx.buyer_id,
        creator_id=tx.creator_id,
        currency=tx.currency,
        price_cents=tx.amount_gross_cents,
    )


def regrant_for_transaction(transaction_id: int, db: Session) -> int:
    """Out-of-band re-grant for a succeeded transaction

    Raises:
        ValueError: transaction not found, or not in succeeded status
    """
    tx = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not tx:
        raise ValueError(f"Transaction {transaction_id} not found")
    if tx.status != TransactionStatus.SUCCEEDED.value:
        raise ValueError(f"Transaction {transaction_id} is {tx.status}; only succeeded purchases grant access")
    logger.info(f"Re-granting entitlements for transaction {transaction_id}")
    return grant(metadata_for_transaction(tx), db)
