"""Admin API routes: replay, re-grant, transaction lookup"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from payhook.api.webhooks import get_reconciler
from payhook.core.security import require_admin
from payhook.db.session import get_db
from payhook.models.transaction import Transaction
from payhook.schemas.webhooks import RegrantResponse
from payhook.services.entitlements import regrant_for_transaction
from payhook.services.reconciliation import EventNotFound, WebhookReconciler

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/events/{provider}/{event_id}/replay")
def replay_event(
    event_id: str,
    reconciler: WebhookReconciler = Depends(get_reconciler),
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Re-run reconciliation for an admitted event, bypassing ledger admission"""
    try:
        result = reconciler.replay(event_id, db)
    except EventNotFound as e:
        raise HTTPException(404, str(e))
    logger.info(f"Replay of {event_id} by {admin} -> {result.status_code}")
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/transactions/{transaction_id}/regrant", response_model=RegrantResponse)
def regrant_transaction(
    transaction_id: int,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Re-run entitlement fan-out for a succeeded transaction"""
    try:
        count = regrant_for_transaction(transaction_id, db)
    except ValueError as e:
        error_msg = str(e)
        if "not found" in error_msg.lower():
            raise HTTPException(404, error_msg)
        raise HTTPException(409, error_msg)
    logger.info(f"Re-grant of transaction {transaction_id} by {admin}: {count} session(s)")
    return RegrantResponse(ok=True, transaction_id=transaction_id, entitlements=count)


@router.get("/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Stored transaction with its split"""
    tx = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not tx:
        raise HTTPException(404, f"Transaction {transaction_id} not found")
    return {"transaction": tx.to_dict()}
