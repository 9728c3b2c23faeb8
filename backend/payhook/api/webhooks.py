"""Inbound payment provider webhooks"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from payhook.db.session import get_db
from payhook.services.reconciliation import WebhookReconciler

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def get_reconciler(provider: str, request: Request) -> WebhookReconciler:
    """Dependency: reconciler for the provider named in the path

    Reconcilers are built once at startup from configuration.
    """
    reconcilers = getattr(request.app.state, "reconcilers", {})
    reconciler = reconcilers.get(provider.lower())
    if reconciler is None:
        raise HTTPException(404, f"Unknown payment provider: {provider}")
    return reconciler


@router.post("/{provider}")
async def provider_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
    db: Session = Depends(get_db)
):
    """Handle a payment provider webhook

    Note: the body is read as raw bytes and never parsed before signature
    verification; any re-serialization would break the signature.
    """
    payload = await request.body()
    sig_header = request.headers.get(reconciler.provider.signature_header)

    # Storage and provider calls are blocking; keep them off the event loop
    result = await run_in_threadpool(reconciler.handle, payload, sig_header, db)
    return JSONResponse(status_code=result.status_code, content=result.body)
