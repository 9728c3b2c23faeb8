"""Receipt service - enqueue and deliver purchase receipts"""
import logging
from typing import Optional, Tuple

import resend
from sqlalchemy.orm import Session

from payhook.core.config import settings
from payhook.db.task_queue import enqueue_task
from payhook.models.app_user import AppUser
from payhook.models.transaction import Transaction

logger = logging.getLogger(__name__)

RECEIPT_TASK_TYPE = "send_receipt"


def enqueue_receipt(transaction_id: int) -> str:
    """Queue a receipt job keyed by the transaction id

    Returns:
        task_id of the queued job
    """
    return enqueue_task(
        RECEIPT_TASK_TYPE,
        {"transaction_id": transaction_id},
        max_retries=settings.RECEIPT_MAX_RETRIES
    )


def format_amount(cents: int, currency: str) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d} {currency.upper()}"


def render_receipt(tx: Transaction, user: Optional[AppUser] = None) -> Tuple[str, str, str]:
    """Build (subject, html, text) for a transaction receipt"""
    item = "Session ticket" if tx.kind == "session" else "Challenge bundle"
    amount = format_amount(tx.amount_gross_cents, tx.currency)
    fee = format_amount(tx.processing_fee_fixed_cents, tx.currency)
    greeting = f"Hi {user.display_name}," if user and user.display_name else "Hi,"

    subject = f"Your receipt: {item} ({amount})"
    text = (
        f"{greeting}\n\n"
        f"Thanks for your purchase.\n\n"
        f"Item: {item} {tx.target_id}\n"
        f"Price: {amount}\n"
        f"Processing fee: {fee}\n"
        f"Reference: {tx.provider_payment_id}\n"
        f"Receipt #{tx.id}\n"
    )
    html = (
        f"<p>{greeting}</p>"
        f"<p>Thanks for your purchase.</p>"
        f"<table>"
        f"<tr><td>Item</td><td>{item} {tx.target_id}</td></tr>"
        f"<tr><td>Price</td><td>{amount}</td></tr>"
        f"<tr><td>Processing fee</td><td>{fee}</td></tr>"
        f"<tr><td>Reference</td><td>{tx.provider_payment_id}</td></tr>"
        f"</table>"
        f"<p>Receipt #{tx.id}</p>"
    )
    return subject, html, text


def _send_email(to: str, subject: str, html: str, text: str) -> bool:
    """Send through Resend; without an API key, log only (dev-safe)"""
    if not settings.RESEND_API_KEY:
        logger.info(f"[DEV] would send receipt to {to}: {subject}")
        return True

    try:
        resend.api_key = settings.RESEND_API_KEY
        response = resend.Emails.send({
            "from": settings.RESEND_FROM_EMAIL,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        })
        # Resend returns a dict with 'id' on success
        if isinstance(response, dict):
            email_id = response.get('id')
        else:
            email_id = getattr(response, 'id', None)

        if email_id:
            logger.info(f"Receipt sent to {to} (id={email_id})")
            return True
        logger.error(f"Receipt send returned invalid response: {response}")
        return False
    except Exception as e:
        logger.error(f"Failed to send receipt to {to}: {e}", exc_info=True)
        return False


def send_receipt(transaction_id: int, db: Session) -> bool:
    """Deliver the receipt for one transaction

    Raises:
        ValueError: transaction or buyer address not found (permanent, do not retry)

    Returns:
        True if sent (or logged in dev mode), False on a delivery failure worth retrying
    """
    tx = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not tx:
        raise ValueError(f"Transaction {transaction_id} not found")

    user = db.query(AppUser).filter(AppUser.id == tx.buyer_id).first()
    if not user or not user.email:
        raise ValueError(f"No email address for buyer {tx.buyer_id}")

    subject, html, text = render_receipt(tx, user)
    return _send_email(user.email, subject, html, text)
