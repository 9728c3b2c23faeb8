"""Event ledger - at-most-once admission of provider events"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payhook.core.errors import StorageUnavailable
from payhook.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class Admission(str, Enum):
    ADMITTED = "admitted"
    ALREADY_PROCESSED = "already_processed"


def admit(
    provider: str,
    event_id: str,
    event_type: str,
    payload: Dict[str, Any],
    db: Session
) -> Admission:
    """Insert the event into the ledger if absent

    Concurrent deliveries of one event race on the (provider, event_id) unique
    constraint and exactly one of them is admitted. Only a uniqueness violation
    means "already processed"; any other failure leaves admission state unknown
    and raises StorageUnavailable so the provider retries.
    """
    try:
        db.add(WebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            payload=payload,
        ))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Event {provider}:{event_id} already in ledger")
        return Admission.ALREADY_PROCESSED
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Ledger admission failed for {provider}:{event_id}: {e}", exc_info=True)
        raise StorageUnavailable("Event ledger unavailable", event_id=event_id) from e

    logger.info(f"Event {provider}:{event_id} ({event_type}) admitted")
    return Admission.ADMITTED


def get_event(provider: str, event_id: str, db: Session) -> Optional[WebhookEvent]:
    return db.query(WebhookEvent).filter(
        WebhookEvent.provider == provider,
        WebhookEvent.event_id == event_id
    ).first()
