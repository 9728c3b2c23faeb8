"""Webhook reconciliation - turns a verified provider event into durable effects

Pipeline for a paid checkout:
verify -> validate metadata -> admit to ledger -> fetch provider fee ->
compute split -> guarded transaction write -> entitlement fan-out ->
best-effort receipt.

Every other event is admitted for the audit trail and acknowledged as ignored.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from payhook.core.errors import (
    MetadataInvalid, MissingPaymentReference, ReconciliationError, StorageUnavailable
)
from payhook.core.logging import security_logger, webhook_logger
from payhook.core.metrics import receipt_enqueue_failures_counter, webhook_events_counter
from payhook.schemas.checkout import CheckoutMetadata, parse_checkout_metadata
from payhook.services import economics, entitlements, ledger
from payhook.services.ledger import Admission
from payhook.services.providers.base import PaymentProvider, ProviderEvent
from payhook.services.receipt_service import enqueue_receipt
from payhook.services.transaction_service import (
    OutcomeKind, apply_transaction, build_transaction_values
)
from payhook.services.transaction_state import TransactionStatus

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **fields) -> "ReconciliationResult":
        return cls(200, {"ok": True, **fields})

    @classmethod
    def failure(cls, error: ReconciliationError) -> "ReconciliationResult":
        return cls(error.status_code, error.to_body())


class EventNotFound(LookupError):
    pass


class WebhookReconciler:
    """Request handler for one payment provider.

    Holds configuration only; safe to share across concurrent requests.
    """

    def __init__(
        self,
        provider: PaymentProvider,
        fixed_fee_cents: int,
        creator_share: Decimal,
        receipt_enqueuer: Callable[[int], str] = enqueue_receipt
    ):
        self.provider = provider
        self.fixed_fee_cents = fixed_fee_cents
        self.creator_share = creator_share
        self.receipt_enqueuer = receipt_enqueuer

    def handle(self, payload: bytes, sig_header: Optional[str], db: Session) -> ReconciliationResult:
        """Process one inbound delivery

        Args:
            payload: Raw request body, byte-for-byte as received
            sig_header: Provider signature header value
            db: Database session
        """
        try:
            event = self.provider.verify_event(payload, sig_header)
        except ReconciliationError as e:
            security_logger.warning(f"Rejected {self.provider.name} webhook: {e.message}")
            self._count("rejected")
            return ReconciliationResult.failure(e)

        return self._process(event, db, admit=True)

    def replay(self, event_id: str, db: Session) -> ReconciliationResult:
        """Re-run the pipeline for an admitted event, bypassing ledger admission

        Raises:
            EventNotFound: the event was never admitted
        """
        stored = ledger.get_event(self.provider.name, event_id, db)
        if not stored:
            raise EventNotFound(f"Event {self.provider.name}:{event_id} not in ledger")

        event = self.provider.event_from_payload(stored.payload)
        webhook_logger.info(f"[{event.event_id}] Replaying {event.event_type} from ledger")
        result = self._process(event, db, admit=False)
        if result.body.get("ok"):
            result.body["replayed"] = True
        return result

    def _process(self, event: ProviderEvent, db: Session, admit: bool) -> ReconciliationResult:
        try:
            return self._run(event, db, admit)
        except ReconciliationError as e:
            if e.event_id is None:
                e.event_id = event.event_id
            if e.retryable:
                webhook_logger.error(f"[{event.event_id}] {e.code}: {e.message}")
                self._count("failed")
            else:
                webhook_logger.warning(f"[{event.event_id}] {e.code}: {e.message}")
                self._count("rejected")
            return ReconciliationResult.failure(e)
        except Exception as e:
            webhook_logger.error(f"[{event.event_id}] Unexpected failure: {e}", exc_info=True)
            db.rollback()
            self._count("failed")
            return ReconciliationResult.failure(
                StorageUnavailable(f"Unexpected failure: {type(e).__name__}", event_id=event.event_id)
            )

    def _admit(self, event: ProviderEvent, db: Session) -> Admission:
        return ledger.admit(event.provider, event.event_id, event.event_type, event.payload, db)

    def _deduped(self, event: ProviderEvent) -> ReconciliationResult:
        webhook_logger.info(f"[{event.event_id}] Already processed; deduped")
        self._count("deduped")
        return ReconciliationResult.success(deduped=True, event_id=event.event_id)

    def _ignored(self, event: ProviderEvent, reason: str, **fields) -> ReconciliationResult:
        webhook_logger.info(f"[{event.event_id}] Ignored {event.event_type}: {reason}")
        self._count("ignored")
        return ReconciliationResult.success(
            ignored=True, reason=reason, event=event.event_type, event_id=event.event_id, **fields
        )

    def _validate(self, event: ProviderEvent) -> tuple[CheckoutMetadata, str]:
        metadata = parse_checkout_metadata(self.provider.extract_metadata(event), event.event_id)
        reference = self.provider.extract_payment_reference(event)
        if not reference:
            raise MissingPaymentReference("Missing payment reference on checkout", event_id=event.event_id)
        return metadata, reference

    def _run(self, event: ProviderEvent, db: Session, admit: bool) -> ReconciliationResult:
        if not self.provider.is_checkout_paid(event):
            if admit and self._admit(event, db) == Admission.ALREADY_PROCESSED:
                return self._deduped(event)
            if self.provider.is_checkout_event(event):
                return self._ignored(event, "not a paid one-time checkout")
            return self._ignored(event, "event type not handled")

        try:
            metadata, reference = self._validate(event)
        except (MetadataInvalid, MissingPaymentReference):
            # Permanently broken event: record it as seen so redeliveries stop here
            if admit and self._admit(event, db) == Admission.ALREADY_PROCESSED:
                return self._deduped(event)
            raise

        if admit and self._admit(event, db) == Admission.ALREADY_PROCESSED:
            return self._deduped(event)

        # Admitted from here on; a transient failure below needs an admin replay
        total_fee = self.provider.fetch_total_fee(reference)
        split = economics.compute(
            metadata.price_cents,
            metadata.currency,
            total_fee,
            fixed_fee_cents=self.fixed_fee_cents,
            creator_share=self.creator_share,
        )

        values = build_transaction_values(self.provider.name, reference, metadata, split)
        outcome = apply_transaction(values, TransactionStatus.SUCCEEDED, db)
        if outcome.ignored:
            return self._ignored(
                event, outcome.reason,
                transaction_id=outcome.transaction_id, previous_status=outcome.previous_status
            )

        body = {
            "event_id": event.event_id,
            "event": event.event_type,
            "processed": True,
            "transaction_id": outcome.transaction_id,
            "outcome": outcome.kind.value,
        }
        if outcome.previous_status:
            body["previous_status"] = outcome.previous_status

        try:
            body["entitlements"] = entitlements.grant(metadata, db)
        except Exception as e:
            # Transaction is already durable; recovery is an out-of-band re-grant
            webhook_logger.error(
                f"[{event.event_id}] Entitlement grant failed for transaction {outcome.transaction_id}: {e}",
                exc_info=True
            )
            body["warning"] = "entitlement grant failed"
            body["detail"] = str(e)

        if outcome.kind in (OutcomeKind.CREATED, OutcomeKind.UPDATED):
            self._enqueue_receipt(event, outcome.transaction_id)

        webhook_logger.info(
            f"[{event.event_id}] Processed {event.event_type}: transaction {outcome.transaction_id} "
            f"{outcome.kind.value}, gross={split.gross_cents} net={split.net_cents} {split.currency}"
        )
        self._count("processed")
        return ReconciliationResult.success(**body)

    def _enqueue_receipt(self, event: ProviderEvent, transaction_id: int) -> None:
        try:
            task_id = self.receipt_enqueuer(transaction_id)
            webhook_logger.info(f"[{event.event_id}] Receipt job {task_id} queued for transaction {transaction_id}")
        except Exception as e:
            receipt_enqueue_failures_counter.inc()
            webhook_logger.error(f"[{event.event_id}] Receipt enqueue failed for transaction {transaction_id}: {e}")

    def _count(self, outcome: str) -> None:
        webhook_events_counter.labels(provider=self.provider.name, outcome=outcome).inc()
