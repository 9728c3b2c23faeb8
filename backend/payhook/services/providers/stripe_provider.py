"""Stripe provider: webhook signature verification and fee lookup"""
import json
import logging
from typing import Any, Dict, Optional

import stripe

from payhook.core.errors import (
    ProviderNotConfigured, SignatureInvalid, TransientDependencyError
)
from payhook.services.providers.base import PaymentProvider, ProviderEvent

logger = logging.getLogger(__name__)

# Events that confirm a paid one-time checkout
PAID_CHECKOUT_EVENTS = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)


def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, None)
    return default if value is None else value


class StripeProvider(PaymentProvider):
    name = "stripe"
    signature_header = "stripe-signature"

    def __init__(self, api_key: str, webhook_secret: str, api_version: Optional[str] = None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version or None

    def verify_event(self, payload: bytes, sig_header: Optional[str]) -> ProviderEvent:
        if not self.webhook_secret:
            logger.error("Webhook secret not configured")
            raise ProviderNotConfigured("Stripe webhook secret not configured")
        if not sig_header:
            raise SignatureInvalid("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(f"Signature verification failed: {e}") from e
        except ValueError as e:
            raise SignatureInvalid(f"Invalid payload: {e}") from e

        # Verified bytes are the source of truth for the stored payload
        return self.event_from_payload(json.loads(payload))

    def event_from_payload(self, payload: Dict[str, Any]) -> ProviderEvent:
        try:
            return ProviderEvent(
                provider=self.name,
                event_id=payload["id"],
                event_type=payload["type"],
                data_object=(payload.get("data") or {}).get("object") or {},
                payload=payload,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise SignatureInvalid(f"Invalid payload: missing {e}") from e

    def is_checkout_event(self, event: ProviderEvent) -> bool:
        return event.event_type in PAID_CHECKOUT_EVENTS

    def is_checkout_paid(self, event: ProviderEvent) -> bool:
        session = event.data_object
        return (
            self.is_checkout_event(event)
            and _get_stripe_value(session, "mode") == "payment"
            and _get_stripe_value(session, "payment_status") == "paid"
        )

    def extract_metadata(self, event: ProviderEvent) -> Dict[str, Any]:
        metadata = _get_stripe_value(event.data_object, "metadata", {})
        return dict(metadata) if isinstance(metadata, dict) else {}

    def extract_payment_reference(self, event: ProviderEvent) -> Optional[str]:
        payment_intent = _get_stripe_value(event.data_object, "payment_intent")
        if isinstance(payment_intent, str):
            return payment_intent or None
        return _get_stripe_value(payment_intent, "id")

    def fetch_total_fee(self, payment_reference: str) -> int:
        options = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_reference,
                expand=["latest_charge.balance_transaction"],
                **options
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe PaymentIntent retrieve failed for {payment_reference}: {e}")
            raise TransientDependencyError(f"Stripe retrieve PaymentIntent failed: {e}") from e

        charge = _get_stripe_value(intent, "latest_charge")
        balance_transaction = _get_stripe_value(charge, "balance_transaction")
        if isinstance(balance_transaction, str):
            # Not expanded; no fee information available
            balance_transaction = None
        fee = _get_stripe_value(balance_transaction, "fee", 0)
        return int(fee or 0)
