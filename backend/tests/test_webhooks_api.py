"""Webhook endpoint tests"""
import json
import pytest
import stripe
from unittest.mock import patch

from payhook.db.task_queue import QUEUE_KEY_PREFIX
from payhook.models.attendance import Attendance
from payhook.models.challenge_session import ChallengeSession
from payhook.models.transaction import Transaction
from payhook.models.webhook_event import WebhookEvent
from payhook.services.receipt_service import RECEIPT_TASK_TYPE

from conftest import DEFAULT_METADATA, checkout_event, post_webhook, sign_payload

RECEIPT_QUEUE = f"{QUEUE_KEY_PREFIX}{RECEIPT_TASK_TYPE}"


@pytest.mark.critical
class TestPaidCheckout:
    """Test end-to-end reconciliation of a paid checkout"""

    def test_processes_session_purchase(self, client, db_session, mock_redis, mock_stripe_fee):
        """Test a paid checkout records the split, grants access and queues a receipt"""
        response = post_webhook(client, checkout_event())

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["processed"] is True
        assert body["event_id"] == "evt_test_1"
        assert body["event"] == "checkout.session.completed"
        assert body["outcome"] == "created"
        assert "previous_status" not in body
        assert body["entitlements"] == 1

        tx = db_session.query(Transaction).one()
        assert body["transaction_id"] == tx.id
        assert tx.status == "succeeded"
        assert tx.provider_payment_id == "pi_test_1"
        assert tx.amount_gross_cents == 1000
        assert tx.processing_fee_fixed_cents == 30
        assert tx.processing_fee_percent_cents == 28
        assert tx.creator_cut_cents == 800
        assert tx.platform_cut_cents == 200
        assert tx.amount_after_fees_cents == 942
        assert tx.currency == "USD"

        attendance = db_session.query(Attendance).one()
        assert (attendance.session_id, attendance.user_id) == ("sess_1", "user_1")

        assert db_session.query(WebhookEvent).count() == 1
        assert mock_redis.llen(RECEIPT_QUEUE) == 1
        mock_stripe_fee.assert_called_once()

    def test_processes_bundle_purchase(self, client, db_session, mock_stripe_fee):
        """Test a challenge purchase grants every linked session"""
        for session_id in ("sess_a", "sess_b"):
            db_session.add(ChallengeSession(challenge_id="ch_1", session_id=session_id))
        db_session.commit()
        metadata = {**DEFAULT_METADATA, "kind": "challenge", "target_id": "ch_1"}

        response = post_webhook(client, checkout_event(metadata=metadata))

        assert response.status_code == 200
        assert response.json()["entitlements"] == 2
        tx = db_session.query(Transaction).one()
        assert tx.challenge_id == "ch_1"
        assert tx.type == "bundle"

    def test_duplicate_delivery_deduped(self, client, db_session, mock_redis, mock_stripe_fee):
        """Test a redelivered event is acknowledged without side effects"""
        event = checkout_event()
        post_webhook(client, event)

        response = post_webhook(client, event)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "deduped": True, "event_id": "evt_test_1"}
        assert db_session.query(Transaction).count() == 1
        assert db_session.query(Attendance).count() == 1
        assert mock_redis.llen(RECEIPT_QUEUE) == 1
        mock_stripe_fee.assert_called_once()

    def test_second_event_same_payment_unchanged(self, client, db_session, mock_redis, mock_stripe_fee):
        """Test a distinct event for an already-succeeded payment writes no new row or receipt"""
        post_webhook(client, checkout_event(event_id="evt_1"))

        response = post_webhook(client, checkout_event(
            event_id="evt_2", event_type="checkout.session.async_payment_succeeded"
        ))

        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "unchanged"
        assert body["previous_status"] == "succeeded"
        assert db_session.query(Transaction).count() == 1
        assert mock_redis.llen(RECEIPT_QUEUE) == 1

    def test_stale_event_for_refunded_payment_ignored(self, client, db_session, mock_stripe_fee):
        """Test a late paid event cannot move a refunded transaction back"""
        tx = Transaction(
            buyer_id="user_1", creator_id="creator_1", session_id="sess_1",
            provider="stripe", provider_payment_id="pi_test_1", type="ticket", status="refunded",
            currency="USD", amount_gross_cents=1000, processing_fee_fixed_cents=30,
            processing_fee_percent_cents=28, platform_cut_cents=200, creator_cut_cents=800,
            amount_after_fees_cents=942,
        )
        db_session.add(tx)
        db_session.commit()

        response = post_webhook(client, checkout_event())

        assert response.status_code == 200
        body = response.json()
        assert body["ignored"] is True
        assert body["reason"] == "transition refunded -> succeeded not allowed"
        assert body["previous_status"] == "refunded"
        assert body["transaction_id"] == tx.id
        db_session.refresh(tx)
        assert tx.status == "refunded"
        assert db_session.query(Attendance).count() == 0


@pytest.mark.critical
class TestRejections:
    """Test authentication and validation failures"""

    def test_bad_signature_rejected(self, client, db_session):
        """Test an invalid signature returns 400 and records nothing"""
        response = post_webhook(client, checkout_event(), signature="t=1,v1=deadbeef")

        assert response.status_code == 400
        assert response.json()["code"] == "signature_invalid"
        assert response.json()["ok"] is False
        assert db_session.query(WebhookEvent).count() == 0

    def test_missing_signature_rejected(self, client, db_session):
        """Test a delivery without a signature header returns 400"""
        payload = json.dumps(checkout_event()).encode()

        response = client.post("/api/webhooks/stripe", content=payload)

        assert response.status_code == 400
        assert db_session.query(WebhookEvent).count() == 0

    def test_reserialized_body_rejected(self, client):
        """Test the signature covers the exact bytes, not the JSON value"""
        event = checkout_event()
        signed = json.dumps(event).encode()
        reformatted = json.dumps(event, indent=2).encode()

        response = client.post(
            "/api/webhooks/stripe",
            content=reformatted,
            headers={"stripe-signature": sign_payload(signed)}
        )

        assert response.status_code == 400

    def test_invalid_metadata_rejected_and_recorded(self, client, db_session, mock_stripe_fee):
        """Test broken metadata returns 422, is ledgered, and its redelivery is deduped"""
        metadata = {k: v for k, v in DEFAULT_METADATA.items() if k != "buyer_id"}
        event = checkout_event(metadata=metadata)

        response = post_webhook(client, event)

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "metadata_invalid"
        assert "buyer_id" in body["message"]
        assert body["event_id"] == "evt_test_1"
        assert db_session.query(WebhookEvent).count() == 1
        assert db_session.query(Transaction).count() == 0
        mock_stripe_fee.assert_not_called()

        redelivery = post_webhook(client, event)
        assert redelivery.status_code == 200
        assert redelivery.json()["deduped"] is True

    @pytest.mark.parametrize("field,value", [
        ("price_cents", str(2**64)),
        ("price_cents", 2**31),
        ("target_id", "x" * 65),
        ("buyer_id", "u" * 65),
    ])
    def test_out_of_range_metadata_rejected(self, client, db_session, mock_stripe_fee, field, value):
        """Test metadata the transaction columns cannot hold is rejected before any write"""
        event = checkout_event(metadata={**DEFAULT_METADATA, field: value})

        response = post_webhook(client, event)

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "metadata_invalid"
        assert field in body["message"]
        assert db_session.query(Transaction).count() == 0
        mock_stripe_fee.assert_not_called()

        redelivery = post_webhook(client, event)
        assert redelivery.json()["deduped"] is True

    def test_missing_payment_reference_rejected(self, client, db_session, mock_stripe_fee):
        """Test a paid checkout without a payment intent returns 422"""
        response = post_webhook(client, checkout_event(payment_intent=None))

        assert response.status_code == 422
        assert response.json()["code"] == "payment_reference_missing"
        assert db_session.query(Transaction).count() == 0

    def test_unknown_provider_path(self, client):
        """Test a provider that is not configured returns 404"""
        response = client.post("/api/webhooks/paypal", content=b"{}")

        assert response.status_code == 404


@pytest.mark.high
class TestIgnoredEvents:
    """Test events outside the reconciliation scope"""

    def test_unhandled_event_type_acknowledged(self, client, db_session, mock_stripe_fee):
        """Test other event types are ledgered and acknowledged as ignored"""
        event = checkout_event(event_type="payment_intent.created")

        response = post_webhook(client, event)

        assert response.status_code == 200
        body = response.json()
        assert body["ignored"] is True
        assert body["reason"] == "event type not handled"
        assert body["event"] == "payment_intent.created"
        assert db_session.query(WebhookEvent).count() == 1
        assert db_session.query(Transaction).count() == 0
        mock_stripe_fee.assert_not_called()

    def test_subscription_checkout_ignored(self, client, db_session, mock_stripe_fee):
        """Test a subscription checkout is not treated as a one-time purchase"""
        response = post_webhook(client, checkout_event(mode="subscription"))

        assert response.status_code == 200
        assert response.json()["reason"] == "not a paid one-time checkout"
        assert db_session.query(Transaction).count() == 0

    def test_ignored_event_redelivery_deduped(self, client, mock_stripe_fee):
        """Test an ignored event is deduped on redelivery"""
        event = checkout_event(event_type="customer.created")
        post_webhook(client, event)

        response = post_webhook(client, event)

        assert response.json()["deduped"] is True


@pytest.mark.high
class TestPartialFailures:
    """Test failures after the event has been admitted"""

    def test_provider_outage_returns_502(self, client, db_session, mock_stripe_fee):
        """Test a failed fee lookup returns 502 and writes no transaction"""
        mock_stripe_fee.side_effect = stripe.APIConnectionError("network down")

        response = post_webhook(client, checkout_event())

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "provider_unavailable"
        assert body["event_id"] == "evt_test_1"
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(WebhookEvent).count() == 1

    def test_entitlement_failure_keeps_transaction(self, client, db_session, mock_redis, mock_stripe_fee):
        """Test a fan-out failure still succeeds with a warning and keeps the transaction"""
        with patch("payhook.services.entitlements._upsert_attendance", side_effect=RuntimeError("attendance table locked")):
            response = post_webhook(client, checkout_event())

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] is True
        assert body["warning"] == "entitlement grant failed"
        assert "attendance table locked" in body["detail"]
        assert db_session.query(Transaction).one().status == "succeeded"
        assert db_session.query(Attendance).count() == 0

    def test_receipt_enqueue_failure_swallowed(self, client, db_session, mock_stripe_fee):
        """Test a receipt queue outage does not affect the response"""
        with patch("payhook.services.receipt_service.enqueue_task", side_effect=ConnectionError("redis down")):
            response = post_webhook(client, checkout_event())

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] is True
        assert "warning" not in body
        assert db_session.query(Transaction).count() == 1

    def test_unexpected_error_returns_storage_failure(self, client, db_session, mock_stripe_fee):
        """Test an unanticipated exception after admission is a retryable 500 naming the event"""
        with patch("payhook.services.reconciliation.apply_transaction", side_effect=OverflowError("int too large")):
            response = post_webhook(client, checkout_event())

        assert response.status_code == 500
        body = response.json()
        assert body["ok"] is False
        assert body["code"] == "storage_unavailable"
        assert body["event_id"] == "evt_test_1"
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(WebhookEvent).count() == 1
