"""Event ledger tests"""
import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError

from payhook.core.errors import StorageUnavailable
from payhook.models.webhook_event import WebhookEvent
from payhook.services.ledger import Admission, admit, get_event


@pytest.mark.critical
class TestAdmit:
    """Test at-most-once admission"""

    def test_first_delivery_admitted(self, db_session):
        """Test a new event is admitted and stored with its payload"""
        payload = {"id": "evt_1", "type": "checkout.session.completed"}
        result = admit("stripe", "evt_1", "checkout.session.completed", payload, db_session)

        assert result == Admission.ADMITTED
        stored = get_event("stripe", "evt_1", db_session)
        assert stored is not None
        assert stored.payload == payload
        assert stored.event_type == "checkout.session.completed"
        assert stored.received_at is not None

    def test_redelivery_already_processed(self, db_session):
        """Test a second admit of the same event reports already processed"""
        admit("stripe", "evt_1", "checkout.session.completed", {"id": "evt_1"}, db_session)
        result = admit("stripe", "evt_1", "checkout.session.completed", {"id": "evt_1"}, db_session)

        assert result == Admission.ALREADY_PROCESSED
        assert db_session.query(WebhookEvent).count() == 1

    def test_same_event_id_different_provider(self, db_session):
        """Test event ids are scoped per provider"""
        admit("stripe", "evt_1", "checkout.session.completed", {"id": "evt_1"}, db_session)
        result = admit("other", "evt_1", "checkout.session.completed", {"id": "evt_1"}, db_session)

        assert result == Admission.ADMITTED
        assert db_session.query(WebhookEvent).count() == 2

    def test_session_usable_after_duplicate(self, db_session):
        """Test the session is rolled back cleanly after a duplicate"""
        admit("stripe", "evt_1", "a", {"id": "evt_1"}, db_session)
        admit("stripe", "evt_1", "a", {"id": "evt_1"}, db_session)
        result = admit("stripe", "evt_2", "a", {"id": "evt_2"}, db_session)

        assert result == Admission.ADMITTED

    def test_storage_failure_raises_storage_unavailable(self):
        """Test a non-uniqueness database failure is not treated as a duplicate"""
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT INTO webhook_events", {}, Exception("connection lost"))

        with pytest.raises(StorageUnavailable) as exc_info:
            admit("stripe", "evt_1", "a", {"id": "evt_1"}, db)

        assert exc_info.value.status_code == 500
        assert exc_info.value.retryable is True
        db.rollback.assert_called_once()

    def test_get_event_missing(self, db_session):
        """Test lookup of an unknown event returns None"""
        assert get_event("stripe", "evt_missing", db_session) is None
