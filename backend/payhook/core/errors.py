"""Error taxonomy for webhook reconciliation

Authentication and validation errors are permanent (4xx, the provider should
stop retrying). Dependency and storage errors are transient (5xx, the provider
redelivers). Duplicates and disallowed transitions are not errors at all and
never show up here.
"""
from typing import Optional


class ReconciliationError(Exception):
    """Base class; carries the HTTP status and a stable machine code"""
    status_code = 500
    code = "internal_error"
    retryable = True

    def __init__(self, message: str, event_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.event_id = event_id

    def to_body(self) -> dict:
        body = {"ok": False, "code": self.code, "message": self.message}
        if self.event_id:
            body["event_id"] = self.event_id
        return body


class SignatureInvalid(ReconciliationError):
    status_code = 400
    code = "signature_invalid"
    retryable = False


class MetadataInvalid(ReconciliationError):
    status_code = 422
    code = "metadata_invalid"
    retryable = False


class InvalidPrice(ReconciliationError):
    status_code = 422
    code = "invalid_price"
    retryable = False


class MissingPaymentReference(ReconciliationError):
    status_code = 422
    code = "payment_reference_missing"
    retryable = False


class TransientDependencyError(ReconciliationError):
    """Provider API call failed (network, timeout, 5xx)"""
    status_code = 502
    code = "provider_unavailable"


class StorageUnavailable(ReconciliationError):
    """Any write failure that is not a uniqueness violation"""
    status_code = 500
    code = "storage_unavailable"


class ProviderNotConfigured(ReconciliationError):
    status_code = 500
    code = "provider_not_configured"
