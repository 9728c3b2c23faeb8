"""Abstract base class for payment providers"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProviderEvent:
    """A verified provider notification"""
    provider: str
    event_id: str
    event_type: str
    data_object: Dict[str, Any]
    payload: Dict[str, Any] = field(repr=False)  # Full JSON body, stored for audit and replay


class PaymentProvider(ABC):
    """Interface contract for a payment provider.

    One instance serves every request; implementations hold configuration
    only and no per-request state.
    """

    name: str = ""
    signature_header: str = ""

    @abstractmethod
    def verify_event(self, payload: bytes, sig_header: Optional[str]) -> ProviderEvent:
        """Authenticate the raw request body.

        Args:
            payload: Body exactly as received; never re-serialized
            sig_header: Value of the provider's signature header

        Raises:
            SignatureInvalid: missing/bad signature or unparseable body
            ProviderNotConfigured: no signing secret configured
        """

    @abstractmethod
    def event_from_payload(self, payload: Dict[str, Any]) -> ProviderEvent:
        """Rebuild an event from a stored, previously verified payload"""

    @abstractmethod
    def is_checkout_paid(self, event: ProviderEvent) -> bool:
        """True for the paid-checkout events that drive reconciliation"""

    @abstractmethod
    def is_checkout_event(self, event: ProviderEvent) -> bool:
        """True if the event announces a checkout, paid or not"""

    @abstractmethod
    def extract_metadata(self, event: ProviderEvent) -> Dict[str, Any]:
        """Raw checkout metadata stamped at checkout creation"""

    @abstractmethod
    def extract_payment_reference(self, event: ProviderEvent) -> Optional[str]:
        """Provider payment id forming the transaction business key"""

    @abstractmethod
    def fetch_total_fee(self, payment_reference: str) -> int:
        """Provider's authoritative total fee for the payment, in cents.

        Raises:
            TransientDependencyError: the provider could not be reached
        """
