"""Pydantic schema for the checkout metadata contract

The checkout collaborator stamps these fields onto the provider's checkout
session. Provider metadata values arrive as strings, so ``price_cents`` accepts
a string of decimal digits as well as a plain integer.
"""
import re
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from payhook.core.errors import MetadataInvalid

_DIGITS = re.compile(r"^[0-9]+$")
_CURRENCY = re.compile(r"^[A-Za-z]{3}$")

# Bounds of the transaction columns (String(64) ids, 32-bit integer amounts)
MAX_ID_LENGTH = 64
MAX_PRICE_CENTS = 2**31 - 1


class PurchaseKind(str, Enum):
    SESSION = "session"  # single item
    CHALLENGE = "challenge"  # bundle of sessions


class TransactionType(str, Enum):
    TICKET = "ticket"
    BUNDLE = "bundle"


class CheckoutMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: PurchaseKind
    target_id: str = Field(min_length=1, max_length=MAX_ID_LENGTH)
    buyer_id: str = Field(min_length=1, max_length=MAX_ID_LENGTH)
    creator_id: Optional[str] = Field(None, max_length=MAX_ID_LENGTH)
    currency: str
    price_cents: int

    @field_validator("target_id", "buyer_id", mode="before")
    @classmethod
    def strip_ids(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("creator_id", mode="before")
    @classmethod
    def blank_creator_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def check_currency(cls, v):
        if not isinstance(v, str) or not _CURRENCY.match(v):
            raise ValueError("must be a 3-letter currency code")
        return v.upper()

    @field_validator("price_cents", mode="before")
    @classmethod
    def check_price(cls, v):
        if isinstance(v, bool):
            raise ValueError("must be an integer")
        if isinstance(v, str) and _DIGITS.match(v):
            v = int(v)
        if not isinstance(v, int):
            raise ValueError("must be a non-negative integer")
        if v < 0:
            raise ValueError("must not be negative")
        if v > MAX_PRICE_CENTS:
            raise ValueError(f"must not exceed {MAX_PRICE_CENTS}")
        return v

    @property
    def transaction_type(self) -> TransactionType:
        if self.kind == PurchaseKind.SESSION:
            return TransactionType.TICKET
        return TransactionType.BUNDLE


def parse_checkout_metadata(raw: Optional[Dict[str, Any]], event_id: Optional[str] = None) -> CheckoutMetadata:
    """Validate raw provider metadata against the checkout contract

    Raises:
        MetadataInvalid: naming the first offending field
    """
    try:
        return CheckoutMetadata.model_validate(dict(raw or {}))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "metadata"
        reason = "missing" if first["type"] == "missing" else first["msg"]
        raise MetadataInvalid(f"metadata.{field} {reason}", event_id=event_id) from e
