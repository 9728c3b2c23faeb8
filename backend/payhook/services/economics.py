"""Economics calculator - monetary split of a purchase

Pure functions only. All amounts are integer minor currency units; the creator
share is a Decimal so the floor is exact.
"""
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from payhook.core.config import settings
from payhook.core.errors import InvalidPrice


@dataclass(frozen=True)
class Split:
    """Breakdown of a gross charge into provider fees and revenue cuts"""
    currency: str
    gross_cents: int
    fixed_fee_cents: int
    percent_fee_cents: int
    platform_cut_cents: int
    creator_cut_cents: int
    net_cents: int  # gross minus provider fees

    def as_transaction_values(self) -> dict:
        return {
            "currency": self.currency,
            "amount_gross_cents": self.gross_cents,
            "processing_fee_fixed_cents": self.fixed_fee_cents,
            "processing_fee_percent_cents": self.percent_fee_cents,
            "platform_cut_cents": self.platform_cut_cents,
            "creator_cut_cents": self.creator_cut_cents,
            "amount_after_fees_cents": self.net_cents,
        }


def _require_cents(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidPrice(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidPrice(f"{name} must be finite, got {value!r}")
    if isinstance(value, Decimal) and not value.is_finite():
        raise InvalidPrice(f"{name} must be finite, got {value!r}")
    if value != int(value):
        raise InvalidPrice(f"{name} must be a whole number of cents, got {value!r}")
    if value < 0:
        raise InvalidPrice(f"{name} must not be negative, got {value!r}")
    return int(value)


def compute(
    base_price_cents,
    currency: str,
    total_provider_fee_cents,
    fixed_fee_cents: Optional[int] = None,
    creator_share: Optional[Decimal] = None
) -> Split:
    """Compute the split for one purchase

    The fixed per-transaction fee is taken first; whatever remains of the
    provider's reported fee is the percentage component, floored at zero.
    The creator gets ``floor(base * share)`` and the platform the remainder,
    so the two cuts always sum to the base price.

    Args:
        base_price_cents: Price agreed at checkout (source of truth, not the charged total)
        currency: ISO-4217-like code
        total_provider_fee_cents: Fee reported by the provider for this payment
        fixed_fee_cents: Defaults to settings.FIXED_FEE_CENTS
        creator_share: Defaults to settings.CREATOR_SHARE

    Raises:
        InvalidPrice: base price or fee is not a finite non-negative integer
    """
    gross = _require_cents(base_price_cents, "base_price_cents")
    total_fee = _require_cents(total_provider_fee_cents, "total_provider_fee_cents")
    fixed_fee = settings.FIXED_FEE_CENTS if fixed_fee_cents is None else fixed_fee_cents
    share = Decimal(str(settings.CREATOR_SHARE if creator_share is None else creator_share))

    percent_fee = max(total_fee - fixed_fee, 0)
    creator_cut = int((Decimal(gross) * share).to_integral_value(rounding=ROUND_FLOOR))
    platform_cut = gross - creator_cut
    net = gross - fixed_fee - percent_fee

    return Split(
        currency=currency,
        gross_cents=gross,
        fixed_fee_cents=fixed_fee,
        percent_fee_cents=percent_fee,
        platform_cut_cents=platform_cut,
        creator_cut_cents=creator_cut,
        net_cents=net,
    )
