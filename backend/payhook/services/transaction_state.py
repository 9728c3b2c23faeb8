"""Transaction status state machine

pending -> succeeded | failed | canceled
succeeded -> refunded
failed, canceled, refunded are terminal. Repeating the current status is
always allowed and writes nothing.
"""
from enum import Enum
from typing import Optional, Union


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.SUCCEEDED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELED,
    }),
    TransactionStatus.SUCCEEDED: frozenset({TransactionStatus.REFUNDED}),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
}

def allowed_transition(
    previous: Optional[Union[TransactionStatus, str]],
    next_status: Union[TransactionStatus, str]
) -> bool:
    """Return True if a row in ``previous`` may move to ``next_status``

    ``previous`` of None means no row exists yet; any status may be created.
    Unknown status strings are never allowed.
    """
    try:
        target = TransactionStatus(next_status)
    except ValueError:
        return False
    if previous is None:
        return True
    try:
        current = TransactionStatus(previous)
    except ValueError:
        return False
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]