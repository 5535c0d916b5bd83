"""Record lifecycle for idempotency keys.

This module defines the legal transitions of an idempotency key,
independently of how a store persists them:

    ABSENT --claim--> IN_PROGRESS --complete--> COMPLETED
                      IN_PROGRESS --release---> ABSENT
                      IN_PROGRESS --reclaim---> ABSENT   (in-progress expiry elapsed)
                      COMPLETED   --expire----> ABSENT   (result expiry elapsed)

Expiry is logical: a record whose relevant timestamp has passed is treated
as ABSENT whether or not it has been physically deleted, so an expired record
can be claimed again directly.

Storage adapters consult :func:`next_status` before mutating a record, and
the coordinator uses :func:`effective_status` to decide between the cache-hit and the
conflict path after a failed claim.

Examples:
    >>> next_status(RecordStatus.ABSENT, LifecycleEvent.CLAIM)
    <RecordStatus.IN_PROGRESS: 'IN_PROGRESS'>
    >>> next_status(RecordStatus.COMPLETED, LifecycleEvent.CLAIM)
    Traceback (most recent call last):
    ...
    InvalidTransitionError: Cannot claim a key in status COMPLETED
"""

from datetime import datetime
from enum import Enum

from idempotent_fetch.exceptions import InvalidTransitionError
from idempotent_fetch.models import IdempotencyRecord, RecordStatus


class LifecycleEvent(str, Enum):
    """Events that move a key between statuses."""

    CLAIM = "claim"
    COMPLETE = "complete"
    RELEASE = "release"
    RECLAIM = "reclaim"
    EXPIRE = "expire"


TRANSITIONS: dict[tuple[RecordStatus, LifecycleEvent], RecordStatus] = {
    (RecordStatus.ABSENT, LifecycleEvent.CLAIM): RecordStatus.IN_PROGRESS,
    (RecordStatus.IN_PROGRESS, LifecycleEvent.COMPLETE): RecordStatus.COMPLETED,
    (RecordStatus.IN_PROGRESS, LifecycleEvent.RELEASE): RecordStatus.ABSENT,
    (RecordStatus.IN_PROGRESS, LifecycleEvent.RECLAIM): RecordStatus.ABSENT,
    (RecordStatus.COMPLETED, LifecycleEvent.EXPIRE): RecordStatus.ABSENT,
}


def can_transition(current: RecordStatus, event: LifecycleEvent) -> bool:
    """Return True if ``event`` is legal from ``current``."""
    return (current, event) in TRANSITIONS


def next_status(current: RecordStatus, event: LifecycleEvent) -> RecordStatus:
    """Apply a lifecycle event.

    Args:
        current: Effective status of the key.
        event: The event to apply.

    Returns:
        The status after the event.

    Raises:
        InvalidTransitionError: If the event is not legal from ``current``.
    """
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {event.value} a key in status {current.value}",
            current=current.value,
            event=event.value,
        ) from None


def effective_status(record: IdempotencyRecord | None, now: datetime) -> RecordStatus:
    """Status of a possibly-missing record at ``now``.

    A missing record and a record whose expiry has elapsed are both ABSENT.
    """
    if record is None:
        return RecordStatus.ABSENT
    return record.effective_status(now)


def expiry_event(record: IdempotencyRecord) -> LifecycleEvent:
    """The event that logically removes an expired record."""
    if record.status == RecordStatus.IN_PROGRESS:
        return LifecycleEvent.RECLAIM
    return LifecycleEvent.EXPIRE


def is_claimable(record: IdempotencyRecord | None, now: datetime) -> bool:
    """Return True if a conditional insert for this key should succeed."""
    return can_transition(effective_status(record, now), LifecycleEvent.CLAIM)
