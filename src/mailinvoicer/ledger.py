"""Processed-item ledger: at-most-once handling of provider messages.

Every message a scan finishes with gets one ``processed_emails`` row keyed by
``(user_id, gmail_message_id)``. The row's status is read back as one of the
tagged states below, and writes go through an explicit transition table:

    Unseen   -> Processed | Rejected | Errored
    Processed, Rejected  terminal
    Errored  -> Processed | Rejected | Errored   only when retries are enabled

A row this ledger instance already wrote as Processed absorbs further
Processed writes (a second accepted attachment of the same message keeps the
first invoice link).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from .errors import DuplicateLedgerEntry, LedgerConflict
from .models import LedgerEntry, LedgerStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unseen:
    pass


@dataclass(frozen=True)
class Processed:
    invoice_id: str


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class Errored:
    reason: str


LedgerState = Union[Unseen, Processed, Rejected, Errored]

_STATUS_OF = {
    Processed: LedgerStatus.PROCESSED,
    Rejected: LedgerStatus.REJECTED,
    Errored: LedgerStatus.ERROR,
}


def state_of(entry: Optional[LedgerEntry]) -> LedgerState:
    """Read a stored ledger row back as a tagged state."""
    if entry is None:
        return Unseen()
    if entry.status == LedgerStatus.PROCESSED:
        return Processed(invoice_id=entry.linked_invoice_id or "")
    if entry.status == LedgerStatus.REJECTED:
        return Rejected(reason=entry.reason_text or "")
    return Errored(reason=entry.reason_text or "")


def to_entry(user_id: str, message_id: str, state: LedgerState, processed_at: datetime) -> LedgerEntry:
    """Build the row that stores state."""
    if isinstance(state, Unseen):
        raise ValueError("Unseen is not a recordable state")
    return LedgerEntry(
        user_id=user_id,
        provider_message_id=message_id,
        status=_STATUS_OF[type(state)],
        linked_invoice_id=state.invoice_id if isinstance(state, Processed) else None,
        reason_text=None if isinstance(state, Processed) else state.reason,
        processed_at=processed_at,
    )


class ProcessedItemLedger:
    """Ledger service for one scan invocation."""

    def __init__(self, db, retry_errored: bool = False, now: Callable[[], datetime] = None):
        """Initialize ledger.

        Args:
            db: Datastore exposing get/insert/update_ledger_entry
            retry_errored: Whether an errored message may be picked up and rewritten
            now: Clock returning an aware datetime
        """
        self.db = db
        self.retry_errored = retry_errored
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._written: set[tuple[str, str]] = set()

    def state(self, user_id: str, message_id: str) -> LedgerState:
        return state_of(self.db.get_ledger_entry(user_id, message_id))

    def is_eligible(self, user_id: str, message_id: str) -> bool:
        """Whether a scan may hand this message to the classifier."""
        current = self.state(user_id, message_id)
        if isinstance(current, Unseen):
            return True
        return isinstance(current, Errored) and self.retry_errored

    def can_transition(self, current: LedgerState, new: LedgerState) -> bool:
        if isinstance(new, Unseen):
            return False
        if isinstance(current, Unseen):
            return True
        if isinstance(current, Errored):
            return self.retry_errored
        return False

    def record(self, user_id: str, message_id: str, state: LedgerState) -> LedgerState:
        """Write state for a message and return the state now stored.

        Raises:
            LedgerConflict: If the message is already recorded and the
                transition is not allowed (benign for callers)
        """
        key = (user_id, message_id)

        # Two attempts: the second re-reads after losing an insert race
        for _ in range(2):
            current = self.state(user_id, message_id)

            if key in self._written and isinstance(current, Processed) and isinstance(state, Processed):
                return current

            if not self.can_transition(current, state):
                raise LedgerConflict(
                    f"Message {message_id} for user {user_id} already recorded as "
                    f"{type(current).__name__}"
                )

            entry = to_entry(user_id, message_id, state, self._now())
            if isinstance(current, Unseen):
                try:
                    self.db.insert_ledger_entry(entry)
                except DuplicateLedgerEntry:
                    logger.info(f"Lost ledger insert race for message {message_id}, re-reading")
                    continue
            elif not self.db.update_ledger_entry(entry, expected_status=_STATUS_OF[type(current)]):
                logger.info(f"Ledger row for message {message_id} changed underneath, re-reading")
                continue

            self._written.add(key)
            logger.debug(f"Ledger {message_id}: {type(current).__name__} -> {type(state).__name__}")
            return state

        raise LedgerConflict(f"Message {message_id} for user {user_id} is being recorded concurrently")
