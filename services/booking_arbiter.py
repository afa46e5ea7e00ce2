"""
Booking arbiter: resolves concurrent attempts to book the same slot.

All checks happen inside the store's locked section, so the status that is
validated is the status that gets overwritten. Store failures are turned
into BookingFailure results here; nothing raised by a store crosses
`attempt_booking`.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from services.booking_types import (
    BookingDraft,
    BookingFailure,
    BookingRecord,
    BookingResult,
    BookingSuccess,
    FailureKind,
    LockTimeout,
    RequesterInfo,
    SlotConflict,
    SlotState,
    SlotStatus,
    SlotUpdate,
    StorageError,
)
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    lock_retries: int = 1
    storage_retries: int = 2
    backoff_seconds: float = 0.05

    def delay(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** attempt)

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            lock_retries=int(config.get("BOOKING_LOCK_RETRIES", 1)),
            storage_retries=int(config.get("BOOKING_STORAGE_RETRIES", 2)),
            backoff_seconds=float(config.get("BOOKING_RETRY_BACKOFF_SECONDS", 0.05)),
        )


LOCK_TIMEOUT_REASON = "This slot is busy right now, please try again"


def _noop_audit(action, **kwargs):
    return None


class BookingArbiter:
    def __init__(
        self,
        store,
        retry_policy: Optional[RetryPolicy] = None,
        now: Callable[[], datetime] = utcnow,
        audit: Callable = _noop_audit,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.now = now
        self.audit = audit
        self.sleep = sleep

    # ---------- booking ----------
    def attempt_booking(self, slot_id: int, requester: RequesterInfo) -> BookingResult:
        def decide(slot: Optional[SlotState]):
            failure = self._check_bookable(slot)
            if failure is not None:
                return failure
            return self._draft_for(slot, requester)

        result = self._run(slot_id, decide)

        if isinstance(result, BookingRecord):
            self.audit(
                "BOOKING_CREATE",
                user_id=requester.client_id,
                entity="booking",
                entity_id=result.booking_id,
                metadata={"slot_id": slot_id},
            )
            return BookingSuccess(booking=result)

        self.audit(
            f"BOOKING_FAIL_{result.kind.name}",
            user_id=requester.client_id,
            entity="slot",
            entity_id=slot_id,
            metadata={"reason": result.reason},
        )
        return result

    def _check_bookable(self, slot: Optional[SlotState]) -> Optional[BookingFailure]:
        if slot is None:
            return BookingFailure(FailureKind.SLOT_NOT_FOUND)
        if slot.status == SlotStatus.BOOKED:
            return BookingFailure(FailureKind.SLOT_ALREADY_BOOKED)
        if slot.status == SlotStatus.BLOCKED:
            return BookingFailure(FailureKind.SLOT_UNAVAILABLE)
        if slot.start_time <= self.now():
            return BookingFailure(FailureKind.SLOT_EXPIRED)
        return None

    @staticmethod
    def _draft_for(slot: SlotState, requester: RequesterInfo) -> BookingDraft:
        wants_online = requester.appointment_type == "online"
        wants_in_person = requester.appointment_type == "inperson"
        if requester.appointment_type is None:
            # No preference: fall back to whatever the slot offers
            wants_in_person = slot.is_in_person
            wants_online = slot.is_online_available and not slot.is_in_person
        return BookingDraft(
            slot_id=slot.id,
            requester=requester,
            price=slot.price,
            start_time=slot.start_time,
            end_time=slot.end_time,
            is_online=wants_online,
            is_in_person=wants_in_person,
            location=slot.location if wants_in_person else None,
        )

    # ---------- external calendar blocking ----------
    def block_slot(self, slot_id: int, event_id: Optional[str] = None):
        """
        AVAILABLE -> BLOCKED for an external calendar conflict. Returns the
        updated SlotState, or a BookingFailure. Already-blocked slots are left
        as they are.
        """
        changed = []

        def decide(slot: Optional[SlotState]):
            if slot is None:
                return BookingFailure(FailureKind.SLOT_NOT_FOUND)
            if slot.status == SlotStatus.BOOKED:
                return BookingFailure(FailureKind.SLOT_ALREADY_BOOKED)
            if slot.status == SlotStatus.BLOCKED:
                return slot
            changed.append(slot.id)
            return SlotUpdate(status=SlotStatus.BLOCKED, blocked_by_event_id=event_id)

        result = self._run(slot_id, decide)
        if isinstance(result, SlotState) and changed:
            self.audit(
                "SLOT_BLOCK",
                entity="slot",
                entity_id=slot_id,
                metadata={"event_id": event_id},
            )
        return result

    # ---------- retry loop ----------
    def _run(self, slot_id: int, decide: Callable):
        policy = self.retry_policy
        lock_failures = 0
        storage_failures = 0

        while True:
            try:
                return self.store.with_slot_lock(slot_id, decide)
            except SlotConflict as exc:
                if exc.missing:
                    return BookingFailure(FailureKind.SLOT_NOT_FOUND)
                return BookingFailure(FailureKind.SLOT_ALREADY_BOOKED)
            except LockTimeout:
                if lock_failures >= policy.lock_retries:
                    logger.warning("slot %s still locked after %d attempts", slot_id, lock_failures + 1)
                    return BookingFailure(
                        FailureKind.SLOT_UNAVAILABLE,
                        reason=LOCK_TIMEOUT_REASON,
                        retryable=True,
                    )
                self.sleep(policy.delay(lock_failures))
                lock_failures += 1
            except StorageError as exc:
                logger.exception("storage failure while arbitrating slot %s", slot_id)
                # A failed COMMIT may still have landed; a retry would then
                # read our own booking back as SlotAlreadyBooked
                if exc.outcome_unknown or storage_failures >= policy.storage_retries:
                    return BookingFailure(FailureKind.STORAGE_ERROR, retryable=True)
                self.sleep(policy.delay(storage_failures))
                storage_failures += 1
            except Exception:
                logger.exception("unexpected failure while arbitrating slot %s", slot_id)
                return BookingFailure(FailureKind.STORAGE_ERROR, retryable=True)
