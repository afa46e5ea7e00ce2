"""
Database-backed slot store.

Every read-check-write against a slot runs inside `with_slot_lock`:

  1. per-slot mutex inside this process (bounded wait),
  2. row lock (`SELECT ... FOR UPDATE`) on databases that support it,
  3. version check on the slot row and a partial unique index on
     bookings.slot_id when the write is flushed.

(1) keeps same-process callers from ever racing; (2) does the same across
processes on PostgreSQL; (3) catches anything that slips past both, e.g.
SQLite shared by several processes.
"""
import logging
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from models import db
from models.booking import Booking
from models.slot import Slot
from models.service import Service
from services.booking_types import (
    BookingDraft,
    BookingRecord,
    BookingStatus,
    LockTimeout,
    SlotConflict,
    SlotState,
    SlotStatus,
    SlotUpdate,
    StorageError,
)
from utils.keyed_lock import KeyedLock, LockAcquireTimeout

logger = logging.getLogger(__name__)

# One registry per process: every SqlSlotStore instance shares it
_process_locks = KeyedLock()

PG_LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_timeout(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(orig or exc).lower()


def slot_state_from_row(slot: Slot, location: Optional[str] = None) -> SlotState:
    return SlotState(
        id=slot.id,
        status=SlotStatus(slot.status),
        start_time=slot.start_time,
        end_time=slot.end_time,
        price=slot.price,
        is_online_available=slot.is_online_available,
        is_in_person=slot.is_in_person,
        service_id=slot.service_id,
        availability_id=slot.availability_id,
        booking_id=slot.booking_id,
        blocked_by_event_id=slot.blocked_by_event_id,
        location=location,
    )


class SqlSlotStore:
    def __init__(self, lock_timeout: float = 5.0, locks: Optional[KeyedLock] = None):
        self.lock_timeout = lock_timeout
        self._locks = locks if locks is not None else _process_locks

    @property
    def session(self):
        return db.session

    def _lock_row(self, slot_id: int) -> Optional[Slot]:
        if self.session.get_bind().dialect.name == "postgresql":
            ms = int(self.lock_timeout * 1000)
            self.session.execute(text(f"SET LOCAL lock_timeout = '{ms}ms'"))
        return (
            self.session.query(Slot)
            .filter(Slot.id == slot_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def _location_for(self, slot: Slot) -> Optional[str]:
        service = self.session.get(Service, slot.service_id)
        return service.location if service else None

    def with_slot_lock(self, slot_id: int, fn: Callable):
        """
        Run fn(SlotState | None) while holding exclusive access to the slot.

        fn returns a BookingDraft (insert booking + mark slot BOOKED), a
        SlotUpdate (status change only) or anything else (no write; the value
        is handed back as-is). Raises LockTimeout, StorageError or SlotConflict;
        the transaction is rolled back and the lock released on every path
        that does not commit.
        """
        try:
            with self._locks.hold(slot_id, timeout=self.lock_timeout):
                return self._run_locked(slot_id, fn)
        except LockAcquireTimeout as exc:
            raise LockTimeout(str(exc)) from exc

    def _run_locked(self, slot_id: int, fn: Callable):
        committed = False
        committing = False
        try:
            row = self._lock_row(slot_id)
            state = slot_state_from_row(row, self._location_for(row)) if row else None

            decision = fn(state)

            if isinstance(decision, BookingDraft) and row is not None:
                result = self._persist_booking(row, decision)
            elif isinstance(decision, SlotUpdate) and row is not None:
                result = self._persist_update(row, decision)
            else:
                return decision

            committing = True
            self._commit()
            committed = True
            return result
        except StaleDataError as exc:
            raise SlotConflict(slot_id, missing=self._slot_missing(slot_id)) from exc
        except IntegrityError as exc:
            # Unique constraint uq_bookings_active_slot triggers here
            raise SlotConflict(slot_id, missing=self._slot_missing(slot_id)) from exc
        except OperationalError as exc:
            if _is_lock_timeout(exc):
                raise LockTimeout(f"row lock on slot {slot_id} timed out") from exc
            raise StorageError(str(exc), outcome_unknown=committing) from exc
        except SQLAlchemyError as exc:
            raise StorageError(str(exc), outcome_unknown=committing) from exc
        finally:
            if not committed:
                self.session.rollback()

    def _commit(self):
        self.session.commit()

    def _slot_missing(self, slot_id: int) -> bool:
        try:
            self.session.rollback()
            return self.session.get(Slot, slot_id) is None
        except SQLAlchemyError:
            logger.exception("could not re-read slot %s after a conflict", slot_id)
            return False

    def _persist_booking(self, row: Slot, draft: BookingDraft) -> BookingRecord:
        requester = draft.requester
        booking = Booking(
            slot_id=row.id,
            client_id=requester.client_id,
            guest_name=requester.name,
            guest_email=requester.email,
            guest_phone=requester.phone,
            guest_whatsapp=requester.whatsapp,
            is_guest_booking=requester.is_guest,
            price=draft.price,
            is_online=draft.is_online,
            is_in_person=draft.is_in_person,
            location=draft.location,
            notes=requester.notes,
            start_time=draft.start_time,
            end_time=draft.end_time,
            status=draft.status.value,
        )
        self.session.add(booking)
        self.session.flush()

        row.status = SlotStatus.BOOKED.value
        row.booking_id = booking.id
        # Version check happens here: a concurrent writer makes it StaleDataError
        self.session.flush()

        return BookingRecord(
            booking_id=booking.id,
            slot_id=row.id,
            status=BookingStatus(booking.status),
            start_time=booking.start_time,
            end_time=booking.end_time,
            price=booking.price,
        )

    def _persist_update(self, row: Slot, update: SlotUpdate) -> SlotState:
        row.status = update.status.value
        row.blocked_by_event_id = update.blocked_by_event_id
        self.session.flush()
        return slot_state_from_row(row)
