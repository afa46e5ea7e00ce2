import itertools
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from services.booking_types import (
    BookingDraft,
    BookingRecord,
    LockTimeout,
    SlotConflict,
    SlotState,
    SlotStatus,
    SlotUpdate,
)
from utils.keyed_lock import KeyedLock, LockAcquireTimeout


class InMemorySlotStore:
    """
    Slot store kept in process memory, serialized by a mutex per slot id.

    Same contract as SqlSlotStore.with_slot_lock; useful for single-process
    deployments and for exercising arbitration without a database.
    """

    def __init__(self, lock_timeout: float = 5.0):
        self.lock_timeout = lock_timeout
        self._locks = KeyedLock()
        self._slots: Dict[int, SlotState] = {}
        self._bookings: Dict[int, BookingRecord] = {}
        self._booking_ids = itertools.count(1)
        self._rows_guard = threading.Lock()

    # ---------- seeding / inspection ----------
    def add_slot(self, slot: SlotState) -> SlotState:
        with self._rows_guard:
            self._slots[slot.id] = slot
        return slot

    def remove_slot(self, slot_id: int) -> bool:
        # Mirrors the availability cascade, which does not take the slot lock
        with self._rows_guard:
            return self._slots.pop(slot_id, None) is not None

    def get_slot(self, slot_id: int) -> Optional[SlotState]:
        with self._rows_guard:
            return self._slots.get(slot_id)

    def bookings_for_slot(self, slot_id: int) -> List[BookingRecord]:
        with self._rows_guard:
            return [b for b in self._bookings.values() if b.slot_id == slot_id]

    # ---------- locked access ----------
    def with_slot_lock(self, slot_id: int, fn: Callable):
        try:
            with self._locks.hold(slot_id, timeout=self.lock_timeout):
                current = self.get_slot(slot_id)
                decision = fn(current)

                if isinstance(decision, BookingDraft):
                    return self._commit_booking(current, decision)
                if isinstance(decision, SlotUpdate):
                    return self._commit_update(current, decision)
                return decision
        except LockAcquireTimeout as exc:
            raise LockTimeout(str(exc)) from exc

    def _commit_booking(self, current: SlotState, draft: BookingDraft) -> BookingRecord:
        record = BookingRecord(
            booking_id=next(self._booking_ids),
            slot_id=current.id,
            status=draft.status,
            start_time=draft.start_time,
            end_time=draft.end_time,
            price=draft.price,
        )
        booked = replace(current, status=SlotStatus.BOOKED, booking_id=record.booking_id)
        # Both rows land under one guard so readers never see half of it
        with self._rows_guard:
            if current.id not in self._slots:
                raise SlotConflict(current.id, missing=True)
            self._bookings[record.booking_id] = record
            self._slots[current.id] = booked
        return record

    def _commit_update(self, current: SlotState, update: SlotUpdate) -> SlotState:
        updated = replace(
            current,
            status=update.status,
            blocked_by_event_id=update.blocked_by_event_id,
        )
        with self._rows_guard:
            if current.id not in self._slots:
                raise SlotConflict(current.id, missing=True)
            self._slots[current.id] = updated
        return updated

