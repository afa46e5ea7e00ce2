from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from helpers import requester
from models import db
from models.booking import Booking
from models.slot import Slot
from services.booking_types import (
    BookingDraft,
    BookingRecord,
    LockTimeout,
    SlotConflict,
    SlotStatus,
    SlotUpdate,
    StorageError,
)
from services.slot_store import SqlSlotStore, _is_lock_timeout
from utils.keyed_lock import KeyedLock


def _draft(state, who=None):
    return BookingDraft(
        slot_id=state.id,
        requester=who or requester(),
        price=state.price,
        start_time=state.start_time,
        end_time=state.end_time,
        is_in_person=True,
        location=state.location,
    )


def _slot_and_bookings(app, slot_id):
    with app.app_context():
        slot = db.session.get(Slot, slot_id)
        bookings = Booking.query.filter_by(slot_id=slot_id).all()
        return (
            (slot.status, slot.booking_id, slot.version) if slot else None,
            [(b.id, b.status) for b in bookings],
        )


def test_booking_draft_writes_booking_and_slot_together(app, slot_factory):
    slot_id = slot_factory()

    with app.app_context():
        seen = []

        def fn(state):
            seen.append(state)
            return _draft(state)

        record = SqlSlotStore().with_slot_lock(slot_id, fn)

    assert isinstance(record, BookingRecord)
    assert seen[0].status == SlotStatus.AVAILABLE
    assert seen[0].location == "12 Main Rd"

    slot, bookings = _slot_and_bookings(app, slot_id)
    assert slot == ("BOOKED", record.booking_id, 2)
    assert bookings == [(record.booking_id, "PENDING")]

    with app.app_context():
        booking = db.session.get(Booking, record.booking_id)
        assert booking.guest_email == "user0@test.com"
        assert booking.is_guest_booking is True
        assert booking.price == Decimal("450.00")
        assert booking.location == "12 Main Rd"


def test_decision_without_mutation_is_returned_untouched(app, slot_factory):
    slot_id = slot_factory()

    with app.app_context():
        assert SqlSlotStore().with_slot_lock(slot_id, lambda state: "skip") == "skip"
        assert SqlSlotStore().with_slot_lock(999, lambda state: state) is None

    slot, bookings = _slot_and_bookings(app, slot_id)
    assert slot == ("AVAILABLE", None, 1)
    assert bookings == []


def test_exception_in_fn_rolls_back_and_releases_lock(app, slot_factory):
    slot_id = slot_factory()
    locks = KeyedLock()
    store = SqlSlotStore(lock_timeout=0.1, locks=locks)

    with app.app_context():
        def explode(state):
            db.session.add(Booking(
                slot_id=state.id, price=0, start_time=state.start_time, end_time=state.end_time,
            ))
            raise RuntimeError("client went away")

        with pytest.raises(RuntimeError):
            store.with_slot_lock(slot_id, explode)

        assert len(locks) == 0
        # lock is free again and nothing from the failed attempt was kept
        assert store.with_slot_lock(slot_id, lambda state: state.status) == SlotStatus.AVAILABLE

    assert _slot_and_bookings(app, slot_id) == (("AVAILABLE", None, 1), [])


def test_failure_after_booking_insert_leaves_no_partial_state(app, slot_factory):
    slot_id = slot_factory()

    class FailingStore(SqlSlotStore):
        def _persist_booking(self, row, draft):
            super()._persist_booking(row, draft)
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    with app.app_context():
        with pytest.raises(StorageError):
            FailingStore().with_slot_lock(slot_id, _draft)

    assert _slot_and_bookings(app, slot_id) == (("AVAILABLE", None, 1), [])


def test_concurrent_writer_outside_the_lock_is_caught_by_version_check(app, slot_factory):
    slot_id = slot_factory()

    with app.app_context():
        def sneaky(state):
            # another process flips the slot between our read and our write
            with db.engine.begin() as conn:
                conn.execute(
                    text("UPDATE slots SET status = 'BLOCKED', version = version + 1 WHERE id = :id"),
                    {"id": slot_id},
                )
            return _draft(state)

        with pytest.raises(SlotConflict) as exc_info:
            SqlSlotStore().with_slot_lock(slot_id, sneaky)

    assert exc_info.value.missing is False
    assert _slot_and_bookings(app, slot_id) == (("BLOCKED", None, 2), [])


def test_slot_deleted_mid_transaction_reports_missing(app, slot_factory):
    slot_id = slot_factory()

    with app.app_context():
        def vanish(state):
            with db.engine.begin() as conn:
                conn.execute(text("DELETE FROM slots WHERE id = :id"), {"id": slot_id})
            return _draft(state)

        with pytest.raises(SlotConflict) as exc_info:
            SqlSlotStore().with_slot_lock(slot_id, vanish)

    assert exc_info.value.missing is True
    with app.app_context():
        assert Booking.query.count() == 0


def test_busy_slot_raises_lock_timeout(app, slot_factory):
    slot_id = slot_factory()
    locks = KeyedLock()
    store = SqlSlotStore(lock_timeout=0.05, locks=locks)

    with app.app_context():
        with locks.hold(slot_id, timeout=1):
            with pytest.raises(LockTimeout):
                store.with_slot_lock(slot_id, _draft)

    assert _slot_and_bookings(app, slot_id) == (("AVAILABLE", None, 1), [])


def test_slot_update_blocks_slot(app, slot_factory):
    slot_id = slot_factory()

    with app.app_context():
        state = SqlSlotStore().with_slot_lock(
            slot_id,
            lambda s: SlotUpdate(status=SlotStatus.BLOCKED, blocked_by_event_id="evt-9"),
        )

    assert state.status == SlotStatus.BLOCKED
    assert state.blocked_by_event_id == "evt-9"
    assert _slot_and_bookings(app, slot_id)[0] == ("BLOCKED", None, 2)


def test_injected_lock_registry_is_used_even_when_empty():
    locks = KeyedLock()
    assert SqlSlotStore(locks=locks)._locks is locks


def test_failure_during_commit_is_flagged_outcome_unknown(app, slot_factory):
    slot_id = slot_factory()

    class CommitFailingStore(SqlSlotStore):
        def _commit(self):
            raise OperationalError("COMMIT", {}, Exception("server closed the connection"))

    with app.app_context():
        with pytest.raises(StorageError) as exc_info:
            CommitFailingStore().with_slot_lock(slot_id, _draft)

    assert exc_info.value.outcome_unknown is True
    assert _slot_and_bookings(app, slot_id) == (("AVAILABLE", None, 1), [])


def test_failure_before_commit_is_safe_to_retry(app, slot_factory):
    slot_id = slot_factory()

    class FailingStore(SqlSlotStore):
        def _persist_booking(self, row, draft):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    with app.app_context():
        with pytest.raises(StorageError) as exc_info:
            FailingStore().with_slot_lock(slot_id, _draft)

    assert exc_info.value.outcome_unknown is False


class _PgLockError(Exception):
    pgcode = "55P03"


@pytest.mark.parametrize("orig, expected", [
    (_PgLockError("canceling statement due to lock timeout"), True),
    (Exception("database is locked"), True),
    (Exception("disk I/O error"), False),
])
def test_lock_timeout_detection(orig, expected):
    assert _is_lock_timeout(OperationalError("SELECT 1", {}, orig)) is expected
