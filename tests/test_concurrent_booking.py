"""
Race-condition coverage for booking against the database-backed store.

Every worker runs on its own thread with its own app context (and so its
own session), the way concurrent requests do.
"""
from datetime import timedelta

import pytest

from helpers import requester, run_concurrently, tally
from models import db
from models.audit_log import AuditLog
from models.booking import Booking, BookingStatus
from models.slot import Slot, SlotStatus
from services import get_arbiter
from services.booking_types import FailureKind


def _assert_consistent(app, slot_id):
    with app.app_context():
        slot = db.session.get(Slot, slot_id)
        live = (
            Booking.query
            .filter(Booking.slot_id == slot_id, Booking.status != BookingStatus.CANCELLED.value)
            .all()
        )
        if slot.status == SlotStatus.BOOKED.value:
            assert len(live) == 1
            assert slot.booking_id == live[0].id
        else:
            assert live == []
            assert slot.booking_id is None
        return slot.status, [b.id for b in live]


@pytest.mark.parametrize("n", [2, 5, 50])
def test_only_one_concurrent_booking_wins(app, slot_factory, n):
    slot_id = slot_factory()

    results = run_concurrently(app, [(slot_id, requester(i)) for i in range(n)])

    wins, already_booked = tally(results)
    assert len(wins) == 1
    assert len(already_booked) == n - 1

    status, live = _assert_consistent(app, slot_id)
    assert status == "BOOKED"
    assert live == [wins[0].booking_id]


def test_five_users_example(app, slot_factory):
    slot_id = slot_factory()

    results = run_concurrently(app, [(slot_id, requester(i)) for i in range(5)])

    assert sorted(r.to_dict()["success"] for r in results) == [False, False, False, False, True]
    assert {r.to_dict()["error"] for r in results if not r.success} == {"SlotAlreadyBooked"}
    with app.app_context():
        assert Booking.query.filter_by(slot_id=slot_id).count() == 1
        assert db.session.get(Slot, slot_id).status == "BOOKED"


def test_rapid_resubmission_by_same_requester(app, slot_factory):
    slot_id = slot_factory()
    same = requester(7)

    results = run_concurrently(app, [(slot_id, same)] * 5)

    wins, already_booked = tally(results)
    assert len(wins) == 1
    assert len(already_booked) == 4
    _assert_consistent(app, slot_id)


def test_rapid_sequential_resubmission(app, slot_factory):
    slot_id = slot_factory()

    with app.app_context():
        results = [get_arbiter().attempt_booking(slot_id, requester(1)) for _ in range(5)]

    wins, already_booked = tally(results)
    assert len(wins) == 1
    assert len(already_booked) == 4


def test_booked_slot_never_succeeds_again(app, slot_factory):
    slot_id = slot_factory()
    with app.app_context():
        assert get_arbiter().attempt_booking(slot_id, requester(0)).success

    later = run_concurrently(app, [(slot_id, requester(i)) for i in range(1, 11)])

    assert all(r.kind == FailureKind.SLOT_ALREADY_BOOKED for r in later)
    _assert_consistent(app, slot_id)


def test_different_slots_book_independently(app, slot_factory):
    slot_ids = slot_factory(count=20)

    results = run_concurrently(app, [(sid, requester(i)) for i, sid in enumerate(slot_ids)])

    assert all(r.success for r in results), [r.to_dict() for r in results if not r.success]
    assert sorted(r.booking.slot_id for r in results) == sorted(slot_ids)
    for sid in slot_ids:
        assert _assert_consistent(app, sid)[0] == "BOOKED"


def test_mixed_contention_across_slots(app, slot_factory):
    slot_ids = slot_factory(count=4)
    calls = [(sid, requester(i * 10 + j)) for i, sid in enumerate(slot_ids) for j in range(6)]

    results = run_concurrently(app, calls)

    for sid in slot_ids:
        per_slot = [r for (call_sid, _), r in zip(calls, results) if call_sid == sid]
        wins, already_booked = tally(per_slot)
        assert len(wins) == 1
        assert len(already_booked) == 5
        _assert_consistent(app, sid)


def test_expired_slot_rejected_without_mutation(app, slot_factory):
    slot_id = slot_factory(starts_in=timedelta(hours=-1))

    with app.app_context():
        result = get_arbiter().attempt_booking(slot_id, requester())

    assert result.kind == FailureKind.SLOT_EXPIRED
    assert _assert_consistent(app, slot_id) == ("AVAILABLE", [])


def test_blocked_slot_rejected_without_mutation(app, slot_factory):
    slot_id = slot_factory(status=SlotStatus.BLOCKED)

    results = run_concurrently(app, [(slot_id, requester(i)) for i in range(3)])

    assert all(r.kind == FailureKind.SLOT_UNAVAILABLE for r in results)
    assert _assert_consistent(app, slot_id) == ("BLOCKED", [])


def test_outcomes_are_audited(app, slot_factory):
    slot_id = slot_factory()

    run_concurrently(app, [(slot_id, requester(i)) for i in range(3)])

    with app.app_context():
        actions = sorted(a.action for a in AuditLog.query.all())
    assert actions == [
        "BOOKING_CREATE",
        "BOOKING_FAIL_SLOT_ALREADY_BOOKED",
        "BOOKING_FAIL_SLOT_ALREADY_BOOKED",
    ]


def test_oversized_slot_id_never_raises(app):
    with app.app_context():
        result = get_arbiter().attempt_booking(2 ** 70, requester())

    assert result.success is False
    assert result.kind == FailureKind.STORAGE_ERROR
