import threading
from concurrent.futures import ThreadPoolExecutor

from services import get_arbiter
from services.booking_types import FailureKind, RequesterInfo


def requester(i=0, **overrides):
    fields = dict(name=f"User {i}", email=f"user{i}@test.com", phone="0821234567")
    fields.update(overrides)
    return RequesterInfo(**fields)


def run_concurrently(app, calls):
    """
    Run each (slot_id, RequesterInfo) through the arbiter on its own thread and
    app context, released together by a barrier. Returns results in call order.
    """
    barrier = threading.Barrier(len(calls))

    def worker(call):
        slot_id, who = call
        with app.app_context():
            barrier.wait(timeout=30)
            return get_arbiter().attempt_booking(slot_id, who)

    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        return list(executor.map(worker, calls))


def tally(results):
    wins = [r for r in results if r.success]
    already_booked = [r for r in results if not r.success and r.kind == FailureKind.SLOT_ALREADY_BOOKED]
    return wins, already_booked
