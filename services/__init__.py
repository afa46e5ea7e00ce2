from flask import current_app

from services.booking_arbiter import BookingArbiter, RetryPolicy
from services.slot_store import SqlSlotStore
from utils.audit import log_event


def init_arbiter(app):
    store = SqlSlotStore(lock_timeout=float(app.config.get("BOOKING_LOCK_TIMEOUT_SECONDS", 5)))
    app.extensions["booking_arbiter"] = BookingArbiter(
        store,
        retry_policy=RetryPolicy.from_config(app.config),
        audit=log_event,
    )


def get_arbiter() -> BookingArbiter:
    return current_app.extensions["booking_arbiter"]
