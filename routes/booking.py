import json

from flask import Blueprint, request, jsonify, current_app

from models import db
from models.booking import Booking
from routes.serializers import booking_to_dict
from security import idempotency
from services import get_arbiter
from services.booking_types import FailureKind
from utils.validation import parse_booking_request

booking_bp = Blueprint("booking", __name__)

FAILURE_STATUS = {
    FailureKind.SLOT_NOT_FOUND: 404,
    FailureKind.SLOT_ALREADY_BOOKED: 409,
    FailureKind.SLOT_UNAVAILABLE: 409,
    FailureKind.SLOT_EXPIRED: 410,
    FailureKind.STORAGE_ERROR: 503,
}


def _status_for(result) -> int:
    if result.success:
        return 201
    if result.kind == FailureKind.SLOT_UNAVAILABLE and result.retryable:
        # lock-timeout variant: worth one more try after a short wait
        return 503
    return FAILURE_STATUS[result.kind]


def _book(data: dict):
    slot_id, requester, field_errors = parse_booking_request(data)
    if field_errors:
        return {"error": "Validation failed", "field_errors": field_errors}, 400

    result = get_arbiter().attempt_booking(slot_id, requester)
    return result.to_dict(), _status_for(result)


def _respond(body: dict, status: int):
    resp = jsonify(body)
    resp.status_code = status
    if status == 503:
        resp.headers["Retry-After"] = str(current_app.config.get("BOOKING_RETRY_AFTER_SECONDS", 1))
    return resp


# ---------- GUESTS / CLIENTS: book slot (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/bookings")
def create_booking():
    data = request.get_json(silent=True) or {}
    key = (request.headers.get(idempotency.IDEMPOTENCY_HEADER) or "").strip()

    if not key:
        return _respond(*_book(data))

    outcome, row = idempotency.claim_key(key, data)
    if outcome == idempotency.REPLAY:
        return _respond(json.loads(row.response_body), row.response_status)
    if outcome == idempotency.IN_PROGRESS:
        return jsonify(
            error="RequestInProgress",
            message="Your booking request is already being processed",
        ), 409
    if outcome == idempotency.MISMATCH:
        return jsonify(error="Idempotency-Key reused with a different request"), 422

    try:
        body, status = _book(data)
    except Exception:
        idempotency.release_key(key)
        raise

    if status >= 500:
        # Transient failures must stay retryable under the same key
        idempotency.release_key(key)
    else:
        idempotency.complete_key(key, status, body)
    return _respond(body, status)


@booking_bp.get("/bookings/<int:booking_id>")
def get_booking(booking_id: int):
    booking = db.session.get(Booking, booking_id)
    if not booking:
        return jsonify(error="Booking not found"), 404
    return jsonify(booking_to_dict(booking)), 200
