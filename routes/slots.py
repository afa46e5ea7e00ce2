from datetime import datetime, timedelta

from flask import Blueprint, request, jsonify

from models import db
from models.service import Service
from models.slot import Slot, SlotStatus
from routes.serializers import slot_to_dict
from security.rbac import require_admin_key
from services import get_arbiter
from services.booking_types import FailureKind, SlotState

slots_bp = Blueprint("slots", __name__, url_prefix="/slots")


@slots_bp.get("")
def list_slots():
    # optional filters: service_id, provider_id, date (YYYY-MM-DD), status
    service_id = request.args.get("service_id", type=int)
    provider_id = request.args.get("provider_id", type=int)
    date_str = request.args.get("date")
    status = request.args.get("status")

    q = Slot.query
    if service_id:
        q = q.filter(Slot.service_id == service_id)
    if provider_id:
        q = q.join(Service, Slot.service_id == Service.id).filter(Service.provider_id == provider_id)

    if status:
        status = status.upper()
        if status not in SlotStatus.__members__:
            return jsonify(error="Invalid status"), 400
        q = q.filter(Slot.status == status)

    if date_str:
        try:
            day = datetime.fromisoformat(date_str)
        except ValueError:
            return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400
        start = datetime(day.year, day.month, day.day)
        end = start + timedelta(days=1)
        q = q.filter(Slot.start_time >= start, Slot.start_time < end)

    slots = q.order_by(Slot.start_time.asc()).limit(500).all()
    return jsonify([slot_to_dict(s) for s in slots]), 200


@slots_bp.get("/<int:slot_id>")
def get_slot(slot_id: int):
    slot = db.session.get(Slot, slot_id)
    if not slot:
        return jsonify(error="Slot not found"), 404
    return jsonify(slot_to_dict(slot)), 200


# ---------- ADMIN: block slot (external calendar conflict) ----------
@slots_bp.post("/<int:slot_id>/block")
@require_admin_key
def block_slot(slot_id: int):
    data = request.get_json(silent=True) or {}
    event_id = (data.get("event_id") or "").strip() or None

    result = get_arbiter().block_slot(slot_id, event_id)
    if isinstance(result, SlotState):
        return jsonify(id=result.id, status=result.status.value, blocked_by_event_id=result.blocked_by_event_id), 200

    status = {
        FailureKind.SLOT_NOT_FOUND: 404,
        FailureKind.SLOT_ALREADY_BOOKED: 409,
    }.get(result.kind, 503)
    return jsonify(result.to_dict()), status
