from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify
from sqlalchemy.exc import IntegrityError

from models import db
from models.provider import Provider
from models.service import Service
from security.rbac import require_admin_key
from services.availability_producer import AvailabilityError, delete_availability, publish_availability
from utils.audit import log_event
from utils.timeutil import parse_iso
from utils.validation import normalize_email

availability_bp = Blueprint("availability", __name__)


# ---------- ADMIN: providers ----------
@availability_bp.post("/providers")
@require_admin_key
def create_provider():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = normalize_email(data.get("email")) or None
    whatsapp = (data.get("whatsapp") or "").strip() or None
    if not name:
        return jsonify(error="Provider name required"), 400

    p = Provider(name=name, email=email, whatsapp=whatsapp)
    db.session.add(p)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Provider email already exists"), 409

    log_event("PROVIDER_CREATE", entity="provider", entity_id=p.id)
    return jsonify(id=p.id, name=p.name), 201


# ---------- ADMIN: services ----------
@availability_bp.post("/services")
@require_admin_key
def create_service():
    data = request.get_json(silent=True) or {}
    provider_id = data.get("provider_id")
    name = (data.get("name") or "").strip()
    if not provider_id or not name:
        return jsonify(error="provider_id and name are required"), 400

    try:
        duration = int(data.get("duration_minutes") or 30)
        price = Decimal(str(data.get("price") or 0))
    except (TypeError, ValueError, InvalidOperation):
        return jsonify(error="Invalid duration_minutes or price"), 400
    if duration <= 0 or price < 0:
        return jsonify(error="duration_minutes must be positive and price non-negative"), 400

    provider = db.session.get(Provider, provider_id)
    if not provider or not provider.is_active:
        return jsonify(error="Provider not found"), 404

    svc = Service(
        provider_id=provider.id,
        name=name,
        description=(data.get("description") or "").strip() or None,
        duration_minutes=duration,
        price=price,
        is_online_available=bool(data.get("is_online_available", False)),
        is_in_person=bool(data.get("is_in_person", True)),
        location=(data.get("location") or "").strip() or None,
    )
    db.session.add(svc)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Service already exists for this provider"), 409

    log_event("SERVICE_CREATE", entity="service", entity_id=svc.id)
    return jsonify(id=svc.id, name=svc.name), 201


# ---------- ADMIN: availability windows ----------
@availability_bp.post("/availabilities")
@require_admin_key
def create_availability():
    data = request.get_json(silent=True) or {}
    provider_id = data.get("provider_id")
    service_id = data.get("service_id")
    start_time = data.get("start_time")
    end_time = data.get("end_time")

    if not provider_id or not service_id or not start_time or not end_time:
        return jsonify(error="provider_id, service_id, start_time, end_time are required"), 400

    try:
        provider_id = int(provider_id)
        service_id = int(service_id)
    except (TypeError, ValueError):
        return jsonify(error="provider_id and service_id must be integers"), 400

    try:
        st = parse_iso(start_time)
        et = parse_iso(end_time)
    except (TypeError, ValueError):
        return jsonify(error="Invalid datetime format. Use ISO e.g. 2026-01-20T18:00:00"), 400

    try:
        availability = publish_availability(provider_id, service_id, st, et)
    except AvailabilityError as exc:
        db.session.rollback()
        return jsonify(error=str(exc)), 400

    log_event("AVAILABILITY_CREATE", entity="availability", entity_id=availability.id)
    return jsonify(
        id=availability.id,
        slot_ids=[s.id for s in availability.slots],
    ), 201


@availability_bp.delete("/availabilities/<int:availability_id>")
@require_admin_key
def remove_availability(availability_id: int):
    if not delete_availability(availability_id):
        return jsonify(error="Availability not found"), 404

    log_event("AVAILABILITY_DELETE", entity="availability", entity_id=availability_id)
    return jsonify(message="Availability deleted"), 200
