import re

from services.booking_types import RequesterInfo

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[0-9 ()-]{7,20}$")
APPOINTMENT_TYPES = {"online", "inperson"}
# Ids are 64-bit signed integer columns
MAX_ID = 2 ** 63 - 1


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _clean(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_booking_request(data: dict):
    """
    Shape-check a booking request body.
    Returns (slot_id, RequesterInfo, field_errors); field_errors is empty on success.
    """
    errors = {}

    slot_id = data.get("slot_id")
    if isinstance(slot_id, bool):
        slot_id = None
    try:
        slot_id = int(slot_id)
    except (TypeError, ValueError):
        errors["slot_id"] = ["slot_id must be an integer"]
        slot_id = None
    else:
        if not 1 <= slot_id <= MAX_ID:
            errors["slot_id"] = ["slot_id is out of range"]
            slot_id = None

    name = _clean(data.get("name"))
    if not name:
        errors["name"] = ["Name is required"]
    elif len(name) > 120:
        errors["name"] = ["Name is too long"]

    email = _clean(data.get("email"))
    if not email:
        errors["email"] = ["Email is required"]
    elif not EMAIL_RE.match(email) or len(email) > 255:
        errors["email"] = ["Invalid email address"]

    phone = _clean(data.get("phone"))
    if phone and not PHONE_RE.match(phone):
        errors["phone"] = ["Invalid phone number"]

    whatsapp = _clean(data.get("whatsapp"))
    if whatsapp and not PHONE_RE.match(whatsapp):
        errors["whatsapp"] = ["Invalid WhatsApp number"]

    appointment_type = _clean(data.get("appointment_type"))
    if appointment_type and appointment_type not in APPOINTMENT_TYPES:
        errors["appointment_type"] = ["appointment_type must be 'online' or 'inperson'"]

    client_id = data.get("client_id")
    if client_id is not None:
        try:
            client_id = int(client_id)
        except (TypeError, ValueError):
            errors["client_id"] = ["client_id must be an integer"]
        else:
            if not 1 <= client_id <= MAX_ID:
                errors["client_id"] = ["client_id is out of range"]

    notes = _clean(data.get("notes"))
    if notes and len(notes) > 2000:
        errors["notes"] = ["Notes are too long"]

    if errors:
        return None, None, errors

    requester = RequesterInfo(
        name=name,
        email=normalize_email(email),
        phone=phone,
        whatsapp=whatsapp,
        client_id=client_id,
        notes=notes,
        appointment_type=appointment_type,
    )
    return slot_id, requester, {}
