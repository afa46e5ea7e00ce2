"""
Turns a provider's availability window into bookable slots.

Only one-off windows are handled: the window is cut into back-to-back
slots of the service's duration and any remainder shorter than a slot is
dropped. Slots are created AVAILABLE and from then on belong to the
arbiter.
"""
from datetime import datetime, timedelta
from typing import List

from models import db
from models.availability import Availability
from models.service import Service
from models.slot import Slot, SlotStatus
from utils.timeutil import utcnow


class AvailabilityError(ValueError):
    """Window rejected before anything was written."""


def slot_bounds(start_time: datetime, end_time: datetime, duration_minutes: int) -> List[tuple]:
    if duration_minutes <= 0:
        raise AvailabilityError("Service duration must be positive")
    step = timedelta(minutes=duration_minutes)
    bounds = []
    cursor = start_time
    while cursor + step <= end_time:
        bounds.append((cursor, cursor + step))
        cursor += step
    return bounds


def publish_availability(provider_id: int, service_id: int, start_time: datetime, end_time: datetime) -> Availability:
    if end_time <= start_time:
        raise AvailabilityError("end_time must be after start_time")

    service = db.session.get(Service, service_id)
    if not service or not service.is_active or service.provider_id != provider_id:
        raise AvailabilityError("Service not found for this provider")

    bounds = slot_bounds(start_time, end_time, service.duration_minutes)
    if not bounds:
        raise AvailabilityError("Window is shorter than one slot")

    overlapping = (
        Availability.query
        .filter(
            Availability.service_id == service_id,
            Availability.start_time < end_time,
            Availability.end_time > start_time,
        )
        .first()
    )
    if overlapping:
        raise AvailabilityError("Window overlaps an existing availability")

    availability = Availability(
        provider_id=provider_id,
        service_id=service_id,
        start_time=start_time,
        end_time=end_time,
    )
    db.session.add(availability)
    db.session.flush()

    now = utcnow()
    for st, et in bounds:
        db.session.add(Slot(
            availability_id=availability.id,
            service_id=service.id,
            start_time=st,
            end_time=et,
            status=SlotStatus.AVAILABLE.value,
            price=service.price,
            is_online_available=service.is_online_available,
            is_in_person=service.is_in_person,
            last_calculated=now,
        ))

    db.session.commit()
    return availability


def delete_availability(availability_id: int) -> bool:
    """Delete a window; its slots go with it and bookings keep their snapshot."""
    availability = db.session.get(Availability, availability_id)
    if not availability:
        return False
    db.session.delete(availability)
    db.session.commit()
    return True
