def slot_to_dict(s):
    return {
        "id": s.id,
        "availability_id": s.availability_id,
        "service_id": s.service_id,
        "start_time": s.start_time.isoformat(),
        "end_time": s.end_time.isoformat(),
        "status": s.status,
        "price": str(s.price),
        "is_online_available": s.is_online_available,
        "is_in_person": s.is_in_person,
        "booking_id": s.booking_id,
        "available": s.status == "AVAILABLE",
    }


def booking_to_dict(b):
    return {
        "id": b.id,
        "slot_id": b.slot_id,
        "status": b.status,
        "start_time": b.start_time.isoformat(),
        "end_time": b.end_time.isoformat(),
        "price": str(b.price),
        "is_online": b.is_online,
        "is_in_person": b.is_in_person,
        "location": b.location,
        "guest": {
            "name": b.guest_name,
            "email": b.guest_email,
            "phone": b.guest_phone,
            "whatsapp": b.guest_whatsapp,
        } if b.is_guest_booking else None,
        "client_id": b.client_id,
        "created_at": b.created_at.isoformat(),
    }
