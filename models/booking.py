import enum

from models.db import db
from utils.timeutil import utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    slot_id = db.Column(
        db.Integer,
        db.ForeignKey("slots.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Registered requester, when known; guests only leave contact details
    client_id = db.Column(db.Integer, nullable=True, index=True)
    guest_name = db.Column(db.String(120), nullable=True)
    guest_email = db.Column(db.String(255), nullable=True)
    guest_phone = db.Column(db.String(30), nullable=True)
    guest_whatsapp = db.Column(db.String(30), nullable=True)
    is_guest_booking = db.Column(db.Boolean, default=True, nullable=False)

    price = db.Column(db.Numeric(10, 2), nullable=False)
    is_online = db.Column(db.Boolean, default=False, nullable=False)
    is_in_person = db.Column(db.Boolean, default=False, nullable=False)
    location = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING.value)
    # status values: PENDING, CONFIRMED, CANCELLED

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # Hard business-rule: only one live booking per slot (prevents double booking)
        db.Index(
            "uq_bookings_active_slot",
            "slot_id",
            unique=True,
            sqlite_where=db.text("status != 'CANCELLED'"),
            postgresql_where=db.text("status != 'CANCELLED'"),
        ),
    )
