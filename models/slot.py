import enum

from models.db import db
from utils.timeutil import utcnow


class SlotStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"
    BLOCKED = "BLOCKED"


class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    availability_id = db.Column(
        db.Integer,
        db.ForeignKey("availabilities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=SlotStatus.AVAILABLE.value, index=True)
    # status values: AVAILABLE, BOOKED, BLOCKED

    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    is_online_available = db.Column(db.Boolean, default=False, nullable=False)
    is_in_person = db.Column(db.Boolean, default=True, nullable=False)

    # Winning booking; written only by the arbiter together with status
    booking_id = db.Column(db.Integer, nullable=True, index=True)
    blocked_by_event_id = db.Column(db.String(255), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    last_calculated = db.Column(db.DateTime, default=utcnow, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # Prevent duplicate slot times for the same service
        db.UniqueConstraint("service_id", "start_time", "end_time", name="uq_service_timeslot"),
    )
