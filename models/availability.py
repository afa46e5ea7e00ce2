from models.db import db
from utils.timeutil import utcnow


class Availability(db.Model):
    """A provider-declared window that slots are generated from."""

    __tablename__ = "availabilities"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)

    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    slots = db.relationship(
        "Slot",
        backref="availability",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Slot.start_time",
    )
