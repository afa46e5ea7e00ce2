from models.db import db
from utils.timeutil import utcnow


class IdempotencyKey(db.Model):
    __tablename__ = "idempotency_keys"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), unique=True, nullable=False, index=True)
    request_hash = db.Column(db.String(64), nullable=False)

    state = db.Column(db.String(20), nullable=False, default="PROCESSING")
    # state values: PROCESSING, COMPLETED
    response_status = db.Column(db.Integer, nullable=True)
    response_body = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
