import hashlib
import json
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.idempotency_key import IdempotencyKey
from utils.timeutil import utcnow

IDEMPOTENCY_HEADER = "Idempotency-Key"

NEW = "NEW"
REPLAY = "REPLAY"
IN_PROGRESS = "IN_PROGRESS"
MISMATCH = "MISMATCH"


def request_fingerprint(payload: dict) -> str:
    raw = json.dumps(payload or {}, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def claim_key(key: str, payload: dict):
    """
    Returns (outcome, row).
    NEW: caller owns the key and must call complete_key or release_key.
    REPLAY: row holds the stored response.
    IN_PROGRESS: another request with this key has not finished.
    MISMATCH: key was used with a different request body.
    """
    now = utcnow()
    ttl = current_app.config.get("IDEMPOTENCY_TTL_SECONDS", 86400)
    fingerprint = request_fingerprint(payload)

    row = IdempotencyKey(
        key=key,
        request_hash=fingerprint,
        state="PROCESSING",
        expires_at=now + timedelta(seconds=ttl),
    )
    db.session.add(row)
    try:
        db.session.commit()
        return NEW, row
    except IntegrityError:
        db.session.rollback()

    existing = IdempotencyKey.query.filter_by(key=key).first()
    if existing is None:
        # Released between our insert and this read; let the caller retry
        return IN_PROGRESS, None

    if existing.expires_at <= now:
        db.session.delete(existing)
        db.session.commit()
        return claim_key(key, payload)

    if existing.request_hash != fingerprint:
        return MISMATCH, existing
    if existing.state != "COMPLETED":
        return IN_PROGRESS, existing
    return REPLAY, existing


def complete_key(key: str, status: int, body: dict):
    row = IdempotencyKey.query.filter_by(key=key).first()
    if not row:
        return
    row.state = "COMPLETED"
    row.response_status = status
    row.response_body = json.dumps(body, default=str)
    db.session.commit()


def release_key(key: str):
    db.session.rollback()
    IdempotencyKey.query.filter_by(key=key, state="PROCESSING").delete()
    db.session.commit()


def purge_expired_keys() -> int:
    count = IdempotencyKey.query.filter(IdempotencyKey.expires_at <= utcnow()).delete()
    db.session.commit()
    return count
