from .db import db
from .provider import Provider
from .service import Service
from .availability import Availability
from .slot import Slot, SlotStatus
from .booking import Booking, BookingStatus
from .audit_log import AuditLog
from .idempotency_key import IdempotencyKey
