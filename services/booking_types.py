"""
Value types shared by the slot stores, the booking arbiter and the gateway.

Stores exchange plain dataclasses with the arbiter so the arbitration rules
never touch ORM objects and work the same against every backend.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from models.booking import BookingStatus
from models.slot import SlotStatus

__all__ = [
    "SlotStatus",
    "BookingStatus",
    "RequesterInfo",
    "SlotState",
    "BookingDraft",
    "SlotUpdate",
    "BookingRecord",
    "FailureKind",
    "BookingSuccess",
    "BookingFailure",
    "BookingResult",
    "SlotStoreError",
    "StorageError",
    "LockTimeout",
    "SlotConflict",
]


@dataclass(frozen=True)
class RequesterInfo:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    client_id: Optional[int] = None
    notes: Optional[str] = None
    appointment_type: Optional[str] = None  # "online" | "inperson"

    @property
    def is_guest(self) -> bool:
        return self.client_id is None


@dataclass(frozen=True)
class SlotState:
    id: int
    status: SlotStatus
    start_time: datetime
    end_time: datetime
    price: Decimal = Decimal("0")
    is_online_available: bool = False
    is_in_person: bool = True
    service_id: Optional[int] = None
    availability_id: Optional[int] = None
    booking_id: Optional[int] = None
    blocked_by_event_id: Optional[str] = None
    location: Optional[str] = None


@dataclass(frozen=True)
class BookingDraft:
    """A booking the store must insert while flipping the slot to BOOKED."""

    slot_id: int
    requester: RequesterInfo
    price: Decimal
    start_time: datetime
    end_time: datetime
    is_online: bool = False
    is_in_person: bool = False
    location: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING


@dataclass(frozen=True)
class SlotUpdate:
    """A status change without a booking (external calendar blocking)."""

    status: SlotStatus
    blocked_by_event_id: Optional[str] = None


@dataclass(frozen=True)
class BookingRecord:
    booking_id: int
    slot_id: int
    status: BookingStatus
    start_time: datetime
    end_time: datetime
    price: Decimal


class FailureKind(str, enum.Enum):
    SLOT_NOT_FOUND = "SlotNotFound"
    SLOT_ALREADY_BOOKED = "SlotAlreadyBooked"
    SLOT_UNAVAILABLE = "SlotUnavailable"
    SLOT_EXPIRED = "SlotExpired"
    STORAGE_ERROR = "StorageError"


DEFAULT_REASONS = {
    FailureKind.SLOT_NOT_FOUND: "Slot not found",
    FailureKind.SLOT_ALREADY_BOOKED: "This slot is no longer available",
    FailureKind.SLOT_UNAVAILABLE: "This slot is no longer available",
    FailureKind.SLOT_EXPIRED: "This slot has already started",
    FailureKind.STORAGE_ERROR: "Failed to create booking, please try again",
}


@dataclass(frozen=True)
class BookingSuccess:
    booking: BookingRecord
    success: bool = field(default=True, init=False)

    @property
    def booking_id(self) -> int:
        return self.booking.booking_id

    def to_dict(self) -> dict:
        b = self.booking
        return {
            "success": True,
            "booking_id": b.booking_id,
            "slot_id": b.slot_id,
            "status": b.status.value,
            "start_time": b.start_time.isoformat(),
            "end_time": b.end_time.isoformat(),
            "price": str(b.price),
        }


@dataclass(frozen=True)
class BookingFailure:
    kind: FailureKind
    reason: str = ""
    retryable: bool = False
    success: bool = field(default=False, init=False)

    def __post_init__(self):
        if not self.reason:
            object.__setattr__(self, "reason", DEFAULT_REASONS[self.kind])

    @property
    def error(self) -> str:
        return self.kind.value

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.kind.value,
            "message": self.reason,
            "retryable": self.retryable,
        }


BookingResult = Union[BookingSuccess, BookingFailure]


class SlotStoreError(Exception):
    """Base class for failures raised by a slot store."""


class StorageError(SlotStoreError):
    """
    The underlying persistence layer failed. `outcome_unknown` is True when
    the failure hit during COMMIT, so the write may have landed anyway.
    """

    def __init__(self, message: str = "", outcome_unknown: bool = False):
        super().__init__(message)
        self.outcome_unknown = outcome_unknown


class LockTimeout(SlotStoreError):
    """Exclusive access to the slot was not obtained in time."""


class SlotConflict(SlotStoreError):
    """
    The write lost against a concurrent writer (version or unique-index
    check). `missing` is True when the slot row disappeared instead.
    """

    def __init__(self, slot_id, missing: bool = False):
        super().__init__(f"conflicting write on slot {slot_id}")
        self.slot_id = slot_id
        self.missing = missing
