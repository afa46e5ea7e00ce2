import itertools
from datetime import timedelta
from decimal import Decimal

import pytest

from app import create_app
from models import db
from models.availability import Availability
from models.provider import Provider
from models.service import Service
from models.slot import Slot, SlotStatus
from utils.timeutil import utcnow

ADMIN_KEY = "test-admin-key"

_provider_seq = itertools.count(1)


@pytest.fixture
def app(tmp_path):
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///" + str(tmp_path / "test.db"),
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"timeout": 30, "check_same_thread": False}},
        ADMIN_API_KEY=ADMIN_KEY,
        BOOKING_LOCK_TIMEOUT_SECONDS=15,
        BOOKING_RETRY_BACKOFF_SECONDS=0.0,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def service_factory(app):
    def make(duration_minutes=30, price="450.00", location="12 Main Rd", is_online_available=True):
        with app.app_context():
            provider = Provider(name="Dr. Test", email=f"dr{next(_provider_seq)}@clinic.test")
            db.session.add(provider)
            db.session.flush()
            service = Service(
                provider_id=provider.id,
                name="Consultation",
                duration_minutes=duration_minutes,
                price=Decimal(price),
                is_online_available=is_online_available,
                is_in_person=True,
                location=location,
            )
            db.session.add(service)
            db.session.commit()
            return provider.id, service.id
    return make


@pytest.fixture
def slot_factory(app, service_factory):
    """Insert slots directly (bypassing the producer) so tests control status and time."""
    def make(count=1, starts_in=timedelta(days=1), status=SlotStatus.AVAILABLE, price="450.00"):
        provider_id, service_id = service_factory(price=price)
        start = (utcnow() + starts_in).replace(microsecond=0)
        with app.app_context():
            availability = Availability(
                provider_id=provider_id,
                service_id=service_id,
                start_time=start,
                end_time=start + timedelta(minutes=30 * count),
            )
            db.session.add(availability)
            db.session.flush()
            slots = []
            for i in range(count):
                st = start + timedelta(minutes=30 * i)
                slot = Slot(
                    availability_id=availability.id,
                    service_id=service_id,
                    start_time=st,
                    end_time=st + timedelta(minutes=30),
                    status=status.value,
                    price=Decimal(price),
                    is_online_available=True,
                    is_in_person=True,
                )
                db.session.add(slot)
                slots.append(slot)
            db.session.commit()
            ids = [s.id for s in slots]
        return ids if count > 1 else ids[0]
    return make

