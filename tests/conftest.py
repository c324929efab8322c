import itertools
from datetime import date, time

import pytest
from sqlalchemy import select

from opd_booking import create_app
from opd_booking.booking import confirm_payment, create_booking
from opd_booking.config import TestConfig
from opd_booking.models import Admin, Doctor, Profile, Slot, User, bcrypt, db


@pytest.fixture
def app():
    """App backed by a fresh in-memory database."""
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Application context for calling the booking core directly."""
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def staff(ctx):
    return db.session.scalar(select(Admin).filter_by(username=TestConfig.DEFAULT_ADMIN_USERNAME))


@pytest.fixture
def make_patient(ctx):
    counter = itertools.count(1)

    def _make(name=None):
        n = next(counter)
        user = User(
            username=f"patient{n}",
            email=f"patient{n}@example.com",
            password=bcrypt.generate_password_hash("secret").decode("utf-8"),
        )
        user.profile = Profile(name=name or f"Patient {n}")
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def patient(make_patient):
    return make_patient("Ravi Kumar")


@pytest.fixture
def doctor(ctx):
    doctor = Doctor(name="Dr. Asha Rao", specialization="Cardiology")
    db.session.add(doctor)
    db.session.commit()
    return doctor


@pytest.fixture
def make_slot(doctor):
    hours = itertools.count(9)

    def _make(max_capacity=3, **kwargs):
        hour = next(hours)
        slot = Slot(
            doctor_id=doctor.id,
            date=kwargs.pop("date", date(2026, 11, 2)),
            start_time=time(hour, 0),
            end_time=time(hour, 30),
            max_capacity=max_capacity,
            current_bookings=0,
            is_locked=False,
            **kwargs,
        )
        db.session.add(slot)
        db.session.commit()
        return slot

    return _make


@pytest.fixture
def slot(make_slot):
    return make_slot(max_capacity=3)


@pytest.fixture
def paid_booking():
    """Create and pay a booking for a patient in a slot."""

    def _book(patient, slot, problem="Chest pain"):
        booking = create_booking(patient, slot.id, slot.doctor_id, problem)
        return confirm_payment(patient, booking.id)

    return _book
