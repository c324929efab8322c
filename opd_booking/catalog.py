"""Staff management of doctors and their slots."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from . import store
from .auth import require_staff
from .exceptions import InvalidRequest, SlotExists
from .models import Doctor, Slot, db

logger = logging.getLogger(__name__)

DOCTOR_FIELDS = ("name", "specialization", "description", "is_active")
SLOT_FIELDS = ("date", "start_time", "end_time", "max_capacity", "is_locked")


def list_doctors(active_only=True):
    query = select(Doctor).order_by(Doctor.name)
    if active_only:
        query = query.where(Doctor.is_active.is_(True))
    return db.session.scalars(query).all()


def create_doctor(actor, name, specialization, description=None, is_active=True):
    require_staff(actor)

    def work(outbox):
        doctor = Doctor(name=name, specialization=specialization, description=description, is_active=is_active)
        db.session.add(doctor)
        db.session.flush()
        return doctor

    doctor = store.run_atomic(work)
    logger.info("Doctor %s (%s) added", doctor.id, doctor.name)
    return doctor


def update_doctor(actor, doctor_id, **changes):
    require_staff(actor)

    def work(outbox):
        doctor = store.get_doctor(doctor_id)
        for field, value in changes.items():
            if field in DOCTOR_FIELDS and value is not None:
                setattr(doctor, field, value)
        return doctor

    return store.run_atomic(work)


def _check_slot(slot):
    if slot.end_time <= slot.start_time:
        raise InvalidRequest("Slot must end after it starts")
    if slot.max_capacity < 1:
        raise InvalidRequest("Capacity must be at least 1")


def create_slot(actor, doctor_id, date, start_time, end_time, max_capacity):
    require_staff(actor)

    def work(outbox):
        store.get_doctor(doctor_id)
        slot = Slot(
            doctor_id=doctor_id,
            date=date,
            start_time=start_time,
            end_time=end_time,
            max_capacity=max_capacity,
            current_bookings=0,
            is_locked=False,
        )
        _check_slot(slot)
        db.session.add(slot)
        db.session.flush()
        return slot

    try:
        slot = store.run_atomic(work)
    except IntegrityError as exc:
        raise SlotExists() from exc
    logger.info("Slot %s added for doctor %s on %s %s", slot.id, doctor_id, date, slot.formatted_time)
    return slot


def update_slot(actor, slot_id, **changes):
    """Edit a slot's window, capacity or lock flag.

    Capacity may not drop below the seats already taken. A slot that
    emergencies pushed over capacity can still have its window edited.
    """
    require_staff(actor)
    resizing = changes.get("max_capacity") is not None

    def work(outbox):
        slot = store.get_slot(slot_id, for_update=True)
        for field, value in changes.items():
            if field in SLOT_FIELDS and value is not None:
                setattr(slot, field, value)
        _check_slot(slot)
        if resizing and slot.max_capacity < slot.current_bookings:
            raise InvalidRequest(f"{slot.current_bookings} seats are already taken")
        db.session.flush()
        return slot

    try:
        return store.run_atomic(work)
    except IntegrityError as exc:
        raise SlotExists() from exc
