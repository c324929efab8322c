"""Slot and booking persistence helpers.

All counter mutations and booking status transitions are single conditional
UPDATE statements so they stay correct even when two transactions race on the
same row. On SQLite, where ``FOR UPDATE`` is ignored, the first of these
writes is also what serializes concurrent transactions.
"""

import logging

from flask import current_app
from sqlalchemy import case, select, update
from sqlalchemy.exc import OperationalError

from . import events
from .exceptions import BookingNotFound, Conflict, DoctorNotFound, SlotFull, SlotNotFound
from .models import Booking, Doctor, Slot, db

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
PG_LOCK_CODES = {"40001", "40P01", "55P03"}
# lock wait timeout, deadlock
MYSQL_LOCK_CODES = {1205, 1213}


# ---------------- Transactions ----------------
def is_lock_conflict(exc):
    """True when an OperationalError means another transaction held our rows."""
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in PG_LOCK_CODES:
        return True
    args = getattr(orig, "args", ())
    if args and args[0] in MYSQL_LOCK_CODES:
        return True
    # sqlite: "database is locked", "database table is locked"
    return "is locked" in str(orig).lower()


def run_atomic(work):
    """Run ``work(outbox)`` in one transaction and commit it.

    ``work`` appends :class:`~opd_booking.events.BookingEvent` objects to
    ``outbox``; they are published only once the commit succeeded. Lock
    conflicts are retried ``BOOKING_MAX_RETRIES`` times before giving up with
    :class:`Conflict`. Anything else rolls back and propagates.
    """
    attempts = current_app.config.get("BOOKING_MAX_RETRIES", 3)
    last_error = None
    for attempt in range(1, attempts + 1):
        outbox = []
        try:
            result = work(outbox)
            db.session.commit()
        except OperationalError as exc:
            db.session.rollback()
            if not is_lock_conflict(exc):
                raise
            last_error = exc
            logger.warning("Transaction conflict (attempt %d/%d): %s", attempt, attempts, exc.orig)
            continue
        except Exception:
            db.session.rollback()
            raise
        events.publish(outbox)
        return result
    raise Conflict() from last_error


# ---------------- Doctors ----------------
def get_doctor(doctor_id):
    doctor = db.session.get(Doctor, doctor_id)
    if doctor is None:
        raise DoctorNotFound()
    return doctor


# ---------------- Slot Store ----------------
def get_slot(slot_id, for_update=False, fresh=False):
    """Load a slot, optionally taking its row lock for the current transaction."""
    slot = db.session.get(Slot, slot_id, with_for_update=for_update, populate_existing=for_update or fresh)
    if slot is None:
        raise SlotNotFound()
    return slot


def _reload_slot(slot_id):
    return db.session.get(Slot, slot_id, populate_existing=True)


def increment_booking_count(slot_id, allow_overflow=False):
    """Take one seat in the slot and return the refreshed slot.

    Raises :class:`SlotFull` when the slot is already at capacity, unless
    ``allow_overflow`` is set (emergencies always fit).
    """
    stmt = update(Slot).where(Slot.id == slot_id)
    if not allow_overflow:
        stmt = stmt.where(Slot.current_bookings < Slot.max_capacity)
    stmt = stmt.values(current_bookings=Slot.current_bookings + 1)

    result = db.session.execute(stmt, execution_options={"synchronize_session": False})
    if result.rowcount == 0:
        get_slot(slot_id)
        raise SlotFull()
    return _reload_slot(slot_id)


def decrement_booking_count(slot_id):
    """Release one seat, never going below zero."""
    stmt = (
        update(Slot)
        .where(Slot.id == slot_id)
        .values(
            current_bookings=case(
                (Slot.current_bookings > 0, Slot.current_bookings - 1),
                else_=0,
            )
        )
    )
    result = db.session.execute(stmt, execution_options={"synchronize_session": False})
    if result.rowcount == 0:
        raise SlotNotFound()
    return _reload_slot(slot_id)


def set_locked(slot_id, locked):
    stmt = update(Slot).where(Slot.id == slot_id).values(is_locked=locked)
    result = db.session.execute(stmt, execution_options={"synchronize_session": False})
    if result.rowcount == 0:
        raise SlotNotFound()
    return _reload_slot(slot_id)


def list_slots(doctor_id=None, date=None, available_only=False):
    query = select(Slot).order_by(Slot.date, Slot.start_time)
    if doctor_id is not None:
        query = query.where(Slot.doctor_id == doctor_id)
    if date is not None:
        query = query.where(Slot.date == date)
    if available_only:
        query = query.where(Slot.is_locked.is_(False), Slot.current_bookings < Slot.max_capacity)
    return db.session.scalars(query).all()


# ---------------- Booking Record Store ----------------
def get_booking(booking_id, for_update=False, fresh=False):
    booking = db.session.get(Booking, booking_id, with_for_update=for_update, populate_existing=for_update or fresh)
    if booking is None:
        raise BookingNotFound()
    return booking


def transition_booking(booking_id, values, *conditions):
    """Write ``values`` to a booking only while ``conditions`` still hold.

    Returns False when the row no longer matches, i.e. a concurrent
    transaction changed the booking first. The status gate and the write are
    one statement, so two callers can never both pass it.
    """
    stmt = update(Booking).where(Booking.id == booking_id, *conditions).values(**values)
    result = db.session.execute(stmt, execution_options={"synchronize_session": False})
    return result.rowcount == 1


def list_patient_bookings(user_id):
    query = select(Booking).where(Booking.user_id == user_id).order_by(Booking.created_at.desc(), Booking.id.desc())
    return db.session.scalars(query).all()


def list_bookings(slot_id=None, date=None):
    """Bookings across all slots for staff, in day and queue order."""
    query = (
        select(Booking)
        .join(Booking.slot)
        .order_by(Slot.date, Slot.start_time, Booking.queue_position, Booking.id)
    )
    if slot_id is not None:
        query = query.where(Booking.slot_id == slot_id)
    if date is not None:
        query = query.where(Slot.date == date)
    return db.session.scalars(query).all()


def list_slot_bookings(slot_id):
    query = select(Booking).where(Booking.slot_id == slot_id).order_by(Booking.queue_position, Booking.id)
    return db.session.scalars(query).all()
