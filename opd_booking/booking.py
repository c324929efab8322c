"""Booking lifecycle: create, pay, cancel and staff status updates.

Capacity is consumed when a payment completes, not when the booking is
created, so several pending bookings may target the last seat of a slot.
The conditional increment in :func:`confirm_payment` decides who gets it;
the others end up ``failed``/``cancelled``.

Payment and cancellation lock the slot row before the booking row. Every
status change is a conditional write on the booking row, checked before the
slot counter is touched, so a booking is never paid or cancelled twice.
"""

import logging

from sqlalchemy import select

from . import events, queue_engine, store
from .auth import require_owner_or_staff, require_patient, require_staff
from .exceptions import (
    DuplicateBooking,
    InvalidRequest,
    InvalidState,
    InvalidTransition,
    SlotBecameFull,
    SlotFull,
    SlotUnavailable,
)
from .models import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_EMERGENCY,
    STATUS_IN_CONSULTATION,
    TERMINAL_STATUSES,
    Booking,
    db,
    utcnow,
)

logger = logging.getLogger(__name__)

# booking_status -> statuses staff may move a paid booking to
STATUS_TRANSITIONS = {
    STATUS_CONFIRMED: (STATUS_IN_CONSULTATION, STATUS_COMPLETED),
    STATUS_EMERGENCY: (STATUS_IN_CONSULTATION, STATUS_COMPLETED),
    STATUS_IN_CONSULTATION: (STATUS_COMPLETED,),
}


def _lock_booking(booking_id):
    booking = store.get_booking(booking_id)
    slot = store.get_slot(booking.slot_id, for_update=True)
    return store.get_booking(booking_id, for_update=True), slot


def create_booking(actor, slot_id, doctor_id, problem_description):
    """Create a pending booking for the acting patient.

    The queue position is fixed here, so the first booking created gets the
    earlier turn even if it is paid later.
    """
    require_patient(actor)
    patient_id = actor.id

    def work(outbox):
        slot = store.get_slot(slot_id, for_update=True)
        if doctor_id is not None and slot.doctor_id != doctor_id:
            raise InvalidRequest("Slot does not belong to this doctor")

        # counter write first: the checks below then see every booking
        # committed ahead of this one
        position = queue_engine.allocate_position(slot.id)
        slot = store.get_slot(slot.id, fresh=True)
        if not slot.doctor.is_active:
            raise SlotUnavailable("This doctor is not taking bookings")
        if slot.is_locked:
            raise SlotUnavailable()
        if not slot.has_capacity:
            raise SlotFull()

        existing = db.session.scalar(
            select(Booking.id)
            .where(
                Booking.user_id == patient_id,
                Booking.slot_id == slot.id,
                Booking.booking_status != STATUS_CANCELLED,
            )
            .limit(1)
        )
        if existing is not None:
            raise DuplicateBooking()

        booking = Booking(
            user_id=patient_id,
            slot_id=slot.id,
            doctor_id=slot.doctor_id,
            problem_description=problem_description,
            payment_status=PAYMENT_PENDING,
            booking_status=STATUS_CONFIRMED,
            queue_position=position,
        )
        db.session.add(booking)
        db.session.flush()
        outbox.append(events.BookingEvent.for_booking(events.CREATED, booking))
        return booking

    booking = store.run_atomic(work)
    logger.info(
        "Booking %s created for patient %s in slot %s at position %s",
        booking.id, patient_id, booking.slot_id, booking.queue_position,
    )
    return booking


def confirm_payment(actor, booking_id):
    """Complete the payment of a pending booking and take a seat in its slot.

    Raises :class:`SlotBecameFull` if the slot filled up in the meantime; the
    booking is then committed as ``failed``/``cancelled`` before raising.
    """

    def work(outbox):
        booking, slot = _lock_booking(booking_id)
        require_owner_or_staff(actor, booking)
        paid = store.transition_booking(
            booking.id,
            {"payment_status": PAYMENT_COMPLETED, "payment_completed_at": utcnow()},
            Booking.payment_status == PAYMENT_PENDING,
            Booking.booking_status != STATUS_CANCELLED,
        )
        if not paid:
            raise InvalidState("Booking is not awaiting payment")

        try:
            slot = store.increment_booking_count(slot.id)
        except SlotFull:
            store.transition_booking(
                booking.id,
                {
                    "payment_status": PAYMENT_FAILED,
                    "booking_status": STATUS_CANCELLED,
                    "payment_completed_at": None,
                },
            )
            booking = store.get_booking(booking.id, fresh=True)
            outbox.append(events.BookingEvent.for_booking(events.PAYMENT_FAILED, booking))
            return booking, False

        if slot.current_bookings >= slot.max_capacity:
            store.set_locked(slot.id, True)
        booking = store.get_booking(booking.id, fresh=True)
        outbox.append(events.BookingEvent.for_booking(events.PAID, booking))
        return booking, True

    booking, accepted = store.run_atomic(work)
    if not accepted:
        logger.warning("Payment for booking %s rejected, slot %s is full", booking.id, booking.slot_id)
        raise SlotBecameFull()
    logger.info("Payment completed for booking %s", booking.id)
    return booking


def cancel_booking(actor, booking_id):
    """Cancel a booking, releasing its seat if it was paid.

    Cancelling a paid booking always unlocks the slot. Other bookings keep
    their queue positions.
    """

    def work(outbox):
        booking, slot = _lock_booking(booking_id)
        require_owner_or_staff(actor, booking)
        cancelled = store.transition_booking(
            booking.id,
            {"booking_status": STATUS_CANCELLED},
            Booking.booking_status.not_in(TERMINAL_STATUSES),
        )
        if not cancelled:
            raise InvalidState("Cannot cancel a completed or already cancelled booking")

        booking = store.get_booking(booking.id, fresh=True)
        if booking.payment_status == PAYMENT_COMPLETED:
            store.decrement_booking_count(slot.id)
            store.set_locked(slot.id, False)
        outbox.append(events.BookingEvent.for_booking(events.CANCELLED, booking))
        return booking

    booking = store.run_atomic(work)
    logger.info("Booking %s cancelled", booking.id)
    return booking


def update_booking_status(actor, booking_id, new_status):
    """Staff move a paid booking into or out of consultation."""
    require_staff(actor)
    if new_status not in (STATUS_IN_CONSULTATION, STATUS_COMPLETED):
        raise InvalidTransition(f"Unsupported status {new_status!r}")
    sources = [status for status, targets in STATUS_TRANSITIONS.items() if new_status in targets]

    def work(outbox):
        booking = store.get_booking(booking_id, for_update=True)
        moved = store.transition_booking(
            booking.id,
            {"booking_status": new_status},
            Booking.payment_status == PAYMENT_COMPLETED,
            Booking.booking_status.in_(sources),
        )
        booking = store.get_booking(booking.id, fresh=True)
        if not moved:
            raise InvalidTransition(
                f"Cannot move a {booking.payment_status}/{booking.booking_status} booking to {new_status}"
            )
        outbox.append(events.BookingEvent.for_booking(events.STATUS_CHANGED, booking))
        return booking

    booking = store.run_atomic(work)
    logger.info("Booking %s is now %s", booking.id, new_status)
    return booking
