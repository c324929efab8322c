"""Staff insertion of emergency cases at the front of a slot's queue."""

import logging

from . import events, queue_engine, store
from .auth import require_staff
from .exceptions import InvalidRequest
from .models import PAYMENT_COMPLETED, STATUS_EMERGENCY, Booking, db, utcnow

logger = logging.getLogger(__name__)

EMERGENCY_POSITION = 1


def insert_emergency(actor, slot_id, doctor_id, patient_name, problem_description):
    """Put a walk-in emergency patient at position 1 of the slot.

    Everyone else in the slot moves back by one. The whole renumbering is one
    transaction: either all positions move and the emergency booking exists,
    or nothing changed. Emergencies are counted against the slot but never
    refused for capacity, so ``current_bookings`` may exceed ``max_capacity``.
    """
    require_staff(actor)
    staff_id = actor.id
    patient_name = (patient_name or "").strip()
    if not patient_name:
        raise InvalidRequest("Emergency patient name is required")

    def work(outbox):
        slot = store.get_slot(slot_id, for_update=True)
        if doctor_id is not None and slot.doctor_id != doctor_id:
            raise InvalidRequest("Slot does not belong to this doctor")

        moved = queue_engine.shift_back(slot.id)

        booking = Booking(
            user_id=None,
            patient_name=patient_name,
            slot_id=slot.id,
            doctor_id=slot.doctor_id,
            problem_description=problem_description,
            payment_status=PAYMENT_COMPLETED,
            booking_status=STATUS_EMERGENCY,
            queue_position=EMERGENCY_POSITION,
            is_emergency=True,
            payment_completed_at=utcnow(),
            created_by_admin_id=staff_id,
        )
        db.session.add(booking)
        store.increment_booking_count(slot.id, allow_overflow=True)
        db.session.flush()

        outbox.append(events.BookingEvent.for_booking(events.EMERGENCY_INSERTED, booking))
        outbox.extend(events.BookingEvent.for_booking(events.QUEUE_SHIFTED, b) for b in moved)
        return booking, len(moved)

    booking, shifted = store.run_atomic(work)
    logger.info(
        "Emergency booking %s inserted in slot %s by staff %s, %d bookings shifted",
        booking.id, booking.slot_id, staff_id, shifted,
    )
    return booking
