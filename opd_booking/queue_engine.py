"""Queue position bookkeeping within a slot.

Positions are handed out from a per-slot counter, never from a count of
existing rows, so two bookings created at the same time cannot end up with
the same number. Emergency insertion is the only operation that renumbers
existing bookings.
"""

from sqlalchemy import func, select, update

from .exceptions import SlotNotFound
from .models import PAYMENT_COMPLETED, STATUS_CANCELLED, TERMINAL_STATUSES, Booking, Slot, db


def allocate_position(slot_id):
    """Reserve and return the next queue position of a slot."""
    result = db.session.execute(
        update(Slot).where(Slot.id == slot_id).values(next_queue_position=Slot.next_queue_position + 1),
        execution_options={"synchronize_session": False},
    )
    if result.rowcount == 0:
        raise SlotNotFound()
    # the UPDATE holds the row lock until commit, so this read is ours
    next_free = db.session.scalar(select(Slot.next_queue_position).where(Slot.id == slot_id))
    return next_free - 1


def active_queue(slot_id):
    """Paid bookings still waiting or in consultation, front of the queue first."""
    query = (
        select(Booking)
        .where(
            Booking.slot_id == slot_id,
            Booking.payment_status == PAYMENT_COMPLETED,
            Booking.booking_status.not_in(TERMINAL_STATUSES),
        )
        .order_by(Booking.queue_position, Booking.id)
    )
    return db.session.scalars(query).all()


def shift_back(slot_id):
    """Move every non-cancelled booking of the slot back by one position.

    Frees position 1 and returns the bookings that moved. Pending and already
    completed bookings move too, which keeps positions distinct once a
    pending booking is paid.
    """
    db.session.execute(
        update(Booking)
        .where(Booking.slot_id == slot_id, Booking.booking_status != STATUS_CANCELLED)
        .values(queue_position=Booking.queue_position + 1),
        execution_options={"synchronize_session": False},
    )
    db.session.execute(
        update(Slot).where(Slot.id == slot_id).values(next_queue_position=Slot.next_queue_position + 1),
        execution_options={"synchronize_session": False},
    )
    # read after the writes so the result matches what was renumbered
    return db.session.scalars(
        select(Booking)
        .where(Booking.slot_id == slot_id, Booking.booking_status != STATUS_CANCELLED)
        .order_by(Booking.queue_position, Booking.id)
        .execution_options(populate_existing=True)
    ).all()


def count_ahead(booking):
    """Active bookings of the same slot with a smaller queue position."""
    return db.session.scalar(
        select(func.count(Booking.id)).where(
            Booking.slot_id == booking.slot_id,
            Booking.payment_status == PAYMENT_COMPLETED,
            Booking.queue_position < booking.queue_position,
            Booking.booking_status.not_in(TERMINAL_STATUSES),
        )
    )
