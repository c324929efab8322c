"""Read-only view of where a booking stands in its slot's queue."""

from dataclasses import dataclass

from . import queue_engine, store
from .models import Slot


@dataclass
class QueuePosition:
    queue_position: int
    patients_ahead: int
    booking_status: str
    slot: Slot

    def to_dict(self):
        return {
            "queue_position": self.queue_position,
            "patients_ahead": self.patients_ahead,
            "booking_status": self.booking_status,
            "slot": self.slot.to_dict(),
        }


def get_queue_position(booking_id):
    # fresh rows: an emergency insertion elsewhere may have renumbered the queue
    booking = store.get_booking(booking_id, fresh=True)
    slot = store.get_slot(booking.slot_id, fresh=True)
    return QueuePosition(
        queue_position=booking.queue_position,
        patients_ahead=queue_engine.count_ahead(booking),
        booking_status=booking.booking_status,
        slot=slot,
    )
