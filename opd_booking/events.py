"""Change notifications emitted after booking mutations commit.

Subscribers register a callback for one booking, one patient or one slot
and receive a :class:`BookingEvent` for every committed change touching it.
Slot subscribers also see renumbering of other bookings, which is what a
live "patients ahead" display needs.
"""

import logging
from dataclasses import dataclass

from blinker import Namespace

logger = logging.getLogger(__name__)

CREATED = "created"
PAID = "paid"
PAYMENT_FAILED = "payment_failed"
CANCELLED = "cancelled"
STATUS_CHANGED = "status_changed"
EMERGENCY_INSERTED = "emergency_inserted"
QUEUE_SHIFTED = "queue_shifted"

_signals = Namespace()
booking_changed = _signals.signal("booking-changed")
patient_bookings_changed = _signals.signal("patient-bookings-changed")
slot_queue_changed = _signals.signal("slot-queue-changed")


@dataclass(frozen=True)
class BookingEvent:
    kind: str
    booking_id: int
    slot_id: int
    patient_id: int | None
    booking_status: str
    payment_status: str
    queue_position: int

    @classmethod
    def for_booking(cls, kind, booking):
        return cls(
            kind=kind,
            booking_id=booking.id,
            slot_id=booking.slot_id,
            patient_id=booking.user_id,
            booking_status=booking.booking_status,
            payment_status=booking.payment_status,
            queue_position=booking.queue_position,
        )


# Senders are strings so blinker matches them by value.
def _key(prefix, ident):
    return f"{prefix}:{ident}"


def _subscribe(signal, sender, callback):
    def receiver(_sender, event):
        try:
            callback(event)
        except Exception:
            logger.exception("Subscriber %r failed on %s event for booking %s", callback, event.kind, event.booking_id)

    signal.connect(receiver, sender=sender, weak=False)

    def unsubscribe():
        signal.disconnect(receiver, sender=sender)

    return unsubscribe


def subscribe_booking(booking_id, callback):
    return _subscribe(booking_changed, _key("booking", booking_id), callback)


def subscribe_patient(patient_id, callback):
    return _subscribe(patient_bookings_changed, _key("patient", patient_id), callback)


def subscribe_slot(slot_id, callback):
    return _subscribe(slot_queue_changed, _key("slot", slot_id), callback)


def publish(events):
    for event in events:
        logger.debug("Publishing %s for booking %s", event.kind, event.booking_id)
        booking_changed.send(_key("booking", event.booking_id), event=event)
        if event.patient_id is not None:
            patient_bookings_changed.send(_key("patient", event.patient_id), event=event)
        slot_queue_changed.send(_key("slot", event.slot_id), event=event)
