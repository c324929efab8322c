"""Tests for queue position allocation and renumbering."""

from opd_booking import queue_engine
from opd_booking.booking import cancel_booking, create_booking
from opd_booking.models import db


class TestAllocatePosition:
    def test_positions_are_sequential(self, slot):
        positions = [queue_engine.allocate_position(slot.id) for _ in range(3)]
        db.session.commit()

        assert positions == [1, 2, 3]

    def test_positions_not_reused_after_cancellation(self, slot, make_patient, paid_booking):
        first, second, third = (make_patient() for _ in range(3))
        paid_booking(first, slot)
        b2 = paid_booking(second, slot)
        paid_booking(third, slot)

        cancel_booking(second, b2.id)
        late = create_booking(make_patient(), slot.id, slot.doctor_id, "Fever")

        assert late.queue_position == 4

    def test_slots_have_independent_counters(self, make_slot):
        a = make_slot()
        b = make_slot()

        assert queue_engine.allocate_position(a.id) == 1
        assert queue_engine.allocate_position(b.id) == 1
        assert queue_engine.allocate_position(a.id) == 2


class TestActiveQueue:
    def test_only_paid_active_bookings(self, slot, make_patient, paid_booking):
        p1, p2, p3 = (make_patient() for _ in range(3))
        b1 = paid_booking(p1, slot)
        create_booking(p2, slot.id, slot.doctor_id, "Cough")
        b3 = paid_booking(p3, slot)

        assert [b.id for b in queue_engine.active_queue(slot.id)] == [b1.id, b3.id]

    def test_count_ahead_skips_pending(self, slot, make_patient, paid_booking):
        p1, p2, p3 = (make_patient() for _ in range(3))
        paid_booking(p1, slot)
        create_booking(p2, slot.id, slot.doctor_id, "Cough")
        b3 = paid_booking(p3, slot)

        assert b3.queue_position == 3
        assert queue_engine.count_ahead(b3) == 1


class TestShiftBack:
    def test_moves_every_non_cancelled_booking(self, slot, make_patient, paid_booking):
        p1, p2, p3 = (make_patient() for _ in range(3))
        b1 = paid_booking(p1, slot)
        b2 = paid_booking(p2, slot)
        b3 = create_booking(p3, slot.id, slot.doctor_id, "Rash")
        cancel_booking(p2, b2.id)

        moved = queue_engine.shift_back(slot.id)
        db.session.commit()

        assert [b.id for b in moved] == [b1.id, b3.id]
        assert db.session.get(type(b1), b1.id).queue_position == 2
        assert db.session.get(type(b2), b2.id).queue_position == 2
        assert db.session.get(type(b3), b3.id).queue_position == 4

    def test_advances_counter(self, slot, make_patient, paid_booking):
        paid_booking(make_patient(), slot)
        queue_engine.shift_back(slot.id)
        db.session.commit()

        assert queue_engine.allocate_position(slot.id) == 3
