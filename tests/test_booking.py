"""Tests for the booking lifecycle."""

import pytest
from flask_login import AnonymousUserMixin

from opd_booking import store
from opd_booking.booking import cancel_booking, confirm_payment, create_booking, update_booking_status
from opd_booking.exceptions import (
    BookingNotFound,
    DuplicateBooking,
    Forbidden,
    InvalidRequest,
    InvalidState,
    InvalidTransition,
    SlotBecameFull,
    SlotFull,
    SlotNotFound,
    SlotUnavailable,
    Unauthenticated,
)
from opd_booking.models import Doctor, RegisteredPatient, db


class TestCreateBooking:
    def test_creates_pending_booking(self, patient, slot):
        booking = create_booking(patient, slot.id, slot.doctor_id, "Chest pain")

        assert booking.payment_status == "pending"
        assert booking.booking_status == "confirmed"
        assert booking.queue_position == 1
        assert booking.is_emergency is False
        assert booking.payment_completed_at is None
        assert booking.patient == RegisteredPatient(patient.id)

    def test_does_not_consume_capacity(self, patient, slot):
        create_booking(patient, slot.id, slot.doctor_id, "Chest pain")

        assert store.get_slot(slot.id, fresh=True).current_bookings == 0

    def test_first_created_gets_earlier_position(self, make_patient, slot):
        early, late = make_patient(), make_patient()
        b_early = create_booking(early, slot.id, slot.doctor_id, "Cough")
        b_late = create_booking(late, slot.id, slot.doctor_id, "Cough")

        confirm_payment(late, b_late.id)
        confirm_payment(early, b_early.id)

        assert b_early.queue_position < b_late.queue_position

    def test_locked_slot(self, patient, slot):
        store.set_locked(slot.id, True)
        db.session.commit()

        with pytest.raises(SlotUnavailable):
            create_booking(patient, slot.id, slot.doctor_id, "Cough")

    def test_full_slot(self, patient, make_slot):
        slot = make_slot(max_capacity=1)
        store.increment_booking_count(slot.id)
        db.session.commit()

        with pytest.raises(SlotFull):
            create_booking(patient, slot.id, slot.doctor_id, "Cough")

    def test_unknown_slot(self, patient, ctx):
        with pytest.raises(SlotNotFound):
            create_booking(patient, 404, None, "Cough")

    def test_doctor_must_match_slot(self, patient, slot):
        other = Doctor(name="Dr. Vikram Singh", specialization="Surgery")
        db.session.add(other)
        db.session.commit()

        with pytest.raises(InvalidRequest):
            create_booking(patient, slot.id, other.id, "Cough")

    def test_inactive_doctor(self, patient, slot, doctor):
        doctor.is_active = False
        db.session.commit()

        with pytest.raises(SlotUnavailable):
            create_booking(patient, slot.id, slot.doctor_id, "Cough")

    def test_one_booking_per_patient_and_slot(self, patient, slot):
        create_booking(patient, slot.id, slot.doctor_id, "Cough")

        with pytest.raises(DuplicateBooking):
            create_booking(patient, slot.id, slot.doctor_id, "Cough again")

    def test_rebook_after_cancellation(self, patient, slot):
        first = create_booking(patient, slot.id, slot.doctor_id, "Cough")
        cancel_booking(patient, first.id)

        again = create_booking(patient, slot.id, slot.doctor_id, "Cough")

        assert again.id != first.id

    def test_requires_login(self, slot):
        with pytest.raises(Unauthenticated):
            create_booking(AnonymousUserMixin(), slot.id, slot.doctor_id, "Cough")
        with pytest.raises(Unauthenticated):
            create_booking(None, slot.id, slot.doctor_id, "Cough")

    def test_staff_cannot_book_for_themselves(self, staff, slot):
        with pytest.raises(Forbidden):
            create_booking(staff, slot.id, slot.doctor_id, "Cough")


class TestConfirmPayment:
    def test_completes_payment(self, patient, slot):
        booking = create_booking(patient, slot.id, slot.doctor_id, "Chest pain")

        paid = confirm_payment(patient, booking.id)

        assert paid.payment_status == "completed"
        assert paid.booking_status == "confirmed"
        assert paid.payment_completed_at is not None
        fresh = store.get_slot(slot.id, fresh=True)
        assert fresh.current_bookings == 1
        assert fresh.is_locked is False

    def test_last_seat_locks_slot(self, make_patient, make_slot, paid_booking):
        slot = make_slot(max_capacity=2)
        paid_booking(make_patient(), slot)
        paid_booking(make_patient(), slot)

        fresh = store.get_slot(slot.id, fresh=True)
        assert fresh.current_bookings == 2
        assert fresh.is_locked is True

    def test_two_patients_race_for_last_seat(self, make_patient, make_slot):
        slot = make_slot(max_capacity=1)
        alice, bob = make_patient("Alice"), make_patient("Bob")
        b_alice = create_booking(alice, slot.id, slot.doctor_id, "Migraine")
        b_bob = create_booking(bob, slot.id, slot.doctor_id, "Migraine")

        confirm_payment(alice, b_alice.id)
        with pytest.raises(SlotBecameFull):
            confirm_payment(bob, b_bob.id)

        lost = store.get_booking(b_bob.id, fresh=True)
        assert lost.payment_status == "failed"
        assert lost.booking_status == "cancelled"
        fresh = store.get_slot(slot.id, fresh=True)
        assert fresh.current_bookings == 1
        assert fresh.is_locked is True

    def test_cannot_pay_twice(self, patient, slot, paid_booking):
        booking = paid_booking(patient, slot)

        with pytest.raises(InvalidState):
            confirm_payment(patient, booking.id)
        assert store.get_slot(slot.id, fresh=True).current_bookings == 1

    def test_cannot_pay_cancelled_booking(self, patient, slot):
        booking = create_booking(patient, slot.id, slot.doctor_id, "Cough")
        cancel_booking(patient, booking.id)

        with pytest.raises(InvalidState):
            confirm_payment(patient, booking.id)

    def test_other_patient_cannot_pay(self, make_patient, slot):
        owner, stranger = make_patient(), make_patient()
        booking = create_booking(owner, slot.id, slot.doctor_id, "Cough")

        with pytest.raises(Forbidden):
            confirm_payment(stranger, booking.id)

    def test_staff_can_confirm(self, patient, staff, slot):
        booking = create_booking(patient, slot.id, slot.doctor_id, "Cough")

        assert confirm_payment(staff, booking.id).payment_status == "completed"

    def test_unknown_booking(self, patient):
        with pytest.raises(BookingNotFound):
            confirm_payment(patient, 12345)


class TestCancelBooking:
    def test_pending_cancellation_keeps_counter(self, patient, slot):
        booking = create_booking(patient, slot.id, slot.doctor_id, "Cough")

        cancelled = cancel_booking(patient, booking.id)

        assert cancelled.booking_status == "cancelled"
        assert store.get_slot(slot.id, fresh=True).current_bookings == 0

    def test_paid_cancellation_reopens_full_slot(self, make_patient, make_slot, paid_booking):
        slot = make_slot(max_capacity=2)
        paid_booking(make_patient(), slot)
        owner = make_patient()
        booking = paid_booking(owner, slot)
        assert store.get_slot(slot.id, fresh=True).is_locked is True

        cancel_booking(owner, booking.id)

        fresh = store.get_slot(slot.id, fresh=True)
        assert fresh.current_bookings == 1
        assert fresh.is_locked is False

    def test_second_cancel_fails_without_double_decrement(self, make_patient, slot, paid_booking):
        paid_booking(make_patient(), slot)
        owner = make_patient()
        booking = paid_booking(owner, slot)

        cancel_booking(owner, booking.id)
        with pytest.raises(InvalidState):
            cancel_booking(owner, booking.id)

        assert store.get_slot(slot.id, fresh=True).current_bookings == 1

    def test_completed_booking_cannot_be_cancelled(self, patient, staff, slot, paid_booking):
        booking = paid_booking(patient, slot)
        update_booking_status(staff, booking.id, "completed")

        with pytest.raises(InvalidState):
            cancel_booking(patient, booking.id)

    def test_other_positions_unchanged(self, make_patient, slot, paid_booking):
        p1, p2, p3 = (make_patient() for _ in range(3))
        b1 = paid_booking(p1, slot)
        b2 = paid_booking(p2, slot)
        b3 = paid_booking(p3, slot)

        cancel_booking(p2, b2.id)

        assert store.get_booking(b1.id, fresh=True).queue_position == 1
        assert store.get_booking(b3.id, fresh=True).queue_position == 3

    def test_stranger_cannot_cancel(self, make_patient, slot):
        owner, stranger = make_patient(), make_patient()
        booking = create_booking(owner, slot.id, slot.doctor_id, "Cough")

        with pytest.raises(Forbidden):
            cancel_booking(stranger, booking.id)

    def test_staff_can_cancel(self, patient, staff, slot, paid_booking):
        booking = paid_booking(patient, slot)

        assert cancel_booking(staff, booking.id).booking_status == "cancelled"


class TestUpdateBookingStatus:
    def test_consultation_flow(self, patient, staff, slot, paid_booking):
        booking = paid_booking(patient, slot)

        assert update_booking_status(staff, booking.id, "in_consultation").booking_status == "in_consultation"
        assert update_booking_status(staff, booking.id, "completed").booking_status == "completed"

    def test_completion_keeps_counter(self, patient, staff, slot, paid_booking):
        booking = paid_booking(patient, slot)
        update_booking_status(staff, booking.id, "completed")

        assert store.get_slot(slot.id, fresh=True).current_bookings == 1

    def test_cancelled_booking_cannot_complete(self, patient, staff, slot, paid_booking):
        booking = paid_booking(patient, slot)
        cancel_booking(patient, booking.id)

        with pytest.raises(InvalidTransition):
            update_booking_status(staff, booking.id, "completed")

    def test_completed_is_final(self, patient, staff, slot, paid_booking):
        booking = paid_booking(patient, slot)
        update_booking_status(staff, booking.id, "completed")

        with pytest.raises(InvalidTransition):
            update_booking_status(staff, booking.id, "in_consultation")

    def test_unpaid_booking_cannot_start(self, patient, staff, slot):
        booking = create_booking(patient, slot.id, slot.doctor_id, "Cough")

        with pytest.raises(InvalidTransition):
            update_booking_status(staff, booking.id, "in_consultation")

    def test_only_consultation_statuses(self, patient, staff, slot, paid_booking):
        booking = paid_booking(patient, slot)

        with pytest.raises(InvalidTransition):
            update_booking_status(staff, booking.id, "cancelled")

    def test_staff_only(self, patient, slot, paid_booking):
        booking = paid_booking(patient, slot)

        with pytest.raises(Forbidden):
            update_booking_status(patient, booking.id, "completed")
