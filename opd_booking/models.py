from dataclasses import dataclass
from datetime import datetime, timezone

from flask_bcrypt import Bcrypt
from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, UniqueConstraint

db = SQLAlchemy()
bcrypt = Bcrypt()

# ------------------ STATUS VOCABULARY ------------------ #
# Stored verbatim, other consumers of the tables rely on these strings.
PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED)

STATUS_CONFIRMED = "confirmed"
STATUS_IN_CONSULTATION = "in_consultation"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_EMERGENCY = "emergency"
BOOKING_STATUSES = (
    STATUS_CONFIRMED,
    STATUS_IN_CONSULTATION,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_EMERGENCY,
)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _in_check(column, values):
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


def _iso(value):
    return value.isoformat() if value is not None else None


# ------------------ PATIENT REFERENCE ------------------ #
@dataclass(frozen=True)
class RegisteredPatient:
    id: int


@dataclass(frozen=True)
class WalkInPatient:
    name: str


# ------------------ ADMIN ------------------ #
class Admin(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)

    # Flask-Login shares one id space between staff and patients
    def get_id(self):
        return f"admin-{self.id}"


# ------------------ USER ------------------ #
class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)

    profile = db.relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    bookings = db.relationship("Booking", back_populates="user", lazy=True)

    def get_id(self):
        return str(self.id)


# ------------------ PROFILE ------------------ #
class Profile(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", back_populates="profile")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "phone": self.phone,
        }


# ------------------ DOCTOR ------------------ #
class Doctor(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    specialization = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    slots = db.relationship("Slot", back_populates="doctor", lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "specialization": self.specialization,
            "description": self.description,
            "is_active": self.is_active,
        }


# ------------------ SLOT ------------------ #
class Slot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    doctor_id = db.Column(db.Integer, db.ForeignKey("doctor.id"), nullable=False)

    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    max_capacity = db.Column(db.Integer, nullable=False)
    current_bookings = db.Column(db.Integer, nullable=False, default=0)
    # Not derived from the counter: cancellation reopens a full slot.
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    next_queue_position = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    doctor = db.relationship("Doctor", back_populates="slots")
    bookings = db.relationship("Booking", back_populates="slot", lazy=True)

    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "start_time", name="uq_doctor_slot"),
        CheckConstraint("max_capacity > 0", name="ck_slot_capacity_positive"),
        CheckConstraint("current_bookings >= 0", name="ck_slot_bookings_non_negative"),
        CheckConstraint("end_time > start_time", name="ck_slot_time_order"),
    )

    @property
    def has_capacity(self):
        return self.current_bookings < self.max_capacity

    @property
    def is_available(self):
        """True when a new booking may be created for this slot."""
        return not self.is_locked and self.has_capacity

    @property
    def formatted_time(self):
        """Return a safe, formatted time string."""
        if self.start_time and self.end_time:
            return f"{self.start_time.strftime('%I:%M %p')} - {self.end_time.strftime('%I:%M %p')}"
        return "Time Not Set"

    def to_dict(self):
        return {
            "id": self.id,
            "doctor_id": self.doctor_id,
            "date": _iso(self.date),
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "time": self.formatted_time,
            "max_capacity": self.max_capacity,
            "current_bookings": self.current_bookings,
            "is_locked": self.is_locked,
        }


# ------------------ BOOKING ------------------ #
class Booking(db.Model):
    id = db.Column(db.Integer, primary_key=True)

    # Either a registered patient (user_id) or a walk-in (patient_name only)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    patient_name = db.Column(db.String(100), nullable=True)

    slot_id = db.Column(db.Integer, db.ForeignKey("slot.id"), nullable=False)
    doctor_id = db.Column(db.Integer, db.ForeignKey("doctor.id"), nullable=False)
    problem_description = db.Column(db.Text, nullable=False, default="")

    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)
    booking_status = db.Column(db.String(20), nullable=False, default=STATUS_CONFIRMED)
    queue_position = db.Column(db.Integer, nullable=False)
    is_emergency = db.Column(db.Boolean, nullable=False, default=False)
    payment_completed_at = db.Column(db.DateTime, nullable=True)

    created_by_admin_id = db.Column(db.Integer, db.ForeignKey("admin.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", back_populates="bookings")
    slot = db.relationship("Slot", back_populates="bookings")
    doctor = db.relationship("Doctor")

    __table_args__ = (
        CheckConstraint(_in_check("payment_status", PAYMENT_STATUSES), name="ck_booking_payment_status"),
        CheckConstraint(_in_check("booking_status", BOOKING_STATUSES), name="ck_booking_status"),
        CheckConstraint("queue_position > 0", name="ck_booking_queue_position"),
        CheckConstraint("user_id IS NOT NULL OR patient_name IS NOT NULL", name="ck_booking_patient"),
    )

    @property
    def patient(self):
        if self.user_id is not None:
            return RegisteredPatient(self.user_id)
        return WalkInPatient(self.patient_name)

    @property
    def is_paid(self):
        return self.payment_status == PAYMENT_COMPLETED

    @property
    def is_active(self):
        """Paid and still waiting for (or in) consultation."""
        return self.is_paid and self.booking_status not in TERMINAL_STATUSES

    @property
    def display_name(self):
        if self.user is not None:
            return self.user.profile.name if self.user.profile else self.user.username
        return self.patient_name

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "patient_name": self.display_name,
            "slot_id": self.slot_id,
            "doctor_id": self.doctor_id,
            "problem_description": self.problem_description,
            "payment_status": self.payment_status,
            "booking_status": self.booking_status,
            "queue_position": self.queue_position,
            "is_emergency": self.is_emergency,
            "payment_completed_at": _iso(self.payment_completed_at),
            "created_at": _iso(self.created_at),
            "slot": self.slot.to_dict() if self.slot else None,
            "doctor": self.doctor.to_dict() if self.doctor else None,
        }
