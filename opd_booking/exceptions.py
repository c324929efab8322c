"""Typed failures raised by the booking core.

Every error carries the HTTP status the API answers with and a short
machine-readable ``code``.
"""


class BookingError(Exception):
    status_code = 409
    code = "booking_error"
    default_message = "Booking operation failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.code, "message": self.message}


# ---------------- Lookup ----------------
class NotFound(BookingError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class DoctorNotFound(NotFound):
    default_message = "Doctor not found"


class SlotNotFound(NotFound):
    default_message = "Slot not found"


class BookingNotFound(NotFound):
    default_message = "Booking not found"


# ---------------- Capacity gates ----------------
class SlotUnavailable(BookingError):
    code = "slot_unavailable"
    default_message = "This slot is no longer available"


class SlotFull(BookingError):
    code = "slot_full"
    default_message = "This slot is fully booked"


class SlotBecameFull(BookingError):
    """Raised at payment time; the booking has already been cancelled."""

    code = "slot_became_full"
    default_message = "Slot became fully booked. Payment cancelled."


# ---------------- State ----------------
class InvalidState(BookingError):
    code = "invalid_state"
    default_message = "Operation not valid for the current booking status"


class InvalidTransition(BookingError):
    code = "invalid_transition"
    default_message = "Status transition not allowed"


class DuplicateBooking(BookingError):
    code = "duplicate_booking"
    default_message = "You already have a booking for that slot"


class Conflict(BookingError):
    code = "conflict"
    default_message = "The booking could not be saved because of concurrent changes, please retry"


# ---------------- Request / identity ----------------
class InvalidRequest(BookingError):
    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"

    def __init__(self, message=None, fields=None):
        super().__init__(message)
        self.fields = fields or {}

    def to_dict(self):
        data = super().to_dict()
        if self.fields:
            data["fields"] = self.fields
        return data


class Unauthenticated(BookingError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Login required"


class Forbidden(BookingError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to do that"


class SlotExists(BookingError):
    code = "slot_exists"
    default_message = "This doctor already has a slot starting at that time"
