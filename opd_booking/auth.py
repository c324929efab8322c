from functools import wraps

from flask import abort
from flask_login import current_user

from .exceptions import Forbidden, Unauthenticated
from .models import Admin, User


def is_staff(actor):
    return isinstance(actor, Admin)


def require_authenticated(actor):
    if actor is None or not getattr(actor, "is_authenticated", False):
        raise Unauthenticated()


def require_staff(actor):
    require_authenticated(actor)
    if not is_staff(actor):
        raise Forbidden("Staff only")


def require_patient(actor):
    require_authenticated(actor)
    if not isinstance(actor, User):
        raise Forbidden("Only patients can book appointments")


def require_owner_or_staff(actor, booking):
    require_authenticated(actor)
    if is_staff(actor):
        return
    if not isinstance(actor, User) or booking.user_id != actor.id:
        raise Forbidden()


def acting_user():
    """The logged-in account behind the current request, or None."""
    if not current_user.is_authenticated:
        return None
    return current_user._get_current_object()


def admin_required(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not is_staff(current_user._get_current_object()):
            abort(403)
        return func(*args, **kwargs)
    return wrapper
