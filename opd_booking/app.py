import logging
from datetime import datetime

from flask import Blueprint, Flask, jsonify, request
from flask_login import LoginManager, login_required, login_user, logout_user
from flask_migrate import Migrate
from sqlalchemy import or_, select

from . import catalog, store
from .auth import acting_user, admin_required, require_owner_or_staff, require_patient
from .booking import cancel_booking, confirm_payment, create_booking, update_booking_status
from .config import Config
from .emergency import insert_emergency
from .exceptions import BookingError, InvalidRequest, Unauthenticated
from .forms import (
    AdminLoginForm,
    BookingForm,
    DoctorForm,
    DoctorUpdateForm,
    EmergencyForm,
    LoginForm,
    ProfileForm,
    SignupForm,
    SlotForm,
    SlotUpdateForm,
    StatusForm,
    submitted_fields,
)
from .models import Admin, Profile, User, bcrypt, db
from .projector import get_queue_position

migrate = Migrate()
login_manager = LoginManager()

bp = Blueprint("opd", __name__)


# ---------------- Login Manager ----------------
@login_manager.user_loader
def load_user(user_id):
    """
    Admin ids are encoded as "admin-<id>" (see Admin.get_id)
    """
    if isinstance(user_id, str) and user_id.startswith("admin-"):
        return db.session.get(Admin, int(user_id.split("-", 1)[1]))
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(Unauthenticated().to_dict()), 401


# ---------------- Helpers ----------------
def validated(form_cls):
    form = form_cls()
    if not form.validate_on_submit():
        raise InvalidRequest("Invalid form data", fields=form.errors)
    return form


def _parse_date(value):
    return datetime.strptime(value, "%Y-%m-%d").date()


def seed_admin(app):
    username = app.config["DEFAULT_ADMIN_USERNAME"]
    if not db.session.scalar(select(Admin).filter_by(username=username)):
        hashed = bcrypt.generate_password_hash(app.config["DEFAULT_ADMIN_PASSWORD"]).decode("utf-8")
        db.session.add(Admin(username=username, password=hashed))
        db.session.commit()
        app.logger.info("Created default admin account %r", username)


# ---------------- Accounts ----------------
@bp.route("/signup", methods=["POST"])
def signup():
    form = validated(SignupForm)
    taken = db.session.scalar(
        select(User).where(or_(User.username == form.username.data, User.email == form.email.data))
    )
    if taken:
        raise InvalidRequest("Username or email already registered")

    hashed = bcrypt.generate_password_hash(form.password.data).decode("utf-8")
    user = User(username=form.username.data, email=form.email.data, password=hashed)
    user.profile = Profile(name=form.name.data, phone=form.phone.data or None)
    db.session.add(user)
    db.session.commit()
    login_user(user)
    return jsonify({"id": user.id, "username": user.username, "profile": user.profile.to_dict()}), 201


@bp.route("/login", methods=["POST"])
def user_login():
    form = validated(LoginForm)
    user = db.session.scalar(select(User).filter_by(email=form.email.data))
    if user and bcrypt.check_password_hash(user.password, form.password.data):
        login_user(user)
        return jsonify({"id": user.id, "username": user.username})
    raise Unauthenticated("Invalid credentials")


@bp.route("/admin/login", methods=["POST"])
def admin_login():
    form = validated(AdminLoginForm)
    admin = db.session.scalar(select(Admin).filter_by(username=form.username.data))
    if admin and bcrypt.check_password_hash(admin.password, form.password.data):
        login_user(admin)
        return jsonify({"id": admin.id, "username": admin.username, "staff": True})
    raise Unauthenticated("Invalid login")


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@bp.route("/profile", methods=["GET", "PUT"])
@login_required
def profile():
    user = acting_user()
    require_patient(user)
    if request.method == "PUT":
        form = validated(ProfileForm)
        for field, value in submitted_fields(form).items():
            setattr(user.profile, field, value)
        db.session.commit()
    return jsonify(user.profile.to_dict())


# ---------------- Doctors and slots ----------------
@bp.route("/doctors")
def view_doctors():
    return jsonify([d.to_dict() for d in catalog.list_doctors()])


@bp.route("/doctors/<int:doctor_id>/slots")
def available_slots(doctor_id):
    store.get_doctor(doctor_id)
    date = request.args.get("date", type=_parse_date)
    slots = store.list_slots(doctor_id=doctor_id, date=date, available_only=True)
    return jsonify([s.to_dict() for s in slots])


# ---------------- Bookings ----------------
@bp.route("/bookings", methods=["GET", "POST"])
@login_required
def bookings():
    if request.method == "GET":
        user = acting_user()
        require_patient(user)
        return jsonify([b.to_dict() for b in store.list_patient_bookings(user.id)])

    form = validated(BookingForm)
    booking = create_booking(acting_user(), form.slot_id.data, form.doctor_id.data, form.problem_description.data)
    return jsonify(booking.to_dict()), 201


@bp.route("/bookings/<int:booking_id>")
@login_required
def booking_details(booking_id):
    booking = store.get_booking(booking_id)
    require_owner_or_staff(acting_user(), booking)
    return jsonify(booking.to_dict())


@bp.route("/bookings/<int:booking_id>/pay", methods=["POST"])
@login_required
def pay_booking(booking_id):
    return jsonify(confirm_payment(acting_user(), booking_id).to_dict())


@bp.route("/bookings/<int:booking_id>/cancel", methods=["POST"])
@login_required
def cancel(booking_id):
    return jsonify(cancel_booking(acting_user(), booking_id).to_dict())


@bp.route("/bookings/<int:booking_id>/queue")
@login_required
def queue_position(booking_id):
    require_owner_or_staff(acting_user(), store.get_booking(booking_id))
    return jsonify(get_queue_position(booking_id).to_dict())


# ---------------- Admin Routes ----------------
@bp.route("/admin/doctors", methods=["GET", "POST"])
@login_required
@admin_required
def admin_doctors():
    if request.method == "GET":
        return jsonify([d.to_dict() for d in catalog.list_doctors(active_only=False)])
    form = validated(DoctorForm)
    doctor = catalog.create_doctor(acting_user(), **submitted_fields(form))
    return jsonify(doctor.to_dict()), 201


@bp.route("/admin/doctors/<int:doctor_id>", methods=["PUT"])
@login_required
@admin_required
def edit_doctor(doctor_id):
    form = validated(DoctorUpdateForm)
    doctor = catalog.update_doctor(acting_user(), doctor_id, **submitted_fields(form))
    return jsonify(doctor.to_dict())


@bp.route("/admin/slots", methods=["GET", "POST"])
@login_required
@admin_required
def admin_slots():
    if request.method == "GET":
        slots = store.list_slots(
            doctor_id=request.args.get("doctor_id", type=int),
            date=request.args.get("date", type=_parse_date),
        )
        return jsonify([s.to_dict() for s in slots])
    form = validated(SlotForm)
    slot = catalog.create_slot(
        acting_user(),
        doctor_id=form.doctor_id.data,
        date=form.date.data,
        start_time=form.start_time.data,
        end_time=form.end_time.data,
        max_capacity=form.max_capacity.data,
    )
    return jsonify(slot.to_dict()), 201


@bp.route("/admin/slots/<int:slot_id>", methods=["PUT"])
@login_required
@admin_required
def edit_slot(slot_id):
    form = validated(SlotUpdateForm)
    slot = catalog.update_slot(acting_user(), slot_id, **submitted_fields(form))
    return jsonify(slot.to_dict())


@bp.route("/admin/slots/<int:slot_id>/bookings")
@login_required
@admin_required
def view_bookings(slot_id):
    store.get_slot(slot_id)
    return jsonify([b.to_dict() for b in store.list_slot_bookings(slot_id)])


@bp.route("/admin/bookings")
@login_required
@admin_required
def all_bookings():
    bookings = store.list_bookings(
        slot_id=request.args.get("slot_id", type=int),
        date=request.args.get("date", type=_parse_date),
    )
    return jsonify([b.to_dict() for b in bookings])


@bp.route("/admin/bookings/<int:booking_id>/status", methods=["POST"])
@login_required
@admin_required
def admin_update_status(booking_id):
    form = validated(StatusForm)
    booking = update_booking_status(acting_user(), booking_id, form.status.data)
    return jsonify(booking.to_dict())


@bp.route("/admin/slots/<int:slot_id>/emergency", methods=["POST"])
@login_required
@admin_required
def admin_insert_emergency(slot_id):
    form = validated(EmergencyForm)
    booking = insert_emergency(
        acting_user(),
        slot_id,
        form.doctor_id.data,
        form.patient_name.data,
        form.problem_description.data,
    )
    return jsonify(booking.to_dict()), 201


# ---------------- Error handlers ----------------
def handle_booking_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def handle_http_error(exc):
    return jsonify({"error": exc.name.lower().replace(" ", "_"), "message": exc.description}), exc.code


# ---------------- App Initialization ----------------
def configure_logging(app):
    logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("opd_booking").setLevel(app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    bcrypt.init_app(app)
    login_manager.init_app(app)

    app.register_blueprint(bp)
    app.register_error_handler(BookingError, handle_booking_error)
    for code in (400, 401, 403, 404, 405):
        app.register_error_handler(code, handle_http_error)

    with app.app_context():
        db.create_all()
        seed_admin(app)

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
