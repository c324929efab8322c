from flask import request
from flask_wtf import FlaskForm
from wtforms import BooleanField, DateField, IntegerField, PasswordField, SelectField, StringField, TextAreaField, TimeField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, Regexp

from .models import STATUS_COMPLETED, STATUS_IN_CONSULTATION


def submitted_fields(form):
    """Field data for the keys actually present in the JSON body."""
    payload = request.get_json(silent=True) or {}
    return {name: field.data for name, field in form._fields.items() if name in payload}


# ---------------- Accounts ----------------
class SignupForm(FlaskForm):
    username = StringField("Username", validators=[DataRequired(), Length(min=3, max=50)])
    email = StringField("Email", validators=[DataRequired(), Length(max=120), Regexp(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", message="Invalid email")])
    password = PasswordField("Password", validators=[DataRequired(), Length(min=6)])
    name = StringField("Full name", validators=[DataRequired(), Length(max=100)])
    phone = StringField("Phone", validators=[Optional(), Length(max=20)])


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired()])
    password = PasswordField("Password", validators=[DataRequired()])


class AdminLoginForm(FlaskForm):
    username = StringField("Username", validators=[DataRequired()])
    password = PasswordField("Password", validators=[DataRequired()])


class ProfileForm(FlaskForm):
    name = StringField("Full name", validators=[Optional(), Length(min=1, max=100)])
    phone = StringField("Phone", validators=[Optional(), Length(max=20)])


# ---------------- Bookings ----------------
class BookingForm(FlaskForm):
    slot_id = IntegerField("Slot", validators=[DataRequired()])
    doctor_id = IntegerField("Doctor", validators=[Optional()])
    problem_description = TextAreaField("Problem", validators=[DataRequired(), Length(max=2000)])


class StatusForm(FlaskForm):
    status = SelectField(
        "Status",
        choices=[(STATUS_IN_CONSULTATION, "In consultation"), (STATUS_COMPLETED, "Completed")],
        validators=[DataRequired()],
    )


class EmergencyForm(FlaskForm):
    doctor_id = IntegerField("Doctor", validators=[Optional()])
    patient_name = StringField("Patient name", validators=[DataRequired(), Length(max=100)])
    problem_description = TextAreaField("Problem", validators=[DataRequired(), Length(max=2000)])


# ---------------- Doctors and slots ----------------
class DoctorForm(FlaskForm):
    name = StringField("Name", validators=[DataRequired(), Length(max=100)])
    specialization = StringField("Specialization", validators=[DataRequired(), Length(max=100)])
    description = TextAreaField("Description", validators=[Optional()])
    is_active = BooleanField("Active")


class DoctorUpdateForm(FlaskForm):
    name = StringField("Name", validators=[Optional(), Length(max=100)])
    specialization = StringField("Specialization", validators=[Optional(), Length(max=100)])
    description = TextAreaField("Description", validators=[Optional()])
    is_active = BooleanField("Active")


class SlotForm(FlaskForm):
    doctor_id = IntegerField("Doctor", validators=[DataRequired()])
    date = DateField("Date", format="%Y-%m-%d", validators=[DataRequired()])
    start_time = TimeField("Start", format="%H:%M", validators=[DataRequired()])
    end_time = TimeField("End", format="%H:%M", validators=[DataRequired()])
    max_capacity = IntegerField("Capacity", validators=[DataRequired(), NumberRange(min=1)])


class SlotUpdateForm(FlaskForm):
    date = DateField("Date", format="%Y-%m-%d", validators=[Optional()])
    start_time = TimeField("Start", format="%H:%M", validators=[Optional()])
    end_time = TimeField("End", format="%H:%M", validators=[Optional()])
    max_capacity = IntegerField("Capacity", validators=[Optional(), NumberRange(min=1)])
    is_locked = BooleanField("Locked")
