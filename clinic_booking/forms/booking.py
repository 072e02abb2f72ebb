"""Booking and working-hours forms."""

from __future__ import annotations

from flask_wtf import FlaskForm
from wtforms import DateField, SelectField, StringField, TimeField
from wtforms.validators import DataRequired, Length, Optional, Regexp

from clinic_booking.services.scheduling import APPOINTMENT_DURATIONS, CONCERNS


class BookingForm(FlaskForm):
    """Patient booking request."""
    doctor_id = StringField("Doctor", validators=[DataRequired(), Length(max=80)])
    day = DateField("Date", validators=[Optional()], format="%Y-%m-%d")
    name = StringField("Name", validators=[DataRequired(), Length(max=120)])
    pin = StringField("PIN", validators=[
        DataRequired(),
        Regexp(r"^[0-9A-Za-z]{4,12}$", message="PIN must be 4-12 letters or digits."),
    ])
    concern = SelectField("Concern", choices=[(c, c) for c in CONCERNS], validators=[DataRequired()])
    reason = SelectField(
        "Reason",
        choices=[(r, r) for r in APPOINTMENT_DURATIONS],
        validators=[DataRequired()],
    )
    contact = StringField("Contact", validators=[DataRequired(), Length(max=40)])


class OpenDateForm(FlaskForm):
    """Date open for booking; left blank it clears the restriction."""
    open_date = DateField("Open date", validators=[Optional()], format="%Y-%m-%d")


class TimingsForm(FlaskForm):
    """Doctor working hours; order is checked by DoctorTimings.validate."""
    from_day = DateField("Re-pack from", validators=[Optional()], format="%Y-%m-%d")
    start_time = TimeField("Start", validators=[DataRequired()], format="%H:%M")
    break_start = TimeField("Break start", validators=[DataRequired()], format="%H:%M")
    break_end = TimeField("Break end", validators=[DataRequired()], format="%H:%M")
    end_time = TimeField("End", validators=[DataRequired()], format="%H:%M")

    def clock_values(self) -> dict[str, str]:
        return {
            name: getattr(self, name).data.strftime("%H:%M")
            for name in ("start_time", "break_start", "break_end", "end_time")
        }
