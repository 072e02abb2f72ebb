"""JSON endpoints for booking serials and managing a doctor's day."""

from __future__ import annotations

from datetime import date

from flask import Blueprint, Response, current_app, jsonify, request
from flask_wtf.csrf import generate_csrf

from clinic_booking.extensions import booking_rate_key, limiter
from clinic_booking.forms.booking import BookingForm, OpenDateForm, TimingsForm
from clinic_booking.services.appointments import (
    AppointmentConflict,
    AppointmentError,
    AppointmentNotFound,
    BookingRejected,
    InvalidTimings,
    UnknownDoctor,
    UnknownReason,
    book_appointment,
    booking_preview,
    cancel_appointment,
    doctor_choices,
    export_csv,
    get_doctor_timings,
    get_open_date,
    list_for_day,
    mark_absent,
    require_doctor,
    save_doctor_timings,
    set_open_date,
)
from clinic_booking.services.errors import record_exception
from clinic_booking.services.scheduling import DoctorTimings

bp = Blueprint("booking", __name__, url_prefix="/api")


def _selected_day() -> str:
    raw = (request.args.get("day") or "").strip()
    if not raw:
        return date.today().isoformat()
    return date.fromisoformat(raw).isoformat()


def _selected_doctor() -> str:
    doctor = (request.args.get("doctor") or "").strip()
    return require_doctor(doctor or doctor_choices()[0][0])


def _actor() -> str | None:
    return request.headers.get("X-Actor-Id") or None


def _booking_rate_limit() -> str:
    return current_app.config["BOOKING_RATE_LIMIT"]


def _fail(error: str, status: int, **extra):
    return jsonify({"success": False, "error": error, **extra}), status


@bp.errorhandler(UnknownDoctor)
def unknown_doctor(exc):
    return _fail("Unknown doctor.", 404)


@bp.route("/csrf", methods=["GET"])
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@bp.route("/doctors", methods=["GET"])
def doctors():
    return jsonify({
        "success": True,
        "doctors": [{"id": slug, "label": label} for slug, label in doctor_choices()],
    })


@bp.route("/appointments", methods=["GET"])
def day_list():
    doctor_id = _selected_doctor()
    try:
        day = _selected_day()
    except ValueError:
        return _fail("invalid_day", 400)
    return jsonify({
        "success": True,
        "date": day,
        "doctor_id": doctor_id,
        "appointments": list_for_day(day, doctor_id=doctor_id),
    })


@bp.route("/appointments/preview", methods=["GET"])
def preview():
    doctor_id = _selected_doctor()
    try:
        preview_data = booking_preview(doctor_id, request.args.get("day"), request.args.get("reason") or "")
    except UnknownReason:
        return _fail("unknown_reason", 400)
    except AppointmentError as exc:
        return _fail(str(exc), 400)
    return jsonify({"success": True, **preview_data})


@bp.route("/appointments", methods=["POST"])
@limiter.limit(_booking_rate_limit, key_func=booking_rate_key)
def book():
    form = BookingForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400

    form_data = {
        "doctor_id": form.doctor_id.data,
        "day": form.day.data.isoformat() if form.day.data else None,
        "name": form.name.data,
        "pin": form.pin.data,
        "concern": form.concern.data,
        "reason": form.reason.data,
        "contact": form.contact.data,
    }
    try:
        appointment = book_appointment(form_data, actor_id=_actor())
    except BookingRejected as exc:
        return _fail(exc.decision.error, 409, code=exc.decision.code)
    except AppointmentConflict:
        return _fail("Another booking took this slot. Please try again.", 409, code="booking_conflict")
    except AppointmentError as exc:
        return _fail(str(exc), 400)
    except Exception as exc:
        record_exception("booking.book", exc)
        return _fail("Internal server error", 500)

    return jsonify({"success": True, "appointment": appointment}), 201


def _repack_response(action, appt_id: str, context: str):
    try:
        report = action(appt_id, actor_id=_actor())
    except AppointmentNotFound:
        return _fail("Appointment not found.", 404)
    except AppointmentError as exc:
        return _fail(str(exc), 400)
    except Exception as exc:  # pragma: no cover - unexpected storage failures
        record_exception(context, exc)
        return _fail("Internal server error", 500)
    return jsonify({"success": True, **report})


@bp.route("/appointments/<appt_id>/absent", methods=["POST"])
def absent(appt_id: str):
    return _repack_response(mark_absent, appt_id, "booking.absent")


@bp.route("/appointments/<appt_id>/cancel", methods=["POST"])
def cancel(appt_id: str):
    return _repack_response(cancel_appointment, appt_id, "booking.cancel")


@bp.route("/doctors/<doctor_id>/timings", methods=["GET", "POST"])
def timings(doctor_id: str):
    require_doctor(doctor_id)

    if request.method == "GET":
        return jsonify({"success": True, "doctor_id": doctor_id, "timings": get_doctor_timings(doctor_id).as_dict()})

    form = TimingsForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400
    try:
        new_timings = DoctorTimings.from_mapping(form.clock_values())
        report = save_doctor_timings(doctor_id, new_timings, actor_id=_actor(), from_day=form.from_day.data)
    except InvalidTimings as exc:
        return _fail(str(exc), 400)
    except Exception as exc:  # pragma: no cover - unexpected storage failures
        record_exception("booking.timings", exc)
        return _fail("Internal server error", 500)

    return jsonify({"success": True, "doctor_id": doctor_id, "timings": new_timings.as_dict(), "days": report})


@bp.route("/doctors/<doctor_id>/open-date", methods=["GET", "POST"])
def open_date(doctor_id: str):
    require_doctor(doctor_id)

    if request.method == "GET":
        return jsonify({"success": True, "doctor_id": doctor_id, "open_date": get_open_date(doctor_id)})

    form = OpenDateForm()
    if not form.validate_on_submit():
        return jsonify({"success": False, "errors": form.errors}), 400
    try:
        stored = set_open_date(doctor_id, form.open_date.data, actor_id=_actor())
    except AppointmentError as exc:
        return _fail(str(exc), 400)
    except Exception as exc:  # pragma: no cover - unexpected storage failures
        record_exception("booking.open_date", exc)
        return _fail("Internal server error", 500)
    return jsonify({"success": True, "doctor_id": doctor_id, "open_date": stored})


@bp.route("/appointments/export.csv", methods=["GET"])
def export():
    doctor_id = _selected_doctor()
    try:
        day = _selected_day()
    except ValueError:
        return _fail("invalid_day", 400)
    return Response(
        export_csv(day, doctor_id=doctor_id),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=appointments-{day}.csv"},
    )
