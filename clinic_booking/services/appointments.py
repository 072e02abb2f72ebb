"""Appointment booking and day re-packing on top of SQLite."""

from __future__ import annotations

import csv
import io
import sqlite3
import uuid
from datetime import date, datetime
from typing import Any, Mapping

from flask import current_app

from clinic_booking.services.audit import write_event
from clinic_booking.services.clock import add_minutes
from clinic_booking.services.database import db, immediate_transaction
from clinic_booking.services.scheduling import (
    DEFAULT_TIMINGS,
    EMERGENCY_CONTACT,
    Appointment,
    AppointmentError,
    BookingDecision,
    DoctorTimings,
    InvalidTimings,
    RescheduleResult,
    SchedulingConfig,
    SlotAllocator,
    UnknownReason,
    active_only,
    is_completed,
)

CSV_HEADERS = ["Name", "Pin", "Concern", "Reason", "Contact", "Serial", "Time", "Date"]


class AppointmentNotFound(AppointmentError):
    """Raised when an appointment cannot be located."""


class AppointmentConflict(AppointmentError):
    """Raised when storage rejects a booking that raced another one."""


class UnknownDoctor(AppointmentError):
    """Raised for a doctor slug that is not configured."""


class BookingRejected(AppointmentError):
    """Raised when the allocator refuses a booking."""

    def __init__(self, decision: BookingDecision) -> None:
        super().__init__(decision.error)
        self.decision = decision


def _slugify(label: str) -> str:
    keep = []
    for ch in label.lower():
        if ch.isalnum():
            keep.append(ch)
        elif ch in {" ", "-", "_"}:
            keep.append("-")
    slug = "".join(keep).strip("-")
    return slug or "doctor"


def doctor_choices() -> list[tuple[str, str]]:
    doctors = current_app.config.get("BOOKING_DOCTORS") or ["On Call"]
    return [(_slugify(name), name) for name in doctors]


def require_doctor(doctor_id: str) -> str:
    if doctor_id not in dict(doctor_choices()):
        raise UnknownDoctor("invalid_doctor")
    return doctor_id


def parse_day(value: str | date | None, *, default: date | None = None) -> date:
    """``YYYY-MM-DD`` (or a date) to a date; blank means ``default``."""

    if isinstance(value, date):
        return value
    raw = (value or "").strip()
    if not raw:
        if default is None:
            raise AppointmentError("invalid_day")
        return default
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise AppointmentError("invalid_day") from None


def scheduling_config() -> SchedulingConfig:
    cfg = current_app.config
    raw_default = cfg.get("BOOKING_DEFAULT_TIMINGS")
    default_timings = DEFAULT_TIMINGS
    if raw_default:
        default_timings = DoctorTimings.from_clock(*[part.strip() for part in raw_default.split(",")]).validate()
    return SchedulingConfig(
        daily_limit=int(cfg.get("BOOKING_DAILY_LIMIT", 17)),
        default_timings=default_timings,
        emergency_contact=cfg.get("BOOKING_EMERGENCY_CONTACT") or EMERGENCY_CONTACT,
        strict_break=bool(cfg.get("BOOKING_STRICT_BREAK", True)),
    )


def allocator() -> SlotAllocator:
    return SlotAllocator(scheduling_config())


def _load_day(conn: sqlite3.Connection, doctor_id: str, day: str) -> list[Appointment]:
    rows = conn.execute(
        """
        SELECT * FROM appointments
        WHERE doctor_id = ? AND appointment_date = ?
        ORDER BY is_absent ASC, serial ASC
        """,
        (doctor_id, day),
    ).fetchall()
    return [Appointment.from_row(row) for row in rows]


def _load_timings(conn: sqlite3.Connection, doctor_id: str, fallback: DoctorTimings) -> DoctorTimings:
    row = conn.execute(
        "SELECT start_time, break_start, break_end, end_time FROM doctor_timings WHERE doctor_id = ?",
        (doctor_id,),
    ).fetchone()
    if not row:
        return fallback
    return DoctorTimings.from_mapping(dict(row))


def _get_appointment_row(conn: sqlite3.Connection, appt_id: str) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM appointments WHERE id = ?", (appt_id,)).fetchone()
    if not row:
        raise AppointmentNotFound(appt_id)
    return row


def serialize(appt: Appointment, *, allocator_: SlotAllocator | None = None, now: datetime | None = None) -> dict[str, Any]:
    slot = allocator_ or allocator()
    payload = appt.as_dict()
    payload["end_time"] = add_minutes(appt.time, slot.duration_for(appt.reason))
    payload["is_completed"] = is_completed(appt, now)
    return payload


def _persist_repack(conn: sqlite3.Connection, result: RescheduleResult) -> None:
    """Replace the stored active set of a day with ``result``."""

    for appt in result.dropped:
        conn.execute("DELETE FROM appointments WHERE id = ?", (appt.id,))
    # Park serials out of range first so the unique (doctor, day, serial) index
    # never sees two active rows sharing a number mid-update.
    for appt in result.appointments:
        conn.execute("UPDATE appointments SET serial = -serial WHERE id = ?", (appt.id,))
    for appt in result.appointments:
        conn.execute(
            "UPDATE appointments SET serial = ?, time = ?, updated_at = datetime('now') WHERE id = ?",
            (appt.serial, appt.time, appt.id),
        )


def _repack(
    conn: sqlite3.Connection,
    slot: SlotAllocator,
    doctor_id: str,
    day: str,
    timings: DoctorTimings,
) -> RescheduleResult:
    result = slot.reschedule_all_appointments(_load_day(conn, doctor_id, day), timings)
    _persist_repack(conn, result)
    if result.dropped:
        current_app.logger.warning(
            "Re-pack for %s on %s dropped %d appointment(s): %s",
            doctor_id,
            day,
            len(result.dropped),
            ", ".join(f"#{appt.serial} {appt.id}" for appt in result.dropped),
        )
    return result


def _report(result: RescheduleResult, slot: SlotAllocator) -> dict[str, Any]:
    return {
        "appointments": [serialize(appt, allocator_=slot) for appt in result.appointments],
        "dropped": [serialize(appt, allocator_=slot) for appt in result.dropped],
    }


def list_for_day(day: str, *, doctor_id: str) -> list[dict[str, Any]]:
    slot = allocator()
    conn = db()
    try:
        appointments = _load_day(conn, doctor_id, day)
    finally:
        conn.close()
    return [serialize(appt, allocator_=slot) for appt in appointments]


def get_doctor_timings(doctor_id: str) -> DoctorTimings:
    fallback = scheduling_config().default_timings
    conn = db()
    try:
        return _load_timings(conn, doctor_id, fallback)
    finally:
        conn.close()


def save_doctor_timings(
    doctor_id: str,
    timings: DoctorTimings,
    *,
    actor_id: str | None,
    from_day: date | None = None,
) -> dict[str, dict[str, Any]]:
    """Store new working hours and re-pack every day from ``from_day`` on.

    ``from_day`` defaults to today. Returns the re-pack report keyed by date.
    """

    timings.validate()
    require_doctor(doctor_id)
    first_day = (from_day or date.today()).isoformat()
    slot = allocator()
    results: dict[str, RescheduleResult] = {}
    with immediate_transaction() as conn:
        conn.execute(
            """
            INSERT INTO doctor_timings(doctor_id, start_time, break_start, break_end, end_time, updated_at)
            VALUES (?, ?, ?, ?, ?, datetime('now'))
            ON CONFLICT(doctor_id) DO UPDATE SET
                start_time = excluded.start_time,
                break_start = excluded.break_start,
                break_end = excluded.break_end,
                end_time = excluded.end_time,
                updated_at = excluded.updated_at
            """,
            (doctor_id, timings.start_time, timings.break_start, timings.break_end, timings.end_time),
        )
        days = conn.execute(
            """
            SELECT DISTINCT appointment_date FROM appointments
            WHERE doctor_id = ? AND appointment_date >= ?
            ORDER BY appointment_date
            """,
            (doctor_id, first_day),
        ).fetchall()
        for row in days:
            day = row["appointment_date"]
            results[day] = _repack(conn, slot, doctor_id, day, timings)
        write_event(
            actor_id,
            "timings.update",
            entity="doctor",
            entity_id=doctor_id,
            meta={**timings.as_dict(), "from_day": first_day, "days_repacked": len(results)},
            conn=conn,
        )
    return {day: _report(result, slot) for day, result in results.items()}


def _load_open_date(conn: sqlite3.Connection, doctor_id: str) -> str | None:
    row = conn.execute("SELECT open_date FROM doctor_open_dates WHERE doctor_id = ?", (doctor_id,)).fetchone()
    return row["open_date"] if row else None


def get_open_date(doctor_id: str) -> str | None:
    """The one date a doctor takes bookings for, or ``None`` for any day from today."""

    conn = db()
    try:
        return _load_open_date(conn, require_doctor(doctor_id))
    finally:
        conn.close()


def set_open_date(doctor_id: str, day: date | None, *, actor_id: str | None) -> str | None:
    """Open ``day`` for booking; ``None`` clears the restriction."""

    require_doctor(doctor_id)
    if day is not None and day < date.today():
        raise AppointmentError("past_day")
    open_date = day.isoformat() if day else None
    with immediate_transaction() as conn:
        if open_date is None:
            conn.execute("DELETE FROM doctor_open_dates WHERE doctor_id = ?", (doctor_id,))
        else:
            conn.execute(
                """
                INSERT INTO doctor_open_dates(doctor_id, open_date, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(doctor_id) DO UPDATE SET
                    open_date = excluded.open_date,
                    updated_at = excluded.updated_at
                """,
                (doctor_id, open_date),
            )
        write_event(
            actor_id,
            "open_date.update",
            entity="doctor",
            entity_id=doctor_id,
            meta={"open_date": open_date},
            conn=conn,
        )
    current_app.logger.info("Open date for %s set to %s", doctor_id, open_date or "any")
    return open_date


def _day_decision(day: date, open_date: str | None) -> BookingDecision:
    if day < date.today():
        return BookingDecision(False, "Bookings for past days are closed.", "day_closed")
    if open_date and day.isoformat() != open_date:
        return BookingDecision(False, f"Bookings are open for {open_date} only.", "day_closed")
    return BookingDecision(True)


def booking_preview(doctor_id: str, day: str | date | None, reason: str) -> dict[str, Any]:
    """What a booking made now would get, without holding a lock.

    A blank ``day`` means the doctor's open date, or today.
    """

    require_doctor(doctor_id)
    slot = allocator()
    slot.duration_for(reason)
    conn = db()
    try:
        open_date = _load_open_date(conn, doctor_id)
        when = parse_day(day, default=date.fromisoformat(open_date) if open_date else date.today())
        day = when.isoformat()
        appointments = _load_day(conn, doctor_id, day)
        timings = _load_timings(conn, doctor_id, slot.config.default_timings)
    finally:
        conn.close()
    active = active_only(appointments)
    decision = _day_decision(when, open_date)
    if decision.can_book:
        # No PIN yet, so only capacity and end-of-day can refuse.
        decision = slot.can_book_appointment(active, "", day, reason, timings)
    time = slot.calculate_appointment_time(active, reason, timings) if decision.can_book else None
    return {
        "doctor_id": doctor_id,
        "date": day,
        "reason": reason,
        "can_book": decision.can_book,
        "code": decision.code,
        "error": decision.error,
        "time": time,
        "serial": slot.next_serial(active) if time else None,
        "remaining": max(slot.config.daily_limit - len(active), 0),
        "timings": timings.as_dict(),
    }


def book_appointment(form_data: Mapping[str, str], *, actor_id: str | None) -> dict[str, Any]:
    """Decide, place and insert a booking inside one write transaction.

    Without a ``day`` the booking goes to the doctor's open date, or today.
    """

    doctor_id = require_doctor((form_data.get("doctor_id") or "").strip())
    requested_day = form_data.get("day")
    name = (form_data.get("name") or "").strip()
    pin = (form_data.get("pin") or "").strip()
    reason = (form_data.get("reason") or "").strip()
    if not name:
        raise AppointmentError("name_required")
    if not pin:
        raise AppointmentError("pin_required")

    slot = allocator()
    slot.duration_for(reason)
    try:
        with immediate_transaction() as conn:
            open_date = _load_open_date(conn, doctor_id)
            when = parse_day(requested_day, default=date.fromisoformat(open_date) if open_date else date.today())
            day = when.isoformat()
            decision = _day_decision(when, open_date)
            if not decision.can_book:
                raise BookingRejected(decision)
            appointments = _load_day(conn, doctor_id, day)
            timings = _load_timings(conn, doctor_id, slot.config.default_timings)
            decision = slot.can_book_appointment(appointments, pin, day, reason, timings)
            if not decision.can_book:
                raise BookingRejected(decision)
            active = active_only(appointments)
            appt = Appointment(
                id=str(uuid.uuid4()),
                name=name,
                pin=pin,
                concern=(form_data.get("concern") or "").strip(),
                reason=reason,
                contact=(form_data.get("contact") or "").strip(),
                serial=slot.next_serial(active),
                time=slot.calculate_appointment_time(active, reason, timings),
                date=day,
                doctor_id=doctor_id,
            )
            conn.execute(
                """
                INSERT INTO appointments(
                    id, doctor_id, patient_name, pin, concern, reason, contact,
                    serial, time, appointment_date, is_absent, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, datetime('now'), datetime('now'))
                """,
                (
                    appt.id,
                    appt.doctor_id,
                    appt.name,
                    appt.pin,
                    appt.concern,
                    appt.reason,
                    appt.contact,
                    appt.serial,
                    appt.time,
                    appt.date,
                ),
            )
            write_event(
                actor_id,
                "appointment.book",
                entity="appointment",
                entity_id=appt.id,
                meta={"doctor_id": doctor_id, "date": day, "serial": appt.serial, "time": appt.time, "pin": pin},
                conn=conn,
            )
    except sqlite3.IntegrityError as exc:
        raise AppointmentConflict("booking_conflict") from exc

    current_app.logger.info("Booked %s serial %s at %s on %s", doctor_id, appt.serial, appt.time, day)
    return serialize(appt, allocator_=slot)


def _mutate_and_repack(appt_id: str, statement: str, action: str, *, actor_id: str | None) -> dict[str, Any]:
    slot = allocator()
    with immediate_transaction() as conn:
        row = _get_appointment_row(conn, appt_id)
        doctor_id, day = row["doctor_id"], row["appointment_date"]
        conn.execute(statement, (appt_id,))
        timings = _load_timings(conn, doctor_id, slot.config.default_timings)
        result = _repack(conn, slot, doctor_id, day, timings)
        write_event(
            actor_id,
            action,
            entity="appointment",
            entity_id=appt_id,
            meta={"doctor_id": doctor_id, "date": day, "dropped": len(result.dropped)},
            conn=conn,
        )
    return {"doctor_id": doctor_id, "date": day, **_report(result, slot)}


def mark_absent(appt_id: str, *, actor_id: str | None) -> dict[str, Any]:
    """Flag a patient absent and close the gap behind them."""

    return _mutate_and_repack(
        appt_id,
        "UPDATE appointments SET is_absent = 1, updated_at = datetime('now') WHERE id = ?",
        "appointment.absent",
        actor_id=actor_id,
    )


def cancel_appointment(appt_id: str, *, actor_id: str | None) -> dict[str, Any]:
    return _mutate_and_repack(
        appt_id,
        "DELETE FROM appointments WHERE id = ?",
        "appointment.cancel",
        actor_id=actor_id,
    )


def reschedule_day(doctor_id: str, day: str | date) -> dict[str, Any]:
    require_doctor(doctor_id)
    day = parse_day(day).isoformat()
    slot = allocator()
    with immediate_transaction() as conn:
        timings = _load_timings(conn, doctor_id, slot.config.default_timings)
        result = _repack(conn, slot, doctor_id, day, timings)
    return {"doctor_id": doctor_id, "date": day, **_report(result, slot)}


def export_csv(day: str, *, doctor_id: str) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC)
    writer.writerow(CSV_HEADERS)
    for appt in list_for_day(day, doctor_id=doctor_id):
        writer.writerow(
            [appt["name"], appt["pin"], appt["concern"], appt["reason"], appt["contact"], appt["serial"], appt["time"], appt["date"]]
        )
    return buffer.getvalue()
