"""Serial slot allocation for a doctor's day.

Appointments are packed back to back from the doctor's start time in booking
order. A slot that would start inside the break is pushed to the end of the
break, and anything that would finish after the end of the day does not fit.
Nothing here touches storage: callers hand in the day's appointments and
persist whatever comes back.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date as date_cls, datetime
from typing import Any, Iterable, Mapping

from clinic_booking.services.clock import (
    add_minutes,
    format_clock,
    overlaps_break,
    parse_clock,
    skip_break_if_needed,
)


APPOINTMENT_DURATIONS: dict[str, int] = {
    "New Patient": 10,
    "Follow-up": 7,
    "Follow Up": 7,
    "Report Show": 12,
}

REASONS = ("Follow-up", "New Patient", "Report Show")

CONCERNS = ("OG", "OPL", "Udvash", "Unmesh", "Uttoron", "Rokomari")

DAILY_LIMIT = 17

EMERGENCY_CONTACT = "01708166012"


class AppointmentError(Exception):
    """Base exception for appointment operations."""


class UnknownReason(AppointmentError):
    """Raised when a visit reason has no configured duration."""


class InvalidTimings(AppointmentError):
    """Raised when a doctor's working hours are out of order."""


@dataclass(frozen=True)
class DoctorTimings:
    """Working hours for one doctor, held as minutes since midnight."""

    start_minutes: int
    break_start_minutes: int
    break_end_minutes: int
    end_minutes: int

    @classmethod
    def from_clock(cls, start_time: str, break_start: str, break_end: str, end_time: str) -> "DoctorTimings":
        return cls(
            parse_clock(start_time),
            parse_clock(break_start),
            parse_clock(break_end),
            parse_clock(end_time),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DoctorTimings":
        """Build from stored rows or payloads (snake_case or camelCase keys)."""

        def pick(*keys: str) -> str:
            for key in keys:
                value = data.get(key)
                if value:
                    return value
            raise InvalidTimings(f"missing_field:{keys[0]}")

        try:
            return cls.from_clock(
                pick("start_time", "startTime"),
                pick("break_start", "breakStart"),
                pick("break_end", "breakEnd"),
                pick("end_time", "endTime"),
            )
        except ValueError as exc:
            raise InvalidTimings(str(exc)) from exc

    @property
    def start_time(self) -> str:
        return format_clock(self.start_minutes)

    @property
    def break_start(self) -> str:
        return format_clock(self.break_start_minutes)

    @property
    def break_end(self) -> str:
        return format_clock(self.break_end_minutes)

    @property
    def end_time(self) -> str:
        return format_clock(self.end_minutes)

    def problem(self) -> str | None:
        if self.break_start_minutes <= self.start_minutes:
            return "Break start must be after doctor start time"
        if self.break_end_minutes <= self.break_start_minutes:
            return "Break end must be after break start"
        if self.end_minutes <= self.break_end_minutes:
            return "End time must be after break end"
        return None

    def validate(self) -> "DoctorTimings":
        message = self.problem()
        if message:
            raise InvalidTimings(message)
        return self

    def as_dict(self) -> dict[str, str]:
        return {
            "start_time": self.start_time,
            "break_start": self.break_start,
            "break_end": self.break_end,
            "end_time": self.end_time,
        }


DEFAULT_TIMINGS = DoctorTimings.from_clock("11:00", "13:15", "14:30", "16:30")


@dataclass(frozen=True)
class Appointment:
    id: str
    name: str
    pin: str
    concern: str
    reason: str
    contact: str
    serial: int
    time: str
    date: str
    is_absent: bool = False
    doctor_id: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Appointment":
        return cls(
            id=row["id"],
            name=row["patient_name"],
            pin=row["pin"],
            concern=row["concern"] or "",
            reason=row["reason"],
            contact=row["contact"] or "",
            serial=int(row["serial"]),
            time=row["time"],
            date=row["appointment_date"],
            is_absent=bool(row["is_absent"]),
            doctor_id=row["doctor_id"],
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_completed(appointment: Appointment, now: datetime | None = None) -> bool:
    """An appointment counts as completed once its scheduled start has passed."""

    now = now or datetime.now()
    day = date_cls.fromisoformat(appointment.date)
    minutes = parse_clock(appointment.time)
    starts_at = datetime(day.year, day.month, day.day, minutes // 60, minutes % 60)
    return starts_at <= now


@dataclass(frozen=True)
class BookingDecision:
    can_book: bool
    error: str | None = None
    code: str | None = None


@dataclass
class RescheduleResult:
    appointments: list[Appointment] = field(default_factory=list)
    dropped: list[Appointment] = field(default_factory=list)


@dataclass(frozen=True)
class SchedulingConfig:
    durations: Mapping[str, int] = field(default_factory=lambda: dict(APPOINTMENT_DURATIONS))
    daily_limit: int = DAILY_LIMIT
    default_timings: DoctorTimings = DEFAULT_TIMINGS
    emergency_contact: str = EMERGENCY_CONTACT
    # False keeps the legacy rule: only a start inside the break is moved.
    strict_break: bool = True


def active_only(appointments: Iterable[Appointment]) -> list[Appointment]:
    return [appt for appt in appointments if not appt.is_absent]


class SlotAllocator:
    """Pure scheduling decisions over one date's appointments."""

    def __init__(self, config: SchedulingConfig | None = None) -> None:
        self.config = config or SchedulingConfig()

    def duration_for(self, reason: str) -> int:
        try:
            return int(self.config.durations[reason])
        except KeyError:
            raise UnknownReason(reason) from None

    def _place(self, cursor: int, duration: int, timings: DoctorTimings) -> int:
        start = skip_break_if_needed(cursor, timings)
        if self.config.strict_break and overlaps_break(start, duration, timings):
            start = timings.break_end_minutes
        return start

    def calculate_appointment_time(
        self,
        appointments: Iterable[Appointment],
        reason: str,
        timings: DoctorTimings,
    ) -> str | None:
        """Start time for a new booking after ``appointments``, or ``None`` if it won't fit."""

        duration = self.duration_for(reason)
        ordered = sorted(active_only(appointments), key=lambda appt: parse_clock(appt.time))

        cursor = timings.start_minutes
        if ordered:
            last = ordered[-1]
            cursor = add_minutes(parse_clock(last.time), self.duration_for(last.reason))

        start = self._place(cursor, duration, timings)
        if add_minutes(start, duration) > timings.end_minutes:
            return None
        return format_clock(start)

    def next_serial(self, appointments: Iterable[Appointment]) -> int:
        return len(active_only(appointments)) + 1

    def can_book_appointment(
        self,
        appointments: Iterable[Appointment],
        pin: str,
        date: str,
        reason: str,
        timings: DoctorTimings,
    ) -> BookingDecision:
        day_active = [appt for appt in active_only(appointments) if appt.date == date]

        if len(day_active) >= self.config.daily_limit:
            return BookingDecision(
                False,
                "Today's limit is filled up. If emergency, please contact: "
                f"{self.config.emergency_contact}.",
                "capacity_exceeded",
            )

        if any(appt.pin == pin for appt in day_active):
            return BookingDecision(
                False,
                "You have already booked an appointment today with this PIN.",
                "duplicate_pin",
            )

        if self.calculate_appointment_time(day_active, reason, timings) is None:
            return BookingDecision(
                False,
                "Cannot schedule: Exceeds doctor availability.",
                "schedule_exhausted",
            )

        return BookingDecision(True)

    def reschedule_all_appointments(
        self,
        appointments: Iterable[Appointment],
        timings: DoctorTimings,
    ) -> RescheduleResult:
        """Re-pack one date's active appointments from the start of the day.

        Booking order (current serial) is kept. Appointments that no longer
        fit before the end of the day are left out of ``appointments`` and
        listed in ``dropped`` instead.
        """

        result = RescheduleResult()
        cursor = timings.start_minutes
        for appt in sorted(active_only(appointments), key=lambda item: item.serial):
            duration = self.duration_for(appt.reason)
            start = self._place(cursor, duration, timings)
            if add_minutes(start, duration) > timings.end_minutes:
                result.dropped.append(appt)
                continue
            result.appointments.append(
                replace(appt, time=format_clock(start), serial=len(result.appointments) + 1)
            )
            cursor = add_minutes(start, duration)
        return result
