from datetime import datetime
from itertools import cycle, islice

import pytest

from clinic_booking.services.clock import add_minutes, parse_clock
from clinic_booking.services.scheduling import (
    DAILY_LIMIT,
    DEFAULT_TIMINGS,
    Appointment,
    DoctorTimings,
    InvalidTimings,
    SchedulingConfig,
    SlotAllocator,
    UnknownReason,
    is_completed,
)

DAY = "2025-03-10"


def _appt(serial: int, time: str, reason: str = "New Patient", *, pin: str | None = None, absent: bool = False) -> Appointment:
    return Appointment(
        id=f"appt-{serial}",
        name=f"Patient {serial}",
        pin=pin or f"{1000 + serial}",
        concern="OG",
        reason=reason,
        contact="01000000000",
        serial=serial,
        time=time,
        date=DAY,
        is_absent=absent,
        doctor_id="dr-lina",
    )


def _book_sequence(allocator: SlotAllocator, reasons, timings: DoctorTimings) -> list[Appointment]:
    booked: list[Appointment] = []
    for reason in reasons:
        time = allocator.calculate_appointment_time(booked, reason, timings)
        assert time is not None
        booked.append(_appt(allocator.next_serial(booked), time, reason))
    return booked


@pytest.fixture
def allocator():
    return SlotAllocator()


def test_first_booking_starts_at_doctor_start(allocator):
    assert allocator.calculate_appointment_time([], "New Patient", DEFAULT_TIMINGS) == "11:00"


def test_next_booking_follows_last_by_time_not_list_order(allocator):
    existing = [_appt(2, "11:10", "Report Show"), _appt(1, "11:00")]
    assert allocator.calculate_appointment_time(existing, "Follow-up", DEFAULT_TIMINGS) == "11:22"


def test_absent_records_do_not_hold_time(allocator):
    existing = [_appt(1, "11:00"), _appt(2, "11:10", absent=True)]
    assert allocator.calculate_appointment_time(existing, "Follow-up", DEFAULT_TIMINGS) == "11:10"


def test_break_avoidance_pushes_straddling_visit_to_break_end(allocator):
    timings = DoctorTimings.from_clock("09:00", "12:00", "13:00", "17:00")
    existing = [_appt(1, "11:45")]  # ends 11:55
    assert allocator.calculate_appointment_time(existing, "New Patient", timings) == "13:00"


def test_start_inside_break_moves_to_break_end(allocator):
    existing = [_appt(1, "13:10")]  # ends 13:20, inside the break
    assert allocator.calculate_appointment_time(existing, "Follow-up", DEFAULT_TIMINGS) == "14:30"


def test_legacy_start_only_rule_lets_a_visit_straddle_the_break():
    legacy = SlotAllocator(SchedulingConfig(strict_break=False))
    existing = [_appt(1, "12:58", "Report Show")]  # ends 13:10
    assert legacy.calculate_appointment_time(existing, "New Patient", DEFAULT_TIMINGS) == "13:10"
    assert SlotAllocator().calculate_appointment_time(existing, "New Patient", DEFAULT_TIMINGS) == "14:30"


def test_end_of_day_rejection(allocator):
    existing = [_appt(1, "16:13")]  # ends 16:23
    assert allocator.calculate_appointment_time(existing, "Report Show", DEFAULT_TIMINGS) is None
    assert allocator.calculate_appointment_time(existing, "Follow-up", DEFAULT_TIMINGS) == "16:23"


def test_visit_ending_exactly_at_end_time_fits(allocator):
    existing = [_appt(1, "16:08", "Report Show")]  # ends 16:20
    assert allocator.calculate_appointment_time(existing, "New Patient", DEFAULT_TIMINGS) == "16:20"


def test_unknown_reason_is_rejected(allocator):
    with pytest.raises(UnknownReason):
        allocator.calculate_appointment_time([], "Checkup", DEFAULT_TIMINGS)


def test_both_follow_up_spellings_share_a_duration(allocator):
    assert allocator.duration_for("Follow-up") == allocator.duration_for("Follow Up") == 7


def test_scenario_sequential_bookings_and_break_skip(allocator):
    timings = DoctorTimings.from_clock("10:00", "13:00", "14:00", "16:00")
    booked = _book_sequence(allocator, ["New Patient", "Follow-up"], timings)
    assert [(a.serial, a.time) for a in booked] == [(1, "10:00"), (2, "10:10")]

    # 9 x 12 + 6 x 10 + 1 x 7 minutes from 10:00 lands the cursor on 12:55.
    reasons = ["Report Show"] * 9 + ["New Patient"] * 6 + ["Follow-up"]
    booked = _book_sequence(allocator, reasons, timings)
    last = booked[-1]
    assert add_minutes(last.time, allocator.duration_for(last.reason)) == "12:55"
    assert allocator.calculate_appointment_time(booked, "New Patient", timings) == "14:00"


def test_can_book_capacity_boundary(allocator):
    existing = [_appt(i, "11:00") for i in range(1, DAILY_LIMIT + 1)]
    decision = allocator.can_book_appointment(existing, "9999", DAY, "Follow-up", DEFAULT_TIMINGS)
    assert not decision.can_book
    assert decision.code == "capacity_exceeded"
    assert "01708166012" in decision.error


def test_can_book_ignores_absent_and_other_days_for_capacity(allocator):
    existing = [_appt(i, "11:00", absent=True) for i in range(1, DAILY_LIMIT + 1)]
    other_day = Appointment(**{**_appt(99, "11:00").as_dict(), "date": "2025-03-11"})
    decision = allocator.can_book_appointment(existing + [other_day], "9999", DAY, "Follow-up", DEFAULT_TIMINGS)
    assert decision.can_book


def test_can_book_rejects_duplicate_pin(allocator):
    existing = [_appt(1, "11:00", pin="4321")]
    decision = allocator.can_book_appointment(existing, "4321", DAY, "Follow-up", DEFAULT_TIMINGS)
    assert (decision.can_book, decision.code) == (False, "duplicate_pin")


def test_absent_pin_can_book_again(allocator):
    existing = [_appt(1, "11:00", pin="4321", absent=True)]
    assert allocator.can_book_appointment(existing, "4321", DAY, "Follow-up", DEFAULT_TIMINGS).can_book


def test_can_book_rejects_when_schedule_exhausted(allocator):
    existing = [_appt(1, "16:13")]
    decision = allocator.can_book_appointment(existing, "9999", DAY, "Report Show", DEFAULT_TIMINGS)
    assert (decision.can_book, decision.code) == (False, "schedule_exhausted")
    assert decision.error == "Cannot schedule: Exceeds doctor availability."


def test_capacity_check_wins_over_duplicate_pin():
    small = SlotAllocator(SchedulingConfig(daily_limit=1))
    existing = [_appt(1, "11:00", pin="4321")]
    decision = small.can_book_appointment(existing, "4321", DAY, "Follow-up", DEFAULT_TIMINGS)
    assert decision.code == "capacity_exceeded"


def test_custom_emergency_contact_in_capacity_message():
    small = SlotAllocator(SchedulingConfig(daily_limit=1, emergency_contact="999"))
    decision = small.can_book_appointment([_appt(1, "11:00")], "1", DAY, "Follow-up", DEFAULT_TIMINGS)
    assert decision.error.endswith("please contact: 999.")


def test_reschedule_after_absence_closes_the_gap(allocator):
    day = [_appt(1, "11:00"), _appt(2, "11:10", absent=True), _appt(3, "11:20")]
    result = allocator.reschedule_all_appointments(day, DEFAULT_TIMINGS)
    assert [(a.id, a.serial, a.time) for a in result.appointments] == [
        ("appt-1", 1, "11:00"),
        ("appt-3", 2, "11:10"),
    ]
    assert result.dropped == []


def test_reschedule_orders_by_serial_not_time(allocator):
    day = [_appt(2, "11:00", "Follow-up"), _appt(1, "15:00", "Report Show")]
    result = allocator.reschedule_all_appointments(day, DEFAULT_TIMINGS)
    assert [(a.id, a.time) for a in result.appointments] == [("appt-1", "11:00"), ("appt-2", "11:12")]


def test_reschedule_serials_are_dense(allocator):
    day = [_appt(3, "11:00"), _appt(5, "11:10", absent=True), _appt(7, "11:20"), _appt(9, "11:30")]
    result = allocator.reschedule_all_appointments(day, DEFAULT_TIMINGS)
    assert [a.serial for a in result.appointments] == [1, 2, 3]


def test_reschedule_reports_dropped_and_keeps_cursor(allocator):
    timings = DoctorTimings.from_clock("11:00", "11:30", "11:45", "12:05")
    day = [_appt(i, "11:00", "Report Show") for i in range(1, 5)] + [_appt(5, "11:00", "Follow-up")]
    result = allocator.reschedule_all_appointments(day, timings)
    assert [(a.id, a.serial, a.time) for a in result.appointments] == [
        ("appt-1", 1, "11:00"),
        ("appt-2", 2, "11:12"),
        ("appt-3", 3, "11:45"),
        ("appt-5", 4, "11:57"),
    ]
    assert [a.id for a in result.dropped] == ["appt-4"]


def test_reschedule_is_idempotent(allocator):
    day = [_appt(i, "11:00", reason) for i, reason in enumerate(
        ["New Patient", "Report Show", "Follow-up", "Report Show", "New Patient"], start=1
    )]
    first = allocator.reschedule_all_appointments(day, DEFAULT_TIMINGS)
    second = allocator.reschedule_all_appointments(first.appointments, DEFAULT_TIMINGS)
    assert second.appointments == first.appointments
    assert second.dropped == []


def test_reschedule_keeps_slots_contiguous_and_clear_of_break(allocator):
    reasons = list(islice(cycle(["Report Show", "New Patient", "Follow-up"]), DAILY_LIMIT))
    day = [_appt(i, "11:00", reason) for i, reason in enumerate(reasons, start=1)]
    timings = DEFAULT_TIMINGS
    placed = allocator.reschedule_all_appointments(day, timings).appointments

    assert [a.serial for a in placed] == list(range(1, len(placed) + 1))
    for current, following in zip(placed, placed[1:]):
        assert parse_clock(current.time) + allocator.duration_for(current.reason) <= parse_clock(following.time)
    for appt in placed:
        start = parse_clock(appt.time)
        end = start + allocator.duration_for(appt.reason)
        assert end <= timings.break_start_minutes or start >= timings.break_end_minutes
        assert timings.start_minutes <= start and end <= timings.end_minutes


def test_reschedule_does_not_mutate_input(allocator):
    original = _appt(4, "15:00")
    allocator.reschedule_all_appointments([original], DEFAULT_TIMINGS)
    assert (original.serial, original.time) == (4, "15:00")


def test_timings_validation_messages():
    assert DEFAULT_TIMINGS.problem() is None
    with pytest.raises(InvalidTimings, match="Break start must be after doctor start time"):
        DoctorTimings.from_clock("13:00", "12:00", "14:00", "16:00").validate()
    with pytest.raises(InvalidTimings, match="Break end must be after break start"):
        DoctorTimings.from_clock("10:00", "13:00", "13:00", "16:00").validate()
    with pytest.raises(InvalidTimings, match="End time must be after break end"):
        DoctorTimings.from_clock("10:00", "12:00", "13:00", "13:00").validate()


def test_timings_from_mapping_accepts_camel_case_and_pads():
    timings = DoctorTimings.from_mapping(
        {"startTime": "9:00", "breakStart": "12:00", "breakEnd": "13:00", "endTime": "17:00"}
    )
    assert timings.as_dict() == {
        "start_time": "09:00",
        "break_start": "12:00",
        "break_end": "13:00",
        "end_time": "17:00",
    }
    with pytest.raises(InvalidTimings):
        DoctorTimings.from_mapping({"start_time": "9:00"})


def test_is_completed_once_start_has_passed():
    appt = _appt(1, "09:00")
    assert is_completed(appt, datetime(2025, 3, 10, 9, 0))
    assert not is_completed(appt, datetime(2025, 3, 10, 8, 59))
