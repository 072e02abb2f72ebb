"""Flask CLI commands for migrations and day maintenance."""

from __future__ import annotations

from datetime import date, datetime

import click
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from clinic_booking.services.appointments import (
    doctor_choices,
    get_doctor_timings,
    list_for_day,
    reschedule_day,
    save_doctor_timings,
    set_open_date,
)
from clinic_booking.services.migrations import run_migrations
from clinic_booking.services.scheduling import AppointmentError, DoctorTimings, InvalidTimings


def _doctor_option(value: str | None) -> str:
    doctors = dict(doctor_choices())
    doctor_id = value or next(iter(doctors))
    if doctor_id not in doctors:
        raise click.BadParameter(f"unknown doctor '{doctor_id}' (known: {', '.join(doctors)})")
    return doctor_id


def _print_day(rows: list[dict]) -> None:
    if not rows:
        click.echo("No appointments.")
        return
    for row in rows:
        flag = " [absent]" if row["is_absent"] else ""
        click.echo(f"{row['serial']:>3}  {row['time']}-{row['end_time']}  {row['reason']:<12} {row['name']}{flag}")


def register_cli(app) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        run_migrations(current_app._get_current_object())

    app.cli.add_command(db_group)

    @app.cli.command("show-day")
    @click.option("--doctor", default=None, help="Doctor slug (defaults to the first configured doctor)")
    @click.option("--day", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Defaults to today")
    @with_appcontext
    def show_day(doctor: str | None, day: datetime | None) -> None:
        doctor_id = _doctor_option(doctor)
        day = (day.date() if day else date.today()).isoformat()
        timings = get_doctor_timings(doctor_id)
        click.echo(
            f"{doctor_id} {day}: {timings.start_time}-{timings.end_time}, "
            f"break {timings.break_start}-{timings.break_end}"
        )
        _print_day(list_for_day(day, doctor_id=doctor_id))

    @app.cli.command("reschedule-day")
    @click.option("--doctor", default=None)
    @click.option("--day", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Defaults to today")
    @with_appcontext
    def reschedule_day_cmd(doctor: str | None, day: datetime | None) -> None:
        doctor_id = _doctor_option(doctor)
        report = reschedule_day(doctor_id, day.date() if day else date.today())
        _print_day(report["appointments"])
        for row in report["dropped"]:
            click.echo(f"Dropped: {row['name']} ({row['reason']}), was serial {row['serial']}", err=True)

    @app.cli.command("set-timings")
    @click.option("--doctor", default=None)
    @click.option("--start", "start_time", required=True)
    @click.option("--break-start", required=True)
    @click.option("--break-end", required=True)
    @click.option("--end", "end_time", required=True)
    @click.option("--from-day", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Re-pack from this date, defaults to today")
    @with_appcontext
    def set_timings(
        doctor: str | None,
        start_time: str,
        break_start: str,
        break_end: str,
        end_time: str,
        from_day: datetime | None,
    ) -> None:
        doctor_id = _doctor_option(doctor)
        try:
            timings = DoctorTimings.from_mapping(
                {"start_time": start_time, "break_start": break_start, "break_end": break_end, "end_time": end_time}
            )
            report = save_doctor_timings(
                doctor_id,
                timings,
                actor_id="cli",
                from_day=from_day.date() if from_day else None,
            )
        except InvalidTimings as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Timings for {doctor_id} saved; {len(report)} day(s) re-packed.")
        for day, result in report.items():
            if result["dropped"]:
                click.echo(f"{day}: {len(result['dropped'])} appointment(s) no longer fit", err=True)

    @app.cli.command("set-open-date")
    @click.option("--doctor", default=None)
    @click.option("--day", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
    @click.option("--clear", is_flag=True, help="Accept bookings for any day from today on")
    @with_appcontext
    def set_open_date_cmd(doctor: str | None, day: datetime | None, clear: bool) -> None:
        doctor_id = _doctor_option(doctor)
        if clear == (day is not None):
            raise click.UsageError("pass either --day or --clear")
        try:
            stored = set_open_date(doctor_id, None if clear else day.date(), actor_id="cli")
        except AppointmentError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"{doctor_id} takes bookings for {stored or 'any day from today'}.")
