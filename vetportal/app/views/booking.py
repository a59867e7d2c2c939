"""Booking screens shared by the staff and portal appointment views."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from flask import flash, redirect, render_template, request, url_for
from flask.typing import ResponseReturnValue

from vetportal.app.models import Appointment
from vetportal.app.services.api_client import ApiClient, ApiError, error_message
from vetportal.app.services.booking import (
    CANCEL_CONFIRMATION,
    DURATION_OPTIONS,
    AppointmentEndpoints,
    BookingChoices,
    BookingForm,
    BookingMode,
    find_appointment,
)

# Request parameter -> booking field. ``time`` is applied last so that a
# vet/date change in the same request does not wipe it.
REQUEST_FIELDS = (
    ("petId", "pet_id"),
    ("vetId", "vet_id"),
    ("date", "date"),
    ("durationMinutes", "duration_minutes"),
    ("reason", "reason"),
    ("type", "type"),
    ("notes", "notes"),
)


def apply_request_fields(form: BookingForm, values: Mapping[str, Any], *, include_time: bool) -> None:
    changes = {field: values.get(key) for key, field in REQUEST_FIELDS if key in values}
    form.update(**changes)
    if include_time and "time" in values:
        form.update(time=values.get("time"))


def booking_query(form: BookingForm, **overrides: Any) -> dict[str, Any]:
    """Query-string representation of the form, used for slot links."""

    fields = form.fields
    query = {
        "petId": fields.pet_id,
        "vetId": fields.vet_id,
        "date": fields.date,
        "durationMinutes": fields.duration_minutes,
        "reason": fields.reason,
        "type": fields.type,
        "notes": fields.notes,
    }
    query.update(overrides)
    return {key: value for key, value in query.items() if value not in (None, "")}


def load_choices(client: ApiClient, endpoints: AppointmentEndpoints, pets_path: str) -> BookingChoices:
    choices = BookingChoices()
    try:
        choices.pets = client.get(pets_path) or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load pets."), "error")
    try:
        choices.veterinarians = client.get(endpoints.veterinarians) or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load veterinarians."), "error")
    return choices


def _lookup(client: ApiClient, endpoints: AppointmentEndpoints, appointment_id: int) -> Appointment | None:
    try:
        appointment = find_appointment(client, endpoints, appointment_id)
    except ApiError as exc:
        flash(error_message(exc, "Unable to load appointments."), "error")
        return None
    if appointment is None:
        flash("Appointment not found.", "error")
    return appointment


def booking_view(
    client: ApiClient,
    endpoints: AppointmentEndpoints,
    appointment_id: int | None,
    *,
    pets_path: str,
    list_endpoint: str,
    on_change: Callable[[], Any] | None = None,
    availability_endpoint: str | None = None,
) -> ResponseReturnValue:
    """Render or submit the create/edit appointment form.

    With ``availability_endpoint`` the page also refreshes its slots in place
    when the vet, date or duration change.
    """

    form = BookingForm(client, endpoints)
    if appointment_id is None:
        form.open_new()
    else:
        appointment = _lookup(client, endpoints, appointment_id)
        if appointment is None:
            return redirect(url_for(list_endpoint))
        if not appointment.can_modify:
            flash("This appointment can no longer be modified.", "error")
            return redirect(url_for(list_endpoint))
        form.open_edit(appointment)

    if request.method == "POST":
        editing = form.mode is BookingMode.EDITING
        apply_request_fields(form, request.form, include_time=True)
        if form.submit():
            flash("Appointment updated." if editing else "Appointment requested.", "success")
            if on_change is not None:
                on_change()
            return redirect(url_for(list_endpoint))
        flash(form.error or "Unable to save the appointment.", "error")
        form.error = None
        form.refresh_availability()
    else:
        apply_request_fields(form, request.args, include_time=False)
        form.refresh_availability()
        chosen = request.args.get("time")
        if chosen:
            form.select_slot(chosen)

    if form.error:
        flash(form.error, "error")

    view_args = dict(request.view_args or {})
    slot_links = {
        slot.start: url_for(request.endpoint, **view_args, **booking_query(form, time=slot.start))
        for slot in form.slots
        if slot.available
    }
    return render_template(
        "booking.html",
        form=form,
        choices=load_choices(client, endpoints, pets_path),
        durations=DURATION_OPTIONS,
        slot_links=slot_links,
        cancel_url=url_for(list_endpoint),
        availability_url=url_for(availability_endpoint) if availability_endpoint else None,
        appointment_id=appointment_id,
    )


def cancel_view(
    client: ApiClient,
    endpoints: AppointmentEndpoints,
    appointment_id: int,
    *,
    list_endpoint: str,
    on_change: Callable[[], Any] | None = None,
) -> ResponseReturnValue:
    """Ask for confirmation, then cancel the appointment."""

    appointment = _lookup(client, endpoints, appointment_id)
    if appointment is None:
        return redirect(url_for(list_endpoint))

    if request.method == "GET":
        return render_template(
            "confirm.html", message=CANCEL_CONFIRMATION, cancel_url=url_for(list_endpoint)
        )

    form = BookingForm(client, endpoints)
    confirmed = form.cancel_appointment(
        appointment, confirm=lambda _message: request.form.get("confirmed") == "yes"
    )
    if confirmed:
        flash("Appointment cancelled.", "success")
        if on_change is not None:
            on_change()
    elif form.error:
        flash(form.error, "error")
    return redirect(url_for(list_endpoint))
