"""Customer portal screens."""
from __future__ import annotations

from http import HTTPStatus
from typing import Any

from flask import flash, jsonify, redirect, render_template, request, url_for
from flask.typing import ResponseReturnValue

from vetportal.app.middleware import portal_required, portal_session
from vetportal.app.services.api_client import ApiError, error_message
from vetportal.app.services.booking import (
    PORTAL_ENDPOINTS,
    BookingForm,
    find_appointment,
    load_appointments,
)
from vetportal.app.views import portal_bp
from vetportal.app.views.admin import pdf_response
from vetportal.app.views.booking import apply_request_fields, booking_view, cancel_view


def _refresh_profile() -> None:
    portal_session().refresh_profile()


@portal_bp.route("/login", methods=["GET", "POST"])
def login() -> ResponseReturnValue:
    store = portal_session()
    if request.method == "POST":
        result = store.login(request.form.get("email", ""), request.form.get("password", ""))
        if result.success:
            return redirect(url_for("portal.dashboard"))
        flash(result.message or "Invalid credentials.", "error")
    elif store.is_authenticated:
        return redirect(url_for("portal.dashboard"))
    return render_template(
        "login.html", title="Customer portal", identifier="email", register_url=url_for("portal.register")
    )


@portal_bp.route("/register", methods=["GET", "POST"])
def register() -> ResponseReturnValue:
    """Self-service account creation for clinic customers."""

    values = {key: request.form.get(key, "") for key in ("name", "email", "phone")}
    if request.method == "POST":
        password = request.form.get("password", "")
        if not values["name"].strip() or not values["email"].strip() or not password:
            flash("Name, email and password are required.", "error")
        elif password != request.form.get("confirmPassword", password):
            flash("Passwords do not match.", "error")
        else:
            result = portal_session().register(
                name=values["name"].strip(),
                email=values["email"].strip(),
                phone=values["phone"].strip(),
                password=password,
            )
            if result.success:
                return redirect(url_for("portal.dashboard"))
            flash(result.message or "Registration failed.", "error")
    return render_template("portal/register.html", values=values)


@portal_bp.post("/logout")
def logout() -> ResponseReturnValue:
    return redirect(portal_session().logout())


@portal_bp.get("/")
@portal_required
def dashboard() -> ResponseReturnValue:
    """Landing page built from the aggregate profile."""

    store = portal_session()
    profile = store.refresh_profile()
    if profile is None:
        flash("Your session has expired. Please sign in again.", "error")
        return redirect(store.login_route)
    return render_template("portal/dashboard.html", profile=profile, user=store.user)


@portal_bp.get("/pets")
@portal_required
def pets() -> ResponseReturnValue:
    try:
        items = portal_session().client.get("/portal/pets") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load your pets."), "error")
        items = []
    return render_template("portal/pets.html", pets=items)


@portal_bp.get("/pets/<int:pet_id>")
@portal_required
def pet_details(pet_id: int) -> ResponseReturnValue:
    try:
        data = portal_session().client.get(f"/portal/pets/{pet_id}/records") or {}
    except ApiError as exc:
        flash(error_message(exc, "Unable to load the pet's records."), "error")
        return redirect(url_for("portal.pets"))
    pet = data.get("pet") or {}
    return render_template(
        "records.html",
        title=f"Records: {pet.get('name', '')}",
        pet=pet,
        records=data.get("records") or [],
        vaccinations=data.get("vaccinations") or [],
    )


@portal_bp.get("/appointments")
@portal_required
def appointments() -> ResponseReturnValue:
    try:
        items = load_appointments(portal_session().client, PORTAL_ENDPOINTS)
    except ApiError as exc:
        flash(error_message(exc, "Unable to load your appointments."), "error")
        items = []
    return render_template("appointments.html", appointments=items, prefix="portal")


@portal_bp.route("/appointments/new", methods=["GET", "POST"])
@portal_bp.route("/appointments/<int:appointment_id>/edit", methods=["GET", "POST"])
@portal_required
def appointment_form(appointment_id: int | None = None) -> ResponseReturnValue:
    return booking_view(
        portal_session().client,
        PORTAL_ENDPOINTS,
        appointment_id,
        pets_path="/portal/pets",
        list_endpoint="portal.appointments",
        on_change=_refresh_profile,
        availability_endpoint="portal.availability",
    )


@portal_bp.route("/appointments/<int:appointment_id>/cancel", methods=["GET", "POST"])
@portal_required
def appointment_cancel(appointment_id: int) -> ResponseReturnValue:
    return cancel_view(
        portal_session().client,
        PORTAL_ENDPOINTS,
        appointment_id,
        list_endpoint="portal.appointments",
        on_change=_refresh_profile,
    )


@portal_bp.get("/appointments/availability")
@portal_required
def availability() -> ResponseReturnValue:
    """Reconciled availability for the booking page script.

    The caller's ``seq`` and the effective query are echoed back so that a
    response overtaken by a newer request can be recognised and dropped.
    """

    client = portal_session().client
    seq = request.args.get("seq", type=int)
    form = BookingForm(client, PORTAL_ENDPOINTS)
    appointment_id = request.args.get("appointmentId", type=int)
    editing = None
    if appointment_id is not None:
        try:
            editing = find_appointment(client, PORTAL_ENDPOINTS, appointment_id)
        except ApiError as exc:
            message = error_message(exc, "Unable to load appointments.")
            return jsonify(seq=seq, message=message, slots=[]), HTTPStatus.BAD_GATEWAY
    if editing is not None and editing.can_modify:
        form.open_edit(editing)
    else:
        form.open_new()

    apply_request_fields(form, request.args, include_time=False)
    slots = form.refresh_availability()
    if form.error:
        return jsonify(seq=seq, message=form.error, slots=[]), HTTPStatus.BAD_GATEWAY
    return jsonify(
        seq=seq,
        vetId=form.fields.vet_id,
        date=form.fields.date,
        durationMinutes=form.fields.duration_minutes,
        slots=[slot.as_dict() for slot in slots],
        time=form.fields.time or None,
    ), HTTPStatus.OK


@portal_bp.get("/invoices")
@portal_required
def invoices() -> ResponseReturnValue:
    try:
        items = portal_session().client.get("/portal/invoices") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load your invoices."), "error")
        items = []
    return render_template("invoices.html", invoices=items, prefix="portal")


@portal_bp.get("/invoices/<int:invoice_id>/pdf")
@portal_required
def invoice_pdf(invoice_id: int) -> ResponseReturnValue:
    try:
        content = portal_session().client.get_bytes(f"/portal/invoices/{invoice_id}/pdf")
    except ApiError as exc:
        flash(error_message(exc, "Unable to download the invoice."), "error")
        return redirect(url_for("portal.invoices"))
    return pdf_response(content, f"invoice-{invoice_id}.pdf")


@portal_bp.get("/plans")
@portal_required
def plans() -> ResponseReturnValue:
    """Available plans and the customer's purchase history, newest first."""

    client = portal_session().client
    available: list[dict[str, Any]] = []
    history: list[dict[str, Any]] = []
    try:
        available = client.get("/portal/plans") or []
        history = client.get("/portal/plans/history") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load plans."), "error")
    history = sorted(history, key=lambda item: item.get("createdAt") or "", reverse=True)
    return render_template("portal/plans.html", plans=available, history=history)


@portal_bp.post("/plans/checkout")
@portal_required
def plan_checkout() -> ResponseReturnValue:
    plan_id = request.form.get("planId", type=int)
    if plan_id is None:
        flash("Choose a plan.", "error")
        return redirect(url_for("portal.plans"))
    try:
        data = portal_session().client.post("/portal/plans/checkout", {"planId": plan_id}) or {}
    except ApiError as exc:
        flash(error_message(exc, "Unable to start the payment."), "error")
        return redirect(url_for("portal.plans"))

    payment_url = data.get("paymentUrl")
    flash("Payment created. Complete it and confirm below.", "success")
    if payment_url:
        return redirect(payment_url)
    return redirect(url_for("portal.plans"))


@portal_bp.post("/plans/checkout/<int:purchase_id>/confirm")
@portal_required
def plan_confirm(purchase_id: int) -> ResponseReturnValue:
    success = request.form.get("success", "true").lower() != "false"
    try:
        portal_session().client.post(
            f"/portal/plans/checkout/{purchase_id}/confirm", {"success": success}
        )
    except ApiError as exc:
        flash(error_message(exc, "Unable to confirm the payment."), "error")
    else:
        flash("Payment approved." if success else "Payment cancelled.", "success")
        _refresh_profile()
    return redirect(url_for("portal.plans"))
