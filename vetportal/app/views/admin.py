"""Staff dashboard screens."""
from __future__ import annotations

from datetime import date, timedelta
from http import HTTPStatus
from typing import Any, Mapping

from flask import Response, current_app, flash, redirect, render_template, request, url_for
from flask.typing import ResponseReturnValue
from werkzeug.utils import secure_filename

from vetportal.app.middleware import admin_session, staff_required
from vetportal.app.services.api_client import ApiError, error_message
from vetportal.app.services.booking import STAFF_ENDPOINTS, load_appointments
from vetportal.app.views import admin_bp
from vetportal.app.views.booking import booking_view, cancel_view
from vetportal.app.views.crud import (
    FormField,
    ResourceScreen,
    match_search,
    parse_fields,
    register_resource_screen,
)

PAYMENT_METHODS = {
    "efectivo": "Cash",
    "tarjeta": "Card",
    "transferencia": "Bank transfer",
    "qr": "QR",
    "billetera_digital": "Digital wallet",
}

PURCHASE_STATUSES = {"pendiente": "Pending", "pagado": "Paid", "cancelado": "Cancelled"}

ATTACHMENT_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/gif", "application/pdf"})
MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024

INVOICE_DUE_DAYS = 30

USAGE_METRICS = (
    ("users", "Users"),
    ("clients", "Clients"),
    ("pets", "Pets"),
    ("invoices", "Invoices"),
)

MEDICAL_RECORD_FIELDS = (
    FormField("diagnosis", "Diagnosis", required=True),
    FormField("treatment", "Treatment"),
    FormField("weight", "Weight (kg)", input_type="number", cast=float),
    FormField("temperature", "Temperature (°C)", input_type="number", cast=float),
    FormField("notes", "Notes"),
)

CLIENTS = ResourceScreen(
    name="clients",
    title="Clients",
    noun="client",
    endpoint="/clients",
    fields=(
        FormField("name", "Name", required=True),
        FormField("phone", "Phone", input_type="tel"),
        FormField("email", "Email", input_type="email"),
        FormField("address", "Address"),
    ),
    columns=(("name", "Name"), ("phone", "Phone"), ("email", "Email"), ("address", "Address")),
    search_keys=("name", "email", "phone"),
)

PETS = ResourceScreen(
    name="pets",
    title="Pets",
    noun="pet",
    endpoint="/pets",
    fields=(
        FormField("name", "Name", required=True),
        FormField("clientId", "Owner ID", required=True, input_type="number", cast=int),
        FormField("species", "Species", required=True),
        FormField("breed", "Breed"),
        FormField("age", "Age", input_type="number", cast=int),
        FormField("weight", "Weight (kg)", input_type="number", cast=float),
        FormField("gender", "Gender", cast=str.lower),
    ),
    columns=(("name", "Name"), ("species", "Species"), ("breed", "Breed"), ("age", "Age")),
    search_keys=("name", "species", "breed"),
)

INVENTORY = ResourceScreen(
    name="inventory",
    title="Inventory",
    noun="item",
    endpoint="/inventory",
    fields=(
        FormField("name", "Name", required=True),
        FormField("category", "Category"),
        FormField("supplier", "Supplier"),
        FormField("quantity", "Quantity", required=True, input_type="number", cast=int),
        FormField("minStock", "Minimum stock", input_type="number", cast=int),
        FormField("price", "Price", input_type="number", cast=float),
        FormField("expiryDate", "Expiry date", input_type="date"),
    ),
    columns=(
        ("name", "Name"),
        ("category", "Category"),
        ("quantity", "Quantity"),
        ("minStock", "Min. stock"),
        ("price", "Price"),
    ),
    search_keys=("name", "category"),
)

PLANS = ResourceScreen(
    name="plans",
    title="Plans",
    noun="plan",
    endpoint="/plans",
    fields=(
        FormField("name", "Name", required=True),
        FormField("price", "Price", required=True, input_type="number", cast=float),
        FormField("description", "Description"),
        FormField("durationDays", "Duration (days)", input_type="number", cast=int),
    ),
    columns=(
        ("name", "Name"),
        ("price", "Price"),
        ("durationDays", "Days"),
        ("isActive", "Active"),
    ),
    toggle_field="isActive",
)

for _screen in (CLIENTS, PETS, INVENTORY, PLANS):
    register_resource_screen(admin_bp, _screen)


@admin_bp.route("/login", methods=["GET", "POST"])
def login() -> ResponseReturnValue:
    """Staff sign-in form."""

    store = admin_session()
    if request.method == "POST":
        result = store.login(request.form.get("username", ""), request.form.get("password", ""))
        if result.success:
            return redirect(url_for("admin.dashboard"))
        flash(result.message or "Unable to sign in.", "error")
    elif store.is_authenticated:
        return redirect(url_for("admin.dashboard"))
    return render_template("login.html", title="Staff sign in", identifier="username")


@admin_bp.post("/logout")
def logout() -> ResponseReturnValue:
    return redirect(admin_session().logout())


@admin_bp.get("/")
def index() -> ResponseReturnValue:
    return redirect(url_for("admin.dashboard"))


@admin_bp.get("/dashboard")
@staff_required
def dashboard() -> ResponseReturnValue:
    """Clinic overview with headline statistics and upcoming vaccinations."""

    client = admin_session().client
    stats: dict[str, Any] = {}
    upcoming: list[dict[str, Any]] = []
    try:
        stats = client.get("/stats/overview") or {}
    except ApiError as exc:
        flash(error_message(exc, "Unable to load statistics."), "error")
    try:
        upcoming = client.get("/vaccinations/upcoming") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load vaccinations."), "error")
    return render_template(
        "dashboard.html", user=admin_session().user, stats=stats, upcoming=upcoming
    )


@admin_bp.get("/appointments")
@staff_required
def appointments() -> ResponseReturnValue:
    try:
        items = load_appointments(admin_session().client, STAFF_ENDPOINTS)
    except ApiError as exc:
        flash(error_message(exc, "Unable to load appointments."), "error")
        items = []
    return render_template("appointments.html", appointments=items, prefix="admin")


@admin_bp.route("/appointments/new", methods=["GET", "POST"])
@admin_bp.route("/appointments/<int:appointment_id>/edit", methods=["GET", "POST"])
@staff_required
def appointment_form(appointment_id: int | None = None) -> ResponseReturnValue:
    return booking_view(
        admin_session().client,
        STAFF_ENDPOINTS,
        appointment_id,
        pets_path="/pets",
        list_endpoint="admin.appointments",
    )


@admin_bp.route("/appointments/<int:appointment_id>/cancel", methods=["GET", "POST"])
@staff_required
def appointment_cancel(appointment_id: int) -> ResponseReturnValue:
    return cancel_view(
        admin_session().client,
        STAFF_ENDPOINTS,
        appointment_id,
        list_endpoint="admin.appointments",
    )


@admin_bp.get("/invoices")
@staff_required
def invoices() -> ResponseReturnValue:
    try:
        items = admin_session().client.get("/invoices") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load invoices."), "error")
        items = []
    return render_template("invoices.html", invoices=items, prefix="admin")


def build_invoice_items(
    services: list[dict[str, Any]], form: Mapping[str, str]
) -> tuple[list[dict[str, Any]], list[str]]:
    """Turn ``quantity_<serviceId>`` form fields into invoice lines."""

    items: list[dict[str, Any]] = []
    errors: list[str] = []
    for service in services:
        raw = (form.get(f"quantity_{service.get('id')}") or "").strip()
        if not raw:
            continue
        try:
            quantity = int(raw)
        except ValueError:
            quantity = 0
        if quantity <= 0:
            errors.append(f"Enter a valid quantity for {service.get('name')}.")
            continue
        price = float(service.get("price") or 0)
        items.append(
            {
                "serviceId": service.get("id"),
                "name": service.get("name"),
                "quantity": quantity,
                "price": price,
                "subtotal": price * quantity,
            }
        )
    return items, errors


def _parse_amount(raw: str | None) -> float | None:
    try:
        return float(raw or 0)
    except ValueError:
        return None


@admin_bp.route("/invoices/new", methods=["GET", "POST"])
@staff_required
def invoice_create() -> ResponseReturnValue:
    """Invoice a client for one or more active services."""

    client = admin_session().client
    clients: list[dict[str, Any]] = []
    services: list[dict[str, Any]] = []
    try:
        clients = client.get("/clients") or []
        services = client.get("/services", params={"isActive": "true"}) or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load clients and services."), "error")

    client_id = request.values.get("clientId", type=int)
    pets: list[dict[str, Any]] = []
    if client_id:
        try:
            pets = (client.get(f"/clients/{client_id}") or {}).get("pets") or []
        except ApiError as exc:
            current_app.logger.warning("Unable to load pets of client %s: %s", client_id, exc)

    if request.method == "POST":
        items, errors = build_invoice_items(services, request.form)
        if not client_id:
            errors.insert(0, "Choose a client.")
        if not items and not errors:
            errors.append("Add at least one service.")
        discount = _parse_amount(request.form.get("discount"))
        tax = _parse_amount(request.form.get("tax"))
        if discount is None or tax is None:
            errors.append("Discount and tax must be numbers.")

        for message in errors:
            flash(message, "error")
        if not errors:
            payload = {
                "clientId": client_id,
                "petId": request.form.get("petId", type=int),
                "items": items,
                "discount": discount,
                "tax": tax,
                "notes": request.form.get("notes") or "",
                "dueDate": request.form.get("dueDate") or None,
            }
            try:
                client.post("/invoices", payload)
            except ApiError as exc:
                flash(error_message(exc, "Unable to create the invoice."), "error")
            else:
                flash("Invoice created.", "success")
                return redirect(url_for("admin.invoices"))

    default_due = (date.today() + timedelta(days=INVOICE_DUE_DAYS)).isoformat()
    return render_template(
        "invoice_form.html",
        clients=clients,
        services=services,
        pets=pets,
        client_id=client_id,
        values=request.form,
        default_due=default_due,
    )


def outstanding_balance(invoice: dict[str, Any]) -> float:
    """Amount still owed on ``invoice``."""

    try:
        total = float(invoice.get("total") or 0)
        paid = float(invoice.get("amountPaid") or 0)
    except (TypeError, ValueError):
        return 0.0
    return max(total - paid, 0.0)


@admin_bp.route("/invoices/<int:invoice_id>/payments", methods=["GET", "POST"])
@staff_required
def invoice_payment(invoice_id: int) -> ResponseReturnValue:
    """Register a payment against an invoice."""

    client = admin_session().client
    try:
        invoice = client.get(f"/invoices/{invoice_id}") or {}
    except ApiError as exc:
        flash(error_message(exc, "Unable to load the invoice."), "error")
        return redirect(url_for("admin.invoices"))

    remaining = outstanding_balance(invoice)
    if request.method == "POST":
        try:
            amount = float(request.form.get("amount") or 0)
        except ValueError:
            amount = 0.0
        method = request.form.get("paymentMethod") or "efectivo"

        if amount <= 0:
            flash("Enter a valid amount.", "error")
        elif amount > remaining:
            flash(f"The amount cannot exceed {remaining:,.0f}.", "error")
        elif method not in PAYMENT_METHODS:
            flash("Choose a valid payment method.", "error")
        else:
            payload = {
                "amount": amount,
                "paymentMethod": method,
                "reference": request.form.get("reference") or "",
                "notes": request.form.get("notes") or "",
            }
            try:
                client.post(f"/invoices/{invoice_id}/payments", payload)
            except ApiError as exc:
                flash(error_message(exc, "Unable to register the payment."), "error")
            else:
                flash("Payment registered.", "success")
                return redirect(url_for("admin.invoices"))

    return render_template(
        "payment_form.html", invoice=invoice, remaining=remaining, methods=PAYMENT_METHODS
    )


@admin_bp.get("/invoices/<int:invoice_id>/pdf")
@staff_required
def invoice_pdf(invoice_id: int) -> ResponseReturnValue:
    try:
        content = admin_session().client.get_bytes(f"/invoices/{invoice_id}/pdf")
    except ApiError as exc:
        flash(error_message(exc, "Unable to download the invoice."), "error")
        return redirect(url_for("admin.invoices"))
    return pdf_response(content, f"invoice-{invoice_id}.pdf")


@admin_bp.get("/medical")
@staff_required
def medical() -> ResponseReturnValue:
    """Medical dashboard listing recent records."""

    term = request.args.get("q", "")
    try:
        records = admin_session().client.get("/medical") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load medical records."), "error")
        records = []
    if term:
        records = [
            record
            for record in records
            if match_search(record.get("pet") or {}, term, ("name", "species"))
            or match_search(record, term, ("diagnosis", "reason"))
        ]
    return render_template("records.html", title="Medical records", records=records, term=term)


@admin_bp.get("/medical/pets/<int:pet_id>")
@staff_required
def medical_history(pet_id: int) -> ResponseReturnValue:
    client = admin_session().client
    try:
        pet = client.get(f"/pets/{pet_id}") or {}
        records = client.get(f"/medical/pets/{pet_id}/records") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load the medical history."), "error")
        return redirect(url_for("admin.medical"))
    return render_template(
        "records.html", title=f"Medical history: {pet.get('name', '')}", pet=pet, records=records
    )


def _history_redirect(pet_id: int | None) -> ResponseReturnValue:
    if pet_id:
        return redirect(url_for("admin.medical_history", pet_id=pet_id))
    return redirect(url_for("admin.medical"))


@admin_bp.route("/medical/pets/<int:pet_id>/records/new", methods=["GET", "POST"])
@staff_required
def medical_record_create(pet_id: int) -> ResponseReturnValue:
    values: Mapping[str, Any] = {}
    if request.method == "POST":
        values = request.form
        payload, errors = parse_fields(MEDICAL_RECORD_FIELDS, request.form)
        for message in errors:
            flash(message, "error")
        if not errors:
            payload["petId"] = pet_id
            try:
                admin_session().client.post("/medical/records", payload)
            except ApiError as exc:
                flash(error_message(exc, "Unable to save the medical record."), "error")
            else:
                flash("Medical record created.", "success")
                return _history_redirect(pet_id)
    return render_template(
        "medical_record_form.html", fields=MEDICAL_RECORD_FIELDS, values=values, pet_id=pet_id
    )


@admin_bp.post("/medical/records/<int:record_id>/attachments")
@staff_required
def attachment_upload(record_id: int) -> ResponseReturnValue:
    """Attach an image or PDF to a medical record."""

    pet_id = request.form.get("petId", type=int)
    upload = request.files.get("image")
    if upload is None or not upload.filename:
        flash("Choose a file to upload.", "error")
        return _history_redirect(pet_id)
    if upload.mimetype not in ATTACHMENT_TYPES:
        flash("Only JPEG, PNG and GIF images or PDF files can be attached.", "error")
        return _history_redirect(pet_id)
    content = upload.read()
    if len(content) > MAX_ATTACHMENT_BYTES:
        flash("The file must not exceed 10 MB.", "error")
        return _history_redirect(pet_id)

    try:
        admin_session().client.post_file(
            f"/medical/records/{record_id}/upload",
            "image",
            secure_filename(upload.filename) or "attachment",
            content,
            upload.mimetype,
        )
    except ApiError as exc:
        flash(error_message(exc, "Unable to upload the file."), "error")
    else:
        flash("File attached.", "success")
    return _history_redirect(pet_id)


@admin_bp.post("/medical/records/<int:record_id>/attachments/<int:attachment_id>/delete")
@staff_required
def attachment_delete(record_id: int, attachment_id: int) -> ResponseReturnValue:
    pet_id = request.form.get("petId", type=int)
    try:
        admin_session().client.delete(f"/medical/records/{record_id}/attachments/{attachment_id}")
    except ApiError as exc:
        flash(error_message(exc, "Unable to delete the attachment."), "error")
    else:
        flash("Attachment deleted.", "success")
    return _history_redirect(pet_id)


@admin_bp.get("/medical/records/<int:record_id>/prescription.pdf")
@staff_required
def prescription_pdf(record_id: int) -> ResponseReturnValue:
    try:
        content = admin_session().client.get_bytes(f"/medical/records/{record_id}/prescription-pdf")
    except ApiError as exc:
        flash(error_message(exc, "Unable to download the prescription."), "error")
        return _history_redirect(request.args.get("petId", type=int))
    return pdf_response(content, f"prescription-{record_id}.pdf")


@admin_bp.get("/vaccinations")
@staff_required
def vaccinations() -> ResponseReturnValue:
    client = admin_session().client
    upcoming: list[dict[str, Any]] = []
    overdue: list[dict[str, Any]] = []
    try:
        upcoming = client.get("/vaccinations/upcoming") or []
        overdue = client.get("/vaccinations/overdue") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load vaccinations."), "error")
    return render_template("vaccinations.html", upcoming=upcoming, overdue=overdue)


@admin_bp.route("/vaccinations/pets/<int:pet_id>", methods=["GET", "POST"])
@staff_required
def pet_vaccinations(pet_id: int) -> ResponseReturnValue:
    """List a pet's vaccinations and record a new one."""

    client = admin_session().client
    if request.method == "POST":
        vaccine = (request.form.get("vaccineName") or "").strip()
        applied = (request.form.get("applicationDate") or "").strip()
        if not vaccine or not applied:
            flash("Vaccine name and application date are required.", "error")
        else:
            payload = {
                "petId": pet_id,
                "vaccineName": vaccine,
                "applicationDate": applied,
                "nextDoseDate": request.form.get("nextDoseDate") or None,
                "notes": request.form.get("notes") or None,
            }
            try:
                client.post("/vaccinations", payload)
            except ApiError as exc:
                flash(error_message(exc, "Unable to record the vaccination."), "error")
            else:
                flash("Vaccination recorded.", "success")
                return redirect(url_for("admin.pet_vaccinations", pet_id=pet_id))

    try:
        items = client.get(f"/vaccinations/pet/{pet_id}") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load vaccinations."), "error")
        items = []
    return render_template("pet_vaccinations.html", pet_id=pet_id, vaccinations=items)


@admin_bp.get("/vaccinations/pets/<int:pet_id>/pdf")
@staff_required
def vaccinations_pdf(pet_id: int) -> ResponseReturnValue:
    try:
        content = admin_session().client.get_bytes(f"/vaccinations/pet/{pet_id}/pdf")
    except ApiError as exc:
        flash(error_message(exc, "Unable to download the vaccination card."), "error")
        return redirect(url_for("admin.pet_vaccinations", pet_id=pet_id))
    return pdf_response(content, f"vaccinations-{pet_id}.pdf")


@admin_bp.post("/vaccinations/<int:vaccination_id>/delete")
@staff_required
def vaccination_delete(vaccination_id: int) -> ResponseReturnValue:
    pet_id = request.form.get("petId", type=int)
    try:
        admin_session().client.delete(f"/vaccinations/{vaccination_id}")
    except ApiError as exc:
        flash(error_message(exc, "Unable to delete the vaccination."), "error")
    else:
        flash("Vaccination deleted.", "success")
    if pet_id:
        return redirect(url_for("admin.pet_vaccinations", pet_id=pet_id))
    return redirect(url_for("admin.vaccinations"))


@admin_bp.get("/payments")
@staff_required
def plan_payments() -> ResponseReturnValue:
    """Plan purchases made through the portal, for manual settlement."""

    try:
        purchases = admin_session().client.get("/payments/plans") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load payments."), "error")
        purchases = []
    return render_template("plan_payments.html", purchases=purchases, statuses=PURCHASE_STATUSES)


@admin_bp.post("/payments/<int:purchase_id>/status")
@staff_required
def plan_payment_status(purchase_id: int) -> ResponseReturnValue:
    status = request.form.get("status", "")
    if status not in PURCHASE_STATUSES:
        flash("Choose a valid payment status.", "error")
        return redirect(url_for("admin.plan_payments"))
    try:
        admin_session().client.patch(f"/payments/plans/{purchase_id}", {"status": status})
    except ApiError as exc:
        flash(error_message(exc, "Unable to update the payment."), "error")
    else:
        flash("Payment updated.", "success")
    return redirect(url_for("admin.plan_payments"))


def usage_rows(usage: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Pair each usage counter with its plan limit; ``-1`` means unlimited."""

    counts = usage.get("usage") or {}
    limits = usage.get("limits") or {}
    percentages = usage.get("percentages") or {}
    rows = []
    for key, label in USAGE_METRICS:
        limit = limits.get(key) or 0
        rows.append(
            {
                "label": label,
                "used": counts.get(key) or 0,
                "limit": "Unlimited" if limit == -1 else limit,
                "percent": percentages.get(key) or 0,
            }
        )
    return rows


@admin_bp.get("/subscription")
@staff_required
def subscription() -> ResponseReturnValue:
    """Clinic subscription: current plan, usage against limits, other plans."""

    client = admin_session().client
    organization: dict[str, Any] = {}
    usage: dict[str, Any] = {}
    plans: list[dict[str, Any]] = []
    try:
        organization = client.get("/organizations/current") or {}
        usage = client.get("/organizations/usage") or {}
        plans = client.get("/subscriptions/plans") or []
    except ApiError as exc:
        flash(error_message(exc, "Unable to load subscription details."), "error")
    return render_template(
        "subscription.html",
        organization=organization,
        subscription=organization.get("subscription") or {},
        usage=usage_rows(usage),
        plans=plans,
    )


@admin_bp.post("/subscription/checkout")
@staff_required
def subscription_checkout() -> ResponseReturnValue:
    plan_id = request.form.get("planId", type=int)
    if plan_id is None:
        flash("Choose a plan.", "error")
        return redirect(url_for("admin.subscription"))
    return_url = url_for("admin.subscription", _external=True)
    try:
        data = admin_session().client.post(
            "/subscriptions/checkout",
            {"planId": plan_id, "successUrl": return_url, "cancelUrl": return_url},
        ) or {}
    except ApiError as exc:
        flash(error_message(exc, "Unable to start the checkout."), "error")
        return redirect(url_for("admin.subscription"))
    if data.get("url"):
        return redirect(data["url"])
    flash("Unable to start the checkout.", "error")
    return redirect(url_for("admin.subscription"))


@admin_bp.route("/subscription/cancel", methods=["GET", "POST"])
@staff_required
def subscription_cancel() -> ResponseReturnValue:
    if request.method == "GET":
        return render_template(
            "confirm.html",
            message="Cancel the subscription? It stays active until the end of the current period.",
            cancel_url=url_for("admin.subscription"),
        )
    if request.form.get("confirmed") == "yes":
        try:
            admin_session().client.post("/subscriptions/cancel")
        except ApiError as exc:
            flash(error_message(exc, "Unable to cancel the subscription."), "error")
        else:
            flash("Subscription cancelled.", "success")
    return redirect(url_for("admin.subscription"))


@admin_bp.post("/subscription/reactivate")
@staff_required
def subscription_reactivate() -> ResponseReturnValue:
    try:
        admin_session().client.post("/subscriptions/reactivate")
    except ApiError as exc:
        flash(error_message(exc, "Unable to reactivate the subscription."), "error")
    else:
        flash("Subscription reactivated.", "success")
    return redirect(url_for("admin.subscription"))


def pdf_response(content: bytes, filename: str) -> Response:
    return Response(
        content,
        status=HTTPStatus.OK,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
