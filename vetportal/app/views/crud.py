"""List, form and delete screens for plain CRUD resources of the dashboard."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from flask import Blueprint, flash, redirect, render_template, request, url_for
from flask.typing import ResponseReturnValue

from vetportal.app.middleware import admin_session, staff_required
from vetportal.app.services.api_client import ApiError, error_message


def normalize(value: Any) -> str:
    """Lower-case and trim ``value`` for case-insensitive comparisons."""

    return str(value or "").lower().strip()


def match_search(item: Mapping[str, Any], term: str, keys: Iterable[str]) -> bool:
    """Return whether any of ``keys`` in ``item`` contains ``term``."""

    query = normalize(term)
    if not query:
        return True
    return any(query in normalize(item.get(key)) for key in keys)


@dataclass(frozen=True, slots=True)
class FormField:
    name: str
    label: str
    required: bool = False
    input_type: str = "text"
    cast: Callable[[str], Any] | None = None

    def parse(self, raw: str | None) -> Any:
        value = (raw or "").strip()
        if not value:
            return None
        return self.cast(value) if self.cast else value


@dataclass(frozen=True, slots=True)
class ResourceScreen:
    """Describes one CRUD resource and how it is listed and edited."""

    name: str
    title: str
    noun: str
    endpoint: str
    fields: tuple[FormField, ...]
    columns: tuple[tuple[str, str], ...]
    search_keys: tuple[str, ...] = ()
    toggle_field: str | None = None

    def item_path(self, item_id: int) -> str:
        return f"{self.endpoint}/{item_id}"

    def parse_form(self, form: Mapping[str, str]) -> tuple[dict[str, Any], list[str]]:
        return parse_fields(self.fields, form)


def parse_fields(
    fields: Iterable[FormField], form: Mapping[str, str]
) -> tuple[dict[str, Any], list[str]]:
    """Build the request payload and collect client-side validation errors."""

    payload: dict[str, Any] = {}
    errors: list[str] = []
    for field in fields:
        try:
            value = field.parse(form.get(field.name))
        except ValueError:
            errors.append(f"{field.label} must be a number.")
            continue
        if value is None and field.required:
            errors.append(f"{field.label} is required.")
        payload[field.name] = value
    return payload, errors


def register_resource_screen(bp: Blueprint, screen: ResourceScreen) -> None:
    """Attach list/create/edit/delete routes for ``screen`` to ``bp``."""

    list_endpoint = f".{screen.name}_list"

    @staff_required
    def list_view() -> ResponseReturnValue:
        term = request.args.get("q", "")
        try:
            items = admin_session().client.get(screen.endpoint) or []
        except ApiError as exc:
            flash(error_message(exc, f"Unable to load {screen.title.lower()}."), "error")
            items = []
        if screen.search_keys:
            items = [item for item in items if match_search(item, term, screen.search_keys)]
        return render_template("resource_list.html", screen=screen, items=items, term=term)

    @staff_required
    def form_view(item_id: int | None = None) -> ResponseReturnValue:
        client = admin_session().client
        values: Mapping[str, Any] = {}

        if request.method == "POST":
            values = request.form
            payload, errors = screen.parse_form(request.form)
            for message in errors:
                flash(message, "error")
            if not errors:
                try:
                    if item_id is None:
                        client.post(screen.endpoint, payload)
                        flash(f"{screen.noun.capitalize()} created.", "success")
                    else:
                        client.put(screen.item_path(item_id), payload)
                        flash(f"{screen.noun.capitalize()} updated.", "success")
                except ApiError as exc:
                    flash(error_message(exc, f"Unable to save {screen.noun}."), "error")
                else:
                    return redirect(url_for(list_endpoint))
        elif item_id is not None:
            try:
                values = client.get(screen.item_path(item_id)) or {}
            except ApiError as exc:
                flash(error_message(exc, f"Unable to load {screen.noun}."), "error")
                return redirect(url_for(list_endpoint))

        return render_template(
            "resource_form.html", screen=screen, values=values, item_id=item_id
        )

    @staff_required
    def delete_view(item_id: int) -> ResponseReturnValue:
        if request.method == "GET":
            return render_template(
                "confirm.html",
                message=f"Delete this {screen.noun}?",
                cancel_url=url_for(list_endpoint),
            )
        try:
            admin_session().client.delete(screen.item_path(item_id))
        except ApiError as exc:
            flash(error_message(exc, f"Unable to delete {screen.noun}."), "error")
        else:
            flash(f"{screen.noun.capitalize()} deleted.", "success")
        return redirect(url_for(list_endpoint))

    @staff_required
    def toggle_view(item_id: int) -> ResponseReturnValue:
        current = request.form.get("current", "").lower() == "true"
        try:
            admin_session().client.put(screen.item_path(item_id), {screen.toggle_field: not current})
        except ApiError as exc:
            flash(error_message(exc, f"Unable to update {screen.noun}."), "error")
        else:
            state = "deactivated" if current else "activated"
            flash(f"{screen.noun.capitalize()} {state}.", "success")
        return redirect(url_for(list_endpoint))

    base = f"/{screen.name}"
    if screen.toggle_field:
        bp.add_url_rule(
            f"{base}/<int:item_id>/toggle", f"{screen.name}_toggle", toggle_view, methods=["POST"]
        )
    bp.add_url_rule(base, f"{screen.name}_list", list_view)
    bp.add_url_rule(
        f"{base}/new", f"{screen.name}_new", form_view, methods=["GET", "POST"]
    )
    bp.add_url_rule(
        f"{base}/<int:item_id>/edit", f"{screen.name}_edit", form_view, methods=["GET", "POST"]
    )
    bp.add_url_rule(
        f"{base}/<int:item_id>/delete", f"{screen.name}_delete", delete_view, methods=["GET", "POST"]
    )
