"""Appointment booking form with availability reconciliation."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from vetportal.app.models import Appointment, AvailabilitySlot
from vetportal.app.services.api_client import ApiClient, ApiError, error_message

LOGGER = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 30
DURATION_OPTIONS = (15, 30, 45, 60)
REQUIRED_FIELDS = ("pet_id", "vet_id", "date", "time", "reason")
CANCEL_CONFIRMATION = "Are you sure you want to cancel this appointment?"


@dataclass(frozen=True, slots=True)
class AppointmentEndpoints:
    """Where a booking screen lists, creates and cancels appointments."""

    collection: str
    veterinarians: str = "/appointments/veterinarians"
    availability: str = "/appointments/availability"

    def item(self, appointment_id: int) -> str:
        return f"{self.collection}/{appointment_id}"


STAFF_ENDPOINTS = AppointmentEndpoints(collection="/appointments")
PORTAL_ENDPOINTS = AppointmentEndpoints(collection="/portal/appointments")


class BookingMode(enum.Enum):
    IDLE = "idle"
    CREATING = "creating"
    EDITING = "editing"


@dataclass(slots=True)
class BookingFields:
    """Values of the booking form as entered by the user."""

    pet_id: str = ""
    vet_id: str = ""
    date: str = ""
    time: str = ""
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    reason: str = ""
    type: str = ""
    notes: str = ""

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "BookingFields":
        return cls(
            pet_id=str(appointment.pet_id or ""),
            vet_id=str(appointment.vet_id or ""),
            date=appointment.date,
            time=appointment.time or "",
            duration_minutes=appointment.duration_minutes or DEFAULT_DURATION_MINUTES,
            reason=appointment.reason,
            type=appointment.type,
            notes=appointment.notes,
        )

    def missing(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not str(getattr(self, name)).strip()]

    def to_payload(self) -> dict[str, Any]:
        return {
            "petId": int(self.pet_id),
            "vetId": int(self.vet_id),
            "date": self.date,
            "time": self.time,
            "durationMinutes": int(self.duration_minutes or DEFAULT_DURATION_MINUTES),
            "reason": self.reason,
            "type": self.type or None,
            "notes": self.notes or None,
        }


@dataclass(frozen=True, slots=True)
class AvailabilityQuery:
    """An availability request tagged with the form generation that issued it."""

    generation: int
    vet_id: str
    date: str
    duration_minutes: int

    @property
    def params(self) -> dict[str, Any]:
        return {
            "vetId": self.vet_id,
            "date": self.date,
            "durationMinutes": self.duration_minutes,
        }


def reconcile_availability(
    slots: Iterable[AvailabilitySlot],
    editing: Appointment | None,
    *,
    vet_id: str,
    date: str,
) -> list[AvailabilitySlot]:
    """Make the edited appointment's own slot selectable.

    The API reports the slot held by the appointment being edited as booked.
    When the form still targets the same vet and date, that range is marked
    available (or prepended when the API did not list it) and kept exactly once.
    """

    result = [AvailabilitySlot(slot.start, slot.end, slot.available) for slot in slots]
    if editing is None or editing.time_range is None:
        return result
    if str(editing.vet_id) != str(vet_id) or editing.date != date:
        return result

    own_range = editing.time_range
    matches = [index for index, slot in enumerate(result) if slot.key == own_range]
    if not matches:
        return [AvailabilitySlot(own_range[0], own_range[1], True)] + result

    result[matches[0]].available = True
    for index in reversed(matches[1:]):
        del result[index]
    return result


class BookingForm:
    """State of the create/edit appointment form for one booking screen."""

    def __init__(self, client: ApiClient, endpoints: AppointmentEndpoints) -> None:
        self.client = client
        self.endpoints = endpoints
        self.mode = BookingMode.IDLE
        self.fields = BookingFields()
        self.editing: Appointment | None = None
        self.slots: list[AvailabilitySlot] = []
        self.error: str | None = None
        self.generation = 0

    @property
    def is_open(self) -> bool:
        return self.mode is not BookingMode.IDLE

    def open_new(self) -> None:
        self._reset()
        self.mode = BookingMode.CREATING

    def open_edit(self, appointment: Appointment) -> None:
        if not appointment.can_modify:
            raise ValueError(f"Appointment {appointment.id} can no longer be modified.")
        self._reset()
        self.mode = BookingMode.EDITING
        self.editing = appointment
        self.fields = BookingFields.from_appointment(appointment)

    def close(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.mode = BookingMode.IDLE
        self.fields = BookingFields()
        self.editing = None
        self.slots = []
        self.error = None
        self.generation += 1

    def update(self, **changes: Any) -> None:
        """Apply field changes; a new vet or date drops the chosen time when creating."""

        for name, value in changes.items():
            if not hasattr(self.fields, name):
                raise AttributeError(f"Unknown booking field: {name}")
            if name == "duration_minutes":
                value = _parse_duration(value)
            elif value is None:
                value = ""
            else:
                value = str(value)
            if getattr(self.fields, name) == value:
                continue
            setattr(self.fields, name, value)
            if name in ("vet_id", "date", "duration_minutes"):
                self.generation += 1
            if name in ("vet_id", "date") and self.mode is BookingMode.CREATING:
                self.fields.time = ""

    def availability_query(self) -> AvailabilityQuery | None:
        """Start a new availability query, superseding any in flight."""

        fields = self.fields
        if not self.is_open or not (fields.vet_id and fields.date and fields.duration_minutes):
            self.slots = []
            return None
        self.generation += 1
        return AvailabilityQuery(
            generation=self.generation,
            vet_id=fields.vet_id,
            date=fields.date,
            duration_minutes=fields.duration_minutes,
        )

    def apply_availability(self, query: AvailabilityQuery, raw_slots: Iterable[dict[str, Any]]) -> bool:
        """Store the slots for ``query`` unless a newer query has been issued."""

        if query.generation != self.generation:
            LOGGER.debug("Discarding stale availability for generation %s", query.generation)
            return False

        slots = [AvailabilitySlot.from_payload(item) for item in raw_slots]
        self.slots = reconcile_availability(
            slots,
            self.editing if self.mode is BookingMode.EDITING else None,
            vet_id=query.vet_id,
            date=query.date,
        )
        if self.mode is BookingMode.CREATING and not self.fields.time:
            first_free = next((slot for slot in self.slots if slot.available), None)
            if first_free is not None:
                self.fields.time = first_free.start
        return True

    def refresh_availability(self) -> list[AvailabilitySlot]:
        query = self.availability_query()
        if query is None:
            return self.slots
        try:
            data = self.client.get(self.endpoints.availability, params=query.params)
        except ApiError as exc:
            if query.generation == self.generation:
                self.error = error_message(exc, "Unable to load availability.")
                self.slots = []
            return self.slots
        raw_slots = data.get("slots") if isinstance(data, dict) else None
        self.apply_availability(query, raw_slots or [])
        return self.slots

    def select_slot(self, start: str) -> bool:
        """Choose the slot starting at ``start``; unavailable slots are ignored."""

        for slot in self.slots:
            if slot.start == start:
                if not slot.available:
                    return False
                self.fields.time = slot.start
                return True
        return False

    def submit(self) -> bool:
        """Create or update the appointment. Returns ``True`` on success."""

        if not self.is_open:
            raise RuntimeError("The booking form is not open.")

        missing = self.fields.missing()
        if missing:
            self.error = "Please complete the required fields."
            LOGGER.debug("Booking submit blocked; missing %s", ", ".join(missing))
            return False

        try:
            payload = self.fields.to_payload()
        except ValueError:
            self.error = "Pet and veterinarian must be valid selections."
            return False

        try:
            if self.mode is BookingMode.EDITING and self.editing is not None:
                self.client.put(self.endpoints.item(self.editing.id), payload)
            else:
                self.client.post(self.endpoints.collection, payload)
        except ApiError as exc:
            if exc.is_conflict:
                LOGGER.info("Booking conflict for vet %s on %s", self.fields.vet_id, self.fields.date)
            self.error = error_message(exc, "Unable to save the appointment.")
            return False

        self.close()
        return True

    def cancel_appointment(self, appointment: Appointment, confirm: Callable[[str], bool]) -> bool:
        """Cancel ``appointment`` after the user confirms. Returns ``True`` if cancelled."""

        if not appointment.can_modify:
            self.error = "This appointment can no longer be cancelled."
            return False
        if not confirm(CANCEL_CONFIRMATION):
            return False
        try:
            self.client.delete(self.endpoints.item(appointment.id))
        except ApiError as exc:
            self.error = error_message(exc, "Unable to cancel the appointment.")
            return False
        return True


def load_appointments(client: ApiClient, endpoints: AppointmentEndpoints) -> list[Appointment]:
    return [Appointment.from_payload(item) for item in client.get(endpoints.collection) or []]


def find_appointment(
    client: ApiClient, endpoints: AppointmentEndpoints, appointment_id: int
) -> Appointment | None:
    return next(
        (item for item in load_appointments(client, endpoints) if item.id == appointment_id),
        None,
    )


def _parse_duration(value: Any) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return DEFAULT_DURATION_MINUTES
    return minutes if minutes > 0 else DEFAULT_DURATION_MINUTES


@dataclass(slots=True)
class BookingChoices:
    """Pets and veterinarians offered by the booking form."""

    pets: list[dict[str, Any]] = field(default_factory=list)
    veterinarians: list[dict[str, Any]] = field(default_factory=list)
