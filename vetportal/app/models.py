"""Typed views over the records returned by the clinic API."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

SCHEDULED_STATUS = "programada"
MODIFIABLE_STATUSES = frozenset({SCHEDULED_STATUS})


def normalize_time(value: Any) -> str | None:
    """Trim ``HH:MM:SS`` style values to ``HH:MM``."""

    if value in (None, ""):
        return None
    return str(value)[:5]


def _to_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class AvailabilitySlot:
    """A candidate appointment window with its booked/free flag."""

    start: str
    end: str
    available: bool

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AvailabilitySlot":
        return cls(
            start=normalize_time(payload.get("start")) or "",
            end=normalize_time(payload.get("end")) or "",
            available=bool(payload.get("available")),
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.start, self.end)

    def as_dict(self) -> dict[str, Any]:
        return {"start": self.start, "end": self.end, "available": self.available}


@dataclass(slots=True)
class Appointment:
    """Appointment record as listed by ``/appointments`` or ``/portal/appointments``."""

    id: int
    pet_id: int | None
    vet_id: int | None
    date: str
    time: str | None
    duration_minutes: int = 30
    end_time: str | None = None
    reason: str = ""
    type: str = ""
    notes: str = ""
    status: str = SCHEDULED_STATUS
    pet: dict[str, Any] | None = None
    veterinarian: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Appointment":
        duration = _to_int(payload.get("durationMinutes")) or 30
        start = normalize_time(payload.get("time"))
        end = normalize_time(payload.get("endTime")) or _add_minutes(start, duration)
        return cls(
            id=int(payload["id"]),
            pet_id=_to_int(payload.get("petId")),
            vet_id=_to_int(payload.get("vetId")),
            date=str(payload.get("date") or ""),
            time=start,
            duration_minutes=duration,
            end_time=end,
            reason=payload.get("reason") or "",
            type=payload.get("type") or "",
            notes=payload.get("notes") or "",
            status=payload.get("status") or SCHEDULED_STATUS,
            pet=payload.get("pet"),
            veterinarian=payload.get("veterinarian"),
        )

    @property
    def can_modify(self) -> bool:
        return self.status in MODIFIABLE_STATUSES

    @property
    def time_range(self) -> tuple[str, str] | None:
        if not self.time or not self.end_time:
            return None
        return (self.time, self.end_time)


@dataclass(slots=True)
class PortalProfile:
    """Aggregate returned by ``/portal/profile``."""

    user: dict[str, Any] | None = None
    client: dict[str, Any] | None = None
    pets: list[dict[str, Any]] = field(default_factory=list)
    appointments: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "PortalProfile":
        payload = payload or {}
        return cls(
            user=payload.get("user"),
            client=payload.get("client"),
            pets=list(payload.get("pets") or []),
            appointments=list(payload.get("appointments") or []),
        )

    @property
    def upcoming_appointments(self) -> list[dict[str, Any]]:
        return [item for item in self.appointments if item.get("status") == SCHEDULED_STATUS]


def _add_minutes(start: str | None, minutes: int) -> str | None:
    if not start:
        return None
    try:
        parsed = datetime.strptime(start, "%H:%M")
    except ValueError:
        return None
    return (parsed + timedelta(minutes=minutes)).strftime("%H:%M")
