from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

from .errors import InvalidRequest


class Credentials(BaseModel):
    """Opaque session credentials forwarded to ModMed on every call."""
    model_config = ConfigDict(frozen=True)

    token: str
    api_key: str


class ParticipantRole(str, Enum):
    PATIENT = "Patient"
    PRACTITIONER = "Practitioner"
    OTHER = "Other"


class ParticipantRef(BaseModel):
    role: ParticipantRole
    id: str | None = None

    @classmethod
    def parse(cls, reference: str | None) -> "ParticipantRef":
        """Split a FHIR reference such as ``Practitioner/1`` into role and id."""
        if reference is None:
            return cls(role=ParticipantRole.OTHER)
        kind, sep, ident = reference.partition("/")
        if not sep or not kind or not ident or "/" in ident:
            raise ValueError(f"malformed participant reference: {reference!r}")
        try:
            role = ParticipantRole(kind)
        except ValueError:
            role = ParticipantRole.OTHER
        return cls(role=role, id=ident)


class Actor(BaseModel):
    model_config = ConfigDict(extra="allow")

    reference: str | None = None


class Participant(BaseModel):
    model_config = ConfigDict(extra="allow")

    actor: Actor | None = None
    status: str | None = None

    @field_validator("actor")
    @classmethod
    def _check_reference(cls, actor: Actor | None) -> Actor | None:
        if actor is not None:
            ParticipantRef.parse(actor.reference)
        return actor

    @property
    def ref(self) -> ParticipantRef:
        return ParticipantRef.parse(self.actor.reference if self.actor else None)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AppointmentRequest(BaseModel):
    """Typed view over an Appointment payload submitted by the dashboard.

    Only the fields the booking workflow inspects are declared; everything
    else rides along untouched. The decoded payload is kept in ``raw`` and is
    what gets forwarded upstream.
    """
    model_config = ConfigDict(extra="allow")

    start: datetime | None = None  # ISO-8601 dateTime
    end: datetime | None = None
    participant: list[Participant] = Field(default_factory=list)
    status: str | None = None

    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AppointmentRequest":
        try:
            req = cls.model_validate(payload)
        except ValidationError as exc:
            raise InvalidRequest(f"Invalid appointment payload: {exc.errors()[0]['msg']}") from exc
        req._raw = payload
        return req

    @property
    def raw(self) -> dict[str, Any]:
        return self._raw

    @property
    def participants(self) -> list[ParticipantRef]:
        return [p.ref for p in self.participant]

    def first_practitioner(self) -> ParticipantRef | None:
        """First Practitioner participant in declared order, if any."""
        for ref in self.participants:
            if ref.role is ParticipantRole.PRACTITIONER:
                return ref
        return None


class Slot(BaseModel):
    """A free interval for one practitioner, owned by ModMed."""
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    start: str  # ISO-8601 dateTime
    end: str
    status: str | None = None


class SlotBundle(BaseModel):
    total: int
    slots: list[Slot] = Field(default_factory=list)

    @classmethod
    def from_bundle(cls, bundle: dict[str, Any]) -> "SlotBundle":
        entries = bundle.get("entry", [])
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise ValueError("Bundle entry must be a list of objects")
        slots = [Slot.model_validate(e["resource"]) for e in entries if "resource" in e]
        total = bundle.get("total")
        return cls(total=len(slots) if total is None else total, slots=slots)


class AvailabilityQuery(BaseModel):
    practitioner_id: str
    window_start: datetime
    window_end: datetime


class AvailabilityOutcome(str, Enum):
    AVAILABLE = "available"
    CONFLICT = "conflict"
    INDETERMINATE = "indeterminate"


class SubmitMode(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class BookingResult(BaseModel):
    status_code: int
    body: Any


class LoginRequest(BaseModel):
    username: str | None = None
    password: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")

    model_config = {
        "populate_by_name": True
    }
