from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import InvalidTransitionError, UnauthorizedError, ValidationError


class TicketStatus(str, Enum):
    """Canonical states of the ticket lifecycle."""

    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: TicketStatus | str) -> TicketStatus:
        """Coerce user input to a status, accepting the legacy ``new`` alias."""

        if isinstance(value, TicketStatus):
            return value
        normalized = str(value or "").strip().lower()
        if normalized == "new":
            return cls.OPEN
        try:
            return cls(normalized)
        except ValueError as exc:
            raise InvalidTransitionError(f"Unknown ticket status: {value!r}") from exc

    @property
    def display_group(self) -> str:
        if self in RESOLVING_STATUSES:
            return "resolved"
        if self in (TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS):
            return "in_progress"
        return self.value


RESOLVING_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})
UNASSIGNABLE_STATUSES = frozenset({TicketStatus.CLOSED, TicketStatus.CANCELLED})


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class StaffRole(str, Enum):
    """Roles eligible to work tickets."""

    ADMIN = "admin"
    CALLCENTRE = "callcentre"


class StaffStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TransitionPolicy(str, Enum):
    """Which status changes ``set_status`` accepts."""

    PERMISSIVE = "permissive"
    STRICT = "strict"


class ResolvedAtPolicy(str, Enum):
    """When ``resolved_at`` is stamped on entering a resolving status."""

    FIRST = "first"
    LATEST = "latest"


@dataclass(slots=True, frozen=True)
class Actor:
    """Authenticated caller as supplied by the auth layer."""

    id: str
    role: StaffRole | None = None

    @property
    def is_staff(self) -> bool:
        return self.role is not None


@dataclass(slots=True)
class Ticket:
    """Primary ticket record."""

    id: str
    ticket_number: str
    title: str
    application_name: str
    description: str
    steps_to_reproduce: str
    severity: Severity
    customer_name: str
    customer_email: str
    customer_phone: str | None
    image_urls: Sequence[str]
    video_urls: Sequence[str]
    status: TicketStatus
    assigned_to: str | None
    created_at: datetime
    updated_at: datetime | None
    resolved_at: datetime | None
    version: int = 1

    @property
    def last_activity(self) -> datetime:
        return self.updated_at or self.created_at


@dataclass(slots=True)
class Note:
    """Staff annotation belonging to a ticket."""

    id: str
    ticket_id: str
    author_id: str
    note: str
    created_at: datetime


@dataclass(slots=True)
class AssignmentEvent:
    """Single entry in a ticket's assignment history."""

    id: str
    ticket_id: str
    staff_id: str
    previous_staff_id: str | None
    assigned_by: str
    created_at: datetime


@dataclass(slots=True)
class Staff:
    """Admin or call-centre account."""

    id: str
    name: str
    email: str
    employee_id: str | None
    role: StaffRole
    status: StaffStatus
    created_at: datetime
    last_login: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == StaffStatus.ACTIVE

    @property
    def is_assignable(self) -> bool:
        return self.is_active and self.role in (StaffRole.ADMIN, StaffRole.CALLCENTRE)


class SortField(str, Enum):
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    TICKET_NUMBER = "ticket_number"


@dataclass(slots=True)
class TicketFilter:
    """Criteria accepted by ``TicketRepository.list``."""

    status: TicketStatus | None = None
    assigned_to: str | None = None
    search: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None

    def __post_init__(self) -> None:
        # naive bounds are UTC
        self.created_from = ensure_datetime(self.created_from)
        self.created_to = ensure_datetime(self.created_to)


@dataclass(slots=True)
class TicketSort:
    field: SortField = SortField.CREATED_AT
    descending: bool = True
    limit: int | None = None
    offset: int = 0


@dataclass(slots=True)
class TicketChange:
    """Field changes computed by the lifecycle engine for a single update."""

    fields: dict[str, Any] = field(default_factory=dict)
    assignment: AssignmentEvent | None = None
    note: Note | None = None


class TicketCreate(BaseModel):
    """Validated payload for a new bug report."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=255)
    application_name: str = Field(..., min_length=2, max_length=255)
    description: str = Field(..., min_length=10)
    steps_to_reproduce: str = Field(..., min_length=10)
    severity: Severity
    customer_name: str = Field(..., min_length=2, max_length=255)
    customer_email: EmailStr
    customer_phone: str | None = Field(default=None, max_length=50)
    image_urls: list[str] = Field(default_factory=list)
    video_urls: list[str] = Field(default_factory=list)

    @field_validator("customer_phone")
    @classmethod
    def _blank_phone_is_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("image_urls", "video_urls")
    @classmethod
    def _drop_blank_urls(cls, value: list[str]) -> list[str]:
        return [url.strip() for url in value if url and url.strip()]


class TicketUpdate(BaseModel):
    """Content corrections applied through ``TicketRepository.update``."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str | None = Field(default=None, min_length=5, max_length=255)
    application_name: str | None = Field(default=None, min_length=2, max_length=255)
    description: str | None = Field(default=None, min_length=10)
    steps_to_reproduce: str | None = Field(default=None, min_length=10)
    severity: Severity | None = None
    customer_name: str | None = Field(default=None, min_length=2, max_length=255)
    customer_email: EmailStr | None = None
    customer_phone: str | None = Field(default=None, max_length=50)


class StaffCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    employee_id: str | None = Field(default=None, max_length=50)
    role: StaffRole = StaffRole.CALLCENTRE
    status: StaffStatus = StaffStatus.ACTIVE


class StaffUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str | None = Field(default=None, min_length=2, max_length=255)
    email: EmailStr | None = None
    employee_id: str | None = Field(default=None, max_length=50)
    role: StaffRole | None = None
    status: StaffStatus | None = None
    last_login: datetime | None = None


def collect_validation_errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]


ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_model(model: type[ModelT], data: ModelT | Mapping[str, Any], message: str) -> ModelT:
    """Validate raw fields against ``model``, raising the domain ``ValidationError``."""

    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError(message, collect_validation_errors(exc)) from exc


def validate_ticket_data(data: TicketCreate | Mapping[str, Any]) -> TicketCreate:
    return validate_model(TicketCreate, data, "Invalid ticket submission")


def validate_partial(model: type[ModelT], data: Mapping[str, Any], message: str) -> dict[str, Any]:
    """Validate only the supplied keys, returning enum members by value."""

    validated = validate_model(model, data, message)
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in validated.model_dump(include=set(data)).items()
    }


class TicketStateMachine:
    """Validate ticket status transitions."""

    _STRICT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.OPEN: (
            TicketStatus.ASSIGNED,
            TicketStatus.IN_PROGRESS,
            TicketStatus.RESOLVED,
            TicketStatus.CLOSED,
            TicketStatus.CANCELLED,
        ),
        TicketStatus.ASSIGNED: (
            TicketStatus.OPEN,
            TicketStatus.IN_PROGRESS,
            TicketStatus.RESOLVED,
            TicketStatus.CLOSED,
            TicketStatus.CANCELLED,
        ),
        TicketStatus.IN_PROGRESS: (
            TicketStatus.OPEN,
            TicketStatus.ASSIGNED,
            TicketStatus.RESOLVED,
            TicketStatus.CLOSED,
            TicketStatus.CANCELLED,
        ),
        TicketStatus.RESOLVED: (
            TicketStatus.OPEN,
            TicketStatus.ASSIGNED,
            TicketStatus.IN_PROGRESS,
            TicketStatus.CLOSED,
        ),
        TicketStatus.CLOSED: (),
        TicketStatus.CANCELLED: (),
    }

    def __init__(
        self,
        policy: TransitionPolicy = TransitionPolicy.PERMISSIVE,
        *,
        transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None,
    ) -> None:
        self.policy = TransitionPolicy(policy)
        if transitions is not None:
            self._transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = transitions
        elif self.policy == TransitionPolicy.STRICT:
            self._transitions = self._STRICT_TRANSITIONS
        else:
            self._transitions = None

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.OPEN

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        if current == target or self._transitions is None:
            return True
        return target in self._transitions.get(current, ())

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(f"Invalid status transition: {current.value} -> {target.value}")

    @staticmethod
    def can_assign(current: TicketStatus) -> bool:
        return current not in UNASSIGNABLE_STATUSES

    def assert_assignable(self, current: TicketStatus) -> None:
        if not self.can_assign(current):
            raise InvalidTransitionError(f"Cannot assign a ticket in status {current.value}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def advance_timestamp(previous: datetime | None, now: datetime) -> datetime:
    """Return ``now``, nudged forward so it is strictly later than ``previous``."""

    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def ensure_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    raise TypeError("Expected datetime value from database")


def require_staff(actor: Actor | None, action: str) -> Actor:
    if actor is None or not actor.is_staff:
        raise UnauthorizedError(f"Only staff members may {action}")
    return actor


def require_admin(actor: Actor | None, action: str) -> Actor:
    if actor is None or actor.role != StaffRole.ADMIN:
        raise UnauthorizedError(f"Only administrators may {action}")
    return actor
