from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from apps.api.metrics import MetricsRegistry, metrics_registry, register_default_metrics
from apps.api.metrics.definitions import TICKETS_CREATED

from .analytics import AnalyticsAggregator, AnalyticsSnapshot, DateRange
from .lifecycle import TicketLifecycleEngine
from .locks import TicketLockRegistry
from .notes import NoteLedger
from .numbers import TicketNumberGenerator
from .repository import SqlStaffRepository, SqlTicketRepository, StaffRepository, TicketRepository
from .staff import StaffDirectory
from .tickets import (
    Actor,
    AssignmentEvent,
    Note,
    ResolvedAtPolicy,
    Severity,
    Staff,
    Ticket,
    TicketCreate,
    TicketFilter,
    TicketSort,
    TicketStateMachine,
    TicketStatus,
    TransitionPolicy,
    require_staff,
    utcnow,
)

logger = logging.getLogger(__name__)

UNKNOWN_STAFF_NAME = "Unknown"


class TicketView(BaseModel):
    """What a customer sees when looking a ticket up by number."""

    ticket_number: str
    title: str
    application_name: str
    description: str
    steps_to_reproduce: str
    severity: Severity
    status: TicketStatus
    display_status: str
    image_urls: list[str] = Field(default_factory=list)
    video_urls: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None
    resolved_at: datetime | None = None

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketView":
        return cls(
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            application_name=ticket.application_name,
            description=ticket.description,
            steps_to_reproduce=ticket.steps_to_reproduce,
            severity=ticket.severity,
            status=ticket.status,
            display_status=ticket.status.display_group,
            image_urls=list(ticket.image_urls),
            video_urls=list(ticket.video_urls),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            resolved_at=ticket.resolved_at,
        )


class TicketSummary(TicketView):
    id: str
    customer_name: str
    assigned_to: str | None = None
    assignee_name: str | None = None

    @classmethod
    def from_entity(cls, ticket: Ticket, staff: Mapping[str, Staff] | None = None) -> "TicketSummary":
        return cls(
            **TicketView.from_entity(ticket).model_dump(),
            id=ticket.id,
            customer_name=ticket.customer_name,
            assigned_to=ticket.assigned_to,
            assignee_name=_staff_name(ticket.assigned_to, staff or {}),
        )


class NoteView(BaseModel):
    id: str
    ticket_id: str
    author_id: str
    author_name: str
    note: str
    created_at: datetime

    @classmethod
    def from_entity(cls, note: Note, staff: Mapping[str, Staff]) -> "NoteView":
        return cls(
            id=note.id,
            ticket_id=note.ticket_id,
            author_id=note.author_id,
            author_name=_staff_name(note.author_id, staff) or UNKNOWN_STAFF_NAME,
            note=note.note,
            created_at=note.created_at,
        )


class AssignmentView(BaseModel):
    id: str
    staff_id: str
    staff_name: str
    previous_staff_id: str | None = None
    previous_staff_name: str | None = None
    assigned_by: str
    assigned_by_name: str
    created_at: datetime

    @classmethod
    def from_entity(cls, event: AssignmentEvent, staff: Mapping[str, Staff]) -> "AssignmentView":
        return cls(
            id=event.id,
            staff_id=event.staff_id,
            staff_name=_staff_name(event.staff_id, staff) or UNKNOWN_STAFF_NAME,
            previous_staff_id=event.previous_staff_id,
            previous_staff_name=_staff_name(event.previous_staff_id, staff),
            assigned_by=event.assigned_by,
            assigned_by_name=_staff_name(event.assigned_by, staff) or UNKNOWN_STAFF_NAME,
            created_at=event.created_at,
        )


class TicketDetail(TicketSummary):
    customer_email: str
    customer_phone: str | None = None
    version: int
    notes: list[NoteView] = Field(default_factory=list)

    @classmethod
    def from_aggregate(
        cls, ticket: Ticket, notes: Sequence[Note], staff: Mapping[str, Staff]
    ) -> "TicketDetail":
        return cls(
            **TicketSummary.from_entity(ticket, staff).model_dump(),
            customer_email=ticket.customer_email,
            customer_phone=ticket.customer_phone,
            version=ticket.version,
            notes=[NoteView.from_entity(note, staff) for note in notes],
        )


def _staff_name(staff_id: str | None, staff: Mapping[str, Staff]) -> str | None:
    if not staff_id:
        return None
    member = staff.get(staff_id)
    return member.name if member is not None else UNKNOWN_STAFF_NAME


class TicketService:
    """Facade used by the HTTP layer: public intake plus the staff workflow."""

    def __init__(
        self,
        tickets: TicketRepository,
        staff: StaffRepository,
        *,
        lifecycle: TicketLifecycleEngine,
        notes: NoteLedger,
        analytics: AnalyticsAggregator,
        directory: StaffDirectory | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._tickets = tickets
        self._staff = staff
        self.lifecycle = lifecycle
        self.notes = notes
        self.analytics = analytics
        self.directory = directory or StaffDirectory(staff)
        self._metrics = register_default_metrics(metrics or metrics_registry)

    @classmethod
    def build(
        cls,
        tickets: TicketRepository,
        staff: StaffRepository,
        *,
        transition_policy: TransitionPolicy = TransitionPolicy.PERMISSIVE,
        resolved_at_policy: ResolvedAtPolicy = ResolvedAtPolicy.FIRST,
        max_update_retries: int = 3,
        clock: Callable[[], datetime] = utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> "TicketService":
        """Wire the lifecycle engine and note ledger around one shared lock registry."""

        registry = register_default_metrics(metrics or metrics_registry)
        locks = TicketLockRegistry()
        return cls(
            tickets,
            staff,
            lifecycle=TicketLifecycleEngine(
                tickets,
                staff,
                state_machine=TicketStateMachine(transition_policy),
                resolved_at_policy=resolved_at_policy,
                locks=locks,
                clock=clock,
                max_retries=max_update_retries,
                metrics=registry,
            ),
            notes=NoteLedger(
                tickets, staff, locks=locks, clock=clock, max_retries=max_update_retries, metrics=registry
            ),
            analytics=AnalyticsAggregator(tickets, staff, clock=clock, metrics=registry),
            directory=StaffDirectory(staff),
            metrics=registry,
        )

    @classmethod
    def from_session_factory(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        max_number_attempts: int = 5,
        number_generator: TicketNumberGenerator | None = None,
        clock: Callable[[], datetime] = utcnow,
        metrics: MetricsRegistry | None = None,
        **options: Any,
    ) -> "TicketService":
        tickets = SqlTicketRepository(
            session_factory,
            engine=engine,
            number_generator=number_generator,
            max_number_attempts=max_number_attempts,
            clock=clock,
            metrics=metrics,
        )
        staff = SqlStaffRepository(session_factory, clock=clock)
        return cls.build(tickets, staff, clock=clock, metrics=metrics, **options)

    async def ensure_schema(self) -> None:
        ensure = getattr(self._tickets, "ensure_schema", None)
        if ensure is not None:
            await ensure()

    async def submit_ticket(self, fields: TicketCreate | Mapping[str, Any]) -> str:
        ticket = await self._tickets.create(fields)
        self._metrics.counter(TICKETS_CREATED).inc()
        return ticket.ticket_number

    async def lookup_ticket(self, ticket_number: str) -> TicketView:
        ticket = await self._tickets.get_by_number(ticket_number)
        return TicketView.from_entity(ticket)

    async def list_tickets(
        self,
        actor: Actor | None,
        filter: TicketFilter | None = None,
        sort: TicketSort | None = None,
    ) -> list[TicketSummary]:
        require_staff(actor, "list tickets")
        tickets = await self._tickets.list(filter, sort)
        staff = await self._staff.get_many([ticket.assigned_to for ticket in tickets if ticket.assigned_to])
        return [TicketSummary.from_entity(ticket, staff) for ticket in tickets]

    async def get_ticket(self, ticket_id: str, actor: Actor | None) -> TicketDetail:
        require_staff(actor, "view tickets")
        ticket = await self._tickets.get_by_id(ticket_id)
        notes = await self._tickets.list_notes(ticket_id)
        staff = await self._staff.get_many(
            [ticket.assigned_to or "", *(note.author_id for note in notes)]
        )
        return TicketDetail.from_aggregate(ticket, notes, staff)

    async def assign_ticket(self, ticket_id: str, staff_id: str, actor: Actor | None) -> TicketSummary:
        ticket = await self.lifecycle.assign(ticket_id, staff_id, actor)
        staff = await self._staff.get_many([staff_id])
        return TicketSummary.from_entity(ticket, staff)

    async def update_status(
        self, ticket_id: str, status: TicketStatus | str, actor: Actor | None
    ) -> TicketSummary:
        ticket = await self.lifecycle.set_status(ticket_id, status, actor)
        staff = await self._staff.get_many([ticket.assigned_to or ""])
        return TicketSummary.from_entity(ticket, staff)

    async def add_note(self, ticket_id: str, text: str, actor: Actor | None) -> NoteView:
        require_staff(actor, "add notes")
        note = await self.notes.add_note(ticket_id, actor.id, text)
        staff = await self._staff.get_many([note.author_id])
        return NoteView.from_entity(note, staff)

    async def list_notes(self, ticket_id: str, actor: Actor | None) -> list[NoteView]:
        require_staff(actor, "view notes")
        notes = await self.notes.list_notes(ticket_id)
        staff = await self._staff.get_many([note.author_id for note in notes])
        return [NoteView.from_entity(note, staff) for note in notes]

    async def get_assignment_history(self, ticket_id: str, actor: Actor | None) -> list[AssignmentView]:
        require_staff(actor, "view assignment history")
        events = await self.lifecycle.get_assignment_history(ticket_id)
        ids: list[str] = []
        for event in events:
            ids.extend(filter(None, (event.staff_id, event.previous_staff_id, event.assigned_by)))
        staff = await self._staff.get_many(ids)
        return [AssignmentView.from_entity(event, staff) for event in events]

    async def get_analytics(
        self,
        actor: Actor | None,
        date_range: DateRange | None = None,
        *,
        year: int | None = None,
    ) -> AnalyticsSnapshot:
        require_staff(actor, "view analytics")
        return await self.analytics.compute(date_range, year=year)
