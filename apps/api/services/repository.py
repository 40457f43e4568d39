from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from apps.api.metrics import MetricsRegistry, metrics_registry, register_default_metrics
from apps.api.metrics.definitions import TICKET_CREATE_FAILURES, TICKET_NUMBER_COLLISIONS
from packages.db.models import StaffTable, TicketAssignmentEventTable, TicketNoteTable, TicketTable

from .errors import ConflictError, CreateFailedError, NotFoundError, RepositoryUnavailableError, ValidationError
from .numbers import TicketNumberGenerator
from .tickets import (
    AssignmentEvent,
    Note,
    Severity,
    SortField,
    Staff,
    StaffCreate,
    StaffRole,
    StaffStatus,
    StaffUpdate,
    Ticket,
    TicketCreate,
    TicketFilter,
    TicketSort,
    TicketStatus,
    TicketUpdate,
    ensure_datetime,
    utcnow,
    validate_model,
    validate_partial,
    validate_ticket_data,
)

logger = logging.getLogger(__name__)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into the service error taxonomy."""

    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(f"Conflicting write during {operation}") from exc
    except (SQLAlchemyError, OSError, TimeoutError) as exc:
        logger.error("Storage failure during %s: %s", operation, exc)
        raise RepositoryUnavailableError(f"Storage unavailable during {operation}") from exc


class TicketRepository(Protocol):
    """Persistence contract the lifecycle services are written against."""

    async def create(self, ticket_data: TicketCreate | Mapping[str, Any]) -> Ticket:
        ...

    async def get_by_id(self, ticket_id: str) -> Ticket:
        ...

    async def get_by_number(self, ticket_number: str) -> Ticket:
        ...

    async def list(self, filter: TicketFilter | None = None, sort: TicketSort | None = None) -> list[Ticket]:
        ...

    async def update(
        self,
        ticket_id: str,
        fields: Mapping[str, Any],
        *,
        expected_version: int | None = None,
        assignment: AssignmentEvent | None = None,
        note: Note | None = None,
    ) -> Ticket:
        ...

    async def scan(self, created_from: datetime | None = None, created_to: datetime | None = None) -> list[Ticket]:
        ...

    async def list_notes(self, ticket_id: str) -> list[Note]:
        ...

    async def list_assignments(self, ticket_id: str) -> list[AssignmentEvent]:
        ...


class StaffRepository(Protocol):
    async def create(self, data: StaffCreate | Mapping[str, Any]) -> Staff:
        ...

    async def get(self, staff_id: str) -> Staff:
        ...

    async def get_many(self, staff_ids: Sequence[str]) -> dict[str, Staff]:
        ...

    async def list(self, *, role: StaffRole | None = None, status: StaffStatus | None = None) -> list[Staff]:
        ...

    async def update(self, staff_id: str, fields: Mapping[str, Any]) -> Staff:
        ...

    async def delete(self, staff_id: str) -> None:
        ...


class SqlTicketRepository:
    """Persistence helper wrapping ``tickets``, ``ticket_notes`` and assignment events."""

    _LIFECYCLE_FIELDS = frozenset({"status", "assigned_to", "updated_at", "resolved_at"})
    _CONTENT_FIELDS = frozenset(TicketUpdate.model_fields)
    _SORT_COLUMNS = {
        SortField.CREATED_AT: TicketTable.created_at,
        SortField.UPDATED_AT: TicketTable.updated_at,
        SortField.TICKET_NUMBER: TicketTable.ticket_number,
    }

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        number_generator: TicketNumberGenerator | None = None,
        max_number_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._numbers = number_generator or TicketNumberGenerator()
        self._max_number_attempts = max(1, max_number_attempts)
        self._clock = clock
        self._metrics = register_default_metrics(metrics or metrics_registry)

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        with _storage_errors("ensure schema"):
            async with self._engine.begin() as connection:
                await connection.run_sync(SQLModel.metadata.create_all)

    async def create(self, ticket_data: TicketCreate | Mapping[str, Any]) -> Ticket:
        data = validate_ticket_data(ticket_data)
        ticket_id = str(uuid.uuid4())
        created_at = self._clock()

        # Only the number is regenerated between attempts; the id and payload
        # stay fixed so a retry can never produce a second ticket.
        for attempt in range(1, self._max_number_attempts + 1):
            ticket_number = self._numbers.generate(created_at)
            try:
                with _storage_errors("create ticket"):
                    async with self._session_factory() as session:
                        async with session.begin():
                            session.add(
                                TicketTable(
                                    id=ticket_id,
                                    ticket_number=ticket_number,
                                    title=data.title,
                                    application_name=data.application_name,
                                    description=data.description,
                                    steps_to_reproduce=data.steps_to_reproduce,
                                    severity=data.severity.value,
                                    customer_name=data.customer_name,
                                    customer_email=data.customer_email,
                                    customer_phone=data.customer_phone,
                                    image_urls=list(data.image_urls),
                                    video_urls=list(data.video_urls),
                                    status=TicketStatus.OPEN.value,
                                    assigned_to=None,
                                    created_at=created_at,
                                    updated_at=None,
                                    resolved_at=None,
                                    version=1,
                                )
                            )
            except ConflictError:
                self._metrics.counter(TICKET_NUMBER_COLLISIONS).inc()
                logger.warning(
                    "Ticket number %s already taken (attempt %d/%d)",
                    ticket_number,
                    attempt,
                    self._max_number_attempts,
                )
                continue

            logger.info("Created ticket %s", ticket_number)
            return Ticket(
                id=ticket_id,
                ticket_number=ticket_number,
                title=data.title,
                application_name=data.application_name,
                description=data.description,
                steps_to_reproduce=data.steps_to_reproduce,
                severity=data.severity,
                customer_name=data.customer_name,
                customer_email=data.customer_email,
                customer_phone=data.customer_phone,
                image_urls=list(data.image_urls),
                video_urls=list(data.video_urls),
                status=TicketStatus.OPEN,
                assigned_to=None,
                created_at=created_at,
                updated_at=None,
                resolved_at=None,
                version=1,
            )

        self._metrics.counter(TICKET_CREATE_FAILURES).inc()
        logger.error("Giving up on ticket creation after %d number collisions", self._max_number_attempts)
        raise CreateFailedError(
            f"Could not allocate a unique ticket number after {self._max_number_attempts} attempts"
        )

    async def get_by_id(self, ticket_id: str) -> Ticket:
        with _storage_errors("get ticket"):
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                return self._table_to_ticket(row)

    async def get_by_number(self, ticket_number: str) -> Ticket:
        normalized = TicketNumberGenerator.normalize(ticket_number)
        with _storage_errors("lookup ticket"):
            async with self._session_factory() as session:
                result = await session.execute(select(TicketTable).where(TicketTable.ticket_number == normalized))
                row = result.scalars().first()
                if row is None:
                    raise NotFoundError(f"Ticket {normalized} not found")
                return self._table_to_ticket(row)

    async def list(self, filter: TicketFilter | None = None, sort: TicketSort | None = None) -> list[Ticket]:
        criteria = filter or TicketFilter()
        ordering = sort or TicketSort()

        statement = select(TicketTable)
        if criteria.status is not None:
            statement = statement.where(TicketTable.status == TicketStatus.parse(criteria.status).value)
        if criteria.assigned_to is not None:
            statement = statement.where(TicketTable.assigned_to == criteria.assigned_to)
        if criteria.search and criteria.search.strip():
            term = criteria.search.strip().lower()
            statement = statement.where(
                or_(
                    *(
                        func.lower(column).contains(term, autoescape=True)
                        for column in (
                            TicketTable.ticket_number,
                            TicketTable.customer_name,
                            TicketTable.title,
                            TicketTable.application_name,
                        )
                    )
                )
            )
        if criteria.created_from is not None:
            statement = statement.where(TicketTable.created_at >= criteria.created_from)
        if criteria.created_to is not None:
            statement = statement.where(TicketTable.created_at <= criteria.created_to)

        column = self._SORT_COLUMNS[SortField(ordering.field)]
        statement = statement.order_by(column.desc() if ordering.descending else column.asc(), TicketTable.id)
        if ordering.offset:
            statement = statement.offset(ordering.offset)
        if ordering.limit is not None:
            statement = statement.limit(ordering.limit)

        with _storage_errors("list tickets"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def update(
        self,
        ticket_id: str,
        fields: Mapping[str, Any],
        *,
        expected_version: int | None = None,
        assignment: AssignmentEvent | None = None,
        note: Note | None = None,
    ) -> Ticket:
        values = self._prepare_changes(fields)
        if values.get("updated_at") is None:
            values["updated_at"] = self._clock()

        with _storage_errors("update ticket"):
            async with self._session_factory() as session:
                async with session.begin():
                    statement = update(TicketTable).where(TicketTable.id == ticket_id)
                    if expected_version is not None:
                        statement = statement.where(TicketTable.version == expected_version)
                    statement = statement.values(**values, version=TicketTable.version + 1).execution_options(
                        synchronize_session=False
                    )
                    result = await session.execute(statement)
                    if result.rowcount == 0:
                        current = await session.get(TicketTable, ticket_id)
                        if current is None:
                            raise NotFoundError(f"Ticket {ticket_id} not found")
                        raise ConflictError(
                            f"Ticket {ticket_id} changed concurrently "
                            f"(expected version {expected_version}, found {current.version})"
                        )
                    if assignment is not None:
                        session.add(self._assignment_to_table(assignment))
                    if note is not None:
                        session.add(self._note_to_table(note))
                    row = await session.get(TicketTable, ticket_id, populate_existing=True)
                    ticket = self._table_to_ticket(row)
        return ticket

    async def scan(self, created_from: datetime | None = None, created_to: datetime | None = None) -> list[Ticket]:
        """Every ticket created inside the optional window, oldest first."""

        return await self.list(
            TicketFilter(created_from=created_from, created_to=created_to),
            TicketSort(field=SortField.CREATED_AT, descending=False),
        )

    async def list_notes(self, ticket_id: str) -> list[Note]:
        with _storage_errors("list notes"):
            async with self._session_factory() as session:
                if await session.get(TicketTable, ticket_id) is None:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                result = await session.execute(
                    select(TicketNoteTable)
                    .where(TicketNoteTable.ticket_id == ticket_id)
                    .order_by(TicketNoteTable.created_at.asc())
                )
                return [self._table_to_note(row) for row in result.scalars().all()]

    async def list_assignments(self, ticket_id: str) -> list[AssignmentEvent]:
        with _storage_errors("list assignments"):
            async with self._session_factory() as session:
                if await session.get(TicketTable, ticket_id) is None:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                result = await session.execute(
                    select(TicketAssignmentEventTable)
                    .where(TicketAssignmentEventTable.ticket_id == ticket_id)
                    .order_by(TicketAssignmentEventTable.created_at.asc())
                )
                return [self._table_to_assignment(row) for row in result.scalars().all()]

    def _prepare_changes(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - self._LIFECYCLE_FIELDS - self._CONTENT_FIELDS
        if unknown:
            raise ValidationError(
                "Fields cannot be updated",
                [{"field": name, "message": "Field is immutable or unknown"} for name in sorted(unknown)],
            )
        content = {key: value for key, value in fields.items() if key in self._CONTENT_FIELDS}
        values = validate_partial(TicketUpdate, content, "Invalid ticket update") if content else {}
        for key in self._LIFECYCLE_FIELDS & set(fields):
            value = fields[key]
            if key == "status" and value is not None:
                value = TicketStatus.parse(value)
            values[key] = value.value if isinstance(value, Enum) else value
        if "status" in values and values["status"] is None:
            raise ValidationError("Status cannot be cleared", [{"field": "status", "message": "Required"}])
        return values

    @staticmethod
    def _note_to_table(note: Note) -> TicketNoteTable:
        return TicketNoteTable(
            id=note.id,
            ticket_id=note.ticket_id,
            author_id=note.author_id,
            note=note.note,
            created_at=note.created_at,
        )

    @staticmethod
    def _assignment_to_table(event: AssignmentEvent) -> TicketAssignmentEventTable:
        return TicketAssignmentEventTable(
            id=event.id,
            ticket_id=event.ticket_id,
            staff_id=event.staff_id,
            previous_staff_id=event.previous_staff_id,
            assigned_by=event.assigned_by,
            created_at=event.created_at,
        )

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_number=row.ticket_number,
            title=row.title,
            application_name=row.application_name,
            description=row.description,
            steps_to_reproduce=row.steps_to_reproduce,
            severity=Severity(row.severity),
            customer_name=row.customer_name,
            customer_email=row.customer_email,
            customer_phone=row.customer_phone,
            image_urls=list(row.image_urls or []),
            video_urls=list(row.video_urls or []),
            status=TicketStatus(row.status),
            assigned_to=row.assigned_to,
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
            resolved_at=ensure_datetime(row.resolved_at),
            version=row.version,
        )

    @staticmethod
    def _table_to_note(row: TicketNoteTable) -> Note:
        return Note(
            id=row.id,
            ticket_id=row.ticket_id,
            author_id=row.author_id,
            note=row.note,
            created_at=ensure_datetime(row.created_at),
        )

    @staticmethod
    def _table_to_assignment(row: TicketAssignmentEventTable) -> AssignmentEvent:
        return AssignmentEvent(
            id=row.id,
            ticket_id=row.ticket_id,
            staff_id=row.staff_id,
            previous_staff_id=row.previous_staff_id,
            assigned_by=row.assigned_by,
            created_at=ensure_datetime(row.created_at),
        )


class SqlStaffRepository:
    """Persistence helper for the ``users`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def create(self, data: StaffCreate | Mapping[str, Any]) -> Staff:
        payload = validate_model(StaffCreate, data, "Invalid staff member")
        row = StaffTable(
            id=str(uuid.uuid4()),
            name=payload.name,
            email=payload.email.lower(),
            employee_id=payload.employee_id,
            role=payload.role.value,
            status=payload.status.value,
            created_at=self._clock(),
            last_login=None,
        )
        try:
            with _storage_errors("create staff"):
                async with self._session_factory() as session:
                    async with session.begin():
                        session.add(row)
                        staff = self._table_to_staff(row)
                    return staff
        except ConflictError as exc:
            raise ConflictError(f"A staff member with email {payload.email} already exists") from exc

    async def get(self, staff_id: str) -> Staff:
        with _storage_errors("get staff"):
            async with self._session_factory() as session:
                row = await session.get(StaffTable, staff_id)
                if row is None:
                    raise NotFoundError(f"Staff member {staff_id} not found")
                return self._table_to_staff(row)

    async def get_many(self, staff_ids: Sequence[str]) -> dict[str, Staff]:
        wanted = {staff_id for staff_id in staff_ids if staff_id}
        if not wanted:
            return {}
        with _storage_errors("get staff"):
            async with self._session_factory() as session:
                result = await session.execute(select(StaffTable).where(StaffTable.id.in_(wanted)))
                return {row.id: self._table_to_staff(row) for row in result.scalars().all()}

    async def list(self, *, role: StaffRole | None = None, status: StaffStatus | None = None) -> list[Staff]:
        statement = select(StaffTable)
        if role is not None:
            statement = statement.where(StaffTable.role == StaffRole(role).value)
        if status is not None:
            statement = statement.where(StaffTable.status == StaffStatus(status).value)
        statement = statement.order_by(StaffTable.name.asc(), StaffTable.id)
        with _storage_errors("list staff"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return [self._table_to_staff(row) for row in result.scalars().all()]

    async def update(self, staff_id: str, fields: Mapping[str, Any]) -> Staff:
        values = validate_partial(StaffUpdate, fields, "Invalid staff update")
        if values.get("email"):
            values["email"] = values["email"].lower()
        try:
            with _storage_errors("update staff"):
                async with self._session_factory() as session:
                    async with session.begin():
                        row = await session.get(StaffTable, staff_id)
                        if row is None:
                            raise NotFoundError(f"Staff member {staff_id} not found")
                        for key, value in values.items():
                            setattr(row, key, value)
                        staff = self._table_to_staff(row)
                    return staff
        except ConflictError as exc:
            raise ConflictError(f"A staff member with email {values.get('email')} already exists") from exc

    async def delete(self, staff_id: str) -> None:
        with _storage_errors("delete staff"):
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(StaffTable, staff_id)
                    if row is None:
                        raise NotFoundError(f"Staff member {staff_id} not found")
                    await session.delete(row)

    @staticmethod
    def _table_to_staff(row: StaffTable) -> Staff:
        return Staff(
            id=row.id,
            name=row.name,
            email=row.email,
            employee_id=row.employee_id,
            role=StaffRole(row.role),
            status=StaffStatus(row.status),
            created_at=ensure_datetime(row.created_at),
            last_login=ensure_datetime(row.last_login),
        )
