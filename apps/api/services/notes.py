from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from apps.api.metrics import MetricsRegistry, metrics_registry, register_default_metrics
from apps.api.metrics.definitions import TICKET_NOTES, TICKET_OPERATION_DURATION

from .errors import NotFoundError, UnauthorizedError, ValidationError
from .lifecycle import apply_with_retry
from .locks import TicketLockRegistry
from .repository import StaffRepository, TicketRepository
from .tickets import Note, Ticket, TicketChange, advance_timestamp, utcnow

logger = logging.getLogger(__name__)


class NoteLedger:
    """Append-only staff notes, written under the same per-ticket lock as lifecycle changes."""

    def __init__(
        self,
        tickets: TicketRepository,
        staff: StaffRepository,
        *,
        locks: TicketLockRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 3,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._tickets = tickets
        self._staff = staff
        self._locks = locks or TicketLockRegistry()
        self._clock = clock
        self._max_retries = max_retries
        self._metrics = register_default_metrics(metrics or metrics_registry)

    async def add_note(self, ticket_id: str, author_id: str, text: str) -> Note:
        body = (text or "").strip()
        if not body:
            raise ValidationError("Note text is required", [{"field": "note", "message": "Note cannot be empty"}])

        async with self._locks.hold(ticket_id):
            with self._metrics.time_distribution(TICKET_OPERATION_DURATION, labels={"operation": "add_note"}):
                ticket = await self._tickets.get_by_id(ticket_id)
                try:
                    author = await self._staff.get(author_id)
                except NotFoundError as exc:
                    raise UnauthorizedError(f"Unknown note author {author_id}") from exc
                if not author.is_active:
                    raise UnauthorizedError(f"Staff member {author_id} is not active")

                def plan(current: Ticket) -> TicketChange:
                    now = advance_timestamp(current.last_activity, self._clock())
                    return TicketChange(
                        fields={"updated_at": now},
                        note=Note(
                            id=str(uuid.uuid4()),
                            ticket_id=current.id,
                            author_id=author.id,
                            note=body,
                            created_at=now,
                        ),
                    )

                _, change = await apply_with_retry(
                    self._tickets,
                    ticket_id,
                    plan,
                    max_retries=self._max_retries,
                    metrics=self._metrics,
                    current=ticket,
                )

        self._metrics.counter(TICKET_NOTES).inc()
        logger.info("Note added to ticket %s by %s", ticket.ticket_number, author.id)
        return change.note

    async def list_notes(self, ticket_id: str) -> list[Note]:
        return await self._tickets.list_notes(ticket_id)
