from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from apps.api.metrics import MetricsRegistry, metrics_registry, register_default_metrics
from apps.api.metrics.definitions import (
    TICKET_ASSIGNMENTS,
    TICKET_OPERATION_DURATION,
    TICKET_STATUS_CHANGES,
    TICKET_VERSION_CONFLICTS,
)

from .errors import ConflictError, UnauthorizedError
from .locks import TicketLockRegistry
from .repository import StaffRepository, TicketRepository
from .tickets import (
    RESOLVING_STATUSES,
    Actor,
    AssignmentEvent,
    ResolvedAtPolicy,
    Ticket,
    TicketChange,
    TicketStateMachine,
    TicketStatus,
    advance_timestamp,
    require_staff,
    utcnow,
)

logger = logging.getLogger(__name__)

ChangePlanner = Callable[[Ticket], TicketChange]


async def apply_with_retry(
    tickets: TicketRepository,
    ticket_id: str,
    plan: ChangePlanner,
    *,
    max_retries: int,
    metrics: MetricsRegistry,
    current: Ticket | None = None,
) -> tuple[Ticket, TicketChange]:
    """Run a versioned read-modify-write, re-planning against fresh state on conflict."""

    attempts = max(0, max_retries) + 1
    for attempt in range(1, attempts + 1):
        ticket = current if current is not None else await tickets.get_by_id(ticket_id)
        current = None
        change = plan(ticket)
        try:
            updated = await tickets.update(
                ticket_id,
                change.fields,
                expected_version=ticket.version,
                assignment=change.assignment,
                note=change.note,
            )
        except ConflictError:
            metrics.counter(TICKET_VERSION_CONFLICTS).inc()
            logger.warning(
                "Version conflict on ticket %s (attempt %d/%d)", ticket_id, attempt, attempts
            )
            if attempt == attempts:
                raise
            continue
        return updated, change
    raise ConflictError(f"Ticket {ticket_id} could not be updated")  # pragma: no cover


class TicketLifecycleEngine:
    """Assignment and status transitions for persisted tickets."""

    def __init__(
        self,
        tickets: TicketRepository,
        staff: StaffRepository,
        *,
        state_machine: TicketStateMachine | None = None,
        resolved_at_policy: ResolvedAtPolicy = ResolvedAtPolicy.FIRST,
        locks: TicketLockRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 3,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._tickets = tickets
        self._staff = staff
        self._state_machine = state_machine or TicketStateMachine()
        self._resolved_at_policy = ResolvedAtPolicy(resolved_at_policy)
        self._locks = locks or TicketLockRegistry()
        self._clock = clock
        self._max_retries = max_retries
        self._metrics = register_default_metrics(metrics or metrics_registry)

    @property
    def locks(self) -> TicketLockRegistry:
        return self._locks

    @property
    def state_machine(self) -> TicketStateMachine:
        return self._state_machine

    async def assign(self, ticket_id: str, staff_id: str, actor: Actor | None) -> Ticket:
        """Assign ``ticket_id`` to an active staff member and move it to ``assigned``."""

        require_staff(actor, "assign tickets")
        async with self._locks.hold(ticket_id):
            with self._metrics.time_distribution(TICKET_OPERATION_DURATION, labels={"operation": "assign"}):
                assignee = await self._staff.get(staff_id)
                if not assignee.is_assignable:
                    raise UnauthorizedError(f"Staff member {staff_id} cannot be assigned tickets")

                def plan(ticket: Ticket) -> TicketChange:
                    self._state_machine.assert_assignable(ticket.status)
                    now = self._next_timestamp(ticket)
                    return TicketChange(
                        fields={
                            "assigned_to": assignee.id,
                            "status": TicketStatus.ASSIGNED,
                            "updated_at": now,
                        },
                        assignment=AssignmentEvent(
                            id=str(uuid.uuid4()),
                            ticket_id=ticket.id,
                            staff_id=assignee.id,
                            previous_staff_id=ticket.assigned_to,
                            assigned_by=actor.id,
                            created_at=now,
                        ),
                    )

                updated, change = await apply_with_retry(
                    self._tickets, ticket_id, plan, max_retries=self._max_retries, metrics=self._metrics
                )

        self._metrics.counter(TICKET_ASSIGNMENTS).inc()
        logger.info(
            "Ticket %s assigned to %s by %s (previously %s)",
            updated.ticket_number,
            assignee.id,
            actor.id,
            change.assignment.previous_staff_id if change.assignment else None,
        )
        return updated

    async def set_status(self, ticket_id: str, new_status: TicketStatus | str, actor: Actor | None) -> Ticket:
        require_staff(actor, "change ticket status")
        async with self._locks.hold(ticket_id):
            target = TicketStatus.parse(new_status)
            with self._metrics.time_distribution(TICKET_OPERATION_DURATION, labels={"operation": "set_status"}):

                def plan(ticket: Ticket) -> TicketChange:
                    self._state_machine.assert_transition(ticket.status, target)
                    now = self._next_timestamp(ticket)
                    fields = {"status": target, "updated_at": now}
                    if target in RESOLVING_STATUSES and (
                        self._resolved_at_policy == ResolvedAtPolicy.LATEST or ticket.resolved_at is None
                    ):
                        fields["resolved_at"] = now
                    return TicketChange(fields=fields)

                updated, _ = await apply_with_retry(
                    self._tickets, ticket_id, plan, max_retries=self._max_retries, metrics=self._metrics
                )

        self._metrics.counter(TICKET_STATUS_CHANGES).inc(labels={"status": target})
        logger.info("Ticket %s moved to %s by %s", updated.ticket_number, target.value, actor.id)
        return updated

    async def get_assignment_history(self, ticket_id: str) -> list[AssignmentEvent]:
        return await self._tickets.list_assignments(ticket_id)

    def _next_timestamp(self, ticket: Ticket) -> datetime:
        return advance_timestamp(ticket.last_activity, self._clock())
