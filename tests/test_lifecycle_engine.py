from __future__ import annotations

import asyncio

import pytest

from apps.api.metrics import MetricsRegistry
from apps.api.metrics.definitions import (
    TICKET_ASSIGNMENTS,
    TICKET_STATUS_CHANGES,
    TICKET_VERSION_CONFLICTS,
)
from apps.api.services.errors import ConflictError, InvalidTransitionError, NotFoundError, UnauthorizedError
from apps.api.services.lifecycle import TicketLifecycleEngine
from apps.api.services.repository import SqlStaffRepository, SqlTicketRepository
from apps.api.services.service import TicketService
from apps.api.services.tickets import (
    Actor,
    ResolvedAtPolicy,
    Staff,
    TicketStateMachine,
    TicketStatus,
    TransitionPolicy,
)
from tests.helpers import FakeClock, ticket_payload


@pytest.mark.asyncio
async def test_assign_moves_ticket_to_assigned_and_logs_event(
    service: TicketService,
    ticket_repository: SqlTicketRepository,
    agent: Staff,
    admin_actor: Actor,
    metrics: MetricsRegistry,
):
    ticket = await ticket_repository.create(ticket_payload())

    assigned = await service.lifecycle.assign(ticket.id, agent.id, admin_actor)

    assert assigned.status == TicketStatus.ASSIGNED
    assert assigned.assigned_to == agent.id
    assert assigned.updated_at > ticket.created_at
    assert assigned.version == 2

    history = await service.lifecycle.get_assignment_history(ticket.id)
    assert [(event.staff_id, event.previous_staff_id, event.assigned_by) for event in history] == [
        (agent.id, None, admin_actor.id)
    ]
    assert metrics.counter(TICKET_ASSIGNMENTS).value() == 1


@pytest.mark.asyncio
async def test_reassignment_keeps_history_in_order(
    service: TicketService,
    ticket_repository: SqlTicketRepository,
    admin: Staff,
    agent: Staff,
    admin_actor: Actor,
    agent_actor: Actor,
):
    ticket = await ticket_repository.create(ticket_payload())

    await service.lifecycle.assign(ticket.id, agent.id, admin_actor)
    reassigned = await service.lifecycle.assign(ticket.id, admin.id, agent_actor)

    assert reassigned.assigned_to == admin.id
    history = await service.lifecycle.get_assignment_history(ticket.id)
    assert [event.staff_id for event in history] == [agent.id, admin.id]
    assert history[1].previous_staff_id == agent.id
    assert history[0].created_at < history[1].created_at


@pytest.mark.asyncio
async def test_assign_requires_staff_actor(service: TicketService, ticket_repository: SqlTicketRepository, agent: Staff):
    ticket = await ticket_repository.create(ticket_payload())

    with pytest.raises(UnauthorizedError):
        await service.lifecycle.assign(ticket.id, agent.id, Actor(id="anonymous"))
    with pytest.raises(UnauthorizedError):
        await service.lifecycle.assign(ticket.id, agent.id, None)

    assert (await ticket_repository.get_by_id(ticket.id)).version == 1


@pytest.mark.asyncio
async def test_assign_validates_assignee(
    service: TicketService,
    ticket_repository: SqlTicketRepository,
    staff_repository: SqlStaffRepository,
    agent: Staff,
    admin_actor: Actor,
):
    ticket = await ticket_repository.create(ticket_payload())

    with pytest.raises(NotFoundError):
        await service.lifecycle.assign(ticket.id, "no-such-staff", admin_actor)

    await staff_repository.update(agent.id, {"status": "inactive"})
    with pytest.raises(UnauthorizedError):
        await service.lifecycle.assign(ticket.id, agent.id, admin_actor)

    unchanged = await ticket_repository.get_by_id(ticket.id)
    assert unchanged.assigned_to is None
    assert unchanged.status == TicketStatus.OPEN


@pytest.mark.asyncio
async def test_assign_rejected_from_closed_but_allowed_from_resolved(
    service: TicketService, ticket_repository: SqlTicketRepository, agent: Staff, admin_actor: Actor
):
    resolved = await ticket_repository.create(ticket_payload())
    closed = await ticket_repository.create(ticket_payload(title="Another failure"))
    await service.lifecycle.set_status(resolved.id, "resolved", admin_actor)
    await service.lifecycle.set_status(closed.id, "closed", admin_actor)

    with pytest.raises(InvalidTransitionError):
        await service.lifecycle.assign(closed.id, agent.id, admin_actor)

    reopened = await service.lifecycle.assign(resolved.id, agent.id, admin_actor)
    assert reopened.status == TicketStatus.ASSIGNED
    assert reopened.resolved_at is not None


@pytest.mark.asyncio
async def test_resolved_at_is_set_once_and_survives_reopen(
    service: TicketService,
    ticket_repository: SqlTicketRepository,
    clock: FakeClock,
    admin_actor: Actor,
    metrics: MetricsRegistry,
):
    ticket = await ticket_repository.create(ticket_payload())

    clock.advance(hours=2)
    resolved = await service.lifecycle.set_status(ticket.id, TicketStatus.RESOLVED, admin_actor)
    first_resolution = resolved.resolved_at
    assert first_resolution == clock.now

    clock.advance(hours=1)
    reopened = await service.lifecycle.set_status(ticket.id, "new", admin_actor)
    assert reopened.status == TicketStatus.OPEN
    assert reopened.resolved_at == first_resolution

    clock.advance(hours=1)
    closed = await service.lifecycle.set_status(ticket.id, "closed", admin_actor)
    assert closed.resolved_at == first_resolution
    assert closed.updated_at == clock.now

    assert metrics.counter(TICKET_STATUS_CHANGES).value(labels={"status": "resolved"}) == 1
    assert metrics.counter(TICKET_STATUS_CHANGES).value(labels={"status": TicketStatus.OPEN}) == 1


@pytest.mark.asyncio
async def test_latest_policy_overwrites_resolved_at(
    ticket_repository: SqlTicketRepository,
    staff_repository: SqlStaffRepository,
    clock: FakeClock,
    admin_actor: Actor,
    metrics: MetricsRegistry,
):
    engine = TicketLifecycleEngine(
        ticket_repository,
        staff_repository,
        resolved_at_policy=ResolvedAtPolicy.LATEST,
        clock=clock,
        metrics=metrics,
    )
    ticket = await ticket_repository.create(ticket_payload())

    await engine.set_status(ticket.id, "resolved", admin_actor)
    clock.advance(days=1)
    closed = await engine.set_status(ticket.id, "closed", admin_actor)

    assert closed.resolved_at == clock.now


@pytest.mark.asyncio
async def test_strict_policy_rejects_reopening_closed(
    ticket_repository: SqlTicketRepository,
    staff_repository: SqlStaffRepository,
    clock: FakeClock,
    admin_actor: Actor,
    metrics: MetricsRegistry,
):
    engine = TicketLifecycleEngine(
        ticket_repository,
        staff_repository,
        state_machine=TicketStateMachine(TransitionPolicy.STRICT),
        clock=clock,
        metrics=metrics,
    )
    ticket = await ticket_repository.create(ticket_payload())
    await engine.set_status(ticket.id, "closed", admin_actor)

    with pytest.raises(InvalidTransitionError):
        await engine.set_status(ticket.id, "open", admin_actor)

    assert (await ticket_repository.get_by_id(ticket.id)).status == TicketStatus.CLOSED


@pytest.mark.asyncio
async def test_set_status_rejects_unknown_status_and_ticket(
    service: TicketService, ticket_repository: SqlTicketRepository, agent_actor: Actor
):
    ticket = await ticket_repository.create(ticket_payload())

    with pytest.raises(InvalidTransitionError):
        await service.lifecycle.set_status(ticket.id, "archived", agent_actor)
    with pytest.raises(NotFoundError):
        await service.lifecycle.set_status("missing", "closed", agent_actor)

    assert (await ticket_repository.get_by_id(ticket.id)).version == 1


@pytest.mark.asyncio
async def test_every_transition_advances_updated_at(
    service: TicketService, ticket_repository: SqlTicketRepository, agent: Staff, agent_actor: Actor
):
    ticket = await ticket_repository.create(ticket_payload())
    stamps = [ticket.created_at]

    for status in ("in_progress", "in_progress", "resolved", "open"):
        updated = await service.lifecycle.set_status(ticket.id, status, agent_actor)
        stamps.append(updated.updated_at)
    stamps.append((await service.lifecycle.assign(ticket.id, agent.id, agent_actor)).updated_at)

    assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))


@pytest.mark.asyncio
async def test_concurrent_assign_and_status_change_both_apply(
    service: TicketService, ticket_repository: SqlTicketRepository, agent: Staff, admin_actor: Actor
):
    ticket = await ticket_repository.create(ticket_payload())

    await asyncio.gather(
        service.lifecycle.assign(ticket.id, agent.id, admin_actor),
        service.lifecycle.set_status(ticket.id, "in_progress", admin_actor),
    )

    final = await ticket_repository.get_by_id(ticket.id)
    assert final.assigned_to == agent.id
    assert final.status == TicketStatus.IN_PROGRESS
    assert final.version == 3
    assert len(service.lifecycle.locks) == 0


@pytest.mark.asyncio
async def test_version_conflict_rereads_and_reapplies(
    service: TicketService,
    ticket_repository: SqlTicketRepository,
    admin_actor: Actor,
    metrics: MetricsRegistry,
    monkeypatch,
):
    ticket = await ticket_repository.create(ticket_payload())
    original_get = ticket_repository.get_by_id
    interfered: list[str] = []

    async def get_then_interfere(ticket_id: str):
        current = await original_get(ticket_id)
        if not interfered:
            interfered.append(ticket_id)
            await ticket_repository.update(ticket_id, {"title": "Edited by another worker"})
        return current

    monkeypatch.setattr(ticket_repository, "get_by_id", get_then_interfere)

    updated = await service.lifecycle.set_status(ticket.id, "resolved", admin_actor)

    assert updated.title == "Edited by another worker"
    assert updated.status == TicketStatus.RESOLVED
    assert updated.version == 3
    assert metrics.counter(TICKET_VERSION_CONFLICTS).value() == 1


@pytest.mark.asyncio
async def test_version_conflict_surfaces_after_retries(
    ticket_repository: SqlTicketRepository,
    staff_repository: SqlStaffRepository,
    clock: FakeClock,
    admin_actor: Actor,
    metrics: MetricsRegistry,
    monkeypatch,
):
    engine = TicketLifecycleEngine(ticket_repository, staff_repository, clock=clock, max_retries=2, metrics=metrics)
    ticket = await ticket_repository.create(ticket_payload())
    original_get = ticket_repository.get_by_id

    async def always_stale(ticket_id: str):
        current = await original_get(ticket_id)
        await ticket_repository.update(ticket_id, {"severity": "low"})
        return current

    monkeypatch.setattr(ticket_repository, "get_by_id", always_stale)

    with pytest.raises(ConflictError):
        await engine.set_status(ticket.id, "closed", admin_actor)

    assert metrics.counter(TICKET_VERSION_CONFLICTS).value() == 3
    assert (await original_get(ticket.id)).status == TicketStatus.OPEN
