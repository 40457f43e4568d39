from __future__ import annotations

import pytest

from apps.api.metrics import MetricsRegistry
from apps.api.metrics.definitions import TICKETS_CREATED
from apps.api.services.errors import NotFoundError, UnauthorizedError
from apps.api.services.repository import SqlStaffRepository
from apps.api.services.service import UNKNOWN_STAFF_NAME, TicketService
from apps.api.services.tickets import Actor, Staff, StaffRole, TicketFilter, TicketStatus
from tests.helpers import FakeClock, ticket_payload


@pytest.mark.asyncio
async def test_customer_submission_to_resolution(
    service: TicketService,
    clock: FakeClock,
    agent: Staff,
    admin_actor: Actor,
    agent_actor: Actor,
    metrics: MetricsRegistry,
):
    ticket_number = await service.submit_ticket(ticket_payload())
    assert ticket_number.startswith("TCK15032024-")
    assert metrics.counter(TICKETS_CREATED).value() == 1

    public = await service.lookup_ticket(ticket_number.lower())
    assert public.title == "Login fails on Chrome"
    assert public.status == TicketStatus.OPEN
    dumped = public.model_dump()
    for hidden in ("id", "assigned_to", "customer_email", "customer_phone", "customer_name"):
        assert hidden not in dumped

    [summary] = await service.list_tickets(agent_actor)
    assert summary.ticket_number == ticket_number
    assert summary.assignee_name is None

    clock.advance(minutes=3)
    assigned = await service.assign_ticket(summary.id, agent.id, admin_actor)
    assert assigned.assignee_name == "Alan Agent"

    clock.advance(minutes=3)
    note = await service.add_note(summary.id, "Reproduced on Chrome 122.", agent_actor)
    assert note.author_name == "Alan Agent"

    clock.advance(minutes=3)
    resolved = await service.update_status(summary.id, "resolved", agent_actor)
    assert resolved.status == TicketStatus.RESOLVED
    assert resolved.resolved_at == clock.now

    detail = await service.get_ticket(summary.id, agent_actor)
    assert detail.customer_email == "ada@example.com"
    assert detail.assignee_name == "Alan Agent"
    assert [item.note for item in detail.notes] == ["Reproduced on Chrome 122."]
    assert detail.version == 4

    history = await service.get_assignment_history(summary.id, agent_actor)
    assert [(item.staff_name, item.assigned_by_name) for item in history] == [("Alan Agent", "Grace Admin")]

    tracked = await service.lookup_ticket(ticket_number)
    assert tracked.status == TicketStatus.RESOLVED
    assert tracked.resolved_at == resolved.resolved_at


@pytest.mark.asyncio
async def test_deleted_staff_render_as_unknown(
    service: TicketService,
    staff_repository: SqlStaffRepository,
    agent: Staff,
    admin_actor: Actor,
):
    number = await service.submit_ticket(ticket_payload())
    [summary] = await service.list_tickets(admin_actor)
    await service.assign_ticket(summary.id, agent.id, admin_actor)
    await service.add_note(summary.id, "Handing over", Actor(id=agent.id, role=StaffRole.CALLCENTRE))

    await staff_repository.delete(agent.id)

    detail = await service.get_ticket(summary.id, admin_actor)
    assert detail.assigned_to == agent.id
    assert detail.assignee_name == UNKNOWN_STAFF_NAME
    assert detail.notes[0].author_name == UNKNOWN_STAFF_NAME
    assert (await service.lookup_ticket(number)).ticket_number == number


@pytest.mark.asyncio
async def test_staff_operations_reject_public_callers(service: TicketService, admin_actor: Actor):
    await service.submit_ticket(ticket_payload())
    public = Actor(id="anonymous")

    with pytest.raises(UnauthorizedError):
        await service.list_tickets(public)
    with pytest.raises(UnauthorizedError):
        await service.get_analytics(None)
    with pytest.raises(UnauthorizedError):
        await service.add_note("whatever", "text", public)


@pytest.mark.asyncio
async def test_list_tickets_filters_by_assignee(service: TicketService, agent: Staff, admin_actor: Actor):
    await service.submit_ticket(ticket_payload(title="First report"))
    await service.submit_ticket(ticket_payload(title="Second report"))
    tickets = await service.list_tickets(admin_actor)
    await service.assign_ticket(tickets[0].id, agent.id, admin_actor)

    mine = await service.list_tickets(admin_actor, TicketFilter(assigned_to=agent.id))

    assert [item.id for item in mine] == [tickets[0].id]


@pytest.mark.asyncio
async def test_lookup_unknown_number(service: TicketService):
    with pytest.raises(NotFoundError):
        await service.lookup_ticket("TCK01012024-9999")
