from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from apps.api.dependencies.auth import StaffUser
from apps.api.dependencies.tickets import TicketServiceDep
from apps.api.routes.errors import service_errors
from apps.api.services.service import AssignmentView, NoteView, TicketDetail, TicketSummary, TicketView
from apps.api.services.tickets import SortField, TicketCreate, TicketFilter, TicketSort, TicketStatus


router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketSubmittedModel(BaseModel):
    ticket_number: str


class TicketAssignRequest(BaseModel):
    staff_id: str


class TicketStatusChangeRequest(BaseModel):
    status: str


class TicketNoteCreateRequest(BaseModel):
    note: str = Field(default="")


@router.post(
    "",
    response_model=TicketSubmittedModel,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a bug report",
)
async def submit_ticket(payload: TicketCreate, service: TicketServiceDep) -> TicketSubmittedModel:
    with service_errors(public=True):
        ticket_number = await service.submit_ticket(payload)
    return TicketSubmittedModel(ticket_number=ticket_number)


@router.get("/lookup/{ticket_number}", response_model=TicketView, summary="Track a ticket by number")
async def lookup_ticket(ticket_number: str, service: TicketServiceDep) -> TicketView:
    with service_errors(public=True):
        return await service.lookup_ticket(ticket_number)


@router.get("", response_model=list[TicketSummary], summary="List tickets")
async def list_tickets(
    service: TicketServiceDep,
    user: StaffUser,
    status_filter: Annotated[TicketStatus | None, Query(alias="status")] = None,
    assigned_to: str | None = None,
    search: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    sort: SortField = SortField.CREATED_AT,
    descending: bool = True,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[TicketSummary]:
    with service_errors():
        return await service.list_tickets(
            user.as_actor(),
            TicketFilter(
                status=status_filter,
                assigned_to=assigned_to,
                search=search,
                created_from=created_from,
                created_to=created_to,
            ),
            TicketSort(field=sort, descending=descending, limit=limit, offset=offset),
        )


@router.get("/{ticket_id}", response_model=TicketDetail)
async def get_ticket(ticket_id: str, service: TicketServiceDep, user: StaffUser) -> TicketDetail:
    with service_errors():
        return await service.get_ticket(ticket_id, user.as_actor())


@router.post("/{ticket_id}/assign", response_model=TicketSummary)
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    user: StaffUser,
) -> TicketSummary:
    with service_errors():
        return await service.assign_ticket(ticket_id, payload.staff_id, user.as_actor())


@router.post("/{ticket_id}/status", response_model=TicketSummary)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    user: StaffUser,
) -> TicketSummary:
    with service_errors():
        return await service.update_status(ticket_id, payload.status, user.as_actor())


@router.post("/{ticket_id}/notes", response_model=NoteView, status_code=status.HTTP_201_CREATED)
async def add_ticket_note(
    ticket_id: str,
    payload: TicketNoteCreateRequest,
    service: TicketServiceDep,
    user: StaffUser,
) -> NoteView:
    with service_errors():
        return await service.add_note(ticket_id, payload.note, user.as_actor())


@router.get("/{ticket_id}/notes", response_model=list[NoteView])
async def list_ticket_notes(ticket_id: str, service: TicketServiceDep, user: StaffUser) -> list[NoteView]:
    with service_errors():
        return await service.list_notes(ticket_id, user.as_actor())


@router.get("/{ticket_id}/assignments", response_model=list[AssignmentView])
async def list_ticket_assignments(
    ticket_id: str, service: TicketServiceDep, user: StaffUser
) -> list[AssignmentView]:
    with service_errors():
        return await service.get_assignment_history(ticket_id, user.as_actor())
