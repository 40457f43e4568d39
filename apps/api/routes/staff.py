from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from apps.api.dependencies.auth import AdminUser, StaffUser
from apps.api.dependencies.tickets import TicketServiceDep
from apps.api.routes.errors import service_errors
from apps.api.services.tickets import Staff, StaffCreate, StaffRole, StaffStatus, StaffUpdate


router = APIRouter(prefix="/staff", tags=["staff"])


class StaffModel(BaseModel):
    id: str
    name: str
    email: str
    employee_id: str | None = None
    role: StaffRole
    status: StaffStatus
    created_at: datetime
    last_login: datetime | None = None

    @classmethod
    def from_entity(cls, entity: Staff) -> "StaffModel":
        return cls(
            id=entity.id,
            name=entity.name,
            email=entity.email,
            employee_id=entity.employee_id,
            role=entity.role,
            status=entity.status,
            created_at=entity.created_at,
            last_login=entity.last_login,
        )


class StaffStatusRequest(BaseModel):
    status: StaffStatus


@router.get("", response_model=list[StaffModel], summary="List staff members")
async def list_staff(
    service: TicketServiceDep,
    user: StaffUser,
    role: StaffRole | None = None,
    status_filter: Annotated[StaffStatus | None, Query(alias="status")] = None,
    assignable: bool = False,
) -> list[StaffModel]:
    with service_errors():
        if assignable:
            members = await service.directory.list_assignable()
        else:
            members = await service.directory.list_staff(role=role, status=status_filter)
    return [StaffModel.from_entity(member) for member in members]


@router.post("", response_model=StaffModel, status_code=status.HTTP_201_CREATED)
async def add_staff(payload: StaffCreate, service: TicketServiceDep, user: AdminUser) -> StaffModel:
    with service_errors():
        member = await service.directory.add_staff(payload, user.as_actor())
    return StaffModel.from_entity(member)


@router.get("/{staff_id}", response_model=StaffModel)
async def get_staff(staff_id: str, service: TicketServiceDep, user: AdminUser) -> StaffModel:
    with service_errors():
        member = await service.directory.get_staff(staff_id)
    return StaffModel.from_entity(member)


@router.patch("/{staff_id}", response_model=StaffModel)
async def update_staff(
    staff_id: str, payload: StaffUpdate, service: TicketServiceDep, user: AdminUser
) -> StaffModel:
    with service_errors():
        member = await service.directory.update_staff(
            staff_id, payload.model_dump(exclude_unset=True), user.as_actor()
        )
    return StaffModel.from_entity(member)


@router.post("/{staff_id}/status", response_model=StaffModel)
async def set_staff_status(
    staff_id: str, payload: StaffStatusRequest, service: TicketServiceDep, user: AdminUser
) -> StaffModel:
    with service_errors():
        member = await service.directory.set_staff_status(staff_id, payload.status, user.as_actor())
    return StaffModel.from_entity(member)


@router.post("/{staff_id}/toggle", response_model=StaffModel)
async def toggle_staff_status(staff_id: str, service: TicketServiceDep, user: AdminUser) -> StaffModel:
    with service_errors():
        member = await service.directory.toggle_staff_status(staff_id, user.as_actor())
    return StaffModel.from_entity(member)


@router.delete("/{staff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_staff(staff_id: str, service: TicketServiceDep, user: AdminUser) -> None:
    with service_errors():
        await service.directory.delete_staff(staff_id, user.as_actor())
