from __future__ import annotations

import logging
from typing import Any, Mapping

from .repository import StaffRepository
from .tickets import Actor, Staff, StaffCreate, StaffRole, StaffStatus, require_admin

logger = logging.getLogger(__name__)


class StaffDirectory:
    """Admin-managed roster of call-centre agents and administrators."""

    def __init__(self, staff: StaffRepository) -> None:
        self._staff = staff

    async def add_staff(self, data: StaffCreate | Mapping[str, Any], actor: Actor | None) -> Staff:
        require_admin(actor, "add staff members")
        member = await self._staff.create(data)
        logger.info("Staff member %s (%s) added by %s", member.id, member.role.value, actor.id)
        return member

    async def update_staff(self, staff_id: str, changes: Mapping[str, Any], actor: Actor | None) -> Staff:
        require_admin(actor, "update staff members")
        member = await self._staff.update(staff_id, changes)
        logger.info("Staff member %s updated by %s: %s", staff_id, actor.id, sorted(changes))
        return member

    async def set_staff_status(self, staff_id: str, status: StaffStatus | str, actor: Actor | None) -> Staff:
        return await self.update_staff(staff_id, {"status": StaffStatus(status)}, actor)

    async def toggle_staff_status(self, staff_id: str, actor: Actor | None) -> Staff:
        require_admin(actor, "update staff members")
        member = await self._staff.get(staff_id)
        target = StaffStatus.INACTIVE if member.is_active else StaffStatus.ACTIVE
        return await self.set_staff_status(staff_id, target, actor)

    async def delete_staff(self, staff_id: str, actor: Actor | None) -> None:
        require_admin(actor, "delete staff members")
        await self._staff.delete(staff_id)
        # Tickets keep the dangling id; views render it as "Unknown".
        logger.info("Staff member %s deleted by %s", staff_id, actor.id)

    async def get_staff(self, staff_id: str) -> Staff:
        return await self._staff.get(staff_id)

    async def list_staff(
        self,
        role: StaffRole | str | None = None,
        status: StaffStatus | str | None = None,
    ) -> list[Staff]:
        return await self._staff.list(
            role=StaffRole(role) if role is not None else None,
            status=StaffStatus(status) if status is not None else None,
        )

    async def list_assignable(self) -> list[Staff]:
        members = await self._staff.list(status=StaffStatus.ACTIVE)
        return [member for member in members if member.is_assignable]
