from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from apps.api.dependencies.auth import StaffUser
from apps.api.dependencies.tickets import TicketServiceDep
from apps.api.routes.errors import service_errors
from apps.api.services.analytics import DateRange


router = APIRouter(prefix="/analytics", tags=["analytics"])


class MonthlyBucketModel(BaseModel):
    month: str
    created: int
    resolved: int


class AnalyticsModel(BaseModel):
    total_tickets: int
    resolved_tickets: int
    assigned_tickets: int
    active_staff: int
    by_status: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    current_month_created: int
    previous_month_created: int
    created_change_percent: float
    created_increased: bool
    current_month_resolved: int
    previous_month_resolved: int
    resolved_change_percent: float
    resolved_increased: bool
    average_resolution_hours: float
    year: int
    monthly: list[MonthlyBucketModel] = Field(default_factory=list)


@router.get("", response_model=AnalyticsModel, summary="Dashboard aggregates")
async def get_analytics(
    service: TicketServiceDep,
    user: StaffUser,
    start: datetime | None = None,
    end: datetime | None = None,
    year: Annotated[int | None, Query(ge=1970, le=9999)] = None,
) -> AnalyticsModel:
    with service_errors():
        window = DateRange(start=start, end=end) if start or end else None
        snapshot = await service.get_analytics(user.as_actor(), window, year=year)
    return AnalyticsModel.model_validate(snapshot.to_dict())
