"""Read-only dashboard aggregates derived from ticket state."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from apps.api.metrics import MetricsRegistry, metrics_registry, register_default_metrics
from apps.api.metrics.definitions import ANALYTICS_DURATION

from .errors import ValidationError
from .repository import StaffRepository, TicketRepository
from .tickets import (
    RESOLVING_STATUSES,
    Severity,
    StaffRole,
    StaffStatus,
    Ticket,
    TicketStatus,
    ensure_datetime,
    utcnow,
)

logger = logging.getLogger(__name__)

MONTH_LABELS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")


def percent_change(current: int, previous: int) -> float:
    """Month-over-month change in percent; zero when there is no baseline."""

    if previous == 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


@dataclass(slots=True, frozen=True)
class DateRange:
    """Inclusive window applied to ``created_at``."""

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_datetime(self.start))
        object.__setattr__(self, "end", ensure_datetime(self.end))
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValidationError(
                "Invalid date range",
                [{"field": "start", "message": "Start must not be after end"}],
            )


@dataclass(slots=True)
class MonthlyBucket:
    month: str
    created: int = 0
    resolved: int = 0


@dataclass(slots=True)
class AnalyticsSnapshot:
    total_tickets: int = 0
    resolved_tickets: int = 0
    assigned_tickets: int = 0
    active_staff: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)
    current_month_created: int = 0
    previous_month_created: int = 0
    created_change_percent: float = 0.0
    created_increased: bool = True
    current_month_resolved: int = 0
    previous_month_resolved: int = 0
    resolved_change_percent: float = 0.0
    resolved_increased: bool = True
    average_resolution_hours: float = 0.0
    year: int = 0
    monthly: list[MonthlyBucket] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _month_key(moment: datetime) -> tuple[int, int]:
    return moment.year, moment.month


def _previous_month(key: tuple[int, int]) -> tuple[int, int]:
    year, month = key
    return (year - 1, 12) if month == 1 else (year, month - 1)


class AnalyticsAggregator:
    """Compute an :class:`AnalyticsSnapshot` from the ticket and staff repositories."""

    def __init__(
        self,
        tickets: TicketRepository,
        staff: StaffRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._tickets = tickets
        self._staff = staff
        self._clock = clock
        self._metrics = register_default_metrics(metrics or metrics_registry)

    async def compute(self, date_range: DateRange | None = None, *, year: int | None = None) -> AnalyticsSnapshot:
        window = date_range or DateRange()
        with self._metrics.time_distribution(ANALYTICS_DURATION):
            tickets = await self._tickets.scan(window.start, window.end)
            agents = await self._staff.list(role=StaffRole.CALLCENTRE, status=StaffStatus.ACTIVE)
            snapshot = self.summarize(tickets, now=self._clock(), year=year)
            snapshot.active_staff = len(agents)
        logger.debug("Computed analytics over %d tickets", snapshot.total_tickets)
        return snapshot

    @staticmethod
    def summarize(tickets: Iterable[Ticket], *, now: datetime, year: int | None = None) -> AnalyticsSnapshot:
        records = list(tickets)
        target_year = year or now.year
        current = _month_key(now)
        previous = _previous_month(current)

        by_status = Counter({status.value: 0 for status in TicketStatus})
        by_severity = Counter({severity.value: 0 for severity in Severity})
        created_per_month: Counter[tuple[int, int]] = Counter()
        resolved_per_month: Counter[tuple[int, int]] = Counter()
        resolution_hours: list[float] = []

        for ticket in records:
            by_status[ticket.status.value] += 1
            by_severity[ticket.severity.value] += 1
            created_per_month[_month_key(ticket.created_at)] += 1
            if ticket.resolved_at is not None:
                resolved_per_month[_month_key(ticket.resolved_at)] += 1
                elapsed = ticket.resolved_at - ticket.created_at
                resolution_hours.append(max(elapsed.total_seconds(), 0.0) / 3600)

        created_change = percent_change(created_per_month[current], created_per_month[previous])
        resolved_change = percent_change(resolved_per_month[current], resolved_per_month[previous])

        return AnalyticsSnapshot(
            total_tickets=len(records),
            resolved_tickets=sum(1 for ticket in records if ticket.status in RESOLVING_STATUSES),
            assigned_tickets=sum(1 for ticket in records if ticket.assigned_to),
            by_status=dict(by_status),
            by_severity=dict(by_severity),
            current_month_created=created_per_month[current],
            previous_month_created=created_per_month[previous],
            created_change_percent=created_change,
            created_increased=created_change >= 0,
            current_month_resolved=resolved_per_month[current],
            previous_month_resolved=resolved_per_month[previous],
            resolved_change_percent=resolved_change,
            resolved_increased=resolved_change >= 0,
            average_resolution_hours=(
                round(sum(resolution_hours) / len(resolution_hours), 2) if resolution_hours else 0.0
            ),
            year=target_year,
            monthly=[
                MonthlyBucket(
                    month=label,
                    created=created_per_month[(target_year, index)],
                    resolved=resolved_per_month[(target_year, index)],
                )
                for index, label in enumerate(MONTH_LABELS, start=1)
            ],
        )
