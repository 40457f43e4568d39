"""Service layer exports."""

from .analytics import AnalyticsAggregator, AnalyticsSnapshot, DateRange, MonthlyBucket, percent_change
from .database import PostgresConnectionTester, create_engine_and_sessions, to_asyncpg_dsn
from .errors import (
    BugdeskError,
    ConflictError,
    CreateFailedError,
    InvalidTransitionError,
    NotFoundError,
    RepositoryUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from .lifecycle import TicketLifecycleEngine
from .locks import TicketLockRegistry
from .notes import NoteLedger
from .numbers import TicketNumberGenerator
from .repository import SqlStaffRepository, SqlTicketRepository, StaffRepository, TicketRepository
from .service import AssignmentView, NoteView, TicketDetail, TicketService, TicketSummary, TicketView
from .staff import StaffDirectory

__all__ = [
    "AnalyticsAggregator",
    "AnalyticsSnapshot",
    "AssignmentView",
    "BugdeskError",
    "ConflictError",
    "CreateFailedError",
    "DateRange",
    "InvalidTransitionError",
    "MonthlyBucket",
    "NoteLedger",
    "NoteView",
    "NotFoundError",
    "PostgresConnectionTester",
    "RepositoryUnavailableError",
    "SqlStaffRepository",
    "SqlTicketRepository",
    "StaffDirectory",
    "StaffRepository",
    "TicketDetail",
    "TicketLifecycleEngine",
    "TicketLockRegistry",
    "TicketNumberGenerator",
    "TicketRepository",
    "TicketService",
    "TicketSummary",
    "TicketView",
    "UnauthorizedError",
    "ValidationError",
    "create_engine_and_sessions",
    "percent_change",
    "to_asyncpg_dsn",
]
