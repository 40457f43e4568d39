"""Database models and utilities."""

from .models import (
    StaffTable,
    TicketAssignmentEventTable,
    TicketNoteTable,
    TicketTable,
)

__all__ = [
    "StaffTable",
    "TicketAssignmentEventTable",
    "TicketNoteTable",
    "TicketTable",
]
