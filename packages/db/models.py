"""SQLModel table definitions for the Bugdesk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class TicketTable(SQLModel, table=True):
    """Bug reports submitted by customers."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    application_name: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    steps_to_reproduce: str = Field(sa_column=Column(Text, nullable=False))
    severity: str = Field(sa_column=Column(String(20), nullable=False))
    customer_name: str = Field(sa_column=Column(String(255), nullable=False))
    customer_email: str = Field(sa_column=Column(String(255), nullable=False))
    customer_phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    image_urls: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    video_urls: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    # Weak reference: staff rows may be deleted while tickets keep the id.
    assigned_to: str | None = Field(default=None, sa_column=Column(String(36), nullable=True, index=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))


class TicketNoteTable(SQLModel, table=True):
    """Append-only staff annotations attached to a ticket."""

    __tablename__ = "ticket_notes"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    author_id: str = Field(sa_column=Column(String(36), nullable=False))
    note: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketAssignmentEventTable(SQLModel, table=True):
    """History of assignments; the ticket row holds the current assignee."""

    __tablename__ = "ticket_assignment_events"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    staff_id: str = Field(sa_column=Column(String(36), nullable=False))
    previous_staff_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    assigned_by: str = Field(sa_column=Column(String(36), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class StaffTable(SQLModel, table=True):
    """Admin and call-centre accounts eligible for assignment."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    employee_id: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    role: str = Field(sa_column=Column(String(20), nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False, default="active"))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    last_login: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
