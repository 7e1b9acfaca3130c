"""Read-only mappings of the managed backend's operational tables.

The backend (agency dashboard) owns these tables and their migrations. Only
the columns the scoring and alerting rules read are mapped here, so schema
changes elsewhere in those tables do not affect the engine. Enum-like status
columns stay plain strings at this layer; OperationsRepository validates them
into the closed enums when converting rows to records.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import BackendBase


class ClientRow(BackendBase):
    """Agency client registry."""

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    client_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    company_name: Mapped[str] = mapped_column(String(300), nullable=False)
    market: Mapped[str] = mapped_column(String(10), nullable=False)
    plan_tier: Mapped[str] = mapped_column(String(50), nullable=False)
    monthly_value: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    contract_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    contract_end: Mapped[date | None] = mapped_column(Date, nullable=True)


class DeliverableRow(BackendBase):
    __tablename__ = "deliverables"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    client_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    client_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class InvoiceRow(BackendBase):
    """Client invoice. ``invoice_id`` is the human-facing number (INV-...)."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    invoice_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    month: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_recurring: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    recurrence_interval: Mapped[str | None] = mapped_column(String(20), nullable=True)
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class TaskRow(BackendBase):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    client_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    deliverable_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), nullable=True
    )
    assigned_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class ContentItemRow(BackendBase):
    __tablename__ = "content_items"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    client_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
