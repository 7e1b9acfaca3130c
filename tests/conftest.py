"""Shared fixtures for health scoring and alerting tests.

Provides:
- A fixed evaluation instant (AS_OF) so every day-window rule is deterministic
- Record factories for clients, deliverables, invoices, tasks and content,
  each with sensible defaults overridable per test
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from src.app.health.schemas import (
    Client,
    ClientStatus,
    ContentItem,
    ContentStatus,
    Currency,
    Deliverable,
    DeliverableStatus,
    Invoice,
    InvoiceStatus,
    Market,
    PlanTier,
    Task,
    TaskStatus,
)

AS_OF = datetime(2026, 3, 15, 9, 30, tzinfo=timezone.utc)
TODAY = AS_OF.date()


def days_from_today(days: int) -> date:
    return TODAY + timedelta(days=days)


def _new_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def as_of() -> datetime:
    return AS_OF


@pytest.fixture
def make_client():
    def _make(**overrides) -> Client:
        data = {
            "id": _new_id(),
            "client_code": "ACME",
            "company_name": "Acme Co",
            "market": Market.SG,
            "plan_tier": PlanTier.GROWTH,
            "monthly_value": 4500.0,
            "status": ClientStatus.ACTIVE,
            "contract_start": date(2025, 6, 1),
            "contract_end": date(2026, 12, 31),
        }
        data.update(overrides)
        return Client(**data)

    return _make


@pytest.fixture
def make_deliverable():
    def _make(client_id: str, **overrides) -> Deliverable:
        data = {
            "id": _new_id(),
            "client_id": client_id,
            "name": "Landing page refresh",
            "assigned_to": "Dana",
            "status": DeliverableStatus.IN_PROGRESS,
            "due_date": days_from_today(10),
            "created_at": AS_OF - timedelta(days=40),
            "updated_at": AS_OF - timedelta(days=30),
        }
        data.update(overrides)
        return Deliverable(**data)

    return _make


@pytest.fixture
def make_invoice():
    def _make(client_id: str, **overrides) -> Invoice:
        data = {
            "id": _new_id(),
            "invoice_number": "INV-1001",
            "client_id": client_id,
            "amount": 1000.0,
            "currency": Currency.USD,
            "status": InvoiceStatus.PAID,
            "month": "2026-02",
        }
        data.update(overrides)
        return Invoice(**data)

    return _make


@pytest.fixture
def make_task():
    def _make(client_id: str | None, **overrides) -> Task:
        data = {
            "id": _new_id(),
            "name": "Write ad copy",
            "client_id": client_id,
            "assigned_to": "Sam",
            "status": TaskStatus.TODO,
            "due_date": days_from_today(5),
            "created_at": AS_OF - timedelta(days=30),
            "updated_at": AS_OF - timedelta(days=30),
        }
        data.update(overrides)
        return Task(**data)

    return _make


@pytest.fixture
def make_content():
    def _make(client_id: str | None, **overrides) -> ContentItem:
        data = {
            "id": _new_id(),
            "title": "Spring campaign teaser",
            "client_id": client_id,
            "assigned_to": "Lee",
            "status": ContentStatus.IDEATION,
            "created_at": AS_OF - timedelta(days=2),
        }
        data.update(overrides)
        return ContentItem(**data)

    return _make
