"""Operations repository -- async reads of the backend's operational records.

Provides OperationsRepository with the session_factory callable pattern.
Rows from the read-only backend mappings are converted into the validated
pydantic records the factor extractor and alert rules consume. A row that
fails validation raises InvalidRecordError naming the table and row id, so a
malformed record is never silently scored as zero.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from typing import NamedTuple, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.health.exceptions import InvalidRecordError
from src.app.health.schemas import (
    Client,
    ClientStatus,
    ContentItem,
    Currency,
    Deliverable,
    Invoice,
    Market,
    SweepInputs,
    Task,
)
from src.app.models.operations import (
    ClientRow,
    ContentItemRow,
    DeliverableRow,
    InvoiceRow,
    TaskRow,
)

logger = structlog.get_logger(__name__)


class ClientRecords(NamedTuple):
    """Records attached to one client, as loaded for scoring."""

    deliverables: list[Deliverable]
    invoices: list[Invoice]
    tasks: list[Task]


# ── Row Conversion ──────────────────────────────────────────────────────────


def _validate(kind: str, record_id: object, build: Callable[[], object]):
    try:
        return build()
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidRecordError(
            kind, str(record_id), f"{field}: {first.get('msg', 'invalid value')}"
        ) from exc


def _row_to_client(row: ClientRow) -> Client:
    return _validate(
        "client",
        row.id,
        lambda: Client(
            id=str(row.id),
            client_code=row.client_code or "",
            company_name=row.company_name,
            market=row.market,
            plan_tier=row.plan_tier,
            monthly_value=float(row.monthly_value or 0),
            status=row.status,
            contract_start=row.contract_start,
            contract_end=row.contract_end,
        ),
    )


def _row_to_deliverable(row: DeliverableRow) -> Deliverable:
    return _validate(
        "deliverable",
        row.id,
        lambda: Deliverable(
            id=str(row.id),
            client_id=str(row.client_id),
            name=row.name,
            assigned_to=row.assigned_to,
            status=row.status,
            due_date=row.due_date,
            client_approved=bool(row.client_approved),
            created_at=row.created_at,
            updated_at=row.updated_at,
        ),
    )


def _row_to_invoice(row: InvoiceRow) -> Invoice:
    return _validate(
        "invoice",
        row.id,
        lambda: Invoice(
            id=str(row.id),
            invoice_number=row.invoice_id or "",
            client_id=str(row.client_id),
            amount=float(row.amount),
            currency=row.currency or Currency.USD,
            status=row.status,
            month=row.month or "",
            is_recurring=bool(row.is_recurring),
            recurrence_interval=row.recurrence_interval,
            next_due_date=row.next_due_date,
        ),
    )


def _row_to_task(row: TaskRow) -> Task:
    return _validate(
        "task",
        row.id,
        lambda: Task(
            id=str(row.id),
            name=row.name,
            client_id=str(row.client_id) if row.client_id else None,
            deliverable_id=str(row.deliverable_id) if row.deliverable_id else None,
            assigned_to=row.assigned_to,
            status=row.status,
            due_date=row.due_date,
            notes=row.notes or "",
            created_at=row.created_at,
            updated_at=row.updated_at,
        ),
    )


def _row_to_content(row: ContentItemRow) -> ContentItem:
    return _validate(
        "content",
        row.id,
        lambda: ContentItem(
            id=str(row.id),
            title=row.title,
            client_id=str(row.client_id) if row.client_id else None,
            assigned_to=row.assigned_to,
            status=row.status,
            created_at=row.created_at,
        ),
    )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, TypeError):
        return False
    return True


# ── Repository ──────────────────────────────────────────────────────────────


class OperationsRepository:
    """Read-only access to clients, deliverables, invoices, tasks and content.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get_client(self, client_id: str) -> Client | None:
        """Get a client by ID. Ids that are not UUIDs resolve to None."""
        if not _is_uuid(client_id):
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(ClientRow).where(ClientRow.id == client_id)
            )
            row = result.scalar_one_or_none()
            return _row_to_client(row) if row else None
        return None

    async def list_clients(
        self,
        *,
        status: Optional[ClientStatus] = None,
        market: Optional[Market] = None,
    ) -> list[Client]:
        async for session in self._session_factory():
            stmt = select(ClientRow).order_by(ClientRow.company_name)
            if status is not None:
                stmt = stmt.where(ClientRow.status == status.value)
            if market is not None:
                stmt = stmt.where(ClientRow.market == market.value)
            result = await session.execute(stmt)
            return [_row_to_client(r) for r in result.scalars().all()]
        return []

    async def load_client_records(self, client_id: str) -> ClientRecords:
        """Load the deliverables, invoices and tasks attached to one client."""
        async for session in self._session_factory():
            deliverables = await session.execute(
                select(DeliverableRow).where(DeliverableRow.client_id == client_id)
            )
            invoices = await session.execute(
                select(InvoiceRow).where(InvoiceRow.client_id == client_id)
            )
            tasks = await session.execute(
                select(TaskRow).where(TaskRow.client_id == client_id)
            )
            return ClientRecords(
                deliverables=[_row_to_deliverable(r) for r in deliverables.scalars()],
                invoices=[_row_to_invoice(r) for r in invoices.scalars()],
                tasks=[_row_to_task(r) for r in tasks.scalars()],
            )
        return ClientRecords([], [], [])

    # ── Sweep Loading ───────────────────────────────────────────────────────

    async def _load_all(self, model: type, convert: Callable) -> list:
        async for session in self._session_factory():
            result = await session.execute(select(model))
            return [convert(r) for r in result.scalars().all()]
        return []

    async def load_sweep_inputs(self) -> SweepInputs:
        """Load every collection the alert rules read.

        Each collection loads independently. A collection that fails (database
        error or a malformed row) is logged and left as None so the rules that
        depend on it are skipped instead of failing the whole sweep.
        """
        loaders = {
            "clients": (ClientRow, _row_to_client),
            "deliverables": (DeliverableRow, _row_to_deliverable),
            "invoices": (InvoiceRow, _row_to_invoice),
            "tasks": (TaskRow, _row_to_task),
            "content": (ContentItemRow, _row_to_content),
        }
        loaded: dict[str, list | None] = {}
        for name, (model, convert) in loaders.items():
            try:
                loaded[name] = await self._load_all(model, convert)
            except (SQLAlchemyError, InvalidRecordError) as exc:
                logger.warning(
                    "operations.collection_load_failed",
                    collection=name,
                    error=str(exc),
                )
                loaded[name] = None
        return SweepInputs(**loaded)
