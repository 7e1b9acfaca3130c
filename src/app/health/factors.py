"""Factor Extractor: four independent 0-100 sub-scores for one client.

Pure functions with no side effects and no clock access. Every function takes
an explicit ``as_of`` instant; overdue checks compare date-only due dates
against ``as_of.date()`` in UTC, and activity recency compares timestamps
against ``as_of`` directly.

Factors:
    delivery_rate:    completed / total deliverables x 100 (100 if none)
    on_time_score:    100 - 25 per overdue deliverable or task, floored at 0
    payment_score:    paid / total invoices x 100 - 20 per overdue invoice,
                      clamped to [0, 100] (100 if none)
    engagement_score: 100 if anything was touched in the trailing 14 days,
                      70 for a client with no deliverables yet, else 40
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from src.app.health.schemas import (
    Client,
    Deliverable,
    FactorCounts,
    FactorExtraction,
    FactorScores,
    Invoice,
    InvoiceStatus,
    Task,
)

OVERDUE_PENALTY = 25
OVERDUE_INVOICE_PENALTY = 20
ENGAGEMENT_WINDOW = timedelta(days=14)

ENGAGEMENT_ACTIVE = 100
# New clients are not penalized for having nothing in flight yet.
# TODO: confirm the 70 vs 40 engagement split with product before changing either value.
ENGAGEMENT_NEW_CLIENT = 70
ENGAGEMENT_DORMANT = 40


def round_half_up(value: Decimal | int) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_score(value: Decimal | int) -> Decimal:
    return max(Decimal(0), min(Decimal(100), Decimal(value)))


def as_utc(as_of: datetime) -> datetime:
    if as_of.tzinfo is None:
        return as_of.replace(tzinfo=timezone.utc)
    return as_of.astimezone(timezone.utc)


# ── Individual Factors ──────────────────────────────────────────────────────


def delivery_rate(deliverables: list[Deliverable]) -> int:
    """Share of deliverables in a terminal success status, 0-100."""
    total = len(deliverables)
    if total == 0:
        return 100
    completed = sum(1 for d in deliverables if d.is_completed)
    return round_half_up(clamp_score(Decimal(completed * 100) / Decimal(total)))


def on_time_score(overdue_count: int) -> int:
    """Linear penalty: each overdue item costs a flat 25 points."""
    return max(0, 100 - OVERDUE_PENALTY * max(0, overdue_count))


def payment_score(invoices: list[Invoice]) -> int:
    total = len(invoices)
    if total == 0:
        return 100
    paid = sum(1 for i in invoices if i.status == InvoiceStatus.PAID)
    overdue = sum(1 for i in invoices if i.status == InvoiceStatus.OVERDUE)
    raw = Decimal(paid * 100) / Decimal(total) - OVERDUE_INVOICE_PENALTY * overdue
    return round_half_up(clamp_score(raw))


def _last_touched(record: Deliverable | Task) -> datetime | None:
    return record.updated_at or record.created_at


def count_recent_activity(
    deliverables: Iterable[Deliverable], tasks: Iterable[Task], as_of: datetime
) -> int:
    """Deliverables and tasks last touched within the trailing 14 days."""
    as_of = as_utc(as_of)
    recent = 0
    for record in [*deliverables, *tasks]:
        touched = _last_touched(record)
        if touched is not None and as_of - touched < ENGAGEMENT_WINDOW:
            recent += 1
    return recent


def engagement_score(recent_activity: int, total_deliverables: int) -> int:
    if recent_activity > 0:
        return ENGAGEMENT_ACTIVE
    if total_deliverables == 0:
        return ENGAGEMENT_NEW_CLIENT
    return ENGAGEMENT_DORMANT


# ── Extraction ──────────────────────────────────────────────────────────────


def extract_factors(
    client: Client,
    deliverables: Iterable[Deliverable],
    invoices: Iterable[Invoice],
    tasks: Iterable[Task],
    *,
    as_of: datetime,
) -> FactorExtraction:
    """Compute the four factor scores for ``client``.

    Collections may be the full dataset or pre-filtered to the client; records
    belonging to other clients are ignored either way.

    Args:
        client: The client being scored.
        deliverables: Deliverable snapshots.
        invoices: Invoice snapshots.
        tasks: Task snapshots.
        as_of: Evaluation instant. Naive values are treated as UTC.

    Returns:
        FactorExtraction with the factor scores and the counts behind them.
    """
    as_of = as_utc(as_of)
    as_of_date = as_of.date()

    client_deliverables = [d for d in deliverables if d.client_id == client.id]
    client_invoices = [i for i in invoices if i.client_id == client.id]
    client_tasks = [t for t in tasks if t.client_id == client.id]

    overdue_deliverables = sum(
        1 for d in client_deliverables if d.is_overdue(as_of_date)
    )
    overdue_tasks = sum(1 for t in client_tasks if t.is_overdue(as_of_date))
    recent = count_recent_activity(client_deliverables, client_tasks, as_of)

    counts = FactorCounts(
        total_deliverables=len(client_deliverables),
        completed_deliverables=sum(1 for d in client_deliverables if d.is_completed),
        overdue_deliverables=overdue_deliverables,
        total_tasks=len(client_tasks),
        overdue_tasks=overdue_tasks,
        total_invoices=len(client_invoices),
        paid_invoices=sum(
            1 for i in client_invoices if i.status == InvoiceStatus.PAID
        ),
        overdue_invoices=sum(
            1 for i in client_invoices if i.status == InvoiceStatus.OVERDUE
        ),
        recent_activity=recent,
    )

    factors = FactorScores(
        delivery_rate=delivery_rate(client_deliverables),
        on_time_score=on_time_score(counts.overdue_count),
        payment_score=payment_score(client_invoices),
        engagement_score=engagement_score(recent, counts.total_deliverables),
    )

    return FactorExtraction(client_id=client.id, factors=factors, counts=counts)


__all__ = [
    "count_recent_activity",
    "delivery_rate",
    "engagement_score",
    "as_utc",
    "extract_factors",
    "on_time_score",
    "payment_score",
    "round_half_up",
]
