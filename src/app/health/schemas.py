"""Pydantic data models for client health scoring and operational alerting.

Defines the closed status enums, the read-only operational records the engine
consumes (clients, deliverables, invoices, tasks, content), the scoring
outputs (factor scores, composite health score, cached health record), and
the alerting outputs (findings, sweep results, suggestions).

Status enums carry their classification (completed, overdue-eligible,
initial stage) in exhaustive lookup tables. Adding a member without
classifying it raises at import time, so every rule that depends on the
classification is forced to take a position on the new status.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _require_exhaustive(enum_cls: type[Enum], table: dict) -> dict:
    """Fail at import time if a classification table misses an enum member."""
    missing = [member for member in enum_cls if member not in table]
    if missing:
        raise TypeError(
            f"{enum_cls.__name__} classification is missing: "
            f"{', '.join(m.value for m in missing)}"
        )
    return table


def _ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC so day arithmetic never mixes zones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Base for API-facing models serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Enums ───────────────────────────────────────────────────────────────────


class Market(str, Enum):
    """Operating regions."""

    SG = "SG"
    ID = "ID"
    US = "US"


class PlanTier(str, Enum):
    STARTER = "Starter"
    GROWTH = "Growth"
    PRO = "Pro"


class ClientStatus(str, Enum):
    """Client lifecycle status. Only ACTIVE clients are scored."""

    PROSPECT = "Prospect"
    ONBOARDING = "Onboarding"
    ACTIVE = "Active"
    CHURNED = "Churned"


class DeliverableStatus(str, Enum):
    """Ordered production pipeline for deliverables."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DELIVERED = "Delivered"
    APPROVED = "Approved"

    @property
    def is_completed(self) -> bool:
        return _DELIVERABLE_COMPLETED[self]


_DELIVERABLE_COMPLETED = _require_exhaustive(
    DeliverableStatus,
    {
        DeliverableStatus.NOT_STARTED: False,
        DeliverableStatus.IN_PROGRESS: False,
        DeliverableStatus.REVIEW: False,
        DeliverableStatus.DELIVERED: True,
        DeliverableStatus.APPROVED: True,
    },
)


class InvoiceStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    PAID = "Paid"
    OVERDUE = "Overdue"


class Currency(str, Enum):
    SGD = "SGD"
    USD = "USD"
    IDR = "IDR"


class RecurrenceInterval(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TaskStatus(str, Enum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    DONE = "Done"
    BLOCKED = "Blocked"

    @property
    def is_done(self) -> bool:
        return _TASK_DONE[self]


_TASK_DONE = _require_exhaustive(
    TaskStatus,
    {
        TaskStatus.TODO: False,
        TaskStatus.IN_PROGRESS: False,
        TaskStatus.DONE: True,
        TaskStatus.BLOCKED: False,
    },
)


class TaskCategory(str, Enum):
    ADMIN = "Admin"
    STRATEGY = "Strategy"
    CONTENT = "Content"
    TECH = "Tech"
    SALES = "Sales"
    OPS = "Ops"


class ContentStatus(str, Enum):
    """Content pipeline stages, starting at IDEATION."""

    IDEATION = "Ideation"
    DRAFT = "Draft"
    REVIEW = "Review"
    APPROVED = "Approved"
    SCHEDULED = "Scheduled"
    PUBLISHED = "Published"

    @property
    def is_initial(self) -> bool:
        return _CONTENT_INITIAL[self]


_CONTENT_INITIAL = _require_exhaustive(
    ContentStatus,
    {
        ContentStatus.IDEATION: True,
        ContentStatus.DRAFT: False,
        ContentStatus.REVIEW: False,
        ContentStatus.APPROVED: False,
        ContentStatus.SCHEDULED: False,
        ContentStatus.PUBLISHED: False,
    },
)


class Grade(str, Enum):
    """Letter grade bands, best first."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"

    @property
    def rank(self) -> int:
        """0 for the best band, increasing as the band gets worse."""
        return list(Grade).index(self)


class HealthTier(str, Enum):
    HEALTHY = "Healthy"
    AT_RISK = "At Risk"
    CRITICAL = "Critical"


GRADE_TIERS: dict[Grade, HealthTier] = _require_exhaustive(
    Grade,
    {
        Grade.A: HealthTier.HEALTHY,
        Grade.B: HealthTier.HEALTHY,
        Grade.C: HealthTier.AT_RISK,
        Grade.D: HealthTier.AT_RISK,
        Grade.F: HealthTier.CRITICAL,
    },
)


class Trend(str, Enum):
    """Momentum of a client's score versus its previous cached score."""

    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class AlertPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = _require_exhaustive(
    AlertPriority,
    {AlertPriority.HIGH: 0, AlertPriority.MEDIUM: 1, AlertPriority.LOW: 2},
)


class AlertCategory(str, Enum):
    OVERDUE = "overdue"
    INVOICE = "invoice"
    DEADLINE = "deadline"
    DELIVERABLE = "deliverable"
    CONTENT = "content"


class AlertRule(str, Enum):
    """Deterministic alert rules, in evaluation order."""

    OVERDUE_DELIVERABLE = "overdue_deliverable"
    OVERDUE_INVOICE = "overdue_invoice"
    EXPIRING_CONTRACT = "expiring_contract"
    UPCOMING_RECURRING_INVOICE = "upcoming_recurring_invoice"
    DUE_SOON_NOT_STARTED = "due_soon_not_started"
    STUCK_CONTENT = "stuck_content"
    BLOCKED_TASK = "blocked_task"


# ── Operational Records (read-only inputs) ──────────────────────────────────


class Client(BaseModel):
    """Agency client as read from the client registry."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    client_code: str = ""
    company_name: str
    market: Market
    plan_tier: PlanTier
    monthly_value: float = Field(default=0.0, ge=0.0)
    status: ClientStatus
    contract_start: Optional[date] = None
    contract_end: Optional[date] = None


class Deliverable(BaseModel):
    """Client deliverable moving through the production pipeline."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    name: str
    assigned_to: Optional[str] = None
    status: DeliverableStatus
    due_date: Optional[date] = None
    client_approved: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    @property
    def is_completed(self) -> bool:
        return self.status.is_completed

    def is_overdue(self, as_of_date: date) -> bool:
        """Due date strictly before ``as_of_date`` and not completed."""
        return (
            self.due_date is not None
            and self.due_date < as_of_date
            and not self.is_completed
        )


class Invoice(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_number: str = ""
    client_id: str
    amount: float = Field(ge=0.0)
    currency: Currency = Currency.USD
    status: InvoiceStatus
    month: str = ""
    is_recurring: bool = False
    recurrence_interval: Optional[RecurrenceInterval] = None
    next_due_date: Optional[date] = None


class Task(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    client_id: Optional[str] = None
    deliverable_id: Optional[str] = None
    assigned_to: Optional[str] = None
    status: TaskStatus
    due_date: Optional[date] = None
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    def is_overdue(self, as_of_date: date) -> bool:
        return (
            self.due_date is not None
            and self.due_date < as_of_date
            and not self.status.is_done
        )


class ContentItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    client_id: Optional[str] = None
    assigned_to: Optional[str] = None
    status: ContentStatus
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)


class SweepInputs(BaseModel):
    """Collections handed to the alert rule engine.

    A collection is None when it failed to load. Rules that depend on a
    missing collection are skipped rather than failing the whole sweep.
    """

    clients: Optional[list[Client]] = None
    deliverables: Optional[list[Deliverable]] = None
    invoices: Optional[list[Invoice]] = None
    tasks: Optional[list[Task]] = None
    content: Optional[list[ContentItem]] = None


# ── Scoring Outputs ─────────────────────────────────────────────────────────


class FactorScores(CamelModel):
    """The four independent 0-100 sub-scores."""

    delivery_rate: int = Field(ge=0, le=100)
    on_time_score: int = Field(ge=0, le=100)
    payment_score: int = Field(ge=0, le=100)
    engagement_score: int = Field(ge=0, le=100)


class FactorCounts(BaseModel):
    """Raw counts behind the factor scores, used for detail text and prompts."""

    total_deliverables: int = 0
    completed_deliverables: int = 0
    overdue_deliverables: int = 0
    total_tasks: int = 0
    overdue_tasks: int = 0
    total_invoices: int = 0
    paid_invoices: int = 0
    overdue_invoices: int = 0
    recent_activity: int = 0

    @property
    def overdue_count(self) -> int:
        return self.overdue_deliverables + self.overdue_tasks


class FactorExtraction(BaseModel):
    """Factor Extractor output for one client."""

    client_id: str
    factors: FactorScores
    counts: FactorCounts


class HealthFactor(CamelModel):
    """One weighted factor in a composite score breakdown."""

    key: str
    name: str
    score: int = Field(ge=0, le=100)
    weight: float
    detail: str = ""


class HealthScore(BaseModel):
    """Composite Scorer output: score, band, and weighted breakdown."""

    client_id: str
    score: int = Field(ge=0, le=100)
    grade: Grade
    tier: HealthTier
    factors: FactorScores
    counts: FactorCounts
    breakdown: list[HealthFactor] = Field(default_factory=list)


class HealthScoreRecord(CamelModel):
    """Cached health score for a client (one row per client, upserted)."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    client_id: str
    score: int = Field(ge=0, le=100)
    factors: FactorScores
    grade: Grade
    tier: HealthTier
    trend: Trend = Trend.FLAT
    previous_score: Optional[int] = Field(default=None, ge=0, le=100)
    breakdown: list[HealthFactor] = Field(default_factory=list)
    narrative: Optional[str] = None
    calculated_at: datetime

    @field_validator("calculated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)


class ClientHealthResult(CamelModel):
    """Response of a health score computation for one client."""

    client_id: str
    score: int = Field(ge=0, le=100)
    grade: Grade
    tier: HealthTier
    trend: Trend
    previous_score: Optional[int] = None
    factors: FactorScores
    breakdown: list[HealthFactor] = Field(default_factory=list)
    narrative: str = ""
    calculated_at: datetime


class RecomputeFailure(CamelModel):
    client_id: str
    error: str


class RecomputeSummary(CamelModel):
    """Outcome of recomputing every Active client."""

    computed: int = 0
    failed: int = 0
    results: list[ClientHealthResult] = Field(default_factory=list)
    errors: list[RecomputeFailure] = Field(default_factory=list)


# ── Alerting Outputs ────────────────────────────────────────────────────────


class SuggestedTask(CamelModel):
    """Follow-up task a finding or suggestion proposes to create."""

    name: str
    client_id: Optional[str] = None
    assigned_to: Optional[str] = None
    category: str = TaskCategory.OPS.value
    due_date: Optional[date] = None


class AlertFinding(CamelModel):
    """One deterministic finding from an alert sweep (not persisted)."""

    id: str
    rule: AlertRule
    priority: AlertPriority
    category: AlertCategory
    subject_id: str
    client_id: Optional[str] = None
    title: str
    description: str
    action: str
    suggested_task: Optional[SuggestedTask] = None
    due_date: Optional[date] = None
    amount: Optional[float] = None
    currency: Optional[Currency] = None


class AlertSweep(CamelModel):
    """Result of one alert sweep."""

    findings: list[AlertFinding] = Field(default_factory=list)
    skipped_rules: list[AlertRule] = Field(default_factory=list)
    generated_at: datetime


class Suggestion(CamelModel):
    """Prioritized action packaged by the text-generation service."""

    priority: AlertPriority
    category: AlertCategory
    title: str
    description: str = ""
    action: str = ""
    suggested_task: Optional[SuggestedTask] = None


class SuggestionsResponse(CamelModel):
    suggestions: list[Suggestion] = Field(default_factory=list)


__all__ = [
    "AlertCategory",
    "AlertFinding",
    "AlertPriority",
    "AlertRule",
    "AlertSweep",
    "CamelModel",
    "Client",
    "ClientHealthResult",
    "ClientStatus",
    "ContentItem",
    "ContentStatus",
    "Currency",
    "Deliverable",
    "DeliverableStatus",
    "FactorCounts",
    "FactorExtraction",
    "FactorScores",
    "GRADE_TIERS",
    "Grade",
    "HealthFactor",
    "HealthScore",
    "HealthScoreRecord",
    "HealthTier",
    "Invoice",
    "InvoiceStatus",
    "Market",
    "PlanTier",
    "RecomputeFailure",
    "RecomputeSummary",
    "RecurrenceInterval",
    "Suggestion",
    "SuggestedTask",
    "SuggestionsResponse",
    "SweepInputs",
    "Task",
    "TaskCategory",
    "TaskStatus",
    "Trend",
]
