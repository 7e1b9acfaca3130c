"""Score Cache: latest health score per client.

ScoreCache is the protocol the service depends on. Two implementations:
- InMemoryScoreCache: process-local dict, used by tests and CLI dry runs
- SqlScoreCache: client_health_scores table via INSERT ... ON CONFLICT
  (client_id) DO UPDATE, retried with tenacity on transient database errors

Contract: ``get`` may raise when the store is unreachable (callers degrade to
a flat trend). ``upsert`` never raises for storage failures; it logs and
returns False. Concurrent upserts for the same client are last-write-wins.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Protocol, runtime_checkable

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.app.health.models import ClientHealthScoreModel
from src.app.health.schemas import (
    GRADE_TIERS,
    FactorScores,
    Grade,
    HealthFactor,
    HealthScoreRecord,
    Trend,
)

logger = structlog.get_logger(__name__)

_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception_type((OperationalError, InterfaceError)),
    reraise=True,
)


@runtime_checkable
class ScoreCache(Protocol):
    """Keyed store of the latest HealthScoreRecord per client."""

    async def get(self, client_id: str) -> HealthScoreRecord | None: ...

    async def upsert(self, record: HealthScoreRecord) -> bool: ...

    async def list_all(self) -> list[HealthScoreRecord]: ...


class InMemoryScoreCache:
    """Dict-backed ScoreCache. Records are copied in and out."""

    def __init__(self) -> None:
        self._records: dict[str, HealthScoreRecord] = {}

    async def get(self, client_id: str) -> HealthScoreRecord | None:
        record = self._records.get(client_id)
        return record.model_copy(deep=True) if record else None

    async def upsert(self, record: HealthScoreRecord) -> bool:
        self._records[record.client_id] = record.model_copy(deep=True)
        return True

    async def list_all(self) -> list[HealthScoreRecord]:
        return [
            r.model_copy(deep=True)
            for r in sorted(self._records.values(), key=lambda r: r.client_id)
        ]


# ── SQL ─────────────────────────────────────────────────────────────────────


def _model_to_record(model: ClientHealthScoreModel) -> HealthScoreRecord:
    grade = Grade(model.grade)
    return HealthScoreRecord(
        client_id=str(model.client_id),
        score=model.score,
        factors=FactorScores(
            delivery_rate=model.delivery_rate,
            on_time_score=model.on_time_score,
            payment_score=model.payment_score,
            engagement_score=model.engagement_score,
        ),
        grade=grade,
        tier=GRADE_TIERS[grade],
        trend=Trend(model.trend) if model.trend else Trend.FLAT,
        previous_score=model.previous_score,
        breakdown=[HealthFactor.model_validate(f) for f in model.breakdown_data or []],
        narrative=model.narrative,
        calculated_at=model.calculated_at,
    )


def _record_to_row(record: HealthScoreRecord) -> dict:
    return {
        "client_id": record.client_id,
        "score": record.score,
        "delivery_rate": record.factors.delivery_rate,
        "on_time_score": record.factors.on_time_score,
        "payment_score": record.factors.payment_score,
        "engagement_score": record.factors.engagement_score,
        "grade": record.grade.value,
        "trend": record.trend.value,
        "previous_score": record.previous_score,
        "breakdown_data": [f.model_dump() for f in record.breakdown],
        "narrative": record.narrative,
        "calculated_at": record.calculated_at,
    }


class SqlScoreCache:
    """ScoreCache over the client_health_scores table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    @_transient
    async def get(self, client_id: str) -> HealthScoreRecord | None:
        try:
            uuid.UUID(client_id)
        except (ValueError, TypeError):
            return None
        async for session in self._session_factory():
            stmt = select(ClientHealthScoreModel).where(
                ClientHealthScoreModel.client_id == client_id
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_record(model) if model else None
        return None

    @_transient
    async def _upsert(self, record: HealthScoreRecord) -> None:
        row = _record_to_row(record)
        stmt = insert(ClientHealthScoreModel).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ClientHealthScoreModel.client_id],
            set_={k: v for k, v in row.items() if k != "client_id"},
        )
        async for session in self._session_factory():
            await session.execute(stmt)
            await session.commit()

    async def upsert(self, record: HealthScoreRecord) -> bool:
        """Insert or replace the client's row. Returns False on failure."""
        try:
            await self._upsert(record)
        except SQLAlchemyError as exc:
            logger.warning(
                "health_cache.upsert_failed",
                client_id=record.client_id,
                error=str(exc),
            )
            return False
        return True

    @_transient
    async def list_all(self) -> list[HealthScoreRecord]:
        async for session in self._session_factory():
            stmt = select(ClientHealthScoreModel).order_by(ClientHealthScoreModel.client_id)
            result = await session.execute(stmt)
            return [_model_to_record(m) for m in result.scalars().all()]
        return []
