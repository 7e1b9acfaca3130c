"""Score cache persistence model.

ClientHealthScoreModel holds the latest health score per client. The unique
constraint on client_id is the upsert conflict target, so there is at most
one row per client at all times. The weighted factor breakdown is stored as
JSON so cached reads show the same detail lines as a fresh computation.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import EngineBase


class ClientHealthScoreModel(EngineBase):
    """Cached composite score, factor breakdown and narrative for one client."""

    __tablename__ = "client_health_scores"
    __table_args__ = (
        UniqueConstraint("client_id", name="uq_client_health_scores_client_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    client_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    delivery_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    on_time_score: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_score: Mapped[int] = mapped_column(Integer, nullable=False)
    engagement_score: Mapped[int] = mapped_column(Integer, nullable=False)
    grade: Mapped[str] = mapped_column(String(1), nullable=False)
    trend: Mapped[str] = mapped_column(
        String(10), nullable=False, server_default=text("'flat'")
    )
    previous_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    breakdown_data: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    narrative: Mapped[str | None] = mapped_column(Text, nullable=True)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
