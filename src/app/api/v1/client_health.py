"""REST API endpoints for client health scores.

Provides on-demand computation for one client, batch recomputation of every
Active client, and reads of the score cache for dashboard and report pages.
Responses use camelCase field names.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.app.api.deps import MarketScope, get_health_service, market_filter
from src.app.health.exceptions import (
    ClientNotFoundError,
    ClientNotScorableError,
    InvalidRecordError,
)
from src.app.health.schemas import (
    CamelModel,
    ClientHealthResult,
    HealthScoreRecord,
    RecomputeSummary,
)
from src.app.health.service import HealthScoreService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/client-health", tags=["client-health"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class ComputeHealthRequest(CamelModel):
    """Request body for a single client computation."""

    client_id: str
    include_narrative: bool = True


class RecomputeRequest(CamelModel):
    include_narrative: bool = True


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post(
    "",
    response_model=ClientHealthResult,
    response_model_by_alias=True,
)
async def compute_client_health(
    body: ComputeHealthRequest,
    service: HealthScoreService = Depends(get_health_service),
) -> ClientHealthResult:
    """Compute, cache and return the health score for one client."""
    try:
        return await service.compute_client_health(
            body.client_id, include_narrative=body.include_narrative
        )
    except ClientNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except (ClientNotScorableError, InvalidRecordError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        )
    except Exception as exc:
        logger.error(
            "client_health.compute_failed",
            client_id=body.client_id,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        )


@router.post(
    "/recompute",
    response_model=RecomputeSummary,
    response_model_by_alias=True,
)
async def recompute_all(
    body: RecomputeRequest | None = None,
    service: HealthScoreService = Depends(get_health_service),
) -> RecomputeSummary:
    """Recompute every Active client. Per-client failures are listed."""
    include_narrative = body.include_narrative if body else True
    return await service.compute_all(include_narrative=include_narrative)


@router.get(
    "",
    response_model=list[HealthScoreRecord],
    response_model_by_alias=True,
)
async def list_cached_scores(
    market: MarketScope = Query(default="all"),
    service: HealthScoreService = Depends(get_health_service),
) -> list[HealthScoreRecord]:
    """List cached health scores, worst first, optionally for one market."""
    return await service.list_cached(market=market_filter(market))


@router.get(
    "/{client_id}",
    response_model=HealthScoreRecord,
    response_model_by_alias=True,
)
async def get_cached_score(
    client_id: str,
    service: HealthScoreService = Depends(get_health_service),
) -> HealthScoreRecord:
    """Return the cached health score for one client."""
    record = await service.get_cached(client_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No cached health score for client {client_id}",
        )
    return record
