"""REST API endpoints for operational alerts.

- GET /alerts/findings: deterministic findings from a fresh sweep
- POST /alerts/suggestions: findings packaged into 3-5 prioritized actions
  by the text-generation service; an empty list when that service fails

``market`` accepts SG, ID, US or "all" (the default).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.app.api.deps import MarketScope, get_alert_service, market_filter
from src.app.health.schemas import AlertSweep, CamelModel, SuggestionsResponse
from src.app.health.service import AlertService

router = APIRouter(prefix="/alerts", tags=["alerts"])


class SuggestionsRequest(CamelModel):
    market: Optional[MarketScope] = None


@router.get(
    "/findings",
    response_model=AlertSweep,
    response_model_by_alias=True,
)
async def list_findings(
    market: MarketScope = Query(default="all"),
    service: AlertService = Depends(get_alert_service),
) -> AlertSweep:
    """Run the alert rules over current records."""
    return await service.sweep(market=market_filter(market))


@router.post(
    "/suggestions",
    response_model=SuggestionsResponse,
    response_model_by_alias=True,
)
async def request_suggestions(
    body: SuggestionsRequest | None = None,
    service: AlertService = Depends(get_alert_service),
) -> SuggestionsResponse:
    """Package the current findings into prioritized suggestions."""
    market = market_filter(body.market) if body else None
    return await service.suggestions(market=market)
