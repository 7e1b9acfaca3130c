"""FastAPI dependencies for services built in the application lifespan.

Services live on ``app.state``. A missing service means startup did not
finish wiring it, so endpoints answer 503 instead of failing with an
AttributeError.
"""

from __future__ import annotations

from typing import Literal, Optional, Union

from fastapi import HTTPException, Request, status

from src.app.health.schemas import Market
from src.app.health.service import AlertService, HealthScoreService

# SG, ID, US, or "all" for no market restriction.
MarketScope = Union[Market, Literal["all"]]


def market_filter(scope: Optional[MarketScope]) -> Optional[Market]:
    return scope if isinstance(scope, Market) else None


def get_health_service(request: Request) -> HealthScoreService:
    """Retrieve HealthScoreService from app.state, 503 if not available."""
    service = getattr(request.app.state, "health_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Health scoring not initialized",
        )
    return service


def get_alert_service(request: Request) -> AlertService:
    """Retrieve AlertService from app.state, 503 if not available."""
    service = getattr(request.app.state, "alert_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alerting not initialized",
        )
    return service
