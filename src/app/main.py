"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database and service initialization, and the v1 API
router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1 import health
from src.app.api.v1.router import router as v1_router
from src.app.config import Settings, get_settings
from src.app.core.database import close_db, get_session, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.app.health.alerts import AlertRuleEngine
from src.app.health.cache import SqlScoreCache
from src.app.health.narrative import NarrativeRequester
from src.app.health.repository import OperationsRepository
from src.app.health.scheduler import HealthScheduler
from src.app.health.service import AlertService, HealthScoreService
from src.app.services.llm import get_llm_service


def build_services(settings: Settings) -> tuple[HealthScoreService, AlertService]:
    """Wire repository, cache, text service and rule engine into the services."""
    repository = OperationsRepository(session_factory=get_session)
    cache = SqlScoreCache(session_factory=get_session)

    llm_service = get_llm_service()
    narrative = NarrativeRequester(
        llm_service if llm_service.configured else None,
        narrative_max_tokens=settings.NARRATIVE_MAX_TOKENS,
        suggestions_max_tokens=settings.SUGGESTIONS_MAX_TOKENS,
    )

    health_service = HealthScoreService(
        repository,
        cache,
        narrative=narrative,
        concurrency=settings.HEALTH_RECOMPUTE_CONCURRENCY,
    )
    alert_service = AlertService(
        repository,
        AlertRuleEngine(
            aggregate_overdue_deliverables=settings.ALERT_AGGREGATE_OVERDUE,
            billing_owner=settings.ALERT_BILLING_OWNER or None,
        ),
        narrative=narrative,
    )
    return health_service, alert_service


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    health_service, alert_service = build_services(settings)
    app.state.health_service = health_service
    app.state.alert_service = alert_service
    log.info("health.services_initialized")

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        try:
            scheduler = HealthScheduler(
                health_service,
                alert_service,
                scan_hour=settings.HEALTH_SCAN_HOUR,
                sweep_hour=settings.ALERT_SWEEP_HOUR,
            )
            scheduler.start()
        except Exception:
            log.warning("health_scheduler.start_failed", exc_info=True)
            scheduler = None
    app.state.health_scheduler = scheduler

    yield

    if scheduler is not None:
        scheduler.shutdown()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Client Health Engine API",
        version="0.1.0",
        description="Client health scoring and operational alerting for agency operations",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(health.router)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
