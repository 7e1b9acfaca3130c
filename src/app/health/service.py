"""Health scoring and alerting orchestration.

HealthScoreService runs one client computation in a fixed order:

    load -> extract -> score -> read cache -> trend -> upsert
         -> narrative -> upsert with narrative

The numeric record is cached before the narrative is requested, so a slow or
failing text service never blocks or loses the score. Cache failures degrade
(flat trend, unsaved row) and are logged; only invalid input raises.

AlertService loads the sweep collections, runs the rule engine, and
optionally packages the findings into suggestions.

Both services read the clock only when the caller omits ``as_of``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

import structlog

from src.app.core.monitoring import (
    alert_findings_total,
    alert_rules_skipped_total,
    health_score_duration_seconds,
    health_scores_computed_total,
    score_cache_failures_total,
)
from src.app.health.alerts import AlertRuleEngine, clients_in_scope
from src.app.health.cache import ScoreCache
from src.app.health.exceptions import (
    ClientNotFoundError,
    ClientNotScorableError,
    HealthEngineError,
)
from src.app.health.factors import as_utc, extract_factors
from src.app.health.narrative import NarrativeRequester
from src.app.health.repository import OperationsRepository
from src.app.health.schemas import (
    AlertPriority,
    AlertSweep,
    ClientHealthResult,
    ClientStatus,
    HealthScoreRecord,
    Market,
    RecomputeFailure,
    RecomputeSummary,
    SuggestionsResponse,
    SweepInputs,
)
from src.app.health.scorer import ClientHealthScorer
from src.app.health.trend import compare_trend

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthScoreService:
    """Compute, cache and read client health scores.

    Args:
        repository: Source of clients and their operational records.
        cache: Score cache holding the latest record per client.
        scorer: Composite scorer. Defaults to the standard weights and bands.
        narrative: Narrative requester. None skips narratives entirely.
        concurrency: Maximum clients computed at once by compute_all().
        clock: Returns the current UTC instant when ``as_of`` is omitted.
    """

    def __init__(
        self,
        repository: OperationsRepository,
        cache: ScoreCache,
        *,
        scorer: ClientHealthScorer | None = None,
        narrative: NarrativeRequester | None = None,
        concurrency: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._scorer = scorer or ClientHealthScorer()
        self._narrative = narrative
        self._concurrency = max(1, concurrency)
        self._clock = clock

    # ── Cache Access (degrading) ────────────────────────────────────────────

    async def _read_previous(self, client_id: str) -> HealthScoreRecord | None:
        try:
            return await self._cache.get(client_id)
        except Exception as exc:
            score_cache_failures_total.labels(operation="read").inc()
            logger.warning(
                "health.cache_read_failed",
                client_id=client_id,
                error=str(exc),
            )
            return None

    async def _write(self, record: HealthScoreRecord) -> bool:
        try:
            saved = await self._cache.upsert(record)
        except Exception as exc:
            logger.warning(
                "health.cache_upsert_failed",
                client_id=record.client_id,
                error=str(exc),
            )
            saved = False
        if not saved:
            score_cache_failures_total.labels(operation="upsert").inc()
        return saved

    # ── Single Client ───────────────────────────────────────────────────────

    async def compute_client_health(
        self,
        client_id: str,
        *,
        as_of: Optional[datetime] = None,
        include_narrative: bool = True,
    ) -> ClientHealthResult:
        """Compute, cache and return the health score for one client.

        The cached narrative always describes the cached score. The numeric
        upsert clears any narrative from an earlier computation, so a run with
        ``include_narrative=False`` leaves the row without one. When the text
        service fails, the templated fallback is cached in its place since it
        describes the same score.

        Args:
            client_id: Client to score.
            as_of: Evaluation instant. Defaults to now (UTC).
            include_narrative: Request a narrative after caching the score.

        Returns:
            ClientHealthResult with score, grade, tier, trend and narrative.

        Raises:
            ClientNotFoundError: Unknown client id.
            ClientNotScorableError: Client is not Active.
            InvalidRecordError: A related record has malformed fields.
        """
        started = time.perf_counter()
        as_of = as_utc(as_of or self._clock())

        client = await self._repository.get_client(client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        if client.status != ClientStatus.ACTIVE:
            raise ClientNotScorableError(client_id, client.status.value)

        records = await self._repository.load_client_records(client.id)
        extraction = extract_factors(
            client,
            records.deliverables,
            records.invoices,
            records.tasks,
            as_of=as_of,
        )
        health = self._scorer.score(extraction)

        previous = await self._read_previous(client.id)
        previous_score = previous.score if previous else None
        trend = compare_trend(health.score, previous_score)

        record = HealthScoreRecord(
            client_id=client.id,
            score=health.score,
            factors=health.factors,
            grade=health.grade,
            tier=health.tier,
            trend=trend,
            previous_score=previous_score,
            breakdown=health.breakdown,
            calculated_at=as_of,
        )
        cached = await self._write(record)

        narrative = ""
        if include_narrative and self._narrative is not None:
            narrative = await self._narrative.generate_narrative(client, health)
            if narrative:
                record = record.model_copy(update={"narrative": narrative})
                cached = await self._write(record) and cached

        health_scores_computed_total.labels(grade=health.grade.value).inc()
        health_score_duration_seconds.observe(time.perf_counter() - started)
        logger.info(
            "health.score_computed",
            client_id=client.id,
            score=health.score,
            grade=health.grade.value,
            trend=trend.value,
            previous_score=previous_score,
            cached=cached,
        )

        return ClientHealthResult(
            client_id=client.id,
            score=health.score,
            grade=health.grade,
            tier=health.tier,
            trend=trend,
            previous_score=previous_score,
            factors=health.factors,
            breakdown=health.breakdown,
            narrative=narrative,
            calculated_at=as_of,
        )

    # ── Batch ───────────────────────────────────────────────────────────────

    async def compute_all(
        self,
        *,
        as_of: Optional[datetime] = None,
        include_narrative: bool = True,
    ) -> RecomputeSummary:
        """Recompute every Active client concurrently.

        One client's failure is recorded in the summary and does not stop
        the others. All clients share one ``as_of`` instant.
        """
        as_of = as_utc(as_of or self._clock())
        clients = await self._repository.list_clients(status=ClientStatus.ACTIVE)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(client_id: str) -> ClientHealthResult | RecomputeFailure:
            async with semaphore:
                try:
                    return await self.compute_client_health(
                        client_id,
                        as_of=as_of,
                        include_narrative=include_narrative,
                    )
                except HealthEngineError as exc:
                    logger.warning(
                        "health.recompute_client_failed",
                        client_id=client_id,
                        error=str(exc),
                    )
                    return RecomputeFailure(client_id=client_id, error=str(exc))
                except Exception as exc:
                    logger.error(
                        "health.recompute_client_error",
                        client_id=client_id,
                        error=str(exc),
                        exc_info=True,
                    )
                    return RecomputeFailure(client_id=client_id, error=str(exc))

        outcomes = await asyncio.gather(*(_one(c.id) for c in clients))

        summary = RecomputeSummary()
        for outcome in outcomes:
            if isinstance(outcome, RecomputeFailure):
                summary.errors.append(outcome)
            else:
                summary.results.append(outcome)
        summary.computed = len(summary.results)
        summary.failed = len(summary.errors)

        logger.info(
            "health.recompute_complete",
            clients=len(clients),
            computed=summary.computed,
            failed=summary.failed,
        )
        return summary

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_cached(self, client_id: str) -> HealthScoreRecord | None:
        return await self._cache.get(client_id)

    async def list_cached(
        self, *, market: Optional[Market] = None
    ) -> list[HealthScoreRecord]:
        """Cached scores, worst first, optionally limited to one market's clients."""
        records = await self._cache.list_all()
        if market is not None:
            in_market = {
                c.id for c in await self._repository.list_clients(market=market)
            }
            records = [r for r in records if r.client_id in in_market]
        return sorted(records, key=lambda r: (r.score, r.client_id))


class AlertService:
    """Run alert sweeps and package findings into suggestions.

    Args:
        repository: Loads the sweep collections.
        engine: Deterministic rule engine.
        narrative: Suggestion packager. None makes suggestions always empty.
        clock: Returns the current UTC instant when ``as_of`` is omitted.
    """

    def __init__(
        self,
        repository: OperationsRepository,
        engine: AlertRuleEngine | None = None,
        *,
        narrative: NarrativeRequester | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._engine = engine or AlertRuleEngine()
        self._narrative = narrative
        self._clock = clock

    async def _run(
        self, market: Optional[Market], as_of: Optional[datetime]
    ) -> tuple[SweepInputs, AlertSweep]:
        inputs = await self._repository.load_sweep_inputs()
        sweep = self._engine.sweep(inputs, as_of=as_of or self._clock(), market=market)

        for finding in sweep.findings:
            alert_findings_total.labels(
                category=finding.category.value,
                priority=finding.priority.value,
            ).inc()
        for rule in sweep.skipped_rules:
            alert_rules_skipped_total.labels(rule=rule.value).inc()

        if sweep.skipped_rules:
            logger.warning(
                "alerts.rules_skipped",
                rules=[r.value for r in sweep.skipped_rules],
            )
        logger.info(
            "alerts.sweep_complete",
            market=market.value if market else "all",
            findings=len(sweep.findings),
            high=sum(1 for f in sweep.findings if f.priority == AlertPriority.HIGH),
        )
        return inputs, sweep

    async def sweep(
        self,
        *,
        market: Optional[Market] = None,
        as_of: Optional[datetime] = None,
    ) -> AlertSweep:
        """Deterministic findings for the current records."""
        _, sweep = await self._run(market, as_of)
        return sweep

    async def suggestions(
        self,
        *,
        market: Optional[Market] = None,
        as_of: Optional[datetime] = None,
    ) -> SuggestionsResponse:
        """Suggestions packaged from a fresh sweep; empty on text failure."""
        inputs, sweep = await self._run(market, as_of)
        if self._narrative is None:
            return SuggestionsResponse()

        suggestions = await self._narrative.request_suggestions(
            sweep.findings,
            active_clients=sum(
                1
                for c in clients_in_scope(inputs.clients or [], market)
                if c.status == ClientStatus.ACTIVE
            ),
            total_deliverables=(
                len(inputs.deliverables) if inputs.deliverables is not None else None
            ),
            market=market,
            skipped_rules=sweep.skipped_rules,
        )
        return SuggestionsResponse(suggestions=suggestions)
