"""Tests for HealthScoreService and AlertService orchestration.

Uses an in-memory repository test double and InMemoryScoreCache, with the
narrative requester mocked where its behaviour matters. No database and no
LLM provider are involved.

Covers:
    - Computing a score caches it before the narrative and again with it
    - Idempotence: a second computation gives the same score and a flat trend
    - Trend against the previously cached score
    - Unknown and non-Active clients raise the matching errors
    - Cache read and write failures degrade without failing the computation
    - Narrative failures never affect the numeric result
    - The weighted breakdown reaches both the result and the cache
    - compute_all isolates per-client failures
    - Cached reads list worst score first and filter by market
    - AlertService sweeps, suggestions and market scoping
"""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.app.health.cache import InMemoryScoreCache
from src.app.health.exceptions import (
    ClientNotFoundError,
    ClientNotScorableError,
    InvalidRecordError,
)
from src.app.health.narrative import NarrativeRequester
from src.app.health.repository import ClientRecords
from src.app.health.schemas import (
    AlertCategory,
    AlertPriority,
    AlertRule,
    Client,
    ClientStatus,
    DeliverableStatus,
    FactorScores,
    Grade,
    HealthScoreRecord,
    HealthTier,
    InvoiceStatus,
    Market,
    Suggestion,
    SweepInputs,
    Trend,
)
from src.app.health.service import AlertService, HealthScoreService


# ── In-Memory Test Double ────────────────────────────────────────────────────


class InMemoryOperationsRepository:
    """In-memory OperationsRepository for testing without database."""

    def __init__(self) -> None:
        self.clients: list[Client] = []
        self.deliverables: list = []
        self.invoices: list = []
        self.tasks: list = []
        self.content: list = []
        self.broken_clients: set[str] = set()
        self.failed_collections: set[str] = set()

    async def get_client(self, client_id: str) -> Client | None:
        return next((c for c in self.clients if c.id == client_id), None)

    async def list_clients(self, *, status=None, market=None) -> list[Client]:
        return [
            c
            for c in self.clients
            if (status is None or c.status == status)
            and (market is None or c.market == market)
        ]

    async def load_client_records(self, client_id: str) -> ClientRecords:
        if client_id in self.broken_clients:
            raise InvalidRecordError("deliverable", "d-1", "status: invalid value")
        return ClientRecords(
            deliverables=[d for d in self.deliverables if d.client_id == client_id],
            invoices=[i for i in self.invoices if i.client_id == client_id],
            tasks=[t for t in self.tasks if t.client_id == client_id],
        )

    async def load_sweep_inputs(self) -> SweepInputs:
        loaded = {
            "clients": list(self.clients),
            "deliverables": list(self.deliverables),
            "invoices": list(self.invoices),
            "tasks": list(self.tasks),
            "content": list(self.content),
        }
        for name in self.failed_collections:
            loaded[name] = None
        return SweepInputs(**loaded)


@pytest.fixture
def repository() -> InMemoryOperationsRepository:
    return InMemoryOperationsRepository()


@pytest.fixture
def cache() -> InMemoryScoreCache:
    return InMemoryScoreCache()


@pytest.fixture
def healthy_client(repository, make_client, make_deliverable, make_invoice, as_of):
    """Ten deliverables with nine completed, all invoices paid, recent activity."""
    client = make_client()
    repository.clients.append(client)
    for index in range(10):
        repository.deliverables.append(
            make_deliverable(
                client.id,
                status=DeliverableStatus.IN_PROGRESS if index == 0 else DeliverableStatus.DELIVERED,
                due_date=as_of.date() + timedelta(days=5),
                updated_at=as_of - timedelta(days=2),
            )
        )
    repository.invoices.extend(make_invoice(client.id) for _ in range(3))
    return client


def _narrative(text: str = "Steady delivery and prompt payment.") -> MagicMock:
    narrative = MagicMock(spec=NarrativeRequester)
    narrative.generate_narrative = AsyncMock(return_value=text)
    return narrative


# ── HealthScoreService ───────────────────────────────────────────────────────


class TestComputeClientHealth:
    @pytest.mark.asyncio
    async def test_scores_and_caches(self, repository, cache, healthy_client, as_of) -> None:
        service = HealthScoreService(repository, cache, narrative=_narrative())

        result = await service.compute_client_health(healthy_client.id, as_of=as_of)

        assert result.score == 97
        assert result.grade == Grade.A
        assert result.trend == Trend.FLAT
        assert result.previous_score is None
        assert result.narrative == "Steady delivery and prompt payment."
        assert result.calculated_at == as_of

        cached = await cache.get(healthy_client.id)
        assert cached.score == 97
        assert cached.narrative == "Steady delivery and prompt payment."
        assert cached.breakdown == result.breakdown

    @pytest.mark.asyncio
    async def test_result_carries_breakdown(
        self, repository, cache, healthy_client, as_of
    ) -> None:
        service = HealthScoreService(repository, cache)

        result = await service.compute_client_health(healthy_client.id, as_of=as_of)

        by_key = {factor.key: factor for factor in result.breakdown}
        assert list(by_key) == [
            "delivery_rate",
            "on_time_score",
            "payment_score",
            "engagement_score",
        ]
        assert by_key["delivery_rate"].score == 90
        assert by_key["delivery_rate"].detail == "9/10 completed"
        assert by_key["payment_score"].detail == "3 paid, 0 overdue of 3"

    @pytest.mark.asyncio
    async def test_idempotent(self, repository, cache, healthy_client, as_of) -> None:
        service = HealthScoreService(repository, cache)

        first = await service.compute_client_health(healthy_client.id, as_of=as_of)
        second = await service.compute_client_health(healthy_client.id, as_of=as_of)

        assert second.score == first.score
        assert second.trend == Trend.FLAT
        assert second.previous_score == first.score

    @pytest.mark.asyncio
    async def test_trend_down_after_decline(
        self, repository, cache, healthy_client, make_invoice, as_of
    ) -> None:
        service = HealthScoreService(repository, cache)
        first = await service.compute_client_health(healthy_client.id, as_of=as_of)

        repository.invoices.append(
            make_invoice(healthy_client.id, status=InvoiceStatus.OVERDUE)
        )
        second = await service.compute_client_health(healthy_client.id, as_of=as_of)

        assert second.score < first.score
        assert second.trend == Trend.DOWN
        assert second.previous_score == first.score

    @pytest.mark.asyncio
    async def test_numeric_record_cached_before_narrative(
        self, repository, healthy_client, as_of
    ) -> None:
        cache = MagicMock()
        cache.get = AsyncMock(return_value=None)
        cache.upsert = AsyncMock(return_value=True)
        service = HealthScoreService(repository, cache, narrative=_narrative("Text."))

        await service.compute_client_health(healthy_client.id, as_of=as_of)

        first, second = [c.args[0] for c in cache.upsert.await_args_list]
        assert first.narrative is None
        assert second.narrative == "Text."
        assert first.previous_score == second.previous_score
        assert first.score == second.score

    @pytest.mark.asyncio
    async def test_without_narrative(self, repository, cache, healthy_client, as_of) -> None:
        narrative = _narrative()
        service = HealthScoreService(repository, cache, narrative=narrative)

        result = await service.compute_client_health(
            healthy_client.id, as_of=as_of, include_narrative=False
        )

        assert result.narrative == ""
        narrative.generate_narrative.assert_not_awaited()
        assert (await cache.get(healthy_client.id)).narrative is None

    @pytest.mark.asyncio
    async def test_recompute_without_narrative_clears_stale_one(
        self, repository, cache, healthy_client, as_of
    ) -> None:
        service = HealthScoreService(repository, cache, narrative=_narrative("Old text."))
        await service.compute_client_health(healthy_client.id, as_of=as_of)

        await service.compute_client_health(
            healthy_client.id, as_of=as_of, include_narrative=False
        )

        assert (await cache.get(healthy_client.id)).narrative is None

    @pytest.mark.asyncio
    async def test_unknown_client(self, repository, cache, as_of) -> None:
        service = HealthScoreService(repository, cache)
        with pytest.raises(ClientNotFoundError):
            await service.compute_client_health("missing", as_of=as_of)

    @pytest.mark.asyncio
    async def test_inactive_client(self, repository, cache, make_client, as_of) -> None:
        client = make_client(status=ClientStatus.ONBOARDING)
        repository.clients.append(client)
        service = HealthScoreService(repository, cache)

        with pytest.raises(ClientNotScorableError):
            await service.compute_client_health(client.id, as_of=as_of)
        assert await cache.get(client.id) is None

    @pytest.mark.asyncio
    async def test_cache_read_failure_gives_flat_trend(
        self, repository, healthy_client, as_of
    ) -> None:
        cache = MagicMock()
        cache.get = AsyncMock(side_effect=ConnectionError("cache down"))
        cache.upsert = AsyncMock(return_value=True)
        service = HealthScoreService(repository, cache)

        result = await service.compute_client_health(healthy_client.id, as_of=as_of)

        assert result.score == 97
        assert result.trend == Trend.FLAT
        assert result.previous_score is None

    @pytest.mark.asyncio
    async def test_cache_write_failure_still_returns_score(
        self, repository, healthy_client, as_of
    ) -> None:
        cache = MagicMock()
        cache.get = AsyncMock(return_value=None)
        cache.upsert = AsyncMock(side_effect=[False, RuntimeError("write failed")])
        service = HealthScoreService(repository, cache, narrative=_narrative())

        result = await service.compute_client_health(healthy_client.id, as_of=as_of)

        assert result.score == 97
        assert result.narrative == "Steady delivery and prompt payment."

    @pytest.mark.asyncio
    async def test_narrative_failure_uses_template(
        self, repository, cache, healthy_client, as_of
    ) -> None:
        llm = MagicMock()
        llm.completion = AsyncMock(side_effect=TimeoutError("slow"))
        service = HealthScoreService(
            repository, cache, narrative=NarrativeRequester(llm)
        )

        result = await service.compute_client_health(healthy_client.id, as_of=as_of)

        assert result.score == 97
        assert result.narrative.startswith("Acme Co scores 97/100")
        cached = await cache.get(healthy_client.id)
        assert cached.narrative == result.narrative

    @pytest.mark.asyncio
    async def test_clock_used_when_as_of_omitted(
        self, repository, cache, healthy_client, as_of
    ) -> None:
        service = HealthScoreService(repository, cache, clock=lambda: as_of)

        result = await service.compute_client_health(healthy_client.id)

        assert result.calculated_at == as_of


class TestComputeAll:
    @pytest.mark.asyncio
    async def test_isolates_failures(
        self, repository, cache, healthy_client, make_client, as_of
    ) -> None:
        broken = make_client(company_name="Broken Ltd")
        prospect = make_client(company_name="Later Inc", status=ClientStatus.PROSPECT)
        repository.clients.extend([broken, prospect])
        repository.broken_clients.add(broken.id)
        service = HealthScoreService(repository, cache, concurrency=2)

        summary = await service.compute_all(as_of=as_of, include_narrative=False)

        assert summary.computed == 1
        assert summary.failed == 1
        assert summary.results[0].client_id == healthy_client.id
        assert summary.errors[0].client_id == broken.id
        assert "Invalid deliverable record" in summary.errors[0].error
        assert [r.client_id for r in await service.list_cached()] == [healthy_client.id]

    @pytest.mark.asyncio
    async def test_reads_cached_record(self, repository, cache, healthy_client, as_of) -> None:
        service = HealthScoreService(repository, cache)
        await service.compute_client_health(healthy_client.id, as_of=as_of)

        record = await service.get_cached(healthy_client.id)

        assert isinstance(record, HealthScoreRecord)
        assert record.score == 97


class TestListCached:
    @staticmethod
    def _cached(client_id: str, score: int, as_of: datetime) -> HealthScoreRecord:
        return HealthScoreRecord(
            client_id=client_id,
            score=score,
            factors=FactorScores(
                delivery_rate=score,
                on_time_score=score,
                payment_score=score,
                engagement_score=score,
            ),
            grade=Grade.C,
            tier=HealthTier.AT_RISK,
            calculated_at=as_of,
        )

    @pytest.mark.asyncio
    async def test_worst_score_first(self, repository, cache, as_of) -> None:
        for client_id, score in (("c1", 88), ("c2", 41), ("c3", 65)):
            await cache.upsert(self._cached(client_id, score, as_of))
        service = HealthScoreService(repository, cache)

        records = await service.list_cached()

        assert [r.client_id for r in records] == ["c2", "c3", "c1"]

    @pytest.mark.asyncio
    async def test_market_filter(self, repository, cache, make_client, as_of) -> None:
        sg = make_client(market=Market.SG)
        us = make_client(market=Market.US)
        repository.clients.extend([sg, us])
        await cache.upsert(self._cached(sg.id, 70, as_of))
        await cache.upsert(self._cached(us.id, 50, as_of))
        service = HealthScoreService(repository, cache)

        records = await service.list_cached(market=Market.SG)

        assert [r.client_id for r in records] == [sg.id]


# ── AlertService ─────────────────────────────────────────────────────────────


class TestAlertService:
    @pytest.mark.asyncio
    async def test_sweep(self, repository, make_client, make_deliverable, as_of) -> None:
        client = make_client()
        repository.clients.append(client)
        repository.deliverables.append(
            make_deliverable(client.id, due_date=as_of.date() - timedelta(days=1))
        )
        service = AlertService(repository)

        sweep = await service.sweep(as_of=as_of)

        assert [f.rule for f in sweep.findings] == [AlertRule.OVERDUE_DELIVERABLE]
        assert sweep.findings[0].priority == AlertPriority.HIGH

    @pytest.mark.asyncio
    async def test_failed_collection_reported(self, repository, make_client, as_of) -> None:
        repository.clients.append(make_client())
        repository.failed_collections.add("content")
        service = AlertService(repository)

        sweep = await service.sweep(as_of=as_of)

        assert sweep.skipped_rules == [AlertRule.STUCK_CONTENT]

    @pytest.mark.asyncio
    async def test_suggestions(self, repository, make_client, make_deliverable, as_of) -> None:
        sg = make_client(market=Market.SG)
        us = make_client(market=Market.US)
        prospect = make_client(market=Market.SG, status=ClientStatus.PROSPECT)
        repository.clients.extend([sg, us, prospect])
        repository.deliverables.append(
            make_deliverable(sg.id, due_date=as_of.date() - timedelta(days=1))
        )
        suggestion = Suggestion(
            priority=AlertPriority.HIGH,
            category=AlertCategory.OVERDUE,
            title="Chase the overdue deliverable",
        )
        narrative = MagicMock(spec=NarrativeRequester)
        narrative.request_suggestions = AsyncMock(return_value=[suggestion])
        service = AlertService(repository, narrative=narrative)

        response = await service.suggestions(market=Market.SG, as_of=as_of)

        assert response.suggestions == [suggestion]
        args = narrative.request_suggestions.await_args
        assert len(args.args[0]) == 1
        assert args.kwargs["active_clients"] == 1
        assert args.kwargs["total_deliverables"] == 1
        assert args.kwargs["market"] == Market.SG

    @pytest.mark.asyncio
    async def test_suggestions_without_narrative(self, repository, as_of) -> None:
        response = await AlertService(repository).suggestions(as_of=as_of)
        assert response.suggestions == []
