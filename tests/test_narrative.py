"""Tests for NarrativeRequester, suggestion parsing and prompt builders.

The LLM service is an AsyncMock throughout; no provider is ever called.

Covers:
    - Narrative success path returns the model text
    - Timeout, auth, malformed and unexpected failures all fall back to the
      deterministic template, never raising
    - Disabled text generation (no service) falls back
    - Suggestion parsing: wrapped or bare lists, code fences, invalid items
      dropped, capped at 5
    - Suggestion failures return an empty list
    - Prompt shape for narratives and suggestions
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.app.health.narrative import (
    MAX_SUGGESTIONS,
    NarrativeRequester,
    fallback_narrative,
    parse_suggestions,
)
from src.app.health.prompts import build_narrative_prompt, build_suggestions_prompt
from src.app.health.schemas import (
    AlertCategory,
    AlertFinding,
    AlertPriority,
    AlertRule,
    FactorCounts,
    FactorExtraction,
    FactorScores,
    Market,
)
from src.app.health.scorer import ClientHealthScorer
from src.app.services.llm import (
    LLMAuthError,
    LLMError,
    LLMTimeoutError,
    MalformedLLMResponseError,
)


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def client(make_client):
    return make_client(company_name="Acme Co")


def _health(client_id: str, *, delivery=90, on_time=100, payment=100, engagement=100):
    extraction = FactorExtraction(
        client_id=client_id,
        factors=FactorScores(
            delivery_rate=delivery,
            on_time_score=on_time,
            payment_score=payment,
            engagement_score=engagement,
        ),
        counts=FactorCounts(
            total_deliverables=10,
            completed_deliverables=9,
            total_invoices=3,
            paid_invoices=3,
            recent_activity=4,
        ),
    )
    return ClientHealthScorer().score(extraction)


def _llm(content: str | None = None, error: Exception | None = None) -> MagicMock:
    service = MagicMock()
    if error is not None:
        service.completion = AsyncMock(side_effect=error)
    else:
        service.completion = AsyncMock(
            return_value={"content": content, "model": "reasoning", "usage": {}}
        )
    return service


def _finding(rule: AlertRule = AlertRule.OVERDUE_DELIVERABLE, title: str = '"Q1 report" is overdue'):
    return AlertFinding(
        id=f"{rule.value}:x",
        rule=rule,
        priority=AlertPriority.HIGH,
        category=AlertCategory.OVERDUE,
        subject_id="x",
        title=title,
        description="Due 2026-03-14 for Acme Co, still In Progress.",
        action="Create Follow-up Task",
    )


# -- Narratives ---------------------------------------------------------------


class TestGenerateNarrative:
    @pytest.mark.asyncio
    async def test_returns_model_text(self, client) -> None:
        llm = _llm("  Acme is in great shape. Keep shipping.  ")
        requester = NarrativeRequester(llm)

        text = await requester.generate_narrative(client, _health(client.id))

        assert text == "Acme is in great shape. Keep shipping."
        kwargs = llm.completion.await_args.kwargs
        assert kwargs["max_tokens"] == 256
        assert kwargs["messages"][0]["role"] == "system"
        assert "Health Score: 97/100" in kwargs["messages"][1]["content"]

    @pytest.mark.parametrize(
        "error",
        [
            LLMTimeoutError("timed out"),
            LLMAuthError("bad key"),
            MalformedLLMResponseError("empty"),
            LLMError("provider down"),
            RuntimeError("boom"),
        ],
    )
    @pytest.mark.asyncio
    async def test_failures_fall_back(self, client, error: Exception) -> None:
        health = _health(client.id)
        requester = NarrativeRequester(_llm(error=error))

        text = await requester.generate_narrative(client, health)

        assert text == fallback_narrative(client, health)

    @pytest.mark.asyncio
    async def test_empty_text_falls_back(self, client) -> None:
        health = _health(client.id)
        requester = NarrativeRequester(_llm("   "))

        assert await requester.generate_narrative(client, health) == fallback_narrative(
            client, health
        )

    @pytest.mark.asyncio
    async def test_disabled_service_falls_back(self, client) -> None:
        health = _health(client.id)
        text = await NarrativeRequester(None).generate_narrative(client, health)
        assert text.startswith("Acme Co scores 97/100 (grade A, Healthy).")


class TestFallbackNarrative:
    def test_healthy_client_needs_no_action(self, client) -> None:
        text = fallback_narrative(client, _health(client.id))
        assert text.endswith("No immediate action needed.")

    def test_weakest_factor_drives_advice(self, client) -> None:
        health = _health(client.id, delivery=95, payment=20)
        text = fallback_narrative(client, health)
        assert text.endswith("Follow up on outstanding invoices.")


# -- Suggestions --------------------------------------------------------------


def _suggestion(title: str, priority: str = "high", category: str = "overdue") -> dict:
    return {
        "priority": priority,
        "category": category,
        "title": title,
        "description": "Do it today.",
        "action": "Create Follow-up Task",
        "suggestedTask": {
            "name": f"Follow up: {title}",
            "clientId": None,
            "assignedTo": None,
            "category": "Ops",
            "dueDate": "2026-03-16",
        },
    }


class TestParseSuggestions:
    def test_wrapped_object(self) -> None:
        raw = json.dumps({"suggestions": [_suggestion("Chase Q1 report")]})

        [suggestion] = parse_suggestions(raw)

        assert suggestion.priority == AlertPriority.HIGH
        assert suggestion.category == AlertCategory.OVERDUE
        assert suggestion.suggested_task.name == "Follow up: Chase Q1 report"

    def test_bare_list_in_code_fence(self) -> None:
        raw = "```json\n" + json.dumps([_suggestion("A"), _suggestion("B")]) + "\n```"
        assert [s.title for s in parse_suggestions(raw)] == ["A", "B"]

    def test_case_is_normalized(self) -> None:
        raw = json.dumps([_suggestion("A", priority="HIGH", category="Invoice")])
        [suggestion] = parse_suggestions(raw)
        assert suggestion.category == AlertCategory.INVOICE

    def test_invalid_items_dropped(self) -> None:
        raw = json.dumps(
            [_suggestion("ok"), _suggestion("bad", priority="urgent"), "not an object"]
        )
        assert [s.title for s in parse_suggestions(raw)] == ["ok"]

    def test_capped(self) -> None:
        raw = json.dumps([_suggestion(str(i)) for i in range(8)])
        assert len(parse_suggestions(raw)) == MAX_SUGGESTIONS

    def test_no_json_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_suggestions("I could not find anything urgent.")


class TestRequestSuggestions:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        llm = _llm(json.dumps({"suggestions": [_suggestion("Chase Q1 report")]}))
        requester = NarrativeRequester(llm)

        result = await requester.request_suggestions([_finding()], active_clients=3)

        assert [s.title for s in result] == ["Chase Q1 report"]
        assert llm.completion.await_args.kwargs["max_tokens"] == 1024

    @pytest.mark.parametrize(
        "llm",
        [
            _llm("not json at all"),
            _llm(json.dumps({"ideas": []})),
            _llm(error=LLMTimeoutError("slow")),
            _llm(error=LLMAuthError("bad key")),
        ],
    )
    @pytest.mark.asyncio
    async def test_failures_return_empty(self, llm) -> None:
        requester = NarrativeRequester(llm)
        assert await requester.request_suggestions([_finding()], active_clients=3) == []

    @pytest.mark.asyncio
    async def test_disabled_returns_empty(self) -> None:
        requester = NarrativeRequester(None)
        assert await requester.request_suggestions([_finding()], active_clients=3) == []


# -- Prompts ------------------------------------------------------------------


class TestPrompts:
    def test_narrative_prompt_shape(self, client) -> None:
        prompt = build_narrative_prompt(client, _health(client.id))

        lines = prompt.splitlines()
        assert lines[0].startswith("Client: Acme Co (SG market, Growth plan")
        assert lines[1] == "Health Score: 97/100 (grade A, Healthy)"
        assert lines[2] == "- Delivery Rate: 90% (9/10 completed)"
        assert lines[3] == "- On-Time: 100% (0 overdue items)"
        assert "Contract: 2025-06-01 to 2026-12-31" in prompt
        assert prompt.endswith("what the team should do.")

    def test_suggestions_prompt_sections(self) -> None:
        prompt = build_suggestions_prompt(
            [_finding()],
            active_clients=4,
            total_deliverables=12,
            market=Market.SG,
            skipped_rules=[AlertRule.OVERDUE_INVOICE],
        )

        assert "(SG):" in prompt
        assert "Active Clients: 4" in prompt
        assert "Total Deliverables: 12" in prompt
        assert 'Overdue Deliverables: "Q1 report" is overdue' in prompt
        assert "Overdue Invoices: unavailable" in prompt
        assert "Blocked Tasks: none" in prompt
        assert '"suggestedTask"' in prompt
