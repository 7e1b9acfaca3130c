"""Narrative/Suggestion Requester -- prose around deterministic results.

Wraps LLMService for the two text tasks the engine delegates:
- generate_narrative: 2-3 sentences explaining a computed health score.
  Any failure yields a templated sentence built from the factor numbers.
- request_suggestions: 3-5 prioritized actions packaged from alert findings.
  Any failure, or a response that is not parseable JSON, yields [].

Neither call can block or fail the numeric result: callers always get text
(possibly templated) or an empty list, never an exception.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from src.app.core.monitoring import narrative_fallbacks_total, suggestion_failures_total
from src.app.health.prompts import (
    NARRATIVE_SYSTEM_PROMPT,
    SUGGESTIONS_SYSTEM_PROMPT,
    build_narrative_prompt,
    build_suggestions_prompt,
)
from src.app.health.schemas import (
    AlertFinding,
    AlertRule,
    Client,
    HealthScore,
    Market,
    Suggestion,
)
from src.app.services.llm import (
    LLMAuthError,
    LLMError,
    LLMTimeoutError,
    MalformedLLMResponseError,
)

logger = structlog.get_logger(__name__)

MAX_SUGGESTIONS = 5

_FACTOR_ADVICE: dict[str, str] = {
    "delivery_rate": "Focus on moving open deliverables through to delivery.",
    "on_time_score": "Clear the overdue items first.",
    "payment_score": "Follow up on outstanding invoices.",
    "engagement_score": "Schedule a check-in to re-engage the client.",
}

# Every factor at or above this needs no call to action.
_HEALTHY_FACTOR = 90


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, LLMTimeoutError):
        return "timeout"
    if isinstance(exc, LLMAuthError):
        return "auth"
    if isinstance(exc, (MalformedLLMResponseError, ValueError)):
        return "malformed"
    if isinstance(exc, LLMError):
        return "provider"
    return "unexpected"


def fallback_narrative(client: Client, health: HealthScore) -> str:
    """Deterministic narrative built from the factor numbers."""
    f = health.factors
    c = health.counts
    summary = (
        f"{client.company_name} scores {health.score}/100 "
        f"(grade {health.grade.value}, {health.tier.value}). "
        f"Delivery rate is {f.delivery_rate}% "
        f"({c.completed_deliverables}/{c.total_deliverables} completed), "
        f"on-time is {f.on_time_score}% with {c.overdue_count} overdue items, "
        f"payment is {f.payment_score}% ({c.paid_invoices} paid, "
        f"{c.overdue_invoices} overdue of {c.total_invoices} invoices), "
        f"and engagement is {f.engagement_score}%."
    )
    weakest = min(health.breakdown, key=lambda factor: factor.score, default=None)
    if weakest is None or weakest.score >= _HEALTHY_FACTOR:
        return f"{summary} No immediate action needed."
    return f"{summary} {_FACTOR_ADVICE[weakest.key]}"


def _extract_json(text: str) -> str:
    """Strip code fences and return text from the first JSON array or object.

    Raises:
        ValueError: If no JSON array or object is found.
    """
    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", text.strip())
    cleaned = re.sub(r"\n?```\s*$", "", cleaned.strip())

    match = re.search(r"[\[{]", cleaned)
    if match:
        return cleaned[match.start():]

    raise ValueError(f"No JSON found in LLM response: {text[:200]!r}")


def _normalize_suggestion(item: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(item)
    for key in ("priority", "category"):
        if isinstance(normalized.get(key), str):
            normalized[key] = normalized[key].strip().lower()
    return normalized


def parse_suggestions(raw_text: str) -> list[Suggestion]:
    """Parse the model response into suggestions.

    Accepts ``{"suggestions": [...]}`` or a bare list. Items that fail
    validation are dropped individually.

    Raises:
        ValueError: If the text holds no parseable JSON of either shape.
    """
    parsed = json.loads(_extract_json(raw_text))
    if isinstance(parsed, dict):
        items = parsed.get("suggestions")
    else:
        items = parsed
    if not isinstance(items, list):
        raise ValueError("Response JSON has no suggestions list")

    suggestions: list[Suggestion] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            suggestions.append(Suggestion.model_validate(_normalize_suggestion(item)))
        except ValidationError as exc:
            logger.warning(
                "suggestions.item_invalid",
                title=item.get("title"),
                error=str(exc.errors()[0].get("msg", exc)),
            )
    return suggestions[:MAX_SUGGESTIONS]


class NarrativeRequester:
    """Request narratives and suggestions from the text-generation service.

    Args:
        llm_service: LLMService (or any object with an async ``completion``).
            None disables text generation; every call falls back.
        narrative_max_tokens: Token budget for a narrative.
        suggestions_max_tokens: Token budget for suggestion packaging.
    """

    def __init__(
        self,
        llm_service: object | None,
        *,
        narrative_max_tokens: int = 256,
        suggestions_max_tokens: int = 1024,
    ) -> None:
        self._llm_service = llm_service
        self._narrative_max_tokens = narrative_max_tokens
        self._suggestions_max_tokens = suggestions_max_tokens

    async def generate_narrative(self, client: Client, health: HealthScore) -> str:
        """Return a narrative for ``health``, templated when the call fails."""
        if self._llm_service is None:
            narrative_fallbacks_total.labels(reason="disabled").inc()
            return fallback_narrative(client, health)

        try:
            response = await self._llm_service.completion(
                messages=[
                    {"role": "system", "content": NARRATIVE_SYSTEM_PROMPT},
                    {"role": "user", "content": build_narrative_prompt(client, health)},
                ],
                max_tokens=self._narrative_max_tokens,
                metadata={"task": "health_narrative", "client_id": client.id},
            )
            text = (response.get("content") or "").strip()
            if not text:
                raise MalformedLLMResponseError("Narrative is empty")
            return text
        except Exception as exc:
            reason = _failure_reason(exc)
            narrative_fallbacks_total.labels(reason=reason).inc()
            logger.warning(
                "health.narrative_fallback",
                client_id=client.id,
                reason=reason,
                error=str(exc),
            )
            return fallback_narrative(client, health)

    async def request_suggestions(
        self,
        findings: list[AlertFinding],
        *,
        active_clients: int,
        total_deliverables: Optional[int] = None,
        market: Optional[Market] = None,
        skipped_rules: Optional[list[AlertRule]] = None,
    ) -> list[Suggestion]:
        """Return 3-5 prioritized suggestions, or [] on any failure."""
        if self._llm_service is None:
            suggestion_failures_total.labels(reason="disabled").inc()
            return []

        prompt = build_suggestions_prompt(
            findings,
            active_clients=active_clients,
            total_deliverables=total_deliverables,
            market=market,
            skipped_rules=skipped_rules,
        )
        try:
            response = await self._llm_service.completion(
                messages=[
                    {"role": "system", "content": SUGGESTIONS_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self._suggestions_max_tokens,
                metadata={"task": "alert_suggestions"},
            )
            return parse_suggestions(response.get("content") or "")
        except Exception as exc:
            reason = _failure_reason(exc)
            suggestion_failures_total.labels(reason=reason).inc()
            logger.warning(
                "alerts.suggestions_failed",
                reason=reason,
                error=str(exc),
            )
            return []
