"""LLM provider abstraction via LiteLLM Router.

Provides the text-generation service used for health narratives and
suggestion packaging:
- OpenRouter (Claude Sonnet 4) as the primary model
- OpenAI as fallback when OpenRouter is unavailable or unconfigured
- A small error hierarchy so callers can degrade on timeout, missing
  credentials or an empty/unusable response without catching provider types

Scores are never computed here; this service only writes prose about them.
"""

from __future__ import annotations

import asyncio

import litellm
import structlog
from litellm import Router

from src.app.config import get_settings
from src.app.core.monitoring import track_llm_call

logger = structlog.get_logger(__name__)

REASONING_GROUP = "reasoning"
FALLBACK_GROUP = "reasoning-fallback"


# ── Errors ───────────────────────────────────────────────────────────────────


class LLMError(Exception):
    """Base class for text-generation failures."""


class LLMTimeoutError(LLMError):
    """The provider did not answer within LLM_TIMEOUT."""


class LLMAuthError(LLMError):
    """No credentials configured, or the provider rejected them."""


class MalformedLLMResponseError(LLMError):
    """The provider answered but the response has no usable content."""


# ── LLM Service ──────────────────────────────────────────────────────────────


class LLMService:
    """LLM provider abstraction with LiteLLM Router.

    Routes the ``reasoning`` group to OpenRouter and falls back to OpenAI.
    When only one provider key is set, that provider serves the group alone.
    """

    def __init__(self) -> None:
        settings = get_settings()

        model_list = []
        fallbacks = []

        if settings.OPENROUTER_API_KEY:
            model_list.append({
                "model_name": REASONING_GROUP,
                "litellm_params": {
                    "model": settings.LLM_PRIMARY_MODEL,
                    "api_key": settings.OPENROUTER_API_KEY,
                    "extra_headers": {
                        "HTTP-Referer": settings.LLM_APP_URL,
                        "X-Title": settings.LLM_APP_TITLE,
                    },
                },
            })

        if settings.OPENAI_API_KEY:
            group = FALLBACK_GROUP if model_list else REASONING_GROUP
            model_list.append({
                "model_name": group,
                "litellm_params": {
                    "model": settings.LLM_FALLBACK_MODEL,
                    "api_key": settings.OPENAI_API_KEY,
                },
            })
            if group == FALLBACK_GROUP:
                fallbacks.append({REASONING_GROUP: [FALLBACK_GROUP]})

        if not model_list:
            logger.warning("llm.unconfigured", detail="No LLM API keys configured")
            self.router = None
            return

        self.router = Router(
            model_list=model_list,
            fallbacks=fallbacks,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    @property
    def configured(self) -> bool:
        return self.router is not None

    async def completion(
        self,
        messages: list[dict],
        model: str = REASONING_GROUP,
        max_tokens: int = 1024,
        temperature: float = 0.4,
        metadata: dict | None = None,
    ) -> dict:
        """Execute a completion call through the LiteLLM Router.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model group name.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature (0-2).
            metadata: Additional metadata to include in the call.

        Returns:
            Dict with content, model, and usage.

        Raises:
            LLMAuthError: No keys configured or credentials rejected.
            LLMTimeoutError: The call exceeded the configured timeout.
            MalformedLLMResponseError: The response carried no text.
            LLMError: Any other provider failure.
        """
        if not self.router:
            raise LLMAuthError("No LLM API keys configured")

        try:
            async with track_llm_call(model) as tracker:
                response = await self.router.acompletion(
                    model=model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    metadata=metadata or {},
                )
                if getattr(response, "usage", None):
                    tracker["prompt_tokens"] = response.usage.prompt_tokens
                    tracker["completion_tokens"] = response.usage.completion_tokens
        except litellm.AuthenticationError as exc:
            raise LLMAuthError(str(exc)) from exc
        except (litellm.Timeout, asyncio.TimeoutError) as exc:
            raise LLMTimeoutError(str(exc) or "LLM request timed out") from exc
        except Exception as exc:
            raise LLMError(str(exc)) from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise MalformedLLMResponseError("Response has no choices") from exc
        if not content or not content.strip():
            raise MalformedLLMResponseError("Response content is empty")

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return {
            "content": content,
            "model": response.model,
            "usage": usage,
        }


# ── Singleton ─────────────────────────────────────────────────────────────────

_llm_service: LLMService | None = None


def get_llm_service() -> LLMService:
    """Get or create the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
