"""Base agent class for RelayKit AI agents.

Agents inherit from BaseAgent, which provides:

- Gemini model access via the infra.gemini_client wrapper
- A standard AgentResult return type (Result pattern)
- Automatic latency measurement and token tracking
- A hard timeout on every model call
- Multimodal prompts (text plus inline image parts)
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

# Failure kinds callers can branch on without parsing error strings
ERROR_REQUEST_FAILED = "request_failed"
ERROR_TIMEOUT = "timeout"
ERROR_INVALID_JSON = "invalid_json"

Prompt = Union[str, list[Any]]


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class AgentResult:
    """Standard result type for all agent operations.

    Follows the Result pattern: every agent call returns an AgentResult
    instead of raising exceptions. Callers check ``result.ok`` to
    determine success or failure.

    Attributes:
        ok: True if the operation succeeded.
        data: The response payload (text, parsed JSON, etc.).
        error: Human-readable error description when ``ok`` is False.
        error_code: One of the ``ERROR_*`` constants when ``ok`` is False.
        tokens_used: Total tokens consumed (prompt + completion).
        latency_ms: Wall-clock time for the operation in milliseconds.
    """

    ok: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    tokens_used: int = 0
    latency_ms: int = 0

    @classmethod
    def success(
        cls,
        data: Any,
        tokens_used: int = 0,
        latency_ms: int = 0,
    ) -> "AgentResult":
        """Create a successful result."""
        return cls(
            ok=True,
            data=data,
            tokens_used=tokens_used,
            latency_ms=latency_ms,
        )

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str = ERROR_REQUEST_FAILED,
        latency_ms: int = 0,
        data: Any = None,
    ) -> "AgentResult":
        """Create a failure result."""
        return cls(
            ok=False,
            error=error,
            error_code=error_code,
            latency_ms=latency_ms,
            data=data,
        )


# ---------------------------------------------------------------------------
# Base agent
# ---------------------------------------------------------------------------

def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _usage_tokens(response: Any) -> int:
    usage = getattr(response, "usage_metadata", None)
    if not usage:
        return 0
    prompt_tokens = getattr(usage, "prompt_token_count", 0) or 0
    completion_tokens = getattr(usage, "candidates_token_count", 0) or 0
    return prompt_tokens + completion_tokens


class BaseAgent:
    """Shared Gemini plumbing for RelayKit agents.

    Subclasses call ``generate`` or ``generate_json`` and translate the
    ``AgentResult`` into their own contract. Nothing here raises: SDK
    errors, empty replies and timeouts all come back as failures.
    """

    def __init__(
        self,
        agent_name: str,
        model_name: str = "gemini-3-flash-preview",
        temperature: float = 0.2,
        timeout_seconds: float = 120.0,
    ):
        self.agent_name = agent_name
        self.model_name = model_name
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    # ------------------------------------------------------------------
    # Core generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: Prompt,
        system_instruction: Optional[str] = None,
        json_mode: bool = False,
        response_schema: dict | None = None,
    ) -> AgentResult:
        """One model call, bounded by ``timeout_seconds``.

        Args:
            prompt: A string, or a list of parts where images are
                ``{"mime_type": ..., "data": bytes}`` dicts.
            system_instruction: Optional system prompt.
            json_mode: Ask the model for a JSON body.
            response_schema: Optional JSON Schema for structured output.
        """
        from relaykit.infra.gemini_client import get_model

        started = time.monotonic()
        try:
            model = get_model(
                model_name=self.model_name,
                temperature=self.temperature,
                json_mode=json_mode,
                response_schema=response_schema,
                system_instruction=system_instruction,
            )
            response = await asyncio.wait_for(
                model.generate_content_async(prompt), timeout=self.timeout_seconds
            )
            text = response.text
        except asyncio.TimeoutError:
            logger.error("[%s] Model call timed out after %.1fs", self.agent_name, self.timeout_seconds)
            return AgentResult.failure(
                f"Model call timed out after {self.timeout_seconds:g}s",
                error_code=ERROR_TIMEOUT,
                latency_ms=_elapsed_ms(started),
            )
        except Exception as exc:
            logger.error("[%s] Model call failed: %s", self.agent_name, exc)
            return AgentResult.failure(str(exc) or type(exc).__name__, latency_ms=_elapsed_ms(started))

        latency_ms = _elapsed_ms(started)
        if not text:
            logger.warning("[%s] Model returned no text", self.agent_name)
            return AgentResult.failure("Model returned an empty response", latency_ms=latency_ms)

        tokens_used = _usage_tokens(response)
        logger.info("[%s] tokens=%d latency=%dms", self.agent_name, tokens_used, latency_ms)
        return AgentResult.success(text, tokens_used=tokens_used, latency_ms=latency_ms)

    async def generate_json(
        self,
        prompt: Prompt,
        system_instruction: Optional[str] = None,
        response_schema: dict | None = None,
    ) -> AgentResult:
        """``generate`` in JSON mode, with the reply decoded.

        An undecodable reply is an ``ERROR_INVALID_JSON`` failure carrying
        the raw text in ``data``.
        """
        result = await self.generate(
            prompt,
            system_instruction=system_instruction,
            json_mode=True,
            response_schema=response_schema,
        )
        if not result.ok:
            return result

        try:
            parsed = json.loads(result.data)
        except ValueError as exc:
            logger.warning("[%s] Reply is not JSON (%s): %.200s", self.agent_name, exc, result.data)
            return AgentResult.failure(
                f"JSON parse error: {exc}",
                error_code=ERROR_INVALID_JSON,
                latency_ms=result.latency_ms,
                data=result.data,
            )
        return AgentResult.success(parsed, tokens_used=result.tokens_used, latency_ms=result.latency_ms)
