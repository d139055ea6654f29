"""Estimate Agent - drafts labor and materials from job context and photos."""

import logging
from typing import Optional

from pydantic import ValidationError

from relaykit.agents.base import ERROR_INVALID_JSON, AgentResult, BaseAgent
from relaykit.domain.schemas import DraftEstimateResponse

logger = logging.getLogger(__name__)


class EstimateAgent(BaseAgent):
    """Produces a ``DraftEstimateResponse`` for one job.

    The draft is a proposal only: material costs it carries are never
    trusted, pricing is resolved server-side afterwards.
    """

    def __init__(
        self,
        model_name: str = "gemini-3-flash-preview",
        temperature: float = 0.2,
        timeout_seconds: float = 120.0,
    ):
        super().__init__(
            agent_name="estimate",
            model_name=model_name,
            temperature=temperature,
            timeout_seconds=timeout_seconds,
        )

    async def draft(
        self,
        system_prompt: str,
        user_text: str,
        images: Optional[list[dict]] = None,
    ) -> AgentResult:
        """Request a draft estimate.

        Args:
            system_prompt: Resolved estimator system prompt.
            user_text: Job context rendered by ``build_user_text``.
            images: Inline image parts (``{"mime_type", "data"}``).

        Returns:
            AgentResult whose ``data`` is a validated ``DraftEstimateResponse``.
            Non-JSON output and JSON that violates the draft shape both fail
            with ``error_code == ERROR_INVALID_JSON``.
        """
        contents: list = [user_text]
        contents.extend(images or [])

        result = await self.generate_json(
            prompt=contents,
            system_instruction=system_prompt,
            response_schema=DraftEstimateResponse.model_json_schema(),
        )
        if not result.ok:
            return result

        if not isinstance(result.data, dict):
            return AgentResult.failure(
                "AI returned invalid JSON: expected an object",
                error_code=ERROR_INVALID_JSON,
                latency_ms=result.latency_ms,
            )

        try:
            draft = DraftEstimateResponse.model_validate(result.data)
        except ValidationError as exc:
            logger.warning("[%s] Draft failed validation: %s", self.agent_name, exc)
            return AgentResult.failure(
                f"AI returned invalid JSON: {exc.error_count()} schema error(s)",
                error_code=ERROR_INVALID_JSON,
                latency_ms=result.latency_ms,
                data=result.data,
            )

        return AgentResult.success(
            data=draft,
            tokens_used=result.tokens_used,
            latency_ms=result.latency_ms,
        )
