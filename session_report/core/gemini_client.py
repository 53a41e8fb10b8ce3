"""
Gemini Client

Wrapper for Vertex AI Gemini API calls.
Handles initialization, usage accounting and grounding metadata extraction.
Provides a global singleton for use across the application.

When no GCP project is configured the client stays in demo mode:
``is_available`` is False and every call raises BackendUnavailableError.
"""

import json
import logging
import os
from typing import Any, Optional

from session_report.config import settings
from session_report.core.usage import calculate_cost
from session_report.exceptions import BackendUnavailableError
from session_report.models.schemas import (
    GroundedResponse,
    GroundingChunk,
    GroundingMetadata,
    GroundingSupport,
    LLMResponse,
    TokenUsage,
)

logger = logging.getLogger(__name__)


class GeminiClient:
    """Wrapper around the Vertex AI Gemini generative model.

    Initializes Vertex AI on construction.  If credentials are missing or
    the project is not configured, the client degrades and
    ``is_available`` returns False.
    """

    def __init__(self, model_name: Optional[str] = None) -> None:
        self.model_name = model_name or settings.GEMINI_MODEL
        self._initialized = False
        self._initialize()

    def _resolve_project(self) -> str | None:
        """Return the GCP project ID from settings or credentials file."""
        if settings.GOOGLE_CLOUD_PROJECT:
            return settings.GOOGLE_CLOUD_PROJECT
        # Fall back: read project_id from the service-account JSON
        creds_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS", "")
        if creds_path and os.path.isfile(creds_path):
            with open(creds_path) as f:
                return json.load(f).get("project_id")
        return None

    def _initialize(self) -> None:
        """Attempt to initialise the Vertex AI SDK."""
        project = self._resolve_project()
        if not project:
            logger.warning("GCP project not found - Gemini running in demo mode")
            return

        try:
            import vertexai

            vertexai.init(project=project, location=settings.GOOGLE_CLOUD_LOCATION)
            self._initialized = True
            logger.info("Gemini client initialized (model=%s)", self.model_name)
        except Exception as exc:
            logger.warning("Gemini initialization failed: %s", exc)
            self._initialized = False

    @property
    def is_available(self) -> bool:
        """Return True if Gemini is ready to accept requests."""
        return self._initialized

    def _require_available(self) -> None:
        if not self._initialized:
            raise BackendUnavailableError(
                "Gemini is not configured - set GOOGLE_CLOUD_PROJECT in .env"
            )

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_output_tokens: int = 8192,
        response_schema: Optional[dict] = None,
    ) -> LLMResponse:
        """Generate a response, optionally constrained to a JSON schema.

        Args:
            system_prompt: The system-level instruction.
            user_prompt: The user-level input.
            temperature: Sampling temperature.
            max_output_tokens: Maximum tokens in the response.
            response_schema: OpenAPI-style schema; switches the call to
                JSON response mode.

        Returns:
            LLMResponse with text, priced token usage and finish reason.
        """
        self._require_available()

        from vertexai.generative_models import Content, GenerativeModel, Part

        generation_config: dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if response_schema is not None:
            generation_config["response_mime_type"] = "application/json"
            generation_config["response_schema"] = response_schema

        # Rebuild model with system instruction for this call
        model = GenerativeModel(self.model_name, system_instruction=system_prompt)
        response = await model.generate_content_async(
            contents=[Content(role="user", parts=[Part.from_text(user_prompt)])],
            generation_config=generation_config,
        )

        candidate = response.candidates[0] if response.candidates else None
        result = LLMResponse(
            text=_candidate_text(candidate),
            token_usage=self._usage(response),
            finish_reason=_finish_reason(candidate),
        )
        logger.debug(
            "generate: %d in / %d out tokens, finish=%s",
            result.token_usage.input_tokens,
            result.token_usage.output_tokens,
            result.finish_reason,
        )
        return result

    async def generate_grounded(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_output_tokens: int = 4096,
    ) -> GroundedResponse:
        """Generate a free-text response grounded with Google Search.

        Returns:
            GroundedResponse carrying the consulted sources and the text
            spans each of them supports.
        """
        self._require_available()

        from vertexai.generative_models import Content, GenerativeModel, Part, Tool

        model = GenerativeModel(
            self.model_name,
            system_instruction=system_prompt,
            tools=[Tool.from_dict({"google_search": {}})],
        )
        response = await model.generate_content_async(
            contents=[Content(role="user", parts=[Part.from_text(user_prompt)])],
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            },
        )

        candidate = response.candidates[0] if response.candidates else None
        metadata = _grounding_metadata(candidate)
        logger.info(
            "generate_grounded: %d sources, %d supports",
            len(metadata.grounding_chunks) if metadata else 0,
            len(metadata.grounding_supports) if metadata else 0,
        )
        return GroundedResponse(
            text=_candidate_text(candidate),
            token_usage=self._usage(response),
            finish_reason=_finish_reason(candidate),
            grounding_metadata=metadata,
        )

    @staticmethod
    def _usage(response: Any) -> TokenUsage:
        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", 0) or 0
        output_tokens = getattr(usage, "candidates_token_count", 0) or 0
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost=calculate_cost(
                input_tokens,
                output_tokens,
                settings.GEMINI_INPUT_PRICE_PER_MILLION,
                settings.GEMINI_OUTPUT_PRICE_PER_MILLION,
            ),
        )


def _candidate_text(candidate: Any) -> str:
    if candidate is None:
        return ""
    texts = []
    for part in candidate.content.parts:
        try:
            texts.append(part.text)
        except AttributeError:
            # function-call or other non-text part
            continue
    return "".join(texts)


def _finish_reason(candidate: Any) -> str:
    if candidate is None:
        return ""
    reason = getattr(candidate, "finish_reason", None)
    return getattr(reason, "name", str(reason or ""))


def _grounding_metadata(candidate: Any) -> Optional[GroundingMetadata]:
    raw = getattr(candidate, "grounding_metadata", None) if candidate else None
    if raw is None:
        return None

    # Chunks keep their positions: supports refer to them by index
    chunks = []
    for chunk in getattr(raw, "grounding_chunks", []):
        web = getattr(chunk, "web", None)
        chunks.append(
            GroundingChunk(
                url=getattr(web, "uri", "") or "",
                title=getattr(web, "title", "") or "",
            )
        )

    supports = []
    for support in getattr(raw, "grounding_supports", []):
        segment = getattr(support, "segment", None)
        supports.append(
            GroundingSupport(
                text_span=getattr(segment, "text", "") or "",
                chunk_indices=list(getattr(support, "grounding_chunk_indices", [])),
                confidence_scores=list(getattr(support, "confidence_scores", [])),
            )
        )

    return GroundingMetadata(
        web_search_queries=list(getattr(raw, "web_search_queries", [])),
        grounding_chunks=chunks,
        grounding_supports=supports,
    )


# ---------------------------------------------------------------------------
# Global singleton
# ---------------------------------------------------------------------------
gemini_client = GeminiClient()
