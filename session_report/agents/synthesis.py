"""
Synthesis Stage

Single schema-constrained call that turns a metrics snapshot into the
graded report body and its ordered list of sections.  This is the only
stage whose failure aborts a run.
"""

import logging
from datetime import datetime, timezone
from typing import Literal, Union

from pydantic import BaseModel

from session_report.config import settings
from session_report.core.response_parsing import parse_model
from session_report.exceptions import ResponseValidationError, SynthesisStageError
from session_report.models.schemas import SessionMetrics, SynthesisOutput, TokenUsage
from session_report.prompts.synthesis import (
    SYNTHESIS_RESPONSE_SCHEMA,
    SYNTHESIS_SYSTEM_PROMPT,
    format_synthesis_prompt,
)

logger = logging.getLogger(__name__)


class SynthesisParsed(BaseModel):
    kind: Literal["parsed"] = "parsed"
    output: SynthesisOutput


class SynthesisRejected(BaseModel):
    kind: Literal["rejected"] = "rejected"
    reason: str
    violations: list[tuple[str, str]] = []


SynthesisParseResult = Union[SynthesisParsed, SynthesisRejected]


def parse_synthesis(text: str) -> SynthesisParseResult:
    """Decode a synthesis response without raising."""
    try:
        return SynthesisParsed(output=parse_model(text, SynthesisOutput))
    except ResponseValidationError as exc:
        return SynthesisRejected(reason=str(exc), violations=exc.violations)


async def run_synthesis(backend, metrics: SessionMetrics) -> tuple[SynthesisOutput, TokenUsage]:
    """Call the backend once and return the stamped synthesis output.

    Raises:
        SynthesisStageError: if the call fails or the body is unusable.
    """
    try:
        response = await backend.generate(
            system_prompt=SYNTHESIS_SYSTEM_PROMPT,
            user_prompt=format_synthesis_prompt(metrics),
            temperature=settings.SYNTHESIS_TEMPERATURE,
            max_output_tokens=settings.SYNTHESIS_MAX_OUTPUT_TOKENS,
            response_schema=SYNTHESIS_RESPONSE_SCHEMA,
        )
    except Exception as exc:
        logger.error("Synthesis call failed for session %s: %s", metrics.session_id, exc)
        raise SynthesisStageError(f"Synthesis call failed: {exc}") from exc

    result = parse_synthesis(response.text)
    if isinstance(result, SynthesisRejected):
        logger.error(
            "Synthesis response rejected for session %s (finish=%s): %s",
            metrics.session_id, response.finish_reason, result.reason,
        )
        raise SynthesisStageError(result.reason, result.violations)

    output = result.output.model_copy(update={"analyzed_at": datetime.now(timezone.utc)})
    logger.info(
        "Synthesis complete for session %s: grade=%s, %d sections (%d need research)",
        metrics.session_id,
        output.overall_grade,
        len(output.sections),
        sum(1 for s in output.sections if s.needs_research),
    )
    return output, response.token_usage
