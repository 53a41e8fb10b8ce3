"""
Trend Stage

Optional longitudinal analysis of the current session against the
patient's earlier sessions.

Gating:
  - only prior sessions recorded strictly before the current one count,
    and the current session id is always excluded
  - with fewer than ``min_prior_sessions`` of them an InsufficientHistory
    placeholder is returned and no backend call is made

With enough history a context is built from the most recent prior
sessions (baseline medians, deviations, per-metric trends, most similar
sessions) and the backend is called once.
"""

import logging
import math
import statistics
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from session_report.config import settings
from session_report.core.response_parsing import parse_model
from session_report.core.session_history import SessionHistory, as_utc
from session_report.exceptions import TrendStageError
from session_report.models.schemas import (
    InsufficientHistory,
    SessionMetrics,
    SpeculativeInsight,
    TokenUsage,
    TrendAnalysis,
    TrendDirection,
    TrendDraft,
    TrendResult,
)
from session_report.prompts.trend import (
    TREND_RESPONSE_SCHEMA,
    TREND_SYSTEM_PROMPT,
    format_trend_prompt,
)

logger = logging.getLogger(__name__)

NOTABLE_DEVIATION = 0.15
MAX_NOTABLE_METRICS = 3
# Relative change per session below which a trend is treated as noise
MEANINGFUL_SLOPE = 0.02
MAX_SIMILAR_SESSIONS = 5


# ---------------------------------------------------------------------------
# Key metrics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricSpec:
    name: str
    display_name: str
    unit: str
    higher_is_better: bool
    extract: Callable[[SessionMetrics], float]


KEY_METRICS: list[MetricSpec] = [
    MetricSpec(
        "avg_max_rom", "Average Max ROM", "deg", True,
        lambda m: (m.left_leg.overall_max_rom + m.right_leg.overall_max_rom) / 2,
    ),
    MetricSpec(
        "avg_peak_flexion", "Average Peak Flexion", "deg", True,
        lambda m: (m.left_leg.peak_flexion + m.right_leg.peak_flexion) / 2,
    ),
    MetricSpec("rom_asymmetry", "ROM Asymmetry", "%", False, lambda m: m.bilateral.rom_asymmetry),
    MetricSpec(
        "velocity_asymmetry", "Velocity Asymmetry", "%", False,
        lambda m: m.bilateral.velocity_asymmetry,
    ),
    MetricSpec(
        "net_global_asymmetry", "Global Asymmetry", "%", False,
        lambda m: m.bilateral.net_global_asymmetry,
    ),
    MetricSpec("cross_correlation", "Movement Sync", "", True, lambda m: m.bilateral.cross_correlation),
    MetricSpec(
        "avg_peak_velocity", "Average Peak Velocity", "deg/s", True,
        lambda m: (m.left_leg.peak_angular_velocity + m.right_leg.peak_angular_velocity) / 2,
    ),
    MetricSpec("temporal_lag", "Temporal Lag", "ms", False, lambda m: m.bilateral.temporal_lag),
]


# ---------------------------------------------------------------------------
# Context models
# ---------------------------------------------------------------------------

class MetricBaseline(BaseModel):
    name: str
    display_name: str
    unit: str
    current: float
    median: float
    std: float
    trend: TrendDirection
    slope_per_session: float
    clinically_meaningful: bool


class NotableMetric(BaseModel):
    name: str
    display_name: str
    value: float
    unit: str
    deviation_percent: float
    direction: str


class HistoricalSession(BaseModel):
    session_id: str
    recorded_at: datetime
    opi_score: Optional[float] = None
    notable_metrics: list[NotableMetric] = []


class SimilarSession(BaseModel):
    session_id: str
    recorded_at: datetime
    similarity: float


class TrendContext(BaseModel):
    session_id: str
    patient_id: str
    sessions_analyzed: int
    date_range_days: int
    current_notable_metrics: list[NotableMetric]
    baseline: list[MetricBaseline]
    recent_history: list[HistoricalSession]
    similar_sessions: list[SimilarSession]
    speculative_insights: list[SpeculativeInsight] = []


# ---------------------------------------------------------------------------
# Context builders
# ---------------------------------------------------------------------------

def notable_metrics(
    session: SessionMetrics, medians: dict[str, float]
) -> list[NotableMetric]:
    """Metrics at least 15% away from the baseline median, largest first."""
    notable = []
    for spec in KEY_METRICS:
        median = medians[spec.name]
        if median == 0:
            continue
        value = spec.extract(session)
        deviation = (value - median) / abs(median)
        if abs(deviation) >= NOTABLE_DEVIATION:
            notable.append(
                NotableMetric(
                    name=spec.name,
                    display_name=spec.display_name,
                    value=value,
                    unit=spec.unit,
                    deviation_percent=round(deviation * 100, 1),
                    direction="above" if deviation > 0 else "below",
                )
            )
    notable.sort(key=lambda n: abs(n.deviation_percent), reverse=True)
    return notable[:MAX_NOTABLE_METRICS]


def trend_direction(relative_slope: float, higher_is_better: bool) -> TrendDirection:
    if abs(relative_slope) <= MEANINGFUL_SLOPE:
        return "stable"
    if (relative_slope > 0) == higher_is_better:
        return "improving"
    return "declining"


def _relative_slope(values: list[float], median: float) -> float:
    if len(values) < 2 or median == 0:
        return 0.0
    slope = statistics.linear_regression(list(range(len(values))), values).slope
    return slope / abs(median)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def date_range_days(current: SessionMetrics, prior: list[SessionMetrics]) -> int:
    if not prior:
        return 0
    oldest = min(as_utc(m.recorded_at) for m in prior)
    return max(0, (as_utc(current.recorded_at) - oldest).days)


def build_trend_context(
    current: SessionMetrics,
    prior: list[SessionMetrics],
    patient_id: str,
    speculative_insights: Optional[list[SpeculativeInsight]] = None,
) -> TrendContext:
    """Build the longitudinal context from prior sessions (oldest first)."""
    medians: dict[str, float] = {}
    baseline: list[MetricBaseline] = []
    for spec in KEY_METRICS:
        history_values = [spec.extract(m) for m in prior]
        current_value = spec.extract(current)
        median = statistics.median(history_values)
        medians[spec.name] = median
        slope = _relative_slope(history_values + [current_value], median)
        baseline.append(
            MetricBaseline(
                name=spec.name,
                display_name=spec.display_name,
                unit=spec.unit,
                current=current_value,
                median=median,
                std=statistics.pstdev(history_values),
                trend=trend_direction(slope, spec.higher_is_better),
                slope_per_session=round(slope, 4),
                clinically_meaningful=abs(slope) > MEANINGFUL_SLOPE,
            )
        )

    def _vector(m: SessionMetrics) -> list[float]:
        # Scale by the baseline median so large-valued metrics do not dominate
        return [
            spec.extract(m) / medians[spec.name] if medians[spec.name] else spec.extract(m)
            for spec in KEY_METRICS
        ]

    current_vector = _vector(current)
    similar = sorted(
        (
            SimilarSession(
                session_id=m.session_id,
                recorded_at=m.recorded_at,
                similarity=round(cosine_similarity(current_vector, _vector(m)), 4),
            )
            for m in prior
        ),
        key=lambda s: s.similarity,
        reverse=True,
    )[:MAX_SIMILAR_SESSIONS]

    history = [
        HistoricalSession(
            session_id=m.session_id,
            recorded_at=m.recorded_at,
            opi_score=m.opi_score,
            notable_metrics=notable_metrics(m, medians),
        )
        for m in reversed(prior)
    ]

    return TrendContext(
        session_id=current.session_id,
        patient_id=patient_id,
        sessions_analyzed=len(prior),
        date_range_days=date_range_days(current, prior),
        current_notable_metrics=notable_metrics(current, medians),
        baseline=baseline,
        recent_history=history,
        similar_sessions=similar,
        speculative_insights=speculative_insights or [],
    )


def insufficient_history_message(available: int, required: int) -> str:
    noun = "session" if required == 1 else "sessions"
    return (
        f"Trend analysis requires at least {required} prior {noun} recorded "
        f"before this one; {available} available."
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------

class TrendStage:
    """Gates on history and runs the single trend call."""

    def __init__(
        self,
        backend,
        history: SessionHistory,
        min_prior_sessions: Optional[int] = None,
        max_history: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self.history = history
        self.min_prior_sessions = (
            min_prior_sessions if min_prior_sessions is not None
            else settings.TREND_MIN_PRIOR_SESSIONS
        )
        self.max_history = max_history if max_history is not None else settings.TREND_MAX_HISTORY

    def prior_sessions(self, metrics: SessionMetrics, patient_id: str) -> list[SessionMetrics]:
        """Most recent eligible prior sessions, oldest first."""
        prior = self.history.sessions_before(
            patient_id, metrics.recorded_at, exclude_session_id=metrics.session_id
        )
        return prior[-self.max_history:] if self.max_history > 0 else prior

    async def run(
        self,
        metrics: SessionMetrics,
        patient_id: str,
        speculative_insights: Optional[list[SpeculativeInsight]] = None,
    ) -> tuple[TrendResult, Optional[TokenUsage]]:
        """Return the trend result and the usage of the call, if one was made.

        Raises:
            TrendStageError: if the call fails or returns an unusable body.
        """
        prior = self.prior_sessions(metrics, patient_id)
        now = datetime.now(timezone.utc)

        if len(prior) < self.min_prior_sessions:
            logger.info(
                "Trend stage skipped for %s: %d/%d prior sessions",
                metrics.session_id, len(prior), self.min_prior_sessions,
            )
            return (
                InsufficientHistory(
                    session_id=metrics.session_id,
                    patient_id=patient_id,
                    sessions_available=len(prior),
                    sessions_required=self.min_prior_sessions,
                    message=insufficient_history_message(len(prior), self.min_prior_sessions),
                    analyzed_at=now,
                ),
                None,
            )

        context = build_trend_context(metrics, prior, patient_id, speculative_insights)
        try:
            response = await self.backend.generate(
                system_prompt=TREND_SYSTEM_PROMPT,
                user_prompt=format_trend_prompt(
                    context.model_dump(mode="json"),
                    context.sessions_analyzed,
                    context.date_range_days,
                ),
                temperature=settings.TREND_TEMPERATURE,
                max_output_tokens=settings.TREND_MAX_OUTPUT_TOKENS,
                response_schema=TREND_RESPONSE_SCHEMA,
            )
            draft = parse_model(response.text, TrendDraft)
        except Exception as exc:
            raise TrendStageError(f"Trend analysis failed: {exc}") from exc

        analysis = TrendAnalysis(
            **draft.model_dump(),
            session_id=metrics.session_id,
            patient_id=patient_id,
            sessions_analyzed=context.sessions_analyzed,
            date_range_days=context.date_range_days,
            analyzed_at=now,
        )
        logger.info(
            "Trend analysis complete for %s: %d sessions, %d insights, confidence=%s",
            metrics.session_id, analysis.sessions_analyzed,
            len(analysis.trend_insights), analysis.analysis_confidence,
        )
        return analysis, response.token_usage
