"""
Pydantic Schemas

Defines the data model shared by every pipeline stage:
- SessionMetrics for the input snapshot
- Section / EnrichedSection, Citation, QualityLink for findings and evidence
- CacheEntry / CacheResult for the research cache
- LLMResponse / GroundedResponse for the generative backend boundary
- Trend results and the final PipelineOutput
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Evidence tiers
# ---------------------------------------------------------------------------

class EvidenceTier(str, Enum):
    """Credibility of a source, S strongest to D weakest/unknown."""

    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"

    @property
    def rank(self) -> int:
        """Position in the total order; 0 is strongest."""
        return list(EvidenceTier).index(self)


HIGH_QUALITY_TIERS: frozenset[EvidenceTier] = frozenset(
    {EvidenceTier.S, EvidenceTier.A, EvidenceTier.B}
)

# Ordered weakest to strongest
EVIDENCE_LEVELS: tuple[str, ...] = ("none", "minimal", "moderate", "high", "very-high")

EvidenceLevel = Literal["none", "minimal", "moderate", "high", "very-high"]
Severity = Literal["critical", "severe", "moderate", "mild"]


# ---------------------------------------------------------------------------
# Token usage
# ---------------------------------------------------------------------------

class TokenUsage(BaseModel):
    """Tokens and estimated cost of one or more backend calls."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    estimated_cost: float = Field(default=0.0, ge=0.0)


# ---------------------------------------------------------------------------
# Session metrics (pipeline input)
# ---------------------------------------------------------------------------

class LegMetrics(BaseModel):
    """Per-leg range, velocity and smoothness figures."""

    overall_max_rom: float = 0.0
    average_rom: float = 0.0
    peak_flexion: float = 0.0
    peak_extension: float = 0.0
    peak_angular_velocity: float = 0.0
    explosiveness_concentric: float = 0.0
    explosiveness_loading: float = 0.0
    rms_jerk: float = 0.0
    rom_cov: float = 0.0


class BilateralMetrics(BaseModel):
    """Symmetry and coordination between the two legs."""

    rom_asymmetry: float = 0.0
    velocity_asymmetry: float = 0.0
    cross_correlation: float = 0.0
    real_asymmetry_avg: float = 0.0
    net_global_asymmetry: float = 0.0
    phase_shift: float = 0.0
    temporal_lag: float = 0.0
    max_flexion_timing_diff: float = 0.0


class SmoothnessMetrics(BaseModel):
    sparc: float = 0.0
    ldlj: float = 0.0
    n_velocity_peaks: int = 0


class SessionMetrics(BaseModel):
    """Quantitative snapshot of one recorded movement session.

    ``recorded_at`` is when the session was recorded, not when it is
    analysed.  Longitudinal analysis only looks at sessions recorded
    strictly before it.
    """

    session_id: str
    left_leg: LegMetrics = LegMetrics()
    right_leg: LegMetrics = LegMetrics()
    bilateral: BilateralMetrics = BilateralMetrics()
    opi_score: Optional[float] = None
    opi_grade: Optional[str] = None
    movement_type: Literal["bilateral", "unilateral"] = "bilateral"
    recorded_at: datetime
    smoothness: Optional[SmoothnessMetrics] = None

    # Session context
    title: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = []
    activity_profile: Optional[str] = None
    sets: Optional[int] = None
    reps: Optional[int] = None


# ---------------------------------------------------------------------------
# Synthesis output
# ---------------------------------------------------------------------------

class RadarScores(BaseModel):
    """Named sub-scores, each on a 1-10 scale."""

    flexibility: float = Field(ge=1, le=10)
    consistency: float = Field(ge=1, le=10)
    symmetry: float = Field(ge=1, le=10)
    smoothness: float = Field(ge=1, le=10)
    control: float = Field(ge=1, le=10)


class KeyFinding(BaseModel):
    text: str
    severity: str


class SpeculativeInsight(BaseModel):
    """An exploratory observation the trend stage may confirm or refine."""

    label: str
    description: str


class Section(BaseModel):
    """One synthesized clinical finding.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    domain: str
    severity: Severity
    priority: int = Field(ge=1, le=10)
    clinical_narrative: str
    search_queries: list[str] = []
    recommendations: list[str] = []
    needs_research: bool = False


class SynthesisOutput(BaseModel):
    """Structured body returned by the synthesis call."""

    overall_grade: Literal["A", "B", "C", "D", "F"]
    radar_scores: RadarScores
    key_findings: list[KeyFinding] = []
    clinical_implications: str
    sections: list[Section]
    summary: str
    strengths: list[str] = []
    weaknesses: list[str] = []
    recommendations: list[str] = []
    speculative_insights: list[SpeculativeInsight] = []
    analyzed_at: Optional[datetime] = None

    @field_validator("sections")
    @classmethod
    def _unique_section_ids(cls, sections: list[Section]) -> list[Section]:
        seen: set[str] = set()
        for section in sections:
            if section.id in seen:
                raise ValueError(f"duplicate section id {section.id!r}")
            seen.add(section.id)
        return sections


# ---------------------------------------------------------------------------
# Evidence and enrichment
# ---------------------------------------------------------------------------

class Citation(BaseModel):
    """A supporting statement attributed to a source."""

    text: str
    source: str
    tier: EvidenceTier


class QualityLink(BaseModel):
    """A resolved, tiered link to an external source."""

    url: str
    title: str
    tier: EvidenceTier
    domain: str = ""
    relevance: str = ""
    featured: bool = False


class UserExplanation(BaseModel):
    summary: str
    what_it_means: str
    why_it_matters: str
    analogy: Optional[str] = None


class EvidenceStrength(BaseModel):
    level: EvidenceLevel = "none"
    notes: str = ""


class EnrichmentDraft(BaseModel):
    """Structured body returned by the enrichment formatting call."""

    enriched_narrative: str
    user_explanation: UserExplanation
    citations: list[Citation] = []
    links: list[QualityLink] = []
    evidence_strength: EvidenceStrength = EvidenceStrength(level="minimal")
    was_contradicted: bool = False
    recommendation: str = ""


class EnrichedSection(Section):
    """A Section plus the evidence attached to it."""

    enriched_narrative: str
    user_explanation: UserExplanation
    citations: list[Citation] = []
    links: list[QualityLink] = []
    evidence_strength: EvidenceStrength = EvidenceStrength()
    was_contradicted: bool = False
    recommendation: str = ""
    enrichment_failed: bool = False
    enrichment_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Research cache
# ---------------------------------------------------------------------------

class CacheResult(BaseModel):
    """A previously gathered piece of evidence returned by a cache lookup."""

    citation: str
    url: Optional[str] = None
    findings: list[str] = []
    tier: EvidenceTier
    relevance_score: float = 0.0


class CacheEntry(BaseModel):
    """Evidence worth keeping for future runs (tier S, A or B only)."""

    search_terms: list[str]
    tier: EvidenceTier
    citation: str
    url: Optional[str] = None
    findings: list[str] = []
    relevance_score: float = 0.0


# ---------------------------------------------------------------------------
# Generative backend boundary
# ---------------------------------------------------------------------------

class LLMResponse(BaseModel):
    text: str
    token_usage: TokenUsage = TokenUsage()
    finish_reason: str = ""


class GroundingChunk(BaseModel):
    url: str
    title: str = ""


class GroundingSupport(BaseModel):
    """A span of the response text backed by one or more grounding chunks."""

    text_span: str = ""
    chunk_indices: list[int] = []
    confidence_scores: list[float] = []


class GroundingMetadata(BaseModel):
    web_search_queries: list[str] = []
    grounding_chunks: list[GroundingChunk] = []
    grounding_supports: list[GroundingSupport] = []


class GroundedResponse(LLMResponse):
    grounding_metadata: Optional[GroundingMetadata] = None


# ---------------------------------------------------------------------------
# Trend stage
# ---------------------------------------------------------------------------

TrendDirection = Literal["improving", "stable", "declining"]


class TrendInsight(BaseModel):
    metric_name: str
    display_name: str
    direction: TrendDirection
    magnitude: Literal["significant", "moderate", "slight"]
    narrative: str
    current_value: float
    baseline_value: float
    change_percent: float
    clinical_relevance: str = ""


class RecurringPattern(BaseModel):
    pattern_type: str
    title: str
    description: str
    affected_metrics: list[str] = []
    session_ids: list[str] = []
    confidence: float = Field(default=0.5, ge=0, le=1)
    recommendation: str = ""


class BaselineDeviation(BaseModel):
    metric_name: str
    display_name: str
    current_value: float
    baseline_median: float
    deviation_percent: float
    direction: Literal["above", "below"]


class BaselineComparison(BaseModel):
    overall_assessment: str
    compared_to_baseline: Literal["above", "at", "below"]
    significant_deviations: list[BaselineDeviation] = []


class NotableSession(BaseModel):
    session_id: str
    relation: Literal["most_similar", "best_performance", "worst_performance"]
    relevance: str = ""


class RefinedInsight(BaseModel):
    """A speculative insight re-evaluated against the patient's history."""

    title: str
    summary: str
    details: str = ""
    icon_hint: str = "trend"


class TrendDraft(BaseModel):
    """Structured body returned by the trend call."""

    trend_insights: list[TrendInsight] = []
    recurring_patterns: list[RecurringPattern] = []
    baseline_comparison: BaselineComparison
    notable_sessions: list[NotableSession] = []
    refined_insights: list[RefinedInsight] = []
    summary: str
    analysis_confidence: Literal["high", "moderate", "low"]


class TrendAnalysis(TrendDraft):
    session_id: str
    patient_id: str
    sessions_analyzed: int
    date_range_days: int
    analyzed_at: datetime


class InsufficientHistory(BaseModel):
    """Placeholder returned when there is not enough prior history."""

    session_id: str
    patient_id: str
    insufficient_history: Literal[True] = True
    sessions_available: int
    sessions_required: int
    message: str
    analyzed_at: datetime


TrendResult = Union[TrendAnalysis, InsufficientHistory]


# ---------------------------------------------------------------------------
# Final report
# ---------------------------------------------------------------------------

class UsageBreakdown(BaseModel):
    """Token usage per stage plus the run total."""

    synthesis: TokenUsage
    enrichment: list[TokenUsage] = []
    trend: Optional[TokenUsage] = None
    total: TokenUsage


class PipelineOutput(BaseModel):
    """Terminal artifact of one pipeline run."""

    session_id: str
    patient_id: Optional[str] = None

    overall_grade: str
    radar_scores: RadarScores
    key_findings: list[KeyFinding] = []
    clinical_implications: str
    summary: str
    strengths: list[str] = []
    weaknesses: list[str] = []
    recommendations: list[str] = []
    speculative_insights: list[SpeculativeInsight] = []
    analyzed_at: Optional[datetime] = None

    sections: list[Section]
    enriched_sections: list[EnrichedSection]
    failed_enrichments: list[str] = []
    trend_result: Optional[TrendResult] = None

    token_usage: UsageBreakdown
    started_at: datetime
    completed_at: datetime
    total_duration_ms: int


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------

class StatusResponse(BaseModel):
    session_id: str
    status: str


class CacheStatsResponse(BaseModel):
    collection: str
    entries: int
    tier_distribution: dict[str, int]
