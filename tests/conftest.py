"""Shared fakes for the pipeline tests: backend, research cache, status sink."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
import pytest

from session_report.core.evidence_tiers import TierTable
from session_report.core.research_cache import ResearchCache
from session_report.core.source_resolver import SourceResolver
from session_report.models.pipeline_state import PipelineStatus
from session_report.models.schemas import (
    CacheEntry,
    CacheResult,
    EvidenceTier,
    GroundedResponse,
    GroundingChunk,
    GroundingMetadata,
    GroundingSupport,
    LLMResponse,
    SessionMetrics,
    TokenUsage,
)
from session_report.prompts.enrichment import (
    ENRICHMENT_SYSTEM_PROMPT,
    EVIDENCE_SEARCH_SYSTEM_PROMPT,
)
from session_report.prompts.synthesis import SYNTHESIS_SYSTEM_PROMPT
from session_report.prompts.trend import TREND_SYSTEM_PROMPT


SYNTHESIS_USAGE = TokenUsage(input_tokens=1000, output_tokens=500, total_tokens=1500, estimated_cost=0.0045)
SEARCH_USAGE = TokenUsage(input_tokens=200, output_tokens=100, total_tokens=300, estimated_cost=0.0009)
FORMAT_USAGE = TokenUsage(input_tokens=300, output_tokens=150, total_tokens=450, estimated_cost=0.00135)
TREND_USAGE = TokenUsage(input_tokens=400, output_tokens=200, total_tokens=600, estimated_cost=0.0018)


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def section_dict(section_id: str, needs_research: bool = True, **overrides) -> dict:
    data = {
        "id": section_id,
        "title": f"Finding {section_id}",
        "domain": "symmetry",
        "severity": "moderate",
        "priority": 5,
        "clinical_narrative": f"The patient shows finding {section_id}.",
        "search_queries": [f"{section_id} query one", f"{section_id} query two"],
        "recommendations": [f"Recommendation for {section_id}"],
        "needs_research": needs_research,
    }
    data.update(overrides)
    return data


def synthesis_payload(sections: list[dict]) -> dict:
    return {
        "overall_grade": "C",
        "radar_scores": {
            "flexibility": 6, "consistency": 5, "symmetry": 4,
            "smoothness": 7, "control": 6,
        },
        "key_findings": [{"text": "ROM asymmetry 17%", "severity": "severe"}],
        "clinical_implications": "The patient presents with a left-side deficit.",
        "sections": sections,
        "summary": "Moderate bilateral imbalance.",
        "strengths": ["Good smoothness"],
        "weaknesses": ["Left ROM deficit"],
        "recommendations": ["Mobility work for the left knee"],
        "speculative_insights": [
            {"label": "Compensation", "description": "Right leg may be compensating."}
        ],
    }


def enrichment_payload(section_id: str, **overrides) -> dict:
    data = {
        "enriched_narrative": f"Evidence supports finding {section_id} [1].",
        "user_explanation": {
            "summary": "The patient shows a difference between legs [2].",
            "what_it_means": "The left leg moves less.",
            "why_it_matters": "Balanced movement lowers injury risk.",
        },
        "citations": [
            {"text": "Asymmetry above 15% raises risk.", "source": "Systematic Review Journal", "tier": "S"},
            {"text": "Blog summary.", "source": "Health Blog", "tier": "D"},
        ],
        "links": [
            {
                "url": "https://www.bmj.com/article",
                "title": "BMJ article",
                "tier": "A",
                "domain": "bmj.com",
                "relevance": "Supporting trial",
            }
        ],
        "evidence_strength": {"level": "high", "notes": ""},
        "was_contradicted": False,
        "recommendation": "The patient should train the left knee [1, websearch].",
    }
    data.update(overrides)
    return data


def trend_payload() -> dict:
    return {
        "trend_insights": [
            {
                "metric_name": "rom_asymmetry",
                "display_name": "ROM Asymmetry",
                "direction": "improving",
                "magnitude": "moderate",
                "narrative": "Asymmetry is reducing compared to the previous session.",
                "current_value": 10.0,
                "baseline_value": 12.2,
                "change_percent": -18.0,
            }
        ],
        "recurring_patterns": [],
        "baseline_comparison": {
            "overall_assessment": "Slightly better than baseline.",
            "compared_to_baseline": "above",
        },
        "notable_sessions": [],
        "refined_insights": [],
        "summary": "Compared to the previous session the patient improved.",
        "analysis_confidence": "low",
    }


def make_metrics(session_id: str, recorded_at: datetime, rom_asymmetry: float = 12.0) -> SessionMetrics:
    return SessionMetrics(
        session_id=session_id,
        recorded_at=recorded_at,
        left_leg={"overall_max_rom": 100.0, "peak_flexion": 98.0, "peak_angular_velocity": 220.0},
        right_leg={"overall_max_rom": 118.0, "peak_flexion": 115.0, "peak_angular_velocity": 250.0},
        bilateral={
            "rom_asymmetry": rom_asymmetry,
            "velocity_asymmetry": 11.0,
            "net_global_asymmetry": 12.0,
            "cross_correlation": 0.9,
            "temporal_lag": 50.0,
        },
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeBackend:
    """Generative backend that routes calls by system prompt.

    ``enrichment`` maps section id -> payload dict or Exception for the
    formatting call; sections missing from the map get a default payload.
    ``grounded_errors`` maps section title -> Exception for the search call.
    """

    def __init__(
        self,
        synthesis: Optional[dict | str | Exception] = None,
        enrichment: Optional[dict] = None,
        grounded_errors: Optional[dict] = None,
        grounding: Optional[GroundingMetadata] = None,
        trend: Optional[dict | Exception] = None,
    ) -> None:
        self.synthesis = synthesis
        self.enrichment = enrichment or {}
        self.grounded_errors = grounded_errors or {}
        self.grounding = grounding
        self.trend = trend
        self.calls: list[str] = []

    async def generate(self, system_prompt, user_prompt, temperature=0.2,
                       max_output_tokens=8192, response_schema=None) -> LLMResponse:
        if system_prompt == SYNTHESIS_SYSTEM_PROMPT:
            self.calls.append("synthesis")
            return self._respond(self.synthesis, SYNTHESIS_USAGE)
        if system_prompt == ENRICHMENT_SYSTEM_PROMPT:
            section_id = _section_id(user_prompt)
            self.calls.append(f"format:{section_id}")
            payload = self.enrichment.get(section_id, enrichment_payload(section_id))
            return self._respond(payload, FORMAT_USAGE)
        if system_prompt == TREND_SYSTEM_PROMPT:
            self.calls.append("trend")
            return self._respond(self.trend if self.trend is not None else trend_payload(), TREND_USAGE)
        raise AssertionError(f"unexpected system prompt: {system_prompt[:40]!r}")

    async def generate_grounded(self, system_prompt, user_prompt, temperature=0.2,
                                max_output_tokens=4096) -> GroundedResponse:
        assert system_prompt == EVIDENCE_SEARCH_SYSTEM_PROMPT
        self.calls.append("grounded")
        for title, error in self.grounded_errors.items():
            if title in user_prompt:
                raise error
        return GroundedResponse(
            text="Studies show asymmetry matters [1]. Another finding [2,3] .",
            token_usage=SEARCH_USAGE,
            finish_reason="STOP",
            grounding_metadata=self.grounding,
        )

    @staticmethod
    def _respond(payload, usage: TokenUsage) -> LLMResponse:
        if isinstance(payload, Exception):
            raise payload
        text = payload if isinstance(payload, str) else json.dumps(payload)
        return LLMResponse(text=text, token_usage=usage, finish_reason="STOP")


def _section_id(user_prompt: str) -> str:
    for line in user_prompt.splitlines():
        if line.startswith("ID: "):
            return line[4:].strip()
    return ""


class FakeCache(ResearchCache):
    def __init__(
        self,
        results: Optional[dict[str, list[CacheResult]]] = None,
        lookup_error: Optional[Exception] = None,
        write_error: Optional[Exception] = None,
    ) -> None:
        self.results = results or {}
        self.lookup_error = lookup_error
        self.write_error = write_error
        self.lookups: list[str] = []
        self.written: list[CacheEntry] = []

    async def lookup(self, query, limit=3, min_tier=EvidenceTier.C):
        self.lookups.append(query)
        if self.lookup_error is not None:
            raise self.lookup_error
        return [r for r in self.results.get(query, []) if r.tier.rank <= min_tier.rank][:limit]

    async def write(self, entry):
        if self.write_error is not None:
            raise self.write_error
        self.written.append(entry)


class FakeCollection:
    """Minimal stand-in for a chromadb Collection.

    ``query`` returns every stored row passing the ``tier_rank`` filter, in
    insertion order, with a fixed distance per row.
    """

    def __init__(self, distance=0.2, fail_on=None):
        self.rows = {}
        self.distance = distance
        self.fail_on = fail_on
        self.last_query = None

    def _check(self, op):
        if self.fail_on == op:
            raise RuntimeError(f"{op} unavailable")

    def upsert(self, ids, documents, metadatas):
        self._check("upsert")
        for id_, doc, meta in zip(ids, documents, metadatas):
            self.rows[id_] = (doc, meta)

    def query(self, query_texts, n_results, where, include):
        self._check("query")
        self.last_query = {"query_texts": query_texts, "n_results": n_results, "where": where}
        max_rank = where["tier_rank"]["$lte"]
        matched = [
            (id_, meta) for id_, (_, meta) in self.rows.items()
            if meta["tier_rank"] <= max_rank
        ][:n_results]
        return {
            "ids": [[id_ for id_, _ in matched]],
            "metadatas": [[meta for _, meta in matched]],
            "distances": [[self.distance] * len(matched)],
        }

    def get(self, include=None):
        return {
            "ids": list(self.rows),
            "metadatas": [meta for _, meta in self.rows.values()],
        }

    def delete(self, ids):
        for id_ in ids:
            self.rows.pop(id_, None)

    def count(self):
        return len(self.rows)


class RecordingSink:
    def __init__(self) -> None:
        self.statuses: list[PipelineStatus] = []

    def __call__(self, status: PipelineStatus) -> None:
        self.statuses.append(status)


def _no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected HTTP request to {request.url}")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tier_table() -> TierTable:
    return TierTable(
        version="test",
        tiers={
            "cochranelibrary.com": EvidenceTier.S,
            "bmj.com": EvidenceTier.A,
            "ncbi.nlm.nih.gov": EvidenceTier.A,
            "mayoclinic.org": EvidenceTier.B,
            "healthline.com": EvidenceTier.C,
        },
    )


@pytest.fixture
def offline_resolver(tier_table) -> SourceResolver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(_no_network))
    return SourceResolver(tier_table, http_client=client, timeout=1.0)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def grounding() -> GroundingMetadata:
    return GroundingMetadata(
        web_search_queries=["knee asymmetry"],
        grounding_chunks=[
            GroundingChunk(url="https://www.cochranelibrary.com/review", title="Cochrane review"),
            GroundingChunk(url="https://www.healthline.com/knee", title="Healthline"),
        ],
        grounding_supports=[
            GroundingSupport(text_span="a", chunk_indices=[0]),
            GroundingSupport(text_span="b", chunk_indices=[0, 1]),
            GroundingSupport(text_span="c", chunk_indices=[0]),
        ],
    )


@pytest.fixture
def utc() -> Callable[..., datetime]:
    def _utc(*args) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)
    return _utc
