"""
Enrichment Fan-out

One independent task per section that needs research:
  cache lookup -> grounded evidence search -> marker cleanup ->
  structured formatting call -> link resolution/merge -> cache write-back

Every failure inside a task is converted into a degraded EnrichedSection,
so one failing section never affects its siblings.  Tasks run
concurrently and each returns ``(input_index, outcome)`` so callers can
restore the original order after the join.
"""

import asyncio
import logging
import re
from typing import Literal, Optional, Union

from pydantic import BaseModel

from session_report.config import settings
from session_report.core.research_cache import ResearchCache
from session_report.core.response_parsing import parse_model
from session_report.core.source_resolver import SourceResolver, merge_links
from session_report.core.evidence_tiers import extract_domain
from session_report.core.usage import aggregate_token_usage
from session_report.exceptions import (
    EnrichmentError,
    ResponseValidationError,
)
from session_report.models.schemas import (
    HIGH_QUALITY_TIERS,
    CacheEntry,
    CacheResult,
    EnrichedSection,
    EnrichmentDraft,
    EvidenceStrength,
    EvidenceTier,
    QualityLink,
    Section,
    TokenUsage,
    UserExplanation,
)
from session_report.prompts.enrichment import (
    ENRICHMENT_RESPONSE_SCHEMA,
    ENRICHMENT_SYSTEM_PROMPT,
    EVIDENCE_SEARCH_SYSTEM_PROMPT,
    format_enrichment_prompt,
    format_evidence_search_prompt,
)

logger = logging.getLogger(__name__)

CACHE_QUERY_COUNT = 3
CACHE_RESULTS_PER_QUERY = 3
CACHE_MIN_TIER = EvidenceTier.C

# Relevance assigned to newly cached evidence by tier
CACHE_RELEVANCE_BY_TIER = {
    EvidenceTier.S: 95.0,
    EvidenceTier.A: 85.0,
    EvidenceTier.B: 75.0,
}

FALLBACK_RECOMMENDATION = "Consult a healthcare professional for personalized guidance."


# ---------------------------------------------------------------------------
# Tagged task outcomes
# ---------------------------------------------------------------------------

class Enriched(BaseModel):
    kind: Literal["enriched"] = "enriched"
    section: EnrichedSection
    token_usage: TokenUsage
    cache_entries: list[CacheEntry] = []


class Degraded(BaseModel):
    kind: Literal["degraded"] = "degraded"
    section: EnrichedSection
    token_usage: TokenUsage
    error: str


EnrichmentOutcome = Union[Enriched, Degraded]


# ---------------------------------------------------------------------------
# Citation marker cleanup
# ---------------------------------------------------------------------------

_MARKER_SUBSTITUTIONS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\s*\[\d+(?:,\s*\d+)*\]"), ""),             # [1], [2,3], [1, 2]
    (re.compile(r"\s*\[websearch\]", re.IGNORECASE), ""),
    (re.compile(r"\s*\[\d+,\s*websearch\]", re.IGNORECASE), ""),
    (re.compile(r"\s+([.,;:])"), r"\1"),                      # space before punctuation
    (re.compile(r"\s{2,}"), " "),
]


def clean_citation_markers(text: str) -> str:
    """Remove inline citation markers left by grounded generation."""
    for pattern, replacement in _MARKER_SUBSTITUTIONS:
        text = pattern.sub(replacement, text)
    return text.strip()


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

def _first_recommendation(section: Section, default: str) -> str:
    return section.recommendations[0] if section.recommendations else default


def pass_through_section(section: Section) -> EnrichedSection:
    """Record for a section that was never sent for research."""
    return EnrichedSection(
        **section.model_dump(),
        enriched_narrative=section.clinical_narrative,
        user_explanation=UserExplanation(
            summary=section.clinical_narrative[:200],
            what_it_means="This finding is based on the session metrics.",
            why_it_matters="This finding is clinically relevant based on the metrics.",
        ),
        citations=[],
        links=[],
        evidence_strength=EvidenceStrength(level="none"),
        recommendation=_first_recommendation(section, ""),
    )


def degraded_section(section: Section, error: str) -> EnrichedSection:
    """Fallback record for a section whose enrichment failed."""
    return EnrichedSection(
        **section.model_dump(),
        enriched_narrative=section.clinical_narrative,
        user_explanation=UserExplanation(
            summary=section.clinical_narrative[:200],
            what_it_means="Unable to retrieve additional context.",
            why_it_matters="This finding is still clinically relevant based on the metrics.",
        ),
        citations=[],
        links=[],
        evidence_strength=EvidenceStrength(level="none", notes="Enrichment failed"),
        recommendation=_first_recommendation(section, FALLBACK_RECOMMENDATION),
        enrichment_failed=True,
        enrichment_error=error,
    )


def build_enriched_section(
    section: Section,
    draft: EnrichmentDraft,
    links: list[QualityLink],
) -> EnrichedSection:
    """Combine a section with its formatted evidence.

    Citation markers are stripped from every user-facing string.
    """
    explanation = draft.user_explanation
    return EnrichedSection(
        **section.model_dump(),
        enriched_narrative=clean_citation_markers(draft.enriched_narrative),
        user_explanation=UserExplanation(
            summary=clean_citation_markers(explanation.summary),
            what_it_means=clean_citation_markers(explanation.what_it_means),
            why_it_matters=clean_citation_markers(explanation.why_it_matters),
            analogy=clean_citation_markers(explanation.analogy) if explanation.analogy else None,
        ),
        citations=draft.citations,
        links=links,
        evidence_strength=draft.evidence_strength,
        was_contradicted=draft.was_contradicted,
        recommendation=clean_citation_markers(
            draft.recommendation or _first_recommendation(section, "")
        ),
    )


def extract_cache_entries(section: Section, enriched: EnrichedSection) -> list[CacheEntry]:
    """Cache candidates from the S, A and B tier citations of a section."""
    entries: list[CacheEntry] = []
    for citation in enriched.citations:
        if citation.tier not in HIGH_QUALITY_TIERS:
            continue
        # Match a link whose title contains the start of the source name
        source_prefix = citation.source.lower()[:20]
        link = next(
            (l for l in enriched.links if source_prefix in l.title.lower()),
            None,
        )
        entries.append(
            CacheEntry(
                search_terms=section.search_queries[:CACHE_QUERY_COUNT],
                tier=citation.tier,
                citation=f"{citation.source}: {citation.text}",
                url=link.url if link else None,
                findings=[citation.text],
                relevance_score=CACHE_RELEVANCE_BY_TIER[citation.tier],
            )
        )
    return entries


# ---------------------------------------------------------------------------
# Per-section enrichment
# ---------------------------------------------------------------------------

class SectionEnricher:
    """Runs the enrichment steps for one section at a time."""

    def __init__(self, backend, cache: ResearchCache, resolver: SourceResolver) -> None:
        self.backend = backend
        self.cache = cache
        self.resolver = resolver

    async def search_cache(self, section: Section) -> list[CacheResult]:
        """Look up the first search queries, deduplicated by citation text."""
        results: list[CacheResult] = []
        seen: set[str] = set()
        for query in section.search_queries[:CACHE_QUERY_COUNT]:
            try:
                hits = await self.cache.lookup(
                    query, limit=CACHE_RESULTS_PER_QUERY, min_tier=CACHE_MIN_TIER
                )
            except Exception as exc:
                logger.warning("Cache lookup failed for %r: %s", query, exc)
                continue
            for hit in hits:
                if hit.citation not in seen:
                    seen.add(hit.citation)
                    results.append(hit)
        return results

    async def write_cache(self, entries: list[CacheEntry]) -> int:
        """Write entries one by one; failures are logged and dropped."""
        written = 0
        for entry in entries:
            try:
                await self.cache.write(entry)
                written += 1
            except Exception as exc:
                logger.warning("Failed to save cache entry %r: %s", entry.citation[:60], exc)
        return written

    async def enrich(self, section: Section) -> EnrichmentOutcome:
        usages: list[TokenUsage] = []
        try:
            cache_results = await self.search_cache(section)

            grounded = await self.backend.generate_grounded(
                system_prompt=EVIDENCE_SEARCH_SYSTEM_PROMPT,
                user_prompt=format_evidence_search_prompt(section),
                temperature=settings.ENRICHMENT_SEARCH_TEMPERATURE,
                max_output_tokens=settings.ENRICHMENT_SEARCH_MAX_OUTPUT_TOKENS,
            )
            usages.append(grounded.token_usage)

            grounded_links = await self.resolver.links_from_grounding(
                grounded.grounding_metadata
            )
            search_text = clean_citation_markers(grounded.text)

            formatted = await self.backend.generate(
                system_prompt=ENRICHMENT_SYSTEM_PROMPT,
                user_prompt=format_enrichment_prompt(
                    section, cache_results, search_text, grounded_links
                ),
                temperature=settings.ENRICHMENT_FORMAT_TEMPERATURE,
                max_output_tokens=settings.ENRICHMENT_FORMAT_MAX_OUTPUT_TOKENS,
                response_schema=ENRICHMENT_RESPONSE_SCHEMA,
            )
            usages.append(formatted.token_usage)

            try:
                draft = parse_model(formatted.text, EnrichmentDraft)
            except ResponseValidationError as exc:
                raise EnrichmentError(str(exc)) from exc

            proposed = [
                link if link.domain else link.model_copy(update={"domain": extract_domain(link.url)})
                for link in draft.links
            ]
            enriched = build_enriched_section(
                section, draft, merge_links(proposed, grounded_links)
            )

            entries = extract_cache_entries(section, enriched)
            written = await self.write_cache(entries)

            logger.info(
                "Section %s enriched: %d citations, %d links, %d/%d cache entries",
                section.id, len(enriched.citations), len(enriched.links),
                written, len(entries),
            )
            return Enriched(
                section=enriched,
                token_usage=aggregate_token_usage(usages),
                cache_entries=entries,
            )

        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"[:300]
            logger.warning("Enrichment failed for section %s: %s", section.id, error)
            return Degraded(
                section=degraded_section(section, error),
                token_usage=aggregate_token_usage(usages),
                error=error,
            )


async def _indexed(index: int, enricher: SectionEnricher, section: Section) -> tuple[int, EnrichmentOutcome]:
    return index, await enricher.enrich(section)


async def enrich_sections(
    enricher: SectionEnricher,
    sections: list[Section],
    indices: Optional[list[int]] = None,
) -> list[tuple[int, EnrichmentOutcome]]:
    """Enrich all sections concurrently and wait for every task.

    Args:
        enricher: The per-section enricher.
        sections: Sections to enrich.
        indices: Position of each section in the original list; defaults
            to ``0..len(sections)-1``.

    Returns:
        ``(index, outcome)`` pairs, one per input section.
    """
    if indices is None:
        indices = list(range(len(sections)))
    if not sections:
        return []
    return list(
        await asyncio.gather(
            *(_indexed(i, enricher, s) for i, s in zip(indices, sections))
        )
    )
