"""
Enrichment Prompts

Two prompts per section:
  1. a grounded evidence search (free text, Google Search grounding)
  2. a schema-constrained formatting call that turns the evidence into an
     enriched narrative, citations, links and an evidence-strength rating
"""

from session_report.models.schemas import CacheResult, QualityLink, Section

EVIDENCE_SEARCH_SYSTEM_PROMPT = (
    "You are a clinical research assistant that finds evidence-based information."
)

EVIDENCE_SEARCH_TEMPLATE = """Search for peer-reviewed evidence about this clinical finding:

**Finding:** {title}
**Clinical Context:** {narrative}

Search for:
{queries}

Provide a brief research summary with key findings and citations. Focus on:
- Peer-reviewed studies (PubMed, journals)
- Clinical guidelines
- Systematic reviews or meta-analyses

Be factual and cite specific sources."""


ENRICHMENT_SYSTEM_PROMPT = """You are a medical research specialist with expertise \
in evidence-based practice and clinical biomechanics.

Your role is to enrich clinical findings with research evidence and make them \
accessible.

=== PATIENT FRAMING ===
ALWAYS refer to the subject as "the patient" - NEVER use "you" or "your".

=== EVIDENCE TIERS ===
- S: systematic reviews, meta-analyses
- A: RCTs, high-quality primary research
- B: observational studies, clinical guidelines, expert consensus
- C: case studies, textbooks, professional resources
- D: general health information

=== WHEN EVIDENCE CONTRADICTS ===
Set was_contradicted to true, rewrite the enriched narrative to reflect the \
evidence-supported interpretation and adjust the recommendation.

=== EVIDENCE STRENGTH ===
- very-high: multiple S tier sources agree
- high: multiple A tier sources, or S tier with support
- moderate: B tier sources or mixed A/B agreement
- minimal: mostly C/D tier or sparse evidence
- none: no relevant evidence found

You must respond in valid JSON format only, no other text."""


ENRICHMENT_USER_TEMPLATE = """=== SECTION TO ENRICH ===
ID: {id}
Title: {title}
Domain: {domain}

Clinical Narrative:
{narrative}

Initial Recommendations:
{recommendations}

{cache_block}

=== WEB SEARCH RESULTS ===
{search_text}

=== SOURCE LINKS FOUND ===
{links_block}

=== YOUR TASK ===
Enrich this section using the evidence above:
1. enriched_narrative: rewrite the clinical narrative incorporating the evidence
2. citations: every source used, with its most relevant finding and tier
3. links: quality URLs from the evidence with tier and a relevance note
4. user_explanation: summary, what_it_means, why_it_matters and an optional analogy
5. evidence_strength: overall level and notes
6. recommendation: ONE unified, actionable recommendation

Do NOT include citation markers like [1] or [2,3] in any text field.
ALWAYS use "the patient" framing."""


def format_cache_results(results: list[CacheResult]) -> str:
    if not results:
        return "=== CACHED EVIDENCE ===\nNo relevant cached evidence found."

    lines = ["=== CACHED EVIDENCE (High Relevance) ==="]
    for i, r in enumerate(results, start=1):
        lines.append(f"[{i}] Tier {r.tier.value} | Relevance: {r.relevance_score:.0f}%")
        lines.append(f"Citation: {r.citation}")
        if r.url:
            lines.append(f"URL: {r.url}")
        if r.findings:
            lines.append("Findings:")
            lines.extend(f"  - {f}" for f in r.findings)
        lines.append("")
    return "\n".join(lines).rstrip()


def format_links(links: list[QualityLink]) -> str:
    if not links:
        return "No links found"
    return "\n".join(
        f"- [{l.tier.value}]{' (featured)' if l.featured else ''} {l.title}: {l.url}"
        for l in links
    )


def format_evidence_search_prompt(section: Section) -> str:
    return EVIDENCE_SEARCH_TEMPLATE.format(
        title=section.title,
        narrative=section.clinical_narrative,
        queries="\n".join(f"- {q}" for q in section.search_queries) or "- " + section.title,
    )


def format_enrichment_prompt(
    section: Section,
    cache_results: list[CacheResult],
    search_text: str,
    grounded_links: list[QualityLink],
) -> str:
    return ENRICHMENT_USER_TEMPLATE.format(
        id=section.id,
        title=section.title,
        domain=section.domain,
        narrative=section.clinical_narrative,
        recommendations="\n".join(
            f"{i}. {r}" for i, r in enumerate(section.recommendations, start=1)
        ) or "None",
        cache_block=format_cache_results(cache_results),
        search_text=search_text or "No web results available.",
        links_block=format_links(grounded_links),
    )


_TIERS = ["S", "A", "B", "C", "D"]

ENRICHMENT_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "enriched_narrative": {"type": "string"},
        "user_explanation": {
            "type": "object",
            "properties": {
                "summary": {"type": "string"},
                "what_it_means": {"type": "string"},
                "why_it_matters": {"type": "string"},
                "analogy": {"type": "string"},
            },
            "required": ["summary", "what_it_means", "why_it_matters"],
        },
        "citations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "source": {"type": "string"},
                    "tier": {"type": "string", "enum": _TIERS},
                },
                "required": ["text", "source", "tier"],
            },
        },
        "links": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "title": {"type": "string"},
                    "tier": {"type": "string", "enum": _TIERS},
                    "domain": {"type": "string"},
                    "relevance": {"type": "string"},
                },
                "required": ["url", "title", "tier", "domain", "relevance"],
            },
        },
        "evidence_strength": {
            "type": "object",
            "properties": {
                "level": {
                    "type": "string",
                    "enum": ["none", "minimal", "moderate", "high", "very-high"],
                },
                "notes": {"type": "string"},
            },
            "required": ["level"],
        },
        "was_contradicted": {"type": "boolean"},
        "recommendation": {"type": "string"},
    },
    "required": [
        "enriched_narrative", "user_explanation", "citations", "links",
        "evidence_strength", "was_contradicted", "recommendation",
    ],
}
