"""
Admin Router

Endpoints for inspecting the research cache and the evidence tier table:
  GET  /admin/cache/stats - Entry count and tier distribution
  POST /admin/cache/clear - Delete every cached entry
  GET  /admin/tiers       - Active domain tier table
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from session_report.core.evidence_tiers import TierTable, get_tier_table
from session_report.core.research_cache import ChromaResearchCache, get_research_cache
from session_report.models.schemas import CacheStatsResponse

router = APIRouter()


# ── GET /admin/cache/stats ────────────────────────────────────────────────────

@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(
    cache: ChromaResearchCache = Depends(get_research_cache),
) -> CacheStatsResponse:
    """Return the number of cached entries and their tier distribution."""
    return CacheStatsResponse(
        collection=cache.collection_name,
        entries=cache.count(),
        tier_distribution=cache.tier_distribution(),
    )


# ── POST /admin/cache/clear ───────────────────────────────────────────────────

@router.post("/cache/clear")
async def clear_cache(
    cache: ChromaResearchCache = Depends(get_research_cache),
) -> dict[str, Any]:
    removed = cache.clear()
    return {"status": "success", "entries_removed": removed}


# ── GET /admin/tiers ──────────────────────────────────────────────────────────

@router.get("/tiers")
async def tiers(table: TierTable = Depends(get_tier_table)) -> dict[str, Any]:
    """Return the active tier table version and its domain counts per tier."""
    counts: dict[str, int] = {}
    for tier in table.tiers.values():
        counts[tier.value] = counts.get(tier.value, 0) + 1
    return {
        "version": table.version,
        "domains": len(table.tiers),
        "domains_per_tier": counts,
        "tiers": {domain: tier.value for domain, tier in table.tiers.items()},
    }
