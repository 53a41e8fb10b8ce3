"""
Evidence Tiering

Maps a source URL's domain to a credibility tier (S strongest ... D
weakest).  The mapping is versioned data loaded from JSON, so it can be
swapped or extended without touching the lookup logic.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Optional, TypeVar
from urllib.parse import urlsplit

from pydantic import BaseModel

from session_report.config import settings
from session_report.models.schemas import HIGH_QUALITY_TIERS, EvidenceTier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TierTable(BaseModel):
    """Versioned registered-domain -> tier mapping."""

    version: str
    tiers: dict[str, EvidenceTier]

    @classmethod
    def from_file(cls, path: str | Path) -> "TierTable":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        table = cls.model_validate(data)
        logger.info(
            "Loaded domain tier table %s (%d domains)", table.version, len(table.tiers)
        )
        return table

    def tier_for_domain(self, hostname: str) -> EvidenceTier:
        """Exact match first, then the longest registered suffix, else D."""
        host = _normalize_host(hostname)
        if not host:
            return EvidenceTier.D
        if host in self.tiers:
            return self.tiers[host]

        best: Optional[str] = None
        for domain in self.tiers:
            if host.endswith("." + domain) and (best is None or len(domain) > len(best)):
                best = domain
        return self.tiers[best] if best else EvidenceTier.D

    def tier_for_url(self, url: str) -> EvidenceTier:
        return self.tier_for_domain(extract_domain(url))


def _normalize_host(hostname: str) -> str:
    host = (hostname or "").strip().lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def extract_domain(url: str) -> str:
    """Return the URL's hostname without a leading ``www.``.

    Returns "unknown" when the URL has no parseable host.
    """
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return "unknown"
    return _normalize_host(host) if host else "unknown"


def filter_high_quality(results: Iterable[T], tier_of=lambda r: r.tier) -> list[T]:
    """Keep only tier S, A or B results."""
    return [r for r in results if tier_of(r) in HIGH_QUALITY_TIERS]


def diverse_by_tier(results: Iterable[T], max_per_tier: int = 2, tier_of=lambda r: r.tier) -> list[T]:
    """Take at most ``max_per_tier`` results per tier, strongest tiers first."""
    by_tier: dict[EvidenceTier, list[T]] = {tier: [] for tier in EvidenceTier}
    for result in results:
        bucket = by_tier[tier_of(result)]
        if len(bucket) < max_per_tier:
            bucket.append(result)
    return [r for tier in EvidenceTier for r in by_tier[tier]]


_default_table: Optional[TierTable] = None


def get_tier_table() -> TierTable:
    """Return the process-wide table loaded from ``DOMAIN_TIERS_PATH``."""
    global _default_table
    if _default_table is None:
        _default_table = TierTable.from_file(settings.DOMAIN_TIERS_PATH)
    return _default_table
