"""
Source Resolver

Turns grounding metadata from the evidence-gathering call into tiered
QualityLinks:
  - resolves search-gateway redirect URLs to their real destination
  - flags "featured" sources that the response cites disproportionately
  - merges grounded links with links the formatting call proposed

Redirect resolution is best effort: every failure falls back to the
original URL.
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from session_report.config import settings
from session_report.core.evidence_tiers import TierTable, extract_domain
from session_report.exceptions import TransientNetworkError
from session_report.models.schemas import (
    GroundingMetadata,
    GroundingSupport,
    QualityLink,
)

logger = logging.getLogger(__name__)

# Hostname fragments of indirection gateways used by search grounding
GATEWAY_HOST_PATTERNS: tuple[str, ...] = (
    "vertexaisearch.cloud.google.com",
    "vertexai",
)

_HEADERS = {"User-Agent": "SessionReport-Evidence/1.0"}

MIN_FEATURED_CITATIONS = 2


def is_redirect_gateway(url: str) -> bool:
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return False
    return any(pattern in host for pattern in GATEWAY_HOST_PATTERNS)


def count_citations(supports: Iterable[GroundingSupport]) -> dict[int, int]:
    """Count, per source index, how many support spans reference it."""
    counts: dict[int, int] = {}
    for support in supports:
        for index in set(support.chunk_indices):
            counts[index] = counts.get(index, 0) + 1
    return counts


def featured_threshold(counts: Iterable[int]) -> int:
    """At least 2 citations, or half of the most-cited source."""
    return max(MIN_FEATURED_CITATIONS, math.floor(0.5 * max(counts, default=0)))


def sort_links(links: Iterable[QualityLink]) -> list[QualityLink]:
    """Featured first, then by tier S..D.  Stable for equal keys."""
    return sorted(links, key=lambda link: (not link.featured, link.tier.rank))


def merge_links(
    proposed: Iterable[QualityLink],
    grounded: Iterable[QualityLink],
) -> list[QualityLink]:
    """Deduplicate by URL and sort.

    Grounded links come first so they win over a proposed link with the
    same URL.  Proposed links are never featured.
    """
    seen: set[str] = set()
    merged: list[QualityLink] = []
    for link in grounded:
        if link.url not in seen:
            seen.add(link.url)
            merged.append(link)
    for link in proposed:
        if link.url not in seen:
            seen.add(link.url)
            merged.append(link.model_copy(update={"featured": False}))
    return sort_links(merged)


class SourceResolver:
    """Resolves and tiers the sources returned by a grounded call."""

    def __init__(
        self,
        tier_table: TierTable,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.tier_table = tier_table
        self._http_client = http_client
        self._timeout = timeout if timeout is not None else settings.REDIRECT_TIMEOUT_SECONDS

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def resolve(self, url: str, client: Optional[httpx.AsyncClient] = None) -> str:
        """Return the destination of a gateway URL, or ``url`` unchanged."""
        if not is_redirect_gateway(url):
            return url
        try:
            if client is not None:
                return await asyncio.wait_for(self._follow(client, url), self._timeout)
            async with self._client() as own_client:
                return await asyncio.wait_for(self._follow(own_client, url), self._timeout)
        except asyncio.TimeoutError:
            logger.debug("Redirect resolution timed out for %s", url)
        except TransientNetworkError as exc:
            logger.debug("Redirect resolution failed for %s: %s", url, exc)
        return url

    async def _follow(self, client: httpx.AsyncClient, url: str) -> str:
        # HEAD first; some gateways only redirect GET
        for method in ("HEAD", "GET"):
            try:
                response = await client.request(
                    method, url, headers=_HEADERS, follow_redirects=False
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise TransientNetworkError(f"{method} {url}: {exc}") from exc

            location = response.headers.get("location")
            if 300 <= response.status_code < 400 and location:
                try:
                    resolved = urljoin(url, location)
                except ValueError as exc:
                    raise TransientNetworkError(
                        f"{method} {url}: unusable Location {location!r}: {exc}"
                    ) from exc
                logger.info(
                    "Resolved redirect (%s): %s -> %s",
                    method, extract_domain(url), extract_domain(resolved),
                )
                return resolved
        return url

    async def links_from_grounding(
        self, metadata: Optional[GroundingMetadata]
    ) -> list[QualityLink]:
        """Build sorted QualityLinks from grounding chunks and supports."""
        if metadata is None or not metadata.grounding_chunks:
            return []

        counts = count_citations(metadata.grounding_supports)
        threshold = featured_threshold(counts.values())

        sources = [
            (index, chunk)
            for index, chunk in enumerate(metadata.grounding_chunks)
            if chunk.url
        ]
        async with self._client() as client:
            resolved = await asyncio.gather(
                *(self.resolve(chunk.url, client) for _, chunk in sources)
            )

        links: list[QualityLink] = []
        for (index, chunk), url in zip(sources, resolved):
            cited = counts.get(index, 0)
            featured = cited >= threshold
            links.append(
                QualityLink(
                    url=url,
                    title=chunk.title or "Unknown",
                    tier=self.tier_table.tier_for_url(url),
                    domain=extract_domain(url),
                    relevance=(
                        f"Primary source (cited {cited}x)"
                        if featured
                        else "Search grounding result"
                    ),
                    featured=featured,
                )
            )
        return sort_links(links)
