"""
Research Cache

Best-effort store of previously gathered evidence, keyed by the search
terms that produced it.  The ChromaDB implementation embeds the search
terms with the collection's default embedding function and keeps the
citation payload in metadata.

Metadata constraints:
  - ChromaDB rejects None values, so optional fields are dropped
  - list values are JSON-serialized (``findings_json``, ``search_terms_json``)
  - the tier is stored both as its letter and as a numeric ``tier_rank`` so
    lookups can filter on a minimum tier with ``$lte``
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Optional

import chromadb

from session_report.config import settings
from session_report.exceptions import CacheError
from session_report.models.schemas import CacheEntry, CacheResult, EvidenceTier

logger = logging.getLogger(__name__)


class ResearchCache(ABC):
    """Lookup/write interface consumed by the enrichment stage."""

    @abstractmethod
    async def lookup(
        self,
        query: str,
        limit: int = 3,
        min_tier: EvidenceTier = EvidenceTier.C,
    ) -> list[CacheResult]:
        """Return at most ``limit`` results at or above ``min_tier``."""

    @abstractmethod
    async def write(self, entry: CacheEntry) -> None:
        """Store one entry.  Duplicates are tolerated."""


class ChromaResearchCache(ResearchCache):
    """ResearchCache backed by a ChromaDB collection.

    Pass ``collection`` to use an existing collection object; otherwise a
    PersistentClient under ``CHROMA_PERSIST_DIR`` is created lazily.
    """

    def __init__(
        self,
        collection: Optional[Any] = None,
        persist_dir: Optional[str] = None,
        collection_name: Optional[str] = None,
    ) -> None:
        self._collection = collection
        self._client: Optional[Any] = None
        self._persist_dir = persist_dir or settings.CHROMA_PERSIST_DIR
        self.collection_name = collection_name or settings.RESEARCH_CACHE_COLLECTION

    def _get_collection(self):
        if self._collection is None:
            if self._client is None:
                self._client = chromadb.PersistentClient(path=self._persist_dir)
            self._collection = self._client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collection

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def lookup(
        self,
        query: str,
        limit: int = 3,
        min_tier: EvidenceTier = EvidenceTier.C,
    ) -> list[CacheResult]:
        try:
            return await asyncio.to_thread(self._query, query, limit, min_tier)
        except CacheError:
            raise
        except Exception as exc:
            raise CacheError(f"Cache lookup failed for {query!r}: {exc}") from exc

    def _query(self, query: str, limit: int, min_tier: EvidenceTier) -> list[CacheResult]:
        collection = self._get_collection()
        results = collection.query(
            query_texts=[query],
            n_results=limit,
            where={"tier_rank": {"$lte": min_tier.rank}},
            include=["metadatas", "distances"],
        )

        output: list[CacheResult] = []
        if not results["ids"] or not results["ids"][0]:
            return output

        for i, _ in enumerate(results["ids"][0]):
            meta = results["metadatas"][0][i]
            # cosine distance = 1 - similarity
            similarity = 1.0 - results["distances"][0][i]
            output.append(
                CacheResult(
                    citation=meta["citation"],
                    url=meta.get("url"),
                    findings=_decode_list(meta.get("findings_json")),
                    tier=EvidenceTier(meta["tier"]),
                    relevance_score=max(0.0, similarity * 100),
                )
            )
        return output

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def write(self, entry: CacheEntry) -> None:
        try:
            await asyncio.to_thread(self._upsert, entry)
        except Exception as exc:
            raise CacheError(f"Cache write failed: {exc}") from exc

    def _upsert(self, entry: CacheEntry) -> None:
        metadata = {
            "tier": entry.tier.value,
            "tier_rank": entry.tier.rank,
            "citation": entry.citation,
            "url": entry.url,
            "findings_json": json.dumps(entry.findings),
            "search_terms_json": json.dumps(entry.search_terms),
            "relevance_score": entry.relevance_score,
        }
        clean_meta = {k: v for k, v in metadata.items() if v is not None}

        self._get_collection().upsert(
            ids=[uuid.uuid4().hex],
            documents=[" ".join(entry.search_terms)],
            metadatas=[clean_meta],
        )

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def count(self) -> int:
        return self._get_collection().count()

    def tier_distribution(self) -> dict[str, int]:
        """Number of entries per tier letter."""
        results = self._get_collection().get(include=["metadatas"])
        counts = Counter(meta.get("tier", "D") for meta in results["metadatas"])
        return {tier.value: counts.get(tier.value, 0) for tier in EvidenceTier}

    def clear(self) -> int:
        """Delete every entry and return how many were removed."""
        collection = self._get_collection()
        ids = collection.get()["ids"]
        if ids:
            collection.delete(ids=ids)
        logger.info("Cleared %d research cache entries", len(ids))
        return len(ids)


def _decode_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


_default_cache: Optional[ChromaResearchCache] = None


def get_research_cache() -> ChromaResearchCache:
    """Return the process-wide cache under ``CHROMA_PERSIST_DIR``."""
    global _default_cache
    if _default_cache is None:
        _default_cache = ChromaResearchCache()
    return _default_cache
