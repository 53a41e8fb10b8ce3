"""Tests for redirect resolution, featured classification and link merging."""

import asyncio

import httpx
import pytest

from session_report.core.source_resolver import (
    SourceResolver,
    count_citations,
    featured_threshold,
    is_redirect_gateway,
    merge_links,
)
from session_report.models.schemas import (
    EvidenceTier,
    GroundingChunk,
    GroundingMetadata,
    GroundingSupport,
    QualityLink,
)

GATEWAY = "https://vertexaisearch.cloud.google.com/grounding-api-redirect/abc123"


def _resolver(tier_table, handler, timeout=1.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SourceResolver(tier_table, http_client=client, timeout=timeout)


@pytest.mark.parametrize("url, expected", [
    (GATEWAY, True),
    ("https://www.bmj.com/article", False),
    ("garbage", False),
])
def test_is_redirect_gateway(url, expected):
    assert is_redirect_gateway(url) is expected


def test_head_redirect_returns_location(tier_table):
    def handler(request):
        assert request.method == "HEAD"
        return httpx.Response(301, headers={"Location": "https://www.bmj.com/content/42"})

    resolver = _resolver(tier_table, handler)
    assert asyncio.run(resolver.resolve(GATEWAY)) == "https://www.bmj.com/content/42"


def test_relative_location_is_joined(tier_table):
    def handler(request):
        return httpx.Response(302, headers={"Location": "/landing"})

    resolver = _resolver(tier_table, handler)
    assert asyncio.run(resolver.resolve(GATEWAY)) == (
        "https://vertexaisearch.cloud.google.com/landing"
    )


def test_falls_back_to_get_when_head_does_not_redirect(tier_table):
    methods = []

    def handler(request):
        methods.append(request.method)
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(307, headers={"Location": "https://ncbi.nlm.nih.gov/pmc/1"})

    resolver = _resolver(tier_table, handler)
    assert asyncio.run(resolver.resolve(GATEWAY)) == "https://ncbi.nlm.nih.gov/pmc/1"
    assert methods == ["HEAD", "GET"]


def test_no_location_returns_original(tier_table):
    resolver = _resolver(tier_table, lambda request: httpx.Response(200))
    assert asyncio.run(resolver.resolve(GATEWAY)) == GATEWAY


def test_network_error_returns_original(tier_table):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    resolver = _resolver(tier_table, handler)
    assert asyncio.run(resolver.resolve(GATEWAY)) == GATEWAY


def test_malformed_location_returns_original(tier_table):
    def handler(request):
        return httpx.Response(302, headers={"Location": "http://[broken/page"})

    resolver = _resolver(tier_table, handler)
    assert asyncio.run(resolver.resolve(GATEWAY)) == GATEWAY


def test_malformed_location_keeps_sibling_links(tier_table):
    def handler(request):
        return httpx.Response(302, headers={"Location": "http://[broken/page"})

    metadata = GroundingMetadata(
        grounding_chunks=[
            GroundingChunk(url="https://www.bmj.com/a", title="BMJ"),
            GroundingChunk(url=GATEWAY, title="Gateway source"),
        ],
    )
    resolver = _resolver(tier_table, handler)

    links = asyncio.run(resolver.links_from_grounding(metadata))

    assert sorted(l.url for l in links) == sorted(["https://www.bmj.com/a", GATEWAY])


def test_timeout_returns_original(tier_table):
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(301, headers={"Location": "https://bmj.com/late"})

    resolver = _resolver(tier_table, handler, timeout=0.05)
    assert asyncio.run(resolver.resolve(GATEWAY)) == GATEWAY


def test_non_gateway_is_untouched(tier_table):
    def handler(request):
        raise AssertionError("should not be called")

    resolver = _resolver(tier_table, handler)
    url = "https://www.mayoclinic.org/page"
    assert asyncio.run(resolver.resolve(url)) == url


# ── Featured classification ──────────────────────────────────────────────

@pytest.mark.parametrize("counts, expected", [
    ([], 2),
    ([1], 2),
    ([3, 1], 2),
    ([10, 2], 5),
    ([7], 3),
])
def test_featured_threshold(counts, expected):
    assert featured_threshold(counts) == expected


def test_count_citations_per_span():
    supports = [
        GroundingSupport(chunk_indices=[0, 1]),
        GroundingSupport(chunk_indices=[0]),
        GroundingSupport(chunk_indices=[2, 2]),
    ]
    assert count_citations(supports) == {0: 2, 1: 1, 2: 1}


def test_links_from_grounding(tier_table, grounding):
    resolver = _resolver(tier_table, lambda request: httpx.Response(500))
    links = asyncio.run(resolver.links_from_grounding(grounding))

    assert [l.url for l in links] == [
        "https://www.cochranelibrary.com/review",
        "https://www.healthline.com/knee",
    ]
    cochrane, healthline = links
    assert cochrane.featured is True
    assert cochrane.tier == EvidenceTier.S
    assert cochrane.relevance == "Primary source (cited 3x)"
    assert cochrane.domain == "cochranelibrary.com"
    assert healthline.featured is False
    assert healthline.relevance == "Search grounding result"


def test_links_from_grounding_keeps_source_indices(tier_table):
    # The empty first chunk must not shift the support indices
    metadata = GroundingMetadata(
        grounding_chunks=[
            GroundingChunk(url="", title="no url"),
            GroundingChunk(url="https://bmj.com/a", title="BMJ"),
        ],
        grounding_supports=[GroundingSupport(chunk_indices=[1]), GroundingSupport(chunk_indices=[1])],
    )
    resolver = _resolver(tier_table, lambda request: httpx.Response(500))
    links = asyncio.run(resolver.links_from_grounding(metadata))
    assert len(links) == 1
    assert links[0].featured is True


def test_links_from_grounding_none(tier_table):
    resolver = _resolver(tier_table, lambda request: httpx.Response(500))
    assert asyncio.run(resolver.links_from_grounding(None)) == []


# ── Merge ────────────────────────────────────────────────────────────────

def test_merge_orders_by_tier():
    proposed = [
        QualityLink(url="u1", title="one", tier=EvidenceTier.B),
        QualityLink(url="u2", title="two", tier=EvidenceTier.A),
    ]
    assert [l.url for l in merge_links(proposed, [])] == ["u2", "u1"]


def test_merge_grounded_wins_and_proposed_never_featured():
    grounded = [
        QualityLink(url="u1", title="grounded", tier=EvidenceTier.C, featured=True),
    ]
    proposed = [
        QualityLink(url="u1", title="proposed dup", tier=EvidenceTier.S),
        QualityLink(url="u3", title="proposed", tier=EvidenceTier.S, featured=True),
    ]
    merged = merge_links(proposed, grounded)

    assert [l.url for l in merged] == ["u1", "u3"]
    assert merged[0].title == "grounded"
    assert merged[0].featured is True
    assert merged[1].featured is False


def test_merge_is_stable_for_equal_keys():
    proposed = [
        QualityLink(url=f"u{i}", title=str(i), tier=EvidenceTier.A) for i in range(5)
    ]
    assert [l.url for l in merge_links(proposed, [])] == [f"u{i}" for i in range(5)]
