"""Tests for domain tier lookup and tier helpers."""

import pytest

from session_report.config import settings
from session_report.core.evidence_tiers import (
    TierTable,
    diverse_by_tier,
    extract_domain,
    filter_high_quality,
)
from session_report.models.schemas import EvidenceTier, QualityLink


@pytest.mark.parametrize("url, expected", [
    ("https://www.cochranelibrary.com/cdsr/doi/10.1002", EvidenceTier.S),
    ("https://pubmed.ncbi.nlm.nih.gov/12345/", EvidenceTier.A),
    ("https://bmj.com/content/1", EvidenceTier.A),
    ("https://www.mayoclinic.org/diseases", EvidenceTier.B),
    ("https://healthline.com/health/knee", EvidenceTier.C),
    ("https://example.com/page", EvidenceTier.D),
    ("not a url", EvidenceTier.D),
    ("", EvidenceTier.D),
])
def test_tier_for_url(tier_table, url, expected):
    assert tier_table.tier_for_url(url) == expected


def test_suffix_requires_label_boundary(tier_table):
    # "notbmj.com" is a different registered domain
    assert tier_table.tier_for_domain("notbmj.com") == EvidenceTier.D
    assert tier_table.tier_for_domain("journals.bmj.com") == EvidenceTier.A


def test_longest_suffix_wins():
    table = TierTable(
        version="t",
        tiers={"nih.gov": EvidenceTier.B, "ncbi.nlm.nih.gov": EvidenceTier.A},
    )
    assert table.tier_for_domain("pubmed.ncbi.nlm.nih.gov") == EvidenceTier.A
    assert table.tier_for_domain("www.nih.gov") == EvidenceTier.B


def test_every_tier_is_in_closed_set(tier_table):
    for url in ["https://a.b", "https://bmj.com", "ftp://weird", "://"]:
        assert tier_table.tier_for_url(url) in set(EvidenceTier)


def test_default_table_loads():
    table = TierTable.from_file(settings.DOMAIN_TIERS_PATH)
    assert table.version
    assert table.tier_for_domain("cochranelibrary.com") == EvidenceTier.S


@pytest.mark.parametrize("url, expected", [
    ("https://www.bmj.com/x", "bmj.com"),
    ("https://Sub.Example.org:8080/a", "sub.example.org"),
    ("garbage", "unknown"),
])
def test_extract_domain(url, expected):
    assert extract_domain(url) == expected


def test_tier_rank_order():
    ranks = [t.rank for t in EvidenceTier]
    assert ranks == sorted(ranks)
    assert EvidenceTier.S.rank < EvidenceTier.D.rank


def _link(url, tier):
    return QualityLink(url=url, title=url, tier=tier)


def test_filter_high_quality():
    links = [_link("s", EvidenceTier.S), _link("c", EvidenceTier.C), _link("b", EvidenceTier.B)]
    assert [l.url for l in filter_high_quality(links)] == ["s", "b"]


def test_diverse_by_tier_caps_each_tier():
    links = [
        _link("c1", EvidenceTier.C),
        _link("a1", EvidenceTier.A),
        _link("a2", EvidenceTier.A),
        _link("a3", EvidenceTier.A),
        _link("s1", EvidenceTier.S),
    ]
    assert [l.url for l in diverse_by_tier(links, max_per_tier=2)] == ["s1", "a1", "a2", "c1"]
