"""Tests for MetadataFetcher."""

from datetime import date
from pathlib import Path

import pytest

from pubmed_gateway import UpstreamError
from pubmed_gateway.caching import MemoryCache, RecordStore
from pubmed_gateway.clients import APIConfig, PubMedClient
from pubmed_gateway.fetcher import MetadataFetcher, build_search_term
from pubmed_gateway.rate_limit import RateLimiter

from conftest import FakeResponse, FakeSession, PubMedRoutes, esummary_doc

DAY = 24 * 60 * 60


@pytest.fixture
def backend():
    return PubMedRoutes({pmid: esummary_doc(pmid, doi=f"10.1000/{pmid}") for pmid in ("1", "2", "3", "4")})


def make_fetcher(session, cache_dir: Path, clock=None):
    client = PubMedClient(config=APIConfig(max_retries=0), rate_limiter=RateLimiter(0), session=session)
    store = RecordStore(cache_dir, **({'clock': clock} if clock else {}))
    return MetadataFetcher(client, MemoryCache(max_size=100, ttl_seconds=300), store)


class TestSearch:
    """Test search caching."""

    def test_second_identical_search_uses_memory_cache(self, backend, cache_dir: Path):
        """Test a repeated search makes zero upstream calls."""
        session = FakeSession(backend.routes())
        fetcher = make_fetcher(session, cache_dir)

        first = fetcher.search("cancer", max_results=20)
        calls = len(session.calls)
        second = fetcher.search("cancer", max_results=20)

        assert len(session.calls) == calls
        assert second is first
        assert [a.pmid for a in first.articles] == ["1", "2", "3", "4"]

    def test_different_parameters_miss(self, backend, cache_dir: Path):
        """Test changing any parameter bypasses the cached entry."""
        session = FakeSession(backend.routes())
        fetcher = make_fetcher(session, cache_dir)

        fetcher.search("cancer", max_results=20)
        fetcher.search("cancer", max_results=20, sort_by="date")

        assert session.count("esearch") == 2

    def test_invalid_arguments(self, backend, cache_dir: Path):
        """Test empty queries and out-of-range limits are rejected."""
        fetcher = make_fetcher(FakeSession(backend.routes()), cache_dir)

        with pytest.raises(ValueError):
            fetcher.search("  ")
        with pytest.raises(ValueError):
            fetcher.search("x", max_results=0)

    def test_days_back_filter(self):
        """Test the publication-date window is appended."""
        term = build_search_term("covid", 30, today=date(2024, 1, 31))

        assert term == 'covid AND ("2024-01-01"[Date - Publication] : "3000"[Date - Publication])'
        assert build_search_term("covid", 0) == "covid"

    def test_upstream_failure_propagates(self, cache_dir: Path):
        """Test a failing esearch fails the search."""
        session = FakeSession({"esearch.fcgi": FakeResponse(502, text="bad gateway")})
        fetcher = make_fetcher(session, cache_dir)

        with pytest.raises(UpstreamError):
            fetcher.search("cancer")


class TestGetArticles:
    """Test batch metadata with the record cache."""

    def test_only_uncached_ids_fetched(self, backend, cache_dir: Path):
        """Test cached PMIDs are served from disk and the rest in one call."""
        session = FakeSession(backend.routes())
        fetcher = make_fetcher(session, cache_dir)
        fetcher.get_articles(["1", "3"])
        backend.esummary_ids.clear()

        articles = fetcher.get_articles(["1", "2", "3", "4"])

        assert backend.esummary_ids == [["2", "4"]]
        assert [a.pmid for a in articles] == ["1", "2", "3", "4"]

    def test_unknown_ids_are_none_in_place(self, backend, cache_dir: Path):
        """Test output order matches input with None for unknown PMIDs."""
        fetcher = make_fetcher(FakeSession(backend.routes()), cache_dir)

        articles = fetcher.get_articles(["2", "999", "1"])

        assert articles[0].pmid == "2"
        assert articles[1] is None
        assert articles[2].pmid == "1"

    def test_fully_cached_batch_makes_no_calls(self, backend, cache_dir: Path):
        """Test no upstream call when every PMID is cached."""
        session = FakeSession(backend.routes())
        fetcher = make_fetcher(session, cache_dir)
        fetcher.get_articles(["1", "2"])
        calls = len(session.calls)

        fetcher.get_articles(["2", "1"])

        assert len(session.calls) == calls

    def test_expired_record_refetched(self, backend, cache_dir: Path, clock):
        """Test a 31-day-old record triggers a fresh fetch."""
        session = FakeSession(backend.routes())
        fetcher = make_fetcher(session, cache_dir, clock=clock)
        fetcher.get_articles(["1"])

        clock.advance(31 * DAY)
        backend.esummary_ids.clear()
        fetcher.get_articles(["1"])

        assert backend.esummary_ids == [["1"]]

    def test_abstracts_enriched_and_cached(self, backend, cache_dir: Path):
        """Test abstracts from efetch are stored with the record."""
        fetcher = make_fetcher(FakeSession(backend.routes()), cache_dir)

        article = fetcher.get_articles(["1"])[0]

        assert article.abstract.startswith("BACKGROUND: Background for 1.")
        assert article.mesh_terms == ["Humans"]
        cached = fetcher.record_store.get("1")
        assert cached['abstract'] == article.abstract

    def test_enrichment_failure_is_not_fatal(self, backend, cache_dir: Path):
        """Test a failing efetch still returns summaries."""
        routes = backend.routes()
        routes["efetch.fcgi"] = FakeResponse(500, text="down")
        fetcher = make_fetcher(FakeSession(routes), cache_dir)

        article = fetcher.get_articles(["1"])[0]

        assert article.pmid == "1"
        assert article.abstract == ""

    def test_batch_failure_is_fatal(self, cache_dir: Path):
        """Test a failing esummary fails the whole batch."""
        fetcher = make_fetcher(FakeSession({"esummary.fcgi": FakeResponse(500, text="x")}), cache_dir)

        with pytest.raises(UpstreamError):
            fetcher.get_articles(["1", "2"])


class TestFullAbstract:

    def test_fetch_full_abstract(self, backend, cache_dir: Path):
        """Test the plain-text abstract record is returned."""
        fetcher = make_fetcher(FakeSession(backend.routes()), cache_dir)

        assert "Full abstract for 3." in fetcher.fetch_full_abstract("3")

    def test_fetch_full_abstract_failure_returns_none(self, cache_dir: Path):
        """Test failures degrade to None."""
        fetcher = make_fetcher(FakeSession({"efetch.fcgi": FakeResponse(500, text="x")}), cache_dir)

        assert fetcher.fetch_full_abstract("3") is None
