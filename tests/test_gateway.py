"""End-to-end tests for PubMedGateway operations with fake upstreams."""

import json
import random
from pathlib import Path

import pytest

from pubmed_gateway import GatewayConfig, PubMedGateway
from pubmed_gateway.clients import APIConfig, PubMedClient
from pubmed_gateway.download import NoPacing
from pubmed_gateway.rate_limit import RateLimiter
from pubmed_gateway.resolvers import OpenAccessResolver, OpenAccessSource, PublisherSource, UnpaywallSource

from conftest import FakeDownloader, FakeResponse, FakeSession, PubMedRoutes, esummary_doc


class MapSource(OpenAccessSource):
    """Open-access source backed by a {pmid: url} map."""

    def __init__(self, urls):
        super().__init__(name="PMC")
        self.urls = urls

    def can_handle(self, article):
        return True

    def _find_pdf_url(self, article, timeout, cancel_token=None):
        return self.urls.get(article.pmid)


@pytest.fixture
def backend():
    docs = {
        "101": esummary_doc("101", title="Open one", doi="10.1000/a", pmcid="PMC1"),
        "102": esummary_doc("102", title="Closed", doi="10.1000/b"),
        "103": esummary_doc("103", title="Open two", doi="10.1000/c", pubtype=("Review",)),
    }
    return PubMedRoutes(docs)


def make_gateway(cache_dir: Path, backend, fulltext_mode="enabled", downloader=None,
                 oa_urls=None, **config):
    cfg = GatewayConfig(cache_dir=cache_dir, fulltext_mode=fulltext_mode, **config)
    client = PubMedClient(config=APIConfig(max_retries=0), rate_limiter=RateLimiter(0),
                          session=FakeSession(backend.routes()))
    if oa_urls is None:
        oa_urls = {"101": "https://repo.example/101.pdf", "103": "https://repo.example/103.pdf"}
    return PubMedGateway(
        cfg,
        client=client,
        resolver=OpenAccessResolver([MapSource(oa_urls)]),
        downloader=downloader or FakeDownloader(),
        session=FakeSession(),
        pacing=NoPacing(),
        rate_limiter=RateLimiter(0),
        rng=random.Random(0),
        sleep=lambda s: None,
    )


class TestEnvelopes:
    """Test the success / failure envelope shape."""

    def test_search_envelope(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend)

        result = gateway.search("crispr", max_results=5, format="concise")

        assert result['success'] is True
        assert result['total_count'] == 103
        assert [a['pmid'] for a in result['articles']] == ["101", "102", "103"]
        json.dumps(result)

    def test_llm_optimized_sections(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend)

        article = gateway.get_details(["101"])['articles'][0]

        assert article['identifier']['pmid'] == "101"
        assert article['abstract']['sections']['results'] == "It worked."

    def test_invalid_pmid(self, cache_dir: Path, backend):
        result = make_gateway(cache_dir, backend).get_details(["12a"])

        assert result['success'] is False
        assert result['error_type'] == "ValueError"

    def test_too_many_pmids(self, cache_dir: Path, backend):
        """Test more than 20 identifiers is a RequestLimitError."""
        result = make_gateway(cache_dir, backend).batch_query([str(i) for i in range(21)])

        assert result['success'] is False
        assert result['error_type'] == "RequestLimitError"

    def test_upstream_failure(self, cache_dir: Path):
        """Test an E-utilities error becomes a failure envelope with the status code."""
        class Down(PubMedRoutes):
            def routes(self):
                return {"esearch.fcgi": FakeResponse(400, text="bad query")}

        result = make_gateway(cache_dir, Down({})).search("((")

        assert result['success'] is False
        assert result['error_type'] == "UpstreamError"
        assert result['status_code'] == 400

    def test_unknown_format(self, cache_dir: Path, backend):
        result = make_gateway(cache_dir, backend).search("x", format="xml")

        assert result['success'] is False


class TestDetails:

    def test_not_found_listed(self, cache_dir: Path, backend):
        result = make_gateway(cache_dir, backend).get_details(["101", "999"])

        assert result['returned'] == 1
        assert result['not_found'] == ["999"]

    def test_include_full_text_detects_open_access(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend)

        result = gateway.get_details(["101", "102"], include_full_text=True, format="concise")

        by_pmid = {a['pmid']: a for a in result['articles']}
        assert by_pmid["101"]['open_access']['is_open_access'] is True
        assert by_pmid["102"]['open_access']['is_open_access'] is False
        assert 'downloads' not in result

    def test_auto_mode_downloads(self, cache_dir: Path, backend):
        downloader = FakeDownloader()
        gateway = make_gateway(cache_dir, backend, fulltext_mode="auto", downloader=downloader)

        result = gateway.get_details(["101", "102"], include_full_text=True)

        assert [d['pmid'] for d in result['downloads']] == ["101"]
        assert len(downloader.calls) == 1

    def test_key_info(self, cache_dir: Path, backend):
        result = make_gateway(cache_dir, backend).extract_key_info("101", sections=["results", "doi_link"])

        assert result['success']
        assert result['results'] == "It worked."
        assert result['doi_link'] == "https://doi.org/10.1000/a"

    def test_cross_reference_reviews(self, cache_dir: Path, backend):
        """Test 'reviews' keeps only similar articles typed as reviews."""
        routes = backend.routes()
        routes["elink.fcgi"] = FakeResponse(json_data={"linksets": [{"linksetdbs": [
            {"linkname": "pubmed_pubmed", "links": ["101", "102", "103"]},
        ]}]})
        gateway = make_gateway(cache_dir, backend)
        gateway.client.session = FakeSession(routes)

        result = gateway.cross_reference("101", reference_type="reviews")

        assert [a['pmid'] for a in result['articles']] == ["103"]


class TestFullText:
    """Test full-text operations."""

    def test_disabled_mode_rejects(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend, fulltext_mode="disabled")

        for result in (gateway.detect_fulltext(["101"]), gateway.download_fulltext("101"),
                       gateway.batch_download(["101"])):
            assert result['success'] is False
            assert result['error_type'] == "FullTextDisabledError"

    def test_detect(self, cache_dir: Path, backend):
        result = make_gateway(cache_dir, backend).detect_fulltext(["101", "102", "103"])

        assert result['open_access'] == 2
        closed = next(r for r in result['results'] if r['pmid'] == "102")
        assert closed['download_url'] is None

    def test_detect_by_doi(self, cache_dir: Path, backend):
        """Test DOI-based sources see the article DOI and survive a malformed Unpaywall body."""
        oa_session = FakeSession({
            "api.unpaywall.org/v2/10.1000/a": FakeResponse(json_data={
                "is_oa": True, "best_oa_location": {"url_for_pdf": "https://repo.example/a.pdf"},
            }),
            "api.unpaywall.org/v2/10.1000/c": FakeResponse(json_data=["unexpected"]),
            "doi.org/10.1000/c": FakeResponse(
                text='<meta name="citation_pdf_url" content="https://pub.example/c.pdf">',
                headers={"Content-Type": "text/html"},
                url="https://pub.example/c",
            ),
        })
        gateway = make_gateway(cache_dir, backend)
        gateway.resolver = OpenAccessResolver([
            UnpaywallSource(session=oa_session), PublisherSource(oa_session),
        ])

        result = gateway.detect_fulltext(["101", "102", "103"])

        assert result['success'] is True
        urls = {r['pmid']: r['download_url'] for r in result['results']}
        assert urls == {"101": "https://repo.example/a.pdf", "102": None, "103": "https://pub.example/c.pdf"}
        assert oa_session.count("api.unpaywall.org/v2/10.1000/b") == 1

    def test_download_single(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend)

        result = gateway.download_fulltext("101")

        assert result['success'] is True
        assert Path(result['local_path']).read_bytes().startswith(b"%PDF-")

    def test_download_not_open_access(self, cache_dir: Path, backend):
        result = make_gateway(cache_dir, backend).download_fulltext("102")

        assert result['success'] is False
        assert result['error_type'] == "NotOpenAccess"

    def test_batch_download_scenario(self, cache_dir: Path, backend):
        """Test three PMIDs with one closed article: two saved, one reported."""
        downloader = FakeDownloader()
        gateway = make_gateway(cache_dir, backend, downloader=downloader)

        result = gateway.batch_download(["101", "102", "103"])

        assert result['success'] is True
        assert result['open_access'] == 2
        assert result['downloaded'] == 2
        assert result['not_open_access'] == ["102"]
        assert [r['pmid'] for r in result['results']] == ["101", "103"]
        assert len(downloader.calls) == 2

        again = gateway.batch_download(["101", "102", "103"])
        assert all(r['from_cache'] for r in again['results'])
        assert len(downloader.calls) == 2

    def test_batch_download_cap(self, cache_dir: Path, backend):
        result = make_gateway(cache_dir, backend).batch_download([str(i) for i in range(11)])

        assert result['error_type'] == "RequestLimitError"

    def test_batch_download_size_abort(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend)
        gateway.orchestrator.session = FakeSession(
            head_routes={"repo.example": FakeResponse(headers={"Content-Length": str(60 * 1024 * 1024)})}
        )

        result = gateway.batch_download(["101"])

        assert result['downloaded'] == 0
        assert result['results'][0]['state'] == "aborted_too_large"


class TestCacheOperations:

    def test_cache_info(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend)
        gateway.search("x")
        gateway.search("x")

        info = gateway.cache_info()

        assert info['memory']['hits'] == 1
        assert info['papers']['total_entries'] == 3

    def test_clear_cache_targets(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend)
        gateway.get_details(["101"])
        gateway.download_fulltext("101")

        assert gateway.clear_cache("papers")['cleared']['papers'] == 1
        assert gateway.clear_cache("fulltext")['cleared']['fulltext'] == 1
        assert gateway.clear_cache("bogus")['success'] is False

    def test_export_mode(self, cache_dir: Path, backend):
        gateway = make_gateway(cache_dir, backend, export_enabled=True)

        result = gateway.get_details(["101"])

        assert result['export']['exported'] == 1
        assert (cache_dir / "endnote" / "101.ris").exists()
        assert gateway.export_status()['total_exports'] == 1

    def test_system_check(self, cache_dir: Path, backend):
        report = make_gateway(cache_dir, backend).system_check()

        assert report['success']
        assert report['active_tool'] == "fake"
        assert report['modes']['fulltext'] == "enabled"
