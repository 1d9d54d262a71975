"""Pytest configuration and fixtures for pubmed_gateway tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Union

import pytest
import requests

from pubmed_gateway.download.downloaders import Downloader, FetchOutcome


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory that's cleaned up after the test."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def cache_dir(temp_dir: Path) -> Path:
    """Create a directory for cache storage."""
    cache = temp_dir / "cache"
    cache.mkdir()
    return cache


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(
        self,
        status_code: int = 200,
        json_data=None,
        text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        url: str = "https://example.org/",
    ):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.headers = headers or {}
        self.url = url

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._json is None:
            return json.loads(self.text)
        return self._json

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}")


Route = Union[FakeResponse, Exception, Callable[[str, dict], FakeResponse]]


class FakeSession:
    """
    Routes GET/HEAD requests to canned responses by URL substring.

    The first matching route wins; unmatched requests get a 404.
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None,
                 head_routes: Optional[Dict[str, Route]] = None):
        self.routes = routes or {}
        self.head_routes = head_routes or {}
        self.headers: Dict[str, str] = {}
        self.calls: List[tuple] = []

    def _dispatch(self, routes: Dict[str, Route], url: str, params: dict):
        for fragment, route in routes.items():
            if fragment in url:
                if isinstance(route, Exception):
                    raise route
                if callable(route) and not isinstance(route, FakeResponse):
                    return route(url, params)
                return route
        return FakeResponse(404, text="not found", url=url)

    def get(self, url, params=None, timeout=None, headers=None, allow_redirects=True):
        self.calls.append(("GET", url, dict(params or {})))
        return self._dispatch(self.routes, url, params or {})

    def head(self, url, params=None, timeout=None, headers=None, allow_redirects=True):
        self.calls.append(("HEAD", url, dict(params or {})))
        return self._dispatch(self.head_routes, url, params or {})

    def count(self, fragment: str, method: str = "GET") -> int:
        return sum(1 for m, url, _ in self.calls if m == method and fragment in url)

    def close(self):
        pass


class FakeDownloader(Downloader):
    """Writes canned bytes instead of running an external tool."""

    name = "fake"
    executable = "fake"

    def __init__(self, content: bytes = b"%PDF-1.4 test document", ok: bool = True,
                 diagnostic: str = "", write: bool = True, on_fetch: Optional[Callable] = None):
        super().__init__(which=lambda _: "/usr/bin/fake")
        self.content = content
        self.ok = ok
        self.diagnostic = diagnostic
        self.write = write
        self.on_fetch = on_fetch
        self.calls: List[tuple] = []

    def build_command(self, url, destination, timeout, user_agent):
        return ["fake", url, str(destination)]

    def fetch(self, url, destination, timeout, user_agent):
        self.calls.append((url, Path(destination), timeout, user_agent))
        if self.on_fetch is not None:
            self.on_fetch(url)
        if self.write:
            Path(destination).write_bytes(self.content)
        return FetchOutcome(self.ok, 0 if self.ok else 22, self.diagnostic, self.name)


def esummary_doc(pmid: str, title: str = None, doi: str = None, pmcid: str = None,
                 pubtype=("Journal Article",)) -> dict:
    """One esummary result document."""
    articleids = [{"idtype": "pubmed", "value": pmid}]
    if doi:
        articleids.append({"idtype": "doi", "value": doi})
    if pmcid:
        articleids.append({"idtype": "pmc", "value": pmcid})
    return {
        "uid": pmid,
        "title": title or f"Article {pmid}",
        "authors": [{"name": "Smith JA"}, {"name": "Doe B"}],
        "source": "J Test",
        "fulljournalname": "Journal of Testing",
        "pubdate": "2023 Mar 15",
        "volume": "12",
        "issue": "3",
        "pages": "100-110",
        "elocationid": f"doi: {doi}" if doi else "",
        "articleids": articleids,
        "pubtype": list(pubtype),
    }


def esummary_payload(docs: List[dict], missing: List[str] = ()) -> dict:
    result = {"uids": [d["uid"] for d in docs]}
    for doc in docs:
        result[doc["uid"]] = doc
    for pmid in missing:
        result[pmid] = {"uid": pmid, "error": "cannot get document summary"}
    return {"result": result}


def efetch_xml(abstracts: Dict[str, str]) -> str:
    articles = "".join(
        f"""<PubmedArticle><MedlineCitation><PMID>{pmid}</PMID><Article>
<Abstract><AbstractText Label="BACKGROUND">{text}</AbstractText>
<AbstractText Label="RESULTS">It <i>worked</i>.</AbstractText></Abstract></Article>
<MeshHeadingList><MeshHeading><DescriptorName>Humans</DescriptorName></MeshHeading></MeshHeadingList>
<KeywordList><Keyword>testing</Keyword></KeywordList>
</MedlineCitation></PubmedArticle>"""
        for pmid, text in abstracts.items()
    )
    return f"<?xml version=\"1.0\"?><PubmedArticleSet>{articles}</PubmedArticleSet>"


class PubMedRoutes:
    """Canned E-utilities backend keyed by PMID."""

    def __init__(self, docs: Dict[str, dict], search_ids: List[str] = None):
        self.docs = docs
        self.search_ids = search_ids if search_ids is not None else list(docs)
        self.esummary_ids: List[List[str]] = []

    def esearch(self, url, params):
        return FakeResponse(json_data={"esearchresult": {
            "count": str(len(self.search_ids) + 100),
            "idlist": self.search_ids[:int(params.get("retmax", 20))],
        }})

    def esummary(self, url, params):
        ids = params["id"].split(",")
        self.esummary_ids.append(ids)
        docs = [self.docs[i] for i in ids if i in self.docs]
        return FakeResponse(json_data=esummary_payload(docs, [i for i in ids if i not in self.docs]))

    def efetch(self, url, params):
        ids = params["id"].split(",")
        if params.get("retmode") == "text":
            return FakeResponse(text=f"1. J Test. 2023.\n\nFull abstract for {ids[0]}.")
        return FakeResponse(text=efetch_xml({i: f"Background for {i}." for i in ids if i in self.docs}))

    def routes(self) -> Dict[str, Route]:
        return {
            "esearch.fcgi": self.esearch,
            "esummary.fcgi": self.esummary,
            "efetch.fcgi": self.efetch,
        }
