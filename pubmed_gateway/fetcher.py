"""
MetadataFetcher - cached access to PubMed metadata

Search results are memoized in the MemoryCache under a composite key. Article
metadata is memoized per PMID in the RecordStore, so a batch request only
sends the uncached PMIDs upstream (in one esummary call) and reassembles the
answer in the caller's order.
"""

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from .caching import MemoryCache, RecordStore, make_search_key
from .cancellation import CancellationToken
from .clients import PubMedClient
from .exceptions import UpstreamError
from .models import Article, SearchResult

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 100


def build_search_term(query: str, days_back: int = 0, today: Optional[date] = None) -> str:
    """Append a publication-date window to a PubMed query."""
    if not days_back or days_back <= 0:
        return query
    today = today or date.today()
    since = (today - timedelta(days=days_back)).strftime("%Y-%m-%d")
    return f'{query} AND ("{since}"[Date - Publication] : "3000"[Date - Publication])'


def _dedupe(pmids: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for pmid in pmids:
        pmid = str(pmid).strip()
        if pmid and pmid not in seen:
            seen.add(pmid)
            ordered.append(pmid)
    return ordered


class MetadataFetcher:
    """Two-tier cached front for the PubMed client."""

    def __init__(
        self,
        client: PubMedClient,
        memory_cache: MemoryCache,
        record_store: RecordStore,
        enrich_abstracts: bool = True,
    ):
        self.client = client
        self.memory_cache = memory_cache
        self.record_store = record_store
        self.enrich_abstracts = enrich_abstracts

    def search(
        self,
        query: str,
        max_results: int = 20,
        days_back: int = 0,
        sort_by: str = 'relevance',
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResult:
        """
        Search PubMed, answering repeats from the memory cache.

        Raises:
            ValueError: On an empty query or out-of-range max_results
            UpstreamError: If esearch or esummary fails
        """
        if not query or not query.strip():
            raise ValueError("Query must not be empty")
        if not 1 <= max_results <= MAX_SEARCH_RESULTS:
            raise ValueError(f"max_results must be between 1 and {MAX_SEARCH_RESULTS}")

        key = make_search_key(query, max_results, days_back, sort_by)
        cached = self.memory_cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit for query: {query[:50]}")
            return cached

        term = build_search_term(query, days_back)
        pmids, total = self.client.esearch(term, max_results, sort_by, cancel_token=cancel_token)
        articles = [a for a in self.get_articles(pmids, cancel_token=cancel_token) if a is not None]

        result = SearchResult(query=term, total_count=total, articles=articles)
        self.memory_cache.set(key, result)
        logger.info(f"Search '{query[:50]}' returned {len(articles)} of {total} articles")
        return result

    def get_articles(
        self,
        pmids: Sequence[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Optional[Article]]:
        """
        Metadata for PMIDs in caller order, None where PubMed has no record.

        Cached PMIDs are served from disk; the rest are fetched in one batch.
        An upstream failure fails the whole batch.
        """
        resolved: Dict[str, Article] = {}
        uncached = []

        for pmid in _dedupe(pmids):
            data = self.record_store.get(pmid)
            if data is not None:
                try:
                    resolved[pmid] = Article.from_dict(data)
                    continue
                except (KeyError, TypeError) as e:
                    logger.warning(f"Discarding malformed cached record for {pmid}: {e}")
            uncached.append(pmid)

        if uncached:
            logger.debug(f"{len(resolved)} cached, fetching {len(uncached)} from PubMed")
            fetched = self.client.esummary(uncached, cancel_token=cancel_token)
            if self.enrich_abstracts and fetched:
                self._enrich(fetched, cancel_token)
            for pmid, article in fetched.items():
                self.record_store.set(pmid, article.to_dict())
            resolved.update(fetched)

        return [resolved.get(str(p).strip()) for p in pmids]

    def _enrich(self, articles: Dict[str, Article], cancel_token: Optional[CancellationToken]) -> None:
        """Best-effort abstracts, MeSH terms and keywords from efetch."""
        try:
            details = self.client.efetch_details(list(articles), cancel_token=cancel_token)
        except UpstreamError as e:
            logger.warning(f"Abstract enrichment failed, continuing without: {e}")
            return

        for pmid, extra in details.items():
            article = articles.get(pmid)
            if article is None:
                continue
            article.abstract = extra.get('abstract') or article.abstract
            article.mesh_terms = extra.get('mesh_terms') or article.mesh_terms
            article.keywords = extra.get('keywords') or article.keywords

    def fetch_full_abstract(
        self,
        pmid: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[str]:
        """Plain-text abstract record, or None if it cannot be fetched."""
        try:
            text = self.client.efetch_text(pmid, cancel_token=cancel_token)
        except UpstreamError as e:
            logger.warning(f"Could not fetch full abstract for {pmid}: {e}")
            return None
        return text or None

    def find_related(
        self,
        pmid: str,
        link_type: str = 'similar',
        max_results: int = 10,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Article]:
        """Articles linked to `pmid` via elink, with cached metadata."""
        linked = self.client.elink(pmid, link_type, cancel_token=cancel_token)[:max_results]
        return [a for a in self.get_articles(linked, cancel_token=cancel_token) if a is not None]
