"""
PubMedGateway - the context object and its operations

One PubMedGateway owns everything that must be shared inside a process: the
rate limiter, both cache tiers, the ledgers, the resolver and the download
machinery. Build it once at startup and pass it around.

Every public operation returns a JSON-serializable envelope:

    {"success": True, ...payload}
    {"success": False, "error": "...", "error_type": "...", ...context}

Operations never raise; failures are reported in the envelope.
"""

import functools
import logging
import random
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .caching import MemoryCache, RecordStore
from .cancellation import CancellationToken
from .clients import APIConfig, PubMedClient
from .config import GatewayConfig
from .download import (
    BatchDownloadScheduler,
    DownloadOrchestrator,
    Downloader,
    NoPacing,
    PacingPolicy,
    RandomPacing,
    select_downloader,
    system_check,
)
from .exceptions import DownloadError, FullTextDisabledError, GatewayError, RequestLimitError
from .export import CitationExporter
from .fetcher import MetadataFetcher
from .formatting import FORMATS, KEY_INFO_SECTIONS, extract_key_info, format_articles
from .models import Article, OpenAccessInfo
from .rate_limit import RateLimiter
from .resolvers import OpenAccessResolver, PMCSource, PublisherSource, UnpaywallSource
from .__version__ import __version__

logger = logging.getLogger(__name__)

REFERENCE_TYPES = ('similar', 'citing', 'references', 'reviews')
CACHE_TARGETS = ('memory', 'papers', 'fulltext', 'exports', 'expired', 'all')


def _failure(error: str, error_type: str = "GatewayError", **context) -> Dict[str, Any]:
    return {'success': False, 'error': error, 'error_type': error_type, **context}


def operation(func: Callable) -> Callable:
    """Turn exceptions raised by an operation into failure envelopes."""
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except (GatewayError, ValueError) as e:
            logger.warning(f"{func.__name__} failed: {e}")
            context = {}
            for attr in ('status_code', 'url'):
                if getattr(e, attr, None) is not None:
                    context[attr] = getattr(e, attr)
            return _failure(str(e), type(e).__name__, **context)
        except Exception as e:
            logger.exception(f"Unexpected error in {func.__name__}")
            return _failure(f"Unexpected error: {e}", type(e).__name__)
    return wrapper


class PubMedGateway:
    """
    Cached PubMed metadata and open-access full text.

    Example:
        >>> gateway = PubMedGateway(GatewayConfig.load())
        >>> gateway.search("crispr off-target", max_results=5)
        >>> gateway.batch_download(["31452104", "32015508"])
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        client: Optional[PubMedClient] = None,
        resolver: Optional[OpenAccessResolver] = None,
        downloader: Optional[Downloader] = None,
        session: Optional[requests.Session] = None,
        pacing: Optional[PacingPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], None]] = None,
        show_progress: bool = False,
    ):
        """
        Args:
            config: Settings (None = GatewayConfig.load())
            client: PubMed client (None = built from config)
            resolver: Open-access resolver (None = PMC, Unpaywall, publisher)
            downloader: Download tool (None = chosen for this platform)
            session: HTTP session for open-access probes and size checks
            pacing: Batch pacing policy (None = random delays from config)
            rate_limiter: Shared limiter (None = matched to the API key)
            rng: Randomness for pacing
            sleep: Sleep function for pacing delays
            show_progress: Show a tqdm progress bar for batch downloads
        """
        self.config = config or GatewayConfig.load()
        cfg = self.config
        cfg.cache_dir.mkdir(parents=True, exist_ok=True)

        self.rate_limiter = rate_limiter or RateLimiter.for_api_key(cfg.api_key)
        self.client = client or PubMedClient(
            base_url=cfg.base_url,
            tool=cfg.tool,
            email=cfg.email,
            api_key=cfg.api_key,
            config=APIConfig(
                max_retries=cfg.max_retries,
                initial_retry_delay=cfg.initial_retry_delay,
                max_retry_delay=cfg.max_retry_delay,
                retry_backoff_factor=cfg.retry_backoff_factor,
                timeout=cfg.timeout,
            ),
            rate_limiter=self.rate_limiter,
        )

        self.memory_cache = MemoryCache(max_size=cfg.memory_cache_size, ttl_seconds=cfg.memory_cache_ttl)
        self.record_store = RecordStore(cfg.cache_dir / "papers", max_age_days=cfg.record_ttl_days)
        self.fetcher = MetadataFetcher(self.client, self.memory_cache, self.record_store)

        self.session = session or requests.Session()
        self.resolver = resolver or OpenAccessResolver([
            PMCSource(self.session, self.rate_limiter, tool=cfg.tool, email=cfg.email,
                      timeout=cfg.resolver_timeout),
            UnpaywallSource(cfg.unpaywall_email, self.session, timeout=cfg.resolver_timeout),
            PublisherSource(self.session, user_agent=cfg.user_agent, timeout=cfg.resolver_timeout),
        ])

        if downloader is None:
            try:
                downloader = select_downloader(connect_timeout=cfg.connect_timeout, max_bytes=cfg.max_file_size)
            except DownloadError as e:
                logger.warning(f"{e}; full-text downloads will fail")
        self.orchestrator = DownloadOrchestrator(
            cfg.cache_dir / "fulltext",
            downloader,
            session=self.session,
            max_file_size=cfg.max_file_size,
            timeout=cfg.download_timeout,
            probe_timeout=cfg.probe_timeout,
            user_agent=cfg.user_agent,
            max_age_days=cfg.fulltext_ttl_days,
        )
        scheduler_kwargs = {'sleep': sleep} if sleep is not None else {}
        self.scheduler = BatchDownloadScheduler(
            self.orchestrator,
            pacing=pacing or RandomPacing(cfg.pre_download_delay, cfg.between_items_delay),
            max_batch_size=cfg.max_batch_size,
            rng=rng,
            show_progress=show_progress,
            **scheduler_kwargs,
        )
        self.exporter = CitationExporter(cfg.cache_dir / "endnote")

        logger.debug(
            f"Gateway ready (cache={cfg.cache_dir}, abstract={cfg.abstract_mode}, "
            f"fulltext={cfg.fulltext_mode}, export={cfg.export_enabled})"
        )

    # ------------------------------------------------------------------ helpers

    def _check_ids(self, pmids: Sequence[str], limit: Optional[int] = None) -> List[str]:
        if isinstance(pmids, str):
            pmids = [p for p in pmids.replace(',', ' ').split()]
        pmids = [str(p).strip() for p in pmids if str(p).strip()]
        if not pmids:
            raise ValueError("At least one PMID is required")
        invalid = [p for p in pmids if not p.isdigit()]
        if invalid:
            raise ValueError(f"Invalid PMID(s): {', '.join(invalid)}")
        limit = limit or self.config.max_ids_per_request
        if len(pmids) > limit:
            raise RequestLimitError(f"{len(pmids)} PMIDs requested, maximum is {limit}")
        return pmids

    def _require_fulltext(self):
        if not self.config.fulltext_enabled:
            raise FullTextDisabledError(
                "Full-text features are disabled (set FULLTEXT_MODE=enabled or auto)"
            )

    def _check_format(self, fmt: str):
        if fmt not in FORMATS:
            raise ValueError(f"Unknown format '{fmt}', expected one of {', '.join(FORMATS)}")

    def _auto_fulltext(
        self,
        articles: Sequence[Article],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[Dict[str, OpenAccessInfo], List[Dict[str, Any]]]:
        """Detect open access for `articles` and download what is available."""
        infos = self.resolver.resolve_many(articles, cancel_token)
        oa_items = [i for i in infos if i.is_open_access][:self.scheduler.max_batch_size]
        outcomes = self.scheduler.run(oa_items, cancel_token=cancel_token) if oa_items else []
        return {i.pmid: i for i in infos}, [o.to_dict() for o in outcomes]

    def _maybe_export(self, articles: Sequence[Optional[Article]]) -> Optional[Dict[str, Any]]:
        if not self.config.export_enabled:
            return None
        return self.exporter.export(articles)

    # --------------------------------------------------------------- operations

    @operation
    def search(
        self,
        query: str,
        max_results: int = 20,
        days_back: int = 0,
        sort_by: str = 'relevance',
        format: str = 'llm_optimized',
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """Search PubMed."""
        self._check_format(format)
        result = self.fetcher.search(query, max_results, days_back, sort_by, cancel_token=cancel_token)

        open_access: Dict[str, OpenAccessInfo] = {}
        downloads = None
        if self.config.auto_download and result.articles:
            open_access, downloads = self._auto_fulltext(result.articles, cancel_token)

        response: Dict[str, Any] = {
            'success': True,
            'query': result.query,
            'total_count': result.total_count,
            'returned': len(result.articles),
            'articles': format_articles(result.articles, format, self.config.abstract_max_chars, open_access),
        }
        if downloads is not None:
            response['downloads'] = downloads
        export = self._maybe_export(result.articles)
        if export is not None:
            response['export'] = export
        return response

    @operation
    def get_details(
        self,
        pmids: Sequence[str],
        include_full_text: bool = False,
        format: str = 'llm_optimized',
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Metadata for up to 20 PMIDs.

        include_full_text adds the long-form text abstract and, when full-text
        mode is on, open-access detection (plus download in auto mode).
        """
        self._check_format(format)
        pmids = self._check_ids(pmids)
        articles = self.fetcher.get_articles(pmids, cancel_token=cancel_token)
        found = [a for a in articles if a is not None]

        if include_full_text or self.config.abstract_mode == 'deep':
            for article in found:
                article.full_abstract = self.fetcher.fetch_full_abstract(article.pmid, cancel_token)

        open_access: Dict[str, OpenAccessInfo] = {}
        response: Dict[str, Any] = {'success': True}
        if include_full_text and self.config.fulltext_enabled and found:
            if self.config.auto_download:
                open_access, response['downloads'] = self._auto_fulltext(found, cancel_token)
            else:
                open_access = {i.pmid: i for i in self.resolver.resolve_many(found, cancel_token)}

        response.update({
            'requested': len(pmids),
            'returned': len(found),
            'not_found': [p for p, a in zip(pmids, articles) if a is None],
            'articles': format_articles(found, format, self.config.abstract_max_chars, open_access),
        })
        export = self._maybe_export(found)
        if export is not None:
            response['export'] = export
        return response

    @operation
    def extract_key_info(
        self,
        pmid: str,
        sections: Optional[Sequence[str]] = None,
        max_chars: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Selected parts of one article (basic info, authors, methods, ...)."""
        pmid = self._check_ids([pmid], limit=1)[0]
        article = self.fetcher.get_articles([pmid])[0]
        if article is None:
            return _failure(f"PMID {pmid} not found", "NotFound", pmid=pmid)
        info = extract_key_info(article, sections or KEY_INFO_SECTIONS, max_chars or self.config.abstract_max_chars)
        return {'success': True, **info}

    @operation
    def cross_reference(
        self,
        pmid: str,
        reference_type: str = 'similar',
        max_results: int = 10,
        format: str = 'concise',
    ) -> Dict[str, Any]:
        """Related articles: similar, citing, references, or similar reviews."""
        self._check_format(format)
        pmid = self._check_ids([pmid], limit=1)[0]
        if reference_type not in REFERENCE_TYPES:
            raise ValueError(f"Unknown reference type '{reference_type}', expected one of {', '.join(REFERENCE_TYPES)}")

        if reference_type == 'reviews':
            related = self.fetcher.find_related(pmid, 'similar', max_results * 3)
            related = [a for a in related if any('review' in t.lower() for t in a.publication_types)]
            related = related[:max_results]
        else:
            related = self.fetcher.find_related(pmid, reference_type, max_results)

        return {
            'success': True,
            'pmid': pmid,
            'reference_type': reference_type,
            'returned': len(related),
            'articles': format_articles(related, format, self.config.abstract_max_chars),
        }

    @operation
    def batch_query(self, pmids: Sequence[str], format: str = 'concise') -> Dict[str, Any]:
        """Metadata for up to 20 PMIDs in one of the output formats."""
        self._check_format(format)
        pmids = self._check_ids(pmids)
        articles = self.fetcher.get_articles(pmids)
        found = [a for a in articles if a is not None]
        return {
            'success': True,
            'format': format,
            'requested': len(pmids),
            'returned': len(found),
            'not_found': [p for p, a in zip(pmids, articles) if a is None],
            'articles': format_articles(found, format, self.config.abstract_max_chars),
        }

    @operation
    def detect_fulltext(
        self,
        pmids: Sequence[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """Open-access status for up to 20 PMIDs."""
        self._require_fulltext()
        pmids = self._check_ids(pmids)
        articles = self.fetcher.get_articles(pmids, cancel_token=cancel_token)
        found = [a for a in articles if a is not None]
        infos = self.resolver.resolve_many(found, cancel_token)
        return {
            'success': True,
            'checked': len(infos),
            'open_access': sum(1 for i in infos if i.is_open_access),
            'not_found': [p for p, a in zip(pmids, articles) if a is None],
            'results': [i.to_dict() for i in infos],
        }

    @operation
    def download_fulltext(
        self,
        pmid: str,
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """Resolve and download the open-access full text of one article."""
        self._require_fulltext()
        pmid = self._check_ids([pmid], limit=1)[0]

        if not force:
            existing = self.orchestrator.get_record(pmid)
            if existing is not None:
                outcome = self.orchestrator.download(pmid, existing.url, existing.sources)
                return outcome.to_dict()

        article = self.fetcher.get_articles([pmid], cancel_token=cancel_token)[0]
        if article is None:
            return _failure(f"PMID {pmid} not found", "NotFound", pmid=pmid)

        info = self.resolver.resolve(article, cancel_token)
        if not info.is_open_access:
            return _failure("No open-access version found", "NotOpenAccess",
                            pmid=pmid, doi=article.doi, pmcid=article.pmcid)

        outcome = self.orchestrator.download(pmid, info.download_url, info.sources, force, cancel_token)
        return outcome.to_dict()

    @operation
    def batch_download(
        self,
        pmids: Sequence[str],
        human_like: bool = True,
        force: bool = False,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Download open-access full text for up to 10 PMIDs, one at a time.

        Args:
            human_like: Pace downloads with random delays (False = no delays)
            timeout: Overall deadline in seconds for the whole batch
        """
        self._require_fulltext()
        pmids = self._check_ids(pmids, limit=self.scheduler.max_batch_size)
        if cancel_token is None and timeout:
            cancel_token = CancellationToken.with_timeout(timeout)

        articles = self.fetcher.get_articles(pmids, cancel_token=cancel_token)
        found = [a for a in articles if a is not None]
        infos = self.resolver.resolve_many(found, cancel_token)
        oa_items = [i for i in infos if i.is_open_access]

        outcomes = self.scheduler.run(
            oa_items,
            force=force,
            cancel_token=cancel_token,
            pacing=None if human_like else NoPacing(),
        )
        downloaded = sum(1 for o in outcomes if o.success)
        return {
            'success': True,
            'requested': len(pmids),
            'open_access': len(oa_items),
            'downloaded': downloaded,
            'failed': len(outcomes) - downloaded,
            'not_found': [p for p, a in zip(pmids, articles) if a is None],
            'not_open_access': [i.pmid for i in infos if not i.is_open_access],
            'results': [o.to_dict() for o in outcomes],
        }

    @operation
    def system_check(self) -> Dict[str, Any]:
        """Platform, download tools and active modes."""
        report = system_check()
        downloader = self.orchestrator.downloader
        report.update({
            'success': True,
            'version': __version__,
            'active_tool': downloader.name if downloader else None,
            'cache_dir': str(self.config.cache_dir),
            'modes': {
                'abstract': self.config.abstract_mode,
                'fulltext': self.config.fulltext_mode,
                'export': self.config.export_enabled,
            },
            'api_key_configured': bool(self.config.api_key),
        })
        return report

    @operation
    def cache_info(self) -> Dict[str, Any]:
        """Statistics for every cache tier."""
        return {
            'success': True,
            'memory': self.memory_cache.get_stats(),
            'papers': self.record_store.get_stats(),
            'fulltext': self.orchestrator.get_stats(),
            'exports': self.exporter.get_stats(),
            'rate_limiter': self.rate_limiter.get_stats(),
            'resolver': self.resolver.get_stats(),
            'upstream_requests': self.client.request_count,
        }

    @operation
    def clear_cache(self, target: str = 'memory') -> Dict[str, Any]:
        """
        Clear a cache tier.

        target: memory, papers, fulltext, exports, all, or expired (remove
        only expired records and stale ledger entries from every tier)
        """
        if target not in CACHE_TARGETS:
            raise ValueError(f"Unknown cache target '{target}', expected one of {', '.join(CACHE_TARGETS)}")

        cleared: Dict[str, Any] = {}
        if target == 'expired':
            cleared['memory'] = self.memory_cache.purge_expired()
            cleared['papers'] = self.record_store.clean_expired()
            cleared['fulltext'] = self.orchestrator.clean_expired()
            cleared['exports'] = self.exporter.clean_stale()
        else:
            if target in ('memory', 'all'):
                cleared['memory'] = self.memory_cache.clear()
            if target in ('papers', 'all'):
                cleared['papers'] = self.record_store.clear()
            if target in ('fulltext', 'all'):
                cleared['fulltext'] = self.orchestrator.clear()
            if target in ('exports', 'all'):
                cleared['exports'] = self.exporter.clear()

        logger.info(f"Cleared cache target '{target}': {cleared}")
        return {'success': True, 'target': target, 'cleared': cleared}

    @operation
    def export_status(self) -> Dict[str, Any]:
        """Citation export mode and export tier statistics."""
        return {
            'success': True,
            'enabled': self.config.export_enabled,
            **self.exporter.get_stats(),
        }

    def close(self):
        """Release HTTP sessions."""
        self.session.close()
        self.client.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
