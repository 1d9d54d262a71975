"""
PubMed Gateway - cached PubMed metadata with open-access full text

A Python package for querying PubMed through:
- Rate-limited access to the NCBI E-utilities API
- In-memory search cache and per-record disk cache with expiry
- Open-access detection via PMC, Unpaywall and publisher landing pages
- Paced full-text downloads through curl, wget or PowerShell
- RIS / BibTeX citation export
"""

from pubmed_gateway.__version__ import __version__
from pubmed_gateway.cancellation import CancellationToken
from pubmed_gateway.config import GatewayConfig, load_config
from pubmed_gateway.exceptions import (
    CancelledError,
    DownloadError,
    FileTooLargeError,
    FullTextDisabledError,
    GatewayError,
    RequestLimitError,
    UpstreamError,
)
from pubmed_gateway.fetcher import MetadataFetcher
from pubmed_gateway.gateway import PubMedGateway
from pubmed_gateway.models import (
    Article,
    DownloadOutcome,
    DownloadRecord,
    DownloadState,
    OpenAccessInfo,
    SearchResult,
)
from pubmed_gateway.rate_limit import RateLimiter

__all__ = [
    "__version__",
    "PubMedGateway",
    "GatewayConfig",
    "load_config",
    "MetadataFetcher",
    "RateLimiter",
    "CancellationToken",
    "Article",
    "SearchResult",
    "OpenAccessInfo",
    "DownloadRecord",
    "DownloadOutcome",
    "DownloadState",
    "GatewayError",
    "UpstreamError",
    "DownloadError",
    "FileTooLargeError",
    "FullTextDisabledError",
    "RequestLimitError",
    "CancelledError",
]
