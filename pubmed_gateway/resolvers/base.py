"""
Base Open-Access Source

Abstract base class for the sources the OpenAccessResolver consults.
Each source answers one question: "do you have a free PDF for this
article, and where?"

This is the ONLY contract between the resolver and sources.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

import requests

from ..cancellation import CancellationToken
from ..exceptions import CancelledError, ResolverError
from ..models import Article

logger = logging.getLogger(__name__)


class OpenAccessSource(ABC):
    """
    One open-access detection source.

    Knows how to:
    - Decide whether it can say anything about an article
    - Probe its backend for a PDF URL

    Does NOT:
    - Download files (DownloadOrchestrator does that)
    - Decide probe order (OpenAccessResolver does that)
    """

    def __init__(self, name: str, timeout: float = 10):
        """
        Args:
            name: Source name reported in OpenAccessInfo.sources
            timeout: Per-request timeout in seconds
        """
        self.name = name
        self.timeout = timeout
        self._stats = {
            'probed': 0,
            'found': 0,
            'not_found': 0,
            'errors': 0,
        }

    @abstractmethod
    def can_handle(self, article: Article) -> bool:
        """True if the article carries the identifier this source needs."""
        pass

    @abstractmethod
    def _find_pdf_url(
        self,
        article: Article,
        timeout: float,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[str]:
        """
        Look up a PDF URL.

        Sources that wait on a shared rate limiter pass cancel_token to it.

        Returns:
            URL of a freely available PDF, or None if the source has none

        Raises:
            ResolverError, requests.RequestException: When the probe fails
        """
        pass

    def probe(self, article: Article, cancel_token: Optional[CancellationToken] = None) -> Optional[str]:
        """
        Run the probe, treating every failure as "not found".

        Returns:
            PDF URL or None
        """
        if not self.can_handle(article):
            return None
        if cancel_token is not None and cancel_token.is_cancelled():
            return None

        timeout = self.timeout
        if cancel_token is not None:
            timeout = max(0.1, cancel_token.bound_timeout(timeout))

        self._stats['probed'] += 1
        try:
            url = self._find_pdf_url(article, timeout, cancel_token)
        except CancelledError:
            logger.debug(f"{self.name} probe cancelled for PMID {article.pmid}")
            return None
        except (requests.RequestException, ResolverError, ValueError) as e:
            logger.warning(f"{self.name} probe failed for PMID {article.pmid}: {e}")
            self._stats['errors'] += 1
            return None
        except Exception:
            logger.exception(f"{self.name} probe raised unexpectedly for PMID {article.pmid}")
            self._stats['errors'] += 1
            return None

        if url:
            self._stats['found'] += 1
            logger.info(f"{self.name}: open-access PDF for PMID {article.pmid}")
        else:
            self._stats['not_found'] += 1
            logger.debug(f"{self.name}: nothing for PMID {article.pmid}")
        return url

    def get_stats(self) -> Dict[str, int]:
        return self._stats.copy()

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.name}>"
