"""
OpenAccessResolver - cascade over open-access sources

Sources are probed in a fixed order and the first one to report a PDF URL
wins; later sources are never contacted for that article. A source that
errors or times out counts as "not found" and the cascade moves on.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..cancellation import CancellationToken
from ..models import Article, OpenAccessInfo
from .base import OpenAccessSource

logger = logging.getLogger(__name__)


class OpenAccessResolver:
    """Short-circuiting cascade over OpenAccessSource instances."""

    def __init__(self, sources: Sequence[OpenAccessSource]):
        self.sources: List[OpenAccessSource] = list(sources)

    def resolve(
        self,
        article: Article,
        cancel_token: Optional[CancellationToken] = None,
    ) -> OpenAccessInfo:
        """Open-access status for one article."""
        for source in self.sources:
            if cancel_token is not None and cancel_token.is_cancelled():
                logger.info(f"Resolution cancelled for PMID {article.pmid}")
                break
            url = source.probe(article, cancel_token)
            if url:
                return OpenAccessInfo(
                    pmid=article.pmid,
                    is_open_access=True,
                    sources=[source.name],
                    download_url=url,
                    pmcid=article.pmcid,
                    doi=article.doi,
                )

        logger.debug(f"No open-access copy found for PMID {article.pmid}")
        return OpenAccessInfo.not_found(article)

    def resolve_many(
        self,
        articles: Sequence[Article],
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[OpenAccessInfo]:
        """Resolve sequentially, in order."""
        return [self.resolve(article, cancel_token) for article in articles]

    def get_stats(self) -> Dict[str, Dict[str, int]]:
        return {source.name: source.get_stats() for source in self.sources}
