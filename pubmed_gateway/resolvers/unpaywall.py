"""
Unpaywall Source

Finds legal open-access copies of articles by DOI using the Unpaywall API.

API: https://unpaywall.org/products/api
Rate limit: 100,000 requests/day (free for research)
No authentication required, just email address

Example:
    GET https://api.unpaywall.org/v2/10.1038/nature12373?email=YOUR_EMAIL

    Returns:
    {
        "doi": "10.1038/nature12373",
        "is_oa": true,
        "best_oa_location": {"url_for_pdf": "https://...", ...},
        "oa_locations": [...]
    }
"""

import logging
from typing import Optional

import requests

from ..exceptions import ResolverError
from ..models import Article
from .base import OpenAccessSource

logger = logging.getLogger(__name__)


class UnpaywallSource(OpenAccessSource):
    """DOI registry lookup via Unpaywall."""

    def __init__(
        self,
        email: str = "user@example.com",
        session: Optional[requests.Session] = None,
        timeout: float = 10,
    ):
        """
        Args:
            email: Contact email Unpaywall requires on every request
        """
        super().__init__(name="Unpaywall", timeout=timeout)
        self.email = email
        self.session = session or requests.Session()
        self.api_base = "https://api.unpaywall.org/v2"

    def can_handle(self, article: Article) -> bool:
        return bool(article.doi and article.doi.startswith("10."))

    def _find_pdf_url(self, article: Article, timeout: float, cancel_token=None) -> Optional[str]:
        api_url = f"{self.api_base}/{article.doi}"
        logger.debug(f"Querying Unpaywall: {api_url}")

        response = self.session.get(
            api_url,
            params={"email": self.email},
            timeout=timeout,
            headers={"User-Agent": f"pubmed_gateway (mailto:{self.email})"},
        )
        if response.status_code == 404:
            logger.debug(f"DOI not in Unpaywall: {article.doi}")
            return None
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise ResolverError(f"Invalid Unpaywall response: {e}")
        if not isinstance(data, dict):
            raise ResolverError(f"Unexpected Unpaywall response for {article.doi}")

        if not data.get("is_oa"):
            return None

        best = data.get("best_oa_location") or {}
        if isinstance(best, dict) and best.get("url_for_pdf"):
            return best["url_for_pdf"]

        for location in data.get("oa_locations") or []:
            if isinstance(location, dict) and location.get("url_for_pdf"):
                return location["url_for_pdf"]

        logger.debug(f"Unpaywall lists {article.doi} as OA but has no PDF URL")
        return None
