"""
Publisher Landing Page Source

Follows the DOI to the publisher's landing page and looks for a PDF link.
Heuristic and least reliable of the sources, so it runs last.

Tries in order of reliability:
1. citation_pdf_url / og:pdf meta tags
2. Links whose text reads like "PDF" / "Download PDF"
3. Common publisher PDF URL patterns
"""

import logging
import re
from typing import Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from ..models import Article
from .base import OpenAccessSource

logger = logging.getLogger(__name__)

PDF_META_NAMES = ("citation_pdf_url", "og:pdf")

PDF_TEXT_PATTERNS = [
    re.compile(r"^\s*PDF\s*$", re.I),
    re.compile(r"Download\s+PDF", re.I),
    re.compile(r"Full\s+Text\s+PDF", re.I),
    re.compile(r"View\s+PDF", re.I),
]

PDF_HREF_PATTERNS = [
    re.compile(r"/doi/pdf/", re.I),
    re.compile(r"/content/pdf/", re.I),
    re.compile(r"/fulltext\.pdf", re.I),
    re.compile(r"/article[^\"']*\.pdf", re.I),
    re.compile(r"\.pdf(\?|$)", re.I),
]


def find_pdf_link(html_content: str, base_url: str) -> Optional[str]:
    """Best PDF link on a landing page, made absolute against `base_url`."""
    if not html_content:
        return None

    soup = BeautifulSoup(html_content, "html.parser")

    for meta in soup.find_all("meta"):
        name = (meta.get("name") or meta.get("property") or "").lower()
        if name in PDF_META_NAMES and meta.get("content"):
            return urljoin(base_url, meta["content"].strip())

    links = soup.find_all("a", href=True)
    for link in links:
        link_text = link.get_text(strip=True)
        if any(p.search(link_text) for p in PDF_TEXT_PATTERNS):
            return urljoin(base_url, link["href"])

    for pattern in PDF_HREF_PATTERNS:
        for link in links:
            if pattern.search(link["href"]):
                return urljoin(base_url, link["href"])

    return None


class PublisherSource(OpenAccessSource):
    """Scrapes the DOI landing page for a PDF link."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        user_agent: str = "Mozilla/5.0",
        timeout: float = 10,
    ):
        super().__init__(name="Publisher", timeout=timeout)
        self.session = session or requests.Session()
        self.user_agent = user_agent

    def can_handle(self, article: Article) -> bool:
        return bool(article.doi)

    def get_landing_url(self, doi: str) -> str:
        return f"https://doi.org/{doi}"

    def _find_pdf_url(self, article: Article, timeout: float, cancel_token=None) -> Optional[str]:
        response = self.session.get(
            self.get_landing_url(article.doi),
            timeout=timeout,
            allow_redirects=True,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/pdf;q=0.9,*/*;q=0.8",
            },
        )
        response.raise_for_status()

        content_type = response.headers.get("Content-Type", "").lower()
        if "application/pdf" in content_type:
            return response.url

        return find_pdf_link(response.text, response.url)
