"""
PubMed Central Source

Checks whether an article is in the PMC Open Access subset.

The PMCID comes from the article metadata when esummary supplied it, and
from the PMC ID converter otherwise. Presence is confirmed with the PMC OA
web service, which answers with a <record> for open-access articles and an
<error code="idIsNotOpenAccess"> otherwise.

APIs:
    https://www.ncbi.nlm.nih.gov/pmc/tools/id-converter-api/
    https://www.ncbi.nlm.nih.gov/pmc/tools/oa-service/
"""

import logging
import xml.etree.ElementTree as ET
from typing import Optional

import requests

from ..cancellation import CancellationToken
from ..exceptions import ResolverError
from ..models import Article
from ..rate_limit import RateLimiter
from .base import OpenAccessSource

logger = logging.getLogger(__name__)

IDCONV_URL = "https://www.ncbi.nlm.nih.gov/pmc/utils/idconv/v1.0/"
OA_SERVICE_URL = "https://www.ncbi.nlm.nih.gov/pmc/utils/oa/oa.fcgi"
PDF_URL_TEMPLATE = "https://europepmc.org/backend/ptpmcrender.fcgi?accid={pmcid}&blobtype=pdf"


class PMCSource(OpenAccessSource):
    """Repository presence check against PubMed Central."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        tool: str = "pubmed_gateway",
        email: str = "user@example.com",
        timeout: float = 10,
    ):
        super().__init__(name="PMC", timeout=timeout)
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter
        self.tool = tool
        self.email = email

    def can_handle(self, article: Article) -> bool:
        return bool(article.pmcid or article.pmid)

    def _get(self, url: str, params: dict, timeout: float,
             cancel_token: Optional[CancellationToken] = None) -> requests.Response:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire(cancel_token)
        response = self.session.get(
            url,
            params={**params, 'tool': self.tool, 'email': self.email},
            timeout=timeout,
        )
        response.raise_for_status()
        return response

    def lookup_pmcid(self, pmid: str, timeout: float,
                     cancel_token: Optional[CancellationToken] = None) -> Optional[str]:
        """PMCID for a PMID via the ID converter, or None."""
        response = self._get(IDCONV_URL, {'ids': pmid, 'format': 'json'}, timeout, cancel_token)
        try:
            data = response.json()
        except ValueError as e:
            raise ResolverError(f"Invalid idconv response: {e}")
        if not isinstance(data, dict):
            raise ResolverError("Unexpected idconv response layout")
        records = data.get('records') or []
        if not isinstance(records, list):
            raise ResolverError("Unexpected idconv records layout")
        for record in records:
            if isinstance(record, dict) and record.get('pmcid') and not record.get('errmsg'):
                return record['pmcid']
        return None

    def is_open_access(self, pmcid: str, timeout: float,
                       cancel_token: Optional[CancellationToken] = None) -> bool:
        """True if the OA service has a record for the PMCID."""
        response = self._get(OA_SERVICE_URL, {'id': pmcid}, timeout, cancel_token)
        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as e:
            raise ResolverError(f"Invalid OA service response: {e}")

        error = root.find('error')
        if error is not None:
            logger.debug(f"PMC OA service: {pmcid} -> {error.get('code')}")
            return False
        return root.find('./records/record') is not None

    def _find_pdf_url(self, article: Article, timeout: float,
                      cancel_token: Optional[CancellationToken] = None) -> Optional[str]:
        pmcid = article.pmcid or self.lookup_pmcid(article.pmid, timeout, cancel_token)
        if not pmcid:
            return None
        article.pmcid = pmcid
        if not self.is_open_access(pmcid, timeout, cancel_token):
            return None
        return PDF_URL_TEMPLATE.format(pmcid=pmcid)
