"""
PubMed E-utilities client.

Wraps esearch, esummary, efetch and elink. Every request carries the
`tool`, `email` and (optionally) `api_key` parameters NCBI asks for, and
passes through the shared RateLimiter.

Docs: https://www.ncbi.nlm.nih.gov/books/NBK25501/
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..cancellation import CancellationToken
from ..exceptions import UpstreamError
from ..models import Article
from .base_client import APIConfig, BaseAPIClient

logger = logging.getLogger(__name__)

SORT_MAP = {
    'relevance': 'relevance',
    'date': 'pub_date',
    'pub_date': 'pub_date',
    'pubdate': 'pub_date',
    'author': 'Author',
    'journal': 'JournalName',
}

LINK_TYPES = {
    'similar': 'pubmed_pubmed',
    'citing': 'pubmed_pubmed_citedin',
    'references': 'pubmed_pubmed_refs',
}


def _article_ids(summary: Dict[str, Any]) -> Dict[str, str]:
    ids = {}
    for entry in summary.get('articleids') or []:
        idtype = entry.get('idtype')
        value = entry.get('value')
        if idtype and value and idtype not in ids:
            ids[idtype] = value
    return ids


def _clean_doi(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    match = re.search(r'(10\.\d{4,9}/\S+)', value)
    return match.group(1).rstrip('.;,') if match else None


def parse_summary(pmid: str, summary: Dict[str, Any]) -> Article:
    """Map one esummary document onto an Article."""
    ids = _article_ids(summary)
    pmcid = ids.get('pmc')
    if pmcid and not pmcid.upper().startswith('PMC'):
        pmcid = f"PMC{pmcid}"

    return Article(
        pmid=str(pmid),
        title=summary.get('title') or 'No title',
        authors=[a['name'] for a in summary.get('authors') or [] if a.get('name')],
        journal=summary.get('fulljournalname') or summary.get('source') or '',
        publication_date=summary.get('pubdate') or summary.get('epubdate') or '',
        volume=summary.get('volume') or '',
        issue=summary.get('issue') or '',
        pages=summary.get('pages') or '',
        doi=_clean_doi(ids.get('doi')) or _clean_doi(summary.get('elocationid')),
        pmcid=pmcid,
        publication_types=list(summary.get('pubtype') or []),
    )


def _text(element: Optional[ET.Element]) -> str:
    if element is None:
        return ''
    return ' '.join(''.join(element.itertext()).split())


def parse_efetch_xml(xml_text: str) -> Dict[str, Dict[str, Any]]:
    """
    Extract abstracts, MeSH terms and keywords from an efetch XML payload.

    Returns:
        Dict mapping PMID to {'abstract', 'mesh_terms', 'keywords'}
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise UpstreamError(f"Invalid efetch XML: {e}")

    details = {}
    for article in root.iter('PubmedArticle'):
        citation = article.find('MedlineCitation')
        if citation is None:
            continue
        pmid = _text(citation.find('PMID'))
        if not pmid:
            continue

        parts = []
        for node in citation.findall('./Article/Abstract/AbstractText'):
            text = _text(node)
            if not text:
                continue
            label = node.get('Label')
            parts.append(f"{label}: {text}" if label else text)

        details[pmid] = {
            'abstract': '\n'.join(parts),
            'mesh_terms': [
                _text(d) for d in citation.findall('./MeshHeadingList/MeshHeading/DescriptorName')
            ],
            'keywords': [_text(k) for k in citation.findall('./KeywordList/Keyword') if _text(k)],
        }
    return details


class PubMedClient(BaseAPIClient):
    """Client for the NCBI E-utilities endpoints used by the gateway."""

    def __init__(
        self,
        base_url: str = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils",
        tool: str = "pubmed_gateway",
        email: str = "user@example.com",
        api_key: Optional[str] = None,
        config: Optional[APIConfig] = None,
        **kwargs,
    ):
        self.base_url = base_url.rstrip('/')
        self.tool = tool
        self.email = email
        self.api_key = api_key
        config = config or APIConfig()
        config.default_params = {
            **config.default_params,
            'tool': tool,
            'email': email,
        }
        if api_key:
            config.default_params['api_key'] = api_key
        super().__init__(config, **kwargs)

    def _setup_session(self):
        self.session.headers.update({
            'User-Agent': f"{self.tool} (mailto:{self.email})",
            'Accept': 'application/json, text/xml;q=0.9, */*;q=0.8',
        })

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint}"

    def esearch(
        self,
        term: str,
        retmax: int = 20,
        sort: str = 'relevance',
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[List[str], int]:
        """
        Search PubMed.

        Returns:
            (PMIDs in upstream order, total match count)
        """
        params = {
            'db': 'pubmed',
            'term': term,
            'retmax': retmax,
            'retmode': 'json',
            'sort': SORT_MAP.get(sort, 'relevance'),
        }
        data = self._get_json(self._url('esearch.fcgi'), params, cancel_token)
        result = data.get('esearchresult')
        if result is None:
            raise UpstreamError(f"Malformed esearch response: {str(data)[:200]}")
        if result.get('ERROR'):
            raise UpstreamError(f"esearch error: {result['ERROR']}")

        ids = [str(i) for i in result.get('idlist', [])]
        count = int(result.get('count', len(ids)) or 0)
        logger.debug(f"esearch '{term[:60]}' -> {len(ids)} of {count}")
        return ids, count

    def esummary(
        self,
        pmids: Sequence[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Article]:
        """
        Fetch summaries for many PMIDs in one call.

        Returns:
            Dict of PMID to Article; unknown PMIDs are left out
        """
        if not pmids:
            return {}
        params = {
            'db': 'pubmed',
            'id': ','.join(str(p) for p in pmids),
            'retmode': 'json',
        }
        data = self._get_json(self._url('esummary.fcgi'), params, cancel_token)
        if 'result' not in data:
            raise UpstreamError(f"Malformed esummary response: {str(data)[:200]}")

        result = data['result']
        articles = {}
        for pmid in pmids:
            summary = result.get(str(pmid))
            if not summary or 'error' in summary:
                logger.debug(f"No summary for PMID {pmid}")
                continue
            articles[str(pmid)] = parse_summary(str(pmid), summary)
        return articles

    def efetch_details(
        self,
        pmids: Sequence[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """Abstracts, MeSH terms and keywords from efetch XML."""
        if not pmids:
            return {}
        params = {
            'db': 'pubmed',
            'id': ','.join(str(p) for p in pmids),
            'rettype': 'abstract',
            'retmode': 'xml',
        }
        response = self._make_request(self._url('efetch.fcgi'), params, cancel_token)
        return parse_efetch_xml(response.text)

    def efetch_text(
        self,
        pmid: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """Plain-text abstract record for one PMID."""
        params = {
            'db': 'pubmed',
            'id': str(pmid),
            'rettype': 'abstract',
            'retmode': 'text',
        }
        response = self._make_request(self._url('efetch.fcgi'), params, cancel_token)
        return response.text.strip()

    def elink(
        self,
        pmid: str,
        link_type: str = 'similar',
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[str]:
        """PMIDs linked to `pmid` (similar, citing or references)."""
        linkname = LINK_TYPES.get(link_type, link_type)
        params = {
            'dbfrom': 'pubmed',
            'db': 'pubmed',
            'id': str(pmid),
            'linkname': linkname,
            'retmode': 'json',
        }
        data = self._get_json(self._url('elink.fcgi'), params, cancel_token)
        linked = []
        for linkset in data.get('linksets') or []:
            for db in linkset.get('linksetdbs') or []:
                if db.get('linkname') != linkname:
                    continue
                linked.extend(str(i) for i in db.get('links') or [] if str(i) != str(pmid))
        return linked
