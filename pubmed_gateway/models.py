"""Data types shared across the gateway."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class Article:
    """Bibliographic metadata for one PubMed record."""

    pmid: str
    title: str = "No title"
    authors: List[str] = field(default_factory=list)
    journal: str = ""
    publication_date: str = ""
    volume: str = ""
    issue: str = ""
    pages: str = ""
    abstract: str = ""
    doi: Optional[str] = None
    pmcid: Optional[str] = None
    publication_types: List[str] = field(default_factory=list)
    mesh_terms: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    full_abstract: Optional[str] = None

    @property
    def url(self) -> str:
        return f"https://pubmed.ncbi.nlm.nih.gov/{self.pmid}/"

    @property
    def year(self) -> str:
        return self.publication_date[:4] if self.publication_date else ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['url'] = self.url
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Article":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known['pmid'] = str(known['pmid'])
        return cls(**known)


@dataclass
class SearchResult:
    """Articles returned for one search request."""

    query: str
    total_count: int
    articles: List[Article] = field(default_factory=list)

    @property
    def pmids(self) -> List[str]:
        return [a.pmid for a in self.articles]


@dataclass
class OpenAccessInfo:
    """
    Outcome of open-access resolution for one article.

    `download_url` is set exactly when `is_open_access` is True.
    """

    pmid: str
    is_open_access: bool = False
    sources: List[str] = field(default_factory=list)
    download_url: Optional[str] = None
    pmcid: Optional[str] = None
    doi: Optional[str] = None

    def __post_init__(self):
        if self.is_open_access and not self.download_url:
            raise ValueError(f"Open-access result for {self.pmid} needs a download URL")
        if not self.is_open_access and self.download_url:
            raise ValueError(f"Closed result for {self.pmid} must not carry a download URL")

    @classmethod
    def not_found(cls, article: Article) -> "OpenAccessInfo":
        return cls(pmid=article.pmid, pmcid=article.pmcid, doi=article.doi)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DownloadRecord:
    """Ledger entry for a saved full-text file. Never mutated after creation."""

    pmid: str
    url: str
    filename: str
    size_bytes: int
    downloaded_at: float
    sources: tuple = ()
    tool: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['sources'] = list(self.sources)
        return data

    @classmethod
    def from_dict(cls, pmid: str, data: Dict[str, Any]) -> "DownloadRecord":
        return cls(
            pmid=str(pmid),
            url=data.get('url', ''),
            filename=data['filename'],
            size_bytes=int(data.get('size_bytes', 0)),
            downloaded_at=float(data.get('downloaded_at', data.get('cached_at', 0))),
            sources=tuple(data.get('sources', ())),
            tool=data.get('tool', ''),
        )


class DownloadState(str, Enum):
    """Lifecycle of one download attempt."""

    PENDING = "pending"
    PROBING_SIZE = "probing_size"
    ABORTED_TOO_LARGE = "aborted_too_large"
    FETCHING = "fetching"
    FAILED = "failed"
    SAVED = "saved"


@dataclass
class DownloadOutcome:
    """Result of a download attempt."""

    pmid: str
    state: DownloadState = DownloadState.PENDING
    url: Optional[str] = None
    record: Optional[DownloadRecord] = None
    local_path: Optional[str] = None
    error: Optional[str] = None
    diagnostic: Optional[str] = None
    from_cache: bool = False

    @property
    def success(self) -> bool:
        return self.state == DownloadState.SAVED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'pmid': self.pmid,
            'success': self.success,
            'state': self.state.value,
            'url': self.url,
            'local_path': self.local_path,
            'from_cache': self.from_cache,
        }
        if self.record is not None:
            data['size_bytes'] = self.record.size_bytes
            data['sources'] = list(self.record.sources)
            data['tool'] = self.record.tool
        if self.error:
            data['error'] = self.error
        if self.diagnostic:
            data['diagnostic'] = self.diagnostic
        return data

    def __repr__(self):
        if self.success and self.from_cache:
            return f"⊙ {self.pmid} (already downloaded)"
        if self.success:
            return f"✓ {self.pmid} → {self.local_path}"
        return f"✗ {self.pmid} ({self.error})"
