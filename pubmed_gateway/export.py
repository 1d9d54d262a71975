"""
Citation export tier.

When export mode is on, every article returned by search or details is also
written as `<pmid>.ris` and `<pmid>.bib` into the export directory, ready for
import into EndNote, Zotero or a LaTeX bibliography. Exports are tracked in
the directory's CacheLedger like the other tiers.
"""

import logging
import re
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from bibtexparser.bibdatabase import BibDatabase
from bibtexparser.bwriter import BibTexWriter

from .caching import CacheLedger, safe_identifier
from .models import Article

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('ris', 'bibtex')


def _bibtex_escape(value: str) -> str:
    return re.sub(r'([&%$#_{}])', r'\\\1', value or '')


def _to_bibtex_author(name: str) -> str:
    """PubMed 'Smith JA' -> 'Smith, J. A.'"""
    parts = name.split()
    if len(parts) >= 2 and parts[-1].isupper() and len(parts[-1]) <= 4:
        initials = " ".join(f"{c}." for c in parts[-1])
        return f"{' '.join(parts[:-1])}, {initials}"
    return name


def citation_key(article: Article) -> str:
    first = article.authors[0].split()[0] if article.authors else "pmid"
    first = re.sub(r'[^A-Za-z]', '', first) or "pmid"
    return f"{first}{article.year}_{article.pmid}"


def to_bibtex(article: Article) -> str:
    """Single @article entry."""
    entry = {
        'ENTRYTYPE': 'article',
        'ID': citation_key(article),
        'title': _bibtex_escape(article.title),
        'author': ' and '.join(_to_bibtex_author(a) for a in article.authors),
        'journal': _bibtex_escape(article.journal),
        'year': article.year,
        'volume': article.volume,
        'number': article.issue,
        'pages': article.pages,
        'doi': article.doi or '',
        'pmid': article.pmid,
        'url': article.url,
    }
    if article.abstract:
        entry['abstract'] = _bibtex_escape(article.abstract)
    if article.keywords:
        entry['keywords'] = ', '.join(article.keywords)
    entry = {k: v for k, v in entry.items() if v}

    db = BibDatabase()
    db.entries = [entry]
    writer = BibTexWriter()
    writer.display_order = ['author', 'title', 'journal', 'year', 'volume', 'number', 'pages', 'doi']
    writer.indent = '  '
    return writer.write(db)


def to_ris(article: Article) -> str:
    """RIS record (journal article)."""
    lines = ["TY  - JOUR"]
    lines.append(f"TI  - {article.title}")
    lines.extend(f"AU  - {author}" for author in article.authors)
    if article.journal:
        lines.append(f"JO  - {article.journal}")
    if article.year:
        lines.append(f"PY  - {article.year}")
    if article.publication_date:
        lines.append(f"DA  - {article.publication_date}")
    if article.volume:
        lines.append(f"VL  - {article.volume}")
    if article.issue:
        lines.append(f"IS  - {article.issue}")
    if article.pages:
        start, _, end = article.pages.partition('-')
        lines.append(f"SP  - {start}")
        if end:
            lines.append(f"EP  - {end}")
    if article.doi:
        lines.append(f"DO  - {article.doi}")
    if article.abstract:
        lines.append(f"AB  - {' '.join(article.abstract.split())}")
    lines.extend(f"KW  - {kw}" for kw in article.keywords + article.mesh_terms)
    lines.append(f"AN  - {article.pmid}")
    lines.append(f"UR  - {article.url}")
    lines.append("DB  - PubMed")
    lines.append("ER  - ")
    return "\n".join(lines) + "\n"


class CitationExporter:
    """Writes RIS and BibTeX files per article into the export tier."""

    def __init__(
        self,
        export_dir: Union[str, Path],
        clock: Callable[[], float] = time.time,
    ):
        self.export_dir = Path(export_dir).expanduser()
        self.export_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self.ledger = CacheLedger(self.export_dir)
        self._lock = threading.Lock()
        self._last_export: Optional[str] = None

    def export_article(self, article: Article) -> Dict[str, Any]:
        """Write both formats for one article."""
        base = safe_identifier(article.pmid)
        ris_path = self.export_dir / f"{base}.ris"
        bib_path = self.export_dir / f"{base}.bib"

        with self._lock:
            try:
                ris_path.write_text(to_ris(article), encoding='utf-8')
                bib_path.write_text(to_bibtex(article), encoding='utf-8')
                size = ris_path.stat().st_size + bib_path.stat().st_size
            except OSError as e:
                logger.error(f"Export failed for PMID {article.pmid}: {e}")
                return {'pmid': article.pmid, 'title': article.title, 'success': False, 'error': str(e)}

            now = self._clock()
            self.ledger.upsert(article.pmid, {
                'cached_at': now,
                'title': article.title,
                'formats': {'ris': ris_path.name, 'bibtex': bib_path.name},
                'size_bytes': size,
            })
            self._last_export = datetime.fromtimestamp(now).isoformat()

        return {
            'pmid': article.pmid,
            'title': article.title,
            'success': True,
            'formats': {'ris': str(ris_path), 'bibtex': str(bib_path)},
        }

    def export(self, articles: Sequence[Optional[Article]]) -> Dict[str, Any]:
        """Export many articles; failures are reported per article."""
        results: List[Dict[str, Any]] = [self.export_article(a) for a in articles if a is not None]
        exported = sum(1 for r in results if r['success'])
        logger.info(f"Exported {exported}/{len(results)} citations to {self.export_dir}")
        return {
            'exported': exported,
            'failed': len(results) - exported,
            'directory': str(self.export_dir),
            'results': results,
        }

    def clean_stale(self) -> int:
        """Drop ledger entries whose export files are gone."""
        removed = 0
        with self._lock:
            for pmid, entry in self.ledger.items():
                files = (entry.get('formats') or {}).values()
                if not files or not all((self.export_dir / f).exists() for f in files):
                    self.ledger.remove(pmid, save=False)
                    removed += 1
            self.ledger.mark_cleanup(save=False)
            self.ledger.save()
        return removed

    def clear(self) -> int:
        count = 0
        with self._lock:
            for path in list(self.export_dir.glob("*.ris")) + list(self.export_dir.glob("*.bib")):
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Could not delete export file {path}: {e}")
                    continue
                count += 1
            self.ledger.clear()
        return count

    def get_stats(self) -> Dict[str, Any]:
        ledger_stats = self.ledger.stats
        return {
            'directory': str(self.export_dir),
            'total_exports': ledger_stats.get('total_entries', 0),
            'ris_files': len(list(self.export_dir.glob("*.ris"))),
            'bibtex_files': len(list(self.export_dir.glob("*.bib"))),
            'total_bytes': ledger_stats.get('total_bytes', 0),
            'last_export': self._last_export,
            'last_cleanup': ledger_stats.get('last_cleanup'),
            'supported_formats': list(SUPPORTED_FORMATS),
        }
