"""
Result shaping for gateway responses.

Three output formats:
- concise: citation-level fields only
- detailed: every metadata field, abstract truncated
- llm_optimized: nested layout with the abstract split into its labelled
  sections (BACKGROUND, METHODS, ...) when PubMed provides them
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from .models import Article, OpenAccessInfo

FORMATS = ('concise', 'detailed', 'llm_optimized')

KEY_INFO_SECTIONS = (
    'basic_info',
    'authors',
    'abstract_summary',
    'methods',
    'results',
    'conclusions',
    'keywords',
    'doi_link',
)

# Structured-abstract labels grouped under the key-info section they feed
SECTION_ALIASES = {
    'background': ('background', 'introduction', 'context', 'purpose', 'objective', 'objectives', 'aims', 'aim'),
    'methods': ('methods', 'method', 'materials and methods', 'design', 'setting', 'participants',
                'patients', 'study design', 'methodology'),
    'results': ('results', 'findings', 'main outcome measures', 'measurements'),
    'conclusions': ('conclusions', 'conclusion', 'interpretation', 'significance', 'implications'),
}

_INLINE_LABEL = re.compile(r'(?:^|\s)([A-Z][A-Z &/]{2,40}):\s')


def truncate_text(text: Optional[str], max_length: int) -> str:
    """Cut text to at most max_length characters, marking the cut with '...'."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max(0, max_length - 3)] + "..."


def extract_abstract_sections(abstract: Optional[str]) -> Dict[str, str]:
    """
    Split a structured abstract into {label: text}.

    Handles both one-label-per-line abstracts and labels inline in a single
    paragraph. Returns {} for unstructured abstracts.
    """
    if not abstract:
        return {}

    sections: Dict[str, str] = {}
    lines = [line.strip() for line in abstract.splitlines() if line.strip()]
    line_labels = [re.match(r'^([A-Z][A-Z &/]{1,40}):\s*(.*)$', line) for line in lines]
    if len(lines) > 1 and all(line_labels):
        for match in line_labels:
            label = match.group(1).strip().lower()
            sections[label] = (sections.get(label, '') + ' ' + match.group(2)).strip()
        return sections

    matches = list(_INLINE_LABEL.finditer(abstract))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(abstract)
        label = match.group(1).strip().lower()
        sections[label] = abstract[match.end():end].strip()
    return sections


def _grouped_section(sections: Dict[str, str], group: str) -> str:
    aliases = SECTION_ALIASES[group]
    return ' '.join(text for label, text in sections.items() if label in aliases)


def format_authors(authors: Sequence[str], limit: int = 3) -> str:
    if not authors:
        return ""
    if len(authors) <= limit:
        return ", ".join(authors)
    return ", ".join(authors[:limit]) + " et al."


def format_article(
    article: Article,
    fmt: str = 'llm_optimized',
    max_chars: int = 1500,
    open_access: Optional[OpenAccessInfo] = None,
) -> Dict[str, Any]:
    """Render one article in the requested format."""
    if fmt not in FORMATS:
        raise ValueError(f"Unknown format '{fmt}', expected one of {', '.join(FORMATS)}")

    if fmt == 'concise':
        data = {
            'pmid': article.pmid,
            'title': article.title,
            'authors': format_authors(article.authors),
            'journal': article.journal,
            'year': article.year,
            'doi': article.doi,
            'url': article.url,
        }
    elif fmt == 'detailed':
        data = article.to_dict()
        data['abstract'] = truncate_text(article.abstract, max_chars)
        if article.full_abstract is None:
            data.pop('full_abstract')
    else:
        data = {
            'identifier': {'pmid': article.pmid, 'doi': article.doi, 'pmcid': article.pmcid},
            'title': article.title,
            'authors': {
                'list': article.authors,
                'count': len(article.authors),
                'first_author': article.authors[0] if article.authors else None,
            },
            'publication': {
                'journal': article.journal,
                'date': article.publication_date,
                'volume': article.volume,
                'issue': article.issue,
                'pages': article.pages,
                'types': article.publication_types,
            },
            'abstract': {
                'text': truncate_text(article.abstract, max_chars),
                'sections': extract_abstract_sections(article.abstract),
                'truncated': len(article.abstract or "") > max_chars,
            },
            'subjects': {
                'mesh_terms': article.mesh_terms,
                'keywords': article.keywords,
            },
            'links': {
                'pubmed': article.url,
                'doi': f"https://doi.org/{article.doi}" if article.doi else None,
            },
        }
        if article.full_abstract:
            data['abstract']['full_record'] = truncate_text(article.full_abstract, max_chars * 2)

    if open_access is not None:
        data['open_access'] = open_access.to_dict()
    return data


def format_articles(
    articles: Sequence[Optional[Article]],
    fmt: str = 'llm_optimized',
    max_chars: int = 1500,
    open_access: Optional[Dict[str, OpenAccessInfo]] = None,
) -> List[Dict[str, Any]]:
    open_access = open_access or {}
    return [
        format_article(a, fmt, max_chars, open_access.get(a.pmid))
        for a in articles if a is not None
    ]


def extract_key_info(
    article: Article,
    sections: Sequence[str] = KEY_INFO_SECTIONS,
    max_chars: int = 1500,
) -> Dict[str, Any]:
    """Pick the requested parts of an article."""
    unknown = [s for s in sections if s not in KEY_INFO_SECTIONS]
    if unknown:
        raise ValueError(f"Unknown section(s): {', '.join(unknown)}")

    abstract_sections = extract_abstract_sections(article.abstract)
    info: Dict[str, Any] = {'pmid': article.pmid}

    for section in sections:
        if section == 'basic_info':
            info['basic_info'] = {
                'title': article.title,
                'journal': article.journal,
                'publication_date': article.publication_date,
                'publication_types': article.publication_types,
            }
        elif section == 'authors':
            info['authors'] = {
                'list': article.authors,
                'count': len(article.authors),
                'first_author': article.authors[0] if article.authors else None,
                'last_author': article.authors[-1] if article.authors else None,
            }
        elif section == 'abstract_summary':
            info['abstract_summary'] = {
                'text': truncate_text(article.abstract, max_chars),
                'word_count': len((article.abstract or "").split()),
                'structured': bool(abstract_sections),
                'background': truncate_text(_grouped_section(abstract_sections, 'background'), max_chars),
            }
        elif section in ('methods', 'results', 'conclusions'):
            info[section] = truncate_text(_grouped_section(abstract_sections, section), max_chars) or None
        elif section == 'keywords':
            info['keywords'] = {
                'keywords': article.keywords,
                'mesh_terms': article.mesh_terms,
            }
        elif section == 'doi_link':
            info['doi_link'] = f"https://doi.org/{article.doi}" if article.doi else None

    return info
