"""
Open-access detection sources.

Probe order: PMC repository, Unpaywall DOI registry, publisher landing page.
"""

from .base import OpenAccessSource
from .pmc import PMCSource
from .unpaywall import UnpaywallSource
from .publisher import PublisherSource, find_pdf_link
from .resolver import OpenAccessResolver

__all__ = [
    "OpenAccessSource",
    "PMCSource",
    "UnpaywallSource",
    "PublisherSource",
    "find_pdf_link",
    "OpenAccessResolver",
]
