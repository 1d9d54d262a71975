"""Upstream API clients."""

from .base_client import APIConfig, BaseAPIClient
from .pubmed_client import PubMedClient, parse_efetch_xml, parse_summary

__all__ = [
    "APIConfig",
    "BaseAPIClient",
    "PubMedClient",
    "parse_efetch_xml",
    "parse_summary",
]
