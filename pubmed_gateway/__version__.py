"""Version information for pubmed_gateway."""

__version__ = "1.0.0"
