"""Full-text download tools, orchestration and batch scheduling."""

from .downloaders import (
    CurlDownloader,
    Downloader,
    FetchOutcome,
    PowerShellDownloader,
    WgetDownloader,
    detect_platform,
    select_downloader,
    system_check,
)
from .orchestrator import DownloadOrchestrator, parse_content_length
from .scheduler import BatchDownloadScheduler, NoPacing, PacingPolicy, RandomPacing

__all__ = [
    "Downloader",
    "FetchOutcome",
    "CurlDownloader",
    "WgetDownloader",
    "PowerShellDownloader",
    "detect_platform",
    "select_downloader",
    "system_check",
    "DownloadOrchestrator",
    "parse_content_length",
    "BatchDownloadScheduler",
    "PacingPolicy",
    "RandomPacing",
    "NoPacing",
]
