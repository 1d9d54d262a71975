"""
DownloadOrchestrator - full-text retrieval for one article

Lifecycle of an attempt:

    PENDING -> PROBING_SIZE -> ABORTED_TOO_LARGE
                            -> FETCHING -> FAILED
                                        -> SAVED

Never re-downloads: an existing ledger record whose file is still on disk is
returned as-is unless force=True. Nothing is written to the ledger unless a
non-empty file was saved.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import requests

from ..caching import CacheLedger, safe_identifier
from ..cancellation import CancellationToken
from ..exceptions import FileTooLargeError
from ..models import DownloadOutcome, DownloadRecord, DownloadState
from .downloaders import Downloader

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def parse_content_length(headers: Dict[str, str]) -> Optional[int]:
    """Content-Length as int, or None when missing or malformed."""
    value = headers.get("Content-Length") or headers.get("content-length")
    if value is None:
        return None
    try:
        size = int(str(value).strip())
    except ValueError:
        return None
    return size if size >= 0 else None


class DownloadOrchestrator:
    """Downloads full-text PDFs into the full-text cache tier."""

    def __init__(
        self,
        fulltext_dir: Union[str, Path],
        downloader: Optional[Downloader],
        session: Optional[requests.Session] = None,
        max_file_size: int = 50 * 1024 * 1024,
        timeout: int = 120,
        probe_timeout: int = 10,
        user_agent: str = "Mozilla/5.0",
        max_age_days: Optional[float] = 90,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            fulltext_dir: Directory for PDFs and the full-text ledger
            downloader: External tool wrapper (None = downloads disabled)
            session: requests session used for the size probe
            max_file_size: Abort when the advertised size exceeds this (bytes)
            timeout: Per-download timeout in seconds
            probe_timeout: Timeout for the HEAD size probe
            user_agent: Browser user agent sent to publishers
            max_age_days: Records older than this are removed by clean_expired()
            clock: Wall clock in epoch seconds
        """
        self.fulltext_dir = Path(fulltext_dir).expanduser()
        self.fulltext_dir.mkdir(parents=True, exist_ok=True)
        self.downloader = downloader
        self.session = session or requests.Session()
        self.max_file_size = max_file_size
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.user_agent = user_agent
        self.max_age_days = max_age_days
        self._clock = clock
        self.ledger = CacheLedger(self.fulltext_dir)
        self._lock = threading.Lock()
        self._stats = {
            'attempted': 0,
            'saved': 0,
            'cached': 0,
            'failed': 0,
            'too_large': 0,
        }

    def _path_for(self, pmid: str) -> Path:
        return self.fulltext_dir / f"{safe_identifier(pmid)}.pdf"

    def get_record(self, pmid: str) -> Optional[DownloadRecord]:
        """Ledger record for a PMID if its file is still present and non-empty."""
        pmid = str(pmid)
        entry = self.ledger.get(pmid)
        if entry is None:
            return None

        try:
            record = DownloadRecord.from_dict(pmid, entry)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed full-text ledger entry for {pmid}: {e}")
            self.ledger.remove(pmid)
            return None

        path = self.fulltext_dir / record.filename
        if not path.exists() or path.stat().st_size == 0:
            logger.info(f"Full-text file missing for {pmid}, dropping ledger entry")
            self.ledger.remove(pmid)
            return None
        return record

    def probe_size(self, url: str, cancel_token: Optional[CancellationToken] = None) -> Optional[int]:
        """Advertised size via HEAD, or None if the server does not say."""
        timeout = self.probe_timeout
        if cancel_token is not None:
            timeout = max(0.1, cancel_token.bound_timeout(timeout))
        try:
            response = self.session.head(
                url,
                allow_redirects=True,
                timeout=timeout,
                headers={"User-Agent": self.user_agent},
            )
        except requests.RequestException as e:
            logger.debug(f"Size probe failed for {url}: {e}")
            return None
        if not response.ok:
            logger.debug(f"Size probe returned {response.status_code} for {url}")
            return None
        return parse_content_length(response.headers)

    def _discard(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial download {path}: {e}")

    def _fail(self, outcome: DownloadOutcome, state: DownloadState, error: str,
              diagnostic: Optional[str] = None) -> DownloadOutcome:
        outcome.state = state
        outcome.error = error
        outcome.diagnostic = diagnostic
        self._stats['too_large' if state == DownloadState.ABORTED_TOO_LARGE else 'failed'] += 1
        logger.warning(f"Download failed for PMID {outcome.pmid}: {error}")
        return outcome

    def download(
        self,
        pmid: str,
        url: str,
        sources: Sequence[str] = (),
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DownloadOutcome:
        """
        Fetch one full-text file.

        Args:
            pmid: Article identifier (names the file)
            url: Direct PDF URL from the resolver
            sources: Sources that confirmed open access (recorded in the ledger)
            force: Re-download even if a record exists
            cancel_token: Optional cancellation / deadline

        Returns:
            DownloadOutcome; never raises for download failures
        """
        pmid = str(pmid)
        outcome = DownloadOutcome(pmid=pmid, url=url)

        with self._lock:
            if not force:
                existing = self.get_record(pmid)
                if existing is not None:
                    logger.info(f"PMID {pmid} already downloaded, skipping")
                    self._stats['cached'] += 1
                    outcome.state = DownloadState.SAVED
                    outcome.record = existing
                    outcome.local_path = str(self.fulltext_dir / existing.filename)
                    outcome.from_cache = True
                    return outcome

            self._stats['attempted'] += 1
            if cancel_token is not None and cancel_token.is_cancelled():
                return self._fail(outcome, DownloadState.FAILED, "cancelled")
            if self.downloader is None:
                return self._fail(outcome, DownloadState.FAILED, "No download tool available")

            outcome.state = DownloadState.PROBING_SIZE
            advertised = self.probe_size(url, cancel_token)
            if advertised is not None and advertised > self.max_file_size:
                error = str(FileTooLargeError(advertised, self.max_file_size))
                return self._fail(outcome, DownloadState.ABORTED_TOO_LARGE, error)

            outcome.state = DownloadState.FETCHING
            final_path = self._path_for(pmid)
            part_path = final_path.with_name(final_path.name + ".part")
            timeout = self.timeout
            if cancel_token is not None:
                timeout = cancel_token.bound_timeout(timeout)
            timeout = max(1, int(timeout))

            result = self.downloader.fetch(url, part_path, timeout, self.user_agent)
            if not result.ok:
                self._discard(part_path)
                if result.too_large:
                    error = f"{result.tool} aborted: file exceeds {self.max_file_size} bytes"
                    return self._fail(outcome, DownloadState.ABORTED_TOO_LARGE, error, result.diagnostic)
                return self._fail(outcome, DownloadState.FAILED,
                                  f"{result.tool or 'download tool'} failed", result.diagnostic)

            try:
                size = part_path.stat().st_size if part_path.exists() else 0
                if size == 0:
                    self._discard(part_path)
                    return self._fail(outcome, DownloadState.FAILED, "Downloaded file is missing or empty",
                                      result.diagnostic)
                if size > self.max_file_size:
                    self._discard(part_path)
                    error = str(FileTooLargeError(size, self.max_file_size))
                    return self._fail(outcome, DownloadState.ABORTED_TOO_LARGE, error)

                with open(part_path, 'rb') as f:
                    if f.read(5) != b'%PDF-':
                        logger.warning(f"File for PMID {pmid} does not look like a PDF")

                os.replace(part_path, final_path)
            except OSError as e:
                self._discard(part_path)
                return self._fail(outcome, DownloadState.FAILED, f"Could not save file: {e}", str(e))

            record = DownloadRecord(
                pmid=pmid,
                url=url,
                filename=final_path.name,
                size_bytes=size,
                downloaded_at=self._clock(),
                sources=tuple(sources),
                tool=result.tool,
            )
            self.ledger.upsert(pmid, {**record.to_dict(), 'cached_at': record.downloaded_at})

            outcome.state = DownloadState.SAVED
            outcome.record = record
            outcome.local_path = str(final_path)
            self._stats['saved'] += 1
            logger.info(f"Saved full text for PMID {pmid} ({size / 1024:.0f} KB via {result.tool})")
            return outcome

    def list_records(self) -> List[DownloadRecord]:
        """Every record whose file is still present."""
        return [r for r in (self.get_record(pmid) for pmid in list(self.ledger)) if r is not None]

    def clean_expired(self) -> Dict[str, int]:
        """Delete files older than max_age_days and entries with missing files."""
        removed_expired = 0
        removed_stale = 0
        now = self._clock()

        with self._lock:
            for pmid, entry in self.ledger.items():
                path = self.fulltext_dir / entry.get('filename', f"{safe_identifier(pmid)}.pdf")
                if not path.exists():
                    self.ledger.remove(pmid, save=False)
                    removed_stale += 1
                    continue
                downloaded_at = float(entry.get('downloaded_at', entry.get('cached_at', now)))
                if self.max_age_days is not None and now - downloaded_at > self.max_age_days * SECONDS_PER_DAY:
                    self._discard(path)
                    self.ledger.remove(pmid, save=False)
                    removed_expired += 1

            for part in self.fulltext_dir.glob("*.part"):
                self._discard(part)

            self.ledger.mark_cleanup(save=False)
            self.ledger.save()

        return {'expired': removed_expired, 'stale': removed_stale}

    def clear(self) -> int:
        """Delete every full-text file and record."""
        count = 0
        with self._lock:
            for path in list(self.fulltext_dir.glob("*.pdf")) + list(self.fulltext_dir.glob("*.part")):
                self._discard(path)
                count += 1
            self.ledger.clear()
        logger.info(f"Cleared {count} full-text files")
        return count

    def get_stats(self) -> Dict[str, Any]:
        ledger_stats = self.ledger.stats
        return {
            **self._stats,
            'directory': str(self.fulltext_dir),
            'tool': self.downloader.name if self.downloader else None,
            'max_file_size': self.max_file_size,
            'total_files': ledger_stats.get('total_entries', 0),
            'total_bytes': ledger_stats.get('total_bytes', 0),
            'last_cleanup': ledger_stats.get('last_cleanup'),
        }
