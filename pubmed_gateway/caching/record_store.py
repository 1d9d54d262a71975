"""
Per-record disk cache for article metadata.

Each PMID gets one `<pmid>.json` file under the store directory, tracked in
the directory's CacheLedger. Records older than `max_age_days` are deleted on
read and never served. Read and decode errors are logged and reported as
misses so the caller simply refetches.
"""

import json
import logging
import re
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .ledger import CacheLedger, atomic_write_json

logger = logging.getLogger(__name__)

RECORD_VERSION = "1.0"
SECONDS_PER_DAY = 24 * 60 * 60


def safe_identifier(identifier: str) -> str:
    """Filesystem-safe form of an identifier."""
    return re.sub(r'[^A-Za-z0-9._-]', '_', str(identifier).strip())


class RecordStore:
    """
    Disk cache keyed by PMID with a 30-day default lifetime.

    Uses configured cache directory by default (see config.get_default_cache_dir()).
    """

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        max_age_days: float = 30,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            cache_dir: Directory for record files (None = <cache>/papers)
            max_age_days: Records older than this are expired
            clock: Wall clock in epoch seconds (injectable for tests)
        """
        if cache_dir is None:
            from ..config import get_default_cache_dir
            cache_dir = get_default_cache_dir() / "papers"

        self.cache_dir = Path(cache_dir).expanduser()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_age_days = max_age_days
        self._clock = clock
        self.ledger = CacheLedger(self.cache_dir)
        self._lock = threading.Lock()
        self._stats = {'hits': 0, 'misses': 0, 'writes': 0, 'expired': 0, 'errors': 0}

    @property
    def max_age_seconds(self) -> float:
        return self.max_age_days * SECONDS_PER_DAY

    def _path(self, pmid: str) -> Path:
        return self.cache_dir / f"{safe_identifier(pmid)}.json"

    def _is_expired(self, cached_at: float) -> bool:
        return self._clock() - cached_at > self.max_age_seconds

    def _drop(self, pmid: str, path: Path, save: bool = True) -> bool:
        """Delete a record file and its ledger entry. False if the file could not be removed."""
        removed = True
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete cache file {path}: {e}")
            removed = False
        self.ledger.remove(pmid, save=save)
        return removed

    def get(self, pmid: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve the cached payload for a PMID.

        Returns:
            The stored article dict, or None if absent, expired or unreadable
        """
        pmid = str(pmid)
        path = self._path(pmid)

        with self._lock:
            if not path.exists():
                if pmid in self.ledger:
                    logger.debug(f"Ledger entry without file for {pmid}, removing")
                    self.ledger.remove(pmid)
                self._stats['misses'] += 1
                return None

            try:
                with open(path, 'r', encoding='utf-8') as f:
                    record = json.load(f)
                cached_at = float(record['cached_at'])
                data = record['data']
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Unreadable cache record for {pmid}: {e}")
                self._stats['errors'] += 1
                self._stats['misses'] += 1
                return None

            if self._is_expired(cached_at):
                logger.info(f"Cache expired for PMID {pmid}")
                self._drop(pmid, path)
                self._stats['expired'] += 1
                self._stats['misses'] += 1
                return None

            self._stats['hits'] += 1
            return data

    def set(self, pmid: str, data: Dict[str, Any]) -> bool:
        """
        Store a payload for a PMID.

        Returns:
            True if the record was written
        """
        pmid = str(pmid)
        path = self._path(pmid)
        now = self._clock()
        record = {
            'pmid': pmid,
            'data': data,
            'cached_at': now,
            'cached_at_iso': datetime.fromtimestamp(now).isoformat(),
            'version': RECORD_VERSION,
        }

        with self._lock:
            try:
                atomic_write_json(path, record)
                size = path.stat().st_size
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Error writing cache record for {pmid}: {e}")
                self._stats['errors'] += 1
                return False

            self.ledger.upsert(pmid, {
                'cached_at': now,
                'file': path.name,
                'size_bytes': size,
            })
            self._stats['writes'] += 1
            return True

    def has(self, pmid: str) -> bool:
        """True if a fresh record exists (does not count as a hit)."""
        entry = self.ledger.get(str(pmid))
        if entry is None or not self._path(pmid).exists():
            return False
        return not self._is_expired(float(entry.get('cached_at', 0)))

    def delete(self, pmid: str) -> bool:
        pmid = str(pmid)
        path = self._path(pmid)
        with self._lock:
            existed = path.exists() or pmid in self.ledger
            self._drop(pmid, path)
            return existed

    def clean_expired(self) -> Dict[str, int]:
        """
        Delete expired record files and ledger entries whose files are gone.

        Returns:
            Counts of removed expired records and stale ledger entries
        """
        removed_expired = 0
        removed_stale = 0

        with self._lock:
            for path in self.cache_dir.glob("*.json"):
                if path == self.ledger.path:
                    continue
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        record = json.load(f)
                    cached_at = float(record['cached_at'])
                    pmid = str(record.get('pmid', path.stem))
                except (OSError, ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Removing unreadable cache file {path.name}: {e}")
                    if self._drop(path.stem, path, save=False):
                        removed_expired += 1
                    continue

                if self._is_expired(cached_at):
                    if self._drop(pmid, path, save=False):
                        removed_expired += 1

            for pmid, _ in self.ledger.items():
                if not self._path(pmid).exists():
                    self.ledger.remove(pmid, save=False)
                    removed_stale += 1

            self.ledger.mark_cleanup(save=False)
            self.ledger.save()

        if removed_expired or removed_stale:
            logger.info(
                f"Record cache cleanup: {removed_expired} expired, "
                f"{removed_stale} stale ledger entries removed"
            )
        return {'expired': removed_expired, 'stale': removed_stale}

    def clear(self) -> int:
        """Remove every record. Returns the number of files deleted."""
        count = 0
        with self._lock:
            for path in self.cache_dir.glob("*.json"):
                if path == self.ledger.path:
                    continue
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Could not delete cache file {path}: {e}")
                    continue
                count += 1
            self.ledger.clear()
        logger.info(f"Cleared {count} cached records")
        return count

    def get_stats(self) -> Dict[str, Any]:
        ledger_stats = self.ledger.stats
        return {
            **self._stats,
            'cache_dir': str(self.cache_dir),
            'max_age_days': self.max_age_days,
            'total_entries': ledger_stats.get('total_entries', 0),
            'total_bytes': ledger_stats.get('total_bytes', 0),
            'last_cleanup': ledger_stats.get('last_cleanup'),
            'created': self.ledger.created,
        }
