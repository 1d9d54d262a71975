"""
JSON ledger of what a disk cache tier holds.

Each tier directory has one `index.json`:

    {
        "version": "1.0",
        "created": "<iso timestamp>",
        "entries": {"<identifier>": {"cached_at": <epoch seconds>, ...}},
        "stats": {"total_entries": n, "total_bytes": n, "last_cleanup": "<iso>"}
    }

The ledger is advisory. The payload files are the source of truth, and the
owning store drops any entry whose file has gone missing. Writes go to a
temporary file in the same directory and are moved into place with
os.replace, so a crash never leaves a half-written index behind.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

LEDGER_VERSION = "1.0"


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to `path` via a temporary file and an atomic rename."""
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class CacheLedger:
    """Lock-guarded index of entries in one cache directory."""

    def __init__(self, directory: Union[str, Path], filename: str = "index.json"):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path = self.directory / filename
        self._lock = threading.RLock()
        self._data = self._load()

    def _empty(self) -> Dict[str, Any]:
        return {
            'version': LEDGER_VERSION,
            'created': datetime.now().isoformat(),
            'entries': {},
            'stats': {
                'total_entries': 0,
                'total_bytes': 0,
                'last_cleanup': None,
            },
        }

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return self._empty()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ledger {self.path} unreadable ({e}), starting fresh")
            return self._empty()

        if not isinstance(data, dict) or not isinstance(data.get('entries'), dict):
            logger.warning(f"Ledger {self.path} has unexpected layout, starting fresh")
            return self._empty()
        data.setdefault('version', LEDGER_VERSION)
        data.setdefault('created', datetime.now().isoformat())
        data.setdefault('stats', {})
        return data

    def _refresh_stats(self) -> None:
        entries = self._data['entries']
        stats = self._data['stats']
        stats['total_entries'] = len(entries)
        stats['total_bytes'] = sum(int(e.get('size_bytes', 0) or 0) for e in entries.values())

    def save(self) -> None:
        """Persist the ledger atomically."""
        with self._lock:
            self._refresh_stats()
            try:
                atomic_write_json(self.path, self._data)
            except OSError as e:
                logger.error(f"Failed to write ledger {self.path}: {e}")

    def get(self, identifier: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._data['entries'].get(identifier)
            return dict(entry) if entry is not None else None

    def upsert(self, identifier: str, entry: Dict[str, Any], save: bool = True) -> None:
        with self._lock:
            self._data['entries'][identifier] = dict(entry)
            if save:
                self.save()

    def remove(self, identifier: str, save: bool = True) -> bool:
        """Drop an entry. Returns True if it existed."""
        with self._lock:
            existed = self._data['entries'].pop(identifier, None) is not None
            if existed and save:
                self.save()
            return existed

    def items(self) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            return [(k, dict(v)) for k, v in self._data['entries'].items()]

    def __contains__(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._data['entries']

    def __iter__(self) -> Iterator[str]:
        return iter([k for k, _ in self.items()])

    def __len__(self) -> int:
        with self._lock:
            return len(self._data['entries'])

    def mark_cleanup(self, save: bool = True) -> None:
        with self._lock:
            self._data['stats']['last_cleanup'] = datetime.now().isoformat()
            if save:
                self.save()

    def clear(self) -> None:
        with self._lock:
            self._data['entries'] = {}
            self.save()

    @property
    def created(self) -> str:
        return self._data['created']

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            self._refresh_stats()
            return dict(self._data['stats'])
