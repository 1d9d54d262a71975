"""Memory and disk cache tiers."""

from .memory_cache import MemoryCache, make_search_key
from .ledger import CacheLedger, atomic_write_json
from .record_store import RecordStore, safe_identifier

__all__ = [
    "MemoryCache",
    "make_search_key",
    "CacheLedger",
    "atomic_write_json",
    "RecordStore",
    "safe_identifier",
]
