"""In-process content hash cache keyed by (path, mtime_ns, size).

This is NOT persistent across processes. It only deduplicates hashing
within one process, e.g. when detect_changes() is immediately followed by
apply_changes() on the same files.
"""

from collections import OrderedDict

_MAX_HASH_CACHE_ENTRIES = 4096


class HashCache:
    """Bounded LRU of content hashes keyed by (path, mtime_ns, size)."""

    def __init__(self, max_entries: int = _MAX_HASH_CACHE_ENTRIES):
        self._cache: OrderedDict[tuple[str, int, int], str] = OrderedDict()
        self._max_entries = max_entries

    def get(self, path: str, mtime_ns: int, size: int) -> str | None:
        """Return cached hash if path+mtime+size match, else None."""
        key = (path, mtime_ns, size)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
        return cached

    def put(self, path: str, mtime_ns: int, size: int, content_hash: str) -> None:
        key = (path, mtime_ns, size)
        self._cache[key] = content_hash
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)

    def clear(self) -> None:
        """Clear all cached entries."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
