"""Two-level content fingerprints: timestamp first, hash when it matters."""

import hashlib
import logging
import os

from .errors import HashComputationError, SourceMissing
from .file_cache import HashCache
from .protocols import Fingerprint

logger = logging.getLogger(__name__)
CHUNK_SIZE = 64 * 1024


def hash_file(path: str) -> str:
    """Streaming MD5 of a file; memory use does not grow with file size."""
    digest = hashlib.md5()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except FileNotFoundError:
        raise SourceMissing(path) from None
    except OSError as e:
        raise HashComputationError(path, f"{type(e).__name__}: {e}") from e
    return digest.hexdigest()


def stat_source(path: str) -> os.stat_result:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        raise SourceMissing(path) from None
    except OSError as e:
        raise HashComputationError(path, f"{type(e).__name__}: {e}") from e
    if not os.path.isfile(path):
        raise HashComputationError(path, "not a regular file")
    return st


def compute(path: str, cache: HashCache | None = None) -> Fingerprint:
    """Stat and hash ``path``.

    Raises:
        SourceMissing: the file does not exist.
        HashComputationError: the file exists but cannot be read.
    """
    st = stat_source(path)
    mtime_ns, size = int(st.st_mtime_ns), int(st.st_size)
    content_hash = cache.get(path, mtime_ns, size) if cache is not None else None
    if content_hash is None:
        content_hash = hash_file(path)
        if cache is not None:
            cache.put(path, mtime_ns, size, content_hash)
    return Fingerprint(content_hash=content_hash, modified_ns=mtime_ns, size_bytes=size)


def equal(a: Fingerprint, b: Fingerprint) -> bool:
    """Same timestamp means equal; otherwise only the hashes decide.

    A different timestamp alone never proves a change, so a touch without
    an edit compares equal.
    """
    if a.modified_ns == b.modified_ns:
        return True
    return a.content_hash == b.content_hash


def has_changed(
    recorded: Fingerprint,
    path: str,
    cache: HashCache | None = None,
    force_hash: bool = False,
) -> tuple[bool, Fingerprint | None]:
    """Compare ``path`` on disk against a recorded fingerprint.

    Returns (changed, current). ``current`` is None when the cheap stat
    check was enough and no hash was computed.
    """
    if not force_hash:
        st = stat_source(path)
        if int(st.st_mtime_ns) == recorded.modified_ns and int(st.st_size) == recorded.size_bytes:
            return False, None

    current = compute(path, None if force_hash else cache)
    changed = current.content_hash != recorded.content_hash
    if not changed and current.modified_ns != recorded.modified_ns:
        logger.debug(
            "fingerprint.touch_without_edit",
            extra={"path": path, "modified_ns": current.modified_ns},
        )
    return changed, current
