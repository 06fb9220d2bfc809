"""Source path → staged file name translation.

The baseline form keeps the whole original path readable by replacing
separators and drive markers with fixed tokens. Paths whose baseline form
would be too long for common filesystems collapse to a short hashed form
instead. The hashed form is not invertible, so sessions keep the reverse
mapping themselves.
"""

import hashlib
import os
import re

MAX_SAFE_NAME_LENGTH = 180
HASH_PREFIX_LENGTH = 12
_MAX_PARENT_LENGTH = 40
_MAX_BASENAME_LENGTH = 64

_TOKENS = (
    (":", "_COLON_"),
    ("\\", "_BACKSLASH_"),
    ("/", "_SLASH_"),
)
_SEPARATORS = re.compile(r"[\\/]+")


def baseline_name(source_path: str) -> str:
    """Substitute separators and drive markers with their tokens."""
    name = source_path
    for char, token in _TOKENS:
        name = name.replace(char, token)
    return name


def overflow_name(source_path: str) -> str:
    """Bounded ``{md5[:12]}_{parent}_{file}`` name for long paths."""
    digest = hashlib.md5(source_path.encode("utf-8", errors="surrogateescape")).hexdigest()
    parts = [p for p in _SEPARATORS.split(source_path) if p]
    file_name = parts[-1] if parts else ""
    parent = parts[-2] if len(parts) > 1 else ""
    # Drive letters ("C:") are not a usable directory name component.
    parent = parent.replace(":", "")
    return "_".join([
        digest[:HASH_PREFIX_LENGTH],
        parent[:_MAX_PARENT_LENGTH],
        _clip_basename(file_name.replace(":", "_"), _MAX_BASENAME_LENGTH),
    ])


def safe_name(source_path: str) -> str:
    """Flat, filesystem-safe name for ``source_path``."""
    candidate = baseline_name(source_path)
    if len(candidate) > MAX_SAFE_NAME_LENGTH:
        return overflow_name(source_path)
    return candidate


def translate(source_path: str, category_dir: str) -> str:
    """Staged path for ``source_path`` inside ``category_dir``.

    Pure and deterministic: the same inputs always give the same path.
    """
    return os.path.join(category_dir, safe_name(source_path))


def _clip_basename(name: str, limit: int) -> str:
    if len(name) <= limit:
        return name
    stem, ext = os.path.splitext(name)
    if len(ext) >= limit:
        return name[:limit]
    return stem[: limit - len(ext)] + ext
