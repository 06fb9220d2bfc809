"""Ignore file handling (.stageignore).

Gitignore-style pattern matching for excluding files from directory
staging. Patterns come from a ``.stageignore`` file at the root of the
staged directory, falling back to DEFAULT_TEMPLATE.
"""

from __future__ import annotations

import os
from pathlib import Path

import pathspec

IGNORE_FILE = ".stageignore"

# Default .stageignore template
DEFAULT_TEMPLATE = """\
# stagecache ignore patterns (gitignore syntax)
.git/
.hg/
.svn/
__pycache__/
node_modules/
*.pyc
*.swp
*~
.DS_Store
Thumbs.db
# Scanner outputs and presentation files are never analysis inputs
*.gif
*.png
*.jpg
*.html
*.stl
*.vcproject
*.session
*.partial
.stageignore
"""


def load_ignore_patterns(
    source_dir: str | Path,
    include_gitignore: bool = False,
) -> pathspec.PathSpec:
    """Load ignore patterns for a directory about to be staged."""
    source_path = Path(source_dir)
    ignore_path = source_path / IGNORE_FILE
    patterns: list[str] = []

    if include_gitignore:
        patterns.extend(_load_gitignore_patterns(source_path))

    if ignore_path.is_file():
        patterns.extend(ignore_path.read_text(errors="replace").splitlines())
    else:
        patterns.extend(DEFAULT_TEMPLATE.splitlines())

    return pathspec.GitIgnoreSpec.from_lines(patterns)


def _load_gitignore_patterns(source_path: Path) -> list[str]:
    patterns: list[str] = []
    skip_dirs = {".git", ".hg", ".svn", "node_modules", "__pycache__"}

    for dirpath, dirnames, filenames in os.walk(source_path):
        dirnames[:] = [name for name in dirnames if name not in skip_dirs]
        if ".gitignore" not in filenames:
            continue
        gitignore_path = Path(dirpath) / ".gitignore"
        rel_dir = os.path.relpath(dirpath, source_path)
        prefix = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
        for line in gitignore_path.read_text(errors="replace").splitlines():
            patterns.append(_translate_gitignore_pattern(line, prefix))

    return patterns


def _translate_gitignore_pattern(pattern: str, prefix: str) -> str:
    line = pattern.rstrip("\n")
    if not line or line.lstrip().startswith("#"):
        return line

    negated = line.startswith("!")
    body = line[1:] if negated else line

    if body.startswith("\\#"):
        body = body[1:]

    if not prefix:
        return f"!{body}" if negated else body

    prefix = prefix.strip("/")
    if body.startswith("/"):
        combined = f"{prefix}/{body[1:]}"
    elif "/" not in body.rstrip("/"):
        combined = f"{prefix}/**/{body}"
    else:
        combined = f"{prefix}/{body}"

    return f"!{combined}" if negated else combined
