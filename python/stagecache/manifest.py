"""Session manifest: the tracked-file state persisted next to the workspace.

The manifest lets a persistent session pick up where the previous run left
off, and lets a single-shot CLI invocation address an ephemeral session by
id. It is always rewritten as a whole through a temp file and os.replace,
so a crash leaves either the previous manifest or the new one.

Layout of ``<session root>/manifest.json``::

    {
      "session_id": "session_1718000000000_ab12cd",
      "allocation_mode": "ephemeral",
      "created_at": "2024-06-10T06:13:20Z",
      "updated_at": "2024-06-10T06:14:02Z",
      "files": [
        {
          "source_path": "/data/projA/NC001.h",
          "staged_path": "input_files/_SLASH_data_SLASH_projA_SLASH_NC001.h",
          "category": "input",
          "content_hash": "...", "modified_ns": 0, "size_bytes": 500
        }
      ],
      "roots": {"/data/projA": {"staged_path": "input_files/...", "category": "input"}}
    }
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"


def manifest_path(session_root: str | Path) -> Path:
    """Get the full path to the manifest file."""
    return Path(session_root) / MANIFEST_FILE


def utc_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def load_manifest(session_root: str | Path) -> dict | None:
    """Read the manifest, or None if absent or unreadable."""
    path = manifest_path(session_root)
    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning(
            "manifest.unreadable",
            extra={
                "path": str(path),
                "error_type": type(e).__name__,
                "error_message": str(e),
            },
        )
        return None

    if not isinstance(data, dict):
        logger.warning("manifest.unreadable", extra={"path": str(path), "error_type": "InvalidShape"})
        return None
    return data


def write_manifest(session_root: str | Path, data: dict) -> Path:
    """Atomically replace the manifest with ``data``."""
    path = manifest_path(session_root)
    payload = dict(data)
    payload["updated_at"] = utc_timestamp()
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    try:
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    return path


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def read_created_at(session_root: str | Path) -> datetime | None:
    data = load_manifest(session_root)
    return parse_timestamp(data.get("created_at")) if data else None
