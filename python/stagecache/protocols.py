"""Data model for stagecache.

Plain dataclasses shared by the session, registry and result sink so
collaborators (walkers, writers, the CLI) never depend on session
internals.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Category(str, Enum):
    """Workspace category; the value is the public name, dirname the folder."""

    INPUT = "input"
    COLLECTED = "collected"
    FIXED = "fixed"
    RESULTS = "results"

    @property
    def dirname(self) -> str:
        return _CATEGORY_DIRS[self]

    @classmethod
    def parse(cls, value: "Category | str") -> "Category":
        if isinstance(value, Category):
            return value
        key = str(value).strip().lower()
        try:
            return _CATEGORY_ALIASES[key]
        except KeyError:
            raise ValueError(f"Unknown category: {value!r}") from None


_CATEGORY_DIRS = {
    Category.INPUT: "input_files",
    Category.COLLECTED: "collected_jsons",
    Category.FIXED: "fixed_jsons",
    Category.RESULTS: "results",
}

_CATEGORY_ALIASES = {
    **{c.value: c for c in Category},
    **{d: c for c, d in _CATEGORY_DIRS.items()},
    "collected_json": Category.COLLECTED,
    "fixed_json": Category.FIXED,
    "result": Category.RESULTS,
}


class AllocationMode(str, Enum):
    EPHEMERAL = "ephemeral"
    PERSISTENT = "persistent"


class SessionState(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    CLOSING = "closing"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class Fingerprint:
    """Change signature of a file at the moment it was last staged."""
    content_hash: str
    modified_ns: int
    size_bytes: int

    def to_dict(self) -> dict:
        return {
            "content_hash": self.content_hash,
            "modified_ns": self.modified_ns,
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Fingerprint":
        return cls(
            content_hash=str(data["content_hash"]),
            modified_ns=int(data["modified_ns"]),
            size_bytes=int(data["size_bytes"]),
        )


@dataclass
class StagedFile:
    """A mirrored copy inside a session, with its source back-reference."""
    source_path: str
    staged_path: str
    category: Category
    fingerprint: Fingerprint


@dataclass(frozen=True)
class FileFailure:
    """One file that could not be staged, fingerprinted or checked."""
    path: str
    kind: str
    message: str

    def to_dict(self) -> dict:
        return {"path": self.path, "kind": self.kind, "message": self.message}


@dataclass
class ChangeReport:
    """Differences between on-disk sources and recorded fingerprints."""
    modified: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    errors: list[FileFailure] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.modified or self.added or self.deleted)

    @property
    def summary(self) -> str:
        total = len(self.modified) + len(self.added) + len(self.deleted)
        if not total:
            return "No changes detected"
        return (
            f"{total} changes detected: {len(self.modified)} modified, "
            f"{len(self.added)} new, {len(self.deleted)} deleted"
        )

    def to_dict(self) -> dict:
        return {
            "modified": list(self.modified),
            "added": list(self.added),
            "deleted": list(self.deleted),
            "errors": [e.to_dict() for e in self.errors],
            "has_changes": self.has_changes,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeReport":
        return cls(
            modified=list(data.get("modified", [])),
            added=list(data.get("added", [])),
            deleted=list(data.get("deleted", [])),
        )


@dataclass
class StageBatch:
    """Outcome of a multi-file staging call."""
    staged: list[str] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "staged": list(self.staged),
            "failures": [f.to_dict() for f in self.failures],
            "cancelled": self.cancelled,
            "total_staged": len(self.staged),
            "total_failed": len(self.failures),
        }


@dataclass(frozen=True)
class ResultArtifact:
    """A derived file written into a session category, not mirrored from a source."""
    name: str
    path: str
    size_bytes: int = 0
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class SessionInfo:
    id: str
    root_path: str
    category_paths: dict[str, str]
    tracked_count: int
    artifact_count: int
    allocation_mode: AllocationMode
    state: SessionState
    created_at: datetime
    tracked_paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "root_path": self.root_path,
            "category_paths": dict(self.category_paths),
            "tracked_count": self.tracked_count,
            "artifact_count": self.artifact_count,
            "allocation_mode": self.allocation_mode.value,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "tracked_paths": list(self.tracked_paths),
        }
