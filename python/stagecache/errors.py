"""Error taxonomy for the staging cache.

Every failure carries an ErrorKind so callers can branch on whether a
failure is skippable (move on to the next file) or retryable (try the
same operation again later) without matching on message text.
"""

from enum import Enum

from .protocols import FileFailure


class ErrorKind(str, Enum):
    SOURCE_MISSING = "source_missing"
    STAGING_IO = "staging_io"
    HASH_COMPUTATION = "hash_computation"
    SESSION_NOT_FOUND = "session_not_found"
    EXPORT_TARGET_UNWRITABLE = "export_target_unwritable"
    NO_RESULTS = "no_results"


_SKIPPABLE = {
    ErrorKind.SOURCE_MISSING,
    ErrorKind.STAGING_IO,
    ErrorKind.HASH_COMPUTATION,
}
# A locked or half-written source may read fine on the next pass.
_RETRYABLE = {
    ErrorKind.STAGING_IO,
    ErrorKind.HASH_COMPUTATION,
}


class StagingError(Exception):
    """Base class for all staging cache failures."""

    kind: ErrorKind = ErrorKind.STAGING_IO

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)

    @property
    def skippable(self) -> bool:
        return self.kind in _SKIPPABLE

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE

    def to_failure(self) -> FileFailure:
        return FileFailure(path=self.path or "", kind=self.kind.value, message=str(self))


class SourceMissing(StagingError):
    """Raised when a source file vanished between detection and staging."""

    kind = ErrorKind.SOURCE_MISSING

    def __init__(self, path: str):
        super().__init__(f"Source file not found: {path}", path)


class StagingIOError(StagingError):
    """Raised when a copy or directory creation inside a session fails."""

    kind = ErrorKind.STAGING_IO

    def __init__(self, path: str, reason: str):
        self.reason = reason
        super().__init__(f"Staging failed for {path}: {reason}", path)


class HashComputationError(StagingError):
    """Raised when a source cannot be read while fingerprinting."""

    kind = ErrorKind.HASH_COMPUTATION

    def __init__(self, path: str, reason: str):
        self.reason = reason
        super().__init__(f"Cannot fingerprint {path}: {reason}", path)


class SessionNotFound(StagingError):
    """Raised for operations against a missing or destroyed session."""

    kind = ErrorKind.SESSION_NOT_FOUND

    def __init__(self, session_id: str, detail: str = ""):
        self.session_id = session_id
        message = f"Session not found: {session_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class NoResults(StagingError):
    """Raised when exporting a session whose results directory is empty."""

    kind = ErrorKind.NO_RESULTS

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} has no result artifacts")


class ExportTargetUnwritable(StagingError):
    """Raised when an export destination cannot be created or written."""

    kind = ErrorKind.EXPORT_TARGET_UNWRITABLE

    def __init__(self, path: str, reason: str):
        self.reason = reason
        super().__init__(f"Cannot export to {path}: {reason}", path)
