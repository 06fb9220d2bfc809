"""Session registry: creation, lookup, teardown and garbage collection.

One registry is built by the process entry point and handed to whatever
needs sessions; there is no module-level temp-root state.

Layout under the app root::

    <app root>/
        session_1718000000000_ab12cd/    ephemeral, one per run
        persistent/                      reused across runs
        archived_results/                teardown archives (never collected)
"""

import logging
import os
import re
import secrets
import shutil
import string
import threading
import time
from datetime import datetime, timedelta, timezone

from .errors import SessionNotFound, StagingIOError
from .manifest import read_created_at
from .protocols import AllocationMode, SessionState
from .result_sink import ResultSink
from .session import StagingSession

logger = logging.getLogger(__name__)

EPHEMERAL_PREFIX = "session_"
PERSISTENT_DIRNAME = "persistent"
ARCHIVE_DIRNAME = "archived_results"
DEFAULT_MAX_AGE = timedelta(hours=24)
_ID_ALPHABET = string.ascii_lowercase + string.digits
_SESSION_ID_RE = re.compile(r"^(session_\d+_[a-z0-9]{6}|persistent)$")
_REMOVE_ATTEMPTS = 3


def generate_session_id() -> str:
    """``session_{unix millis}_{6 lowercase alphanumerics}``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{EPHEMERAL_PREFIX}{int(time.time() * 1000)}_{suffix}"


class SessionRegistry:
    """Creates and locates sessions under one application root."""

    def __init__(
        self,
        app_root: str,
        archive_root: str | None = None,
        sink: ResultSink | None = None,
        default_mode: AllocationMode | str = AllocationMode.EPHEMERAL,
    ):
        self.app_root = os.path.abspath(app_root)
        self.archive_root = os.path.abspath(archive_root or os.path.join(self.app_root, ARCHIVE_DIRNAME))
        self.sink = sink or ResultSink()
        self.default_mode = AllocationMode(default_mode)
        self._sessions: dict[str, StagingSession] = {}
        self._lock = threading.Lock()

    def create(
        self,
        allocation_mode: AllocationMode | str | None = None,
        app_root: str | None = None,
    ) -> StagingSession:
        """Create a session, or reattach to the persistent one.

        Raises:
            StagingIOError: the app root or session root cannot be created.
        """
        mode = AllocationMode(allocation_mode) if allocation_mode is not None else self.default_mode
        root = os.path.abspath(app_root) if app_root else self.app_root
        try:
            os.makedirs(root, exist_ok=True)
        except OSError as e:
            raise StagingIOError(root, f"cannot create app root: {e}") from e

        with self._lock:
            if mode is AllocationMode.PERSISTENT:
                session_root = os.path.join(root, PERSISTENT_DIRNAME)
                live = self._sessions.get(session_root)
                if live is not None and live.state is not SessionState.DESTROYED:
                    return live
                if os.path.isdir(session_root):
                    session = StagingSession.open_existing(PERSISTENT_DIRNAME, session_root, mode)
                else:
                    session = StagingSession(PERSISTENT_DIRNAME, session_root, mode)
            else:
                session_id = generate_session_id()
                while os.path.exists(os.path.join(root, session_id)):
                    session_id = generate_session_id()
                session_root = os.path.join(root, session_id)
                session = StagingSession(session_id, session_root, mode)

            session.checkpoint()
            self._sessions[session.root_path] = session

        logger.info(
            "registry.session_created",
            extra={"session_id": session.id, "root": session.root_path, "mode": mode.value},
        )
        return session

    def get(self, session_id: str, app_root: str | None = None) -> StagingSession:
        """Return a session this registry created or opened, without touching disk.

        Raises:
            SessionNotFound: the id is not live in this registry.
        """
        session_root = self._session_root(session_id, app_root)
        with self._lock:
            live = self._sessions.get(session_root)
        if live is None or live.state is SessionState.DESTROYED:
            raise SessionNotFound(session_id, "not open in this registry")
        return live

    def open(self, session_id: str, app_root: str | None = None) -> StagingSession:
        """Return the live session, or reattach to one left on disk by an earlier run.

        Reattaching reloads the manifest and clears leftover partial copies.

        Raises:
            SessionNotFound: no such session directory.
        """
        session_root = self._session_root(session_id, app_root)
        with self._lock:
            live = self._sessions.get(session_root)
            if live is not None and live.state is not SessionState.DESTROYED:
                return live
            if not os.path.isdir(session_root):
                raise SessionNotFound(session_id)
            session = StagingSession.open_existing(session_id, session_root)
            self._sessions[session.root_path] = session
            return session

    def _session_root(self, session_id: str, app_root: str | None) -> str:
        if not _SESSION_ID_RE.match(session_id or ""):
            raise SessionNotFound(session_id, "malformed session id")
        root = os.path.abspath(app_root) if app_root else self.app_root
        return os.path.join(root, session_id)

    def list_sessions(self, app_root: str | None = None) -> list[dict]:
        root = os.path.abspath(app_root) if app_root else self.app_root
        try:
            names = sorted(os.listdir(root))
        except FileNotFoundError:
            return []

        sessions = []
        for name in names:
            path = os.path.join(root, name)
            if not _SESSION_ID_RE.match(name) or not os.path.isdir(path):
                continue
            created_at = read_created_at(path)
            sessions.append({
                "id": name,
                "root_path": path,
                "allocation_mode": (
                    AllocationMode.PERSISTENT if name == PERSISTENT_DIRNAME else AllocationMode.EPHEMERAL
                ).value,
                "created_at": created_at.isoformat() if created_at else None,
                "modified_at": datetime.fromtimestamp(os.path.getmtime(path), tz=timezone.utc).isoformat(),
            })
        return sessions

    def teardown(self, session: StagingSession, archive: bool = False) -> str | None:
        """Archive (optionally) and destroy a session.

        Archival happens while the session is CLOSING, strictly before the
        tree is removed. Removing an already removed or half removed tree
        is a success. If archiving fails the tree is left in place, the
        session stays CLOSING and teardown can be called again.

        Returns:
            The archive directory, or None if nothing was archived.

        Raises:
            StagingIOError: archiving failed or the tree cannot be removed.
        """
        if session.state is SessionState.DESTROYED:
            _remove_tree(session.root_path)
            return None

        session.begin_closing()
        archive_dir = None
        if archive:
            try:
                os.makedirs(self.archive_root, exist_ok=True)
            except OSError as e:
                raise StagingIOError(self.archive_root, f"cannot create archive root: {e}") from e
            archive_dir = self.sink.archive(session, self.archive_root)

        _remove_tree(session.root_path)
        session.mark_destroyed()
        with self._lock:
            self._sessions.pop(session.root_path, None)

        logger.info(
            "registry.session_destroyed",
            extra={"session_id": session.id, "root": session.root_path, "archive_dir": archive_dir},
        )
        return archive_dir

    def collect_garbage(
        self,
        max_age: timedelta = DEFAULT_MAX_AGE,
        app_root: str | None = None,
        now: float | None = None,
    ) -> list[str]:
        """Remove ephemeral session directories older than ``max_age``.

        Age is taken from the directory's mtime. Sessions are removed
        whether or not they were closed cleanly; the persistent session and
        the archive root are never touched. A directory that cannot be
        removed is logged and skipped.

        Returns:
            Paths of removed session directories.
        """
        root = os.path.abspath(app_root) if app_root else self.app_root
        try:
            names = sorted(os.listdir(root))
        except FileNotFoundError:
            return []

        current = time.time() if now is None else now
        limit = max_age.total_seconds()
        removed: list[str] = []

        for name in names:
            if name == PERSISTENT_DIRNAME or not _SESSION_ID_RE.match(name):
                continue
            path = os.path.join(root, name)
            try:
                if not os.path.isdir(path):
                    continue
                age = current - os.path.getmtime(path)
            except OSError:
                continue
            if age <= limit:
                continue

            try:
                _remove_tree(path)
            except StagingIOError as e:
                logger.warning(
                    "registry.gc_remove_failed",
                    extra={"path": path, "age_seconds": int(age), "error_message": str(e)},
                )
                continue

            with self._lock:
                live = self._sessions.pop(path, None)
            if live is not None:
                live.mark_destroyed()
            removed.append(path)
            logger.info("registry.gc_removed", extra={"path": path, "age_seconds": int(age)})

        return removed


def _remove_tree(path: str) -> None:
    """Recursively delete ``path``; missing pieces are not an error."""
    last_error: OSError | None = None
    for _ in range(_REMOVE_ATTEMPTS):
        if not os.path.lexists(path):
            return
        try:
            shutil.rmtree(path)
            return
        except FileNotFoundError:
            # Something else removed part of the tree mid-walk; go again.
            continue
        except OSError as e:
            last_error = e

    if os.path.lexists(path):
        raise StagingIOError(path, f"cannot remove session tree: {last_error}")
