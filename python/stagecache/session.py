"""StagingSession: one isolated workspace of read-only source mirrors.

Sources are only ever opened for reading. Each copy is streamed into a
``.partial`` sibling inside the session root while being hashed, then
moved into place with os.replace; the fingerprint is registered only after
that move, so an interrupted copy never leaves a fingerprint behind.
"""

import hashlib
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from .errors import HashComputationError, SessionNotFound, SourceMissing, StagingError, StagingIOError
from .file_cache import HashCache
from .fingerprint import CHUNK_SIZE, has_changed, stat_source
from .ignore import load_ignore_patterns
from .manifest import load_manifest, parse_timestamp, write_manifest
from .path_translator import translate
from .protocols import (
    AllocationMode,
    Category,
    ChangeReport,
    FileFailure,
    Fingerprint,
    ResultArtifact,
    SessionInfo,
    SessionState,
    StageBatch,
    StagedFile,
)

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"
COMPANION_EXTENSIONS = (".json", ".h", ".tls")
# Single-file stage() calls flush the manifest at most this often (seconds).
CHECKPOINT_INTERVAL = 5.0


@dataclass
class _StagedRoot:
    """A source directory mirrored by stage_directory()."""
    staged_path: str
    category: Category
    extensions: tuple[str, ...] | None = None
    use_ignore: bool = True
    include_gitignore: bool = False


class StagingSession:
    """Owns one session directory tree and the fingerprints of its copies."""

    def __init__(
        self,
        session_id: str,
        root_path: str,
        allocation_mode: AllocationMode | str = AllocationMode.EPHEMERAL,
        created_at: datetime | None = None,
        hash_cache: HashCache | None = None,
    ):
        self.id = session_id
        self.root_path = os.path.abspath(root_path)
        self.allocation_mode = AllocationMode(allocation_mode)
        self.created_at = created_at or datetime.now(timezone.utc)
        self.state = SessionState.CREATED
        self.category_paths = {
            category: os.path.join(self.root_path, category.dirname) for category in Category
        }
        # One record per (source, category): a source may be mirrored into
        # several categories at once.
        self._tracked: dict[tuple[str, Category], StagedFile] = {}
        self._reverse: dict[str, str] = {}
        self._roots: dict[str, _StagedRoot] = {}
        self._hash_cache = hash_cache if hash_cache is not None else HashCache()
        self._lock = threading.RLock()
        self._dirty = False
        self._last_checkpoint = time.monotonic()
        self._ensure_layout()

    @classmethod
    def open_existing(
        cls,
        session_id: str,
        root_path: str,
        allocation_mode: AllocationMode | str | None = None,
        hash_cache: HashCache | None = None,
    ) -> "StagingSession":
        """Reattach to a session directory left by an earlier run.

        Tracked files are restored from the manifest; entries whose staged
        copy is gone are dropped and leftover partial copies are removed.
        """
        data = load_manifest(root_path) or {}
        if allocation_mode is None:
            allocation_mode = data.get("allocation_mode") or (
                AllocationMode.PERSISTENT
                if os.path.basename(os.path.normpath(root_path)) == "persistent"
                else AllocationMode.EPHEMERAL
            )
        session = cls(
            session_id,
            root_path,
            allocation_mode=allocation_mode,
            created_at=parse_timestamp(data.get("created_at")),
            hash_cache=hash_cache,
        )
        session._recover_partials()
        session._restore(data)
        return session

    def __repr__(self) -> str:
        return (
            f"StagingSession(id={self.id!r}, mode={self.allocation_mode.value}, "
            f"state={self.state.value}, tracked={len(self._tracked)})"
        )

    # -- staging -----------------------------------------------------------

    def category_path(self, category: Category | str) -> str:
        return self.category_paths[Category.parse(category)]

    def stage(self, source_path: str, category: Category | str = Category.INPUT) -> str:
        """Mirror one source file into ``category`` and return the staged path.

        Copies only when the file is untracked, its fingerprint changed, or
        the staged copy went missing. An unchanged file returns its existing
        staged path without any write.

        The manifest is flushed from here at most every CHECKPOINT_INTERVAL
        seconds; call checkpoint() after a run of single-file stages.

        Raises:
            SourceMissing: the source disappeared before or during the copy.
            HashComputationError: the source cannot be read.
            StagingIOError: the destination cannot be created or written.
        """
        category = Category.parse(category)
        with self._lock:
            self._ensure_usable()
            source = _absolute(source_path)
            try:
                return self._stage_file(source, self._destination_for(source, category), category)
            finally:
                self._checkpoint(force=False)

    def stage_directory(
        self,
        source_dir: str,
        category: Category | str = Category.INPUT,
        *,
        extensions: list[str] | tuple[str, ...] | None = None,
        use_ignore: bool = True,
        include_gitignore: bool = False,
        cancel: threading.Event | None = None,
    ) -> StageBatch:
        """Stage every file under ``source_dir``, keeping relative structure.

        A file that fails is recorded in ``failures`` and the walk goes on.
        Setting ``cancel`` stops issuing further copies; files already
        staged stay registered.
        """
        category = Category.parse(category)
        with self._lock:
            self._ensure_usable()
            root = _absolute(source_dir)
            if not os.path.isdir(root):
                raise SourceMissing(root)

            staged_root = _StagedRoot(
                staged_path=translate(root, self.category_path(category)),
                category=category,
                extensions=_normalize_extensions(extensions),
                use_ignore=use_ignore,
                include_gitignore=include_gitignore,
            )
            self._roots[root] = staged_root
            self._dirty = True
            batch = StageBatch()
            try:
                for source in self._walk(root, staged_root, batch.failures):
                    if cancel is not None and cancel.is_set():
                        batch.cancelled = True
                        logger.info(
                            "session.stage_directory_cancelled",
                            extra={"session_id": self.id, "source_dir": root, "staged": len(batch.staged)},
                        )
                        break
                    destination = os.path.join(staged_root.staged_path, os.path.relpath(source, root))
                    try:
                        batch.staged.append(self._stage_file(source, destination, category))
                    except StagingError as e:
                        self._report_failure(batch.failures, e, "session.stage_failed")
            finally:
                self._checkpoint()

            logger.info(
                "session.stage_directory",
                extra={
                    "session_id": self.id,
                    "source_dir": root,
                    "staged": len(batch.staged),
                    "failed": len(batch.failures),
                },
            )
            return batch

    def stage_with_companions(
        self,
        anchor_path: str,
        category: Category | str = Category.INPUT,
        extensions: list[str] | tuple[str, ...] = COMPANION_EXTENSIONS,
    ) -> StageBatch:
        """Stage a project file plus its same-directory companion files.

        All files land together in the mirror of the anchor's directory.
        Failure to stage the anchor itself propagates; companion failures
        are reported in the batch.
        """
        category = Category.parse(category)
        suffixes = _normalize_extensions(extensions) or ()
        with self._lock:
            self._ensure_usable()
            anchor = _absolute(anchor_path)
            anchor_dir = os.path.dirname(anchor)
            project_dir = translate(anchor_dir, self.category_path(category))
            batch = StageBatch()
            try:
                batch.staged.append(
                    self._stage_file(anchor, os.path.join(project_dir, os.path.basename(anchor)), category)
                )
                try:
                    names = sorted(os.listdir(anchor_dir))
                except OSError as e:
                    self._report_failure(
                        batch.failures, StagingIOError(anchor_dir, str(e)), "session.companion_failed"
                    )
                    names = []
                for name in names:
                    source = os.path.join(anchor_dir, name)
                    if source == anchor or not os.path.isfile(source):
                        continue
                    if os.path.splitext(name)[1].lower() not in suffixes:
                        continue
                    try:
                        batch.staged.append(self._stage_file(source, os.path.join(project_dir, name), category))
                    except StagingError as e:
                        self._report_failure(batch.failures, e, "session.companion_failed")
            finally:
                self._checkpoint()
            return batch

    # -- change detection --------------------------------------------------

    def detect_changes(
        self,
        source_paths: list[str] | None = None,
        *,
        force_hash: bool = False,
    ) -> ChangeReport:
        """Classify sources as modified, added or deleted. Never mutates state.

        With no ``source_paths`` every tracked file is checked and every
        staged directory is re-walked for new files. Directories given in
        ``source_paths`` are expanded to their files.
        """
        with self._lock:
            self._ensure_usable()
            report = ChangeReport()
            for source in self._paths_to_check(source_paths, report.errors):
                records = self._records_for(source)
                if not records:
                    if os.path.isfile(source):
                        report.added.append(source)
                    else:
                        self._report_failure(report.errors, SourceMissing(source), "session.detect_failed")
                    continue
                if not os.path.lexists(source):
                    report.deleted.append(source)
                    continue
                try:
                    changed = any(
                        has_changed(record.fingerprint, source, self._hash_cache, force_hash=force_hash)[0]
                        for record in records
                    )
                except SourceMissing:
                    report.deleted.append(source)
                    continue
                except StagingError as e:
                    self._report_failure(report.errors, e, "session.detect_failed")
                    continue
                if changed:
                    report.modified.append(source)

            logger.info(
                "session.change_detection",
                extra={"session_id": self.id, "summary": report.summary, "errors": len(report.errors)},
            )
            return report

    def apply_changes(
        self,
        report: ChangeReport,
        category: Category | str = Category.INPUT,
        *,
        prune_deleted: bool = False,
    ) -> StageBatch:
        """Re-stage modified and added sources from ``report``.

        Idempotent: files already brought up to date are not copied again.
        Added files under a staged directory keep that directory's layout;
        other added files go to ``category``.
        """
        category = Category.parse(category)
        with self._lock:
            self._ensure_usable()
            batch = StageBatch()
            try:
                for source in dict.fromkeys(_absolute(p) for p in [*report.modified, *report.added]):
                    targets = [record.category for record in self._records_for(source)]
                    if not targets:
                        root = self._root_for(source)
                        targets = [root[1].category if root else category]
                    for target_category in targets:
                        try:
                            batch.staged.append(self._stage_file(
                                source, self._destination_for(source, target_category), target_category
                            ))
                        except StagingError as e:
                            self._report_failure(batch.failures, e, "session.apply_failed")
                            break

                if prune_deleted:
                    for source in report.deleted:
                        source = _absolute(source)
                        if not os.path.lexists(source):
                            self._forget(source)
            finally:
                self._checkpoint()
            return batch

    # -- artifacts ---------------------------------------------------------

    def save_artifact(
        self,
        category: Category | str,
        name: str,
        content: str | bytes,
    ) -> str:
        """Write derived output directly into a category directory.

        No fingerprint is recorded; an artifact has no source counterpart.
        """
        category = Category.parse(category)
        if not name or name in (".", "..") or os.path.basename(name) != name or "\\" in name:
            raise ValueError(f"Artifact name must be a bare file name: {name!r}")
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)

        with self._lock:
            self._ensure_usable()
            target = os.path.join(self.category_path(category), name)
            self._assert_inside_root(target)
            partial = _partial_path(target)
            try:
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with open(partial, "wb") as f:
                    f.write(data)
                os.replace(partial, target)
            except OSError as e:
                _discard(partial)
                raise StagingIOError(target, f"{type(e).__name__}: {e}") from e
            except BaseException:
                _discard(partial)
                raise

            logger.info(
                "session.artifact_saved",
                extra={"session_id": self.id, "category": category.value, "artifact": name, "size": len(data)},
            )
            return target

    def list_artifacts(self, category: Category | str = Category.RESULTS) -> list[ResultArtifact]:
        directory = self.category_path(category)
        try:
            names = sorted(os.listdir(directory))
        except FileNotFoundError:
            return []

        artifacts: list[ResultArtifact] = []
        for name in names:
            path = os.path.join(directory, name)
            if name.endswith(PARTIAL_SUFFIX) or not os.path.isfile(path):
                continue
            try:
                st = os.stat(path)
            except OSError as e:
                logger.warning(
                    "session.artifact_stat_error",
                    extra={"session_id": self.id, "path": path, "error_type": type(e).__name__},
                )
                continue
            created = getattr(st, "st_birthtime", st.st_mtime)
            artifacts.append(ResultArtifact(
                name=name,
                path=path,
                size_bytes=int(st.st_size),
                created_at=datetime.fromtimestamp(created, tz=timezone.utc),
            ))
        return artifacts

    # -- lookups -----------------------------------------------------------

    def info(self) -> SessionInfo:
        with self._lock:
            return SessionInfo(
                id=self.id,
                root_path=self.root_path,
                category_paths={c.value: p for c, p in self.category_paths.items()},
                tracked_count=len(self._tracked),
                artifact_count=len(self.list_artifacts(Category.RESULTS)),
                allocation_mode=self.allocation_mode,
                state=self.state,
                created_at=self.created_at,
                tracked_paths=self._sources(),
            )

    def tracked(self) -> list[StagedFile]:
        with self._lock:
            return [self._tracked[key] for key in sorted(self._tracked, key=lambda k: (k[0], k[1].value))]

    def staged_path_for(self, source_path: str, category: Category | str | None = None) -> str | None:
        """Staged copy of ``source_path``; the first category holding one if none given."""
        record = self._lookup(_absolute(source_path), category)
        return record.staged_path if record else None

    def original_path(self, staged_path: str) -> str | None:
        staged = os.path.abspath(staged_path)
        source = self._reverse.get(staged)
        if source is not None:
            return source
        for record in self._tracked.values():
            if record.staged_path == staged:
                return record.source_path
        return None

    def fingerprint_for(self, source_path: str, category: Category | str | None = None) -> Fingerprint | None:
        record = self._lookup(_absolute(source_path), category)
        return record.fingerprint if record else None

    def forget(self, source_path: str, category: Category | str | None = None) -> bool:
        """Stop tracking a source and remove its staged copies.

        With ``category`` only that category's copy is dropped.
        """
        category = Category.parse(category) if category is not None else None
        with self._lock:
            self._ensure_usable()
            try:
                return self._forget(_absolute(source_path), category)
            finally:
                self._checkpoint()

    def checkpoint(self) -> None:
        """Write the manifest now.

        Raises:
            StagingIOError: the manifest cannot be written.
        """
        with self._lock:
            try:
                write_manifest(self.root_path, self._manifest_data())
            except OSError as e:
                raise StagingIOError(self.root_path, f"cannot write manifest: {e}") from e
            self._dirty = False
            self._last_checkpoint = time.monotonic()

    # -- lifecycle hooks used by SessionRegistry ---------------------------

    def begin_closing(self) -> None:
        with self._lock:
            if self.state is not SessionState.DESTROYED:
                self.state = SessionState.CLOSING

    def mark_destroyed(self) -> None:
        with self._lock:
            self.state = SessionState.DESTROYED
            self._tracked.clear()
            self._reverse.clear()
            self._roots.clear()
            self._hash_cache.clear()

    # -- internals ---------------------------------------------------------

    def _ensure_layout(self) -> None:
        try:
            os.makedirs(self.root_path, exist_ok=True)
            for path in self.category_paths.values():
                os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise StagingIOError(self.root_path, f"cannot create session layout: {e}") from e

    def _ensure_usable(self) -> None:
        if self.state in (SessionState.CLOSING, SessionState.DESTROYED):
            raise SessionNotFound(self.id, f"session is {self.state.value}")
        if not os.path.isdir(self.root_path):
            raise SessionNotFound(self.id, "session root no longer exists")
        if self.state is SessionState.CREATED:
            self.state = SessionState.ACTIVE

    def _records_for(self, source: str) -> list[StagedFile]:
        return [self._tracked[(source, c)] for c in Category if (source, c) in self._tracked]

    def _sources(self) -> list[str]:
        return sorted({source for source, _ in self._tracked})

    def _lookup(self, source: str, category: Category | str | None) -> StagedFile | None:
        if category is not None:
            return self._tracked.get((source, Category.parse(category)))
        records = self._records_for(source)
        return records[0] if records else None

    def _destination_for(self, source: str, category: Category) -> str:
        recorded = self._tracked.get((source, category))
        if recorded is not None:
            return recorded.staged_path
        root = self._root_for(source)
        if root is not None and root[1].category is category:
            root_path, staged_root = root
            return os.path.join(staged_root.staged_path, os.path.relpath(source, root_path))
        return translate(source, self.category_path(category))

    def _root_for(self, source: str) -> tuple[str, _StagedRoot] | None:
        best: tuple[str, _StagedRoot] | None = None
        for root_path, staged_root in self._roots.items():
            if _is_within(source, root_path) and source != root_path:
                if best is None or len(root_path) > len(best[0]):
                    best = (root_path, staged_root)
        return best

    def _stage_file(self, source: str, destination: str, category: Category) -> str:
        recorded = self._tracked.get((source, category))
        if recorded is not None and recorded.staged_path == destination and os.path.isfile(destination):
            changed, current = has_changed(recorded.fingerprint, source, self._hash_cache)
            if not changed:
                if current is not None and current != recorded.fingerprint:
                    # Touched but identical: the staged bytes still match.
                    recorded.fingerprint = current
                    self._dirty = True
                logger.debug(
                    "session.stage_unchanged",
                    extra={"session_id": self.id, "source": source, "staged": destination},
                )
                return destination

        fingerprint = self._copy_into_session(source, destination)
        self._register(source, destination, category, fingerprint)
        return destination

    def _copy_into_session(self, source: str, destination: str) -> Fingerprint:
        self._assert_inside_root(destination, source)
        parent = os.path.dirname(destination)
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise StagingIOError(source, f"cannot create {parent}: {e}") from e

        partial = _partial_path(destination)
        try:
            fingerprint = _copy_with_fingerprint(source, partial)
            os.replace(partial, destination)
        except OSError as e:
            _discard(partial)
            raise StagingIOError(source, f"cannot move copy into place: {e}") from e
        except BaseException:
            _discard(partial)
            raise
        return fingerprint

    def _register(self, source: str, destination: str, category: Category, fingerprint: Fingerprint) -> None:
        key = (source, category)
        previous = self._tracked.get(key)
        if previous is not None and previous.staged_path != destination:
            self._reverse.pop(previous.staged_path, None)
        self._tracked[key] = StagedFile(
            source_path=source,
            staged_path=destination,
            category=category,
            fingerprint=fingerprint,
        )
        self._reverse[destination] = source
        self._dirty = True
        logger.info(
            "session.staged",
            extra={
                "session_id": self.id,
                "source": source,
                "staged": destination,
                "size": fingerprint.size_bytes,
            },
        )

    def _forget(self, source: str, category: Category | None = None) -> bool:
        keys = [key for key in self._tracked if key[0] == source and category in (None, key[1])]
        for key in keys:
            record = self._tracked.pop(key)
            self._reverse.pop(record.staged_path, None)
            if not _is_within(record.staged_path, self.root_path):
                continue
            try:
                os.unlink(record.staged_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(
                    "session.forget_unlink_error",
                    extra={"session_id": self.id, "path": record.staged_path, "error_message": str(e)},
                )
        if keys:
            self._dirty = True
        return bool(keys)

    def _assert_inside_root(self, destination: str, source: str | None = None) -> None:
        real_root = os.path.realpath(self.root_path)
        real_dest = os.path.realpath(destination)
        if not _is_within(real_dest, real_root) or (source is not None and real_dest == os.path.realpath(source)):
            raise StagingIOError(source or destination, f"refusing to write outside session root: {destination}")

    def _walk(self, root: str, staged_root: _StagedRoot, failures: list[FileFailure]):
        spec = load_ignore_patterns(root, staged_root.include_gitignore) if staged_root.use_ignore else None
        session_root = os.path.realpath(self.root_path)

        def _on_error(error: OSError) -> None:
            path = error.filename or root
            failures.append(FileFailure(path=path, kind="staging_io", message=str(error)))
            logger.warning(
                "session.walk_error",
                extra={"session_id": self.id, "path": path, "error_message": str(error)},
            )

        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
            kept = []
            for name in sorted(dirnames):
                full = os.path.join(dirpath, name)
                # Never mirror the workspace into itself.
                if _is_within(os.path.realpath(full), session_root):
                    continue
                rel = os.path.relpath(full, root).replace(os.sep, "/")
                if spec is not None and spec.match_file(rel + "/"):
                    continue
                kept.append(name)
            dirnames[:] = kept

            for name in sorted(filenames):
                full = os.path.join(dirpath, name)
                rel = os.path.relpath(full, root).replace(os.sep, "/")
                if spec is not None and spec.match_file(rel):
                    continue
                if staged_root.extensions and os.path.splitext(name)[1].lower() not in staged_root.extensions:
                    continue
                yield full

    def _paths_to_check(self, source_paths: list[str] | None, failures: list[FileFailure]) -> list[str]:
        paths: dict[str, None] = {}
        if source_paths is None:
            paths.update(dict.fromkeys(self._sources()))
            for root, staged_root in self._roots.items():
                if os.path.isdir(root):
                    paths.update(dict.fromkeys(self._walk(root, staged_root, failures)))
            return list(paths)

        for raw in source_paths:
            source = _absolute(raw)
            if os.path.isdir(source):
                staged_root = self._roots.get(source) or _StagedRoot(staged_path="", category=Category.INPUT)
                paths.update(dict.fromkeys(self._walk(source, staged_root, failures)))
                # Tracked files under the directory that have since vanished.
                paths.update(dict.fromkeys(p for p in self._sources() if _is_within(p, source)))
            else:
                paths[source] = None
        return list(paths)

    def _report_failure(self, failures: list[FileFailure], error: StagingError, event: str) -> None:
        failures.append(error.to_failure())
        logger.warning(
            event,
            extra={
                "session_id": self.id,
                "path": error.path,
                "kind": error.kind.value,
                "error_message": str(error),
            },
        )

    def _manifest_data(self) -> dict:
        return {
            "session_id": self.id,
            "allocation_mode": self.allocation_mode.value,
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
            "files": [
                {
                    "source_path": record.source_path,
                    "staged_path": os.path.relpath(record.staged_path, self.root_path),
                    "category": record.category.value,
                    **record.fingerprint.to_dict(),
                }
                for record in self.tracked()
            ],
            "roots": {
                root: {
                    "staged_path": os.path.relpath(staged_root.staged_path, self.root_path),
                    "category": staged_root.category.value,
                    "extensions": list(staged_root.extensions) if staged_root.extensions else None,
                    "use_ignore": staged_root.use_ignore,
                    "include_gitignore": staged_root.include_gitignore,
                }
                for root, staged_root in self._roots.items()
            },
        }

    def _checkpoint(self, force: bool = True) -> None:
        """Flush the manifest if anything changed since the last write."""
        if not self._dirty or self.state is SessionState.DESTROYED or not os.path.isdir(self.root_path):
            return
        if not force and time.monotonic() - self._last_checkpoint < CHECKPOINT_INTERVAL:
            return
        try:
            self.checkpoint()
        except StagingIOError as e:
            logger.warning(
                "session.manifest_write_failed",
                extra={"session_id": self.id, "path": self.root_path, "error_message": str(e)},
            )

    def _restore(self, data: dict) -> None:
        for entry in data.get("files") or []:
            try:
                staged = os.path.join(self.root_path, entry["staged_path"])
                record = StagedFile(
                    source_path=str(entry["source_path"]),
                    staged_path=os.path.abspath(staged),
                    category=Category.parse(entry["category"]),
                    fingerprint=Fingerprint.from_dict(entry),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "session.manifest_entry_invalid",
                    extra={"session_id": self.id, "error_message": str(e)},
                )
                self._dirty = True
                continue
            if not os.path.isfile(record.staged_path):
                logger.info(
                    "session.manifest_entry_dropped",
                    extra={"session_id": self.id, "source": record.source_path, "staged": record.staged_path},
                )
                self._dirty = True
                continue
            self._tracked[(record.source_path, record.category)] = record
            self._reverse[record.staged_path] = record.source_path

        for root, entry in (data.get("roots") or {}).items():
            try:
                self._roots[root] = _StagedRoot(
                    staged_path=os.path.abspath(os.path.join(self.root_path, entry["staged_path"])),
                    category=Category.parse(entry["category"]),
                    extensions=_normalize_extensions(entry.get("extensions")),
                    use_ignore=bool(entry.get("use_ignore", True)),
                    include_gitignore=bool(entry.get("include_gitignore", False)),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "session.manifest_entry_invalid",
                    extra={"session_id": self.id, "source": root, "error_message": str(e)},
                )

    def _recover_partials(self) -> None:
        for dirpath, _dirnames, filenames in os.walk(self.root_path):
            for name in filenames:
                if name.endswith(PARTIAL_SUFFIX):
                    path = os.path.join(dirpath, name)
                    _discard(path)
                    logger.info("session.partial_removed", extra={"session_id": self.id, "path": path})


def _copy_with_fingerprint(source: str, partial: str) -> Fingerprint:
    """Stream ``source`` into ``partial`` while hashing the copied bytes."""
    st = stat_source(source)
    digest = hashlib.md5()
    copied = 0
    try:
        src = open(source, "rb")
    except FileNotFoundError:
        raise SourceMissing(source) from None
    except OSError as e:
        raise HashComputationError(source, f"{type(e).__name__}: {e}") from e

    with src:
        try:
            dst = open(partial, "wb")
        except OSError as e:
            raise StagingIOError(source, f"cannot open {partial}: {e}") from e
        with dst:
            while True:
                try:
                    chunk = src.read(CHUNK_SIZE)
                except OSError as e:
                    raise StagingIOError(source, f"read failed mid-copy: {e}") from e
                if not chunk:
                    break
                try:
                    dst.write(chunk)
                except OSError as e:
                    raise StagingIOError(source, f"write failed: {e}") from e
                digest.update(chunk)
                copied += len(chunk)

    return Fingerprint(content_hash=digest.hexdigest(), modified_ns=int(st.st_mtime_ns), size_bytes=copied)


def _partial_path(destination: str) -> str:
    return f"{destination}.{uuid.uuid4().hex[:8]}{PARTIAL_SUFFIX}"


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("session.partial_cleanup_failed", extra={"path": path, "error_message": str(e)})


def _absolute(path: str) -> str:
    return os.path.abspath(os.fspath(path))


def _is_within(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        return False


def _normalize_extensions(extensions) -> tuple[str, ...] | None:
    if not extensions:
        return None
    normalized = []
    for ext in extensions:
        ext = str(ext).strip().lower()
        if ext and not ext.startswith("."):
            ext = f".{ext}"
        if ext:
            normalized.append(ext)
    return tuple(normalized) or None
