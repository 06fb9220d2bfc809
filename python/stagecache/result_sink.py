"""Copy a session's result artifacts out of the workspace."""

import logging
import os
import shutil
from datetime import datetime, timezone

from .errors import ExportTargetUnwritable, NoResults, SessionNotFound, StagingIOError
from .protocols import Category, ResultArtifact

logger = logging.getLogger(__name__)


class ResultSink:
    """Exports and archives the ``results`` category of a session."""

    def export(self, session, destination_dir: str) -> int:
        """Copy every result artifact to ``destination_dir``.

        Returns:
            Number of files copied.

        Raises:
            SessionNotFound: the session's results directory does not exist.
            NoResults: the results directory is empty.
            ExportTargetUnwritable: the destination cannot be created or written.
        """
        artifacts = self._require_results(session)
        destination_dir = os.path.abspath(destination_dir)
        try:
            os.makedirs(destination_dir, exist_ok=True)
        except OSError as e:
            raise ExportTargetUnwritable(destination_dir, str(e)) from e

        copied = 0
        for artifact in artifacts:
            target = os.path.join(destination_dir, artifact.name)
            try:
                shutil.copy2(artifact.path, target)
            except OSError as e:
                raise ExportTargetUnwritable(target, str(e)) from e
            copied += 1

        logger.info(
            "result_sink.exported",
            extra={"session_id": session.id, "destination": destination_dir, "count": copied},
        )
        return copied

    def archive(self, session, archive_root: str) -> str | None:
        """Copy results into ``{archive_root}/{session_id}_{timestamp}``.

        Returns the archive directory, or None when there was nothing to
        archive.

        Raises:
            StagingIOError: the archive root or directory cannot be created,
                or a file cannot be copied into it.
        """
        try:
            artifacts = self._require_results(session)
        except (SessionNotFound, NoResults) as e:
            logger.info("result_sink.nothing_to_archive", extra={"session_id": session.id, "reason": str(e)})
            return None

        timestamp = datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")
        archive_dir = os.path.join(os.path.abspath(archive_root), f"{session.id}_{timestamp}")
        try:
            os.makedirs(archive_dir, exist_ok=False)
        except OSError as e:
            raise StagingIOError(archive_dir, f"cannot create archive directory: {e}") from e
        try:
            for artifact in artifacts:
                shutil.copy2(artifact.path, os.path.join(archive_dir, artifact.name))
        except OSError as e:
            # An archive directory only exists once it is complete.
            shutil.rmtree(archive_dir, ignore_errors=True)
            raise StagingIOError(archive_dir, f"cannot archive results: {e}") from e

        logger.info(
            "result_sink.archived",
            extra={"session_id": session.id, "archive_dir": archive_dir, "count": len(artifacts)},
        )
        return archive_dir

    def _require_results(self, session) -> list[ResultArtifact]:
        results_dir = session.category_path(Category.RESULTS)
        if not os.path.isdir(results_dir):
            raise SessionNotFound(session.id, "no results directory")
        artifacts = session.list_artifacts(Category.RESULTS)
        if not artifacts:
            raise NoResults(session.id)
        return artifacts
