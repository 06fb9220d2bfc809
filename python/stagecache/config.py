"""Environment-driven configuration.

Read once by the entry point and turned into a SessionRegistry; nothing
else in the package consults the environment.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import timedelta

from .protocols import AllocationMode
from .registry import DEFAULT_MAX_AGE, SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_APP_NAME = "scanner"
TEMP_BASE_NAME = "stagecache"
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class StagingConfig:
    app_root: str
    archive_root: str | None = None
    allocation_mode: AllocationMode = AllocationMode.EPHEMERAL
    gc_max_age: timedelta = DEFAULT_MAX_AGE
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "StagingConfig":
        env = os.environ if environ is None else environ

        app_name = env.get("STAGECACHE_APP_NAME", "").strip() or DEFAULT_APP_NAME
        app_root = env.get("STAGECACHE_APP_ROOT", "").strip() or os.path.join(
            tempfile.gettempdir(), TEMP_BASE_NAME, app_name
        )
        archive_root = env.get("STAGECACHE_ARCHIVE_ROOT", "").strip() or None

        mode_raw = env.get("STAGECACHE_ALLOCATION_MODE", AllocationMode.EPHEMERAL.value).strip().lower()
        try:
            mode = AllocationMode(mode_raw)
        except ValueError:
            logger.warning(
                "config.invalid_allocation_mode",
                extra={"mode": mode_raw, "fallback_mode": AllocationMode.EPHEMERAL.value},
            )
            mode = AllocationMode.EPHEMERAL

        hours_raw = env.get("STAGECACHE_GC_MAX_AGE_HOURS", "").strip()
        gc_max_age = DEFAULT_MAX_AGE
        if hours_raw:
            try:
                hours = float(hours_raw)
                if hours <= 0:
                    raise ValueError(hours_raw)
                gc_max_age = timedelta(hours=hours)
            except ValueError:
                logger.warning(
                    "config.invalid_gc_max_age",
                    extra={"value": hours_raw, "fallback_hours": DEFAULT_MAX_AGE.total_seconds() / 3600},
                )

        level_raw = env.get("STAGECACHE_LOG_LEVEL", "WARNING").strip().upper()
        if level_raw not in VALID_LOG_LEVELS:
            logger.warning("config.invalid_log_level", extra={"value": level_raw, "fallback_level": "WARNING"})
            level_raw = "WARNING"

        return cls(
            app_root=os.path.abspath(app_root),
            archive_root=os.path.abspath(archive_root) if archive_root else None,
            allocation_mode=mode,
            gc_max_age=gc_max_age,
            log_level=level_raw,
        )

    def build_registry(self) -> SessionRegistry:
        return SessionRegistry(
            self.app_root,
            archive_root=self.archive_root,
            default_mode=self.allocation_mode,
        )
