"""Tests for environment configuration."""

import logging
import os
import tempfile
from datetime import timedelta

from stagecache.config import StagingConfig
from stagecache.protocols import AllocationMode
from stagecache.registry import DEFAULT_MAX_AGE


def test_defaults_live_under_temp_dir():
    config = StagingConfig.from_env({})
    assert config.app_root == os.path.abspath(os.path.join(tempfile.gettempdir(), "stagecache", "scanner"))
    assert config.archive_root is None
    assert config.allocation_mode is AllocationMode.EPHEMERAL
    assert config.gc_max_age == DEFAULT_MAX_AGE
    assert config.log_level == "WARNING"


def test_app_name_selects_subdirectory():
    config = StagingConfig.from_env({"STAGECACHE_APP_NAME": "fixer"})
    assert config.app_root.endswith(os.path.join("stagecache", "fixer"))


def test_explicit_values(tmp_path):
    config = StagingConfig.from_env({
        "STAGECACHE_APP_ROOT": str(tmp_path / "app"),
        "STAGECACHE_ARCHIVE_ROOT": str(tmp_path / "archive"),
        "STAGECACHE_ALLOCATION_MODE": "Persistent",
        "STAGECACHE_GC_MAX_AGE_HOURS": "1.5",
        "STAGECACHE_LOG_LEVEL": "debug",
    })
    assert config.app_root == str(tmp_path / "app")
    assert config.archive_root == str(tmp_path / "archive")
    assert config.allocation_mode is AllocationMode.PERSISTENT
    assert config.gc_max_age == timedelta(minutes=90)
    assert config.log_level == "DEBUG"


def test_invalid_values_fall_back_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="stagecache.config"):
        config = StagingConfig.from_env({
            "STAGECACHE_ALLOCATION_MODE": "sometimes",
            "STAGECACHE_GC_MAX_AGE_HOURS": "-3",
            "STAGECACHE_LOG_LEVEL": "loud",
        })

    assert config.allocation_mode is AllocationMode.EPHEMERAL
    assert config.gc_max_age == DEFAULT_MAX_AGE
    assert config.log_level == "WARNING"
    messages = {r.getMessage() for r in caplog.records}
    assert {"config.invalid_allocation_mode", "config.invalid_gc_max_age", "config.invalid_log_level"} <= messages


def test_build_registry_uses_configured_roots(tmp_path):
    config = StagingConfig.from_env({
        "STAGECACHE_APP_ROOT": str(tmp_path / "app"),
        "STAGECACHE_ALLOCATION_MODE": "persistent",
    })
    registry = config.build_registry()
    session = registry.create()

    assert registry.archive_root == str(tmp_path / "app" / "archived_results")
    assert session.allocation_mode is AllocationMode.PERSISTENT
    assert session.root_path == str(tmp_path / "app" / "persistent")
