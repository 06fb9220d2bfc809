"""Tests for SessionRegistry lifecycle and garbage collection."""

import os
import re
import shutil
import time
from datetime import timedelta
from pathlib import Path

import pytest

from stagecache.errors import SessionNotFound, StagingIOError
from stagecache.protocols import AllocationMode, SessionState
from stagecache.registry import (
    ARCHIVE_DIRNAME,
    PERSISTENT_DIRNAME,
    SessionRegistry,
    generate_session_id,
)

_ID_RE = re.compile(r"^session_\d+_[a-z0-9]{6}$")


def _age(path, hours: float) -> None:
    stamp = time.time() - hours * 3600
    os.utime(path, (stamp, stamp))


def test_generate_session_id_format():
    ids = {generate_session_id() for _ in range(20)}
    assert all(_ID_RE.match(i) for i in ids)
    assert len(ids) == 20


def test_create_ephemeral_lays_out_categories(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()

    assert _ID_RE.match(session.id)
    assert session.root_path == str(tmp_path / "app" / session.id)
    for dirname in ("input_files", "collected_jsons", "fixed_jsons", "results"):
        assert (Path(session.root_path) / dirname).is_dir()
    assert (Path(session.root_path) / "manifest.json").is_file()


def test_two_ephemeral_sessions_are_disjoint(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    a = registry.create()
    b = registry.create()
    assert a.id != b.id
    assert os.path.commonpath([a.root_path, b.root_path]) == str(tmp_path / "app")


def test_persistent_sessions_converge_across_registries(tmp_path):
    source = tmp_path / "src" / "NC001.h"
    source.parent.mkdir()
    source.write_text("G0\n")

    first = SessionRegistry(str(tmp_path / "app")).create(AllocationMode.PERSISTENT)
    staged = first.stage(str(source))
    first.checkpoint()

    second = SessionRegistry(str(tmp_path / "app")).create("persistent")
    assert second.root_path == first.root_path
    assert os.path.basename(second.root_path) == PERSISTENT_DIRNAME
    assert second.allocation_mode is AllocationMode.PERSISTENT
    assert second.staged_path_for(str(source)) == staged
    assert not second.detect_changes().has_changes


def test_create_fails_when_app_root_is_a_file(tmp_path):
    blocker = tmp_path / "app"
    blocker.write_text("x")
    with pytest.raises(StagingIOError):
        SessionRegistry(str(blocker)).create()


def test_get_returns_only_live_sessions(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()
    assert registry.get(session.id) is session

    fresh = SessionRegistry(str(tmp_path / "app"))
    with pytest.raises(SessionNotFound):
        fresh.get(session.id)


def test_open_reattaches_session_left_on_disk(tmp_path):
    source = tmp_path / "src" / "NC001.h"
    source.parent.mkdir()
    source.write_text("G0\n")
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()
    staged = session.stage(str(source))
    session.checkpoint()
    assert registry.open(session.id) is session

    fresh = SessionRegistry(str(tmp_path / "app"))
    reattached = fresh.open(session.id)
    assert reattached is not session
    assert reattached.root_path == session.root_path
    assert reattached.staged_path_for(str(source)) == staged
    assert fresh.get(session.id) is reattached


@pytest.mark.parametrize("bad_id", ["", "../etc", "session_1_ABCDEF", "archived_results"])
def test_lookups_reject_malformed_ids(tmp_path, bad_id):
    registry = SessionRegistry(str(tmp_path / "app"))
    with pytest.raises(SessionNotFound):
        registry.get(bad_id)
    with pytest.raises(SessionNotFound):
        registry.open(bad_id)


def test_open_missing_session(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    with pytest.raises(SessionNotFound):
        registry.open("session_1700000000000_abc123")


def test_list_sessions(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    a = registry.create()
    registry.create(AllocationMode.PERSISTENT)
    (tmp_path / "app" / ARCHIVE_DIRNAME).mkdir()

    listed = {s["id"]: s for s in registry.list_sessions()}
    assert set(listed) == {a.id, PERSISTENT_DIRNAME}
    assert listed[PERSISTENT_DIRNAME]["allocation_mode"] == "persistent"
    assert listed[a.id]["created_at"] is not None


def test_teardown_archives_results_before_removal(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()
    for name in ("a_result.json", "b_result.json", "c_result.json"):
        session.save_artifact("results", name, f'{{"name": "{name}"}}')

    archive_dir = registry.teardown(session, archive=True)

    assert archive_dir is not None
    assert os.path.dirname(archive_dir) == str(tmp_path / "app" / ARCHIVE_DIRNAME)
    assert os.path.basename(archive_dir).startswith(f"{session.id}_")
    assert sorted(os.listdir(archive_dir)) == ["a_result.json", "b_result.json", "c_result.json"]
    assert Path(archive_dir, "b_result.json").read_text() == '{"name": "b_result.json"}'
    assert not os.path.exists(session.root_path)
    assert session.state is SessionState.DESTROYED


def test_teardown_without_results_archives_nothing(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()
    assert registry.teardown(session, archive=True) is None
    assert not os.path.exists(session.root_path)


def test_teardown_is_idempotent(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()
    registry.teardown(session)
    assert registry.teardown(session) is None
    assert session.state is SessionState.DESTROYED


def test_teardown_tolerates_partially_removed_tree(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()
    shutil.rmtree(session.category_path("input"))
    os.unlink(os.path.join(session.root_path, "manifest.json"))

    registry.teardown(session)
    assert not os.path.exists(session.root_path)


def test_destroyed_session_is_not_found(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    session = registry.create()
    registry.teardown(session)

    with pytest.raises(SessionNotFound):
        session.stage(str(tmp_path / "anything.h"))
    with pytest.raises(SessionNotFound):
        registry.get(session.id)
    with pytest.raises(SessionNotFound):
        registry.open(session.id)


def test_failed_archive_leaves_session_closing_and_retry_succeeds(tmp_path):
    blocker = tmp_path / "archive"
    blocker.write_text("not a directory")
    registry = SessionRegistry(str(tmp_path / "app"), archive_root=str(blocker))
    session = registry.create()
    session.save_artifact("results", "r.json", "{}")

    with pytest.raises(StagingIOError):
        registry.teardown(session, archive=True)
    assert session.state is SessionState.CLOSING
    assert os.path.isdir(session.root_path)
    with pytest.raises(SessionNotFound):
        session.save_artifact("results", "late.json", "{}")

    registry.teardown(session)
    assert session.state is SessionState.DESTROYED
    assert not os.path.exists(session.root_path)


def test_collect_garbage_removes_only_stale_ephemeral_sessions(tmp_path):
    registry = SessionRegistry(str(tmp_path / "app"))
    stale = registry.create()
    fresh = registry.create()
    persistent = registry.create(AllocationMode.PERSISTENT)
    archive = tmp_path / "app" / ARCHIVE_DIRNAME
    archive.mkdir()
    notes = tmp_path / "app" / "session_notes"
    notes.mkdir()

    _age(stale.root_path, 25)
    _age(fresh.root_path, 1)
    _age(persistent.root_path, 100)
    _age(archive, 100)
    _age(notes, 100)

    removed = registry.collect_garbage(timedelta(hours=24))

    assert removed == [stale.root_path]
    assert not os.path.exists(stale.root_path)
    assert os.path.isdir(fresh.root_path)
    assert os.path.isdir(persistent.root_path)
    assert archive.is_dir()
    assert notes.is_dir()
    assert stale.state is SessionState.DESTROYED


def test_collect_garbage_on_missing_app_root(tmp_path):
    registry = SessionRegistry(str(tmp_path / "never-created"))
    assert registry.collect_garbage() == []
