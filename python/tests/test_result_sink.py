"""Tests for exporting and archiving session results."""

import os
import shutil
from pathlib import Path

import pytest

import stagecache.result_sink as result_sink_mod
from stagecache.errors import ExportTargetUnwritable, NoResults, SessionNotFound, StagingIOError
from stagecache.registry import SessionRegistry
from stagecache.result_sink import ResultSink


def _session_with_results(tmp_path, names=("P100_BRK_result.json", "P200_BRK_result.json")):
    session = SessionRegistry(str(tmp_path / "app")).create()
    for name in names:
        session.save_artifact("results", name, f'{{"project": "{name[:4]}"}}')
    return session


def test_export_copies_every_artifact(tmp_path):
    session = _session_with_results(tmp_path)
    out = tmp_path / "out" / "nested"

    count = ResultSink().export(session, str(out))

    assert count == 2
    assert sorted(os.listdir(out)) == ["P100_BRK_result.json", "P200_BRK_result.json"]
    assert (out / "P100_BRK_result.json").read_text() == '{"project": "P100"}'


def test_export_leaves_session_results_in_place(tmp_path):
    session = _session_with_results(tmp_path)
    ResultSink().export(session, str(tmp_path / "out"))
    assert len(session.list_artifacts()) == 2


def test_export_ignores_leftover_partials(tmp_path):
    session = _session_with_results(tmp_path, names=("a.json",))
    Path(session.category_path("results"), "b.json.1234abcd.partial").write_text("half")

    assert ResultSink().export(session, str(tmp_path / "out")) == 1
    assert os.listdir(tmp_path / "out") == ["a.json"]


def test_export_empty_results_raises_no_results(tmp_path):
    session = SessionRegistry(str(tmp_path / "app")).create()
    with pytest.raises(NoResults):
        ResultSink().export(session, str(tmp_path / "out"))


def test_export_without_results_dir_raises_session_not_found(tmp_path):
    session = _session_with_results(tmp_path)
    shutil.rmtree(session.category_path("results"))
    with pytest.raises(SessionNotFound):
        ResultSink().export(session, str(tmp_path / "out"))


def test_export_to_unwritable_destination(tmp_path):
    session = _session_with_results(tmp_path)
    blocker = tmp_path / "out"
    blocker.write_text("a file, not a directory")

    with pytest.raises(ExportTargetUnwritable) as exc:
        ResultSink().export(session, str(blocker))
    assert not exc.value.skippable


def test_archive_names_directory_after_session(tmp_path):
    session = _session_with_results(tmp_path)
    archive_root = tmp_path / "archives"
    archive_root.mkdir()

    archive_dir = ResultSink().archive(session, str(archive_root))

    name = os.path.basename(archive_dir)
    assert name.startswith(f"{session.id}_")
    assert ":" not in name
    assert sorted(os.listdir(archive_dir)) == ["P100_BRK_result.json", "P200_BRK_result.json"]


def test_archive_with_nothing_to_archive_returns_none(tmp_path):
    session = SessionRegistry(str(tmp_path / "app")).create()
    assert ResultSink().archive(session, str(tmp_path / "archives")) is None
    assert not (tmp_path / "archives").exists()


def test_failed_archive_copy_leaves_no_partial_directory(tmp_path, monkeypatch):
    session = _session_with_results(tmp_path)
    archive_root = tmp_path / "archives"
    archive_root.mkdir()
    real_copy = shutil.copy2
    calls = []

    def failing_copy(src, dst):
        calls.append(src)
        if len(calls) == 2:
            raise OSError(28, "No space left on device")
        return real_copy(src, dst)

    monkeypatch.setattr(result_sink_mod.shutil, "copy2", failing_copy)
    with pytest.raises(StagingIOError):
        ResultSink().archive(session, str(archive_root))

    assert os.listdir(archive_root) == []
