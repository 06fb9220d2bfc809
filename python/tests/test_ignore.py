"""Tests for .stageignore handling."""

from stagecache.ignore import (
    DEFAULT_TEMPLATE,
    IGNORE_FILE,
    _translate_gitignore_pattern,
    load_ignore_patterns,
)


def test_default_template_skips_vcs_and_presentation_files(tmp_path):
    spec = load_ignore_patterns(tmp_path)
    assert spec.match_file(".git/config")
    assert spec.match_file("p1/render.png")
    assert spec.match_file("p1/report.html")
    assert spec.match_file("p1/NC001.h.1234abcd.partial")
    assert not spec.match_file("p1/NC001.h")
    assert not spec.match_file("p1/job.json")


def test_stageignore_file_replaces_default(tmp_path):
    (tmp_path / IGNORE_FILE).write_text("*.tls\n!keep.tls\n")
    spec = load_ignore_patterns(tmp_path)

    assert spec.match_file("tools.tls")
    assert not spec.match_file("keep.tls")
    assert not spec.match_file("render.png")


def test_gitignore_patterns_are_scoped_to_their_directory(tmp_path):
    (tmp_path / "p1").mkdir()
    (tmp_path / "p1" / ".gitignore").write_text("*.bak\n/local.json\n")
    spec = load_ignore_patterns(tmp_path, include_gitignore=True)

    assert spec.match_file("p1/deep/old.bak")
    assert spec.match_file("p1/local.json")
    assert not spec.match_file("other/old.bak")
    assert not spec.match_file("other/local.json")


def test_gitignore_not_read_unless_requested(tmp_path):
    (tmp_path / ".gitignore").write_text("*.json\n")
    assert not load_ignore_patterns(tmp_path).match_file("job.json")
    assert load_ignore_patterns(tmp_path, include_gitignore=True).match_file("job.json")


def test_translate_gitignore_pattern():
    assert _translate_gitignore_pattern("*.log", "") == "*.log"
    assert _translate_gitignore_pattern("*.log", "sub") == "sub/**/*.log"
    assert _translate_gitignore_pattern("/build", "sub") == "sub/build"
    assert _translate_gitignore_pattern("!keep.log", "sub") == "!sub/**/keep.log"
    assert _translate_gitignore_pattern("# comment", "sub") == "# comment"


def test_template_is_gitignore_syntax():
    lines = [l for l in DEFAULT_TEMPLATE.splitlines() if l and not l.startswith("#")]
    assert ".git/" in lines
    assert "*.stl" in lines
