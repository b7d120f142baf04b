"""Tests for patchloop/tools/patch_apply.py.

The primary path runs the real ``git apply``; the reconstruction fallback is
exercised with diffs that git refuses.
"""

import pytest

from patchloop.core.exceptions import PatchApplyError
from patchloop.tools.patch_apply import (
    added_lines,
    apply_diff,
    has_diff_headers,
    reconstruct_from_added_lines,
    target_path,
)
from tests.conftest import requires_git

# Context line "x" never matches the file, so git apply always rejects it.
STALE_DIFF = "--- a/foo.txt\n+++ b/foo.txt\n@@ -1,1 +1,2 @@\n-x\n+hello\n+world\n"


class TestHasDiffHeaders:
    def test_both_headers(self):
        assert has_diff_headers(STALE_DIFF)

    def test_missing_plus_header(self):
        assert not has_diff_headers("--- a/foo.txt\n@@ -1 +1 @@\n-a\n+b\n")

    def test_empty(self):
        assert not has_diff_headers("")
        assert not has_diff_headers(None)


class TestApplyDiff:
    def test_rejects_diff_without_headers(self, tmp_path):
        diff = "--- a/foo.txt\n@@ -1 +1 @@\n+hello\n"
        assert apply_diff(diff, tmp_path) is False
        assert not (tmp_path / "foo.txt").exists()

    @requires_git
    def test_git_apply_modifies_file(self, git_repo):
        (git_repo / "foo.txt").write_text("hello\nsecond line\n")
        diff = (
            "--- a/foo.txt\n"
            "+++ b/foo.txt\n"
            "@@ -1,2 +1,2 @@\n"
            "-hello\n"
            "+hello world\n"
            " second line\n"
        )
        assert apply_diff(diff, git_repo) is True
        assert (git_repo / "foo.txt").read_text() == "hello world\nsecond line\n"

    @requires_git
    def test_git_apply_creates_file(self, git_repo):
        diff = "--- /dev/null\n+++ b/src/new.txt\n@@ -0,0 +1,2 @@\n+a\n+b"
        assert apply_diff(diff, git_repo) is True
        assert (git_repo / "src" / "new.txt").read_text() == "a\nb\n"

    def test_fallback_rebuilds_from_added_lines(self, tmp_path):
        (tmp_path / "foo.txt").write_text("something else entirely\n")
        assert apply_diff(STALE_DIFF, tmp_path) is True
        assert (tmp_path / "foo.txt").read_text() == "hello\nworld"

    def test_fallback_creates_missing_file(self, tmp_path):
        assert apply_diff(STALE_DIFF, tmp_path) is True
        assert (tmp_path / "foo.txt").read_text() == "hello\nworld"

    def test_fallback_disabled_leaves_file(self, tmp_path):
        (tmp_path / "foo.txt").write_text("keep me\n")
        assert apply_diff(STALE_DIFF, tmp_path, reconstruct=False) is False
        assert (tmp_path / "foo.txt").read_text() == "keep me\n"

    def test_no_added_lines_rejected(self, tmp_path):
        (tmp_path / "foo.txt").write_text("keep me\n")
        diff = "--- a/foo.txt\n+++ b/foo.txt\n@@ -1 +0,0 @@\n-x\n"
        assert apply_diff(diff, tmp_path) is False
        assert (tmp_path / "foo.txt").read_text() == "keep me\n"

    def test_escaping_path_rejected(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        diff = "--- a/../evil.txt\n+++ b/../evil.txt\n@@ -1 +1 @@\n-x\n+pwned\n"
        assert apply_diff(diff, repo) is False
        assert not (tmp_path / "evil.txt").exists()


class TestTargetPath:
    def test_strips_b_prefix(self):
        assert target_path(STALE_DIFF) == "foo.txt"

    def test_strips_timestamp(self):
        diff = "--- foo.txt\t2024-01-01 10:00:00\n+++ src/foo.txt\t2024-01-02 10:00:00\n+x\n"
        assert target_path(diff) == "src/foo.txt"

    def test_deleted_target(self):
        with pytest.raises(PatchApplyError):
            target_path("--- a/foo.txt\n+++ /dev/null\n-x\n")

    def test_missing_target(self):
        with pytest.raises(PatchApplyError):
            target_path("+x\n")


class TestAddedLines:
    def test_excludes_header(self):
        assert added_lines(STALE_DIFF) == ["hello", "world"]

    def test_keeps_empty_added_lines(self):
        diff = "--- a/f\n+++ b/f\n+one\n+\n+two\n context\n-gone\n"
        assert added_lines(diff) == ["one", "", "two"]


class TestReconstruct:
    def test_overwrites_target(self, tmp_path):
        (tmp_path / "foo.txt").write_text("old\n")
        path = reconstruct_from_added_lines(STALE_DIFF, tmp_path)
        assert path == (tmp_path / "foo.txt").resolve()
        assert path.read_text() == "hello\nworld"

    def test_no_added_lines(self, tmp_path):
        with pytest.raises(PatchApplyError, match="no added lines"):
            reconstruct_from_added_lines("--- a/f\n+++ b/f\n-x\n", tmp_path)
