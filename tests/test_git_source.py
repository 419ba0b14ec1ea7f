"""Tests for reading diffs from a git repository."""

import shutil

import git
import pytest

from faultline.core import DiffParser
from faultline.core.git_source import diff_from_repository
from faultline.exceptions import SourceError

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


@pytest.fixture
def repo_root(tmp_path):
    repo = git.Repo.init(tmp_path)
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
    (tmp_path / "users.py").write_text("def get_user(id):\n    return id\n")
    repo.index.add(["users.py"])
    repo.index.commit("initial")
    repo.close()
    return tmp_path


class TestDiffFromRepository:
    def test_working_tree_diff(self, repo_root):
        (repo_root / "users.py").write_text("def get_user(id, cache):\n    return id\n")
        diff = diff_from_repository(repo_root)
        assert diff.startswith("diff --git a/users.py b/users.py")
        assert diff.endswith("\n")
        hunks = DiffParser().parse(diff)
        assert [l.text for l in hunks[0].added_lines] == ["def get_user(id, cache):"]

    def test_staged_diff(self, repo_root):
        (repo_root / "users.py").write_text("def fetch_user(id):\n    return id\n")
        assert diff_from_repository(repo_root, staged=True) == ""
        repo = git.Repo(repo_root)
        repo.index.add(["users.py"])
        repo.close()
        assert "+def fetch_user(id):" in diff_from_repository(repo_root, staged=True)

    def test_clean_tree_gives_empty_diff(self, repo_root):
        assert diff_from_repository(repo_root) == ""

    def test_not_a_repository(self, tmp_path_factory):
        plain = tmp_path_factory.mktemp("plain")
        with pytest.raises(SourceError, match="Cannot read diff from repository"):
            diff_from_repository(plain)

    def test_unknown_revision(self, repo_root):
        with pytest.raises(SourceError):
            diff_from_repository(repo_root, rev="no-such-branch")
