"""Tests for GitRepositorySource against a real temporary repository."""

import os
import shutil
import subprocess

import pytest

from codefamily.history import GitCommandError, GitRepositorySource
from codefamily.history.git_source import _parse_log, parse_numstat

pytestmark = [
    pytest.mark.git,
    pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available"),
]


def _git(repo, *args, env=None):
    subprocess.run(["git", "-C", str(repo), *args], check=True, capture_output=True, env=env)


def _commit(repo, message, files, when, author="Alice", email="alice@example.com"):
    for path, content in files.items():
        target = repo / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    _git(repo, "add", "-A")
    env = {
        **os.environ,
        "GIT_AUTHOR_NAME": author,
        "GIT_AUTHOR_EMAIL": email,
        "GIT_AUTHOR_DATE": f"{when} +0000",
        "GIT_COMMITTER_NAME": author,
        "GIT_COMMITTER_EMAIL": email,
        "GIT_COMMITTER_DATE": f"{when} +0000",
    }
    _git(repo, "commit", "-q", "-m", message, env=env)


@pytest.fixture
def git_repo(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    _git(repo, "config", "commit.gpgsign", "false")
    _commit(repo, "add app", {"src/app.py": "import util\n\nprint(1)\n", "src/util.py": "X = 1\n"}, 1_700_000_000)
    _commit(
        repo,
        "fix crash",
        {"src/app.py": "import util\n\nprint(2)\nprint(3)\n"},
        1_700_086_400,
        author="Bob",
        email="bob@example.com",
    )
    _git(repo, "branch", "feature")
    return repo


class TestBranches:
    def test_list_and_default(self, git_repo):
        source = GitRepositorySource(str(git_repo))
        names = [b.name for b in source.list_branches()]
        assert sorted(names) == ["feature", "main"]
        assert source.default_branch() == "main"

    def test_head_sha(self, git_repo):
        source = GitRepositorySource(str(git_repo))
        main = next(b for b in source.list_branches() if b.name == "main")
        feature = next(b for b in source.list_branches() if b.name == "feature")
        assert source.head_sha(main) == source.head_sha(feature)
        assert len(source.head_sha(main)) == 40


class TestCommits:
    def test_oldest_first(self, git_repo):
        source = GitRepositorySource(str(git_repo))
        main = next(b for b in source.list_branches() if b.name == "main")
        commits = source.list_commits(main)
        assert [c.message for c in commits] == ["add app", "fix crash"]
        assert commits[0].parents == ()
        assert commits[1].first_parent == commits[0].sha
        assert commits[1].author_email == "bob@example.com"
        assert int(commits[0].committed_at.timestamp()) == 1_700_000_000

    def test_get_commit(self, git_repo):
        source = GitRepositorySource(str(git_repo))
        main = next(b for b in source.list_branches() if b.name == "main")
        head = source.head_sha(main)
        assert source.get_commit(head).message == "fix crash"
        assert source.get_commit("0" * 40) is None

    def test_changed_files(self, git_repo):
        source = GitRepositorySource(str(git_repo))
        main = next(b for b in source.list_branches() if b.name == "main")
        root, fix = source.list_commits(main)

        root_changes = {d.path: d for d in source.changed_files(root)}
        assert set(root_changes) == {"src/app.py", "src/util.py"}
        assert root_changes["src/app.py"].additions == 3

        fix_changes = source.changed_files(fix)
        assert [(d.path, d.additions, d.deletions) for d in fix_changes] == [("src/app.py", 2, 1)]


class TestContent:
    def test_file_content(self, git_repo):
        source = GitRepositorySource(str(git_repo))
        main = next(b for b in source.list_branches() if b.name == "main")
        root, fix = source.list_commits(main)
        assert source.file_content(root.sha, "src/app.py") == "import util\n\nprint(1)\n"
        assert source.file_content(root.sha, "missing.py") is None

    def test_list_files(self, git_repo):
        source = GitRepositorySource(str(git_repo))
        main = next(b for b in source.list_branches() if b.name == "main")
        assert source.list_files(source.head_sha(main)) == ["src/app.py", "src/util.py"]

    def test_git_failure(self, tmp_path):
        source = GitRepositorySource(str(tmp_path))
        with pytest.raises(GitCommandError):
            source.list_files("HEAD")


class TestParsing:
    def test_numstat_binary(self):
        deltas = parse_numstat("3\t1\tsrc/a.py\0-\t-\tlogo.png\0")
        assert [(d.path, d.additions, d.deletions) for d in deltas] == [("src/a.py", 3, 1), ("logo.png", 0, 0)]

    def test_malformed_log_record_skipped(self):
        good = "abc\x1f\x1fAlice\x1falice@example.com\x1f1700000000\x1fhello\x1e"
        commits = _parse_log("garbage\x1e" + good)
        assert [c.sha for c in commits] == ["abc"]
