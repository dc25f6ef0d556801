"""
Unit tests for the git collaborator.

Tests cover:
- Commit message format
- Lock contention detection
- Repository detection and lock probing
- Atomic commits against a real repository (skipped without git)
- Lock errors kept apart from other git failures
"""

import os
import time
from pathlib import Path
from typing import Callable

import pytest

from vaultkeeper.errors import GitError, GitLockError
from vaultkeeper.vault.git import (
    GitClient,
    build_commit_message,
    is_lock_contention_error,
)


class TestCommitMessage:
    """Tests for build_commit_message."""

    def test_subject_and_lists(self) -> None:
        """Subject is tagged; steps and files follow."""
        message = build_commit_message("daily-log", ["a.md", "b.md"], ["s1: done"])
        lines = message.split("\n")
        assert lines[0] == "[Policy:daily-log] Update 2 file(s)"
        assert "Steps:\n- s1: done" in message
        assert "Files:\n- a.md\n- b.md" in message

    def test_custom_prefix(self) -> None:
        """The subject tag is configurable."""
        assert build_commit_message("p", ["a.md"], prefix="Auto").startswith("[Auto:p]")

    def test_no_steps(self) -> None:
        """Without step summaries there is no Steps block."""
        assert "Steps:" not in build_commit_message("p", ["a.md"])


class TestLockContention:
    """Tests for is_lock_contention_error."""

    def test_index_lock(self) -> None:
        """index.lock messages are lock contention."""
        assert is_lock_contention_error("fatal: Unable to create '/v/.git/index.lock': File exists.")

    def test_other_errors(self) -> None:
        """Other failures are not."""
        assert not is_lock_contention_error("nothing to commit, working tree clean")


class TestRepoDetection:
    """Tests for is_repo and check_lock."""

    def test_not_a_repo(self, temp_dir: Path) -> None:
        """A plain directory is not a repository."""
        assert not GitClient(temp_dir).is_repo()

    def test_is_repo(self, git_vault: Path) -> None:
        """An initialized vault is a repository."""
        assert GitClient(git_vault).is_repo()

    def test_subdirectory_is_not_repo_root(self, git_vault: Path) -> None:
        """A folder inside a repository is not treated as the vault repo."""
        assert not GitClient(git_vault / "daily").is_repo()

    def test_no_lock(self, git_vault: Path) -> None:
        """No index.lock means unlocked."""
        status = GitClient(git_vault).check_lock()
        assert status.locked is False

    def test_fresh_lock(self, git_vault: Path) -> None:
        """A new index.lock is held but not stale."""
        (git_vault / ".git" / "index.lock").write_text("")
        status = GitClient(git_vault).check_lock()
        assert status.locked is True
        assert status.stale is False
        assert status.age_ms is not None

    def test_stale_lock(self, git_vault: Path) -> None:
        """An old index.lock is stale."""
        lock = git_vault / ".git" / "index.lock"
        lock.write_text("")
        old = time.time() - 120
        os.utime(lock, (old, old))
        status = GitClient(git_vault).check_lock()
        assert status.locked is True
        assert status.stale is True
        assert status.age_ms >= 120_000


class TestCommitAtomic:
    """Tests for commit_atomic."""

    def test_no_files(self, git_vault: Path) -> None:
        """An empty file list is a failure."""
        result = GitClient(git_vault).commit_atomic([], "p")
        assert result.success is False
        assert result.error == "No files to commit"

    def test_not_a_repo(self, temp_dir: Path) -> None:
        """Committing outside a repository fails cleanly."""
        (temp_dir / "a.md").write_text("x")
        result = GitClient(temp_dir).commit_atomic(["a.md"], "p")
        assert result.success is False
        assert result.error == "Not a git repository"

    def test_commit_changes(self, git_vault: Path, git: Callable[..., str]) -> None:
        """Modified and new files land in one commit."""
        (git_vault / "projects" / "alpha.md").write_text("changed\n")
        (git_vault / "new.md").write_text("new\n")

        client = GitClient(git_vault)
        result = client.commit_atomic(["projects/alpha.md", "new.md"], "p", ["s1: ok"])

        assert result.success is True
        assert result.undo_available is True
        assert result.files_committed == 2
        assert result.hash == git(git_vault, "rev-parse", "HEAD").strip()
        assert client.last_commit_message().startswith("[Policy:p] Update 2 file(s)")
        assert git(git_vault, "status", "--porcelain").strip() == ""

    def test_commit_deletion(self, git_vault: Path, git: Callable[..., str]) -> None:
        """Deleted tracked files are committed as deletions."""
        (git_vault / "projects" / "alpha.md").unlink()
        result = GitClient(git_vault).commit_atomic(["projects/alpha.md"], "p")
        assert result.success is True
        assert "projects/alpha.md" not in git(git_vault, "ls-files")

    def test_only_listed_files_committed(self, git_vault: Path, git: Callable[..., str]) -> None:
        """Unrelated working tree changes stay uncommitted."""
        (git_vault / "projects" / "alpha.md").write_text("changed\n")
        (git_vault / "daily" / "2024-01-15.md").write_text("unrelated\n")

        result = GitClient(git_vault).commit_atomic(["projects/alpha.md"], "p")
        assert result.success is True
        assert "daily/2024-01-15.md" in git(git_vault, "status", "--porcelain")

    def test_lock_held_fails(self, git_vault: Path) -> None:
        """A held index.lock makes the commit fail with git's lock error."""
        (git_vault / "projects" / "alpha.md").write_text("changed\n")
        (git_vault / ".git" / "index.lock").write_text("")

        result = GitClient(git_vault, max_attempts=2, retry_base_ms=1).commit_atomic(["projects/alpha.md"], "p")
        assert result.success is False
        assert is_lock_contention_error(result.error)

    def test_unchanged_files(self, git_vault: Path, git: Callable[..., str]) -> None:
        """Paths identical to HEAD succeed without creating a commit."""
        head = git(git_vault, "rev-parse", "HEAD").strip()
        (git_vault / "projects" / "alpha.md").write_text((git_vault / "projects" / "alpha.md").read_text())

        result = GitClient(git_vault).commit_atomic(["projects/alpha.md"], "p")

        assert result.success is True
        assert result.hash is None
        assert result.undo_available is False
        assert result.files_committed == 0
        assert git(git_vault, "rev-parse", "HEAD").strip() == head


class TestRun:
    """Tests for how git failures are classified."""

    def test_lock_raises_lock_error(self, git_vault: Path) -> None:
        """A held index.lock surfaces as GitLockError."""
        (git_vault / "projects" / "alpha.md").write_text("changed\n")
        (git_vault / ".git" / "index.lock").write_text("")
        with pytest.raises(GitLockError) as exc_info:
            GitClient(git_vault)._run("add", "-A", "--", "projects/alpha.md")
        assert "index.lock" in exc_info.value.stderr

    def test_other_failures_raise_git_error(self, git_vault: Path) -> None:
        """Other failures are plain GitErrors."""
        with pytest.raises(GitError) as exc_info:
            GitClient(git_vault)._run("rev-parse", "no-such-ref")
        assert not isinstance(exc_info.value, GitLockError)
