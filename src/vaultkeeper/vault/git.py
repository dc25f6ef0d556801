"""
Git collaborator for policy commits.

Runs the git executable as a subprocess (never through a shell) with a
timeout. The engine uses three operations:
- is_repo(): whether the vault root is a git work tree root
- check_lock(): whether .git/index.lock is held, and whether it looks stale
- commit_atomic(): stage a set of paths and record one commit for them

commit_atomic never raises for git failures; it returns a CommitResult so the
engine can decide between rollback and retry. Staged paths that are already
identical to HEAD are not a failure: the result is a success without a hash.
"""

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from vaultkeeper.errors import GitError, GitLockError

logger = logging.getLogger(__name__)

STALE_LOCK_THRESHOLD_SECONDS = 30.0
LOCK_ERROR_MARKERS = ("index.lock", "unable to create", "could not obtain lock")


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    stale: bool = False
    age_ms: int | None = None


@dataclass(frozen=True)
class CommitResult:
    """
    Outcome of a commit attempt.

    Attributes:
        success: Whether a commit was recorded
        hash: The new commit hash on success
        undo_available: Whether the commit can be reverted with a soft reset
        error: git's error output on failure
        files_committed: Number of paths in the commit
    """

    success: bool
    hash: str | None = None
    undo_available: bool = False
    error: str | None = None
    files_committed: int = 0


def is_lock_contention_error(error: str) -> bool:
    lowered = error.lower()
    return any(marker in lowered for marker in LOCK_ERROR_MARKERS)


def build_commit_message(
    policy_name: str,
    files: list[str],
    step_summaries: list[str] | None = None,
    prefix: str = "Policy",
) -> str:
    """Subject line tagged with the policy, then step and file lists."""
    message = f"[{prefix}:{policy_name}] Update {len(files)} file(s)"
    if step_summaries:
        message += "\n\nSteps:\n" + "\n".join(f"- {s}" for s in step_summaries)
    message += "\n\nFiles:\n" + "\n".join(f"- {f}" for f in files)
    return message


class GitClient:
    """
    Thin wrapper over the git executable for one vault.

    Attributes:
        vault_path: Vault root (expected to be the repository root)
        timeout_seconds: Timeout applied to every git invocation
        stale_lock_seconds: Lock age beyond which a lock counts as stale
    """

    def __init__(
        self,
        vault_path: Path | str,
        timeout_seconds: int = 30,
        stale_lock_seconds: float = STALE_LOCK_THRESHOLD_SECONDS,
        max_attempts: int = 3,
        retry_base_ms: int = 100,
    ) -> None:
        self.vault_path = Path(vault_path)
        self.timeout_seconds = timeout_seconds
        self.stale_lock_seconds = stale_lock_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_base_ms = retry_base_ms

    def _exec(self, *args: str) -> subprocess.CompletedProcess[str]:
        """Run one git command in the vault and return the completed process."""
        command = ["git", *args]
        try:
            return subprocess.run(
                command,
                cwd=self.vault_path,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                shell=False,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(
                command=args[0],
                stderr=f"timed out after {self.timeout_seconds}s",
            ) from e
        except FileNotFoundError as e:
            raise GitError(command=args[0], stderr="git executable not found") from e

    def _run(self, *args: str) -> str:
        """
        Run one git command in the vault.

        Returns:
            stdout of the command

        Raises:
            GitLockError: If another process holds the index lock
            GitError: On any other non-zero exit, a timeout, or a missing
                executable
        """
        result = self._exec(*args)
        if result.returncode != 0:
            output = result.stderr or result.stdout
            if is_lock_contention_error(output):
                raise GitLockError(command=args[0], stderr=output)
            raise GitError(command=args[0], stderr=output)
        return result.stdout

    def is_repo(self) -> bool:
        """True if the vault root is the top level of a git work tree."""
        if not (self.vault_path / ".git").exists():
            return False
        try:
            toplevel = self._run("rev-parse", "--show-toplevel").strip()
        except GitError:
            return False
        return Path(toplevel).resolve() == self.vault_path.resolve()

    def check_lock(self) -> LockStatus:
        """Inspect .git/index.lock without touching it."""
        lock_path = self.vault_path / ".git" / "index.lock"
        try:
            mtime = lock_path.stat().st_mtime
        except OSError:
            return LockStatus(locked=False)

        age_seconds = max(0.0, time.time() - mtime)
        return LockStatus(
            locked=True,
            stale=age_seconds > self.stale_lock_seconds,
            age_ms=int(age_seconds * 1000),
        )

    def commit_atomic(
        self,
        files: list[str],
        policy_name: str,
        step_summaries: list[str] | None = None,
        prefix: str = "Policy",
    ) -> CommitResult:
        """
        Stage the given paths (including deletions) and commit them together.

        Lock contention is retried with exponential backoff up to
        max_attempts; any other failure returns immediately. If staging
        leaves nothing different from HEAD, no commit is made and the result
        is a success with no hash.

        Args:
            files: Vault-relative paths to commit
            policy_name: Used in the commit subject
            step_summaries: One line per executed step
            prefix: Commit subject tag

        Returns:
            CommitResult describing the outcome
        """
        if not files:
            return CommitResult(success=False, error="No files to commit")
        if not self.is_repo():
            return CommitResult(success=False, error="Not a git repository")

        # A file created and deleted within one run is unknown to git
        paths = [f for f in files if (self.vault_path / f).exists() or self._is_tracked(f)]
        if not paths:
            return CommitResult(success=False, error="No files to commit")

        message = build_commit_message(policy_name, files, step_summaries, prefix)
        last_error = ""

        for attempt in range(self.max_attempts):
            try:
                commit_hash = self._commit_once(paths, message)
            except GitLockError as e:
                last_error = e.stderr.strip() or e.message
                if attempt == self.max_attempts - 1:
                    break
                delay_ms = self.retry_base_ms * (2 ** attempt)
                logger.debug(
                    "git lock contention on attempt %d, retrying in %dms",
                    attempt + 1,
                    delay_ms,
                )
                time.sleep(delay_ms / 1000)
                continue
            except GitError as e:
                last_error = e.stderr.strip() or e.message
                break

            if commit_hash is None:
                logger.info("nothing to commit for policy %s: files match HEAD", policy_name)
                return CommitResult(success=True)

            logger.info("committed %d file(s) for policy %s: %s", len(files), policy_name, commit_hash[:8])
            return CommitResult(
                success=True,
                hash=commit_hash,
                undo_available=True,
                files_committed=len(paths),
            )

        logger.warning("commit for policy %s failed: %s", policy_name, last_error)
        return CommitResult(success=False, error=last_error)

    def _commit_once(self, paths: list[str], message: str) -> str | None:
        """Stage and commit once; None if the staged paths match HEAD."""
        self._run("add", "-A", "--", *paths)
        if not self._has_staged_changes(paths):
            return None
        self._run("commit", "-m", message, "--", *paths)
        return self._run("rev-parse", "HEAD").strip()

    def _has_staged_changes(self, paths: list[str]) -> bool:
        result = self._exec("diff", "--cached", "--quiet", "--", *paths)
        if result.returncode not in (0, 1):
            raise GitError(command="diff", stderr=result.stderr or result.stdout)
        return result.returncode == 1

    def _is_tracked(self, path: str) -> bool:
        try:
            return bool(self._run("ls-files", "--", path).strip())
        except GitError:
            return False

    def last_commit_message(self) -> str:
        return self._run("log", "-1", "--format=%B").strip()
