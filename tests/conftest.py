"""
Pytest configuration and fixtures for vaultkeeper tests.

This module provides shared fixtures used across unit and integration tests:
a temporary vault with a few notes, sample policy YAML, and a git-backed
vault for commit tests.
"""

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

DAILY_NOTE = """---
type: daily
status: draft
tags:
  - work
---
# 2024-01-15

## Log
- Started the day

## Tasks
- [ ] Review PRs
- [x] Write report

## Notes
-
"""

PROJECT_NOTE = """# Project Alpha

## Status
In progress

## Decisions
"""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def vault(temp_dir: Path) -> Path:
    """A vault with a daily note and a project note."""
    (temp_dir / "daily").mkdir()
    (temp_dir / "daily" / "2024-01-15.md").write_text(DAILY_NOTE)
    (temp_dir / "projects").mkdir()
    (temp_dir / "projects" / "alpha.md").write_text(PROJECT_NOTE)
    return temp_dir


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True,
    )
    return result.stdout


@pytest.fixture
def git_vault(vault: Path) -> Path:
    """The sample vault as a git repository with one initial commit."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    _git(vault, "init", "-q")
    _git(vault, "config", "user.name", "Test User")
    _git(vault, "config", "user.email", "test@example.com")
    _git(vault, "config", "commit.gpgsign", "false")
    _git(vault, "add", "-A")
    _git(vault, "commit", "-q", "-m", "Initial commit")
    return vault


@pytest.fixture
def git() -> Callable[..., str]:
    """Helper for running git commands in tests."""
    return _git


@pytest.fixture
def sample_policy_yaml() -> str:
    """Return a simple policy YAML for testing."""
    return """
version: "1.0"
name: daily-log
description: Append an entry to the daily note log
variables:
  entry:
    type: string
    required: true
  date:
    type: string
    default: "2024-01-15"
conditions:
  - id: note_exists
    check: file_exists
    path: "daily/{{date}}.md"
steps:
  - id: add_entry
    tool: vault_add_to_section
    when: "{{conditions.note_exists}}"
    params:
      path: "daily/{{date}}.md"
      section: Log
      content: "{{entry}}"
      format: bullet
output:
  summary: "Logged '{{entry}}' on {{date}}"
"""


@pytest.fixture
def invalid_policy_yaml() -> str:
    """Return a policy YAML with an empty step list."""
    return """
version: "1.0"
name: broken
description: Missing steps
steps: []
"""
