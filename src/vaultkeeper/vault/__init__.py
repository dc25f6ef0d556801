"""
Vault access for vaultkeeper.

The vault is a directory of Markdown notes, optionally a git repository.

Modules:
    - notes: read/write notes with frontmatter, path validation, fingerprints
    - sections: heading-section and task editing on note bodies
    - git: lock probing and atomic commits through the git executable
"""

from vaultkeeper.vault.git import CommitResult, GitClient, LockStatus
from vaultkeeper.vault.notes import (
    Note,
    note_exists,
    read_note,
    read_raw,
    validate_path,
    write_note,
    write_raw,
)
from vaultkeeper.vault.sections import SectionBoundary, find_section

__all__ = [
    "CommitResult",
    "GitClient",
    "LockStatus",
    "Note",
    "SectionBoundary",
    "find_section",
    "note_exists",
    "read_note",
    "read_raw",
    "validate_path",
    "write_note",
    "write_raw",
]
