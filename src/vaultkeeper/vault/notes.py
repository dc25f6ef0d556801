"""
Document read/write for vault notes.

A note is a Markdown file with optional YAML frontmatter between `---`
fences. Reads normalize line endings to LF and remember the original style so
writes can restore it. Every read carries a SHA-256 fingerprint of the bytes
on disk; passing it back to write_note turns the write into a compare-and-swap
that raises WriteConflictError if another process changed the file meanwhile.

All paths are vault-relative. Absolute paths and paths that resolve outside
the vault root are rejected with PathTraversalError.
"""

import hashlib
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from vaultkeeper.errors import (
    InvalidFrontmatterError,
    NoteNotFoundError,
    PathTraversalError,
    WriteConflictError,
)

LineEnding = Literal["LF", "CRLF"]

FRONTMATTER_FENCE = "---"


@dataclass
class Note:
    """
    A parsed vault document.

    Attributes:
        path: Vault-relative path
        content: Body text (LF line endings, frontmatter stripped)
        frontmatter: Parsed frontmatter mapping (empty if none)
        raw: File text exactly as read
        line_ending: Line ending style detected in the raw text
        content_hash: SHA-256 of the raw bytes
    """

    path: str
    content: str
    frontmatter: dict[str, Any] = field(default_factory=dict)
    raw: str = ""
    line_ending: LineEnding = "LF"
    content_hash: str = ""


# =============================================================================
# Path handling
# =============================================================================


def validate_path(vault_path: Path | str, note_path: str) -> bool:
    """Return True if note_path is relative and stays inside the vault."""
    if not note_path or note_path.startswith(("/", "\\")) or "\x00" in note_path:
        return False
    if Path(note_path).is_absolute():
        return False

    vault = Path(vault_path).resolve()
    target = (vault / note_path).resolve()
    return target == vault or vault in target.parents


def resolve_note_path(vault_path: Path | str, note_path: str) -> Path:
    """
    Resolve a vault-relative path to an absolute filesystem path.

    Raises:
        PathTraversalError: If the path is absolute or escapes the vault
    """
    if not validate_path(vault_path, note_path):
        raise PathTraversalError(path=note_path)
    return Path(vault_path).resolve() / note_path


def note_exists(vault_path: Path | str, note_path: str) -> bool:
    """Check whether a note exists (invalid paths count as missing)."""
    if not validate_path(vault_path, note_path):
        return False
    return (Path(vault_path).resolve() / note_path).is_file()


# =============================================================================
# Text helpers
# =============================================================================


def compute_hash(raw: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded text."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def detect_line_ending(text: str) -> LineEnding:
    """CRLF if Windows line endings outnumber bare LF, else LF."""
    crlf = text.count("\r\n")
    lf = len(re.findall(r"(?<!\r)\n", text))
    return "CRLF" if crlf > lf else "LF"


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n")


def convert_line_endings(text: str, style: LineEnding) -> str:
    normalized = normalize_line_endings(text)
    return normalized.replace("\n", "\r\n") if style == "CRLF" else normalized


def normalize_trailing_newline(text: str) -> str:
    """Ensure text ends with exactly one newline."""
    return text.rstrip() + "\n"


def parse_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """
    Split LF-normalized text into (frontmatter, body).

    Text without a leading fence, or with an unterminated one, has no
    frontmatter and is returned whole as the body.
    """
    lines = text.split("\n")
    if not lines or lines[0].strip() != FRONTMATTER_FENCE:
        return {}, text

    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_FENCE:
            data = yaml.safe_load("\n".join(lines[1:i]))
            body = "\n".join(lines[i + 1:])
            if data is None:
                return {}, body
            if not isinstance(data, dict):
                return {}, text
            return data, body

    return {}, text


def render_frontmatter(content: str, frontmatter: dict[str, Any]) -> str:
    """Join frontmatter and body back into one document."""
    if not frontmatter:
        return content
    dumped = yaml.safe_dump(
        frontmatter,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"{FRONTMATTER_FENCE}\n{dumped}{FRONTMATTER_FENCE}\n{content}"


# =============================================================================
# Raw file access (used for snapshots and rollback)
# =============================================================================


def read_raw(vault_path: Path | str, note_path: str) -> str | None:
    """Return the exact file text, or None if the file doesn't exist."""
    target = resolve_note_path(vault_path, note_path)
    if not target.is_file():
        return None
    return target.read_bytes().decode("utf-8")


def write_raw(vault_path: Path | str, note_path: str, raw: str) -> None:
    """Write text verbatim, creating parent directories."""
    target = resolve_note_path(vault_path, note_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(raw.encode("utf-8"))


def delete_file(vault_path: Path | str, note_path: str) -> bool:
    """Delete a file. Returns False if it was already gone."""
    target = resolve_note_path(vault_path, note_path)
    if not target.exists():
        return False
    target.unlink()
    return True


# =============================================================================
# Note read/write
# =============================================================================


def read_note(vault_path: Path | str, note_path: str) -> Note:
    """
    Read and parse a note.

    Args:
        vault_path: Vault root directory
        note_path: Vault-relative path of the note

    Returns:
        The parsed Note with its content fingerprint

    Raises:
        PathTraversalError: If the path escapes the vault
        NoteNotFoundError: If the note doesn't exist
        InvalidFrontmatterError: If the frontmatter is not valid YAML
    """
    raw = read_raw(vault_path, note_path)
    if raw is None:
        raise NoteNotFoundError(path=note_path)

    try:
        frontmatter, content = parse_frontmatter(normalize_line_endings(raw))
    except yaml.YAMLError as e:
        reason = getattr(e, "problem", None) or str(e)
        raise InvalidFrontmatterError(path=note_path, reason=reason) from e
    return Note(
        path=note_path,
        content=content,
        frontmatter=frontmatter,
        raw=raw,
        line_ending=detect_line_ending(raw),
        content_hash=compute_hash(raw),
    )


def write_note(
    vault_path: Path | str,
    note_path: str,
    content: str,
    frontmatter: dict[str, Any] | None = None,
    line_ending: LineEnding = "LF",
    expected_hash: str | None = None,
) -> str:
    """
    Render and write a note.

    Args:
        vault_path: Vault root directory
        note_path: Vault-relative path of the note
        content: Body text
        frontmatter: Frontmatter mapping (omitted from output when empty)
        line_ending: Line ending style to write
        expected_hash: Fingerprint from the read this write is based on;
            None writes unconditionally

    Returns:
        The fingerprint of the newly written text

    Raises:
        PathTraversalError: If the path escapes the vault
        WriteConflictError: If the file no longer matches expected_hash
    """
    if expected_hash is not None:
        current = read_raw(vault_path, note_path)
        actual_hash = compute_hash(current) if current is not None else ""
        if actual_hash != expected_hash:
            raise WriteConflictError(
                path=note_path,
                expected_hash=expected_hash,
                actual_hash=actual_hash,
            )

    output = render_frontmatter(content, frontmatter or {})
    output = convert_line_endings(normalize_trailing_newline(output), line_ending)
    write_raw(vault_path, note_path, output)
    return compute_hash(output)
