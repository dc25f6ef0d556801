"""
Heading-section editing for Markdown bodies.

A section starts at a heading line and ends right before the next heading of
the same or higher level (or at the end of the document). Headings inside
fenced code blocks are ignored. All functions operate on LF-normalized body
text and return new text; nothing here touches the filesystem.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

HEADING_REGEX = re.compile(r"^(#{1,6})\s+(.+)$")
TASK_REGEX = re.compile(r"^(\s*)-\s*\[([ xX])\]\s*(.*)$")

Position = Literal["append", "prepend"]
MatchMode = Literal["first", "last", "all"]
FormatType = Literal["plain", "bullet", "task", "numbered", "timestamp-bullet"]

EMPTY_PLACEHOLDER_PATTERNS = [
    re.compile(r"^\d+\.\s*$"),
    re.compile(r"^-\s*$"),
    re.compile(r"^-\s*\[\s*\]\s*$"),
    re.compile(r"^-\s*\[x\]\s*$", re.IGNORECASE),
    re.compile(r"^\*\s*$"),
]

LIST_ITEM_REGEX = re.compile(r"^\s*(?:[-*+]|\d+\.)\s")
STRUCTURED_LINE_REGEX = re.compile(r"^\s*(?:```|\||>|---\s*$|\*\*\*\s*$)")


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    line: int


@dataclass(frozen=True)
class SectionBoundary:
    """
    Line range of a section.

    Attributes:
        name: Heading text as written
        level: Heading level (1-6)
        start_line: Index of the heading line
        end_line: Index of the last line belonging to the section
        content_start_line: Index of the first line after the heading
    """

    name: str
    level: int
    start_line: int
    end_line: int
    content_start_line: int


@dataclass(frozen=True)
class Task:
    line: int
    text: str
    completed: bool
    indent: str


# =============================================================================
# Headings and sections
# =============================================================================


def extract_headings(content: str) -> list[Heading]:
    """List all headings outside fenced code blocks."""
    headings = []
    in_code_block = False
    for i, line in enumerate(content.split("\n")):
        if line.strip().startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block:
            continue
        match = HEADING_REGEX.match(line)
        if match:
            headings.append(Heading(level=len(match.group(1)), text=match.group(2).strip(), line=i))
    return headings


def find_section(content: str, section_name: str) -> SectionBoundary | None:
    """
    Find a section by heading name (case-insensitive, leading #'s ignored).

    Returns:
        The section boundary, or None if no heading matches
    """
    headings = extract_headings(content)
    line_count = len(content.split("\n"))
    wanted = re.sub(r"^#+\s*", "", section_name).strip().lower()

    for index, heading in enumerate(headings):
        if heading.text.lower() != wanted:
            continue
        end_line = line_count - 1
        for later in headings[index + 1:]:
            if later.level <= heading.level:
                end_line = later.line - 1
                break
        return SectionBoundary(
            name=heading.text,
            level=heading.level,
            start_line=heading.line,
            end_line=end_line,
            content_start_line=heading.line + 1,
        )
    return None


def is_empty_placeholder(line: str) -> bool:
    """True for bare list markers such as '- ', '1. ' or '- [ ] '."""
    trimmed = line.strip()
    return any(p.match(trimmed) for p in EMPTY_PLACEHOLDER_PATTERNS)


# =============================================================================
# Formatting
# =============================================================================


def _is_preformatted_list(text: str) -> bool:
    first = text.split("\n")[0]
    return bool(LIST_ITEM_REGEX.match(first))


def _indent_continuation(lines: list[str], prefix: str, indent: str) -> str:
    out = []
    in_code_block = False
    for i, line in enumerate(lines):
        if i == 0:
            out.append(f"{prefix}{line}")
            if line.strip().startswith("```"):
                in_code_block = not in_code_block
            continue
        if line.strip().startswith("```"):
            in_code_block = not in_code_block
            out.append(line)
        elif line == "" or in_code_block or STRUCTURED_LINE_REGEX.match(line):
            out.append(line)
        else:
            out.append(f"{indent}{line}")
    return "\n".join(out)


def format_content(content: str, fmt: FormatType, now: datetime | None = None) -> str:
    """
    Shape free text into a list item (or leave it plain).

    Continuation lines are indented under the item text; code blocks, tables,
    quotes and rules are left alone. Text that already starts with a list
    marker is kept as-is.
    """
    trimmed = content.strip()
    now = now or datetime.now()
    stamp = now.strftime("%H:%M")

    if not trimmed:
        return {
            "plain": "",
            "bullet": "-",
            "task": "- [ ]",
            "numbered": "1.",
            "timestamp-bullet": f"- {stamp}",
        }.get(fmt, "")

    if fmt == "plain" or _is_preformatted_list(trimmed):
        return trimmed

    lines = trimmed.split("\n")
    if fmt == "bullet":
        return _indent_continuation(lines, "- ", "  ")
    if fmt == "task":
        return _indent_continuation(lines, "- [ ] ", "      ")
    if fmt == "numbered":
        return _indent_continuation(lines, "1. ", "   ")
    if fmt == "timestamp-bullet":
        return _indent_continuation(lines, f"- **{stamp}** ", "  ")
    return trimmed


# =============================================================================
# Section edits
# =============================================================================


def insert_in_section(
    content: str,
    section: SectionBoundary,
    new_content: str,
    position: Position = "append",
) -> str:
    """
    Insert text into a section.

    prepend places it right under the heading. append replaces a trailing
    empty placeholder if there is one, otherwise it goes right after the last
    non-blank line (trailing blank lines in the section are dropped so they
    don't pile up across edits).
    """
    lines = content.split("\n")
    text = new_content.strip()

    if position == "prepend":
        lines.insert(section.content_start_line, text)
        return "\n".join(lines)

    last_content = -1
    for i in range(section.end_line, section.content_start_line - 1, -1):
        if lines[i].strip():
            last_content = i
            break

    if last_content >= section.content_start_line and is_empty_placeholder(lines[last_content]):
        lines[last_content] = text
        return "\n".join(lines)

    if last_content >= section.content_start_line:
        for i in range(section.end_line, last_content, -1):
            if not lines[i].strip():
                del lines[i]
        insert_at = last_content + 1
    else:
        insert_at = section.content_start_line

    lines.insert(insert_at, text)
    return "\n".join(lines)


def _line_matches(line: str, pattern: str, use_regex: bool) -> bool:
    if use_regex:
        return re.search(pattern, line) is not None
    return pattern in line


def _matching_lines(
    lines: list[str],
    section: SectionBoundary,
    pattern: str,
    mode: MatchMode,
    use_regex: bool,
) -> list[int]:
    matches = []
    for i in range(section.content_start_line, section.end_line + 1):
        if _line_matches(lines[i], pattern, use_regex):
            matches.append(i)
            if mode == "first":
                break
    if mode == "last" and matches:
        return matches[-1:]
    return matches


def remove_from_section(
    content: str,
    section: SectionBoundary,
    pattern: str,
    mode: MatchMode = "first",
    use_regex: bool = False,
) -> tuple[str, list[str]]:
    """
    Remove matching lines from a section.

    Returns:
        (new content, removed lines)

    Raises:
        re.error: If use_regex is set and the pattern is invalid
    """
    lines = content.split("\n")
    indices = _matching_lines(lines, section, pattern, mode, use_regex)
    removed = [lines[i] for i in indices]
    for i in sorted(indices, reverse=True):
        del lines[i]
    return "\n".join(lines), removed


def replace_in_section(
    content: str,
    section: SectionBoundary,
    search: str,
    replacement: str,
    mode: MatchMode = "first",
    use_regex: bool = False,
) -> tuple[str, list[str], list[str]]:
    """
    Replace matches inside a section, line by line.

    Returns:
        (new content, original lines, replaced lines)
    """
    lines = content.split("\n")
    indices = _matching_lines(lines, section, search, mode, use_regex)
    originals = []
    replaced = []
    for i in indices:
        originals.append(lines[i])
        if use_regex:
            lines[i] = re.sub(search, replacement, lines[i])
        else:
            lines[i] = lines[i].replace(search, replacement)
        replaced.append(lines[i])
    return "\n".join(lines), originals, replaced


# =============================================================================
# Tasks
# =============================================================================


def find_tasks(content: str, section: SectionBoundary | None = None) -> list[Task]:
    """List checkbox tasks, optionally limited to one section."""
    lines = content.split("\n")
    start, end = 0, len(lines) - 1
    if section is not None:
        start, end = section.content_start_line, section.end_line

    tasks = []
    for i in range(start, end + 1):
        match = TASK_REGEX.match(lines[i])
        if match:
            tasks.append(Task(
                line=i,
                text=match.group(3).strip(),
                completed=match.group(2).lower() == "x",
                indent=match.group(1),
            ))
    return tasks


def toggle_task(content: str, line_number: int) -> tuple[str, bool] | None:
    """
    Flip the checkbox on one line.

    Returns:
        (new content, new completed state), or None if the line isn't a task
    """
    lines = content.split("\n")
    if not 0 <= line_number < len(lines):
        return None
    match = TASK_REGEX.match(lines[line_number])
    if not match:
        return None

    completed = match.group(2).lower() != "x"
    mark = "x" if completed else " "
    lines[line_number] = f"{match.group(1)}- [{mark}] {match.group(3)}"
    return "\n".join(lines), completed
