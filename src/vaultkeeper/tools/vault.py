"""
Vault mutation primitives.

One Tool per ToolName:
- vault_add_to_section: insert content into a heading section
- vault_remove_from_section: remove matching lines from a section
- vault_replace_in_section: replace matches inside a section
- vault_create_note: create a note (optionally with frontmatter)
- vault_delete_note: delete a note (requires confirm: true)
- vault_toggle_task: flip a checkbox task found by text
- vault_add_task: add a checkbox task to a section
- vault_update_frontmatter: merge keys into frontmatter
- vault_add_frontmatter_field: add one new frontmatter key

Every read-modify-write passes the fingerprint from the read back to
write_note, so a concurrent edit surfaces as a failed step instead of a lost
update. Expected failures (missing note, missing section, malformed
frontmatter, no match, path outside the vault, write conflict) come back as
ToolOutput.fail().
"""

import re
from abc import abstractmethod
from typing import Any

from vaultkeeper.errors import SectionNotFoundError, ToolExecutionError, VaultError
from vaultkeeper.schema import ToolName
from vaultkeeper.tools.base import Tool, ToolContext, ToolOutput
from vaultkeeper.tools.registry import ToolRegistry, default_registry
from vaultkeeper.vault import notes
from vaultkeeper.vault.sections import (
    SectionBoundary,
    find_section,
    find_tasks,
    format_content,
    insert_in_section,
    remove_from_section,
    replace_in_section,
    toggle_task,
)

POSITIONS = ("append", "prepend")
MATCH_MODES = ("first", "last", "all")
FORMATS = ("plain", "bullet", "task", "numbered", "timestamp-bullet")
PREVIEW_LIMIT = 200


def as_bool(value: Any) -> bool:
    """Interpret a parameter that may have been rendered from a template."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_LIMIT:
        return text
    return text[:PREVIEW_LIMIT] + "..."


def _require_strings(args: dict[str, Any], *names: str) -> list[str]:
    errors = []
    for name in names:
        if name not in args or args[name] is None:
            errors.append(f"'{name}' is required")
        elif not isinstance(args[name], str):
            errors.append(f"'{name}' must be a string")
        elif not args[name].strip():
            errors.append(f"'{name}' cannot be empty")
    return errors


def _require_section(note: notes.Note, name: str) -> SectionBoundary:
    section = find_section(note.content, name)
    if section is None:
        raise SectionNotFoundError(path=note.path, section=name)
    return section


def _require_choice(args: dict[str, Any], name: str, choices: tuple[str, ...]) -> list[str]:
    if name in args and args[name] not in choices:
        return [f"'{name}' must be one of: {', '.join(choices)}"]
    return []


class VaultTool(Tool):
    """
    Shared execute() for vault primitives.

    Validates parameters, then runs the primitive and converts vault errors
    and bad regular expressions into failed outputs. Unexpected I/O errors
    are raised as ToolExecutionError.
    """

    tool_name: ToolName

    @property
    def name(self) -> str:
        return self.tool_name.value

    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        errors = self.validate_args(args)
        if errors:
            return ToolOutput.fail(f"Invalid arguments: {'; '.join(errors)}", path=args.get("path"))

        try:
            return self.run(args, context)
        except VaultError as e:
            return ToolOutput.fail(e.message, path=e.path or args.get("path"))
        except re.error as e:
            return ToolOutput.fail(f"Invalid regex: {e}", path=args.get("path"))
        except (OSError, UnicodeDecodeError) as e:
            raise ToolExecutionError(tool=self.name, tool_args=args, underlying_error=str(e)) from e

    @abstractmethod
    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        """Perform the mutation; vault errors may propagate."""
        ...


# =============================================================================
# Section primitives
# =============================================================================


class AddToSectionTool(VaultTool):
    """
    Insert content into a section.

    Arguments:
        path (str): Note path (required)
        section (str): Heading name (required)
        content (str): Text to insert (required)
        position (str): "append" (default) or "prepend"
        format (str): plain, bullet, task, numbered or timestamp-bullet
    """

    tool_name = ToolName.ADD_TO_SECTION

    @property
    def description(self) -> str:
        return "Add content to a section of a note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path", "section")
        if not isinstance(args.get("content"), str):
            errors.append("'content' must be a string")
        errors += _require_choice(args, "position", POSITIONS)
        errors += _require_choice(args, "format", FORMATS)
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        note = notes.read_note(context.vault_path, path)
        section = _require_section(note, args["section"])

        formatted = format_content(args["content"], args.get("format", "plain"))
        updated = insert_in_section(note.content, section, formatted, args.get("position", "append"))
        notes.write_note(
            context.vault_path, path, updated, note.frontmatter,
            note.line_ending, expected_hash=note.content_hash,
        )
        return ToolOutput.ok(
            f"Added content to section '{section.name}' in {path}",
            path=path,
            preview=_preview(formatted),
            section=section.name,
        )


class RemoveFromSectionTool(VaultTool):
    """Remove lines matching a pattern from a section."""

    tool_name = ToolName.REMOVE_FROM_SECTION

    @property
    def description(self) -> str:
        return "Remove matching lines from a section of a note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path", "section", "pattern")
        errors += _require_choice(args, "mode", MATCH_MODES)
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        note = notes.read_note(context.vault_path, path)
        section = _require_section(note, args["section"])

        updated, removed = remove_from_section(
            note.content, section, args["pattern"],
            args.get("mode", "first"), as_bool(args.get("use_regex", False)),
        )
        if not removed:
            return ToolOutput.fail(
                f"No content matching '{args['pattern']}' found in section '{section.name}'",
                path=path,
            )

        notes.write_note(
            context.vault_path, path, updated, note.frontmatter,
            note.line_ending, expected_hash=note.content_hash,
        )
        return ToolOutput.ok(
            f"Removed {len(removed)} line(s) from section '{section.name}' in {path}",
            path=path,
            preview=_preview("\n".join(removed)),
            removed_count=len(removed),
        )


class ReplaceInSectionTool(VaultTool):
    """Replace text matching a pattern inside a section."""

    tool_name = ToolName.REPLACE_IN_SECTION

    @property
    def description(self) -> str:
        return "Replace matching content in a section of a note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path", "section", "search")
        if not isinstance(args.get("replacement"), str):
            errors.append("'replacement' must be a string")
        errors += _require_choice(args, "mode", MATCH_MODES)
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        note = notes.read_note(context.vault_path, path)
        section = _require_section(note, args["section"])

        updated, originals, replaced = replace_in_section(
            note.content, section, args["search"], args["replacement"],
            args.get("mode", "first"), as_bool(args.get("use_regex", False)),
        )
        if not originals:
            return ToolOutput.fail(
                f"No content matching '{args['search']}' found in section '{section.name}'",
                path=path,
            )

        notes.write_note(
            context.vault_path, path, updated, note.frontmatter,
            note.line_ending, expected_hash=note.content_hash,
        )
        return ToolOutput.ok(
            f"Replaced {len(originals)} line(s) in section '{section.name}' in {path}",
            path=path,
            preview=_preview("\n".join(replaced)),
            replaced_count=len(originals),
        )


# =============================================================================
# Note primitives
# =============================================================================


class CreateNoteTool(VaultTool):
    """
    Create a note, making parent directories as needed.

    Fails if the note exists unless overwrite is true.
    """

    tool_name = ToolName.CREATE_NOTE

    @property
    def description(self) -> str:
        return "Create a new note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path")
        if "content" in args and not isinstance(args["content"], str):
            errors.append("'content' must be a string")
        if "frontmatter" in args and not isinstance(args["frontmatter"], dict):
            errors.append("'frontmatter' must be a mapping")
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        overwrite = as_bool(args.get("overwrite", False))
        if notes.note_exists(context.vault_path, path) and not overwrite:
            return ToolOutput.fail(f"File already exists: {path}", path=path)

        content = args.get("content", "")
        notes.write_note(context.vault_path, path, content, args.get("frontmatter") or {})
        return ToolOutput.ok(f"Created note: {path}", path=path, preview=_preview(content))


class DeleteNoteTool(VaultTool):
    """Delete a note. Requires confirm: true."""

    tool_name = ToolName.DELETE_NOTE

    @property
    def description(self) -> str:
        return "Delete a note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        return _require_strings(args, "path")

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        if not as_bool(args.get("confirm", False)):
            return ToolOutput.fail("Deletion requires explicit confirmation (confirm: true)", path=path)
        if not notes.note_exists(context.vault_path, path):
            return ToolOutput.fail(f"File not found: {path}", path=path)

        notes.delete_file(context.vault_path, path)
        return ToolOutput.ok(f"Deleted note: {path}", path=path)


# =============================================================================
# Task primitives
# =============================================================================


class ToggleTaskTool(VaultTool):
    """
    Toggle the first task whose text contains `task` (case-insensitive).

    An optional `section` limits the search to one section.
    """

    tool_name = ToolName.TOGGLE_TASK

    @property
    def description(self) -> str:
        return "Toggle a task checkbox"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path", "task")
        if args.get("section") is not None and not isinstance(args["section"], str):
            errors.append("'section' must be a string")
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        note = notes.read_note(context.vault_path, path)

        section = None
        if args.get("section"):
            section = _require_section(note, args["section"])

        wanted = args["task"].lower()
        match = next((t for t in find_tasks(note.content, section) if wanted in t.text.lower()), None)
        if match is None:
            return ToolOutput.fail(f"No task found matching '{args['task']}'", path=path)

        toggled = toggle_task(note.content, match.line)
        if toggled is None:
            return ToolOutput.fail(f"No task found matching '{args['task']}'", path=path)
        updated, completed = toggled

        notes.write_note(
            context.vault_path, path, updated, note.frontmatter,
            note.line_ending, expected_hash=note.content_hash,
        )
        state = "completed" if completed else "incomplete"
        return ToolOutput.ok(
            f"Marked task '{match.text}' as {state} in {path}",
            path=path,
            preview=match.text,
            task=match.text,
            completed=completed,
        )


class AddTaskTool(VaultTool):
    """Add a checkbox task to a section."""

    tool_name = ToolName.ADD_TASK

    @property
    def description(self) -> str:
        return "Add a task to a section of a note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path", "section", "task")
        errors += _require_choice(args, "position", POSITIONS)
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        note = notes.read_note(context.vault_path, path)
        section = _require_section(note, args["section"])

        mark = "x" if as_bool(args.get("completed", False)) else " "
        line = f"- [{mark}] {args['task'].strip()}"
        updated = insert_in_section(note.content, section, line, args.get("position", "append"))
        notes.write_note(
            context.vault_path, path, updated, note.frontmatter,
            note.line_ending, expected_hash=note.content_hash,
        )
        return ToolOutput.ok(
            f"Added task to section '{section.name}' in {path}",
            path=path,
            preview=line,
            task=args["task"].strip(),
        )


# =============================================================================
# Frontmatter primitives
# =============================================================================


class UpdateFrontmatterTool(VaultTool):
    """Merge keys into a note's frontmatter (existing keys are overwritten)."""

    tool_name = ToolName.UPDATE_FRONTMATTER

    @property
    def description(self) -> str:
        return "Update frontmatter fields of a note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path")
        if not isinstance(args.get("frontmatter"), dict):
            errors.append("'frontmatter' must be a mapping")
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        note = notes.read_note(context.vault_path, path)
        merged = {**note.frontmatter, **args["frontmatter"]}
        notes.write_note(
            context.vault_path, path, note.content, merged,
            note.line_ending, expected_hash=note.content_hash,
        )
        keys = ", ".join(args["frontmatter"])
        return ToolOutput.ok(
            f"Updated frontmatter in {path}: {keys}",
            path=path,
            preview=keys,
            fields=list(args["frontmatter"]),
        )


class AddFrontmatterFieldTool(VaultTool):
    """Add a frontmatter key; fails if it already exists."""

    tool_name = ToolName.ADD_FRONTMATTER_FIELD

    @property
    def description(self) -> str:
        return "Add a new frontmatter field to a note"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = _require_strings(args, "path", "key")
        if "value" not in args:
            errors.append("'value' is required")
        return errors

    def run(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        path = args["path"]
        key = args["key"]
        note = notes.read_note(context.vault_path, path)
        if key in note.frontmatter:
            return ToolOutput.fail(f"Field '{key}' already exists in {path}", path=path)

        frontmatter = {**note.frontmatter, key: args["value"]}
        notes.write_note(
            context.vault_path, path, note.content, frontmatter,
            note.line_ending, expected_hash=note.content_hash,
        )
        return ToolOutput.ok(f"Added frontmatter field '{key}' to {path}", path=path, preview=f"{key}: {args['value']}")


VAULT_TOOLS: tuple[type[VaultTool], ...] = (
    AddToSectionTool,
    RemoveFromSectionTool,
    ReplaceInSectionTool,
    CreateNoteTool,
    DeleteNoteTool,
    ToggleTaskTool,
    AddTaskTool,
    UpdateFrontmatterTool,
    AddFrontmatterFieldTool,
)


def register_vault_tools(registry: ToolRegistry | None = None) -> ToolRegistry:
    """
    Register every vault primitive.

    Args:
        registry: Registry to populate (default: the global registry)

    Returns:
        The populated registry
    """
    registry = registry if registry is not None else default_registry
    for tool_cls in VAULT_TOOLS:
        registry.register(tool_cls())
    return registry
