"""
Template resolution for policy parameters.

Expression syntax inside any string:
- {{path}}                  value lookup
- {{path | filter}}         value passed through a filter
- {{path | filter(arg)}}    filter with one literal argument
- {{path | f1 | f2(arg)}}   filters chain left to right

Path resolution order:
1. Builtins by bare name: now, today, time, date
2. Namespaced paths: variables.*, conditions.*, builtins.*, steps.*
3. Anything else is looked up in variables

Dot segments index mappings; numeric segments index lists.

Resolution never raises. An expression that can't be resolved is left in the
output verbatim (and logged) so the problem is visible in the written note; an
unknown filter passes its input through unchanged (and is logged).
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Callable

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
FILTER_PATTERN = re.compile(r"^(.+?)\s*\|\s*(\w+)(?:\(([^)]*)\))?$")

BUILTIN_NAMES = ("now", "today", "time", "date")
NAMESPACES = ("variables", "conditions", "builtins", "steps")

FilterFunc = Callable[[Any, str | None], Any]


class _Unresolved:
    """Marker for a path that doesn't resolve."""

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = _Unresolved()


# =============================================================================
# Context
# =============================================================================


@dataclass
class PolicyContext:
    """
    Values visible to template expressions during one invocation.

    Attributes:
        variables: Resolved variable values
        conditions: Condition results by id (filled once, before any step)
        builtins: now (ISO-8601 UTC), today/date (YYYY-MM-DD), time (HH:MM)
        steps: Outputs of completed steps by step id (append-only)
    """

    variables: dict[str, Any] = field(default_factory=dict)
    conditions: dict[str, bool] = field(default_factory=dict)
    builtins: dict[str, str] = field(default_factory=dict)
    steps: dict[str, dict[str, Any]] = field(default_factory=dict)

    def namespace(self, name: str) -> dict[str, Any]:
        return getattr(self, name)


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def format_time(value: datetime) -> str:
    return value.strftime("%H:%M")


def format_iso(value: datetime) -> str:
    """ISO-8601 with millisecond precision, UTC rendered as Z."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_builtins(now: datetime | None = None) -> dict[str, str]:
    """Builtin values for a local timestamp (default: the current time)."""
    now = now or datetime.now().astimezone()
    today = format_date(now)
    return {
        "now": format_iso(now),
        "today": today,
        "time": format_time(now),
        "date": today,
    }


def create_context(variables: dict[str, Any] | None = None, now: datetime | None = None) -> PolicyContext:
    """Create a fresh context with builtins captured once."""
    return PolicyContext(variables=dict(variables or {}), builtins=build_builtins(now))


# =============================================================================
# Filters
# =============================================================================


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _local(value: datetime) -> datetime:
    return value.astimezone() if value.tzinfo is not None else value


def _filter_default(value: Any, arg: str | None) -> Any:
    if value is None or value is UNRESOLVED or value == "":
        return arg if arg is not None else ""
    return value


def _filter_date(value: Any, arg: str | None) -> Any:
    parsed = _parse_datetime(value)
    return format_date(_local(parsed)) if parsed else render_value(value)


def _filter_time(value: Any, arg: str | None) -> Any:
    parsed = _parse_datetime(value)
    return format_time(_local(parsed)) if parsed else render_value(value)


def _filter_iso(value: Any, arg: str | None) -> Any:
    parsed = _parse_datetime(value)
    return format_iso(parsed) if parsed else render_value(value)


def _filter_join(value: Any, arg: str | None) -> Any:
    if isinstance(value, (list, tuple)):
        separator = ", " if arg is None else arg
        return separator.join(render_value(item) for item in value)
    return render_value(value)


def _filter_first(value: Any, arg: str | None) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else UNRESOLVED
    return render_value(value)[:1]


def _filter_last(value: Any, arg: str | None) -> Any:
    if isinstance(value, (list, tuple)):
        return value[-1] if value else UNRESOLVED
    return render_value(value)[-1:]


def _filter_slug(value: Any, arg: str | None) -> Any:
    return re.sub(r"[^a-z0-9]+", "-", render_value(value).lower()).strip("-")


class FilterRegistry:
    """
    Named pure functions usable after `|` in an expression.

    Filters receive the current value and the optional literal argument.
    """

    def __init__(self) -> None:
        self._filters: dict[str, FilterFunc] = {}

    def register(self, name: str, func: FilterFunc) -> None:
        self._filters[name] = func

    def get(self, name: str) -> FilterFunc | None:
        return self._filters.get(name)

    def names(self) -> list[str]:
        return sorted(self._filters)

    def __contains__(self, name: str) -> bool:
        return name in self._filters


def default_filters() -> FilterRegistry:
    """Registry with the built-in filters."""
    registry = FilterRegistry()
    registry.register("upper", lambda v, _: render_value(v).upper())
    registry.register("lower", lambda v, _: render_value(v).lower())
    registry.register("trim", lambda v, _: render_value(v).strip())
    registry.register("default", _filter_default)
    registry.register("date", _filter_date)
    registry.register("time", _filter_time)
    registry.register("iso", _filter_iso)
    registry.register("join", _filter_join)
    registry.register("first", _filter_first)
    registry.register("last", _filter_last)
    registry.register("slug", _filter_slug)
    return registry


FILTERS = default_filters()


# =============================================================================
# Rendering and path lookup
# =============================================================================


def render_value(value: Any) -> str:
    """
    Render a resolved value into template output.

    Booleans render as true/false, whole floats without a fraction, lists and
    mappings as JSON, dates as ISO strings.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)


def resolve_path(obj: Any, path: str) -> Any:
    """
    Walk a dotted path through mappings and lists.

    Returns:
        The value, or UNRESOLVED if any segment is missing
    """
    current = obj
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return UNRESOLVED
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return UNRESOLVED
            current = current[index]
        else:
            return UNRESOLVED
    return current


def _strip_filters(expr: str) -> str:
    return expr.split("|", 1)[0].strip()


# =============================================================================
# Resolver
# =============================================================================


class TemplateResolver:
    """
    Resolves {{...}} expressions against a PolicyContext.

    Attributes:
        filters: Filter registry used for `|` applications
        logger: Receives warnings for unknown filters and unresolved expressions
    """

    def __init__(
        self,
        filters: FilterRegistry | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.filters = filters if filters is not None else FILTERS
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    def resolve_expression(self, expr: str, ctx: PolicyContext) -> Any:
        """
        Resolve one expression (the text between the braces).

        Returns:
            The resolved value, or UNRESOLVED
        """
        expr = expr.strip()

        match = FILTER_PATTERN.match(expr)
        if match:
            value_expr, name, arg = match.groups()
            value = self.resolve_expression(value_expr, ctx)
            return self.apply_filter(value, name, arg)

        if expr in BUILTIN_NAMES and expr in ctx.builtins:
            return ctx.builtins[expr]

        namespace, _, rest = expr.partition(".")
        if namespace in NAMESPACES and rest:
            return resolve_path(ctx.namespace(namespace), rest)

        return resolve_path(ctx.variables, expr)

    def apply_filter(self, value: Any, name: str, arg: str | None = None) -> Any:
        func = self.filters.get(name)
        if func is None:
            self.logger.warning("Unknown template filter: %s", name)
            return value
        if value is UNRESOLVED and name != "default":
            return UNRESOLVED
        if arg is not None:
            arg = arg.strip()
            if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in "'\"":
                arg = arg[1:-1]
        return func(value, arg)

    def interpolate(self, template: str, ctx: PolicyContext) -> str:
        """Replace every expression in a string; unresolved ones stay verbatim."""

        def replace(match: re.Match) -> str:
            value = self.resolve_expression(match.group(1), ctx)
            if value is UNRESOLVED or value is None:
                self.logger.warning("Unresolved template expression: %s", match.group(0))
                return match.group(0)
            return render_value(value)

        return TEMPLATE_PATTERN.sub(replace, template)

    def interpolate_object(self, obj: Any, ctx: PolicyContext) -> Any:
        """
        Interpolate every string leaf of a nested structure.

        Mappings and sequences are rebuilt; non-string leaves are returned
        unchanged.
        """
        if isinstance(obj, str):
            return self.interpolate(obj, ctx)
        if isinstance(obj, dict):
            return {key: self.interpolate_object(value, ctx) for key, value in obj.items()}
        if isinstance(obj, list):
            return [self.interpolate_object(item, ctx) for item in obj]
        if isinstance(obj, tuple):
            return tuple(self.interpolate_object(item, ctx) for item in obj)
        return obj

    def validate_expressions(self, template: str, ctx: PolicyContext) -> list[str]:
        """Expressions in the template that don't resolve against ctx."""
        unresolved = []
        for expr in extract_expressions(template):
            value = self.resolve_expression(expr, ctx)
            if value is UNRESOLVED or value is None:
                unresolved.append(expr)
        return unresolved


# =============================================================================
# Static analysis helpers
# =============================================================================


def extract_expressions(template: str) -> list[str]:
    """All expressions in a string, trimmed, in order of appearance."""
    return [match.group(1).strip() for match in TEMPLATE_PATTERN.finditer(template)]


def extract_variable_refs(template: str) -> list[str]:
    """
    Top-level variable names a template refers to.

    Builtins, conditions.* and steps.* are not variable references.
    """
    names: list[str] = []
    for expr in extract_expressions(template):
        path = _strip_filters(expr)
        if path in BUILTIN_NAMES:
            continue
        namespace, _, rest = path.partition(".")
        if namespace in ("conditions", "steps", "builtins") and rest:
            continue
        if namespace == "variables" and rest:
            path = rest
        name = path.split(".")[0]
        if name and name not in names:
            names.append(name)
    return names


def has_template_expressions(text: str) -> bool:
    return TEMPLATE_PATTERN.search(text) is not None


def collect_strings(obj: Any) -> list[str]:
    """All string leaves of a nested structure."""
    if isinstance(obj, str):
        return [obj]
    if isinstance(obj, dict):
        return [s for value in obj.values() for s in collect_strings(value)]
    if isinstance(obj, (list, tuple)):
        return [s for item in obj for s in collect_strings(item)]
    return []


_default_resolver = TemplateResolver()


def interpolate(template: str, ctx: PolicyContext) -> str:
    """Interpolate with the default resolver."""
    return _default_resolver.interpolate(template, ctx)


def interpolate_object(obj: Any, ctx: PolicyContext) -> Any:
    """Interpolate a nested structure with the default resolver."""
    return _default_resolver.interpolate_object(obj, ctx)
