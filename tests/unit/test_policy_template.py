"""
Unit tests for template resolution.

Tests cover:
- Path resolution order (builtins, namespaces, bare variables)
- Filters and filter chains
- Rendering of non-string values
- Unresolved expressions and unknown filters
- Static analysis helpers
"""

import logging
from datetime import datetime, timezone

import pytest

from vaultkeeper.policy.template import (
    UNRESOLVED,
    FilterRegistry,
    PolicyContext,
    TemplateResolver,
    build_builtins,
    create_context,
    extract_expressions,
    extract_variable_refs,
    format_iso,
    has_template_expressions,
    interpolate,
    interpolate_object,
    render_value,
    resolve_path,
)


@pytest.fixture
def ctx() -> PolicyContext:
    """A context with variables, conditions, step outputs and fixed builtins."""
    context = create_context(
        {
            "title": "Weekly Review",
            "count": 0,
            "flag": False,
            "tags": ["a", "b"],
            "meta": {"owner": "sam"},
            "date": "2024-02-01",
        },
        now=datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc),
    )
    context.conditions["has_note"] = True
    context.steps["create"] = {"path": "notes/x.md"}
    return context


class TestBuiltins:
    """Tests for builtin values."""

    def test_values(self) -> None:
        """Builtins are captured from one timestamp."""
        builtins = build_builtins(datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc))
        assert builtins["today"] == "2024-01-15"
        assert builtins["date"] == builtins["today"]
        assert builtins["time"] == "09:30"
        assert builtins["now"] == "2024-01-15T09:30:00.000Z"

    def test_iso_millis(self) -> None:
        """ISO output has millisecond precision and a Z suffix."""
        value = datetime(2024, 1, 15, 9, 30, 1, 123456, tzinfo=timezone.utc)
        assert format_iso(value) == "2024-01-15T09:30:01.123Z"


class TestResolution:
    """Tests for path resolution order."""

    def test_bare_variable(self, ctx: PolicyContext) -> None:
        """Bare names look up variables."""
        assert interpolate("{{title}}", ctx) == "Weekly Review"

    def test_namespaced_variable(self, ctx: PolicyContext) -> None:
        """variables.* is explicit."""
        assert interpolate("{{ variables.title }}", ctx) == "Weekly Review"

    def test_builtin_wins_over_variable(self, ctx: PolicyContext) -> None:
        """A bare builtin name resolves to the builtin even if a variable shadows it."""
        assert interpolate("{{date}}", ctx) == "2024-01-15"
        assert interpolate("{{variables.date}}", ctx) == "2024-02-01"

    def test_builtins_namespace(self, ctx: PolicyContext) -> None:
        """builtins.* resolves too."""
        assert interpolate("{{builtins.today}}", ctx) == "2024-01-15"

    def test_conditions_and_steps(self, ctx: PolicyContext) -> None:
        """Conditions and step outputs are addressable."""
        assert interpolate("{{conditions.has_note}}", ctx) == "true"
        assert interpolate("{{steps.create.path}}", ctx) == "notes/x.md"

    def test_nested_and_index(self, ctx: PolicyContext) -> None:
        """Dot segments index mappings and lists."""
        assert interpolate("{{meta.owner}} {{tags.1}}", ctx) == "sam b"

    def test_resolve_path_missing(self) -> None:
        """Missing segments are UNRESOLVED."""
        assert resolve_path({"a": [1]}, "a.5") is UNRESOLVED
        assert resolve_path({"a": 1}, "a.b") is UNRESOLVED


class TestRendering:
    """Tests for value rendering."""

    def test_falsy_values_render(self, ctx: PolicyContext) -> None:
        """0 and False are values, not missing."""
        assert interpolate("{{count}}/{{flag}}", ctx) == "0/false"

    def test_list_renders_json(self, ctx: PolicyContext) -> None:
        """Lists render as JSON."""
        assert interpolate("{{tags}}", ctx) == '["a", "b"]'

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(True, "true"), (3.0, "3"), (2.5, "2.5"), (None, ""), ({"k": 1}, '{"k": 1}')],
    )
    def test_render_value(self, value: object, expected: str) -> None:
        """Non-string values render deterministically."""
        assert render_value(value) == expected


class TestFilters:
    """Tests for filters."""

    def test_case_and_trim(self, ctx: PolicyContext) -> None:
        """upper, lower and trim."""
        assert interpolate("{{title | upper}}", ctx) == "WEEKLY REVIEW"
        assert interpolate("{{title | lower}}", ctx) == "weekly review"
        ctx.variables["padded"] = "  x  "
        assert interpolate("[{{padded | trim}}]", ctx) == "[x]"

    def test_chain(self, ctx: PolicyContext) -> None:
        """Filters apply left to right."""
        assert interpolate("{{title | slug | upper}}", ctx) == "WEEKLY-REVIEW"

    def test_default(self, ctx: PolicyContext) -> None:
        """default fills missing values; quotes around the argument are stripped."""
        assert interpolate("{{missing | default('none')}}", ctx) == "none"
        assert interpolate('{{missing | default("n/a")}}', ctx) == "n/a"
        assert interpolate("{{title | default(x)}}", ctx) == "Weekly Review"

    def test_join(self, ctx: PolicyContext) -> None:
        """join uses ', ' unless given a separator."""
        assert interpolate("{{tags | join}}", ctx) == "a, b"
        assert interpolate("{{tags | join(' / ')}}", ctx) == "a / b"

    def test_first_last(self, ctx: PolicyContext) -> None:
        """first and last pick list ends."""
        assert interpolate("{{tags | first}}-{{tags | last}}", ctx) == "a-b"

    def test_date_filters(self, ctx: PolicyContext) -> None:
        """date and iso parse ISO strings."""
        ctx.variables["when"] = "2024-03-05T10:00:00"
        assert interpolate("{{when | date}}", ctx) == "2024-03-05"
        assert interpolate("{{when | time}}", ctx) == "10:00"

    def test_unknown_filter_passthrough(self, ctx: PolicyContext, caplog: pytest.LogCaptureFixture) -> None:
        """Unknown filters pass the value through and log a warning."""
        with caplog.at_level(logging.WARNING):
            assert interpolate("{{title | shout}}", ctx) == "Weekly Review"
        assert "Unknown template filter: shout" in caplog.text

    def test_custom_registry(self, ctx: PolicyContext) -> None:
        """Resolvers can use their own filters."""
        filters = FilterRegistry()
        filters.register("twice", lambda v, _: render_value(v) * 2)
        resolver = TemplateResolver(filters=filters)
        assert resolver.interpolate("{{count | twice}}", ctx) == "00"


class TestUnresolved:
    """Tests for expressions that don't resolve."""

    def test_left_verbatim(self, ctx: PolicyContext, caplog: pytest.LogCaptureFixture) -> None:
        """Unresolved expressions stay in the output and are logged."""
        with caplog.at_level(logging.WARNING):
            assert interpolate("Hi {{nobody}}!", ctx) == "Hi {{nobody}}!"
        assert "Unresolved template expression" in caplog.text

    def test_injected_logger(self, ctx: PolicyContext) -> None:
        """The resolver logs to the logger it was given."""
        records: list[logging.LogRecord] = []

        class Collect(logging.Handler):
            def emit(self, record: logging.LogRecord) -> None:
                records.append(record)

        log = logging.getLogger("test.injected")
        log.addHandler(Collect())
        TemplateResolver(logger=log).interpolate("{{steps.none.path}}", ctx)
        assert records and "steps.none.path" in records[0].getMessage()

    def test_validate_expressions(self, ctx: PolicyContext) -> None:
        """validate_expressions lists what doesn't resolve."""
        resolver = TemplateResolver()
        assert resolver.validate_expressions("{{title}} {{ghost}} {{steps.x.path}}", ctx) == [
            "ghost",
            "steps.x.path",
        ]


class TestInterpolateObject:
    """Tests for nested interpolation."""

    def test_nested(self, ctx: PolicyContext) -> None:
        """Every string leaf is interpolated; other leaves are kept."""
        result = interpolate_object(
            {"a": "{{title}}", "b": ["{{count}}", 5], "c": {"d": True}, "e": None},
            ctx,
        )
        assert result == {"a": "Weekly Review", "b": ["0", 5], "c": {"d": True}, "e": None}


class TestStaticHelpers:
    """Tests for expression extraction."""

    def test_extract_expressions(self) -> None:
        """Expressions are trimmed and ordered."""
        assert extract_expressions("{{ a }} and {{b|upper}}") == ["a", "b|upper"]

    def test_extract_variable_refs(self) -> None:
        """Only variable references are reported."""
        refs = extract_variable_refs(
            "{{a}} {{variables.b.c}} {{today}} {{steps.s.path}} {{conditions.x}} {{d | upper}} {{a}}"
        )
        assert refs == ["a", "b", "d"]

    def test_has_template_expressions(self) -> None:
        """Detects any expression."""
        assert has_template_expressions("x {{y}}")
        assert not has_template_expressions("plain")
