"""Unit tests for interpolation and deferred references."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from modules.exceptions import TemplateError
from modules.references import (
    UNAVAILABLE,
    Reference,
    Template,
    collect_references,
    get_path,
    interpolate,
    parse_expression,
    render,
    resolve,
    split_template,
)

VARIABLES = {"project": "demo", "nodeCount": 2, "labels": {"team": "infra"}}


def lookup(head, path):
    source = VARIABLES if head == "var" else {"token": "t0k"}
    value = source[path[0]]
    for part in path[1:]:
        value = value[part]
    return value


class TestSplitTemplate:
    def test_literal_only(self):
        assert split_template("plain") == [("literal", "plain")]

    def test_mixed(self):
        assert split_template("https://${x.endpoint}:443") == [
            ("literal", "https://"),
            ("expr", "x.endpoint"),
            ("literal", ":443"),
        ]

    def test_escape_is_literal(self):
        assert split_template("$${not.a.ref}") == [("literal", "${not.a.ref}")]

    def test_unterminated(self):
        with pytest.raises(TemplateError):
            split_template("${x.endpoint")

    def test_empty_expression(self):
        with pytest.raises(TemplateError):
            split_template("a ${ } b")


class TestParseExpression:
    def test_dotted_with_index(self):
        assert parse_expression("gcp-infra-cluster.status[0].ready") == (
            "gcp-infra-cluster",
            ("status", 0, "ready"),
        )

    def test_head_only(self):
        assert parse_expression("cluster") == ("cluster", ())

    @pytest.mark.parametrize("expr", ["1abc.x", "x..y", "x[a]", "x.y z"])
    def test_malformed(self, expr):
        with pytest.raises(TemplateError):
            parse_expression(expr)


class TestInterpolate:
    def test_variable_keeps_native_type(self):
        assert interpolate("${var.nodeCount}", lookup) == 2
        assert interpolate("${var.labels}", lookup) == {"team": "infra"}

    def test_variable_inside_text_is_stringified(self):
        assert interpolate("${var.project}.svc.id.goog", lookup) == "demo.svc.id.goog"

    def test_single_resource_reference_is_deferred(self):
        value = interpolate("${cluster.endpoint}", lookup)
        assert value == Reference("cluster", ("endpoint",))

    def test_reference_in_text_becomes_template(self):
        value = interpolate("https://${cluster.endpoint}/${var.project}", lookup)
        assert isinstance(value, Template)
        assert value.parts == ["https://", Reference("cluster", ("endpoint",)), "/demo"]

    def test_nested_structures(self):
        value = interpolate(
            {"a": ["${var.project}", {"b": "${net.id}"}], "n": 3, "flag": True}, lookup
        )
        assert value == {
            "a": ["demo", {"b": Reference("net", ("id",))}],
            "n": 3,
            "flag": True,
        }

    def test_escaped_text_survives(self):
        assert interpolate("$${var.project}", lookup) == "${var.project}"

    def test_template_text_re_escapes(self):
        value = interpolate("$${literal} ${net.id}", lookup)
        assert value.text() == "$${literal} ${net.id}"


class TestCollectAndResolve:
    def test_collect_references(self):
        value = {
            "a": Reference("x", ("id",)),
            "b": [Template(["p-", Reference("y", ("name",))])],
        }
        assert collect_references(value) == [
            Reference("x", ("id",)),
            Reference("y", ("name",)),
        ]

    def test_resolve_replaces_references(self):
        outputs = {"x": {"id": "x-1", "list": [{"v": 7}]}}
        value = {
            "id": Reference("x", ("id",)),
            "deep": Reference("x", ("list", 0, "v")),
            "url": Template(["https://", Reference("x", ("id",))]),
        }

        resolved = resolve(value, lambda ref: get_path(outputs[ref.resource_id], ref.path))

        assert resolved == {"id": "x-1", "deep": 7, "url": "https://x-1"}

    def test_get_path_missing_raises_lookup_error(self):
        with pytest.raises(LookupError):
            get_path({"a": [1]}, ("a", 3))
        with pytest.raises(LookupError):
            get_path({"a": 1}, ("b",))

    def test_render(self):
        value = {"r": Reference("x", ("a", 0)), "t": Template(["v", Reference("y")])}
        assert render(value) == {"r": "${x.a[0]}", "t": "v${y}"}


def test_unavailable_marker():
    assert not UNAVAILABLE
    assert repr(UNAVAILABLE) == "<unavailable>"
    assert type(UNAVAILABLE)() is UNAVAILABLE
