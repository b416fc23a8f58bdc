"""Tests for the document model: parsing, locations and serialization."""

import pytest

from pipexpand.ast import (
    Directive,
    DirectiveKind,
    Location,
    Mapping,
    Scalar,
    Sequence,
    contains_directives,
    from_python,
    parse,
    parse_file,
    serialize,
)
from pipexpand.errors import ErrorKind, ParseError


SAMPLE = """trigger:
  - main
stages:
  - stage: Build
    jobs:
      - job: Compile
        steps:
          - script: echo hi
"""

TEMPLATE = """parameters:
  - name: steps
    type: stepList
    default: []
steps:
- ${{ each step in parameters.steps }}:
  - ${{ step }}
- ${{ if eq(parameters.debug, true) }}:
  - script: echo debug
"""


# =============================================================================
# Parsing
# =============================================================================


class TestParse:
    def test_keeps_key_order_and_values(self):
        """Mappings keep the order keys were written in."""
        doc = parse(SAMPLE)
        assert isinstance(doc, Mapping)
        assert doc.keys() == ["trigger", "stages"]

        stages = doc.get("stages")
        assert isinstance(stages, Sequence)
        stage = stages.items[0]
        assert isinstance(stage, Mapping)
        assert stage.keys() == ["stage", "jobs"]
        assert stage.get("stage") == Scalar("Build")

    def test_locations_are_one_based(self):
        """Every node records where it was written."""
        doc = parse(SAMPLE, "azure-pipelines.yml")
        assert doc.pairs[1].location == Location("azure-pipelines.yml", 3, 1)

        stage = doc.get("stages").items[0]
        assert stage.location == Location("azure-pipelines.yml", 4, 5)
        assert str(stage.location) == "azure-pipelines.yml:4:5"

    def test_locations_do_not_affect_equality(self):
        assert parse("a: 1\n", "one.yml") == parse("\n\na: 1\n", "two.yml")

    def test_scalars_use_yaml_types(self):
        doc = parse("n: 3\nf: 1.5\nb: true\nz: null\ns: '3'\n")
        assert doc.to_python() == {"n": 3, "f": 1.5, "b": True, "z": None, "s": "3"}

    def test_timestamps_stay_as_text(self):
        doc = parse("date: 2024-01-01\n")
        assert doc.get("date") == Scalar("2024-01-01")

    def test_keys_are_kept_as_written(self):
        """Keys like `on` are not turned into booleans."""
        doc = parse("on: push\n")
        assert doc.keys() == ["on"]

    def test_duplicate_keys_raise(self):
        with pytest.raises(ParseError, match="Duplicate key 'a'") as exc:
            parse("a: 1\nb: 2\na: 3\n", "dup.yml")
        assert exc.value.location == Location("dup.yml", 3, 1)
        assert exc.value.diagnostic.kind is ErrorKind.PARSE_ERROR

    def test_invalid_yaml_raises_with_location(self):
        with pytest.raises(ParseError, match="Invalid YAML") as exc:
            parse("a: [1, 2\nb: 3\n")
        assert exc.value.location is not None

    def test_empty_document_raises(self):
        with pytest.raises(ParseError, match="empty"):
            parse("")

    def test_non_scalar_key_raises(self):
        with pytest.raises(ParseError, match="keys must be scalars"):
            parse("? [a, b]\n: 1\n")

    def test_parse_file(self, tmp_path):
        path = tmp_path / "pipeline.yml"
        path.write_text(SAMPLE)
        doc = parse_file(path)
        assert doc.pairs[0].location.source == str(path)
        assert doc == parse(SAMPLE)


class TestDirectives:
    def test_if_and_each_become_directives(self):
        doc = parse(TEMPLATE)
        steps = doc.get("steps")
        each_item, if_item = steps.items

        (each,) = each_item.directives
        assert each.kind is DirectiveKind.EACH
        assert each.variable == "step"
        assert each.expression == "parameters.steps"
        assert isinstance(each.body, Sequence)

        (cond,) = if_item.directives
        assert cond.kind is DirectiveKind.IF
        assert cond.expression == "eq(parameters.debug, true)"
        assert cond.source_text == "${{ if eq(parameters.debug, true) }}"

    def test_expression_keys_are_not_directives(self):
        doc = parse("${{ parameters.name }}: value\n")
        assert doc.keys() == ["${{ parameters.name }}"]
        assert not doc.has_directives()

    @pytest.mark.parametrize("word", ["else", "elseif eq(1, 1)", "insert"])
    def test_unsupported_directives_raise(self, word):
        """Mutually exclusive branches are written as two `if` directives."""
        with pytest.raises(ParseError, match="Unsupported directive"):
            parse(f"${{{{ {word} }}}}:\n  a: 1\n")

    def test_malformed_each_raises(self):
        with pytest.raises(ParseError, match="Malformed each"):
            parse("${{ each in parameters.list }}:\n  a: 1\n")

    def test_malformed_if_raises(self):
        with pytest.raises(ParseError, match="Malformed if"):
            parse("${{ if }}:\n  a: 1\n")

    def test_contains_directives(self):
        assert contains_directives(parse(TEMPLATE))
        assert not contains_directives(parse(SAMPLE))


# =============================================================================
# Serialization
# =============================================================================


class TestSerialize:
    def test_round_trip(self):
        doc = parse(SAMPLE)
        assert parse(serialize(doc)) == doc

    def test_round_trip_with_directives(self):
        """Unexpanded templates serialize back to equivalent templates."""
        doc = parse(TEMPLATE)
        assert parse(serialize(doc)) == doc

    def test_preserves_key_order(self):
        text = serialize(parse("z: 1\na: 2\nm: 3\n"))
        assert text == "z: 1\na: 2\nm: 3\n"

    def test_strings_that_look_like_other_types_stay_strings(self):
        doc = from_python({"version": "1.0", "flag": "true", "empty": ""})
        assert parse(serialize(doc)) == doc

    def test_directive_nodes_are_python_dicts(self):
        directive = Directive(
            kind=DirectiveKind.IF, expression="true", body=from_python({"a": 1})
        )
        assert directive.to_python() == {"${{ if true }}": {"a": 1}}
