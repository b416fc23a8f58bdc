"""Tests for directive expansion: if, each, substitution and error markers."""

import pytest

from pipexpand.ast import Mapping, parse, serialize
from pipexpand.compiler import Expander, expand
from pipexpand.compiler.expander import collect_variables
from pipexpand.errors import (
    ConflictingBranchesError,
    ErrorKind,
    ParseError,
    PolicyViolationError,
    RuntimeReferenceError,
    TypeMismatchError,
    UndefinedReferenceError,
)


def run(text, **bindings):
    return expand(parse(text), bindings).to_python()


# =============================================================================
# if
# =============================================================================


class TestIf:
    TEXT = """steps:
- script: build
- ${{ if eq(parameters.debug, true) }}:
  - script: debug one
  - script: debug two
- script: test
"""

    def test_false_omits_subtree(self):
        """A false condition removes the body, not just disables it."""
        result = run(self.TEXT, debug=False)
        assert result == {"steps": [{"script": "build"}, {"script": "test"}]}

    def test_true_splices_body(self):
        result = run(self.TEXT, debug=True)
        assert [s["script"] for s in result["steps"]] == [
            "build",
            "debug one",
            "debug two",
            "test",
        ]

    def test_if_in_mapping_merges_pairs(self):
        text = """job: build
${{ if eq(parameters.os, 'linux') }}:
  pool: ubuntu-latest
  timeoutInMinutes: 10
"""
        assert run(text, os="linux") == {
            "job": "build",
            "pool": "ubuntu-latest",
            "timeoutInMinutes": 10,
        }
        assert run(text, os="windows") == {"job": "build"}

    @pytest.mark.parametrize("linux", [True, False])
    def test_complementary_branches_keep_exactly_one(self, linux):
        text = """job: build
${{ if parameters.linux }}:
  pool: ubuntu-latest
${{ if not(parameters.linux) }}:
  pool: windows-latest
"""
        result = run(text, linux=linux)
        assert result["pool"] == ("ubuntu-latest" if linux else "windows-latest")
        assert list(result) == ["job", "pool"]

    def test_overlapping_branches_conflict(self):
        text = """job: build
${{ if eq(1, 1) }}:
  pool: ubuntu-latest
${{ if ne(1, 2) }}:
  pool: windows-latest
"""
        with pytest.raises(ConflictingBranchesError, match="'pool'") as exc:
            run(text)
        assert exc.value.diagnostic.kind is ErrorKind.CONFLICTING_BRANCHES
        assert "${{ if eq(1, 1) }}" in exc.value.directive

    def test_branch_conflicting_with_literal_key(self):
        text = """pool: default
${{ if true }}:
  pool: other
"""
        with pytest.raises(ConflictingBranchesError):
            run(text)

    def test_mapping_directive_must_yield_mapping(self):
        text = """job: build
${{ if true }}:
  - script: x
"""
        with pytest.raises(TypeMismatchError, match="must produce a mapping"):
            run(text)

    def test_runtime_reference_reports_directive(self):
        text = """steps:
- ${{ if eq(dependencies.Build.result, 'Succeeded') }}:
  - script: deploy
"""
        with pytest.raises(RuntimeReferenceError) as exc:
            expand(parse(text, "pipe.yml"))
        assert exc.value.directive == "${{ if eq(dependencies.Build.result, 'Succeeded') }}"
        assert exc.value.location.line == 2
        assert exc.value.path == "steps[0]"


# =============================================================================
# each
# =============================================================================


class TestEach:
    def test_sequence_yields_one_expansion_per_item_in_order(self):
        text = """steps:
- ${{ each name in parameters.names }}:
  - script: echo ${{ name }}
"""
        result = run(text, names=["a", "b", "c"])
        assert result["steps"] == [
            {"script": "echo a"},
            {"script": "echo b"},
            {"script": "echo c"},
        ]

    def test_empty_collection_yields_nothing(self):
        text = """steps:
- ${{ each name in parameters.names }}:
  - script: echo ${{ name }}
- script: done
"""
        assert run(text, names=[])["steps"] == [{"script": "done"}]

    def test_mapping_binds_key_and_value(self):
        text = """variables:
  ${{ each pair in parameters.settings }}:
    ${{ pair.key }}: ${{ upper(pair.value) }}
"""
        result = run(text, settings={"region": "eu", "tier": "gold"})
        assert result == {"variables": {"region": "EU", "tier": "GOLD"}}

    def test_nested_each_and_if(self):
        text = """jobs:
- ${{ each os in parameters.platforms }}:
  - ${{ each config in parameters.configs }}:
    - ${{ if or(ne(os, 'mac'), eq(config, 'release')) }}:
      - job: ${{ os }}_${{ config }}
"""
        result = run(text, platforms=["linux", "mac"], configs=["debug", "release"])
        assert [j["job"] for j in result["jobs"]] == [
            "linux_debug",
            "linux_release",
            "mac_release",
        ]

    def test_loop_variables_do_not_leak(self):
        text = """a:
- ${{ each x in parameters.items }}:
  - ${{ x }}
b: ${{ x }}
"""
        with pytest.raises(UndefinedReferenceError, match="'x'"):
            run(text, items=[1])

    def test_each_over_scalar_fails(self):
        text = """steps:
- ${{ each s in parameters.name }}:
  - script: ${{ s }}
"""
        with pytest.raises(TypeMismatchError, match="'each' requires"):
            run(text, name="abc")

    def test_same_key_from_each_iterations_conflicts(self):
        text = """job:
  ${{ each x in parameters.items }}:
    name: ${{ x }}
"""
        with pytest.raises(ConflictingBranchesError):
            run(text, items=["a", "b"])


class TestStageFilter:
    """Rebuilding items key by key while leaving some keys out."""

    TEXT = """stages:
- ${{ each stageItem in parameters.stageList }}:
  - ${{ each entry in stageItem }}:
      ${{ if ne(entry.key, 'dependsOn') }}:
        ${{ entry.key }}: ${{ entry.value }}
"""

    def test_drops_depends_on_only_where_present(self):
        stage_list = [
            {"stage": "Build", "jobs": [{"job": "A"}]},
            {"stage": "Deploy", "dependsOn": "Build", "jobs": [{"job": "B"}]},
        ]
        result = run(self.TEXT, stageList=stage_list)
        assert result["stages"] == [
            {"stage": "Build", "jobs": [{"job": "A"}]},
            {"stage": "Deploy", "jobs": [{"job": "B"}]},
        ]


# =============================================================================
# Substitution
# =============================================================================


class TestSubstitution:
    def test_whole_value_inserts_collection(self):
        text = "steps: ${{ parameters.steps }}\n"
        steps = [{"script": "a"}, {"bash": "b"}]
        assert run(text, steps=steps) == {"steps": steps}

    def test_list_item_splices_collection(self):
        text = """steps:
- script: first
- ${{ parameters.steps }}
- script: last
"""
        result = run(text, steps=[{"script": "a"}, {"script": "b"}])
        assert [s["script"] for s in result["steps"]] == ["first", "a", "b", "last"]

    def test_keys_are_interpolated(self):
        assert run("${{ parameters.name }}: value\n", name="key") == {"key": "value"}

    def test_interpolated_keys_that_collide_fail(self):
        with pytest.raises(ParseError, match="Duplicate key 'a'"):
            run("a: 1\n${{ parameters.name }}: 2\n", name="a")

    def test_runtime_syntax_is_left_alone(self):
        text = "condition: and(succeeded(), eq(variables['Build.Reason'], 'PR'))\nx: $(Build.Id)\n"
        assert run(text) == parse(text).to_python()

    def test_embedding_collection_in_text_fails(self):
        with pytest.raises(TypeMismatchError, match="Cannot embed"):
            run("script: echo ${{ parameters.items }}\n", items=["a"])

    def test_directive_free_tree_is_unchanged(self):
        """Expanding an already expanded tree is a no-op."""
        doc = parse("""trigger: [main]
stages:
- stage: Build
  jobs:
  - job: A
    steps:
    - script: echo hi
      displayName: Say hi
""")
        assert expand(doc) == doc
        assert parse(serialize(expand(doc))) == expand(doc)


# =============================================================================
# Error markers and variables
# =============================================================================


class TestErrorMarkers:
    TEXT = """steps:
- ${{ each step in parameters.steps }}:
  - ${{ each pair in step }}:
      ${{ if eq(pair.key, 'script') }}:
        'Inline scripts are not allowed': error
  - ${{ step }}
"""

    def test_markers_become_violations(self):
        steps = [{"script": "echo A"}, {"bash": "echo B"}]
        with pytest.raises(PolicyViolationError) as exc:
            expand(parse(self.TEXT), {"steps": steps})
        (violation,) = exc.value.violations
        assert violation.kind is ErrorKind.POLICY_VIOLATION
        assert violation.message == "Inline scripts are not allowed"

    def test_markers_are_collected_not_fail_fast(self):
        steps = [{"script": "a"}, {"bash": "b"}, {"script": "c"}]
        with pytest.raises(PolicyViolationError) as exc:
            expand(parse(self.TEXT), {"steps": steps})
        assert len(exc.value.violations) == 2

    def test_no_markers_when_clean(self):
        steps = [{"bash": "b"}]
        assert expand(parse(self.TEXT), {"steps": steps}).to_python() == {"steps": steps}

    def test_pipeline_returns_markers_as_diagnostics(self):
        text = """parameters:
- name: allow
  type: boolean
  default: false
steps:
- ${{ if not(parameters.allow) }}:
  - 'Deployment is not allowed': error
- script: echo hi
"""
        expansion = Expander().expand_pipeline(parse(text))
        assert [d.message for d in expansion.diagnostics] == ["Deployment is not allowed"]
        assert expansion.document.to_python() == {"steps": [{"script": "echo hi"}]}

    def test_items_named_error_are_not_markers(self):
        """A step or variable group whose value happens to be 'error' is kept."""
        text = """variables:
- group: error
- name: level
  value: error
steps:
- script: error
- bash: error
"""
        expansion = Expander().expand_pipeline(parse(text))
        assert expansion.diagnostics == []
        assert expansion.document.to_python() == {
            "variables": [{"group": "error"}, {"name": "level", "value": "error"}],
            "steps": [{"script": "error"}, {"bash": "error"}],
        }


class TestVariables:
    def test_collect_variables_mapping_and_list_forms(self):
        assert collect_variables(parse("a: 1\nb: x\n")) == {"a": 1, "b": "x"}
        listed = parse("- name: a\n  value: 1\n- group: shared\n")
        assert collect_variables(listed) == {"a": 1}

    def test_root_variables_are_visible_at_compile_time(self):
        text = """variables:
  configuration: Release
steps:
- script: build --config ${{ variables.configuration }}
"""
        expansion = Expander().expand_pipeline(parse(text))
        assert expansion.document.to_python()["steps"] == [
            {"script": "build --config Release"}
        ]

    def test_root_variables_override_supplied_ones(self):
        text = """variables:
- name: env
  value: staging
steps:
- script: deploy ${{ variables.env }} ${{ variables.region }}
"""
        expansion = Expander().expand_pipeline(
            parse(text), variables={"env": "prod", "region": "eu"}
        )
        assert expansion.document.to_python()["steps"] == [
            {"script": "deploy staging eu"}
        ]

    def test_pipeline_root_must_be_mapping(self):
        with pytest.raises(TypeMismatchError):
            Expander().expand_pipeline(parse("- a\n"))

    def test_expand_returns_mapping(self):
        assert isinstance(expand(parse("a: 1\n")), Mapping)
