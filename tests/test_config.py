"""Tests for pipexpand.yaml loading."""

import pytest

from pipexpand.compiler.policy import DisallowedStepKeyRule, DisallowedTaskRule
from pipexpand.config import ProjectConfig, find_config, load_config
from pipexpand.errors import ParseError


class TestProjectConfig:
    def test_defaults(self):
        config = ProjectConfig()
        assert config.max_depth == 20
        assert config.required_template is None
        assert config.variables == {}
        assert config.rule_set().rules == []

    def test_aliases(self):
        config = ProjectConfig(**{"requiredTemplate": "ci/policy.yml", "maxDepth": 5})
        assert config.required_template == "ci/policy.yml"
        assert config.max_depth == 5


class TestConfigIO:
    def test_load_resolves_paths_against_config_dir(self, tmp_path):
        (tmp_path / "policy").mkdir()
        (tmp_path / "policy" / "extra.yaml").write_text(
            "- type: disallowed-task\n  tasks: [Bash]\n"
        )
        path = tmp_path / "pipexpand.yaml"
        path.write_text(
            "templates_dir: templates\n"
            "required_template: ci/policy.yml\n"
            "variables:\n  region: eu\n"
            "policy:\n"
            "  rules:\n  - type: disallowed-step-key\n    keys: [script]\n"
            "  rules_file: policy/extra.yaml\n"
        )
        config = load_config(path)
        assert config.template_root == tmp_path.resolve() / "templates"
        assert config.variables == {"region": "eu"}

        rules = config.rule_set().rules
        assert isinstance(rules[0], DisallowedStepKeyRule)
        assert isinstance(rules[1], DisallowedTaskRule)

    def test_template_root_defaults_to_config_dir(self, tmp_path):
        path = tmp_path / "pipexpand.yaml"
        path.write_text("max_depth: 3\n")
        assert load_config(path).template_root == tmp_path.resolve()

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "pipexpand.yaml"
        path.write_text("max_depth: 0\n")
        with pytest.raises(ParseError, match="invalid config"):
            load_config(path)

    def test_load_nonexistent_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "pipexpand.yaml")


class TestFindConfig:
    def test_finds_in_parent(self, tmp_path):
        (tmp_path / "pipexpand.yaml").write_text("{}\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config(nested) == (tmp_path / "pipexpand.yaml").resolve()

    def test_returns_none_when_absent(self, tmp_path):
        nested = tmp_path / "empty"
        nested.mkdir()
        found = find_config(nested)
        assert found is None or not str(found).startswith(str(tmp_path.resolve()))
