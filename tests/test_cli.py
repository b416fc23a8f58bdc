"""Tests for the pipexpand command line."""

import pytest
import yaml
from typer.testing import CliRunner

from pipexpand import __version__
from pipexpand.cli.main import app

runner = CliRunner()


PIPELINE = """parameters:
- name: env
  type: string
  default: dev
steps:
- script: deploy ${{ parameters.env }}
"""

POLICY_TEMPLATE = """parameters:
- name: buildSteps
  type: stepList
  default: []
steps:
- script: echo scan
- ${{ parameters.buildSteps }}
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A working directory with a pipeline and a mandatory template."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "ci").mkdir()
    (tmp_path / "ci" / "policy.yml").write_text(POLICY_TEMPLATE)
    (tmp_path / "azure-pipelines.yml").write_text(PIPELINE)
    (tmp_path / "consumer.yml").write_text(
        "extends:\n  template: ci/policy.yml\n  parameters:\n    buildSteps:\n    - bash: make\n"
    )
    return tmp_path


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"pipexpand {__version__}" in result.output


class TestCompile:
    def test_prints_expanded_yaml(self, project):
        result = runner.invoke(app, ["compile", "azure-pipelines.yml"])
        assert result.exit_code == 0, result.output
        assert "script: deploy dev" in result.output

    def test_param_override(self, project):
        result = runner.invoke(app, ["compile", "azure-pipelines.yml", "-P", "env=prod"])
        assert result.exit_code == 0, result.output
        assert "script: deploy prod" in result.output

    def test_writes_output_file(self, project):
        out = project / "out" / "expanded.yml"
        result = runner.invoke(app, ["compile", "azure-pipelines.yml", "-o", str(out)])
        assert result.exit_code == 0, result.output
        assert yaml.safe_load(out.read_text()) == {"steps": [{"script": "deploy dev"}]}

    def test_diagnostics_exit_non_zero(self, project):
        result = runner.invoke(
            app, ["compile", "azure-pipelines.yml", "-P", "colour=red"]
        )
        assert result.exit_code == 1
        assert "UnknownParameter" in result.output
        assert "'colour'" in result.output

    def test_required_template(self, project):
        result = runner.invoke(app, ["compile", "consumer.yml", "-t", "ci/policy.yml"])
        assert result.exit_code == 0, result.output
        assert yaml.safe_load(result.output) == {
            "steps": [{"script": "echo scan"}, {"bash": "make"}]
        }

        result = runner.invoke(app, ["compile", "azure-pipelines.yml", "-t", "ci/policy.yml"])
        assert result.exit_code == 1
        assert "ExtendsRequired" in result.output

    def test_rules_file(self, project):
        (project / "rules.yaml").write_text(
            "rules:\n- type: disallowed-step-key\n  keys: [script]\n"
        )
        result = runner.invoke(app, ["compile", "azure-pipelines.yml", "-r", "rules.yaml"])
        assert result.exit_code == 1
        assert "Step 'script' is not allowed" in result.output

    def test_config_file(self, project):
        (project / "pipexpand.yaml").write_text(
            "required_template: ci/policy.yml\nvariables:\n  region: eu\n"
        )
        result = runner.invoke(app, ["compile", "consumer.yml"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["compile", "azure-pipelines.yml"])
        assert result.exit_code == 1
        assert "ExtendsRequired" in result.output

    def test_bad_assignment(self, project):
        result = runner.invoke(app, ["compile", "azure-pipelines.yml", "-P", "env"])
        assert result.exit_code == 1
        assert "expects name=value" in result.output

    def test_missing_pipeline(self, project):
        result = runner.invoke(app, ["compile", "nope.yml"])
        assert result.exit_code != 0


class TestCheck:
    def test_ok(self, project):
        result = runner.invoke(app, ["check", "azure-pipelines.yml"])
        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        assert "deploy dev" not in result.output

    def test_failure_summary(self, project):
        (project / "rules.yaml").write_text(
            "- type: disallowed-step-key\n  keys: [script]\n"
        )
        result = runner.invoke(app, ["check", "azure-pipelines.yml", "-r", "rules.yaml"])
        assert result.exit_code == 1
        assert "1 error" in result.output


class TestEval:
    def test_boolean(self):
        result = runner.invoke(app, ["eval", "eq(parameters.env, 'prod')", "-P", "env=prod"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "True"

    def test_interpolated_text(self):
        result = runner.invoke(
            app, ["eval", "hello ${{ variables.who }}", "-V", "who=world"]
        )
        assert result.output.strip() == "hello world"

    def test_collection_as_yaml(self):
        result = runner.invoke(app, ["eval", "parameters.items", "-P", "items=[a, b]"])
        assert yaml.safe_load(result.output) == ["a", "b"]

    def test_error(self):
        result = runner.invoke(app, ["eval", "dependencies.A.result"])
        assert result.exit_code == 1
        assert "RuntimeReference" in result.output
