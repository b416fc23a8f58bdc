"""Configuration for pipexpand.

pipexpand.yaml schema:
- templates_dir: root directory for template references (default: config dir)
- required_template: template every pipeline must extend, if any
- max_depth: maximum template nesting depth
- variables: compile-time variables visible as ${{ variables.x }}
- parameters: default arguments for the pipeline's root parameters
- policy:
  - rules: inline policy rules
  - rules_file: YAML file with more rules
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from pipexpand.compiler.expander import DEFAULT_MAX_DEPTH
from pipexpand.compiler.policy import RuleSet, load_rule_set
from pipexpand.errors import ParseError

CONFIG_FILENAME = "pipexpand.yaml"


class PolicyConfig(BaseModel):
    """Policy rules applied to every compiled pipeline."""

    model_config = {"populate_by_name": True}

    rules: list[dict[str, Any]] = Field(
        default_factory=list, description="Inline rule definitions"
    )
    rules_file: Path | None = Field(
        default=None, alias="rulesFile", description="YAML file with more rules"
    )


class ProjectConfig(BaseModel):
    """Main pipexpand.yaml configuration."""

    model_config = {"populate_by_name": True}

    templates_dir: Path | None = Field(
        default=None, alias="templatesDir", description="Template root directory"
    )
    required_template: str | None = Field(
        default=None,
        alias="requiredTemplate",
        description="Template every pipeline must extend",
    )
    max_depth: int = Field(
        default=DEFAULT_MAX_DEPTH,
        alias="maxDepth",
        ge=1,
        description="Maximum template nesting depth",
    )
    variables: dict[str, Any] = Field(
        default_factory=dict, description="Compile-time variables"
    )
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Default root parameter arguments"
    )
    policy: PolicyConfig = Field(default_factory=PolicyConfig)

    # Directory relative paths are resolved against; set by load_config.
    root: Path = Field(default_factory=Path.cwd, exclude=True)

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.root / path

    @property
    def template_root(self) -> Path:
        if self.templates_dir is None:
            return self.root
        return self.resolve(self.templates_dir)

    def rule_set(self) -> RuleSet:
        """Inline rules followed by those in `policy.rules_file`."""
        rules = RuleSet.from_dict({"rules": self.policy.rules})
        if self.policy.rules_file is not None:
            extra = load_rule_set(self.resolve(self.policy.rules_file))
            rules = RuleSet(rules=rules.rules + extra.rules)
        return rules


def find_config(start: Path | None = None) -> Path | None:
    """Find pipexpand.yaml in `start` (default: cwd) or its parents."""
    cwd = (start or Path.cwd()).resolve()
    for parent in [cwd] + list(cwd.parents):
        candidate = parent / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def load_config(path: Path) -> ProjectConfig:
    """Load pipexpand.yaml from path."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ParseError(f"{path}: config must be a mapping")
    try:
        config = ProjectConfig(**data)
    except ValidationError as exc:
        raise ParseError(f"{path}: invalid config: {exc}") from exc
    config.root = path.resolve().parent
    return config

