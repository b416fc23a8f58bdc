"""Policy enforcement over expanded pipelines.

Rules are declarative: each one is a predicate over a visited stage, job or
step plus a message template. The walk is pre-order and every violation is
collected before anything is reported.

Example rule file:

    rules:
      - type: disallowed-step-key
        keys: [script]
        message: "Inline scripts are not allowed ({{ path }})"
      - type: name-pattern
        kind: stage
        pattern: "[A-Z][A-Za-z0-9_]*"
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Callable, ClassVar, Dict, Iterator, List, Literal, Optional, Union

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pipexpand.ast.node import Mapping, Node, Scalar, Sequence
from pipexpand.errors import Diagnostic, ErrorKind, ParseError, PolicyViolationError
from pipexpand.expressions.values import to_str

logger = logging.getLogger(__name__)

NodeKind = Literal["stage", "job", "deployment", "step"]

_CHILD_KINDS = {"stages": "stage", "jobs": "job", "steps": "step"}

_messages = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)


@dataclass(frozen=True)
class Visit:
    """A stage, job, deployment or step found while walking the tree."""

    kind: NodeKind
    node: Mapping
    path: str
    stage: Optional[str] = None
    job: Optional[str] = None

    @property
    def name(self) -> Optional[str]:
        """The stage/job/deployment name, or the primary value of a step."""
        key = self.kind if self.kind != "step" else self.node.first_key
        if key is None:
            return None
        value = self.node.get(key)
        if isinstance(value, Scalar) and value.value is not None:
            return to_str(value.value)
        return None

    def fields(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "key": self.node.first_key,
            "path": self.path,
            "stage": self.stage,
            "job": self.job,
            "node": self.node.to_python(),
        }


def walk(node: Node, path: str = "") -> Iterator[Visit]:
    """Yield every stage, job and step in pre-order."""
    yield from _walk(node, path, None, None)


def _walk(node: Node, path: str, stage: Optional[str], job: Optional[str]) -> Iterator[Visit]:
    if isinstance(node, Sequence):
        for i, item in enumerate(node.items):
            yield from _walk(item, f"{path}[{i}]", stage, job)
        return
    if not isinstance(node, Mapping):
        return

    for pair in node.pairs:
        child_path = f"{path}.{pair.key}" if path else pair.key
        kind = _CHILD_KINDS.get(pair.key)
        if kind is None or not isinstance(pair.value, Sequence):
            yield from _walk(pair.value, child_path, stage, job)
            continue

        for i, item in enumerate(pair.value.items):
            item_path = f"{child_path}[{i}]"
            if not isinstance(item, Mapping):
                continue
            item_kind = kind
            if kind == "job" and item.first_key == "deployment":
                item_kind = "deployment"
            visit = Visit(item_kind, item, item_path, stage, job)  # type: ignore[arg-type]
            yield visit
            if item_kind == "stage":
                yield from _walk(item, item_path, visit.name, None)
            elif item_kind in ("job", "deployment"):
                yield from _walk(item, item_path, stage, visit.name)
            else:
                yield from _walk(item, item_path, stage, job)


# =============================================================================
# Rules
# =============================================================================


class Rule(BaseModel):
    """Base rule: which node kinds it looks at and how it words a violation."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: str
    message: Optional[str] = Field(
        default=None, description="Jinja2 template for the violation message"
    )

    default_message: ClassVar[str] = "{{ kind }} at {{ path }} violates policy"

    def applies_to(self, visit: Visit) -> bool:
        return True

    def violated(self, visit: Visit) -> Optional[Dict[str, Any]]:
        """Return extra template fields if `visit` breaks the rule, else None."""
        raise NotImplementedError

    def check(self, visit: Visit) -> Optional[Diagnostic]:
        if not self.applies_to(visit):
            return None
        extra = self.violated(visit)
        if extra is None:
            return None
        return Diagnostic(
            kind=ErrorKind.POLICY_VIOLATION,
            message=self.render({**visit.fields(), **extra}),
            location=visit.node.location,
            path=visit.path,
        )

    def render(self, fields: Dict[str, Any]) -> str:
        source = self.message or self.default_message
        try:
            return _messages.from_string(source).render(**fields).strip()
        except TemplateError as exc:
            raise ParseError(f"Invalid message template for rule '{self.type}': {exc}") from exc


class DisallowedStepKeyRule(Rule):
    """Steps whose primary key (e.g. `script`) is listed are rejected."""

    type: Literal["disallowed-step-key"] = "disallowed-step-key"
    keys: List[str]

    default_message: ClassVar[str] = "Step '{{ key }}' is not allowed ({{ path }})"

    def applies_to(self, visit: Visit) -> bool:
        return visit.kind == "step"

    def violated(self, visit: Visit) -> Optional[Dict[str, Any]]:
        if visit.node.first_key in self.keys:
            return {}
        return None


class DisallowedTaskRule(Rule):
    """`task:` steps naming a listed task, with or without `@version`."""

    type: Literal["disallowed-task"] = "disallowed-task"
    tasks: List[str]

    default_message: ClassVar[str] = "Task '{{ task }}' is not allowed ({{ path }})"

    def applies_to(self, visit: Visit) -> bool:
        return visit.kind == "step" and visit.node.first_key == "task"

    def violated(self, visit: Visit) -> Optional[Dict[str, Any]]:
        task = visit.name or ""
        bare = task.split("@", 1)[0].lower()
        for listed in self.tasks:
            wanted = listed.lower()
            if wanted == task.lower() or ("@" not in wanted and wanted == bare):
                return {"task": task}
        return None


class NamePatternRule(Rule):
    """Stage or job names must fully match `pattern`."""

    type: Literal["name-pattern"] = "name-pattern"
    kind: Literal["stage", "job"]
    pattern: str

    default_message: ClassVar[str] = (
        "{{ kind | capitalize }} name '{{ name }}' does not match '{{ pattern }}' ({{ path }})"
    )

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regular expression: {exc}") from exc
        return value

    def applies_to(self, visit: Visit) -> bool:
        if self.kind == "job":
            return visit.kind in ("job", "deployment")
        return visit.kind == self.kind

    def violated(self, visit: Visit) -> Optional[Dict[str, Any]]:
        name = visit.name or ""
        if re.fullmatch(self.pattern, name) is None:
            return {"pattern": self.pattern}
        return None


class RequiredPropertyRule(Rule):
    type: Literal["required-property"] = "required-property"
    kind: NodeKind
    property: str

    default_message: ClassVar[str] = (
        "{{ kind | capitalize }} at {{ path }} must set '{{ property }}'"
    )

    def applies_to(self, visit: Visit) -> bool:
        return visit.kind == self.kind

    def violated(self, visit: Visit) -> Optional[Dict[str, Any]]:
        if self.property not in visit.node:
            return {"property": self.property}
        return None


class ForbiddenPropertyRule(Rule):
    type: Literal["forbidden-property"] = "forbidden-property"
    kind: NodeKind
    property: str

    default_message: ClassVar[str] = (
        "{{ kind | capitalize }} at {{ path }} must not set '{{ property }}'"
    )

    def applies_to(self, visit: Visit) -> bool:
        return visit.kind == self.kind

    def violated(self, visit: Visit) -> Optional[Dict[str, Any]]:
        if self.property in visit.node:
            return {"property": self.property}
        return None


class PredicateRule(Rule):
    """A rule written in Python: `predicate(visit)` returns True on violation."""

    type: Literal["predicate"] = "predicate"
    kinds: List[NodeKind] = Field(default_factory=lambda: ["stage", "job", "deployment", "step"])
    predicate: Callable[[Visit], bool]

    def applies_to(self, visit: Visit) -> bool:
        return visit.kind in self.kinds

    def violated(self, visit: Visit) -> Optional[Dict[str, Any]]:
        return {} if self.predicate(visit) else None


AnyRule = Annotated[
    Union[
        DisallowedStepKeyRule,
        DisallowedTaskRule,
        NamePatternRule,
        RequiredPropertyRule,
        ForbiddenPropertyRule,
        PredicateRule,
    ],
    Field(discriminator="type"),
]


class RuleSet(BaseModel):
    """An ordered collection of rules."""

    rules: List[AnyRule] = Field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RuleSet":
        try:
            return cls.model_validate(data or {})
        except ValidationError as exc:
            raise ParseError(f"Invalid policy rules: {exc}") from exc

    def __len__(self) -> int:
        return len(self.rules)


def load_rule_set(path: Path) -> RuleSet:
    """Load a rule set from a YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if isinstance(data, list):
        data = {"rules": data}
    return RuleSet.from_dict(data)


def check(node: Node, rule_set: RuleSet) -> List[Diagnostic]:
    """Every violation of `rule_set` in `node`, in walk order."""
    violations: List[Diagnostic] = []
    for visit in walk(node):
        for rule in rule_set.rules:
            diagnostic = rule.check(visit)
            if diagnostic is not None:
                logger.debug("Rule %s rejected %s", rule.type, visit.path)
                violations.append(diagnostic)
    return violations


def enforce(node: Node, rule_set: RuleSet) -> Node:
    """Return `node` unchanged if it satisfies `rule_set`.

    Raises:
        PolicyViolationError: With all violations, when there is at least one.
    """
    violations = check(node, rule_set)
    if violations:
        raise PolicyViolationError(violations)
    return node
