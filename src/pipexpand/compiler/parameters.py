"""Template parameter declarations and argument binding.

Declarations come in two forms:

    parameters:                 # typed (preferred)
      - name: buildSteps
        type: stepList
        default: []

    parameters:                 # legacy, untyped
      buildSteps: []

Arguments are checked against the declared type before the template body is
expanded; a mismatch stops the compile.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pipexpand.ast.node import Location, Mapping, Node, Scalar, Sequence, from_python
from pipexpand.errors import (
    MissingArgumentError,
    TypeMismatchError,
    UnknownParameterError,
)
from pipexpand.expressions.values import category, equals, to_display, to_str

logger = logging.getLogger(__name__)


class ParameterType(str, Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    NUMBER = "number"
    OBJECT = "object"
    STEP = "step"
    STEP_LIST = "stepList"
    JOB = "job"
    JOB_LIST = "jobList"
    DEPLOYMENT = "deployment"
    DEPLOYMENT_LIST = "deploymentList"
    STAGE = "stage"
    STAGE_LIST = "stageList"


STEP_KEYS = frozenset(
    {
        "task",
        "script",
        "bash",
        "pwsh",
        "powershell",
        "checkout",
        "download",
        "downloadBuild",
        "getPackage",
        "publish",
        "reviewApp",
        "template",
    }
)

_ITEM_KEYS = {
    ParameterType.STEP: STEP_KEYS,
    ParameterType.JOB: frozenset({"job", "template"}),
    ParameterType.DEPLOYMENT: frozenset({"deployment", "template"}),
    ParameterType.STAGE: frozenset({"stage", "template"}),
}

_LIST_ITEM_KEYS = {
    ParameterType.STEP_LIST: STEP_KEYS,
    ParameterType.JOB_LIST: frozenset({"job", "deployment", "template"}),
    ParameterType.DEPLOYMENT_LIST: frozenset({"deployment", "template"}),
    ParameterType.STAGE_LIST: frozenset({"stage", "template"}),
}

# List a `- template:` reference passed as an argument of each type includes from.
INCLUDE_KEY_FOR_TYPE = {
    ParameterType.STEP: "steps",
    ParameterType.STEP_LIST: "steps",
    ParameterType.JOB: "jobs",
    ParameterType.JOB_LIST: "jobs",
    ParameterType.DEPLOYMENT: "jobs",
    ParameterType.DEPLOYMENT_LIST: "jobs",
    ParameterType.STAGE: "stages",
    ParameterType.STAGE_LIST: "stages",
}


class ParameterSpec(BaseModel):
    """A single declared template parameter."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str = Field(description="Parameter name")
    type: ParameterType = Field(default=ParameterType.STRING, description="Declared type")
    default: Any = Field(default=None, description="Value used when no argument is passed")
    values: Optional[List[Any]] = Field(
        default=None, description="Allowed values, if restricted"
    )
    display_name: Optional[str] = Field(default=None, alias="displayName")

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


def parse_declarations(node: Optional[Node]) -> List[ParameterSpec]:
    """Read a `parameters:` block into parameter specs."""
    if node is None:
        return []

    if isinstance(node, Mapping):
        # Legacy form: name -> default, no type checking.
        return [
            ParameterSpec(name=pair.key, type=ParameterType.OBJECT, default=pair.value.to_python())
            for pair in node.pairs
        ]

    if not isinstance(node, Sequence):
        raise TypeMismatchError(
            "'parameters' must be a list of declarations or a mapping", node.location
        )

    specs: List[ParameterSpec] = []
    seen: set[str] = set()
    for item in node.items:
        if not isinstance(item, Mapping):
            raise TypeMismatchError(
                "Each parameter declaration must be a mapping", item.location
            )
        try:
            spec = ParameterSpec.model_validate(item.to_python())
        except ValidationError as exc:
            raise TypeMismatchError(
                f"Invalid parameter declaration: {_first_error(exc)}", item.location
            ) from exc
        if spec.name in seen:
            raise TypeMismatchError(
                f"Parameter '{spec.name}' is declared more than once", item.location
            )
        seen.add(spec.name)
        specs.append(spec)
    return specs


def bind_parameters(
    specs: List[ParameterSpec],
    arguments: Dict[str, Any],
    location: Optional[Location] = None,
    template: str = "",
) -> Dict[str, Node]:
    """Check `arguments` against `specs` and return the parameter scope.

    Argument values may be nodes (from YAML) or plain Python data (from the
    command line); the scope always holds nodes so locations survive.
    """
    where = f" of template '{template}'" if template else ""
    declared = {spec.name for spec in specs}
    for name in arguments:
        if name not in declared:
            raise UnknownParameterError(
                f"Unexpected argument '{name}'; no such parameter{where}", location
            )

    bound: Dict[str, Node] = {}
    for spec in specs:
        if spec.name in arguments:
            value = from_python(arguments[spec.name], location)
        elif spec.has_default:
            value = from_python(spec.default, location)
        else:
            raise MissingArgumentError(
                f"A value for the '{spec.name}' parameter{where} must be provided",
                location,
            )

        value = coerce(spec, value)
        if spec.values is not None and not any(equals(value, v) for v in spec.values):
            allowed = ", ".join(to_display(v) for v in spec.values)
            raise TypeMismatchError(
                f"Parameter '{spec.name}'{where} must be one of [{allowed}], "
                f"got {to_display(value)}",
                value.location or location,
            )
        bound[spec.name] = value
        logger.debug("Bound parameter %s (%s)", spec.name, spec.type.value)
    return bound


def coerce(spec: ParameterSpec, value: Node) -> Node:
    """Return `value` shaped for `spec.type`, or raise TypeMismatchError."""
    ptype = spec.type

    def mismatch(detail: str) -> TypeMismatchError:
        return TypeMismatchError(
            f"Parameter '{spec.name}' expects a {ptype.value}, {detail}",
            value.location,
        )

    if ptype is ParameterType.OBJECT:
        return value

    if ptype is ParameterType.STRING:
        if not isinstance(value, Scalar) or isinstance(value.value, bool) or value.value is None:
            raise mismatch(f"got a {category(value)}")
        if isinstance(value.value, str):
            return value
        return Scalar(to_str(value.value), location=value.location)

    if ptype is ParameterType.BOOLEAN:
        if isinstance(value, Scalar):
            raw = value.value
            if isinstance(raw, bool):
                return value
            if isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
                return Scalar(raw.strip().lower() == "true", location=value.location)
        raise mismatch(f"got {to_display(value)}")

    if ptype is ParameterType.NUMBER:
        if isinstance(value, Scalar):
            raw = value.value
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                return value
            if isinstance(raw, str):
                try:
                    number = float(raw.strip())
                except ValueError:
                    pass
                else:
                    as_int = int(number) if number.is_integer() else number
                    return Scalar(as_int, location=value.location)
        raise mismatch(f"got {to_display(value)}")

    if ptype in _ITEM_KEYS:
        _check_item(value, _ITEM_KEYS[ptype], mismatch)
        return value

    if ptype in _LIST_ITEM_KEYS:
        if not isinstance(value, Sequence):
            raise mismatch(f"got a {category(value)}")
        for index, item in enumerate(value.items):
            _check_item(item, _LIST_ITEM_KEYS[ptype], mismatch, index)
        return value

    raise mismatch("which is not a known type")


def _check_item(item: Node, keys, mismatch, index: Optional[int] = None) -> None:
    at = f" at index {index}" if index is not None else ""
    if not isinstance(item, Mapping):
        raise mismatch(f"got a {category(item)}{at}")
    first = item.first_key
    if first not in keys:
        raise mismatch(f"got a mapping starting with '{first}'{at}")


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))
