"""Built-in functions available inside ${{ }} expressions.

Every argument is evaluated before a function runs; nothing short-circuits,
so a bad reference in any operand is always reported.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from pipexpand.errors import RuntimeReferenceError, TypeMismatchError
from pipexpand.expressions.values import (
    category,
    compare,
    equals,
    is_mapping,
    is_sequence,
    iterate,
    plain,
    to_str,
    truthy,
    unwrap_scalar,
)

if TYPE_CHECKING:
    from pipexpand.expressions.evaluator import ExpressionContext

Impl = Callable[["ExpressionContext", List[Any]], Any]


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: Impl

    def arity_text(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args} argument(s)"
        if self.min_args == self.max_args:
            return f"{self.min_args} argument(s)"
        return f"{self.min_args} to {self.max_args} arguments"


def _string(value: Any, fn: str) -> str:
    value = unwrap_scalar(value)
    if isinstance(value, str):
        return value
    if is_sequence(value) or is_mapping(value):
        raise TypeMismatchError(f"{fn}() expects a string, got a {category(value)}")
    return to_str(value)


def _contains(ctx: "ExpressionContext", args: List[Any]) -> bool:
    haystack, needle = unwrap_scalar(args[0]), args[1]
    if is_sequence(haystack):
        return any(equals(item, needle) for item in iterate(haystack))
    if is_mapping(haystack):
        return to_str(needle) in plain(haystack)
    return to_str(needle) in to_str(haystack)


def _coalesce(ctx: "ExpressionContext", args: List[Any]) -> Any:
    for value in args:
        raw = unwrap_scalar(value)
        if raw is not None and raw != "":
            return value
    return None


_FORMAT_TOKEN = re.compile(r"\{\{|\}\}|\{(\d+)\}")


def _format(ctx: "ExpressionContext", args: List[Any]) -> str:
    template = _string(args[0], "format")
    values = args[1:]

    def replace(match: "re.Match[str]") -> str:
        if match.group(0) == "{{":
            return "{"
        if match.group(0) == "}}":
            return "}"
        index = int(match.group(1))
        if index >= len(values):
            raise TypeMismatchError(
                f"format() placeholder {{{index}}} has no matching argument"
            )
        return to_str(values[index])

    return _FORMAT_TOKEN.sub(replace, template)


def _join(ctx: "ExpressionContext", args: List[Any]) -> str:
    separator, collection = _string(args[0], "join"), unwrap_scalar(args[1])
    if not is_sequence(collection):
        return to_str(collection)
    return separator.join(to_str(item) for item in iterate(collection))


def _length(ctx: "ExpressionContext", args: List[Any]) -> int:
    value = plain(args[0])
    if isinstance(value, (str, list, dict)):
        return len(value)
    raise TypeMismatchError(f"length() expects a string or collection, got a {category(value)}")


def _counter(ctx: "ExpressionContext", args: List[Any]) -> Any:
    raise RuntimeReferenceError(
        "counter() is only available at runtime and cannot be used in ${{ }}"
    )


def _xor(ctx: "ExpressionContext", args: List[Any]) -> bool:
    return truthy(args[0]) != truthy(args[1])


FUNCTIONS: Dict[str, FunctionSpec] = {
    spec.name: spec
    for spec in [
        FunctionSpec("and", 2, None, lambda ctx, a: all([truthy(v) for v in a])),
        FunctionSpec("or", 2, None, lambda ctx, a: any([truthy(v) for v in a])),
        FunctionSpec("not", 1, 1, lambda ctx, a: not truthy(a[0])),
        FunctionSpec("xor", 2, 2, _xor),
        FunctionSpec("eq", 2, 2, lambda ctx, a: equals(a[0], a[1])),
        FunctionSpec("ne", 2, 2, lambda ctx, a: not equals(a[0], a[1])),
        FunctionSpec("gt", 2, 2, lambda ctx, a: compare(a[0], a[1]) > 0),
        FunctionSpec("ge", 2, 2, lambda ctx, a: compare(a[0], a[1]) >= 0),
        FunctionSpec("lt", 2, 2, lambda ctx, a: compare(a[0], a[1]) < 0),
        FunctionSpec("le", 2, 2, lambda ctx, a: compare(a[0], a[1]) <= 0),
        FunctionSpec("in", 2, None, lambda ctx, a: any(equals(a[0], v) for v in a[1:])),
        FunctionSpec(
            "notin", 2, None, lambda ctx, a: not any(equals(a[0], v) for v in a[1:])
        ),
        FunctionSpec("contains", 2, 2, _contains),
        FunctionSpec(
            "startswith",
            2,
            2,
            lambda ctx, a: _string(a[0], "startsWith").startswith(
                _string(a[1], "startsWith")
            ),
        ),
        FunctionSpec(
            "endswith",
            2,
            2,
            lambda ctx, a: _string(a[0], "endsWith").endswith(_string(a[1], "endsWith")),
        ),
        FunctionSpec("lower", 1, 1, lambda ctx, a: _string(a[0], "lower").lower()),
        FunctionSpec("upper", 1, 1, lambda ctx, a: _string(a[0], "upper").upper()),
        FunctionSpec("length", 1, 1, _length),
        FunctionSpec("coalesce", 1, None, _coalesce),
        FunctionSpec("format", 1, None, _format),
        FunctionSpec("join", 2, 2, _join),
        # Only meaningful when upstream state is known statically; the
        # compile-time default is that everything before has succeeded.
        FunctionSpec("succeeded", 0, None, lambda ctx, a: ctx.succeeded),
        FunctionSpec("failed", 0, None, lambda ctx, a: not ctx.succeeded),
        FunctionSpec("always", 0, 0, lambda ctx, a: True),
        FunctionSpec("counter", 0, 2, _counter),
    ]
}
