"""Evaluation of parsed expressions against a compile-time context."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Union

from pipexpand.ast.node import Mapping, Sequence
from pipexpand.errors import (
    RuntimeReferenceError,
    TypeMismatchError,
    UndefinedReferenceError,
)
from pipexpand.expressions.functions import FUNCTIONS
from pipexpand.expressions.parser import (
    Call,
    Expr,
    Index,
    Literal,
    Member,
    Name,
    parse_expression,
)
from pipexpand.expressions.values import category, plain, unwrap_scalar

# Namespaces that only exist while a pipeline runs.
RUNTIME_NAMESPACES = frozenset({"dependencies", "stageDependencies", "steps"})


@dataclass(frozen=True)
class ExpressionContext:
    """Everything a ${{ }} expression may see.

    Contexts are never mutated; loops and template calls derive new ones.
    """

    parameters: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    locals: Dict[str, Any] = field(default_factory=dict)
    succeeded: bool = True

    def with_local(self, name: str, value: Any) -> "ExpressionContext":
        return replace(self, locals={**self.locals, name: value})

    def with_parameters(self, parameters: Dict[str, Any]) -> "ExpressionContext":
        """Scope for a template body: its own parameters, no outer loop variables."""
        return replace(self, parameters=dict(parameters), locals={})

    def with_variables(self, variables: Dict[str, Any]) -> "ExpressionContext":
        return replace(self, variables={**self.variables, **variables})


class ExpressionEvaluator:
    """Evaluates expression trees. Stateless; one instance can serve any context."""

    def evaluate(self, expr: Union[Expr, str], ctx: ExpressionContext) -> Any:
        if isinstance(expr, str):
            expr = parse_expression(expr)
        return self._eval(expr, ctx)

    def _eval(self, expr: Expr, ctx: ExpressionContext) -> Any:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, Name):
            return self._lookup_name(expr.name, ctx)
        if isinstance(expr, Member):
            target = self._eval(expr.target, ctx)
            return self._member(target, expr.name, expr)
        if isinstance(expr, Index):
            target = self._eval(expr.target, ctx)
            index = self._eval(expr.index, ctx)
            return self._index(target, index, expr)
        if isinstance(expr, Call):
            spec = FUNCTIONS[expr.name]
            args = [self._eval(arg, ctx) for arg in expr.args]
            return spec.impl(ctx, args)
        raise TypeError(f"Unknown expression node {type(expr).__name__}")

    def _lookup_name(self, name: str, ctx: ExpressionContext) -> Any:
        if name in ctx.locals:
            return ctx.locals[name]
        if name == "parameters":
            return ctx.parameters
        if name == "variables":
            return ctx.variables
        if name in RUNTIME_NAMESPACES:
            raise RuntimeReferenceError(
                f"'{name}' is only available at runtime; use a $[ ] expression "
                "or a condition instead of ${{ }}"
            )
        raise UndefinedReferenceError(f"Undefined reference '{name}'")

    def _member(self, target: Any, name: str, expr: Expr) -> Any:
        target = unwrap_scalar(target)
        if isinstance(target, Mapping):
            if name in target:
                return target.get(name)
        elif isinstance(target, dict):
            if name in target:
                return target[name]
        raise UndefinedReferenceError(f"Undefined reference '{expr}'")

    def _index(self, target: Any, index: Any, expr: Expr) -> Any:
        target = unwrap_scalar(target)
        index = plain(index)
        if isinstance(target, (Mapping, dict)):
            if not isinstance(index, str):
                raise TypeMismatchError(
                    f"Mapping index must be a string, got a {category(index)} in '{expr}'"
                )
            return self._member(target, index, expr)
        if isinstance(target, (Sequence, list, tuple)):
            if isinstance(index, float) and index.is_integer():
                index = int(index)
            if isinstance(index, bool) or not isinstance(index, int):
                raise TypeMismatchError(
                    f"Sequence index must be an integer, got a {category(index)} in '{expr}'"
                )
            items = target.items if isinstance(target, Sequence) else target
            if not 0 <= index < len(items):
                raise UndefinedReferenceError(
                    f"Index {index} is out of range in '{expr}'"
                )
            return items[index]
        raise UndefinedReferenceError(
            f"Cannot index a {category(target)} in '{expr}'"
        )


_default_evaluator = ExpressionEvaluator()


def evaluate(
    expr: Union[Expr, str], context: Optional[ExpressionContext] = None
) -> Any:
    """Evaluate `expr` (source text or parsed tree) in `context`."""
    return _default_evaluator.evaluate(expr, context or ExpressionContext())
