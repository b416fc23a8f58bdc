"""Eval command - evaluate one compile-time expression"""

from __future__ import annotations

from typing import List, Optional

import typer
import yaml

from pipexpand.errors import PipexpandError
from pipexpand.expressions import ExpressionContext, evaluate, has_placeholder, interpolate
from pipexpand.expressions.values import is_collection, plain, to_str

from ..utils import handle_error, parse_assignments


def eval_command(
    expression: str,
    parameters: Optional[List[str]] = None,
    variables: Optional[List[str]] = None,
) -> None:
    """Evaluate `expression` (bare, or text with ${{ }} placeholders)."""
    ctx = ExpressionContext(
        parameters=parse_assignments(parameters, "--param"),
        variables=parse_assignments(variables, "--var"),
    )
    try:
        if has_placeholder(expression):
            value = interpolate(expression, ctx)
        else:
            value = evaluate(expression, ctx)
    except PipexpandError as exc:
        handle_error(exc)

    if is_collection(value):
        typer.echo(yaml.safe_dump(plain(value), sort_keys=False), nl=False)
    else:
        typer.echo(to_str(value))
