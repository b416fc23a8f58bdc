"""Template interpolation for ${{ expr }} placeholders.

A value that is exactly one placeholder is replaced by the evaluated value,
whatever its type, so `steps: ${{ parameters.steps }}` inserts a list.
Placeholders embedded in longer text are converted to strings. Runtime
syntax such as `$[ variables.x ]` and `$(Build.SourceBranch)` is left
untouched.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from pipexpand.errors import PipexpandError, TypeMismatchError
from pipexpand.expressions.evaluator import ExpressionContext, ExpressionEvaluator
from pipexpand.expressions.values import category, is_collection, to_str

PLACEHOLDER = re.compile(r"\$\{\{\s*(.+?)\s*\}\}", re.DOTALL)
WHOLE_PLACEHOLDER = re.compile(r"^\s*\$\{\{\s*(.+?)\s*\}\}\s*$", re.DOTALL)


def has_placeholder(text: str) -> bool:
    return "${{" in text and PLACEHOLDER.search(text) is not None


def interpolate(
    template: str,
    context: ExpressionContext,
    evaluator: Optional[ExpressionEvaluator] = None,
) -> Any:
    """Interpolate ${{ expr }} placeholders in `template`.

    Raises:
        UndefinedReferenceError: If a referenced name doesn't exist.
        TypeMismatchError: If a sequence or mapping is embedded in text.

    Example:
        >>> interpolate("Hello ${{ parameters.name }}", ExpressionContext(parameters={"name": "world"}))
        'Hello world'
    """
    if not has_placeholder(template):
        return template

    evaluator = evaluator or ExpressionEvaluator()

    whole = WHOLE_PLACEHOLDER.match(template)
    if whole is not None and "}}" not in whole.group(1):
        return _evaluate(whole.group(1), context, evaluator)

    def replace(match: re.Match[str]) -> str:
        expr = match.group(1)
        value = _evaluate(expr, context, evaluator)
        if is_collection(value):
            raise TypeMismatchError(
                f"Cannot embed a {category(value)} in text; "
                "use the expression as the whole value instead",
                directive=match.group(0),
            )
        return to_str(value)

    return PLACEHOLDER.sub(replace, template)


def _evaluate(expr: str, context: ExpressionContext, evaluator: ExpressionEvaluator) -> Any:
    try:
        return evaluator.evaluate(expr, context)
    except PipexpandError as exc:
        raise exc.with_context(directive=f"${{{{ {expr} }}}}")
