"""Compile-time expressions: the ${{ }} language.

- parser.py: tokenizer and recursive-descent parser
- functions.py: built-in functions (and, or, eq, ne, succeeded, ...)
- evaluator.py: evaluation against an immutable ExpressionContext
- template.py: ${{ }} interpolation inside YAML scalars and keys
"""

from pipexpand.expressions.evaluator import (
    ExpressionContext,
    ExpressionEvaluator,
    evaluate,
)
from pipexpand.expressions.functions import FUNCTIONS
from pipexpand.expressions.parser import Expr, parse_expression, tokenize
from pipexpand.expressions.template import has_placeholder, interpolate
from pipexpand.expressions.values import truthy

__all__ = [
    "ExpressionContext",
    "ExpressionEvaluator",
    "evaluate",
    "FUNCTIONS",
    "Expr",
    "parse_expression",
    "tokenize",
    "has_placeholder",
    "interpolate",
    "truthy",
]
