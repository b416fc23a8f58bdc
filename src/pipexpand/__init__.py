"""Pipexpand - static evaluator for CI pipeline templates.

Expands ${{ }} directives, template references and `extends` in pipeline
YAML at compile time, then checks the result against a policy rule set.
"""

from pipexpand._version import __version__
from pipexpand.ast import parse, serialize
from pipexpand.compiler import (
    CompileResult,
    DictLoader,
    FileSystemLoader,
    RuleSet,
    compile_pipeline,
    compile_with_policy,
    enforce,
    expand,
)
from pipexpand.errors import Diagnostic, ErrorKind, PipexpandError
from pipexpand.expressions import ExpressionContext, evaluate

__all__ = [
    "__version__",
    "parse",
    "serialize",
    "CompileResult",
    "DictLoader",
    "FileSystemLoader",
    "RuleSet",
    "compile_pipeline",
    "compile_with_policy",
    "enforce",
    "expand",
    "Diagnostic",
    "ErrorKind",
    "PipexpandError",
    "ExpressionContext",
    "evaluate",
]
