"""Pipexpand Compiler - expands templates and enforces policy."""

from pipexpand.compiler.expander import Expander, expand
from pipexpand.compiler.extension import compile_pipeline, compile_with_policy
from pipexpand.compiler.loader import DictLoader, FileSystemLoader, TemplateLoader
from pipexpand.compiler.policy import RuleSet, check, enforce, load_rule_set
from pipexpand.compiler.spec import CompileResult, Expansion

__all__ = [
    "Expander",
    "expand",
    "compile_pipeline",
    "compile_with_policy",
    "DictLoader",
    "FileSystemLoader",
    "TemplateLoader",
    "RuleSet",
    "check",
    "enforce",
    "load_rule_set",
    "CompileResult",
    "Expansion",
]
