"""Pipexpand Exceptions

Every failure carries a `Diagnostic` so callers get the offending node's
location and the directive being evaluated, whether the error was raised or
collected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    from pipexpand.ast.node import Location


class ErrorKind(str, Enum):
    """Taxonomy of compile-time failures."""

    PARSE_ERROR = "ParseError"
    EXPRESSION_SYNTAX = "ExpressionSyntax"
    UNDEFINED_REFERENCE = "UndefinedReference"
    RUNTIME_REFERENCE = "RuntimeReference"
    TYPE_MISMATCH = "TypeMismatch"
    MISSING_ARGUMENT = "MissingArgument"
    UNKNOWN_PARAMETER = "UnknownParameter"
    CONFLICTING_BRANCHES = "ConflictingBranches"
    TEMPLATE_NOT_FOUND = "TemplateNotFound"
    TEMPLATE_RECURSION = "TemplateRecursion"
    EXTENDS_REQUIRED = "ExtendsRequired"
    POLICY_VIOLATION = "PolicyViolation"


@dataclass(frozen=True)
class Diagnostic:
    """A compile-time error with enough context to act on."""

    kind: ErrorKind
    message: str
    location: Optional["Location"] = None
    path: str = ""
    directive: Optional[str] = None

    def __str__(self) -> str:
        parts = []
        if self.location is not None:
            parts.append(f"{self.location}:")
        parts.append(f"[{self.kind.value}]")
        parts.append(self.message)
        if self.path:
            parts.append(f"(at {self.path})")
        if self.directive:
            parts.append(f"in '{self.directive}'")
        return " ".join(parts)


class PipexpandError(Exception):
    """Base exception for all pipexpand errors."""

    kind: ErrorKind = ErrorKind.PARSE_ERROR

    def __init__(
        self,
        message: str,
        location: Optional["Location"] = None,
        path: str = "",
        directive: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.path = path
        self.directive = directive
        super().__init__(message)

    @property
    def diagnostic(self) -> Diagnostic:
        return Diagnostic(
            kind=self.kind,
            message=self.message,
            location=self.location,
            path=self.path,
            directive=self.directive,
        )

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return [self.diagnostic]

    def with_context(
        self,
        location: Optional["Location"] = None,
        path: str = "",
        directive: Optional[str] = None,
    ) -> "PipexpandError":
        """Fill in location details the raiser did not know about."""
        if self.location is None:
            self.location = location
        if not self.path:
            self.path = path
        if self.directive is None:
            self.directive = directive
        return self

    def __str__(self) -> str:
        return str(self.diagnostic)


class ParseError(PipexpandError):
    """Raised when a document is not a well-formed pipeline definition."""

    kind = ErrorKind.PARSE_ERROR


class ExpressionSyntaxError(PipexpandError):
    """Raised when a ${{ }} expression cannot be parsed."""

    kind = ErrorKind.EXPRESSION_SYNTAX


class ExpansionError(PipexpandError):
    """Base class for errors raised while expanding templates."""


class UndefinedReferenceError(ExpansionError):
    """Raised when an expression names an unknown parameter or variable."""

    kind = ErrorKind.UNDEFINED_REFERENCE


class RuntimeReferenceError(ExpansionError):
    """Raised when a compile-time expression touches a runtime-only value."""

    kind = ErrorKind.RUNTIME_REFERENCE


class TypeMismatchError(ExpansionError):
    """Raised when a value does not have the shape its use requires."""

    kind = ErrorKind.TYPE_MISMATCH


class MissingArgumentError(ExpansionError):
    """Raised when a parameter without a default receives no argument."""

    kind = ErrorKind.MISSING_ARGUMENT


class UnknownParameterError(ExpansionError):
    """Raised when an argument is passed for an undeclared parameter."""

    kind = ErrorKind.UNKNOWN_PARAMETER


class ConflictingBranchesError(ExpansionError):
    """Raised when sibling directives emit the same key."""

    kind = ErrorKind.CONFLICTING_BRANCHES


class TemplateNotFoundError(ExpansionError):
    """Raised when a template reference cannot be loaded."""

    kind = ErrorKind.TEMPLATE_NOT_FOUND


class TemplateRecursionError(ExpansionError):
    """Raised when template includes nest too deeply or form a cycle."""

    kind = ErrorKind.TEMPLATE_RECURSION


class ExtendsRequiredError(ExpansionError):
    """Raised when a pipeline does not extend the mandatory template."""

    kind = ErrorKind.EXTENDS_REQUIRED


class PolicyViolationError(PipexpandError):
    """Raised with every rule violation found in an expanded pipeline."""

    kind = ErrorKind.POLICY_VIOLATION

    def __init__(self, violations: Iterable[Diagnostic]):
        self.violations = list(violations)
        count = len(self.violations)
        super().__init__(f"{count} policy violation{'s' if count != 1 else ''}")

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self.violations)

    def __str__(self) -> str:
        return "\n".join(str(v) for v in self.violations)


class CompilationError(PipexpandError):
    """Raised by `CompileResult.unwrap()` when a compile produced diagnostics."""

    def __init__(self, diagnostics: Iterable[Diagnostic]):
        self._diagnostics = list(diagnostics)
        count = len(self._diagnostics)
        first = self._diagnostics[0] if self._diagnostics else None
        super().__init__(
            f"Compilation failed with {count} error{'s' if count != 1 else ''}",
            first.location if first else None,
        )

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def __str__(self) -> str:
        return "\n".join(str(d) for d in self._diagnostics)
