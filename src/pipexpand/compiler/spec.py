"""Compiler result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from pipexpand.ast.node import Node
from pipexpand.errors import CompilationError, Diagnostic


@dataclass
class Expansion:
    """An expanded document plus the error markers collected on the way."""

    document: Node
    diagnostics: List[Diagnostic] = field(default_factory=list)


@dataclass
class CompileResult:
    """Either a fully expanded pipeline or the diagnostics that stopped it.

    A result never carries both: any diagnostic means nothing is emitted.
    """

    document: Optional[Node] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.document is not None and not self.diagnostics

    def unwrap(self) -> Node:
        if not self.ok:
            raise CompilationError(self.diagnostics)
        assert self.document is not None
        return self.document
