"""Document model - ordered YAML trees with source locations."""

from pipexpand.ast.node import (
    Directive,
    DirectiveKind,
    Location,
    Mapping,
    Node,
    Pair,
    Scalar,
    Sequence,
    contains_directives,
    from_python,
)
from pipexpand.ast.parser import Parser, parse, parse_file
from pipexpand.ast.serializer import serialize

__all__ = [
    "Directive",
    "DirectiveKind",
    "Location",
    "Mapping",
    "Node",
    "Pair",
    "Scalar",
    "Sequence",
    "contains_directives",
    "from_python",
    "Parser",
    "parse",
    "parse_file",
    "serialize",
]
