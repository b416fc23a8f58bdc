from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple, Union


@dataclass(frozen=True)
class Location:
    """Position of a node in its source document (1-based)."""

    source: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.source}:{self.line}:{self.column}"


@dataclass(frozen=True)
class Node:
    """Base of the document tree. Locations never take part in equality."""

    location: Optional[Location] = field(default=None, compare=False, kw_only=True)

    def to_python(self) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Scalar(Node):
    value: Union[str, int, float, bool, None] = None

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Sequence(Node):
    items: Tuple[Node, ...] = ()

    def to_python(self) -> List[Any]:
        return [item.to_python() for item in self.items]

    def __iter__(self) -> Iterator[Node]:
        return iter(self.items)


class DirectiveKind(str, Enum):
    IF = "if"
    EACH = "each"


@dataclass(frozen=True)
class Directive(Node):
    """A `${{ if }}` or `${{ each }}` key together with the node under it."""

    kind: DirectiveKind = DirectiveKind.IF
    expression: str = ""
    variable: Optional[str] = None
    body: Node = field(default_factory=lambda: Mapping())

    @property
    def source_text(self) -> str:
        if self.kind is DirectiveKind.EACH:
            return f"${{{{ each {self.variable} in {self.expression} }}}}"
        return f"${{{{ if {self.expression} }}}}"

    def to_python(self) -> Any:
        return {self.source_text: self.body.to_python()}


@dataclass(frozen=True)
class Pair:
    """A literal `key: value` entry of a mapping."""

    key: str
    value: Node
    location: Optional[Location] = field(default=None, compare=False)


Entry = Union[Pair, Directive]


@dataclass(frozen=True)
class Mapping(Node):
    entries: Tuple[Entry, ...] = ()

    @property
    def pairs(self) -> List[Pair]:
        return [e for e in self.entries if isinstance(e, Pair)]

    @property
    def directives(self) -> List[Directive]:
        return [e for e in self.entries if isinstance(e, Directive)]

    @property
    def first_key(self) -> Optional[str]:
        """The primary key, i.e. the task selector of a step."""
        for entry in self.entries:
            if isinstance(entry, Pair):
                return entry.key
        return None

    def keys(self) -> List[str]:
        return [p.key for p in self.pairs]

    def get(self, key: str, default: Optional[Node] = None) -> Optional[Node]:
        for pair in self.pairs:
            if pair.key == key:
                return pair.value
        return default

    def __contains__(self, key: object) -> bool:
        return any(p.key == key for p in self.pairs)

    def has_directives(self) -> bool:
        return any(isinstance(e, Directive) for e in self.entries)

    def to_python(self) -> dict:
        result: dict = {}
        for entry in self.entries:
            if isinstance(entry, Pair):
                result[entry.key] = entry.value.to_python()
            else:
                result.update(entry.to_python())
        return result


def from_python(value: Any, location: Optional[Location] = None) -> Node:
    """Build a directive-free node tree from plain Python data."""
    if isinstance(value, Node):
        return value
    if isinstance(value, dict):
        return Mapping(
            entries=tuple(
                Pair(str(k), from_python(v, location), location=location)
                for k, v in value.items()
            ),
            location=location,
        )
    if isinstance(value, (list, tuple)):
        return Sequence(
            items=tuple(from_python(v, location) for v in value), location=location
        )
    if value is None or isinstance(value, (str, int, float, bool)):
        return Scalar(value, location=location)
    raise TypeError(f"Cannot convert {type(value).__name__} to a document node")


def contains_directives(node: Node) -> bool:
    """True if any directive remains anywhere below `node`."""
    if isinstance(node, Directive):
        return True
    if isinstance(node, Mapping):
        return any(
            isinstance(e, Directive) or contains_directives(e.value)
            for e in node.entries
        )
    if isinstance(node, Sequence):
        return any(contains_directives(item) for item in node.items)
    return False
