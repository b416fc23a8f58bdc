from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, List, Optional

import yaml
from yaml import YAMLError
from yaml.nodes import MappingNode, ScalarNode, SequenceNode

from pipexpand.ast.node import (
    Directive,
    DirectiveKind,
    Entry,
    Location,
    Mapping,
    Node,
    Pair,
    Scalar,
    Sequence,
)
from pipexpand.errors import ParseError

# A key that is nothing but one ${{ ... }} block.
DIRECTIVE_KEY = re.compile(r"^\s*\$\{\{\s*(?P<body>.*?)\s*\}\}\s*$", re.DOTALL)
IF_DIRECTIVE = re.compile(r"^if\s+(?P<expr>.+)$", re.DOTALL)
EACH_DIRECTIVE = re.compile(
    r"^each\s+(?P<var>[A-Za-z_][A-Za-z0-9_]*)\s+in\s+(?P<expr>.+)$", re.DOTALL
)
UNSUPPORTED_DIRECTIVE = re.compile(r"^(?P<word>else|elseif|insert)\b")


class Parser:
    """Builds the document tree from YAML text, keeping key order and locations."""

    _file_loader: Callable[[str], str]

    def __init__(self, file_loader: Callable[[str], str] | None = None):
        self._file_loader = file_loader or read_file

    def parse_file(self, filepath: str) -> Node:
        source = self._file_loader(filepath)
        return self.parse_yaml(source, filepath)

    def parse_yaml(self, text: str, source: str = "<string>") -> Node:
        if not isinstance(text, str):
            raise TypeError("`text` must be a string containing YAML")

        loader = yaml.SafeLoader(text)
        try:
            root = loader.get_single_node()
            if root is None:
                raise ParseError("Document is empty", Location(source, 1, 1))
            return _Builder(loader, source).build(root)
        except YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            location = (
                Location(source, mark.line + 1, mark.column + 1) if mark else None
            )
            raise ParseError(f"Invalid YAML: {exc}", location) from exc
        finally:
            loader.dispose()


class _Builder:
    def __init__(self, loader: yaml.SafeLoader, source: str):
        self.loader = loader
        self.source = source

    def location(self, node: yaml.Node) -> Location:
        mark = node.start_mark
        return Location(self.source, mark.line + 1, mark.column + 1)

    def build(self, node: yaml.Node) -> Node:
        if isinstance(node, ScalarNode):
            return self.build_scalar(node)
        if isinstance(node, SequenceNode):
            return Sequence(
                items=tuple(self.build(item) for item in node.value),
                location=self.location(node),
            )
        if isinstance(node, MappingNode):
            return self.build_mapping(node)
        raise ParseError(
            f"Unsupported YAML node {type(node).__name__}", self.location(node)
        )

    def build_scalar(self, node: ScalarNode) -> Scalar:
        value = self.loader.construct_object(node, deep=True)
        if value is not None and not isinstance(value, (str, int, float, bool)):
            # Timestamps, binary and friends stay as the text that was written.
            value = node.value
        return Scalar(value, location=self.location(node))

    def build_mapping(self, node: MappingNode) -> Mapping:
        entries: List[Entry] = []
        seen_keys: dict[str, Location] = {}

        for key_node, value_node in node.value:
            loc = self.location(key_node)
            if not isinstance(key_node, ScalarNode):
                raise ParseError("Mapping keys must be scalars", loc)

            key = str(key_node.value)
            if key in seen_keys:
                raise ParseError(
                    f"Duplicate key '{key}' (first defined at {seen_keys[key]})", loc
                )
            seen_keys[key] = loc

            value = self.build(value_node)
            directive = parse_directive_key(key, value, loc)
            if directive is not None:
                entries.append(directive)
            else:
                entries.append(Pair(key, value, location=loc))

        return Mapping(entries=tuple(entries), location=self.location(node))


def parse_directive_key(
    key: str, body: Node, location: Optional[Location] = None
) -> Optional[Directive]:
    """Return a Directive if `key` is an `if` or `each` block, else None.

    Keys holding a plain expression such as `${{ parameters.name }}` are not
    directives; they are interpolated during expansion.
    """
    match = DIRECTIVE_KEY.match(key)
    if match is None:
        return None

    inner = match.group("body").strip()

    unsupported = UNSUPPORTED_DIRECTIVE.match(inner)
    if unsupported is not None:
        word = unsupported.group("word")
        raise ParseError(
            f"Unsupported directive '{word}': write mutually exclusive branches "
            "as two 'if' directives with complementary conditions",
            location,
            directive=key.strip(),
        )

    each = EACH_DIRECTIVE.match(inner)
    if each is not None:
        return Directive(
            kind=DirectiveKind.EACH,
            variable=each.group("var"),
            expression=each.group("expr").strip(),
            body=body,
            location=location,
        )
    if inner.startswith("each"):
        raise ParseError(
            "Malformed each directive, expected '${{ each <name> in <expression> }}'",
            location,
            directive=key.strip(),
        )

    cond = IF_DIRECTIVE.match(inner)
    if cond is not None:
        return Directive(
            kind=DirectiveKind.IF,
            expression=cond.group("expr").strip(),
            body=body,
            location=location,
        )
    if inner == "if":
        raise ParseError(
            "Malformed if directive, expected '${{ if <expression> }}'",
            location,
            directive=key.strip(),
        )

    return None


def parse(text: str, source: str = "<string>") -> Node:
    """Parse YAML text into a document tree."""
    return Parser().parse_yaml(text, source)


def parse_file(path: str | Path) -> Node:
    """Load YAML from a file and parse it."""
    return Parser().parse_file(str(path))


def read_file(filepath: str) -> str:
    try:
        with open(filepath, "r", encoding="utf-8") as file:
            return file.read()
    except OSError as exc:
        raise FileNotFoundError(f"Could not read file: {filepath}") from exc
