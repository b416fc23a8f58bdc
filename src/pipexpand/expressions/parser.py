"""Expression parsing for the ${{ }} compile-time syntax.

Grammar::

    expr     := primary postfix*
    primary  := STRING | NUMBER | KEYWORD | IDENT | IDENT '(' [expr (',' expr)*] ')'
    postfix  := '.' IDENT | '[' expr ']'

Keywords (`true`, `false`, `null`) and function names are case-insensitive.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from pipexpand.errors import ExpressionSyntaxError
from pipexpand.expressions.functions import FUNCTIONS


@dataclass(frozen=True)
class Token:
    kind: str  # STRING, NUMBER, IDENT, PUNCT, END
    value: Any
    pos: int


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^']|'')*')
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<punct>[()\[\],.])
    """,
    re.VERBOSE,
)

KEYWORDS = {"true": True, "false": False, "null": None}


def tokenize(text: str) -> List[Token]:
    """Split an expression into tokens."""
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            if text[pos] == "'":
                raise ExpressionSyntaxError(
                    f"Unterminated string literal at position {pos}",
                    directive=text,
                )
            raise ExpressionSyntaxError(
                f"Unexpected character {text[pos]!r} at position {pos}",
                directive=text,
            )
        kind = match.lastgroup
        raw = match.group()
        if kind == "string":
            tokens.append(Token("STRING", raw[1:-1].replace("''", "'"), pos))
        elif kind == "number":
            value: Any = float(raw) if "." in raw else int(raw)
            tokens.append(Token("NUMBER", value, pos))
        elif kind == "ident":
            tokens.append(Token("IDENT", raw, pos))
        elif kind == "punct":
            tokens.append(Token("PUNCT", raw, pos))
        pos = match.end()
    tokens.append(Token("END", None, pos))
    return tokens


class Expr:
    """Base class of expression AST nodes."""


@dataclass(frozen=True)
class Literal(Expr):
    value: Any

    def __str__(self) -> str:
        if isinstance(self.value, str):
            return "'" + self.value.replace("'", "''") + "'"
        if self.value is None:
            return "null"
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True)
class Name(Expr):
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Member(Expr):
    target: Expr
    name: str

    def __str__(self) -> str:
        return f"{self.target}.{self.name}"


@dataclass(frozen=True)
class Index(Expr):
    target: Expr
    index: Expr

    def __str__(self) -> str:
        return f"{self.target}[{self.index}]"


@dataclass(frozen=True)
class Call(Expr):
    name: str  # canonical lower-case name
    args: Tuple[Expr, ...]
    written: str = ""

    def __str__(self) -> str:
        inner = ", ".join(str(a) for a in self.args)
        return f"{self.written or self.name}({inner})"


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.i = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.i]

    def advance(self) -> Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def error(self, message: str, tok: Optional[Token] = None) -> ExpressionSyntaxError:
        tok = tok or self.current
        return ExpressionSyntaxError(
            f"{message} at position {tok.pos}", directive=self.text
        )

    def expect_punct(self, value: str) -> Token:
        tok = self.current
        if tok.kind != "PUNCT" or tok.value != value:
            found = "end of expression" if tok.kind == "END" else repr(tok.value)
            raise self.error(f"Expected '{value}' but found {found}")
        return self.advance()

    def parse(self) -> Expr:
        if self.current.kind == "END":
            raise self.error("Empty expression")
        expr = self.parse_expr()
        if self.current.kind != "END":
            raise self.error(f"Unexpected token {self.current.value!r}")
        return expr

    def parse_expr(self) -> Expr:
        expr = self.parse_primary()
        while self.current.kind == "PUNCT" and self.current.value in (".", "["):
            if self.advance().value == ".":
                tok = self.current
                if tok.kind != "IDENT":
                    raise self.error("Expected a property name after '.'")
                self.advance()
                expr = Member(expr, tok.value)
            else:
                index = self.parse_expr()
                self.expect_punct("]")
                expr = Index(expr, index)
        return expr

    def parse_primary(self) -> Expr:
        tok = self.current
        if tok.kind in ("STRING", "NUMBER"):
            self.advance()
            return Literal(tok.value)
        if tok.kind == "IDENT":
            self.advance()
            if self.current.kind == "PUNCT" and self.current.value == "(":
                return self.parse_call(tok)
            lowered = tok.value.lower()
            if lowered in KEYWORDS:
                return Literal(KEYWORDS[lowered])
            return Name(tok.value)
        if tok.kind == "END":
            raise self.error("Unexpected end of expression")
        raise self.error(f"Unexpected token {tok.value!r}")

    def parse_call(self, name_tok: Token) -> Call:
        name = name_tok.value.lower()
        spec = FUNCTIONS.get(name)
        if spec is None:
            raise self.error(f"Unknown function '{name_tok.value}'", name_tok)

        self.expect_punct("(")
        args: List[Expr] = []
        if not (self.current.kind == "PUNCT" and self.current.value == ")"):
            args.append(self.parse_expr())
            while self.current.kind == "PUNCT" and self.current.value == ",":
                self.advance()
                args.append(self.parse_expr())
        self.expect_punct(")")

        if len(args) < spec.min_args or (
            spec.max_args is not None and len(args) > spec.max_args
        ):
            raise self.error(
                f"Function '{name_tok.value}' expects {spec.arity_text()}, "
                f"got {len(args)}",
                name_tok,
            )
        return Call(name, tuple(args), written=name_tok.value)


def parse_expression(text: str) -> Expr:
    """Parse the inside of a ${{ }} block into an expression tree."""
    return _Parser(text.strip()).parse()
