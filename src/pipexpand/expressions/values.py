"""Value helpers shared by the evaluator and its functions.

Evaluated values are either plain Python data or document nodes (parameter
arguments keep their nodes so locations survive substitution).
"""

from __future__ import annotations

from typing import Any, Iterator

from pipexpand.ast.node import Mapping, Node, Scalar, Sequence
from pipexpand.errors import TypeMismatchError


def plain(value: Any) -> Any:
    """Strip document nodes down to Python data."""
    if isinstance(value, Node):
        return value.to_python()
    return value


def is_sequence(value: Any) -> bool:
    return isinstance(value, (Sequence, list, tuple))


def is_mapping(value: Any) -> bool:
    return isinstance(value, (Mapping, dict))


def is_collection(value: Any) -> bool:
    return is_sequence(value) or is_mapping(value)


def unwrap_scalar(value: Any) -> Any:
    if isinstance(value, Scalar):
        return value.value
    return value


def category(value: Any) -> str:
    value = unwrap_scalar(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if is_sequence(value):
        return "sequence"
    if is_mapping(value):
        return "mapping"
    return type(value).__name__


def truthy(value: Any) -> bool:
    """`false`, `null`, `0` and `''` are false; everything else is true."""
    value = unwrap_scalar(value)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def to_str(value: Any) -> str:
    """String form of a scalar, as written into interpolated text."""
    value = unwrap_scalar(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, str)):
        return str(value)
    raise TypeMismatchError(f"Cannot convert a {category(value)} to a string")


def to_number(value: Any) -> float:
    value = unwrap_scalar(value)
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise TypeMismatchError(f"Cannot convert {to_display(value)} to a number")


def equals(left: Any, right: Any) -> bool:
    """Structural equality; values of different types compare as strings."""
    left, right = plain(left), plain(right)
    if category(left) == category(right):
        return left == right
    if is_collection(left) or is_collection(right):
        return False
    return to_str(left) == to_str(right)


def compare(left: Any, right: Any) -> int:
    """Order two scalars: numerically when either side is a number."""
    left, right = plain(left), plain(right)
    if is_collection(left) or is_collection(right):
        raise TypeMismatchError("Cannot order sequences or mappings")
    if category(left) == "string" and category(right) == "string":
        return (left > right) - (left < right)
    a, b = to_number(left), to_number(right)
    return (a > b) - (a < b)


def iterate(value: Any) -> Iterator[Any]:
    """Yield loop bindings: items of a sequence, `{key, value}` for a mapping."""
    if isinstance(value, Sequence):
        for item in value.items:
            yield item
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield item
    elif isinstance(value, Mapping):
        for pair in value.pairs:
            yield {"key": pair.key, "value": pair.value}
    elif isinstance(value, dict):
        for key, item in value.items():
            yield {"key": key, "value": item}
    else:
        raise TypeMismatchError(
            f"'each' requires a sequence or mapping, got a {category(value)}"
        )


def to_display(value: Any) -> str:
    value = plain(value)
    if isinstance(value, str):
        return repr(value)
    return str(value)
