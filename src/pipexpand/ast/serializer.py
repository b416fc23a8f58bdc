"""Serializer - renders a document tree back to YAML text."""

from __future__ import annotations

from pathlib import Path

import yaml

from pipexpand.ast.node import Node


def serialize(node: Node) -> str:
    """Render `node` as YAML, preserving key order.

    Directives that are still present are written back in their `${{ }}`
    key form, so an unexpanded template serializes to an equivalent template.
    """
    return yaml.safe_dump(
        node.to_python(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


def save(node: Node, path: Path) -> None:
    """Write `node` to `path` as YAML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(serialize(node))
