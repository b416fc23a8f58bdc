"""Template loaders - map template references to parsed documents.

Sources are identified by normalised POSIX paths relative to the loader root.
A reference is resolved relative to the file that includes it; a leading `/`
makes it relative to the root instead.
"""

from __future__ import annotations

import logging
import posixpath
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from pipexpand.ast.node import Node
from pipexpand.ast.parser import Parser
from pipexpand.errors import TemplateNotFoundError

logger = logging.getLogger(__name__)


class TemplateLoader(ABC):
    """Resolves and loads template documents. Parsed trees are cached per source."""

    def __init__(self) -> None:
        self.parser = Parser(file_loader=self.read)
        self._cache: Dict[str, Node] = {}

    def resolve(self, ref: str, relative_to: Optional[str] = None) -> str:
        """Turn a reference into a source id.

        Args:
            ref: Reference as written, e.g. `templates/build.yml` or `/ci/policy.yml`.
            relative_to: Source id of the including document.

        Raises:
            TemplateNotFoundError: For repository-qualified references.
        """
        ref = ref.strip()
        if not ref:
            raise TemplateNotFoundError("Empty template reference")
        if "@" in ref:
            raise TemplateNotFoundError(
                f"Repository-qualified template '{ref}' is not supported"
            )

        if ref.startswith("/"):
            candidate = ref.lstrip("/")
        elif relative_to:
            candidate = posixpath.join(posixpath.dirname(relative_to), ref)
        else:
            candidate = ref
        return posixpath.normpath(candidate)

    def load(self, source: str) -> Node:
        """Parse the document for a resolved source id."""
        if source not in self._cache:
            logger.debug("Loading template %s", source)
            self._cache[source] = self.parser.parse_file(source)
        return self._cache[source]

    @abstractmethod
    def read(self, source: str) -> str:
        """Return the raw text of a source, raising TemplateNotFoundError."""


class FileSystemLoader(TemplateLoader):
    """Loads templates from a directory tree."""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        super().__init__()

    def source_for(self, path: Path) -> str:
        """Source id for a file on disk, relative to the loader root when possible."""
        resolved = Path(path).resolve()
        try:
            return resolved.relative_to(self.base_dir.resolve()).as_posix()
        except ValueError:
            return resolved.as_posix()

    def read(self, source: str) -> str:
        path = Path(source)
        if not path.is_absolute():
            path = self.base_dir / source
        if not path.is_file():
            raise TemplateNotFoundError(
                f"Template not found: {source} (resolved to {path})"
            )
        return path.read_text(encoding="utf-8")


class DictLoader(TemplateLoader):
    """Loads templates from an in-memory mapping of source id to YAML text."""

    def __init__(self, templates: Dict[str, str]):
        self.templates = {posixpath.normpath(k.lstrip("/")): v for k, v in templates.items()}
        super().__init__()

    def read(self, source: str) -> str:
        if source not in self.templates:
            raise TemplateNotFoundError(f"Template not found: {source}")
        return self.templates[source]
