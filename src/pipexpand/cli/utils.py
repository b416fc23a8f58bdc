"""Shared utilities for CLI commands"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from pipexpand.config import ProjectConfig, find_config, load_config
from pipexpand.errors import Diagnostic, PipexpandError

console = Console()

DEBUG_ENV = "PIPEXPAND_DEBUG"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the pipexpand CLI.

    Log levels:
    - Normal: Only warnings/errors shown
    - Verbose (-v): INFO level - template loads, diagnostic counts
    - Debug (PIPEXPAND_DEBUG=1): DEBUG level - bindings, rule evaluation
    """
    debug = bool(os.environ.get(DEBUG_ENV))
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=verbose,
        show_path=debug,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("pipexpand")
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False


def parse_assignments(pairs: Optional[List[str]], option: str) -> Dict[str, Any]:
    """Parse `name=value` pairs; values are read as YAML (`true`, `3`, `[a, b]`)."""
    result: Dict[str, Any] = {}
    for pair in pairs or []:
        name, sep, raw = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            exit_with_error(f"{option} expects name=value, got '{pair}'")
        try:
            result[name] = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError:
            result[name] = raw
    return result


def get_config(config_path: Optional[Path]) -> ProjectConfig:
    """Load the config from `config_path`, or find pipexpand.yaml, or use defaults."""
    path = config_path or find_config()
    if path is None:
        return ProjectConfig()
    try:
        return load_config(path)
    except (FileNotFoundError, PipexpandError) as exc:
        handle_error(exc)


def print_diagnostics(diagnostics: Iterable[Diagnostic]) -> None:
    for diagnostic in diagnostics:
        typer.secho(str(diagnostic), fg=typer.colors.RED, err=True)


def exit_with_error(message: str, exit_code: int = 1) -> NoReturn:
    """Exit the program with an error message."""
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    sys.exit(exit_code)


def handle_error(error: Exception) -> NoReturn:
    """Report an error and exit."""
    if isinstance(error, PipexpandError):
        print_diagnostics(error.diagnostics)
        sys.exit(1)
    if isinstance(error, (FileNotFoundError, OSError)):
        exit_with_error(str(error))
    # Unexpected error
    typer.secho(f"Unexpected error: {error}", fg=typer.colors.RED, err=True)
    sys.exit(1)
