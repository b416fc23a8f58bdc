"""Check command - compile a pipeline and report only the outcome"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from ..utils import console, print_diagnostics
from .compile import run_compile


def check_command(
    pipeline: Path,
    template: Optional[str] = None,
    rules_file: Optional[Path] = None,
    parameters: Optional[List[str]] = None,
    variables: Optional[List[str]] = None,
    config_path: Optional[Path] = None,
) -> None:
    """Compile a pipeline without printing it."""
    result = run_compile(pipeline, template, rules_file, parameters, variables, config_path)
    if result.ok:
        console.print(f"[green]✓[/green] {pipeline}: OK")
        return

    print_diagnostics(result.diagnostics)
    count = len(result.diagnostics)
    console.print(
        f"[red]✗[/red] {pipeline}: {count} error{'s' if count != 1 else ''}"
    )
    raise typer.Exit(1)
