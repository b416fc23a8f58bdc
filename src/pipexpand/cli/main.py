"""Pipexpand CLI Main Entry Point

Usage:
    pipexpand compile azure-pipelines.yml                 # Print expanded YAML
    pipexpand compile pipeline.yml -t ci/policy.yml       # Require extends
    pipexpand compile pipeline.yml -P env=prod -o out.yml # Pass a parameter
    pipexpand check pipeline.yml -r rules.yaml            # Only report errors
    pipexpand eval "eq(parameters.env, 'prod')" -P env=prod
    pipexpand --version
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from pipexpand._version import __version__

from .commands import check_command, compile_command, eval_command
from .utils import setup_logging

app = typer.Typer(
    help="Static evaluator for CI pipeline templates.",
    no_args_is_help=True,
    add_completion=False,
)

TEMPLATE_OPTION = typer.Option(
    None, "-t", "--template", help="Template the pipeline must extend."
)
RULES_OPTION = typer.Option(
    None, "-r", "--rules", help="YAML file with policy rules.", dir_okay=False
)
PARAM_OPTION = typer.Option(
    None, "-P", "--param", help="Root parameter as name=value (repeatable)."
)
VAR_OPTION = typer.Option(
    None, "-V", "--var", help="Compile-time variable as name=value (repeatable)."
)
CONFIG_OPTION = typer.Option(
    None, "-c", "--config", help="Path to pipexpand.yaml.", dir_okay=False
)
VERBOSE_OPTION = typer.Option(False, "-v", "--verbose", help="Show progress logs.")


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pipexpand {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Expand ${{ }} directives and templates at compile time, then check policy."""


@app.command("compile")
def compile_(
    pipeline: Path = typer.Argument(..., exists=True, dir_okay=False),
    template: Optional[str] = TEMPLATE_OPTION,
    rules: Optional[Path] = RULES_OPTION,
    params: Optional[List[str]] = PARAM_OPTION,
    variables: Optional[List[str]] = VAR_OPTION,
    output: Optional[Path] = typer.Option(
        None, "-o", "--output", help="Write expanded YAML to file instead of stdout."
    ),
    config: Optional[Path] = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Compile a pipeline and print the expanded YAML."""
    setup_logging(verbose)
    compile_command(pipeline, template, rules, params, variables, output, config)


@app.command("check")
def check(
    pipeline: Path = typer.Argument(..., exists=True, dir_okay=False),
    template: Optional[str] = TEMPLATE_OPTION,
    rules: Optional[Path] = RULES_OPTION,
    params: Optional[List[str]] = PARAM_OPTION,
    variables: Optional[List[str]] = VAR_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Compile a pipeline and report whether it passes."""
    setup_logging(verbose)
    check_command(pipeline, template, rules, params, variables, config)


@app.command("eval")
def eval_(
    expression: str = typer.Argument(..., help="Expression, e.g. \"eq(parameters.a, 'b')\""),
    params: Optional[List[str]] = PARAM_OPTION,
    variables: Optional[List[str]] = VAR_OPTION,
) -> None:
    """Evaluate a single compile-time expression."""
    setup_logging(False)
    eval_command(expression, params, variables)


if __name__ == "__main__":
    app()
