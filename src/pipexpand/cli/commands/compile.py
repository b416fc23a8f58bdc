"""Compile command - expand a pipeline and print the result"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from pipexpand.ast.serializer import save, serialize
from pipexpand.compiler import (
    CompileResult,
    FileSystemLoader,
    RuleSet,
    compile_pipeline,
    compile_with_policy,
    load_rule_set,
)
from pipexpand.errors import PipexpandError

from ..utils import get_config, handle_error, parse_assignments, print_diagnostics

logger = logging.getLogger(__name__)


def run_compile(
    pipeline: Path,
    template: Optional[str],
    rules_file: Optional[Path],
    parameters: Optional[List[str]],
    variables: Optional[List[str]],
    config_path: Optional[Path],
) -> CompileResult:
    """Compile `pipeline` with config values overridden by command-line flags."""
    config = get_config(config_path)

    params = {**config.parameters, **parse_assignments(parameters, "--param")}
    variables_ = {**config.variables, **parse_assignments(variables, "--var")}

    try:
        rules = config.rule_set()
        if rules_file is not None:
            extra = load_rule_set(rules_file)
            rules = RuleSet(rules=rules.rules + extra.rules)
        raw_text = pipeline.read_text(encoding="utf-8")
    except (OSError, PipexpandError) as exc:
        handle_error(exc)

    loader = FileSystemLoader(config.template_root)
    source = loader.source_for(pipeline)
    mandatory = template or config.required_template
    logger.info("Compiling %s (templates from %s)", source, loader.base_dir)

    if mandatory:
        return compile_with_policy(
            raw_text,
            mandatory,
            loader=loader,
            rules=rules,
            parameters=params,
            variables=variables_,
            source=source,
            max_depth=config.max_depth,
        )
    return compile_pipeline(
        raw_text,
        loader=loader,
        rules=rules,
        parameters=params,
        variables=variables_,
        source=source,
        max_depth=config.max_depth,
    )


def compile_command(
    pipeline: Path,
    template: Optional[str] = None,
    rules_file: Optional[Path] = None,
    parameters: Optional[List[str]] = None,
    variables: Optional[List[str]] = None,
    output: Optional[Path] = None,
    config_path: Optional[Path] = None,
) -> None:
    """Compile a pipeline and print (or write) the expanded YAML."""
    result = run_compile(pipeline, template, rules_file, parameters, variables, config_path)
    if not result.ok:
        print_diagnostics(result.diagnostics)
        raise typer.Exit(1)

    document = result.unwrap()
    if output is not None:
        save(document, output)
        typer.secho(f"Wrote {output}", fg=typer.colors.GREEN, err=True)
    else:
        typer.echo(serialize(document), nl=False)
