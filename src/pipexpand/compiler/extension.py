"""Extension root - compile a pipeline, optionally under a mandatory template.

`compile_with_policy` is the enforced path: the consumer pipeline may only
`extends:` the mandatory template, and everything it contributes enters
through that template's parameters. The rule set then runs over the final
tree. Either a document or the diagnostics come back, never both.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pipexpand.ast.node import Mapping, Node, Scalar
from pipexpand.ast.parser import parse
from pipexpand.compiler.expander import DEFAULT_MAX_DEPTH, Expander
from pipexpand.compiler.loader import TemplateLoader
from pipexpand.compiler.policy import RuleSet, check
from pipexpand.compiler.spec import CompileResult
from pipexpand.errors import ExtendsRequiredError, PipexpandError
from pipexpand.expressions.template import has_placeholder

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "azure-pipelines.yml"

# Content that must be passed to the mandatory template as parameters.
_CONTENT_KEYS = ("stages", "jobs", "steps")


def compile_pipeline(
    raw_text: str,
    *,
    loader: Optional[TemplateLoader] = None,
    rules: Optional[RuleSet] = None,
    parameters: Optional[Dict[str, Any]] = None,
    variables: Optional[Dict[str, Any]] = None,
    source: str = DEFAULT_SOURCE,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> CompileResult:
    """Parse, expand and (if `rules` is given) check a pipeline."""
    try:
        root = parse(raw_text, source)
    except PipexpandError as exc:
        return CompileResult(diagnostics=exc.diagnostics)
    return _compile(root, loader, rules, parameters, variables, source, max_depth)


def compile_with_policy(
    raw_text: str,
    mandatory_template: str,
    *,
    loader: TemplateLoader,
    rules: Optional[RuleSet] = None,
    parameters: Optional[Dict[str, Any]] = None,
    variables: Optional[Dict[str, Any]] = None,
    source: str = DEFAULT_SOURCE,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> CompileResult:
    """Compile a pipeline that must extend `mandatory_template`.

    Returns diagnostics (and no document) if the pipeline does not extend the
    mandatory template, defines its own stages/jobs/steps, or breaks a rule.
    """
    try:
        root = parse(raw_text, source)
        _require_extends(root, mandatory_template, loader, source)
    except PipexpandError as exc:
        return CompileResult(diagnostics=exc.diagnostics)
    return _compile(root, loader, rules, parameters, variables, source, max_depth)


def _require_extends(
    root: Node, mandatory_template: str, loader: TemplateLoader, source: str
) -> None:
    required = loader.resolve(mandatory_template)

    if not isinstance(root, Mapping):
        raise ExtendsRequiredError(
            f"Pipeline must extend '{required}'", root.location
        )
    if root.has_directives():
        directive = root.directives[0]
        raise ExtendsRequiredError(
            "Top-level directives are not allowed in a pipeline that extends "
            f"'{required}'",
            directive.location,
            "",
            directive.source_text,
        )
    for pair in root.pairs:
        if has_placeholder(pair.key):
            raise ExtendsRequiredError(
                "Top-level keys must be literal in a pipeline that extends "
                f"'{required}'",
                pair.location,
                "",
                pair.key,
            )

    extends = root.get("extends")
    if not isinstance(extends, Mapping) or "template" not in extends:
        raise ExtendsRequiredError(
            f"Pipeline must extend '{required}'",
            extends.location if extends is not None else root.location,
            "extends",
        )

    ref = extends.get("template")
    if not isinstance(ref, Scalar) or not isinstance(ref.value, str) or has_placeholder(ref.value):
        raise ExtendsRequiredError(
            f"'extends.template' must name '{required}' literally",
            ref.location if ref is not None else extends.location,
            "extends.template",
        )
    actual = loader.resolve(ref.value, source)
    if actual != required:
        raise ExtendsRequiredError(
            f"Pipeline extends '{actual}', but must extend '{required}'",
            ref.location,
            "extends.template",
        )

    for key in _CONTENT_KEYS:
        if key in root:
            pair = next(p for p in root.pairs if p.key == key)
            raise ExtendsRequiredError(
                f"Top-level '{key}' is not allowed next to 'extends'; "
                f"pass it to '{required}' as a parameter",
                pair.location,
                key,
            )
    logger.debug("Pipeline %s extends mandatory template %s", source, required)


def _compile(
    root: Node,
    loader: Optional[TemplateLoader],
    rules: Optional[RuleSet],
    parameters: Optional[Dict[str, Any]],
    variables: Optional[Dict[str, Any]],
    source: str,
    max_depth: int,
) -> CompileResult:
    expander = Expander(loader, max_depth=max_depth)
    try:
        expansion = expander.expand_pipeline(root, parameters, variables, source)
        diagnostics = list(expansion.diagnostics)
        if rules is not None:
            diagnostics.extend(check(expansion.document, rules))
    except PipexpandError as exc:
        return CompileResult(diagnostics=exc.diagnostics)

    if diagnostics:
        logger.info("Compile of %s produced %d diagnostic(s)", source, len(diagnostics))
        return CompileResult(diagnostics=diagnostics)
    return CompileResult(document=expansion.document)
