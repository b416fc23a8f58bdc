"""Expander - resolves ${{ }} directives, substitutions and template references.

Expansion is a recursive descent over the document tree:

1. Scalars and keys are interpolated; a whole-value placeholder may turn a
   scalar into a sequence or mapping.
2. `${{ if }}` keeps or drops its body. A false condition removes the body
   and everything under it from the output.
3. `${{ each x in C }}` expands its body once per element of C, in order.
4. `- template: file` items under stages/jobs/steps/variables are replaced by
   the list the template defines, expanded with its own parameter scope.
5. `extends:` at the pipeline root wraps the pipeline in a template.

Each branch gets its own immutable ExpressionContext, so siblings never see
each other's loop variables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from pipexpand.ast.node import (
    Directive,
    DirectiveKind,
    Location,
    Mapping,
    Node,
    Pair,
    Scalar,
    Sequence,
    from_python,
)
from pipexpand.compiler.loader import TemplateLoader
from pipexpand.compiler.parameters import (
    INCLUDE_KEY_FOR_TYPE,
    STEP_KEYS,
    ParameterSpec,
    bind_parameters,
    parse_declarations,
)
from pipexpand.compiler.spec import Expansion
from pipexpand.errors import (
    ConflictingBranchesError,
    Diagnostic,
    ErrorKind,
    ParseError,
    PipexpandError,
    PolicyViolationError,
    TemplateNotFoundError,
    TemplateRecursionError,
    TypeMismatchError,
)
from pipexpand.expressions.evaluator import ExpressionContext, ExpressionEvaluator
from pipexpand.expressions.template import interpolate
from pipexpand.expressions.values import category, is_collection, iterate, to_str, truthy

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 20

# Lists whose `- template:` items are template references.
INCLUDE_KEYS = frozenset({"stages", "jobs", "steps", "variables"})

ERROR_MARKER = "error"

# Keys that name a real item, so `- script: error` is a step, not a marker.
_ITEM_SELECTORS = STEP_KEYS | {"job", "deployment", "stage", "group", "name"}


@dataclass
class _State:
    """Per-compile bookkeeping: the include stack and collected markers."""

    stack: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def source(self) -> Optional[str]:
        return self.stack[-1] if self.stack else None


class _PairCollector:
    """Accumulates the pairs of one output mapping, rejecting duplicate keys.

    Remembers which directive emitted each key so overlapping `if` branches
    are reported as such.
    """

    def __init__(self, path: str):
        self.path = path
        self.pairs: List[Pair] = []
        self._origin: Dict[str, Optional[str]] = {}

    def add(self, pair: Pair, directive: Optional[str]) -> None:
        if pair.key in self._origin:
            sources = [d for d in (self._origin[pair.key], directive) if d]
            if sources:
                raise ConflictingBranchesError(
                    f"Key '{pair.key}' is emitted by more than one branch; "
                    "conditions on sibling 'if' directives must not overlap",
                    pair.location,
                    self.path,
                    " / ".join(dict.fromkeys(sources)),
                )
            raise ParseError(
                f"Duplicate key '{pair.key}' after expansion", pair.location, self.path
            )
        self._origin[pair.key] = directive
        self.pairs.append(pair)

    def mapping(self, location: Optional[Location]) -> Mapping:
        return Mapping(entries=tuple(self.pairs), location=location)


class Expander:
    """Expands document trees against parameters, variables and templates."""

    def __init__(
        self,
        loader: Optional[TemplateLoader] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.loader = loader
        self.evaluator = evaluator or ExpressionEvaluator()
        self.max_depth = max_depth

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def expand(
        self,
        node: Node,
        bindings: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> Node:
        """Expand a subtree with already-bound parameter values.

        Raises:
            PolicyViolationError: If the subtree emits `'<message>': error` markers.
        """
        ctx = ExpressionContext(
            parameters={k: from_python(v) for k, v in (bindings or {}).items()},
            variables=dict(variables or {}),
        )
        state = _State(stack=[source] if source else [])
        result = self._expand(node, ctx, state, path="")
        if state.diagnostics:
            raise PolicyViolationError(state.diagnostics)
        return result

    def expand_template(
        self,
        template: Node,
        arguments: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> Node:
        """Bind `arguments` against the template's declared parameters and expand it."""
        if not isinstance(template, Mapping):
            raise TypeMismatchError(
                f"A template must be a mapping, got a {category(template)}",
                template.location,
            )
        specs = parse_declarations(template.get("parameters"))
        bound = bind_parameters(specs, arguments or {}, template.location, source or "")
        ctx = ExpressionContext(parameters=bound, variables=dict(variables or {}))
        state = _State(stack=[source] if source else [])
        result = self._expand_mapping(_without(template, "parameters"), ctx, state, "")
        if state.diagnostics:
            raise PolicyViolationError(state.diagnostics)
        return result

    def expand_pipeline(
        self,
        root: Node,
        parameters: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> Expansion:
        """Expand a whole pipeline document, following `extends` if present.

        Root `parameters:` declarations are bound against `parameters`; root
        `variables:` are evaluated first and become visible to `${{ variables.x }}`.
        Error markers are returned as diagnostics rather than raised.
        """
        if not isinstance(root, Mapping):
            raise TypeMismatchError(
                f"A pipeline must be a mapping, got a {category(root)}", root.location
            )

        state = _State(stack=[source] if source else [])
        specs = parse_declarations(root.get("parameters"))
        bound = bind_parameters(specs, parameters or {}, root.location)
        ctx = ExpressionContext(parameters=bound, variables=dict(variables or {}))

        variables_node = root.get("variables")
        if variables_node is not None:
            # Markers are collected by the main pass below, not this one.
            scratch = _State(stack=list(state.stack))
            expanded_vars = self._expand(
                variables_node, ctx, scratch, "variables", parent_key="variables"
            )
            ctx = ctx.with_variables(collect_variables(expanded_vars))

        document = self._expand_mapping(_without(root, "parameters"), ctx, state, "")
        document = self._apply_extends(document, ctx, state)
        return Expansion(document=document, diagnostics=list(state.diagnostics))

    # ------------------------------------------------------------------
    # Recursive descent
    # ------------------------------------------------------------------

    def _expand(
        self,
        node: Node,
        ctx: ExpressionContext,
        state: _State,
        path: str,
        parent_key: Optional[str] = None,
    ) -> Node:
        if isinstance(node, Scalar):
            result = self._expand_scalar(node, ctx, path)
            if isinstance(result, Sequence) and parent_key in INCLUDE_KEYS:
                items = self._finish_items(list(result.items), ctx, state, path, parent_key)
                result = Sequence(items=tuple(items), location=result.location)
            return result
        if isinstance(node, Sequence):
            return self._expand_sequence(node, ctx, state, path, parent_key)
        if isinstance(node, Mapping):
            return self._expand_mapping(node, ctx, state, path)
        if isinstance(node, Directive):
            raise ParseError(
                "A directive must be a mapping key", node.location, path, node.source_text
            )
        raise TypeError(f"Unknown node type {type(node).__name__}")

    def _expand_scalar(self, node: Scalar, ctx: ExpressionContext, path: str) -> Node:
        if not isinstance(node.value, str):
            return node
        try:
            value = interpolate(node.value, ctx, self.evaluator)
        except PipexpandError as exc:
            raise exc.with_context(node.location, path)
        if isinstance(value, str) and value == node.value:
            return node
        return _to_node(value, node.location)

    def _expand_key(self, key: str, location: Optional[Location], ctx: ExpressionContext, path: str) -> str:
        try:
            value = interpolate(key, ctx, self.evaluator)
        except PipexpandError as exc:
            raise exc.with_context(location, path)
        if is_collection(value):
            raise TypeMismatchError(
                f"A mapping key must be a scalar, got a {category(value)}",
                location,
                path,
                key,
            )
        return to_str(value)

    def _expand_mapping(
        self, node: Mapping, ctx: ExpressionContext, state: _State, path: str
    ) -> Mapping:
        collector = _PairCollector(path)

        for entry in node.entries:
            if isinstance(entry, Pair):
                key = self._expand_key(entry.key, entry.location, ctx, path)
                child_path = _join(path, key)
                value = self._expand(entry.value, ctx, state, child_path, parent_key=key)
                collector.add(Pair(key, value, location=entry.location), None)
                continue

            for result in self._expand_directive(entry, ctx, state, path):
                if not isinstance(result, Mapping):
                    raise TypeMismatchError(
                        f"A directive inside a mapping must produce a mapping, "
                        f"got a {category(result)}",
                        entry.location,
                        path,
                        entry.source_text,
                    )
                for pair in result.pairs:
                    collector.add(pair, entry.source_text)

        return collector.mapping(node.location)

    def _expand_sequence(
        self,
        node: Sequence,
        ctx: ExpressionContext,
        state: _State,
        path: str,
        parent_key: Optional[str],
    ) -> Sequence:
        items: List[Node] = []
        for i, item in enumerate(node.items):
            item_path = f"{path}[{i}]"
            if _is_directive_item(item):
                assert isinstance(item, Mapping)
                items.extend(
                    self._expand_directive_item(item, ctx, state, item_path, parent_key)
                )
                continue

            result = self._expand(item, ctx, state, item_path, parent_key)
            if isinstance(item, Scalar) and isinstance(result, Sequence):
                # `- ${{ parameters.steps }}` splices the list in place.
                items.extend(result.items)
            else:
                items.append(result)

        finished = self._finish_items(items, ctx, state, path, parent_key)
        return Sequence(items=tuple(finished), location=node.location)

    def _expand_directive_item(
        self,
        item: Mapping,
        ctx: ExpressionContext,
        state: _State,
        path: str,
        parent_key: Optional[str],
    ) -> List[Node]:
        """Expand a list item made only of directives.

        Sequence bodies are spliced into the list; mapping bodies are merged
        into a single item, so `- ${{ each pair in stage }}:` rebuilds one
        stage rather than one item per key.
        """
        items: List[Node] = []
        collector = _PairCollector(path)
        for directive in item.directives:
            for result in self._expand_directive(directive, ctx, state, path, parent_key):
                if isinstance(result, Sequence):
                    items.extend(result.items)
                elif isinstance(result, Mapping):
                    for pair in result.pairs:
                        collector.add(pair, directive.source_text)
                else:
                    items.append(result)
        if collector.pairs:
            items.append(collector.mapping(item.location))
        return items

    def _finish_items(
        self,
        items: List[Node],
        ctx: ExpressionContext,
        state: _State,
        path: str,
        parent_key: Optional[str],
    ) -> List[Node]:
        """Turn error markers into diagnostics and splice template references."""
        finished: List[Node] = []
        for i, item in enumerate(items):
            message = _error_marker(item)
            if message is not None:
                state.diagnostics.append(
                    Diagnostic(
                        kind=ErrorKind.POLICY_VIOLATION,
                        message=message,
                        location=item.location,
                        path=f"{path}[{i}]",
                    )
                )
                continue
            if parent_key in INCLUDE_KEYS and _is_template_ref(item):
                assert isinstance(item, Mapping)
                finished.extend(
                    self._include(item, ctx, state, f"{path}[{i}]", parent_key)
                )
                continue
            finished.append(item)
        return finished

    def _expand_directive(
        self,
        directive: Directive,
        ctx: ExpressionContext,
        state: _State,
        path: str,
        parent_key: Optional[str] = None,
    ) -> Iterator[Node]:
        text = directive.source_text
        try:
            value = self.evaluator.evaluate(directive.expression, ctx)
        except PipexpandError as exc:
            raise exc.with_context(directive.location, path, text)

        if directive.kind is DirectiveKind.IF:
            if truthy(value):
                yield self._expand(directive.body, ctx, state, path, parent_key)
            return

        assert directive.variable is not None
        try:
            bindings = list(iterate(value))
        except PipexpandError as exc:
            raise exc.with_context(directive.location, path, text)
        for binding in bindings:
            inner = ctx.with_local(directive.variable, binding)
            yield self._expand(directive.body, inner, state, path, parent_key)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _load_template(
        self, ref: Node, state: _State, path: str
    ) -> tuple[str, Mapping]:
        if not isinstance(ref, Scalar) or not isinstance(ref.value, str):
            raise TypeMismatchError(
                "'template' must be a path string", ref.location, path
            )
        if self.loader is None:
            raise TemplateNotFoundError(
                f"Cannot load template '{ref.value}': no template loader configured",
                ref.location,
                path,
            )
        try:
            source = self.loader.resolve(ref.value, state.source)
        except PipexpandError as exc:
            raise exc.with_context(ref.location, path)

        if source in state.stack:
            chain = " -> ".join(state.stack + [source])
            raise TemplateRecursionError(
                f"Template '{source}' includes itself: {chain}", ref.location, path
            )
        if len(state.stack) >= self.max_depth:
            raise TemplateRecursionError(
                f"Templates are nested more than {self.max_depth} levels deep",
                ref.location,
                path,
            )

        try:
            document = self.loader.load(source)
        except PipexpandError as exc:
            raise exc.with_context(ref.location, path)
        if not isinstance(document, Mapping):
            raise TypeMismatchError(
                f"Template '{source}' must be a mapping, got a {category(document)}",
                document.location,
            )
        return source, document

    def _template_arguments(
        self,
        source: str,
        document: Mapping,
        args: Optional[Node],
        ctx: ExpressionContext,
        state: _State,
        path: str,
    ) -> tuple[List[ParameterSpec], Dict[str, Node]]:
        """Declared parameters of a template and the caller's arguments for them.

        Template references inside step, job and stage arguments are included
        here, in the caller's scope, so the template body sees the items
        themselves rather than a reference it cannot inspect.
        """
        if args is not None and not isinstance(args, Mapping):
            raise TypeMismatchError(
                f"Template parameters for '{source}' must be a mapping",
                args.location,
                path,
            )
        arguments = {p.key: p.value for p in args.pairs} if args is not None else {}
        specs = parse_declarations(document.get("parameters"))

        for spec in specs:
            include_key = INCLUDE_KEY_FOR_TYPE.get(spec.type)
            value = arguments.get(spec.name)
            if include_key is None or value is None:
                continue
            arg_path = f"{path}.parameters.{spec.name}"
            if isinstance(value, Sequence):
                items = self._finish_items(
                    list(value.items), ctx, state, arg_path, include_key
                )
                arguments[spec.name] = Sequence(items=tuple(items), location=value.location)
            elif _is_template_ref(value):
                assert isinstance(value, Mapping)
                items = self._include(value, ctx, state, arg_path, include_key)
                if len(items) != 1:
                    raise TypeMismatchError(
                        f"Parameter '{spec.name}' of template '{source}' expects a "
                        f"single {spec.type.value}, the referenced template "
                        f"defines {len(items)}",
                        value.location,
                        arg_path,
                    )
                arguments[spec.name] = items[0]
        return specs, arguments

    def _instantiate(
        self,
        source: str,
        document: Mapping,
        specs: List[ParameterSpec],
        arguments: Dict[str, Node],
        ctx: ExpressionContext,
        state: _State,
        location: Optional[Location],
    ) -> Mapping:
        """Expand a template body with its own parameter scope."""
        bound = bind_parameters(specs, arguments, location, source)
        inner = ctx.with_parameters(bound)

        return self._expand_mapping(_without(document, "parameters"), inner, state, source)

    def _include(
        self,
        ref: Mapping,
        ctx: ExpressionContext,
        state: _State,
        path: str,
        parent_key: str,
    ) -> List[Node]:
        ref_node = ref.get("template")
        assert ref_node is not None
        source, document = self._load_template(ref_node, state, path)
        logger.debug("Including template %s under '%s'", source, parent_key)
        specs, arguments = self._template_arguments(
            source, document, ref.get("parameters"), ctx, state, path
        )

        state.stack.append(source)
        try:
            body = self._instantiate(
                source, document, specs, arguments, ctx, state, ref.location
            )
        finally:
            state.stack.pop()
        extra = [k for k in body.keys() if k != parent_key]
        if extra:
            raise TypeMismatchError(
                f"Template '{source}' included under '{parent_key}' may only define "
                f"'{parent_key}', found {', '.join(repr(k) for k in extra)}",
                ref.location,
                path,
            )
        content = body.get(parent_key)
        if content is None:
            raise TypeMismatchError(
                f"Template '{source}' does not define '{parent_key}'",
                ref.location,
                path,
            )
        if not isinstance(content, Sequence):
            raise TypeMismatchError(
                f"'{parent_key}' in template '{source}' must be a list",
                content.location,
            )
        return list(content.items)

    def _apply_extends(
        self, document: Mapping, ctx: ExpressionContext, state: _State
    ) -> Mapping:
        pushed = 0
        try:
            while "extends" in document:
                extends = document.get("extends")
                if not isinstance(extends, Mapping) or "template" not in extends:
                    raise TypeMismatchError(
                        "'extends' must be a mapping with a 'template' key",
                        extends.location if extends is not None else document.location,
                        "extends",
                    )
                ref_node = extends.get("template")
                assert ref_node is not None
                source, template = self._load_template(ref_node, state, "extends")
                logger.debug("Extending template %s", source)
                specs, arguments = self._template_arguments(
                    source, template, extends.get("parameters"), ctx, state, "extends"
                )

                # A nested `extends` is resolved relative to the template that wrote it.
                state.stack.append(source)
                pushed += 1
                body = self._instantiate(
                    source, template, specs, arguments, ctx, state, extends.location
                )
                document = _merge_extended(_without(document, "extends"), body, source)
        finally:
            del state.stack[len(state.stack) - pushed :]
        return document


def expand(
    node: Node,
    bindings: Optional[Dict[str, Any]] = None,
    *,
    loader: Optional[TemplateLoader] = None,
    variables: Optional[Dict[str, Any]] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Node:
    """Expand `node` with parameter `bindings`; see Expander.expand."""
    return Expander(loader, max_depth=max_depth).expand(node, bindings, variables)


def collect_variables(node: Node) -> Dict[str, Any]:
    """Compile-time variables from a `variables:` block (mapping or list form)."""
    result: Dict[str, Any] = {}
    if isinstance(node, Mapping):
        for pair in node.pairs:
            result[pair.key] = pair.value.to_python()
    elif isinstance(node, Sequence):
        for item in node.items:
            if isinstance(item, Mapping) and "name" in item:
                name = item.get("name")
                value = item.get("value")
                if isinstance(name, Scalar) and name.value is not None:
                    result[to_str(name.value)] = (
                        value.to_python() if value is not None else ""
                    )
    return result


def _merge_extended(pipeline: Mapping, body: Mapping, source: str) -> Mapping:
    keys = set(pipeline.keys())
    for pair in body.pairs:
        if pair.key in keys:
            raise ConflictingBranchesError(
                f"'{pair.key}' is defined by both the pipeline and template '{source}'",
                pair.location,
                pair.key,
            )
    return Mapping(
        entries=tuple(pipeline.pairs) + tuple(body.pairs), location=pipeline.location
    )


def _without(node: Mapping, key: str) -> Mapping:
    return Mapping(
        entries=tuple(
            e for e in node.entries if not (isinstance(e, Pair) and e.key == key)
        ),
        location=node.location,
    )


def _to_node(value: Any, location: Optional[Location]) -> Node:
    if isinstance(value, Node):
        return value
    return from_python(value, location)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _is_directive_item(item: Node) -> bool:
    return (
        isinstance(item, Mapping)
        and bool(item.entries)
        and all(isinstance(e, Directive) for e in item.entries)
    )


def _is_template_ref(item: Node) -> bool:
    return (
        isinstance(item, Mapping)
        and item.first_key == "template"
        and not item.has_directives()
        and set(item.keys()) <= {"template", "parameters"}
    )


def _error_marker(item: Node) -> Optional[str]:
    """Message of a `'<message>': error` item, or None."""
    if not isinstance(item, Mapping) or item.has_directives():
        return None
    pairs = item.pairs
    if len(pairs) != 1:
        return None
    key, value = pairs[0].key, pairs[0].value
    if key in _ITEM_SELECTORS:
        return None
    if isinstance(value, Scalar) and value.value == ERROR_MARKER:
        return key
    return None
