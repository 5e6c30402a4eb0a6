"""Collection pass: constructs, symbols and call sites of one file."""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from pathlib import Path

from raisemap.analysis.annotations import parse_annotation
from raisemap.analysis.callee_resolution import (
    CalleeResolver,
    CallerContext,
    ClassInfo,
    ModuleSymbols,
    Resolution,
    ResolvedHandler,
    ResolvedLocal,
    ResolvedWrapper,
    Unresolved,
    builtin_exception_class,
    callee_text,
    dotted_name,
)
from raisemap.analysis.diagnostics import SourceSpan
from raisemap.analysis.error_types import UNKNOWN_ERROR, ErrorType, canonical_error_name
from raisemap.analysis.handlers import GuardState
from raisemap.analysis.model import CallSite, ConstructKind, DirectThrow, FunctionNode, ModuleGraph
from raisemap.analysis.visitors import CallSiteVisitor, ParentAnnotator, RaiseEvent, enclosing_call
from raisemap.analysis.wrappers import collect_callbacks
from raisemap.config import AnalysisConfig
from raisemap.exceptions import ConstructInputError

_FUNCTION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)


@dataclass
class _Construct:
    node: ast.AST
    qualname: str
    kind: ConstructKind
    function_scopes: tuple[str, ...]
    class_qual: str | None
    binding: ast.stmt | None = None


@dataclass
class _Discovery:
    constructs: list[_Construct] = field(default_factory=list)
    functions: dict[str, dict[str, str]] = field(default_factory=dict)
    classes: dict[str, dict[str, str]] = field(default_factory=dict)
    class_nodes: dict[str, ast.ClassDef] = field(default_factory=dict)
    methods: dict[str, dict[str, str]] = field(default_factory=dict)
    nested_classes: dict[str, dict[str, str]] = field(default_factory=dict)
    used_quals: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class CollectionFailure:
    qualname: str
    span: SourceSpan
    reason: str


def node_id_for(path: Path, qualname: str) -> str:
    return f"{path}::{qualname}"


def is_test_path(path: Path, config: AnalysisConfig | None = None) -> bool:
    """Test modules are ``test_*.py`` files and files under a ``tests`` directory
    of the project. Directories above the project root do not count.
    """
    if path.name.startswith("test_"):
        return True
    relative = (config or AnalysisConfig()).project_relative(path)
    return relative is not None and "tests" in relative.parts[:-1]


def _lambda_binding(node: ast.Lambda, parents: dict[ast.AST, ast.AST]) -> tuple[str, ast.stmt] | None:
    parent = parents.get(node)
    match parent:
        case ast.Assign(targets=[ast.Name(id=name)], value=value) if value is node:
            return name, parent
        case ast.AnnAssign(target=ast.Name(id=name), value=value) if value is node:
            return name, parent
        case _:
            return None


def _discover(tree: ast.Module, path: Path, parents: dict[ast.AST, ast.AST]) -> _Discovery:
    found = _Discovery()

    def unique(qual: str) -> str:
        candidate = qual
        counter = 2
        while candidate in found.used_quals:
            candidate = f"{qual}#{counter}"
            counter += 1
        found.used_quals.add(candidate)
        return candidate

    def bind(container: tuple[str, str], name: str, node_id: str) -> None:
        kind, key = container
        if kind == "class":
            found.methods.setdefault(key, {})[name] = node_id
        else:
            found.functions.setdefault(key, {})[name] = node_id

    def walk(
        node: ast.AST,
        scope: tuple[str, ...],
        function_scopes: tuple[str, ...],
        class_qual: str | None,
        container: tuple[str, str],
    ) -> None:
        for child in ast.iter_child_nodes(node):
            if isinstance(child, _FUNCTION_NODES):
                qual = unique(".".join((*scope, child.name)))
                if container[0] == "class":
                    kind = (
                        ConstructKind.CONSTRUCTOR
                        if child.name == "__init__"
                        else ConstructKind.METHOD
                    )
                else:
                    kind = ConstructKind.FUNCTION
                found.constructs.append(
                    _Construct(child, qual, kind, (*function_scopes, qual), class_qual)
                )
                bind(container, child.name, node_id_for(path, qual))
                walk(
                    child,
                    (*scope, child.name),
                    (*function_scopes, qual),
                    class_qual,
                    ("function", qual),
                )
            elif isinstance(child, ast.ClassDef):
                qual = unique(".".join((*scope, child.name)))
                found.class_nodes[qual] = child
                kind, key = container
                if kind == "class":
                    found.nested_classes.setdefault(key, {})[child.name] = qual
                else:
                    found.classes.setdefault(key, {})[child.name] = qual
                walk(child, (*scope, child.name), function_scopes, qual, ("class", qual))
            elif isinstance(child, ast.Lambda):
                binding = _lambda_binding(child, parents)
                if binding is not None:
                    name, stmt = binding
                    qual = unique(".".join((*scope, name)))
                    kind = ConstructKind.LAMBDA
                    bind(container, name, node_id_for(path, qual))
                    label = name
                else:
                    stmt = None
                    label = f"<lambda:{getattr(child, 'lineno', 0)}:{getattr(child, 'col_offset', 0)}>"
                    qual = unique(".".join((*scope, label)))
                    kind = ConstructKind.INLINE_LAMBDA
                found.constructs.append(
                    _Construct(child, qual, kind, (*function_scopes, qual), class_qual, stmt)
                )
                walk(child, (*scope, label), (*function_scopes, qual), class_qual, ("function", qual))
            else:
                walk(child, scope, function_scopes, class_qual, container)

    walk(tree, (), (), None, ("module", ""))
    return found


def _build_symbols(found: _Discovery) -> ModuleSymbols:
    class_info: dict[str, ClassInfo] = {}
    for qual, node in found.class_nodes.items():
        bases = tuple(name for name in (dotted_name(base) for base in node.bases) if name)
        class_info[qual] = ClassInfo(
            qual=qual,
            name=node.name,
            bases=bases,
            methods=dict(found.methods.get(qual, {})),
            nested=dict(found.nested_classes.get(qual, {})),
        )
    return ModuleSymbols(
        functions={key: dict(value) for key, value in found.functions.items()},
        classes={key: dict(value) for key, value in found.classes.items()},
        class_info=class_info,
    )


def _leading_comment(stmt: ast.stmt, source_lines: list[str]) -> tuple[str | None, tuple[int, ...]]:
    lines: list[int] = []
    index = stmt.lineno - 2
    while index >= 0 and source_lines[index].strip().startswith("#"):
        lines.append(index + 1)
        index -= 1
    if not lines:
        return None, ()
    lines.reverse()
    return "\n".join(source_lines[line - 1].strip() for line in lines), tuple(lines)


def _looks_like_type(name: str) -> bool:
    tail = canonical_error_name(name)
    return tail[:1].isupper() or builtin_exception_class(tail) is not None


class _ConstructCollector:
    def __init__(
        self,
        *,
        path: Path,
        source_lines: list[str],
        parents: dict[ast.AST, ast.AST],
        resolver: CalleeResolver,
        lambda_ids: dict[ast.Lambda, str],
        config: AnalysisConfig,
        is_test: bool,
    ) -> None:
        self.path = path
        self.source_lines = source_lines
        self.parents = parents
        self.resolver = resolver
        self.lambda_ids = lambda_ids
        self.config = config
        self.is_test = is_test

    def build(self, construct: _Construct) -> FunctionNode:
        """Build one ``FunctionNode``.

        @throws {ConstructInputError} the construct has no position or body
        """
        span = SourceSpan.of(construct.node)
        if span is None:
            raise ConstructInputError(construct.qualname, "construct has no source position")
        if 0 < span.line <= len(self.source_lines):
            span = SourceSpan(span.line, span.col, span.line, len(self.source_lines[span.line - 1]))
        if not hasattr(construct.node, "body"):
            raise ConstructInputError(construct.qualname, "construct has no body")
        caller = CallerContext(construct.function_scopes, construct.class_qual)

        comment_lines: tuple[int, ...] = ()
        if isinstance(construct.node, _FUNCTION_NODES):
            text = ast.get_docstring(construct.node, clean=False)
        elif construct.binding is not None:
            text, comment_lines = _leading_comment(construct.binding, self.source_lines)
        else:
            text = None
        annotation = parse_annotation(text)

        visitor = CallSiteVisitor().scan(construct.node)
        sites: dict[ast.Call, CallSite] = {}
        # Preorder puts outer calls first; building inner calls first lets a
        # wrapper call see the sites of its nested wrapper arguments.
        for event in reversed(visitor.calls):
            sites[event.node] = self._call_site(event.node, event.guard, caller, sites)
        call_sites = [sites[event.node] for event in visitor.calls]

        throws: list[DirectThrow] = []
        for event in visitor.raises:
            if event.reraise:
                continue
            throw, factory = self._throw(event, caller)
            if throw is not None:
                throws.append(throw)
            if factory is not None:
                call_sites.append(factory)
        call_sites.sort(key=lambda site: (site.span.line, site.span.col))

        return FunctionNode(
            node_id=node_id_for(self.path, construct.qualname),
            path=self.path,
            qualname=construct.qualname,
            kind=construct.kind,
            span=span,
            annotation=annotation,
            call_sites=tuple(call_sites),
            throws=tuple(throws),
            strict_applicable=self.config.strict_mode and not self.is_test,
            class_qual=construct.class_qual,
            absorbed=self._absorbed_by_handler(construct),
            comment_lines=comment_lines,
        )

    def _absorbed_by_handler(self, construct: _Construct) -> bool:
        if construct.kind is not ConstructKind.INLINE_LAMBDA:
            return False
        outer, is_argument = enclosing_call(construct.node, self.parents)
        return outer is not None and is_argument and self.config.is_handler(callee_text(outer))

    def _call_site(
        self,
        call: ast.Call,
        guard: GuardState,
        caller: CallerContext,
        sites: dict[ast.Call, CallSite],
    ) -> CallSite:
        resolution = self.resolver.resolve_call(call, caller)
        span = SourceSpan.of(call)
        assert span is not None
        outer, is_argument = enclosing_call(call, self.parents)
        handler_call = None
        nested_in_wrapper = False
        if outer is not None and is_argument:
            outer_text = callee_text(outer)
            if self.config.is_handler(outer_text):
                handler_call = outer_text
            elif self.config.is_wrapper(outer_text) and isinstance(
                resolution, (ResolvedWrapper, ResolvedHandler)
            ):
                nested_in_wrapper = True
        callbacks = ()
        if isinstance(resolution, ResolvedWrapper):
            callbacks = collect_callbacks(
                call,
                resolver=self.resolver,
                caller=caller,
                lambda_ids=self.lambda_ids,
                nested_sites=sites,
            )
        return CallSite(
            callee=callee_text(call),
            resolution=resolution,
            span=span,
            handled=guard.handled,
            caught=guard.caught,
            handler_call=handler_call,
            callbacks=callbacks,
            nested_in_wrapper=nested_in_wrapper,
        )

    def _throw(
        self, event: RaiseEvent, caller: CallerContext
    ) -> tuple[DirectThrow | None, CallSite | None]:
        node = event.node
        span = SourceSpan.of(node)
        assert span is not None
        name = UNKNOWN_ERROR
        factory: CallSite | None = None
        exc = node.exc
        match exc:
            case ast.Call(func=func):
                resolution: Resolution = self.resolver.resolve_call(exc, caller)
                text = dotted_name(func)
                is_factory = isinstance(
                    resolution, (ResolvedLocal, ResolvedWrapper, ResolvedHandler)
                ) or (
                    isinstance(resolution, Unresolved)
                    and (text is None or not _looks_like_type(text))
                )
                if is_factory:
                    factory = CallSite(
                        callee=callee_text(exc),
                        resolution=resolution,
                        span=SourceSpan.of(exc) or span,
                        handled=event.guard.handled,
                        caught=event.guard.caught,
                    )
                    if isinstance(resolution, Unresolved):
                        # The unresolved factory call already stands for the unknown type.
                        return None, factory
                elif text is not None:
                    name = canonical_error_name(text)
            case ast.Name() | ast.Attribute():
                text = dotted_name(exc)
                if text is not None and _looks_like_type(text):
                    name = canonical_error_name(text)
            case _:
                pass
        throw = DirectThrow(
            error=ErrorType(name),
            span=span,
            handled=event.guard.handled,
            caught=event.guard.caught,
        )
        return throw, factory


def collect_module(
    tree: ast.Module,
    *,
    path: Path,
    source: str,
    config: AnalysisConfig,
) -> tuple[ModuleGraph, list[CollectionFailure]]:
    """Collect every construct of one parsed file.

    Visitation order never implies dependency order: symbols for the whole
    file are gathered before any call is resolved.
    """
    annotator = ParentAnnotator()
    annotator.visit(tree)
    parents = annotator.parents
    found = _discover(tree, path, parents)
    symbols = _build_symbols(found)
    resolver = CalleeResolver(symbols, config)
    lambda_ids = {
        construct.node: node_id_for(path, construct.qualname)
        for construct in found.constructs
        if isinstance(construct.node, ast.Lambda)
    }
    collector = _ConstructCollector(
        path=path,
        source_lines=source.splitlines(),
        parents=parents,
        resolver=resolver,
        lambda_ids=lambda_ids,
        config=config,
        is_test=is_test_path(path, config),
    )
    nodes: list[FunctionNode] = []
    failures: list[CollectionFailure] = []
    for construct in found.constructs:
        try:
            nodes.append(collector.build(construct))
        except ConstructInputError as exc:
            failures.append(
                CollectionFailure(
                    qualname=construct.qualname,
                    span=SourceSpan.of(construct.node) or SourceSpan(1, 0, 1, 1),
                    reason=exc.reason,
                )
            )
    return ModuleGraph(path=path, nodes=tuple(nodes), symbols=symbols), failures
