"""Compare declared and inferred error sets and report mismatches."""

from __future__ import annotations

from collections.abc import Mapping

from raisemap.analysis.callee_resolution import ClassInfo, ResolvedWrapper, Unresolved
from raisemap.analysis.diagnostics import Diagnostic, DiagnosticCode, Origin, Severity
from raisemap.analysis.error_types import GENERIC_BASE_NAMES, UNKNOWN_ERROR, ErrorSet
from raisemap.analysis.handlers import error_is_covered
from raisemap.analysis.model import CallGraph, ConstructKind, FunctionNode
from raisemap.analysis.propagation import Contribution, PropagationResult
from raisemap.analysis.wrappers import unresolved_callbacks
from raisemap.config import AnalysisConfig


def _origins(contributions: tuple[Contribution, ...]) -> dict[str, Origin]:
    origins: dict[str, Origin] = {}
    for contribution in contributions:
        for entry in contribution.errors:
            origins.setdefault(
                entry.name, Origin(entry.name, contribution.label, contribution.span.line)
            )
    return origins


class ConsistencyChecker:
    def __init__(self, graph: CallGraph, result: PropagationResult, config: AnalysisConfig) -> None:
        self.graph = graph
        self.result = result
        self.config = config

    def check(self) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        for node in self.graph.nodes.values():
            diagnostics.extend(self.check_node(node))
        return diagnostics

    def check_node(self, node: FunctionNode) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        if not node.absorbed:
            diagnostics.extend(self._site_diagnostics(node))
        if node.checked:
            diagnostics.extend(self._declaration_diagnostics(node))
        return diagnostics

    def _class_info(self, node: FunctionNode) -> Mapping[str, ClassInfo]:
        symbols = self.graph.symbols_for(node)
        return symbols.class_info if symbols is not None else {}

    def _diagnostic(
        self,
        node: FunctionNode,
        code: DiagnosticCode,
        severity: Severity,
        message: str,
        *,
        span=None,
        error_types: tuple[str, ...] = (),
        origins: tuple[Origin, ...] = (),
    ) -> Diagnostic:
        return Diagnostic(
            code=code,
            severity=severity,
            message=message,
            path=node.path,
            span=span or node.span,
            construct=node.qualname,
            node_id=node.node_id,
            error_types=error_types,
            origins=origins,
        )

    def _site_diagnostics(self, node: FunctionNode) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        unsafe = self.config.unsafe_calls
        if unsafe is not Severity.OFF:
            for throw in node.throws:
                if throw.handled or not throw.error.is_unknown:
                    continue
                diagnostics.append(
                    self._diagnostic(
                        node,
                        DiagnosticCode.UNSAFE_CALL,
                        unsafe,
                        "type of the raised error cannot be determined",
                        span=throw.span,
                        error_types=(UNKNOWN_ERROR,),
                    )
                )
        for contribution in self.result.contributions.get(node.node_id, ()):
            site = contribution.site
            if site is None:
                continue
            if unsafe is not Severity.OFF and contribution.errors.has_unknown:
                if isinstance(site.resolution, Unresolved):
                    diagnostics.append(
                        self._diagnostic(
                            node,
                            DiagnosticCode.UNSAFE_CALL,
                            unsafe,
                            f"call to `{site.callee}` cannot be resolved; "
                            "the errors it raises are unknown",
                            span=site.span,
                            error_types=(UNKNOWN_ERROR,),
                        )
                    )
                elif isinstance(site.resolution, ResolvedWrapper):
                    for callback in unresolved_callbacks(site):
                        diagnostics.append(
                            self._diagnostic(
                                node,
                                DiagnosticCode.UNSAFE_CALL,
                                unsafe,
                                f"callback `{callback.text}` passed to `{site.callee}` "
                                "cannot be resolved; the errors it raises are unknown",
                                span=callback.span,
                                error_types=(UNKNOWN_ERROR,),
                            )
                        )
            known = contribution.errors.known()
            if not self.config.allow_error_bubbling and known:
                diagnostics.append(
                    self._diagnostic(
                        node,
                        DiagnosticCode.UNHANDLED_PROPAGATION,
                        Severity.ERROR,
                        f"{known.render()} from {contribution.label} propagate "
                        "without local handling",
                        span=site.span,
                        error_types=known.names(),
                    )
                )
        return diagnostics

    def _declaration_diagnostics(self, node: FunctionNode) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        inferred = self.result.inferred_for(node.node_id)
        known = inferred.known()
        origins = _origins(self.result.contributions.get(node.node_id, ()))
        class_info = self._class_info(node)
        annotation = node.annotation

        if annotation is not None:
            for problem in annotation.problems:
                code = (
                    DiagnosticCode.DECLARATION_CONFLICT
                    if problem.kind == "declaration-conflict"
                    else DiagnosticCode.PARSE_ERROR
                )
                diagnostics.append(
                    self._diagnostic(node, code, Severity.ERROR, problem.message)
                )

        declared = node.declared
        if declared is None:
            diagnostics.extend(self._undocumented(node, inferred, known, origins))
            return diagnostics

        covering = declared.known().names()
        for entry in known:
            if error_is_covered(entry.name, covering, class_info):
                continue
            origin = origins.get(entry.name)
            where = f" ({origin.describe()})" if origin is not None else ""
            diagnostics.append(
                self._diagnostic(
                    node,
                    DiagnosticCode.UNDECLARED_ERROR,
                    Severity.ERROR,
                    f"`{node.qualname}` may raise {entry.name}{where} "
                    "but does not declare it",
                    error_types=(entry.name,),
                    origins=(origin,) if origin is not None else (),
                )
            )
        if not inferred.has_unknown:
            for entry in declared.known():
                if any(
                    error_is_covered(found.name, (entry.name,), class_info) for found in known
                ):
                    continue
                diagnostics.append(
                    self._diagnostic(
                        node,
                        DiagnosticCode.DECLARED_BUT_UNUSED,
                        Severity.WARN,
                        f"`{node.qualname}` declares {entry.name} but never raises it",
                        error_types=(entry.name,),
                    )
                )
        assert annotation is not None
        for tag in annotation.union_tags:
            diagnostics.append(
                self._diagnostic(
                    node,
                    DiagnosticCode.UNION_DECLARATION,
                    Severity.WARN,
                    f"union tag {{{' | '.join(tag.types)}}} should be one @throws tag per type",
                    error_types=tag.types,
                )
            )
        if node.strict_applicable:
            for entry in declared:
                if entry.name not in GENERIC_BASE_NAMES:
                    continue
                diagnostics.append(
                    self._diagnostic(
                        node,
                        DiagnosticCode.NON_SPECIFIC_ERROR_TYPE,
                        Severity.ERROR,
                        f"`{node.qualname}` declares the generic {entry.name}; "
                        "declare the specific error types instead",
                        error_types=(entry.name,),
                    )
                )
        return diagnostics

    def _undocumented(
        self,
        node: FunctionNode,
        inferred: ErrorSet,
        known: ErrorSet,
        origins: Mapping[str, Origin],
    ) -> list[Diagnostic]:
        if node.kind is ConstructKind.INLINE_LAMBDA:
            return []
        if not known:
            if not self.config.require_never or inferred.has_unknown:
                return []
            return [
                self._diagnostic(
                    node,
                    DiagnosticCode.MISSING_NEVER_DECLARATION,
                    Severity.ERROR,
                    f"`{node.qualname}` raises nothing but lacks @throws {{never}}",
                )
            ]
        return [
            self._diagnostic(
                node,
                DiagnosticCode.MISSING_DECLARATION,
                Severity.ERROR,
                f"`{node.qualname}` may raise {known.render()} but has no @throws tags",
                error_types=known.names(),
                origins=tuple(origins[name] for name in known.names() if name in origins),
            )
        ]


def check_consistency(
    graph: CallGraph, result: PropagationResult, config: AnalysisConfig
) -> list[Diagnostic]:
    return ConsistencyChecker(graph, result, config).check()
