"""Fixed-point propagation of error sets across the call graph."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from raisemap.analysis.callee_resolution import (
    Resolution,
    ResolvedClass,
    ResolvedHandler,
    ResolvedLocal,
    ResolvedSafe,
    ResolvedWrapper,
    Unresolved,
)
from raisemap.analysis.diagnostics import SourceSpan
from raisemap.analysis.error_types import NEVER, UNKNOWN_ERROR, ErrorSet
from raisemap.analysis.handlers import filter_caught
from raisemap.analysis.model import CallGraph, CallSite, FunctionNode
from raisemap.analysis.wrappers import wrapper_contribution
from raisemap.invariants import never

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contribution:
    kind: str
    label: str
    span: SourceSpan
    errors: ErrorSet
    site: CallSite | None = None


@dataclass(frozen=True)
class PropagationResult:
    inferred: Mapping[str, ErrorSet]
    contributions: Mapping[str, tuple[Contribution, ...]]
    iterations: int

    def inferred_for(self, node_id: str) -> ErrorSet:
        return self.inferred.get(node_id, ErrorSet())


class PropagationEngine:
    """Compute every construct's inferred error set.

    All sets start empty and are recomputed from the previous pass's
    snapshot until a full pass changes nothing. Each recomputation is
    unioned with the previous value, so sets only grow and the loop is
    bounded by the number of distinct error names in the run.
    """

    def __init__(self, graph: CallGraph) -> None:
        self.graph = graph

    def declared_of(self, node_id: str) -> ErrorSet | None:
        node = self.graph.nodes.get(node_id)
        if node is None:
            return None
        return node.declared

    def callee_errors(self, resolution: Resolution, inferred: Mapping[str, ErrorSet]) -> ErrorSet:
        match resolution:
            case ResolvedLocal(node_id=node_id):
                node = self.graph.nodes.get(node_id)
                if node is None:
                    return ErrorSet.unknown()
                if node.declared is not None:
                    return node.declared.without((NEVER,))
                return inferred.get(node_id, ErrorSet())
            case ResolvedClass(constructor_id=constructor_id):
                if constructor_id is None:
                    return ErrorSet()
                return self.callee_errors(ResolvedLocal(constructor_id), inferred)
            case ResolvedWrapper():
                return ErrorSet()
            case ResolvedHandler() | ResolvedSafe():
                return ErrorSet()
            case Unresolved():
                return ErrorSet.unknown()
            case _:
                never("unexpected resolution", resolution=resolution)

    def site_errors(self, site: CallSite, inferred: Mapping[str, ErrorSet]) -> ErrorSet:
        """The errors ``site`` would surface before any local absorption."""
        if isinstance(site.resolution, ResolvedWrapper):
            return wrapper_contribution(
                site,
                callee_errors=lambda resolution: self.callee_errors(resolution, inferred),
                declared_of=self.declared_of,
            )
        return self.callee_errors(site.resolution, inferred)

    def contributions_for(
        self, node: FunctionNode, inferred: Mapping[str, ErrorSet]
    ) -> tuple[Contribution, ...]:
        symbols = self.graph.symbols_for(node)
        class_info = symbols.class_info if symbols is not None else {}
        found: list[Contribution] = []
        for throw in node.throws:
            if throw.handled:
                continue
            errors = filter_caught(ErrorSet((throw.error,)), throw.caught, class_info)
            found.append(
                Contribution("raise", f"`raise {throw.error.name}`", throw.span, errors)
            )
        for site in node.call_sites:
            if site.absorbed or site.nested_in_wrapper:
                continue
            errors = filter_caught(self.site_errors(site, inferred), site.caught, class_info)
            if isinstance(site.resolution, ResolvedWrapper):
                label = f"callbacks of `{site.callee}`"
                kind = "wrapper"
            else:
                label = f"call to `{site.callee}`"
                kind = "call"
            found.append(Contribution(kind, label, site.span, errors, site))
        return tuple(found)

    def infer(self, node: FunctionNode, inferred: Mapping[str, ErrorSet]) -> ErrorSet:
        result = ErrorSet()
        for contribution in self.contributions_for(node, inferred):
            result = result | contribution.errors
        return result

    def _iteration_bound(self) -> int:
        names: set[str] = {UNKNOWN_ERROR}
        for node in self.graph.nodes.values():
            names.update(throw.error.name for throw in node.throws)
            if node.declared is not None:
                names.update(node.declared.names())
        return len(self.graph) * (len(names) + 1) + 2

    def run(self) -> PropagationResult:
        order = sorted(self.graph.nodes)
        current: dict[str, ErrorSet] = {node_id: ErrorSet() for node_id in order}
        bound = self._iteration_bound()
        iterations = 0
        while True:
            iterations += 1
            if iterations > bound:
                never("error-set propagation did not converge", bound=bound)
            updated: dict[str, ErrorSet] = {}
            changed = False
            for node_id in order:
                previous = current[node_id]
                value = previous | self.infer(self.graph[node_id], current)
                if value != previous:
                    changed = True
                updated[node_id] = value
            current = updated
            if not changed:
                break
        logger.debug(
            "propagated %d constructs in %d passes", len(order), iterations
        )
        contributions = {
            node_id: self.contributions_for(self.graph[node_id], current) for node_id in order
        }
        return PropagationResult(
            inferred=current, contributions=contributions, iterations=iterations
        )


def propagate(graph: CallGraph) -> PropagationResult:
    return PropagationEngine(graph).run()
