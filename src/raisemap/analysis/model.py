from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from collections.abc import Mapping

from raisemap.analysis.annotations import Annotation
from raisemap.analysis.callee_resolution import ModuleSymbols, Resolution
from raisemap.analysis.diagnostics import SourceSpan
from raisemap.analysis.error_types import ErrorSet, ErrorType


class ConstructKind(StrEnum):
    FUNCTION = "function"
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    LAMBDA = "lambda"
    INLINE_LAMBDA = "inline-lambda"


@dataclass(frozen=True)
class Callback:
    """A function-valued argument of a wrapper call."""

    text: str
    resolution: Resolution | None
    span: SourceSpan
    call: CallSite | None = None


@dataclass(frozen=True)
class CallSite:
    callee: str
    resolution: Resolution
    span: SourceSpan
    handled: bool = False
    caught: tuple[str, ...] = ()
    handler_call: str | None = None
    callbacks: tuple[Callback, ...] = ()
    nested_in_wrapper: bool = False

    @property
    def absorbed(self) -> bool:
        return self.handled or self.handler_call is not None


@dataclass(frozen=True)
class DirectThrow:
    error: ErrorType
    span: SourceSpan
    handled: bool = False
    caught: tuple[str, ...] = ()


@dataclass(frozen=True)
class FunctionNode:
    node_id: str
    path: Path
    qualname: str
    kind: ConstructKind
    span: SourceSpan
    annotation: Annotation | None = None
    call_sites: tuple[CallSite, ...] = ()
    throws: tuple[DirectThrow, ...] = ()
    strict_applicable: bool = False
    class_qual: str | None = None
    # Inline lambda passed straight to a configured error handler.
    absorbed: bool = False
    # Source lines of the leading ``#`` comment of a bound lambda.
    comment_lines: tuple[int, ...] = ()

    @property
    def declared(self) -> ErrorSet | None:
        if self.annotation is None:
            return None
        return self.annotation.declared

    @property
    def checked(self) -> bool:
        if self.kind is ConstructKind.INLINE_LAMBDA:
            return False
        if self.kind is ConstructKind.LAMBDA:
            return self.annotation is not None
        return True


@dataclass(frozen=True)
class ModuleGraph:
    path: Path
    nodes: tuple[FunctionNode, ...]
    symbols: ModuleSymbols


@dataclass(frozen=True)
class CallGraph:
    """Every construct of one run, keyed by node id."""

    nodes: Mapping[str, FunctionNode]
    modules: Mapping[Path, ModuleGraph] = field(default_factory=dict)

    @classmethod
    def from_modules(cls, modules: list[ModuleGraph]) -> CallGraph:
        nodes: dict[str, FunctionNode] = {}
        for module in modules:
            for node in module.nodes:
                nodes[node.node_id] = node
        return cls(nodes=nodes, modules={module.path: module for module in modules})

    def __getitem__(self, node_id: str) -> FunctionNode:
        return self.nodes[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def symbols_for(self, node: FunctionNode) -> ModuleSymbols | None:
        module = self.modules.get(node.path)
        return module.symbols if module is not None else None
