from __future__ import annotations

import ast
from dataclasses import dataclass

from raisemap.analysis.handlers import GuardState, TryGuard, guard_state, try_guard

_SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)


class ParentAnnotator(ast.NodeVisitor):
    def __init__(self) -> None:
        self.parents: dict[ast.AST, ast.AST] = {}

    def generic_visit(self, node: ast.AST) -> None:
        for child in ast.iter_child_nodes(node):
            self.parents[child] = node
            self.visit(child)


def enclosing_call(
    node: ast.AST, parents: dict[ast.AST, ast.AST]
) -> tuple[ast.Call | None, bool]:
    """Return the nearest enclosing call and whether ``node`` sits in its arguments.

    The search stops at function, lambda and class boundaries.
    """
    child = node
    parent = parents.get(child)
    while parent is not None and not isinstance(parent, _SCOPE_NODES):
        if isinstance(parent, ast.Call):
            if child in parent.args:
                return parent, True
            for kw in parent.keywords:
                if child is kw or child is kw.value:
                    return parent, True
            return parent, False
        child = parent
        parent = parents.get(child)
    return None, False


@dataclass(frozen=True)
class CallEvent:
    node: ast.Call
    guard: GuardState


@dataclass(frozen=True)
class RaiseEvent:
    node: ast.Raise
    guard: GuardState
    reraise: bool


class CallSiteVisitor(ast.NodeVisitor):
    """Collect the calls and raises one construct performs itself.

    Bodies of nested functions, lambdas and classes belong to their own
    constructs and are skipped; the parts of a nested definition that run in
    the enclosing body (decorators, defaults, class bases) are visited.
    """

    def __init__(self) -> None:
        self.calls: list[CallEvent] = []
        self.raises: list[RaiseEvent] = []
        self._guards: list[TryGuard] = []
        self._except_names: list[str | None] = []

    def scan(self, construct: ast.AST) -> CallSiteVisitor:
        match construct:
            case ast.Lambda(body=body):
                self.visit(body)
            case ast.FunctionDef(body=body) | ast.AsyncFunctionDef(body=body):
                for stmt in body:
                    self.visit(stmt)
            case _:
                self.visit(construct)
        return self

    def _visit_all(self, nodes: list) -> None:
        for node in nodes:
            if node is not None:
                self.visit(node)

    def _visit_defaults(self, args: ast.arguments) -> None:
        self._visit_all(list(args.defaults))
        self._visit_all(list(args.kw_defaults))

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_all(list(node.decorator_list))
        self._visit_defaults(node.args)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._visit_all(list(node.decorator_list))
        self._visit_defaults(node.args)

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._visit_defaults(node.args)

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._visit_all(list(node.decorator_list))
        self._visit_all(list(node.bases))
        self._visit_all([kw.value for kw in node.keywords])

    def visit_Try(self, node: ast.Try) -> None:
        self._guards.append(try_guard(node.handlers))
        self._visit_all(list(node.body))
        self._guards.pop()
        for handler in node.handlers:
            if handler.type is not None:
                self.visit(handler.type)
            self._except_names.append(handler.name)
            self._visit_all(list(handler.body))
            self._except_names.pop()
        self._visit_all(list(node.orelse))
        self._visit_all(list(node.finalbody))

    def visit_TryStar(self, node: ast.AST) -> None:
        self.visit_Try(node)  # type: ignore[arg-type]

    def visit_Call(self, node: ast.Call) -> None:
        self.calls.append(CallEvent(node, guard_state(self._guards)))
        self.generic_visit(node)

    def visit_Raise(self, node: ast.Raise) -> None:
        self.raises.append(RaiseEvent(node, guard_state(self._guards), self._is_reraise(node)))
        exc = node.exc
        if isinstance(exc, ast.Call):
            # The raised constructor itself is recorded with the raise.
            if not isinstance(exc.func, (ast.Name, ast.Attribute)):
                self.visit(exc.func)
            self._visit_all(list(exc.args))
            self._visit_all([kw.value for kw in exc.keywords])
        elif exc is not None and not isinstance(exc, (ast.Name, ast.Attribute)):
            self.visit(exc)
        if node.cause is not None:
            self.visit(node.cause)

    def _is_reraise(self, node: ast.Raise) -> bool:
        if not self._except_names:
            return False
        if node.exc is None:
            return True
        return isinstance(node.exc, ast.Name) and node.exc.id in {
            name for name in self._except_names if name
        }
