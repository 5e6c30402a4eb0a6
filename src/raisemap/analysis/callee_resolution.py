"""Name-based callee resolution.

Resolution is deliberately approximate: a callee is looked up by name in the
lexical scopes of the analyzed file, through ``self``/``cls``/``super()``
and the local class hierarchy, and against the configured handler, wrapper
and safe-call names. Anything else is ``Unresolved``.
"""

from __future__ import annotations

import ast
import builtins
from dataclasses import dataclass, field
from collections.abc import Mapping

from raisemap.config import AnalysisConfig


@dataclass(frozen=True)
class ResolvedLocal:
    node_id: str


@dataclass(frozen=True)
class ResolvedClass:
    class_name: str
    constructor_id: str | None


@dataclass(frozen=True)
class ResolvedHandler:
    name: str


@dataclass(frozen=True)
class ResolvedWrapper:
    name: str
    node_id: str | None = None


@dataclass(frozen=True)
class ResolvedSafe:
    name: str


@dataclass(frozen=True)
class Unresolved:
    text: str


Resolution = (
    ResolvedLocal | ResolvedClass | ResolvedHandler | ResolvedWrapper | ResolvedSafe | Unresolved
)


@dataclass(frozen=True)
class ClassInfo:
    qual: str
    name: str
    bases: tuple[str, ...]
    methods: Mapping[str, str] = field(default_factory=dict)
    nested: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ModuleSymbols:
    """Definitions of one file, grouped by the scope that binds them.

    ``functions`` and ``classes`` map a scope qualname (``""`` for the module)
    to the names bound there: function and bound-lambda node ids, and class
    qualnames respectively.
    """

    functions: Mapping[str, Mapping[str, str]]
    classes: Mapping[str, Mapping[str, str]]
    class_info: Mapping[str, ClassInfo]


@dataclass(frozen=True)
class CallerContext:
    function_scopes: tuple[str, ...]
    class_qual: str | None = None


def dotted_name(node: ast.AST) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        parts: list[str] = []
        current: ast.AST = node
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if isinstance(current, ast.Name):
            parts.append(current.id)
            return ".".join(reversed(parts))
        if (
            isinstance(current, ast.Call)
            and isinstance(current.func, ast.Name)
            and current.func.id == "super"
        ):
            parts.append("super()")
            return ".".join(reversed(parts))
        return None
    return None


def callee_text(call: ast.Call) -> str:
    name = dotted_name(call.func)
    if name is not None:
        return name
    try:
        return ast.unparse(call.func)
    except (AttributeError, TypeError, ValueError, RecursionError):
        return "<call>"


def builtin_exception_class(name: str) -> type[BaseException] | None:
    value = getattr(builtins, name, None)
    match value:
        case type() as value_type:
            if issubclass(value_type, BaseException):
                return value_type
            return None
        case _:
            return None


def local_class_name(base: str, class_info: Mapping[str, ClassInfo]) -> str | None:
    if base in class_info:
        return base
    tail = base.rsplit(".", 1)[-1]
    matches = [qual for qual, info in class_info.items() if info.name == tail]
    if len(matches) == 1:
        return matches[0]
    return None


def resolve_method_in_hierarchy(
    class_qual: str,
    method: str,
    *,
    class_info: Mapping[str, ClassInfo],
    seen: set[str] | None = None,
) -> str | None:
    seen = set() if seen is None else seen
    if class_qual in seen:
        return None
    seen.add(class_qual)
    info = class_info.get(class_qual)
    if info is None:
        return None
    if method in info.methods:
        return info.methods[method]
    for base in info.bases:
        base_qual = local_class_name(base, class_info)
        if base_qual is None:
            continue
        resolved = resolve_method_in_hierarchy(
            base_qual, method, class_info=class_info, seen=seen
        )
        if resolved is not None:
            return resolved
    return None


class CalleeResolver:
    def __init__(self, symbols: ModuleSymbols, config: AnalysisConfig) -> None:
        self.symbols = symbols
        self.config = config

    def resolve_call(self, call: ast.Call, caller: CallerContext) -> Resolution:
        text = callee_text(call)
        if self.config.is_handler(text):
            return ResolvedHandler(text)
        if self.config.is_wrapper(text):
            local = self._resolve_dotted(text, caller)
            node_id = local.node_id if isinstance(local, ResolvedLocal) else None
            return ResolvedWrapper(text, node_id)
        resolved = self._resolve_dotted(text, caller)
        if resolved is not None:
            return resolved
        if self.config.is_safe_call(text):
            return ResolvedSafe(text)
        if "." not in text and builtin_exception_class(text) is not None:
            return ResolvedSafe(text)
        return Unresolved(text)

    def resolve_reference(self, expr: ast.AST, caller: CallerContext) -> Resolution | None:
        """Resolve a function-valued argument, or ``None`` if it is not a reference."""
        text = dotted_name(expr)
        if text is None:
            return None
        resolved = self._resolve_dotted(text, caller)
        if resolved is not None:
            return resolved
        return Unresolved(text)

    def _lookup_name(self, name: str, caller: CallerContext) -> Resolution | None:
        # Class bodies do not form an enclosing scope for the functions
        # defined in them, so only function scopes and the module are searched.
        for scope in (*reversed(caller.function_scopes), ""):
            node_id = self.symbols.functions.get(scope, {}).get(name)
            if node_id is not None:
                return ResolvedLocal(node_id)
            class_qual = self.symbols.classes.get(scope, {}).get(name)
            if class_qual is not None:
                return self._construct(class_qual)
        return None

    def _construct(self, class_qual: str) -> ResolvedClass:
        constructor = resolve_method_in_hierarchy(
            class_qual, "__init__", class_info=self.symbols.class_info
        )
        return ResolvedClass(class_qual, constructor)

    def _resolve_dotted(self, text: str, caller: CallerContext) -> Resolution | None:
        parts = text.split(".")
        head, rest = parts[0], parts[1:]
        if not rest:
            return self._lookup_name(head, caller)
        if head in {"self", "cls"} and caller.class_qual is not None and len(rest) == 1:
            node_id = resolve_method_in_hierarchy(
                caller.class_qual, rest[0], class_info=self.symbols.class_info
            )
            return ResolvedLocal(node_id) if node_id is not None else None
        if head == "super()" and caller.class_qual is not None and len(rest) == 1:
            return self._resolve_super(caller.class_qual, rest[0])
        start = self._lookup_name(head, caller)
        if not isinstance(start, ResolvedClass):
            return None
        class_qual = start.class_name
        for index, part in enumerate(rest):
            info = self.symbols.class_info[class_qual]
            last = index == len(rest) - 1
            if part in info.nested:
                class_qual = info.nested[part]
                if last:
                    return self._construct(class_qual)
                continue
            if not last:
                return None
            node_id = resolve_method_in_hierarchy(
                class_qual, part, class_info=self.symbols.class_info
            )
            return ResolvedLocal(node_id) if node_id is not None else None
        return None

    def _resolve_super(self, class_qual: str, method: str) -> Resolution | None:
        info = self.symbols.class_info.get(class_qual)
        if info is None:
            return None
        for base in info.bases:
            base_qual = local_class_name(base, self.symbols.class_info)
            if base_qual is None:
                continue
            node_id = resolve_method_in_hierarchy(
                base_qual, method, class_info=self.symbols.class_info
            )
            if node_id is not None:
                return ResolvedLocal(node_id)
        if method == "__init__":
            return ResolvedSafe("super().__init__")
        return None
