"""Classification of ``try``/``except`` guards and configured handlers."""

from __future__ import annotations

import ast
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from raisemap.analysis.callee_resolution import (
    ClassInfo,
    builtin_exception_class,
    dotted_name,
    local_class_name,
)
from raisemap.analysis.error_types import GENERIC_BASE_NAMES, UNKNOWN_ERROR, ErrorSet, canonical_error_name


@dataclass(frozen=True)
class TryGuard:
    """What one ``try`` statement absorbs from its body."""

    absorbs_all: bool
    caught: tuple[str, ...] = ()


@dataclass(frozen=True)
class GuardState:
    handled: bool
    caught: tuple[str, ...] = ()


UNGUARDED = GuardState(handled=False)


def handler_is_broad(handler: ast.ExceptHandler) -> bool:
    if handler.type is None:
        return True
    match handler.type:
        case ast.Name(id=name_text):
            return name_text in GENERIC_BASE_NAMES
        case ast.Attribute(attr=attr_text):
            return attr_text in GENERIC_BASE_NAMES
        case ast.Tuple(elts=elements):
            return any(
                canonical_error_name(dotted_name(elt) or "") in GENERIC_BASE_NAMES
                for elt in elements
            )
        case _:
            return False


def handler_type_names(handler_type: object) -> tuple[str, ...]:
    match handler_type:
        case ast.Tuple(elts=elements):
            names: list[str] = []
            for elt in elements:
                name = dotted_name(elt)
                if name:
                    names.append(canonical_error_name(name))
            return tuple(names)
        case ast.AST() as handler_expr:
            name = dotted_name(handler_expr)
            return (canonical_error_name(name),) if name else ()
        case _:
            return ()


def handler_reraises(handler: ast.ExceptHandler) -> bool:
    """True when the clause re-raises the caught error unconditionally.

    Only direct statements of the clause body count; a ``raise`` nested in a
    conditional or loop is not unconditional.
    """
    for stmt in handler.body:
        if not isinstance(stmt, ast.Raise):
            continue
        if stmt.exc is None:
            return True
        if (
            handler.name is not None
            and isinstance(stmt.exc, ast.Name)
            and stmt.exc.id == handler.name
        ):
            return True
    return False


def try_guard(handlers: Sequence[ast.ExceptHandler]) -> TryGuard:
    absorbs_all = False
    caught: list[str] = []
    for handler in handlers:
        if handler_reraises(handler):
            continue
        if handler_is_broad(handler):
            absorbs_all = True
            continue
        caught.extend(handler_type_names(handler.type))
    return TryGuard(absorbs_all=absorbs_all, caught=tuple(dict.fromkeys(caught)))


def guard_state(guards: Sequence[TryGuard]) -> GuardState:
    if not guards:
        return UNGUARDED
    if any(guard.absorbs_all for guard in guards):
        return GuardState(handled=True)
    caught: list[str] = []
    for guard in guards:
        caught.extend(guard.caught)
    return GuardState(handled=False, caught=tuple(dict.fromkeys(caught)))


def error_ancestry(name: str, class_info: Mapping[str, ClassInfo]) -> frozenset[str]:
    """Names of ``name`` and every base class known locally or as a builtin."""
    seen: set[str] = set()
    pending = [name]
    while pending:
        current = pending.pop()
        if current in seen:
            continue
        seen.add(current)
        builtin = builtin_exception_class(current)
        if builtin is not None:
            seen.update(cls.__name__ for cls in builtin.__mro__)
            continue
        qual = local_class_name(current, class_info)
        if qual is None:
            continue
        for base in class_info[qual].bases:
            pending.append(canonical_error_name(base))
    return frozenset(seen)


def error_is_covered(
    name: str, covering: Sequence[str] | frozenset[str], class_info: Mapping[str, ClassInfo]
) -> bool:
    if name == UNKNOWN_ERROR:
        return False
    if name in covering:
        return True
    return bool(error_ancestry(name, class_info) & set(covering))


def filter_caught(
    errors: ErrorSet, caught: Sequence[str], class_info: Mapping[str, ClassInfo]
) -> ErrorSet:
    """Drop members that a typed ``except`` clause would catch."""
    if not caught:
        return errors
    return ErrorSet(
        entry for entry in errors if not error_is_covered(entry.name, caught, class_info)
    )
