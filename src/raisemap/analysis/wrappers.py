"""Pass-through wrappers: calls whose errors are those of their callbacks."""

from __future__ import annotations

import ast
from collections.abc import Callable, Mapping

from raisemap.analysis.callee_resolution import (
    CalleeResolver,
    CallerContext,
    Resolution,
    ResolvedHandler,
    ResolvedLocal,
    ResolvedWrapper,
    Unresolved,
    dotted_name,
)
from raisemap.analysis.diagnostics import SourceSpan
from raisemap.analysis.error_types import NEVER, ErrorSet
from raisemap.analysis.model import Callback, CallSite


def _call_arguments(call: ast.Call) -> list[ast.expr]:
    values: list[ast.expr] = []
    for arg in call.args:
        values.append(arg.value if isinstance(arg, ast.Starred) else arg)
    values.extend(kw.value for kw in call.keywords)
    return values


def collect_callbacks(
    call: ast.Call,
    *,
    resolver: CalleeResolver,
    caller: CallerContext,
    lambda_ids: Mapping[ast.Lambda, str],
    nested_sites: Mapping[ast.Call, CallSite],
) -> tuple[Callback, ...]:
    """Return the function-valued arguments of a wrapper call.

    Inline lambdas, references to local constructs and nested wrapper or
    handler calls are callbacks. When no argument qualifies, the first plain
    name or attribute that resolves to nothing is taken as an opaque
    callback; the remaining ones are ordinary values.
    """
    callbacks: list[Callback] = []
    opaque: list[Callback] = []
    for arg in _call_arguments(call):
        span = SourceSpan.of(arg) or SourceSpan.of(call)
        assert span is not None
        match arg:
            case ast.Lambda() if arg in lambda_ids:
                callbacks.append(Callback("<lambda>", ResolvedLocal(lambda_ids[arg]), span))
            case ast.Call():
                nested = nested_sites.get(arg)
                if nested is not None and isinstance(
                    nested.resolution, (ResolvedWrapper, ResolvedHandler)
                ):
                    callbacks.append(Callback(nested.callee, nested.resolution, span, call=nested))
            case ast.Name() | ast.Attribute():
                resolution = resolver.resolve_reference(arg, caller)
                text = dotted_name(arg) or "<callback>"
                if isinstance(resolution, Unresolved):
                    opaque.append(Callback(text, resolution, span))
                elif resolution is not None:
                    callbacks.append(Callback(text, resolution, span))
            case _:
                pass
    if callbacks:
        return tuple(callbacks)
    return tuple(opaque[:1])


def wrapper_contribution(
    site: CallSite,
    *,
    callee_errors: Callable[[Resolution], ErrorSet],
    declared_of: Callable[[str], ErrorSet | None],
) -> ErrorSet:
    """Union of the callbacks' error sets plus the wrapper's own declaration."""
    result = ErrorSet()
    for callback in site.callbacks:
        if callback.call is not None:
            if isinstance(callback.call.resolution, ResolvedWrapper):
                result = result | wrapper_contribution(
                    callback.call, callee_errors=callee_errors, declared_of=declared_of
                )
            continue
        if callback.resolution is not None:
            result = result | callee_errors(callback.resolution)
    resolution = site.resolution
    if isinstance(resolution, ResolvedWrapper) and resolution.node_id is not None:
        declared = declared_of(resolution.node_id)
        if declared is not None:
            result = result | declared.without((NEVER,))
    return result


def unresolved_callbacks(site: CallSite) -> tuple[Callback, ...]:
    """Callbacks of ``site`` (and nested wrapper calls) that resolve to nothing."""
    found: list[Callback] = []
    for callback in site.callbacks:
        if callback.call is not None:
            if isinstance(callback.call.resolution, ResolvedWrapper):
                found.extend(unresolved_callbacks(callback.call))
            continue
        if isinstance(callback.resolution, Unresolved):
            found.append(callback)
    return tuple(found)
