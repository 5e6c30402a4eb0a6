from __future__ import annotations

import ast

from raisemap.analysis.callee_resolution import ClassInfo
from raisemap.analysis.error_types import UNKNOWN_ERROR, ErrorSet
from raisemap.analysis.handlers import (
    UNGUARDED,
    TryGuard,
    error_ancestry,
    error_is_covered,
    filter_caught,
    guard_state,
    handler_is_broad,
    handler_reraises,
    handler_type_names,
    try_guard,
)


def _handlers(source: str) -> list[ast.ExceptHandler]:
    node = ast.parse(source).body[0]
    assert isinstance(node, ast.Try)
    return node.handlers


def test_broad_handlers() -> None:
    bare, plain, attr, mixed, narrow = _handlers(
        "try:\n    pass\n"
        "except:\n    pass\n"
        "except Exception:\n    pass\n"
        "except builtins.BaseException:\n    pass\n"
        "except (KeyError, Exception):\n    pass\n"
        "except KeyError:\n    pass\n"
    )
    assert handler_is_broad(bare)
    assert handler_is_broad(plain)
    assert handler_is_broad(attr)
    assert handler_is_broad(mixed)
    assert not handler_is_broad(narrow)


def test_handler_type_names() -> None:
    single, pair = _handlers(
        "try:\n    pass\n"
        "except errors.NetworkError:\n    pass\n"
        "except (KeyError, IndexError):\n    pass\n"
    )
    assert handler_type_names(single.type) == ("NetworkError",)
    assert handler_type_names(pair.type) == ("KeyError", "IndexError")
    assert handler_type_names(None) == ()


def test_reraise_detection() -> None:
    bare, named, nested, wrapped = _handlers(
        "try:\n    pass\n"
        "except KeyError:\n    log()\n    raise\n"
        "except ValueError as exc:\n    raise exc\n"
        "except OSError:\n    if retry:\n        raise\n"
        "except Exception as exc:\n    raise RuntimeError() from exc\n"
    )
    assert handler_reraises(bare)
    assert handler_reraises(named)
    assert not handler_reraises(nested)
    assert not handler_reraises(wrapped)


def test_try_guard_ignores_reraising_clauses() -> None:
    guard = try_guard(
        _handlers(
            "try:\n    pass\n"
            "except Exception:\n    raise\n"
            "except KeyError:\n    pass\n"
        )
    )
    assert guard == TryGuard(absorbs_all=False, caught=("KeyError",))


def test_guard_state_combines_enclosing_guards() -> None:
    assert guard_state([]) is UNGUARDED
    state = guard_state([TryGuard(False, ("KeyError",)), TryGuard(False, ("OSError",))])
    assert not state.handled
    assert state.caught == ("KeyError", "OSError")
    assert guard_state([TryGuard(False, ("KeyError",)), TryGuard(True)]).handled


def test_ancestry_follows_local_and_builtin_bases() -> None:
    class_info = {
        "AppError": ClassInfo("AppError", "AppError", ("Exception",)),
        "NotFound": ClassInfo("NotFound", "NotFound", ("AppError",)),
    }
    ancestry = error_ancestry("NotFound", class_info)
    assert {"NotFound", "AppError", "Exception", "BaseException"} <= ancestry
    assert "LookupError" in error_ancestry("KeyError", {})
    assert error_is_covered("NotFound", ("AppError",), class_info)
    assert error_is_covered("KeyError", ("LookupError",), {})
    assert not error_is_covered("KeyError", ("ValueError",), {})
    assert not error_is_covered(UNKNOWN_ERROR, ("Exception",), {})


def test_filter_caught() -> None:
    errors = ErrorSet.of("KeyError", "ValueError") | ErrorSet.unknown()
    assert filter_caught(errors, (), {}) is errors
    remaining = filter_caught(errors, ("LookupError",), {})
    assert remaining.names() == ("ValueError", UNKNOWN_ERROR)
