"""Invariant markers for Raisemap analysis."""

from __future__ import annotations

from typing import NoReturn

from raisemap.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The optional env payload is attached to the raised exception for
    debugging; it is not evaluated.
    """
    detail = reason or "never() marker reached"
    if env:
        rendered = ", ".join(f"{key}={value!r}" for key, value in sorted(env.items()))
        detail = f"{detail} ({rendered})"
    raise NeverThrown(detail, env=env)
