"""Exceptions raised by the analyzer itself.

Findings about analyzed code are never exceptions; they are reported as
diagnostics. The classes here cover configuration mistakes, malformed input
handed to the analyzer, and broken internal invariants.
"""

from __future__ import annotations


class RaisemapError(Exception):
    """Base class for analyzer failures."""


class ConfigError(RaisemapError, ValueError):
    """A configuration value could not be interpreted."""

    def __init__(self, key: str, value: object, expected: str) -> None:
        super().__init__(f"invalid value for {key!r}: {value!r} (expected {expected})")
        self.key = key
        self.value = value
        self.expected = expected


class ConstructInputError(RaisemapError):
    """A construct handle is missing something the analyzer requires.

    Raised while collecting a single construct; the driver reports it as an
    ``internal-error`` diagnostic for that construct and keeps going.
    """

    def __init__(self, construct: str, reason: str) -> None:
        super().__init__(f"{construct}: {reason}")
        self.construct = construct
        self.reason = reason


class NeverThrown(RaisemapError, RuntimeError):
    """Sentinel exception for code paths that should be unreachable."""

    def __init__(self, reason: str, *, env: dict[str, object] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.env = dict(env or {})
