"""Raisemap package root."""

from raisemap.exceptions import ConfigError, ConstructInputError, NeverThrown, RaisemapError
from raisemap.invariants import never

__all__ = [
    "__version__",
    "ConfigError",
    "ConstructInputError",
    "NeverThrown",
    "RaisemapError",
    "never",
]

__version__ = "0.1.0"
