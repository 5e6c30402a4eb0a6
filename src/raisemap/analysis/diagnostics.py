from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from raisemap.refactor.model import TextEdit


class Severity(StrEnum):
    ERROR = "error"
    WARN = "warn"
    OFF = "off"


class DiagnosticCode(StrEnum):
    PARSE_ERROR = "parse-error"
    DECLARATION_CONFLICT = "declaration-conflict"
    UNDECLARED_ERROR = "undeclared-error"
    MISSING_DECLARATION = "missing-declaration"
    MISSING_NEVER_DECLARATION = "missing-never-declaration"
    DECLARED_BUT_UNUSED = "declared-but-unused"
    NON_SPECIFIC_ERROR_TYPE = "non-specific-error-type"
    UNSAFE_CALL = "unsafe-call"
    UNION_DECLARATION = "union-declaration"
    UNHANDLED_PROPAGATION = "unhandled-propagation"
    SYNTAX_ERROR = "syntax-error"
    INTERNAL_ERROR = "internal-error"


# Codes the fix synthesizer knows how to repair.
FIXABLE_CODES = frozenset(
    {
        DiagnosticCode.MISSING_NEVER_DECLARATION,
        DiagnosticCode.MISSING_DECLARATION,
        DiagnosticCode.UNDECLARED_ERROR,
        DiagnosticCode.UNION_DECLARATION,
    }
)


@dataclass(frozen=True)
class SourceSpan:
    """1-based lines, 0-based columns, matching ``ast`` positions."""

    line: int
    col: int
    end_line: int
    end_col: int

    @classmethod
    def of(cls, node: object) -> SourceSpan | None:
        line = getattr(node, "lineno", None)
        col = getattr(node, "col_offset", None)
        if not isinstance(line, int) or not isinstance(col, int):
            return None
        end_line = getattr(node, "end_lineno", None) or line
        end_col = getattr(node, "end_col_offset", None)
        if end_col is None:
            end_col = col + 1
        return cls(line, col, end_line, end_col)


@dataclass(frozen=True)
class Origin:
    """Where an inferred error type entered a construct."""

    error: str
    label: str
    line: int

    def describe(self) -> str:
        return f"raised by {self.label} (line {self.line})"


@dataclass(frozen=True)
class Diagnostic:
    code: DiagnosticCode
    severity: Severity
    message: str
    path: Path
    span: SourceSpan
    construct: str
    node_id: str = ""
    error_types: tuple[str, ...] = ()
    origins: tuple[Origin, ...] = ()
    fix: TextEdit | None = None

    @property
    def fixable(self) -> bool:
        return self.fix is not None

    def render(self) -> str:
        location = f"{self.path}:{self.span.line}:{self.span.col + 1}"
        return f"{location}: {self.severity.value} [{self.code.value}] {self.message}"
