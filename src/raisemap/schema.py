from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel

from raisemap.analysis.diagnostics import Diagnostic
from raisemap.analysis.engine import AnalysisResult
from raisemap.analysis.model import FunctionNode
from raisemap.refactor.model import TextEdit


class TextEditDTO(BaseModel):
    path: str
    start: Tuple[int, int]
    end: Tuple[int, int]
    replacement: str


class OriginDTO(BaseModel):
    error: str
    label: str
    line: int


class DiagnosticDTO(BaseModel):
    path: str
    line: int
    col: int
    end_line: int
    end_col: int
    code: str
    severity: str
    message: str
    construct: str
    error_types: List[str] = []
    origins: List[OriginDTO] = []
    fix: Optional[TextEditDTO] = None


class ContributionDTO(BaseModel):
    kind: str
    label: str
    line: int
    errors: List[str]


class ConstructReportDTO(BaseModel):
    construct: str
    kind: str
    path: str
    line: int
    documented: bool
    declared: List[str] = []
    inferred: List[str] = []
    contributions: List[ContributionDTO] = []


class CheckResponseDTO(BaseModel):
    diagnostics: List[DiagnosticDTO] = []
    files: int = 0
    constructs: int = 0
    errors: int = 0
    warnings: int = 0
    fixes_applied: int = 0


def text_edit_dto(edit: TextEdit) -> TextEditDTO:
    return TextEditDTO(path=edit.path, start=edit.start, end=edit.end, replacement=edit.replacement)


def diagnostic_dto(diag: Diagnostic) -> DiagnosticDTO:
    return DiagnosticDTO(
        path=str(diag.path),
        line=diag.span.line,
        col=diag.span.col,
        end_line=diag.span.end_line,
        end_col=diag.span.end_col,
        code=diag.code.value,
        severity=diag.severity.value,
        message=diag.message,
        construct=diag.construct,
        error_types=list(diag.error_types),
        origins=[
            OriginDTO(error=origin.error, label=origin.label, line=origin.line)
            for origin in diag.origins
        ],
        fix=text_edit_dto(diag.fix) if diag.fix is not None else None,
    )


def construct_report(result: AnalysisResult, node: FunctionNode) -> ConstructReportDTO:
    declared = node.declared
    return ConstructReportDTO(
        construct=node.qualname,
        kind=node.kind.value,
        path=str(node.path),
        line=node.span.line,
        documented=declared is not None,
        declared=list(declared.names()) if declared is not None else [],
        inferred=list(result.propagation.inferred_for(node.node_id).names()),
        contributions=[
            ContributionDTO(
                kind=contribution.kind,
                label=contribution.label,
                line=contribution.span.line,
                errors=list(contribution.errors.names()),
            )
            for contribution in result.propagation.contributions.get(node.node_id, ())
        ],
    )


def check_response(result: AnalysisResult, *, fixes_applied: int = 0) -> CheckResponseDTO:
    diagnostics = [diagnostic_dto(diag) for diag in result.diagnostics]
    return CheckResponseDTO(
        diagnostics=diagnostics,
        files=len(result.sources),
        constructs=len(result.graph),
        errors=sum(1 for diag in diagnostics if diag.severity == "error"),
        warnings=sum(1 for diag in diagnostics if diag.severity == "warn"),
        fixes_applied=fixes_applied,
    )
