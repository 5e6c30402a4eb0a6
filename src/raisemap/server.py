from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

from lsprotocol.types import (
    TEXT_DOCUMENT_CODE_ACTION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    CodeAction,
    CodeActionKind,
    CodeActionParams,
    Diagnostic,
    DiagnosticSeverity,
    Position,
    PublishDiagnosticsParams,
    Range,
    TextEdit,
    WorkspaceEdit,
)
from pygls.lsp.server import LanguageServer

from raisemap import __version__
from raisemap.analysis.diagnostics import Diagnostic as RaisemapDiagnostic
from raisemap.analysis.diagnostics import Severity
from raisemap.analysis.engine import analyze_source
from raisemap.config import AnalysisConfig, config_from_payload, raisemap_defaults
from raisemap.exceptions import ConfigError
from raisemap.refactor.model import TextEdit as RaisemapTextEdit

logger = logging.getLogger(__name__)

SOURCE = "raisemap"

server = LanguageServer("raisemap", __version__)

_SEVERITIES = {
    Severity.ERROR: DiagnosticSeverity.Error,
    Severity.WARN: DiagnosticSeverity.Warning,
}


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def _workspace_config(ls: LanguageServer) -> AnalysisConfig:
    root_path = getattr(ls.workspace, "root_path", None)
    root = Path(root_path) if root_path else None
    try:
        return config_from_payload(raisemap_defaults(root=root), project_root=root)
    except ConfigError as exc:
        logger.warning("invalid raisemap config, using defaults: %s", exc)
        return AnalysisConfig(project_root=root)


def _lsp_range(line: int, col: int, end_line: int, end_col: int) -> Range:
    return Range(
        start=Position(line=max(line - 1, 0), character=max(col, 0)),
        end=Position(line=max(end_line - 1, 0), character=max(end_col, 0)),
    )


def to_lsp_diagnostic(diag: RaisemapDiagnostic) -> Diagnostic:
    span = diag.span
    return Diagnostic(
        range=_lsp_range(span.line, span.col, span.end_line, span.end_col),
        message=diag.message,
        severity=_SEVERITIES.get(diag.severity, DiagnosticSeverity.Information),
        code=diag.code.value,
        source=SOURCE,
    )


def to_lsp_edit(edit: RaisemapTextEdit) -> TextEdit:
    return TextEdit(
        range=_lsp_range(edit.start[0], edit.start[1], edit.end[0], edit.end[1]),
        new_text=edit.replacement,
    )


def _analyze_document(ls: LanguageServer, uri: str) -> list[RaisemapDiagnostic]:
    doc = ls.workspace.get_text_document(uri)
    path = Path(doc.path) if getattr(doc, "path", None) else _uri_to_path(uri)
    result = analyze_source(doc.source, path=path, config=_workspace_config(ls))
    return list(result.diagnostics)


def _publish(ls: LanguageServer, uri: str) -> None:
    diagnostics = [to_lsp_diagnostic(diag) for diag in _analyze_document(ls, uri)]
    logger.debug("publishing %d diagnostics for %s", len(diagnostics), uri)
    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


def _overlaps(diag: RaisemapDiagnostic, selection: Range) -> bool:
    first = diag.span.line - 1
    last = diag.span.end_line - 1
    return not (last < selection.start.line or first > selection.end.line)


@server.feature(TEXT_DOCUMENT_CODE_ACTION)
def code_action(ls: LanguageServer, params: CodeActionParams) -> list[CodeAction]:
    uri = params.text_document.uri
    actions: list[CodeAction] = []
    for diag in _analyze_document(ls, uri):
        if diag.fix is None or not _overlaps(diag, params.range):
            continue
        actions.append(
            CodeAction(
                title=f"Raisemap: fix {diag.code.value} in {diag.construct}",
                kind=CodeActionKind.QuickFix,
                diagnostics=[to_lsp_diagnostic(diag)],
                edit=WorkspaceEdit(changes={uri: [to_lsp_edit(diag.fix)]}),
            )
        )
    return actions


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
def did_save(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server on stdio."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
