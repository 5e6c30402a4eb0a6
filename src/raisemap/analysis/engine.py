"""Run the full analysis over source text, files or directories."""

from __future__ import annotations

import ast
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from raisemap.analysis.callsites import CollectionFailure, collect_module
from raisemap.analysis.consistency import check_consistency
from raisemap.analysis.diagnostics import Diagnostic, DiagnosticCode, Severity, SourceSpan
from raisemap.analysis.model import CallGraph, FunctionNode, ModuleGraph
from raisemap.analysis.propagation import PropagationResult, propagate
from raisemap.config import AnalysisConfig
from raisemap.refactor.fixes import attach_fixes
from raisemap.refactor.model import TextEdit, apply_text_edits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    graph: CallGraph
    propagation: PropagationResult
    diagnostics: tuple[Diagnostic, ...]
    sources: Mapping[Path, str] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return any(diag.severity is Severity.ERROR for diag in self.diagnostics)

    def diagnostics_for(self, path: Path) -> tuple[Diagnostic, ...]:
        return tuple(diag for diag in self.diagnostics if diag.path == path)

    def find(self, qualname: str) -> list[FunctionNode]:
        """Constructs whose qualified name is ``qualname`` or ends with it."""
        return [
            node
            for node in self.graph.nodes.values()
            if node.qualname == qualname or node.qualname.endswith("." + qualname)
        ]


def iter_python_paths(paths: Iterable[Path | str], config: AnalysisConfig) -> list[Path]:
    out: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            for candidate in sorted(path.rglob("*.py")):
                if config.is_ignored_path(candidate.relative_to(path)):
                    continue
                out.append(candidate)
        else:
            if config.is_ignored_path(path):
                continue
            out.append(path)
    return out


def _syntax_error(path: Path, exc: SyntaxError) -> Diagnostic:
    line = exc.lineno or 1
    col = max((exc.offset or 1) - 1, 0)
    return Diagnostic(
        code=DiagnosticCode.SYNTAX_ERROR,
        severity=Severity.ERROR,
        message=f"cannot parse file: {exc.msg}",
        path=path,
        span=SourceSpan(line, col, line, col + 1),
        construct="<module>",
    )


def _internal_error(path: Path, failure: CollectionFailure) -> Diagnostic:
    return Diagnostic(
        code=DiagnosticCode.INTERNAL_ERROR,
        severity=Severity.ERROR,
        message=f"could not analyze `{failure.qualname}`: {failure.reason}",
        path=path,
        span=failure.span,
        construct=failure.qualname,
    )


def _collect(
    sources: Mapping[Path, str], config: AnalysisConfig
) -> tuple[list[ModuleGraph], list[Diagnostic]]:
    modules: list[ModuleGraph] = []
    problems: list[Diagnostic] = []
    for path, source in sources.items():
        try:
            tree = ast.parse(source, filename=str(path))
        except SyntaxError as exc:
            logger.info("skipping %s: %s", path, exc.msg)
            problems.append(_syntax_error(path, exc))
            continue
        module, failures = collect_module(tree, path=path, source=source, config=config)
        for failure in failures:
            logger.warning("construct %s in %s skipped: %s", failure.qualname, path, failure.reason)
            problems.append(_internal_error(path, failure))
        modules.append(module)
    return modules, problems


def analyze_sources(
    sources: Mapping[Path, str], *, config: AnalysisConfig | None = None
) -> AnalysisResult:
    config = config or AnalysisConfig()
    modules, problems = _collect(sources, config)
    graph = CallGraph.from_modules(modules)
    result = propagate(graph)
    diagnostics = check_consistency(graph, result, config)
    diagnostics = attach_fixes(graph, sources, diagnostics)
    ordered = sorted(
        [*problems, *diagnostics],
        key=lambda diag: (str(diag.path), diag.span.line, diag.span.col, diag.code.value),
    )
    logger.debug(
        "analyzed %d files, %d constructs, %d diagnostics",
        len(sources),
        len(graph),
        len(ordered),
    )
    return AnalysisResult(
        graph=graph,
        propagation=result,
        diagnostics=tuple(ordered),
        sources=dict(sources),
    )


def analyze_source(
    source: str, *, path: Path | str = "<string>", config: AnalysisConfig | None = None
) -> AnalysisResult:
    return analyze_sources({Path(path): source}, config=config)


def analyze_paths(
    paths: Iterable[Path | str], *, config: AnalysisConfig | None = None
) -> AnalysisResult:
    """Analyze every Python file under ``paths``.

    Unreadable files are logged and skipped.
    """
    config = config or AnalysisConfig()
    sources: dict[Path, str] = {}
    for path in iter_python_paths(paths, config):
        try:
            sources[path] = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("cannot read %s: %s", path, exc)
    return analyze_sources(sources, config=config)


def fix_sources(
    sources: Mapping[Path, str],
    *,
    config: AnalysisConfig | None = None,
    max_passes: int = 10,
) -> tuple[dict[Path, str], AnalysisResult, int]:
    """Apply fixes in passes until none apply or ``max_passes`` is reached.

    Each pass applies only non-overlapping edits; the rest wait for the
    next pass, which re-analyzes the rewritten text.
    """
    current = dict(sources)
    applied = 0
    result = analyze_sources(current, config=config)
    for number in range(max_passes):
        edits: dict[Path, list[TextEdit]] = {}
        for diag in result.diagnostics:
            if diag.fix is not None:
                edits.setdefault(diag.path, []).append(diag.fix)
        if not edits:
            break
        changed = False
        for path, path_edits in edits.items():
            plan = apply_text_edits(current[path], path_edits)
            if plan.source != current[path]:
                current[path] = plan.source
                changed = True
            applied += len(plan.applied)
        logger.debug("fix pass %d applied edits in %d files", number + 1, len(edits))
        if not changed:
            break
        result = analyze_sources(current, config=config)
    return current, result, applied
