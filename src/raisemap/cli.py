from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from raisemap.analysis.engine import (
    AnalysisResult,
    analyze_paths,
    fix_sources,
    iter_python_paths,
)
from raisemap.config import AnalysisConfig, config_from_payload, merge_payload, raisemap_defaults
from raisemap.exceptions import ConfigError
from raisemap.schema import check_response, construct_report

app = typer.Typer(add_completion=False, help="Check @throws error contracts in Python code.")
logger = logging.getLogger(__name__)

_FORMATS = ("text", "json")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _check_format(fmt: str) -> str:
    if fmt not in _FORMATS:
        raise typer.BadParameter(f"format must be one of {', '.join(_FORMATS)}")
    return fmt


def build_config(
    *,
    root: Path,
    config_path: Optional[Path] = None,
    require_never: Optional[bool] = None,
    allow_error_bubbling: Optional[bool] = None,
    unsafe_calls: Optional[str] = None,
    error_handlers: Optional[List[str]] = None,
    generic_wrappers: Optional[List[str]] = None,
    strict: Optional[bool] = None,
) -> AnalysisConfig:
    """Merge CLI values over the project's config file.

    @throws {ConfigError} an invalid ``unsafe_calls`` value
    """
    defaults = raisemap_defaults(root=root, config_path=config_path)
    payload = merge_payload(
        {
            "require_never": require_never,
            "allow_error_bubbling": allow_error_bubbling,
            "unsafe_calls": unsafe_calls,
            "error_handlers": error_handlers or None,
            "generic_wrappers": generic_wrappers or None,
            "strict_mode": strict,
        },
        defaults,
    )
    return config_from_payload(payload, project_root=root)


def _config_or_exit(**kwargs) -> AnalysisConfig:
    try:
        return build_config(**kwargs)
    except ConfigError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


def _emit_text(result: AnalysisResult, fixes_applied: int) -> None:
    for diag in result.diagnostics:
        suffix = " (fixable)" if diag.fixable else ""
        typer.echo(diag.render() + suffix)
    response = check_response(result, fixes_applied=fixes_applied)
    summary = (
        f"{response.files} files, {response.constructs} constructs: "
        f"{response.errors} errors, {response.warnings} warnings"
    )
    if fixes_applied:
        summary += f", {fixes_applied} fixes applied"
    typer.echo(summary)


def _write_fixes(result: AnalysisResult, fixed: dict[Path, str]) -> None:
    for path, text in fixed.items():
        if result.sources.get(path) == text:
            continue
        path.write_text(text, encoding="utf-8")
        logger.info("rewrote %s", path)


@app.command("check")
def check(
    paths: List[Path] = typer.Argument(..., help="Files or directories to check."),
    root: Path = typer.Option(Path("."), "--root", help="Project root for config lookup."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="raisemap.toml or pyproject.toml."),
    fmt: str = typer.Option("text", "--format", help="Output format (text|json)."),
    fix: bool = typer.Option(False, "--fix", help="Apply synthesized @throws fixes in place."),
    require_never: Optional[bool] = typer.Option(
        None, "--require-never/--no-require-never"
    ),
    allow_error_bubbling: Optional[bool] = typer.Option(
        None, "--allow-error-bubbling/--no-allow-error-bubbling"
    ),
    unsafe_calls: Optional[str] = typer.Option(
        None, "--unsafe-calls", help="Severity of unsafe-call diagnostics (error|warn|off)."
    ),
    error_handlers: List[str] = typer.Option([], "--error-handler"),
    generic_wrappers: List[str] = typer.Option([], "--generic-wrapper"),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Check declared error contracts against inferred ones."""
    _configure_logging(verbose)
    fmt = _check_format(fmt)
    config = _config_or_exit(
        root=root,
        config_path=config_path,
        require_never=require_never,
        allow_error_bubbling=allow_error_bubbling,
        unsafe_calls=unsafe_calls,
        error_handlers=error_handlers,
        generic_wrappers=generic_wrappers,
        strict=strict,
    )
    result = analyze_paths(paths, config=config)
    fixes_applied = 0
    if fix:
        fixed, result_after, fixes_applied = fix_sources(result.sources, config=config)
        _write_fixes(result, fixed)
        result = result_after
    if fmt == "json":
        response = check_response(result, fixes_applied=fixes_applied)
        typer.echo(json.dumps(response.model_dump(), indent=2, sort_keys=True))
    else:
        _emit_text(result, fixes_applied)
    raise typer.Exit(code=1 if result.has_errors else 0)


@app.command("explain")
def explain(
    paths: List[Path] = typer.Argument(..., help="Files or directories to explain."),
    construct: Optional[str] = typer.Option(
        None, "--construct", help="Only report constructs with this qualified name."
    ),
    root: Path = typer.Option(Path("."), "--root"),
    config_path: Optional[Path] = typer.Option(None, "--config"),
    fmt: str = typer.Option("text", "--format"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Print each construct's declared and inferred error sets."""
    _configure_logging(verbose)
    fmt = _check_format(fmt)
    config = _config_or_exit(root=root, config_path=config_path)
    result = analyze_paths(paths, config=config)
    if construct is not None:
        nodes = result.find(construct)
        if not nodes:
            typer.secho(f"no construct named {construct!r}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=2)
    else:
        nodes = sorted(result.graph.nodes.values(), key=lambda node: (str(node.path), node.span.line))
    reports = [construct_report(result, node) for node in nodes]
    if fmt == "json":
        typer.echo(json.dumps([report.model_dump() for report in reports], indent=2, sort_keys=True))
        return
    for report in reports:
        declared = "{" + ", ".join(report.declared) + "}" if report.documented else "undocumented"
        typer.echo(f"{report.path}:{report.line} {report.construct} ({report.kind})")
        typer.echo(f"  declared: {declared}")
        typer.echo("  inferred: {" + ", ".join(report.inferred) + "}")
        for contribution in report.contributions:
            if not contribution.errors:
                continue
            typer.echo(
                f"  line {contribution.line}: {contribution.label} -> "
                + "{" + ", ".join(contribution.errors) + "}"
            )


@app.command("lsp")
def lsp(verbose: bool = typer.Option(False, "--verbose", "-v")) -> None:
    """Run the language server over stdio."""
    _configure_logging(verbose)
    from raisemap.server import start

    start()


@app.command("files")
def files(
    paths: List[Path] = typer.Argument(...),
    root: Path = typer.Option(Path("."), "--root"),
    config_path: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """List the Python files a check would analyze."""
    config = _config_or_exit(root=root, config_path=config_path)
    for path in iter_python_paths(paths, config):
        typer.echo(str(path))


def main() -> None:
    app()
