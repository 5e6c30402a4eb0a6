"""Text edits that repair fixable diagnostics.

Functions and methods get their tags inside the docstring; bound lambdas
get ``# @throws`` comment lines above the binding.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from raisemap.analysis.annotations import ThrowsTag, render_tag
from raisemap.analysis.diagnostics import FIXABLE_CODES, Diagnostic, DiagnosticCode, Origin
from raisemap.analysis.error_types import NEVER
from raisemap.analysis.model import CallGraph, ConstructKind, FunctionNode
from raisemap.refactor.model import Position, TextEdit

logger = logging.getLogger(__name__)

_TRIPLE_QUOTES = ('"""', "'''")


@dataclass(frozen=True)
class DocstringSite:
    """Where a function's docstring is, or where a new one would go."""

    line: int
    indent: str
    body_line: int | None
    literal: str | None = None
    start: Position | None = None
    end: Position | None = None


class _DocstringLocator(cst.CSTVisitor):
    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self) -> None:
        super().__init__()
        self.sites: dict[int, DocstringSite] = {}

    def visit_FunctionDef(self, node: cst.FunctionDef) -> None:
        line = self.get_metadata(PositionProvider, node.name).start.line
        body = node.body
        if not isinstance(body, cst.IndentedBlock) or not body.body:
            self.sites[line] = DocstringSite(line=line, indent="", body_line=None)
            return
        first = body.body[0]
        first_start = self.get_metadata(PositionProvider, first).start
        indent = " " * first_start.column
        site = DocstringSite(line=line, indent=indent, body_line=first_start.line)
        if (
            isinstance(first, cst.SimpleStatementLine)
            and first.body
            and isinstance(first.body[0], cst.Expr)
            and isinstance(first.body[0].value, (cst.SimpleString, cst.ConcatenatedString))
        ):
            string = first.body[0].value
            position = self.get_metadata(PositionProvider, string)
            literal = string.value if isinstance(string, cst.SimpleString) else None
            site = replace(
                site,
                literal=literal,
                start=(position.start.line, position.start.column),
                end=(position.end.line, position.end.column),
            )
        self.sites[line] = site


def locate_docstrings(source: str) -> dict[int, DocstringSite]:
    """Map each ``def`` line of ``source`` to its docstring site."""
    wrapper = MetadataWrapper(cst.parse_module(source))
    locator = _DocstringLocator()
    wrapper.visit(locator)
    return locator.sites


def _quote_of(literal: str) -> tuple[str, str, str] | None:
    """Split a string literal into prefix, triple quote and body."""
    index = 0
    while index < len(literal) and literal[index].isalpha():
        index += 1
    prefix, rest = literal[:index], literal[index:]
    for quote in _TRIPLE_QUOTES:
        if rest.startswith(quote) and rest.endswith(quote) and len(rest) >= 6:
            return prefix, quote, rest[3:-3]
    return None


class FixSynthesizer:
    def __init__(self, graph: CallGraph, sources: Mapping[Path, str]) -> None:
        self.graph = graph
        self.sources = sources
        self._docstrings: dict[Path, dict[int, DocstringSite] | None] = {}

    def _sites(self, path: Path) -> dict[int, DocstringSite] | None:
        if path not in self._docstrings:
            source = self.sources.get(path)
            sites = None
            if source is not None:
                try:
                    sites = locate_docstrings(source)
                except cst.ParserSyntaxError as exc:
                    logger.debug("no fixes for %s: %s", path, exc)
            self._docstrings[path] = sites
        return self._docstrings[path]

    def _lines(self, path: Path) -> list[str]:
        return self.sources.get(path, "").splitlines()

    def attach(self, diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
        attached: list[Diagnostic] = []
        for diag in diagnostics:
            edit = self.fix_for(diag) if diag.code in FIXABLE_CODES else None
            attached.append(replace(diag, fix=edit) if edit is not None else diag)
        return attached

    def fix_for(self, diag: Diagnostic) -> TextEdit | None:
        node = self.graph.nodes.get(diag.node_id)
        if node is None:
            return None
        if node.annotation is not None and node.annotation.problems:
            return None
        match diag.code:
            case DiagnosticCode.MISSING_NEVER_DECLARATION:
                return self._insert_tags(node, [render_tag(NEVER)])
            case DiagnosticCode.MISSING_DECLARATION:
                return self._insert_tags(node, _tags_for(diag.error_types, diag.origins))
            case DiagnosticCode.UNDECLARED_ERROR:
                tags = _tags_for(diag.error_types, diag.origins)
                never_tag = _never_tag(node)
                if never_tag is not None:
                    return self._replace_tag(node, never_tag, tags)
                return self._insert_tags(node, tags)
            case DiagnosticCode.UNION_DECLARATION:
                tag = _union_tag(node, diag.error_types)
                if tag is None:
                    return None
                return self._replace_tag(node, tag, list(tag.expanded()))
            case _:
                return None

    def _insert_tags(self, node: FunctionNode, tags: list[str]) -> TextEdit | None:
        if node.kind in (ConstructKind.LAMBDA, ConstructKind.INLINE_LAMBDA):
            return self._insert_comment_tags(node, tags)
        sites = self._sites(node.path)
        if sites is None:
            return None
        site = sites.get(node.span.line)
        if site is None:
            return None
        path = str(node.path)
        if site.start is None:
            if site.body_line is None:
                return None
            return TextEdit(path, (site.body_line, 0), (site.body_line, 0), _new_docstring(site.indent, tags))
        if site.literal is None or site.end is None:
            return None
        parts = _quote_of(site.literal)
        if parts is None:
            return None
        prefix, quote, body = parts
        has_text = bool(body.strip())
        has_tags = node.annotation is not None and bool(node.annotation.tags)
        lines = self._lines(node.path)
        end_line, end_col = site.end
        closing = lines[end_line - 1][: end_col - 3] if 0 < end_line <= len(lines) else ""
        if end_line != site.start[0] and not closing.strip():
            block = ""
            if has_text and not has_tags:
                block = "\n"
            block += "".join(f"{site.indent}{tag}\n" for tag in tags)
            return TextEdit(path, (end_line, 0), (end_line, 0), block)
        if not has_text:
            return TextEdit(path, site.start, site.end, prefix + quote + "\n".join(tags) + quote)
        separator = "\n" if has_tags else "\n\n"
        rebuilt = prefix + quote + body.rstrip() + separator
        rebuilt += "".join(f"{site.indent}{tag}\n" for tag in tags)
        rebuilt += site.indent + quote
        return TextEdit(path, site.start, site.end, rebuilt)

    def _insert_comment_tags(self, node: FunctionNode, tags: list[str]) -> TextEdit | None:
        if not node.comment_lines:
            return None
        lines = self._lines(node.path)
        last = node.comment_lines[-1]
        if last > len(lines):
            return None
        text = lines[last - 1]
        indent = text[: len(text) - len(text.lstrip())]
        block = "".join(f"{indent}# {tag}\n" for tag in tags)
        return TextEdit(str(node.path), (last + 1, 0), (last + 1, 0), block)

    def _tag_source_line(self, node: FunctionNode, tag: ThrowsTag) -> int | None:
        if node.kind in (ConstructKind.LAMBDA, ConstructKind.INLINE_LAMBDA):
            if tag.line >= len(node.comment_lines):
                return None
            return node.comment_lines[tag.line]
        sites = self._sites(node.path)
        if sites is None:
            return None
        site = sites.get(node.span.line)
        if site is None or site.start is None:
            return None
        return site.start[0] + tag.line

    def _replace_tag(self, node: FunctionNode, tag: ThrowsTag, tags: list[str]) -> TextEdit | None:
        line_no = self._tag_source_line(node, tag)
        lines = self._lines(node.path)
        if line_no is None or not 0 < line_no <= len(lines):
            return None
        text = lines[line_no - 1]
        start = text.find("@throws")
        if start < 0:
            return None
        end = len(text)
        for quote in _TRIPLE_QUOTES:
            found = text.find(quote, start)
            if found >= 0:
                end = min(end, found)
        end = start + len(text[start:end].rstrip())
        lead = text[:start]
        if lead.strip() and not lead.strip().startswith("#"):
            # Tag shares its line with the opening quotes.
            site = (self._sites(node.path) or {}).get(node.span.line)
            lead = site.indent if site is not None else ""
        replacement = ("\n" + lead).join(tags)
        return TextEdit(str(node.path), (line_no, start), (line_no, end), replacement)


def _tags_for(error_types: tuple[str, ...], origins: tuple[Origin, ...]) -> list[str]:
    described = {origin.error: origin.describe() for origin in origins}
    return [render_tag(name, described.get(name, "")) for name in error_types]


def _never_tag(node: FunctionNode) -> ThrowsTag | None:
    if node.annotation is None:
        return None
    for tag in node.annotation.tags:
        if tag.types == (NEVER,):
            return tag
    return None


def _union_tag(node: FunctionNode, types: tuple[str, ...]) -> ThrowsTag | None:
    if node.annotation is None:
        return None
    for tag in node.annotation.union_tags:
        if tag.types == types:
            return tag
    return None


def _new_docstring(indent: str, tags: list[str]) -> str:
    if len(tags) == 1:
        return f'{indent}"""{tags[0]}"""\n'
    body = "".join(f"{indent}{tag}\n" for tag in tags)
    return f'{indent}"""\n{body}{indent}"""\n'


def attach_fixes(
    graph: CallGraph, sources: Mapping[Path, str], diagnostics: Iterable[Diagnostic]
) -> list[Diagnostic]:
    return FixSynthesizer(graph, sources).attach(diagnostics)
