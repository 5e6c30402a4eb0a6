"""Parser for ``@throws`` tags in docstrings and leading comments.

Two tag forms are recognized, one per line::

    @throws {ValueError} when the payload is malformed
    @throws {ReadTimeout | ConnectTimeout} when the upstream stalls

A union expands to one entry per member, each carrying the tag's
description. ``@throws {never}`` declares that the construct raises nothing
and must be the only tag.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from raisemap.analysis.error_types import NEVER, ErrorSet, ErrorType, canonical_error_name

_TAG_START_RE = re.compile(r"^\s*(?:#+\s*)?@throws\b")
_TAG_RE = re.compile(r"^\s*(?:#+\s*)?@throws\b\s*(?P<rest>.*)$")
_BODY_RE = re.compile(r"^\{(?P<types>[^{}]*)\}(?P<description>.*)$")
_TYPE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class ThrowsTag:
    line: int
    types: tuple[str, ...]
    description: str

    @property
    def is_union(self) -> bool:
        return len(self.types) > 1

    def expanded(self) -> tuple[str, ...]:
        """Render the tag as one single-type tag per union member."""
        return tuple(render_tag(name, self.description) for name in self.types)


@dataclass(frozen=True)
class AnnotationProblem:
    kind: str
    message: str
    line: int


@dataclass(frozen=True)
class Annotation:
    tags: tuple[ThrowsTag, ...]
    declared: ErrorSet | None
    problems: tuple[AnnotationProblem, ...] = ()

    @property
    def documented(self) -> bool:
        return self.declared is not None

    @property
    def declares_never(self) -> bool:
        return self.declared is not None and self.declared.is_never

    @property
    def union_tags(self) -> tuple[ThrowsTag, ...]:
        return tuple(tag for tag in self.tags if tag.is_union)

    def problems_of(self, kind: str) -> tuple[AnnotationProblem, ...]:
        return tuple(problem for problem in self.problems if problem.kind == kind)


def render_tag(type_text: str, description: str = "") -> str:
    tag = f"@throws {{{type_text}}}"
    return f"{tag} {description}" if description else tag


def has_throws_tag(text: str | None) -> bool:
    if not text:
        return False
    return any(_TAG_START_RE.match(line) for line in text.splitlines())


def _parse_tag(line_no: int, line: str) -> ThrowsTag | AnnotationProblem:
    match = _TAG_RE.match(line)
    if match is None:
        return AnnotationProblem("parse-error", "malformed @throws tag", line_no)
    rest = match.group("rest").strip()
    body = _BODY_RE.match(rest)
    if body is None:
        return AnnotationProblem(
            "parse-error",
            f"@throws tag must start with {{Type}}: {rest or '<empty>'}",
            line_no,
        )
    raw_types = body.group("types")
    members = [part.strip() for part in raw_types.split("|")]
    if not raw_types.strip():
        return AnnotationProblem("parse-error", "@throws tag has an empty type", line_no)
    for member in members:
        if not member:
            return AnnotationProblem(
                "parse-error", f"empty member in union {{{raw_types.strip()}}}", line_no
            )
        if not _TYPE_NAME_RE.match(member):
            return AnnotationProblem(
                "parse-error", f"invalid error type name {member!r}", line_no
            )
    return ThrowsTag(
        line=line_no,
        types=tuple(members),
        description=body.group("description").strip(),
    )


def parse_annotation(text: str | None) -> Annotation | None:
    """Parse the ``@throws`` tags of a docstring or comment block.

    Returns ``None`` when the text carries no tag at all. A malformed tag
    yields ``parse-error`` problems and an undeclared (``None``) set; mixing
    ``never`` with other types yields a ``declaration-conflict`` and keeps
    the other types.
    """
    if not has_throws_tag(text):
        return None
    assert text is not None
    tags: list[ThrowsTag] = []
    problems: list[AnnotationProblem] = []
    for line_no, line in enumerate(text.splitlines()):
        if not _TAG_START_RE.match(line):
            continue
        parsed = _parse_tag(line_no, line)
        if isinstance(parsed, AnnotationProblem):
            problems.append(parsed)
        else:
            tags.append(parsed)
    if problems:
        return Annotation(tags=tuple(tags), declared=None, problems=tuple(problems))

    entries: list[ErrorType] = []
    for tag in tags:
        for member in tag.types:
            entries.append(ErrorType(canonical_error_name(member), tag.description))
    names = [entry.name for entry in entries]
    if NEVER in names and any(name != NEVER for name in names):
        problems.append(
            AnnotationProblem(
                "declaration-conflict",
                "@throws {never} cannot be combined with other error types",
                next(tag.line for tag in tags if NEVER in tag.types),
            )
        )
        entries = [entry for entry in entries if entry.name != NEVER]
    return Annotation(tags=tuple(tags), declared=ErrorSet(entries), problems=tuple(problems))
