from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

# (line, column): 1-based line, 0-based column.
Position = Tuple[int, int]


@dataclass(frozen=True)
class TextEdit:
    path: str
    start: Position
    end: Position
    replacement: str

    @property
    def is_insertion(self) -> bool:
        return self.start == self.end


@dataclass
class FixPlan:
    """Edits chosen for one source text, plus those deferred to a later pass."""

    source: str
    applied: List[TextEdit] = field(default_factory=list)
    deferred: List[TextEdit] = field(default_factory=list)


def _line_starts(source: str) -> list[int]:
    starts = [0]
    for line in source.splitlines(keepends=True):
        starts.append(starts[-1] + len(line))
    return starts


def _offset(position: Position, starts: list[int], source: str) -> int:
    line, column = position
    if line < 1:
        return 0
    if line > len(starts) - 1:
        return len(source)
    line_start = starts[line - 1]
    line_end = starts[line]
    return min(line_start + max(column, 0), line_end)


def apply_text_edits(source: str, edits: List[TextEdit]) -> FixPlan:
    """Apply every non-overlapping edit to ``source``.

    Edits are taken in position order; one that overlaps an already chosen
    edit is deferred. Insertions at the same point are kept in the order
    given.
    """
    starts = _line_starts(source)
    indexed = [
        (_offset(edit.start, starts, source), _offset(edit.end, starts, source), index, edit)
        for index, edit in enumerate(edits)
    ]
    indexed.sort(key=lambda item: (item[0], item[1], item[2]))
    chosen: list[tuple[int, int, int, TextEdit]] = []
    deferred: list[TextEdit] = []
    last_end = -1
    for start, end, index, edit in indexed:
        if start < last_end:
            deferred.append(edit)
            continue
        chosen.append((start, end, index, edit))
        last_end = max(last_end, end)
    text = source
    for start, end, _index, edit in reversed(chosen):
        text = text[:start] + edit.replacement + text[end:]
    return FixPlan(source=text, applied=[item[3] for item in chosen], deferred=deferred)
