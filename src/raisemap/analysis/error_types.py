"""Error types and immutable error sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

NEVER = "never"
UNKNOWN_ERROR = "unknown-error"
GENERIC_BASE_NAMES = frozenset({"Exception", "BaseException"})


def canonical_error_name(text: str) -> str:
    """Return the comparison name for a spelled error type.

    ``errors.NetworkError`` and ``NetworkError`` name the same type.
    """
    name = text.strip()
    if name in {NEVER, UNKNOWN_ERROR}:
        return name
    return name.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class ErrorType:
    name: str
    description: str = field(default="", compare=False)

    @property
    def is_never(self) -> bool:
        return self.name == NEVER

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_ERROR


class ErrorSet:
    """An immutable set of ``ErrorType`` keyed by name.

    Merging keeps first-seen order and lets the last description win.
    ``never`` is only ever the sole member; it disappears as soon as any other
    type joins the set.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[ErrorType] = ()) -> None:
        merged: dict[str, ErrorType] = {}
        for entry in entries:
            merged[entry.name] = entry
        if NEVER in merged and len(merged) > 1:
            del merged[NEVER]
        self._entries = merged

    @classmethod
    def of(cls, *names: str) -> ErrorSet:
        return cls(ErrorType(name) for name in names)

    @classmethod
    def never(cls) -> ErrorSet:
        return cls((ErrorType(NEVER),))

    @classmethod
    def unknown(cls) -> ErrorSet:
        return cls((ErrorType(UNKNOWN_ERROR),))

    def __iter__(self) -> Iterator[ErrorType]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, ErrorType):
            return item.name in self._entries
        return item in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ErrorSet):
            return NotImplemented
        return self._entries.keys() == other._entries.keys()

    def __hash__(self) -> int:
        return hash(frozenset(self._entries))

    def __repr__(self) -> str:
        return f"ErrorSet({{{', '.join(self._entries)}}})"

    def __or__(self, other: ErrorSet) -> ErrorSet:
        return self.union(other)

    @property
    def is_never(self) -> bool:
        return NEVER in self._entries

    @property
    def has_unknown(self) -> bool:
        return UNKNOWN_ERROR in self._entries

    def names(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def get(self, name: str) -> ErrorType | None:
        return self._entries.get(name)

    def union(self, *others: ErrorSet) -> ErrorSet:
        entries = list(self._entries.values())
        for other in others:
            entries.extend(other)
        return ErrorSet(entries)

    def without(self, names: Iterable[str]) -> ErrorSet:
        dropped = set(names)
        return ErrorSet(entry for entry in self if entry.name not in dropped)

    def known(self) -> ErrorSet:
        """Members other than ``never`` and ``unknown-error``."""
        return self.without((NEVER, UNKNOWN_ERROR))

    def issuperset(self, other: ErrorSet) -> bool:
        return self._entries.keys() >= other._entries.keys()

    def render(self) -> str:
        if not self._entries:
            return "{}"
        return "{" + ", ".join(self._entries) + "}"
