from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import tomllib

from raisemap.analysis.diagnostics import Severity
from raisemap.exceptions import ConfigError

DEFAULT_CONFIG_NAME = "raisemap.toml"
PYPROJECT_NAME = "pyproject.toml"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

DEFAULT_EXCLUDE_DIRS = frozenset(
    {".git", ".hg", ".tox", ".venv", "venv", "__pycache__", "build", "dist", "node_modules"}
)

# Calls that are treated as non-raising when nothing else resolves them.
DEFAULT_SAFE_CALLS = frozenset(
    {
        "abs",
        "all",
        "any",
        "bool",
        "callable",
        "dict",
        "dir",
        "enumerate",
        "filter",
        "frozenset",
        "hasattr",
        "id",
        "isinstance",
        "issubclass",
        "iter",
        "len",
        "list",
        "map",
        "max",
        "min",
        "object",
        "print",
        "range",
        "repr",
        "reversed",
        "set",
        "sorted",
        "str",
        "sum",
        "super",
        "tuple",
        "type",
        "vars",
        "zip",
        "logger.*",
        "logging.*",
        "*.append",
        "*.extend",
        "*.items",
        "*.keys",
        "*.values",
        "*.copy",
        "*.join",
        "*.lower",
        "*.upper",
        "*.strip",
        "*.startswith",
        "*.endswith",
    }
)

_KEY_ALIASES = {
    "requireNever": "require_never",
    "allowErrorBubbling": "allow_error_bubbling",
    "unsafeCalls": "unsafe_calls",
    "errorHandlers": "error_handlers",
    "genericWrappers": "generic_wrappers",
    "strictMode": "strict_mode",
    "safeCalls": "safe_calls",
}


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    """Return the raw raisemap table.

    An explicit ``config_path`` may be a ``raisemap.toml`` (``[raisemap]``
    table) or a ``pyproject.toml`` (``[tool.raisemap]``). Without one,
    ``raisemap.toml`` in ``root`` wins over ``pyproject.toml``.
    """
    if config_path is not None:
        return _section(_load_toml(config_path))
    base = root if root is not None else Path.cwd()
    section = _section(_load_toml(base / DEFAULT_CONFIG_NAME))
    if section:
        return section
    return _section(_load_toml(base / PYPROJECT_NAME))


def _section(data: TomlTable) -> TomlTable:
    section = data.get("raisemap")
    if isinstance(section, dict):
        return section
    tool = data.get("tool")
    if isinstance(tool, dict):
        section = tool.get("raisemap")
        if isinstance(section, dict):
            return section
    return {}


def raisemap_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    return normalize_keys(load_config(root=root, config_path=config_path))


def normalize_keys(section: TomlTable) -> TomlTable:
    normalized: TomlTable = {}
    for key, value in section.items():
        normalized[_KEY_ALIASES.get(key, key)] = value
    return normalized


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_severity(value: TomlValue) -> Severity:
    if isinstance(value, Severity):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text == "warning":
            text = "warn"
        try:
            return Severity(text)
        except ValueError:
            pass
    raise ConfigError("unsafe_calls", value, "one of 'error', 'warn', 'off'")


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def name_matches(name: str, names: frozenset[str]) -> bool:
    if name in names:
        return True
    return "." in name and name.rsplit(".", 1)[-1] in names


@dataclass(frozen=True)
class AnalysisConfig:
    require_never: bool = True
    allow_error_bubbling: bool = True
    unsafe_calls: Severity = Severity.WARN
    error_handlers: frozenset[str] = frozenset()
    generic_wrappers: frozenset[str] = frozenset()
    strict_mode: bool = False
    safe_calls: frozenset[str] = DEFAULT_SAFE_CALLS
    exclude_dirs: frozenset[str] = DEFAULT_EXCLUDE_DIRS
    project_root: Path | None = field(default=None, compare=False)

    def is_ignored_path(self, path: Path) -> bool:
        parts = set(path.parts)
        return bool(self.exclude_dirs & parts)

    def project_relative(self, path: Path) -> Path | None:
        """``path`` relative to the project root, or ``None`` outside it.

        Without a root, relative paths are taken as given and absolute ones
        are outside.
        """
        if self.project_root is None:
            return None if path.is_absolute() else path
        try:
            return path.resolve().relative_to(self.project_root.resolve())
        except ValueError:
            return None

    def is_handler(self, name: str) -> bool:
        return name_matches(name, self.error_handlers)

    def is_wrapper(self, name: str) -> bool:
        return name_matches(name, self.generic_wrappers)

    def is_safe_call(self, name: str) -> bool:
        if name in self.safe_calls:
            return True
        return any(
            fnmatch.fnmatchcase(name, pattern)
            for pattern in self.safe_calls
            if "*" in pattern
        )


def config_from_payload(
    payload: TomlTable, *, project_root: Path | None = None
) -> AnalysisConfig:
    """Build an ``AnalysisConfig`` from a merged TOML/CLI payload.

    @throws {ConfigError} an ``unsafe_calls`` value outside error/warn/off
    """
    payload = normalize_keys(payload)
    defaults = AnalysisConfig()
    safe_calls = defaults.safe_calls
    if "safe_calls" in payload:
        safe_calls = frozenset(_normalize_name_list(payload.get("safe_calls")))
    if payload.get("extend_safe_calls") is not None:
        safe_calls = safe_calls | frozenset(
            _normalize_name_list(payload.get("extend_safe_calls"))
        )
    exclude_dirs = defaults.exclude_dirs
    if payload.get("exclude") is not None:
        exclude_dirs = exclude_dirs | frozenset(_normalize_name_list(payload.get("exclude")))
    return AnalysisConfig(
        require_never=(
            _as_bool(payload["require_never"])
            if payload.get("require_never") is not None
            else defaults.require_never
        ),
        allow_error_bubbling=(
            _as_bool(payload["allow_error_bubbling"])
            if payload.get("allow_error_bubbling") is not None
            else defaults.allow_error_bubbling
        ),
        unsafe_calls=(
            _as_severity(payload["unsafe_calls"])
            if payload.get("unsafe_calls") is not None
            else defaults.unsafe_calls
        ),
        error_handlers=frozenset(_normalize_name_list(payload.get("error_handlers"))),
        generic_wrappers=frozenset(_normalize_name_list(payload.get("generic_wrappers"))),
        strict_mode=(
            _as_bool(payload["strict_mode"])
            if payload.get("strict_mode") is not None
            else defaults.strict_mode
        ),
        safe_calls=safe_calls,
        exclude_dirs=exclude_dirs,
        project_root=project_root,
    )
