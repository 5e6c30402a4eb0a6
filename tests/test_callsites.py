from __future__ import annotations

import ast
import textwrap
from pathlib import Path

import pytest

from raisemap.analysis.callee_resolution import ResolvedLocal, ResolvedSafe, Unresolved
from raisemap.analysis.callsites import _Construct, _ConstructCollector, collect_module, is_test_path
from raisemap.analysis.error_types import UNKNOWN_ERROR
from raisemap.analysis.model import ConstructKind
from raisemap.config import AnalysisConfig
from raisemap.exceptions import ConstructInputError


def _collect(source: str, path: str = "mod.py", **overrides):
    source = textwrap.dedent(source)
    module, failures = collect_module(
        ast.parse(source), path=Path(path), source=source, config=AnalysisConfig(**overrides)
    )
    return {node.qualname: node for node in module.nodes}, failures


def test_construct_kinds_and_qualnames() -> None:
    nodes, failures = _collect(
        """
        class Store:
            def __init__(self):
                pass

            def get(self):
                return 1

        def top():
            def nested():
                return 2
            return nested

        pick = lambda seq: seq[0]
        values = sorted([3, 1], key=lambda item: item)
        """
    )
    assert failures == []
    assert nodes["Store.__init__"].kind is ConstructKind.CONSTRUCTOR
    assert nodes["Store.get"].kind is ConstructKind.METHOD
    assert nodes["Store.get"].class_qual == "Store"
    assert nodes["top"].kind is ConstructKind.FUNCTION
    assert nodes["top.nested"].kind is ConstructKind.FUNCTION
    assert nodes["pick"].kind is ConstructKind.LAMBDA
    (inline,) = [node for node in nodes.values() if node.kind is ConstructKind.INLINE_LAMBDA]
    assert inline.qualname.startswith("<lambda:")
    assert not inline.checked
    assert not nodes["pick"].checked


def test_duplicate_definitions_get_unique_qualnames() -> None:
    nodes, _ = _collect(
        """
        def f():
            return 1

        def f():
            return 2
        """
    )
    assert set(nodes) == {"f", "f#2"}


def test_docstring_and_comment_annotations() -> None:
    nodes, _ = _collect(
        '''
        def load(key):
            """Load one key.

            @throws {KeyError} missing key
            """
            return key

        # Pick the first item.
        # @throws {IndexError} empty sequence
        first = lambda seq: seq[0]
        '''
    )
    assert nodes["load"].declared.names() == ("KeyError",)
    assert nodes["first"].declared.names() == ("IndexError",)
    assert nodes["first"].comment_lines == (9, 10)
    assert nodes["first"].checked


def test_call_sites_carry_try_guards() -> None:
    nodes, _ = _collect(
        """
        def helper():
            return 1

        def run():
            try:
                helper()
            except KeyError:
                recover()
            try:
                helper()
            except Exception:
                pass
            len([])
        """
    )
    sites = nodes["run"].call_sites
    assert [site.callee for site in sites] == ["helper", "recover", "helper", "len"]
    typed, in_handler, broad, safe = sites
    assert typed.caught == ("KeyError",)
    assert not typed.handled
    assert isinstance(typed.resolution, ResolvedLocal)
    assert isinstance(in_handler.resolution, Unresolved)
    assert not in_handler.handled
    assert broad.handled
    assert isinstance(safe.resolution, ResolvedSafe)


def test_async_constructs_are_collected() -> None:
    nodes, _ = _collect(
        """
        class Client:
            async def fetch(self):
                return await self.read()

            async def read(self):
                raise TimeoutError()

        async def main():
            return 1
        """
    )
    assert nodes["Client.fetch"].kind is ConstructKind.METHOD
    assert nodes["main"].kind is ConstructKind.FUNCTION
    (site,) = nodes["Client.fetch"].call_sites
    assert isinstance(site.resolution, ResolvedLocal)
    (throw,) = nodes["Client.read"].throws
    assert throw.error.name == "TimeoutError"


def test_except_star_guards_like_except() -> None:
    nodes, _ = _collect(
        """
        def helper():
            return 1

        def run():
            try:
                helper()
            except* KeyError:
                pass
            try:
                raise ValueError()
            except* Exception:
                pass
        """
    )
    (site,) = nodes["run"].call_sites
    assert site.caught == ("KeyError",)
    assert not site.handled
    (throw,) = nodes["run"].throws
    assert throw.handled


def test_nested_bodies_are_not_attributed_to_the_parent() -> None:
    nodes, _ = _collect(
        """
        def outer():
            def inner():
                boom()
            return inner
        """
    )
    assert nodes["outer"].call_sites == ()
    assert [site.callee for site in nodes["outer.inner"].call_sites] == ["boom"]


def test_direct_throws() -> None:
    nodes, _ = _collect(
        """
        import errors

        def fail(flag, exc):
            if flag == 1:
                raise ValueError("bad")
            if flag == 2:
                raise errors.NetworkError
            if flag == 3:
                raise exc
            try:
                parse()
            except KeyError:
                raise
        """
    )
    names = [throw.error.name for throw in nodes["fail"].throws]
    assert names == ["ValueError", "NetworkError", UNKNOWN_ERROR]
    assert [site.callee for site in nodes["fail"].call_sites] == ["parse"]


def test_raised_factory_call_is_a_call_site() -> None:
    nodes, _ = _collect(
        """
        def make_error():
            return ValueError("x")

        def fail():
            raise make_error()

        def fail_unknown():
            raise build_error()
        """
    )
    fail = nodes["fail"]
    assert [site.callee for site in fail.call_sites] == ["make_error"]
    assert [throw.error.name for throw in fail.throws] == [UNKNOWN_ERROR]
    unknown = nodes["fail_unknown"]
    assert unknown.throws == ()
    assert [site.callee for site in unknown.call_sites] == ["build_error"]


def test_inline_lambda_passed_to_handler_is_absorbed() -> None:
    nodes, _ = _collect(
        """
        def run():
            return suppress_errors(lambda: fetch())
        """,
        error_handlers=frozenset({"suppress_errors"}),
    )
    (inline,) = [node for node in nodes.values() if node.kind is ConstructKind.INLINE_LAMBDA]
    assert inline.absorbed
    (site,) = nodes["run"].call_sites
    assert site.callee == "suppress_errors"


def test_strict_applicability_skips_test_files() -> None:
    nodes, _ = _collect("def f():\n    return 1\n", strict_mode=True)
    assert nodes["f"].strict_applicable
    nodes, _ = _collect("def f():\n    return 1\n", path="tests/test_mod.py", strict_mode=True)
    assert not nodes["f"].strict_applicable
    assert is_test_path(Path("pkg/test_io.py"))
    assert not is_test_path(Path("pkg/io.py"))


def test_test_path_is_relative_to_the_project_root(tmp_path) -> None:
    root = tmp_path / "tests" / "proj"
    config = AnalysisConfig(project_root=root)
    assert not is_test_path(root / "src" / "app.py", config)
    assert is_test_path(root / "tests" / "helpers.py", config)
    assert is_test_path(Path("tests/helpers.py"))
    assert not is_test_path(Path("/home/dev/tests/proj/app.py"))


def test_construct_without_position_fails_alone() -> None:
    collector = _ConstructCollector(
        path=Path("mod.py"),
        source_lines=[],
        parents={},
        resolver=None,
        lambda_ids={},
        config=AnalysisConfig(),
        is_test=False,
    )

    node = ast.parse("def broken():\n    pass\n").body[0]
    del node.lineno
    construct = _Construct(node, "broken", ConstructKind.FUNCTION, ("broken",), None)

    with pytest.raises(ConstructInputError):
        collector.build(construct)
