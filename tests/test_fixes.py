from __future__ import annotations

import textwrap
from pathlib import Path

from raisemap.analysis.diagnostics import FIXABLE_CODES, DiagnosticCode, Severity
from raisemap.analysis.engine import analyze_source, analyze_sources, fix_sources
from raisemap.refactor.fixes import locate_docstrings

PATH = Path("mod.py")


def _fix(source: str) -> str:
    fixed, _result, _applied = fix_sources({PATH: textwrap.dedent(source).lstrip()})
    return fixed[PATH]


def test_locate_docstrings() -> None:
    source = textwrap.dedent(
        '''
        def documented():
            """Summary."""
            return 1

        def bare():
            return 2

        def inline(): return 3
        '''
    ).lstrip()
    sites = locate_docstrings(source)
    assert sites[1].literal == '"""Summary."""'
    assert sites[1].start == (2, 4)
    assert sites[1].indent == "    "
    assert sites[5].literal is None
    assert sites[5].body_line == 6
    assert sites[8].body_line is None


def test_missing_never_inserts_a_docstring() -> None:
    fixed = _fix(
        """
        def add(a, b):
            return a + b
        """
    )
    assert fixed == 'def add(a, b):\n    """@throws {never}"""\n    return a + b\n'


def test_missing_declaration_extends_a_multiline_docstring() -> None:
    fixed = _fix(
        '''
        def load(table, key):
            """Load one entry.

            Returns the value.
            """
            raise KeyError(key)
        '''
    )
    assert fixed == textwrap.dedent(
        '''
        def load(table, key):
            """Load one entry.

            Returns the value.

            @throws {KeyError} raised by `raise KeyError` (line 6)
            """
            raise KeyError(key)
        '''
    ).lstrip()


def test_missing_declaration_rewrites_a_one_line_docstring() -> None:
    fixed = _fix(
        '''
        def load(table, key):
            """Load one entry."""
            raise KeyError(key)
        '''
    )
    assert fixed == textwrap.dedent(
        '''
        def load(table, key):
            """Load one entry.

            @throws {KeyError} raised by `raise KeyError` (line 3)
            """
            raise KeyError(key)
        '''
    ).lstrip()


def test_undeclared_error_replaces_a_never_tag() -> None:
    fixed = _fix(
        '''
        def lookup(table, key):
            """@throws {KeyError} missing key"""
            raise KeyError(key)


        def describe(table, key):
            """Describe one entry.

            @throws {never}
            """
            return str(lookup(table, key))
        '''
    )
    assert "    @throws {KeyError} raised by call to `lookup` (line 11)\n" in fixed
    assert "{never}" not in fixed


def test_undeclared_error_adds_a_tag() -> None:
    fixed = _fix(
        '''
        def fetch(flag):
            """Fetch.

            @throws {KeyError} missing key
            """
            if flag:
                raise KeyError(flag)
            raise OSError(flag)
        '''
    )
    assert fixed.splitlines()[3:6] == [
        "    @throws {KeyError} missing key",
        "    @throws {OSError} raised by `raise OSError` (line 8)",
        '    """',
    ]


def test_union_tag_is_expanded_losslessly() -> None:
    fixed = _fix(
        '''
        def fetch(flag):
            """Fetch.

            @throws {ReadTimeout | ConnectTimeout} upstream stalls
            """
            if flag:
                raise ReadTimeout()
            raise ConnectTimeout()
        '''
    )
    assert fixed.splitlines()[3:5] == [
        "    @throws {ReadTimeout} upstream stalls",
        "    @throws {ConnectTimeout} upstream stalls",
    ]
    result = analyze_source(fixed, path=PATH)
    (node,) = result.find("fetch")
    assert node.declared.names() == ("ReadTimeout", "ConnectTimeout")
    assert node.declared.get("ConnectTimeout").description == "upstream stalls"
    assert result.diagnostics == ()


def test_bound_lambda_comment_tags() -> None:
    fixed = _fix(
        '''
        # @throws {never}
        pick = lambda table, key: lookup(table, key)


        def lookup(table, key):
            """@throws {KeyError} missing key"""
            raise KeyError(key)
        '''
    )
    assert fixed.splitlines()[0].startswith("# @throws {KeyError} raised by call to `lookup`")


def test_fixes_are_idempotent() -> None:
    source = textwrap.dedent(
        '''
        class NotFound(Exception):
            pass


        def lookup(table, key):
            if key not in table:
                raise NotFound(key)
            return table[key]


        def total(values):
            return sum(values)


        def describe(table, key):
            """Describe one entry.

            @throws {never}
            """
            return str(lookup(table, key))
        '''
    ).lstrip()
    fixed, result, applied = fix_sources({PATH: source})
    assert applied == 3
    fixable = [
        diag
        for diag in result.diagnostics
        if diag.severity is Severity.ERROR
        and diag.code in FIXABLE_CODES
    ]
    assert fixable == []
    again, _result, applied_again = fix_sources(fixed)
    assert again == fixed
    assert applied_again == 0
    assert analyze_sources(fixed).diagnostics == ()


def test_overlapping_fixes_are_spread_over_passes() -> None:
    fixed = _fix(
        '''
        def fail(flag):
            """@throws {never}"""
            if flag:
                raise KeyError(flag)
            raise OSError(flag)
        '''
    )
    result = analyze_source(fixed, path=PATH)
    (node,) = result.find("fail")
    assert set(node.declared.names()) == {"KeyError", "OSError"}
    assert result.diagnostics == ()


def test_malformed_tag_gets_no_fix() -> None:
    source = textwrap.dedent(
        '''
        def f():
            """Load things.

            @throws ValueError missing braces
            """
            return 1
        '''
    ).lstrip()
    fixed, result, applied = fix_sources({PATH: source})
    assert fixed[PATH] == source
    assert applied == 0
    codes = {diag.code for diag in result.diagnostics}
    assert DiagnosticCode.PARSE_ERROR in codes
    assert not [diag for diag in result.diagnostics if diag.fixable]


def test_only_fixable_codes_carry_edits() -> None:
    result = analyze_source(
        textwrap.dedent(
            '''
            import json

            def load(text):
                """@throws {Exception} anything"""
                return json.loads(text)

            def add(a, b):
                return a + b
            '''
        ),
        path=PATH,
    )
    assert any(diag.fixable for diag in result.diagnostics)
    for diag in result.diagnostics:
        if diag.fixable:
            assert diag.code in FIXABLE_CODES
