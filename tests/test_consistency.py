from __future__ import annotations

import textwrap

from raisemap.analysis.diagnostics import DiagnosticCode, Severity
from raisemap.analysis.engine import analyze_source
from raisemap.config import AnalysisConfig


def _diagnostics(source: str, path: str = "mod.py", **overrides):
    result = analyze_source(
        textwrap.dedent(source), path=path, config=AnalysisConfig(**overrides)
    )
    return list(result.diagnostics)


def test_never_declaration_with_plain_arithmetic_is_clean() -> None:
    diagnostics = _diagnostics(
        '''
        def add(a, b):
            """@throws {never}"""
            return a + b
        '''
    )
    assert diagnostics == []


def test_unresolved_parser_call_warns_once() -> None:
    source = """
        import json

        def load(text):
            return json.loads(text)
        """
    (diag,) = _diagnostics(source, unsafe_calls=Severity.WARN)
    assert diag.code is DiagnosticCode.UNSAFE_CALL
    assert diag.severity is Severity.WARN
    assert "json.loads" in diag.message
    assert diag.span.line == 5
    assert _diagnostics(source, unsafe_calls=Severity.OFF) == []
    (strict,) = _diagnostics(source, unsafe_calls=Severity.ERROR)
    assert strict.severity is Severity.ERROR


def test_undeclared_error_from_an_unhandled_call() -> None:
    diagnostics = _diagnostics(
        '''
        class ValidationError(Exception):
            pass


        class NetworkError(Exception):
            pass


        def fetch():
            """@throws {NetworkError} when the host is down"""
            raise NetworkError("down")


        def handle(data):
            """@throws {ValidationError} bad data"""
            if not data:
                raise ValidationError("empty")
            fetch()
        '''
    )
    (diag,) = diagnostics
    assert diag.code is DiagnosticCode.UNDECLARED_ERROR
    assert diag.severity is Severity.ERROR
    assert diag.construct == "handle"
    assert diag.error_types == ("NetworkError",)
    (origin,) = diag.origins
    assert origin.label == "call to `fetch`"
    assert origin.line == 19


def test_missing_never_declaration_offers_a_fix() -> None:
    (diag,) = _diagnostics(
        """
        def add(a, b):
            return a + b
        """,
        require_never=True,
    )
    assert diag.code is DiagnosticCode.MISSING_NEVER_DECLARATION
    assert diag.severity is Severity.ERROR
    assert diag.fix is not None
    assert diag.fix.replacement == '    """@throws {never}"""\n'
    assert (
        _diagnostics("def add(a, b):\n    return a + b\n", require_never=False) == []
    )


def test_generic_declaration_in_strict_mode() -> None:
    source = '''
        def fail():
            """@throws {Exception} always"""
            raise Exception("boom")
        '''
    (diag,) = _diagnostics(source, strict_mode=True)
    assert diag.code is DiagnosticCode.NON_SPECIFIC_ERROR_TYPE
    assert diag.severity is Severity.ERROR
    assert diag.fix is None
    assert _diagnostics(source, strict_mode=False) == []
    assert _diagnostics(source, path="tests/test_fail.py", strict_mode=True) == []


def test_missing_declaration_lists_every_inferred_type() -> None:
    (diag,) = _diagnostics(
        """
        def load(table, key):
            if key not in table:
                raise KeyError(key)
            if not key:
                raise ValueError(key)
            return table[key]
        """
    )
    assert diag.code is DiagnosticCode.MISSING_DECLARATION
    assert diag.error_types == ("KeyError", "ValueError")
    assert [origin.line for origin in diag.origins] == [4, 6]


def test_declared_but_unused_is_a_warning() -> None:
    (diag,) = _diagnostics(
        '''
        def quiet():
            """@throws {KeyError} never actually raised"""
            return 1
        '''
    )
    assert diag.code is DiagnosticCode.DECLARED_BUT_UNUSED
    assert diag.severity is Severity.WARN


def test_base_class_declaration_covers_subclasses() -> None:
    diagnostics = _diagnostics(
        '''
        class AppError(Exception):
            pass


        class NotFound(AppError):
            pass


        def find():
            """@throws {AppError} lookup failed"""
            raise NotFound()
        '''
    )
    assert diagnostics == []


def test_union_declaration_warns_with_a_fix() -> None:
    diagnostics = _diagnostics(
        '''
        def fetch(flag):
            """@throws {ReadTimeout | ConnectTimeout} upstream stalls"""
            if flag:
                raise ReadTimeout()
            raise ConnectTimeout()
        '''
    )
    (diag,) = diagnostics
    assert diag.code is DiagnosticCode.UNION_DECLARATION
    assert diag.severity is Severity.WARN
    assert diag.fixable


def test_parse_error_and_conflict() -> None:
    diagnostics = _diagnostics(
        '''
        def broken():
            """@throws ValueError"""
            raise ValueError()


        def mixed():
            """
            @throws {never}
            @throws {KeyError} missing
            """
            raise KeyError()
        '''
    )
    codes = [(diag.construct, diag.code) for diag in diagnostics]
    assert ("broken", DiagnosticCode.PARSE_ERROR) in codes
    assert ("broken", DiagnosticCode.MISSING_DECLARATION) in codes
    assert ("mixed", DiagnosticCode.DECLARATION_CONFLICT) in codes
    assert len([code for construct, code in codes if construct == "mixed"]) == 1


def test_error_bubbling_can_be_disallowed() -> None:
    diagnostics = _diagnostics(
        '''
        def fail():
            """@throws {KeyError} missing"""
            raise KeyError()


        def caller():
            """@throws {KeyError} missing"""
            fail()
        ''',
        allow_error_bubbling=False,
    )
    (diag,) = diagnostics
    assert diag.code is DiagnosticCode.UNHANDLED_PROPAGATION
    assert diag.construct == "caller"


def test_unknown_raise_suppresses_unused_and_never_checks() -> None:
    diagnostics = _diagnostics(
        '''
        def rethrow(exc):
            """@throws {KeyError} maybe"""
            raise exc
        '''
    )
    (diag,) = diagnostics
    assert diag.code is DiagnosticCode.UNSAFE_CALL


def test_annotated_bound_lambda_is_checked() -> None:
    diagnostics = _diagnostics(
        """
        # @throws {never}
        pick = lambda table, key: lookup(table, key)


        def lookup(table, key):
            \"\"\"@throws {KeyError} missing\"\"\"
            raise KeyError(key)
        """
    )
    (diag,) = diagnostics
    assert diag.code is DiagnosticCode.UNDECLARED_ERROR
    assert diag.construct == "pick"
    assert diag.fixable


def test_syntax_error_is_reported() -> None:
    (diag,) = _diagnostics("def broken(:\n    pass\n")
    assert diag.code is DiagnosticCode.SYNTAX_ERROR
    assert diag.severity is Severity.ERROR


def test_strict_mode_ignores_tests_directories_above_the_project(tmp_path) -> None:
    source = '''
        def fail():
            """@throws {Exception} always"""
            raise Exception("boom")
        '''
    codes = [
        diag.code
        for diag in _diagnostics(source, path="/home/dev/tests/proj/src/app.py", strict_mode=True)
    ]
    assert codes == [DiagnosticCode.NON_SPECIFIC_ERROR_TYPE]

    root = tmp_path / "tests" / "proj"
    result = analyze_source(
        textwrap.dedent(source),
        path=root / "src" / "app.py",
        config=AnalysisConfig(strict_mode=True, project_root=root),
    )
    assert [diag.code for diag in result.diagnostics] == [DiagnosticCode.NON_SPECIFIC_ERROR_TYPE]
    result = analyze_source(
        textwrap.dedent(source),
        path=root / "tests" / "helpers.py",
        config=AnalysisConfig(strict_mode=True, project_root=root),
    )
    assert list(result.diagnostics) == []
