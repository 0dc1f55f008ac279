# File: tests/test_parser.py

import ast
import textwrap

import pytest

from conftest import CT, function_source
from errors import LinkError, ParseError
from ir import MUL, Assign, Call, Return
from optimizer import OPT_DECORATORS
from parser import FunctionExtractor, unparse_function


def extract(src: str, decorators=None):
    extractor = FunctionExtractor(decorators=decorators)
    _, functions = extractor.extract(textwrap.dedent(src))
    return functions, extractor.skipped


# ─── 1) Selection ──────────────────────────────────────────────────────────────

def test_only_decorated_functions_are_lowered():
    functions, skipped = extract("""
        @mhe_cipher_opt
        def f(a: int, b: int):
            return a + b

        def g(a: int, b: int):
            return a + b

        @passes.reorder_matmul
        def h(a: int, b: int):
            return a * b

        class C:
            @mhe_cipher_opt
            def m(self, a: int):
                return a
    """, OPT_DECORATORS)
    assert [f.name for f in functions] == ["f", "h"]
    assert functions[1].has_attribute("reorder_matmul")
    assert skipped == {}


def test_without_filter_every_function_is_lowered():
    functions, _ = extract("""
        def f(a: int):
            return a

        def g(a: int):
            return a
    """)
    assert [f.name for f in functions] == ["f", "g"]


# ─── 2) Lowering ───────────────────────────────────────────────────────────────

def test_lowered_body(lower):
    function = lower(function_source('"""doc"""', "r = a * x", "return r"))
    assign, ret = function.body
    assert isinstance(assign, Assign) and isinstance(ret, Return)
    assert isinstance(assign.rhs, Call) and assign.rhs.op == MUL
    assert assign.lhs.type.name == CT
    assert ret.value.var is assign.lhs


def test_annotated_assignment_keeps_declared_type(lower):
    function = lower(function_source("r: Sharetensor = a * x"))
    assert function.body[0].lhs.type.name == "Sharetensor"


def test_helper_calls_are_lowered_without_type(lower):
    function = lower(function_source("foo(a, x)"))
    call = function.body[0]
    assert call.op == "foo"
    assert call.type is None


@pytest.mark.parametrize("body, error, lineno", [
    ("if a:\n        return a", ParseError, 2),
    ("return z", ParseError, 2),
    ("r = a\n    r, t = a, b", ParseError, 3),
    ("r = foo(a)\n    return r + a", ParseError, 3),
    ("return a @ b", LinkError, None),
])
def test_unsupported_functions_are_skipped(body, error, lineno):
    src = f"def f(a: int, b: int):\n    {body}\n"
    functions, skipped = extract(src)
    assert functions == []
    assert isinstance(skipped["f"], error)
    if lineno is not None:
        assert skipped["f"].lineno == lineno
        assert str(skipped["f"]).startswith(f"line {lineno}: ")


def test_skipping_one_function_keeps_the_others():
    functions, skipped = extract("""
        def f(a: int):
            while a:
                pass

        def g(a: int):
            return -a
    """)
    assert [f.name for f in functions] == ["g"]
    assert list(skipped) == ["f"]


# ─── 3) Printing back ──────────────────────────────────────────────────────────

def test_unparse_round_trip(lower):
    src = textwrap.dedent(f"""
        @mhe_cipher_opt
        def f(mpc: MPCEnv, a: int, x: {CT}) -> {CT}:
            r = a * x + 2
            t = (r, 1.5)
            foo(r)
            return -r
    """)
    assert unparse_function(lower(src)) == ast.unparse(ast.parse(src))
