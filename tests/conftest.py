import textwrap

import pytest

from builder import parse_instruction
from host import SecureTypeOracle
from ir import Module
from parser import FunctionExtractor

CT = "Ciphertensor[Ciphertext]"
PT = "Ciphertensor[Plaintext]"
ST = "Sharetensor"

HEADER = f"def f(mpc: MPCEnv, a: int, b: int, c: int, x: {CT}, y: {CT}, p: {CT}, q: {PT}, s: {ST}):\n"


def function_source(*lines: str) -> str:
    return HEADER + "".join(f"    {line}\n" for line in lines)


@pytest.fixture
def module():
    return Module()


@pytest.fixture
def oracle():
    return SecureTypeOracle()


@pytest.fixture
def lower(module):
    def _lower(src: str):
        _, functions = FunctionExtractor(module).extract(textwrap.dedent(src))
        return functions[0]
    return _lower


@pytest.fixture
def trees(lower):
    """One tree per body line of the standard test function."""
    def _trees(*lines: str):
        function = lower(function_source(*lines))
        return [parse_instruction(instr) for instr in function.body]
    return _trees
