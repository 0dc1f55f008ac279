"""
SymPy view of expression trees and IR, used to check that a rewrite did not
change what a function computes.
"""

import sympy

from errors import OptimizerError
from expression import ExprNode
from ir import ADD, MATMUL, MUL, NEG, POW, SUB, TRUE_DIV, Assign, Call, Const, Function, Return, TupleValue, VarValue
from matmul import MATMUL_REORDERING

matmul = sympy.Function("matmul")


def _matmul(*operands):
    flat = []
    for operand in operands:
        if isinstance(operand, sympy.Basic) and operand.func == matmul:
            flat.extend(operand.args)
        else:
            flat.append(operand)
    return matmul(*flat)


BINARY = {
    ADD: lambda a, b: a + b,
    SUB: lambda a, b: a - b,
    MUL: lambda a, b: a * b,
    TRUE_DIV: lambda a, b: a / b,
    POW: lambda a, b: a ** b,
    MATMUL: _matmul,
}


def _apply(op: str, args):
    if op in BINARY and len(args) == 2:
        return BINARY[op](*args)
    if op == NEG and len(args) == 1:
        return -args[0]
    return sympy.Function(op)(*args)


def node_to_sympy(node: ExprNode) -> sympy.Expr:
    if node.is_leaf():
        if node.is_variable():
            return sympy.Symbol(node.value.var.name)
        if node.is_const():
            return sympy.sympify(node.const_value)
        if node.value is not None:
            return value_to_sympy(node.value)
        raise OptimizerError("cannot convert an empty leaf")
    args = [node_to_sympy(c) for c in (node.left, node.right) if c is not None]
    return _apply(node.op, args)


def value_to_sympy(value, env=None) -> sympy.Expr:
    env = env if env is not None else {}
    if isinstance(value, VarValue):
        return env.get(value.var.id, sympy.Symbol(value.var.name))
    if isinstance(value, Const):
        if isinstance(value.value, tuple):
            return sympy.Symbol(f"const{value.id}")
        return sympy.sympify(value.value)
    if isinstance(value, TupleValue):
        return sympy.Tuple(*[value_to_sympy(v, env) for v in value.items])
    if isinstance(value, Call):
        args = [value_to_sympy(a, env) for a in value.args]
        if value.op == MATMUL_REORDERING and len(args) == 2 and isinstance(args[1], sympy.Tuple):
            return _matmul(*args[1].args)
        return _apply(value.op, args)
    raise OptimizerError(f"cannot convert {value!r}")


def function_to_sympy(function: Function) -> dict:
    """Every assigned variable and the return value, in terms of the parameters."""
    env = {}
    results = {}
    for instr in function.body:
        if isinstance(instr, Assign):
            env[instr.lhs.id] = value_to_sympy(instr.rhs, env)
            results[instr.lhs.name] = env[instr.lhs.id]
        elif isinstance(instr, Return) and instr.value is not None:
            results["return"] = value_to_sympy(instr.value, env)
    return results


def equivalent(a: sympy.Expr, b: sympy.Expr) -> bool:
    return sympy.simplify(a - b) == 0


def verify_function(before: Function, after: Function) -> list:
    """Names whose value differs between the two versions of a function."""
    old = function_to_sympy(before)
    new = function_to_sympy(after)
    return [name for name, expr in old.items() if name in new and not equivalent(expr, new[name])]
