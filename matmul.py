"""
Replaces chains of directly nested matrix multiplications, e.g.
`(a @ b) @ (c @ d)`, with one call to the runtime helper that picks the
cheapest multiplication order: `matmul_reordering(mpc, (a, b, c, d))`.
"""

import logging
from typing import List

from ir import MATMUL, TUPLE, Assign, Call, Func, Function, Module, Return, TupleValue, Value

logger = logging.getLogger(__name__)

MATMUL_REORDERING = "matmul_reordering"


def is_matmul_call(value) -> bool:
    return isinstance(value, Call) and value.op == MATMUL and len(value.args) > 0


def is_consecutive_matmul(value) -> bool:
    return is_matmul_call(value) and any(is_matmul_call(arg) for arg in value.args)


def consecutive_matmul_args(call: Call) -> List[Value]:
    """Operands of a matmul chain, left to right."""
    args = []
    for arg in call.args[:2]:
        if is_matmul_call(arg):
            args.extend(consecutive_matmul_args(arg))
        else:
            args.append(arg)
    return args


class MatmulReorderer:
    def __init__(self, module: Module, mpc_value: Value):
        self.module = module
        self.mpc_value = mpc_value
        self.replaced = 0

    def transform(self, value: Value) -> Value:
        if isinstance(value, TupleValue):
            value.items = [self.transform(item) for item in value.items]
            return value
        if not isinstance(value, Call):
            return value

        if is_consecutive_matmul(value):
            operands = [self.transform(arg) for arg in consecutive_matmul_args(value)]
            args = self.module.tuple_value(operands)
            helper = Func(MATMUL_REORDERING, (self.mpc_value.type, TUPLE), value.type)
            self.replaced += 1
            logger.info("reordering a chain of %d matrix multiplications", len(operands) - 1)
            return self.module.call(helper, [self.mpc_value, args])

        value.args = [self.transform(arg) for arg in value.args]
        return value


def reorder_consecutive_matmuls(function: Function, module: Module, mpc_value: Value) -> int:
    """Rewrite every matmul chain in the body; returns how many were replaced."""
    reorderer = MatmulReorderer(module, mpc_value)
    for i, instr in enumerate(function.body):
        if isinstance(instr, Return):
            if instr.value is not None:
                instr.value = reorderer.transform(instr.value)
        elif isinstance(instr, Assign):
            instr.rhs = reorderer.transform(instr.rhs)
        else:
            function.body[i] = reorderer.transform(instr)
    return reorderer.replaced
