"""
Intermediate representation consumed by the expression optimizer.

A function body is an ordered list of instructions (Return, Assign, Call).
Every value carries an id that is unique within its Module; the tree encoder
uses these ids as node identities.
"""

import itertools
from dataclasses import dataclass, field
from typing import Optional

ADD = "__add__"
SUB = "__sub__"
MUL = "__mul__"
MATMUL = "__matmul__"
TRUE_DIV = "__truediv__"
POW = "__pow__"
NEG = "__neg__"

BINARY_SYMBOLS = {
    ADD: "+",
    SUB: "-",
    MUL: "*",
    MATMUL: "@",
    TRUE_DIV: "/",
    POW: "**",
}
UNARY_SYMBOLS = {NEG: "-"}


@dataclass(frozen=True)
class IRType:
    name: str

    def __str__(self):
        return self.name


INT = IRType("int")
FLOAT = IRType("float")
TUPLE = IRType("Tuple")


@dataclass(eq=False)
class Var:
    id: int
    name: str
    type: Optional[IRType] = None


@dataclass(frozen=True)
class Func:
    """A realized callable: an operator method or an optimization helper."""
    name: str
    arg_types: tuple
    return_type: Optional[IRType]
    owner: Optional[IRType] = None

    @property
    def unmangled_name(self) -> str:
        return self.name


class Value:
    def __init__(self, id: int, type: Optional[IRType] = None):
        self.id = id
        self.type = type

    def used_values(self) -> list:
        return []


class VarValue(Value):
    def __init__(self, id: int, var: Var):
        super().__init__(id, var.type)
        self.var = var

    def __repr__(self):
        return f"VarValue({self.var.name}#{self.id})"


class Const(Value):
    def __init__(self, id: int, value, type: Optional[IRType] = None):
        if type is None:
            type = FLOAT if isinstance(value, float) else INT
        super().__init__(id, type)
        self.value = value

    def __repr__(self):
        return f"Const({self.value!r}#{self.id})"


class TupleValue(Value):
    def __init__(self, id: int, items: list):
        super().__init__(id, TUPLE)
        self.items = list(items)

    def used_values(self) -> list:
        return list(self.items)


class Call(Value):
    def __init__(self, id: int, func: Func, args: list, type: Optional[IRType] = None):
        super().__init__(id, type if type is not None else func.return_type)
        self.func = func
        self.args = list(args)

    @property
    def op(self) -> str:
        return self.func.unmangled_name

    def is_unary(self) -> bool:
        return len(self.args) == 1

    def is_binary(self) -> bool:
        return len(self.args) == 2

    def used_values(self) -> list:
        return list(self.args)

    def __repr__(self):
        return f"Call({self.op}#{self.id}, {self.args!r})"


class Assign(Value):
    def __init__(self, id: int, lhs: Var, rhs: Value):
        super().__init__(id, None)
        self.lhs = lhs
        self.rhs = rhs

    def used_values(self) -> list:
        return [self.rhs]


class Return(Value):
    def __init__(self, id: int, value: Optional[Value]):
        super().__init__(id, None)
        self.value = value

    def used_values(self) -> list:
        return [self.value] if self.value is not None else []


@dataclass
class Function:
    name: str
    params: list
    body: list
    decorators: list = field(default_factory=list)
    return_type: Optional[IRType] = None

    def has_attribute(self, name: str) -> bool:
        return name in self.decorators


class Module:
    """Allocates ids and constructs IR values."""

    def __init__(self):
        self._ids = itertools.count(1)

    def new_id(self) -> int:
        return next(self._ids)

    def var(self, name: str, type: Optional[IRType] = None) -> Var:
        return Var(self.new_id(), name, type)

    def var_value(self, var: Var) -> VarValue:
        return VarValue(self.new_id(), var)

    def const(self, value, type: Optional[IRType] = None) -> Const:
        return Const(self.new_id(), value, type)

    def tuple_value(self, items) -> TupleValue:
        return TupleValue(self.new_id(), items)

    def call(self, func: Func, args, type: Optional[IRType] = None) -> Call:
        return Call(self.new_id(), func, args, type)

    def assign(self, lhs: Var, rhs: Value) -> Assign:
        return Assign(self.new_id(), lhs, rhs)

    def ret(self, value: Optional[Value]) -> Return:
        return Return(self.new_id(), value)
