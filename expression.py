"""
Binary expression tree nodes.

A node is either a leaf (a constant or a variable reference, or an opaque IR
value) or an operation with one or two children. Rewrites mutate trees in
place: `replace` overwrites a node's content while keeping the node object, so
a parent holding it as a child sees the new subtree. Every node object belongs
to exactly one position in one tree; a subtree needed twice is `copy()`-ed.
"""

from typing import Iterator, Optional, Tuple

from errors import TypeRealizationError
from ir import ADD, BINARY_SYMBOLS, MUL, POW, UNARY_SYMBOLS, Call, Const, VarValue

COMMUTATIVE_OPS = frozenset({ADD, MUL})


def _same(a: Optional["ExprNode"], b: Optional["ExprNode"]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return a.same_tree(b)


class ExprNode:
    def __init__(self, value=None, ir_type=None, op: str = "", left=None, right=None, expanded: bool = False):
        self.value = value
        self.ir_type = ir_type
        self.op = op
        self.left = left
        self.right = right
        self.expanded = expanded

    @classmethod
    def leaf(cls, value) -> "ExprNode":
        return cls(value, value.type if value is not None else None)

    @classmethod
    def operation(cls, op: str, left: "ExprNode", right: Optional["ExprNode"] = None) -> "ExprNode":
        return cls(None, None, op, left, right)

    # ── classification ───────────────────────────────────────────────────────

    def is_leaf(self) -> bool:
        return self.left is None and self.right is None

    def is_operation(self) -> bool:
        return self.op != ""

    def is_add(self) -> bool:
        return self.op == ADD

    def is_mul(self) -> bool:
        return self.op == MUL

    def is_pow(self) -> bool:
        return self.op == POW

    def is_commutative(self) -> bool:
        return self.op in COMMUTATIVE_OPS

    def is_variable(self) -> bool:
        return isinstance(self.value, VarValue)

    def is_int_const(self) -> bool:
        return (
            isinstance(self.value, Const)
            and isinstance(self.value.value, int)
            and not isinstance(self.value.value, bool)
        )

    def is_float_const(self) -> bool:
        return isinstance(self.value, Const) and isinstance(self.value.value, float)

    def is_const(self) -> bool:
        return self.is_int_const() or self.is_float_const()

    def is_typeable(self) -> bool:
        return self.value is not None and self.value.type is not None

    @property
    def variable_id(self) -> int:
        return self.value.var.id

    @property
    def const_value(self):
        return self.value.value

    def is_consecutive_commutative(self) -> bool:
        """True if a commutative operation has a child applying the same operation."""
        if not self.is_commutative():
            return False
        return any(c is not None and c.op == self.op for c in (self.left, self.right))

    # ── types ────────────────────────────────────────────────────────────────

    def realize_type(self, oracle, force: bool = False):
        """
        Return the node's type, computing and memoizing it if needed.

        Leaves take the type of their IR value. Operations take the type of a
        cipher-encrypted child, else of a plaintext-encrypted child, else of
        the left child. `force` recomputes the whole subtree.
        """
        if self.ir_type is not None and not force:
            return self.ir_type

        if self.is_leaf():
            if not self.is_typeable():
                raise TypeRealizationError(f"cannot realize type of untypeable leaf {self.name}")
            self.ir_type = self.value.type
            return self.ir_type

        lt = self.left.realize_type(oracle, force)
        if self.right is None:
            self.ir_type = lt
            return lt
        rt = self.right.realize_type(oracle, force)

        if self.left.is_cipher_ciphertensor(oracle):
            self.ir_type = lt
        elif self.right.is_cipher_ciphertensor(oracle):
            self.ir_type = rt
        elif self.left.is_plain_ciphertensor(oracle):
            self.ir_type = lt
        elif self.right.is_plain_ciphertensor(oracle):
            self.ir_type = rt
        else:
            self.ir_type = lt
        return self.ir_type

    def is_secure_container(self, oracle) -> bool:
        return oracle.is_secure_container(self.realize_type(oracle))

    def is_ciphertensor(self, oracle) -> bool:
        return oracle.is_ciphertensor(self.realize_type(oracle))

    def is_cipher_ciphertensor(self, oracle) -> bool:
        return self.is_ciphertensor(oracle) and oracle.has_ckks_ciphertext(self.ir_type)

    def is_plain_ciphertensor(self, oracle) -> bool:
        return self.is_ciphertensor(oracle) and oracle.has_ckks_plaintext(self.ir_type)

    # ── structure ────────────────────────────────────────────────────────────

    def same_tree(self, other: "ExprNode") -> bool:
        """Structural equality, trying both operand orders for + and *."""
        if self.is_leaf() and other.is_leaf():
            if self.is_int_const() and other.is_int_const():
                return self.const_value == other.const_value
            if self.is_float_const() and other.is_float_const():
                return self.const_value == other.const_value
            if self.is_variable() and other.is_variable():
                return self.variable_id == other.variable_id
            return False
        if self.is_leaf() or other.is_leaf():
            return False

        if self.is_operation() and other.is_operation() and self.op != other.op:
            return False
        if _same(self.left, other.left) and _same(self.right, other.right):
            return True
        if self.is_commutative():
            return _same(self.left, other.right) and _same(self.right, other.left)
        return False

    def replace(self, other: "ExprNode"):
        self.value = other.value
        self.ir_type = other.ir_type
        self.op = other.op
        self.left = other.left
        self.right = other.right
        self.expanded = other.expanded

    def copy(self) -> "ExprNode":
        return ExprNode(
            self.value,
            self.ir_type,
            self.op,
            self.left.copy() if self.left is not None else None,
            self.right.copy() if self.right is not None else None,
            self.expanded,
        )

    def __iter__(self) -> Iterator["ExprNode"]:
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            if node.right is not None:
                stack.append(node.right)
            if node.left is not None:
                stack.append(node.left)

    def elements_count(self) -> Tuple[int, int]:
        nodes = edges = 0
        for node in self:
            nodes += 1
            edges += (node.left is not None) + (node.right is not None)
        return nodes, edges

    def count_operations(self, op: str) -> int:
        return sum(1 for node in self if node.op == op)

    def is_well_formed(self) -> bool:
        """No node object is reachable twice and every operation node is tagged."""
        seen = set()
        for node in self:
            if id(node) in seen:
                return False
            seen.add(id(node))
            if not node.is_leaf() and not node.is_operation():
                return False
            if node.left is None and node.right is not None:
                return False
        return True

    # ── printing ─────────────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        if self.is_operation():
            return self.op
        if self.is_variable():
            return self.value.var.name
        if self.is_const():
            return str(self.const_value)
        if isinstance(self.value, Call):
            return f"{self.value.op}(...)"
        return "<opaque>"

    def pretty(self, max_level: int = 100) -> str:
        lines = []

        def walk(node, level):
            if node is None or level >= max_level:
                return
            type_name = node.ir_type.name if node.ir_type is not None else "?"
            lines.append(f"{'    ' * level}{node.name} : {type_name}")
            walk(node.left, level + 1)
            walk(node.right, level + 1)

        walk(self, 0)
        return "\n".join(lines)

    def __str__(self):
        if self.is_leaf():
            return self.name
        if self.right is None:
            symbol = UNARY_SYMBOLS.get(self.op)
            return f"{symbol}{self.left}" if symbol else f"{self.op}({self.left})"
        symbol = BINARY_SYMBOLS.get(self.op, self.op)
        return f"({self.left} {symbol} {self.right})"

    def __repr__(self):
        return f"ExprNode({self})"
