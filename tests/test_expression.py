# File: tests/test_expression.py

import pytest

from conftest import CT, PT, ST
from errors import TypeRealizationError
from expression import ExprNode
from ir import ADD, MUL, IRType

# ─── 1) Classification ─────────────────────────────────────────────────────────


def test_classification(trees):
    (root,) = trees("r = a * x + 2")
    assert root.is_add() and root.is_operation() and not root.is_leaf()
    assert root.is_commutative()
    mul, two = root.left, root.right
    assert mul.is_mul()
    assert mul.left.is_leaf() and mul.left.is_variable()
    assert two.is_int_const() and two.is_const() and not two.is_variable()
    assert str(root) == "((a * x) + 2)"


def test_leaf_without_value_is_not_an_operation():
    node = ExprNode()
    assert node.is_leaf()
    assert not node.is_operation()
    assert not node.is_typeable()


@pytest.mark.parametrize("line, expected", [
    ("r = a + (b + x)", True),
    ("r = (a * x) * b", True),
    ("r = a * (b + x)", False),
    ("r = a - (b - x)", False),
    ("r = a + b", False),
])
def test_consecutive_commutative(trees, line, expected):
    (root,) = trees(line)
    assert root.is_consecutive_commutative() is expected


# ─── 2) Structural equality ────────────────────────────────────────────────────

@pytest.mark.parametrize("lhs, rhs, expected", [
    ("a * x", "x * a", True),
    ("a + x", "x + a", True),
    ("a * (b + x)", "(x + b) * a", True),
    ("a * 2", "2 * a", True),
    ("a - x", "x - a", False),
    ("a * 2", "a * 2.0", False),
    ("a * x", "a + x", False),
    ("a * x", "a * y", False),
    ("x @ y", "y @ x", False),
])
def test_same_tree(trees, lhs, rhs, expected):
    left, right = trees(f"r1 = {lhs}", f"r2 = {rhs}")
    assert left.same_tree(right) is expected
    assert right.same_tree(left) is expected


def test_leaf_never_equals_operation(trees):
    (root,) = trees("r = a * x")
    assert not root.left.same_tree(root)
    assert not root.same_tree(root.left)


# ─── 3) Type realization ───────────────────────────────────────────────────────

@pytest.mark.parametrize("line, expected", [
    ("r = a * x", CT),
    ("r = q * x", CT),
    ("r = x * q", CT),
    ("r = q * a", PT),
    ("r = a * q", PT),
    ("r = s * a", ST),
    ("r = a * b", "int"),
])
def test_realize_type_precedence(trees, oracle, line, expected):
    (root,) = trees(line)
    assert root.realize_type(oracle, force=True).name == expected


def test_realize_type_is_memoized_until_forced(trees, oracle):
    (root,) = trees("r = a * b")
    root.ir_type = IRType("stale")
    assert root.realize_type(oracle).name == "stale"
    assert root.realize_type(oracle, force=True).name == "int"


def test_realize_type_after_rewiring(trees, oracle):
    mul, other = trees("r = a * b", "t = x * c")
    mul.right = other.left
    assert mul.realize_type(oracle).name == "int"
    assert mul.realize_type(oracle, force=True).name == CT


def test_untypeable_leaf(oracle):
    with pytest.raises(TypeRealizationError):
        ExprNode().realize_type(oracle)


def test_untypeable_child(trees, oracle):
    (root,) = trees("r = a * x")
    root.right = ExprNode()
    with pytest.raises(TypeRealizationError):
        root.realize_type(oracle, force=True)


def test_oracle_predicates(trees, oracle):
    (root,) = trees("r = q * x")
    assert root.left.is_plain_ciphertensor(oracle)
    assert root.right.is_cipher_ciphertensor(oracle)
    assert root.is_secure_container(oracle)
    (cheap,) = trees("r = a * b")
    assert not cheap.is_secure_container(oracle)


# ─── 4) Replace and copy ───────────────────────────────────────────────────────

def test_replace_keeps_identity(trees):
    root, other = trees("r = a * (b + c)", "t = x + y")
    child = root.right
    child.replace(other)
    assert root.right is child
    assert str(root) == "(a * (x + y))"


def test_copy_is_deep(trees):
    (root,) = trees("r = a * (b + x)")
    clone = root.copy()
    assert clone.same_tree(root)
    assert {id(n) for n in clone}.isdisjoint({id(n) for n in root})
    clone.right.op = MUL
    assert root.right.op == ADD


def test_well_formed_detects_aliasing(trees):
    (root,) = trees("r = a * (b + x)")
    assert root.is_well_formed()
    root.left = root.right
    assert not root.is_well_formed()


# ─── 5) Traversal ──────────────────────────────────────────────────────────────

def test_preorder_and_counts(trees):
    (root,) = trees("r = a * x + b * x")
    assert [n.name for n in root] == [ADD, MUL, "a", "x", MUL, "b", "x"]
    assert root.elements_count() == (7, 6)
    assert root.count_operations(MUL) == 2
    assert root.count_operations(ADD) == 1


def test_pretty(trees, oracle):
    (root,) = trees("r = a * x")
    root.realize_type(oracle, force=True)
    assert root.pretty().splitlines() == [
        f"{MUL} : {CT}",
        "    a : int",
        f"    x : {CT}",
    ]
