"""
Cost-reducing rewrites over expression trees.

* Factorization turns `a*x + b*x` into `x*(a + b)`, saving a multiplication.
* Priority reordering re-associates chains of + or * so that cheap operands
  combine with each other before meeting an expensive (secure) operand.
* Exponent expansion turns `x**k` into k-1 multiplications so the other two
  rewrites can see through it.

All rewrites mutate the tree in place and return whether anything changed.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from errors import ConstraintError
from expression import ExprNode
from ir import ADD, MUL

logger = logging.getLogger(__name__)


@dataclass
class FactorInfo:
    parent: ExprNode
    sibling: ExprNode
    mul_ancestor: ExprNode
    add_ancestor: ExprNode
    add_tail: ExprNode


FactorPair = Tuple[Optional[ExprNode], Optional[ExprNode]]

# ─── Factorization ────────────────────────────────────────────────────────────


def _visited_twin(
    node: ExprNode,
    visited: List[ExprNode],
    metadata: Dict[ExprNode, FactorInfo],
    mul_ancestor: ExprNode,
) -> Optional[ExprNode]:
    for candidate in visited:
        # factors of the same product never pair with each other
        if metadata[candidate].mul_ancestor is mul_ancestor:
            continue
        if node.same_tree(candidate):
            return candidate
    return None


def find_factors_in_mul_tree(
    node: ExprNode,
    visited: List[ExprNode],
    metadata: Dict[ExprNode, FactorInfo],
    mul_ancestor: ExprNode,
    add_ancestor: ExprNode,
    add_tail: ExprNode,
) -> FactorPair:
    if not node.is_mul():
        raise ConstraintError("tried to find factors in a non-multiplication tree")

    for factor, sibling in ((node.left, node.right), (node.right, node.left)):
        if factor.is_mul():
            continue
        metadata[factor] = FactorInfo(node, sibling, mul_ancestor, add_ancestor, add_tail)
        twin = _visited_twin(factor, visited, metadata, mul_ancestor)
        if twin is not None:
            return factor, twin
        visited.append(factor)

    for child in (node.left, node.right):
        if child.is_mul():
            factors = find_factors_in_mul_tree(child, visited, metadata, mul_ancestor, add_ancestor, add_tail)
            if factors[0] is not None:
                return factors
    return None, None


def find_factorization_nodes(
    node: ExprNode, visited: List[ExprNode], metadata: Dict[ExprNode, FactorInfo]
) -> FactorPair:
    """Search the additive spine under `node` for two equal factors of different products."""
    if not node.is_add():
        raise ConstraintError("tried to find factors in a non-addition tree")

    for term, tail in ((node.left, node.right), (node.right, node.left)):
        if term.is_mul():
            factors = find_factors_in_mul_tree(term, visited, metadata, term, node, tail)
        elif term.is_add():
            factors = find_factorization_nodes(term, visited, metadata)
        else:
            continue
        if factors[0] is not None and factors[1] is not None:
            return factors
    return None, None


def reduce_level(node: ExprNode) -> bool:
    """
    Factor one common multiplicand out of the first addition (pre-order) that
    has one. Types are stale afterwards; see reduce_all.
    """
    if node.is_leaf():
        return False
    if not node.is_add():
        return reduce_level(node.left) or (node.right is not None and reduce_level(node.right))

    visited: List[ExprNode] = []
    metadata: Dict[ExprNode, FactorInfo] = {}
    factor, twin = find_factorization_nodes(node, visited, metadata)
    if factor is None or twin is None:
        return False

    first = metadata[factor]
    second = metadata[twin]
    logger.debug("factoring %s out of %s and %s", factor, first.mul_ancestor, second.mul_ancestor)

    # drop each factor from its product
    second.parent.replace(second.sibling)
    first.parent.replace(first.sibling)

    # first product becomes factor * (rest of first + rest of second)
    ancestor = first.mul_ancestor
    ancestor.right = ExprNode.operation(ADD, ancestor.copy(), second.mul_ancestor)
    ancestor.left = factor
    ancestor.op = MUL
    ancestor.value = None

    # the addition that held the second product collapses to its other term
    second.add_ancestor.replace(second.add_tail)
    return True


def reduce_all(root: ExprNode, oracle) -> bool:
    reduced = False
    while reduce_level(root):
        reduced = True
    if reduced:
        root.realize_type(oracle, force=True)
    return reduced


# ─── Priority reordering ──────────────────────────────────────────────────────


def swap_priorities(root: ExprNode, child: ExprNode, oracle) -> bool:
    """
    Rewrite `sibling op (x op y)` so the expensive grandchild moves up next
    to the cheap sibling and the sibling takes its place inside `child`.
    """
    if child is not root.left and child is not root.right:
        raise ConstraintError("swap_priorities expects the second node to be a child of the first")
    if root.op != child.op:
        raise ConstraintError(f"cannot swap priorities of {root.op} and {child.op}")

    sibling = root.right if child is root.left else root.left
    if sibling.is_secure_container(oracle):
        return False

    lcc, rcc = child.left, child.right
    if lcc.is_secure_container(oracle) and rcc.is_secure_container(oracle):
        return False

    cipher_grandchild = lcc if lcc.is_secure_container(oracle) else rcc
    if cipher_grandchild is lcc:
        child.left = sibling
    else:
        child.right = sibling

    if sibling is root.left:
        root.left = cipher_grandchild
    else:
        root.right = cipher_grandchild

    child.ir_type = None
    child.realize_type(oracle, force=True)
    logger.debug("reordered %s", root)
    return True


def reorder_priority(node: ExprNode, oracle) -> bool:
    if node.is_leaf() or not node.is_secure_container(oracle):
        return False

    if node.is_consecutive_commutative():
        for child in (node.left, node.right):
            if child is not None and child.op == node.op and swap_priorities(node, child, oracle):
                return True

    return reorder_priority(node.left, oracle) or (
        node.right is not None and reorder_priority(node.right, oracle)
    )


def reorder_priorities(root: ExprNode, oracle) -> bool:
    reordered = False
    while reorder_priority(root, oracle):
        reordered = True
    return reordered


# ─── Exponent expansion ───────────────────────────────────────────────────────


def escape_pows(node: ExprNode) -> bool:
    """Expand every `x**k` under `node` into k-1 multiplications of copies of x."""
    if node.is_leaf():
        return False

    if not node.is_pow():
        changed = escape_pows(node.left)
        if node.right is not None:
            changed = escape_pows(node.right) or changed
        return changed

    base, exponent = node.left, node.right
    if exponent is None or not exponent.is_int_const():
        raise ConstraintError("expected each exponent to be an integer constant")
    k = exponent.const_value
    if k <= 0:
        raise ConstraintError(f"expected each exponent to be positive, got {k}")

    escape_pows(base)
    if k == 1:
        node.replace(base)
        return True

    chain = ExprNode.operation(MUL, base.copy(), base.copy())
    for _ in range(k - 2):
        chain = ExprNode.operation(MUL, base.copy(), chain)
    node.replace(chain)
    return True
