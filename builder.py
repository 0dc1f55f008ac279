"""
Builds expression trees out of IR instructions and keeps the per-function
registry of which tree currently computes which variable.
"""

import logging
from typing import Iterator, List, Optional, Tuple

from expression import ExprNode
from ir import Assign, Call, Function, Return

logger = logging.getLogger(__name__)

NO_VAR_ID = -1
RETURN_ID = -2


def _operand(value, parse) -> ExprNode:
    if isinstance(value, Call):
        return parse(value)
    return ExprNode.leaf(value)


def parse_instruction(instr) -> ExprNode:
    """
    Tree of the value an instruction computes. Unary and binary calls
    descend into call operands; other values become leaves. A bare return
    gives an empty node.
    """
    if isinstance(instr, Return):
        if instr.value is None:
            return ExprNode()
        return parse_instruction(instr.value)
    if isinstance(instr, Assign):
        return parse_instruction(instr.rhs)
    if not isinstance(instr, Call) or not (instr.is_unary() or instr.is_binary()):
        return ExprNode.leaf(instr)

    node = ExprNode(instr, instr.type, instr.op)
    node.left = _operand(instr.args[0], parse_instruction)
    if instr.is_binary():
        node.right = _operand(instr.args[1], parse_instruction)
    return node


def parse_binary_arithmetic(call: Call) -> ExprNode:
    """
    Like parse_instruction, but only binary calls become operations. Any other
    call is kept whole as an already expanded leaf.
    """
    if not call.is_binary():
        node = ExprNode.leaf(call)
        node.expanded = True
        return node

    node = ExprNode(call, call.type, call.op)
    node.left = _operand(call.args[0], parse_binary_arithmetic)
    node.right = _operand(call.args[1], parse_binary_arithmetic)
    return node


def reads_variable(root: ExprNode, var_id: int) -> bool:
    return any(n.is_leaf() and n.is_variable() and n.variable_id == var_id for n in root)


class TreeRegistry:
    """
    Maps a variable id (or NO_VAR_ID / RETURN_ID) to the root of the tree
    computing it. Iteration visits the most recent definition first.
    """

    def __init__(self):
        self._trees = {}
        self._stale = set()

    def add(self, var_id: int, node: ExprNode):
        # a reassignment moves the key to the most recent position
        self._trees.pop(var_id, None)
        self._trees[var_id] = node
        self._stale.discard(var_id)
        if var_id < 0:
            return
        for key, root in self._trees.items():
            if key != var_id and reads_variable(root, var_id):
                self._stale.add(key)

    def get(self, var_id: int) -> Optional[ExprNode]:
        return self._trees.get(var_id)

    def __contains__(self, var_id: int) -> bool:
        return var_id in self._trees

    def __len__(self):
        return len(self._trees)

    def roots(self) -> List[Tuple[int, ExprNode]]:
        return list(reversed(self._trees.items()))

    def __iter__(self) -> Iterator[ExprNode]:
        for _, root in self.roots():
            yield from root

    def parse_series(self, function: Function):
        for instr in function.body:
            node = parse_instruction(instr)
            if isinstance(instr, Return):
                self.add(RETURN_ID, node)
            elif isinstance(instr, Assign):
                self.add(instr.lhs.id, node)
            else:
                self.add(NO_VAR_ID, node)

    def expansion_for(self, var_id: int) -> Optional[ExprNode]:
        """
        Tree that may be substituted for a read of `var_id`, or None if the
        variable has no tree, or one of the variables its tree reads (itself
        included) has been reassigned since.
        """
        tree = self._trees.get(var_id)
        if tree is None or var_id in self._stale or reads_variable(tree, var_id):
            return None
        return tree

    def expand_node(self, node: ExprNode):
        """Substitute registered trees for the variable leaves of `node`."""
        if node.expanded:
            return

        if node.is_leaf():
            if node.is_variable():
                tree = self.expansion_for(node.variable_id)
                if tree is not None:
                    logger.debug("expanding %s", node.name)
                    node.replace(tree.copy())
        else:
            self.expand_node(node.left)
            if node.right is not None:
                self.expand_node(node.right)

        node.expanded = True

    def elements_count(self) -> Tuple[int, int]:
        nodes = edges = 0
        for _, root in self.roots():
            n, e = root.elements_count()
            nodes += n
            edges += e
        return nodes, edges
