"""
Flat encoding of expression trees for the runtime optimization helper.

Each node becomes a 7-tuple

    (id, left_id, right_id, param_idx, var_id, operator, type_name)

with -1 standing for an absent child, a leaf that is not a function
parameter, or a node that is not a variable. Trees are emitted most recent
definition first, nodes in pre-order (left before right). The field order
and the sentinel are part of the contract with the runtime helper.
"""

from typing import Dict, Iterable, List, NamedTuple, Sequence

from builder import TreeRegistry
from expression import ExprNode
from ir import TUPLE, Const, IRType, Module, Var, VarValue

ENCODING_VERSION = 1
NONE = -1


class NodeRecord(NamedTuple):
    id: int
    left_id: int
    right_id: int
    param_idx: int
    var_id: int
    op: str
    type_name: str


class TreeEncoder:
    def __init__(self, module: Module, oracle):
        self.module = module
        self.oracle = oracle
        self._ids: Dict[ExprNode, int] = {}
        self._used = set()

    def node_id(self, node: ExprNode) -> int:
        """
        Identity of `node`: the id of its IR value, or a fresh id for nodes
        synthesized by a rewrite or sharing a value with an encoded node.
        """
        if node in self._ids:
            return self._ids[node]
        if node.value is not None and node.value.id not in self._used:
            ident = node.value.id
        else:
            ident = self.module.new_id()
        self._used.add(ident)
        self._ids[node] = ident
        return ident

    def encode_node(self, node: ExprNode, params: Sequence[Var]) -> NodeRecord:
        var_id = node.variable_id if node.is_variable() else NONE
        param_idx = NONE
        if var_id != NONE:
            for i, param in enumerate(params):
                if param.id == var_id:
                    param_idx = i
                    break

        return NodeRecord(
            self.node_id(node),
            self.node_id(node.left) if node.left is not None else NONE,
            self.node_id(node.right) if node.right is not None else NONE,
            param_idx,
            var_id,
            node.op,
            node.realize_type(self.oracle).name,
        )

    def encode_tree(self, root: ExprNode, params: Sequence[Var]) -> List[NodeRecord]:
        return [self.encode_node(node, params) for node in root]

    def encode_registry(self, registry: TreeRegistry, params: Sequence[Var]) -> List[NodeRecord]:
        records = []
        for _, root in registry.roots():
            # bare return
            if root.is_leaf() and root.value is None:
                continue
            records.extend(self.encode_tree(root, params))
        return records


def encoding_value(module: Module, records: Iterable[NodeRecord]) -> Const:
    return module.const(tuple(tuple(r) for r in records), TUPLE)


def decode_records(records: Iterable[Sequence]) -> List[ExprNode]:
    """Rebuild trees from their records; returns the roots in encoding order."""
    records = [NodeRecord(*r) for r in records]
    nodes: Dict[int, ExprNode] = {}
    variables: Dict[int, Var] = {}

    for r in records:
        ir_type = IRType(r.type_name)
        node = ExprNode(ir_type=ir_type, op=r.op)
        if r.var_id != NONE:
            var = variables.setdefault(r.var_id, Var(r.var_id, f"v{r.var_id}", ir_type))
            node.value = VarValue(r.id, var)
        nodes[r.id] = node

    children = set()
    for r in records:
        node = nodes[r.id]
        if r.left_id != NONE:
            node.left = nodes[r.left_id]
            children.add(r.left_id)
        if r.right_id != NONE:
            node.right = nodes[r.right_id]
            children.add(r.right_id)

    return [nodes[r.id] for r in records if r.id not in children]
