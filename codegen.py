import logging

from errors import ConstraintError, LinkError
from expression import ExprNode
from ir import Module, Value

logger = logging.getLogger(__name__)


class CodeGenerator:
    """
    Turns an optimized tree back into IR calls.

    Each operation is linked against the method of its left operand's type
    that accepts the realized operand types, so types must be re-realized
    (forced) after the last rewrite and before generating.
    """

    def __init__(self, module: Module, resolver, oracle):
        self.module = module
        self.resolver = resolver
        self.oracle = oracle

    def generate(self, node: ExprNode) -> Value:
        if node.is_leaf():
            if node.value is None:
                raise ConstraintError("cannot generate code for a leaf without an IR value")
            return node.value

        lt = node.left.realize_type(self.oracle)
        if node.right is None:
            func = self.resolver.resolve(lt, node.op, [lt])
            if func is None:
                raise LinkError(node.op, lt)
            call = self.module.call(func, [self.generate(node.left)])
        else:
            rt = node.right.realize_type(self.oracle)
            func = self.resolver.resolve(lt, node.op, [lt, rt])
            if func is None:
                raise LinkError(node.op, lt, rt)
            call = self.module.call(func, [self.generate(node.left), self.generate(node.right)])

        node.value = call
        return call
