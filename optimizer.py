import copy
import logging
from collections import Counter

from builder import TreeRegistry, parse_binary_arithmetic
from codegen import CodeGenerator
from encoding import TreeEncoder, encoding_value
from errors import ConstraintError, OptimizerError
from expression import ExprNode
from host import SecureOperatorResolver, SecureTypeOracle, is_mpc_type
from ir import Assign, Call, Func, Function, IRType, Module, Return
from matmul import reorder_consecutive_matmuls
from rewrites import escape_pows, reduce_all, reorder_priorities

logger = logging.getLogger(__name__)

CIPHER_OPT = "mhe_cipher_opt"
ENC_OPT = "mhe_enc_opt"
MATMUL_OPT = "reorder_matmul"
OPT_DECORATORS = (CIPHER_OPT, ENC_OPT, MATMUL_OPT)

BET_ENC_INIT = "bet_enc_init"
BET_ENC_OPT = "bet_enc_opt"
BET_TREE_VAR = "bet_tree"
BET_TYPE = IRType("BET")


class CipherOptimizer:
    """
    Rewrites the arithmetic of every selected function to use fewer expensive
    operations on secure values:
      1) escape_pows()        → x**k into k-1 multiplications
      2) reduce_all()         → factor common multiplicands out of sums
      3) reorder_priorities() → combine cheap operands before expensive ones
      4) matmul reordering    → chains of @ into one reordering helper call
    Functions marked @mhe_enc_opt get their trees encoded for the runtime
    helper instead.
    """

    def __init__(
        self,
        module: Module = None,
        oracle=None,
        resolver=None,
        expand_pows: bool = True,
        factorize: bool = True,
        reorder: bool = True,
        reorder_matmuls: bool = True,
        all_functions: bool = False,
    ):
        self.module = module or Module()
        self.oracle = oracle or SecureTypeOracle()
        self.resolver = resolver or SecureOperatorResolver(
            self.oracle if isinstance(self.oracle, SecureTypeOracle) else None
        )
        self.expand_pows = expand_pows
        self.factorize = factorize
        self.reorder = reorder
        self.reorder_matmuls = reorder_matmuls
        self.all_functions = all_functions
        self.stats = Counter()

    # ── cipher-plain optimization ────────────────────────────────────────────

    def optimize_expression(self, call: Call, registry: TreeRegistry, codegen: CodeGenerator):
        node = parse_binary_arithmetic(call)
        registry.expand_node(node)
        logger.debug("tree of %s:\n%s", call.op, node.pretty())

        changed = False
        if self.expand_pows and escape_pows(node):
            node.realize_type(self.oracle, force=True)
            self.stats["pows"] += 1
            changed = True
        if self.factorize and reduce_all(node, self.oracle):
            self.stats["factorizations"] += 1
            changed = True
        if self.reorder and reorder_priorities(node, self.oracle):
            self.stats["reorders"] += 1
            changed = True

        if not changed:
            return call, node

        node.realize_type(self.oracle, force=True)
        logger.info("rewrote expression into %s", node)
        return codegen.generate(node), node

    def minimize_cipher_mult(self, instr, registry: TreeRegistry, codegen: CodeGenerator):
        """Optimize one instruction; returns (new value, tree of the value or None)."""
        if isinstance(instr, Return):
            if instr.value is not None:
                instr.value = self.minimize_cipher_mult(instr.value, registry, codegen)[0]
            return instr, None

        if isinstance(instr, Assign):
            value, node = self.minimize_cipher_mult(instr.rhs, registry, codegen)
            if node is not None:
                registry.add(instr.lhs.id, node)
            instr.rhs = value
            return instr, None

        if isinstance(instr, Call):
            if instr.is_binary():
                return self.optimize_expression(instr, registry, codegen)
            instr.args = [self.minimize_cipher_mult(arg, registry, codegen)[0] for arg in instr.args]
            return instr, None

        return instr, ExprNode.leaf(instr)

    def transform_expressions(self, function: Function):
        registry = TreeRegistry()
        codegen = CodeGenerator(self.module, self.resolver, self.oracle)
        for i, instr in enumerate(function.body):
            function.body[i] = self.minimize_cipher_mult(instr, registry, codegen)[0]

        if self.reorder_matmuls:
            mpc = self.mpc_value(function, required=not self.all_functions)
            if mpc is not None:
                self.reorder_matmul_chains(function, mpc)

    def reorder_matmul_chains(self, function: Function, mpc):
        replaced = reorder_consecutive_matmuls(function, self.module, mpc)
        if replaced:
            self.stats["matmul_chains"] += replaced

    # ── encoding optimization ────────────────────────────────────────────────

    def apply_encoding_optimization(self, function: Function):
        """
        Encode the function's trees and prepend
            bet_tree = bet_enc_init(<encoding>, (<params>))
            bet_enc_opt(bet_tree)
        The MPC instance is not a tree parameter.
        """
        self.mpc_value(function)
        registry = TreeRegistry()
        registry.parse_series(function)

        params = function.params[1:]
        records = TreeEncoder(self.module, self.oracle).encode_registry(registry, params)
        encoding = encoding_value(self.module, records)
        args = self.module.tuple_value([self.module.var_value(p) for p in params])

        init = self.module.call(Func(BET_ENC_INIT, (encoding.type, args.type), BET_TYPE), [encoding, args])
        tree_var = self.module.var(BET_TREE_VAR, BET_TYPE)
        opt = self.module.call(Func(BET_ENC_OPT, (BET_TYPE,), None), [self.module.var_value(tree_var)])
        function.body[0:0] = [self.module.assign(tree_var, init), opt]

        self.stats["encoded"] += 1
        logger.info("encoded %d tree nodes of %s", len(records), function.name)
        return records

    # ── drivers ──────────────────────────────────────────────────────────────

    def mpc_value(self, function: Function, required: bool = True):
        if function.params and is_mpc_type(function.params[0].type):
            return self.module.var_value(function.params[0])
        if required:
            raise ConstraintError(f"the first argument of {function.name} should be the MPC instance")
        return None

    def optimize_function(self, function: Function) -> Function:
        """
        Return an optimized copy of `function`. Raises OptimizerError if any
        step fails; the input is left untouched either way.
        """
        result = copy.deepcopy(function)
        if self.all_functions or result.has_attribute(CIPHER_OPT):
            self.transform_expressions(result)
        elif result.has_attribute(MATMUL_OPT) and self.reorder_matmuls:
            self.reorder_matmul_chains(result, self.mpc_value(result))
        if result.has_attribute(ENC_OPT):
            self.apply_encoding_optimization(result)
        return result

    def optimize_functions(self, functions):
        """
        Optimize every function, keeping the original of any that fails.
        Returns (functions, {name: error}).
        """
        optimized = []
        failures = {}
        for function in functions:
            try:
                optimized.append(self.optimize_function(function))
            except OptimizerError as e:
                logger.error("could not optimize %s: %s", function.name, e)
                failures[function.name] = e
                optimized.append(function)
        return optimized, failures
