import ast
import logging

from errors import LinkError, OptimizerError, ParseError
from host import SecureOperatorResolver
from ir import (
    ADD,
    BINARY_SYMBOLS,
    MATMUL,
    MUL,
    NEG,
    POW,
    SUB,
    TRUE_DIV,
    Assign,
    Call,
    Const,
    Func,
    Function,
    IRType,
    Module,
    Return,
    TupleValue,
    VarValue,
)

logger = logging.getLogger(__name__)

BINOPS = {
    ast.Add: ADD,
    ast.Sub: SUB,
    ast.Mult: MUL,
    ast.MatMult: MATMUL,
    ast.Div: TRUE_DIV,
    ast.Pow: POW,
}


def decorator_name(node: ast.expr) -> str:
    if isinstance(node, ast.Call):
        node = node.func
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Name):
        return node.id
    return ast.unparse(node)


class FunctionExtractor(ast.NodeVisitor):
    """
    Walks an AST and lowers module-level straight-line functions into IR.

    Parameters must be annotated with their types; the types of everything
    else are inferred through the operator resolver. When `decorators` is
    given, only functions carrying one of them are lowered.
    """

    def __init__(self, module: Module = None, resolver=None, decorators=None):
        self.module = module or Module()
        self.resolver = resolver or SecureOperatorResolver()
        self.decorators = set(decorators) if decorators is not None else None
        self.functions = []
        self.skipped = {}

    def visit_ClassDef(self, node: ast.ClassDef):
        pass

    def visit_FunctionDef(self, node: ast.FunctionDef):
        names = [decorator_name(d) for d in node.decorator_list]
        if self.decorators is not None and not self.decorators.intersection(names):
            return
        try:
            self.functions.append(self.lower_function(node))
        except OptimizerError as e:
            logger.warning("skipping %s: %s", node.name, e)
            self.skipped[node.name] = e

    def extract(self, source: str):
        """
        Parse Python source, lower the selected functions,
        and return (tree, list_of_functions).
        """
        tree = ast.parse(source)
        self.visit(tree)
        return tree, self.functions

    # ── lowering ─────────────────────────────────────────────────────────────

    def lower_function(self, node: ast.FunctionDef) -> Function:
        scope = {}
        params = []
        for arg in node.args.args:
            ir_type = IRType(ast.unparse(arg.annotation)) if arg.annotation is not None else None
            var = self.module.var(arg.arg, ir_type)
            params.append(var)
            scope[arg.arg] = var

        body = []
        for i, stmt in enumerate(node.body):
            if i == 0 and isinstance(stmt, ast.Expr) and isinstance(stmt.value, ast.Constant) \
                    and isinstance(stmt.value.value, str):
                continue  # docstring
            body.append(self.lower_statement(stmt, scope))

        return Function(
            node.name,
            params,
            body,
            [decorator_name(d) for d in node.decorator_list],
            IRType(ast.unparse(node.returns)) if node.returns is not None else None,
        )

    def lower_statement(self, stmt: ast.stmt, scope: dict):
        if isinstance(stmt, ast.Assign):
            if len(stmt.targets) != 1 or not isinstance(stmt.targets[0], ast.Name):
                raise ParseError("only single-name assignments are supported", stmt.lineno)
            return self._assign(stmt.targets[0].id, stmt.value, None, scope)
        if isinstance(stmt, ast.AnnAssign) and stmt.value is not None and isinstance(stmt.target, ast.Name):
            return self._assign(stmt.target.id, stmt.value, IRType(ast.unparse(stmt.annotation)), scope)
        if isinstance(stmt, ast.Return):
            value = self.lower_expr(stmt.value, scope) if stmt.value is not None else None
            return self.module.ret(value)
        if isinstance(stmt, ast.Expr):
            return self.lower_expr(stmt.value, scope)
        raise ParseError(f"unsupported statement {type(stmt).__name__}", stmt.lineno)

    def _assign(self, name: str, value: ast.expr, ir_type, scope: dict) -> Assign:
        rhs = self.lower_expr(value, scope)
        var = scope.get(name)
        if var is None:
            var = self.module.var(name, ir_type or rhs.type)
            scope[name] = var
        elif var.type is None:
            var.type = ir_type or rhs.type
        return self.module.assign(var, rhs)

    def lower_expr(self, node: ast.expr, scope: dict):
        if isinstance(node, ast.Name):
            var = scope.get(node.id)
            if var is None:
                raise ParseError(f"name {node.id!r} is not defined", node.lineno)
            return self.module.var_value(var)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise ParseError(f"unsupported constant {node.value!r}", node.lineno)
            return self.module.const(node.value)

        if isinstance(node, ast.BinOp):
            op = BINOPS.get(type(node.op))
            if op is None:
                raise ParseError(f"unsupported operator {type(node.op).__name__}", node.lineno)
            lhs = self.lower_expr(node.left, scope)
            rhs = self.lower_expr(node.right, scope)
            return self.module.call(self._resolve(op, [lhs, rhs], node), [lhs, rhs])

        if isinstance(node, ast.UnaryOp):
            operand = self.lower_expr(node.operand, scope)
            if isinstance(node.op, ast.UAdd):
                return operand
            if isinstance(node.op, ast.USub):
                return self.module.call(self._resolve(NEG, [operand], node), [operand])
            raise ParseError(f"unsupported operator {type(node.op).__name__}", node.lineno)

        if isinstance(node, ast.Tuple):
            return self.module.tuple_value([self.lower_expr(e, scope) for e in node.elts])

        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
            args = [self.lower_expr(a, scope) for a in node.args]
            func = Func(node.func.id, tuple(a.type for a in args), None)
            return self.module.call(func, args)

        raise ParseError(f"unsupported expression {ast.unparse(node)!r}", getattr(node, "lineno", None))

    def _resolve(self, op: str, operands: list, node: ast.expr) -> Func:
        types = [v.type for v in operands]
        if any(t is None for t in types):
            raise ParseError(f"operand of unknown type in {ast.unparse(node)!r}", node.lineno)
        func = self.resolver.resolve(types[0], op, types)
        if func is None:
            raise LinkError(op, *types)
        return func


# ─── IR back to source ────────────────────────────────────────────────────────


def format_value(value) -> str:
    if isinstance(value, VarValue):
        return value.var.name
    if isinstance(value, Const):
        return repr(value.value)
    if isinstance(value, TupleValue):
        items = [format_value(v) for v in value.items]
        return f"({items[0]},)" if len(items) == 1 else f"({', '.join(items)})"
    if isinstance(value, Call):
        args = [format_value(a) for a in value.args]
        if value.op in BINARY_SYMBOLS and len(args) == 2:
            return f"({args[0]} {BINARY_SYMBOLS[value.op]} {args[1]})"
        if value.op == NEG and len(args) == 1:
            return f"(-{args[0]})"
        return f"{value.op}({', '.join(args)})"
    raise ParseError(f"cannot format {value!r}")


def format_instruction(instr) -> str:
    if isinstance(instr, Assign):
        return f"{instr.lhs.name} = {format_value(instr.rhs)}"
    if isinstance(instr, Return):
        return "return" if instr.value is None else f"return {format_value(instr.value)}"
    return format_value(instr)


def unparse_function(function: Function) -> str:
    params = ", ".join(
        f"{p.name}: {p.type}" if p.type is not None else p.name for p in function.params
    )
    returns = f" -> {function.return_type}" if function.return_type is not None else ""
    lines = [f"@{d}" for d in function.decorators]
    lines.append(f"def {function.name}({params}){returns}:")
    lines.extend(f"    {format_instruction(instr)}" for instr in function.body)
    if not function.body:
        lines.append("    pass")
    return ast.unparse(ast.parse("\n".join(lines)))
