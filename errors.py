class OptimizerError(Exception):
    """Base class for every fatal failure of the expression optimizer."""


class TypeRealizationError(OptimizerError):
    pass


class ConstraintError(OptimizerError):
    pass


class LinkError(OptimizerError):
    """
    No operator implementation exists for a pair of realized operand types.
    """

    def __init__(self, op: str, left_type, right_type=None):
        self.op = op
        self.left_type = left_type
        self.right_type = right_type
        args = str(left_type) if right_type is None else f"{left_type}, {right_type}"
        super().__init__(f"{op} not found in type {left_type} with arguments ({args})")


class ParseError(OptimizerError):
    def __init__(self, message: str, lineno: int | None = None):
        self.lineno = lineno
        where = f"line {lineno}: " if lineno is not None else ""
        super().__init__(f"{where}{message}")
