"""
Boundary to the host type system.

The optimizer never decides on its own which types are expensive or which
method implements an operator; it asks a TypeOracle and an OperatorResolver.
SecureTypeOracle and SecureOperatorResolver are the in-memory defaults,
OperatorTable is an explicit table for hosts that register every method.
"""

from typing import Optional, Protocol, Sequence

from ir import ADD, FLOAT, INT, MATMUL, MUL, NEG, POW, SUB, TRUE_DIV, Func, IRType

SHARETENSOR = "Sharetensor"
CIPHERTENSOR = "Ciphertensor"
CKKS_CIPHERTEXT = "Ciphertext"
CKKS_PLAINTEXT = "Plaintext"
MULTIPARTY_PARTITION = "MPP"
MULTIPARTY_AGGREGATE = "MPA"
MULTIPARTY_UNION = "MPU"
MPC_ENV = "MPCEnv"
NDARRAY = "ndarray"

NUMERIC_TYPES = {"int", "float", "bool"}
ARITHMETIC_OPS = {ADD, SUB, MUL, TRUE_DIV}


class TypeOracle(Protocol):
    def is_secure_container(self, t: IRType) -> bool: ...

    def is_ciphertensor(self, t: IRType) -> bool: ...

    def has_ckks_ciphertext(self, t: IRType) -> bool: ...

    def has_ckks_plaintext(self, t: IRType) -> bool: ...


class OperatorResolver(Protocol):
    def resolve(self, owner: IRType, op: str, arg_types: Sequence[IRType]) -> Optional[Func]: ...


class SecureTypeOracle:
    """Classifies types by name: secret-shared, encrypted and multiparty containers are expensive."""

    def __init__(self, extra_secure: Sequence[str] = ()):
        self.extra_secure = tuple(extra_secure)

    def is_sharetensor(self, t: IRType) -> bool:
        return t.name.startswith(SHARETENSOR)

    def is_ciphertensor(self, t: IRType) -> bool:
        return t.name.startswith(CIPHERTENSOR)

    def is_multiparty(self, t: IRType) -> bool:
        return t.name.startswith((MULTIPARTY_PARTITION, MULTIPARTY_AGGREGATE, MULTIPARTY_UNION))

    def is_secure_container(self, t: IRType) -> bool:
        if self.extra_secure and t.name.startswith(self.extra_secure):
            return True
        return self.is_sharetensor(t) or self.is_ciphertensor(t) or self.is_multiparty(t)

    def has_ckks_ciphertext(self, t: IRType) -> bool:
        return CKKS_CIPHERTEXT in t.name

    def has_ckks_plaintext(self, t: IRType) -> bool:
        return CKKS_PLAINTEXT in t.name


def is_mpc_type(t: Optional[IRType]) -> bool:
    return t is not None and t.name.startswith(MPC_ENV)


class OperatorTable:
    def __init__(self):
        self._methods = {}

    def register(self, owner: IRType, op: str, arg_types: Sequence[IRType], return_type: IRType) -> Func:
        func = Func(op, tuple(arg_types), return_type, owner)
        self._methods[(owner, op, tuple(arg_types))] = func
        return func

    def resolve(self, owner: IRType, op: str, arg_types: Sequence[IRType]) -> Optional[Func]:
        return self._methods.get((owner, op, tuple(arg_types)))

    def __len__(self):
        return len(self._methods)


class SecureOperatorResolver:
    """
    Rule-based resolver for the arithmetic operators.

    Any pair of numeric, plain-tensor or secure operands supports + - * /;
    matrix multiplication needs two tensors; exponentiation needs an int
    exponent. The result takes the "strongest" operand type: a
    cipher-encrypted tensor, then a plaintext-encrypted one, then any secure
    container, then float, otherwise the left operand's type.
    """

    def __init__(self, oracle: Optional[SecureTypeOracle] = None):
        self.oracle = oracle or SecureTypeOracle()

    def is_known(self, t: IRType) -> bool:
        return (
            t.name in NUMERIC_TYPES
            or t.name.startswith(NDARRAY)
            or self.oracle.is_secure_container(t)
        )

    def result_type(self, lt: IRType, rt: IRType) -> IRType:
        oracle = self.oracle
        for pick in (
            lambda t: oracle.is_ciphertensor(t) and oracle.has_ckks_ciphertext(t),
            lambda t: oracle.is_ciphertensor(t) and oracle.has_ckks_plaintext(t),
            oracle.is_secure_container,
            lambda t: t == FLOAT,
        ):
            if pick(lt):
                return lt
            if pick(rt):
                return rt
        return lt

    def resolve(self, owner: IRType, op: str, arg_types: Sequence[IRType]) -> Optional[Func]:
        arg_types = tuple(arg_types)
        if not arg_types or arg_types[0] != owner:
            return None
        if not all(self.is_known(t) for t in arg_types):
            return None

        if len(arg_types) == 1:
            if op == NEG:
                return Func(op, arg_types, owner, owner)
            return None
        if len(arg_types) != 2:
            return None

        lt, rt = arg_types
        if op == POW:
            return Func(op, arg_types, lt, owner) if rt == INT else None
        if op == MATMUL:
            if lt.name in NUMERIC_TYPES or rt.name in NUMERIC_TYPES:
                return None
            return Func(op, arg_types, self.result_type(lt, rt), owner)
        if op in ARITHMETIC_OPS:
            return Func(op, arg_types, self.result_type(lt, rt), owner)
        return None
