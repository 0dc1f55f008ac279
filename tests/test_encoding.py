# File: tests/test_encoding.py

import pytest

from builder import TreeRegistry
from conftest import CT, function_source
from encoding import NONE, NodeRecord, TreeEncoder, decode_records, encoding_value
from ir import ADD, MUL, TUPLE
from rewrites import reduce_all


@pytest.fixture
def encoded(lower, module, oracle):
    function = lower(function_source("r = a * x", "return r + a"))
    registry = TreeRegistry()
    registry.parse_series(function)
    records = TreeEncoder(module, oracle).encode_registry(registry, function.params[1:])
    return function, registry, records


def test_encoding_layout(encoded):
    function, _, records = encoded
    _, a, _, _, x = function.params[:5]
    assign, ret = function.body
    mul, add = assign.rhs, ret.value
    r_read, a_read = add.args

    assert [tuple(rec) for rec in records] == [
        # most recent tree first
        (add.id, r_read.id, a_read.id, NONE, NONE, ADD, CT),
        (r_read.id, NONE, NONE, NONE, assign.lhs.id, "", CT),
        (a_read.id, NONE, NONE, 0, a.id, "", "int"),
        (mul.id, mul.args[0].id, mul.args[1].id, NONE, NONE, MUL, CT),
        (mul.args[0].id, NONE, NONE, 0, a.id, "", "int"),
        (mul.args[1].id, NONE, NONE, 3, x.id, "", CT),
    ]


def test_records_are_seven_tuples(encoded):
    _, _, records = encoded
    assert all(isinstance(rec, NodeRecord) and len(rec) == 7 for rec in records)
    assert NodeRecord._fields == ("id", "left_id", "right_id", "param_idx", "var_id", "op", "type_name")


def test_encoding_value(encoded, module):
    _, _, records = encoded
    const = encoding_value(module, records)
    assert const.type == TUPLE
    assert const.value == tuple(tuple(rec) for rec in records)


def test_decode_round_trip(encoded):
    function, registry, records = encoded
    roots = decode_records(tuple(rec) for rec in records)
    assert len(roots) == 2
    (_, ret_tree), (_, r_tree) = registry.roots()
    assert roots[0].same_tree(ret_tree)
    assert roots[1].same_tree(r_tree)
    assert roots[1].realize_type(None).name == CT
    assert roots[0].left.variable_id == function.body[0].lhs.id


def test_rewritten_and_copied_nodes_get_fresh_ids(trees, module, oracle):
    (root,) = trees("r = a * x + b * x")
    reduce_all(root, oracle)
    clone = root.copy()

    encoder = TreeEncoder(module, oracle)
    records = encoder.encode_tree(root, []) + encoder.encode_tree(clone, [])
    ids = [rec.id for rec in records]
    assert len(set(ids)) == len(ids)
    for rec in records:
        for child in (rec.left_id, rec.right_id):
            assert child == NONE or child in ids
    assert all(rec.param_idx == NONE for rec in records)


def test_encoder_is_stable_per_node(trees, module, oracle):
    (root,) = trees("r = a * x")
    encoder = TreeEncoder(module, oracle)
    assert encoder.node_id(root) == encoder.node_id(root)
    assert encoder.node_id(root) == root.value.id


def encode_function(function, module, oracle):
    registry = TreeRegistry()
    registry.parse_series(function)
    return TreeEncoder(module, oracle).encode_registry(registry, function.params[1:])


def test_returning_a_variable(lower, module, oracle):
    function = lower("@mhe_enc_opt\n" + function_source("r = a * x", "return r"))
    assign, ret = function.body
    records = encode_function(function, module, oracle)
    assert len(records) == 4
    assert tuple(records[0]) == (ret.value.id, NONE, NONE, NONE, assign.lhs.id, "", CT)
    assert records[1].op == MUL


@pytest.mark.parametrize("lines, count", [
    (("r = a * x", "t = r"),        4),
    (("r = 3", "t = r * x"),        4),
    (("r = a * x", "return"),       3),
])
def test_plain_values_and_bare_returns(lower, module, oracle, lines, count):
    function = lower(function_source(*lines))
    records = encode_function(function, module, oracle)
    assert len(records) == count
    assert all(rec.type_name for rec in records)


def test_constants_decode_without_their_value(trees, module, oracle):
    # records carry no constant payload: structure and types survive, values do not
    (root,) = trees("r = a * 2")
    (decoded,) = decode_records(TreeEncoder(module, oracle).encode_tree(root, []))
    assert decoded.op == MUL
    assert decoded.left.variable_id == root.left.variable_id
    assert decoded.right.is_leaf() and decoded.right.value is None
    assert decoded.right.ir_type.name == "int"
    assert not decoded.same_tree(root)

    (variables_only,) = trees("r = a * x")
    (decoded,) = decode_records(TreeEncoder(module, oracle).encode_tree(variables_only, []))
    assert decoded.same_tree(variables_only)
