# Copyright (c) 2024 Yilin Zou
import numpy as np

from optigraph.base.graph import Op, default_graph


def test_children_precede_parents():
    g = default_graph()
    x = g.symbol("x", 1, 1)[0, 0]
    y = g.symbol("y", 1, 1)[0, 0]
    s = g.binary(Op.ADD, x, y)
    e = g.unary(Op.EXP, s)
    for i in (s, e):
        assert all(c < i for c in g.children(i))
    order = g.reachable([e])
    assert np.all(np.diff(order) > 0)
    assert set(order.tolist()) == {x, y, s, e}


def test_hash_consing():
    g = default_graph()
    x = g.symbol("x", 1, 1)[0, 0]
    y = g.symbol("y", 1, 1)[0, 0]
    assert g.binary(Op.MUL, x, y) == g.binary(Op.MUL, y, x)
    assert g.binary(Op.SUB, x, y) != g.binary(Op.SUB, y, x)
    assert g.unary(Op.SIN, x) == g.unary(Op.SIN, x)
    assert g.constant(2.5) == g.constant(2.5)


def test_constant_folding():
    g = default_graph()
    x = g.symbol("x", 1, 1)[0, 0]
    assert g.binary(Op.ADD, x, g.zero) == x
    assert g.binary(Op.MUL, g.one, x) == x
    assert g.binary(Op.MUL, x, g.zero) == g.zero
    assert g.binary(Op.DIV, x, g.one) == x
    assert g.binary(Op.POW, x, g.one) == x
    assert g.binary(Op.POW, x, g.zero) == g.one
    assert g.op(g.binary(Op.POW, x, g.constant(2.0))) == Op.SQ
    assert g.value(g.binary(Op.ADD, g.constant(2.0), g.constant(3.0))) == 5.0
    assert g.value(g.unary(Op.SQRT, g.constant(9.0))) == 3.0


def test_symbols():
    g = default_graph()
    ids = g.symbol("q", 2, 3)
    assert ids.shape == (2, 3)
    info, k = g.symbol_info(ids[1, 2])
    assert info.name == "q" and (info.rows, info.cols) == (2, 3)
    assert k == 5
    assert g.format(ids[1, 0]) == "q[1,0]"
    assert len(set(ids.ravel().tolist())) == 6


def test_free_symbols():
    g = default_graph()
    x = g.symbol("x", 1, 1)[0, 0]
    y = g.symbol("y", 1, 1)[0, 0]
    e = g.binary(Op.MUL, g.unary(Op.COS, x), g.constant(3.0))
    assert g.free_symbols([e]).tolist() == [x]
    assert g.free_symbols([e, y]).tolist() == [x, y]
