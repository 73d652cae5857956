# Copyright (c) 2024 Yilin Zou
import numpy as np
import pytest

from optigraph.base.errors import InputMismatch, ShapeMismatch
from optigraph.base.function import Function
from optigraph.base.graph import Op, default_graph
from optigraph.base.matrix import *


def test_evaluate():
    x = sym("x")
    f = Function("f", [x], [x**2 + 10])
    assert np.allclose(f(3.0), 19.0)
    assert f.evaluate(3.0)[0].shape == (1, 1)


def test_map():
    x = sym("x")
    f = Function("f", [x], [x**2 + 10])
    assert np.allclose(f.map(3)(np.array([[0.0, 2.0, 4.0]])), [[10.0, 14.0, 26.0]])
    with pytest.raises(ShapeMismatch):
        f.map(3)(np.array([[0.0, 2.0]]))
    with pytest.raises(ShapeMismatch):
        f(np.array([0.0, 2.0, 4.0]))


def test_map_shared_argument():
    x = sym("x", 2, 1)
    k = sym("k")
    f = Function("f", [x, k], [x * k, x.sum()])
    y, s = f.map(3)(np.array([[1.0, 2.0, 3.0], [1.0, 1.0, 1.0]]), 2.0)
    assert np.allclose(y, [[2.0, 4.0, 6.0], [2.0, 2.0, 2.0]])
    assert np.allclose(s, [[2.0, 3.0, 4.0]])


def test_multiple_inputs_outputs():
    x = sym("x", 2, 1)
    y = sym("y", 1, 2)
    f = Function("f", [x, y], [x @ y, (y @ x).sum()], ["x", "y"], ["outer", "inner"])
    assert f.n_in == 2 and f.n_out == 2
    assert f.name_in == ["x", "y"] and f.name_out == ["outer", "inner"]
    assert f.size_in(1) == (1, 2) and f.size_out(0) == (2, 2)
    outer, inner = f([1.0, 2.0], [[3.0, 4.0]])
    assert np.allclose(outer, [[3.0, 4.0], [6.0, 8.0]])
    assert np.allclose(inner, 11.0)
    with pytest.raises(ShapeMismatch):
        f([1.0, 2.0], [3.0, 4.0])
    with pytest.raises(ValueError):
        f([1.0, 2.0])
    assert "outer[2x2]" in repr(f)


def test_input_mismatch():
    x = sym("x")
    y = sym("y")
    with pytest.raises(InputMismatch):
        Function("f", [x], [x + y])
    with pytest.raises(InputMismatch):
        Function("f", [x * 2.0], [x])
    with pytest.raises(InputMismatch):
        Function("f", [x, x], [x])


def test_embed():
    a = sym("a", 2, 1)
    f = Function("f", [a], [vertcat(a[0] * a[1], constant(3.0), a[1])])
    x = sym("x", 2, 1)
    y = f(x)
    graph = default_graph()
    assert y.shape == (3, 1)
    assert graph.op(int(y.ids[0, 0])) == Op.OUTPUT
    assert graph.is_constant(int(y.ids[1, 0]))
    assert y.ids[2, 0] == x.ids[1, 0]
    with pytest.raises(ShapeMismatch):
        f(sym("z", 3, 1))


def test_compose():
    a = sym("a")
    inner = Function("inner", [a], [sin(a) * a])
    x = sym("x", 3, 1)
    outer = Function("outer", [x], [inner(x[0]) + inner(x[1]) * inner(x[2])])
    v = np.array([0.3, -1.2, 2.0])
    g = lambda t: np.sin(t) * t
    assert np.allclose(outer(v), g(v[0]) + g(v[1]) * g(v[2]))

    m = inner.map(3)(x.T)
    assert m.shape == (1, 3)
    assert np.allclose(Function("m", [x], [m])(v), g(v)[None, :])


def test_jacobian_function():
    x = sym("x", 2, 1)
    f = Function("f", [x], [vertcat(x[0] * x[1], exp(x[0]))])
    jac = f.jacobian()
    assert jac is f.jacobian()
    assert jac.name == "jac_f"
    assert jac.size_out(0) == (2, 2)
    assert np.allclose(jac([1.0, 2.0]), [[2.0, 1.0], [np.e, 0.0]])
