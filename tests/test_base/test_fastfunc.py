# Copyright (c) 2024 Yilin Zou
import numpy as np
import pytest

from optigraph.base.easyderiv import jacobian
from optigraph.base.fastfunc import FastFunc
from optigraph.base.function import Function
from optigraph.base.matrix import *


def test_constant_function():
    c = constant([[1.0, 2.0]])
    ff = FastFunc(np.array([], dtype=np.int64), c.ids)
    assert np.allclose(ff(np.zeros((0, 10))), np.array([[1.0] * 10, [2.0] * 10]))

    x = sym("x")
    ff = FastFunc(x.ids, c.ids)
    assert np.allclose(ff(np.zeros((1, 3))), np.array([[1.0] * 3, [2.0] * 3]))


def test_batch():
    x = sym("x")
    y = sym("y")
    e = x + y**2
    ff = FastFunc(vertcat(x, y).ids, e.ids)
    t = np.arange(10, dtype=np.float64)
    v_x = np.sin(t)
    v_y = t * 2
    assert np.allclose(ff(np.vstack([v_x, v_y])), (v_x + v_y**2)[None, :])


def test_shared_nodes_evaluated_once():
    x = sym("x")
    s = exp(x)
    e = vertcat(s * s, s + 1.0, s)
    ff = FastFunc(x.ids, e.ids)
    # x, exp(x), one constant and two results
    assert ff.n_slot == 5
    assert np.allclose(ff(np.array([[0.0, 1.0]])), [[1.0, np.e**2], [2.0, np.e + 1], [1.0, np.e]])


def test_unused_input():
    x = sym("x")
    y = sym("y")
    ff = FastFunc(vertcat(x, y).ids, (x * 3.0).ids)
    assert np.allclose(ff(np.array([[2.0], [np.nan]])), [[6.0]])


def test_wrong_input_shape():
    x = sym("x", 2, 1)
    ff = FastFunc(x.ids, sumsqr(x).ids)
    with pytest.raises(ValueError):
        ff(np.zeros((3, 1)))


def test_parallel_fastmath_flags():
    x = sym("x", 3, 1)
    e = vertcat(sin(x) * cos(x), sqrt(x) + log(x))
    v = np.random.default_rng(0).uniform(0.5, 2.0, size=(3, 50))
    reference = FastFunc(x.ids, e.ids)(v)
    for parallel, fastmath in ((True, False), (False, True), (True, True)):
        ff = FastFunc(x.ids, e.ids, parallel=parallel, fastmath=fastmath)
        assert np.allclose(ff(v), reference)


def test_call_segments():
    a = sym("a")
    square = Function("square", [a], [a**2 + 1.0])
    x = sym("x")
    e = square(square(x) * 2.0) - x
    ff = FastFunc(x.ids, e.ids)
    v = np.array([[0.0, 1.0, -2.0]])
    inner = v**2 + 1.0
    assert np.allclose(ff(v), (2.0 * inner) ** 2 + 1.0 - v)


def test_division_by_zero():
    x = sym("x")
    y = sym("y")
    f = Function("d", [x, y], [x / y])
    assert f(1.0, 0.0) == np.inf
    assert f(-1.0, 0.0) == -np.inf
    assert np.isnan(f(0.0, 0.0))

    ff = FastFunc(vertcat(x, y).ids, vertcat(x / y, y**-1.0).ids)
    out = ff(np.array([[2.0, 2.0], [0.0, 4.0]]))
    assert np.array_equal(out, [[np.inf, 0.5], [np.inf, 0.25]])


def test_sqrt_derivative_at_zero():
    x = sym("x")
    f = Function("j", [x], [jacobian(sqrt(x), x)])
    assert f(0.0) == np.inf
    assert np.isclose(f(4.0), 0.25)
