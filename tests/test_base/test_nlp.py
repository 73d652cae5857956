# Copyright (c) 2024 Yilin Zou
import numpy as np
import pytest

from optigraph.base.errors import ShapeMismatch
from optigraph.base.matrix import *
from optigraph.base.nlp import Nlp


def dense(values, structure, n):
    M = np.zeros(n)
    np.add.at(M, structure, values)
    return M


@pytest.fixture
def nlp():
    x = sym("x", 3, 1)
    p = sym("p", 2, 1)
    f = x[0] ** 2 * x[1] + p[0] * exp(x[2])
    g = vertcat(x[0] * x[1] - p[1], sin(x[2]) + x[0])
    return Nlp(x, p, f, g)


def test_sizes(nlp):
    assert (nlp.n_x, nlp.n_p, nlp.n_c) == (3, 2, 2)
    assert nlp.exact_hessian
    assert np.all(nlp.v_lb == -np.inf) and np.all(nlp.c_ub == np.inf)


def test_first_order(nlp):
    nlp.set_parameter([2.0, 0.5])
    x = np.array([1.0, 3.0, 0.5])
    assert np.isclose(nlp.objective(x), 3.0 + 2.0 * np.exp(0.5))
    assert np.allclose(nlp.gradient(x), [6.0, 1.0, 2.0 * np.exp(0.5)])
    assert np.allclose(nlp.constraints(x), [2.5, np.sin(0.5) + 1.0])
    row, col = nlp.jacobianstructure()
    J = dense(nlp.jacobian(x), (row, col), (2, 3))
    assert np.allclose(J, [[3.0, 1.0, 0.0], [1.0, 0.0, np.cos(0.5)]])
    # structural zeros are not reported
    assert len(row) == 4


def test_second_order(nlp):
    nlp.set_parameter([2.0, 0.5])
    x = np.array([1.0, 3.0, 0.5])
    lam = np.array([0.7, -1.1])
    row, col = nlp.hessianstructure_o()
    assert np.all(row >= col)
    H_o = dense(nlp.hessian_o(x), (row, col), (3, 3))
    assert np.allclose(H_o, [[6.0, 0.0, 0.0], [2.0, 0.0, 0.0], [0.0, 0.0, 2.0 * np.exp(0.5)]])

    row, col = nlp.hessianstructure_c()
    H_c = dense(nlp.hessian_c(x, lam), (row, col), (3, 3))
    assert np.allclose(H_c, [[0.0, 0.0, 0.0], [0.7, 0.0, 0.0], [0.0, 0.0, 1.1 * np.sin(0.5)]])

    row, col = nlp.hessianstructure()
    H = dense(nlp.hessian(x, lam, 2.0), (row, col), (3, 3))
    assert np.allclose(H, 2.0 * H_o + H_c)


def test_bounds(nlp):
    nlp.set_bounds([0.0] * 3, [1.0] * 3, [-1.0, -2.0], [1.0, 2.0])
    assert np.allclose(nlp.v_ub, 1.0)
    assert np.allclose(nlp.c_lb, [-1.0, -2.0])
    with pytest.raises(ShapeMismatch):
        nlp.set_bounds([0.0] * 2, [1.0] * 3, [-1.0, -2.0], [1.0, 2.0])
    with pytest.raises(ShapeMismatch):
        nlp.set_parameter([1.0])


def test_limited_memory():
    x = sym("x", 2, 1)
    nlp = Nlp(x, sym("p", 0, 1), sumsqr(x), sym("g", 0, 1), hessian="limited-memory")
    assert not nlp.exact_hessian
    assert nlp.n_c == 0
    assert np.allclose(nlp.gradient([1.0, 2.0]), [2.0, 4.0])
    with pytest.raises(RuntimeError):
        nlp.hessian_o([1.0, 2.0])
    with pytest.raises(ValueError):
        Nlp(x, sym("p", 0, 1), sumsqr(x), sym("g", 0, 1), hessian="newton")
