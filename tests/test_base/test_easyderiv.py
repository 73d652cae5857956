# Copyright (c) 2024 Yilin Zou
import logging
from unittest import mock

import numpy as np
import pytest

from optigraph.base import easyderiv
from optigraph.base.easyderiv import gradient, hessian, jacobian
from optigraph.base.errors import InputMismatch, NotDifferentiable, ShapeMismatch
from optigraph.base.function import Function
from optigraph.base.graph import Op, default_graph
from optigraph.base.matrix import *


def finite_difference(f, x, eps=1e-6):
    x = np.asarray(x, dtype=np.float64)
    y = np.ravel(f(x))
    J = np.empty((len(y), len(x)))
    for k in range(len(x)):
        dx = np.zeros_like(x)
        dx[k] = eps
        J[:, k] = (np.ravel(f(x + dx)) - np.ravel(f(x - dx))) / (2 * eps)
    return J


def test_jacobian_against_finite_difference():
    x = sym("x", 3, 1)
    e = vertcat(
        x[0] * sin(x[1]) + exp(x[2]) / x[0],
        sqrt(x[0] ** 2 + x[1] ** 2) * atan2(x[1], x[2]),
        log(x[0]) * x[0] ** x[1] - tanh(x[1]) + fmax(x[0], x[2]),
        cosh(x[2]) / (1 + x[0] * x[1]) + asin(x[1] / 4) + acos(x[0] / 4) + atan(x[2]),
    )
    f = Function("f", [x], [e])
    J = Function("J", [x], [jacobian(e, x)])
    x_value = np.array([1.3, 0.7, -0.4])
    assert J(x_value).shape == (4, 3)
    assert np.allclose(J(x_value), finite_difference(f, x_value), atol=1e-6)


def test_linearity():
    x = sym("x", 2, 1)
    a = sin(x[0]) * x[1]
    b = exp(x[1]) - x[0] ** 3
    lhs = Function("lhs", [x], [jacobian(2.0 * a + 3.0 * b, x)])
    rhs = Function("rhs", [x], [2.0 * jacobian(a, x) + 3.0 * jacobian(b, x)])
    for x_value in ([0.2, -1.0], [1.5, 0.3]):
        assert np.allclose(lhs(x_value), rhs(x_value))


def test_gradient_and_hessian():
    x = sym("x", 2, 1)
    f = x[0] ** 2 * x[1] + sin(x[1])
    H, g = hessian(f, x)
    assert g.shape == (2, 1)
    assert H.shape == (2, 2)
    func = Function("hess", [x], [H, g])
    H_value, g_value = func([2.0, 0.5])
    assert np.allclose(g_value, [[2 * 2.0 * 0.5], [2.0**2 + np.cos(0.5)]])
    assert np.allclose(H_value, [[2 * 0.5, 2 * 2.0], [2 * 2.0, -np.sin(0.5)]])
    with pytest.raises(ShapeMismatch):
        gradient(x, x)


def test_shared_subexpression_rule_applied_once():
    x = sym("x")
    shared = sin(x)
    f = shared + shared * 3.0 - shared / 2.0
    shared_id = int(shared.ids[0, 0])

    with mock.patch.object(easyderiv, "_partials", wraps=easyderiv._partials) as partials:
        J = jacobian(f, x)
    calls = [c.args[1] for c in partials.call_args_list]
    assert calls.count(shared_id) == 1
    assert np.allclose(Function("J", [x], [J])(0.3), 3.5 * np.cos(0.3))


def test_shared_function_derivative():
    x = sym("x")
    g = x**3
    f = g + g
    J = Function("J", [x], [jacobian(f, x)])
    assert np.allclose(J(2.0), 2 * 3 * 2.0**2)


def test_not_differentiable():
    x = sym("x")
    with pytest.raises(NotDifferentiable):
        jacobian(floor(x) * x, x)
    with pytest.raises(NotDifferentiable):
        jacobian(sign(x), x)
    with pytest.raises(NotDifferentiable):
        jacobian(ceil(x) + 1.0, x)
    # the first derivative of fabs exists, the second does not
    d = jacobian(fabs(x), x)
    with pytest.raises(NotDifferentiable):
        jacobian(d, x)


def test_disconnected_input(caplog):
    x = sym("x")
    y = sym("y")
    with caplog.at_level(logging.DEBUG, logger="optigraph.base.easyderiv"):
        J = jacobian(x**2, vertcat(x, y))
    assert J.shape == (1, 2)
    assert J.ids[0, 1] == default_graph().zero
    assert "do not influence" in caplog.text


def test_constant_output():
    x = sym("x", 2, 1)
    J = jacobian(constant([1.0, 2.0]), x)
    assert J.is_constant()
    assert np.allclose(J.to_numpy(), np.zeros((2, 2)))


def test_wrt_must_be_symbolic():
    x = sym("x", 2, 1)
    with pytest.raises(InputMismatch):
        jacobian(x[0], x * 2.0)
    with pytest.raises(InputMismatch):
        jacobian(x[0], vertcat(x, x))


def test_derivative_through_call():
    a = sym("a", 2, 1)
    inner = Function("inner", [a], [vertcat(a[0] * a[1], sin(a[0]))])
    x = sym("x", 2, 1)
    y = inner(x * 2.0)
    graph = default_graph()
    assert graph.op(int(y.ids[0, 0])) == Op.OUTPUT
    f = sumsqr(y)
    J = Function("J", [x], [jacobian(f, x)])
    reference = Function("f", [x], [f])
    x_value = np.array([0.4, -0.9])
    assert np.allclose(J(x_value), finite_difference(reference, x_value), atol=1e-6)

    H = Function("H", [x], [hessian(f, x)[0]])
    grad = Function("g", [x], [gradient(f, x)])
    assert np.allclose(H(x_value), finite_difference(grad, x_value), atol=1e-5)
