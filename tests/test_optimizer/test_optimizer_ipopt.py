# Copyright (c) 2024 Yilin Zou
import numpy as np
import pytest

pytest.importorskip("cyipopt")

from optigraph.base.matrix import *
from optigraph.base.nlp import Nlp
from optigraph.opti import Opti
from optigraph.optimizer import Status, get_solver, ipopt


def test_get_solver():
    assert get_solver("ipopt") is ipopt.solve


@pytest.mark.parametrize("hessian", ["exact", "limited-memory"])
def test_solve(hessian):
    x = sym("x", 3, 1)
    p = sym("p", 2, 1)
    f = sumsqr(x)
    g = vertcat(6 * x[0] + 3 * x[1] + 2 * x[2] - p[0], p[1] * x[0] + x[1] - x[2] - 1)
    nlp = Nlp(x, p, f, g, hessian=hessian)
    nlp.set_parameter([5.0, 1.0])
    nlp.set_bounds([0.0] * 3, [np.inf] * 3, [0.0, 0.0], [0.0, 0.0])
    result = ipopt.solve(nlp, np.array([0.15, 0.15, 0.0]), {"print_level": 0})
    assert result.status == Status.SUCCESS
    assert np.allclose(result.primal, np.array([62.0, 38.0, 2.0]) / 98.0, atol=1e-6)
    assert result.raw["status"] == 0


def test_duals():
    opti = Opti()
    x = opti.variable()
    y = opti.variable()
    opti.minimize(x**2 + y**2)
    bound = opti.subject_to(x >= 1)
    row = opti.subject_to(x + y >= 0.5)
    opti.solver("ipopt", {"print_level": 0, "sb": "yes"})
    sol = opti.solve()
    assert np.isclose(sol.value(x), 1.0, atol=1e-6)
    assert np.isclose(sol.value(y), 0.0, atol=1e-6)
    # stationarity of f + lam_g' g + lam_x' x
    assert np.isclose(sol.dual(bound), -2.0, atol=1e-5)
    assert np.isclose(sol.dual(row), 0.0, atol=1e-5)


@pytest.mark.parametrize("hessian", ["exact", "limited-memory"])
def test_dual_signs(hessian):
    # min x0^2 + (x1 - 2)^2  s.t.  x0 >= 1, x1^2 <= 1
    x = sym("x", 2, 1)
    nlp = Nlp(x, sym("p", 0, 1), x[0] ** 2 + (x[1] - 2) ** 2, x[1] ** 2, hessian=hessian)
    nlp.set_bounds([1.0, -np.inf], [np.inf, np.inf], [-np.inf], [1.0])
    result = ipopt.solve(nlp, np.array([2.0, 0.0]), {"print_level": 0, "sb": "yes"})
    assert result.status == Status.SUCCESS
    assert np.allclose(result.primal, [1.0, 1.0], atol=1e-6)
    assert np.isclose(result.dual_x[0], -2.0, atol=1e-5)
    assert np.isclose(result.dual_x[1], 0.0, atol=1e-5)
    assert np.isclose(result.dual_g[0], 1.0, atol=1e-5)


def test_upper_row_dual():
    opti = Opti()
    x = opti.variable()
    opti.minimize((x - 2) ** 2)
    row = opti.subject_to(x**2 <= 1)
    opti.solver("ipopt", {"print_level": 0, "sb": "yes"})
    sol = opti.solve()
    assert np.isclose(sol.value(x), 1.0, atol=1e-6)
    assert np.isclose(sol.dual(row), 1.0, atol=1e-5)
    assert sol.lam_g[0] > 0
