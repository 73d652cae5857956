# Copyright (c) 2024 Yilin Zou
import numpy as np
import pytest

from optigraph.base.matrix import *
from optigraph.base.nlp import Nlp
from optigraph.optimizer import Status, get_solver
from optigraph.optimizer import scipy


def test_reflection():
    # row >= col
    row = np.array([3, 2, 2, 0, 2, 2, 1])
    col = np.array([3, 2, 0, 0, 1, 2, 0])
    func = lambda _: np.arange(7) ** 2
    func_2 = scipy._reflection(func, row, col, 4)
    res = np.array([[9, 36, 4, 0], [36, 0, 16, 0], [4, 16, 1 + 25, 0], [0, 0, 0, 0]])
    assert np.all(func_2(None).toarray() == res)


def test_get_solver():
    assert get_solver("scipy") is scipy.solve
    with pytest.raises(ValueError):
        get_solver("unknown")


def rosenbrock_in_disk(hessian="exact"):
    x = sym("x", 2, 1)
    f = 100 * (x[1] - x[0] ** 2) ** 2 + (1 - x[0]) ** 2
    nlp = Nlp(x, sym("p", 0, 1), f, sumsqr(x), hessian=hessian)
    nlp.set_bounds([-np.inf] * 2, [np.inf] * 2, [-np.inf], [2.5])
    return nlp


@pytest.mark.parametrize("hessian", ["exact", "limited-memory"])
def test_solve(hessian):
    nlp = rosenbrock_in_disk(hessian)
    result = scipy.solve(nlp, np.array([-1.0, 0.5]), {"maxiter": 3000})
    assert result.status == Status.SUCCESS
    assert np.allclose(result.primal, [1.0, 1.0], atol=1e-3)
    assert np.isclose(result.objective_value, 0.0, atol=1e-4)
    assert result.dual_g.shape == (1,)
    assert result.dual_x.shape == (2,)


def test_initial_guess_clipped():
    x = sym("x")
    nlp = Nlp(x, sym("p", 0, 1), (x - 3) ** 2, sym("g", 0, 1))
    nlp.set_bounds([0.0], [1.0], [], [])
    result = scipy.solve(nlp, np.array([5.0]))
    assert result.status == Status.SUCCESS
    assert np.isclose(result.primal[0], 1.0, atol=1e-4)
    with pytest.raises(ValueError):
        scipy.solve(nlp, np.array([0.5, 0.5]))


def test_iteration_limit():
    nlp = rosenbrock_in_disk()
    result = scipy.solve(nlp, np.array([-1.0, 0.5]), {"maxiter": 2})
    assert result.status == Status.ITERATION_LIMIT


def test_dual_signs():
    # min x0^2 + (x1 - 2)^2  s.t.  x0 >= 1, x1^2 <= 1
    x = sym("x", 2, 1)
    nlp = Nlp(x, sym("p", 0, 1), x[0] ** 2 + (x[1] - 2) ** 2, x[1] ** 2)
    nlp.set_bounds([1.0, -np.inf], [np.inf, np.inf], [-np.inf], [1.0])
    result = scipy.solve(nlp, np.array([2.0, 0.0]))
    assert result.status == Status.SUCCESS
    assert np.allclose(result.primal, [1.0, 1.0], atol=1e-5)
    # stationarity of f + lam_g' g + lam_x' x
    assert np.isclose(result.dual_x[0], -2.0, atol=1e-3)
    assert np.isclose(result.dual_x[1], 0.0, atol=1e-3)
    assert np.isclose(result.dual_g[0], 1.0, atol=1e-3)
