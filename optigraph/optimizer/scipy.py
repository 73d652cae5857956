# Copyright (c) 2024 Yilin Zou
from typing import Optional

import numpy as np
from scipy.optimize import BFGS, Bounds, NonlinearConstraint, minimize
from scipy.sparse import coo_array

from ._common import SolverResult, Status, _postprocess, _preprocess
from optigraph.base.nlp import Nlp

FEASIBILITY_TOLERANCE = 1.0e-6
"""Largest constraint violation still reported as a success."""

DEFAULT_OPTIONS = {
    "initial_barrier_parameter": 1.0e-8,
    "initial_barrier_tolerance": 1.0e-8,
}
"""trust-constr options applied unless given by the caller.

With the trust-constr defaults the barrier can hold the solution off an
active bound, e.g. ``x = 1.0004`` for ``min x**2, x >= 1``.
"""


def _reflection(func, row, col, n):
    diag_i = []
    diag_rc = []
    for i, (r, c) in enumerate(zip(row, col)):
        if r == c:
            diag_i.append(i)
            diag_rc.append(r)
    diag_i = np.array(diag_i, dtype=np.int64)
    diag_rc = np.array(diag_rc, dtype=np.int64)

    def full_csr_matrix(*args):
        data = func(*args)
        coo_half = coo_array((data, (row, col)), shape=(n, n))
        coo_diag = coo_array((data[diag_i], (diag_rc, diag_rc)), shape=(n, n))
        return (coo_half + coo_half.T - coo_diag).tocsr()

    return full_csr_matrix


def _status(res) -> Status:
    if res.status == 0:
        return Status.ITERATION_LIMIT
    if res.status in (1, 2):
        if res.constr_violation > FEASIBILITY_TOLERANCE:
            return Status.INFEASIBLE
        return Status.SUCCESS
    return Status.NUMERICAL_FAILURE


def solve(
    nlp: Nlp,
    x_0: np.ndarray,
    optimizer_options: Optional[dict] = None,
) -> SolverResult:
    """Solve the NLP using trust-constr method of
    :func:`scipy.optimize.minimize`.

    Optimizer options should be a dictionary of options to pass to :func:`scipy.optimize.minimize`.
    See [Scipy documentation](https://docs.scipy.org)
    for available options. Options will be passed verbatimly, on top of
    :data:`DEFAULT_OPTIONS`.

    With a limited-memory ``Nlp``, Hessians are approximated by
    :class:`scipy.optimize.BFGS`.

    Args:
        nlp: ``Nlp`` to solve.
        x_0: Initial guess, clipped into the variable bounds.
        optimizer_options: Options to pass to :func:`scipy.optimize.minimize`.

    Returns:
        The solution, with the raw output of :func:`scipy.optimize.minimize`.
    """
    x_0, optimizer_options = _preprocess(nlp, x_0, optimizer_options)
    optimizer_options = {**DEFAULT_OPTIONS, **optimizer_options}

    if nlp.exact_hessian:
        objective_hessian = _reflection(nlp.hessian_o, *nlp.hessianstructure_o(), nlp.n_x)
    else:
        objective_hessian = BFGS()

    constraints = []
    if nlp.n_c:
        constraints_jacobian = lambda x: coo_array(
            (nlp.jacobian(x), nlp.jacobianstructure()), shape=(nlp.n_c, nlp.n_x)
        ).tocsr()
        if nlp.exact_hessian:
            constraints_hessian = _reflection(
                nlp.hessian_c, *nlp.hessianstructure_c(), nlp.n_x
            )
        else:
            constraints_hessian = BFGS()
        constraints.append(
            NonlinearConstraint(
                nlp.constraints,
                nlp.c_lb,
                nlp.c_ub,
                jac=constraints_jacobian,
                hess=constraints_hessian,
            )
        )

    bounds = Bounds(nlp.v_lb, nlp.v_ub)

    res = minimize(
        nlp.objective,
        x_0,
        method="trust-constr",
        jac=nlp.gradient,
        hess=objective_hessian,
        constraints=constraints,
        bounds=bounds,
        options=optimizer_options,
    )

    # trust-constr reports one multiplier array per constraint, bounds last
    v = list(getattr(res, "v", []))
    dual_g = v[0] if nlp.n_c and v else np.zeros(nlp.n_c)
    dual_x = v[len(constraints)] if len(v) > len(constraints) else np.zeros(nlp.n_x)
    if np.shape(dual_x) != (nlp.n_x,):
        dual_x = np.zeros(nlp.n_x)

    return _postprocess(nlp, res.x, dual_x, dual_g, _status(res), res)
