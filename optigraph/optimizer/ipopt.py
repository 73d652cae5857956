# Copyright (c) 2024 Yilin Zou
from typing import Optional

import cyipopt
import numpy as np

from ._common import SolverResult, Status, _postprocess, _preprocess
from optigraph.base.nlp import Nlp

_STATUS = {
    0: Status.SUCCESS,  # Solve_Succeeded
    1: Status.SUCCESS,  # Solved_To_Acceptable_Level
    6: Status.SUCCESS,  # Feasible_Point_Found
    2: Status.INFEASIBLE,  # Infeasible_Problem_Detected
    -1: Status.ITERATION_LIMIT,  # Maximum_Iterations_Exceeded
    -4: Status.ITERATION_LIMIT,  # Maximum_CpuTime_Exceeded
    -5: Status.ITERATION_LIMIT,  # Maximum_WallTime_Exceeded
}


class _FirstOrderProblem:
    """Callbacks of an ``Nlp`` without Hessians, for limited-memory mode."""

    def __init__(self, nlp: Nlp) -> None:
        self.objective = nlp.objective
        self.gradient = nlp.gradient
        self.constraints = nlp.constraints
        self.jacobian = nlp.jacobian
        self.jacobianstructure = nlp.jacobianstructure


def solve(
    nlp: Nlp,
    x_0: np.ndarray,
    optimizer_options: Optional[dict] = None,
) -> SolverResult:
    """Solve the NLP using [IPOPT](https://github.com/coin-or/Ipopt).

    Optimizer options should be a dictionary of options to pass to Ipopt.
    See [Ipopt documentation](https://coin-or.github.io/Ipopt/OPTIONS.html) for available options.
    Options will be passed verbatimly.

    With a limited-memory ``Nlp``, the option ``hessian_approximation`` is
    set to ``limited-memory``.

    Args:
        nlp: ``Nlp`` to solve.
        x_0: Initial guess, clipped into the variable bounds.
        optimizer_options: Options to pass to IPOPT.

    Returns:
        The solution, with the ``info`` dictionary returned by IPOPT.
    """
    x_0, optimizer_options = _preprocess(nlp, x_0, optimizer_options)

    solver = cyipopt.Problem(
        n=int(nlp.n_x),
        m=int(nlp.n_c),
        problem_obj=nlp if nlp.exact_hessian else _FirstOrderProblem(nlp),
        lb=nlp.v_lb,
        ub=nlp.v_ub,
        cl=nlp.c_lb,
        cu=nlp.c_ub,
    )
    if not nlp.exact_hessian:
        solver.add_option("hessian_approximation", "limited-memory")
    for k, v in optimizer_options.items():
        solver.add_option(k, v)

    x, info = solver.solve(x_0)

    status = _STATUS.get(info["status"], Status.NUMERICAL_FAILURE)
    dual_x = np.asarray(info["mult_x_U"]) - np.asarray(info["mult_x_L"])
    return _postprocess(nlp, x, dual_x, info["mult_g"], status, info)
