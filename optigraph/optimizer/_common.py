# Copyright (c) 2024 Yilin Zou
from collections import namedtuple
from enum import Enum
from logging import getLogger
from typing import Any, Optional

from optigraph.base.nlp import Nlp
from optigraph.base.vectypes import *

logger = getLogger(__name__)


class Status(Enum):
    """Outcome of a solve."""

    SUCCESS = 0
    """A (locally) optimal point was found."""
    INFEASIBLE = 1
    """The solver found the constraints to be infeasible."""
    ITERATION_LIMIT = 2
    """The iteration or time limit was reached."""
    NUMERICAL_FAILURE = 3
    """The solver stopped for numerical reasons."""


class SolverResult(
    namedtuple(
        "SolverResult",
        ["primal", "dual_x", "dual_g", "objective_value", "status", "raw"],
    )
):
    """Numeric result returned by a solver adapter."""

    primal: VecFloat
    """Values of the decision variables."""
    dual_x: VecFloat
    """Multipliers of the variable bounds, positive at an active upper bound."""
    dual_g: VecFloat
    """Multipliers of the constraints, positive at an active upper bound."""
    objective_value: float
    """Objective at ``primal``."""
    status: Status
    """Outcome of the solve."""
    raw: Any
    """Output of the underlying solver, verbatim."""


def _preprocess(
    nlp: Nlp,
    x_0: VecFloat,
    optimizer_options: Optional[dict] = None,
) -> tuple[VecFloat, dict]:
    if optimizer_options is None:
        optimizer_options = {}
    x_0 = np.asarray(x_0, dtype=np.float64).ravel()
    if x_0.shape != (nlp.n_x,):
        raise ValueError(f"len(x_0) must be equal to the number of variables ({nlp.n_x})")
    if np.any(nlp.v_lb > nlp.v_ub) or np.any(nlp.c_lb > nlp.c_ub):
        raise ValueError("a lower bound exceeds its upper bound")
    return np.clip(x_0, nlp.v_lb, nlp.v_ub), dict(optimizer_options)


def _postprocess(
    nlp: Nlp,
    x: VecFloat,
    dual_x: VecFloat,
    dual_g: VecFloat,
    status: Status,
    raw: Any,
) -> SolverResult:
    x = np.asarray(x, dtype=np.float64).ravel()
    objective_value = float(nlp.objective(x))
    if not np.isfinite(objective_value):
        logger.warning("solver returned a point with non-finite objective %s", objective_value)
        status = Status.NUMERICAL_FAILURE
    return SolverResult(
        x,
        np.asarray(dual_x, dtype=np.float64).ravel(),
        np.asarray(dual_g, dtype=np.float64).ravel(),
        objective_value,
        status,
        raw,
    )
