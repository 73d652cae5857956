# Copyright (c) 2024 Yilin Zou
from typing import TYPE_CHECKING

from optigraph.base.matrix import Constraint
from optigraph.base.vectypes import *
from optigraph.optimizer import SolverResult, Status

if TYPE_CHECKING:
    from .opti import Opti


class OptiSol:
    """Solution of an :class:`Opti` problem.

    Values are interpreted against the declared variables: ``value(x)`` has
    the shape of ``x`` whatever the position of ``x`` in the decision vector.
    """

    def __init__(self, opti: "Opti", result: SolverResult, parameter: VecFloat) -> None:
        self._opti = opti
        self._result = result
        self._parameter = parameter

    def value(self, expr) -> float | VecFloat:
        """Value of an expression of the variables and parameters at the
        solution. ``1 x 1`` expressions give a float."""
        value = self._opti._evaluate(expr, self._result.primal, self._parameter)
        if value.shape == (1, 1):
            return float(value[0, 0])
        return value

    def dual(self, constraint: Constraint) -> float | VecFloat:
        """Multipliers of a declared constraint, in its shape.

        With the Lagrangian ``f + lam_g' g + lam_x' x``, multipliers are
        positive at active upper bounds and negative at active lower bounds.
        """
        record = self._opti._record(constraint)
        if record.offset is None:
            dual = self._result.dual_x[record.index]
        else:
            dual = self._result.dual_g[record.offset : record.offset + record.expr.numel]
        dual = dual.reshape(constraint.shape)
        if dual.shape == (1, 1):
            return float(dual[0, 0])
        return dual

    @property
    def x(self) -> VecFloat:
        """Decision vector."""
        return self._result.primal

    @property
    def lam_x(self) -> VecFloat:
        """Multipliers of the variable bounds."""
        return self._result.dual_x

    @property
    def lam_g(self) -> VecFloat:
        """Multipliers of the general constraints."""
        return self._result.dual_g

    @property
    def f(self) -> float:
        """Objective value."""
        return self._result.objective_value

    @property
    def status(self) -> Status:
        return self._result.status

    @property
    def stats(self) -> dict:
        """Status, objective and the raw output of the solver."""
        return {
            "status": self._result.status.name,
            "success": self._result.status == Status.SUCCESS,
            "objective": self._result.objective_value,
            "raw": self._result.raw,
        }
