# Copyright (c) 2024 Yilin Zou
from logging import getLogger

from .easyderiv import gradient, jacobian_ids
from .errors import ShapeMismatch
from .function import Function
from .graph import default_graph
from .matrix import MatrixExpr, dot
from .vectypes import *

logger = getLogger(__name__)

HESSIAN_MODES = ("exact", "limited-memory")


def _lower_triangle(ids: NDArray[np.int64]) -> tuple[VecInt, VecInt]:
    zero = default_graph().zero
    row, col = np.nonzero((ids != zero) & np.tri(*ids.shape, dtype=bool))
    return row.astype(np.int64), col.astype(np.int64)


class Nlp:
    r"""A nonlinear program in first and second order form.

    .. math::

        \min_x f(x, p) \quad \text{s.t.} \quad
        g_{lb} \le g(x, p) \le g_{ub}, \; x_{lb} \le x \le x_{ub}

    Objective, constraints and their derivatives are compiled once. Bounds
    and parameter values are numeric and can be replaced between solves.
    The callbacks follow the ``problem_obj`` protocol of
    [cyipopt](https://cyipopt.readthedocs.io).
    """

    def __init__(
        self,
        x: MatrixExpr,
        p: MatrixExpr,
        f: MatrixExpr,
        g: MatrixExpr,
        hessian: str = "exact",
        parallel: bool = False,
        fastmath: bool = False,
    ) -> None:
        """
        Args:
            x: Column of decision variable symbols.
            p: Column of parameter symbols.
            f: Objective, ``1 x 1``.
            g: Column of constraint expressions.
            hessian: ``"exact"`` to compile Hessians of the objective and the
                constraints, ``"limited-memory"`` to leave them to the solver.
            parallel: Whether to use Numba ``parallel`` mode.
            fastmath: Whether to use Numba ``fastmath`` mode.
        """
        if hessian not in HESSIAN_MODES:
            raise ValueError(f"hessian must be one of {', '.join(HESSIAN_MODES)}")
        if not f.is_scalar():
            raise ShapeMismatch(f"objective must be 1x1, got {f.rows}x{f.cols}")
        if x.cols != 1 or p.cols != 1 or g.cols != 1:
            raise ShapeMismatch("x, p and g must be columns")
        self.x = x
        """Decision variables."""
        self.p = p
        """Parameters."""
        self.f = f
        """Objective."""
        self.g = g
        """Constraints."""
        self._hessian = hessian
        flags = parallel, fastmath
        xp = [x, p]
        graph = default_graph()

        grad_f = gradient(f, x)
        self._func_objective = Function("nlp_f", xp, [f], ["x", "p"], ["f"], *flags)
        self._func_gradient = Function(
            "nlp_grad_f", xp, [grad_f], ["x", "p"], ["grad_f"], *flags
        )
        self._func_constraint = Function("nlp_g", xp, [g], ["x", "p"], ["g"], *flags)

        J = jacobian_ids(g.ids, x.ids)
        self._jac_constraint_row, self._jac_constraint_col = (
            a.astype(np.int64) for a in np.nonzero(J != graph.zero)
        )
        self._func_jacobian = Function(
            "nlp_jac_g",
            xp,
            [MatrixExpr(J[self._jac_constraint_row, self._jac_constraint_col].reshape(-1, 1))],
            ["x", "p"],
            ["jac_g"],
            *flags,
        )

        if hessian == "exact":
            H_o = jacobian_ids(grad_f.ids, x.ids)
            self._hess_objective_row, self._hess_objective_col = _lower_triangle(H_o)
            self._func_hessian_o = Function(
                "nlp_hess_f",
                xp,
                [MatrixExpr(H_o[self._hess_objective_row, self._hess_objective_col].reshape(-1, 1))],
                ["x", "p"],
                ["hess_f"],
                *flags,
            )

            lam = MatrixExpr.sym("lam_g", g.rows, 1)
            if g.rows:
                H_c = jacobian_ids(gradient(dot(lam, g), x).ids, x.ids)
            else:
                H_c = np.full((x.rows, x.rows), graph.zero, dtype=np.int64)
            self._hess_constraint_row, self._hess_constraint_col = _lower_triangle(H_c)
            self._func_hessian_c = Function(
                "nlp_hess_g",
                [x, p, lam],
                [MatrixExpr(H_c[self._hess_constraint_row, self._hess_constraint_col].reshape(-1, 1))],
                ["x", "p", "lam_g"],
                ["hess_g"],
                *flags,
            )
            self._hess_all_row = np.concatenate([self._hess_objective_row, self._hess_constraint_row])
            self._hess_all_col = np.concatenate([self._hess_objective_col, self._hess_constraint_col])

        self._parameter = np.zeros(p.rows, dtype=np.float64)
        self._lower_bound_variable = np.full(x.rows, -np.inf)
        self._upper_bound_variable = np.full(x.rows, np.inf)
        self._lower_bound_constraint = np.full(g.rows, -np.inf)
        self._upper_bound_constraint = np.full(g.rows, np.inf)
        logger.debug(
            "nlp: %d variables, %d parameters, %d constraints, %d jacobian nonzeros",
            x.rows,
            p.rows,
            g.rows,
            len(self._jac_constraint_row),
        )

    def set_parameter(self, value: VecFloat) -> None:
        """Set the numeric values of the parameters."""
        value = np.asarray(value, dtype=np.float64).ravel()
        if value.shape != (self.n_p,):
            raise ShapeMismatch(f"expected {self.n_p} parameter values, got {value.size}")
        self._parameter = value.copy()

    def set_bounds(
        self,
        lower_bound_variable: VecFloat,
        upper_bound_variable: VecFloat,
        lower_bound_constraint: VecFloat,
        upper_bound_constraint: VecFloat,
    ) -> None:
        """Set the numeric bounds of variables and constraints. Use ``-inf``
        and ``inf`` for unbounded directions."""
        bounds = [
            np.asarray(b, dtype=np.float64).ravel().copy()
            for b in (
                lower_bound_variable,
                upper_bound_variable,
                lower_bound_constraint,
                upper_bound_constraint,
            )
        ]
        if not bounds[0].shape == bounds[1].shape == (self.n_x,):
            raise ShapeMismatch(f"variable bounds must have {self.n_x} entries")
        if not bounds[2].shape == bounds[3].shape == (self.n_c,):
            raise ShapeMismatch(f"constraint bounds must have {self.n_c} entries")
        (
            self._lower_bound_variable,
            self._upper_bound_variable,
            self._lower_bound_constraint,
            self._upper_bound_constraint,
        ) = bounds

    def _xp(self, x: VecFloat, *extra: VecFloat) -> VecFloat:
        return np.concatenate([np.asarray(x, dtype=np.float64).ravel(), self._parameter, *extra])[:, None]

    def objective(self, x: VecFloat) -> np.float64:
        """The objective function."""
        return self._func_objective._eval_flat(self._xp(x))[0, 0]

    def gradient(self, x: VecFloat) -> VecFloat:
        """Gradient of the objective function."""
        return self._func_gradient._eval_flat(self._xp(x))[:, 0]

    def constraints(self, x: VecFloat) -> VecFloat:
        """Constraint functions."""
        return self._func_constraint._eval_flat(self._xp(x))[:, 0]

    def jacobianstructure(self) -> tuple[VecInt, VecInt]:
        """Coordinates of the Jacobian of the constraint functions."""
        return self._jac_constraint_row, self._jac_constraint_col

    def jacobian(self, x: VecFloat) -> VecFloat:
        """Jacobian of the constraint functions.

        Args:
            x: Vector of optimization variables.

        Returns:
            A plain 1D array, with coordinates given by :meth:`jacobianstructure`.
        """
        return self._func_jacobian._eval_flat(self._xp(x))[:, 0]

    def _require_exact(self) -> None:
        if self._hessian != "exact":
            raise RuntimeError("Hessians are not compiled in limited-memory mode")

    def hessianstructure_o(self) -> tuple[VecInt, VecInt]:
        """Coordinates of the Hessian of the objective function.

        Only includes entries in the lower triangle of the Hessian
        matrix.
        """
        self._require_exact()
        return self._hess_objective_row, self._hess_objective_col

    def hessian_o(self, x: VecFloat) -> VecFloat:
        """Hessian of the objective function.

        Args:
            x: Vector of optimization variables.

        Returns:
            A plain 1D array, with coordinates given by :meth:`hessianstructure_o`.
        """
        self._require_exact()
        return self._func_hessian_o._eval_flat(self._xp(x))[:, 0]

    def hessianstructure_c(self) -> tuple[VecInt, VecInt]:
        """Coordinates of the Hessian of the constraint functions.

        Only includes entries in the lower triangle of the Hessian
        matrix.
        """
        self._require_exact()
        return self._hess_constraint_row, self._hess_constraint_col

    def hessian_c(self, x: VecFloat, fct_c: VecFloat) -> VecFloat:
        """Sum of Hessian of the constraint functions with factor ``fct_c``.

        Args:
            x: Vector of optimization variables.
            fct_c: Factors (Lagrange multipliers) for the constraints.

        Returns:
            A plain 1D array, with coordinates given by :meth:`hessianstructure_c`.
        """
        self._require_exact()
        fct_c = np.asarray(fct_c, dtype=np.float64).ravel()
        return self._func_hessian_c._eval_flat(self._xp(x, fct_c))[:, 0]

    def hessianstructure(self) -> tuple[VecInt, VecInt]:
        """Coordinates of the Hessian of the Lagrangian.

        Only includes entries in the lower triangle of the Hessian
        matrix. A coordinate may appear twice; values are summed.
        """
        self._require_exact()
        return self._hess_all_row, self._hess_all_col

    def hessian(self, x: VecFloat, fct_c: VecFloat, fct_o: float) -> VecFloat:
        """Hessian of the Lagrangian with factors ``fct_c`` for constraints
        and ``fct_o`` for the objective.

        Returns:
            A plain 1D array, with coordinates given by :meth:`hessianstructure`.
        """
        hessian_o = self.hessian_o(x) * fct_o
        hessian_c = self.hessian_c(x, fct_c)
        return np.concatenate([hessian_o, hessian_c])

    @property
    def exact_hessian(self) -> bool:
        return self._hessian == "exact"

    @property
    def n_x(self) -> int:
        """Number of decision variables."""
        return self.x.rows

    @property
    def n_p(self) -> int:
        """Number of parameters."""
        return self.p.rows

    @property
    def n_c(self) -> int:
        """Number of constraints."""
        return self.g.rows

    @property
    def p_value(self) -> VecFloat:
        """Current parameter values."""
        return self._parameter

    @property
    def v_lb(self) -> VecFloat:
        """Lower bounds of variables."""
        return self._lower_bound_variable

    @property
    def v_ub(self) -> VecFloat:
        """Upper bounds of variables."""
        return self._upper_bound_variable

    @property
    def c_lb(self) -> VecFloat:
        """Lower bounds of constraints."""
        return self._lower_bound_constraint

    @property
    def c_ub(self) -> VecFloat:
        """Upper bounds of constraints."""
        return self._upper_bound_constraint
