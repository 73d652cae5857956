# Copyright (c) 2024 Yilin Zou
import functools
import itertools
from collections import namedtuple
from logging import getLogger
from typing import Callable, Iterable, Optional

from optigraph.base.errors import InputMismatch, ShapeMismatch, SolverError
from optigraph.base.function import Function, _as_value
from optigraph.base.graph import default_graph
from optigraph.base.matrix import Constraint, MatrixExpr, as_matrix, bounded
from optigraph.base.nlp import HESSIAN_MODES, Nlp
from optigraph.base.vectypes import *
from optigraph.optimizer import SolverResult, Status, get_solver
from .solution import OptiSol

logger = getLogger(__name__)

_instances = itertools.count()

VALUE_CACHE_SIZE = 64


class _ConstraintRecord(
    namedtuple("_ConstraintRecord", ["constraint", "expr", "lower", "upper", "offset", "index"])
):
    """A declared constraint in canonical form ``lower <= expr <= upper``.

    ``offset`` is the first row in the general constraint vector, or ``None``
    when the constraint is routed to the variable bounds at flat positions
    ``index``.
    """


class Opti:
    """Builder of a parametric nonlinear program.

    Decision variables and parameters are declared as symbolic matrices. The
    objective and the constraints are arbitrary expressions of them. The
    structure is frozen by the first :meth:`solve`; parameter values and
    initial guesses may change between solves.

    Example::

        opti = Opti()
        x = opti.variable()
        opti.minimize(x**2)
        opti.subject_to(x >= 1)
        sol = opti.solve()
        sol.value(x)  # 1.0
    """

    def __init__(self, parallel: bool = False, fastmath: bool = False) -> None:
        """
        Args:
            parallel: Whether to use Numba ``parallel`` mode for the compiled functions.
            fastmath: Whether to use Numba ``fastmath`` mode for the compiled functions.
        """
        self._prefix = f"opti{next(_instances)}"
        self._parallel = parallel
        self._fastmath = fastmath

        self._variables: list[MatrixExpr] = []
        self._parameters: list[MatrixExpr] = []
        self._position: dict[int, tuple[str, int]] = {}
        self._x_flat: list[int] = []
        self._p_flat: list[int] = []
        self._initial = np.zeros(0, dtype=np.float64)
        self._parameter_value = np.zeros(0, dtype=np.float64)

        self._objective: Optional[MatrixExpr] = None
        self._constraints: list[_ConstraintRecord] = []
        self._n_g = 0

        self._adapter = get_solver("scipy")
        self._options: dict = {}
        self._hessian = "exact"

        self._frozen = False
        self._nlp: Optional[Nlp] = None
        self._func_bounds: Optional[Function] = None
        self._func_bounds_key: Optional[tuple[int, int]] = None
        self._value_function = functools.lru_cache(maxsize=VALUE_CACHE_SIZE)(self._compile_value)

    # declarations

    def _check_open(self) -> None:
        if self._frozen:
            raise RuntimeError("the problem structure is frozen after the first solve")

    def variable(self, rows: int = 1, cols: int = 1) -> MatrixExpr:
        """Declare a ``rows x cols`` matrix of decision variables.

        Its cells take the next positions of the decision vector, in
        row-major order.
        """
        self._check_open()
        x = MatrixExpr.sym(f"{self._prefix}_x_{len(self._variables)}", rows, cols)
        for i in x.ids.ravel().tolist():
            self._position[i] = ("x", len(self._x_flat))
            self._x_flat.append(i)
        self._variables.append(x)
        self._initial = np.concatenate([self._initial, np.zeros(x.numel)])
        return x

    def parameter(self, rows: int = 1, cols: int = 1) -> MatrixExpr:
        """Declare a ``rows x cols`` matrix of parameters, initially zero."""
        self._check_open()
        p = MatrixExpr.sym(f"{self._prefix}_p_{len(self._parameters)}", rows, cols)
        for i in p.ids.ravel().tolist():
            self._position[i] = ("p", len(self._p_flat))
            self._p_flat.append(i)
        self._parameters.append(p)
        self._parameter_value = np.concatenate([self._parameter_value, np.zeros(p.numel)])
        return p

    def _positions(self, expr: MatrixExpr, kind: str, what: str) -> VecInt:
        index = []
        for i in expr.ids.ravel().tolist():
            position = self._position.get(i)
            if position is None or position[0] != kind:
                raise InputMismatch(f"{what} must consist of cells declared by this problem")
            index.append(position[1])
        return np.array(index, dtype=np.int64)

    def set_value(self, p: MatrixExpr, value) -> None:
        """Set the value of (a slice of) a parameter.

        Raises:
            ShapeMismatch: If ``value`` does not have the shape of ``p``. The
                stored value is left unchanged.
        """
        index = self._positions(as_matrix(p), "p", "set_value target")
        value = _as_value(value, p.shape, "parameter value")
        self._parameter_value[index] = value.ravel()

    def set_initial(self, x: MatrixExpr, value) -> None:
        """Set the initial guess of (a slice of) a decision variable."""
        index = self._positions(as_matrix(x), "x", "set_initial target")
        value = _as_value(value, x.shape, "initial guess")
        self._initial[index] = value.ravel()

    def _check_declared(self, *exprs: MatrixExpr) -> None:
        graph = default_graph()
        for expr in exprs:
            for s in graph.free_symbols(expr.ids).tolist():
                if s not in self._position:
                    raise InputMismatch(
                        f"expression depends on {graph.format(s)}, "
                        "which is not a variable or parameter of this problem"
                    )

    def _has_variables(self, expr: MatrixExpr) -> bool:
        graph = default_graph()
        return any(self._position[s][0] == "x" for s in graph.free_symbols(expr.ids).tolist())

    def minimize(self, expr) -> None:
        """Set the objective, replacing any previous one.

        Raises:
            ShapeMismatch: If ``expr`` is not ``1 x 1``.
        """
        self._check_open()
        expr = as_matrix(expr)
        if not expr.is_scalar():
            raise ShapeMismatch(f"objective must be 1x1, got {expr.rows}x{expr.cols}")
        self._check_declared(expr)
        if self._objective is not None:
            logger.debug("objective of %s replaced", self._prefix)
        self._objective = expr

    def _canonical(self, c: Constraint) -> tuple[MatrixExpr, MatrixExpr, MatrixExpr]:
        inf = MatrixExpr.constant(np.full(c.shape, np.inf))
        ninf = MatrixExpr.constant(np.full(c.shape, -np.inf))
        if c.lower is not None:
            if self._has_variables(c.lower) or self._has_variables(c.rhs):
                raise ValueError("bounds of a two-sided constraint cannot depend on variables")
            return c.lhs, c.lower, c.rhs
        lhs_fixed = not self._has_variables(c.lhs)
        rhs_fixed = not self._has_variables(c.rhs)
        if rhs_fixed:
            expr, bound, flip = c.lhs, c.rhs, False
        elif lhs_fixed:
            expr, bound, flip = c.rhs, c.lhs, True
        else:
            expr, bound, flip = c.lhs - c.rhs, MatrixExpr.constant(np.zeros(c.shape)), False
        if c.relation == "==":
            return expr, bound, bound
        if (c.relation == "<=") != flip:
            return expr, ninf, bound
        return expr, bound, inf

    def _routed_index(self, c: Constraint, expr, lower, upper) -> Optional[VecInt]:
        if c.relation == "==" or not (lower.is_constant() and upper.is_constant()):
            return None
        index = []
        for i in expr.ids.ravel().tolist():
            position = self._position.get(i)
            if position is None or position[0] != "x":
                return None
            index.append(position[1])
        return np.array(index, dtype=np.int64)

    def subject_to(self, constraint, relation: Optional[str] = None, bound=None):
        """Add constraints.

        Accepts a :class:`Constraint` (``x >= 1``), a list of them, or the
        triple ``(expr, relation, bound)``. Inequalities of plain decision
        variables against constant bounds become variable bounds; all other
        constraints become rows of :attr:`g`.

        Returns:
            The declared constraint(s), for :meth:`OptiSol.dual`.

        Raises:
            UnsupportedRelation: If ``relation`` is not ``==``, ``<=`` or ``>=``.
            InputMismatch: If the constraint depends on undeclared symbols.
        """
        self._check_open()
        if relation is not None:
            constraint = Constraint(constraint, relation, bound)
        if isinstance(constraint, (list, tuple)):
            return [self.subject_to(c) for c in constraint]
        if not isinstance(constraint, Constraint):
            raise TypeError(f"expected a constraint, got {type(constraint).__name__}")
        c = constraint
        self._check_declared(*(m for m in (c.lhs, c.rhs, c.lower) if m is not None))

        expr, lower, upper = self._canonical(c)
        index = self._routed_index(c, expr, lower, upper)
        if index is None:
            record = _ConstraintRecord(c, expr, lower, upper, self._n_g, None)
            self._n_g += expr.numel
        else:
            record = _ConstraintRecord(c, expr, lower, upper, None, index)
        self._constraints.append(record)
        return c

    def bounded(self, lower, expr, upper) -> Constraint:
        """Add the two-sided constraint ``lower <= expr <= upper``."""
        return self.subject_to(bounded(lower, expr, upper))

    def solver(
        self,
        adapter: str | Callable[..., SolverResult] = "scipy",
        options: Optional[dict] = None,
        hessian: str = "exact",
    ) -> None:
        """Choose the solver.

        Args:
            adapter: ``"scipy"``, ``"ipopt"`` or a function with the signature
                of :func:`optigraph.optimizer.scipy.solve`.
            options: Options passed verbatim to the solver.
            hessian: ``"exact"`` or ``"limited-memory"``.
        """
        if hessian not in HESSIAN_MODES:
            raise ValueError(f"hessian must be one of {', '.join(HESSIAN_MODES)}")
        self._adapter = get_solver(adapter) if isinstance(adapter, str) else adapter
        self._options = dict(options) if options is not None else {}
        if hessian != self._hessian:
            self._nlp = None
        self._hessian = hessian

    # numeric evaluation

    def _compile_value(self, nx: int, np_: int, shape: tuple[int, int], ids: bytes) -> Function:
        """Compiled evaluator of the expression with node ids ``ids``.

        Keyed by the sizes of ``x`` and ``p`` so that declaring more cells
        compiles a new evaluator. At most ``VALUE_CACHE_SIZE`` evaluators are
        kept.
        """
        expr = MatrixExpr(np.frombuffer(ids, dtype=np.int64).reshape(shape).copy())
        return Function(
            f"{self._prefix}_value",
            [self.x, self.p],
            [expr],
            ["x", "p"],
            ["value"],
            self._parallel,
            self._fastmath,
        )

    def _evaluate(self, expr, x: VecFloat, p: VecFloat) -> VecFloat:
        expr = as_matrix(expr)
        self._check_declared(expr)
        f = self._value_function(self.nx, self.np, expr.shape, expr.ids.tobytes())
        return f.evaluate(x, p)[0]

    def debug_value(self, expr) -> VecFloat:
        """Value of ``expr`` at the initial guess and the current parameter values."""
        return self._evaluate(expr, self._initial, self._parameter_value)

    def _bounds_function(self) -> Function:
        general = [r for r in self._constraints if r.offset is not None]
        return Function(
            f"{self._prefix}_bounds",
            [self.p],
            [self._stack([r.lower for r in general]), self._stack([r.upper for r in general])],
            ["p"],
            ["lbg", "ubg"],
            self._parallel,
            self._fastmath,
        )

    def _bounds(self) -> Function:
        """Bounds evaluator, rebuilt only when constraints or parameters were added."""
        key = len(self._constraints), self.np
        if self._func_bounds is None or self._func_bounds_key != key:
            self._func_bounds = self._bounds_function()
            self._func_bounds_key = key
        return self._func_bounds

    @staticmethod
    def _stack(exprs: Iterable[MatrixExpr]) -> MatrixExpr:
        ids = [e.ids.ravel() for e in exprs]
        if not ids:
            return MatrixExpr(np.empty((0, 1), dtype=np.int64))
        return MatrixExpr(np.concatenate(ids).reshape(-1, 1))

    # solve

    def _build(self) -> None:
        self._frozen = True
        self._nlp = Nlp(
            self.x,
            self.p,
            self.f,
            self.g,
            self._hessian,
            self._parallel,
            self._fastmath,
        )

    def solve(self) -> OptiSol:
        """Solve the problem with the current parameter values and initial guess.

        The first call freezes the structure.

        Raises:
            SolverError: If the solver does not report success. The exception
                carries the status and the :class:`SolverResult`.
        """
        if self._nlp is None:
            self._build()
        nlp = self._nlp
        parameter = self._parameter_value.copy()
        nlp.set_parameter(parameter)
        lbg, ubg = self._bounds().evaluate(parameter)
        lbx, ubx = self.lbx, self.ubx
        nlp.set_bounds(lbx, ubx, lbg.ravel(), ubg.ravel())

        logger.info(
            "solving %s: %d variables, %d constraints", self._prefix, nlp.n_x, nlp.n_c
        )
        result = self._adapter(nlp, self._initial.copy(), dict(self._options))
        logger.info(
            "%s finished with status %s, objective %s",
            self._prefix,
            result.status.name,
            result.objective_value,
        )
        if result.status != Status.SUCCESS:
            raise SolverError(result.status, result)
        return OptiSol(self, result, parameter)

    # inspection

    @property
    def x(self) -> MatrixExpr:
        """Column of all decision variable cells."""
        return MatrixExpr(np.array(self._x_flat, dtype=np.int64).reshape(-1, 1))

    @property
    def p(self) -> MatrixExpr:
        """Column of all parameter cells."""
        return MatrixExpr(np.array(self._p_flat, dtype=np.int64).reshape(-1, 1))

    @property
    def f(self) -> MatrixExpr:
        """Objective, zero if none was set."""
        if self._objective is None:
            return MatrixExpr.constant(0.0)
        return self._objective

    @property
    def g(self) -> MatrixExpr:
        """Column of the general constraint rows."""
        return self._stack(r.expr for r in self._constraints if r.offset is not None)

    @property
    def lbg(self) -> VecFloat:
        """Lower bounds of :attr:`g` at the current parameter values."""
        return self._bounds().evaluate(self._parameter_value)[0].ravel()

    @property
    def ubg(self) -> VecFloat:
        """Upper bounds of :attr:`g` at the current parameter values."""
        return self._bounds().evaluate(self._parameter_value)[1].ravel()

    @property
    def lbx(self) -> VecFloat:
        """Lower bounds of the decision variables."""
        lbx = np.full(len(self._x_flat), -np.inf)
        for r in self._constraints:
            if r.index is not None:
                np.maximum.at(lbx, r.index, r.lower.to_numpy().ravel())
        return lbx

    @property
    def ubx(self) -> VecFloat:
        """Upper bounds of the decision variables."""
        ubx = np.full(len(self._x_flat), np.inf)
        for r in self._constraints:
            if r.index is not None:
                np.minimum.at(ubx, r.index, r.upper.to_numpy().ravel())
        return ubx

    def _record(self, constraint: Constraint) -> _ConstraintRecord:
        for r in self._constraints:
            if r.constraint is constraint:
                return r
        raise ValueError("constraint was not declared by this problem")

    @property
    def nx(self) -> int:
        """Number of decision variable cells."""
        return len(self._x_flat)

    @property
    def ng(self) -> int:
        """Number of general constraint rows."""
        return self._n_g

    @property
    def np(self) -> int:
        """Number of parameter cells."""
        return len(self._p_flat)
