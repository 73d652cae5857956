# Copyright (c) 2024 Yilin Zou
"""Matrix expressions over the node arena.

A :class:`MatrixExpr` is a 2-D array of node indices. Slicing, transposing,
reshaping and concatenation only rearrange the indices, never the nodes.
All flattening (``reshape``, ``vec``, function arguments, decision-variable
vectors) is row-major.
"""
from typing import Iterable, Optional, Self

from .errors import OutOfRange, ShapeMismatch, UnsupportedRelation
from .graph import Op, default_graph
from .vectypes import *

RELATIONS = ("==", "<=", ">=")
"""Supported constraint relations."""


class MatrixExpr:
    """Immutable 2-D matrix of symbolic expressions."""

    __array_ufunc__ = None  # let NumPy defer to the reflected operators

    def __init__(self, ids: NDArray[np.int64]) -> None:
        """
        Args:
            ids: Node indices, a 2-D integer array.
        """
        ids = np.array(ids, dtype=np.int64)
        if ids.ndim != 2:
            raise ValueError("ids must be a 2-D array of node indices")
        ids.flags.writeable = False
        self._ids = ids

    @classmethod
    def sym(cls, name: str, rows: int = 1, cols: int = 1) -> Self:
        """A new ``rows x cols`` symbolic matrix named ``name``."""
        return cls(default_graph().symbol(name, rows, cols))

    @classmethod
    def constant(cls, value: float | Iterable) -> Self:
        """A constant matrix. Scalars are ``1 x 1``, 1-D data is a column."""
        value = np.asarray(value, dtype=np.float64)
        if value.ndim == 0:
            value = value.reshape(1, 1)
        elif value.ndim == 1:
            value = value.reshape(-1, 1)
        elif value.ndim != 2:
            raise ShapeMismatch(f"constant must be at most 2-D, got {value.ndim}-D")
        graph = default_graph()
        ids = [graph.constant(v) for v in value.ravel()]
        return cls(np.array(ids, dtype=np.int64).reshape(value.shape))

    @property
    def ids(self) -> NDArray[np.int64]:
        """Node indices of the cells (read-only)."""
        return self._ids

    @property
    def shape(self) -> tuple[int, int]:
        return self._ids.shape

    @property
    def rows(self) -> int:
        return self._ids.shape[0]

    @property
    def cols(self) -> int:
        return self._ids.shape[1]

    @property
    def numel(self) -> int:
        """Number of cells."""
        return self._ids.size

    @property
    def T(self) -> Self:
        return MatrixExpr(self._ids.T)

    def is_scalar(self) -> bool:
        return self.shape == (1, 1)

    def is_constant(self) -> bool:
        """Whether every cell is a numeric constant."""
        graph = default_graph()
        return all(graph.is_constant(i) for i in self._ids.ravel())

    def is_symbolic(self) -> bool:
        """Whether every cell is a distinct symbol."""
        graph = default_graph()
        flat = self._ids.ravel()
        return all(graph.is_symbol(i) for i in flat) and len(set(flat.tolist())) == len(flat)

    def to_numpy(self) -> VecFloat:
        """Values of a constant expression."""
        if not self.is_constant():
            raise ValueError("expression is not constant")
        return default_graph().values[self._ids].copy()

    def free_symbols(self) -> Self:
        """Column of the symbol cells the expression depends on."""
        return MatrixExpr(default_graph().free_symbols(self._ids).reshape(-1, 1))

    def depends_on(self, arg: Self) -> bool:
        """Whether any cell depends on any cell of ``arg``."""
        free = set(default_graph().free_symbols(self._ids).tolist())
        return any(int(i) in free for i in as_matrix(arg).ids.ravel())

    def reshape(self, rows: int, cols: int) -> Self:
        """Reshape in row-major order. ``-1`` infers one dimension."""
        try:
            return MatrixExpr(self._ids.reshape(rows, cols))
        except ValueError:
            raise ShapeMismatch(
                f"cannot reshape {self.rows}x{self.cols} to {rows}x{cols}"
            ) from None

    def vec(self) -> Self:
        """Cells as a column, in row-major order."""
        return MatrixExpr(self._ids.reshape(-1, 1))

    flatten = vec

    def sum(self, axis: Optional[int] = None) -> Self:
        """Sum of all cells (``axis=None``), of each column (``axis=0``) or of
        each row (``axis=1``)."""
        if axis is None:
            return MatrixExpr([[_sum_ids(self._ids.ravel())]])
        if axis == 0:
            return MatrixExpr([[_sum_ids(self._ids[:, j]) for j in range(self.cols)]])
        if axis == 1:
            return MatrixExpr([[_sum_ids(self._ids[i, :])] for i in range(self.rows)])
        raise ValueError("axis must be None, 0 or 1")

    def __getitem__(self, key) -> Self:
        if isinstance(key, tuple):
            if len(key) != 2:
                raise IndexError("a matrix expression takes at most two indices")
            rows = _resolve(key[0], self.rows)
            cols = _resolve(key[1], self.cols)
            return MatrixExpr(self._ids[np.ix_(rows, cols)])
        flat = self._ids.ravel()
        index = _resolve(key, len(flat))
        if self.rows == 1:
            return MatrixExpr(flat[index].reshape(1, -1))
        return MatrixExpr(flat[index].reshape(-1, 1))

    def __repr__(self) -> str:
        if self.numel > 16:
            return f"MatrixExpr({self.rows}x{self.cols})"
        graph = default_graph()
        body = "; ".join(
            ", ".join(graph.format(i) for i in row) for row in self._ids.tolist()
        )
        return f"MatrixExpr({self.rows}x{self.cols}: [{body}])"

    def __neg__(self) -> Self:
        return _unary(Op.NEG, self)

    def __pos__(self) -> Self:
        return self

    def __abs__(self) -> Self:
        return _unary(Op.FABS, self)

    def __add__(self, other) -> Self:
        return _binary(Op.ADD, self, other)

    def __radd__(self, other) -> Self:
        return _binary(Op.ADD, other, self)

    def __sub__(self, other) -> Self:
        return _binary(Op.SUB, self, other)

    def __rsub__(self, other) -> Self:
        return _binary(Op.SUB, other, self)

    def __mul__(self, other) -> Self:
        return _binary(Op.MUL, self, other)

    def __rmul__(self, other) -> Self:
        return _binary(Op.MUL, other, self)

    def __truediv__(self, other) -> Self:
        return _binary(Op.DIV, self, other)

    def __rtruediv__(self, other) -> Self:
        return _binary(Op.DIV, other, self)

    def __pow__(self, other) -> Self:
        return _binary(Op.POW, self, other)

    def __rpow__(self, other) -> Self:
        return _binary(Op.POW, other, self)

    def __matmul__(self, other) -> Self:
        return mtimes(self, other)

    def __rmatmul__(self, other) -> Self:
        return mtimes(other, self)

    def __eq__(self, other) -> "Constraint":
        return Constraint(self, "==", other)

    def __le__(self, other) -> "Constraint":
        return Constraint(self, "<=", other)

    def __ge__(self, other) -> "Constraint":
        return Constraint(self, ">=", other)

    def __lt__(self, other):
        raise UnsupportedRelation("strict inequality '<' is not supported, use '<='")

    def __gt__(self, other):
        raise UnsupportedRelation("strict inequality '>' is not supported, use '>='")

    def __ne__(self, other):
        raise UnsupportedRelation("relation '!=' is not supported")

    __hash__ = None


class Constraint:
    """Relation between two matrix expressions: ``lhs relation rhs``.

    For two-sided constraints created by :func:`bounded`, ``lower`` holds
    the lower bound and ``lhs <= rhs`` the upper one.
    """

    def __init__(self, lhs, relation: str, rhs, lower=None) -> None:
        """
        Args:
            lhs: Left-hand side.
            relation: One of ``"=="``, ``"<="`` and ``">="``.
            rhs: Right-hand side.
            lower: Lower bound of a two-sided constraint (only with ``"<="``).
        """
        if relation not in RELATIONS:
            raise UnsupportedRelation(
                f"relation must be one of {', '.join(RELATIONS)}, got {relation!r}"
            )
        lhs, rhs = as_matrix(lhs), as_matrix(rhs)
        operands = [lhs, rhs]
        if lower is not None:
            if relation != "<=":
                raise UnsupportedRelation("a two-sided constraint must use '<='")
            lower = as_matrix(lower)
            operands.append(lower)
        try:
            shape = np.broadcast_shapes(*(m.shape for m in operands))
        except ValueError:
            raise ShapeMismatch(
                "cannot relate shapes " + ", ".join(f"{m.rows}x{m.cols}" for m in operands)
            ) from None
        self.lhs = MatrixExpr(np.broadcast_to(lhs.ids, shape))
        """Left-hand side, broadcast to :attr:`shape`."""
        self.rhs = MatrixExpr(np.broadcast_to(rhs.ids, shape))
        """Right-hand side, broadcast to :attr:`shape`."""
        self.lower = None if lower is None else MatrixExpr(np.broadcast_to(lower.ids, shape))
        """Lower bound of a two-sided constraint, or ``None``."""
        self.relation = relation
        """One of ``"=="``, ``"<="`` and ``">="``."""

    @property
    def shape(self) -> tuple[int, int]:
        return self.lhs.shape

    def __bool__(self):
        raise TypeError(
            "the truth value of a constraint is undefined; "
            "use bounded(lb, expr, ub) instead of chained comparisons"
        )

    def __repr__(self) -> str:
        if self.lower is not None:
            return f"Constraint({self.lower!r} <= {self.lhs!r} <= {self.rhs!r})"
        return f"Constraint({self.lhs!r} {self.relation} {self.rhs!r})"


def _resolve(key, n: int) -> VecInt:
    """Positions selected by an integer or slice along a dimension of length
    ``n``. Negative values count from the end and slice stops are
    exclusive. Bounds must lie in ``[-n, n]``; a negative-step slice may also
    stop at ``-n - 1`` to run through position 0."""
    if isinstance(key, (int, np.integer)) and not isinstance(key, bool):
        i = int(key)
        if not -n <= i < n:
            raise OutOfRange(f"index {i} is out of range for dimension {n}")
        return np.array([i % n], dtype=np.int64)
    if isinstance(key, slice):
        step = 1 if key.step is None else int(key.step)
        if step == 0:
            raise ValueError("slice step cannot be zero")
        for bound, low in ((key.start, -n), (key.stop, -n - 1 if step < 0 else -n)):
            if bound is not None and not low <= int(bound) <= n:
                raise OutOfRange(f"slice bound {bound} is out of range for dimension {n}")
        return np.arange(n, dtype=np.int64)[key]
    raise TypeError(f"indices must be integers or slices, not {type(key).__name__}")


def as_matrix(value) -> MatrixExpr:
    """Convert numbers and arrays to constant matrix expressions."""
    if isinstance(value, MatrixExpr):
        return value
    if isinstance(value, Constraint):
        raise TypeError("a constraint cannot be used as an expression")
    return MatrixExpr.constant(value)


def _unary(op: Op, x) -> MatrixExpr:
    x = as_matrix(x)
    graph = default_graph()
    ids = np.fromiter(
        (graph.unary(op, i) for i in x.ids.ravel()), dtype=np.int64, count=x.numel
    )
    return MatrixExpr(ids.reshape(x.shape))


def _binary(op: Op, x, y) -> MatrixExpr:
    x, y = as_matrix(x), as_matrix(y)
    try:
        ix, iy = np.broadcast_arrays(x.ids, y.ids)
    except ValueError:
        raise ShapeMismatch(
            f"operands of shapes {x.rows}x{x.cols} and {y.rows}x{y.cols} "
            f"cannot be broadcast together"
        ) from None
    graph = default_graph()
    ids = np.fromiter(
        (graph.binary(op, a, b) for a, b in zip(ix.ravel(), iy.ravel())),
        dtype=np.int64,
        count=ix.size,
    )
    return MatrixExpr(ids.reshape(ix.shape))


def _sum_ids(ids: Iterable[int]) -> int:
    graph = default_graph()
    total = graph.zero
    for i in ids:
        total = graph.binary(Op.ADD, total, i)
    return total


def sym(name: str, rows: int = 1, cols: int = 1) -> MatrixExpr:
    """A new ``rows x cols`` symbolic matrix named ``name``."""
    return MatrixExpr.sym(name, rows, cols)


def constant(value: float | Iterable) -> MatrixExpr:
    """A constant matrix. Scalars are ``1 x 1``, 1-D data is a column."""
    return MatrixExpr.constant(value)


def zeros(rows: int = 1, cols: int = 1) -> MatrixExpr:
    return MatrixExpr.constant(np.zeros((rows, cols)))


def ones(rows: int = 1, cols: int = 1) -> MatrixExpr:
    return MatrixExpr.constant(np.ones((rows, cols)))


def eye(n: int) -> MatrixExpr:
    return MatrixExpr.constant(np.eye(n))


def mtimes(x, y) -> MatrixExpr:
    """Matrix product."""
    x, y = as_matrix(x), as_matrix(y)
    if x.cols != y.rows:
        raise ShapeMismatch(
            f"cannot multiply {x.rows}x{x.cols} by {y.rows}x{y.cols}"
        )
    graph = default_graph()
    ids = np.empty((x.rows, y.cols), dtype=np.int64)
    for i in range(x.rows):
        for j in range(y.cols):
            ids[i, j] = _sum_ids(
                graph.binary(Op.MUL, a, b) for a, b in zip(x.ids[i, :], y.ids[:, j])
            )
    return MatrixExpr(ids)


def vertcat(*args) -> MatrixExpr:
    """Stack vertically. ``0 x 0`` operands are ignored."""
    mats = [m for m in map(as_matrix, args) if m.shape != (0, 0)]
    if not mats:
        return MatrixExpr(np.empty((0, 0), dtype=np.int64))
    if len({m.cols for m in mats}) > 1:
        raise ShapeMismatch(
            "vertcat requires equal column counts, got "
            + ", ".join(f"{m.rows}x{m.cols}" for m in mats)
        )
    return MatrixExpr(np.vstack([m.ids for m in mats]))


def horzcat(*args) -> MatrixExpr:
    """Stack horizontally. ``0 x 0`` operands are ignored."""
    mats = [m for m in map(as_matrix, args) if m.shape != (0, 0)]
    if not mats:
        return MatrixExpr(np.empty((0, 0), dtype=np.int64))
    if len({m.rows for m in mats}) > 1:
        raise ShapeMismatch(
            "horzcat requires equal row counts, got "
            + ", ".join(f"{m.rows}x{m.cols}" for m in mats)
        )
    return MatrixExpr(np.hstack([m.ids for m in mats]))


def reshape(x, rows: int, cols: int) -> MatrixExpr:
    return as_matrix(x).reshape(rows, cols)


def vec(x) -> MatrixExpr:
    return as_matrix(x).vec()


def repmat(x, n: int, m: int = 1) -> MatrixExpr:
    """Tile ``x`` ``n`` times vertically and ``m`` times horizontally."""
    return MatrixExpr(np.tile(as_matrix(x).ids, (n, m)))


def sum1(x) -> MatrixExpr:
    """Column sums, a row."""
    return as_matrix(x).sum(axis=0)


def sum2(x) -> MatrixExpr:
    """Row sums, a column."""
    return as_matrix(x).sum(axis=1)


def dot(x, y) -> MatrixExpr:
    """Inner product of two equally shaped matrices."""
    x, y = as_matrix(x), as_matrix(y)
    if x.shape != y.shape:
        raise ShapeMismatch(f"dot requires equal shapes, got {x.shape} and {y.shape}")
    return (x * y).sum()


def sumsqr(x) -> MatrixExpr:
    """Sum of squares of all cells."""
    return (as_matrix(x) ** 2).sum()


def norm_2(x) -> MatrixExpr:
    """Euclidean norm of all cells."""
    return sqrt(sumsqr(x))


def trace(x) -> MatrixExpr:
    x = as_matrix(x)
    if x.rows != x.cols:
        raise ShapeMismatch(f"trace requires a square matrix, got {x.rows}x{x.cols}")
    return MatrixExpr([[_sum_ids(np.diag(x.ids))]])


def sqrt(x) -> MatrixExpr:
    return _unary(Op.SQRT, x)


def sin(x) -> MatrixExpr:
    return _unary(Op.SIN, x)


def cos(x) -> MatrixExpr:
    return _unary(Op.COS, x)


def tan(x) -> MatrixExpr:
    return _unary(Op.TAN, x)


def asin(x) -> MatrixExpr:
    return _unary(Op.ASIN, x)


def acos(x) -> MatrixExpr:
    return _unary(Op.ACOS, x)


def atan(x) -> MatrixExpr:
    return _unary(Op.ATAN, x)


def sinh(x) -> MatrixExpr:
    return _unary(Op.SINH, x)


def cosh(x) -> MatrixExpr:
    return _unary(Op.COSH, x)


def tanh(x) -> MatrixExpr:
    return _unary(Op.TANH, x)


def exp(x) -> MatrixExpr:
    return _unary(Op.EXP, x)


def log(x) -> MatrixExpr:
    return _unary(Op.LOG, x)


def fabs(x) -> MatrixExpr:
    return _unary(Op.FABS, x)


def sign(x) -> MatrixExpr:
    """Sign of each cell. Not differentiable."""
    return _unary(Op.SIGN, x)


def floor(x) -> MatrixExpr:
    """Not differentiable."""
    return _unary(Op.FLOOR, x)


def ceil(x) -> MatrixExpr:
    """Not differentiable."""
    return _unary(Op.CEIL, x)


def atan2(y, x) -> MatrixExpr:
    return _binary(Op.ATAN2, y, x)


def fmin(x, y) -> MatrixExpr:
    return _binary(Op.FMIN, x, y)


def fmax(x, y) -> MatrixExpr:
    return _binary(Op.FMAX, x, y)


def bounded(lower, expr, upper) -> Constraint:
    """Two-sided constraint ``lower <= expr <= upper``."""
    return Constraint(expr, "<=", upper, lower=lower)


__all__ = [
    "RELATIONS",
    "MatrixExpr",
    "Constraint",
    "as_matrix",
    "sym",
    "constant",
    "zeros",
    "ones",
    "eye",
    "mtimes",
    "vertcat",
    "horzcat",
    "reshape",
    "vec",
    "repmat",
    "sum1",
    "sum2",
    "dot",
    "sumsqr",
    "norm_2",
    "trace",
    "sqrt",
    "sin",
    "cos",
    "tan",
    "asin",
    "acos",
    "atan",
    "sinh",
    "cosh",
    "tanh",
    "exp",
    "log",
    "fabs",
    "sign",
    "floor",
    "ceil",
    "atan2",
    "fmin",
    "fmax",
    "bounded",
]
