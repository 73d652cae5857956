# Copyright (c) 2024 Yilin Zou
"""Append-only arena of immutable expression nodes.

Every node is addressed by its index in the arena. A node's children always
have smaller indices than the node itself, so sorting indices gives a
topological order of any subgraph, and cycles cannot be formed. Nodes are
never modified after they are appended; building an expression only appends
new nodes (or returns existing ones: equal constants and equal
``(operator, children)`` pairs are shared).
"""
from collections import namedtuple
from enum import IntEnum
from typing import Iterable

from .vectypes import *


class Op(IntEnum):
    """Operator of an expression node."""

    SYMBOL = 0
    """Leaf: one cell of a symbolic matrix."""
    CONST = 1
    """Leaf: a numeric constant."""
    CALL = 2
    """Opaque call of a ``Function`` on argument nodes."""
    OUTPUT = 3
    """One cell of the outputs of a ``CALL`` node."""

    NEG = 10
    SQRT = 11
    SQ = 12
    SIN = 13
    COS = 14
    TAN = 15
    ASIN = 16
    ACOS = 17
    ATAN = 18
    SINH = 19
    COSH = 20
    TANH = 21
    EXP = 22
    LOG = 23
    FABS = 24
    SIGN = 25
    FLOOR = 26
    CEIL = 27

    ADD = 40
    SUB = 41
    MUL = 42
    DIV = 43
    POW = 44
    ATAN2 = 45
    FMIN = 46
    FMAX = 47


UNARY = frozenset(op for op in Op if 10 <= op < 40)
BINARY = frozenset(op for op in Op if op >= 40)
COMMUTATIVE = frozenset([Op.ADD, Op.MUL, Op.FMIN, Op.FMAX])

NUMPY_OP = {
    Op.NEG: np.negative,
    Op.SQRT: np.sqrt,
    Op.SQ: np.square,
    Op.SIN: np.sin,
    Op.COS: np.cos,
    Op.TAN: np.tan,
    Op.ASIN: np.arcsin,
    Op.ACOS: np.arccos,
    Op.ATAN: np.arctan,
    Op.SINH: np.sinh,
    Op.COSH: np.cosh,
    Op.TANH: np.tanh,
    Op.EXP: np.exp,
    Op.LOG: np.log,
    Op.FABS: np.abs,
    Op.SIGN: np.sign,
    Op.FLOOR: np.floor,
    Op.CEIL: np.ceil,
    Op.ADD: np.add,
    Op.SUB: np.subtract,
    Op.MUL: np.multiply,
    Op.DIV: np.divide,
    Op.POW: np.power,
    Op.ATAN2: np.arctan2,
    Op.FMIN: np.fmin,
    Op.FMAX: np.fmax,
}
"""NumPy implementation of every arithmetic operator."""

_INFIX = {Op.ADD: "+", Op.SUB: "-", Op.MUL: "*", Op.DIV: "/", Op.POW: "**"}


class SymbolInfo(namedtuple("SymbolInfo", ["name", "rows", "cols"])):
    """Name and shape of a symbolic matrix."""

    name: str
    """Name of the symbol."""
    rows: int
    """Number of rows of the symbolic matrix."""
    cols: int
    """Number of columns of the symbolic matrix."""


class CallRecord(namedtuple("CallRecord", ["f", "args"])):
    """Callee and arguments of a ``CALL`` node."""

    f: "Function"
    """The called :class:`optigraph.base.function.Function`."""
    args: VecInt
    """Argument nodes, the callee's input cells in row-major order."""


class Graph:
    """Arena of expression nodes."""

    def __init__(self, capacity: int = 1024) -> None:
        """
        Args:
            capacity: Initial number of preallocated nodes.
        """
        self._op = np.empty(capacity, dtype=np.int32)
        self._arg = np.full((capacity, 2), -1, dtype=np.int64)
        self._value = np.full(capacity, np.nan, dtype=np.float64)
        self._n = 0

        self._interned = {}
        self._constant = {}
        self._symbol = []
        self._call = []

        self.zero = self.constant(0.0)
        """Index of the constant ``0``."""
        self.one = self.constant(1.0)
        """Index of the constant ``1``."""

    def __len__(self) -> int:
        return self._n

    def _append(self, op: Op, a0: int = -1, a1: int = -1, value: float = np.nan) -> int:
        if self._n == len(self._op):
            capacity = 2 * len(self._op)
            op_ = np.empty(capacity, dtype=np.int32)
            arg_ = np.full((capacity, 2), -1, dtype=np.int64)
            value_ = np.full(capacity, np.nan, dtype=np.float64)
            op_[: self._n] = self._op
            arg_[: self._n] = self._arg
            value_[: self._n] = self._value
            self._op, self._arg, self._value = op_, arg_, value_
        i = self._n
        self._op[i] = op
        self._arg[i, 0] = a0
        self._arg[i, 1] = a1
        self._value[i] = value
        self._n += 1
        return i

    def symbol(self, name: str, rows: int, cols: int) -> VecInt:
        """Append the cells of a new ``rows x cols`` symbolic matrix.

        Returns:
            Node indices of the cells, shaped ``(rows, cols)``.
        """
        if rows < 0 or cols < 0:
            raise ValueError("rows and cols must be non-negative")
        group = len(self._symbol)
        self._symbol.append(SymbolInfo(name, rows, cols))
        ids = [self._append(Op.SYMBOL, group, k) for k in range(rows * cols)]
        return np.array(ids, dtype=np.int64).reshape(rows, cols)

    def constant(self, value: float) -> int:
        """Index of the constant ``value``, appended if not present yet."""
        value = float(value)
        if value != value:
            return self._append(Op.CONST, value=value)
        i = self._constant.get(value)
        if i is None:
            i = self._append(Op.CONST, value=value)
            self._constant[value] = i
        return i

    def unary(self, op: Op, a: int) -> int:
        """Index of ``op(a)``."""
        a = int(a)
        if self.is_constant(a):
            with np.errstate(all="ignore"):
                return self.constant(NUMPY_OP[op](self._value[a]))
        return self._intern(op, a, -1)

    def binary(self, op: Op, a: int, b: int) -> int:
        """Index of ``op(a, b)``, with constants folded."""
        a, b = int(a), int(b)
        a_const, b_const = self.is_constant(a), self.is_constant(b)
        if a_const and b_const:
            with np.errstate(all="ignore"):
                return self.constant(NUMPY_OP[op](self._value[a], self._value[b]))
        if op == Op.ADD:
            if a == self.zero:
                return b
            if b == self.zero:
                return a
        elif op == Op.SUB:
            if b == self.zero:
                return a
            if a == self.zero:
                return self.unary(Op.NEG, b)
        elif op == Op.MUL:
            if a == self.zero or b == self.zero:
                return self.zero
            if a == self.one:
                return b
            if b == self.one:
                return a
        elif op == Op.DIV:
            if b == self.one:
                return a
            if a == self.zero:
                return self.zero
        elif op == Op.POW and b_const:
            exponent = self._value[b]
            if exponent == 0.0:
                return self.one
            if exponent == 1.0:
                return a
            if exponent == 2.0:
                return self.unary(Op.SQ, a)
        if op in COMMUTATIVE and b < a:
            a, b = b, a
        return self._intern(op, a, b)

    def _intern(self, op: Op, a: int, b: int) -> int:
        key = (int(op), a, b)
        i = self._interned.get(key)
        if i is None:
            i = self._append(op, a, b)
            self._interned[key] = i
        return i

    def call(self, f: "Function", args: Iterable[int]) -> int:
        """Append a call of ``f`` on the argument nodes ``args``."""
        args = np.asarray(args, dtype=np.int64).ravel()
        self._call.append(CallRecord(f, args))
        return self._append(Op.CALL, len(self._call) - 1)

    def output(self, call: int, k: int) -> int:
        """Index of the ``k``-th output cell of the call node ``call``."""
        return self._intern(Op.OUTPUT, int(call), int(k))

    def op(self, i: int) -> Op:
        return Op(int(self._op[i]))

    def args(self, i: int) -> tuple[int, int]:
        return int(self._arg[i, 0]), int(self._arg[i, 1])

    def value(self, i: int) -> float:
        return float(self._value[i])

    def is_constant(self, i: int) -> bool:
        return self._op[i] == Op.CONST

    def is_symbol(self, i: int) -> bool:
        return self._op[i] == Op.SYMBOL

    def symbol_info(self, i: int) -> tuple[SymbolInfo, int]:
        """Symbolic matrix of the symbol node ``i`` and the row-major position
        of the cell within it."""
        if not self.is_symbol(i):
            raise ValueError(f"node {i} is not a symbol")
        group, k = self.args(i)
        return self._symbol[group], k

    def call_record(self, i: int) -> CallRecord:
        """Callee and arguments of the ``CALL`` node ``i``."""
        if self._op[i] != Op.CALL:
            raise ValueError(f"node {i} is not a call")
        return self._call[int(self._arg[i, 0])]

    def children(self, i: int) -> tuple[int, ...]:
        op = int(self._op[i])
        if op == Op.SYMBOL or op == Op.CONST:
            return ()
        if op == Op.CALL:
            return tuple(int(a) for a in self._call[int(self._arg[i, 0])].args)
        if op == Op.OUTPUT or op in UNARY:
            return (int(self._arg[i, 0]),)
        return int(self._arg[i, 0]), int(self._arg[i, 1])

    def reachable(self, roots: Iterable[int]) -> VecInt:
        """All nodes reachable from ``roots``, in topological order."""
        seen = set()
        stack = [int(i) for i in np.ravel(np.asarray(roots, dtype=np.int64))]
        while stack:
            i = stack.pop()
            if i in seen:
                continue
            seen.add(i)
            stack.extend(self.children(i))
        return np.array(sorted(seen), dtype=np.int64)

    def free_symbols(self, roots: Iterable[int]) -> VecInt:
        """Symbol nodes reachable from ``roots``, in creation order."""
        order = self.reachable(roots)
        return order[self._op[order] == Op.SYMBOL]

    def format(self, i: int, depth: int = 6) -> str:
        """Human readable form of node ``i``, truncated below ``depth``."""
        op = self.op(i)
        if op == Op.SYMBOL:
            info, k = self.symbol_info(i)
            if info.rows * info.cols == 1:
                return info.name
            return f"{info.name}[{k // info.cols},{k % info.cols}]"
        if op == Op.CONST:
            return f"{self._value[i]:g}"
        if depth == 0:
            return "..."
        a, b = self.args(i)
        if op == Op.CALL:
            return f"{self._call[a].f.name}(...)"
        if op == Op.OUTPUT:
            return f"{self.call_record(a).f.name}(...)[{b}]"
        if op == Op.NEG:
            return f"(-{self.format(a, depth - 1)})"
        if op in UNARY:
            return f"{op.name.lower()}({self.format(a, depth - 1)})"
        if op in _INFIX:
            return f"({self.format(a, depth - 1)}{_INFIX[op]}{self.format(b, depth - 1)})"
        return f"{op.name.lower()}({self.format(a, depth - 1)}, {self.format(b, depth - 1)})"

    @property
    def ops(self) -> NDArray[np.int32]:
        """Operators of all nodes."""
        return self._op[: self._n]

    @property
    def arguments(self) -> NDArray[np.int64]:
        """Child indices of all nodes, ``-1`` where absent."""
        return self._arg[: self._n]

    @property
    def values(self) -> VecFloat:
        """Constant values of all nodes, ``nan`` for non-constants."""
        return self._value[: self._n]


_GRAPH = Graph()


def default_graph() -> Graph:
    """The process-wide graph all expressions are built in."""
    return _GRAPH
