# Copyright (c) 2024 Yilin Zou
"""Reverse-mode automatic differentiation over the node arena.

Derivatives are built symbolically: the result of :func:`jacobian` is a new
matrix expression that can be compiled and evaluated like any other.

For each output cell a single backward sweep visits the reachable nodes in
reverse topological order. The adjoint of a node is the sum of the
contributions of all of its parents, and it is complete by the time the
node is visited, so the derivative rule of every node is applied at most
once per sweep, however many paths lead to it.
"""
from logging import getLogger
from typing import Callable

from .errors import InputMismatch, NotDifferentiable, ShapeMismatch
from .graph import Graph, Op, default_graph
from .matrix import MatrixExpr, as_matrix
from .vectypes import *

logger = getLogger(__name__)


def _d_neg(g: Graph, i: int, a: int, b: int) -> list[tuple[int, int]]:
    return [(a, g.constant(-1.0))]


def _d_sqrt(g, i, a, b):
    return [(a, g.binary(Op.DIV, g.constant(0.5), i))]


def _d_sq(g, i, a, b):
    return [(a, g.binary(Op.MUL, g.constant(2.0), a))]


def _d_sin(g, i, a, b):
    return [(a, g.unary(Op.COS, a))]


def _d_cos(g, i, a, b):
    return [(a, g.unary(Op.NEG, g.unary(Op.SIN, a)))]


def _d_tan(g, i, a, b):
    return [(a, g.binary(Op.ADD, g.one, g.unary(Op.SQ, i)))]


def _d_asin(g, i, a, b):
    root = g.unary(Op.SQRT, g.binary(Op.SUB, g.one, g.unary(Op.SQ, a)))
    return [(a, g.binary(Op.DIV, g.one, root))]


def _d_acos(g, i, a, b):
    root = g.unary(Op.SQRT, g.binary(Op.SUB, g.one, g.unary(Op.SQ, a)))
    return [(a, g.unary(Op.NEG, g.binary(Op.DIV, g.one, root)))]


def _d_atan(g, i, a, b):
    return [(a, g.binary(Op.DIV, g.one, g.binary(Op.ADD, g.one, g.unary(Op.SQ, a))))]


def _d_sinh(g, i, a, b):
    return [(a, g.unary(Op.COSH, a))]


def _d_cosh(g, i, a, b):
    return [(a, g.unary(Op.SINH, a))]


def _d_tanh(g, i, a, b):
    return [(a, g.binary(Op.SUB, g.one, g.unary(Op.SQ, i)))]


def _d_exp(g, i, a, b):
    return [(a, i)]


def _d_log(g, i, a, b):
    return [(a, g.binary(Op.DIV, g.one, a))]


def _d_fabs(g, i, a, b):
    return [(a, g.unary(Op.SIGN, a))]


def _d_add(g, i, a, b):
    return [(a, g.one), (b, g.one)]


def _d_sub(g, i, a, b):
    return [(a, g.one), (b, g.constant(-1.0))]


def _d_mul(g, i, a, b):
    return [(a, b), (b, a)]


def _d_div(g, i, a, b):
    return [
        (a, g.binary(Op.DIV, g.one, b)),
        (b, g.unary(Op.NEG, g.binary(Op.DIV, i, b))),
    ]


def _d_pow(g, i, a, b):
    d_a = g.binary(
        Op.MUL, b, g.binary(Op.POW, a, g.binary(Op.SUB, b, g.one))
    )
    if g.is_constant(b):
        return [(a, d_a)]
    return [(a, d_a), (b, g.binary(Op.MUL, i, g.unary(Op.LOG, a)))]


def _d_atan2(g, i, a, b):
    r2 = g.binary(Op.ADD, g.unary(Op.SQ, a), g.unary(Op.SQ, b))
    return [
        (a, g.binary(Op.DIV, b, r2)),
        (b, g.unary(Op.NEG, g.binary(Op.DIV, a, r2))),
    ]


def _d_fmin(g, i, a, b):
    s = g.unary(Op.SIGN, g.binary(Op.SUB, a, b))
    half = g.constant(0.5)
    return [
        (a, g.binary(Op.MUL, half, g.binary(Op.SUB, g.one, s))),
        (b, g.binary(Op.MUL, half, g.binary(Op.ADD, g.one, s))),
    ]


def _d_fmax(g, i, a, b):
    s = g.unary(Op.SIGN, g.binary(Op.SUB, a, b))
    half = g.constant(0.5)
    return [
        (a, g.binary(Op.MUL, half, g.binary(Op.ADD, g.one, s))),
        (b, g.binary(Op.MUL, half, g.binary(Op.SUB, g.one, s))),
    ]


_RULES: dict[Op, Callable[[Graph, int, int, int], list[tuple[int, int]]]] = {
    Op.NEG: _d_neg,
    Op.SQRT: _d_sqrt,
    Op.SQ: _d_sq,
    Op.SIN: _d_sin,
    Op.COS: _d_cos,
    Op.TAN: _d_tan,
    Op.ASIN: _d_asin,
    Op.ACOS: _d_acos,
    Op.ATAN: _d_atan,
    Op.SINH: _d_sinh,
    Op.COSH: _d_cosh,
    Op.TANH: _d_tanh,
    Op.EXP: _d_exp,
    Op.LOG: _d_log,
    Op.FABS: _d_fabs,
    Op.ADD: _d_add,
    Op.SUB: _d_sub,
    Op.MUL: _d_mul,
    Op.DIV: _d_div,
    Op.POW: _d_pow,
    Op.ATAN2: _d_atan2,
    Op.FMIN: _d_fmin,
    Op.FMAX: _d_fmax,
}
"""Local derivative rule of every differentiable operator."""


def _partials(graph: Graph, i: int) -> list[tuple[int, int]]:
    """Local partial derivatives of node ``i`` as ``(child, derivative)``
    node pairs."""
    op = graph.op(i)
    rule = _RULES.get(op)
    if rule is None:
        raise NotDifferentiable(f"operator {op.name.lower()} has no derivative rule")
    a, b = graph.args(i)
    return rule(graph, i, a, b)


class _ReverseSweep:
    """State shared by the backward sweeps of one Jacobian."""

    def __init__(self, graph: Graph, outputs: VecInt, inputs: VecInt) -> None:
        self.graph = graph
        self.column = {int(s): k for k, s in enumerate(inputs)}
        self.order = graph.reachable(outputs)
        self.dependent = self._dependent()
        self._call_jacobian = {}

    def _dependent(self) -> set[int]:
        """Reachable nodes that depend on at least one input."""
        dependent = set()
        for i in self.order.tolist():
            if i in self.column or any(c in dependent for c in self.graph.children(i)):
                dependent.add(i)
        return dependent

    def partials(self, i: int) -> list[tuple[int, int]]:
        if self.graph.op(i) == Op.OUTPUT:
            return self._output_partials(i)
        return _partials(self.graph, i)

    def _output_partials(self, i: int) -> list[tuple[int, int]]:
        # chain rule at the call boundary: the callee's own Jacobian,
        # embedded once per call node
        call, k = self.graph.args(i)
        record = self.graph.call_record(call)
        jac = self._call_jacobian.get(call)
        if jac is None:
            f_jac = record.f.jacobian()
            jac = f_jac._embed_flat(record.args).reshape(
                record.f.numel_out, record.f.numel_in
            )
            self._call_jacobian[call] = jac
        return [
            (int(a), int(d))
            for a, d in zip(record.args, jac[k])
            if d != self.graph.zero
        ]

    def sweep(self, output: int) -> dict[int, int]:
        """Adjoints of the inputs w.r.t. the node ``output``."""
        graph = self.graph
        result = {}
        if output not in self.dependent:
            return result
        adjoint = {output: graph.one}
        stop = np.searchsorted(self.order, output, side="right")
        for i in self.order[:stop][::-1].tolist():
            a = adjoint.pop(i, None)
            if a is None:
                continue
            k = self.column.get(i)
            if k is not None:
                result[k] = a
                continue
            for child, d in self.partials(i):
                if child not in self.dependent:
                    continue
                contribution = graph.binary(Op.MUL, a, d)
                previous = adjoint.get(child)
                adjoint[child] = (
                    contribution
                    if previous is None
                    else graph.binary(Op.ADD, previous, contribution)
                )
        return result


def jacobian_ids(outputs: VecInt, inputs: VecInt) -> VecInt:
    """Jacobian of the nodes ``outputs`` w.r.t. the symbol nodes ``inputs``.

    Returns:
        Node indices shaped ``(len(outputs), len(inputs))``.
    """
    graph = default_graph()
    outputs = np.asarray(outputs, dtype=np.int64).ravel()
    inputs = np.asarray(inputs, dtype=np.int64).ravel()
    J = np.full((len(outputs), len(inputs)), graph.zero, dtype=np.int64)
    if not len(outputs) or not len(inputs):
        return J

    sweep = _ReverseSweep(graph, outputs, inputs)
    for r, o in enumerate(outputs.tolist()):
        for k, a in sweep.sweep(o).items():
            J[r, k] = a

    disconnected = [k for k, s in enumerate(inputs.tolist()) if s not in sweep.dependent]
    if disconnected:
        logger.debug(
            "%d of %d inputs do not influence the outputs; their Jacobian columns are zero",
            len(disconnected),
            len(inputs),
        )
    return J


def _check_wrt(wrt: MatrixExpr) -> None:
    if not wrt.is_symbolic():
        raise InputMismatch("can only differentiate w.r.t. purely symbolic expressions")


def jacobian(expr, wrt: MatrixExpr) -> MatrixExpr:
    """Jacobian of ``expr`` w.r.t. ``wrt``.

    Cells of both arguments are taken in row-major order, so the result has
    shape ``(expr.numel, wrt.numel)``. Inputs that do not influence ``expr``
    give zero columns.

    Args:
        expr: Expression to differentiate.
        wrt: Purely symbolic expression to differentiate w.r.t.

    Raises:
        InputMismatch: If ``wrt`` is not purely symbolic.
        NotDifferentiable: If an operator on the way has no derivative rule.
    """
    expr = as_matrix(expr)
    _check_wrt(wrt)
    return MatrixExpr(jacobian_ids(expr.ids, wrt.ids))


def gradient(expr, wrt: MatrixExpr) -> MatrixExpr:
    """Gradient of a scalar expression, a column of ``wrt.numel`` cells."""
    expr = as_matrix(expr)
    if not expr.is_scalar():
        raise ShapeMismatch(f"gradient requires a 1x1 expression, got {expr.rows}x{expr.cols}")
    return jacobian(expr, wrt).T


def hessian(expr, wrt: MatrixExpr) -> tuple[MatrixExpr, MatrixExpr]:
    """Hessian and gradient of a scalar expression."""
    g = gradient(expr, wrt)
    return jacobian(g, wrt), g
