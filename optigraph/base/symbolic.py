# Copyright (c) 2024 Yilin Zou
"""Conversion between matrix expressions and [SymPy](https://www.sympy.org/)."""
from typing import Mapping

import sympy as sp

from .graph import Op, default_graph
from . import matrix as m
from .matrix import MatrixExpr, as_matrix
from .vectypes import *

_TO_SYMPY = {
    Op.NEG: lambda a: -a,
    Op.SQRT: sp.sqrt,
    Op.SQ: lambda a: a**2,
    Op.SIN: sp.sin,
    Op.COS: sp.cos,
    Op.TAN: sp.tan,
    Op.ASIN: sp.asin,
    Op.ACOS: sp.acos,
    Op.ATAN: sp.atan,
    Op.SINH: sp.sinh,
    Op.COSH: sp.cosh,
    Op.TANH: sp.tanh,
    Op.EXP: sp.exp,
    Op.LOG: sp.log,
    Op.FABS: sp.Abs,
    Op.SIGN: sp.sign,
    Op.FLOOR: sp.floor,
    Op.CEIL: sp.ceiling,
    Op.ADD: lambda a, b: a + b,
    Op.SUB: lambda a, b: a - b,
    Op.MUL: lambda a, b: a * b,
    Op.DIV: lambda a, b: a / b,
    Op.POW: lambda a, b: a**b,
    Op.ATAN2: sp.atan2,
    Op.FMIN: sp.Min,
    Op.FMAX: sp.Max,
}

_FROM_SYMPY = {
    sp.sin: m.sin,
    sp.cos: m.cos,
    sp.tan: m.tan,
    sp.asin: m.asin,
    sp.acos: m.acos,
    sp.atan: m.atan,
    sp.sinh: m.sinh,
    sp.cosh: m.cosh,
    sp.tanh: m.tanh,
    sp.exp: m.exp,
    sp.log: m.log,
    sp.Abs: m.fabs,
    sp.sign: m.sign,
    sp.floor: m.floor,
    sp.ceiling: m.ceil,
}


def _sympy_constant(value: float) -> sp.Expr:
    if np.isinf(value):
        return sp.oo if value > 0 else -sp.oo
    if np.isnan(value):
        return sp.nan
    if float(value).is_integer():
        return sp.Integer(int(value))
    return sp.Float(value)


def _sympy_symbol(graph, i: int) -> sp.Symbol:
    info, k = graph.symbol_info(i)
    if info.rows * info.cols == 1:
        return sp.Symbol(info.name)
    return sp.Symbol(f"{info.name}_{k // info.cols}_{k % info.cols}")


def to_sympy(expr) -> sp.Matrix:
    """Convert to a :class:`sympy.Matrix`.

    Symbols of ``1 x 1`` matrices keep their names, other cells are named
    ``name_row_col``. Calls of functions become undefined SymPy functions
    ``name_k`` of the argument cells, where ``k`` is the output cell.
    Shared subexpressions are expanded, so the result can be much larger
    than the graph.
    """
    expr = as_matrix(expr)
    if not expr.numel:
        return sp.zeros(*expr.shape)
    graph = default_graph()
    converted = {}
    for i in graph.reachable(expr.ids).tolist():
        op = graph.op(i)
        if op == Op.SYMBOL:
            converted[i] = _sympy_symbol(graph, i)
        elif op == Op.CONST:
            converted[i] = _sympy_constant(graph.value(i))
        elif op == Op.CALL:
            continue
        elif op == Op.OUTPUT:
            call, k = graph.args(i)
            record = graph.call_record(call)
            args = [converted[int(a)] for a in record.args]
            converted[i] = sp.Function(f"{record.f.name}_{k}")(*args)
        else:
            converted[i] = _TO_SYMPY[op](*(converted[c] for c in graph.children(i)))
    return sp.Matrix([[converted[int(i)] for i in row] for row in expr.ids])


def from_sympy(expr, mapping: Mapping[sp.Symbol, MatrixExpr | float]) -> MatrixExpr:
    """Convert a SymPy expression or matrix to a :class:`MatrixExpr`.

    Args:
        expr: SymPy expression or matrix.
        mapping: Value of every free SymPy symbol, each ``1 x 1``.

    Raises:
        ValueError: If a symbol is missing from ``mapping`` or a SymPy
            function has no counterpart.
    """
    if isinstance(expr, sp.MatrixBase):
        rows, cols = expr.shape
        if not rows or not cols:
            return MatrixExpr(np.empty((rows, cols), dtype=np.int64))
        return m.vertcat(
            *(
                m.horzcat(*(from_sympy(expr[r, c], mapping) for c in range(cols)))
                for r in range(rows)
            )
        )

    memo = {}

    def convert(e) -> MatrixExpr:
        if e in memo:
            return memo[e]
        if e.is_Symbol:
            if e not in mapping:
                raise ValueError(f"no value given for symbol {e}")
            result = as_matrix(mapping[e])
            if not result.is_scalar():
                raise ValueError(f"value of symbol {e} must be 1x1")
        elif e.is_number:
            result = MatrixExpr.constant(float(e))
        elif e.is_Add:
            result = convert(e.args[0])
            for a in e.args[1:]:
                result = result + convert(a)
        elif e.is_Mul:
            result = convert(e.args[0])
            for a in e.args[1:]:
                result = result * convert(a)
        elif e.is_Pow:
            base, exponent = e.args
            if exponent == sp.Rational(1, 2):
                result = m.sqrt(convert(base))
            else:
                result = convert(base) ** convert(exponent)
        elif isinstance(e, sp.atan2):
            result = m.atan2(convert(e.args[0]), convert(e.args[1]))
        elif isinstance(e, (sp.Min, sp.Max)):
            fold = m.fmin if isinstance(e, sp.Min) else m.fmax
            result = convert(e.args[0])
            for a in e.args[1:]:
                result = fold(result, convert(a))
        elif e.func in _FROM_SYMPY:
            result = _FROM_SYMPY[e.func](convert(e.args[0]))
        else:
            raise ValueError(f"cannot convert {e.func} to a matrix expression")
        memo[e] = result
        return result

    return convert(sp.sympify(expr))
