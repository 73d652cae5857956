# Copyright (c) 2024 Yilin Zou
"""Compiled evaluation of a subgraph.

The reachable nodes are laid out on a tape in topological order and
evaluated by a Numba kernel, one slot per node, each slot computed once.
Values are batched: every slot holds one value per batch column. Calls of
other functions split the tape into segments; between two segments the
callee is evaluated on the whole batch at once.
"""
import functools
from logging import getLogger

import numba as nb

from .graph import Op, UNARY, default_graph
from .vectypes import *

logger = getLogger(__name__)

_NEG = int(Op.NEG)
_SQRT = int(Op.SQRT)
_SQ = int(Op.SQ)
_SIN = int(Op.SIN)
_COS = int(Op.COS)
_TAN = int(Op.TAN)
_ASIN = int(Op.ASIN)
_ACOS = int(Op.ACOS)
_ATAN = int(Op.ATAN)
_SINH = int(Op.SINH)
_COSH = int(Op.COSH)
_TANH = int(Op.TANH)
_EXP = int(Op.EXP)
_LOG = int(Op.LOG)
_FABS = int(Op.FABS)
_SIGN = int(Op.SIGN)
_FLOOR = int(Op.FLOOR)
_CEIL = int(Op.CEIL)
_ADD = int(Op.ADD)
_SUB = int(Op.SUB)
_MUL = int(Op.MUL)
_DIV = int(Op.DIV)
_POW = int(Op.POW)
_ATAN2 = int(Op.ATAN2)
_FMIN = int(Op.FMIN)
_FMAX = int(Op.FMAX)


def _sweep(code, arg, lo, hi, val):
    """Evaluate tape entries ``lo`` to ``hi`` (exclusive) in place.

    Leaves, calls and call outputs are filled in by the caller and skipped.
    """
    n_batch = val.shape[1]
    for k in range(lo, hi):
        c = code[k]
        if c < _NEG:
            continue
        i = arg[k, 0]
        j = arg[k, 1]
        for b in nb.prange(n_batch):
            x = val[i, b]
            y = val[j, b]
            if c == _ADD:
                r = x + y
            elif c == _SUB:
                r = x - y
            elif c == _MUL:
                r = x * y
            elif c == _DIV:
                r = x / y
            elif c == _POW:
                r = x**y
            elif c == _NEG:
                r = -x
            elif c == _SQ:
                r = x * x
            elif c == _SQRT:
                r = np.sqrt(x)
            elif c == _SIN:
                r = np.sin(x)
            elif c == _COS:
                r = np.cos(x)
            elif c == _TAN:
                r = np.tan(x)
            elif c == _ASIN:
                r = np.arcsin(x)
            elif c == _ACOS:
                r = np.arccos(x)
            elif c == _ATAN:
                r = np.arctan(x)
            elif c == _SINH:
                r = np.sinh(x)
            elif c == _COSH:
                r = np.cosh(x)
            elif c == _TANH:
                r = np.tanh(x)
            elif c == _EXP:
                r = np.exp(x)
            elif c == _LOG:
                r = np.log(x)
            elif c == _FABS:
                r = np.abs(x)
            elif c == _SIGN:
                r = np.sign(x)
            elif c == _FLOOR:
                r = np.floor(x)
            elif c == _CEIL:
                r = np.ceil(x)
            elif c == _ATAN2:
                r = np.arctan2(x, y)
            elif c == _FMIN:
                r = y if x > y or x != x else x
            elif c == _FMAX:
                r = y if x < y or x != x else x
            else:
                r = np.nan
            val[k, b] = r


@functools.cache
def _kernel(parallel: bool, fastmath: bool):
    return nb.njit(parallel=parallel, fastmath=fastmath, error_model="numpy")(_sweep)


class FastFunc:
    """Tape evaluating a set of output nodes from a set of input symbols."""

    def __init__(
        self,
        inputs: VecInt,
        outputs: VecInt,
        parallel: bool = False,
        fastmath: bool = False,
    ) -> None:
        r"""Lay out the subgraph reachable from ``outputs`` on a tape.

        If ``parallel`` is ``True``, the ``parallel`` flag will be passed to the Numba JIT compiler,
        and the batch dimension is evaluated on multiple cores. Results are identical.

        If ``fastmath`` is ``True``, the ``fastmath`` flag will be passed to the Numba JIT compiler,
        see [Numba](https://numba.pydata.org/numba-doc/latest/user/performance-tips.html#fastmath)
        and [LLVM](https://llvm.org/docs/LangRef.html#fast-math-flags) documentations for details.

        Args:
            inputs: Symbol nodes, in the order values are passed.
            outputs: Nodes to evaluate, in the order values are returned.
            parallel: Whether to use Numba ``parallel`` mode.
            fastmath: Whether to use Numba ``fastmath`` mode.
        """
        graph = default_graph()
        self.inputs = np.asarray(inputs, dtype=np.int64).ravel()
        self.outputs = np.asarray(outputs, dtype=np.int64).ravel()
        self._kernel = _kernel(parallel, fastmath)

        order = graph.reachable(self.outputs)
        slot = {int(node): k for k, node in enumerate(order)}
        self.n_slot = len(order)

        self.code = graph.ops[order].astype(np.int32)
        arg = graph.arguments[order].copy()
        for k, node in enumerate(order.tolist()):
            op = int(self.code[k])
            if op >= _NEG:
                arg[k, 0] = slot[int(arg[k, 0])]
                arg[k, 1] = arg[k, 0] if op in UNARY else slot[int(arg[k, 1])]
            else:
                arg[k] = 0
        self.arg = arg

        is_const = self.code == Op.CONST
        self._const_slot = np.flatnonzero(is_const)
        self._const_value = graph.values[order][is_const]

        self._in_slot = np.array([slot.get(int(s), -1) for s in self.inputs], dtype=np.int64)
        self._in_used = self._in_slot >= 0
        self._out_slot = np.array([slot[int(o)] for o in self.outputs], dtype=np.int64)

        self._steps = self._segment(graph, order, slot)
        logger.debug(
            "compiled tape: %d slots, %d inputs, %d outputs, %d steps",
            self.n_slot,
            len(self.inputs),
            len(self.outputs),
            len(self._steps),
        )

    def _segment(self, graph, order, slot) -> list[tuple]:
        outputs_of_call = {}
        for k in np.flatnonzero(self.code == Op.OUTPUT).tolist():
            call, index = graph.args(int(order[k]))
            outputs_of_call.setdefault(call, []).append((index, k))

        steps = []
        lo = 0
        for k in np.flatnonzero(self.code == Op.CALL).tolist():
            if lo < k:
                steps.append(("sweep", lo, k))
            call = int(order[k])
            record = graph.call_record(call)
            pairs = outputs_of_call.get(call, [])
            steps.append(
                (
                    "call",
                    record.f,
                    np.array([slot[int(a)] for a in record.args], dtype=np.int64),
                    np.array([index for index, _ in pairs], dtype=np.int64),
                    np.array([k_ for _, k_ in pairs], dtype=np.int64),
                )
            )
            lo = k + 1
        if lo < self.n_slot:
            steps.append(("sweep", lo, self.n_slot))
        return steps

    def __call__(self, x: VecFloat) -> VecFloat:
        """Evaluate the outputs.

        Args:
            x: Input values, shaped ``(len(inputs), n_batch)``.

        Returns:
            Output values, shaped ``(len(outputs), n_batch)``.
        """
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 2 or x.shape[0] != len(self.inputs):
            raise ValueError(
                f"expected input values shaped ({len(self.inputs)}, n_batch), got {x.shape}"
            )
        val = np.empty((self.n_slot, x.shape[1]), dtype=np.float64)
        val[self._const_slot] = self._const_value[:, None]
        val[self._in_slot[self._in_used]] = x[self._in_used]
        for step in self._steps:
            if step[0] == "sweep":
                self._kernel(self.code, self.arg, step[1], step[2], val)
            else:
                _, f, arg_slot, out_index, out_slot = step
                if len(out_slot):
                    val[out_slot] = f._eval_flat(val[arg_slot])[out_index]
        return val[self._out_slot]
