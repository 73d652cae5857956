# Copyright (c) 2024 Yilin Zou
from logging import getLogger
from typing import Iterable, Optional, Self

from .easyderiv import jacobian_ids
from .errors import InputMismatch, ShapeMismatch
from .fastfunc import FastFunc
from .graph import default_graph
from .matrix import MatrixExpr, as_matrix, horzcat
from .vectypes import *

logger = getLogger(__name__)


def _as_value(value, shape: tuple[int, int], what: str) -> VecFloat:
    """Numeric argument as a 2-D array of exactly ``shape``.

    Scalars are ``1 x 1`` and 1-D arrays are columns.
    """
    value = np.asarray(value, dtype=np.float64)
    if value.ndim == 0:
        value = value.reshape(1, 1)
    elif value.ndim == 1:
        value = value.reshape(-1, 1)
    if value.shape != tuple(shape):
        raise ShapeMismatch(
            f"{what} must be {shape[0]}x{shape[1]}, got "
            + "x".join(str(d) for d in value.shape)
        )
    return value


def _is_symbolic_call(args) -> bool:
    return any(isinstance(a, MatrixExpr) for a in args)


class Function:
    """A named, compiled mapping from symbolic inputs to symbolic outputs.

    Calling a ``Function`` with numeric arguments evaluates it. Calling it
    with symbolic arguments embeds it into a larger graph as an opaque call:
    the body is not copied, and derivatives of the call use the Jacobian of
    the ``Function`` itself.
    """

    def __init__(
        self,
        name: str,
        inputs: list[MatrixExpr],
        outputs: list[MatrixExpr | float],
        name_in: Optional[list[str]] = None,
        name_out: Optional[list[str]] = None,
        parallel: bool = False,
        fastmath: bool = False,
    ) -> None:
        """
        Args:
            name: Name of the function.
            inputs: Purely symbolic input matrices. Every free symbol of the outputs must be among them.
            outputs: Output expressions.
            name_in: Names of the inputs, ``i0, i1, ...`` by default.
            name_out: Names of the outputs, ``o0, o1, ...`` by default.
            parallel: Whether to use Numba ``parallel`` mode.
            fastmath: Whether to use Numba ``fastmath`` mode.

        Raises:
            InputMismatch: If an input is not purely symbolic, a symbol is
                repeated among the inputs, or an output depends on a symbol
                that is not an input.
        """
        graph = default_graph()
        self._name = name
        self._inputs = [as_matrix(i) for i in inputs]
        self._outputs = [as_matrix(o) for o in outputs]
        self._name_in = (
            list(name_in) if name_in is not None else [f"i{k}" for k in range(len(inputs))]
        )
        self._name_out = (
            list(name_out) if name_out is not None else [f"o{k}" for k in range(len(outputs))]
        )
        if len(self._name_in) != len(self._inputs):
            raise ValueError("name_in must have one name per input")
        if len(self._name_out) != len(self._outputs):
            raise ValueError("name_out must have one name per output")
        self._parallel = parallel
        self._fastmath = fastmath

        for k, i in enumerate(self._inputs):
            if not all(graph.is_symbol(c) for c in i.ids.ravel()):
                raise InputMismatch(
                    f"input {self._name_in[k]!r} of function {name!r} is not purely symbolic"
                )
        self._in_flat = self._flatten(self._inputs)
        self._out_flat = self._flatten(self._outputs)
        if len(set(self._in_flat.tolist())) != len(self._in_flat):
            raise InputMismatch(f"inputs of function {name!r} repeat a symbol")

        declared = set(self._in_flat.tolist())
        missing = [s for s in graph.free_symbols(self._out_flat).tolist() if s not in declared]
        if missing:
            names = sorted({graph.format(s) for s in missing})
            raise InputMismatch(
                f"outputs of function {name!r} depend on symbols that are not inputs: "
                + ", ".join(names)
            )

        self._in_offset = np.cumsum([0] + [i.numel for i in self._inputs])
        self._out_offset = np.cumsum([0] + [o.numel for o in self._outputs])
        self._in_position = {int(s): k for k, s in enumerate(self._in_flat)}
        self._fast = FastFunc(self._in_flat, self._out_flat, parallel, fastmath)
        self._jacobian = None

    @staticmethod
    def _flatten(mats: list[MatrixExpr]) -> VecInt:
        if not mats:
            return np.array([], dtype=np.int64)
        return np.concatenate([m.ids.ravel() for m in mats])

    def _eval_flat(self, x: VecFloat) -> VecFloat:
        """Evaluate on input cells shaped ``(numel_in, n_batch)``."""
        return self._fast(x)

    def _embed_flat(self, args: VecInt) -> VecInt:
        """Output cells of a call on the argument nodes ``args``.

        Constant output cells stay constants and outputs that are input
        symbols pass the argument through; only the remaining cells refer
        to the call node.
        """
        graph = default_graph()
        args = np.asarray(args, dtype=np.int64).ravel()
        out = np.empty(len(self._out_flat), dtype=np.int64)
        call = None
        for k, body in enumerate(self._out_flat.tolist()):
            if graph.is_constant(body):
                out[k] = body
            elif body in self._in_position:
                out[k] = args[self._in_position[body]]
            else:
                if call is None:
                    call = graph.call(self, args)
                out[k] = graph.output(call, k)
        return out

    def _check_count(self, args) -> None:
        if len(args) != self.n_in:
            raise ValueError(
                f"function {self._name!r} takes {self.n_in} arguments, got {len(args)}"
            )

    def evaluate(self, *args) -> list[VecFloat]:
        """Evaluate on numeric arguments.

        Returns:
            The outputs as 2-D arrays, in declared order.

        Raises:
            ShapeMismatch: If an argument does not have the shape of the
                corresponding input.
        """
        self._check_count(args)
        values = [
            _as_value(a, i.shape, f"argument {n!r}")
            for a, i, n in zip(args, self._inputs, self._name_in)
        ]
        x = (
            np.concatenate([v.ravel() for v in values])
            if values
            else np.array([], dtype=np.float64)
        )
        y = self._eval_flat(x[:, None])[:, 0]
        return [
            y[self._out_offset[k] : self._out_offset[k + 1]].reshape(o.shape)
            for k, o in enumerate(self._outputs)
        ]

    def embed(self, *args) -> list[MatrixExpr]:
        """Apply to symbolic arguments without copying the body.

        Returns:
            The output expressions, in declared order.

        Raises:
            ShapeMismatch: If an argument does not have the shape of the
                corresponding input.
        """
        self._check_count(args)
        args = [as_matrix(a) for a in args]
        for a, i, n in zip(args, self._inputs, self._name_in):
            if a.shape != i.shape:
                raise ShapeMismatch(
                    f"argument {n!r} must be {i.rows}x{i.cols}, got {a.rows}x{a.cols}"
                )
        out = self._embed_flat(self._flatten(args))
        return [
            MatrixExpr(out[self._out_offset[k] : self._out_offset[k + 1]].reshape(o.shape))
            for k, o in enumerate(self._outputs)
        ]

    def __call__(self, *args):
        """Evaluate (numeric arguments) or embed (any symbolic argument).

        Returns a single output directly and several outputs as a tuple.
        """
        result = self.embed(*args) if _is_symbolic_call(args) else self.evaluate(*args)
        return result[0] if len(result) == 1 else tuple(result)

    def jacobian(self) -> Self:
        """Function of the same inputs returning the Jacobian of all output
        cells w.r.t. all input cells, both in row-major order."""
        if self._jacobian is None:
            J = jacobian_ids(self._out_flat, self._in_flat)
            self._jacobian = Function(
                f"jac_{self._name}",
                self._inputs,
                [MatrixExpr(J)],
                self._name_in,
                ["jac"],
                self._parallel,
                self._fastmath,
            )
        return self._jacobian

    def map(self, n: int) -> "Map":
        """Evaluate ``n`` times on horizontally stacked arguments."""
        return Map(self, n)

    @property
    def name(self) -> str:
        return self._name

    @property
    def n_in(self) -> int:
        """Number of inputs."""
        return len(self._inputs)

    @property
    def n_out(self) -> int:
        """Number of outputs."""
        return len(self._outputs)

    @property
    def name_in(self) -> list[str]:
        return list(self._name_in)

    @property
    def name_out(self) -> list[str]:
        return list(self._name_out)

    @property
    def numel_in(self) -> int:
        """Total number of input cells."""
        return len(self._in_flat)

    @property
    def numel_out(self) -> int:
        """Total number of output cells."""
        return len(self._out_flat)

    def size_in(self, i: int) -> tuple[int, int]:
        return self._inputs[i].shape

    def size_out(self, i: int) -> tuple[int, int]:
        return self._outputs[i].shape

    def __repr__(self) -> str:
        ins = ", ".join(f"{n}[{i.rows}x{i.cols}]" for n, i in zip(self._name_in, self._inputs))
        outs = ", ".join(f"{n}[{o.rows}x{o.cols}]" for n, o in zip(self._name_out, self._outputs))
        return f"Function({self._name}: ({ins}) -> ({outs}))"


class Map:
    """``n`` evaluations of a :class:`Function` on horizontally stacked
    arguments.

    Numeric evaluation runs all ``n`` evaluations as one batch of the
    compiled tape. Symbolic calls unroll into ``n`` embedded calls.
    An argument with exactly the shape of the input is shared by all ``n``
    evaluations.
    """

    def __init__(self, f: Function, n: int) -> None:
        if n < 1:
            raise ValueError("n must be positive")
        self.f = f
        self.n = n

    def _blocks(self, a, k: int, numeric: bool) -> list:
        rows, cols = self.f.size_in(k)
        shape = np.shape(a) if numeric else a.shape
        if numeric and len(shape) < 2:
            a = _as_value(a, (rows, cols), f"argument {self.f.name_in[k]!r}")
            shape = a.shape
        if tuple(shape) == (rows, cols):
            return [a] * self.n
        if tuple(shape) != (rows, cols * self.n):
            raise ShapeMismatch(
                f"argument {self.f.name_in[k]!r} must be {rows}x{cols} "
                f"or {rows}x{cols * self.n}, got " + "x".join(str(d) for d in shape)
            )
        return [a[:, j * cols : (j + 1) * cols] for j in range(self.n)]

    def evaluate(self, *args) -> list[VecFloat]:
        self.f._check_count(args)
        args = [np.asarray(a, dtype=np.float64) for a in args]
        blocks = [self._blocks(a, k, True) for k, a in enumerate(args)]
        x = np.empty((self.f.numel_in, self.n), dtype=np.float64)
        for j in range(self.n):
            x[:, j] = (
                np.concatenate([np.ravel(b[j]) for b in blocks])
                if blocks
                else np.array([], dtype=np.float64)
            )
        y = self.f._eval_flat(x)
        result = []
        for k in range(self.f.n_out):
            rows, cols = self.f.size_out(k)
            part = y[self.f._out_offset[k] : self.f._out_offset[k + 1]]
            result.append(
                np.hstack([part[:, j].reshape(rows, cols) for j in range(self.n)])
            )
        return result

    def embed(self, *args) -> list[MatrixExpr]:
        self.f._check_count(args)
        args = [as_matrix(a) for a in args]
        blocks = [self._blocks(a, k, False) for k, a in enumerate(args)]
        calls = [self.f.embed(*(b[j] for b in blocks)) for j in range(self.n)]
        return [horzcat(*(c[k] for c in calls)) for k in range(self.f.n_out)]

    def __call__(self, *args):
        result = self.embed(*args) if _is_symbolic_call(args) else self.evaluate(*args)
        return result[0] if len(result) == 1 else tuple(result)
