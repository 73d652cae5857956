# Copyright (c) 2024 Yilin Zou
"""Exceptions raised by optigraph.

Structural mistakes (shapes, indices, relations) are raised by the call
that introduces them, never deferred to evaluation time.
"""


class ShapeMismatch(ValueError):
    """Operand or argument dimensions are incompatible."""


class OutOfRange(IndexError):
    """Index or slice bound exceeds the dimensions of a matrix."""


class NotDifferentiable(ValueError):
    """An operator in the graph has no derivative rule."""


class InputMismatch(ValueError):
    """Declared inputs do not cover the free symbols of an expression."""


class UnsupportedRelation(ValueError):
    """A constraint relation other than ``==``, ``<=`` or ``>=``."""


class SolverError(RuntimeError):
    """The solver adapter reported a non-successful status."""

    def __init__(self, status, result=None) -> None:
        """
        Args:
            status: :class:`optigraph.optimizer.Status` reported by the adapter.
            result: The :class:`optigraph.optimizer.SolverResult`, if any.
        """
        super().__init__(f"solver failed with status {status.name}")
        self.status = status
        self.result = result
