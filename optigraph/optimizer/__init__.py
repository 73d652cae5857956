# Copyright (c) 2024 Yilin Zou
"""Solver adapters.

An adapter is a function ``solve(nlp, x_0, optimizer_options)`` returning a
:class:`SolverResult`. It receives the problem only through the numeric
callbacks and bounds of :class:`optigraph.base.nlp.Nlp`, so any
gradient-based solver can be plugged in.
"""
from typing import Callable, Optional

from ._common import SolverResult, Status
from optigraph.base.nlp import Nlp
from optigraph.base.vectypes import VecFloat

SolverAdapter = Callable[[Nlp, VecFloat, Optional[dict]], SolverResult]


def get_solver(name: str) -> SolverAdapter:
    """Adapter registered under ``name``: ``"scipy"`` or ``"ipopt"``.

    The IPOPT adapter requires [cyipopt](https://cyipopt.readthedocs.io).
    """
    if name == "scipy":
        from . import scipy

        return scipy.solve
    if name == "ipopt":
        from . import ipopt

        return ipopt.solve
    raise ValueError(f"unknown solver {name!r}, expected 'scipy' or 'ipopt'")


__all__ = ["SolverAdapter", "SolverResult", "Status", "get_solver"]
