# Copyright (c) 2024 Yilin Zou
"""# optigraph: symbolic graphs for nonlinear optimization

**optigraph** is a Python package for posing and solving constrained nonlinear
optimization problems, such as trajectory optimization, on top of a symbolic
expression graph.

- 🧮 **Symbolic:** Matrix expressions with NumPy broadcasting, slicing and
  concatenation, stored as a shared graph of immutable nodes.
- 🔁 **Differentiable:** Exact Jacobians and Hessians by reverse-mode
  automatic differentiation, also through calls of compiled functions.
- ⚡ **Fast:** Expressions are compiled into tapes evaluated by
  [Numba](https://numba.pydata.org/) kernels, batched over many evaluations.
- 🔌 **Pluggable:** Problems built with :class:`Opti` are solved by
  [SciPy](https://scipy.org/) or [IPOPT](https://github.com/coin-or/Ipopt)
  through a small adapter interface.

Example::

    from optigraph import Opti

    opti = Opti()
    x = opti.variable()
    opti.minimize(x**2)
    opti.subject_to(x >= 1)
    opti.solve().value(x)  # 1.0
"""
from .base.easyderiv import gradient, hessian, jacobian
from .base.errors import (
    InputMismatch,
    NotDifferentiable,
    OutOfRange,
    ShapeMismatch,
    SolverError,
    UnsupportedRelation,
)
from .base.function import Function
from .base.matrix import *
from .base.symbolic import from_sympy, to_sympy
from .opti import Opti, OptiSol
from .optimizer import SolverResult, Status

__author__ = "Yilin Zou"
__copyright__ = "Copyright (c) 2024 Yilin Zou"
