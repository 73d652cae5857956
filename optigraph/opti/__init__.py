# Copyright (c) 2024 Yilin Zou
from .opti import Opti
from .solution import OptiSol

__all__ = ["Opti", "OptiSol"]
