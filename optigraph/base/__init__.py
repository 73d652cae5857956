# Copyright (c) 2024 Yilin Zou
"""This submodule contains the expression graph, its differentiation and its
compilation, which the ``optigraph.opti`` problem builder is built on."""
