"""
Define-by-run computation graph.

This package aggregates the graph engine:

- ``_graph``      : `Graph`, the construction root and pass-boundary owner
- ``_node``       : `Node`, operation vertices and the operator API
- ``_leaves``     : input, index input and parameter leaves
- ``_forward``    : lazy, memoized forward evaluation
- ``_backward``   : reverse-mode gradient propagation
- ``_functional`` : module-level construction functions

Public API
----------
- ``Graph``, ``Node``
- ``InputNode``, ``IndexInputNode``, ``ParameterNode``, ``SharedParameter``
- ``functional`` (the ``_functional`` module)
"""

from . import _functional as functional
from ._graph import Graph
from ._leaves import (
    GradientAccumulator,
    IndexInputNode,
    InputNode,
    ParameterNode,
    SharedParameter,
)
from ._node import Node

__all__ = [
    Graph.__name__,
    Node.__name__,
    InputNode.__name__,
    IndexInputNode.__name__,
    ParameterNode.__name__,
    SharedParameter.__name__,
    GradientAccumulator.__name__,
    "functional",
]
