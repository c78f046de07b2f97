"""
Computation graph root.

A `Graph` owns the execution context its nodes run on, the generation
counter that decides which memoized values are valid, and the registry of
its trainable parameters. Leaves are created through the graph; operation
nodes inherit the graph of their parents.
"""

from __future__ import annotations

import logging
import weakref
from typing import Any, Iterator, Optional

from ...domain._config import ExecutionConfig
from ..execution._context import ExecutionContext
from ._leaves import IndexInputNode, InputNode, ParameterNode, SharedParameter

logger = logging.getLogger(__name__)


class Graph:
    """
    Construction root and pass-boundary owner.

    Parameters
    ----------
    config : Optional[ExecutionConfig]
        Settings for a new execution context owned by this graph.
    context : Optional[ExecutionContext]
        Existing context to run on instead. A context passed in is not closed
        by `Graph.close()`.

    Notes
    -----
    Typical training loop::

        graph.begin_pass()
        loss.backward()
        optimizer.step(graph.parameters())
        graph.zero_gradients()
    """

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        *,
        context: Optional[ExecutionContext] = None,
    ) -> None:
        if config is not None and context is not None:
            raise ValueError("Pass either config or context, not both.")
        self._owns_context = context is None
        self._context = context if context is not None else ExecutionContext(config)
        self._generation = 0
        self._parameters: dict[str, ParameterNode] = {}
        # holds no strong references; dropped inputs are collected
        self._gradient_inputs: "weakref.WeakSet[InputNode]" = weakref.WeakSet()

    @property
    def context(self) -> ExecutionContext:
        return self._context

    @property
    def config(self) -> ExecutionConfig:
        return self._context.config

    @property
    def generation(self) -> int:
        """Current pass number. Operation nodes are clean only if computed in it."""
        return self._generation

    # ------------------------------------------------------------------
    # Leaves
    # ------------------------------------------------------------------
    def input(
        self, value: Any, *, requires_grad: bool = False, name: Optional[str] = None
    ) -> InputNode:
        """
        Create an input leaf holding a copy of `value`.

        Parameters
        ----------
        value : array-like
            Data, converted to the graph's dtype.
        requires_grad : bool, optional
            Accumulate a gradient for this input. Defaults to False.
        name : Optional[str]
            Label used in error messages.
        """
        node = InputNode(self, value, requires_grad=requires_grad, name=name)
        if requires_grad:
            self._gradient_inputs.add(node)
        return node

    def constant(self, value: Any) -> InputNode:
        """Create an input leaf that never needs gradients (used for scalars)."""
        return InputNode(self, value)

    def index_input(self, indices: Any, *, name: Optional[str] = None) -> IndexInputNode:
        """Create an index-vector leaf for lookup operations."""
        return IndexInputNode(self, indices, name=name)

    def parameter(
        self,
        value: Any = None,
        *,
        name: Optional[str] = None,
        requires_grad: bool = True,
        shared: Optional[SharedParameter] = None,
    ) -> ParameterNode:
        """
        Create a trainable parameter leaf.

        Parameters
        ----------
        value : array-like, optional
            Initial value. Required unless `shared` is given.
        name : Optional[str]
            Unique name within this graph; used as the persistence key.
            Defaults to the shared storage's name, else ``param_<n>``.
        requires_grad : bool, optional
            False freezes the parameter. Defaults to True.
        shared : Optional[SharedParameter]
            Storage shared with other graphs. When given, `value` must be
            omitted.

        Raises
        ------
        ValueError
            If the name is already taken, both or neither of `value` and
            `shared` are given, or the shared storage dtype differs from
            the graph dtype.
        """
        if (value is None) == (shared is None):
            raise ValueError("Pass exactly one of value or shared.")
        if shared is None:
            shared = SharedParameter(value, dtype=self._context.dtype, name=name)
        elif shared.dtype != self._context.dtype:
            raise ValueError(
                f"Shared parameter dtype {shared.dtype} differs from graph dtype "
                f"{self._context.dtype}."
            )

        if name is None:
            name = shared.name if shared.name is not None else f"param_{len(self._parameters)}"
        if name in self._parameters:
            raise ValueError(f"Duplicate parameter name {name!r}.")

        node = ParameterNode(self, shared, name=name, requires_grad=requires_grad)
        self._parameters[name] = node
        return node

    def parameters(self) -> list[ParameterNode]:
        """Parameters in creation order."""
        return list(self._parameters.values())

    def named_parameters(self) -> Iterator[tuple[str, ParameterNode]]:
        return iter(list(self._parameters.items()))

    # ------------------------------------------------------------------
    # Pass state
    # ------------------------------------------------------------------
    def begin_pass(self) -> None:
        """
        Signal a pass boundary.

        Every operation node of this graph becomes stale and is recomputed on
        its next read. Leaves and accumulated gradients are not touched.
        """
        self._generation += 1
        logger.debug("Graph generation advanced to %d", self._generation)

    def zero_gradients(self) -> None:
        """Reset the dense and sparse gradients of every gradient-requiring leaf."""
        for p in self._parameters.values():
            p.zero_gradient()
        for node in list(self._gradient_inputs):
            node.zero_gradient()

    def clamp_gradients(self, min_value: float, max_value: float) -> None:
        """Clip every parameter gradient elementwise to ``[min_value, max_value]``."""
        for p in self._parameters.values():
            p.clamp_gradient(min_value, max_value)

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Release the worker pool if this graph owns its context."""
        if self._owns_context:
            self._context.close()

    def __enter__(self) -> "Graph":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Graph(generation={self._generation}, "
            f"parameters={len(self._parameters)}, context={self._context!r})"
        )
