"""
Graph node interface definitions.

This module defines the structural contract every vertex of the
computation graph satisfies, whether it is a leaf (input, index input,
parameter) or the result of an operation.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from ._tensor import ITensor


@runtime_checkable
class INode(Protocol):
    """
    Computation-graph node interface.

    Notes
    -----
    - `value` is a side-effecting read: it may evaluate this node and any
      stale ancestor, but never mutates gradients.
    - `gradient` is None for nodes that do not need gradients and for nodes
      that have not been reached by a backward pass.
    """

    @property
    def shape(self) -> tuple[int, ...]:
        """Shape fixed at construction."""
        ...

    @property
    def parents(self) -> Sequence["INode"]:
        """Nodes consumed by this node's operation; empty for leaves."""
        ...

    @property
    def op(self) -> Any:
        """Operation tag (`OpKind`) that produced this node."""
        ...

    @property
    def clean(self) -> bool:
        """True when the memoized value is valid for the current pass."""
        ...

    @property
    def needs_gradient(self) -> bool:
        """True when a backward pass must compute this node's gradient."""
        ...

    @property
    def value(self) -> ITensor:
        """Current value, evaluated on demand."""
        ...

    @property
    def gradient(self) -> Optional[ITensor]:
        """Accumulated gradient, if any."""
        ...

    def backward(self, seed: Optional[Any] = None) -> None:
        """Propagate gradients from this node to its ancestors."""
        ...

    def zero_gradient(self) -> None:
        """Clear this node's gradient accumulator."""
        ...
