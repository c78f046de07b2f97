"""
Graph-construction and evaluation exceptions for wyrmgrad.

This module defines the error taxonomy surfaced by the computation-graph
engine. Every error is raised synchronously to the immediate caller; none of
them describes a transient condition, so the engine never retries or
recovers from them on its own.

- `ShapeMismatchError`: an operation was invoked on incompatible shapes.
- `InvalidIndexError`: a lookup received an out-of-range row index.
- `StaleGraphError`: a node was read while its graph state was inconsistent
  (re-entrant evaluation, values invalidated in the middle of a walk).
- `NumericalInstabilityError`: strict numerics found NaN/Inf at a node.
- `GraphMismatchError`: nodes that belong to different graphs were combined.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


def _format_shapes(shapes: Sequence[tuple[int, ...]]) -> str:
    return ", ".join(str(tuple(s)) for s in shapes)


class ShapeMismatchError(ValueError):
    """
    Raised when an operation receives operands with incompatible shapes.

    Attributes
    ----------
    op : str
        Name of the operation whose shape rule rejected the operands.
    shapes : tuple[tuple[int, ...], ...]
        The offending operand shapes, in operand order.
    """

    def __init__(
        self,
        op: str,
        shapes: Sequence[tuple[int, ...]],
        detail: Optional[str] = None,
    ) -> None:
        """
        Initialize the ShapeMismatchError.

        Parameters
        ----------
        op : str
            Operation name (e.g., "matmul", "add").
        shapes : Sequence[tuple[int, ...]]
            Shapes of the operands that failed validation.
        detail : Optional[str], optional
            Extra explanation naming the offending dimensions.
        """
        msg = f"{op}: incompatible shapes {_format_shapes(shapes)}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)
        self.op = op
        self.shapes = tuple(tuple(s) for s in shapes)
        self.detail = detail


class InvalidIndexError(IndexError):
    """
    Raised when a sparse lookup is given an index outside the table.

    Attributes
    ----------
    op : str
        Name of the lookup operation.
    index : int
        The first offending index.
    size : int
        Number of rows in the looked-up table.
    """

    def __init__(self, op: str, index: int, size: int) -> None:
        super().__init__(
            f"{op}: index {index} is out of range for a table with {size} rows."
        )
        self.op = op
        self.index = int(index)
        self.size = int(size)


class StaleGraphError(RuntimeError):
    """
    Raised when a node is read while its graph state is invalid.

    Under correct usage this never happens. It signals misuse such as
    triggering evaluation of a node from inside its own evaluation (for
    example from another thread), or issuing the pass-boundary signal while
    a backward walk still needs the previous pass's values.

    Attributes
    ----------
    node : Any
        The node that could not be read.
    reason : str
        Human-readable explanation.
    """

    def __init__(self, node: Any, reason: str) -> None:
        super().__init__(f"{node!r}: {reason}")
        self.node = node
        self.reason = reason


class NumericalInstabilityError(ArithmeticError):
    """
    Raised under strict numerics when an operation produces NaN or Inf.

    Attributes
    ----------
    op : str
        Name of the operation that produced the non-finite values.
    phase : str
        Either "forward" or "backward".
    node : Any
        The node at which the values were produced (may be None when the
        check runs outside a graph).
    """

    def __init__(self, op: str, phase: str, node: Any = None) -> None:
        where = f" at {node!r}" if node is not None else ""
        super().__init__(f"{op} produced non-finite values during {phase}{where}.")
        self.op = op
        self.phase = phase
        self.node = node


class GraphMismatchError(ValueError):
    """
    Raised when an operation combines nodes owned by different graphs.
    """

    def __init__(self, op: str) -> None:
        super().__init__(f"{op}: operands belong to different graphs.")
        self.op = op
