"""
Tensor buffer interface definitions.

This module defines the domain-level interface for dense numeric buffers
using structural typing. The interface captures the minimal surface the
graph engine needs from a buffer: shape metadata, element count, and a way
to exchange data with NumPy.

Notes
-----
A tensor buffer in wyrmgrad carries no autograd state. Differentiation is
the responsibility of graph nodes, which own a value buffer and an optional
gradient buffer.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ITensor(Protocol):
    """
    Dense n-dimensional buffer interface.

    Notes
    -----
    - The shape is an ordered tuple of positive dimension sizes; the empty
      tuple denotes a scalar holding exactly one element.
    - Element count always equals the product of the shape dimensions.
    """

    @property
    def shape(self) -> tuple[int, ...]:
        """
        Return the shape of the buffer.

        Returns
        -------
        tuple[int, ...]
            The buffer's shape.
        """
        ...

    @property
    def dtype(self) -> Any:
        """
        Return the floating-point storage dtype.
        """
        ...

    def numel(self) -> int:
        """
        Return the number of stored elements.
        """
        ...

    def to_numpy(self) -> Any:
        """
        Return the underlying NumPy storage.

        Returns
        -------
        numpy.ndarray
            The backing array (not a copy).
        """
        ...

    def copy_from_numpy(self, arr: Any) -> None:
        """
        Overwrite the buffer contents from a NumPy array of the same shape.

        Raises
        ------
        ShapeMismatchError
            If `arr` does not have this buffer's shape.
        """
        ...

    def fill(self, value: float) -> None:
        """
        Fill every element with `value`.
        """
        ...
