"""
Concrete tensor buffer (NumPy backend).

This module provides `Tensor`, the dense n-dimensional storage used for node
values and gradients. It satisfies the domain-level `ITensor` protocol and
wraps a contiguous NumPy array; all elementwise and matrix kernels run on
NumPy (and through it, on whatever BLAS NumPy is linked against).

Design notes
------------
- A `Tensor` carries no autograd state. Graph nodes own value and gradient
  buffers and decide when they are valid.
- Shapes are validated on construction: every dimension must be a positive
  integer. The empty shape denotes a scalar.
- Storage dtype is float32 or float64. Integer and boolean input arrays are
  converted to the requested float dtype; float arrays keep their dtype
  unless one is requested explicitly.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import numpy as np

from ...domain._errors import ShapeMismatchError
from ...domain._tensor import ITensor

Number = Union[int, float]
DTypeLike = Union[str, np.dtype, type]

_FLOAT_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))


def _validate_shape(shape: Any) -> tuple[int, ...]:
    """
    Normalize and validate a shape tuple.

    Raises
    ------
    TypeError
        If a dimension is not an integer.
    ValueError
        If a dimension is not positive.
    """
    if isinstance(shape, (int, np.integer)):
        shape = (shape,)
    out = []
    for d in tuple(shape):
        if isinstance(d, bool) or not isinstance(d, (int, np.integer)):
            raise TypeError(f"Shape dimensions must be integers, got {shape!r}")
        if int(d) <= 0:
            raise ValueError(f"Shape dimensions must be positive, got {shape!r}")
        out.append(int(d))
    return tuple(out)


def _resolve_dtype(dtype: Optional[DTypeLike], arr: Optional[np.ndarray] = None):
    if dtype is not None:
        resolved = np.dtype(dtype)
        if resolved not in _FLOAT_DTYPES:
            raise ValueError(f"Unsupported tensor dtype {resolved}.")
        return resolved
    if arr is not None and arr.dtype in _FLOAT_DTYPES:
        return arr.dtype
    return np.dtype(np.float32)


class Tensor(ITensor):
    """
    Dense floating-point buffer with shape metadata.

    Parameters
    ----------
    shape : tuple[int, ...]
        Tensor shape. Every dimension must be positive; ``()`` is a scalar.
    dtype : optional
        float32 (default) or float64.

    Notes
    -----
    - Storage is allocated zero-filled.
    - `to_numpy()` returns the backing array, not a copy.
    """

    __slots__ = ("_shape", "_data")

    def __init__(self, shape: tuple[int, ...], *, dtype: Optional[DTypeLike] = None):
        self._shape = _validate_shape(shape)
        self._data = np.zeros(self._shape, dtype=_resolve_dtype(dtype))

    @classmethod
    def from_numpy(
        cls, arr: Any, *, dtype: Optional[DTypeLike] = None, copy: bool = True
    ) -> "Tensor":
        """
        Create a tensor from array-like data.

        Parameters
        ----------
        arr : array-like
            Source data. Its shape becomes the tensor shape.
        dtype : optional
            Storage dtype. Defaults to the source dtype when it is float32 or
            float64, otherwise float32.
        copy : bool, optional
            If False and no conversion is needed, the tensor wraps `arr`
            directly. Defaults to True.

        Returns
        -------
        Tensor
            The new tensor.
        """
        src = np.asarray(arr)
        target = _resolve_dtype(dtype, src)
        shape = _validate_shape(src.shape)

        obj = cls.__new__(cls)
        obj._shape = shape
        if copy:
            obj._data = np.array(src, dtype=target, order="C", copy=True)
        else:
            obj._data = np.ascontiguousarray(src, dtype=target)
        return obj

    @classmethod
    def full(
        cls, shape: tuple[int, ...], value: Number, *, dtype: Optional[DTypeLike] = None
    ) -> "Tensor":
        """Create a tensor filled with `value`."""
        t = cls(shape, dtype=dtype)
        t.fill(value)
        return t

    @classmethod
    def zeros(cls, shape: tuple[int, ...], *, dtype: Optional[DTypeLike] = None) -> "Tensor":
        """Create a zero-filled tensor."""
        return cls(shape, dtype=dtype)

    @classmethod
    def ones(cls, shape: tuple[int, ...], *, dtype: Optional[DTypeLike] = None) -> "Tensor":
        """Create a tensor filled with ones."""
        return cls.full(shape, 1.0, dtype=dtype)

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def ndim(self) -> int:
        return len(self._shape)

    def numel(self) -> int:
        """
        Return the number of elements.

        Returns
        -------
        int
            Product of the shape dimensions (1 for scalars).
        """
        return int(self._data.size)

    def to_numpy(self) -> np.ndarray:
        """
        Return the backing NumPy array.

        Notes
        -----
        The array is shared with the tensor. Callers that need an independent
        copy should use `clone().to_numpy()` or `np.array(..., copy=True)`.
        """
        return self._data

    def copy_from_numpy(self, arr: Any) -> None:
        """
        Overwrite contents from an array of identical shape.

        Parameters
        ----------
        arr : array-like
            Source values. Cast to this tensor's dtype.

        Raises
        ------
        ShapeMismatchError
            If the shapes differ.
        """
        src = np.asarray(arr)
        if tuple(src.shape) != self._shape:
            raise ShapeMismatchError(
                "copy_from_numpy",
                (self._shape, tuple(src.shape)),
                "source must match destination shape",
            )
        np.copyto(self._data, src, casting="unsafe")

    def fill(self, value: Number) -> None:
        """Fill every element with `value`."""
        self._data.fill(value)

    def clone(self) -> "Tensor":
        """Return a deep copy."""
        return Tensor.from_numpy(self._data, dtype=self._data.dtype, copy=True)

    def add_(self, other: Union["Tensor", np.ndarray]) -> "Tensor":
        """
        Accumulate `other` into this tensor in place.

        Parameters
        ----------
        other : Tensor or np.ndarray
            Values to add; must have exactly this tensor's shape.

        Returns
        -------
        Tensor
            `self`, for chaining.

        Raises
        ------
        ShapeMismatchError
            If the shapes differ.
        """
        src = other.to_numpy() if isinstance(other, Tensor) else np.asarray(other)
        if tuple(src.shape) != self._shape:
            raise ShapeMismatchError(
                "accumulate", (self._shape, tuple(src.shape)), "shapes must be equal"
            )
        np.add(self._data, src, out=self._data, casting="unsafe")
        return self

    def item(self) -> float:
        """
        Return the single element of a one-element tensor.

        Raises
        ------
        ValueError
            If the tensor holds more than one element.
        """
        if self._data.size != 1:
            raise ValueError(
                f"item() requires exactly one element, got shape {self._shape}"
            )
        return float(self._data.reshape(-1)[0])

    def __repr__(self) -> str:
        return f"Tensor(shape={self._shape}, dtype={self._data.dtype})"
