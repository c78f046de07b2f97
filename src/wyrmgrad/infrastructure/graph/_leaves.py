"""
Leaf nodes: inputs, index inputs and trainable parameters.

Leaves have no parents and are always clean: their value is set by the
caller (inputs) or by an external optimizer (parameters), never by the
forward evaluator. Replacing a leaf value does not invalidate the nodes
computed from it; callers signal the next pass with `Graph.begin_pass()`.

Gradient-requiring leaves own a `GradientAccumulator` whose contents persist
across backward calls until explicitly zeroed.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ...domain._errors import ShapeMismatchError
from ...domain._parameter import IParameter
from ..ops import OpKind
from ..tensor._sparse_gradient import SparseGradient
from ..tensor._tensor import Tensor
from ._node import Node


class GradientAccumulator:
    """
    Persistent gradient storage with a dense part and a sparse part.

    Parameters
    ----------
    shape : tuple[int, ...]
        Shape of the owning leaf.
    dtype : np.dtype
        Storage dtype.

    Notes
    -----
    - The dense buffer is allocated on first use and reused after `zero()`.
    - Sparse contributions (rows of a lookup table) are kept as pushed
      chunks and only scattered when a dense view is requested.
    """

    def __init__(self, shape: tuple[int, ...], dtype: np.dtype) -> None:
        self._shape = tuple(shape)
        self._dtype = np.dtype(dtype)
        self._dense: Optional[Tensor] = None
        self._dense_live = False
        self._sparse = SparseGradient(row_shape=self._shape[1:])

    @property
    def dense(self) -> Optional[np.ndarray]:
        """Dense part, or None if no dense contribution arrived."""
        if not self._dense_live:
            return None
        return self._dense.to_numpy()

    @property
    def sparse(self) -> SparseGradient:
        return self._sparse

    def is_empty(self) -> bool:
        return not self._dense_live and self._sparse.is_empty()

    def add_dense(self, contribution: np.ndarray) -> None:
        if self._dense is None:
            self._dense = Tensor(self._shape, dtype=self._dtype)
        if not self._dense_live:
            self._dense.fill(0.0)
            self._dense_live = True
        self._dense.add_(contribution)

    def add_sparse(self, contribution: SparseGradient) -> None:
        for indices, rows in contribution.chunks():
            self._sparse.push(indices, rows)

    def total(self) -> np.ndarray:
        """Dense array holding the dense part plus the scattered sparse rows."""
        if self._sparse.is_empty():
            out = np.zeros(self._shape, dtype=self._dtype)
        else:
            out = self._sparse.to_dense(self._shape, dtype=self._dtype)
        if self._dense_live:
            out += self._dense.to_numpy()
        return out

    def clamp(self, min_value: float, max_value: float) -> None:
        if self._dense_live:
            arr = self._dense.to_numpy()
            np.clip(arr, min_value, max_value, out=arr)
        self._sparse.clamp(min_value, max_value)

    def zero(self) -> None:
        self._dense_live = False
        self._sparse.clear()


class _GradientLeaf(Node):
    """Common gradient plumbing of leaves that may require gradients."""

    def __init__(self, graph, value: np.ndarray, requires_grad: bool, name: Optional[str]):
        super().__init__(graph, OpKind.LEAF, (), {}, value.shape, requires_grad, name=name)
        self._value = value
        self._accumulator = (
            GradientAccumulator(value.shape, value.dtype) if requires_grad else None
        )

    @property
    def clean(self) -> bool:
        return True

    @property
    def requires_grad(self) -> bool:
        return self._accumulator is not None

    @property
    def gradient(self) -> Optional[Tensor]:
        """
        Accumulated gradient, dense with sparse rows scattered in.

        None if this leaf does not require gradients. Zeros if nothing has
        been accumulated since the last `zero_gradient`.
        """
        if self._accumulator is None:
            return None
        return Tensor.from_numpy(self._accumulator.total(), copy=False)

    def zero_gradient(self) -> None:
        if self._accumulator is not None:
            self._accumulator.zero()

    def _accumulate_gradient(self, contribution: np.ndarray) -> None:
        self._accumulator.add_dense(contribution)

    def _accumulate_sparse(self, contribution: SparseGradient) -> None:
        self._accumulator.add_sparse(contribution)


class InputNode(_GradientLeaf):
    """
    Leaf holding caller-provided data.

    Does not need gradients unless created with ``requires_grad=True``, in
    which case backward passes accumulate into it like into a parameter.
    """

    def __init__(
        self,
        graph,
        value: Any,
        *,
        requires_grad: bool = False,
        name: Optional[str] = None,
    ) -> None:
        data = Tensor.from_numpy(value, dtype=graph.context.dtype).to_numpy()
        super().__init__(graph, data, requires_grad, name)

    def set_value(self, value: Any) -> None:
        """
        Replace the held data.

        Raises
        ------
        ShapeMismatchError
            If `value` does not have this node's shape.

        Notes
        -----
        Nodes already computed from this input keep their memoized values
        until the graph begins a new pass.
        """
        data = Tensor.from_numpy(value, dtype=self._value.dtype).to_numpy()
        if data.shape != self._shape:
            raise ShapeMismatchError(
                "set_value", (self._shape, data.shape), "input shape is fixed"
            )
        self._value = data


class IndexInputNode(Node):
    """
    Leaf holding a 1-D integer index vector for lookup operations.

    Never needs gradients. Its `value` is an integer NumPy array rather than
    a floating-point `Tensor`.
    """

    def __init__(self, graph, indices: Any, *, name: Optional[str] = None) -> None:
        data = self._coerce(indices)
        super().__init__(graph, OpKind.LEAF, (), {}, data.shape, False, name=name)
        self._value = data

    @staticmethod
    def _coerce(indices: Any) -> np.ndarray:
        raw = np.asarray(indices)
        if raw.ndim != 1 or raw.shape[0] == 0:
            raise ShapeMismatchError(
                "index_input", (tuple(raw.shape),), "indices must be a non-empty 1-D vector"
            )
        if raw.dtype.kind not in "iu":
            if raw.dtype.kind == "f" and np.all(np.mod(raw, 1) == 0):
                raw = raw.astype(np.int64)
            else:
                raise TypeError(f"Indices must be integers, got dtype {raw.dtype}")
        return np.array(raw, dtype=np.int64, copy=True)

    @property
    def clean(self) -> bool:
        return True

    @property
    def value(self) -> np.ndarray:
        return self._value.copy()

    def numpy(self) -> np.ndarray:
        return self._value.copy()

    def set_value(self, indices: Any) -> None:
        """
        Replace the index vector with one of the same length.

        Range checks against the looked-up table happen when the lookup is
        next evaluated.
        """
        data = self._coerce(indices)
        if data.shape != self._shape:
            raise ShapeMismatchError(
                "set_value", (self._shape, data.shape), "index vector length is fixed"
            )
        self._value = data


class SharedParameter:
    """
    Parameter storage that several graphs can reference.

    Each `ParameterNode` created from the same `SharedParameter` reads and
    writes the same array, while keeping its own gradient accumulator. This
    lets one model per training thread share weights lock-free ("hogwild").

    Parameters
    ----------
    value : array-like
        Initial value; copied.
    dtype : optional
        Storage dtype (float32 by default for non-float input).
    name : Optional[str]
        Default name for parameter nodes created from this storage.
    """

    def __init__(self, value: Any, *, dtype: Any = None, name: Optional[str] = None):
        self._data = Tensor.from_numpy(value, dtype=dtype).to_numpy()
        self.name = name

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._data.shape)

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    def assign(self, value: Any) -> None:
        """
        Overwrite the shared value in place.

        Raises
        ------
        ShapeMismatchError
            If `value` does not have the parameter's shape.
        """
        src = value.to_numpy() if isinstance(value, Tensor) else np.asarray(value)
        if tuple(src.shape) != self.shape:
            raise ShapeMismatchError(
                "assign", (self.shape, tuple(src.shape)), "parameter shape is fixed"
            )
        np.copyto(self._data, src, casting="unsafe")

    def __repr__(self) -> str:
        return f"SharedParameter(name={self.name!r}, shape={self.shape}, dtype={self.dtype})"


class ParameterNode(_GradientLeaf, IParameter):
    """
    Trainable leaf.

    The value lives in a `SharedParameter` and is mutated only through
    `assign` / `import_value` (i.e. by an optimizer or a checkpoint loader).
    Gradients accumulate into a dense part and a sparse part until
    `zero_gradient` is called.
    """

    def __init__(
        self,
        graph,
        storage: SharedParameter,
        *,
        name: str,
        requires_grad: bool = True,
    ) -> None:
        super().__init__(graph, storage.data, requires_grad, name)
        self._storage = storage

    @property
    def name(self) -> str:
        return self._name

    @property
    def storage(self) -> SharedParameter:
        return self._storage

    @property
    def dense_gradient(self) -> Optional[np.ndarray]:
        """Dense part of the accumulated gradient, or None."""
        if self._accumulator is None:
            return None
        return self._accumulator.dense

    @property
    def sparse_gradient(self) -> Optional[SparseGradient]:
        """Sparse (row-indexed) part of the accumulated gradient."""
        if self._accumulator is None:
            return None
        return self._accumulator.sparse

    def clamp_gradient(self, min_value: float, max_value: float) -> None:
        """Clip both gradient parts elementwise to ``[min_value, max_value]``."""
        if min_value > max_value:
            raise ValueError(f"min_value {min_value} exceeds max_value {max_value}")
        if self._accumulator is not None:
            self._accumulator.clamp(min_value, max_value)

    def assign(self, value: Any) -> None:
        """
        Overwrite the value (external optimizer step).

        Nodes computed from this parameter keep their memoized values until
        the graph begins a new pass.
        """
        self._storage.assign(value)

    def export_value(self) -> np.ndarray:
        """Return an exact copy of the current value."""
        return self._value.copy()

    def check_import(self, value: Any) -> np.ndarray:
        """
        Validate `value` for `import_value` without modifying the parameter.

        Returns
        -------
        np.ndarray
            `value` as an array, ready to import.

        Raises
        ------
        ShapeMismatchError
            If the shapes differ.
        TypeError
            If `value` has a different dtype, since the copy would not be
            exact.
        """
        src = np.asarray(value)
        if src.dtype != self._value.dtype:
            raise TypeError(
                f"Cannot import {src.dtype} data into {self._value.dtype} parameter "
                f"{self._name!r} without precision change."
            )
        if tuple(src.shape) != self._shape:
            raise ShapeMismatchError(
                "import_value", (self._shape, tuple(src.shape)), "parameter shape is fixed"
            )
        return src

    def import_value(self, value: Any) -> None:
        """
        Overwrite the value from an exported array.

        Raises
        ------
        ShapeMismatchError
            If the shapes differ.
        TypeError
            If `value` has a different dtype.
        """
        self._storage.assign(self.check_import(value))

    def __repr__(self) -> str:
        return f"ParameterNode(name={self._name!r}, shape={self._shape})"
