"""
Sparse row lookup (embedding gather).
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ...domain._errors import InvalidIndexError, ShapeMismatchError
from ...domain._operation import Contribution, Operation
from ..execution._context import ExecutionContext
from ..tensor._sparse_gradient import SparseGradient
from ._catalog import OpKind, register_operation


def validate_indices(op: str, indices: np.ndarray, size: int) -> None:
    """
    Check that every entry of `indices` addresses a row of a `size`-row table.

    Raises
    ------
    InvalidIndexError
        Naming the first out-of-range index.
    """
    idx = np.asarray(indices)
    if idx.size == 0:
        return
    bad = np.flatnonzero((idx < 0) | (idx >= size))
    if bad.size:
        raise InvalidIndexError(op, int(idx.reshape(-1)[bad[0]]), size)


@register_operation(OpKind.INDEX)
class IndexOp(Operation):
    """
    Gather rows of a 2-D table.

    Parents are ``(table, indices)`` where `table` has shape (V, d) and
    `indices` is a 1-D integer vector of length n held by an index input.
    The output has shape (n, d).

    Backward produces a `SparseGradient` for the table holding one row per
    looked-up index (repeats included, so they accumulate), and nothing for
    the index vector.
    """

    name = "index"
    arity = 2

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        table, idx = (tuple(s) for s in shapes)
        if len(table) != 2:
            raise ShapeMismatchError("index", (table, idx), "table must be 2-D")
        if len(idx) != 1:
            raise ShapeMismatchError("index", (table, idx), "indices must be 1-D")
        return (idx[0], table[1])

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        table, idx = values
        validate_indices("index", idx, table.shape[0])
        return np.take(table, idx, axis=0)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        table, idx = values
        sparse = SparseGradient(row_shape=table.shape[1:])
        sparse.push(idx, grad)
        return sparse, None

    @classmethod
    def differentiable_wrt(cls, index: int) -> bool:
        return index == 0
