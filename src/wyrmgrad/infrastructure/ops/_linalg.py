"""
Linear-algebra operations: matrix multiply, row-wise dot product, transpose.

`MatmulOp` is a cross-row operation and is delegated to NumPy/BLAS as a
whole. `VectorDotOp` reduces each row independently and is row-partitioned
through the execution context.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ...domain._errors import ShapeMismatchError
from ...domain._operation import Contribution, Operation
from ..execution._context import ExecutionContext
from ._catalog import OpKind, register_operation


@register_operation(OpKind.MATMUL)
class MatmulOp(Operation):
    """
    2-D matrix product ``C = A @ B``.

    Shapes
    ------
    A: (n, k), B: (k, m) -> C: (n, m)

    Backward
    --------
    ``dA = G @ B^T`` and ``dB = A^T @ G``.
    """

    name = "matmul"
    arity = 2

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        a, b = (tuple(s) for s in shapes)
        if len(a) != 2 or len(b) != 2:
            raise ShapeMismatchError("matmul", (a, b), "both operands must be 2-D")
        if a[1] != b[0]:
            raise ShapeMismatchError(
                "matmul", (a, b), f"inner dimensions {a[1]} and {b[0]} differ"
            )
        return (a[0], b[1])

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        a, b = values
        return np.matmul(a, b)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        a, b = values
        return grad @ b.T, a.T @ grad


def _row_dot_kernel(o, a, b):
    o[:, 0] = np.einsum("ij,ij->i", a, b)


def _row_scale_kernel(o, g, x):
    np.multiply(g, x, out=o)


@register_operation(OpKind.VECTOR_DOT)
class VectorDotOp(Operation):
    """
    Row-wise dot product of two equally shaped 2-D operands.

    ``out[i, 0] = sum_j a[i, j] * b[i, j]``, so (n, d) x (n, d) -> (n, 1).
    This is the scoring primitive of embedding models (user row dotted with
    item row).

    Backward: ``da = g * b`` and ``db = g * a`` with `g` broadcast along
    each row.
    """

    name = "vector_dot"
    arity = 2

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        a, b = (tuple(s) for s in shapes)
        if len(a) != 2 or a != b:
            raise ShapeMismatchError(
                "vector_dot", (a, b), "operands must be 2-D and equally shaped"
            )
        return (a[0], 1)

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        a, b = values
        out = np.empty((a.shape[0], 1), dtype=np.result_type(a, b))
        return ctx.map_rows(_row_dot_kernel, out, a, b)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        a, b = values
        da = ctx.map_rows(_row_scale_kernel, np.empty_like(a), grad, b)
        db = ctx.map_rows(_row_scale_kernel, np.empty_like(b), grad, a)
        return da, db


@register_operation(OpKind.TRANSPOSE)
class TransposeOp(Operation):
    """2-D transpose. Backward: ``dx = g^T``."""

    name = "transpose"
    arity = 1

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        (s,) = shapes
        if len(s) != 2:
            raise ShapeMismatchError("transpose", (tuple(s),), "operand must be 2-D")
        return (s[1], s[0])

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        return values[0].T.copy()

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (np.ascontiguousarray(grad.T),)
