"""
Reductions and normalizations: sum, softmax, log-softmax.

Softmax and log-softmax normalize along the last axis, treating every
leading index as an independent row. They are stabilised by subtracting the
row maximum before exponentiating and are row-partitioned through the
execution context when the operand has at least two dimensions.

Summations accumulate in `ctx.accumulate_dtype(...)`: float64 under strict
numerics, the storage dtype under fast numerics.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ...domain._errors import ShapeMismatchError
from ...domain._operation import Contribution, Operation
from ..execution._context import ExecutionContext, RowKernel
from ._catalog import OpKind, register_operation


def normalize_axis(op: str, shape: tuple[int, ...], axis: Optional[int]) -> Optional[int]:
    """
    Resolve a possibly negative `axis` against `shape`.

    Raises
    ------
    ShapeMismatchError
        If `axis` is outside ``[-ndim, ndim)``.
    """
    if axis is None:
        return None
    ndim = len(shape)
    ax = int(axis)
    if not -ndim <= ax < ndim:
        raise ShapeMismatchError(
            op, (tuple(shape),), f"axis {axis} is out of range for rank {ndim}"
        )
    return ax % ndim


@register_operation(OpKind.SUM)
class SumOp(Operation):
    """
    Sum of all elements, or along one axis.

    Attributes
    ----------
    axis : Optional[int]
        Axis to reduce. None (default) reduces everything to a scalar of
        shape ``()``.
    keepdims : bool
        Keep the reduced axis with size 1.

    Backward: the incoming gradient is broadcast back over the reduced axes.
    """

    name = "sum"
    arity = 1

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        (s,) = shapes
        s = tuple(s)
        axis = normalize_axis("sum", s, attrs.get("axis"))
        keepdims = bool(attrs.get("keepdims", False))
        if axis is None:
            return (1,) * len(s) if keepdims else ()
        if keepdims:
            return s[:axis] + (1,) + s[axis + 1 :]
        return s[:axis] + s[axis + 1 :]

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        (x,) = values
        axis = normalize_axis("sum", x.shape, attrs.get("axis"))
        keepdims = bool(attrs.get("keepdims", False))
        total = np.sum(x, axis=axis, keepdims=keepdims, dtype=ctx.accumulate_dtype(x.dtype))
        return np.asarray(total, dtype=x.dtype)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        (x,) = values
        axis = normalize_axis("sum", x.shape, attrs.get("axis"))
        keepdims = bool(attrs.get("keepdims", False))
        g = grad
        if axis is not None and not keepdims:
            g = np.expand_dims(g, axis)
        return (np.broadcast_to(g, x.shape).astype(x.dtype, copy=True),)


def _check_rank(op: str, shapes) -> tuple[int, ...]:
    (s,) = shapes
    s = tuple(s)
    if len(s) == 0:
        raise ShapeMismatchError(op, (s,), "operand must have at least one axis")
    return s


def _rows(
    ctx: ExecutionContext, kernel: RowKernel, out: np.ndarray, *inputs: np.ndarray
) -> np.ndarray:
    # A 1-D operand is a single row; it must not be split along axis 0.
    if out.ndim < 2:
        kernel(out, *inputs)
        return out
    return ctx.map_rows(kernel, out, *inputs)


@register_operation(OpKind.SOFTMAX)
class SoftmaxOp(Operation):
    """
    Softmax along the last axis.

    ``y = exp(x - max(x)) / sum(exp(x - max(x)))`` per row.

    Backward: ``dx = y * (g - sum(g * y))``, the sum taken per row.
    """

    name = "softmax"
    arity = 1

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return _check_rank("softmax", shapes)

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        (x,) = values
        acc = ctx.accumulate_dtype(x.dtype)

        def kernel(o, v):
            shifted = v - np.max(v, axis=-1, keepdims=True)
            e = np.exp(shifted)
            o[...] = e / np.sum(e, axis=-1, keepdims=True, dtype=acc)

        return _rows(ctx, kernel, np.empty_like(x), x)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        acc = ctx.accumulate_dtype(out.dtype)

        def kernel(o, g, y):
            dot = np.sum(g * y, axis=-1, keepdims=True, dtype=acc)
            o[...] = y * (g - dot)

        return (_rows(ctx, kernel, np.empty_like(grad), grad, out),)


@register_operation(OpKind.LOG_SOFTMAX)
class LogSoftmaxOp(Operation):
    """
    Log-softmax along the last axis.

    ``y = x - max(x) - log(sum(exp(x - max(x))))`` per row, which stays
    finite for inputs whose plain softmax would underflow to 0.

    Backward: ``dx = g - exp(y) * sum(g)``, the sum taken per row.
    """

    name = "log_softmax"
    arity = 1

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return _check_rank("log_softmax", shapes)

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        (x,) = values
        acc = ctx.accumulate_dtype(x.dtype)

        def kernel(o, v):
            shifted = v - np.max(v, axis=-1, keepdims=True)
            lse = np.log(np.sum(np.exp(shifted), axis=-1, keepdims=True, dtype=acc))
            o[...] = shifted - lse

        return _rows(ctx, kernel, np.empty_like(x), x)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        acc = ctx.accumulate_dtype(out.dtype)

        def kernel(o, g, y):
            total = np.sum(g, axis=-1, keepdims=True, dtype=acc)
            o[...] = g - np.exp(y) * total

        return (_rows(ctx, kernel, np.empty_like(grad), grad, out),)
