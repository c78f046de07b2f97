"""
Broadcast-aware elementwise arithmetic: add, sub, mul, div, neg.

Binary operations follow NumPy broadcasting. Their backward rules compute
the full broadcast-shaped contribution and then sum it back onto each
operand's own shape with `sum_to_shape`, so a bias of shape (d,) added to a
(n, d) batch receives the column sums of the incoming gradient.

When both operands already have the output shape, forward kernels are
row-partitioned through the execution context.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ...domain._operation import Contribution, Operation
from ..execution._context import ExecutionContext
from ..tensor._shape import broadcast_shape, sum_to_shape
from ._catalog import OpKind, register_operation


def _binary_forward(
    ctx: ExecutionContext, ufunc: np.ufunc, a: np.ndarray, b: np.ndarray
) -> np.ndarray:
    shape = np.broadcast_shapes(a.shape, b.shape)
    out = np.empty(shape, dtype=np.result_type(a, b))
    if a.shape == shape and b.shape == shape:
        return ctx.map_rows(lambda o, x, y: ufunc(x, y, out=o), out, a, b)
    ufunc(a, b, out=out)
    return out


class _BinaryElementwise(Operation):
    arity = 2


@register_operation(OpKind.ADD)
class AddOp(_BinaryElementwise):
    """
    Elementwise ``a + b``.

    Backward: ``da = g``, ``db = g`` (each summed back to its operand shape).
    """

    name = "add"

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return broadcast_shape("add", shapes)

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        a, b = values
        return _binary_forward(ctx, np.add, a, b)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        a, b = values
        return sum_to_shape(grad, a.shape), sum_to_shape(grad, b.shape)


@register_operation(OpKind.SUB)
class SubOp(_BinaryElementwise):
    """
    Elementwise ``a - b``.

    Backward: ``da = g``, ``db = -g``.
    """

    name = "sub"

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return broadcast_shape("sub", shapes)

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        a, b = values
        return _binary_forward(ctx, np.subtract, a, b)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        a, b = values
        return sum_to_shape(grad, a.shape), sum_to_shape(-grad, b.shape)


@register_operation(OpKind.MUL)
class MulOp(_BinaryElementwise):
    """
    Elementwise ``a * b``.

    Backward: ``da = b * g``, ``db = a * g``.
    """

    name = "mul"

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return broadcast_shape("mul", shapes)

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        a, b = values
        return _binary_forward(ctx, np.multiply, a, b)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        a, b = values
        return sum_to_shape(grad * b, a.shape), sum_to_shape(grad * a, b.shape)


@register_operation(OpKind.DIV)
class DivOp(_BinaryElementwise):
    """
    Elementwise ``a / b``.

    Backward: ``da = g / b``, ``db = -g * a / b^2``.
    """

    name = "div"

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return broadcast_shape("div", shapes)

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        a, b = values
        return _binary_forward(ctx, np.divide, a, b)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        a, b = values
        da = grad / b
        db = -grad * out / b
        return sum_to_shape(da, a.shape), sum_to_shape(db, b.shape)


@register_operation(OpKind.NEG)
class NegOp(Operation):
    """Elementwise ``-x``. Backward: ``dx = -g``."""

    name = "neg"
    arity = 1

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return tuple(shapes[0])

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        (x,) = values
        out = np.empty_like(x)
        return ctx.map_rows(lambda o, v: np.negative(v, out=o), out, x)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (-grad,)
