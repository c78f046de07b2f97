"""
Elementwise unary operations and activation functions.

All operations here are row-independent, so both their forward and backward
kernels are dispatched through `ExecutionContext.map_rows` and may run on the
worker pool.

Where the derivative can be written in terms of the forward output (exp,
tanh, sigmoid, relu), the backward rule evaluates it at the output value
instead of recomputing the forward function.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ...domain._operation import Contribution, Operation
from ..execution._context import ExecutionContext, RowKernel
from ._catalog import OpKind, register_operation


class _UnaryElementwise(Operation):
    arity = 1

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        return tuple(shapes[0])


def _unary(ctx: ExecutionContext, kernel: RowKernel, x: np.ndarray) -> np.ndarray:
    out = np.empty_like(x)
    return ctx.map_rows(kernel, out, x)


def _unary_backward(
    ctx: ExecutionContext, kernel: RowKernel, grad: np.ndarray, *saved: np.ndarray
) -> np.ndarray:
    out = np.empty_like(grad)
    return ctx.map_rows(kernel, out, grad, *saved)


# ---------------------------------------------------------------------------
# Row kernels. Each writes into its first argument.
# ---------------------------------------------------------------------------
def _square_kernel(o, x):
    np.multiply(x, x, out=o)


def _square_grad_kernel(o, g, x):
    np.multiply(g, x, out=o)
    o *= 2.0


def _exp_kernel(o, x):
    np.exp(x, out=o)


def _ln_kernel(o, x):
    np.log(x, out=o)


def _ln_grad_kernel(o, g, x):
    np.divide(g, x, out=o)


def _tanh_kernel(o, x):
    np.tanh(x, out=o)


def _tanh_grad_kernel(o, g, y):
    # g * (1 - y^2)
    np.multiply(y, y, out=o)
    np.subtract(1.0, o, out=o)
    o *= g


def _sigmoid_kernel(o, x):
    # 0.5 * (tanh(x / 2) + 1) does not overflow for large |x|
    np.multiply(x, 0.5, out=o)
    np.tanh(o, out=o)
    o += 1.0
    o *= 0.5


def _sigmoid_grad_kernel(o, g, y):
    # g * y * (1 - y)
    np.subtract(1.0, y, out=o)
    o *= y
    o *= g


def _relu_kernel(o, x):
    np.maximum(x, 0.0, out=o)


def _relu_grad_kernel(o, g, y):
    np.multiply(g, y > 0.0, out=o)


def _mul_kernel(o, g, y):
    np.multiply(g, y, out=o)


@register_operation(OpKind.SQUARE)
class SquareOp(_UnaryElementwise):
    """Elementwise ``x^2``. Backward: ``dx = 2 * x * g``."""

    name = "square"

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        return _unary(ctx, _square_kernel, values[0])

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (_unary_backward(ctx, _square_grad_kernel, grad, values[0]),)


@register_operation(OpKind.EXP)
class ExpOp(_UnaryElementwise):
    """Elementwise ``exp(x)``. Backward: ``dx = g * y``."""

    name = "exp"

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        return _unary(ctx, _exp_kernel, values[0])

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (_unary_backward(ctx, _mul_kernel, grad, out),)


@register_operation(OpKind.LN)
class LnOp(_UnaryElementwise):
    """
    Elementwise natural logarithm. Backward: ``dx = g / x``.

    Non-positive inputs produce NaN/-Inf, which strict numerics reports as a
    `NumericalInstabilityError` at this node.
    """

    name = "ln"

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        return _unary(ctx, _ln_kernel, values[0])

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (_unary_backward(ctx, _ln_grad_kernel, grad, values[0]),)


@register_operation(OpKind.TANH)
class TanhOp(_UnaryElementwise):
    """Elementwise ``tanh(x)``. Backward: ``dx = g * (1 - y^2)``."""

    name = "tanh"

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        return _unary(ctx, _tanh_kernel, values[0])

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (_unary_backward(ctx, _tanh_grad_kernel, grad, out),)


@register_operation(OpKind.SIGMOID)
class SigmoidOp(_UnaryElementwise):
    """Elementwise logistic sigmoid. Backward: ``dx = g * y * (1 - y)``."""

    name = "sigmoid"

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        return _unary(ctx, _sigmoid_kernel, values[0])

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (_unary_backward(ctx, _sigmoid_grad_kernel, grad, out),)


@register_operation(OpKind.RELU)
class ReluOp(_UnaryElementwise):
    """
    Elementwise ``max(x, 0)``.

    Backward: ``dx = g`` where ``y > 0``, else 0 (the subgradient at 0 is 0).
    """

    name = "relu"

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        return _unary(ctx, _relu_kernel, values[0])

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        return (_unary_backward(ctx, _relu_grad_kernel, grad, out),)
