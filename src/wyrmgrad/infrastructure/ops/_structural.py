"""
Structural operations: concatenation and slicing along an axis.

Neither operation does arithmetic. Their backward rules only route gradient
sub-ranges back to the operand that produced them.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ...domain._errors import ShapeMismatchError
from ...domain._operation import Contribution, Operation
from ..execution._context import ExecutionContext
from ._catalog import OpKind, register_operation
from ._reduction import normalize_axis


@register_operation(OpKind.CONCAT)
class ConcatOp(Operation):
    """
    Concatenate one or more operands along `axis` (default 0).

    All operands must have the same rank and agree on every dimension except
    `axis`. Backward splits the incoming gradient at the operand boundaries.
    """

    name = "concat"
    arity = None

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        shapes = [tuple(s) for s in shapes]
        if not shapes:
            raise ShapeMismatchError("concat", (), "at least one operand is required")
        first = shapes[0]
        axis = normalize_axis("concat", first, attrs.get("axis", 0))
        for s in shapes[1:]:
            if len(s) != len(first):
                raise ShapeMismatchError("concat", shapes, "operands differ in rank")
            for i, (d0, d) in enumerate(zip(first, s)):
                if i != axis and d0 != d:
                    raise ShapeMismatchError(
                        "concat", shapes, f"dimension mismatch at axis {i}: {d0} vs {d}"
                    )
        total = sum(s[axis] for s in shapes)
        return first[:axis] + (total,) + first[axis + 1 :]

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        axis = normalize_axis("concat", values[0].shape, attrs.get("axis", 0))
        return np.concatenate(values, axis=axis)

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        axis = normalize_axis("concat", out.shape, attrs.get("axis", 0))
        bounds = np.cumsum([v.shape[axis] for v in values])[:-1]
        return tuple(np.ascontiguousarray(p) for p in np.split(grad, bounds, axis=axis))


@register_operation(OpKind.SLICE)
class SliceOp(Operation):
    """
    Half-open range ``[begin, end)`` of the operand along `axis` (default 0).

    Backward writes the incoming gradient into the sliced range of a zero
    array shaped like the operand.
    """

    name = "slice"
    arity = 1

    @staticmethod
    def _bounds(shape, attrs) -> tuple[int, int, int]:
        shape = tuple(shape)
        axis = normalize_axis("slice", shape, attrs.get("axis", 0))
        begin = int(attrs["begin"])
        end = int(attrs["end"])
        if not 0 <= begin < end <= shape[axis]:
            raise ShapeMismatchError(
                "slice",
                (shape,),
                f"range [{begin}, {end}) is invalid for axis {axis} of size {shape[axis]}",
            )
        return axis, begin, end

    @staticmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        (s,) = shapes
        s = tuple(s)
        axis, begin, end = SliceOp._bounds(s, attrs)
        return s[:axis] + (end - begin,) + s[axis + 1 :]

    @staticmethod
    def forward(
        ctx: ExecutionContext, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        (x,) = values
        axis, begin, end = SliceOp._bounds(x.shape, attrs)
        index = [slice(None)] * x.ndim
        index[axis] = slice(begin, end)
        return x[tuple(index)].copy()

    @staticmethod
    def backward(
        ctx: ExecutionContext,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        (x,) = values
        axis, begin, end = SliceOp._bounds(x.shape, attrs)
        dx = np.zeros_like(x)
        index = [slice(None)] * x.ndim
        index[axis] = slice(begin, end)
        dx[tuple(index)] = grad
        return (dx,)
