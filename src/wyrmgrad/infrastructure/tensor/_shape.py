"""
Shape utilities for broadcast-aware operations.

`broadcast_shape` applies NumPy broadcasting rules at graph-construction
time, and `sum_to_shape` undoes broadcasting in backward rules by summing a
gradient over the axes along which an operand was expanded.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ...domain._errors import ShapeMismatchError


def broadcast_shape(op: str, shapes: Sequence[tuple[int, ...]]) -> tuple[int, ...]:
    """
    Compute the broadcast result shape of `shapes`.

    Parameters
    ----------
    op : str
        Operation name used in the error message.
    shapes : Sequence[tuple[int, ...]]
        Operand shapes.

    Returns
    -------
    tuple[int, ...]
        The broadcast shape.

    Raises
    ------
    ShapeMismatchError
        If the shapes are not broadcast-compatible. The message names the
        first offending axis (counted from the right).
    """
    rank = max(len(s) for s in shapes)
    padded = [(1,) * (rank - len(s)) + tuple(s) for s in shapes]
    out = []
    for axis in range(rank):
        dims = {p[axis] for p in padded if p[axis] != 1}
        if len(dims) > 1:
            raise ShapeMismatchError(
                op,
                shapes,
                f"dimension mismatch at axis {axis - rank}: {sorted(dims)}",
            )
        out.append(dims.pop() if dims else 1)
    return tuple(out)


def _sum_to_shape_reduce_axes(
    src_shape: tuple[int, ...], target_shape: tuple[int, ...]
) -> tuple[tuple[int, ...], int]:
    """
    Compute the reduction axes that collapse `src_shape` onto `target_shape`.

    Given a source shape (the broadcast result) and a target shape (an
    operand's original shape), this helper:

    1) left-pads the target with ones to the source rank,
    2) validates that the target broadcasts to the source,
    3) lists the axes whose padded target dimension is 1 while the source
       dimension is not.

    Returns
    -------
    reduce_axes : tuple[int, ...]
        Axes to sum over with ``keepdims=True``.
    pad : int
        Number of leading dimensions to drop after the reduction.

    Raises
    ------
    ShapeMismatchError
        If the target rank exceeds the source rank or a dimension is not
        broadcast-compatible.
    """
    src = tuple(int(d) for d in src_shape)
    tgt = tuple(int(d) for d in target_shape)

    if len(tgt) > len(src):
        raise ShapeMismatchError(
            "sum_to_shape", (src, tgt), "target rank exceeds source rank"
        )

    pad = len(src) - len(tgt)
    padded_tgt = (1,) * pad + tgt

    for i, (sd, td) in enumerate(zip(src, padded_tgt)):
        if td not in (1, sd):
            raise ShapeMismatchError(
                "sum_to_shape",
                (src, tgt),
                f"dim mismatch at axis {i}: src={sd}, target={td}",
            )

    reduce_axes = tuple(
        i for i, (sd, td) in enumerate(zip(src, padded_tgt)) if td == 1 and sd != 1
    )
    return reduce_axes, pad


def sum_to_shape(grad: np.ndarray, target_shape: tuple[int, ...]) -> np.ndarray:
    """
    Reduce a broadcast gradient back to an operand's shape.

    Parameters
    ----------
    grad : np.ndarray
        Gradient with the broadcast (result) shape.
    target_shape : tuple[int, ...]
        Shape of the operand the gradient belongs to.

    Returns
    -------
    np.ndarray
        Gradient with exactly `target_shape`. When no reduction is needed the
        input array is returned unchanged.
    """
    if tuple(grad.shape) == tuple(target_shape):
        return grad

    reduce_axes, pad = _sum_to_shape_reduce_axes(grad.shape, target_shape)
    x = grad
    if reduce_axes:
        x = np.sum(x, axis=reduce_axes, keepdims=True)
    if pad:
        x = x.reshape(x.shape[pad:])
    return x.reshape(target_shape)
