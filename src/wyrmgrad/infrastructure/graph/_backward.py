"""
Backward propagator (reverse-mode accumulation).

`backward(output, seed)` evaluates `output`, orders the gradient-requiring
part of its ancestry so that every node precedes its parents, and walks that
order invoking each operation's backward rule. Contributions from several
consumers of a node are summed (fan-out accumulation).

Gradient lifetimes
------------------
- Operation nodes hold per-call scratch gradients. They are reset at the
  start of every call and left in place afterwards for inspection.
- Leaves (parameters, gradient-requiring inputs) own persistent
  accumulators. Calling `backward` twice without zeroing them adds the
  second pass on top of the first, which is how micro-batch gradient
  accumulation is expressed.
- Sparse contributions (from lookups) are handed to the leaf as-is; they are
  scattered into a dense array only when they reach a non-leaf node.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np

from ...domain._errors import ShapeMismatchError, StaleGraphError
from ..ops._catalog import OpKind
from ..tensor._sparse_gradient import SparseGradient
from ._forward import evaluate

logger = logging.getLogger(__name__)


def topological_order(output) -> list:
    """
    Order the gradient-requiring ancestry of `output`, consumers first.

    Parameters
    ----------
    output : Node
        Root of the walk. Included in the result.

    Returns
    -------
    list[Node]
        Every node reachable from `output` through parents that need
        gradients, each listed before all of its parents.
    """
    post_order = []
    visited = set()
    stack = [(output, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            post_order.append(node)
            continue
        if id(node) in visited:
            continue
        visited.add(id(node))
        stack.append((node, True))
        for parent in node.parents:
            if parent.needs_gradient and id(parent) not in visited:
                stack.append((parent, False))
    post_order.reverse()
    return post_order


def _make_seed(output, seed: Optional[Any], dtype: np.dtype) -> np.ndarray:
    if seed is None:
        if int(np.prod(output.shape, dtype=np.int64)) != 1:
            raise ShapeMismatchError(
                "backward",
                (output.shape,),
                "a seed is required when the output has more than one element",
            )
        return np.ones(output.shape, dtype=dtype)

    g = seed.to_numpy() if hasattr(seed, "to_numpy") else seed
    g = np.array(g, dtype=dtype, copy=True)
    if tuple(g.shape) != output.shape:
        raise ShapeMismatchError(
            "backward", (output.shape, tuple(g.shape)), "seed shape must match the output"
        )
    return g


def backward(output, seed: Optional[Any] = None) -> None:
    """
    Propagate gradients from `output` to every gradient-requiring ancestor.

    Parameters
    ----------
    output : Node
        Node to differentiate.
    seed : array-like, optional
        Gradient of the final objective with respect to `output`. Defaults
        to ones when `output` has exactly one element.

    Raises
    ------
    ShapeMismatchError
        If the seed is missing for a multi-element output or its shape does
        not match the output.
    StaleGraphError
        If a node's value was invalidated before its gradient was propagated
        (a pass boundary was signalled from inside the walk).
    NumericalInstabilityError
        Under strict numerics, if a contribution contains NaN/Inf.

    Notes
    -----
    Backward on a node that does not need gradients is a no-op.
    """
    if not output.needs_gradient:
        return

    evaluate(output)
    ctx = output.graph.context
    dtype = ctx.dtype
    g = _make_seed(output, seed, dtype)

    if output.op is OpKind.LEAF:
        output._accumulate_gradient(g)
        return

    order = topological_order(output)
    logger.debug("Backward walk from %r over %d nodes", output, len(order))

    for node in order:
        if node.op is not OpKind.LEAF:
            node._gradient = None

    grads = {id(output): g}
    for node in order:
        if node.op is OpKind.LEAF:
            continue
        grad = grads.pop(id(node), None)
        node._gradient = grad
        if grad is None:
            continue
        if not node.clean:
            raise StaleGraphError(
                node, "value was invalidated before its gradient was propagated"
            )

        op = node.op.operation
        values = [p._value for p in node.parents]
        with np.errstate(all="ignore"):
            contributions = op.backward(ctx, values, node._value, grad, node.attrs)

        for i, (parent, contrib) in enumerate(zip(node.parents, contributions)):
            if contrib is None or not parent.needs_gradient:
                continue
            if not op.differentiable_wrt(i):
                continue

            if isinstance(contrib, SparseGradient):
                for _, rows in contrib.chunks():
                    ctx.check_finite(op.name, rows, "backward", node)
                if parent.op is OpKind.LEAF:
                    parent._accumulate_sparse(contrib)
                    continue
                contrib = contrib.to_dense(parent.shape, dtype=dtype)
            else:
                contrib = np.asarray(contrib, dtype=dtype)
                if tuple(contrib.shape) != parent.shape:
                    raise ShapeMismatchError(
                        op.name,
                        (parent.shape, tuple(contrib.shape)),
                        "backward contribution does not match the operand shape",
                    )
                ctx.check_finite(op.name, contrib, "backward", node)

            if parent.op is OpKind.LEAF:
                parent._accumulate_gradient(contrib)
            else:
                previous = grads.get(id(parent))
                grads[id(parent)] = contrib if previous is None else previous + contrib
