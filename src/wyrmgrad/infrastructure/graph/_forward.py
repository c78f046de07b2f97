"""
Forward evaluator.

`evaluate(node)` brings `node` and every stale ancestor up to date for the
owning graph's current generation and returns the node's value array.

The walk is an explicit-stack post-order traversal, so graph depth is not
limited by the interpreter recursion limit. Only ancestors of the requested
node are visited; siblings are evaluated in parent declaration order and
each node runs its forward rule at most once per generation.
"""

from __future__ import annotations

import numpy as np

from ...domain._errors import StaleGraphError


def _compute(node, ctx, generation: int) -> None:
    op = node.op.operation
    values = [p._value for p in node.parents]
    with np.errstate(all="ignore"):
        out = op.forward(ctx, values, node.attrs)
    out = np.asarray(out)
    if tuple(out.shape) != node.shape:
        raise StaleGraphError(
            node,
            f"{op.name} produced shape {tuple(out.shape)} but {node.shape} was declared",
        )
    if out.dtype != ctx.dtype:
        out = out.astype(ctx.dtype)
    # memoized values must not alias leaf storage mutated in place
    elif any(np.may_share_memory(out, v) for v in values):
        out = out.copy()
    ctx.check_finite(op.name, out, "forward", node)
    node._value = out
    node._generation = generation


def evaluate(node) -> np.ndarray:
    """
    Return the value of `node`, recomputing stale ancestors first.

    Parameters
    ----------
    node : Node
        Any node of a graph.

    Returns
    -------
    np.ndarray
        The memoized value array. Callers must not mutate it.

    Raises
    ------
    StaleGraphError
        If a node on the walk is already being evaluated (re-entrant or
        concurrent evaluation), or a forward rule returns a value whose shape
        differs from the declared one.
    NumericalInstabilityError
        Under strict numerics, if a forward rule produces NaN/Inf.
    """
    if node.clean:
        return node._value

    graph = node.graph
    ctx = graph.context
    generation = graph.generation

    entered = []
    stack = [(node, False)]
    try:
        while stack:
            current, expanded = stack.pop()
            if expanded:
                _compute(current, ctx, generation)
                current._evaluating = False
                continue
            if current.clean:
                continue
            if current._evaluating:
                raise StaleGraphError(current, "re-entrant evaluation")
            current._evaluating = True
            entered.append(current)
            stack.append((current, True))
            # reversed so the first-declared parent is evaluated first
            for parent in reversed(current.parents):
                if not parent.clean:
                    stack.append((parent, False))
    finally:
        for n in entered:
            n._evaluating = False

    return node._value
