"""
Functional construction API.

Module-level equivalents of the `Node` operators and methods. Each function
builds and returns a new node; no value is computed until it is read.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from ..ops import OpKind
from ._node import Node


def _pair(a: Any, b: Any) -> tuple[Node, Node]:
    if isinstance(a, Node):
        return a, a._lift(b)
    if isinstance(b, Node):
        return b._lift(a), b
    raise TypeError("At least one operand must be a Node.")


def add(a: Any, b: Any) -> Node:
    return Node.apply(OpKind.ADD, _pair(a, b))


def sub(a: Any, b: Any) -> Node:
    return Node.apply(OpKind.SUB, _pair(a, b))


def mul(a: Any, b: Any) -> Node:
    return Node.apply(OpKind.MUL, _pair(a, b))


def div(a: Any, b: Any) -> Node:
    return Node.apply(OpKind.DIV, _pair(a, b))


def neg(x: Node) -> Node:
    return -x


def matmul(a: Node, b: Node) -> Node:
    """2-D matrix product."""
    return Node.apply(OpKind.MATMUL, (a, b))


def vector_dot(a: Node, b: Node) -> Node:
    """Row-wise dot product: (n, d) x (n, d) -> (n, 1)."""
    return Node.apply(OpKind.VECTOR_DOT, (a, b))


def square(x: Node) -> Node:
    return x.square()


def exp(x: Node) -> Node:
    return x.exp()


def ln(x: Node) -> Node:
    return x.ln()


def tanh(x: Node) -> Node:
    return x.tanh()


def sigmoid(x: Node) -> Node:
    return x.sigmoid()


def relu(x: Node) -> Node:
    return x.relu()


def softmax(x: Node) -> Node:
    return x.softmax()


def log_softmax(x: Node) -> Node:
    return x.log_softmax()


def sum(x: Node, axis: Optional[int] = None, keepdims: bool = False) -> Node:
    return x.sum(axis=axis, keepdims=keepdims)


def transpose(x: Node) -> Node:
    return x.transpose()


def concat(nodes: Sequence[Node], axis: int = 0) -> Node:
    """
    Concatenate nodes along `axis`.

    Parameters
    ----------
    nodes : Sequence[Node]
        One or more nodes of the same graph and rank.
    axis : int, optional
        Concatenation axis. Defaults to 0.
    """
    return Node.apply(OpKind.CONCAT, tuple(nodes), {"axis": axis})


def slice(x: Node, begin: int, end: int, axis: int = 0) -> Node:
    return x.slice(begin, end, axis=axis)


def embedding(table: Node, indices: Any) -> Node:
    """
    Look up rows of `table`.

    Parameters
    ----------
    table : Node
        2-D table, typically a `ParameterNode` of shape (num_rows, dim).
    indices : IndexInputNode or array-like of int
        Rows to gather.

    Returns
    -------
    Node
        Gathered rows, shape (len(indices), dim). Its backward pass delivers
        a sparse gradient to `table`.
    """
    return table.index(indices)
