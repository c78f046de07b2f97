"""
Computation-graph node.

A `Node` is one vertex of a define-by-run graph. Composing nodes with
Python operators or the methods below allocates a new node that references
its parents and an `OpKind` tag; only the shape rule runs at construction.
Values are computed lazily by the forward evaluator on first read and
memoized until the owning graph begins a new pass.

Validity is tracked by generation: a node is clean iff it holds a value
computed while the graph generation had its current number. `Graph.begin_pass`
advances the generation, invalidating every operation node at once.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ...domain._errors import GraphMismatchError
from ...domain._node import INode
from ..ops import OpKind
from ..ops._lookup import validate_indices
from ..tensor._tensor import Tensor
from ._backward import backward as _propagate
from ._forward import evaluate


class Node(INode):
    """
    Vertex of a computation graph.

    Parameters
    ----------
    graph : Graph
        Owning graph.
    op : OpKind
        Operation that produces this node's value.
    parents : Sequence[Node]
        Consumed nodes, in operand order.
    attrs : Mapping[str, Any]
        Static operation attributes (axis, slice bounds...).
    shape : tuple[int, ...]
        Output shape, as computed by the operation's shape rule.
    needs_gradient : bool
        Whether backward passes compute this node's gradient.
    name : Optional[str]
        Label used in error messages.

    Notes
    -----
    Nodes are normally created through `apply` (or the operators and
    methods that call it), never by calling the constructor directly.
    """

    def __init__(
        self,
        graph,
        op: OpKind,
        parents: Sequence["Node"],
        attrs: Mapping[str, Any],
        shape: tuple[int, ...],
        needs_gradient: bool,
        name: Optional[str] = None,
    ) -> None:
        self._graph = graph
        self._op = op
        self._parents = tuple(parents)
        self._attrs = dict(attrs)
        self._shape = tuple(int(d) for d in shape)
        self._needs_gradient = bool(needs_gradient)
        self._name = name

        self._value: Optional[np.ndarray] = None
        self._generation = -1
        self._gradient: Optional[np.ndarray] = None
        self._evaluating = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @staticmethod
    def apply(
        kind: OpKind,
        parents: Sequence["Node"],
        attrs: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
    ) -> "Node":
        """
        Create the node computing `kind` over `parents`.

        No forward kernel runs here. The operation's shape rule is evaluated
        immediately, so incompatible operands fail at construction.

        Raises
        ------
        GraphMismatchError
            If the parents belong to different graphs.
        ShapeMismatchError
            If the operation's shape rule rejects the parent shapes.
        TypeError
            If the number of parents does not match the operation's arity, or
            a parent is not a `Node`.
        """
        attrs = {} if attrs is None else dict(attrs)
        op = kind.operation
        parents = tuple(parents)
        if op.arity is not None and len(parents) != op.arity:
            raise TypeError(
                f"{op.name} expects {op.arity} operand(s), got {len(parents)}"
            )
        if not parents:
            raise TypeError(f"{op.name} expects at least one operand")
        for p in parents:
            if not isinstance(p, Node):
                raise TypeError(f"{op.name} operands must be nodes, got {type(p).__name__}")

        graph = parents[0].graph
        for p in parents[1:]:
            if p.graph is not graph:
                raise GraphMismatchError(op.name)

        shape = op.infer_shape([p.shape for p in parents], attrs)
        needs_gradient = any(
            p.needs_gradient and op.differentiable_wrt(i) for i, p in enumerate(parents)
        )
        return Node(graph, kind, parents, attrs, shape, needs_gradient, name=name)

    def _lift(self, other: Any) -> "Node":
        if isinstance(other, Node):
            return other
        return self._graph.constant(other)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------
    @property
    def graph(self):
        return self._graph

    @property
    def op(self) -> OpKind:
        return self._op

    @property
    def parents(self) -> tuple["Node", ...]:
        return self._parents

    @property
    def attrs(self) -> Mapping[str, Any]:
        return self._attrs

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        return int(np.prod(self._shape, dtype=np.int64))

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def needs_gradient(self) -> bool:
        return self._needs_gradient

    @property
    def clean(self) -> bool:
        return self._value is not None and self._generation == self._graph.generation

    # ------------------------------------------------------------------
    # Values and gradients
    # ------------------------------------------------------------------
    @property
    def value(self) -> Tensor:
        """
        Current value, evaluated on demand.

        The returned tensor wraps the memoized array; treat it as read-only.
        """
        return Tensor.from_numpy(evaluate(self), copy=False)

    def numpy(self) -> np.ndarray:
        """Return a copy of the current value as a NumPy array."""
        return np.array(evaluate(self), copy=True)

    @property
    def gradient(self) -> Optional[Tensor]:
        """
        Gradient computed for this node by the most recent backward call.

        None if the node does not need gradients or was not reached.
        """
        if self._gradient is None:
            return None
        return Tensor.from_numpy(self._gradient, copy=False)

    def backward(self, seed: Optional[Any] = None) -> None:
        """
        Propagate gradients from this node to its ancestors.

        See `wyrmgrad.infrastructure.graph._backward.backward`.
        """
        _propagate(self, seed)

    def zero_gradient(self) -> None:
        self._gradient = None

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------
    def __add__(self, other: Any) -> "Node":
        return Node.apply(OpKind.ADD, (self, self._lift(other)))

    def __radd__(self, other: Any) -> "Node":
        return Node.apply(OpKind.ADD, (self._lift(other), self))

    def __sub__(self, other: Any) -> "Node":
        return Node.apply(OpKind.SUB, (self, self._lift(other)))

    def __rsub__(self, other: Any) -> "Node":
        return Node.apply(OpKind.SUB, (self._lift(other), self))

    def __mul__(self, other: Any) -> "Node":
        return Node.apply(OpKind.MUL, (self, self._lift(other)))

    def __rmul__(self, other: Any) -> "Node":
        return Node.apply(OpKind.MUL, (self._lift(other), self))

    def __truediv__(self, other: Any) -> "Node":
        return Node.apply(OpKind.DIV, (self, self._lift(other)))

    def __rtruediv__(self, other: Any) -> "Node":
        return Node.apply(OpKind.DIV, (self._lift(other), self))

    def __neg__(self) -> "Node":
        return Node.apply(OpKind.NEG, (self,))

    def __matmul__(self, other: "Node") -> "Node":
        return Node.apply(OpKind.MATMUL, (self, other))

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------
    def square(self) -> "Node":
        return Node.apply(OpKind.SQUARE, (self,))

    def exp(self) -> "Node":
        return Node.apply(OpKind.EXP, (self,))

    def ln(self) -> "Node":
        return Node.apply(OpKind.LN, (self,))

    def tanh(self) -> "Node":
        return Node.apply(OpKind.TANH, (self,))

    def sigmoid(self) -> "Node":
        return Node.apply(OpKind.SIGMOID, (self,))

    def relu(self) -> "Node":
        return Node.apply(OpKind.RELU, (self,))

    def softmax(self) -> "Node":
        """Softmax along the last axis."""
        return Node.apply(OpKind.SOFTMAX, (self,))

    def log_softmax(self) -> "Node":
        """Log-softmax along the last axis."""
        return Node.apply(OpKind.LOG_SOFTMAX, (self,))

    def sum(self, axis: Optional[int] = None, keepdims: bool = False) -> "Node":
        """
        Sum of all elements (shape ``()``), or along `axis`.
        """
        return Node.apply(OpKind.SUM, (self,), {"axis": axis, "keepdims": keepdims})

    def transpose(self) -> "Node":
        return Node.apply(OpKind.TRANSPOSE, (self,))

    @property
    def T(self) -> "Node":
        return self.transpose()

    def vector_dot(self, other: "Node") -> "Node":
        """Row-wise dot product: (n, d) x (n, d) -> (n, 1)."""
        return Node.apply(OpKind.VECTOR_DOT, (self, other))

    def slice(self, begin: int, end: int, axis: int = 0) -> "Node":
        """Half-open range ``[begin, end)`` along `axis`."""
        return Node.apply(
            OpKind.SLICE, (self,), {"begin": int(begin), "end": int(end), "axis": axis}
        )

    def index(self, indices: Any) -> "Node":
        """
        Gather rows of this 2-D table node.

        Parameters
        ----------
        indices : IndexInputNode or array-like of int
            Row indices. Array-likes are wrapped in a new index input of
            this node's graph.

        Raises
        ------
        InvalidIndexError
            If an index is outside ``[0, rows)``.
        """
        if not isinstance(indices, Node):
            indices = self._graph.index_input(indices)
        elif indices.op is not OpKind.LEAF or indices._value.dtype.kind not in "iu":
            raise TypeError(f"index expects an index input, got {indices!r}")
        node = Node.apply(OpKind.INDEX, (self, indices))
        validate_indices("index", indices._value, self._shape[0])
        return node

    def __repr__(self) -> str:
        label = f", name={self._name!r}" if self._name else ""
        return f"Node(op={self._op.value}, shape={self._shape}{label})"
