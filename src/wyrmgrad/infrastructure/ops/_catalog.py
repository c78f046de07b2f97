"""
Closed catalog of graph operations.

`OpKind` enumerates every operation a graph node can be tagged with. Each
member except `LEAF` is bound to exactly one `Operation` subclass through
`register_operation`, which the operation modules of this package apply at
import time. Importing `wyrmgrad.infrastructure.ops` therefore populates the
whole catalog.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Type

from ...domain._operation import Operation


class OpKind(Enum):
    """
    Tags identifying which catalog entry produced a node.
    """

    LEAF = "leaf"

    # elementwise, broadcast-aware
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"

    # elementwise unary
    NEG = "neg"
    SQUARE = "square"
    EXP = "exp"
    LN = "ln"
    TANH = "tanh"
    SIGMOID = "sigmoid"
    RELU = "relu"

    # linear algebra
    MATMUL = "matmul"
    VECTOR_DOT = "vector_dot"
    TRANSPOSE = "transpose"

    # reductions / normalizations
    SUM = "sum"
    SOFTMAX = "softmax"
    LOG_SOFTMAX = "log_softmax"

    # structural
    CONCAT = "concat"
    SLICE = "slice"

    # sparse lookup
    INDEX = "index"

    @property
    def operation(self) -> Type[Operation]:
        """
        Return the `Operation` subclass registered for this tag.

        Raises
        ------
        LookupError
            For `LEAF`, or if the operation module was not imported.
        """
        try:
            return _REGISTRY[self]
        except KeyError:
            raise LookupError(f"No operation registered for {self}") from None


_REGISTRY: Dict[OpKind, Type[Operation]] = {}


def register_operation(kind: OpKind) -> Callable[[Type[Operation]], Type[Operation]]:
    """
    Class decorator binding an `Operation` subclass to `kind`.

    Raises
    ------
    ValueError
        If `kind` is `LEAF` or already bound to another class.
    """

    def decorator(cls: Type[Operation]) -> Type[Operation]:
        if kind is OpKind.LEAF:
            raise ValueError("LEAF cannot be bound to an operation.")
        existing = _REGISTRY.get(kind)
        if existing is not None and existing is not cls:
            raise ValueError(f"{kind} is already bound to {existing.__name__}")
        _REGISTRY[kind] = cls
        return cls

    return decorator


def registered_kinds() -> tuple[OpKind, ...]:
    """Return the tags that currently have an operation bound."""
    return tuple(k for k in OpKind if k in _REGISTRY)
