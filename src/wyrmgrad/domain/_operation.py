"""
Operation interface definitions.

This module defines the abstract base class for entries of the operation
catalog. A concrete `Operation` implements, as static methods:

- a shape rule, evaluated at graph-construction time from parent shapes only
- a forward rule, mapping parent values to the node's value
- a backward rule (vector-Jacobian product), mapping the node's incoming
  gradient to one contribution per parent

Operations carry no per-node state. Everything a rule needs is passed in:
the execution context (worker pool, numerics mode), the parents' values, the
node's own value, and the node's static attributes (axis, slice bounds...).
The same operation class therefore serves every node tagged with it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np

Contribution = Union[np.ndarray, Any]
"""A dense gradient contribution (ndarray) or a `SparseGradient`."""


class Operation(ABC):
    """
    Abstract base class for differentiable graph operations.

    Class attributes
    ----------------
    name : str
        Short operation name used in error messages and logs.
    arity : Optional[int]
        Required number of parents, or None for variadic operations.

    Notes
    -----
    - Methods are declared as `@staticmethod` so an operation holds no state
      and can be shared by every node that uses it.
    - `forward` must not mutate its inputs.
    - `backward` receives the node's forward output so activation rules can
      evaluate their derivative at the output instead of recomputing it.
    """

    name: str = "op"
    arity: Optional[int] = None

    @staticmethod
    @abstractmethod
    def infer_shape(
        shapes: Sequence[tuple[int, ...]], attrs: Mapping[str, Any]
    ) -> tuple[int, ...]:
        """
        Compute the output shape from the parents' shapes.

        Parameters
        ----------
        shapes : Sequence[tuple[int, ...]]
            Parent shapes, in parent order.
        attrs : Mapping[str, Any]
            Static node attributes.

        Returns
        -------
        tuple[int, ...]
            Output shape.

        Raises
        ------
        ShapeMismatchError
            If the parent shapes are incompatible with this operation.
        """
        ...

    @staticmethod
    @abstractmethod
    def forward(
        ctx: Any, values: Sequence[np.ndarray], attrs: Mapping[str, Any]
    ) -> np.ndarray:
        """
        Compute the node's value from its parents' values.

        Parameters
        ----------
        ctx : ExecutionContext
            Execution context (worker pool and numerics policy).
        values : Sequence[np.ndarray]
            Parent values, in parent order.
        attrs : Mapping[str, Any]
            Static node attributes.

        Returns
        -------
        np.ndarray
            The node's value, shaped as `infer_shape` promised.
        """
        ...

    @staticmethod
    @abstractmethod
    def backward(
        ctx: Any,
        values: Sequence[np.ndarray],
        out: np.ndarray,
        grad: np.ndarray,
        attrs: Mapping[str, Any],
    ) -> tuple[Optional[Contribution], ...]:
        """
        Compute each parent's gradient contribution.

        Parameters
        ----------
        ctx : ExecutionContext
            Execution context.
        values : Sequence[np.ndarray]
            Parent values used in the forward pass.
        out : np.ndarray
            The node's forward value.
        grad : np.ndarray
            Gradient of the output with respect to this node.
        attrs : Mapping[str, Any]
            Static node attributes.

        Returns
        -------
        tuple[Optional[Contribution], ...]
            One entry per parent. None marks a parent that receives no
            gradient (e.g. index inputs).
        """
        ...

    @classmethod
    def differentiable_wrt(cls, index: int) -> bool:
        """
        Return whether gradients flow to the parent at position `index`.
        """
        return True
