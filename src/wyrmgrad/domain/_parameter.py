"""
Trainable parameter interface definitions.

This module defines the domain-level contract between trainable parameter
nodes and external collaborators such as optimizers and checkpointing
utilities. The engine accumulates gradients into parameters; only those
external collaborators mutate parameter values.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from ._tensor import ITensor


@runtime_checkable
class IParameter(Protocol):
    """
    Domain-level interface for trainable parameters.

    An `IParameter` exposes its value, its accumulated gradient in dense and
    sparse form, and the value import/export boundary used for persistence.

    Notes
    -----
    - Gradients persist across forward/backward cycles until `zero_gradient`
      is called, so repeated backward calls accumulate.
    - `assign` and `import_value` are the only ways the value changes; after
      either, the owning graph must be told to begin a new pass.
    """

    @property
    def name(self) -> str:
        """Stable name used as the persistence key."""
        ...

    @property
    def requires_grad(self) -> bool:
        """
        Indicate whether this parameter accumulates gradients.

        Returns
        -------
        bool
            False for frozen parameters.
        """
        ...

    @property
    def gradient(self) -> Optional[ITensor]:
        """
        Return the total accumulated gradient in dense form.

        Returns
        -------
        Optional[ITensor]
            Dense gradient with any sparse rows scattered in, or None if
            nothing has been accumulated.
        """
        ...

    @property
    def sparse_gradient(self) -> Any:
        """Sparse (row-indexed) part of the accumulated gradient."""
        ...

    def zero_gradient(self) -> None:
        """
        Clear the dense and sparse parts of the accumulated gradient.
        """
        ...

    def assign(self, value: Any) -> None:
        """Overwrite the parameter value (external optimizer step)."""
        ...

    def export_value(self) -> Any:
        """Return an exact copy of the parameter value."""
        ...

    def import_value(self, value: Any) -> None:
        """Overwrite the parameter value exactly from an exported copy."""
        ...
