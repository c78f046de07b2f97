"""
Execution configuration for the computation-graph engine.

This module defines:

- `NumericsMode`: the two documented numerical semantics of the engine
- `ExecutionConfig`: a validated, immutable bundle of execution settings
  (worker pool size, partitioning granularity, numerics mode, storage dtype)

Numerics modes
--------------
`NumericsMode.STRICT` (default)
    Every forward value and every backward contribution is checked for
    NaN/Inf; a non-finite result raises `NumericalInstabilityError` at the
    node that produced it. Reductions accumulate in float64.
`NumericsMode.FAST`
    No finite checks; reductions accumulate in the storage dtype. NaN/Inf
    values propagate silently through the graph. Results on well-conditioned
    inputs are the same as under STRICT up to floating-point rounding.

Environment
-----------
`ExecutionConfig.from_env()` reads:

- ``WYRMGRAD_NUM_WORKERS``
- ``WYRMGRAD_MIN_ROWS_PER_TASK``
- ``WYRMGRAD_NUMERICS`` ("strict" or "fast")
- ``WYRMGRAD_DTYPE`` ("float32" or "float64")
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Union

SUPPORTED_DTYPES = ("float32", "float64")


class NumericsMode(Enum):
    """
    Enumeration of the engine's numerical-checking semantics.

    Attributes
    ----------
    STRICT : NumericsMode
        Detect and surface NaN/Inf as errors; extra-precision reductions.
    FAST : NumericsMode
        Skip checks for throughput; non-finite values propagate.
    """

    STRICT = "strict"
    FAST = "fast"

    @classmethod
    def parse(cls, value: Union["NumericsMode", str]) -> "NumericsMode":
        """
        Normalize a mode given as an enum member or a case-insensitive string.

        Raises
        ------
        ValueError
            If the string does not name a mode.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid numerics mode {value!r}. Expected 'strict' or 'fast'."
            ) from None


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Immutable execution settings for an `ExecutionContext`.

    Parameters
    ----------
    num_workers : int
        Size of the fork-join worker pool used for batch-partitionable
        kernels. 1 disables the pool.
    min_rows_per_task : int
        Minimum number of batch rows handed to one worker. Inputs with fewer
        than twice this many rows run inline.
    numerics : NumericsMode | str
        Numerical-checking semantics (see module docstring).
    dtype : str
        Floating-point storage dtype for values and gradients.

    Raises
    ------
    ValueError
        If any field is out of range.
    """

    num_workers: int = 1
    min_rows_per_task: int = 256
    numerics: NumericsMode = NumericsMode.STRICT
    dtype: str = "float32"

    def __post_init__(self) -> None:
        if int(self.num_workers) < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if int(self.min_rows_per_task) < 1:
            raise ValueError(
                f"min_rows_per_task must be >= 1, got {self.min_rows_per_task}"
            )
        if str(self.dtype) not in SUPPORTED_DTYPES:
            raise ValueError(
                f"dtype must be one of {SUPPORTED_DTYPES}, got {self.dtype!r}"
            )
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "num_workers", int(self.num_workers))
        object.__setattr__(self, "min_rows_per_task", int(self.min_rows_per_task))
        object.__setattr__(self, "numerics", NumericsMode.parse(self.numerics))
        object.__setattr__(self, "dtype", str(self.dtype))

    @property
    def strict(self) -> bool:
        """True when numerics checking is enabled."""
        return self.numerics is NumericsMode.STRICT

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "ExecutionConfig":
        """
        Build a configuration from ``WYRMGRAD_*`` environment variables.

        Variables that are not set keep their dataclass defaults.

        Parameters
        ----------
        environ : Optional[Mapping[str, str]]
            Mapping to read from. Defaults to `os.environ`.

        Returns
        -------
        ExecutionConfig
            The validated configuration.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        if "WYRMGRAD_NUM_WORKERS" in env:
            kwargs["num_workers"] = int(env["WYRMGRAD_NUM_WORKERS"])
        if "WYRMGRAD_MIN_ROWS_PER_TASK" in env:
            kwargs["min_rows_per_task"] = int(env["WYRMGRAD_MIN_ROWS_PER_TASK"])
        if "WYRMGRAD_NUMERICS" in env:
            kwargs["numerics"] = env["WYRMGRAD_NUMERICS"]
        if "WYRMGRAD_DTYPE" in env:
            kwargs["dtype"] = env["WYRMGRAD_DTYPE"]

        return cls(**kwargs)  # type: ignore[arg-type]
