"""
Execution context: worker pool and numerics policy.

An `ExecutionContext` is the explicitly constructed, passed-in replacement
for process-wide scheduler state. It owns:

- a fixed-size fork-join worker pool used to split batch-partitionable
  kernels along their leading (batch) axis, and
- the numerics policy, whose two semantics (strict and fast) are registered
  as control paths dispatched on the context's `numerics` state.

Parallel model
--------------
`map_rows` cuts axis 0 into contiguous row ranges, one task per range. Each
task writes a disjoint slice of a pre-allocated output buffer, so workers
share no mutable state; `map_rows` returns only after every task finished
(join barrier). Kernels with cross-row dependence (matrix multiply,
reductions) do not go through this layer and rely on NumPy/BLAS.

Worker threads are used rather than processes: NumPy releases the GIL inside
its kernels, and threads can write into the caller's output buffer directly.
"""

from __future__ import annotations

import logging
import os
import warnings
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

import numpy as np

from ...domain._config import ExecutionConfig, NumericsMode
from ...domain._errors import NumericalInstabilityError
from ...domain.utils._control_path import create_path_builder

logger = logging.getLogger(__name__)

numerics_control_path = create_path_builder("numerics")
"""Control-path manager dispatching on `ExecutionContext.numerics`."""

RowKernel = Callable[..., None]


class ExecutionContext:
    """
    Worker pool plus numerics policy shared by the nodes of one graph.

    Parameters
    ----------
    config : Optional[ExecutionConfig]
        Execution settings. Defaults to `ExecutionConfig()` (one worker,
        strict numerics, float32).

    Notes
    -----
    - The pool is created lazily on the first parallel dispatch and released
      by `close()`; the context is also a context manager.
    - A context may be shared by several graphs driven from the same thread.
      Graphs driven from different threads should use separate contexts.
    """

    def __init__(self, config: Optional[ExecutionConfig] = None) -> None:
        self._config = config if config is not None else ExecutionConfig()
        self._pool: Optional[ThreadPoolExecutor] = None

        cpus = os.cpu_count() or 1
        if self._config.num_workers > cpus:
            warnings.warn(
                f"num_workers={self._config.num_workers} exceeds the "
                f"{cpus} available CPUs.",
                RuntimeWarning,
                stacklevel=2,
            )
        if self._config.numerics is NumericsMode.FAST:
            logger.info(
                "Fast numerics enabled: NaN/Inf checks are skipped and "
                "non-finite values propagate silently."
            )

    # ------------------------------------------------------------------
    # Configuration views
    # ------------------------------------------------------------------
    @property
    def config(self) -> ExecutionConfig:
        return self._config

    @property
    def numerics(self) -> NumericsMode:
        """Control-path state: the active numerics mode."""
        return self._config.numerics

    @property
    def num_workers(self) -> int:
        return self._config.num_workers

    @property
    def dtype(self) -> np.dtype:
        """Storage dtype for values and gradients."""
        return np.dtype(self._config.dtype)

    # ------------------------------------------------------------------
    # Fork-join row partitioning
    # ------------------------------------------------------------------
    def partition(self, rows: int) -> list[tuple[int, int]]:
        """
        Split ``range(rows)`` into contiguous ``[lo, hi)`` ranges.

        The number of ranges is at most `num_workers` and each range holds at
        least `min_rows_per_task` rows. Range sizes differ by at most one.

        Parameters
        ----------
        rows : int
            Size of the batch axis.

        Returns
        -------
        list[tuple[int, int]]
            Non-empty, ordered, disjoint ranges covering every row.
        """
        rows = int(rows)
        if rows <= 0:
            return []
        parts = min(self._config.num_workers, rows // self._config.min_rows_per_task)
        parts = max(parts, 1)
        base, extra = divmod(rows, parts)
        ranges = []
        lo = 0
        for i in range(parts):
            hi = lo + base + (1 if i < extra else 0)
            ranges.append((lo, hi))
            lo = hi
        return ranges

    def map_rows(self, kernel: RowKernel, out: np.ndarray, *inputs: np.ndarray) -> np.ndarray:
        """
        Run a row-independent kernel over the batch axis.

        The kernel is called as ``kernel(out_slice, *input_slices)`` and must
        write its result into `out_slice`. Inputs whose leading dimension
        matches `out` are sliced alongside it; other inputs (e.g. scalars)
        are passed through whole.

        Parameters
        ----------
        kernel : Callable
            Row kernel writing into its first argument.
        out : np.ndarray
            Pre-allocated output buffer.
        *inputs : np.ndarray
            Kernel inputs.

        Returns
        -------
        np.ndarray
            `out`, fully written.

        Notes
        -----
        Exceptions raised by a worker are re-raised in the caller after all
        tasks have been joined.
        """
        if out.ndim == 0:
            kernel(out, *inputs)
            return out

        ranges = self.partition(out.shape[0])
        if len(ranges) <= 1:
            kernel(out, *inputs)
            return out

        rows = out.shape[0]

        def _slice(x: np.ndarray, lo: int, hi: int) -> np.ndarray:
            if x.ndim > 0 and x.shape[0] == rows:
                return x[lo:hi]
            return x

        pool = self._get_pool()
        futures = [
            pool.submit(kernel, out[lo:hi], *(_slice(x, lo, hi) for x in inputs))
            for lo, hi in ranges
        ]
        wait(futures)
        for f in futures:
            f.result()
        return out

    def _get_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._config.num_workers,
                thread_name_prefix="wyrmgrad",
            )
            logger.debug("Started worker pool with %d threads", self._config.num_workers)
        return self._pool

    def close(self) -> None:
        """Shut down the worker pool, waiting for running tasks."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
            logger.debug("Worker pool shut down")

    def __enter__(self) -> "ExecutionContext":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Numerics policy (control paths registered below)
    # ------------------------------------------------------------------
    def check_finite(
        self, op: str, arr: np.ndarray, phase: str = "forward", node: Any = None
    ) -> None:
        """
        Verify that `arr` holds only finite values.

        Under strict numerics a NaN/Inf raises `NumericalInstabilityError`
        naming `op`, `phase` and `node`. Under fast numerics this is a no-op.
        """
        ...

    def accumulate_dtype(self, dtype: Any) -> np.dtype:
        """
        Return the dtype reductions should accumulate in for `dtype` storage.

        float64 under strict numerics, the storage dtype under fast numerics.
        """
        ...

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(num_workers={self._config.num_workers}, "
            f"numerics={self._config.numerics.value}, dtype={self._config.dtype})"
        )


@numerics_control_path(
    ExecutionContext, ExecutionContext.check_finite, NumericsMode.STRICT
)
def _check_finite_strict(
    self: ExecutionContext,
    op: str,
    arr: np.ndarray,
    phase: str = "forward",
    node: Any = None,
) -> None:
    if not np.all(np.isfinite(arr)):
        raise NumericalInstabilityError(op, phase, node)


@numerics_control_path(
    ExecutionContext, ExecutionContext.check_finite, NumericsMode.FAST
)
def _check_finite_fast(
    self: ExecutionContext,
    op: str,
    arr: np.ndarray,
    phase: str = "forward",
    node: Any = None,
) -> None:
    return None


@numerics_control_path(
    ExecutionContext, ExecutionContext.accumulate_dtype, NumericsMode.STRICT
)
def _accumulate_dtype_strict(self: ExecutionContext, dtype: Any) -> np.dtype:
    return np.dtype(np.float64)


@numerics_control_path(
    ExecutionContext, ExecutionContext.accumulate_dtype, NumericsMode.FAST
)
def _accumulate_dtype_fast(self: ExecutionContext, dtype: Any) -> np.dtype:
    return np.dtype(dtype)
