"""
Row-sparse gradient storage for lookup-table operations.

An embedding lookup touches only a handful of rows of a potentially very
large table. Materializing a dense gradient over the whole table on every
backward pass would dominate the cost, so lookups emit a `SparseGradient`
instead: a list of (row indices, gradient rows) chunks.

Indices are not required to be unique, within a chunk or across chunks.
Every consumer (`coalesce`, `as_dict`, `to_dense`) sums the rows of
repeated indices.
"""

from __future__ import annotations

from typing import Iterator, Optional

import numpy as np

from ...domain._errors import ShapeMismatchError


class SparseGradient:
    """
    Accumulator of gradient rows keyed by integer row index.

    Parameters
    ----------
    row_shape : tuple[int, ...], optional
        Shape of one gradient row. Inferred from the first pushed chunk when
        omitted.

    Notes
    -----
    Chunk buffers are kept after `clear()` and overwritten by later pushes of
    the same size, so steady-state training does not reallocate them.
    """

    def __init__(self, row_shape: Optional[tuple[int, ...]] = None) -> None:
        self._row_shape = None if row_shape is None else tuple(row_shape)
        self._chunks: list[tuple[np.ndarray, np.ndarray]] = []
        self._len = 0

    @property
    def row_shape(self) -> Optional[tuple[int, ...]]:
        return self._row_shape

    def push(self, indices, rows) -> None:
        """
        Append a chunk of gradient rows.

        Parameters
        ----------
        indices : array-like of int, shape (n,)
            Row indices. Repeats are allowed.
        rows : array-like, shape (n, *row_shape)
            Gradient rows, one per index.

        Raises
        ------
        ShapeMismatchError
            If the row count differs from the index count, or the row shape
            differs from previously pushed rows.
        """
        idx = np.asarray(indices, dtype=np.int64).reshape(-1)
        vals = np.asarray(rows)
        if vals.ndim == 0 or vals.shape[0] != idx.shape[0]:
            raise ShapeMismatchError(
                "sparse_gradient",
                (tuple(idx.shape), tuple(vals.shape)),
                "need one gradient row per index",
            )
        row_shape = tuple(vals.shape[1:])
        if self._row_shape is None:
            self._row_shape = row_shape
        elif row_shape != self._row_shape:
            raise ShapeMismatchError(
                "sparse_gradient",
                (self._row_shape, row_shape),
                "row shape differs from earlier rows",
            )

        if self._len < len(self._chunks):
            old_idx, old_vals = self._chunks[self._len]
            if old_idx.shape == idx.shape and old_vals.shape == vals.shape:
                old_idx[...] = idx
                old_vals[...] = vals
            else:
                self._chunks[self._len] = (idx.copy(), np.array(vals, copy=True))
        else:
            self._chunks.append((idx.copy(), np.array(vals, copy=True)))
        self._len += 1

    def chunks(self) -> Iterator[tuple[np.ndarray, np.ndarray]]:
        """Iterate over the live (indices, rows) chunks in push order."""
        return iter(self._chunks[: self._len])

    def is_empty(self) -> bool:
        return self._len == 0

    def __len__(self) -> int:
        """Total number of stored rows, counting repeated indices."""
        return sum(int(i.shape[0]) for i, _ in self.chunks())

    @property
    def indices(self) -> np.ndarray:
        """All stored indices, concatenated in push order."""
        live = [i for i, _ in self.chunks()]
        if not live:
            return np.zeros((0,), dtype=np.int64)
        return np.concatenate(live)

    @property
    def rows(self) -> np.ndarray:
        """All stored rows, concatenated in push order."""
        live = [r for _, r in self.chunks()]
        if not live:
            return np.zeros((0,) + (self._row_shape or ()), dtype=np.float32)
        return np.concatenate(live, axis=0)

    def coalesce(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Sum rows that share an index.

        Returns
        -------
        unique_indices : np.ndarray
            Sorted unique indices.
        summed_rows : np.ndarray
            For each unique index, the sum of every row pushed under it.
        """
        idx = self.indices
        rows = self.rows
        if idx.size == 0:
            return idx, rows
        unique, inverse = np.unique(idx, return_inverse=True)
        summed = np.zeros((unique.shape[0],) + rows.shape[1:], dtype=rows.dtype)
        np.add.at(summed, inverse.reshape(-1), rows)
        return unique, summed

    def as_dict(self) -> dict[int, np.ndarray]:
        """Return the coalesced gradient as ``{index: row}``."""
        unique, summed = self.coalesce()
        return {int(i): summed[k] for k, i in enumerate(unique)}

    def to_dense(self, shape: tuple[int, ...], dtype=None) -> np.ndarray:
        """
        Scatter-add the stored rows into a dense zero array.

        Parameters
        ----------
        shape : tuple[int, ...]
            Dense table shape ``(num_rows, *row_shape)``.
        dtype : optional
            Output dtype; defaults to the dtype of the stored rows.

        Raises
        ------
        ShapeMismatchError
            If `shape` does not end with the stored row shape.
        """
        shape = tuple(shape)
        if self._row_shape is not None and tuple(shape[1:]) != self._row_shape:
            raise ShapeMismatchError(
                "sparse_gradient",
                (shape, self._row_shape),
                "dense shape must end with the row shape",
            )
        rows = self.rows
        out = np.zeros(shape, dtype=dtype if dtype is not None else rows.dtype)
        for idx, vals in self.chunks():
            np.add.at(out, idx, vals)
        return out

    def clamp(self, min_value: float, max_value: float) -> None:
        """Clip every stored gradient element to ``[min_value, max_value]``."""
        for _, vals in self.chunks():
            np.clip(vals, min_value, max_value, out=vals)

    def clear(self) -> None:
        """Drop all rows (buffers are kept for reuse)."""
        self._len = 0

    def __repr__(self) -> str:
        return f"SparseGradient(rows={len(self)}, row_shape={self._row_shape})"
