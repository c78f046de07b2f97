import unittest

import numpy as np

from src.wyrmgrad.domain._errors import ShapeMismatchError
from src.wyrmgrad.infrastructure.tensor._shape import (
    _sum_to_shape_reduce_axes,
    broadcast_shape,
    sum_to_shape,
)


class TestBroadcastShape(unittest.TestCase):

    def test_equal_shapes(self) -> None:
        self.assertEqual(broadcast_shape("add", [(2, 3), (2, 3)]), (2, 3))

    def test_bias_and_scalar(self) -> None:
        self.assertEqual(broadcast_shape("add", [(4, 3), (3,)]), (4, 3))
        self.assertEqual(broadcast_shape("mul", [(), (4, 3)]), (4, 3))
        self.assertEqual(broadcast_shape("mul", [(4, 1), (1, 3)]), (4, 3))

    def test_mismatch_names_op_and_axis(self) -> None:
        with self.assertRaises(ShapeMismatchError) as ctx:
            broadcast_shape("sub", [(2, 3), (2, 4)])
        self.assertEqual(ctx.exception.op, "sub")
        self.assertEqual(ctx.exception.shapes, ((2, 3), (2, 4)))
        self.assertIn("axis -1", str(ctx.exception))


class TestSumToShape(unittest.TestCase):

    def test_reduce_axes(self) -> None:
        self.assertEqual(_sum_to_shape_reduce_axes((4, 3), (3,)), ((0,), 1))
        self.assertEqual(_sum_to_shape_reduce_axes((4, 3), (4, 1)), ((1,), 0))
        self.assertEqual(_sum_to_shape_reduce_axes((4, 3), ()), ((0, 1), 2))

    def test_identity_returns_same_array(self) -> None:
        g = np.ones((2, 2))
        self.assertIs(sum_to_shape(g, (2, 2)), g)

    def test_collapses_broadcast_axes(self) -> None:
        g = np.arange(12, dtype=np.float64).reshape(4, 3)
        np.testing.assert_allclose(sum_to_shape(g, (3,)), g.sum(axis=0))
        np.testing.assert_allclose(sum_to_shape(g, (4, 1)), g.sum(axis=1, keepdims=True))
        np.testing.assert_allclose(sum_to_shape(g, ()), g.sum())
        self.assertEqual(sum_to_shape(g, ()).shape, ())

    def test_incompatible_target_raises(self) -> None:
        with self.assertRaises(ShapeMismatchError):
            sum_to_shape(np.ones((4, 3)), (2,))
        with self.assertRaises(ShapeMismatchError):
            sum_to_shape(np.ones((3,)), (2, 3))


if __name__ == "__main__":
    unittest.main()
