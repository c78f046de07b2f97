import unittest

import numpy as np

from src.wyrmgrad.domain._errors import ShapeMismatchError
from src.wyrmgrad.domain._tensor import ITensor
from src.wyrmgrad.infrastructure.tensor._tensor import Tensor


class TestTensorConstruction(unittest.TestCase):

    def test_shape_constructor_allocates_zeros(self) -> None:
        t = Tensor((2, 3))
        self.assertEqual(t.shape, (2, 3))
        self.assertEqual(t.dtype, np.float32)
        self.assertEqual(t.numel(), 6)
        np.testing.assert_array_equal(t.to_numpy(), np.zeros((2, 3), dtype=np.float32))

    def test_scalar_shape(self) -> None:
        t = Tensor(())
        self.assertEqual(t.shape, ())
        self.assertEqual(t.ndim, 0)
        self.assertEqual(t.numel(), 1)

    def test_rejects_non_positive_dimensions(self) -> None:
        with self.assertRaises(ValueError):
            Tensor((2, 0))
        with self.assertRaises(ValueError):
            Tensor((-1,))

    def test_rejects_non_integer_dimensions(self) -> None:
        with self.assertRaises(TypeError):
            Tensor((2.5,))  # type: ignore[arg-type]

    def test_rejects_unsupported_dtype(self) -> None:
        with self.assertRaises(ValueError):
            Tensor((2,), dtype="int32")

    def test_from_numpy_keeps_float_dtype_and_copies(self) -> None:
        src = np.arange(4, dtype=np.float64).reshape(2, 2)
        t = Tensor.from_numpy(src)
        self.assertEqual(t.dtype, np.float64)
        src[0, 0] = 100.0
        self.assertEqual(t.to_numpy()[0, 0], 0.0)

    def test_from_numpy_converts_integers_to_float32(self) -> None:
        t = Tensor.from_numpy([1, 2, 3])
        self.assertEqual(t.dtype, np.float32)
        np.testing.assert_array_equal(t.to_numpy(), [1.0, 2.0, 3.0])

    def test_from_numpy_without_copy_shares_memory(self) -> None:
        src = np.ones((3,), dtype=np.float32)
        t = Tensor.from_numpy(src, copy=False)
        src[1] = 5.0
        self.assertEqual(t.to_numpy()[1], 5.0)

    def test_factories(self) -> None:
        np.testing.assert_array_equal(Tensor.zeros((2,)).to_numpy(), [0.0, 0.0])
        np.testing.assert_array_equal(Tensor.ones((2,)).to_numpy(), [1.0, 1.0])
        np.testing.assert_array_equal(Tensor.full((2,), 3.5).to_numpy(), [3.5, 3.5])

    def test_satisfies_protocol(self) -> None:
        self.assertIsInstance(Tensor((1,)), ITensor)


class TestTensorMutation(unittest.TestCase):

    def test_copy_from_numpy_checks_shape(self) -> None:
        t = Tensor((2, 2))
        t.copy_from_numpy(np.eye(2))
        np.testing.assert_array_equal(t.to_numpy(), np.eye(2, dtype=np.float32))
        with self.assertRaises(ShapeMismatchError):
            t.copy_from_numpy(np.zeros((3, 2)))

    def test_fill(self) -> None:
        t = Tensor((3,))
        t.fill(2.0)
        np.testing.assert_array_equal(t.to_numpy(), [2.0, 2.0, 2.0])

    def test_add_accumulates_in_place(self) -> None:
        t = Tensor.ones((2,))
        out = t.add_(np.array([1.0, 2.0])).add_(Tensor.ones((2,)))
        self.assertIs(out, t)
        np.testing.assert_array_equal(t.to_numpy(), [3.0, 4.0])

    def test_add_rejects_shape_mismatch(self) -> None:
        with self.assertRaises(ShapeMismatchError):
            Tensor((2,)).add_(np.ones((3,)))

    def test_clone_is_independent(self) -> None:
        t = Tensor.ones((2,))
        c = t.clone()
        c.fill(0.0)
        np.testing.assert_array_equal(t.to_numpy(), [1.0, 1.0])

    def test_item(self) -> None:
        self.assertEqual(Tensor.full((1, 1), 4.0).item(), 4.0)
        with self.assertRaises(ValueError):
            Tensor((2,)).item()

    def test_repr(self) -> None:
        self.assertIn("(2, 3)", repr(Tensor((2, 3))))


if __name__ == "__main__":
    unittest.main()
