import typing
import unittest

import numpy as np

from src.wyrmgrad.domain._config import ExecutionConfig
from src.wyrmgrad.domain._errors import ShapeMismatchError
from src.wyrmgrad.infrastructure.graph import Graph
from src.wyrmgrad.infrastructure.graph import functional as F
from src.wyrmgrad.infrastructure.execution._context import ExecutionContext
from src.wyrmgrad.infrastructure.ops import OpKind, registered_kinds


class TestFunctionalForward(unittest.TestCase):

    def setUp(self) -> None:
        self.graph = Graph(ExecutionConfig(dtype="float64"))
        self.x_np = np.array([[1.0, -2.0, 0.5], [3.0, 0.0, -1.0]])
        self.x = self.graph.input(self.x_np)

    def test_arithmetic_with_scalars_on_either_side(self) -> None:
        np.testing.assert_allclose(F.add(self.x, 1.0).numpy(), self.x_np + 1.0)
        np.testing.assert_allclose(F.sub(1.0, self.x).numpy(), 1.0 - self.x_np)
        np.testing.assert_allclose(F.mul(self.x, self.x).numpy(), self.x_np**2)
        np.testing.assert_allclose(F.div(self.x, 2.0).numpy(), self.x_np / 2.0)
        np.testing.assert_allclose(F.neg(self.x).numpy(), -self.x_np)
        with self.assertRaises(TypeError):
            F.add(1.0, 2.0)

    def test_unary_functions(self) -> None:
        pos = self.graph.input(np.abs(self.x_np) + 0.5)
        np.testing.assert_allclose(F.square(self.x).numpy(), self.x_np**2)
        np.testing.assert_allclose(F.exp(self.x).numpy(), np.exp(self.x_np))
        np.testing.assert_allclose(F.ln(pos).numpy(), np.log(np.abs(self.x_np) + 0.5))
        np.testing.assert_allclose(F.tanh(self.x).numpy(), np.tanh(self.x_np))
        np.testing.assert_allclose(
            F.sigmoid(self.x).numpy(), 1.0 / (1.0 + np.exp(-self.x_np)), rtol=1e-12
        )
        np.testing.assert_allclose(F.relu(self.x).numpy(), np.maximum(self.x_np, 0.0))

    def test_softmax_rows_sum_to_one(self) -> None:
        p = F.softmax(self.x).numpy()
        np.testing.assert_allclose(p.sum(axis=-1), [1.0, 1.0])
        np.testing.assert_allclose(np.log(p), F.log_softmax(self.x).numpy(), atol=1e-12)

    def test_softmax_is_stable_for_large_inputs(self) -> None:
        big = self.graph.input([[1000.0, 1001.0], [-1000.0, -1000.0]])
        np.testing.assert_allclose(
            F.softmax(big).numpy(), [[0.26894142, 0.73105858], [0.5, 0.5]], rtol=1e-7
        )
        self.assertTrue(np.all(np.isfinite(F.log_softmax(big).numpy())))

    def test_sum_variants(self) -> None:
        self.assertEqual(F.sum(self.x).shape, ())
        self.assertAlmostEqual(float(F.sum(self.x).numpy()), self.x_np.sum())
        np.testing.assert_allclose(F.sum(self.x, axis=0).numpy(), self.x_np.sum(axis=0))
        self.assertEqual(F.sum(self.x, axis=1, keepdims=True).shape, (2, 1))
        self.assertEqual(F.sum(self.x, keepdims=True).shape, (1, 1))
        with self.assertRaises(ShapeMismatchError):
            F.sum(self.x, axis=2)

    def test_linalg(self) -> None:
        w_np = np.arange(6, dtype=np.float64).reshape(3, 2)
        w = self.graph.input(w_np)
        np.testing.assert_allclose(F.matmul(self.x, w).numpy(), self.x_np @ w_np)
        np.testing.assert_allclose(F.transpose(self.x).numpy(), self.x_np.T)
        np.testing.assert_allclose(
            F.vector_dot(self.x, self.x).numpy(), (self.x_np**2).sum(axis=1, keepdims=True)
        )
        with self.assertRaises(ShapeMismatchError):
            F.vector_dot(self.x, w)
        with self.assertRaises(ShapeMismatchError):
            F.transpose(self.graph.input([1.0, 2.0]))

    def test_concat_and_slice(self) -> None:
        y = F.concat([self.x, self.x * 2.0], axis=1)
        self.assertEqual(y.shape, (2, 6))
        np.testing.assert_allclose(y.numpy(), np.concatenate([self.x_np, 2 * self.x_np], axis=1))
        np.testing.assert_allclose(F.slice(y, 3, 6, axis=1).numpy(), 2 * self.x_np)
        with self.assertRaises(ShapeMismatchError):
            F.concat([self.x, self.graph.input(np.ones((2, 2)))], axis=0)
        with self.assertRaises(ShapeMismatchError):
            F.slice(self.x, 2, 2)
        with self.assertRaises(ShapeMismatchError):
            F.slice(self.x, 0, 4, axis=1)


class TestCatalogCompleteness(unittest.TestCase):

    def test_every_operation_kind_is_registered(self) -> None:
        expected = [k for k in OpKind if k is not OpKind.LEAF]
        self.assertEqual(list(registered_kinds()), expected)
        for kind in expected:
            self.assertEqual(kind.operation.name, kind.value)

    def test_rules_are_annotated(self) -> None:
        for kind in registered_kinds():
            op = kind.operation
            with self.subTest(op=op.name):
                shape_hints = typing.get_type_hints(op.infer_shape)
                self.assertEqual(set(shape_hints), {"shapes", "attrs", "return"})

                forward_hints = typing.get_type_hints(op.forward)
                self.assertIs(forward_hints["ctx"], ExecutionContext)
                self.assertIs(forward_hints["return"], np.ndarray)

                backward_hints = typing.get_type_hints(op.backward)
                self.assertIs(backward_hints["ctx"], ExecutionContext)
                self.assertIs(backward_hints["grad"], np.ndarray)
                self.assertIn("return", backward_hints)


if __name__ == "__main__":
    unittest.main()
