import gc
import threading
import unittest
import weakref

import numpy as np

from src.wyrmgrad.domain._config import ExecutionConfig
from src.wyrmgrad.domain._errors import ShapeMismatchError
from src.wyrmgrad.domain._parameter import IParameter
from src.wyrmgrad.infrastructure.execution._context import ExecutionContext
from src.wyrmgrad.infrastructure.graph import (
    GradientAccumulator,
    Graph,
    IndexInputNode,
    InputNode,
    ParameterNode,
    SharedParameter,
)
from src.wyrmgrad.infrastructure.tensor._sparse_gradient import SparseGradient


class TestInputNode(unittest.TestCase):

    def test_value_is_copied_and_cast(self) -> None:
        graph = Graph()
        src = np.array([1, 2, 3])
        x = graph.input(src)
        self.assertIsInstance(x, InputNode)
        src[0] = 100
        self.assertEqual(x.numpy().dtype, np.float32)
        np.testing.assert_array_equal(x.numpy(), [1.0, 2.0, 3.0])
        self.assertFalse(x.needs_gradient)
        self.assertIsNone(x.gradient)

    def test_graph_dtype_is_used(self) -> None:
        graph = Graph(ExecutionConfig(dtype="float64"))
        self.assertEqual(graph.input([1.0]).numpy().dtype, np.float64)

    def test_set_value_checks_shape(self) -> None:
        x = Graph().input(np.zeros((2, 2)))
        x.set_value(np.ones((2, 2)))
        np.testing.assert_array_equal(x.numpy(), np.ones((2, 2)))
        with self.assertRaises(ShapeMismatchError):
            x.set_value(np.ones((3,)))

    def test_requires_grad_input_accumulates(self) -> None:
        graph = Graph()
        x = graph.input([1.0, 2.0], requires_grad=True)
        (x * x).sum().backward()
        np.testing.assert_allclose(x.gradient.to_numpy(), [2.0, 4.0])
        graph.zero_gradients()
        np.testing.assert_allclose(x.gradient.to_numpy(), [0.0, 0.0])

    def test_graph_does_not_keep_dropped_inputs_alive(self) -> None:
        graph = Graph()
        kept = graph.input([1.0, 2.0], requires_grad=True)
        dropped = graph.input(np.ones(1024), requires_grad=True)
        ref = weakref.ref(dropped)
        del dropped
        gc.collect()
        self.assertIsNone(ref())

        (kept * kept).sum().backward()
        graph.zero_gradients()
        np.testing.assert_allclose(kept.gradient.to_numpy(), [0.0, 0.0])


class TestIndexInputNode(unittest.TestCase):

    def test_holds_integer_vector(self) -> None:
        idx = Graph().index_input([3, 0, 3])
        self.assertIsInstance(idx, IndexInputNode)
        self.assertEqual(idx.shape, (3,))
        self.assertFalse(idx.needs_gradient)
        self.assertEqual(idx.value.dtype, np.int64)
        np.testing.assert_array_equal(idx.numpy(), [3, 0, 3])

    def test_integral_floats_are_accepted(self) -> None:
        idx = Graph().index_input(np.array([1.0, 2.0]))
        np.testing.assert_array_equal(idx.numpy(), [1, 2])

    def test_rejects_bad_input(self) -> None:
        graph = Graph()
        with self.assertRaises(TypeError):
            graph.index_input([0.5, 1.0])
        with self.assertRaises(ShapeMismatchError):
            graph.index_input([[0, 1]])
        with self.assertRaises(ShapeMismatchError):
            graph.index_input([])

    def test_set_value_keeps_length(self) -> None:
        idx = Graph().index_input([0, 1])
        idx.set_value([1, 1])
        np.testing.assert_array_equal(idx.numpy(), [1, 1])
        with self.assertRaises(ShapeMismatchError):
            idx.set_value([0, 1, 2])


class TestParameterNode(unittest.TestCase):

    def setUp(self) -> None:
        self.graph = Graph()
        self.w = self.graph.parameter(np.array([[1.0, -2.0], [3.0, 0.5]]), name="w")

    def test_protocol_and_defaults(self) -> None:
        self.assertIsInstance(self.w, ParameterNode)
        self.assertIsInstance(self.w, IParameter)
        self.assertEqual(self.w.name, "w")
        self.assertTrue(self.w.requires_grad)
        self.assertTrue(self.w.needs_gradient)
        np.testing.assert_array_equal(self.w.gradient.to_numpy(), np.zeros((2, 2)))
        self.assertIsNone(self.w.dense_gradient)
        self.assertTrue(self.w.sparse_gradient.is_empty())

    def test_default_names_and_duplicates(self) -> None:
        p = self.graph.parameter([0.0])
        self.assertEqual(p.name, "param_1")
        with self.assertRaises(ValueError):
            self.graph.parameter([0.0], name="w")
        self.assertEqual([n for n, _ in self.graph.named_parameters()], ["w", "param_1"])
        self.assertEqual(self.graph.parameters(), [self.w, p])

    def test_value_or_shared_is_required(self) -> None:
        with self.assertRaises(ValueError):
            self.graph.parameter()

    def test_frozen_parameter(self) -> None:
        frozen = self.graph.parameter([1.0], name="frozen", requires_grad=False)
        self.assertFalse(frozen.needs_gradient)
        self.assertIsNone(frozen.gradient)
        (frozen * 2.0).sum().backward()
        self.assertIsNone(frozen.gradient)

    def test_assign_requires_pass_boundary(self) -> None:
        y = (self.w * 2.0).sum()
        self.assertAlmostEqual(float(y.numpy()), 5.0)
        self.w.assign(np.zeros((2, 2)))
        self.assertAlmostEqual(float(y.numpy()), 5.0)
        self.graph.begin_pass()
        self.assertAlmostEqual(float(y.numpy()), 0.0)
        with self.assertRaises(ShapeMismatchError):
            self.w.assign(np.zeros((3,)))

    def test_export_import_is_exact(self) -> None:
        value = np.array([[0.1, 1e-30], [-7.25, 3.4e38]], dtype=np.float32)
        self.w.assign(value)
        exported = self.w.export_value()
        np.testing.assert_array_equal(exported, value)

        fresh = Graph().parameter(np.zeros((2, 2)), name="w")
        fresh.import_value(exported)
        np.testing.assert_array_equal(fresh.export_value(), value)
        self.assertEqual(fresh.export_value().tobytes(), value.tobytes())

    def test_export_returns_copy(self) -> None:
        exported = self.w.export_value()
        exported[0, 0] = 99.0
        self.assertEqual(self.w.numpy()[0, 0], 1.0)

    def test_import_rejects_dtype_change(self) -> None:
        with self.assertRaises(TypeError):
            self.w.import_value(np.zeros((2, 2), dtype=np.float64))

    def test_clamp_gradient(self) -> None:
        (self.w * 10.0).sum().backward()
        self.graph.clamp_gradients(-1.0, 1.0)
        np.testing.assert_allclose(self.w.gradient.to_numpy(), np.ones((2, 2)))
        with self.assertRaises(ValueError):
            self.w.clamp_gradient(1.0, -1.0)


class TestGradientAccumulator(unittest.TestCase):

    def test_dense_and_sparse_parts_combine(self) -> None:
        acc = GradientAccumulator((3, 2), np.float32)
        self.assertTrue(acc.is_empty())
        acc.add_dense(np.ones((3, 2)))
        sg = SparseGradient()
        sg.push([2, 2], np.array([[1.0, 2.0], [3.0, 4.0]]))
        acc.add_sparse(sg)
        np.testing.assert_allclose(acc.total(), [[1, 1], [1, 1], [5, 7]])

        acc.zero()
        self.assertTrue(acc.is_empty())
        self.assertIsNone(acc.dense)
        np.testing.assert_allclose(acc.total(), np.zeros((3, 2)))

    def test_dense_buffer_is_not_aliased(self) -> None:
        acc = GradientAccumulator((2,), np.float32)
        contribution = np.array([1.0, 2.0], dtype=np.float32)
        acc.add_dense(contribution)
        acc.add_dense(contribution)
        np.testing.assert_allclose(contribution, [1.0, 2.0])
        np.testing.assert_allclose(acc.dense, [2.0, 4.0])


class TestSharedParameter(unittest.TestCase):

    def test_graphs_share_value_but_not_gradients(self) -> None:
        shared = SharedParameter(np.array([1.0, 2.0]), dtype="float32", name="emb")
        ctx = ExecutionContext()
        g1 = Graph(context=ctx)
        g2 = Graph(context=ctx)
        p1 = g1.parameter(shared=shared)
        p2 = g2.parameter(shared=shared)
        self.assertEqual(p1.name, "emb")

        p1.assign([5.0, 6.0])
        np.testing.assert_array_equal(p2.numpy(), [5.0, 6.0])

        (p1 * 2.0).sum().backward()
        np.testing.assert_allclose(p1.gradient.to_numpy(), [2.0, 2.0])
        np.testing.assert_allclose(p2.gradient.to_numpy(), [0.0, 0.0])

    def test_dtype_must_match_graph(self) -> None:
        shared = SharedParameter([1.0], dtype="float64")
        with self.assertRaises(ValueError):
            Graph().parameter(shared=shared)

    def test_hogwild_threads(self) -> None:
        shared = SharedParameter(np.zeros(4), dtype="float32", name="w")
        grads = []
        lock = threading.Lock()

        def worker(k: int) -> None:
            graph = Graph()
            w = graph.parameter(shared=shared)
            x = graph.input(np.full(4, float(k)))
            (w * x).sum().backward()
            with lock:
                grads.append(w.gradient.to_numpy().copy())
            graph.close()

        threads = [threading.Thread(target=worker, args=(k,)) for k in range(1, 4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(
            sorted(float(g[0]) for g in grads), [1.0, 2.0, 3.0]
        )


class TestGraphLifetime(unittest.TestCase):

    def test_generation_advances(self) -> None:
        graph = Graph()
        self.assertEqual(graph.generation, 0)
        graph.begin_pass()
        graph.begin_pass()
        self.assertEqual(graph.generation, 2)

    def test_config_and_context_are_exclusive(self) -> None:
        with self.assertRaises(ValueError):
            Graph(ExecutionConfig(), context=ExecutionContext())

    def test_context_manager_closes_owned_context(self) -> None:
        with Graph(ExecutionConfig(num_workers=1)) as graph:
            self.assertEqual(graph.config.num_workers, 1)
        self.assertIn("generation=0", repr(graph))


if __name__ == "__main__":
    unittest.main()
