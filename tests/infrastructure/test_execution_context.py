import threading
import unittest
import warnings
from unittest import mock

import numpy as np

from src.wyrmgrad.domain._config import ExecutionConfig, NumericsMode
from src.wyrmgrad.domain._errors import NumericalInstabilityError
from src.wyrmgrad.infrastructure.execution._context import ExecutionContext


class TestPartition(unittest.TestCase):

    def test_single_worker_is_one_range(self) -> None:
        ctx = ExecutionContext(ExecutionConfig(num_workers=1, min_rows_per_task=1))
        self.assertEqual(ctx.partition(10), [(0, 10)])

    def test_ranges_are_contiguous_and_balanced(self) -> None:
        with mock.patch("os.cpu_count", return_value=8):
            ctx = ExecutionContext(ExecutionConfig(num_workers=3, min_rows_per_task=1))
        ranges = ctx.partition(10)
        self.assertEqual(ranges, [(0, 4), (4, 7), (7, 10)])

    def test_small_inputs_are_not_split(self) -> None:
        with mock.patch("os.cpu_count", return_value=8):
            ctx = ExecutionContext(ExecutionConfig(num_workers=4, min_rows_per_task=8))
        # fewer than 2 * min_rows_per_task rows
        self.assertEqual(ctx.partition(15), [(0, 15)])
        self.assertEqual(len(ctx.partition(16)), 2)
        self.assertEqual(len(ctx.partition(1000)), 4)

    def test_empty(self) -> None:
        self.assertEqual(ExecutionContext().partition(0), [])


class TestMapRows(unittest.TestCase):

    def setUp(self) -> None:
        with mock.patch("os.cpu_count", return_value=8):
            self.ctx = ExecutionContext(ExecutionConfig(num_workers=4, min_rows_per_task=2))

    def tearDown(self) -> None:
        self.ctx.close()

    def test_parallel_result_matches_inline(self) -> None:
        rng = np.random.default_rng(0)
        x = rng.standard_normal((37, 5))
        out = np.empty_like(x)
        self.ctx.map_rows(lambda o, v: np.tanh(v, out=o), out, x)
        np.testing.assert_array_equal(out, np.tanh(x))

    def test_uses_worker_threads(self) -> None:
        seen = set()
        lock = threading.Lock()

        def kernel(o, v):
            with lock:
                seen.add(threading.current_thread().name)
            o[...] = v

        x = np.ones((64, 2))
        self.ctx.map_rows(kernel, np.empty_like(x), x)
        self.assertTrue(all(name.startswith("wyrmgrad") for name in seen))

    def test_broadcast_inputs_are_passed_whole(self) -> None:
        x = np.ones((20, 3))
        bias = np.array([1.0, 2.0, 3.0])
        out = np.empty_like(x)
        self.ctx.map_rows(lambda o, v, b: np.add(v, b, out=o), out, x, bias)
        np.testing.assert_array_equal(out, x + bias)

    def test_worker_exception_is_reraised(self) -> None:
        def kernel(o, v):
            raise RuntimeError("boom")

        x = np.ones((20, 1))
        with self.assertRaises(RuntimeError):
            self.ctx.map_rows(kernel, np.empty_like(x), x)

    def test_scalar_runs_inline(self) -> None:
        out = np.empty(())
        self.ctx.map_rows(lambda o, v: np.multiply(v, 2.0, out=o), out, np.array(3.0))
        self.assertEqual(float(out), 6.0)

    def test_close_is_idempotent_and_context_manager(self) -> None:
        with ExecutionContext(ExecutionConfig(num_workers=1)) as ctx:
            ctx.close()
        ctx.close()


class TestNumericsPolicy(unittest.TestCase):

    def test_strict_raises_on_non_finite(self) -> None:
        ctx = ExecutionContext()
        self.assertIs(ctx.numerics, NumericsMode.STRICT)
        ctx.check_finite("ok", np.array([1.0, 2.0]))
        with self.assertRaises(NumericalInstabilityError) as cm:
            ctx.check_finite("ln", np.array([1.0, np.nan]), "backward", "node-a")
        self.assertEqual(cm.exception.op, "ln")
        self.assertEqual(cm.exception.phase, "backward")
        self.assertEqual(cm.exception.node, "node-a")

    def test_fast_skips_checks(self) -> None:
        ctx = ExecutionContext(ExecutionConfig(numerics="fast"))
        ctx.check_finite("ln", np.array([np.inf, np.nan]))

    def test_accumulate_dtype(self) -> None:
        strict = ExecutionContext()
        fast = ExecutionContext(ExecutionConfig(numerics=NumericsMode.FAST))
        self.assertEqual(strict.accumulate_dtype(np.float32), np.float64)
        self.assertEqual(fast.accumulate_dtype(np.float32), np.float32)

    def test_fast_mode_is_logged(self) -> None:
        with self.assertLogs(
            "src.wyrmgrad.infrastructure.execution._context", level="INFO"
        ) as logs:
            ExecutionContext(ExecutionConfig(numerics="fast"))
        self.assertTrue(any("Fast numerics" in line for line in logs.output))

    def test_oversubscription_warns(self) -> None:
        with mock.patch("os.cpu_count", return_value=2):
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                ExecutionContext(ExecutionConfig(num_workers=8))
        self.assertTrue(any(issubclass(w.category, RuntimeWarning) for w in caught))

    def test_dtype(self) -> None:
        self.assertEqual(ExecutionContext().dtype, np.float32)
        self.assertEqual(
            ExecutionContext(ExecutionConfig(dtype="float64")).dtype, np.float64
        )


if __name__ == "__main__":
    unittest.main()
