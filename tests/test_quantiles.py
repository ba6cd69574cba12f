import unittest
import numpy as np
import pandas as pd
from data.table import DataTable
from preprocessing.outliers import (
    CanceledExecutionError,
    EstimationMode,
    EstimationSettings,
    EstimationType,
    ExecutionContext,
    InvalidSettingsError,
    PSquareQuantile,
    QuantileEstimator,
    WarningCollector,
    compute_intervals,
)


class TestQuantileEstimator(unittest.TestCase):

    def setUp(self):
        np.random.seed(42)
        self.table = DataTable(pd.DataFrame({'v': [1.0, 2.0, 3.0, 4.0, 100.0]}))
        self.exact_r7 = EstimationSettings(EstimationMode.EXACT, EstimationType.R_7)

    def test_global_interval(self):
        model = compute_intervals(self.table, ['v'], estimation_type=EstimationType.R_7)
        self.assertEqual(model.get_interval((), 'v'), (-1.0, 7.0))

    def test_multiplier_zero_gives_quartiles(self):
        model = QuantileEstimator(['v'], iqr_multiplier=0.0, settings=self.exact_r7).estimate(self.table)
        self.assertEqual(model.get_interval((), 'v'), (2.0, 4.0))

    def test_estimation_types_differ(self):
        r6 = compute_intervals(self.table, ['v'], estimation_type=EstimationType.R_6)
        r7 = compute_intervals(self.table, ['v'], estimation_type=EstimationType.R_7)
        self.assertNotEqual(r6.get_interval((), 'v'), r7.get_interval((), 'v'))

    def test_grouped_intervals(self):
        df = pd.DataFrame({
            'g': ['a'] * 5 + ['b'] * 5,
            'v': [1.0, 2.0, 3.0, 4.0, 100.0, 10.0, 20.0, 30.0, 40.0, 50.0],
        })
        model = QuantileEstimator(['v'], ['g'], settings=self.exact_r7).estimate(DataTable(df))

        self.assertEqual(model.group_keys(), [('a',), ('b',)])
        self.assertEqual(model.get_interval(('a',), 'v'), (-1.0, 7.0))
        self.assertEqual(model.get_interval(('b',), 'v'), (-10.0, 70.0))

    def test_missing_values_are_ignored(self):
        df = pd.DataFrame({
            'g': ['a'] * 6 + ['b'] * 2,
            'v': [1.0, 2.0, np.nan, 3.0, 4.0, 100.0, np.nan, np.nan],
        })
        model = QuantileEstimator(['v'], ['g'], settings=self.exact_r7).estimate(DataTable(df))

        self.assertEqual(model.get_interval(('a',), 'v'), (-1.0, 7.0))
        # a group without any value has no interval
        self.assertNotIn(('b',), model)

    def test_single_value_group(self):
        table = DataTable(pd.DataFrame({'v': [5.0]}))
        model = compute_intervals(table, ['v'])
        self.assertEqual(model.get_interval((), 'v'), (5.0, 5.0))

    def test_integer_columns_keep_raw_bounds(self):
        table = DataTable(pd.DataFrame({'v': np.array([1, 2, 3, 4, 6], dtype=np.int64)}))
        model = QuantileEstimator(['v'], iqr_multiplier=0.1, settings=self.exact_r7).estimate(table)
        lower, upper = model.get_interval((), 'v')
        self.assertAlmostEqual(lower, 1.8)
        self.assertAlmostEqual(upper, 4.2)

    def test_invalid_settings(self):
        with self.assertRaises(InvalidSettingsError):
            QuantileEstimator(['v'], iqr_multiplier=-0.5)

        strings = DataTable(pd.DataFrame({'s': ['x', 'y']}))
        with self.assertRaises(InvalidSettingsError):
            QuantileEstimator(['s']).estimate(strings)
        with self.assertRaises(InvalidSettingsError):
            QuantileEstimator(['absent']).estimate(self.table)
        with self.assertRaises(InvalidSettingsError):
            QuantileEstimator(['v'], ['absent']).estimate(self.table)

    def test_heuristic_fallback_warns(self):
        collector = WarningCollector()
        settings = EstimationSettings(EstimationMode.EXACT, EstimationType.R_7, heuristic_row_threshold=3)
        model = QuantileEstimator(['v'], settings=settings, listeners=[collector]).estimate(self.table)

        self.assertEqual(len(collector.messages), 1)
        self.assertTrue(collector.messages[0].startswith(
            "Exact quantile estimation switched to heuristic estimation for 5 rows"
        ))
        # up to five values the heuristic is exact
        self.assertEqual(model.get_interval((), 'v'), (-1.0, 7.0))

    def test_heuristic_fallback_is_opt_in(self):
        self.assertEqual(self.exact_r7.resolve_mode(10 ** 9), EstimationMode.EXACT)
        settings = EstimationSettings(heuristic_row_threshold=1000)
        self.assertEqual(settings.resolve_mode(1000), EstimationMode.EXACT)
        self.assertEqual(settings.resolve_mode(1001), EstimationMode.HEURISTIC)

    def test_heuristic_close_to_exact(self):
        df = pd.DataFrame({'v': np.random.normal(0, 1, 5000)})
        table = DataTable(df)
        exact = compute_intervals(table, ['v'], estimation_type=EstimationType.R_7)
        heuristic = QuantileEstimator(
            ['v'], settings=EstimationSettings(EstimationMode.HEURISTIC)
        ).estimate(table)

        for exact_bound, heuristic_bound in zip(exact.get_interval((), 'v'), heuristic.get_interval((), 'v')):
            self.assertAlmostEqual(exact_bound, heuristic_bound, delta=0.25)

    def test_cancellation(self):
        context = ExecutionContext()
        context.cancel()
        with self.assertRaises(CanceledExecutionError):
            compute_intervals(self.table, ['v'], exec_context=context)

    def test_progress_reaches_one(self):
        progress = []
        context = ExecutionContext(progress_callback=lambda fraction, message: progress.append(fraction))
        compute_intervals(self.table, ['v'], exec_context=context)
        self.assertAlmostEqual(progress[-1], 1.0)
        self.assertEqual(progress, sorted(progress))


class TestPSquareQuantile(unittest.TestCase):

    def test_exact_for_few_values(self):
        estimator = PSquareQuantile(0.5)
        for x in [3.0, 1.0, 2.0]:
            estimator.add(x)
        self.assertEqual(estimator.result(), 2.0)

    def test_no_values(self):
        self.assertTrue(np.isnan(PSquareQuantile(0.25).result()))

    def test_converges(self):
        np.random.seed(0)
        values = np.random.uniform(0, 1, 20000)
        estimator = PSquareQuantile(0.75)
        for x in values:
            estimator.add(float(x))
        self.assertAlmostEqual(estimator.result(), 0.75, delta=0.02)

    def test_invalid_probability(self):
        with self.assertRaises(ValueError):
            PSquareQuantile(1.0)


if __name__ == '__main__':
    unittest.main()
