import os
import tempfile
import unittest
import numpy as np
import pandas as pd
from data.table import DataTable
from preprocessing.outliers import (
    CanceledExecutionError,
    EstimationSettings,
    EstimationType,
    ExecutionContext,
    InvalidSettingsError,
    NumericOutliers,
    OutlierModelPort,
    ReplacementStrategy,
    TreatmentOption,
    TreatmentOptions,
    apply_model,
)


class TestNumericOutliers(unittest.TestCase):

    def setUp(self):
        np.random.seed(42)
        n = 300
        self.df = pd.DataFrame({
            'site': np.random.choice(['north', 'south', 'east'], n),
            'year': np.random.choice([2020, 2021], n).astype(np.int64),
            'value': np.random.normal(10, 2, n),
            'count': np.random.poisson(20, n).astype(np.int64),
        })
        # plant a few extreme values
        self.df.loc[[5, 50, 150], 'value'] = [100.0, -80.0, 60.0]
        self.df.loc[[7, 70], 'count'] = [500, 400]
        self.df.loc[[11, 111], 'value'] = np.nan
        self.table = DataTable(self.df)
        self.estimation = EstimationSettings(estimation_type=EstimationType.R_7)

    def _detector(self, **options):
        return NumericOutliers(
            ['value', 'count'],
            ['site', 'year'],
            TreatmentOptions(**options),
            self.estimation
        )

    def test_execute(self):
        result = self._detector().execute(self.table)

        self.assertEqual(result.treated.size, len(self.df))
        self.assertEqual(len(result.port.model), 6)
        self.assertLess(result.treated.df['value'].max(), 100.0)
        self.assertGreater(result.treated.df['value'].min(), -80.0)
        self.assertEqual(result.treated.df['count'].dtype, np.int64)

        summary = result.summary.df
        self.assertEqual(
            list(summary.columns),
            ['Outlier column', 'site', 'year', 'Member count', 'Outlier count', 'Lower bound', 'Upper bound']
        )
        self.assertEqual(len(summary), 12)
        value_members = summary.loc[summary['Outlier column'] == 'value', 'Member count'].sum()
        self.assertEqual(value_members, len(self.df) - 2)
        self.assertGreaterEqual(summary['Outlier count'].sum(), 5)

    def test_outlier_columns_cannot_group(self):
        detector = NumericOutliers(['value'], ['value', 'site'])
        self.assertEqual(detector.group_columns, ['site'])

    def test_validation(self):
        with self.assertRaises(InvalidSettingsError):
            NumericOutliers([]).execute(self.table)
        with self.assertRaises(InvalidSettingsError):
            NumericOutliers(['site']).execute(self.table)
        with self.assertRaises(InvalidSettingsError):
            NumericOutliers(['value'], ['absent']).execute(self.table)
        with self.assertRaises(InvalidSettingsError):
            NumericOutliers(['value']).execute(DataTable(pd.DataFrame({'s': ['x']})))

    def test_filter_removes_rows(self):
        replaced = self._detector().execute(self.table)
        filtered = self._detector(treatment=TreatmentOption.FILTER_OUT_OUTLIER_ROWS).execute(self.table)
        retained = self._detector(treatment=TreatmentOption.RETAIN_ONLY_OUTLIER_ROWS).execute(self.table)

        self.assertEqual(filtered.treated.size + retained.treated.size, len(self.df))
        self.assertGreater(retained.treated.size, 0)
        self.assertEqual(replaced.port.model, filtered.port.model)

    def test_partitioned_matches_batch(self):
        options = {'replacement': ReplacementStrategy.SET_MISSING, 'update_domain': True}
        batch = self._detector(**options).execute(self.table)
        partitioned = self._detector(**options).execute_partitioned(self.table, n_partitions=4, n_jobs=2)

        pd.testing.assert_frame_equal(batch.treated.df, partitioned.treated.df, check_dtype=False)
        pd.testing.assert_frame_equal(batch.summary.df, partitioned.summary.df, check_dtype=False)
        self.assertEqual(batch.internals.member_counter, partitioned.internals.member_counter)
        self.assertEqual(batch.internals.outlier_counter, partitioned.internals.outlier_counter)
        self.assertEqual(
            batch.treated.spec.get_column_spec('value').domain,
            partitioned.treated.spec.get_column_spec('value').domain
        )

    def test_partitioned_with_more_partitions_than_rows(self):
        table = DataTable(pd.DataFrame({'v': [1.0, 2.0, 3.0, 4.0, 100.0]}))
        detector = NumericOutliers(['v'], estimation=self.estimation)
        result = detector.execute_partitioned(table, n_partitions=8, n_jobs=1)
        self.assertEqual(result.treated.df['v'].tolist(), [1.0, 2.0, 3.0, 4.0, 7.0])

    def test_huge_multiplier_on_integer_column(self):
        table = DataTable(pd.DataFrame({'v': np.array([1, 2, 3, 4, 100], dtype=np.int64)}))
        detector = NumericOutliers(['v'], options=TreatmentOptions(iqr_multiplier=1e308))
        result = detector.execute(table)

        self.assertEqual(result.treated.df['v'].tolist(), [1, 2, 3, 4, 100])
        self.assertEqual(result.internals.outlier_counter.total(), 0)

    def test_cancellation(self):
        context = ExecutionContext()
        context.cancel()
        with self.assertRaises(CanceledExecutionError):
            self._detector().execute(self.table, context)

    def test_progress_reaches_one(self):
        progress = []
        context = ExecutionContext(progress_callback=lambda fraction, message: progress.append(fraction))
        self._detector().execute(self.table, context)
        self.assertAlmostEqual(progress[-1], 1.0)


class TestModelPort(unittest.TestCase):

    def setUp(self):
        self.df = pd.DataFrame({
            'g': ['a'] * 5 + ['b'] * 5,
            'v': [1.0, 2.0, 3.0, 4.0, 100.0, 10.0, 20.0, 30.0, 40.0, 500.0],
            'w': [1.0, 1.0, 1.0, 1.0, 1.0, 2.0, 2.0, 2.0, 2.0, 2.0],
        })
        self.table = DataTable(self.df)
        detector = NumericOutliers(
            ['v', 'w'], ['g'],
            TreatmentOptions(replacement='missing'),
            EstimationSettings(estimation_type='R_7')
        )
        self.result = detector.execute(self.table)
        self.port = self.result.port

    def test_round_trip(self):
        restored = OutlierModelPort.from_bytes(self.port.to_bytes())
        self.assertEqual(restored, self.port)
        self.assertEqual(restored.options.replacement, ReplacementStrategy.SET_MISSING)

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'models', 'port.npz')
            self.port.save(path)
            self.assertEqual(OutlierModelPort.load(path), self.port)

        with self.assertRaises(ValueError):
            OutlierModelPort.from_bytes(self.port.model.to_bytes())

    def test_apply_to_same_table(self):
        applied = apply_model(self.port, self.table)
        pd.testing.assert_frame_equal(applied.treated.df, self.result.treated.df)
        pd.testing.assert_frame_equal(applied.summary.df, self.result.summary.df)

    def test_apply_with_new_group(self):
        new = DataTable(pd.DataFrame({'g': ['a', 'c'], 'v': [100.0, 100.0], 'w': [1.0, 1.0]}))
        applied = apply_model(self.port, new)

        self.assertTrue(np.isnan(applied.treated.df['v'].iloc[0]))
        self.assertEqual(applied.treated.df['v'].iloc[1], 100.0)
        self.assertEqual(applied.internals.missing_groups_counter.get('v', ('c',)), 1)

    def test_apply_drops_absent_outlier_column(self):
        new = DataTable(pd.DataFrame({'g': ['a'], 'v': [100.0]}))
        applied = apply_model(self.port, new)

        self.assertEqual(len(applied.warnings), 1)
        self.assertIn('(w)', applied.warnings[0])
        self.assertEqual(applied.port.model.outlier_columns, ['v'])
        self.assertTrue(np.isnan(applied.treated.df['v'].iloc[0]))

    def test_apply_errors(self):
        with self.assertRaises(InvalidSettingsError):
            apply_model(self.port, DataTable(pd.DataFrame({'v': [1.0], 'w': [1.0]})))
        with self.assertRaises(InvalidSettingsError):
            apply_model(self.port, DataTable(pd.DataFrame({'g': [1], 'v': [1.0], 'w': [1.0]})))
        with self.assertRaises(InvalidSettingsError):
            apply_model(self.port, DataTable(pd.DataFrame({'g': ['a'], 'x': [1.0]})))


if __name__ == '__main__':
    unittest.main()
