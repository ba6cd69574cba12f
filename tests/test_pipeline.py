import os
import tempfile
import unittest
import numpy as np
import pandas as pd
import yaml
from data.exporters import ResultsExporter
from pipeline import OutlierConfig, OutlierPipeline, apply_saved_model
from pipeline.main import main
from preprocessing.outliers import (
    DetectionOption,
    EstimationMode,
    EstimationType,
    InvalidSettingsError,
    ReplacementStrategy,
    TreatmentOption,
)


class TestOutlierConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config = OutlierConfig(
            input_path='input.csv',
            output_dir=self.tmp.name,
            outlier_columns=['value'],
            group_columns=['site'],
            estimation_type='R_7',
            treatment='filter',
            detection='upper',
        )

    def tearDown(self):
        self.tmp.cleanup()

    def test_yaml_round_trip(self):
        path = os.path.join(self.tmp.name, 'config.yaml')
        self.config.to_yaml(path)
        self.assertEqual(OutlierConfig.from_yaml(path), self.config)

    def test_nested_yaml(self):
        path = os.path.join(self.tmp.name, 'nested.yaml')
        with open(path, 'w') as f:
            yaml.safe_dump({'outliers': {'input_path': 'x.csv', 'outlier_columns': ['a']}}, f)
        config = OutlierConfig.from_yaml(path)
        self.assertEqual(config.input_path, 'x.csv')
        self.assertEqual(config.iqr_multiplier, 1.5)

    def test_unknown_keys(self):
        with self.assertRaises(InvalidSettingsError):
            OutlierConfig.from_dict({'input_path': 'x.csv', 'window_size': 3})
        with self.assertRaises(InvalidSettingsError):
            OutlierConfig.from_dict({'outlier_columns': ['a']})

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            OutlierConfig.from_yaml(os.path.join(self.tmp.name, 'absent.yaml'))

    def test_options(self):
        options = self.config.to_treatment_options()
        self.assertEqual(options.treatment, TreatmentOption.FILTER_OUT_OUTLIER_ROWS)
        self.assertEqual(options.detection, DetectionOption.UPPER_ONLY)
        self.assertEqual(options.replacement, ReplacementStrategy.CLAMP_TO_BOUNDARY)

        settings = self.config.to_estimation_settings()
        self.assertEqual(settings.mode, EstimationMode.EXACT)
        self.assertEqual(settings.estimation_type, EstimationType.R_7)

    def test_validate(self):
        self.config.validate()

        for field_name, value in [
            ('outlier_columns', []),
            ('export_format', 'parquet'),
            ('n_partitions', 0),
            ('n_jobs', 0),
            ('iqr_multiplier', -1.0),
            ('detection', 'sideways'),
            ('estimation_type', 'R_42'),
        ]:
            config = OutlierConfig(**{**self.config.to_dict(), field_name: value})
            with self.assertRaises(InvalidSettingsError, msg=field_name):
                config.validate()


class TestOutlierPipeline(unittest.TestCase):

    def setUp(self):
        np.random.seed(42)
        self.tmp = tempfile.TemporaryDirectory()
        self.input_path = os.path.join(self.tmp.name, 'measurements.csv')
        df = pd.DataFrame({
            'site': np.random.choice(['north', 'south'], 100),
            'value': np.random.normal(10, 1, 100),
        })
        df.loc[3, 'value'] = 50.0
        df.to_csv(self.input_path, index=False)

        self.output_dir = os.path.join(self.tmp.name, 'results')
        self.model_path = os.path.join(self.tmp.name, 'model', 'outliers.npz')
        self.config = OutlierConfig(
            input_path=self.input_path,
            output_dir=self.output_dir,
            model_path=self.model_path,
            outlier_columns=['value'],
            group_columns=['site'],
            export_format='csv',
            include_timestamp=False,
        )

    def tearDown(self):
        self.tmp.cleanup()

    def test_run(self):
        results = OutlierPipeline(self.config).run()

        result = results['result']
        self.assertEqual(result.treated.size, 100)
        self.assertLess(result.treated.df['value'].max(), 50.0)
        self.assertEqual(results['model_path'], self.model_path)
        self.assertTrue(os.path.exists(self.model_path))
        for filename in ['treated.csv', 'summary.csv', 'intervals.csv', 'metadata.csv']:
            self.assertTrue(os.path.exists(os.path.join(self.output_dir, filename)), filename)

        summary = pd.read_csv(os.path.join(self.output_dir, 'summary.csv'))
        self.assertEqual(summary['Member count'].sum(), 100)
        self.assertEqual(summary['Outlier count'].sum(), result.internals.outlier_counter.total())

    def test_partitioned_run(self):
        self.config.n_partitions = 3
        self.config.n_jobs = 1
        self.config.model_path = None
        results = OutlierPipeline(self.config).run()

        self.assertIsNone(results['model_path'])
        self.assertEqual(results['result'].treated.size, 100)

    def test_apply_saved_model(self):
        fitted = OutlierPipeline(self.config).run()['result']
        applied = apply_saved_model(self.model_path, self.input_path)
        pd.testing.assert_frame_equal(applied.treated.df, fitted.treated.df)

    def test_excel_export(self):
        result = OutlierPipeline(self.config).run()['result']
        path = os.path.join(self.tmp.name, 'report.xlsx')
        exporter = ResultsExporter(path, format='excel', include_timestamp=False)
        written = exporter.export_outlier_results(
            result.treated.df, result.summary.df, result.port.model.to_dataframe()
        )

        self.assertEqual(written, path)
        sheets = pd.read_excel(path, sheet_name=None, engine='openpyxl')
        self.assertEqual(list(sheets), ['Treated', 'Summary', 'Intervals'])
        self.assertEqual(len(sheets['Summary']), 2)

    def test_invalid_export_format(self):
        with self.assertRaises(ValueError):
            ResultsExporter(self.output_dir, format='parquet')

    def test_cli(self):
        config_path = os.path.join(self.tmp.name, 'config.yaml')
        self.config.to_yaml(config_path)

        self.assertEqual(main(['-q', 'detect', '--config', config_path]), 0)
        self.assertTrue(os.path.exists(self.model_path))

        applied_dir = os.path.join(self.tmp.name, 'applied')
        code = main(['-q', 'apply', '--model', self.model_path, '--input', self.input_path,
                     '--output', applied_dir])
        self.assertEqual(code, 0)
        self.assertTrue(os.path.exists(os.path.join(applied_dir, 'treated.csv')))

    def test_cli_config_error(self):
        self.assertEqual(main(['-q', 'detect', '--config', os.path.join(self.tmp.name, 'absent.yaml')]), 2)


if __name__ == '__main__':
    unittest.main()
