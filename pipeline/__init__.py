"""Pipeline Package - Orchestration and configuration"""

from dataclasses import dataclass, field, asdict, fields
from typing import List, Dict, Optional, Any
from pathlib import Path
import logging
import yaml

from data.loaders import load_table
from data.exporters import ResultsExporter
from data.table import DataTable
from preprocessing.outliers import (
    EstimationSettings,
    ExecutionContext,
    InvalidSettingsError,
    NumericOutliers,
    NumericOutliersResult,
    OutlierModelPort,
    TreatmentOptions,
    apply_model,
)

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ('excel', 'csv')


# config.py
@dataclass
class OutlierConfig:
    """Configuration for the numeric outliers pipeline."""

    # Data paths
    input_path: str
    output_dir: str = "results"
    model_path: Optional[str] = None

    # Columns
    outlier_columns: List[str] = field(default_factory=list)
    group_columns: List[str] = field(default_factory=list)

    # Estimation
    iqr_multiplier: float = 1.5
    estimation_mode: str = 'exact'
    estimation_type: str = 'R_6'
    heuristic_row_threshold: Optional[int] = None

    # Treatment
    detection: str = 'both'
    treatment: str = 'replace'
    replacement: str = 'clamp'
    update_domain: bool = False

    # Parallelism (n_partitions None or 1 = single pass)
    n_partitions: Optional[int] = None
    n_jobs: int = -1

    # Export
    export_format: str = 'excel'  # or 'csv'
    include_timestamp: bool = True

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'OutlierConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise InvalidSettingsError(f"Unknown configuration key(s): {unknown}")
        if 'input_path' not in config:
            raise InvalidSettingsError("Configuration requires 'input_path'")
        return cls(**config)

    @classmethod
    def from_yaml(cls, filepath: str) -> 'OutlierConfig':
        """Load configuration from YAML file."""
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Config not found: {path}")

        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}

        # Allow the settings to live under a top level 'outliers' key
        if 'outliers' in config and isinstance(config['outliers'], dict):
            config = config['outliers']

        return cls.from_dict(config)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_yaml(self, filepath: str) -> None:
        """Save configuration to YAML file."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            InvalidSettingsError: On the first invalid parameter
        """
        if not self.outlier_columns:
            raise InvalidSettingsError("Please include at least one numerical column")
        if self.export_format not in EXPORT_FORMATS:
            raise InvalidSettingsError(
                f"export_format must be one of {EXPORT_FORMATS}, got '{self.export_format}'"
            )
        if self.n_partitions is not None and self.n_partitions < 1:
            raise InvalidSettingsError(f"n_partitions must be positive, got {self.n_partitions}")
        if self.n_jobs == 0:
            raise InvalidSettingsError("n_jobs must not be 0")

        # enum parsing and range checks live in the option classes
        self.to_treatment_options()
        self.to_estimation_settings()

    def to_treatment_options(self) -> TreatmentOptions:
        return TreatmentOptions(
            detection=self.detection,
            treatment=self.treatment,
            replacement=self.replacement,
            iqr_multiplier=self.iqr_multiplier,
            update_domain=self.update_domain
        )

    def to_estimation_settings(self) -> EstimationSettings:
        return EstimationSettings(
            mode=self.estimation_mode,
            estimation_type=self.estimation_type,
            heuristic_row_threshold=self.heuristic_row_threshold
        )


# pipeline.py
class OutlierPipeline:
    """
    Numeric outliers pipeline - orchestrates a complete run.

    Steps:
    1. Load the input table
    2. Learn the permitted intervals
    3. Treat the outliers (single pass or partitioned)
    4. Export treated table, summary and intervals
    5. Save the model for later application
    """

    def __init__(self, config: OutlierConfig, exec_context: Optional[ExecutionContext] = None):
        config.validate()
        self.config = config
        self.exec_context = exec_context or ExecutionContext()
        self.detector = NumericOutliers(
            config.outlier_columns,
            config.group_columns,
            options=config.to_treatment_options(),
            estimation=config.to_estimation_settings()
        )

    def load_data(self) -> DataTable:
        """Load the input table."""
        table = load_table(self.config.input_path)
        logger.info("Loaded %d rows x %d columns from %s",
                    table.size, table.spec.num_columns, self.config.input_path)
        return table

    def detect(self, table: DataTable) -> NumericOutliersResult:
        """Learn the model and treat the table."""
        n_partitions = self.config.n_partitions
        if n_partitions is not None and n_partitions > 1:
            return self.detector.execute_partitioned(
                table, n_partitions=n_partitions, n_jobs=self.config.n_jobs,
                exec_context=self.exec_context
            )
        return self.detector.execute(table, self.exec_context)

    def metadata(self, result: NumericOutliersResult) -> Dict[str, Any]:
        metadata = {k: str(v) for k, v in self.config.to_dict().items()}
        metadata['warnings'] = ' | '.join(result.warnings)
        return metadata

    def export_results(self, result: NumericOutliersResult) -> str:
        """Export treated table, summary and intervals."""
        return export_result(
            result,
            self.config.output_dir,
            self.config.export_format,
            self.config.include_timestamp,
            self.metadata(result)
        )

    def save_model(self, result: NumericOutliersResult) -> Optional[str]:
        if self.config.model_path is None:
            return None
        result.port.save(self.config.model_path)
        return self.config.model_path

    def run(self) -> Dict[str, Any]:
        """
        Run complete pipeline.

        Returns:
            Dictionary with:
            - result: NumericOutliersResult
            - output_path: Exported file or directory
            - model_path: Saved model or None
        """
        table = self.load_data()
        result = self.detect(table)
        output_path = self.export_results(result)
        model_path = self.save_model(result)
        return {
            'result': result,
            'output_path': output_path,
            'model_path': model_path,
        }


def export_result(
    result: NumericOutliersResult,
    output_dir: str,
    export_format: str = 'excel',
    include_timestamp: bool = True,
    metadata: Optional[Dict[str, Any]] = None
) -> str:
    """Write the outputs of a run with ResultsExporter."""
    if export_format == 'excel':
        output_path = str(Path(output_dir) / 'numeric_outliers.xlsx')
    else:
        output_path = output_dir

    exporter = ResultsExporter(output_path, format=export_format, include_timestamp=include_timestamp)
    return exporter.export_outlier_results(
        result.treated.df,
        result.summary.df,
        result.port.model.to_dataframe(),
        metadata
    )


def apply_saved_model(
    model_path: str,
    input_path: str,
    exec_context: Optional[ExecutionContext] = None
) -> NumericOutliersResult:
    """Treat a table with a model saved by a previous run."""
    port = OutlierModelPort.load(model_path)
    table = load_table(input_path)
    return apply_model(port, table, exec_context)


__all__ = [
    'OutlierConfig',
    'OutlierPipeline',
    'export_result',
    'apply_saved_model',
]
