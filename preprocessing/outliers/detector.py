"""
Numeric Outliers

High level entry point combining quantile estimation, outlier treatment
and the summary table:

1. Validate the settings against the input table
2. Learn the permitted intervals (QuantileEstimator)
3. Treat the outliers (OutlierReviser), either in one pass over the whole
   table or over parallel partitions whose internals are merged
4. Build the summary table

A learned model can be stored together with its treatment options
(OutlierModelPort) and later applied to another table (apply_model).
"""

from typing import List, Optional, Sequence
from dataclasses import dataclass, field
from pathlib import Path
import json
import logging
import numpy as np
from joblib import Parallel, delayed, cpu_count

from data.table import DataTable, DataTableRowInput, DataTableRowOutput, TableSpec
from .domain import DomainUpdater
from .exceptions import InvalidSettingsError
from .execution import ExecutionContext
from .grouping import GroupKeyIndex
from .internals import TreatmentInternals
from .intervals import IntervalModel
from .listeners import WarningCollector, WarningListener
from .options import EstimationSettings, TreatmentOptions
from .quantiles import QuantileEstimator
from .reviser import EMPTY_TABLE_WARNING, OutlierReviser
from .serialization import (
    FORMAT_VERSION,
    array_to_bytes,
    bytes_to_array,
    pack_arrays,
    string_array,
    unpack_arrays,
)

logger = logging.getLogger(__name__)

NO_OUTLIER_COLUMNS_MESSAGE = "Please include at least one numerical column"
NO_NUMERIC_COLUMNS_MESSAGE = "Input does not contain numerical columns"


class OutlierModelPort:
    """
    A learned interval model together with the options it treats with.

    Attributes:
        model (IntervalModel): Permitted intervals
        options (TreatmentOptions): Treatment configuration
    """

    def __init__(self, model: IntervalModel, options: TreatmentOptions):
        self.model = model
        self.options = options

    def to_bytes(self) -> bytes:
        return pack_arrays({
            'version': np.array([FORMAT_VERSION], dtype=np.int64),
            'model': bytes_to_array(self.model.to_bytes()),
            'options': string_array([json.dumps(self.options.to_dict())]),
        })

    @classmethod
    def from_bytes(cls, blob: bytes) -> 'OutlierModelPort':
        """
        Restore a port produced by to_bytes().

        Raises:
            ValueError: If the data is not a serialized model port
        """
        arrays = unpack_arrays(blob)
        if 'model' not in arrays or 'options' not in arrays:
            raise ValueError("Serialized data does not contain an outlier model")
        model = IntervalModel.from_bytes(array_to_bytes(arrays['model']))
        options = TreatmentOptions.from_dict(json.loads(str(arrays['options'][0])))
        return cls(model, options)

    def save(self, filepath: str) -> None:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_bytes())
        logger.info("Saved outlier model to %s", path)

    @classmethod
    def load(cls, filepath: str) -> 'OutlierModelPort':
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")
        return cls.from_bytes(path.read_bytes())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OutlierModelPort):
            return NotImplemented
        return self.model == other.model and self.options == other.options


@dataclass
class NumericOutliersResult:
    """
    Outputs of a numeric outliers run.

    Attributes:
        treated: Table with treated outliers
        summary: Summary table
        port: Learned model and options
        warnings: Advisory messages raised during the run
        internals: Merged counters of the run
    """
    treated: DataTable
    summary: DataTable
    port: OutlierModelPort
    warnings: List[str] = field(default_factory=list)
    internals: Optional[TreatmentInternals] = None


class NumericOutliers:
    """
    Detects and treats numeric outliers based on the interquartile range.

    Example:
        >>> detector = NumericOutliers(['value'], ['group'])
        >>> result = detector.execute(table)
        >>> result.summary.df

    Attributes:
        outlier_columns (List[str]): Columns outliers are detected in
        group_columns (List[str]): Group columns (outlier columns excluded)
        options (TreatmentOptions): Treatment configuration
        estimation (EstimationSettings): Quantile estimation configuration
    """

    def __init__(
        self,
        outlier_columns: Sequence[str],
        group_columns: Sequence[str] = (),
        options: Optional[TreatmentOptions] = None,
        estimation: Optional[EstimationSettings] = None,
        listeners: Optional[Sequence[WarningListener]] = None
    ):
        self.outlier_columns = list(outlier_columns)
        # a column cannot group itself
        self.group_columns = [c for c in group_columns if c not in self.outlier_columns]
        self.options = options or TreatmentOptions()
        self.estimation = estimation or EstimationSettings()
        self.listeners = list(listeners or [])

        dropped = [c for c in group_columns if c in self.outlier_columns]
        if dropped:
            logger.debug("Dropped outlier columns from the group columns: %s", dropped)

    def validate(self, spec: TableSpec) -> None:
        """
        Check the settings against a table spec before any processing.

        Raises:
            InvalidSettingsError: If the settings cannot be used with the table
        """
        if not self.outlier_columns:
            raise InvalidSettingsError(NO_OUTLIER_COLUMNS_MESSAGE)
        if not spec.numeric_columns():
            raise InvalidSettingsError(NO_NUMERIC_COLUMNS_MESSAGE)
        OutlierReviser(self.options).check_compatibility(spec, self.outlier_columns)
        GroupKeyIndex(spec, self.group_columns)

    def _estimator(self, listeners: Sequence[WarningListener]) -> QuantileEstimator:
        return QuantileEstimator(
            self.outlier_columns,
            self.group_columns,
            self.options.iqr_multiplier,
            self.estimation,
            listeners
        )

    def fit(self, table: DataTable, exec_context: Optional[ExecutionContext] = None) -> IntervalModel:
        """
        Learn the interval model of a table.

        Raises:
            InvalidSettingsError: If the settings cannot be used with the table
            CanceledExecutionError: If execution was canceled
        """
        self.validate(table.spec)
        return self._estimator(self.listeners).estimate(table, exec_context)

    def execute(
        self,
        table: DataTable,
        exec_context: Optional[ExecutionContext] = None
    ) -> NumericOutliersResult:
        """
        Learn the model and treat the table in one pass.

        Args:
            table: Input table
            exec_context: Execution context for progress and cancellation

        Returns:
            NumericOutliersResult

        Raises:
            InvalidSettingsError: If the settings cannot be used with the table
            CanceledExecutionError: If execution was canceled
        """
        exec_context = exec_context or ExecutionContext()
        self.validate(table.spec)

        collector = WarningCollector()
        listeners = [collector] + self.listeners

        logger.info("Computing intervals for %d column(s)", len(self.outlier_columns))
        model = self._estimator(listeners).estimate(table, exec_context.create_sub_context(0.5))

        logger.info("Treating outliers (%s)", self.options.treatment.name)
        reviser = OutlierReviser(self.options, listeners)
        result = reviser.treat_outliers(table, model, exec_context.create_sub_context(0.5))

        return NumericOutliersResult(
            result.treated,
            result.summary,
            OutlierModelPort(model, self.options),
            collector.messages,
            result.internals
        )

    def execute_partitioned(
        self,
        table: DataTable,
        n_partitions: Optional[int] = None,
        n_jobs: int = -1,
        exec_context: Optional[ExecutionContext] = None
    ) -> NumericOutliersResult:
        """
        Learn the model once, then treat disjoint partitions in parallel.

        Every partition accumulates its own counters; the model is shared
        read-only and the domain tracker is shared and lock guarded. The
        partition internals are merged before the summary table is built.

        Args:
            table: Input table
            n_partitions: Number of partitions (defaults to the CPU count)
            n_jobs: Number of worker threads (-1 for all CPUs)
            exec_context: Execution context for progress and cancellation

        Returns:
            NumericOutliersResult

        Raises:
            InvalidSettingsError: If the settings cannot be used with the table
            CanceledExecutionError: If execution was canceled
        """
        exec_context = exec_context or ExecutionContext()
        self.validate(table.spec)
        n_partitions = n_partitions or cpu_count()

        collector = WarningCollector()
        listeners = [collector] + self.listeners

        model = self._estimator(listeners).estimate(table, exec_context.create_sub_context(0.45))

        reviser = OutlierReviser(self.options, listeners)
        domain_updater = DomainUpdater() if self.options.update_domain else None
        partitions = table.partition(n_partitions)

        treat_context = exec_context.create_sub_context(0.45)
        contexts = [treat_context.create_sub_context(1.0 / n_partitions) for _ in partitions]

        logger.info("Treating %d partition(s) with n_jobs=%d", n_partitions, n_jobs)

        def treat(partition: DataTable, context: ExecutionContext):
            out = DataTableRowOutput(partition.spec)
            internals = reviser.treat_partition(
                DataTableRowInput(partition), out, model, context, domain_updater
            )
            return out.get_table(), internals

        results = Parallel(n_jobs=n_jobs, prefer='threads')(
            delayed(treat)(partition, context) for partition, context in zip(partitions, contexts)
        )

        internals = TreatmentInternals.merge([r[1] for r in results])
        treated = DataTable.concatenate([r[0] for r in results], table.spec)
        if domain_updater is not None:
            treated = domain_updater.apply(treated, model.outlier_columns)

        group_specs = [table.spec.get_column_spec(c) for c in model.group_columns]
        summary = internals.write_summary(exec_context.create_sub_context(0.1), group_specs)

        if treated.size == 0 and summary.size > 0:
            for listener in listeners + [internals]:
                listener.warning(EMPTY_TABLE_WARNING)

        exec_context.set_progress(1.0)
        return NumericOutliersResult(
            treated,
            summary,
            OutlierModelPort(model, self.options),
            collector.messages,
            internals
        )


def apply_model(
    port: OutlierModelPort,
    table: DataTable,
    exec_context: Optional[ExecutionContext] = None,
    listeners: Optional[Sequence[WarningListener]] = None
) -> NumericOutliersResult:
    """
    Treat a table with a previously learned model.

    Group columns of the model must exist in the table with the same
    types. Outlier columns that are absent or not numeric are skipped
    with a warning.

    Args:
        port: Learned model and treatment options
        table: Table to treat
        exec_context: Execution context for progress and cancellation
        listeners: Receivers of advisory messages

    Returns:
        NumericOutliersResult

    Raises:
        InvalidSettingsError: If group columns are absent or have another
            type, or if none of the outlier columns can be treated
    """
    model = port.model
    spec = table.spec

    if any(not spec.contains_name(c) for c in model.group_columns):
        raise InvalidSettingsError(
            f"Numeric outliers used group(s) ({', '.join(model.group_columns)}) "
            f"which does not, or only partially, exist in the table"
        )

    mismatched = [
        c for c in model.group_columns
        if c in model.group_column_types and spec.get_column_spec(c).type != model.group_column_types[c]
    ]
    if mismatched:
        raise InvalidSettingsError(
            f"Group column(s) ({', '.join(mismatched)}) have a different type than the one(s) "
            f"used by the numeric outliers"
        )

    usable = [
        c for c in model.outlier_columns
        if spec.contains_name(c) and OutlierReviser.supports(spec.get_column_spec(c).type)
    ]
    if not usable:
        raise InvalidSettingsError(
            "None of the outlier columns used by the numeric outliers is present or compatible"
        )

    collector = WarningCollector()
    all_listeners = [collector] + list(listeners or [])

    dropped = [c for c in model.outlier_columns if c not in usable]
    if dropped:
        message = (f"Column(s) ({', '.join(dropped)}) as specified by the numeric outliers "
                   f"is not present or compatible")
        for listener in all_listeners:
            listener.warning(message)
        model = model.restrict_to(usable)

    reviser = OutlierReviser(port.options, all_listeners)
    result = reviser.treat_outliers(table, model, exec_context)

    return NumericOutliersResult(
        result.treated,
        result.summary,
        OutlierModelPort(model, port.options),
        collector.messages,
        result.internals
    )
