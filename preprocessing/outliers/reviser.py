"""
Outlier Reviser

Treats the outliers of a table given a learned interval model. Depending
on the treatment option outlier cells are replaced (set missing or clamped
to the permitted interval) or rows holding outliers are filtered out or
retained. While treating, the reviser counts the members and outliers of
every (column, group) pair, which feed the summary table.

Treatment happens in a single pass. The same routine serves batch runs
(one partition covering the whole table, followed by the summary table)
and partitioned runs (several partitions whose internals are merged
afterwards).
"""

from typing import Any, List, Mapping, Optional, Sequence, Tuple
from dataclasses import dataclass
import logging
import math

from data.table import (
    ColumnType,
    DataTable,
    DataTableRowInput,
    DataTableRowOutput,
    RowInput,
    RowOutput,
    TableSpec,
)
from .domain import DomainUpdater
from .exceptions import InvalidSettingsError
from .execution import ExecutionContext
from .internals import TreatmentInternals
from .intervals import Interval, IntervalModel
from .listeners import WarningListener
from .options import DetectionOption, ReplacementStrategy, TreatmentOption, TreatmentOptions

logger = logging.getLogger(__name__)

TREATMENT_MESSAGE = "Treating outliers and generating output"
EMPTY_TABLE_WARNING = "Node created an empty data table"
UNSUPPORTED_TYPE_MESSAGE = "Only columns of type double, integer, and long are supported"


@dataclass
class TreatmentResult:
    """
    Output of a batch treatment.

    Attributes:
        treated: Treated table
        summary: Summary table
        internals: Counters and warnings of the run
    """
    treated: DataTable
    summary: DataTable
    internals: TreatmentInternals


class OutlierReviser:
    """
    Applies an interval model to rows.

    Attributes:
        options (TreatmentOptions): Treatment configuration
    """

    def __init__(
        self,
        options: Optional[TreatmentOptions] = None,
        listeners: Optional[Sequence[WarningListener]] = None
    ):
        """
        Initialize the reviser.

        Args:
            options: Treatment configuration, defaults to clamping both sides
            listeners: Receivers of advisory messages
        """
        self.options = options or TreatmentOptions()
        self._listeners: List[WarningListener] = list(listeners or [])

    @property
    def treatment(self) -> TreatmentOption:
        return self.options.treatment

    @property
    def replacement(self) -> ReplacementStrategy:
        return self.options.replacement

    @property
    def detection(self) -> DetectionOption:
        return self.options.detection

    @property
    def update_domain(self) -> bool:
        return self.options.update_domain

    @staticmethod
    def supports(column_type: ColumnType) -> bool:
        """Whether outliers can be treated in columns of this type."""
        return column_type.is_numeric

    @property
    def listeners(self) -> Tuple[WarningListener, ...]:
        return tuple(self._listeners)

    def _warn(self, message: str, listeners: Sequence[WarningListener] = ()) -> None:
        logger.debug("Warning: %s", message)
        for listener in list(self._listeners) + list(listeners):
            listener.warning(message)

    def check_compatibility(self, spec: TableSpec, columns: Sequence[str]) -> None:
        """
        Fail fast on absent or unsupported outlier columns.

        Raises:
            InvalidSettingsError: If a column is absent or not numeric
        """
        for name in columns:
            idx = spec.find_column_index(name)
            if idx < 0:
                raise InvalidSettingsError(f"Outlier column '{name}' not present in the table")
            if not self.supports(spec[idx].type):
                raise InvalidSettingsError(
                    f"{UNSUPPORTED_TYPE_MESSAGE} (column '{name}' is {spec[idx].type.value})"
                )

    def is_outlier(self, interval: Interval, value: float) -> bool:
        """
        Strict test against the active side(s) of the interval.

        Values equal to a bound are never outliers.
        """
        if value < interval.lower and self.detection.checks_lower:
            return True
        if value > interval.upper and self.detection.checks_upper:
            return True
        return False

    def treat_value(self, interval: Optional[Interval], column_type: ColumnType, value: Any) -> Any:
        """
        Treat a single non-missing value.

        Args:
            interval: Permitted interval, None if the model has none
            column_type: Type of the value's column
            value: Original value

        Returns:
            The original value object when nothing changes, None when the
            value is set missing, otherwise the clamped value
        """
        if interval is None:
            return value

        val = float(value)

        if self.replacement == ReplacementStrategy.SET_MISSING:
            return None if self.is_outlier(interval, val) else value

        if column_type == ColumnType.DOUBLE:
            if self.detection.checks_lower:
                val = max(val, interval.lower)
            if self.detection.checks_upper:
                val = min(val, interval.upper)
        else:
            # smallest / largest integer inside the permitted interval, infinite bounds stay as is
            if self.detection.checks_lower:
                lower = math.ceil(interval.lower) if math.isfinite(interval.lower) else interval.lower
                val = max(val, lower)
            if self.detection.checks_upper:
                upper = math.floor(interval.upper) if math.isfinite(interval.upper) else interval.upper
                val = min(val, upper)

        if val == float(value):
            return value
        if column_type.is_integer:
            return int(val)
        return val

    def treat_outliers(
        self,
        table: DataTable,
        model: IntervalModel,
        exec_context: Optional[ExecutionContext] = None
    ) -> TreatmentResult:
        """
        Treat the outliers of a complete table.

        Args:
            table: Input table
            model: Learned interval model
            exec_context: Execution context for progress and cancellation

        Returns:
            TreatmentResult holding the treated table, the summary table
            and the run's internals

        Raises:
            InvalidSettingsError: If an outlier column is absent or not numeric
            CanceledExecutionError: If execution was canceled
        """
        exec_context = exec_context or ExecutionContext()
        out = DataTableRowOutput(table.spec)
        domain_updater = DomainUpdater() if self.update_domain else None

        internals = self._treat(
            DataTableRowInput(table), out, model, exec_context, domain_updater, only_partition=True
        )

        treated = out.get_table()
        if domain_updater is not None:
            treated = domain_updater.apply(treated, model.outlier_columns)

        group_specs = [table.spec.get_column_spec(c) for c in model.group_columns]
        summary = internals.write_summary(exec_context.create_sub_context(0.1), group_specs)

        if treated.size == 0 and summary.size > 0:
            self._warn(EMPTY_TABLE_WARNING, [internals])

        exec_context.set_progress(1.0)
        logger.debug(
            "Treated %d rows: %d outliers, %d values of unknown groups",
            table.size, internals.outlier_counter.total(), internals.missing_groups_counter.total()
        )
        return TreatmentResult(treated, summary, internals)

    def treat_partition(
        self,
        rows: RowInput,
        out: RowOutput,
        model: IntervalModel,
        exec_context: Optional[ExecutionContext] = None,
        domain_updater: Optional[DomainUpdater] = None
    ) -> TreatmentInternals:
        """
        Treat one partition of rows.

        The treated rows are pushed to `out`, which is closed afterwards.
        Domain bounds are tracked in `domain_updater` if given; partitions
        of one run share a single updater.

        Returns:
            The partition's internals, to be merged with those of the
            other partitions
        """
        exec_context = exec_context or ExecutionContext()
        return self._treat(rows, out, model, exec_context, domain_updater, only_partition=False)

    def _treat(
        self,
        rows: RowInput,
        out: RowOutput,
        model: IntervalModel,
        exec_context: ExecutionContext,
        domain_updater: Optional[DomainUpdater],
        only_partition: bool
    ) -> TreatmentInternals:
        spec = rows.spec
        self.check_compatibility(spec, model.outlier_columns)
        exec_context.set_message(TREATMENT_MESSAGE)

        group_specs = [spec.get_column_spec(c) for c in model.group_columns if spec.contains_name(c)]
        # listeners are shared by concurrent partitions; pass internals to _warn instead
        internals = TreatmentInternals(model, group_column_specs=group_specs)

        # the summary table follows a batch run
        context = exec_context.create_sub_context(0.9 if only_partition else 1.0)
        columns = [
            (name, spec.find_column_index(name), spec.get_column_spec(name).type)
            for name in model.outlier_columns
        ]
        key_index = model.key_index(spec)

        row_iter = context.iterate(rows, total=rows.size, desc="Treating outliers")
        if self.treatment == TreatmentOption.REPLACE:
            self._replace_outliers(row_iter, out, model, key_index, columns, internals, domain_updater)
        else:
            self._treat_rows(row_iter, out, model, key_index, columns, internals, domain_updater)

        out.close()
        return internals

    def _replace_outliers(
        self,
        row_iter,
        out: RowOutput,
        model: IntervalModel,
        key_index,
        columns: List[Tuple[str, int, ColumnType]],
        internals: TreatmentInternals,
        domain_updater: Optional[DomainUpdater]
    ) -> None:
        member_counter = internals.member_counter
        outlier_counter = internals.outlier_counter
        missing_groups_counter = internals.missing_groups_counter

        for row in row_iter:
            key = key_index.key_for(row)
            intervals: Optional[Mapping[str, Interval]] = model.get_group_intervals(key)
            replacements = {}

            for name, idx, column_type in columns:
                value = row.cells[idx]
                treated = value
                if value is not None:
                    if intervals is not None:
                        member_counter.increment(name, key)
                        treated = self.treat_value(intervals.get(name), column_type, value)
                    else:
                        missing_groups_counter.increment(name, key)

                if treated is not value:
                    outlier_counter.increment(name, key)
                    replacements[idx] = treated

                if domain_updater is not None and treated is not None:
                    domain_updater.update(name, treated)

            out.push(row.replace_cells(replacements) if replacements else row)

    def _treat_rows(
        self,
        row_iter,
        out: RowOutput,
        model: IntervalModel,
        key_index,
        columns: List[Tuple[str, int, ColumnType]],
        internals: TreatmentInternals,
        domain_updater: Optional[DomainUpdater]
    ) -> None:
        member_counter = internals.member_counter
        outlier_counter = internals.outlier_counter
        missing_groups_counter = internals.missing_groups_counter
        keep_clean_rows = self.treatment == TreatmentOption.FILTER_OUT_OUTLIER_ROWS

        for row in row_iter:
            key = key_index.key_for(row)
            intervals = model.get_group_intervals(key)
            outlier_free = True

            for name, idx, _ in columns:
                value = row.cells[idx]
                if value is None:
                    continue
                if intervals is not None:
                    member_counter.increment(name, key)
                    interval = intervals.get(name)
                    if interval is not None and self.is_outlier(interval, float(value)):
                        outlier_free = False
                        outlier_counter.increment(name, key)
                else:
                    missing_groups_counter.increment(name, key)

            if outlier_free == keep_clean_rows:
                out.push(row)
                if domain_updater is not None:
                    for name, idx, _ in columns:
                        if row.cells[idx] is not None:
                            domain_updater.update(name, row.cells[idx])
