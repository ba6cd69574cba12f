"""
Summary Table

Renders one row per (outlier column, group) with the group's member
count, outlier count and permitted interval.
"""

from typing import List, Optional, Sequence
import numpy as np

from data.table import ColumnSpec, ColumnType, DataRow, DataTable, TableSpec
from .counters import MemberCounter
from .execution import ExecutionContext
from .intervals import IntervalModel

OUTLIER_COLUMN = "Outlier column"
MEMBER_COUNT = "Member count"
OUTLIER_COUNT = "Outlier count"
LOWER_BOUND = "Lower bound"
UPPER_BOUND = "Upper bound"

_DEFAULT_DTYPES = {
    ColumnType.INT: np.dtype('int32'),
    ColumnType.LONG: np.dtype('int64'),
    ColumnType.DOUBLE: np.dtype('float64'),
    ColumnType.BOOLEAN: np.dtype('bool'),
    ColumnType.STRING: np.dtype('object'),
    ColumnType.OTHER: np.dtype('object'),
}


def group_column_specs_from_model(model: IntervalModel) -> List[ColumnSpec]:
    """Group column specs rebuilt from the types stored in a model."""
    specs = []
    for name in model.group_columns:
        col_type = model.group_column_types.get(name, ColumnType.OTHER)
        specs.append(ColumnSpec(name, col_type, _DEFAULT_DTYPES[col_type]))
    return specs


def summary_table_spec(group_column_specs: Sequence[ColumnSpec]) -> TableSpec:
    """Spec of the summary table for the given group columns."""
    return TableSpec(
        [ColumnSpec(OUTLIER_COLUMN, ColumnType.STRING, np.dtype('object'))]
        + [ColumnSpec(c.name, c.type, c.dtype) for c in group_column_specs]
        + [
            ColumnSpec(MEMBER_COUNT, ColumnType.LONG, np.dtype('int64')),
            ColumnSpec(OUTLIER_COUNT, ColumnType.LONG, np.dtype('int64')),
            ColumnSpec(LOWER_BOUND, ColumnType.DOUBLE, np.dtype('float64')),
            ColumnSpec(UPPER_BOUND, ColumnType.DOUBLE, np.dtype('float64')),
        ]
    )


class SummaryTableBuilder:
    """
    Builds the summary table of a treatment run.

    For every outlier column the rows follow the model's entry order and
    are followed by one row per group that only the missing-groups counter
    knows. Rows of such unknown groups take their member count from the
    missing-groups counter and carry missing bounds.
    """

    def __init__(
        self,
        model: IntervalModel,
        member_counter: MemberCounter,
        outlier_counter: MemberCounter,
        missing_groups_counter: MemberCounter,
        group_column_specs: Optional[Sequence[ColumnSpec]] = None
    ):
        self.model = model
        self.member_counter = member_counter
        self.outlier_counter = outlier_counter
        self.missing_groups_counter = missing_groups_counter
        if group_column_specs is None:
            group_column_specs = group_column_specs_from_model(model)
        self.spec = summary_table_spec(group_column_specs)

    def build(self, exec_context: Optional[ExecutionContext] = None) -> DataTable:
        """
        Render the summary table.

        Raises:
            CanceledExecutionError: If execution was canceled
        """
        exec_context = exec_context or ExecutionContext()
        n_columns = len(self.model.outlier_columns)
        entries = self.model.entries()
        unknown_keys = self.missing_groups_counter.group_keys()

        rows: List[DataRow] = []
        for i, column in enumerate(self.model.outlier_columns):
            exec_context.check_canceled()

            for key, intervals in entries:
                interval = intervals.get(column)
                rows.append(DataRow(len(rows), (
                    column,
                    *key,
                    self.member_counter.get(column, key),
                    self.outlier_counter.get(column, key),
                    interval.lower if interval is not None else None,
                    interval.upper if interval is not None else None,
                )))

            for key in unknown_keys:
                rows.append(DataRow(len(rows), (
                    column,
                    *key,
                    self.missing_groups_counter.get(column, key),
                    self.outlier_counter.get(column, key),
                    None,
                    None,
                )))

            exec_context.set_progress((i + 1) / n_columns)

        return DataTable.from_rows(self.spec, rows)
