"""
Quantile Estimation

Computes the first and third quartile of every (group, outlier column)
pair and turns them into permitted intervals:

    lower = Q1 - k * IQR
    upper = Q3 + k * IQR

Two modes are available:
- EXACT: materialises the non-missing values of each pair and uses the
  selected Hyndman & Fan quantile definition (numpy.quantile)
- HEURISTIC: single pass P-square estimates (Jain & Chlamtac, 1985) that
  keep five markers per quartile regardless of the number of rows
"""

from typing import Dict, List, Optional, Sequence, Tuple, Union
import logging
import numpy as np

from data.table import DataTable, DataTableRowInput, RowInput
from .exceptions import InvalidSettingsError
from .execution import ExecutionContext
from .grouping import GroupKey, GroupKeyIndex
from .intervals import IntervalModel
from .listeners import WarningListener
from .options import EstimationMode, EstimationSettings, EstimationType

logger = logging.getLogger(__name__)

QUARTILES = (0.25, 0.75)


class PSquareQuantile:
    """
    P-square single pass estimate of one quantile.

    Until five observations have been seen the samples are kept and the
    quantile is computed exactly.

    Attributes:
        p (float): Quantile probability in (0, 1)
        count (int): Number of observations
    """

    def __init__(self, p: float):
        if not 0 < p < 1:
            raise ValueError(f"p must be in (0, 1), got {p}")
        self.p = p
        self.count = 0
        self._heights: List[float] = []
        self._positions = [1.0, 2.0, 3.0, 4.0, 5.0]
        self._desired = [1.0, 1 + 2 * p, 1 + 4 * p, 3 + 2 * p, 5.0]
        self._increments = [0.0, p / 2, p, (1 + p) / 2, 1.0]

    def add(self, x: float) -> None:
        self.count += 1

        if self.count <= 5:
            self._heights.append(x)
            if self.count == 5:
                self._heights.sort()
            return

        q = self._heights
        n = self._positions

        if x < q[0]:
            q[0] = x
            k = 0
        elif x >= q[4]:
            q[4] = x
            k = 3
        else:
            k = 0
            while x >= q[k + 1]:
                k += 1

        for i in range(k + 1, 5):
            n[i] += 1
        for i in range(5):
            self._desired[i] += self._increments[i]

        for i in range(1, 4):
            d = self._desired[i] - n[i]
            if (d >= 1 and n[i + 1] - n[i] > 1) or (d <= -1 and n[i - 1] - n[i] < -1):
                d = 1 if d > 0 else -1
                candidate = self._parabolic(i, d)
                if q[i - 1] < candidate < q[i + 1]:
                    q[i] = candidate
                else:
                    q[i] = q[i] + d * (q[i + d] - q[i]) / (n[i + d] - n[i])
                n[i] += d

    def _parabolic(self, i: int, d: int) -> float:
        q = self._heights
        n = self._positions
        return q[i] + d / (n[i + 1] - n[i - 1]) * (
            (n[i] - n[i - 1] + d) * (q[i + 1] - q[i]) / (n[i + 1] - n[i])
            + (n[i + 1] - n[i] - d) * (q[i] - q[i - 1]) / (n[i] - n[i - 1])
        )

    def result(self, method: str = 'linear') -> float:
        """
        Current estimate.

        Args:
            method: numpy quantile method used while at most five
                observations have been seen

        Returns:
            Quantile estimate, NaN without observations
        """
        if self.count == 0:
            return np.nan
        if self.count <= 5:
            return float(np.quantile(np.asarray(self._heights), self.p, method=method))
        return float(self._heights[2])


class _ExactAccumulator:
    """Collects all values of a (group, column) pair."""

    def __init__(self):
        self.values: List[float] = []

    def add(self, x: float) -> None:
        self.values.append(x)

    def quartiles(self, method: str) -> Tuple[float, float]:
        q1, q3 = np.quantile(np.asarray(self.values, dtype=np.float64), QUARTILES, method=method)
        return float(q1), float(q3)


class _HeuristicAccumulator:
    """P-square estimates of both quartiles of a (group, column) pair."""

    def __init__(self):
        self._q1 = PSquareQuantile(QUARTILES[0])
        self._q3 = PSquareQuantile(QUARTILES[1])

    def add(self, x: float) -> None:
        self._q1.add(x)
        self._q3.add(x)

    def quartiles(self, method: str) -> Tuple[float, float]:
        return self._q1.result(method), self._q3.result(method)


class QuantileEstimator:
    """
    Learns the interval model of a table.

    Attributes:
        outlier_columns (List[str]): Columns outliers are detected in
        group_columns (List[str]): Columns defining the groups
        iqr_multiplier (float): Scale k of the interquartile range
        settings (EstimationSettings): Quantile estimation configuration
    """

    def __init__(
        self,
        outlier_columns: Sequence[str],
        group_columns: Sequence[str] = (),
        iqr_multiplier: float = 1.5,
        settings: Optional[EstimationSettings] = None,
        listeners: Optional[Sequence[WarningListener]] = None
    ):
        """
        Initialize the estimator.

        Args:
            outlier_columns: Numeric columns to learn intervals for
            group_columns: Group columns (empty for one global group)
            iqr_multiplier: Scale k of the interquartile range (>= 0)
            settings: Estimation settings, defaults to EXACT with R_6
            listeners: Receivers of advisory messages

        Raises:
            InvalidSettingsError: If the multiplier is negative
        """
        if iqr_multiplier is None or not iqr_multiplier >= 0:
            raise InvalidSettingsError("The IQR scalar has to be greater than or equal 0.")

        self.outlier_columns = list(outlier_columns)
        self.group_columns = list(group_columns)
        self.iqr_multiplier = float(iqr_multiplier)
        self.settings = settings or EstimationSettings()
        self.listeners = list(listeners or [])

    def _warn(self, message: str) -> None:
        logger.debug("Warning: %s", message)
        for listener in self.listeners:
            listener.warning(message)

    def estimate(
        self,
        data: Union[DataTable, RowInput],
        exec_context: Optional[ExecutionContext] = None
    ) -> IntervalModel:
        """
        Learn the permitted intervals.

        Args:
            data: Table or row input
            exec_context: Execution context for progress and cancellation

        Returns:
            IntervalModel with one interval per (group, column) pair that
            holds at least one non-missing value

        Raises:
            InvalidSettingsError: If a column is absent or not numeric
            CanceledExecutionError: If execution was canceled
        """
        rows = DataTableRowInput(data) if isinstance(data, DataTable) else data
        exec_context = exec_context or ExecutionContext()
        spec = rows.spec

        column_indices = []
        for name in self.outlier_columns:
            idx = spec.find_column_index(name)
            if idx < 0:
                raise InvalidSettingsError(f"Outlier column '{name}' not present in the table")
            if not spec[idx].type.is_numeric:
                raise InvalidSettingsError(
                    f"Outlier column '{name}' is not numeric ({spec[idx].type.value})"
                )
            column_indices.append((name, idx))

        key_index = GroupKeyIndex(spec, self.group_columns)
        mode = self.settings.resolve_mode(rows.size)
        if mode != self.settings.mode:
            self._warn(
                f"Exact quantile estimation switched to heuristic estimation for {rows.size} rows "
                f"(threshold: {self.settings.heuristic_row_threshold})"
            )
        accumulator_cls = _ExactAccumulator if mode == EstimationMode.EXACT else _HeuristicAccumulator

        logger.debug(
            "Estimating quartiles of %s (groups: %s, mode: %s)",
            self.outlier_columns, self.group_columns or 'none', mode.name
        )

        read_context = exec_context.create_sub_context(0.9)
        accumulators: Dict[GroupKey, Dict[str, object]] = {}
        for row in read_context.iterate(rows, total=rows.size, desc="Computing quartiles"):
            key = None
            for name, idx in column_indices:
                value = row.cells[idx]
                if value is None:
                    continue
                if key is None:
                    key = key_index.key_for(row)
                group = accumulators.setdefault(key, {})
                if name not in group:
                    group[name] = accumulator_cls()
                group[name].add(float(value))

        model = IntervalModel(
            self.group_columns,
            self.outlier_columns,
            {name: spec.get_column_spec(name).type for name in self.group_columns}
        )

        build_context = exec_context.create_sub_context(0.1)
        method = self.settings.estimation_type.numpy_method
        k = self.iqr_multiplier
        for i, (key, group) in enumerate(accumulators.items()):
            build_context.check_canceled()
            for name in self.outlier_columns:
                if name not in group:
                    continue
                q1, q3 = group[name].quartiles(method)
                # P-square estimates are not guaranteed to be ordered
                q1, q3 = min(q1, q3), max(q1, q3)
                iqr = q3 - q1
                lower, upper = q1 - k * iqr, q3 + k * iqr
                if np.isnan(lower) or np.isnan(upper):
                    self._warn(f"Column '{name}' has no finite quartiles for group {tuple(key)}")
                    continue
                model.add_interval(key, name, lower, upper)
            build_context.set_progress((i + 1) / len(accumulators))

        exec_context.set_progress(1.0)
        logger.debug("Learned intervals for %d group(s)", len(model))
        return model


def compute_intervals(
    data: Union[DataTable, RowInput],
    outlier_columns: Sequence[str],
    group_columns: Sequence[str] = (),
    iqr_multiplier: float = 1.5,
    estimation_type: EstimationType = EstimationType.R_6,
    exec_context: Optional[ExecutionContext] = None
) -> IntervalModel:
    """Convenience wrapper around QuantileEstimator with exact estimation."""
    estimator = QuantileEstimator(
        outlier_columns,
        group_columns,
        iqr_multiplier,
        EstimationSettings(EstimationMode.EXACT, estimation_type)
    )
    return estimator.estimate(data, exec_context)
