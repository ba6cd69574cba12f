"""
Interval Model

Permitted value intervals per group and outlier column. A value outside
its interval is an outlier; a (group, column) pair without an interval
never yields outliers.
"""

from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple
from pathlib import Path
from types import MappingProxyType
import numpy as np
import pandas as pd

from data.table import ColumnType, DataRow, TableSpec
from .grouping import GroupKey, GroupKeyIndex
from .serialization import (
    FORMAT_VERSION,
    encode_key,
    decode_key,
    string_array,
    pack_arrays,
    unpack_arrays,
)


class Interval(NamedTuple):
    """Closed permitted interval [lower, upper]."""
    lower: float
    upper: float

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper


class IntervalModel:
    """
    Map group key -> (outlier column -> Interval).

    The model also records the group column names, the outlier column names
    and the group columns' types so it can be applied to another table.
    Entries keep their insertion order. Bounds are stored as computed, also
    for integer columns; the reviser rounds them to the nearest integers
    inside the interval only when clamping, so the summary table reports
    the unrounded bounds.


    Attributes:
        group_columns (List[str]): Group column names, in key order
        outlier_columns (List[str]): Outlier column names
        group_column_types (Dict[str, ColumnType]): Types of the group columns
    """

    def __init__(
        self,
        group_columns: Sequence[str],
        outlier_columns: Sequence[str],
        group_column_types: Optional[Mapping[str, ColumnType]] = None
    ):
        self.group_columns: List[str] = list(group_columns)
        self.outlier_columns: List[str] = list(outlier_columns)
        self.group_column_types: Dict[str, ColumnType] = dict(group_column_types or {})
        self._intervals: Dict[GroupKey, Dict[str, Interval]] = {}

    def add_interval(self, key: Sequence, column: str, lower: float, upper: float) -> None:
        """
        Add the permitted interval of a (group, column) pair.

        Args:
            key: Group key (one value per group column)
            column: Outlier column
            lower: Lower bound
            upper: Upper bound

        Raises:
            ValueError: If the bounds are NaN, lower > upper, the column is
                not an outlier column or the key has the wrong length
        """
        if column not in self.outlier_columns:
            raise ValueError(f"'{column}' is not an outlier column of this model")
        if len(key) != len(self.group_columns):
            raise ValueError(
                f"Group key {tuple(key)} does not match group columns {self.group_columns}"
            )

        lower, upper = float(lower), float(upper)
        if np.isnan(lower) or np.isnan(upper):
            raise ValueError(f"Interval bounds of '{column}' must not be NaN")
        if lower > upper:
            raise ValueError(
                f"Lower bound {lower} exceeds upper bound {upper} for column '{column}'"
            )

        self._intervals.setdefault(GroupKey(key), {})[column] = Interval(lower, upper)

    def get_group_intervals(self, key: Sequence) -> Optional[Mapping[str, Interval]]:
        """Intervals of a group, None if the group is unknown."""
        intervals = self._intervals.get(GroupKey(key))
        if intervals is None:
            return None
        return MappingProxyType(intervals)

    def get_interval(self, key: Sequence, column: str) -> Optional[Interval]:
        intervals = self._intervals.get(GroupKey(key))
        if intervals is None:
            return None
        return intervals.get(column)

    def group_keys(self) -> List[GroupKey]:
        return list(self._intervals)

    def entries(self) -> List[Tuple[GroupKey, Mapping[str, Interval]]]:
        """(key, intervals) pairs in insertion order."""
        return [(key, MappingProxyType(intervals)) for key, intervals in self._intervals.items()]

    def key_index(self, spec: TableSpec) -> GroupKeyIndex:
        return GroupKeyIndex(spec, self.group_columns)

    def key_for(self, row: DataRow, spec: TableSpec) -> GroupKey:
        """Group key of a row of a table with the given spec."""
        return self.key_index(spec).key_for(row)

    def restrict_to(self, columns: Iterable[str]) -> 'IntervalModel':
        """
        Copy of this model keeping only the given outlier columns.

        Groups left without any interval are dropped.
        """
        keep = [c for c in self.outlier_columns if c in set(columns)]
        model = IntervalModel(self.group_columns, keep, self.group_column_types)
        for key, intervals in self._intervals.items():
            for column in keep:
                if column in intervals:
                    model._intervals.setdefault(key, {})[column] = intervals[column]
        return model

    def to_dataframe(self) -> pd.DataFrame:
        """One row per (group, column) interval."""
        records = []
        for key, intervals in self._intervals.items():
            for column, interval in intervals.items():
                record = dict(zip(self.group_columns, key))
                record['Outlier column'] = column
                record['Lower bound'] = interval.lower
                record['Upper bound'] = interval.upper
                records.append(record)

        columns = self.group_columns + ['Outlier column', 'Lower bound', 'Upper bound']
        return pd.DataFrame(records, columns=columns)

    def __len__(self) -> int:
        return len(self._intervals)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, tuple) and GroupKey(key) in self._intervals

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IntervalModel):
            return NotImplemented
        return (self.group_columns == other.group_columns
                and self.outlier_columns == other.outlier_columns
                and self.group_column_types == other.group_column_types
                and self._intervals == other._intervals)

    def __repr__(self) -> str:
        return (f"IntervalModel(groups={len(self)}, group_columns={self.group_columns}, "
                f"outlier_columns={self.outlier_columns})")

    def to_arrays(self) -> Dict[str, np.ndarray]:
        keys = list(self._intervals)
        entry_group, entry_column, lower, upper = [], [], [], []
        for i, key in enumerate(keys):
            for column, interval in self._intervals[key].items():
                entry_group.append(i)
                entry_column.append(column)
                lower.append(interval.lower)
                upper.append(interval.upper)

        return {
            'version': np.array([FORMAT_VERSION], dtype=np.int64),
            'group_columns': string_array(self.group_columns),
            'outlier_columns': string_array(self.outlier_columns),
            'group_column_types': string_array(
                [self.group_column_types.get(c, ColumnType.OTHER).value for c in self.group_columns]
            ),
            'group_keys': string_array([encode_key(k) for k in keys]),
            'entry_group': np.array(entry_group, dtype=np.int64),
            'entry_column': string_array(entry_column),
            'lower': np.array(lower, dtype=np.float64),
            'upper': np.array(upper, dtype=np.float64),
        }

    @classmethod
    def from_arrays(cls, arrays: Mapping[str, np.ndarray]) -> 'IntervalModel':
        group_columns = [str(c) for c in arrays['group_columns']]
        types = {
            c: ColumnType(str(t)) for c, t in zip(group_columns, arrays['group_column_types'])
        }
        model = cls(group_columns, [str(c) for c in arrays['outlier_columns']], types)

        keys = [decode_key(str(k)) for k in arrays['group_keys']]
        for key in keys:
            model._intervals[key] = {}
        for group, column, lower, upper in zip(
            arrays['entry_group'], arrays['entry_column'], arrays['lower'], arrays['upper']
        ):
            model.add_interval(keys[int(group)], str(column), lower, upper)
        return model

    def to_bytes(self) -> bytes:
        """Serialize the model (npz archive)."""
        return pack_arrays(self.to_arrays())

    @classmethod
    def from_bytes(cls, blob: bytes) -> 'IntervalModel':
        """
        Restore a model produced by to_bytes().

        Raises:
            ValueError: If the data is not a serialized model
        """
        arrays = unpack_arrays(blob)
        if 'entry_group' not in arrays:
            raise ValueError("Serialized data does not contain an interval model")
        return cls.from_arrays(arrays)

    def save(self, filepath: str) -> None:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_bytes())

    @classmethod
    def load(cls, filepath: str) -> 'IntervalModel':
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")
        return cls.from_bytes(path.read_bytes())
