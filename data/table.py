"""
Tabular Data Structures

This module defines the table abstraction the outlier engine reads from
and writes to: typed column specs, immutable rows and a pandas-backed
table, plus the row input/output ports used by the streaming code path.
"""

from typing import List, Optional, Dict, Any, Iterable, Iterator, Sequence, Tuple, Union
from dataclasses import dataclass, replace
from enum import Enum
from abc import ABC, abstractmethod
import numpy as np
import pandas as pd
from pandas.api import types as ptypes


class ColumnType(Enum):
    """Logical type of a column, derived from its pandas dtype."""
    INT = 'int'
    LONG = 'long'
    DOUBLE = 'double'
    STRING = 'string'
    BOOLEAN = 'boolean'
    OTHER = 'other'

    @property
    def is_numeric(self) -> bool:
        return self in (ColumnType.INT, ColumnType.LONG, ColumnType.DOUBLE)

    @property
    def is_integer(self) -> bool:
        return self in (ColumnType.INT, ColumnType.LONG)

    @classmethod
    def from_dtype(cls, dtype: Any) -> 'ColumnType':
        """
        Map a pandas/numpy dtype to a column type.

        Args:
            dtype: pandas or numpy dtype

        Returns:
            Matching ColumnType
        """
        if ptypes.is_bool_dtype(dtype):
            return cls.BOOLEAN
        if ptypes.is_integer_dtype(dtype):
            np_dtype = np.dtype(getattr(dtype, 'numpy_dtype', dtype))
            # int32 and everything narrower fits the 32 bit domain
            if np_dtype.itemsize < 4 or (np_dtype.itemsize == 4 and np_dtype.kind == 'i'):
                return cls.INT
            return cls.LONG
        if ptypes.is_float_dtype(dtype):
            return cls.DOUBLE
        if ptypes.is_string_dtype(dtype) or ptypes.is_object_dtype(dtype):
            return cls.STRING
        return cls.OTHER


def is_missing(value: Any) -> bool:
    """
    Check whether a cell value represents a missing value.

    None, NaN, pd.NA and NaT are all treated as missing.
    """
    if value is None:
        return True
    if not ptypes.is_scalar(value):
        return False
    return bool(pd.isna(value))


@dataclass(frozen=True)
class ColumnDomain:
    """Lower and upper bound of the values observed in a column."""
    lower: Any = None
    upper: Any = None


@dataclass(frozen=True)
class ColumnSpec:
    """
    Specification of a single column.

    Attributes:
        name: Column name
        type: Logical column type
        dtype: pandas dtype used to rebuild the column from rows
        domain: Optional value domain
    """
    name: str
    type: ColumnType
    dtype: Any = None
    domain: Optional[ColumnDomain] = None

    def with_domain(self, domain: Optional[ColumnDomain]) -> 'ColumnSpec':
        return replace(self, domain=domain)


class TableSpec:
    """
    Ordered collection of column specs with name lookup.
    """

    def __init__(self, columns: Sequence[ColumnSpec]):
        self._columns = list(columns)
        self._index = {c.name: i for i, c in enumerate(self._columns)}
        if len(self._index) != len(self._columns):
            raise ValueError("Column names must be unique")

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> 'TableSpec':
        """
        Derive a spec from a DataFrame.

        Args:
            df: Source DataFrame

        Returns:
            TableSpec with one ColumnSpec per DataFrame column
        """
        return cls([
            ColumnSpec(str(name), ColumnType.from_dtype(dtype), dtype)
            for name, dtype in df.dtypes.items()
        ])

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self._columns]

    @property
    def num_columns(self) -> int:
        return len(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __iter__(self) -> Iterator[ColumnSpec]:
        return iter(self._columns)

    def __getitem__(self, index: int) -> ColumnSpec:
        return self._columns[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableSpec):
            return NotImplemented
        return self._columns == other._columns

    def __hash__(self) -> int:
        return hash(tuple(self.column_names))

    def find_column_index(self, name: str) -> int:
        """Index of the named column, -1 if it does not exist."""
        return self._index.get(name, -1)

    def contains_name(self, name: str) -> bool:
        return name in self._index

    def get_column_spec(self, name_or_index: Union[str, int]) -> ColumnSpec:
        """
        Look up a column spec by name or position.

        Raises:
            KeyError: If the named column does not exist
        """
        if isinstance(name_or_index, str):
            if name_or_index not in self._index:
                raise KeyError(f"Column '{name_or_index}' not found")
            return self._columns[self._index[name_or_index]]
        return self._columns[name_or_index]

    def numeric_columns(self) -> List[str]:
        return [c.name for c in self._columns if c.type.is_numeric]

    def with_domains(self, domains: Dict[str, ColumnDomain]) -> 'TableSpec':
        """Return a copy of this spec with the given column domains replaced."""
        return TableSpec([
            c.with_domain(domains[c.name]) if c.name in domains else c
            for c in self._columns
        ])

    def __repr__(self) -> str:
        cols = ", ".join(f"{c.name}:{c.type.value}" for c in self._columns)
        return f"TableSpec({cols})"


@dataclass(frozen=True)
class DataRow:
    """
    A single table row.

    Missing cells are stored as None.
    """
    key: Any
    cells: Tuple[Any, ...]

    def get_cell(self, index: int) -> Any:
        return self.cells[index]

    def replace_cells(self, replacements: Dict[int, Any]) -> 'DataRow':
        """Return a new row with the cells at the given positions replaced."""
        cells = list(self.cells)
        for idx, value in replacements.items():
            cells[idx] = value
        return DataRow(self.key, tuple(cells))

    def __len__(self) -> int:
        return len(self.cells)


def _nullable_integer_dtype(dtype: Any) -> Any:
    if isinstance(dtype, pd.api.extensions.ExtensionDtype):
        return dtype
    name = np.dtype(dtype).name
    if name.startswith('u'):
        return pd.api.types.pandas_dtype('UInt' + name[4:])
    return pd.api.types.pandas_dtype('Int' + name[3:])


def _build_column(values: List[Any], column: ColumnSpec):
    """Build a pandas array for a column, keeping its dtype where possible."""
    has_missing = any(v is None for v in values)
    dtype = column.dtype if column.dtype is not None else object

    if column.type.is_integer and has_missing:
        dtype = _nullable_integer_dtype(dtype)
    elif column.type == ColumnType.BOOLEAN and has_missing:
        dtype = 'boolean'
    elif column.type == ColumnType.DOUBLE and not isinstance(dtype, pd.api.extensions.ExtensionDtype):
        values = [np.nan if v is None else v for v in values]

    try:
        return pd.array(values, dtype=dtype)
    except (TypeError, ValueError):
        return pd.array(values, dtype=object)


class DataTable:
    """
    Table of rows backed by a pandas DataFrame.

    Iterating a table yields DataRow objects in row order. Tables built
    from rows keep the dtypes of their spec; integer columns only switch
    to the pandas nullable dtypes when they hold missing values.

    Attributes:
        df (pd.DataFrame): Underlying data
        spec (TableSpec): Column specification
    """

    def __init__(self, df: pd.DataFrame, spec: Optional[TableSpec] = None):
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame")

        if any(not isinstance(c, str) for c in df.columns):
            df = df.rename(columns=str)

        self.df = df
        self.spec = spec if spec is not None else TableSpec.from_dataframe(df)

        if self.spec.column_names != list(df.columns):
            raise ValueError("Spec column names must match DataFrame columns")

    @classmethod
    def from_rows(cls, spec: TableSpec, rows: Iterable[DataRow]) -> 'DataTable':
        """
        Build a table from rows.

        Args:
            spec: Column specification of the rows
            rows: Rows to collect

        Returns:
            New DataTable
        """
        rows = list(rows)
        data = {}
        for i, column in enumerate(spec):
            data[column.name] = _build_column([r.cells[i] for r in rows], column)

        index = pd.Index([r.key for r in rows]) if rows else pd.RangeIndex(0)
        df = pd.DataFrame(data, index=index, columns=spec.column_names)
        return cls(df, spec)

    @classmethod
    def concatenate(cls, tables: Sequence['DataTable'], spec: Optional[TableSpec] = None) -> 'DataTable':
        """
        Concatenate tables sharing the same columns.

        Args:
            tables: Tables to concatenate (in order)
            spec: Spec used when no tables are given

        Returns:
            Combined DataTable
        """
        if not tables:
            if spec is None:
                raise ValueError("No tables to concatenate")
            return cls.from_rows(spec, [])

        combined = pd.concat([t.df for t in tables])
        base_spec = spec if spec is not None else tables[0].spec
        domains = {c.name: c.domain for c in base_spec if c.domain is not None}
        return cls(combined, TableSpec.from_dataframe(combined).with_domains(domains))

    @property
    def size(self) -> int:
        return len(self.df)

    def __len__(self) -> int:
        return len(self.df)

    def __iter__(self) -> Iterator[DataRow]:
        for values in self.df.itertuples(index=True, name=None):
            yield DataRow(values[0], tuple(None if is_missing(v) else v for v in values[1:]))

    def partition(self, n_partitions: int) -> List['DataTable']:
        """
        Split rows into contiguous, disjoint partitions.

        Args:
            n_partitions: Number of partitions (>= 1)

        Returns:
            List of DataTables, some possibly empty
        """
        if n_partitions < 1:
            raise ValueError(f"n_partitions must be positive, got {n_partitions}")

        cuts = np.linspace(0, len(self.df), n_partitions + 1).astype(int)
        return [
            DataTable(self.df.iloc[cuts[i]:cuts[i + 1]], self.spec)
            for i in range(n_partitions)
        ]

    def with_spec(self, spec: TableSpec) -> 'DataTable':
        return DataTable(self.df, spec)

    def to_dataframe(self) -> pd.DataFrame:
        return self.df.copy()

    def __repr__(self) -> str:
        return f"DataTable(n_rows={self.size}, spec={self.spec!r})"


class RowInput:
    """
    A stream of rows with a known spec.

    Attributes:
        spec: Spec of the rows
        size: Number of rows, -1 if unknown
    """

    def __init__(self, spec: TableSpec, rows: Iterable[DataRow], size: int = -1):
        self.spec = spec
        self._rows = rows
        self.size = size

    def __iter__(self) -> Iterator[DataRow]:
        return iter(self._rows)


class DataTableRowInput(RowInput):
    """Row input reading from a DataTable."""

    def __init__(self, table: DataTable):
        super().__init__(table.spec, table, table.size)
        self.table = table


class RowOutput(ABC):
    """Sink receiving treated rows."""

    @abstractmethod
    def push(self, row: DataRow) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class DataTableRowOutput(RowOutput):
    """
    Row output collecting rows into a DataTable.

    The table only becomes available after close(), so an aborted run
    never surfaces partially treated data.
    """

    def __init__(self, spec: TableSpec):
        self.spec = spec
        self._rows: List[DataRow] = []
        self._closed = False

    def push(self, row: DataRow) -> None:
        if self._closed:
            raise RuntimeError("Cannot push rows to a closed output")
        self._rows.append(row)

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def n_rows(self) -> int:
        return len(self._rows)

    def get_table(self) -> DataTable:
        """
        Build the collected table.

        Raises:
            RuntimeError: If the output has not been closed
        """
        if not self._closed:
            raise RuntimeError("Output has not been closed, no table is available")
        return DataTable.from_rows(self.spec, self._rows)
