"""
Group Keys

Rows are assigned to groups by the values of their group columns. A row's
group key is the ordered tuple of those values; with no group columns
every row belongs to the single global group (the empty key).
"""

from typing import Any, List, Sequence, Tuple

from data.table import DataRow, TableSpec
from .exceptions import InvalidSettingsError


class GroupKey(tuple):
    """
    Immutable, hashable tuple of group column values.

    Missing group values are stored as None.
    """

    def __new__(cls, values: Sequence[Any] = ()):
        return super().__new__(cls, tuple(values))

    @property
    def is_global(self) -> bool:
        return len(self) == 0

    def __repr__(self) -> str:
        return f"GroupKey{tuple.__repr__(self)}"


GLOBAL_GROUP = GroupKey()


class GroupKeyIndex:
    """
    Resolves group column positions against a table spec once and builds
    group keys for rows of that table.

    Attributes:
        group_columns (List[str]): Group column names
        indices (Tuple[int, ...]): Column positions in the spec
    """

    def __init__(self, spec: TableSpec, group_columns: Sequence[str]):
        """
        Args:
            spec: Spec of the rows keys will be built for
            group_columns: Group column names, in key order

        Raises:
            InvalidSettingsError: If a group column is not part of the spec
        """
        self.group_columns: List[str] = list(group_columns)

        indices = [spec.find_column_index(name) for name in self.group_columns]
        missing = [name for name, idx in zip(self.group_columns, indices) if idx < 0]
        if missing:
            raise InvalidSettingsError(
                f"Group column(s) {missing} not present in the table"
            )
        self.indices: Tuple[int, ...] = tuple(indices)

    def key_for(self, row: DataRow) -> GroupKey:
        """Group key of a row."""
        if not self.indices:
            return GLOBAL_GROUP
        return GroupKey(row.cells[i] for i in self.indices)

    def __len__(self) -> int:
        return len(self.indices)
