"""
Domain Updater

Tracks the running (min, max) of the treated values of each outlier
column so the output table can carry refreshed column domains.
"""

from typing import Dict, Iterable, Optional, Tuple
import math
import threading

from data.table import ColumnDomain, ColumnType, DataTable


class DomainUpdater:
    """
    Thread-safe running minimum and maximum per column.

    Partition workers share one instance; every update is lock guarded.
    """

    def __init__(self):
        self._bounds: Dict[str, Tuple[float, float]] = {}
        self._lock = threading.Lock()

    def update(self, column: str, value: float) -> None:
        """Include a non-missing value in a column's bounds."""
        value = float(value)
        with self._lock:
            bounds = self._bounds.get(column)
            if bounds is None:
                self._bounds[column] = (value, value)
            else:
                self._bounds[column] = (min(bounds[0], value), max(bounds[1], value))

    def bounds(self, column: str) -> Optional[Tuple[float, float]]:
        with self._lock:
            return self._bounds.get(column)

    def columns(self):
        with self._lock:
            return list(self._bounds)

    def merge(self, other: 'DomainUpdater') -> None:
        """Fold another tracker's bounds into this one."""
        for column in other.columns():
            lower, upper = other.bounds(column)
            self.update(column, lower)
            self.update(column, upper)

    def domains(self, types: Dict[str, ColumnType]) -> Dict[str, ColumnDomain]:
        """
        Domains per tracked column.

        Double columns get the exact bounds, integer columns the bounds
        rounded outwards (floor of the lower, ceil of the upper).
        """
        result = {}
        with self._lock:
            items = list(self._bounds.items())
        for column, (lower, upper) in items:
            if types.get(column, ColumnType.DOUBLE).is_integer:
                result[column] = ColumnDomain(int(math.floor(lower)), int(math.ceil(upper)))
            else:
                result[column] = ColumnDomain(lower, upper)
        return result

    def apply(self, table: DataTable, columns: Optional[Iterable[str]] = None) -> DataTable:
        """
        Return the table with refreshed domains for the tracked columns.

        Args:
            table: Treated table
            columns: Restrict the refresh to these columns
        """
        types = {c.name: c.type for c in table.spec}
        domains = self.domains(types)
        domains = {c: d for c, d in domains.items() if c in types}
        if columns is not None:
            wanted = set(columns)
            domains = {c: d for c, d in domains.items() if c in wanted}
        return table.with_spec(table.spec.with_domains(domains))
