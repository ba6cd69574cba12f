"""
Data Layer

Handles the table abstraction, loading input tables and exporting results.
"""

from .table import (
    ColumnType,
    ColumnDomain,
    ColumnSpec,
    TableSpec,
    DataRow,
    DataTable,
    RowInput,
    RowOutput,
    DataTableRowInput,
    DataTableRowOutput,
    is_missing
)
from .loaders import (
    TableLoader,
    CSVTableLoader,
    ExcelTableLoader,
    get_loader,
    load_table,
    supported_suffixes
)
from .exporters import (
    ExcelExporter,
    CSVExporter,
    ResultsExporter
)

__all__ = [
    # Core data structures
    'ColumnType',
    'ColumnDomain',
    'ColumnSpec',
    'TableSpec',
    'DataRow',
    'DataTable',
    'RowInput',
    'RowOutput',
    'DataTableRowInput',
    'DataTableRowOutput',
    'is_missing',

    # Loaders
    'TableLoader',
    'CSVTableLoader',
    'ExcelTableLoader',
    'get_loader',
    'load_table',
    'supported_suffixes',

    # Exporters
    'ExcelExporter',
    'CSVExporter',
    'ResultsExporter',
]
