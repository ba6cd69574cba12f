"""
Data Loaders

This module provides table loaders for different file formats.
All loaders implement the TableLoader interface.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from pathlib import Path
import logging
import warnings
import pandas as pd

from .table import DataTable

logger = logging.getLogger(__name__)


class TableLoader(ABC):
    """
    Abstract base class for table loaders.

    All loaders must implement the load() method to read a file and
    return a DataTable.
    """

    pattern = "*"

    @abstractmethod
    def load(self, filepath: str) -> DataTable:
        """
        Load a table from file.

        Args:
            filepath: Path to the file

        Returns:
            DataTable object

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        pass

    def load_batch(self, directory: str, pattern: Optional[str] = None) -> Dict[str, DataTable]:
        """
        Load all matching files from a directory.

        Files that fail to load are skipped with a warning.

        Args:
            directory: Directory containing the files
            pattern: Glob pattern for file matching, defaults to the loader's pattern

        Returns:
            Dictionary mapping file stem -> DataTable
        """
        directory = Path(directory)
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")

        files = sorted(directory.glob(pattern or self.pattern))
        tables = {}
        failed_files = []

        logger.info("Loading %d files from %s", len(files), directory)

        for filepath in files:
            try:
                tables[filepath.stem] = self.load(str(filepath))
            except (OSError, ValueError) as e:
                failed_files.append((filepath.name, str(e)))
                warnings.warn(f"Failed to load {filepath.name}: {e}")

        logger.info("Loaded %d files, %d failed", len(tables), len(failed_files))
        return tables

    @staticmethod
    def _check_exists(filepath: Path) -> None:
        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")


class CSVTableLoader(TableLoader):
    """
    Loader for CSV files.

    Attributes:
        sep (str): Field separator
        index_col (Optional[int]): Column to use as row keys
        read_kwargs (Dict[str, Any]): Extra keyword arguments for pandas.read_csv
    """

    pattern = "*.csv"

    def __init__(
        self,
        sep: str = ',',
        index_col: Optional[int] = None,
        **read_kwargs: Any
    ):
        """
        Initialize CSV loader.

        Args:
            sep: Field separator
            index_col: Column to use as row keys (None for a range index)
            **read_kwargs: Passed on to pandas.read_csv
        """
        self.sep = sep
        self.index_col = index_col
        self.read_kwargs = read_kwargs

    def load(self, filepath: str) -> DataTable:
        """Load table from CSV file."""
        filepath = Path(filepath)
        self._check_exists(filepath)

        try:
            df = pd.read_csv(filepath, sep=self.sep, index_col=self.index_col, **self.read_kwargs)
        except pd.errors.EmptyDataError as e:
            raise ValueError(f"CSV file has no data: {filepath.name}") from e

        logger.debug("Loaded %s: %d rows x %d columns", filepath.name, *df.shape)
        return DataTable(df)


class ExcelTableLoader(TableLoader):
    """
    Loader for Excel workbooks (read with openpyxl).

    Attributes:
        sheet_name: Sheet to read (name or position)
    """

    pattern = "*.xlsx"

    def __init__(self, sheet_name: Any = 0, index_col: Optional[int] = None):
        self.sheet_name = sheet_name
        self.index_col = index_col

    def load(self, filepath: str) -> DataTable:
        """Load table from an Excel sheet."""
        filepath = Path(filepath)
        self._check_exists(filepath)

        df = pd.read_excel(
            filepath,
            sheet_name=self.sheet_name,
            index_col=self.index_col,
            engine='openpyxl'
        )

        logger.debug("Loaded %s: %d rows x %d columns", filepath.name, *df.shape)
        return DataTable(df)


_LOADERS = {
    '.csv': CSVTableLoader,
    '.txt': CSVTableLoader,
    '.xlsx': ExcelTableLoader,
    '.xlsm': ExcelTableLoader,
}


def get_loader(filepath: str) -> TableLoader:
    """
    Pick a loader based on the file suffix.

    Raises:
        ValueError: If the suffix is not supported
    """
    suffix = Path(filepath).suffix.lower()
    if suffix not in _LOADERS:
        raise ValueError(
            f"Unsupported file format '{suffix}'. "
            f"Supported: {', '.join(sorted(_LOADERS))}"
        )
    return _LOADERS[suffix]()


def load_table(filepath: str) -> DataTable:
    """Load a table with the loader matching its suffix."""
    return get_loader(filepath).load(filepath)


def supported_suffixes() -> List[str]:
    return sorted(_LOADERS)
