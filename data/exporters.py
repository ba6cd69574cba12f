"""
Data Exporters

Export treated tables, summary tables and interval models to Excel or CSV.
Supports multiple sheets, column formatting, and organized output.
"""

from typing import Dict, Optional, Any
import pandas as pd
from pathlib import Path
from datetime import datetime
import warnings


EXCEL_SHEET_NAME_LIMIT = 31


class ExcelExporter:
    """
    Export outlier results to Excel with multiple sheets.

    Typical usage:
    - Sheet 1: Treated table
    - Sheet 2: Summary table (member / outlier counts per group)
    - Sheet 3: Permitted intervals of the model
    - Sheet 4: Run metadata

    Attributes:
        filepath (Path): Output Excel file path
        sheets (Dict[str, Dict[str, Any]]): Sheet name -> data and index flag
    """

    def __init__(self, filepath: str):
        """
        Initialize Excel exporter.

        Args:
            filepath: Path for output Excel file
        """
        self.filepath = Path(filepath)
        self.sheets: Dict[str, Dict[str, Any]] = {}

    def add_sheet(
        self,
        sheet_name: str,
        data: pd.DataFrame,
        index: bool = True
    ) -> None:
        """
        Add a sheet to the Excel file.

        Args:
            sheet_name: Name of the sheet
            data: DataFrame to export
            index: Whether to include DataFrame index
        """
        if not isinstance(data, pd.DataFrame):
            raise ValueError(f"Data must be a pandas DataFrame, got {type(data)}")

        if len(sheet_name) > EXCEL_SHEET_NAME_LIMIT:
            original_name = sheet_name
            sheet_name = sheet_name[:EXCEL_SHEET_NAME_LIMIT]
            warnings.warn(
                f"Sheet name '{original_name}' truncated to '{sheet_name}' "
                f"(Excel limit: {EXCEL_SHEET_NAME_LIMIT} characters)"
            )

        self.sheets[sheet_name] = {
            'data': data,
            'index': index
        }

    def add_treated_sheet(self, treated_df: pd.DataFrame, sheet_name: str = 'Treated') -> None:
        self.add_sheet(sheet_name, treated_df, index=True)

    def add_summary_sheet(self, summary_df: pd.DataFrame, sheet_name: str = 'Summary') -> None:
        self.add_sheet(sheet_name, summary_df, index=False)

    def add_model_sheet(self, model_df: pd.DataFrame, sheet_name: str = 'Intervals') -> None:
        self.add_sheet(sheet_name, model_df, index=False)

    def write(
        self,
        auto_adjust_columns: bool = True,
        freeze_panes: Optional[tuple] = (1, 0)
    ) -> None:
        """
        Write all sheets to the Excel file.

        Args:
            auto_adjust_columns: Auto-adjust column widths
            freeze_panes: Freeze panes position (row, col) or None
        """
        if not self.sheets:
            warnings.warn("No sheets to write")
            return

        self.filepath.parent.mkdir(parents=True, exist_ok=True)

        with pd.ExcelWriter(self.filepath, engine='openpyxl') as writer:
            for sheet_name, sheet_info in self.sheets.items():
                sheet_info['data'].to_excel(
                    writer,
                    sheet_name=sheet_name,
                    index=sheet_info['index']
                )
                worksheet = writer.sheets[sheet_name]

                if auto_adjust_columns:
                    for column in worksheet.columns:
                        max_length = max(
                            (len(str(cell.value)) for cell in column if cell.value is not None),
                            default=0
                        )
                        # Cap at 50
                        worksheet.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

                if freeze_panes:
                    row, col = freeze_panes
                    worksheet.freeze_panes = worksheet.cell(row + 1, col + 1).coordinate

        print(f"Excel file written successfully: {self.filepath}")
        print(f"  Sheets: {list(self.sheets.keys())}")

    def clear(self) -> None:
        """Clear all sheets."""
        self.sheets.clear()


class CSVExporter:
    """
    Export outlier results to CSV files.

    Simpler than Excel, but creates one CSV file per table instead of sheets.
    """

    def __init__(self, output_directory: str):
        """
        Initialize CSV exporter.

        Args:
            output_directory: Directory for output CSV files
        """
        self.output_directory = Path(output_directory)
        self.output_directory.mkdir(parents=True, exist_ok=True)

    def export_table(self, df: pd.DataFrame, filename: str, index: bool = False) -> Path:
        """
        Export a DataFrame to CSV.

        Args:
            df: DataFrame to export
            filename: Output filename
            index: Whether to include the index

        Returns:
            Path of the written file
        """
        filepath = self.output_directory / filename
        try:
            df.to_csv(filepath, index=index)
        except OSError as e:
            raise ValueError(f"Failed to export {filename}: {e}") from e
        print(f"Exported to: {filepath}")
        return filepath

    def export_treated(self, treated_df: pd.DataFrame, filename: str = 'treated.csv') -> Path:
        return self.export_table(treated_df, filename, index=True)

    def export_summary(self, summary_df: pd.DataFrame, filename: str = 'summary.csv') -> Path:
        return self.export_table(summary_df, filename)

    def export_model(self, model_df: pd.DataFrame, filename: str = 'intervals.csv') -> Path:
        return self.export_table(model_df, filename)


class ResultsExporter:
    """
    High-level exporter that organizes the outputs of an outlier run.

    Creates structured output:
    - Single Excel file with multiple sheets
    - OR organized directory with CSV files
    - Includes metadata and timestamps
    """

    def __init__(
        self,
        output_path: str,
        format: str = 'excel',
        include_timestamp: bool = True
    ):
        """
        Initialize results exporter.

        Args:
            output_path: Output file path (Excel) or directory (CSV)
            format: 'excel' or 'csv'
            include_timestamp: Add timestamp to filename
        """
        if format not in ['excel', 'csv']:
            raise ValueError(f"Format must be 'excel' or 'csv', got '{format}'")

        self.output_path = Path(output_path)
        self.format = format
        self.include_timestamp = include_timestamp

        if include_timestamp:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')

            if format == 'excel':
                stem = self.output_path.stem
                suffix = self.output_path.suffix or '.xlsx'
                self.output_path = self.output_path.parent / f"{stem}_{timestamp}{suffix}"
            else:
                self.output_path = self.output_path / timestamp

        if format == 'excel' and self.output_path.suffix != '.xlsx':
            self.output_path = self.output_path.with_suffix('.xlsx')

    def export_outlier_results(
        self,
        treated: pd.DataFrame,
        summary: pd.DataFrame,
        model: Optional[pd.DataFrame] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Export the results of an outlier run.

        Args:
            treated: Treated table
            summary: Summary table
            model: Permitted intervals (IntervalModel.to_dataframe())
            metadata: Optional run metadata (settings, warnings, ...)

        Returns:
            Path to exported file(s)
        """
        if self.format == 'excel':
            exporter = ExcelExporter(str(self.output_path))
            exporter.add_treated_sheet(treated)
            exporter.add_summary_sheet(summary)
            if model is not None:
                exporter.add_model_sheet(model)
            if metadata:
                exporter.add_sheet('Metadata', pd.DataFrame([metadata]), index=False)
            exporter.write()
            return str(self.output_path)

        exporter = CSVExporter(str(self.output_path))
        exporter.export_treated(treated)
        exporter.export_summary(summary)
        if model is not None:
            exporter.export_model(model)
        if metadata:
            exporter.export_table(pd.DataFrame([metadata]), 'metadata.csv')
        return str(self.output_path)
