"""
Spreadsheet reading and writing.

Reads uploaded .xlsx / .csv files into raw rows (column label -> cell value)
for the import engine, and writes export rows back out as .xlsx.
"""

import csv
import io
from collections.abc import Mapping, Sequence
from pathlib import PurePath
from typing import Any

import openpyxl
from openpyxl.utils import get_column_letter

from src.exceptions import ValidationError

SUPPORTED_EXTENSIONS = (".xlsx", ".csv")


def read_rows(content: bytes, filename: str) -> list[dict[str, Any]]:
    """
    Parse an uploaded spreadsheet.

    The first row is the header. Fully empty rows are skipped and empty cells
    become "".

    Args:
        content: Raw file bytes
        filename: Original file name; its extension selects the parser

    Returns:
        Rows as mappings from column label to cell value

    Raises:
        ValidationError: If the file type is unsupported or unreadable
    """
    extension = PurePath(filename).suffix.lower()
    if extension == ".csv":
        return _read_csv(content)
    if extension == ".xlsx":
        return _read_xlsx(content)
    raise ValidationError(
        f"Unsupported file type '{extension or filename}'. "
        f"Expected one of: {', '.join(SUPPORTED_EXTENSIONS)}"
    )


def _read_csv(content: bytes) -> list[dict[str, Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValidationError(f"CSV file is not valid UTF-8: {e}") from e

    rows: list[dict[str, Any]] = []
    reader = csv.DictReader(io.StringIO(text))
    for row in reader:
        values = {
            (label or "").strip(): (value or "").strip()
            for label, value in row.items()
            if label is not None
        }
        if any(values.values()):
            rows.append(values)
    return rows


def _read_xlsx(content: bytes) -> list[dict[str, Any]]:
    try:
        workbook = openpyxl.load_workbook(
            io.BytesIO(content), read_only=True, data_only=True
        )
    except Exception as e:
        raise ValidationError(f"Failed to read spreadsheet: {e}") from e

    try:
        sheet = workbook.worksheets[0]
        rows_iter = sheet.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            return []
        labels = [str(h).strip() if h is not None else "" for h in header]

        rows: list[dict[str, Any]] = []
        for values in rows_iter:
            if not values or all(v is None or str(v).strip() == "" for v in values):
                continue
            row = {}
            for idx, label in enumerate(labels):
                if not label:
                    continue
                value = values[idx] if idx < len(values) else None
                row[label] = "" if value is None else value
            rows.append(row)
        return rows
    finally:
        workbook.close()


def write_workbook(
    rows: Sequence[Mapping[str, Any]],
    sheet_name: str,
    columns: Sequence[str] | None = None,
    column_width: int = 20,
) -> bytes:
    """
    Write rows to a single-sheet .xlsx workbook.

    Args:
        rows: Export rows (column label -> value)
        sheet_name: Worksheet title
        columns: Column order; defaults to the first row's keys
        column_width: Width applied to every column

    Returns:
        Workbook bytes
    """
    if columns is None:
        columns = list(rows[0].keys()) if rows else []

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = sheet_name
    sheet.append(list(columns))
    for row in rows:
        sheet.append([_cell(row.get(column)) for column in columns])

    for idx in range(1, len(columns) + 1):
        sheet.column_dimensions[get_column_letter(idx)].width = column_width

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
