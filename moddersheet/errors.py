from __future__ import annotations

from typing import Optional


class SheetError(Exception):
    """Base error for the grid editor."""


class UnknownTableError(SheetError):
    def __init__(self, table: str):
        super().__init__(f"Noma'lum jadval: {table}")
        self.table = table


class RowStoreError(SheetError):
    def __init__(self, table: str, message: str, row_id: Optional[str] = None):
        text = f"{table}: {message}"
        if row_id is not None:
            text = f"{table} [{row_id}]: {message}"
        super().__init__(text)
        self.table = table
        self.row_id = row_id


class WorkbookError(SheetError):
    pass


class CellValidationError(SheetError):
    def __init__(self, row_id: str, column: str, message: str):
        super().__init__(f"{column}: {message}")
        self.row_id = row_id
        self.column = column
        self.message = message
