from __future__ import annotations

import base64
import datetime as dt
import io
import json
import math
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from moddersheet.errors import WorkbookError
from moddersheet.schema import ColumnDescriptor, option_label, option_value
from moddersheet.ui import texts
from moddersheet.utils import cell_text, parse_datetime, to_float

META_SHEET = "Ma'lumot"
DATE_FORMAT = "%d.%m.%Y"

MSHT_START = "MSHT_V3_START"
MSHT_END = "MSHT_V3_END"
MSHT_VERSION = "3.0"
MSHT_SOURCE = "JamolStroy Admin Panel"

_YES_WORDS = {"ha", "true", "1", "yes", "да", "x", "✓"}
_NO_WORDS = {"yo'q", "yoq", "false", "0", "no", "нет", ""}
_BAD_SHEET_CHARS = re.compile(r"[\[\]\:\*\?\/\\]")

_MIN_WIDTH = 12
_MAX_WIDTH = 50

Source = Union[bytes, str, Path, io.IOBase]


def _emptyish(val: Any) -> bool:
    if val is None:
        return True
    if isinstance(val, float) and math.isnan(val):
        return True
    s = str(val).strip().lower()
    return s == "" or s in {"nan", "none", "null", "nat"}


def _plain_number(value: Any) -> Any:
    f = to_float(value)
    if f is None:
        return None
    return int(f) if f.is_integer() else f


def display_value(column: ColumnDescriptor, value: Any) -> Any:
    """Value as written into an exported workbook cell."""
    if column.type == "boolean":
        return texts.YES if value else texts.NO
    if column.type == "image":
        count = len(value) if isinstance(value, (list, tuple)) else 0
        return texts.image_count(count)
    if column.type == "datetime":
        parsed = parse_datetime(value)
        return parsed.strftime(DATE_FORMAT) if parsed else ""
    if column.type == "select":
        if value is None or value == "":
            return ""
        return option_label(column, value)
    if column.type == "number":
        num = _plain_number(value)
        return "" if num is None else num
    return "" if value is None else str(value)


def parse_display(column: ColumnDescriptor, raw: Any, default: Any = None) -> Tuple[Any, Optional[str]]:
    """Reverse :func:`display_value`. Returns ``(value, warning)``."""
    empty = _emptyish(raw)
    if column.type == "boolean":
        if isinstance(raw, bool):
            return raw, None
        if empty:
            return bool(default) if default is not None else False, None
        s = str(raw).strip().lower()
        if s in _YES_WORDS:
            return True, None
        if s in _NO_WORDS:
            return False, None
        return False, texts.import_bad_value(column.label, raw)
    if column.type == "number":
        if empty:
            return default if default is not None else 0, None
        num = _plain_number(raw)
        if num is None:
            return 0, texts.import_bad_value(column.label, raw)
        return num, None
    if column.type == "select":
        if empty:
            # nullable reference (root category, product without category)
            return default, None
        val = option_value(column, raw)
        if val is not None:
            return val, None
        if not column.options:
            return cell_text(raw), None
        fallback = default if default is not None else column.options[0][0]
        return fallback, texts.import_bad_value(column.label, raw)
    if column.type == "datetime":
        if empty:
            return None, None
        parsed = parse_datetime(raw)
        if parsed is None:
            return None, texts.import_bad_value(column.label, raw)
        return parsed.date().isoformat(), None
    if column.type == "image":
        return [], None
    if empty:
        return (default if default is not None else ""), None
    return cell_text(raw).strip(), None


def _sheet_title(name: str) -> str:
    title = _BAD_SHEET_CHARS.sub("_", name or "Sheet").strip("'") or "Sheet"
    return title[:31]


def _column_summary(column: ColumnDescriptor, rows: Sequence[Dict[str, Any]]) -> Any:
    if column.type == "boolean":
        return sum(1 for r in rows if r.get(column.key))
    if column.type == "number":
        total = sum(to_float(r.get(column.key)) or 0.0 for r in rows)
        return int(total) if float(total).is_integer() else round(total, 4)
    if column.type == "image":
        return sum(len(r.get(column.key) or []) for r in rows)
    return sum(1 for r in rows if not _emptyish(r.get(column.key)))


def export_workbook(
    rows: Sequence[Dict[str, Any]],
    columns: Sequence[ColumnDescriptor],
    table: str,
    *,
    exported_at: Optional[dt.datetime] = None,
) -> bytes:
    """Serialize rows into an xlsx workbook: data sheet plus a summary sheet."""
    exported_at = exported_at or dt.datetime.now()
    wb = Workbook()
    ws = wb.active
    ws.title = _sheet_title(table)

    ws.append([c.label for c in columns])
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.alignment = Alignment(vertical="center")

    for row in rows:
        ws.append([display_value(c, row.get(c.key)) for c in columns])

    for idx, col in enumerate(columns, start=1):
        longest = len(col.label)
        for r in range(2, ws.max_row + 1):
            longest = max(longest, len(str(ws.cell(row=r, column=idx).value or "")))
        ws.column_dimensions[get_column_letter(idx)].width = min(max(longest + 2, _MIN_WIDTH), _MAX_WIDTH)

    ws.freeze_panes = "A2"
    if columns:
        ws.auto_filter.ref = f"A1:{get_column_letter(len(columns))}{len(rows) + 1}"

    meta = wb.create_sheet(META_SHEET)
    meta.append([texts.META_TABLE, table])
    meta.append([texts.META_EXPORTED, exported_at.strftime("%d.%m.%Y %H:%M")])
    meta.append([texts.META_ROWS, len(rows)])
    meta.append([texts.META_COLUMNS, len(columns)])
    meta.append([])
    meta.append([texts.META_COLUMN, texts.META_TYPE, texts.META_SUMMARY])
    for cell in meta[6]:
        cell.font = Font(bold=True)
    for col in columns:
        meta.append([col.label, col.type, _column_summary(col, rows)])
    meta.column_dimensions["A"].width = 24
    meta.column_dimensions["B"].width = 20
    meta.column_dimensions["C"].width = 16

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def _excel_engine(source: Source, data: bytes) -> Optional[str]:
    if isinstance(source, (str, Path)) and Path(source).suffix.lower() == ".xls":
        return "xlrd"
    # OLE2 container -> legacy .xls
    if data[:4] == b"\xd0\xcf\x11\xe0":
        return "xlrd"
    return "openpyxl"


def _read_bytes(source: Source) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, (str, Path)):
        return Path(source).read_bytes()
    return source.read()


def read_workbook(source: Source) -> List[Dict[str, Any]]:
    """Rows of the first sheet keyed by header label; blank rows dropped."""
    try:
        data = _read_bytes(source)
    except OSError as e:
        raise WorkbookError(texts.IMPORT_UNREADABLE) from e
    if not data:
        raise WorkbookError(texts.IMPORT_UNREADABLE)
    engine = _excel_engine(source, data)
    try:
        df = pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=object, engine=engine)
    except Exception as e:
        raise WorkbookError(f"{texts.IMPORT_UNREADABLE}: {e}") from e
    df.columns = [str(c).strip() for c in df.columns]
    df = df.dropna(how="all")
    records: List[Dict[str, Any]] = []
    for rec in df.to_dict("records"):
        records.append({k: (None if _emptyish(v) else v) for k, v in rec.items()})
    return records


def rows_from_records(
    records: Sequence[Dict[str, Any]],
    columns: Sequence[ColumnDescriptor],
    defaults: Optional[Dict[str, Any]] = None,
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Map workbook records (keyed by label) back to internal row values."""
    defaults = defaults or {}
    warnings: List[str] = []
    headers = set()
    for rec in records:
        headers.update(rec.keys())
    header_for: Dict[str, Optional[str]] = {}
    for col in columns:
        if col.label in headers:
            header_for[col.key] = col.label
        elif col.key in headers:
            header_for[col.key] = col.key
        else:
            header_for[col.key] = None
            if col.type != "image" and not col.readonly:
                warnings.append(texts.import_missing_column(col.label))

    rows: List[Dict[str, Any]] = []
    for line, rec in enumerate(records, start=2):
        row: Dict[str, Any] = {}
        for col in columns:
            header = header_for[col.key]
            raw = rec.get(header) if header else None
            value, warning = parse_display(col, raw, defaults.get(col.key))
            if warning:
                warnings.append(f"{line}-qator: {warning}")
            row[col.key] = value
        rows.append(row)
    return rows, warnings


_STATUS_STYLES = {
    "pending": {"color": "#f59e0b", "backgroundColor": "#fef3c7"},
    "confirmed": {"color": "#3b82f6", "backgroundColor": "#dbeafe"},
    "processing": {"color": "#8b5cf6", "backgroundColor": "#e9d5ff"},
    "shipped": {"color": "#06b6d4", "backgroundColor": "#cffafe"},
    "delivered": {"color": "#10b981", "backgroundColor": "#d1fae5"},
    "cancelled": {"color": "#ef4444", "backgroundColor": "#fee2e2"},
}


def _msht_cell(column: ColumnDescriptor, value: Any) -> Dict[str, Any]:
    display = value
    style = {
        "fontFamily": "Arial",
        "fontSize": 12,
        "color": "#000000",
        "backgroundColor": "#ffffff",
        "fontWeight": "normal",
    }
    if column.type == "boolean":
        display = texts.YES if value else texts.NO
        style["color"] = "#16a34a" if value else "#dc2626"
        style["fontWeight"] = "bold"
    elif column.type == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            display = f"{value:,}"
        style["fontFamily"] = "monospace"
    elif column.key == "status":
        style.update(_STATUS_STYLES.get(str(value), {}))
    return {"key": column.key, "value": display, "rawValue": value, "style": style}


def export_msht(
    rows: Sequence[Dict[str, Any]],
    columns: Sequence[ColumnDescriptor],
    table: str,
    *,
    exported_at: Optional[dt.datetime] = None,
) -> str:
    """Encode rows, schema and per-cell styling into the MSHT v3 text archive."""
    exported_at = exported_at or dt.datetime.now(dt.timezone.utc)
    payload = {
        "meta": {
            "version": MSHT_VERSION,
            "exported": exported_at.isoformat(),
            "source": MSHT_SOURCE,
            "table": table,
            "rows": len(rows),
            "columns": len(columns),
        },
        "schema": {
            "columns": [
                {
                    "key": c.key,
                    "label": c.label,
                    "type": c.type,
                    "options": [{"value": v, "label": lbl} for v, lbl in c.options] or None,
                }
                for c in columns
            ],
        },
        "data": {
            "rows": [
                {
                    "id": row.get("id"),
                    "index": i + 1,
                    "cells": [_msht_cell(c, row.get(c.key)) for c in columns],
                }
                for i, row in enumerate(rows)
            ],
        },
    }
    raw = json.dumps(payload, ensure_ascii=False, default=str)
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return f"{MSHT_START}\n{encoded}\n{MSHT_END}"


def read_msht(text: str) -> Dict[str, Any]:
    lines = [ln.strip() for ln in (text or "").strip().splitlines() if ln.strip()]
    if len(lines) != 3 or lines[0] != MSHT_START or lines[2] != MSHT_END:
        raise WorkbookError(texts.MSHT_INVALID)
    try:
        return json.loads(base64.b64decode(lines[1]).decode("utf-8"))
    except ValueError as e:
        raise WorkbookError(texts.MSHT_INVALID) from e
